"""Rate limiting adapters.

This package provides a small abstraction layer so the request engine can be
driven by the in-memory limiter in production and by a fake clock in tests.
"""
