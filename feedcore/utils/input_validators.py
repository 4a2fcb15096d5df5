"""Input validation utilities for outbound request security.

Structural checks for URLs, usernames, emails, tokens and endpoint paths,
plus sanitization that strips markup characters from request payloads before
they reach the forum.
"""

from __future__ import annotations

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

VALIDATION_PATTERNS = {
    "username": re.compile(r"^[a-zA-Z0-9_-]{3,20}$"),
    "email": re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$"),
    "url": re.compile(r"^https?://.+"),
    "token": re.compile(r"^[a-zA-Z0-9._-]+$"),
}

_UNSAFE_CHARS = re.compile(r"[<>\"'&]")


def validate_url(url: str, *, https_only: bool = False) -> bool:
    """Check a URL against the allowed structure.

    Args:
        url: Absolute URL.
        https_only: Reject plain HTTP when True.

    Returns:
        True if the URL is acceptable.
    """
    if not url:
        return False
    if https_only and not url.startswith("https://"):
        logger.warning("validation.insecure_url", extra={"url": url})
        return False
    return bool(VALIDATION_PATTERNS["url"].match(url))


def validate_username(username: str | None) -> bool:
    return bool(username) and bool(VALIDATION_PATTERNS["username"].match(username))


def validate_email(email: str | None) -> bool:
    return bool(email) and bool(VALIDATION_PATTERNS["email"].match(email))


def validate_token(token: str | None) -> bool:
    return bool(token) and bool(VALIDATION_PATTERNS["token"].match(token))


def validate_endpoint(endpoint: str | None) -> bool:
    """Accept only rooted relative paths that cannot climb out of the API root."""
    if not endpoint or not endpoint.startswith("/"):
        return False
    path = endpoint.split("?", 1)[0]
    if ".." in endpoint or "//" in path:
        return False
    return not any(ch.isspace() for ch in endpoint)


def sanitize_input(value: str) -> str:
    """Remove characters that could open markup or script injection."""
    if not value:
        return ""
    return _UNSAFE_CHARS.sub("", value)


def sanitize_object(value: Any) -> Any:
    """Recursively sanitize every string inside a JSON-like structure.

    Keys are left untouched; only values are rewritten.
    """
    if isinstance(value, str):
        return sanitize_input(value)
    if isinstance(value, list):
        return [sanitize_object(item) for item in value]
    if isinstance(value, dict):
        return {key: sanitize_object(item) for key, item in value.items()}
    return value
