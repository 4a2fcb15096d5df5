"""Tests for outbound input validation and sanitization."""

import pytest

from feedcore.utils.input_validators import (
    sanitize_input,
    sanitize_object,
    validate_email,
    validate_endpoint,
    validate_token,
    validate_url,
    validate_username,
)


@pytest.mark.parametrize(
    ("username", "expected"),
    [("alice", True), ("a_b-c", True), ("ab", False), ("x" * 21, False), ("bad name", False), (None, False)],
)
def test_validate_username(username, expected) -> None:
    assert validate_username(username) is expected


@pytest.mark.parametrize(
    ("email", "expected"),
    [("a@b.co", True), ("a@b", False), ("a b@c.d", False), ("", False)],
)
def test_validate_email(email, expected) -> None:
    assert validate_email(email) is expected


@pytest.mark.parametrize(
    ("token", "expected"),
    [("abc.DEF_123-x", True), ("has space", False), ("semi;colon", False), ("", False)],
)
def test_validate_token(token, expected) -> None:
    assert validate_token(token) is expected


def test_validate_url() -> None:
    assert validate_url("https://forum.example.com") is True
    assert validate_url("http://forum.example.com") is True
    assert validate_url("http://forum.example.com", https_only=True) is False
    assert validate_url("ftp://forum.example.com") is False
    assert validate_url("") is False


@pytest.mark.parametrize(
    ("endpoint", "expected"),
    [
        ("/latest.json", True),
        ("/search.json?q=https://example.com", True),
        ("latest.json", False),
        ("/../etc/passwd", False),
        ("//evil.example.com/x", False),
        ("/t/1.json extra", False),
        ("", False),
        (None, False),
    ],
)
def test_validate_endpoint(endpoint, expected) -> None:
    assert validate_endpoint(endpoint) is expected


def test_sanitize_input_strips_markup_characters() -> None:
    assert sanitize_input("<b>\"Tom\" & 'Jerry'</b>") == "bTom  Jerry/b"
    assert sanitize_input("") == ""


def test_sanitize_object_rewrites_values_only() -> None:
    payload = {"<raw>": "<hi>", "nested": [{"title": "a&b"}, 3, None, True]}

    assert sanitize_object(payload) == {"<raw>": "hi", "nested": [{"title": "ab"}, 3, None, True]}
