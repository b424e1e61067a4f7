"""Helpers for keeping credentials out of logs and error messages."""

import re
from urllib.parse import urlsplit, urlunsplit

TOKEN_PATTERNS = [
    re.compile(r"tk_[A-Za-z0-9]{8,}"),
    re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]{8,}", re.IGNORECASE),
]


def mask_token(token: str | None) -> str:
    """Mask an API token, keeping only a short prefix for identification.

    Examples:
        >>> mask_token("tk_1234567890abcdef")
        'tk_1...'
        >>> mask_token(None)
        '<none>'
    """
    if not token:
        return "<none>"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}..."


def mask_url(url: str | None) -> str:
    """Strip user info, query string and fragment from a URL."""
    if not url:
        return "<none>"
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, host, parts.path, "", ""))


def redact(text: str) -> str:
    """Remove anything that looks like a Vikunja token from free text."""
    redacted = text
    for pattern in TOKEN_PATTERNS:
        if pattern.groups:
            redacted = pattern.sub(r"\1[REDACTED]", redacted)
        else:
            redacted = pattern.sub("[REDACTED]", redacted)
    return redacted


def create_secure_connection_message(url: str | None, token: str | None) -> str:
    """Describe a connection target without leaking the credential."""
    return f"Connecting to {mask_url(url)} with token {mask_token(token)}"
