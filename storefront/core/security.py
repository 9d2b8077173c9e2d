"""Input sanitisation and token helpers."""

import re
import secrets

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SCRIPT_TAG_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_JS_PROTOCOL_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+\s*=", re.IGNORECASE)


def sanitize_string(value: str | None, max_length: int = 1000) -> str:
    """Strip NUL bytes and script-ish fragments, then truncate and trim."""
    if not value:
        return ""

    sanitized = value.replace("\0", "")[:max_length]
    sanitized = _SCRIPT_TAG_RE.sub("", sanitized)
    sanitized = _JS_PROTOCOL_RE.sub("", sanitized)
    sanitized = _EVENT_HANDLER_RE.sub("", sanitized)
    return sanitized.strip()


def is_valid_email(email: str | None) -> bool:
    """Loose RFC 5322 check with the RFC 5321 length limit."""
    if not email or len(email) > 254 or len(email) < 3:
        return False
    return bool(_EMAIL_RE.match(email))


def generate_token(length: int = 24) -> str:
    """Generate an opaque URL-safe token (about 32 characters for the default)."""
    return secrets.token_urlsafe(length)
