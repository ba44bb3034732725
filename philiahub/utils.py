"""Utility helpers for Philia Hub."""

from __future__ import annotations

from datetime import UTC, datetime
import re
import unicodedata

from .errors import ValidationError

_slug_invalid = re.compile(r"[^a-z0-9]+")
_email_pattern = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_url_pattern = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Convert aware datetimes to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def slugify(value: str, *, max_length: int | None = None) -> str:
    """Return a canonical slug suitable for URLs."""
    value = (
        unicodedata.normalize("NFKD", value or "")
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    value = value.strip().lower()
    value = _slug_invalid.sub("-", value)
    value = value.strip("-")
    if max_length:
        value = value[:max_length].strip("-")
    return value


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def require_email(value: str | None) -> str:
    email = normalize_email(value)
    if not _email_pattern.match(email):
        raise ValidationError("Invalid email address")
    return email


def require_text(
    value: str | None,
    field: str,
    *,
    min_length: int = 0,
    max_length: int | None = None,
    optional: bool = False,
) -> str | None:
    """Trim ``value`` and enforce its length bounds.

    Returns ``None`` for blank optional values.
    """
    cleaned = (value or "").strip()
    if not cleaned:
        if optional:
            return None
        raise ValidationError(f"{field} is required")
    if len(cleaned) < min_length:
        raise ValidationError(f"{field} must be at least {min_length} characters")
    if max_length is not None and len(cleaned) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return cleaned


def require_url(value: str | None, field: str) -> str:
    cleaned = (value or "").strip()
    if not _url_pattern.match(cleaned):
        raise ValidationError(f"{field} must be a valid URL")
    return cleaned


def require_choice(value: str | None, field: str, choices) -> str:
    normalized = (value or "").strip().lower()
    if normalized not in choices:
        options = ", ".join(sorted(choices))
        raise ValidationError(f"{field} must be one of: {options}")
    return normalized
