"""Content policy checks for user-submitted text."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from .config import settings
from .errors import ValidationError

PROHIBITED_TERMS = "prohibited terms"
EXCESSIVE_CAPS = "excessive capitalization"

CAPS_MIN_LENGTH = 20
CAPS_RATIO_LIMIT = 0.7

_script_pattern = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_whitespace_pattern = re.compile(r"\s+")


@dataclass(frozen=True)
class ContentCheck:
    clean: bool
    reason: str | None = None


def sanitize_content(text: str | None) -> str:
    """Strip script blocks, collapse whitespace runs and trim."""
    stripped = _script_pattern.sub("", text or "")
    return _whitespace_pattern.sub(" ", stripped).strip()


def _banned_pattern(terms: Iterable[str]) -> re.Pattern[str] | None:
    escaped = [re.escape(term) for term in terms if term]
    if not escaped:
        return None
    return re.compile(r"\b(?:" + "|".join(escaped) + r")\b", re.IGNORECASE)


def evaluate(text: str | None, *, banned_terms: Iterable[str] | None = None) -> ContentCheck:
    """Classify ``text`` as clean or not, with the first failing reason."""
    sanitized = sanitize_content(text)
    pattern = _banned_pattern(
        settings.banned_terms if banned_terms is None else banned_terms
    )
    if pattern and pattern.search(sanitized):
        return ContentCheck(False, PROHIBITED_TERMS)

    if len(sanitized) > CAPS_MIN_LENGTH:
        letters = [char for char in sanitized if char.isalpha()]
        if letters:
            upper = sum(1 for char in letters if char.isupper())
            if upper / len(letters) > CAPS_RATIO_LIMIT:
                return ContentCheck(False, EXCESSIVE_CAPS)

    return ContentCheck(True)


def require_clean(text: str | None, field: str | None = None) -> None:
    """Raise ``ValidationError`` when ``text`` fails the content policy."""
    result = evaluate(text)
    if result.clean:
        return
    message = f"Content contains {result.reason}"
    if field:
        message = f"{field}: {message}"
    raise ValidationError(message)
