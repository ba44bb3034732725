from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from philiahub.errors import ValidationError
from philiahub.utils import (
    require_choice,
    require_email,
    require_text,
    require_url,
    slugify,
    to_naive_utc,
    utcnow,
)


def test_slugify_handles_whitespace_and_unicode():
    assert slugify("  Café au Lait  ") == "cafe-au-lait"
    assert slugify("Hello!! World??") == "hello-world"
    assert slugify("🎉🎉") == ""


def test_slugify_truncates_without_trailing_dash():
    assert slugify("Queer Book Club Meetup", max_length=11) == "queer-book"


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None


def test_to_naive_utc_converts_offsets():
    aware = datetime(2024, 6, 1, 9, 0, tzinfo=timezone(timedelta(hours=-4)))
    assert to_naive_utc(aware) == datetime(2024, 6, 1, 13, 0)
    naive = datetime(2024, 6, 1, 9, 0)
    assert to_naive_utc(naive) is naive
    assert to_naive_utc(None) is None


def test_require_email_normalizes():
    assert require_email("  Person@Example.COM ") == "person@example.com"
    with pytest.raises(ValidationError):
        require_email("person@example")


def test_require_text_bounds():
    assert require_text("  hello  ", "Greeting") == "hello"
    assert require_text("   ", "Notes", optional=True) is None
    with pytest.raises(ValidationError, match="Greeting is required"):
        require_text(None, "Greeting")
    with pytest.raises(ValidationError, match="at least 3"):
        require_text("hi", "Greeting", min_length=3)
    with pytest.raises(ValidationError, match="at most 5"):
        require_text("hello there", "Greeting", max_length=5)


def test_require_url():
    assert require_url(" https://example.com/rsvp ", "RSVP URL") == "https://example.com/rsvp"
    with pytest.raises(ValidationError, match="RSVP URL must be a valid URL"):
        require_url("javascript:alert(1)", "RSVP URL")


def test_require_choice_lists_options():
    assert require_choice(" Going ", "Status", {"going", "interested"}) == "going"
    with pytest.raises(ValidationError) as excinfo:
        require_choice("maybe", "Status", {"going", "interested"})
    assert excinfo.value.reason == "Status must be one of: going, interested"
