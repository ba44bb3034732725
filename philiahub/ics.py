"""iCalendar (.ics) export."""

from __future__ import annotations

import html
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from philiahub.models import Event


_tag_pattern = re.compile(r"<[^>]+>")


def _ensure_utc(dt: datetime) -> datetime:
    """Return a timezone-aware UTC datetime."""

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _format_utc(dt: datetime) -> str:
    """Format a datetime as an RFC5545 UTC timestamp."""

    return _ensure_utc(dt).replace(microsecond=0).strftime("%Y%m%dT%H%M%SZ")


def _escape_text(value: str | None) -> str:
    """Escape text for ICS fields and strip any HTML tags."""

    if not value:
        return ""
    stripped = _tag_pattern.sub("", html.unescape(value))
    normalized = stripped.replace("\r\n", "\n").replace("\r", "\n")
    return (
        normalized.replace("\\", "\\\\")
        .replace(";", r"\;")
        .replace(",", r"\,")
        .replace("\n", r"\n")
    )


def _fold(line: str) -> list[str]:
    """Fold a content line at 75 octets as RFC5545 requires."""
    encoded = line.encode("utf-8")
    if len(encoded) <= 75:
        return [line]
    parts: list[str] = []
    current = ""
    for char in line:
        if len((current + char).encode("utf-8")) > 75:
            parts.append(current)
            current = " "
        current += char
    parts.append(current)
    return parts


def _event_lines(event: Event, dtstamp: str, base_url: str | None) -> list[str]:
    description = event.short_description
    if event.long_description:
        description = f"{description}\n\n{event.long_description}"
    location = event.formatted_address
    if event.room_notes:
        location = f"{location} ({event.room_notes})"
    lines = [
        "BEGIN:VEVENT",
        f"UID:{event.id}@philiahub",
        f"DTSTAMP:{dtstamp}",
        f"DTSTART:{_format_utc(event.starts_at)}",
        f"DTEND:{_format_utc(event.ends_at)}",
        f"SUMMARY:{_escape_text(event.title)}",
        f"DESCRIPTION:{_escape_text(description)}",
        f"LOCATION:{_escape_text(location)}",
        f"GEO:{event.latitude};{event.longitude}",
    ]
    if base_url:
        lines.append(f"URL:{base_url.rstrip('/')}/events/{event.slug}")
    if event.status == "removed":
        lines.append("STATUS:CANCELLED")
    lines.append("END:VEVENT")
    return lines


def generate_calendar(
    events: Iterable[Event],
    *,
    now: datetime | None = None,
    base_url: str | None = None,
    name: str | None = None,
) -> str:
    """Return ICS text with one VEVENT per event."""

    dtstamp = _format_utc(now or datetime.now(UTC))
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Philia Hub//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
    ]
    if name:
        lines.append(f"X-WR-CALNAME:{_escape_text(name)}")
    for event in events:
        lines.extend(_event_lines(event, dtstamp, base_url))
    lines.append("END:VCALENDAR")
    folded = [part for line in lines for part in _fold(line)]
    return "\r\n".join(folded) + "\r\n"


def generate_ics(
    event: Event, *, now: datetime | None = None, base_url: str | None = None
) -> str:
    """Return ICS text for a single event."""

    return generate_calendar([event], now=now, base_url=base_url)
