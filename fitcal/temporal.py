"""Wall-clock date/time normalization.

Text that carries no offset marker is always read as local wall-clock time
and is never converted to or from UTC. Only text that carries an explicit
offset (``+05:30``, ``-0800``) or a ``Z`` marker is parsed as an aware
instant, and even then the wall clock and offset are kept as written.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import NamedTuple

from fitcal.models import (
    AllDay,
    MalformedTemporalInput,
    Occurrence,
    Timed,
    format_wall_clock,
    occurrence_end_text,
    occurrence_start_text,
)


DEFAULT_DURATION = timedelta(hours=1)

DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
TIME_PATTERN = re.compile(r"^(\d{2}):(\d{2})(?::(\d{2}))?$")
WALL_CLOCK_PATTERN = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[T ](\d{2}):(\d{2})(?::(\d{2})(?:\.(\d{1,6}))?)?$"
)
OFFSET_PATTERN = re.compile(r"(?:[zZ]|[+-]\d{2}:?\d{2})$")
OFFSET_PARTS_PATTERN = re.compile(r"^([+-])(\d{2}):?(\d{2})$")

DISPLAY_STYLES = ("long", "medium", "short")

__all__ = [
    "DEFAULT_DURATION",
    "DisplayText",
    "FormFields",
    "combine_date_and_time",
    "format_for_display",
    "format_offset",
    "format_wall_clock",
    "occurrence_end_text",
    "occurrence_start_text",
    "parse_date",
    "parse_offset",
    "parse_occurrence",
    "parse_range",
    "parse_time",
    "split_for_form",
]


class DisplayText(NamedTuple):
    date_text: str
    time_text: str | None


class FormFields(NamedTuple):
    date: str
    start_time: str
    end_time: str
    offset: str = ""


def parse_date(value: str | date) -> date:
    if isinstance(value, datetime):
        raise MalformedTemporalInput(f"expected a calendar date, got a datetime: {value!r}")
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    match = DATE_PATTERN.match(text)
    if not match:
        raise MalformedTemporalInput(f"not a YYYY-MM-DD date: {text!r}")
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError as exc:
        raise MalformedTemporalInput(f"invalid calendar date: {text!r}") from exc


def parse_time(value: str | time) -> time:
    if isinstance(value, time):
        return value
    text = str(value or "").strip()
    match = TIME_PATTERN.match(text)
    if not match:
        raise MalformedTemporalInput(f"not a HH:MM time: {text!r}")
    try:
        return time(int(match.group(1)), int(match.group(2)), int(match.group(3) or 0))
    except ValueError as exc:
        raise MalformedTemporalInput(f"invalid time of day: {text!r}") from exc


def _parse_wall_clock(text: str) -> datetime:
    match = WALL_CLOCK_PATTERN.match(text)
    if not match:
        raise MalformedTemporalInput(f"unrecognized date/time text: {text!r}")
    day = parse_date(match.group(1))
    fraction = (match.group(5) or "").ljust(6, "0")
    try:
        clock = time(
            int(match.group(2)),
            int(match.group(3)),
            int(match.group(4) or 0),
            int(fraction or 0),
        )
    except ValueError as exc:
        raise MalformedTemporalInput(f"invalid time of day: {text!r}") from exc
    return datetime.combine(day, clock)


def parse_offset(value: str | None) -> tzinfo | None:
    """``Z``, ``+HH:MM`` or ``+HHMM`` to a fixed offset; blank means wall-clock."""
    text = str(value or "").strip()
    if not text:
        return None
    if text in {"z", "Z"}:
        return timezone.utc
    match = OFFSET_PARTS_PATTERN.match(text)
    if not match or int(match.group(3)) > 59:
        raise MalformedTemporalInput(f"not a UTC offset: {text!r}")
    delta = timedelta(hours=int(match.group(2)), minutes=int(match.group(3)))
    try:
        return timezone(-delta if match.group(1) == "-" else delta)
    except ValueError as exc:
        raise MalformedTemporalInput(f"UTC offset out of range: {text!r}") from exc


def format_offset(value: time | datetime | None) -> str:
    """Offset text of an aware time, ``Z`` for UTC, empty for wall-clock."""
    offset = value.utcoffset() if value is not None else None
    if offset is None:
        return ""
    if offset == timedelta(0):
        return "Z"
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _parse_instant(text: str) -> datetime:
    marker = OFFSET_PATTERN.search(text)
    # The wall-clock part follows the same rules as offset-free text.
    wall_clock = _parse_wall_clock(text[: marker.start()])
    return wall_clock.replace(tzinfo=parse_offset(marker.group(0)))


def parse_occurrence(text: str) -> Occurrence:
    """Parse stored or wire text into an occurrence.

    ``YYYY-MM-DD`` is all-day, ``YYYY-MM-DDTHH:MM[:SS]`` (``T`` or space) is a
    wall-clock timed occurrence, and a trailing offset or ``Z`` marks the
    only case read as an instant.
    """
    raw = str(text or "").strip()
    if not raw:
        raise MalformedTemporalInput("empty date/time text")
    if DATE_PATTERN.match(raw):
        return AllDay(parse_date(raw))
    if OFFSET_PATTERN.search(raw) and len(raw) > 10:
        instant = _parse_instant(raw)
        return Timed(date=instant.date(), start=instant.timetz().replace(microsecond=0))
    wall_clock = _parse_wall_clock(raw)
    return Timed(date=wall_clock.date(), start=wall_clock.time().replace(microsecond=0))


def parse_range(start_text: str, end_text: str | None = None) -> Occurrence:
    occurrence = parse_occurrence(start_text)
    if isinstance(occurrence, AllDay) or not str(end_text or "").strip():
        return occurrence
    end = parse_occurrence(str(end_text))
    if isinstance(end, AllDay):
        # Date-only end on a timed start carries no wall-clock information.
        return occurrence
    start_at = occurrence.start_at
    end_at = end.start_at
    if (start_at.tzinfo is None) != (end_at.tzinfo is None):
        raise MalformedTemporalInput(
            f"start {start_text!r} and end {end_text!r} mix offset and wall-clock text"
        )
    return Timed(date=occurrence.date, start=occurrence.start, end=end_at)


def combine_date_and_time(
    day: str | date,
    start_time: str | time | None = None,
    end_time: str | time | None = None,
    offset: str | None = None,
    *,
    default_end: bool = True,
) -> Occurrence:
    """Build an occurrence from form fields.

    No start time gives an all-day occurrence. A start time without an end
    time gets an end exactly one hour later in wall-clock terms, which may
    fall on the next day, unless ``default_end`` is false. A non-blank
    ``offset`` is attached to both start and end as written.
    """
    parsed_day = parse_date(day)
    if start_time is None or (isinstance(start_time, str) and not start_time.strip()):
        return AllDay(parsed_day)
    zone = parse_offset(offset)
    start = parse_time(start_time).replace(tzinfo=zone)
    start_at = datetime.combine(parsed_day, start)
    end_at: datetime | None
    if end_time is None or (isinstance(end_time, str) and not end_time.strip()):
        end_at = start_at + DEFAULT_DURATION if default_end else None
    else:
        end_at = datetime.combine(parsed_day, parse_time(end_time).replace(tzinfo=zone))
        if end_at < start_at:
            end_at += timedelta(days=1)
    return Timed(date=parsed_day, start=start, end=end_at)


def _format_date(value: date, style: str) -> str:
    if style == "long":
        return f"{value:%A}, {value:%B} {value.day}, {value.year}"
    if style == "medium":
        return f"{value:%b} {value.day}, {value.year}"
    return value.isoformat()


def format_for_display(occurrence: Occurrence, style: str = "long") -> DisplayText:
    if style not in DISPLAY_STYLES:
        raise ValueError(f"unknown display style: {style!r}")
    date_text = _format_date(occurrence.date, style)
    if isinstance(occurrence, AllDay):
        return DisplayText(date_text, None)
    time_text = occurrence.start.strftime("%H:%M")
    if occurrence.end is not None:
        time_text = f"{time_text} - {occurrence.end:%H:%M}"
        day_delta = (occurrence.end.date() - occurrence.date).days
        if day_delta > 0:
            time_text = f"{time_text} (+{day_delta}d)"
    return DisplayText(date_text, time_text)


def split_for_form(occurrence: Occurrence | None) -> FormFields:
    if occurrence is None:
        return FormFields("", "", "")
    if isinstance(occurrence, AllDay):
        return FormFields(occurrence.date.isoformat(), "", "")
    end_time = f"{occurrence.end:%H:%M}" if occurrence.end is not None else ""
    return FormFields(
        occurrence.date.isoformat(),
        occurrence.start.strftime("%H:%M"),
        end_time,
        format_offset(occurrence.start),
    )
