from __future__ import annotations

from typing import Callable, Iterable, Optional

from fitcal.models import CalendarEvent, occurrence_start_text


# A rule returns True (match), False (decisive mismatch) or None (not applicable).
IdentityRule = Callable[[CalendarEvent, CalendarEvent], Optional[bool]]


def _clean(value: str | None) -> str:
    return str(value or "").strip()


def _same_id(existing: CalendarEvent, incoming: CalendarEvent) -> bool | None:
    left, right = _clean(existing.id), _clean(incoming.id)
    if left and right and left == right:
        return True
    return None


def _same_external_id(existing: CalendarEvent, incoming: CalendarEvent) -> bool | None:
    left, right = _clean(existing.external_id), _clean(incoming.external_id)
    if left and right and left == right:
        return True
    return None


def _same_occurrence_and_title(existing: CalendarEvent, incoming: CalendarEvent) -> bool | None:
    left_start = occurrence_start_text(existing.occurrence)
    right_start = occurrence_start_text(incoming.occurrence)
    left_title, right_title = _clean(existing.title), _clean(incoming.title)
    if not (left_start and right_start and left_title and right_title):
        return None
    return left_start == right_start and left_title == right_title


IDENTITY_RULES: tuple[tuple[str, IdentityRule], ...] = (
    ("id", _same_id),
    ("external_id", _same_external_id),
    ("occurrence_title", _same_occurrence_and_title),
)


def matching_rule(existing: CalendarEvent, incoming: CalendarEvent) -> str | None:
    """Name of the first rule that decides a match, or None when nothing matches."""
    for name, rule in IDENTITY_RULES:
        outcome = rule(existing, incoming)
        if outcome is None:
            continue
        return name if outcome else None
    return None


def identity_matches(existing: CalendarEvent, incoming: CalendarEvent) -> bool:
    return matching_rule(existing, incoming) is not None


def find_match(events: Iterable[CalendarEvent], incoming: CalendarEvent) -> int | None:
    for index, event in enumerate(events):
        if identity_matches(event, incoming):
            return index
    return None


def dedupe_events(events: Iterable[CalendarEvent]) -> list[CalendarEvent]:
    """Keep the first event of every identity group, preserving order."""
    kept: list[CalendarEvent] = []
    for event in events:
        if find_match(kept, event) is None:
            kept.append(event)
    return kept
