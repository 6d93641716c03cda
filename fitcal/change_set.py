from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fitcal.models import (
    DEFAULT_COLOR,
    CalendarEvent,
    MalformedTemporalInput,
    Occurrence,
    UnparseableResponse,
    occurrence_end_text,
    occurrence_start_text,
)
from fitcal.temporal import parse_range


CHANGE_FIELDS = ("title", "description", "color", "start", "end")
MERGE_FIELD_ORDER = ("start", "end", "title", "description", "color", "external_id")


@dataclass
class EditedFields:
    """Values submitted by the edit form; the occurrence comes from combine_date_and_time."""

    title: str
    occurrence: Occurrence
    description: str | None = None
    color: str | None = None


@dataclass
class ChangeSet:
    changes: dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.changes)

    def __contains__(self, key: str) -> bool:
        return key in self.changes

    @property
    def fields(self) -> set[str]:
        return set(self.changes)

    def to_body(self) -> dict[str, Any] | None:
        """Request body, or None for a bodiless update."""
        return dict(self.changes) if self.changes else None


@dataclass
class MergeOutcome:
    applied: bool
    applied_fields: list[str]
    event: CalendarEvent


def _optional_text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _color_text(value: Any) -> str:
    return _optional_text(value) or DEFAULT_COLOR


def build_change_set(existing: CalendarEvent, edited: EditedFields) -> ChangeSet:
    title = _optional_text(edited.title)
    if not title:
        raise ValueError("event title must not be empty")

    changes: dict[str, Any] = {}
    if title != _optional_text(existing.title):
        changes["title"] = title
    if _optional_text(edited.description) != _optional_text(existing.description):
        changes["description"] = _optional_text(edited.description)
    if _color_text(edited.color) != _color_text(existing.color):
        changes["color"] = _color_text(edited.color)

    new_start = occurrence_start_text(edited.occurrence)
    if new_start != occurrence_start_text(existing.occurrence):
        changes["start"] = new_start
    new_end = occurrence_end_text(edited.occurrence)
    if (new_end or "") != (occurrence_end_text(existing.occurrence) or ""):
        # None tells the remote store to drop the stored end.
        changes["end"] = new_end
    return ChangeSet(changes)


def build_move_change_set(existing: CalendarEvent, occurrence: Occurrence) -> ChangeSet:
    """Change-set for a drag/drop or resize: only start and end may change."""
    changes: dict[str, Any] = {}
    new_start = occurrence_start_text(occurrence)
    if new_start != occurrence_start_text(existing.occurrence):
        changes["start"] = new_start
    new_end = occurrence_end_text(occurrence)
    if (new_end or "") != (occurrence_end_text(existing.occurrence) or ""):
        changes["end"] = new_end
    return ChangeSet(changes)


def _merged_occurrence(event: CalendarEvent, returned: dict[str, Any]) -> Occurrence:
    start_text = returned["start"] if "start" in returned else occurrence_start_text(event.occurrence)
    end_text = returned["end"] if "end" in returned else occurrence_end_text(event.occurrence)
    try:
        return parse_range(str(start_text or ""), str(end_text) if end_text else None)
    except MalformedTemporalInput as exc:
        raise UnparseableResponse(f"update response carries unreadable start/end: {exc}") from exc


def merge_returned_fields(event: CalendarEvent, returned: dict[str, Any]) -> MergeOutcome:
    """Apply the fields present in an update response onto ``event`` in place.

    Temporal fields are parsed before anything is written so a bad response
    leaves the event untouched.
    """
    occurrence = None
    if "start" in returned or "end" in returned:
        occurrence = _merged_occurrence(event, returned)

    applied_fields: list[str] = []
    if occurrence is not None and occurrence != event.occurrence:
        previous = {
            "start": occurrence_start_text(event.occurrence),
            "end": occurrence_end_text(event.occurrence),
        }
        current = {
            "start": occurrence_start_text(occurrence),
            "end": occurrence_end_text(occurrence),
        }
        event.occurrence = occurrence
        applied_fields.extend(name for name in ("start", "end") if previous[name] != current[name])

    for name in MERGE_FIELD_ORDER:
        if name not in returned or name in ("start", "end"):
            continue
        value = returned.get(name)
        if name == "title":
            text = _optional_text(value)
            if text and text != event.title:
                event.title = text
                applied_fields.append(name)
        elif name == "color":
            text = _optional_text(value)
            if text and text != event.color:
                event.color = text
                applied_fields.append(name)
        else:
            text = _optional_text(value) or None
            if text != getattr(event, name):
                setattr(event, name, text)
                applied_fields.append(name)

    return MergeOutcome(applied=bool(applied_fields), applied_fields=applied_fields, event=event)
