"""Owner of the in-memory calendar event list.

Every operation awaits the remote store in a worker thread and then
mutates the list synchronously, so no partially updated list is ever
visible across a suspension point. The most recently returned record
always wins when two records share an identity.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from fitcal.change_set import ChangeSet, build_move_change_set, merge_returned_fields
from fitcal.identity import dedupe_events, identity_matches, matching_rule
from fitcal.models import (
    DEFAULT_COLOR,
    DEFAULT_PLACEHOLDER_PREFIX,
    CalendarEvent,
    Occurrence,
    RemoteOperationFailed,
    UnparseableResponse,
)
from fitcal.remote_client import RemoteCalendarStore, event_from_record, normalize_record
from fitcal.state_store import StateStore


logger = logging.getLogger(__name__)

LAST_REFETCH_META_KEY = "last_refetch_at"


def _create_payload(event: CalendarEvent) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "title": event.title,
        "start": event.start_text,
        "end": event.end_text,
        "description": event.description or "",
        "color": event.color,
    }
    if event.external_id:
        payload["external_id"] = event.external_id
    return payload


class ReconciliationController:
    def __init__(
        self,
        store: RemoteCalendarStore,
        *,
        state_store: StateStore | None = None,
        default_color: str = DEFAULT_COLOR,
        placeholder_prefix: str = DEFAULT_PLACEHOLDER_PREFIX,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.state_store = state_store
        self.default_color = default_color
        self.placeholder_prefix = placeholder_prefix
        self._clock = clock
        self._events: list[CalendarEvent] = []

    @property
    def events(self) -> list[CalendarEvent]:
        return [event.clone() for event in self._events]

    def get(self, event_id: str) -> CalendarEvent | None:
        index = self._index_of(event_id)
        return self._events[index].clone() if index is not None else None

    def _index_of(self, event_id: str, *, external: bool = False) -> int | None:
        key = str(event_id or "").strip()
        if not key:
            return None
        for index, event in enumerate(self._events):
            value = event.external_id if external else event.id
            if value and value == key:
                return index
        return None

    def _placeholder_id(self) -> str:
        base = f"{self.placeholder_prefix}{int(self._clock() * 1000)}"
        candidate = base
        suffix = 1
        while self._index_of(candidate) is not None:
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    def _audit(self, event_id: str, action: str, **details: Any) -> None:
        if self.state_store is None:
            return
        self.state_store.record_audit_event(event_id=event_id, action=action, details=details)

    def _map_records(self, records: Iterable[Any]) -> list[CalendarEvent]:
        mapped: list[CalendarEvent] = []
        for record in records:
            if isinstance(record, CalendarEvent):
                mapped.append(record.clone())
                continue
            try:
                mapped.append(event_from_record(record, self.default_color))
            except ValueError as exc:
                logger.warning("Skipping unreadable event record %r: %s", record, exc)
        return mapped

    def _settle(self, event: CalendarEvent, anchor: int | None) -> int:
        """Place ``event`` at ``anchor`` (or append) and drop every other entry it matches."""
        if anchor is None:
            self._events.append(event)
            anchor = len(self._events) - 1
        else:
            self._events[anchor] = event
        kept: list[CalendarEvent] = []
        position = anchor
        for index, existing in enumerate(self._events):
            if index == anchor:
                position = len(kept)
                kept.append(existing)
                continue
            if identity_matches(existing, event):
                logger.info(
                    "Dropping %s superseded by %s (rule %s)",
                    existing.id or existing.external_id,
                    event.id,
                    matching_rule(existing, event),
                )
                continue
            kept.append(existing)
        self._events = kept
        return position

    def merge_refetch_batch(self, records: Iterable[Any]) -> list[CalendarEvent]:
        """Replace the list with the authoritative batch, deduplicated keep-first."""
        mapped = self._map_records(records)
        deduped = dedupe_events(mapped)
        dropped = len(mapped) - len(deduped)
        self._events = deduped
        if dropped:
            logger.info("Refetch batch contained %d duplicate record(s)", dropped)
        return self.events

    def merge_incoming_batch(self, records: Iterable[Any]) -> list[CalendarEvent]:
        """Merge a partial batch: incoming records win, unmatched local entries stay."""
        incoming = dedupe_events(self._map_records(records))
        for event in incoming:
            if event.id:
                continue
            # A mirror without a local id keeps the id of the local copy it matches.
            for existing in self._events:
                if existing.id and not existing.pending and identity_matches(existing, event):
                    event.id = existing.id
                    break
        leftover = [
            existing
            for existing in self._events
            if not any(identity_matches(existing, event) for event in incoming)
        ]
        self._events = dedupe_events([*incoming, *leftover])
        return self.events

    async def refresh(self, *, reason: str = "refetch") -> list[CalendarEvent]:
        records = await asyncio.to_thread(self.store.list_events)
        events = self.merge_refetch_batch(records)
        logger.info("Reloaded %d event(s) from the remote store (%s)", len(events), reason)
        self._audit("", reason, count=len(events))
        if self.state_store is not None:
            self.state_store.set_meta(LAST_REFETCH_META_KEY, datetime.now(timezone.utc).isoformat())
        return events

    async def _recover(self, event_id: str, error: Exception) -> None:
        logger.warning("Unreadable response for %s, reloading the list: %s", event_id or "<new>", error)
        await self.refresh(reason="recover_refetch")

    async def apply_create(self, draft: CalendarEvent) -> CalendarEvent | None:
        """Insert ``draft`` optimistically and replace it once the store confirms.

        Returns the confirmed event, or None when the store's answer was
        unreadable and the list was reloaded instead.
        """
        pending = draft.clone()
        pending.id = self._placeholder_id()
        pending.pending = True
        self._events.append(pending)
        placeholder = pending.id

        try:
            record = await asyncio.to_thread(self.store.create_event, _create_payload(pending))
        except RemoteOperationFailed as exc:
            index = self._index_of(placeholder)
            if index is not None:
                del self._events[index]
            self._audit(placeholder, "create_failed", title=pending.title, error=str(exc))
            raise
        except UnparseableResponse as exc:
            await self._recover(placeholder, exc)
            return None

        known = {key: value for key, value in normalize_record(record).items() if value is not None}
        try:
            confirmed = event_from_record({**_create_payload(pending), **known}, self.default_color)
        except ValueError as exc:
            await self._recover(placeholder, exc)
            return None
        if not confirmed.id:
            await self._recover(placeholder, UnparseableResponse("created record carries no id"))
            return None

        anchor = self._index_of(placeholder)
        if anchor is None:
            anchor = next(
                (index for index, event in enumerate(self._events) if identity_matches(event, confirmed)),
                None,
            )
        position = self._settle(confirmed, anchor)
        logger.info("Created event %s (%s)", confirmed.id, confirmed.title)
        self._audit(confirmed.id, "create", placeholder=placeholder, title=confirmed.title)
        return self._events[position].clone()

    async def apply_update(self, target_id: str, change_set: ChangeSet) -> CalendarEvent | None:
        """Send ``change_set`` and merge the returned fields in place.

        Raises KeyError for an unknown id; remote failures leave the list
        untouched and propagate.
        """
        if self._index_of(target_id) is None:
            raise KeyError(target_id)

        try:
            response = await asyncio.to_thread(self.store.update_event, target_id, change_set.to_body())
        except RemoteOperationFailed as exc:
            self._audit(target_id, "update_failed", fields=sorted(change_set.fields), error=str(exc))
            raise
        except UnparseableResponse as exc:
            await self._recover(target_id, exc)
            return self.get(target_id)

        if isinstance(response, dict) and isinstance(response.get("events"), list):
            self.merge_refetch_batch(response["events"])
            self._audit(target_id, "update", fields=sorted(change_set.fields), full_list=True)
            return self.get(target_id)

        if isinstance(response, dict) and isinstance(response.get("updated"), dict):
            returned = normalize_record(response["updated"])
        elif isinstance(response, dict):
            returned = normalize_record(response)
        elif response is None and not change_set:
            returned = {}
        else:
            await self._recover(target_id, UnparseableResponse(f"unexpected update response {response!r}"))
            return self.get(target_id)

        index = self._index_of(target_id)
        if index is None:
            logger.warning("Event %s disappeared while its update was in flight", target_id)
            return None
        event = self._events[index]
        try:
            outcome = merge_returned_fields(event, returned)
        except UnparseableResponse as exc:
            await self._recover(target_id, exc)
            return self.get(target_id)
        if outcome.applied:
            self._settle(event, index)
        logger.info("Updated event %s fields=%s", target_id, outcome.applied_fields)
        self._audit(target_id, "update", fields=outcome.applied_fields)
        return event.clone()

    async def move_event(self, target_id: str, occurrence: Occurrence) -> CalendarEvent | None:
        """Drag/drop or resize: only start and end are sent."""
        index = self._index_of(target_id)
        if index is None:
            raise KeyError(target_id)
        change_set = build_move_change_set(self._events[index], occurrence)
        return await self.apply_update(target_id, change_set)

    async def apply_delete(self, target_id: str) -> bool:
        """Delete remotely, then remove by id, falling back to external id."""
        try:
            await asyncio.to_thread(self.store.delete_event, target_id)
        except RemoteOperationFailed as exc:
            self._audit(target_id, "delete_failed", error=str(exc))
            raise

        index = self._index_of(target_id)
        if index is None:
            index = self._index_of(target_id, external=True)
        if index is None:
            logger.info("Deleted event %s was not in the local list", target_id)
            self._audit(target_id, "delete", removed=False)
            return False
        del self._events[index]
        logger.info("Deleted event %s", target_id)
        self._audit(target_id, "delete", removed=True)
        return True

    async def sync_external(self) -> list[CalendarEvent]:
        """Pull mirrored provider events through the remote store and merge them.

        Mirrors that have no local id yet are persisted on a best-effort
        basis and the list is reloaded afterwards.
        """
        records = await asyncio.to_thread(self.store.sync_external)
        self.merge_incoming_batch(records)
        unsaved = [event for event in self._events if not event.id and event.external_id]
        self._audit("", "sync_external", count=len(self._events), unsaved=len(unsaved))
        if not unsaved:
            return self.events

        results = await asyncio.gather(
            *(asyncio.to_thread(self.store.create_event, _create_payload(event)) for event in unsaved),
            return_exceptions=True,
        )
        for event, result in zip(unsaved, results):
            if isinstance(result, Exception):
                logger.warning("Could not persist mirrored event %s: %s", event.external_id, result)
        try:
            return await self.refresh(reason="refetch")
        except (RemoteOperationFailed, UnparseableResponse) as exc:
            logger.warning("Reload after persisting mirrored events failed: %s", exc)
            return self.events
