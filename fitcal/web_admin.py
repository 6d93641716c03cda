from __future__ import annotations

import asyncio
import os
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from fitcal.change_set import EditedFields, build_change_set
from fitcal.config_manager import ConfigManager
from fitcal.controller import LAST_REFETCH_META_KEY, ReconciliationController
from fitcal.models import (
    CalendarEvent,
    MalformedTemporalInput,
    RemoteOperationFailed,
    Timed,
    UnparseableResponse,
)
from fitcal.remote_client import RemoteCalendarStore
from fitcal.scheduler import RefreshScheduler
from fitcal.state_store import StateStore
from fitcal.temporal import combine_date_and_time, format_for_display, split_for_form


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class EventForm(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    date: str
    start_time: str | None = None
    end_time: str | None = None
    offset: str | None = None
    description: str | None = None
    color: str | None = None


class MoveRequest(BaseModel):
    date: str
    start_time: str | None = None
    end_time: str | None = None
    offset: str | None = None


class AppContext:
    def __init__(self, config_path: str, state_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        self.state_store = StateStore(state_path)
        config = self.config_manager.load()
        self.store = RemoteCalendarStore(config.remote)
        self.controller = ReconciliationController(
            self.store,
            state_store=self.state_store,
            default_color=config.calendar.default_color,
            placeholder_prefix=config.calendar.placeholder_prefix,
        )
        self.scheduler = RefreshScheduler(self.controller, self.config_manager)

    def apply_config(self) -> None:
        config = self.config_manager.load()
        self.store.config = config.remote
        self.controller.default_color = config.calendar.default_color
        self.controller.placeholder_prefix = config.calendar.placeholder_prefix


def _event_payload(event: CalendarEvent) -> dict[str, Any]:
    payload = event.to_dict()
    display = format_for_display(event.occurrence)
    payload["display"] = {"date": display.date_text, "time": display.time_text}
    return payload


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, MalformedTemporalInput):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, RemoteOperationFailed):
        return HTTPException(status_code=502, detail=f"remote store: {exc}")
    if isinstance(exc, UnparseableResponse):
        return HTTPException(status_code=502, detail=f"remote store response: {exc}")
    if isinstance(exc, KeyError):
        return HTTPException(status_code=404, detail="event not found")
    return HTTPException(status_code=400, detail=str(exc))


def create_app() -> FastAPI:
    config_path = os.getenv("FITCAL_CONFIG_PATH", "config.yaml")
    state_path = os.getenv("FITCAL_STATE_PATH", "data/state.db")
    context = AppContext(config_path=config_path, state_path=state_path)

    app = FastAPI(title="fitcal", version="0.1.0")
    app.state.context = context

    @app.on_event("startup")
    async def _startup() -> None:
        app.state.context.scheduler.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await app.state.context.scheduler.stop()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return app.state.context.config_manager.masked()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        try:
            app.state.context.config_manager.update(request.payload)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        app.state.context.apply_config()
        return {"message": "config updated", "config": app.state.context.config_manager.masked()}

    @app.get("/api/events")
    def list_events() -> dict[str, Any]:
        return {"events": [_event_payload(event) for event in app.state.context.controller.events]}

    @app.get("/api/events/{event_id}/form")
    def event_form(event_id: str) -> dict[str, Any]:
        event = app.state.context.controller.get(event_id)
        if event is None:
            raise HTTPException(status_code=404, detail="event not found")
        fields = split_for_form(event.occurrence)
        return {
            "title": event.title,
            "date": fields.date,
            "start_time": fields.start_time,
            "end_time": fields.end_time,
            "offset": fields.offset,
            "description": event.description or "",
            "color": event.color,
        }

    @app.post("/api/events")
    async def create_event(form: EventForm) -> dict[str, Any]:
        controller = app.state.context.controller
        try:
            occurrence = combine_date_and_time(form.date, form.start_time, form.end_time, form.offset)
            draft = CalendarEvent(
                id="",
                title=form.title.strip(),
                occurrence=occurrence,
                description=(form.description or "").strip() or None,
                color=(form.color or "").strip() or controller.default_color,
            )
            created = await controller.apply_create(draft)
        except (ValueError, RemoteOperationFailed, UnparseableResponse) as exc:
            raise _http_error(exc) from exc
        if created is None:
            return {"event": None, "events": [_event_payload(event) for event in controller.events]}
        return {"event": _event_payload(created)}

    @app.patch("/api/events/{event_id}")
    async def update_event(event_id: str, form: EventForm) -> dict[str, Any]:
        controller = app.state.context.controller
        existing = controller.get(event_id)
        if existing is None:
            raise HTTPException(status_code=404, detail="event not found")
        # A blank end on an event stored without one stays blank.
        keeps_open_end = isinstance(existing.occurrence, Timed) and existing.occurrence.end is None
        try:
            edited = EditedFields(
                title=form.title,
                occurrence=combine_date_and_time(
                    form.date,
                    form.start_time,
                    form.end_time,
                    form.offset,
                    default_end=not keeps_open_end,
                ),
                description=form.description,
                color=form.color,
            )
            change_set = build_change_set(existing, edited)
            updated = await controller.apply_update(event_id, change_set)
        except (ValueError, KeyError, RemoteOperationFailed, UnparseableResponse) as exc:
            raise _http_error(exc) from exc
        return {
            "changes": change_set.changes,
            "event": _event_payload(updated) if updated is not None else None,
        }

    @app.post("/api/events/{event_id}/move")
    async def move_event(event_id: str, request: MoveRequest) -> dict[str, Any]:
        controller = app.state.context.controller
        try:
            occurrence = combine_date_and_time(request.date, request.start_time, request.end_time, request.offset)
            moved = await controller.move_event(event_id, occurrence)
        except (ValueError, KeyError, RemoteOperationFailed, UnparseableResponse) as exc:
            raise _http_error(exc) from exc
        return {"event": _event_payload(moved) if moved is not None else None}

    @app.delete("/api/events/{event_id}")
    async def delete_event(event_id: str) -> dict[str, Any]:
        try:
            removed = await app.state.context.controller.apply_delete(event_id)
        except RemoteOperationFailed as exc:
            raise _http_error(exc) from exc
        return {"removed": removed}

    @app.post("/api/events/refresh")
    async def refresh_events() -> dict[str, Any]:
        try:
            events = await app.state.context.controller.refresh()
        except (RemoteOperationFailed, UnparseableResponse) as exc:
            raise _http_error(exc) from exc
        return {"events": [_event_payload(event) for event in events]}

    @app.post("/api/refresh/run")
    def trigger_refresh() -> dict[str, str]:
        app.state.context.scheduler.trigger_manual()
        return {"message": "refresh triggered"}

    @app.get("/api/refresh/status")
    def refresh_status() -> dict[str, Any]:
        return {
            "scheduler_running": app.state.context.scheduler.running,
            "last_refetch_at": app.state.context.state_store.get_meta(LAST_REFETCH_META_KEY),
        }

    @app.post("/api/events/sync")
    async def sync_events() -> dict[str, Any]:
        try:
            events = await app.state.context.controller.sync_external()
        except (RemoteOperationFailed, UnparseableResponse) as exc:
            raise _http_error(exc) from exc
        return {"events": [_event_payload(event) for event in events]}

    @app.get("/api/calendar/status")
    async def calendar_status() -> dict[str, bool]:
        connected = await asyncio.to_thread(app.state.context.store.external_status)
        return {"connected": connected}

    @app.get("/api/audit")
    def recent_audit(limit: int = 100, action: str | None = None) -> dict[str, Any]:
        return {"events": app.state.context.state_store.recent_audit_events(limit=limit, action=action)}

    return app
