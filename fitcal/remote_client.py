from __future__ import annotations

import logging
from typing import Any

import requests

from fitcal.models import (
    DEFAULT_COLOR,
    CalendarEvent,
    RemoteConfig,
    RemoteOperationFailed,
    UnparseableResponse,
)
from fitcal.temporal import parse_range


logger = logging.getLogger(__name__)

# Field aliases used by the remote store and by mirrored provider records.
RECORD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "calendar_id", "calendarId"),
    "title": ("title", "task", "summary"),
    "start": ("start", "task_date", "start_ts"),
    "end": ("end", "end_ts"),
    "color": ("color", "backgroundColor"),
    "description": ("description",),
    "external_id": ("external_id", "externalId", "google_event_id", "googleEventId"),
}


def normalize_record(record: dict[str, Any]) -> dict[str, Any]:
    """Map alias keys to canonical keys, keeping only keys that are present."""
    normalized: dict[str, Any] = {}
    for canonical, aliases in RECORD_ALIASES.items():
        for alias in aliases:
            if alias in record and record[alias] not in (None, ""):
                normalized[canonical] = record[alias]
                break
        else:
            if any(alias in record for alias in aliases):
                normalized[canonical] = None
    return normalized


def event_from_record(record: dict[str, Any], default_color: str = DEFAULT_COLOR) -> CalendarEvent:
    """Build a CalendarEvent from a remote or provider record.

    Raises ``ValueError`` (``MalformedTemporalInput`` for bad dates) when the
    record lacks a title or a readable start.
    """
    if not isinstance(record, dict):
        raise ValueError(f"event record must be an object, got {type(record).__name__}")
    data = normalize_record(record)
    occurrence = parse_range(str(data.get("start") or ""), data.get("end"))
    external_id = str(data.get("external_id") or "").strip() or None
    description = data.get("description")
    return CalendarEvent(
        id=str(data.get("id") or "").strip(),
        title=str(data.get("title") or "").strip(),
        occurrence=occurrence,
        external_id=external_id,
        description=str(description) if description not in (None, "") else None,
        color=str(data.get("color") or "").strip() or default_color,
    )


def extract_event_list(payload: Any) -> list[dict[str, Any]]:
    """Accept either a bare list or an ``{"events": [...]}`` wrapper."""
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict) and isinstance(payload.get("events"), list):
        items = payload["events"]
    else:
        raise UnparseableResponse(f"expected an event list, got {type(payload).__name__}")
    return [item for item in items if isinstance(item, dict)]


class RemoteCalendarStore:
    """REST client for the remote calendar store."""

    def __init__(self, config: RemoteConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self.session = session or requests.Session()

    def is_configured(self) -> bool:
        return bool(self.config.base_url and self.config.user_id)

    def _url(self, *parts: str) -> str:
        base = self.config.base_url.rstrip("/")
        return "/".join([base, *(str(part).strip("/") for part in parts)])

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.api_token:
            headers["Authorization"] = f"Bearer {self.config.api_token}"
        return headers

    def _request(self, method: str, url: str, body: dict[str, Any] | None = None) -> requests.Response:
        kwargs: dict[str, Any] = {"headers": self._headers(), "timeout": self.config.timeout_seconds}
        if body is not None:
            kwargs["json"] = body
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise RemoteOperationFailed(None, f"{type(exc).__name__}: {exc}") from exc
        if not response.ok:
            message = (response.text or response.reason or "").strip()[:300]
            logger.warning("%s %s returned HTTP %s: %s", method, url, response.status_code, message)
            raise RemoteOperationFailed(response.status_code, message or "request failed")
        return response

    @staticmethod
    def _json(response: requests.Response) -> Any:
        if not (response.content or b"").strip():
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise UnparseableResponse(f"response body is not JSON: {response.text[:120]!r}") from exc

    def list_events(self) -> list[dict[str, Any]]:
        response = self._request("GET", self._url("calendar", "events", self.config.user_id))
        return extract_event_list(self._json(response))

    def create_event(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = self._request("POST", self._url("calendar", "create", self.config.user_id), payload)
        body = self._json(response)
        if isinstance(body, dict) and isinstance(body.get("created"), dict):
            body = body["created"]
        if not isinstance(body, dict):
            raise UnparseableResponse("create response is not an event object")
        return body

    def update_event(self, event_id: str, body: dict[str, Any] | None) -> Any:
        """PATCH the event; a None body sends a bodiless update."""
        response = self._request("PATCH", self._url("calendar", event_id), body)
        return self._json(response)

    def delete_event(self, event_id: str) -> None:
        self._request("DELETE", self._url("calendar", event_id))

    def sync_external(self) -> list[dict[str, Any]]:
        response = self._request("POST", self._url("calendar", "sync", self.config.user_id))
        return extract_event_list(self._json(response))

    def external_status(self) -> bool:
        try:
            response = self._request("GET", self._url("calendar", "status", self.config.user_id))
            payload = self._json(response)
        except (RemoteOperationFailed, UnparseableResponse):
            return False
        return bool(isinstance(payload, dict) and payload.get("connected"))
