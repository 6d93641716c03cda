from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Union


DEFAULT_COLOR = "#28375cff"
DEFAULT_PLACEHOLDER_PREFIX = "local-"


class CalendarError(Exception):
    """Base exception for calendar reconciliation errors."""


class MalformedTemporalInput(CalendarError, ValueError):
    """Date/time text that does not match any accepted shape."""


class RemoteOperationFailed(CalendarError):
    """A create/update/delete/list call to the remote store did not succeed."""

    def __init__(self, status: int | None, message: str) -> None:
        self.status = status
        self.message = message
        prefix = f"HTTP {status}: " if status is not None else ""
        super().__init__(f"{prefix}{message}")


class UnparseableResponse(CalendarError):
    """A successful response whose body cannot be interpreted."""


def format_wall_clock(value: datetime) -> str:
    """Canonical text for a wall-clock datetime, offset only when one was given."""
    if value.tzinfo is None:
        return value.strftime("%Y-%m-%dT%H:%M:%S")
    text = value.isoformat(timespec="seconds")
    if value.utcoffset() == timedelta(0):
        return text[:-6] + "Z"
    return text


@dataclass(frozen=True)
class AllDay:
    date: date

    @property
    def all_day(self) -> bool:
        return True


@dataclass(frozen=True)
class Timed:
    date: date
    start: time
    end: datetime | None = None

    @property
    def all_day(self) -> bool:
        return False

    @property
    def start_at(self) -> datetime:
        return datetime.combine(self.date, self.start)


Occurrence = Union[AllDay, Timed]


def occurrence_start_text(occurrence: Occurrence | None) -> str:
    if occurrence is None:
        return ""
    if isinstance(occurrence, AllDay):
        return occurrence.date.isoformat()
    return format_wall_clock(occurrence.start_at)


def occurrence_end_text(occurrence: Occurrence | None) -> str | None:
    if isinstance(occurrence, Timed) and occurrence.end is not None:
        return format_wall_clock(occurrence.end)
    return None


@dataclass
class CalendarEvent:
    id: str
    title: str
    occurrence: Occurrence
    external_id: str | None = None
    description: str | None = None
    color: str = DEFAULT_COLOR
    pending: bool = False

    def __post_init__(self) -> None:
        if not str(self.title or "").strip():
            raise ValueError("event title must not be empty")

    @property
    def all_day(self) -> bool:
        return self.occurrence.all_day

    @property
    def start_text(self) -> str:
        return occurrence_start_text(self.occurrence)

    @property
    def end_text(self) -> str | None:
        return occurrence_end_text(self.occurrence)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "title": self.title,
            "start": self.start_text,
            "end": self.end_text,
            "all_day": self.all_day,
            "description": self.description,
            "color": self.color,
            "pending": self.pending,
        }

    def clone(self) -> "CalendarEvent":
        return CalendarEvent(
            id=self.id,
            title=self.title,
            occurrence=self.occurrence,
            external_id=self.external_id,
            description=self.description,
            color=self.color,
            pending=self.pending,
        )

    def with_updates(self, **kwargs: Any) -> "CalendarEvent":
        copied = self.clone()
        for key, value in kwargs.items():
            setattr(copied, key, value)
        return copied


@dataclass
class RemoteConfig:
    base_url: str = "http://localhost:3004"
    api_token: str = ""
    user_id: str = ""
    timeout_seconds: int = 15

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RemoteConfig":
        data = data or {}
        return cls(
            base_url=str(data.get("base_url", "http://localhost:3004")).strip() or "http://localhost:3004",
            api_token=str(data.get("api_token", "")).strip(),
            user_id=str(data.get("user_id", "")).strip(),
            timeout_seconds=max(1, int(data.get("timeout_seconds", 15))),
        )


@dataclass
class CalendarConfig:
    default_color: str = DEFAULT_COLOR
    refresh_interval_seconds: int = 300
    placeholder_prefix: str = DEFAULT_PLACEHOLDER_PREFIX

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalendarConfig":
        data = data or {}
        return cls(
            default_color=str(data.get("default_color", DEFAULT_COLOR)).strip() or DEFAULT_COLOR,
            refresh_interval_seconds=max(30, int(data.get("refresh_interval_seconds", 300))),
            placeholder_prefix=str(data.get("placeholder_prefix", DEFAULT_PLACEHOLDER_PREFIX)).strip()
            or DEFAULT_PLACEHOLDER_PREFIX,
        )


@dataclass
class LoggingConfig:
    level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LoggingConfig":
        data = data or {}
        level = str(data.get("level", "INFO")).strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            level = "INFO"
        return cls(level=level)


@dataclass
class AppConfig:
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            remote=RemoteConfig.from_dict(data.get("remote")),
            calendar=CalendarConfig.from_dict(data.get("calendar")),
            logging=LoggingConfig.from_dict(data.get("logging")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()
