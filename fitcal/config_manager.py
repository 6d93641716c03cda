from __future__ import annotations

import errno
import os
import threading
from pathlib import Path
from typing import Any

import yaml

from fitcal.models import AppConfig, default_app_config


MASK = "***"
SECTIONS = ("remote", "calendar", "logging")


def _merge_sections(current: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``updates`` onto ``current`` one known section at a time."""
    unknown = sorted(set(updates) - set(SECTIONS))
    if unknown:
        raise ValueError(f"unknown config section(s): {', '.join(unknown)}")
    merged = {name: dict(current.get(name) or {}) for name in SECTIONS}
    for name, values in updates.items():
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ValueError(f"config section {name!r} must be a mapping")
        merged[name].update(values)
    remote_update = updates.get("remote") or {}
    if str(remote_update.get("api_token", "")).strip() in {"", MASK}:
        # A blank or masked token coming back from the admin form keeps the stored one.
        merged["remote"]["api_token"] = current.get("remote", {}).get("api_token", "")
    return merged


def _render(config: AppConfig) -> str:
    return yaml.safe_dump(config.to_dict(), sort_keys=False, allow_unicode=True, default_flow_style=False)


def _write_text(path: Path, text: str) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    try:
        tmp_path.replace(path)
    except OSError as exc:
        # Bind-mounted single files in containers cannot be replaced atomically.
        if exc.errno != errno.EBUSY:
            raise
        path.write_text(text, encoding="utf-8")
        tmp_path.unlink(missing_ok=True)


class ConfigManager:
    """YAML-backed settings for the remote store, calendar defaults and logging."""

    def __init__(self, config_path: str | os.PathLike[str]) -> None:
        self.config_path = Path(config_path)
        self._lock = threading.RLock()
        if not self.config_path.exists():
            self.save(default_app_config())

    def _read(self) -> dict[str, Any]:
        data = yaml.safe_load(self.config_path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{self.config_path} must contain a mapping of config sections")
        return data

    def load(self) -> AppConfig:
        with self._lock:
            return AppConfig.from_dict(self._read())

    def save(self, config: AppConfig) -> None:
        with self._lock:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            _write_text(self.config_path, _render(config))

    def update(self, payload: dict[str, Any]) -> AppConfig:
        with self._lock:
            config = AppConfig.from_dict(_merge_sections(self.load().to_dict(), payload))
            self.save(config)
            return config

    def masked(self) -> dict[str, Any]:
        config = self.load().to_dict()
        if config["remote"].get("api_token"):
            config["remote"]["api_token"] = MASK
        return config
