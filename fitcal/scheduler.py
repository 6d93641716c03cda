from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fitcal.config_manager import ConfigManager
from fitcal.controller import ReconciliationController
from fitcal.models import RemoteOperationFailed, UnparseableResponse


logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Periodic full refetch of the event list on the running event loop."""

    def __init__(self, controller: ReconciliationController, config_manager: ConfigManager) -> None:
        self.controller = controller
        self.config_manager = config_manager
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._manual_trigger_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return bool(self._task and not self._task.done())

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="fitcal-refresh-scheduler")

    async def stop(self) -> None:
        self._stop_event.set()
        self._manual_trigger_event.set()
        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=5)
            except asyncio.TimeoutError:
                self._task.cancel()
            self._task = None

    def trigger_manual(self) -> None:
        self._manual_trigger_event.set()

    async def run_once(self, trigger: str) -> bool:
        if not self.controller.store.is_configured():
            logger.debug("Skipping %s refresh: remote store is not configured", trigger)
            return False
        try:
            await self.controller.refresh(reason="refetch")
        except (RemoteOperationFailed, UnparseableResponse) as exc:
            logger.warning("%s refresh failed: %s", trigger.capitalize(), exc)
            return False
        return True

    async def _loop(self) -> None:
        # Load once at startup so the list is populated quickly.
        await self.run_once("startup")

        while not self._stop_event.is_set():
            config = self.config_manager.load()
            interval_seconds = max(30, int(config.calendar.refresh_interval_seconds))
            try:
                await asyncio.wait_for(self._manual_trigger_event.wait(), timeout=interval_seconds)
                manual = True
            except asyncio.TimeoutError:
                manual = False
            self._manual_trigger_event.clear()
            if self._stop_event.is_set():
                break
            await self.run_once("manual" if manual else "scheduled")
