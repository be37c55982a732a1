"""
Sequencing snapshot service.

Keeps the last good SequencingState of whichever session is current so that
UI code can read it without touching the engine. Optionally refreshes on an
asyncio polling loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone

from loguru import logger

from config import get_settings
from scorm_sn.sequencing.session import SequencingSession, SequencingState

SessionProvider = Callable[[], SequencingSession | None]


class SnapshotService:
    """
    Caches sequencing state snapshots.

    Usage:
        service = SnapshotService(lambda: current_session)
        await service.start_polling()
        state = service.get_status()
        await service.stop_polling()
    """

    def __init__(self, provider: SessionProvider, poll_interval: float | None = None):
        self.provider = provider
        self.poll_interval = (
            poll_interval
            if poll_interval is not None
            else get_settings().snapshot_poll_interval_seconds
        )
        self._snapshot = SequencingState()
        self._last_updated: datetime | None = None
        self._task: asyncio.Task | None = None

    @property
    def last_updated(self) -> datetime | None:
        return self._last_updated

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done()

    def refresh(self) -> SequencingState:
        """
        Pull a fresh snapshot from the current session.

        A failing session keeps the previous snapshot in place.
        """
        try:
            session = self.provider()
            state = session.get_sequencing_state() if session is not None else SequencingState()
        except Exception as e:
            logger.warning(f"Sequencing snapshot refresh failed, keeping last snapshot: {e}")
            return self._snapshot

        self._snapshot = state
        self._last_updated = datetime.now(timezone.utc)
        return state

    def get_status(self, force: bool = False) -> SequencingState:
        if force or self._last_updated is None:
            return self.refresh()
        return self._snapshot

    async def start_polling(self) -> None:
        if self.is_polling:
            return
        self._task = asyncio.create_task(self._poll())
        logger.debug(f"Snapshot polling started (every {self.poll_interval}s)")

    async def stop_polling(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Snapshot polling stopped")

    async def _poll(self) -> None:
        while True:
            self.refresh()
            await asyncio.sleep(self.poll_interval)
