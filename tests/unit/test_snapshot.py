"""
Unit tests for SnapshotService.
"""

import asyncio

import pytest

from config import Settings
from scorm_sn.core.constants import SessionState
from scorm_sn.sequencing.session import SequencingSession
from scorm_sn.sequencing.snapshot import SnapshotService


@pytest.fixture
def live_session(course_spec):
    session = SequencingSession(settings=Settings())
    session.initialize(course_spec)
    return session


class TestSnapshotService:
    def test_no_session(self):
        service = SnapshotService(lambda: None, poll_interval=1)

        state = service.get_status()

        assert state.initialized is False
        assert state.session_state is SessionState.NOT_INITIALIZED
        assert service.last_updated is not None

    def test_cached_until_forced(self, live_session):
        service = SnapshotService(lambda: live_session, poll_interval=1)
        assert service.get_status().session_state is SessionState.NOT_STARTED

        live_session.process_navigation_request("start")

        assert service.get_status().session_state is SessionState.NOT_STARTED
        assert service.get_status(force=True).current_activity_id == "lesson1"

    def test_failed_refresh_keeps_last_snapshot(self, live_session, log_messages):
        calls = {"count": 0}

        def provider():
            calls["count"] += 1
            if calls["count"] > 1:
                raise RuntimeError("session store offline")
            return live_session

        service = SnapshotService(provider, poll_interval=1)
        first = service.refresh()
        stamp = service.last_updated

        second = service.refresh()

        assert second is first
        assert service.last_updated == stamp
        assert any("keeping last snapshot" in m for m in log_messages)

    def test_poll_interval_from_settings(self):
        service = SnapshotService(lambda: None)

        assert service.poll_interval > 0

    @pytest.mark.asyncio
    async def test_polling(self, live_session):
        service = SnapshotService(lambda: live_session, poll_interval=0.01)

        await service.start_polling()
        assert service.is_polling
        live_session.process_navigation_request("start")
        await asyncio.sleep(0.05)
        await service.stop_polling()

        assert not service.is_polling
        assert service.get_status().current_activity_id == "lesson1"

    @pytest.mark.asyncio
    async def test_start_polling_twice_is_noop(self):
        service = SnapshotService(lambda: None, poll_interval=0.01)

        await service.start_polling()
        task = service._task
        await service.start_polling()

        assert service._task is task
        await service.stop_polling()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        service = SnapshotService(lambda: None, poll_interval=0.01)

        await service.stop_polling()

        assert not service.is_polling
