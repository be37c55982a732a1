"""
Unit tests for the SequencingSession facade.
"""

import pytest

from config import Settings
from scorm_sn.core.constants import (
    CompletionStatus,
    NavigationReason,
    NavigationRequestType,
    SessionState,
    SuccessStatus,
    TrackedField,
)
from scorm_sn.core.errors import ActivityNotFoundError, SessionStateError, TreeConstructionError
from scorm_sn.sequencing.session import SequencingSession, SequencingState
from scorm_sn.sequencing.tracking import InMemoryTrackedValues, TrackedValueAdapter


@pytest.fixture
def session(course_spec):
    session = SequencingSession(settings=Settings())
    session.initialize(course_spec)
    return session


class ReentrantAdapter(InMemoryTrackedValues):
    """Calls back into the session while a request is being processed."""

    def __init__(self, callback):
        super().__init__()
        self.callback = callback
        self.armed = False
        self.results = []

    def get_tracked_value(self, activity_id, field):
        if self.armed and field is TrackedField.COMPLETION_STATUS:
            self.results.append(self.callback())
        return super().get_tracked_value(activity_id, field)


class TestLifecycle:
    def test_not_initialized(self):
        session = SequencingSession(settings=Settings())

        result = session.process_navigation_request("start")
        state = session.get_sequencing_state()

        assert not result.success
        assert result.reason is NavigationReason.NOT_INITIALIZED
        assert result.session_state is SessionState.NOT_INITIALIZED
        assert state == SequencingState()
        assert state.session_state is SessionState.NOT_INITIALIZED

    def test_initialize(self, course_spec):
        session = SequencingSession(settings=Settings())

        state = session.initialize(course_spec)

        assert state.initialized
        assert state.session_state is SessionState.NOT_STARTED
        assert state.session_id.startswith("sn_")
        assert len(state.session_id) == 15
        assert state.current_activity_id is None
        assert state.activity_tree_stats.total_activities == 7
        assert state.available_navigation == [
            NavigationRequestType.START,
            NavigationRequestType.CHOICE,
        ]
        assert state.control_mode_flags == {
            "choice": True, "choiceExit": True, "flow": True, "forwardOnly": False,
        }
        assert not state.root_has_begun

    def test_reinitialize_raises(self, session, course_spec):
        with pytest.raises(SessionStateError):
            session.initialize(course_spec)

    def test_bad_tree_leaves_session_uninitialized(self, course_spec):
        session = SequencingSession(settings=Settings(max_activity_depth=1))

        with pytest.raises(TreeConstructionError):
            session.initialize(course_spec)

        assert not session.is_initialized

    def test_terminate(self, session):
        session.process_navigation_request("start")

        final = session.terminate()

        assert final.session_state is SessionState.TERMINATED
        assert final.current_activity_id is None
        assert not session.is_initialized
        assert session.get_sequencing_state().initialized is False
        assert session.process_navigation_request("start").reason is NavigationReason.NOT_INITIALIZED

    def test_terminate_uninitialized(self):
        assert SequencingSession(settings=Settings()).terminate() == SequencingState()

    def test_reset_allows_reinitialize(self, session, course_spec):
        first_id = session.session_id

        session.reset()
        state = session.initialize(course_spec)

        assert state.session_id != first_id
        assert state.session_state is SessionState.NOT_STARTED

    def test_sessions_are_independent(self, course_spec):
        first = SequencingSession(settings=Settings())
        second = SequencingSession(settings=Settings())
        first.initialize(course_spec)
        second.initialize(course_spec)

        first.process_navigation_request("start")

        assert first.session_id != second.session_id
        assert first.global_objectives is not second.global_objectives
        assert first.get_sequencing_state().current_activity_id == "lesson1"
        assert second.get_sequencing_state().session_state is SessionState.NOT_STARTED
        assert second.tree.get_activity("lesson1").attempt_count == 0

    def test_default_adapter(self):
        session = SequencingSession(settings=Settings())

        assert isinstance(session.adapter, TrackedValueAdapter)


class TestNavigation:
    def test_request_strings(self, session):
        assert session.process_navigation_request("start").current_activity_id == "lesson1"
        assert session.process_navigation_request("{target=lesson4}choice").current_activity_id == "lesson4"
        assert session.process_navigation_request("choice", "lesson2").current_activity_id == "lesson2"

    def test_invalid_request(self, session):
        result = session.process_navigation_request("jump")

        assert not result.success
        assert result.reason is NavigationReason.INVALID_REQUEST
        assert result.request is None
        assert result.session_state is SessionState.NOT_STARTED

    def test_state_follows_navigation(self, session):
        session.process_navigation_request("start")
        session.process_navigation_request("continue")

        state = session.get_sequencing_state()

        assert state.session_state is SessionState.ACTIVE
        assert state.current_activity_id == "lesson2"
        assert state.root_has_begun
        assert NavigationRequestType.PREVIOUS in state.available_navigation
        assert state.to_dict()["available_navigation"][0] == "continue"

    def test_busy_while_request_in_flight(self, course_spec):
        session = SequencingSession(settings=Settings())
        adapter = ReentrantAdapter(lambda: session.process_navigation_request("exit"))
        session.adapter = adapter
        session.initialize(course_spec)
        session.process_navigation_request("start")

        adapter.armed = True
        result = session.process_navigation_request("continue")

        assert result.success
        assert result.current_activity_id == "lesson2"
        assert adapter.results
        assert all(inner.reason is NavigationReason.BUSY for inner in adapter.results)

    def test_state_while_request_in_flight(self, course_spec):
        session = SequencingSession(settings=Settings())
        adapter = ReentrantAdapter(lambda: session.get_sequencing_state())
        session.adapter = adapter
        session.initialize(course_spec)
        session.process_navigation_request("start")

        adapter.armed = True
        session.process_navigation_request("continue")
        adapter.armed = False

        inner = adapter.results[0]
        assert inner.sequencing_request_pending
        assert inner.available_navigation == []
        assert not session.get_sequencing_state().sequencing_request_pending

    def test_progress_update_mid_request_raises(self, course_spec):
        session = SequencingSession(settings=Settings())
        adapter = ReentrantAdapter(
            lambda: session.update_activity_progress("lesson1", completion_status="completed")
        )
        session.adapter = adapter
        session.initialize(course_spec)
        session.process_navigation_request("start")

        adapter.armed = True
        with pytest.raises(SessionStateError):
            session.process_navigation_request("continue")

        adapter.armed = False
        assert session.get_sequencing_state().current_activity_id == "lesson1"
        assert session.process_navigation_request("continue").success

    def test_suspended_state_flags(self, session):
        session.process_navigation_request("start")
        session.process_navigation_request("suspendAll")

        state = session.get_sequencing_state()

        assert state.session_state is SessionState.SUSPENDED
        assert state.suspended_activity_id == "lesson1"
        assert NavigationRequestType.RESUME_ALL in state.available_navigation


class TestActivityExit:
    @pytest.mark.parametrize(
        ("exit_type", "expected_state"),
        [
            ("suspend", SessionState.SUSPENDED),
            ("logout", SessionState.TERMINATED),
            ("normal", SessionState.ACTIVE),
            ("time-out", SessionState.ACTIVE),
        ],
    )
    def test_exit_type_mapping(self, session, exit_type, expected_state):
        session.process_navigation_request("start")

        result = session.handle_activity_exit("lesson1", exit_type)

        assert result.success
        assert result.session_state is expected_state

    def test_normal_exit_ends_attempt(self, session):
        session.process_navigation_request("start")

        result = session.handle_activity_exit("lesson1", "normal")

        assert result.request.type is NavigationRequestType.EXIT
        assert not session.tree.get_activity("lesson1").is_active

    def test_unknown_exit_type(self, session):
        session.process_navigation_request("start")

        result = session.handle_activity_exit("lesson1", "crash")

        assert result.reason is NavigationReason.INVALID_REQUEST
        assert session.tree.get_activity("lesson1").is_active

    def test_exit_of_other_activity(self, session):
        session.process_navigation_request("start")

        result = session.handle_activity_exit("lesson3", "normal")

        assert result.reason is NavigationReason.INVALID_REQUEST
        assert result.current_activity_id == "lesson1"

    def test_exit_before_initialize(self):
        result = SequencingSession(settings=Settings()).handle_activity_exit("lesson1", "normal")

        assert result.reason is NavigationReason.NOT_INITIALIZED


class TestTracking:
    def test_progress_rolls_up(self, session):
        session.process_navigation_request("start")

        result = session.update_activity_progress("lesson1", completion_status="completed")

        assert "module1" in result.changed
        assert session.tree.get_activity("lesson1").completion_status is CompletionStatus.COMPLETED
        assert session.tree.get_activity("module1").completion_status is CompletionStatus.INCOMPLETE
        assert session.adapter.values_for("lesson1")["completion_status"] == "completed"

    def test_score_and_success(self, session):
        session.update_activity_progress("lesson3", success_status="passed", score_scaled=0.85)

        lesson3 = session.tree.get_activity("lesson3")
        assert lesson3.success_status is SuccessStatus.PASSED
        assert lesson3.objective_measure == pytest.approx(0.85)
        assert session.tree.get_activity("module2").objective_measure == pytest.approx(0.85)

    def test_invalid_value_ignored(self, session, log_messages):
        session.update_activity_progress("lesson1", completion_status="done")

        assert session.tree.get_activity("lesson1").completion_status is CompletionStatus.UNKNOWN
        assert any("Ignoring invalid tracked value" in m for m in log_messages)

    def test_out_of_range_measures_do_not_reach_rollup(self, session, log_messages):
        session.update_activity_progress("lesson1", progress_measure=0.5)

        session.update_activity_progress("lesson2", progress_measure=float("nan"))
        session.update_activity_progress("lesson1", progress_measure=7.5)
        session.update_activity_progress("lesson3", score_scaled=42.0)

        assert session.tree.get_activity("lesson1").progress_measure == pytest.approx(0.5)
        assert session.tree.get_activity("lesson2").progress_measure is None
        assert session.tree.get_activity("module1").progress_measure == pytest.approx(0.5)
        assert session.tree.get_activity("lesson3").objective_measure is None
        assert session.tree.get_activity("module2").objective_measure is None
        assert sum("Ignoring invalid tracked value" in m for m in log_messages) >= 3

    def test_not_attempted_reads_as_unknown(self, session):
        session.update_activity_progress("lesson1", completion_status="not attempted")

        assert session.tree.get_activity("lesson1").completion_status is CompletionStatus.UNKNOWN

    def test_unknown_activity(self, session):
        with pytest.raises(ActivityNotFoundError):
            session.update_activity_progress("lesson9", completion_status="completed")

    def test_progress_before_initialize(self):
        with pytest.raises(SessionStateError):
            SequencingSession(settings=Settings()).update_activity_progress("lesson1")

    def test_location(self, session):
        session.update_activity_location("lesson2", "page4")

        assert session.tree.get_activity("lesson2").location == "page4"
        assert session.adapter.values_for("lesson2")["location"] == "page4"

    def test_rollup_disabled_by_settings(self, course_spec):
        session = SequencingSession(settings=Settings(enable_rollup_processing=False))
        session.initialize(course_spec)

        result = session.update_activity_progress("lesson1", completion_status="completed")

        assert result.changed == {}
        assert session.tree.get_activity("module1").completion_status is CompletionStatus.UNKNOWN

    def test_global_objectives_in_state(self, item_in, course_spec):
        spec = course_spec
        item_in(spec, "lesson3")["objectives"] = {
            "primary": {"objectiveId": "lesson3_obj",
                        "mapInfo": [{"targetObjectiveId": "shared", "writeSatisfiedStatus": True}]},
        }
        fresh = SequencingSession(settings=Settings())
        fresh.initialize(spec)

        fresh.update_activity_progress("lesson3", success_status="passed")

        assert fresh.get_sequencing_state().global_objectives == {
            "shared": {"satisfied_status": True, "normalized_measure": None},
        }

    def test_global_objectives_disabled(self, item_in, course_spec):
        item_in(course_spec, "lesson3")["objectives"] = {
            "primary": {"objectiveId": "lesson3_obj",
                        "mapInfo": [{"targetObjectiveId": "shared", "writeSatisfiedStatus": True}]},
        }
        session = SequencingSession(settings=Settings(enable_global_objectives=False))
        session.initialize(course_spec)

        session.update_activity_progress("lesson3", success_status="passed")

        assert session.get_sequencing_state().global_objectives == {}


class TestStatus:
    def test_status_before_initialize(self):
        status = SequencingSession(settings=Settings()).get_status()

        assert status["version"] == "1.0.0"
        assert status["initialized"] is False
        assert status["session_state"] == "not_initialized"
        assert status["capabilities"]["max_activity_depth"] == 10

    def test_status_of_live_session(self, session):
        session.process_navigation_request("start")

        status = session.get_status()

        assert status["initialized"] is True
        assert status["session_id"] == session.session_id
        assert status["session_state"] == "active"
        assert status["capabilities"]["default_control_mode"]["flow"] is True
        assert "SCORM 2004 4th Edition" in status["supported_versions"]
