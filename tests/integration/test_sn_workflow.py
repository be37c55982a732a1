"""
Integration Tests for full sequencing sessions.

Drives SequencingSession the way the RTE and GUI do: navigation requests,
progress reported by SCOs, SCO exits and state snapshots, over whole
courses loaded from structure files.
"""

import pytest

from config import Settings
from scorm_sn.core.constants import (
    CompletionStatus,
    NavigationReason,
    NavigationRequestType,
    SessionState,
    SuccessStatus,
)
from scorm_sn.core.structure import load_structure
from scorm_sn.sequencing.session import SequencingSession

pytestmark = pytest.mark.integration


@pytest.fixture
def yaml_session(fixtures_dir):
    session = SequencingSession(settings=Settings())
    session.initialize(load_structure(fixtures_dir / "course.yaml"))
    yield session
    session.reset()


class TestLinearCourse:
    """Two modules, walked front to back with progress reported along the way."""

    def test_walkthrough(self, course_spec):
        session = SequencingSession(settings=Settings())
        session.initialize(course_spec)
        tree = session.tree

        result = session.process_navigation_request("start")
        assert result.current_activity_id == "lesson1"
        assert result.launch_resource == "res1"

        session.update_activity_progress("lesson1", completion_status="completed")
        assert tree.get_activity("module1").completion_status is CompletionStatus.INCOMPLETE

        result = session.process_navigation_request("continue")
        assert result.current_activity_id == "lesson2"

        session.update_activity_progress("lesson2", completion_status="completed")
        assert tree.get_activity("module1").completion_status is CompletionStatus.COMPLETED
        assert tree.get_activity("course").completion_status is CompletionStatus.INCOMPLETE

        result = session.process_navigation_request("continue")
        assert result.current_activity_id == "lesson3"
        assert result.launch_resource == "res3"

        session.update_activity_progress("lesson3", completion_status="completed", success_status="passed")
        assert session.process_navigation_request("continue").current_activity_id == "lesson4"
        session.update_activity_progress("lesson4", completion_status="completed", success_status="passed")

        assert tree.get_activity("course").completion_status is CompletionStatus.COMPLETED
        assert tree.get_activity("module2").success_status is SuccessStatus.PASSED
        assert tree.get_activity("course").success_status is SuccessStatus.UNKNOWN

        final = session.terminate()
        assert final.session_state is SessionState.TERMINATED
        assert final.activity_tree_stats.total_activities == 7

    def test_suspend_resume_through_sco_exit(self, course_spec):
        session = SequencingSession(settings=Settings())
        session.initialize(course_spec)
        session.process_navigation_request("start")
        session.process_navigation_request("continue")
        session.update_activity_location("lesson2", "slide7")

        suspended = session.handle_activity_exit("lesson2", "suspend")
        state = session.get_sequencing_state()

        assert suspended.session_state is SessionState.SUSPENDED
        assert state.suspended_activity_id == "lesson2"
        assert state.available_navigation[0] is NavigationRequestType.RESUME_ALL

        resumed = session.process_navigation_request("resumeAll")

        assert resumed.current_activity_id == "lesson2"
        assert session.tree.get_activity("lesson2").location == "slide7"
        assert session.tree.get_activity("lesson2").attempt_count == 1


class TestFixtureCourse:
    """The course.yaml organization: explicit rollup, a shared objective, a limited quiz."""

    def test_explicit_module_rollup(self, yaml_session):
        yaml_session.process_navigation_request("start")

        yaml_session.update_activity_progress("lesson1", completion_status="completed")
        module1 = yaml_session.tree.get_activity("module1")
        assert module1.completion_status is CompletionStatus.INCOMPLETE

        yaml_session.update_activity_progress("lesson2", completion_status="completed")
        assert module1.completion_status is CompletionStatus.COMPLETED

    def test_shared_objective_published(self, yaml_session):
        yaml_session.process_navigation_request("{target=lesson3}choice")

        yaml_session.update_activity_progress("lesson3", success_status="passed")

        state = yaml_session.get_sequencing_state()
        assert state.global_objectives["shared_obj"]["satisfied_status"] is True
        assert state.activity_tree_stats.global_objectives == 1

    def test_quiz_attempt_limit(self, yaml_session):
        for _ in range(2):
            assert yaml_session.process_navigation_request("choice", "quiz").success
            assert yaml_session.process_navigation_request("choice", "lesson3").success

        result = yaml_session.process_navigation_request("choice", "quiz")

        assert not result.success
        assert result.reason is NavigationReason.LIMIT_CONDITION_EXCEEDED
        assert result.current_activity_id == "lesson3"
        assert "quiz" not in yaml_session.handler.get_choice_targets()

    def test_quiz_skipped_by_flow_once_exhausted(self, yaml_session):
        yaml_session.process_navigation_request("choice", "quiz")
        yaml_session.process_navigation_request("choice", "lesson3")
        yaml_session.process_navigation_request("choice", "quiz")
        yaml_session.process_navigation_request("previous")

        result = yaml_session.process_navigation_request("continue")

        assert not result.success
        assert result.reason is NavigationReason.NO_NEXT_ACTIVITY

    def test_logout_ends_session(self, yaml_session):
        yaml_session.process_navigation_request("start")

        result = yaml_session.handle_activity_exit("lesson1", "logout")

        assert result.session_state is SessionState.TERMINATED
        assert yaml_session.get_sequencing_state().available_navigation == []
