"""
Sequencing Session Facade.

The only entry point external collaborators use. Owns one activity tree,
one global objective store, the rule evaluator, the rollup engine and the
navigation handler; two sessions never share any of them.

Lifecycle:
    session = SequencingSession()
    session.initialize(tree_spec)
    session.process_navigation_request("start")
    ...
    final_state = session.terminate()

At most one navigation request is processed at a time. A request arriving
while another is in flight (including re-entrant calls made by the tracked
value adapter) gets a "busy" result; it is never queued.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from config import Settings, get_settings
from scorm_sn.core.constants import (
    ExitType,
    NavigationReason,
    NavigationRequestType,
    SN_SERVICE_VERSION,
    SUPPORTED_VERSIONS,
    SessionState,
    TrackedField,
)
from scorm_sn.core.errors import SessionStateError
from scorm_sn.core.structure import ActivitySpec
from scorm_sn.sequencing.activity_tree import ActivityTreeManager, ControlMode, TreeStats
from scorm_sn.sequencing.navigation_handler import (
    NavigationRequest,
    NavigationRequestHandler,
    NavigationResult,
)
from scorm_sn.sequencing.objectives import GlobalObjectiveStore
from scorm_sn.sequencing.rollup_engine import RollupEngine, RollupResult
from scorm_sn.sequencing.rule_evaluator import Clock, SequencingRuleEvaluator
from scorm_sn.sequencing.tracking import (
    InMemoryTrackedValues,
    TrackedValueAdapter,
    pull_tracked_values,
)

# cmi.exit value -> navigation request issued on the SCO's behalf
EXIT_TYPE_REQUESTS = {
    ExitType.SUSPEND: NavigationRequestType.SUSPEND_ALL,
    ExitType.NORMAL: NavigationRequestType.EXIT,
    ExitType.LOGOUT: NavigationRequestType.EXIT_ALL,
    ExitType.TIME_OUT: NavigationRequestType.UNQUALIFIED_EXIT,
}


@dataclass
class SequencingState:
    """Snapshot of a session, as surfaced to the GUI and RTE."""

    initialized: bool = False
    session_id: str | None = None
    session_state: SessionState = SessionState.NOT_INITIALIZED
    current_activity_id: str | None = None
    suspended_activity_id: str | None = None
    activity_tree_stats: TreeStats | None = None
    control_mode_flags: dict[str, bool] = field(default_factory=dict)
    available_navigation: list[NavigationRequestType] = field(default_factory=list)
    global_objectives: dict[str, dict] = field(default_factory=dict)
    root_has_begun: bool = False
    sequencing_request_pending: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "initialized": self.initialized,
            "session_id": self.session_id,
            "session_state": self.session_state.value,
            "current_activity_id": self.current_activity_id,
            "suspended_activity_id": self.suspended_activity_id,
            "activity_tree_stats": (
                self.activity_tree_stats.to_dict() if self.activity_tree_stats else None
            ),
            "control_mode_flags": dict(self.control_mode_flags),
            "available_navigation": [request.value for request in self.available_navigation],
            "global_objectives": dict(self.global_objectives),
            "root_has_begun": self.root_has_begun,
            "sequencing_request_pending": self.sequencing_request_pending,
        }


class SequencingSession:
    """
    Facade over the sequencing engine for one learner attempt on one course.

    Usage:
        session = SequencingSession(adapter=rte_values)
        state = session.initialize(load_structure("course.yaml"))
        result = session.process_navigation_request("{target=lesson2}choice")
    """

    def __init__(
        self,
        adapter: TrackedValueAdapter | None = None,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ):
        self.settings = settings or get_settings()
        self.adapter = adapter if adapter is not None else InMemoryTrackedValues()
        self.clock = clock

        self.session_id: str | None = None
        self.tree: ActivityTreeManager | None = None
        self.global_objectives: GlobalObjectiveStore | None = None
        self.evaluator: SequencingRuleEvaluator | None = None
        self.rollup_engine: RollupEngine | None = None
        self.handler: NavigationRequestHandler | None = None
        self._request_in_flight = False

    @property
    def is_initialized(self) -> bool:
        return self.handler is not None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def initialize(self, tree_spec: ActivitySpec | Mapping[str, Any]) -> SequencingState:
        """
        Build the activity tree and start a not-started session.

        Args:
            tree_spec: Validated structure spec (or raw mapping) from the manifest layer

        Returns:
            The initial SequencingState

        Raises:
            SessionStateError: session is already initialized
            TreeConstructionError: tree is cyclic, too deep, or invalid
        """
        if self.is_initialized:
            raise SessionStateError(f"Session {self.session_id} is already initialized")

        tree = ActivityTreeManager(max_depth=self.settings.max_activity_depth)
        tree.build_tree(tree_spec)

        store = GlobalObjectiveStore(enabled=self.settings.enable_global_objectives)
        evaluator = SequencingRuleEvaluator(global_objectives=store, clock=self.clock)
        rollup_engine = RollupEngine(
            evaluator,
            global_objectives=store,
            enabled=self.settings.enable_rollup_processing,
            default_objective_weight=self.settings.default_objective_weight,
        )

        self.tree = tree
        self.global_objectives = store
        self.evaluator = evaluator
        self.rollup_engine = rollup_engine
        self.handler = NavigationRequestHandler(
            tree, evaluator, rollup_engine, global_objectives=store, adapter=self.adapter
        )
        self.session_id = f"sn_{uuid.uuid4().hex[:12]}"

        logger.info(
            f"Sequencing session {self.session_id} initialized "
            f"({len(tree.activities)} activities, root={tree.root.identifier})"
        )
        return self.get_sequencing_state()

    def terminate(self) -> SequencingState:
        """End the session, release the tree and return the final state."""
        if not self.is_initialized:
            return SequencingState()

        self.handler.end_session()
        final_state = self.get_sequencing_state()
        logger.info(f"Sequencing session {self.session_id} terminated")
        self._release()
        return final_state

    def reset(self) -> None:
        """Drop the session without producing a final state."""
        if self.is_initialized:
            logger.info(f"Sequencing session {self.session_id} reset")
        self._release()

    def _release(self) -> None:
        if self.tree is not None:
            self.tree.reset()
        self.session_id = None
        self.tree = None
        self.global_objectives = None
        self.evaluator = None
        self.rollup_engine = None
        self.handler = None
        self._request_in_flight = False

    # =========================================================================
    # NAVIGATION
    # =========================================================================

    def process_navigation_request(
        self,
        request: NavigationRequest | str,
        target_activity_id: str | None = None,
    ) -> NavigationResult:
        """
        Process a navigation request.

        Args:
            request: NavigationRequest, request name, or "{target=ID}choice"
            target_activity_id: Choice target when not embedded in `request`

        Returns:
            NavigationResult (not-initialized, busy and invalid requests included)
        """
        try:
            parsed = NavigationRequest.parse(request, target_activity_id)
        except ValueError as e:
            logger.warning(str(e))
            return self._refusal(None, NavigationReason.INVALID_REQUEST, str(e))

        if not self.is_initialized:
            return self._refusal(parsed, NavigationReason.NOT_INITIALIZED, "Session not initialized")
        if self._request_in_flight:
            logger.warning(f"Rejecting {parsed}: another navigation request is in flight")
            return self._refusal(parsed, NavigationReason.BUSY, "A navigation request is in flight")

        self._request_in_flight = True
        try:
            return self.handler.process_request(parsed)
        finally:
            self._request_in_flight = False

    def handle_activity_exit(self, activity_id: str, exit_type: ExitType | str) -> NavigationResult:
        """
        Translate a SCO's cmi.exit into a navigation request.

        suspend -> suspendAll, normal -> exit, logout -> exitAll,
        time-out -> unqualifiedExit.
        """
        try:
            request_type = EXIT_TYPE_REQUESTS[ExitType(exit_type)]
        except ValueError:
            logger.warning(f"Unknown exit type for {activity_id}: {exit_type!r}")
            return self._refusal(
                None, NavigationReason.INVALID_REQUEST, f"Unknown exit type: {exit_type!r}"
            )

        request = NavigationRequest(request_type)
        if not self.is_initialized:
            return self._refusal(request, NavigationReason.NOT_INITIALIZED, "Session not initialized")

        current = self.handler.current_activity
        if current is None or current.identifier != activity_id:
            return self._refusal(
                request,
                NavigationReason.INVALID_REQUEST,
                f"{activity_id} is not the current activity",
            )

        logger.debug(f"Activity {activity_id} exited with {ExitType(exit_type).value}")
        return self.process_navigation_request(request)

    # =========================================================================
    # TRACKING
    # =========================================================================

    def update_activity_progress(
        self,
        activity_id: str,
        completion_status: str | None = None,
        success_status: str | None = None,
        progress_measure: float | None = None,
        score_scaled: float | None = None,
    ) -> RollupResult:
        """
        Record progress reported for an activity and roll it up.

        Values go through the tracked value adapter so that the next pull
        sees the same data.

        Raises:
            SessionStateError: session not initialized, or called mid-request
            ActivityNotFoundError: unknown activity id
        """
        self._require_idle("update_activity_progress")
        activity = self.tree.get_activity(activity_id)

        updates = {
            TrackedField.COMPLETION_STATUS: completion_status,
            TrackedField.SUCCESS_STATUS: success_status,
            TrackedField.PROGRESS_MEASURE: progress_measure,
            TrackedField.SCORE_SCALED: score_scaled,
        }
        for tracked_field, value in updates.items():
            if value is not None:
                self.adapter.set_tracked_value(activity_id, tracked_field, value)

        pull_tracked_values(activity, self.adapter)
        result = self.rollup_engine.rollup(activity)
        logger.debug(f"Progress updated for {activity_id}: {activity.status().to_dict()}")
        return result

    def update_activity_location(self, activity_id: str, location: str) -> None:
        """Record the SCO's bookmark (cmi.location)."""
        self._require_idle("update_activity_location")
        activity = self.tree.get_activity(activity_id)
        self.adapter.set_tracked_value(activity_id, TrackedField.LOCATION, location)
        activity.location = location

    def _require_idle(self, operation: str) -> None:
        if not self.is_initialized:
            raise SessionStateError(f"{operation} called before initialize")
        if self._request_in_flight:
            raise SessionStateError(f"{operation} called while a navigation request is in flight")

    # =========================================================================
    # STATE
    # =========================================================================

    def get_sequencing_state(self) -> SequencingState:
        if not self.is_initialized:
            return SequencingState()

        handler = self.handler
        focus = handler.current_activity or handler.suspended_activity or self.tree.root
        # Flags that govern navigation among the focus activity's siblings
        flags_source = focus.parent or focus

        return SequencingState(
            initialized=True,
            session_id=self.session_id,
            session_state=handler.session_state,
            current_activity_id=(
                handler.current_activity.identifier if handler.current_activity else None
            ),
            suspended_activity_id=(
                handler.suspended_activity.identifier if handler.suspended_activity else None
            ),
            activity_tree_stats=self.tree.get_tree_stats(),
            control_mode_flags=flags_source.control_mode.to_dict(),
            available_navigation=(
                [] if self._request_in_flight else handler.get_available_navigation()
            ),
            global_objectives=self.global_objectives.to_dict(),
            root_has_begun=handler.root_has_begun,
            sequencing_request_pending=self._request_in_flight,
        )

    def get_status(self) -> dict[str, Any]:
        """Service status: version, capabilities and the current session."""
        return {
            "version": SN_SERVICE_VERSION,
            "supported_versions": list(SUPPORTED_VERSIONS),
            "initialized": self.is_initialized,
            "session_id": self.session_id,
            "session_state": (
                self.handler.session_state.value
                if self.is_initialized
                else SessionState.NOT_INITIALIZED.value
            ),
            "capabilities": {
                "rollup": self.settings.enable_rollup_processing,
                "global_objectives": self.settings.enable_global_objectives,
                "max_activity_depth": self.settings.max_activity_depth,
                "default_control_mode": ControlMode().to_dict(),
            },
        }

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _refusal(
        self,
        request: NavigationRequest | None,
        reason: NavigationReason,
        message: str,
    ) -> NavigationResult:
        if self.is_initialized:
            session_state = self.handler.session_state
            current = self.handler.current_activity
        else:
            session_state = SessionState.NOT_INITIALIZED
            current = None
        return NavigationResult(
            success=False,
            request=request,
            session_state=session_state,
            current_activity_id=current.identifier if current else None,
            reason=reason,
            message=message,
        )
