"""
Navigation Request Handler.

The sequencing state machine. Accepts a navigation request, decides which
activity becomes current, and returns either the new position or a
navigation-not-allowed result.

Session states:
    not_started -> active <-> suspended
    active | suspended -> terminated

Every request is transactional: when it ends not-allowed (or raises), the
activity tree, the global objectives and the handler's own position are put
back exactly as they were.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

from loguru import logger

from scorm_sn.core.constants import (
    ActivityState,
    NavigationReason,
    NavigationRequestType,
    RuleAction,
    SessionState,
)
from scorm_sn.core.errors import SessionStateError
from scorm_sn.sequencing.activity_tree import Activity, ActivitySnapshot, ActivityTreeManager
from scorm_sn.sequencing.objectives import GlobalObjective, GlobalObjectiveStore
from scorm_sn.sequencing.rollup_engine import RollupEngine
from scorm_sn.sequencing.rule_evaluator import SequencingRuleEvaluator
from scorm_sn.sequencing.tracking import TrackedValueAdapter, pull_tracked_values, push_reset

# adl.nav.request form, e.g. "{target=lesson2}choice"
_RTE_REQUEST = re.compile(r"^\{target=(?P<target>[^}]+)\}(?P<request>\w+)$")

_STATE_REFUSALS = {
    SessionState.NOT_STARTED: NavigationReason.SESSION_NOT_STARTED,
    SessionState.ACTIVE: NavigationReason.ALREADY_STARTED,
    SessionState.SUSPENDED: NavigationReason.SESSION_SUSPENDED,
    SessionState.TERMINATED: NavigationReason.SESSION_TERMINATED,
}

_SEQUENCING_POST_ACTIONS = frozenset({
    RuleAction.EXIT_ALL,
    RuleAction.RETRY,
    RuleAction.RETRY_ALL,
    RuleAction.CONTINUE,
    RuleAction.PREVIOUS,
})


# =============================================================================
# Requests and Results
# =============================================================================


@dataclass(frozen=True)
class NavigationRequest:
    """A transient navigation request; only `choice` carries a target."""

    type: NavigationRequestType
    target_activity_id: str | None = None

    @classmethod
    def parse(
        cls,
        raw: str | NavigationRequest,
        target_activity_id: str | None = None,
    ) -> NavigationRequest:
        """
        Parse "continue", "choice" (with an explicit target) or the RTE form
        "{target=ID}choice".

        Raises:
            ValueError: unknown request name
        """
        if isinstance(raw, NavigationRequest):
            if target_activity_id is None:
                return raw
            return replace(raw, target_activity_id=target_activity_id)

        text = str(raw).strip()
        match = _RTE_REQUEST.match(text)
        if match:
            text = match.group("request")
            target_activity_id = target_activity_id or match.group("target")

        try:
            request_type = NavigationRequestType(text)
        except ValueError:
            raise ValueError(f"Unknown navigation request: {raw!r}") from None
        return cls(request_type, target_activity_id)

    def __str__(self) -> str:
        if self.target_activity_id:
            return f"{{target={self.target_activity_id}}}{self.type.value}"
        return self.type.value


@dataclass(frozen=True)
class NavigationResult:
    """Outcome of a navigation request. Refusals are results, never exceptions."""

    success: bool
    request: NavigationRequest | None
    session_state: SessionState
    current_activity_id: str | None = None
    reason: NavigationReason | None = None
    message: str = ""
    post_condition_action: RuleAction | None = None
    launch_resource: str | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "request": str(self.request) if self.request else None,
            "session_state": self.session_state.value,
            "current_activity_id": self.current_activity_id,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "post_condition_action": (
                self.post_condition_action.value if self.post_condition_action else None
            ),
            "launch_resource": self.launch_resource,
        }


@dataclass(frozen=True)
class _HandlerSnapshot:
    activities: dict[str, ActivitySnapshot]
    global_objectives: dict[str, GlobalObjective]
    session_state: SessionState
    current_activity: Activity | None
    suspended_activity: Activity | None
    root_has_begun: bool


@dataclass
class _Traversal:
    """Result of a flow traversal: a candidate, or the reason there is none."""

    candidate: Activity | None = None
    reason: NavigationReason | None = None


# =============================================================================
# Handler
# =============================================================================


class NavigationRequestHandler:
    """
    Processes navigation requests against one activity tree.

    Usage:
        handler = NavigationRequestHandler(tree, evaluator, rollup_engine, store)
        result = handler.process_request(NavigationRequest.parse("start"))
        if result.success:
            launch(result.launch_resource)
    """

    def __init__(
        self,
        tree: ActivityTreeManager,
        evaluator: SequencingRuleEvaluator,
        rollup_engine: RollupEngine,
        global_objectives: GlobalObjectiveStore | None = None,
        adapter: TrackedValueAdapter | None = None,
    ):
        self.tree = tree
        self.evaluator = evaluator
        self.rollup_engine = rollup_engine
        self.global_objectives = (
            global_objectives if global_objectives is not None else GlobalObjectiveStore()
        )
        self.adapter = adapter

        self.session_state = SessionState.NOT_STARTED
        self.current_activity: Activity | None = None
        self.suspended_activity: Activity | None = None
        self.root_has_begun = False

        self._pending_resets: list[Activity] = []
        self._handlers = {
            NavigationRequestType.START: self._handle_start,
            NavigationRequestType.RESUME_ALL: self._handle_resume_all,
            NavigationRequestType.CONTINUE: self._handle_continue,
            NavigationRequestType.PREVIOUS: self._handle_previous,
            NavigationRequestType.CHOICE: self._handle_choice,
            NavigationRequestType.EXIT: self._handle_exit,
            NavigationRequestType.EXIT_ALL: self._handle_exit_all,
            NavigationRequestType.ABANDON: self._handle_abandon,
            NavigationRequestType.ABANDON_ALL: self._handle_abandon_all,
            NavigationRequestType.SUSPEND_ALL: self._handle_suspend_all,
            NavigationRequestType.UNQUALIFIED_EXIT: self._handle_unqualified_exit,
        }

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    def process_request(self, request: NavigationRequest) -> NavigationResult:
        """
        Process one navigation request.

        Args:
            request: Parsed navigation request

        Returns:
            NavigationResult; on refusal all state is rolled back first
        """
        if self.tree.root is None:
            raise SessionStateError("Activity tree has not been built")

        snapshot = self._capture()
        try:
            result = self._handlers[request.type](request)
        except Exception:
            self._restore(snapshot)
            self._pending_resets.clear()
            raise

        if not result.success:
            self._restore(snapshot)
            self._pending_resets.clear()
            result = replace(
                result,
                session_state=self.session_state,
                current_activity_id=self._current_id(),
                launch_resource=None,
            )
            logger.warning(
                f"Navigation request {request} not allowed: "
                f"{result.reason.value if result.reason else 'unknown'} ({result.message})"
            )
            return result

        self._flush_pending_resets()
        logger.info(
            f"Navigation request {request} processed: current={result.current_activity_id} "
            f"state={result.session_state.value}"
        )
        return result

    def get_available_navigation(self) -> list[NavigationRequestType]:
        """
        Requests that would currently succeed, computed without side effects.

        Each request is dry-run against the live tree and rolled back.
        """
        if self.tree.root is None:
            return []

        available = []
        for request_type in NavigationRequestType:
            if request_type is NavigationRequestType.CHOICE:
                if self.session_state in (SessionState.NOT_STARTED, SessionState.ACTIVE) and (
                    self.get_choice_targets()
                ):
                    available.append(request_type)
                continue
            if self._probe(NavigationRequest(request_type)):
                available.append(request_type)
        return available

    def get_choice_targets(self) -> list[str]:
        """Identifiers of activities a choice request may currently target."""
        targets = []
        for activity in self.tree.iter_preorder():
            if activity.is_root:
                continue
            if self._choice_refusal(activity) is None and self._choice_exit_refusal(activity) is None:
                targets.append(activity.identifier)
        return targets

    def end_session(self) -> None:
        """End every attempt without rollup and mark the session terminated."""
        self._terminate()
        logger.info("Sequencing session ended")

    # =========================================================================
    # REQUEST HANDLERS
    # =========================================================================

    def _handle_start(self, request: NavigationRequest) -> NavigationResult:
        refusal = self._refuse_unless(request, SessionState.NOT_STARTED)
        if refusal:
            return refusal

        traversal = self._descend(self.tree.root, forward=True)
        if traversal.candidate is None:
            return self._denied(
                request,
                traversal.reason or NavigationReason.NO_LAUNCHABLE_ACTIVITY,
                "No launchable activity found from the root",
            )

        self.root_has_begun = True
        self._deliver(traversal.candidate)
        return self._allowed(request, f"Started at {traversal.candidate.identifier}")

    def _handle_resume_all(self, request: NavigationRequest) -> NavigationResult:
        if self.session_state is not SessionState.SUSPENDED:
            reason = (
                NavigationReason.SESSION_TERMINATED
                if self.session_state is SessionState.TERMINATED
                else NavigationReason.SESSION_NOT_SUSPENDED
            )
            return self._denied(request, reason, "Only a suspended session can be resumed")

        activity = self.suspended_activity
        for node in activity.path_from_root():
            node.suspended = False
            node.set_state(ActivityState.ACTIVE if node.is_active else ActivityState.INACTIVE)

        self.current_activity = activity
        self.suspended_activity = None
        self.session_state = SessionState.ACTIVE
        return self._allowed(request, f"Resumed at {activity.identifier}")

    def _handle_continue(self, request: NavigationRequest) -> NavigationResult:
        return self._handle_flow(request, forward=True)

    def _handle_previous(self, request: NavigationRequest) -> NavigationResult:
        return self._handle_flow(request, forward=False)

    def _handle_flow(self, request: NavigationRequest, forward: bool) -> NavigationResult:
        refusal = self._refuse_unless(request, SessionState.ACTIVE) or self._require_current(request)
        if refusal:
            return refusal

        origin = self.current_activity
        if origin.is_active:
            post_action, origin = self._leave_current()
            sequenced = self._sequence_post_condition(request, post_action, origin)
            if sequenced is not None:
                return sequenced

        traversal = self._flow_from(origin, forward)
        if traversal.candidate is None:
            return self._denied(request, traversal.reason, f"No activity to deliver ({request})")

        self._deliver(traversal.candidate)
        return self._allowed(request, f"Moved to {traversal.candidate.identifier}")

    def _handle_choice(self, request: NavigationRequest) -> NavigationResult:
        refusal = self._refuse_unless(request, SessionState.NOT_STARTED, SessionState.ACTIVE)
        if refusal:
            return refusal
        if not request.target_activity_id:
            return self._denied(
                request, NavigationReason.TARGET_REQUIRED, "Choice requires a target activity"
            )

        target = self.tree.find_activity(request.target_activity_id)
        if target is None:
            return self._denied(
                request,
                NavigationReason.TARGET_NOT_FOUND,
                f"Target activity not found: {request.target_activity_id}",
            )

        choice_refusal = self._choice_refusal(target) or self._choice_exit_refusal(target)
        if choice_refusal is not None:
            reason, message = choice_refusal
            return self._denied(request, reason, message)

        if self.current_activity is not None and self.current_activity.is_active:
            post_action, origin = self._leave_current()
            sequenced = self._sequence_post_condition(request, post_action, origin)
            if sequenced is not None:
                return sequenced

        if target.is_leaf:
            traversal = _Traversal(
                candidate=target if target.is_launchable else None,
                reason=None if target.is_launchable else NavigationReason.NO_LAUNCHABLE_ACTIVITY,
            )
        else:
            traversal = self._descend_children(target, forward=True)
        if traversal.candidate is None:
            return self._denied(
                request,
                traversal.reason or NavigationReason.NO_LAUNCHABLE_ACTIVITY,
                f"No launchable activity within {target.identifier}",
            )

        self.root_has_begun = True
        self._deliver(traversal.candidate)
        return self._allowed(request, f"Chose {traversal.candidate.identifier}")

    def _handle_exit(self, request: NavigationRequest) -> NavigationResult:
        refusal = self._refuse_unless(request, SessionState.ACTIVE) or self._require_attempt(request)
        if refusal:
            return refusal

        exited = self.current_activity.identifier
        post_action, origin = self._leave_current()
        sequenced = self._sequence_post_condition(request, post_action, origin)
        if sequenced is not None:
            return sequenced
        return self._allowed(request, f"Exited {exited}")

    def _handle_unqualified_exit(self, request: NavigationRequest) -> NavigationResult:
        refusal = self._refuse_unless(request, SessionState.ACTIVE) or self._require_attempt(request)
        if refusal:
            return refusal

        exited = self.current_activity.identifier
        self._leave_current(with_rules=False)
        return self._allowed(request, f"Exited {exited} without post-condition rules")

    def _handle_abandon(self, request: NavigationRequest) -> NavigationResult:
        refusal = self._refuse_unless(request, SessionState.ACTIVE) or self._require_attempt(request)
        if refusal:
            return refusal

        abandoned = self.current_activity
        self._end_attempt(abandoned, up_to=abandoned)
        return self._allowed(request, f"Abandoned {abandoned.identifier}")

    def _handle_exit_all(self, request: NavigationRequest) -> NavigationResult:
        refusal = self._refuse_unless(request, SessionState.ACTIVE, SessionState.SUSPENDED)
        if refusal:
            return refusal

        current = self.current_activity
        if current is not None and current.is_active:
            self._leave_current(with_rules=False)
        self._terminate()
        return self._allowed(request, "Session exited")

    def _handle_abandon_all(self, request: NavigationRequest) -> NavigationResult:
        refusal = self._refuse_unless(request, SessionState.ACTIVE, SessionState.SUSPENDED)
        if refusal:
            return refusal

        self._terminate()
        return self._allowed(request, "Session abandoned")

    def _handle_suspend_all(self, request: NavigationRequest) -> NavigationResult:
        refusal = self._refuse_unless(request, SessionState.ACTIVE) or self._require_current(request)
        if refusal:
            return refusal

        activity = self.current_activity
        for node in activity.path_from_root():
            node.suspended = True
            node.set_state(ActivityState.SUSPENDED)

        self.suspended_activity = activity
        self.current_activity = None
        self.session_state = SessionState.SUSPENDED
        return self._allowed(request, f"Suspended at {activity.identifier}")

    # =========================================================================
    # LEAVING AN ACTIVITY
    # =========================================================================

    def _leave_current(self, with_rules: bool = True) -> tuple[RuleAction | None, Activity]:
        """
        End the current attempt.

        Order: pull tracked values, end the attempt and roll up, exit rules
        on the ancestors (root first), then post-condition rules where
        exitParent climbs one level at a time.

        Returns:
            (post-condition action or None, activity the traversal continues from)
        """
        activity = self.current_activity
        if self.adapter is not None:
            pull_tracked_values(activity, self.adapter)

        self._end_attempt(activity, up_to=activity)
        self.rollup_engine.rollup(activity)
        if not with_rules:
            return None, activity

        origin = activity
        for ancestor in reversed(list(activity.ancestors())):
            if self.evaluator.evaluate_exit_condition_rules(ancestor) is RuleAction.EXIT:
                logger.debug(f"Exit rule fired on {ancestor.identifier}")
                self._end_attempt(activity, up_to=ancestor)
                origin = ancestor
                break

        while True:
            action = self.evaluator.evaluate_post_condition_rules(origin)
            if action is not RuleAction.EXIT_PARENT:
                return action, origin
            if origin.parent is None:
                return None, origin
            logger.debug(f"exitParent on {origin.identifier}")
            origin = origin.parent
            self._end_attempt(origin, up_to=origin)

    def _sequence_post_condition(
        self,
        request: NavigationRequest,
        action: RuleAction | None,
        origin: Activity,
    ) -> NavigationResult | None:
        """Turn a post-condition action into the effective sequencing request."""
        if action not in _SEQUENCING_POST_ACTIONS:
            return None

        logger.debug(f"Post-condition {action.value} on {origin.identifier} overrides {request}")

        if action is RuleAction.EXIT_ALL:
            self._terminate()
            return self._allowed(request, "Session ended by exitAll post-condition", action)

        if action in (RuleAction.RETRY, RuleAction.RETRY_ALL):
            traversal = self._retry(origin if action is RuleAction.RETRY else self.tree.root)
        else:
            traversal = self._flow_from(origin, forward=action is RuleAction.CONTINUE)

        if traversal.candidate is None:
            return self._denied(
                request,
                traversal.reason or NavigationReason.NO_LAUNCHABLE_ACTIVITY,
                f"Post-condition {action.value} on {origin.identifier} found no activity",
            )

        self._deliver(traversal.candidate)
        return self._allowed(
            request,
            f"Post-condition {action.value} delivered {traversal.candidate.identifier}",
            action,
        )

    def _retry(self, target: Activity) -> _Traversal:
        """Reset `target`'s subtree and find what to deliver for the new attempt."""
        for node in self.tree.iter_preorder(target):
            node.reset_tracking()
            if node.is_active:
                node.is_active = False
                node.set_state(ActivityState.INACTIVE)
            if node.is_leaf:
                self._pending_resets.append(node)
        self.rollup_engine.rollup(target)

        if not target.is_leaf:
            return self._descend_children(target, forward=True)
        if self.evaluator.is_attempt_limit_exceeded(target):
            return _Traversal(reason=NavigationReason.LIMIT_CONDITION_EXCEEDED)
        if not target.is_launchable:
            return _Traversal(reason=NavigationReason.NO_LAUNCHABLE_ACTIVITY)
        return _Traversal(candidate=target)

    # =========================================================================
    # FLOW TRAVERSAL
    # =========================================================================

    def _flow_from(self, origin: Activity, forward: bool) -> _Traversal:
        """Next (or previous) candidate after `origin` in pre-order."""
        node = origin
        while node.parent is not None:
            parent = node.parent
            if not parent.control_mode.flow:
                return _Traversal(reason=NavigationReason.FLOW_DISABLED)
            if not forward and parent.control_mode.forward_only:
                return _Traversal(reason=NavigationReason.FORWARD_ONLY)

            siblings = parent.children
            index = siblings.index(node)
            following = siblings[index + 1:] if forward else list(reversed(siblings[:index]))
            for sibling in following:
                traversal = self._descend(sibling, forward)
                if traversal.candidate is not None or traversal.reason is not None:
                    return traversal
            node = parent

        return _Traversal(
            reason=NavigationReason.NO_NEXT_ACTIVITY if forward else NavigationReason.NO_PREVIOUS_ACTIVITY
        )

    def _descend(self, node: Activity, forward: bool) -> _Traversal:
        """Enter `node` and find its first (or last) candidate."""
        action = self.evaluator.evaluate_pre_condition_rules(node)
        if action in (RuleAction.SKIP, RuleAction.DISABLED):
            logger.debug(f"Traversal excludes {node.identifier} ({action.value})")
            return _Traversal()
        if forward and action is RuleAction.STOP_FORWARD_TRAVERSAL:
            return _Traversal(reason=NavigationReason.STOP_FORWARD_TRAVERSAL)

        if node.is_leaf:
            if action is not RuleAction.HIDDEN_FROM_CHOICE and self._is_candidate(node):
                return _Traversal(candidate=node)
            return _Traversal()
        return self._descend_children(node, forward)

    def _descend_children(self, cluster: Activity, forward: bool) -> _Traversal:
        if not cluster.control_mode.flow:
            return _Traversal(reason=NavigationReason.FLOW_DISABLED)

        # Forward-only clusters are always entered at their first child
        children = cluster.children
        if not forward and not cluster.control_mode.forward_only:
            children = list(reversed(children))

        for child in children:
            traversal = self._descend(child, forward)
            if traversal.candidate is not None or traversal.reason is not None:
                return traversal
        return _Traversal()

    def _is_candidate(self, activity: Activity) -> bool:
        return (
            activity.is_launchable
            and activity.is_visible
            and not self.evaluator.is_attempt_limit_exceeded(activity)
        )

    # =========================================================================
    # CHOICE GATING
    # =========================================================================

    def _choice_refusal(self, target: Activity) -> tuple[NavigationReason, str] | None:
        if not target.is_visible:
            return NavigationReason.TARGET_HIDDEN, f"{target.identifier} is not visible"

        for node in target.path_from_root():
            action = self.evaluator.evaluate_pre_condition_rules(node)
            if action is RuleAction.DISABLED:
                return NavigationReason.TARGET_DISABLED, f"{node.identifier} is disabled"
            if action is RuleAction.HIDDEN_FROM_CHOICE:
                return NavigationReason.TARGET_HIDDEN, f"{node.identifier} is hidden from choice"

        for ancestor in target.ancestors():
            if not ancestor.control_mode.choice:
                return NavigationReason.CHOICE_DISABLED, f"Choice is disabled in {ancestor.identifier}"

        if self.evaluator.is_attempt_limit_exceeded(target):
            return (
                NavigationReason.LIMIT_CONDITION_EXCEEDED,
                f"Attempt limit reached for {target.identifier}",
            )
        return None

    def _choice_exit_refusal(self, target: Activity) -> tuple[NavigationReason, str] | None:
        """Every activity the choice would exit must allow choiceExit."""
        if self.current_activity is None:
            return None

        target_path = {node.identifier for node in target.path_from_root()}
        for node in self.current_activity.path_from_root():
            if node.identifier in target_path:
                continue
            if not node.control_mode.choice_exit:
                return (
                    NavigationReason.CHOICE_EXIT_DISABLED,
                    f"{node.identifier} does not allow choice exit",
                )
        return None

    # =========================================================================
    # ATTEMPTS
    # =========================================================================

    def _deliver(self, target: Activity) -> None:
        """Make `target` current, starting attempts along its path as needed."""
        on_path = {node.identifier for node in target.path_from_root()}
        for activity in self.tree.iter_preorder():
            if activity.is_active and activity.identifier not in on_path:
                activity.is_active = False
                activity.set_state(ActivityState.INACTIVE)

        for node in target.path_from_root():
            if not node.is_active:
                node.is_active = True
                node.attempt_count += 1
            node.suspended = False
            node.set_state(ActivityState.ACTIVE)

        self.current_activity = target
        self.suspended_activity = None
        self.session_state = SessionState.ACTIVE
        logger.debug(f"Delivered {target.identifier} (attempt {target.attempt_count})")

    @staticmethod
    def _end_attempt(activity: Activity, up_to: Activity) -> None:
        node = activity
        while node is not None:
            node.is_active = False
            node.set_state(ActivityState.INACTIVE)
            if node is up_to:
                break
            node = node.parent

    def _terminate(self) -> None:
        for activity in self.tree.iter_preorder():
            if activity.is_active or activity.activity_state is not ActivityState.INACTIVE:
                activity.is_active = False
                activity.set_state(ActivityState.INACTIVE)
        self.current_activity = None
        self.suspended_activity = None
        self.session_state = SessionState.TERMINATED

    # =========================================================================
    # RESULTS AND TRANSACTIONS
    # =========================================================================

    def _refuse_unless(
        self, request: NavigationRequest, *states: SessionState
    ) -> NavigationResult | None:
        if self.session_state in states:
            return None
        return self._denied(
            request,
            _STATE_REFUSALS[self.session_state],
            f"{request.type.value} is not allowed while the session is {self.session_state.value}",
        )

    def _require_current(self, request: NavigationRequest) -> NavigationResult | None:
        if self.current_activity is None:
            return self._denied(request, NavigationReason.NO_CURRENT_ACTIVITY, "No current activity")
        return None

    def _require_attempt(self, request: NavigationRequest) -> NavigationResult | None:
        refusal = self._require_current(request)
        if refusal is None and not self.current_activity.is_active:
            refusal = self._denied(
                request,
                NavigationReason.NO_CURRENT_ACTIVITY,
                f"{self.current_activity.identifier} has no attempt in progress",
            )
        return refusal

    def _allowed(
        self,
        request: NavigationRequest,
        message: str,
        post_condition_action: RuleAction | None = None,
    ) -> NavigationResult:
        current = self.current_activity
        launch_resource = current.resource_ref if current is not None and current.is_active else None
        return NavigationResult(
            success=True,
            request=request,
            session_state=self.session_state,
            current_activity_id=self._current_id(),
            message=message,
            post_condition_action=post_condition_action,
            launch_resource=launch_resource,
        )

    def _denied(
        self, request: NavigationRequest, reason: NavigationReason, message: str
    ) -> NavigationResult:
        return NavigationResult(
            success=False,
            request=request,
            session_state=self.session_state,
            current_activity_id=self._current_id(),
            reason=reason,
            message=message,
        )

    def _current_id(self) -> str | None:
        return self.current_activity.identifier if self.current_activity else None

    def _capture(self) -> _HandlerSnapshot:
        return _HandlerSnapshot(
            activities=self.tree.capture_state(),
            global_objectives=self.global_objectives.snapshot(),
            session_state=self.session_state,
            current_activity=self.current_activity,
            suspended_activity=self.suspended_activity,
            root_has_begun=self.root_has_begun,
        )

    def _restore(self, snapshot: _HandlerSnapshot) -> None:
        self.tree.restore_state(snapshot.activities)
        self.global_objectives.restore(snapshot.global_objectives)
        self.session_state = snapshot.session_state
        self.current_activity = snapshot.current_activity
        self.suspended_activity = snapshot.suspended_activity
        self.root_has_begun = snapshot.root_has_begun

    def _probe(self, request: NavigationRequest) -> bool:
        snapshot = self._capture()
        try:
            return self._handlers[request.type](request).success
        finally:
            self._restore(snapshot)
            self._pending_resets.clear()

    def _flush_pending_resets(self) -> None:
        if self.adapter is not None:
            for activity in self._pending_resets:
                push_reset(activity, self.adapter)
        self._pending_resets.clear()
