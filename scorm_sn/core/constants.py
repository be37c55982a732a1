"""
SCORM 2004 Sequencing and Navigation constants.

Closed vocabularies for rule processing, rollup, navigation handling and
activity tree management. Everything that content packages
spell as camelCase strings is an Enum here, so an unknown value fails at the
model boundary instead of deep inside traversal.
"""

from __future__ import annotations

from enum import Enum


class SnErrorCode(str, Enum):
    """SN error codes (450-549 range, following the CAM numbering)."""

    # Activity tree (450-469)
    INVALID_ACTIVITY_TREE = "450"
    ACTIVITY_NOT_FOUND = "451"
    INVALID_ACTIVITY_STATE = "452"
    CIRCULAR_ACTIVITY_REFERENCE = "453"
    MAX_DEPTH_EXCEEDED = "454"

    # Sequencing rules (470-489)
    INVALID_SEQUENCING_RULE = "470"
    RULE_CONDITION_FAILED = "471"
    INVALID_CONTROL_MODE = "472"
    SEQUENCING_VIOLATION = "473"
    LIMIT_CONDITION_EXCEEDED = "474"

    # Navigation (490-509)
    INVALID_NAVIGATION_REQUEST = "490"
    NAVIGATION_NOT_ALLOWED = "491"
    NO_VALID_NAVIGATION = "492"
    CHOICE_NOT_AVAILABLE = "493"
    NAVIGATION_SEQUENCE_ERROR = "494"

    # Rollup (510-529)
    ROLLUP_PROCESSING_FAILED = "510"
    INVALID_OBJECTIVE_MAP = "511"
    GLOBAL_OBJECTIVE_ERROR = "512"
    ROLLUP_RULE_VIOLATION = "513"
    MEASURE_CALCULATION_ERROR = "514"

    # General (530-549)
    SN_SERVICE_UNAVAILABLE = "530"
    INVALID_SN_CONFIGURATION = "531"
    SN_INTEGRATION_ERROR = "532"


# =============================================================================
# Activity State
# =============================================================================


class CompletionStatus(str, Enum):
    """Attempt completion status of an activity."""

    UNKNOWN = "unknown"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"


class SuccessStatus(str, Enum):
    """Primary objective success status of an activity."""

    UNKNOWN = "unknown"
    PASSED = "passed"
    FAILED = "failed"

    @classmethod
    def from_satisfied(cls, satisfied: bool | None) -> SuccessStatus:
        if satisfied is None:
            return cls.UNKNOWN
        return cls.PASSED if satisfied else cls.FAILED

    @property
    def satisfied(self) -> bool | None:
        """True/False for passed/failed, None while unknown."""
        if self is SuccessStatus.UNKNOWN:
            return None
        return self is SuccessStatus.PASSED


class ActivityState(str, Enum):
    """Delivery state of an activity."""

    INACTIVE = "inactive"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class SessionState(str, Enum):
    """Top-level state of a sequencing session."""

    NOT_INITIALIZED = "not_initialized"  # No SN session (e.g. single-SCO course)
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"


# =============================================================================
# Sequencing Rules
# =============================================================================


class RuleType(str, Enum):
    """When a sequencing rule is evaluated."""

    PRE_CONDITION = "preCondition"
    POST_CONDITION = "postCondition"
    EXIT_CONDITION = "exitCondition"


class RuleConditionType(str, Enum):
    """Condition kinds a rule clause can test."""

    SATISFIED = "satisfied"
    OBJECTIVE_STATUS_KNOWN = "objectiveStatusKnown"
    OBJECTIVE_MEASURE_KNOWN = "objectiveMeasureKnown"
    OBJECTIVE_MEASURE_GREATER_THAN = "objectiveMeasureGreaterThan"
    OBJECTIVE_MEASURE_LESS_THAN = "objectiveMeasureLessThan"
    COMPLETED = "completed"
    ACTIVITY_PROGRESS_KNOWN = "activityProgressKnown"
    ATTEMPTED = "attempted"
    ATTEMPT_LIMIT_EXCEEDED = "attemptLimitExceeded"
    TIME_LIMIT_EXCEEDED = "timeLimitExceeded"
    OUTSIDE_AVAILABLE_TIME_RANGE = "outsideAvailableTimeRange"
    ALWAYS = "always"


MEASURE_COMPARISON_CONDITIONS = frozenset({
    RuleConditionType.OBJECTIVE_MEASURE_GREATER_THAN,
    RuleConditionType.OBJECTIVE_MEASURE_LESS_THAN,
})


class ConditionCombination(str, Enum):
    """How the clauses of a rule combine."""

    ALL = "all"  # logical AND
    ANY = "any"  # logical OR


class RuleAction(str, Enum):
    """Actions a sequencing rule can produce."""

    # Pre-condition
    SKIP = "skip"
    DISABLED = "disabled"
    HIDDEN_FROM_CHOICE = "hiddenFromChoice"
    STOP_FORWARD_TRAVERSAL = "stopForwardTraversal"
    # Post-condition
    EXIT_PARENT = "exitParent"
    EXIT_ALL = "exitAll"
    RETRY = "retry"
    RETRY_ALL = "retryAll"
    CONTINUE = "continue"
    PREVIOUS = "previous"
    # Exit-condition
    EXIT = "exit"


RULE_ACTIONS_BY_TYPE: dict[RuleType, frozenset[RuleAction]] = {
    RuleType.PRE_CONDITION: frozenset({
        RuleAction.SKIP,
        RuleAction.DISABLED,
        RuleAction.HIDDEN_FROM_CHOICE,
        RuleAction.STOP_FORWARD_TRAVERSAL,
    }),
    RuleType.POST_CONDITION: frozenset({
        RuleAction.EXIT_PARENT,
        RuleAction.EXIT_ALL,
        RuleAction.RETRY,
        RuleAction.RETRY_ALL,
        RuleAction.CONTINUE,
        RuleAction.PREVIOUS,
    }),
    RuleType.EXIT_CONDITION: frozenset({RuleAction.EXIT}),
}


# =============================================================================
# Control Modes
# =============================================================================


class ControlModeFlag(str, Enum):
    """Per-cluster flags governing which navigation requests are legal."""

    CHOICE = "choice"
    CHOICE_EXIT = "choiceExit"
    FLOW = "flow"
    FORWARD_ONLY = "forwardOnly"


# Applied at the root when no ancestor sets a flag
CONTROL_MODE_DEFAULTS: dict[ControlModeFlag, bool] = {
    ControlModeFlag.CHOICE: True,
    ControlModeFlag.CHOICE_EXIT: True,
    ControlModeFlag.FLOW: True,
    ControlModeFlag.FORWARD_ONLY: False,
}


# =============================================================================
# Rollup
# =============================================================================


class ChildActivitySet(str, Enum):
    """Which share of the contributing children must match a rollup rule."""

    ALL = "all"
    ANY = "any"
    NONE = "none"
    AT_LEAST_COUNT = "atLeastCount"
    AT_LEAST_PERCENT = "atLeastPercent"


class RollupAction(str, Enum):
    """Status a rollup rule assigns to the parent."""

    SATISFIED = "satisfied"
    NOT_SATISFIED = "notSatisfied"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"


class RequiredFor(str, Enum):
    """When a child counts toward a rollup action of its parent."""

    ALWAYS = "always"
    IF_ATTEMPTED = "ifAttempted"
    IF_NOT_SKIPPED = "ifNotSkipped"
    IF_NOT_SUSPENDED = "ifNotSuspended"


# =============================================================================
# Navigation
# =============================================================================


class NavigationRequestType(str, Enum):
    """Navigation requests accepted by the handler."""

    START = "start"
    RESUME_ALL = "resumeAll"
    CONTINUE = "continue"
    PREVIOUS = "previous"
    CHOICE = "choice"
    EXIT = "exit"
    EXIT_ALL = "exitAll"
    ABANDON = "abandon"
    ABANDON_ALL = "abandonAll"
    SUSPEND_ALL = "suspendAll"
    UNQUALIFIED_EXIT = "unqualifiedExit"


class NavigationReason(str, Enum):
    """Reason codes carried by a navigation-not-allowed result."""

    NOT_INITIALIZED = "notInitialized"
    BUSY = "busy"
    INVALID_REQUEST = "invalidRequest"
    SESSION_NOT_STARTED = "sessionNotStarted"
    ALREADY_STARTED = "alreadyStarted"
    SESSION_SUSPENDED = "sessionSuspended"
    SESSION_NOT_SUSPENDED = "sessionNotSuspended"
    SESSION_TERMINATED = "sessionTerminated"
    NO_CURRENT_ACTIVITY = "noCurrentActivity"
    FLOW_DISABLED = "flowDisabled"
    FORWARD_ONLY = "forwardOnly"
    CHOICE_DISABLED = "choiceDisabled"
    CHOICE_EXIT_DISABLED = "choiceExitDisabled"
    TARGET_REQUIRED = "targetRequired"
    TARGET_NOT_FOUND = "targetNotFound"
    TARGET_HIDDEN = "targetHidden"
    TARGET_DISABLED = "targetDisabled"
    LIMIT_CONDITION_EXCEEDED = "limitConditionExceeded"
    NO_NEXT_ACTIVITY = "noNextActivity"
    NO_PREVIOUS_ACTIVITY = "noPreviousActivity"
    NO_LAUNCHABLE_ACTIVITY = "noLaunchableActivity"
    STOP_FORWARD_TRAVERSAL = "stopForwardTraversal"


# =============================================================================
# RTE Integration
# =============================================================================


class TrackedField(str, Enum):
    """Tracked values exchanged with the run-time environment."""

    COMPLETION_STATUS = "completion_status"
    SUCCESS_STATUS = "success_status"
    PROGRESS_MEASURE = "progress_measure"
    SCORE_SCALED = "score_scaled"
    LOCATION = "location"
    ATTEMPT_DURATION = "attempt_duration"  # seconds, supplied by the RTE


class ExitType(str, Enum):
    """cmi.exit values the RTE reports when a SCO terminates."""

    NORMAL = "normal"
    SUSPEND = "suspend"
    LOGOUT = "logout"
    TIME_OUT = "time-out"


# =============================================================================
# Service
# =============================================================================

SN_SERVICE_VERSION = "1.0.0"
SUPPORTED_VERSIONS = ("SCORM 2004 4th Edition",)
