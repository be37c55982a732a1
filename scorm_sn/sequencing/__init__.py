"""
Sequencing engine.

Components:
- ActivityTreeManager: Builds the tree, resolves control modes, answers queries
- SequencingRuleEvaluator: First-match-wins rule evaluation
- RollupEngine: Measure, satisfaction and completion rollup
- NavigationRequestHandler: Navigation state machine with transactional requests
- SequencingSession: Facade owning one tree and one global objective store
- SnapshotService: Cached state for UI polling
"""
from scorm_sn.sequencing.activity_tree import (
    Activity,
    ActivityStatus,
    ActivityTreeManager,
    ControlMode,
    TreeStats,
)
from scorm_sn.sequencing.navigation_handler import (
    NavigationRequest,
    NavigationRequestHandler,
    NavigationResult,
)
from scorm_sn.sequencing.objectives import GlobalObjectiveStore, ObjectiveState
from scorm_sn.sequencing.rollup_engine import RollupEngine, RollupResult
from scorm_sn.sequencing.rule_evaluator import RuleEvaluation, SequencingRuleEvaluator
from scorm_sn.sequencing.session import SequencingSession, SequencingState
from scorm_sn.sequencing.snapshot import SnapshotService
from scorm_sn.sequencing.tracking import InMemoryTrackedValues, TrackedValueAdapter

__all__ = [
    # Facade
    "SequencingSession",
    "SequencingState",
    "SnapshotService",
    # Components
    "ActivityTreeManager",
    "SequencingRuleEvaluator",
    "RollupEngine",
    "NavigationRequestHandler",
    # Data
    "Activity",
    "ActivityStatus",
    "ControlMode",
    "TreeStats",
    "NavigationRequest",
    "NavigationResult",
    "RuleEvaluation",
    "RollupResult",
    "GlobalObjectiveStore",
    "ObjectiveState",
    # RTE integration
    "TrackedValueAdapter",
    "InMemoryTrackedValues",
]
