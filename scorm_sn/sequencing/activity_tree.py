"""
Activity Tree Manager.

Builds the hierarchical activity structure handed over by the manifest
layer, resolves inherited control modes once at build time, and answers
structural queries (parent, children, siblings, pre-order traversal, stats).

Tree integrity guards:
- Object cycles in raw mappings are caught before model validation
- Identifier cycles are caught with a visiting-set DFS
- Depth is bounded by Settings.max_activity_depth (root = depth 0)

Both guards are a second line of defence; well-formed manifests never
trigger them.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from pydantic import ValidationError

from config import get_settings
from scorm_sn.core.constants import (
    ActivityState,
    CompletionStatus,
    CONTROL_MODE_DEFAULTS,
    ControlModeFlag,
    SnErrorCode,
    SuccessStatus,
)
from scorm_sn.core.errors import ActivityNotFoundError, TreeConstructionError
from scorm_sn.core.structure import (
    ActivitySpec,
    CompletionThresholdSpec,
    ControlModeSpec,
    DeliveryControlsSpec,
    LimitConditionsSpec,
    RollupSpec,
    SequencingRulesSpec,
)
from scorm_sn.sequencing.objectives import ObjectiveState

_CHILD_KEYS = ("children", "items", "item")


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class ControlMode:
    """Effective control mode flags of an activity (inheritance resolved)."""

    choice: bool = CONTROL_MODE_DEFAULTS[ControlModeFlag.CHOICE]
    choice_exit: bool = CONTROL_MODE_DEFAULTS[ControlModeFlag.CHOICE_EXIT]
    flow: bool = CONTROL_MODE_DEFAULTS[ControlModeFlag.FLOW]
    forward_only: bool = CONTROL_MODE_DEFAULTS[ControlModeFlag.FORWARD_ONLY]

    @classmethod
    def resolve(cls, spec: ControlModeSpec, inherited: ControlMode | None = None) -> ControlMode:
        """Own flag if declared, else the inherited value, else the default."""
        base = inherited or cls()
        return cls(
            choice=base.choice if spec.choice is None else spec.choice,
            choice_exit=base.choice_exit if spec.choice_exit is None else spec.choice_exit,
            flow=base.flow if spec.flow is None else spec.flow,
            forward_only=base.forward_only if spec.forward_only is None else spec.forward_only,
        )

    def to_dict(self) -> dict[str, bool]:
        return {
            ControlModeFlag.CHOICE.value: self.choice,
            ControlModeFlag.CHOICE_EXIT.value: self.choice_exit,
            ControlModeFlag.FLOW.value: self.flow,
            ControlModeFlag.FORWARD_ONLY.value: self.forward_only,
        }


@dataclass(frozen=True)
class ActivityStatus:
    """The rollup-relevant status fields of one activity."""

    completion_status: CompletionStatus
    success_status: SuccessStatus
    progress_measure: float | None
    objective_measure: float | None

    def to_dict(self) -> dict:
        return {
            "completion_status": self.completion_status.value,
            "success_status": self.success_status.value,
            "progress_measure": self.progress_measure,
            "objective_measure": self.objective_measure,
        }


@dataclass(frozen=True)
class ActivitySnapshot:
    """Copy of an activity's mutable state, used to roll back a request."""

    activity_state: ActivityState
    is_active: bool
    suspended: bool
    attempt_count: int
    completion_status: CompletionStatus
    progress_measure: float | None
    location: str
    attempt_duration: float | None
    objectives: tuple[tuple[str, bool | None, float | None], ...]


@dataclass
class TreeStats:
    """Shape summary consumed by navigation UI logic."""

    total_activities: int = 0
    leaf_activities: int = 0
    launchable_activities: int = 0
    max_depth: int = 0
    global_objectives: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_activities": self.total_activities,
            "leaf_activities": self.leaf_activities,
            "launchable_activities": self.launchable_activities,
            "max_depth": self.max_depth,
            "global_objectives": self.global_objectives,
        }


@dataclass(eq=False)
class Activity:
    """A node (cluster or launchable leaf) in the activity tree."""

    identifier: str
    title: str = ""
    parent: Activity | None = field(default=None, repr=False)
    children: list[Activity] = field(default_factory=list, repr=False)
    resource_ref: str | None = None
    is_visible: bool = True

    # Sequencing definition (immutable after build)
    control_mode: ControlMode = field(default_factory=ControlMode)
    sequencing_rules: SequencingRulesSpec = field(default_factory=SequencingRulesSpec, repr=False)
    limit_conditions: LimitConditionsSpec = field(default_factory=LimitConditionsSpec, repr=False)
    rollup: RollupSpec = field(default_factory=RollupSpec, repr=False)
    delivery_controls: DeliveryControlsSpec = field(default_factory=DeliveryControlsSpec, repr=False)
    completion_threshold: CompletionThresholdSpec = field(
        default_factory=CompletionThresholdSpec, repr=False
    )
    primary_objective: ObjectiveState | None = field(default=None, repr=False)
    objectives: dict[str, ObjectiveState] = field(default_factory=dict, repr=False)

    # Tracked state
    activity_state: ActivityState = ActivityState.INACTIVE
    is_active: bool = False  # An attempt is in progress
    suspended: bool = False
    attempt_count: int = 0
    completion_status: CompletionStatus = CompletionStatus.UNKNOWN
    progress_measure: float | None = None
    location: str = ""
    attempt_duration: float | None = None  # seconds, supplied by the RTE
    last_accessed_at: datetime | None = None

    def __post_init__(self):
        if self.primary_objective is None:
            self.primary_objective = ObjectiveState(self.identifier, is_primary=True)
        self.objectives.setdefault(self.primary_objective.objective_id, self.primary_objective)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def is_launchable(self) -> bool:
        """Only leaves with a resource reference can be delivered."""
        return self.is_leaf and bool(self.resource_ref)

    @property
    def depth(self) -> int:
        depth = 0
        current = self.parent
        while current is not None:
            depth += 1
            current = current.parent
        return depth

    def ancestors(self) -> Iterator[Activity]:
        """Yield parent, grandparent, ... up to the root."""
        current = self.parent
        while current is not None:
            yield current
            current = current.parent

    def path_from_root(self) -> list[Activity]:
        """Root first, this activity last."""
        path = [self, *self.ancestors()]
        path.reverse()
        return path

    def is_descendant_of(self, other: Activity) -> bool:
        return any(ancestor is other for ancestor in self.ancestors())

    def get_objective(self, objective_id: str) -> ObjectiveState | None:
        return self.objectives.get(objective_id)

    # ------------------------------------------------------------------
    # Tracked status
    # ------------------------------------------------------------------

    @property
    def success_status(self) -> SuccessStatus:
        return SuccessStatus.from_satisfied(self.primary_objective.local_satisfied)

    @success_status.setter
    def success_status(self, value: SuccessStatus) -> None:
        self.primary_objective.local_satisfied = SuccessStatus(value).satisfied

    @property
    def objective_satisfied_status(self) -> bool | None:
        return self.primary_objective.local_satisfied

    @property
    def objective_measure(self) -> float | None:
        return self.primary_objective.local_measure

    @objective_measure.setter
    def objective_measure(self, value: float | None) -> None:
        self.primary_objective.local_measure = value

    def status(self) -> ActivityStatus:
        return ActivityStatus(
            completion_status=self.completion_status,
            success_status=self.success_status,
            progress_measure=self.progress_measure,
            objective_measure=self.objective_measure,
        )

    def set_state(self, new_state: ActivityState) -> None:
        self.activity_state = new_state
        self.last_accessed_at = datetime.now(timezone.utc)

    def reset_tracking(self) -> None:
        """Clear attempt progress and objective data (used on retry)."""
        self.completion_status = CompletionStatus.UNKNOWN
        self.progress_measure = None
        self.location = ""
        self.attempt_duration = None
        for objective in self.objectives.values():
            objective.reset()

    def capture(self) -> ActivitySnapshot:
        return ActivitySnapshot(
            activity_state=self.activity_state,
            is_active=self.is_active,
            suspended=self.suspended,
            attempt_count=self.attempt_count,
            completion_status=self.completion_status,
            progress_measure=self.progress_measure,
            location=self.location,
            attempt_duration=self.attempt_duration,
            objectives=tuple(
                (objective_id, objective.local_satisfied, objective.local_measure)
                for objective_id, objective in self.objectives.items()
            ),
        )

    def restore(self, snapshot: ActivitySnapshot) -> None:
        self.activity_state = snapshot.activity_state
        self.is_active = snapshot.is_active
        self.suspended = snapshot.suspended
        self.attempt_count = snapshot.attempt_count
        self.completion_status = snapshot.completion_status
        self.progress_measure = snapshot.progress_measure
        self.location = snapshot.location
        self.attempt_duration = snapshot.attempt_duration
        for objective_id, satisfied, measure in snapshot.objectives:
            objective = self.objectives[objective_id]
            objective.local_satisfied = satisfied
            objective.local_measure = measure

    def __repr__(self) -> str:
        return f"Activity({self.identifier!r}, children={len(self.children)})"


# =============================================================================
# Activity Tree Manager
# =============================================================================


class ActivityTreeManager:
    """
    Owns one activity tree.

    Read-mostly after build_tree(); tracked state on the nodes is mutated
    by the navigation handler and the rollup engine.

    Usage:
        manager = ActivityTreeManager()
        root = manager.build_tree(spec)
        lesson = manager.get_activity("lesson1")
        stats = manager.get_tree_stats()
    """

    def __init__(self, max_depth: int | None = None):
        self.max_depth = max_depth if max_depth is not None else get_settings().max_activity_depth
        self.root: Activity | None = None
        self.activities: dict[str, Activity] = {}
        logger.debug(f"ActivityTreeManager initialized (max_depth={self.max_depth})")

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    def build_tree(self, structure_spec: ActivitySpec | Mapping[str, Any]) -> Activity:
        """
        Build the activity tree from a structure spec.

        Args:
            structure_spec: Validated ActivitySpec or a raw mapping of the same shape

        Returns:
            The root Activity

        Raises:
            TreeConstructionError: cycle, excessive depth, or invalid spec
        """
        self.reset()

        if isinstance(structure_spec, Mapping):
            self._check_raw_structure(structure_spec, depth=0, on_path=set())
            try:
                spec = ActivitySpec.model_validate(structure_spec)
            except ValidationError as e:
                logger.error(f"Activity tree spec failed validation: {e.error_count()} error(s)")
                raise TreeConstructionError(f"Invalid activity tree spec: {e}") from e
        elif isinstance(structure_spec, ActivitySpec):
            spec = structure_spec
        else:
            raise TreeConstructionError(
                f"Unsupported structure spec type: {type(structure_spec).__name__}"
            )

        try:
            self.root = self._build_node(spec, parent=None, depth=0, visiting=set())
        except TreeConstructionError:
            self.reset()
            raise

        logger.info(f"Activity tree built with {len(self.activities)} activities")
        return self.root

    def _check_raw_structure(
        self, data: Mapping[str, Any], depth: int, on_path: set[int]
    ) -> None:
        """Reject self-referencing or absurdly deep mappings before validation."""
        if depth > self.max_depth:
            raise TreeConstructionError(
                f"Maximum activity depth exceeded: {depth} (max={self.max_depth})",
                SnErrorCode.MAX_DEPTH_EXCEEDED,
            )
        node_key = id(data)
        if node_key in on_path:
            raise TreeConstructionError(
                f"Circular reference detected at item: {data.get('identifier')}",
                SnErrorCode.CIRCULAR_ACTIVITY_REFERENCE,
            )

        children = next((data[key] for key in _CHILD_KEYS if key in data), None)
        if not isinstance(children, list):
            return

        on_path.add(node_key)
        for child in children:
            if isinstance(child, Mapping):
                self._check_raw_structure(child, depth + 1, on_path)
        on_path.discard(node_key)

    def _build_node(
        self,
        spec: ActivitySpec,
        parent: Activity | None,
        depth: int,
        visiting: set[str],
    ) -> Activity | None:
        """Create one node and its subtree (DFS with a visiting set)."""
        identifier = spec.identifier

        if depth > self.max_depth:
            logger.warning(
                f"ActivityTreeManager: depth limit exceeded at {depth} "
                f"(max={self.max_depth}) for item {identifier}"
            )
            raise TreeConstructionError(
                f"Maximum activity depth exceeded: {depth} (max={self.max_depth})",
                SnErrorCode.MAX_DEPTH_EXCEEDED,
            )

        if identifier in visiting:
            logger.error(f"Circular reference detected: {identifier}")
            raise TreeConstructionError(
                f"Circular reference detected: {identifier}",
                SnErrorCode.CIRCULAR_ACTIVITY_REFERENCE,
            )

        if identifier in self.activities:
            # First occurrence wins; the duplicate subtree is not attached
            logger.warning(
                f"ActivityTreeManager: duplicate identifier encountered, "
                f"skipping re-attachment: {identifier}"
            )
            return None

        activity = self._create_activity(spec, parent)
        self.activities[identifier] = activity

        visiting.add(identifier)
        for child_spec in spec.children:
            child = self._build_node(child_spec, activity, depth + 1, visiting)
            if child is not None:
                activity.children.append(child)
        visiting.discard(identifier)

        return activity

    @staticmethod
    def _create_activity(spec: ActivitySpec, parent: Activity | None) -> Activity:
        primary = None
        if spec.objectives.primary is not None:
            primary = ObjectiveState.from_spec(spec.objectives.primary, is_primary=True)

        activity = Activity(
            identifier=spec.identifier,
            title=spec.title,
            parent=parent,
            resource_ref=spec.resource_ref,
            is_visible=spec.is_visible,
            control_mode=ControlMode.resolve(
                spec.control_mode, parent.control_mode if parent else None
            ),
            sequencing_rules=spec.sequencing_rules,
            limit_conditions=spec.limit_conditions,
            rollup=spec.rollup,
            delivery_controls=spec.delivery_controls,
            completion_threshold=spec.completion_threshold,
            primary_objective=primary,
        )
        for objective_spec in spec.objectives.secondary:
            activity.objectives[objective_spec.objective_id] = ObjectiveState.from_spec(objective_spec)
        return activity

    # =========================================================================
    # QUERIES
    # =========================================================================

    def find_activity(self, identifier: str) -> Activity | None:
        return self.activities.get(identifier)

    def get_activity(self, identifier: str) -> Activity:
        """Like find_activity, but a missing identifier is a programming error."""
        activity = self.activities.get(identifier)
        if activity is None:
            raise ActivityNotFoundError(identifier)
        return activity

    @staticmethod
    def get_parent(activity: Activity) -> Activity | None:
        return activity.parent

    @staticmethod
    def get_children(activity: Activity) -> list[Activity]:
        return list(activity.children)

    @staticmethod
    def get_siblings(activity: Activity) -> list[Activity]:
        """Other children of the same parent, in declaration order."""
        if activity.parent is None:
            return []
        return [child for child in activity.parent.children if child is not activity]

    @staticmethod
    def is_leaf(activity: Activity) -> bool:
        return activity.is_leaf

    def iter_preorder(self, start: Activity | None = None) -> Iterator[Activity]:
        """Depth-first, pre-order, left-to-right."""
        node = start or self.root
        if node is None:
            return
        stack = [node]
        while stack:
            current = stack.pop()
            yield current
            stack.extend(reversed(current.children))

    def get_leaf_activities(self) -> list[Activity]:
        return [activity for activity in self.iter_preorder() if activity.is_leaf]

    def get_launchable_activities(self) -> list[Activity]:
        return [activity for activity in self.iter_preorder() if activity.is_launchable]

    def get_tree_stats(self) -> TreeStats:
        stats = TreeStats()
        global_ids: set[str] = set()
        for activity in self.iter_preorder():
            stats.total_activities += 1
            if activity.is_leaf:
                stats.leaf_activities += 1
            if activity.is_launchable:
                stats.launchable_activities += 1
            stats.max_depth = max(stats.max_depth, activity.depth)
            for objective in activity.objectives.values():
                global_ids.update(mapping.target_objective_id for mapping in objective.map_info)
        stats.global_objectives = len(global_ids)
        return stats

    # =========================================================================
    # STATE SNAPSHOTS
    # =========================================================================

    def capture_state(self) -> dict[str, ActivitySnapshot]:
        return {identifier: activity.capture() for identifier, activity in self.activities.items()}

    def restore_state(self, snapshot: dict[str, ActivitySnapshot]) -> None:
        for identifier, activity_snapshot in snapshot.items():
            self.get_activity(identifier).restore(activity_snapshot)

    def reset(self) -> None:
        self.activities.clear()
        self.root = None
        logger.debug("Activity tree reset")
