"""
Rollup Engine.

Propagates a change in one activity's tracking state up the tree. Each
ancestor is recomputed from its direct children only:

1. Objective measure   - weighted mean of children with a known measure
2. Progress measure    - weighted mean of children with a known progress
3. Satisfaction        - notSatisfied rules, then satisfied rules
4. Completion          - incomplete rules, then completed rules

Propagation stops at the first ancestor whose status does not change.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from config import get_settings
from scorm_sn.core.constants import (
    ChildActivitySet,
    CompletionStatus,
    RequiredFor,
    RollupAction,
    RuleAction,
)
from scorm_sn.core.structure import RollupRuleSpec
from scorm_sn.sequencing.activity_tree import Activity, ActivityStatus
from scorm_sn.sequencing.objectives import GlobalObjectiveStore
from scorm_sn.sequencing.rule_evaluator import SequencingRuleEvaluator

_SATISFACTION_ACTIONS = frozenset({RollupAction.SATISFIED, RollupAction.NOT_SATISFIED})


@dataclass
class RollupResult:
    """Which ancestors changed during one rollup pass."""

    activity_id: str
    changed: dict[str, ActivityStatus] = field(default_factory=dict)
    stopped_at: str | None = None
    global_objectives_written: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "activity_id": self.activity_id,
            "changed": {key: status.to_dict() for key, status in self.changed.items()},
            "stopped_at": self.stopped_at,
            "global_objectives_written": list(self.global_objectives_written),
        }


def _weighted_mean(pairs: list[tuple[float, float]]) -> float | None:
    """Mean of (value, weight) pairs; None when there is no weight at all."""
    total_weight = sum(weight for _, weight in pairs)
    if total_weight <= 0:
        return None
    return sum(value * weight for value, weight in pairs) / total_weight


class RollupEngine:
    """
    Recomputes cluster status from child status.

    Usage:
        engine = RollupEngine(evaluator, global_objectives=store)
        result = engine.rollup(leaf)
        for activity_id, status in result.changed.items():
            ...
    """

    def __init__(
        self,
        evaluator: SequencingRuleEvaluator,
        global_objectives: GlobalObjectiveStore | None = None,
        enabled: bool | None = None,
        default_objective_weight: float | None = None,
    ):
        settings = get_settings()
        self.evaluator = evaluator
        self.global_objectives = global_objectives
        self.enabled = settings.enable_rollup_processing if enabled is None else enabled
        self.default_objective_weight = (
            settings.default_objective_weight
            if default_objective_weight is None
            else default_objective_weight
        )
        self._in_progress = False

    # =========================================================================
    # PROPAGATION
    # =========================================================================

    def rollup(self, changed_activity: Activity) -> RollupResult:
        """
        Propagate a change of `changed_activity` to its ancestors.

        The changed activity itself is never modified; its objectives are
        published through their write maps before the walk starts.

        Returns:
            RollupResult listing every ancestor whose status changed
        """
        result = RollupResult(activity_id=changed_activity.identifier)
        if not self.enabled:
            logger.debug("Rollup processing disabled")
            return result
        if self._in_progress:
            logger.warning(
                f"Rollup already in progress, ignoring re-entrant call for "
                f"{changed_activity.identifier}"
            )
            return result

        self._in_progress = True
        try:
            self._write_global_objectives(changed_activity, result)
            for ancestor in changed_activity.ancestors():
                before = ancestor.status()
                after = self.rollup_activity(ancestor)
                if after == before:
                    result.stopped_at = ancestor.identifier
                    logger.debug(f"Rollup stopped at {ancestor.identifier} (unchanged)")
                    break
                result.changed[ancestor.identifier] = after
                self._write_global_objectives(ancestor, result)
        finally:
            self._in_progress = False

        if result.changed:
            logger.debug(
                f"Rollup from {changed_activity.identifier} changed: "
                f"{', '.join(result.changed)}"
            )
        return result

    def _write_global_objectives(self, activity: Activity, result: RollupResult) -> None:
        if self.global_objectives is None:
            return
        for objective in activity.objectives.values():
            for objective_id in self.global_objectives.write_from(objective):
                if objective_id not in result.global_objectives_written:
                    result.global_objectives_written.append(objective_id)

    def rollup_activity(self, activity: Activity) -> ActivityStatus:
        """
        Recompute one cluster from its direct children.

        Leaves are returned unchanged. Calling this twice without any child
        change yields the same status.
        """
        if activity.is_leaf:
            return activity.status()

        self._rollup_objective_measure(activity)
        self._rollup_progress_measure(activity)
        self._rollup_satisfaction(activity)
        self._rollup_completion(activity)
        return activity.status()

    # =========================================================================
    # MEASURES
    # =========================================================================

    def _rollup_objective_measure(self, activity: Activity) -> None:
        pairs = []
        for child in activity.children:
            if not (child.delivery_controls.tracked and child.rollup.rollup_objective_satisfied):
                continue
            measure = child.primary_objective.measure(self.global_objectives)
            if measure is None:
                continue
            weight = child.rollup.objective_measure_weight
            pairs.append((measure, self.default_objective_weight if weight is None else weight))
        activity.objective_measure = _weighted_mean(pairs)

    def _rollup_progress_measure(self, activity: Activity) -> None:
        pairs = [
            (child.progress_measure, child.rollup.progress_weight)
            for child in activity.children
            if child.delivery_controls.tracked
            and child.rollup.rollup_progress_completion
            and child.progress_measure is not None
        ]
        activity.progress_measure = _weighted_mean(pairs)

    # =========================================================================
    # STATUS
    # =========================================================================

    def _rollup_satisfaction(self, activity: Activity) -> None:
        objective = activity.primary_objective
        measure = activity.objective_measure
        if objective.satisfied_by_measure and measure is not None:
            objective.local_satisfied = measure >= objective.min_normalized_measure
            return

        satisfied_children = self._eligible_children(activity, RollupAction.SATISFIED)
        not_satisfied_children = self._eligible_children(activity, RollupAction.NOT_SATISFIED)
        satisfied_rules = activity.rollup.rules_for(RollupAction.SATISFIED)
        not_satisfied_rules = activity.rollup.rules_for(RollupAction.NOT_SATISFIED)

        satisfied: bool | None = None
        if not satisfied_rules and not not_satisfied_rules:
            if any(self._child_satisfied(child) is False for child in not_satisfied_children):
                satisfied = False
            if satisfied_children and all(
                self._child_satisfied(child) is True for child in satisfied_children
            ):
                satisfied = True
        else:
            if self._any_rule_applies(not_satisfied_rules, not_satisfied_children):
                satisfied = False
            if self._any_rule_applies(satisfied_rules, satisfied_children):
                satisfied = True

        objective.local_satisfied = satisfied

    def _rollup_completion(self, activity: Activity) -> None:
        threshold = activity.completion_threshold
        if threshold.completed_by_measure and activity.progress_measure is not None:
            activity.completion_status = (
                CompletionStatus.COMPLETED
                if activity.progress_measure >= threshold.min_progress_measure
                else CompletionStatus.INCOMPLETE
            )
            return

        completed_children = self._eligible_children(activity, RollupAction.COMPLETED)
        incomplete_children = self._eligible_children(activity, RollupAction.INCOMPLETE)
        completed_rules = activity.rollup.rules_for(RollupAction.COMPLETED)
        incomplete_rules = activity.rollup.rules_for(RollupAction.INCOMPLETE)

        status = CompletionStatus.UNKNOWN
        if not completed_rules and not incomplete_rules:
            if any(
                child.completion_status is not CompletionStatus.UNKNOWN or child.attempt_count > 0
                for child in incomplete_children
            ):
                status = CompletionStatus.INCOMPLETE
            if completed_children and all(
                child.completion_status is CompletionStatus.COMPLETED
                for child in completed_children
            ):
                status = CompletionStatus.COMPLETED
        else:
            if incomplete_rules:
                if self._any_rule_applies(incomplete_rules, incomplete_children):
                    status = CompletionStatus.INCOMPLETE
            elif any(
                child.completion_status is not CompletionStatus.UNKNOWN
                for child in incomplete_children
            ):
                status = CompletionStatus.INCOMPLETE
            if self._any_rule_applies(completed_rules, completed_children):
                status = CompletionStatus.COMPLETED

        activity.completion_status = status

    def _child_satisfied(self, child: Activity) -> bool | None:
        return child.primary_objective.satisfied(self.global_objectives)

    # =========================================================================
    # RULES
    # =========================================================================

    def _any_rule_applies(self, rules: list[RollupRuleSpec], children: list[Activity]) -> bool:
        return any(self._rule_applies(rule, children) for rule in rules)

    def _rule_applies(self, rule: RollupRuleSpec, children: list[Activity]) -> bool:
        """Apply a rollup rule's child activity set to the eligible children."""
        total = len(children)
        if total == 0:
            return False

        matching = sum(
            1
            for child in children
            if self.evaluator.evaluate_conditions(
                child, rule.conditions, rule.condition_combination
            )[0]
        )

        child_set = rule.child_activity_set
        if child_set is ChildActivitySet.ALL:
            return matching == total
        if child_set is ChildActivitySet.ANY:
            return matching >= 1
        if child_set is ChildActivitySet.NONE:
            return matching == 0
        if child_set is ChildActivitySet.AT_LEAST_COUNT:
            return matching >= rule.minimum_count
        if child_set is ChildActivitySet.AT_LEAST_PERCENT:
            return matching / total >= rule.minimum_percent
        raise ValueError(f"Unhandled child activity set: {child_set}")

    def _eligible_children(self, activity: Activity, action: RollupAction) -> list[Activity]:
        return [child for child in activity.children if self._contributes(child, action)]

    def _contributes(self, child: Activity, action: RollupAction) -> bool:
        """Whether `child` counts toward `action` on its parent."""
        if not child.delivery_controls.tracked:
            return False
        if action in _SATISFACTION_ACTIONS:
            if not child.rollup.rollup_objective_satisfied:
                return False
        elif not child.rollup.rollup_progress_completion:
            return False

        required = child.rollup.required_for(action)
        if required is RequiredFor.IF_ATTEMPTED:
            return child.attempt_count > 0
        if required is RequiredFor.IF_NOT_SKIPPED:
            return self.evaluator.evaluate_pre_condition_rules(child) is not RuleAction.SKIP
        if required is RequiredFor.IF_NOT_SUSPENDED:
            return not child.suspended
        return True
