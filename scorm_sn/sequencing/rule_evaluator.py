"""
Sequencing Rule Evaluator.

Evaluates pre-condition, post-condition and exit-condition rules attached
to an activity. Rules are checked in declaration order and the first rule
whose combined conditions hold decides the action; later rules are never
looked at.

Evaluation is pure: it reads the activity, its objectives (through the
global objective store for mapped objectives) and an injected clock, and
mutates nothing.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType

from loguru import logger

from scorm_sn.core.constants import (
    CompletionStatus,
    ConditionCombination,
    MEASURE_COMPARISON_CONDITIONS,
    RuleAction,
    RuleConditionType,
    RuleType,
)
from scorm_sn.core.structure import RuleConditionSpec
from scorm_sn.sequencing.activity_tree import Activity
from scorm_sn.sequencing.objectives import GlobalObjectiveStore, ObjectiveState

Clock = Callable[[], datetime]
ConditionCheck = Callable[[Activity, ObjectiveState, RuleConditionSpec], bool]


class RuleAnomaly(Exception):
    """A rule clause that cannot be evaluated (bad objective ref, missing threshold)."""


@dataclass
class RuleEvaluation:
    """Detailed outcome of evaluating one rule list."""

    action: RuleAction | None = None
    rule_index: int | None = None
    reason: str = ""
    anomalies: list[str] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.action is not None

    def to_dict(self) -> dict:
        return {
            "action": self.action.value if self.action else None,
            "rule_index": self.rule_index,
            "reason": self.reason,
            "anomalies": list(self.anomalies),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    # Manifest time limits without an offset are read as UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class SequencingRuleEvaluator:
    """
    Evaluates sequencing rules for an activity.

    Usage:
        evaluator = SequencingRuleEvaluator(global_objectives=store)
        action = evaluator.evaluate_pre_condition_rules(activity)
        if action is RuleAction.SKIP:
            ...
    """

    def __init__(
        self,
        global_objectives: GlobalObjectiveStore | None = None,
        clock: Clock | None = None,
    ):
        self.global_objectives = global_objectives
        self.clock = clock or _utcnow
        self._checks: dict[RuleConditionType, ConditionCheck] = {
            RuleConditionType.SATISFIED: self._check_satisfied,
            RuleConditionType.OBJECTIVE_STATUS_KNOWN: self._check_objective_status_known,
            RuleConditionType.OBJECTIVE_MEASURE_KNOWN: self._check_objective_measure_known,
            RuleConditionType.OBJECTIVE_MEASURE_GREATER_THAN: self._check_measure_greater_than,
            RuleConditionType.OBJECTIVE_MEASURE_LESS_THAN: self._check_measure_less_than,
            RuleConditionType.COMPLETED: self._check_completed,
            RuleConditionType.ACTIVITY_PROGRESS_KNOWN: self._check_progress_known,
            RuleConditionType.ATTEMPTED: self._check_attempted,
            RuleConditionType.ATTEMPT_LIMIT_EXCEEDED: self._check_attempt_limit_exceeded,
            RuleConditionType.TIME_LIMIT_EXCEEDED: self._check_time_limit_exceeded,
            RuleConditionType.OUTSIDE_AVAILABLE_TIME_RANGE: self._check_outside_time_range,
            RuleConditionType.ALWAYS: self._check_always,
        }

    @property
    def condition_checks(self) -> Mapping[RuleConditionType, ConditionCheck]:
        """Read-only view of the condition dispatch table."""
        return MappingProxyType(self._checks)

    # =========================================================================
    # RULE LISTS
    # =========================================================================

    def evaluate_pre_condition_rules(self, activity: Activity) -> RuleAction | None:
        return self.evaluate_rules(activity, RuleType.PRE_CONDITION).action

    def evaluate_post_condition_rules(self, activity: Activity) -> RuleAction | None:
        return self.evaluate_rules(activity, RuleType.POST_CONDITION).action

    def evaluate_exit_condition_rules(self, activity: Activity) -> RuleAction | None:
        return self.evaluate_rules(activity, RuleType.EXIT_CONDITION).action

    def evaluate_rules(self, activity: Activity, rule_type: RuleType) -> RuleEvaluation:
        """
        Evaluate one rule list of an activity, first match wins.

        Args:
            activity: Activity whose rules are evaluated
            rule_type: Which rule list to evaluate

        Returns:
            RuleEvaluation with the matched action (or None) and any anomalies
        """
        rules = activity.sequencing_rules.rules_for(rule_type)
        anomalies: list[str] = []

        for index, rule in enumerate(rules):
            matched, rule_anomalies = self.evaluate_conditions(
                activity, rule.conditions, rule.condition_combination
            )
            if rule_anomalies:
                anomalies.extend(f"rule {index}: {message}" for message in rule_anomalies)
                continue
            if matched:
                logger.debug(
                    f"{rule_type.value} rule {index} on {activity.identifier} "
                    f"matched -> {rule.action.value}"
                )
                return RuleEvaluation(
                    action=rule.action,
                    rule_index=index,
                    reason=f"{rule_type.value} rule {index} matched",
                    anomalies=anomalies,
                )

        reason = "no rules declared" if not rules else "no rule matched"
        return RuleEvaluation(reason=reason, anomalies=anomalies)

    # =========================================================================
    # CONDITIONS
    # =========================================================================

    def evaluate_conditions(
        self,
        activity: Activity,
        conditions: list[RuleConditionSpec],
        combination: ConditionCombination,
    ) -> tuple[bool, list[str]]:
        """
        Combine rule clauses with all/any.

        Every clause is evaluated so that anomalies are always reported; a
        rule with an anomalous clause does not apply at all.

        Returns:
            (matched, anomalies). An empty condition list never matches.
        """
        if not conditions:
            return False, []

        results: list[bool] = []
        anomalies: list[str] = []
        for clause in conditions:
            try:
                results.append(self.evaluate_condition(activity, clause))
            except RuleAnomaly as e:
                logger.warning(f"Rule anomaly on {activity.identifier}: {e}")
                anomalies.append(str(e))

        if anomalies:
            return False, anomalies
        if combination is ConditionCombination.ALL:
            return all(results), []
        return any(results), []

    def evaluate_condition(self, activity: Activity, clause: RuleConditionSpec) -> bool:
        """
        Evaluate a single clause, applying its negation.

        Raises:
            RuleAnomaly: clause references an undeclared objective, or a
                measure comparison has no threshold
        """
        objective = self._resolve_objective(activity, clause)
        if clause.condition in MEASURE_COMPARISON_CONDITIONS and clause.measure_threshold is None:
            raise RuleAnomaly(f"{clause.condition.value} has no measure threshold")

        result = self._checks[clause.condition](activity, objective, clause)
        return not result if clause.negate else result

    @staticmethod
    def _resolve_objective(activity: Activity, clause: RuleConditionSpec) -> ObjectiveState:
        if clause.referenced_objective is None:
            return activity.primary_objective
        objective = activity.get_objective(clause.referenced_objective)
        if objective is None:
            raise RuleAnomaly(
                f"{clause.condition.value} references undeclared objective "
                f"'{clause.referenced_objective}'"
            )
        return objective

    def _check_satisfied(self, activity, objective, clause) -> bool:
        return objective.satisfied(self.global_objectives) is True

    def _check_objective_status_known(self, activity, objective, clause) -> bool:
        return objective.satisfied(self.global_objectives) is not None

    def _check_objective_measure_known(self, activity, objective, clause) -> bool:
        return objective.measure(self.global_objectives) is not None

    def _check_measure_greater_than(self, activity, objective, clause) -> bool:
        measure = objective.measure(self.global_objectives)
        return measure is not None and measure > clause.measure_threshold

    def _check_measure_less_than(self, activity, objective, clause) -> bool:
        measure = objective.measure(self.global_objectives)
        return measure is not None and measure < clause.measure_threshold

    def _check_completed(self, activity, objective, clause) -> bool:
        return activity.completion_status is CompletionStatus.COMPLETED

    def _check_progress_known(self, activity, objective, clause) -> bool:
        return activity.completion_status is not CompletionStatus.UNKNOWN

    def _check_attempted(self, activity, objective, clause) -> bool:
        return activity.attempt_count > 0

    def _check_attempt_limit_exceeded(self, activity, objective, clause) -> bool:
        return self.is_attempt_limit_exceeded(activity)

    def _check_time_limit_exceeded(self, activity, objective, clause) -> bool:
        limit = activity.limit_conditions.attempt_absolute_duration_limit
        if limit is None or activity.attempt_duration is None:
            return False
        return activity.attempt_duration > limit

    def _check_outside_time_range(self, activity, objective, clause) -> bool:
        limits = activity.limit_conditions
        now = _as_aware(self.clock())
        if limits.begin_time_limit is not None and now < _as_aware(limits.begin_time_limit):
            return True
        if limits.end_time_limit is not None and now > _as_aware(limits.end_time_limit):
            return True
        return False

    def _check_always(self, activity, objective, clause) -> bool:
        return True

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def is_attempt_limit_exceeded(activity: Activity) -> bool:
        limit = activity.limit_conditions.attempt_limit
        return limit > 0 and activity.attempt_count >= limit
