"""
Structure lint - static checks on a structure spec before it is sequenced.

Philosophy:
- Report, don't fix: the engine still decides what is fatal at build time
- Errors mean the tree cannot be sequenced as authored
- Warnings mean it can, but probably not the way the author intended
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from config import get_settings
from scorm_sn.core.constants import MEASURE_COMPARISON_CONDITIONS
from scorm_sn.core.structure import ActivitySpec, RuleConditionSpec


class LintSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class LintIssue:
    """A single finding on one activity (or on the whole tree)."""
    rule: str
    severity: LintSeverity
    identifier: str | None
    message: str
    path: str = ""
    fix_suggestion: str = ""

    def to_dict(self) -> dict:
        return {
            "rule": self.rule,
            "severity": self.severity.value,
            "identifier": self.identifier,
            "message": self.message,
            "path": self.path,
            "fix_suggestion": self.fix_suggestion,
        }


@dataclass
class LintReport:
    issues: list[LintIssue] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)

    @property
    def errors(self) -> list[LintIssue]:
        return [issue for issue in self.issues if issue.severity is LintSeverity.ERROR]

    @property
    def warnings(self) -> list[LintIssue]:
        return [issue for issue in self.issues if issue.severity is LintSeverity.WARNING]

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict:
        return {
            "issues": [issue.to_dict() for issue in self.issues],
            "stats": dict(self.stats),
        }


# ============================================================================
# LINT RULES
# ============================================================================


def lint_structure(spec: ActivitySpec, max_depth: int | None = None) -> LintReport:
    """
    Run every lint rule over a structure spec.

    Args:
        spec: Root of the validated structure spec
        max_depth: Depth limit to check against (defaults to settings)

    Returns:
        LintReport with issues in pre-order and scan statistics
    """
    max_depth = max_depth if max_depth is not None else get_settings().max_activity_depth
    report = LintReport()
    seen: dict[str, str] = {}
    stats = {"items_scanned": 0, "leaves": 0, "clusters": 0, "rules": 0}
    launchable = 0

    def add(rule, severity, item, message, path, fix=""):
        report.issues.append(
            LintIssue(rule, severity, item.identifier if item else None, message, path, fix)
        )

    def walk(item: ActivitySpec, depth: int, ancestry: list[str]) -> None:
        nonlocal launchable
        path = "/".join([*ancestry, item.identifier])
        stats["items_scanned"] += 1
        stats["rules"] += item.sequencing_rules.rule_count + len(item.rollup.rules)

        if item.identifier in seen:
            add(
                "duplicate_identifier", LintSeverity.ERROR, item,
                f"Identifier '{item.identifier}' already used at {seen[item.identifier]}",
                path, "Give every item a unique identifier.",
            )
        else:
            seen[item.identifier] = path

        if depth > max_depth:
            add(
                "depth_exceeds_limit", LintSeverity.ERROR, item,
                f"Depth {depth} exceeds the limit of {max_depth}",
                path, "Flatten the organization or raise SN_MAX_ACTIVITY_DEPTH.",
            )

        if item.is_leaf:
            stats["leaves"] += 1
            if item.resource_ref:
                launchable += 1
            else:
                add(
                    "leaf_without_resource", LintSeverity.WARNING, item,
                    "Leaf item missing a resource reference (no launchable resource)",
                    path, "Provide identifierref to a <resource> or give this item children.",
                )
        else:
            stats["clusters"] += 1
            if item.resource_ref:
                add(
                    "cluster_with_resource", LintSeverity.WARNING, item,
                    "Cluster has a resource reference; only leaves are launched",
                    path, "Move the resource onto a leaf item.",
                )
            mode = item.control_mode
            if mode.flow is False and mode.choice is False:
                add(
                    "unnavigable_cluster", LintSeverity.WARNING, item,
                    "Cluster disables both flow and choice; its children cannot be reached",
                    path, "Enable flow or choice on this cluster.",
                )

        _lint_conditions(item, path, add)

        for child in item.children:
            walk(child, depth + 1, [*ancestry, item.identifier])

    walk(spec, 0, [])

    if launchable == 0:
        add(
            "no_launchable_activities", LintSeverity.ERROR, None,
            "The tree has no launchable activity", spec.identifier,
            "Add at least one leaf with a resource reference.",
        )

    report.stats = stats
    logger.debug(
        f"Structure lint: {stats['items_scanned']} items, "
        f"{len(report.errors)} errors, {len(report.warnings)} warnings"
    )
    return report


def _lint_conditions(item: ActivitySpec, path: str, add) -> None:
    declared = {objective.objective_id for objective in item.objectives.all_objectives()}

    clauses: list[tuple[str, RuleConditionSpec]] = []
    for label, rules in (
        ("preCondition", item.sequencing_rules.pre_condition_rules),
        ("postCondition", item.sequencing_rules.post_condition_rules),
        ("exitCondition", item.sequencing_rules.exit_condition_rules),
        ("rollup", item.rollup.rules),
    ):
        for index, rule in enumerate(rules):
            clauses.extend((f"{label} rule {index}", clause) for clause in rule.conditions)

    for where, clause in clauses:
        # Rollup clauses are evaluated against each child, not this item
        checks_reference = not where.startswith("rollup")
        if checks_reference and clause.referenced_objective and clause.referenced_objective not in declared:
            add(
                "undeclared_objective_reference", LintSeverity.WARNING, item,
                f"{where} references undeclared objective '{clause.referenced_objective}'",
                path, "Declare the objective on this item or fix the reference.",
            )
        if clause.condition in MEASURE_COMPARISON_CONDITIONS and clause.measure_threshold is None:
            add(
                "measure_condition_without_threshold", LintSeverity.WARNING, item,
                f"{where} compares the objective measure without a measureThreshold",
                path, "Add a measureThreshold between -1 and 1.",
            )
