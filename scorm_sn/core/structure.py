"""
Structure spec models.

The sequencing engine consumes an already-validated activity hierarchy from
the manifest layer. These Pydantic models are that contract: an ordered tree
of activities with control modes, sequencing rules, limit conditions, rollup
configuration and objectives. Keys may be given in snake_case or in the
camelCase spelling used by SCORM manifests (``choiceExit``, ``identifierref``).

Example (JSON):
    {
      "identifier": "course",
      "controlMode": {"flow": true},
      "children": [
        {"identifier": "lesson1", "resourceRef": "res1"},
        {"identifier": "lesson2", "resourceRef": "res2",
         "sequencingRules": {"preConditionRules": [
            {"conditions": [{"condition": "attempted"}], "action": "skip"}]}}
      ]
    }
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from scorm_sn.core.constants import (
    ChildActivitySet,
    ConditionCombination,
    RULE_ACTIONS_BY_TYPE,
    RequiredFor,
    RollupAction,
    RuleAction,
    RuleConditionType,
    RuleType,
)


class SpecModel(BaseModel):
    """Base for structure spec models: immutable, camelCase-tolerant."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


# =============================================================================
# Control Mode
# =============================================================================


class ControlModeSpec(SpecModel):
    """Control mode flags as declared on one activity (None = inherit)."""

    choice: bool | None = None
    choice_exit: bool | None = None
    flow: bool | None = None
    forward_only: bool | None = None


# =============================================================================
# Sequencing Rules
# =============================================================================


class RuleConditionSpec(SpecModel):
    """A single (condition, negate) clause of a sequencing or rollup rule."""

    condition: RuleConditionType
    negate: bool = False
    referenced_objective: str | None = None
    measure_threshold: float | None = Field(default=None, ge=-1.0, le=1.0)

    @model_validator(mode="before")
    @classmethod
    def _operator_to_negate(cls, data: Any) -> Any:
        # Manifests spell negation as operator="not" / "noOp"
        if isinstance(data, dict) and "operator" in data and "negate" not in data:
            data = dict(data)
            data["negate"] = str(data.pop("operator")).lower() == "not"
        return data


class SequencingRuleSpec(SpecModel):
    """Condition clauses combined with all/any, plus the resulting action."""

    conditions: list[RuleConditionSpec] = Field(default_factory=list)
    condition_combination: ConditionCombination = ConditionCombination.ALL
    action: RuleAction


class SequencingRulesSpec(SpecModel):
    """Ordered rule lists; order is significant (first match wins)."""

    pre_condition_rules: list[SequencingRuleSpec] = Field(default_factory=list)
    post_condition_rules: list[SequencingRuleSpec] = Field(default_factory=list)
    exit_condition_rules: list[SequencingRuleSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_actions(self) -> SequencingRulesSpec:
        for rule_type in RuleType:
            allowed = RULE_ACTIONS_BY_TYPE[rule_type]
            for index, rule in enumerate(self.rules_for(rule_type)):
                if rule.action not in allowed:
                    raise ValueError(
                        f"{rule_type.value} rule {index} has action "
                        f"'{rule.action.value}' which is only valid for other rule types"
                    )
        return self

    def rules_for(self, rule_type: RuleType) -> list[SequencingRuleSpec]:
        return {
            RuleType.PRE_CONDITION: self.pre_condition_rules,
            RuleType.POST_CONDITION: self.post_condition_rules,
            RuleType.EXIT_CONDITION: self.exit_condition_rules,
        }[rule_type]

    @property
    def rule_count(self) -> int:
        return (
            len(self.pre_condition_rules)
            + len(self.post_condition_rules)
            + len(self.exit_condition_rules)
        )


class LimitConditionsSpec(SpecModel):
    """Attempt and time limits for an activity."""

    attempt_limit: int = Field(default=0, ge=0)  # 0 = unlimited
    attempt_absolute_duration_limit: float | None = Field(default=None, ge=0)  # seconds
    begin_time_limit: datetime | None = None
    end_time_limit: datetime | None = None


# =============================================================================
# Rollup
# =============================================================================


class RollupRuleSpec(SpecModel):
    """How a cluster aggregates its children into one status."""

    child_activity_set: ChildActivitySet = ChildActivitySet.ALL
    minimum_count: int = Field(default=0, ge=0)
    minimum_percent: float = Field(default=0.0, ge=0.0, le=1.0)
    conditions: list[RuleConditionSpec] = Field(default_factory=list)
    condition_combination: ConditionCombination = ConditionCombination.ANY
    action: RollupAction


class RollupSpec(SpecModel):
    """
    Rollup configuration of an activity.

    The contribution flags and weights describe how this activity counts
    toward its parent; ``rules`` describe how this activity aggregates its
    own children.
    """

    rollup_objective_satisfied: bool = True
    rollup_progress_completion: bool = True
    objective_measure_weight: float | None = Field(default=None, ge=0.0, le=1.0)
    progress_weight: float = Field(default=1.0, ge=0.0)
    rules: list[RollupRuleSpec] = Field(default_factory=list)
    required_for_satisfied: RequiredFor = RequiredFor.ALWAYS
    required_for_not_satisfied: RequiredFor = RequiredFor.ALWAYS
    required_for_completed: RequiredFor = RequiredFor.ALWAYS
    required_for_incomplete: RequiredFor = RequiredFor.ALWAYS

    def required_for(self, action: RollupAction) -> RequiredFor:
        return {
            RollupAction.SATISFIED: self.required_for_satisfied,
            RollupAction.NOT_SATISFIED: self.required_for_not_satisfied,
            RollupAction.COMPLETED: self.required_for_completed,
            RollupAction.INCOMPLETE: self.required_for_incomplete,
        }[action]

    def rules_for(self, action: RollupAction) -> list[RollupRuleSpec]:
        return [rule for rule in self.rules if rule.action is action]


class DeliveryControlsSpec(SpecModel):
    """Delivery controls; untracked activities never contribute to rollup."""

    tracked: bool = True
    completion_set_by_content: bool = False
    objective_set_by_content: bool = False


class CompletionThresholdSpec(SpecModel):
    """Derive completion from progress measure instead of reported status."""

    completed_by_measure: bool = False
    min_progress_measure: float = Field(default=1.0, ge=0.0, le=1.0)


# =============================================================================
# Objectives
# =============================================================================


class ObjectiveMapSpec(SpecModel):
    """Link between a local objective and a shared global objective."""

    target_objective_id: str = Field(min_length=1)
    read_satisfied_status: bool = True
    read_normalized_measure: bool = True
    write_satisfied_status: bool = False
    write_normalized_measure: bool = False


class ObjectiveSpec(SpecModel):
    objective_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("objective_id", "objectiveId", "objectiveID"),
    )
    satisfied_by_measure: bool = False
    min_normalized_measure: float = Field(default=1.0, ge=-1.0, le=1.0)
    map_info: list[ObjectiveMapSpec] = Field(default_factory=list)


class ObjectivesSpec(SpecModel):
    primary: ObjectiveSpec | None = Field(
        default=None,
        validation_alias=AliasChoices("primary", "primaryObjective", "primary_objective"),
    )
    secondary: list[ObjectiveSpec] = Field(
        default_factory=list,
        validation_alias=AliasChoices("secondary", "objectives", "secondaryObjectives"),
    )

    @model_validator(mode="after")
    def _unique_ids(self) -> ObjectivesSpec:
        seen: set[str] = set()
        for objective in self.all_objectives():
            if objective.objective_id in seen:
                raise ValueError(f"Duplicate objective id: {objective.objective_id}")
            seen.add(objective.objective_id)
        return self

    def all_objectives(self) -> list[ObjectiveSpec]:
        return ([self.primary] if self.primary else []) + list(self.secondary)


# =============================================================================
# Activity
# =============================================================================


class ActivitySpec(SpecModel):
    """One node of the hierarchical structure handed over by the manifest layer."""

    identifier: str = Field(min_length=1)
    title: str = ""
    children: list[ActivitySpec] = Field(
        default_factory=list,
        validation_alias=AliasChoices("children", "items", "item"),
    )
    resource_ref: str | None = Field(
        default=None,
        validation_alias=AliasChoices("resource_ref", "resourceRef", "identifierref"),
    )
    is_visible: bool = Field(
        default=True,
        validation_alias=AliasChoices("is_visible", "isVisible", "isvisible"),
    )
    control_mode: ControlModeSpec = Field(default_factory=ControlModeSpec)
    sequencing_rules: SequencingRulesSpec = Field(default_factory=SequencingRulesSpec)
    limit_conditions: LimitConditionsSpec = Field(default_factory=LimitConditionsSpec)
    rollup: RollupSpec = Field(default_factory=RollupSpec)
    delivery_controls: DeliveryControlsSpec = Field(default_factory=DeliveryControlsSpec)
    objectives: ObjectivesSpec = Field(default_factory=ObjectivesSpec)
    completion_threshold: CompletionThresholdSpec = Field(default_factory=CompletionThresholdSpec)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def iter_preorder(self, depth: int = 0) -> Iterator[tuple[ActivitySpec, int]]:
        """Yield (spec, depth) pairs depth-first, parents before children."""
        yield self, depth
        for child in self.children:
            yield from child.iter_preorder(depth + 1)


ActivitySpec.model_rebuild()


# =============================================================================
# Loaders
# =============================================================================


def read_structure_file(path: Path | str) -> dict[str, Any]:
    """
    Read a raw structure mapping from a JSON or YAML file.

    Args:
        path: File with a .json, .yaml or .yml suffix

    Returns:
        The decoded top-level mapping (not yet validated)
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)

    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level, got {type(data).__name__}")
    return data


def load_structure(path: Path | str) -> ActivitySpec:
    """Read and validate a structure spec file."""
    return ActivitySpec.model_validate(read_structure_file(path))
