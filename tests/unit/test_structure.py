"""
Unit tests for the structure spec models and loaders.
"""

import json

import pytest
from pydantic import ValidationError

from scorm_sn.core.constants import (
    ChildActivitySet,
    ConditionCombination,
    RequiredFor,
    RollupAction,
    RuleAction,
    RuleConditionType,
)
from scorm_sn.core.structure import ActivitySpec, load_structure, read_structure_file


class TestActivitySpec:
    def test_manifest_spellings(self):
        spec = ActivitySpec.model_validate({
            "identifier": "course",
            "item": [
                {"identifier": "sco1", "identifierref": "res1", "isvisible": False},
            ],
        })

        child = spec.children[0]
        assert child.resource_ref == "res1"
        assert child.is_visible is False
        assert child.is_leaf
        assert not spec.is_leaf

    def test_snake_case_accepted(self):
        spec = ActivitySpec.model_validate({
            "identifier": "lesson",
            "resource_ref": "res",
            "control_mode": {"choice_exit": False},
            "limit_conditions": {"attempt_limit": 3},
        })

        assert spec.resource_ref == "res"
        assert spec.control_mode.choice_exit is False
        assert spec.limit_conditions.attempt_limit == 3

    def test_defaults(self):
        spec = ActivitySpec.model_validate({"identifier": "lesson"})

        assert spec.control_mode.flow is None
        assert spec.limit_conditions.attempt_limit == 0
        assert spec.delivery_controls.tracked is True
        assert spec.rollup.rollup_objective_satisfied is True
        assert spec.rollup.required_for(RollupAction.COMPLETED) is RequiredFor.ALWAYS
        assert spec.sequencing_rules.rule_count == 0

    def test_models_are_frozen(self):
        spec = ActivitySpec.model_validate({"identifier": "lesson"})

        with pytest.raises(ValidationError):
            spec.identifier = "other"

    def test_rules(self):
        spec = ActivitySpec.model_validate({
            "identifier": "lesson",
            "sequencingRules": {
                "preConditionRules": [{
                    "conditionCombination": "any",
                    "conditions": [
                        {"condition": "satisfied"},
                        {"condition": "objectiveMeasureGreaterThan", "measureThreshold": 0.5},
                    ],
                    "action": "skip",
                }],
                "exitConditionRules": [{"conditions": [{"condition": "completed"}], "action": "exit"}],
            },
        })

        rules = spec.sequencing_rules
        pre = rules.pre_condition_rules[0]
        assert pre.condition_combination is ConditionCombination.ANY
        assert pre.action is RuleAction.SKIP
        assert pre.conditions[1].condition is RuleConditionType.OBJECTIVE_MEASURE_GREATER_THAN
        assert pre.conditions[1].measure_threshold == 0.5
        assert rules.rule_count == 2

    def test_rollup_rules(self):
        spec = ActivitySpec.model_validate({
            "identifier": "module",
            "rollup": {"rules": [
                {"childActivitySet": "atLeastPercent", "minimumPercent": 0.5,
                 "conditions": [{"condition": "satisfied"}], "action": "satisfied"},
                {"conditions": [{"condition": "completed"}], "action": "completed"},
            ]},
        })

        satisfied = spec.rollup.rules_for(RollupAction.SATISFIED)
        assert len(satisfied) == 1
        assert satisfied[0].child_activity_set is ChildActivitySet.AT_LEAST_PERCENT
        assert spec.rollup.rules_for(RollupAction.COMPLETED)[0].child_activity_set is ChildActivitySet.ALL
        assert spec.rollup.rules_for(RollupAction.INCOMPLETE) == []

    def test_duplicate_objective_ids_rejected(self):
        with pytest.raises(ValidationError, match="Duplicate objective id"):
            ActivitySpec.model_validate({
                "identifier": "lesson",
                "objectives": {
                    "primary": {"objectiveId": "obj"},
                    "secondary": [{"objectiveId": "obj"}],
                },
            })

    def test_objective_aliases(self):
        spec = ActivitySpec.model_validate({
            "identifier": "lesson",
            "objectives": {
                "primaryObjective": {"objectiveID": "main"},
                "objectives": [{"objective_id": "extra"}],
            },
        })

        assert [o.objective_id for o in spec.objectives.all_objectives()] == ["main", "extra"]

    @pytest.mark.parametrize(
        "bad",
        [
            {"identifier": ""},
            {"identifier": "x", "limitConditions": {"attemptLimit": -1}},
            {"identifier": "x", "rollup": {"rules": [{"action": "passed"}]}},
            {"identifier": "x", "controlMode": {"flow": "sometimes"}},
        ],
    )
    def test_invalid_specs(self, bad):
        with pytest.raises(ValidationError):
            ActivitySpec.model_validate(bad)

    def test_iter_preorder(self, course_spec):
        spec = ActivitySpec.model_validate(course_spec)

        pairs = [(item.identifier, depth) for item, depth in spec.iter_preorder()]

        assert pairs[:3] == [("course", 0), ("module1", 1), ("lesson1", 2)]
        assert len(pairs) == 7


class TestLoaders:
    def test_yaml_fixture(self, fixtures_dir):
        spec = load_structure(fixtures_dir / "course.yaml")

        assert spec.identifier == "course"
        assert [child.identifier for child in spec.children] == ["module1", "module2"]
        quiz = spec.children[1].children[1]
        assert quiz.limit_conditions.attempt_limit == 2

    def test_json_file(self, tmp_path, course_spec):
        path = tmp_path / "course.json"
        path.write_text(json.dumps(course_spec), encoding="utf-8")

        assert read_structure_file(path) == course_spec

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ValueError, match="expected a mapping"):
            read_structure_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            read_structure_file(tmp_path / "missing.json")
