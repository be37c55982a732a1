"""
Unit tests for structure lint.
"""

from scorm_sn.core.structure import ActivitySpec, load_structure
from scorm_sn.core.structure_validator import LintSeverity, lint_structure


def rules_of(report) -> list[str]:
    return [issue.rule for issue in report.issues]


class TestLintStructure:
    def test_clean_course(self, course_spec):
        report = lint_structure(ActivitySpec.model_validate(course_spec), max_depth=10)

        assert report.issues == []
        assert not report.has_errors
        assert report.stats == {"items_scanned": 7, "leaves": 4, "clusters": 3, "rules": 0}

    def test_yaml_fixture_is_clean(self, fixtures_dir):
        report = lint_structure(load_structure(fixtures_dir / "course.yaml"), max_depth=10)

        assert report.issues == []
        assert report.stats["rules"] == 1

    def test_broken_fixture(self, fixtures_dir):
        report = lint_structure(load_structure(fixtures_dir / "broken.json"), max_depth=10)

        assert report.has_errors
        assert {issue.rule for issue in report.errors} == {
            "duplicate_identifier",
            "no_launchable_activities",
        }
        assert {issue.rule for issue in report.warnings} == {
            "cluster_with_resource",
            "leaf_without_resource",
            "measure_condition_without_threshold",
        }

    def test_duplicate_reports_first_location(self, course_spec, item_in):
        item_in(course_spec, "lesson4")["identifier"] = "lesson1"

        report = lint_structure(ActivitySpec.model_validate(course_spec), max_depth=10)

        duplicate = report.errors[0]
        assert duplicate.rule == "duplicate_identifier"
        assert duplicate.path == "course/module2/lesson1"
        assert "course/module1/lesson1" in duplicate.message

    def test_depth(self, course_spec):
        report = lint_structure(ActivitySpec.model_validate(course_spec), max_depth=1)

        depth_issues = [issue for issue in report.errors if issue.rule == "depth_exceeds_limit"]
        assert [issue.identifier for issue in depth_issues] == ["lesson1", "lesson2", "lesson3", "lesson4"]

    def test_unnavigable_cluster(self, course_spec, item_in):
        item_in(course_spec, "module2")["controlMode"] = {"flow": False, "choice": False}

        report = lint_structure(ActivitySpec.model_validate(course_spec), max_depth=10)

        assert rules_of(report) == ["unnavigable_cluster"]
        assert report.issues[0].severity is LintSeverity.WARNING
        assert report.issues[0].identifier == "module2"

    def test_only_explicit_flags_count(self, course_spec, item_in):
        course_spec["controlMode"] = {"choice": False}
        item_in(course_spec, "module2")["controlMode"] = {"flow": False}

        report = lint_structure(ActivitySpec.model_validate(course_spec), max_depth=10)

        assert "unnavigable_cluster" not in rules_of(report)

    def test_undeclared_objective_reference(self, course_spec, item_in):
        item_in(course_spec, "lesson1")["sequencingRules"] = {
            "preConditionRules": [{
                "conditions": [{"condition": "satisfied", "referencedObjective": "ghost"}],
                "action": "skip",
            }],
        }
        # Rollup clauses are evaluated on the children and are not checked
        item_in(course_spec, "module1")["rollup"] = {"rules": [{
            "conditions": [{"condition": "satisfied", "referencedObjective": "child_obj"}],
            "action": "satisfied",
        }]}

        report = lint_structure(ActivitySpec.model_validate(course_spec), max_depth=10)

        assert rules_of(report) == ["undeclared_objective_reference"]
        assert report.issues[0].identifier == "lesson1"
        assert "ghost" in report.issues[0].message

    def test_declared_objective_reference(self, course_spec, item_in):
        lesson1 = item_in(course_spec, "lesson1")
        lesson1["objectives"] = {"secondary": [{"objectiveId": "extra"}]}
        lesson1["sequencingRules"] = {
            "postConditionRules": [{
                "conditions": [{"condition": "satisfied", "referencedObjective": "extra"}],
                "action": "continue",
            }],
        }

        report = lint_structure(ActivitySpec.model_validate(course_spec), max_depth=10)

        assert report.issues == []

    def test_report_to_dict(self, fixtures_dir):
        data = lint_structure(load_structure(fixtures_dir / "broken.json"), max_depth=10).to_dict()

        assert data["stats"]["items_scanned"] == 5
        no_launchable = [i for i in data["issues"] if i["rule"] == "no_launchable_activities"][0]
        assert no_launchable["identifier"] is None
        assert no_launchable["severity"] == "error"
