"""
Core vocabulary: constants, errors, structure spec models and structure lint.
"""
from scorm_sn.core.errors import (
    ActivityNotFoundError,
    SequencingError,
    SessionStateError,
    TreeConstructionError,
)
from scorm_sn.core.structure import ActivitySpec, load_structure, read_structure_file
from scorm_sn.core.structure_validator import LintIssue, LintReport, lint_structure

__all__ = [
    # Errors
    "SequencingError",
    "TreeConstructionError",
    "ActivityNotFoundError",
    "SessionStateError",
    # Structure spec
    "ActivitySpec",
    "load_structure",
    "read_structure_file",
    # Lint
    "LintIssue",
    "LintReport",
    "lint_structure",
]
