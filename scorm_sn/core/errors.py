"""
Sequencing engine exceptions.

Only fatal conditions raise: a malformed activity tree, a reference to an
activity that does not exist, or a facade call made in the wrong lifecycle
state. Navigation that is merely not allowed is returned as a
NavigationResult, never raised.
"""

from __future__ import annotations

from scorm_sn.core.constants import SnErrorCode


class SequencingError(Exception):
    """Base class for sequencing engine errors."""

    default_code = SnErrorCode.SN_INTEGRATION_ERROR

    def __init__(self, message: str, code: SnErrorCode | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


class TreeConstructionError(SequencingError):
    """Raised when an activity tree cannot be built (cycle, depth, bad spec)."""

    default_code = SnErrorCode.INVALID_ACTIVITY_TREE


class ActivityNotFoundError(SequencingError, KeyError):
    """Raised when an activity identifier is not in the tree."""

    default_code = SnErrorCode.ACTIVITY_NOT_FOUND

    def __init__(self, identifier: str):
        super().__init__(f"Activity not found: {identifier}")
        self.identifier = identifier

    def __str__(self) -> str:
        return SequencingError.__str__(self)


class SessionStateError(SequencingError):
    """Raised when a facade call is made in the wrong lifecycle state."""

    default_code = SnErrorCode.SN_SERVICE_UNAVAILABLE
