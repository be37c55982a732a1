"""
RTE integration for tracked values.

The run-time environment owns the values a SCO reports (cmi.completion_status,
cmi.success_status, ...). The sequencing engine reads them through a
TrackedValueAdapter when an activity is left, and writes resets back through
it when an attempt is retried.
"""

from __future__ import annotations

import math
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from scorm_sn.core.constants import CompletionStatus, SuccessStatus, TrackedField
from scorm_sn.sequencing.activity_tree import Activity


@runtime_checkable
class TrackedValueAdapter(Protocol):
    """Read/write access to the RTE's tracked values for one learner session."""

    def get_tracked_value(self, activity_id: str, field: TrackedField) -> Any:
        ...

    def set_tracked_value(self, activity_id: str, field: TrackedField, value: Any) -> None:
        ...


class InMemoryTrackedValues:
    """Dict-backed adapter used by the CLI and tests."""

    def __init__(self):
        self._values: dict[tuple[str, TrackedField], Any] = {}

    def get_tracked_value(self, activity_id: str, field: TrackedField) -> Any:
        return self._values.get((activity_id, TrackedField(field)))

    def set_tracked_value(self, activity_id: str, field: TrackedField, value: Any) -> None:
        self._values[(activity_id, TrackedField(field))] = value

    def values_for(self, activity_id: str) -> dict[str, Any]:
        return {
            tracked_field.value: value
            for (key, tracked_field), value in self._values.items()
            if key == activity_id
        }

    def clear(self) -> None:
        self._values.clear()


# =============================================================================
# Pull / push helpers
# =============================================================================

_RESET_VALUES: dict[TrackedField, Any] = {
    TrackedField.COMPLETION_STATUS: CompletionStatus.UNKNOWN.value,
    TrackedField.SUCCESS_STATUS: SuccessStatus.UNKNOWN.value,
    TrackedField.PROGRESS_MEASURE: None,
    TrackedField.SCORE_SCALED: None,
    TrackedField.LOCATION: "",
    TrackedField.ATTEMPT_DURATION: None,
}

# cmi.progress_measure and cmi.score.scaled ranges; durations are seconds
_NUMERIC_RANGES: dict[TrackedField, tuple[float, float]] = {
    TrackedField.PROGRESS_MEASURE: (0.0, 1.0),
    TrackedField.SCORE_SCALED: (-1.0, 1.0),
    TrackedField.ATTEMPT_DURATION: (0.0, math.inf),
}


def _coerce(field: TrackedField, value: Any) -> Any:
    if field is TrackedField.COMPLETION_STATUS:
        # "not attempted" is reported by SCOs that were never touched
        if str(value) in ("not attempted", "not_attempted"):
            return CompletionStatus.UNKNOWN
        return CompletionStatus(value)
    if field is TrackedField.SUCCESS_STATUS:
        return SuccessStatus(value)
    if field is TrackedField.LOCATION:
        return str(value)

    number = float(value)
    low, high = _NUMERIC_RANGES[field]
    if not math.isfinite(number) or not low <= number <= high:
        raise ValueError(f"{field.value} out of range [{low}, {high}]: {number}")
    return number


def pull_tracked_values(activity: Activity, adapter: TrackedValueAdapter) -> bool:
    """
    Copy the RTE's reported values onto the activity.

    Fields the RTE has no value for are left untouched. Values that do not
    parse are logged and ignored.

    Returns:
        True if any activity field changed
    """
    before = (activity.status(), activity.location, activity.attempt_duration)

    for field in TrackedField:
        raw = adapter.get_tracked_value(activity.identifier, field)
        if raw is None:
            continue
        try:
            value = _coerce(field, raw)
        except (TypeError, ValueError):
            logger.warning(
                f"Ignoring invalid tracked value for {activity.identifier}: "
                f"{field.value}={raw!r}"
            )
            continue
        apply_tracked_value(activity, field, value)

    threshold = activity.completion_threshold
    if threshold.completed_by_measure and activity.progress_measure is not None:
        activity.completion_status = (
            CompletionStatus.COMPLETED
            if activity.progress_measure >= threshold.min_progress_measure
            else CompletionStatus.INCOMPLETE
        )

    return before != (activity.status(), activity.location, activity.attempt_duration)


def apply_tracked_value(activity: Activity, field: TrackedField, value: Any) -> None:
    """Set one already-coerced tracked value on the activity."""
    if field is TrackedField.COMPLETION_STATUS:
        activity.completion_status = value
    elif field is TrackedField.SUCCESS_STATUS:
        activity.success_status = value
    elif field is TrackedField.PROGRESS_MEASURE:
        activity.progress_measure = value
    elif field is TrackedField.SCORE_SCALED:
        activity.objective_measure = value
    elif field is TrackedField.LOCATION:
        activity.location = value
    elif field is TrackedField.ATTEMPT_DURATION:
        activity.attempt_duration = value


def push_reset(activity: Activity, adapter: TrackedValueAdapter) -> None:
    """Write cleared values back to the RTE after a retry."""
    for field, value in _RESET_VALUES.items():
        adapter.set_tracked_value(activity.identifier, field, value)
    logger.debug(f"Tracked values reset for {activity.identifier}")
