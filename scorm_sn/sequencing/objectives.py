"""
Objective tracking.

Each activity carries a primary objective plus any number of secondary
objectives. An objective can be mapped onto a shared global objective:
read maps let the local objective observe the shared value, write maps
publish local changes. Global objectives are owned by one sequencing
session; two sessions never share a store.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from scorm_sn.core.structure import ObjectiveMapSpec, ObjectiveSpec


@dataclass
class GlobalObjective:
    """Shared objective value written through objective maps."""

    objective_id: str
    satisfied_status: bool | None = None
    normalized_measure: float | None = None

    def to_dict(self) -> dict:
        return {
            "satisfied_status": self.satisfied_status,
            "normalized_measure": self.normalized_measure,
        }


class GlobalObjectiveStore:
    """Session-scoped store of global objectives."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._objectives: dict[str, GlobalObjective] = {}

    def __len__(self) -> int:
        return len(self._objectives)

    def __contains__(self, objective_id: str) -> bool:
        return objective_id in self._objectives

    def get(self, objective_id: str) -> GlobalObjective | None:
        return self._objectives.get(objective_id)

    def set_satisfied(self, objective_id: str, satisfied: bool | None) -> None:
        self._ensure(objective_id).satisfied_status = satisfied
        logger.debug(f"Global objective updated: {objective_id}.satisfied = {satisfied}")

    def set_measure(self, objective_id: str, measure: float | None) -> None:
        self._ensure(objective_id).normalized_measure = measure
        logger.debug(f"Global objective updated: {objective_id}.measure = {measure}")

    def _ensure(self, objective_id: str) -> GlobalObjective:
        if objective_id not in self._objectives:
            self._objectives[objective_id] = GlobalObjective(objective_id)
        return self._objectives[objective_id]

    def write_from(self, objective: ObjectiveState) -> list[str]:
        """
        Publish a local objective through its write maps.

        Returns:
            Ids of the global objectives that were written
        """
        if not self.enabled:
            return []

        written = []
        satisfied = objective.satisfied()
        for mapping in objective.map_info:
            if mapping.write_satisfied_status and satisfied is not None:
                self.set_satisfied(mapping.target_objective_id, satisfied)
                written.append(mapping.target_objective_id)
            if mapping.write_normalized_measure and objective.local_measure is not None:
                self.set_measure(mapping.target_objective_id, objective.local_measure)
                if mapping.target_objective_id not in written:
                    written.append(mapping.target_objective_id)
        return written

    def read_satisfied(self, objective: ObjectiveState) -> bool | None:
        """First known satisfied status among the objective's read maps."""
        if not self.enabled:
            return None
        for mapping in objective.map_info:
            if not mapping.read_satisfied_status:
                continue
            shared = self._objectives.get(mapping.target_objective_id)
            if shared is not None and shared.satisfied_status is not None:
                return shared.satisfied_status
        return None

    def read_measure(self, objective: ObjectiveState) -> float | None:
        """First known normalized measure among the objective's read maps."""
        if not self.enabled:
            return None
        for mapping in objective.map_info:
            if not mapping.read_normalized_measure:
                continue
            shared = self._objectives.get(mapping.target_objective_id)
            if shared is not None and shared.normalized_measure is not None:
                return shared.normalized_measure
        return None

    def snapshot(self) -> dict[str, GlobalObjective]:
        return {
            key: GlobalObjective(value.objective_id, value.satisfied_status, value.normalized_measure)
            for key, value in self._objectives.items()
        }

    def restore(self, snapshot: dict[str, GlobalObjective]) -> None:
        self._objectives = {
            key: GlobalObjective(value.objective_id, value.satisfied_status, value.normalized_measure)
            for key, value in snapshot.items()
        }

    def to_dict(self) -> dict[str, dict]:
        return {key: value.to_dict() for key, value in sorted(self._objectives.items())}

    def clear(self) -> None:
        self._objectives.clear()


@dataclass
class ObjectiveState:
    """Tracked state of one local objective."""

    objective_id: str
    is_primary: bool = False
    local_satisfied: bool | None = None
    local_measure: float | None = None
    satisfied_by_measure: bool = False
    min_normalized_measure: float = 1.0
    map_info: list[ObjectiveMapSpec] = field(default_factory=list)

    @classmethod
    def from_spec(cls, spec: ObjectiveSpec, is_primary: bool = False) -> ObjectiveState:
        return cls(
            objective_id=spec.objective_id,
            is_primary=is_primary,
            satisfied_by_measure=spec.satisfied_by_measure,
            min_normalized_measure=spec.min_normalized_measure,
            map_info=list(spec.map_info),
        )

    def measure(self, store: GlobalObjectiveStore | None = None) -> float | None:
        """Effective normalized measure: local value, else a mapped global value."""
        if self.local_measure is not None:
            return self.local_measure
        if store is not None:
            return store.read_measure(self)
        return None

    def satisfied(self, store: GlobalObjectiveStore | None = None) -> bool | None:
        """
        Effective satisfied status.

        Measure-based objectives are satisfied when the measure reaches the
        minimum; otherwise the local status wins, then any mapped global.
        """
        if self.satisfied_by_measure:
            measure = self.measure(store)
            if measure is not None:
                return measure >= self.min_normalized_measure
        if self.local_satisfied is not None:
            return self.local_satisfied
        if store is not None:
            return store.read_satisfied(self)
        return None

    def reset(self) -> None:
        self.local_satisfied = None
        self.local_measure = None
