"""Transition rules for the report workflow.

The stage graph is not a straight line:
- ordinary generator/processor stages move to the next stage
- the gate stage stays put until its own output classifies as complete
- the fan-out generator moves to the first reviewer
- a reviewer stays put until both its review and processing results exist,
  then moves to the next reviewer, or to the final stage after the last one
- the final stage has no successor

Every query recomputes completeness from the artifact store; nothing is
cached and the stage pointer is never trusted on its own.
"""

from __future__ import annotations

from dataclasses import dataclass

from reportflow.models.stages import Stage, StageRole, SubstepRole
from reportflow.workflow.catalog import StageCatalog
from reportflow.workflow.gate import GateClassifier, intake_block_reason, is_intake_complete
from reportflow.workflow.store import ArtifactStore


@dataclass(frozen=True)
class Prerequisite:
    """What has to exist before a stage or sub-step may run.

    Attributes:
        stage_key: Stage that must be complete, or None when nothing is required.
        substep: When set, only this sub-step of ``stage_key`` must exist.
        requires_gate_pass: ``stage_key`` is the gate and must also classify
            as complete.
    """

    stage_key: str | None
    substep: SubstepRole | None = None
    requires_gate_pass: bool = False


class TransitionEngine:
    """Pure completeness and transition queries over a catalog and a store."""

    def __init__(
        self,
        catalog: StageCatalog,
        gate_classifier: GateClassifier = is_intake_complete,
    ) -> None:
        self.catalog = catalog
        self.gate_classifier = gate_classifier

    # Completeness

    def is_complete(self, store: ArtifactStore, stage_key: str) -> bool:
        """Reviewers need both sub-steps; every other stage needs a stage result."""
        stage = self.catalog.get(stage_key)
        if stage.role == StageRole.REVIEWER:
            return store.substep_result(stage_key).is_complete
        return store.stage_result(stage_key) is not None

    def gate_passed(self, store: ArtifactStore) -> bool:
        """True when there is no gate, or the gate's current output classifies as complete."""
        gate = self.catalog.gate
        if gate is None:
            return True
        raw = store.stage_result(gate.key)
        if raw is None:
            return False
        return self.gate_classifier(raw)

    def gate_blocked(self, store: ArtifactStore) -> bool:
        """The gate has run but its output says information is missing."""
        gate = self.catalog.gate
        if gate is None or store.stage_result(gate.key) is None:
            return False
        return not self.gate_passed(store)

    # Transitions

    def _successor(self, stage: Stage, index: int) -> int:
        if stage.next_stage is not None:
            return self.catalog.index_of(stage.next_stage)
        return self.catalog.clamp(index + 1)

    def next_index(self, store: ArtifactStore, current_index: int) -> int:
        """Index the pointer moves to from ``current_index``.

        Always returns a valid index; an out-of-range input is clamped first.
        """
        index = self.catalog.clamp(current_index)
        stage = self.catalog[index]
        final = self.catalog.final

        if stage.key == final.key:
            return index

        gate = self.catalog.gate
        if gate is not None and stage.key == gate.key:
            if not self.gate_passed(store):
                return index
            return self._successor(stage, index)

        if stage.role == StageRole.REVIEWER:
            if not self.is_complete(store, stage.key):
                return index
            reviewers = self.catalog.reviewer_keys
            position = reviewers.index(stage.key)
            if position < len(reviewers) - 1:
                return self.catalog.index_of(reviewers[position + 1])
            return self.catalog.index_of(final.key)

        fan_out = self.catalog.fan_out
        if fan_out is not None and stage.key == fan_out.key:
            return self.catalog.index_of(self.catalog.reviewer_keys[0])

        return self._successor(stage, index)

    # Prerequisites

    def prerequisite(self, stage_key: str, substep: SubstepRole | None = None) -> Prerequisite:
        """Prerequisite of a stage, one of its sub-steps, or a side channel."""
        owner = self.catalog.side_channels.get(stage_key)
        if owner is not None:
            return Prerequisite(stage_key=owner)

        stage = self.catalog.get(stage_key)
        if substep is not None:
            stage.substep(substep)
            if substep == SubstepRole.PROCESSING:
                return Prerequisite(stage_key=stage_key, substep=SubstepRole.REVIEW)

        index = self.catalog.index_of(stage_key)
        if index == 0:
            return Prerequisite(stage_key=None)
        previous = self.catalog[index - 1]
        gate = self.catalog.gate
        return Prerequisite(
            stage_key=previous.key,
            requires_gate_pass=gate is not None and previous.key == gate.key,
        )

    def blocked_reason(
        self,
        store: ArtifactStore,
        stage_key: str,
        substep: SubstepRole | None = None,
    ) -> str | None:
        """Why the stage (or sub-step) may not run yet, or None when it may."""
        requirement = self.prerequisite(stage_key, substep)
        if requirement.stage_key is None:
            return None

        if requirement.substep is not None:
            half = store.substep_result(requirement.stage_key)
            if getattr(half, requirement.substep.value) is None:
                return f"{requirement.substep.value} of '{requirement.stage_key}' must run first"
            return None

        owner = self.catalog.side_channels.get(stage_key)
        if owner is not None:
            if store.stage_result(owner) is None:
                return f"'{owner}' must run first"
            return None

        if not self.is_complete(store, requirement.stage_key):
            label = self.catalog.get(requirement.stage_key).label or requirement.stage_key
            return f"'{label}' must be completed first"

        if requirement.requires_gate_pass and not self.gate_passed(store):
            raw = store.stage_result(requirement.stage_key)
            return intake_block_reason(raw) or f"'{requirement.stage_key}' reports missing information"
        return None

    def can_execute(
        self,
        store: ArtifactStore,
        stage_key: str,
        substep: SubstepRole | None = None,
    ) -> bool:
        return self.blocked_reason(store, stage_key, substep) is None

    # Progress

    def completed_keys(self, store: ArtifactStore) -> list[str]:
        return [s.key for s in self.catalog if self.is_complete(store, s.key)]

    def completed_count(self, store: ArtifactStore) -> int:
        return len(self.completed_keys(store))

    def is_recorded(self, store: ArtifactStore, stage_key: str) -> bool:
        """Complete, or holding a stage result of its own.

        Reports saved by the server keep each reviewer's review output under
        the reviewer's stage key. That counts when placing the pointer, never
        for transitions.
        """
        return self.is_complete(store, stage_key) or store.stage_result(stage_key) is not None

    def highest_completed_index(self, store: ArtifactStore) -> int:
        """Index of the furthest recorded stage, or -1."""
        recorded = [index for index, stage in enumerate(self.catalog) if self.is_recorded(store, stage.key)]
        return max(recorded, default=-1)

    def first_incomplete_index(self, store: ArtifactStore) -> int:
        """Index of the first stage that is not complete (last index when all are)."""
        for index, stage in enumerate(self.catalog):
            if not self.is_complete(store, stage.key):
                return index
        return self.catalog.last_index

    def progress_percentage(self, store: ArtifactStore) -> int:
        return round(self.completed_count(store) / len(self.catalog) * 100)

    def is_finished(self, store: ArtifactStore) -> bool:
        """The final stage is complete; only finalizing remains."""
        return self.is_complete(store, self.catalog.final.key)
