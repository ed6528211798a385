"""Per-session workflow state and run results."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

from reportflow.models.stages import SubstepRole
from reportflow.workflow.store import ArtifactStore


class StageStatus(str, Enum):
    """Display status of a stage relative to the pointer."""

    COMPLETED = "completed"
    CURRENT = "current"
    PENDING = "pending"


@dataclass
class WorkflowState:
    """Everything one session mutates.

    The pointer is advisory: it says which stage the operator is looking
    at, never whether a stage is complete.
    """

    store: ArtifactStore
    pointer: int = 0
    processing: dict[str, bool] = field(default_factory=dict)
    stage_times: dict[str, float] = field(default_factory=dict)
    started_at: dict[str, float] = field(default_factory=dict)

    def is_processing(self, flag_key: str) -> bool:
        return self.processing.get(flag_key, False)

    def mark_processing(self, flag_key: str) -> None:
        self.processing[flag_key] = True
        self.started_at[flag_key] = time.monotonic()

    def clear_processing(self, flag_key: str) -> None:
        self.processing.pop(flag_key, None)
        self.started_at.pop(flag_key, None)

    @property
    def any_processing(self) -> bool:
        return any(self.processing.values())


@dataclass
class StageRunResult:
    """Outcome of an execute or manual submission call."""

    stage_key: str
    flag_key: str
    pointer: int
    substep: SubstepRole | None = None
    result_text: str | None = None
    concept_text: str | None = None
    elapsed_s: float | None = None
    manual: bool = False
    cancelled: bool = False
    advanced: bool = False
