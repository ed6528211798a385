"""Stage and SubstepDescriptor models for the report workflow.

A stage is one step of the report pipeline. Its role decides how the
workflow treats it:
- generator: produces a raw result (and sometimes a concept report)
- reviewer: two sub-steps, a review followed by feedback processing
- processor: produces a raw result from earlier output, no fan-out
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class StageRole(str, Enum):
    """Role of a stage in the workflow graph."""

    GENERATOR = "generator"
    REVIEWER = "reviewer"
    PROCESSOR = "processor"


class SubstepRole(str, Enum):
    """Role of a reviewer sub-step."""

    REVIEW = "review"
    PROCESSING = "processing"


class SubstepDescriptor(BaseModel):
    """One of the two required parts of a reviewer stage.

    Attributes:
        key: Sub-step identifier within its stage (e.g. "review", "update").
        label: Display label.
        role: REVIEW or PROCESSING.
        executor_stage: Stage key handed to the stage executor when this
            sub-step runs. None means the owning stage's own key.
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1)
    label: str = ""
    role: SubstepRole
    executor_stage: str | None = None


class Stage(BaseModel):
    """Immutable description of a single workflow stage.

    Attributes:
        key: Unique, stable stage key (e.g. "3_generatie").
        label: Display label.
        role: Generator, reviewer or processor.
        description: Short description of what the stage produces.
        substeps: Review then processing descriptor, reviewers only.
        next_stage: Explicit successor key, overrides catalog order.
        side_channel: Key of a background stage started when this stage's
            output blocks the pipeline (gate stages only).
        mirror_manual_to_concept: Manually supplied text is also stored
            as this stage's concept report.
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1)
    label: str = ""
    role: StageRole
    description: str = ""
    substeps: tuple[SubstepDescriptor, ...] = ()
    next_stage: str | None = None
    side_channel: str | None = None
    mirror_manual_to_concept: bool = False

    @model_validator(mode="after")
    def validate_substeps(self) -> "Stage":
        """Reviewers need exactly a review and a processing sub-step, in order."""
        if self.role == StageRole.REVIEWER:
            roles = tuple(s.role for s in self.substeps)
            if roles != (SubstepRole.REVIEW, SubstepRole.PROCESSING):
                raise ValueError(
                    f"reviewer stage '{self.key}' needs substeps (review, processing), got {roles}"
                )
        elif self.substeps:
            raise ValueError(f"only reviewer stages have substeps, '{self.key}' is {self.role.value}")
        return self

    @property
    def is_reviewer(self) -> bool:
        return self.role == StageRole.REVIEWER

    def substep(self, role: SubstepRole) -> SubstepDescriptor:
        """Return the descriptor for the given sub-step role."""
        for descriptor in self.substeps:
            if descriptor.role == role:
                return descriptor
        raise KeyError(f"stage '{self.key}' has no {role.value} substep")

    def executor_key(self, role: SubstepRole | None = None) -> str:
        """Stage key to pass to the executor for this stage or one of its sub-steps."""
        if role is None:
            return self.key
        return self.substep(role).executor_stage or self.key

    def flag_key(self, role: SubstepRole | None = None) -> str:
        """Key used for processing flags and timings."""
        if role is None:
            return self.key
        return f"{self.key}_{role.value}"
