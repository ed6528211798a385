"""Pydantic models for the report workflow.

These models describe the stage catalog and the persisted report record.
"""

from reportflow.models.report import PersistedReport, SubstepResult
from reportflow.models.stages import Stage, StageRole, SubstepDescriptor, SubstepRole

__all__ = [
    # Stages
    "Stage",
    "StageRole",
    "SubstepDescriptor",
    "SubstepRole",
    # Report
    "PersistedReport",
    "SubstepResult",
]
