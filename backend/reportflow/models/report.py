"""Persisted report shape consumed and produced by the snapshot bridge.

The storage layer owns the report record; the workflow only reads and
writes the three artifact maps. Older records carry a few legacy shapes
which are normalised on the way in:
- a stage result stored as a list of runs keeps only the last run
- a concept version stored as {"v": 2, "content": "..."} keeps its content
- anything that is not text (e.g. the "latest" pointer object) is dropped
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class SubstepResult(BaseModel):
    """Review and processing output of one reviewer stage."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    review: str | None = None
    processing: str | None = None

    @field_validator("review", "processing", mode="before")
    @classmethod
    def text_or_none(cls, value: Any) -> str | None:
        return value if isinstance(value, str) and value else None

    @property
    def is_complete(self) -> bool:
        """Both halves present."""
        return bool(self.review) and bool(self.processing)

    @property
    def is_empty(self) -> bool:
        return not self.review and not self.processing


def _as_mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{field_name} must be a mapping, got {type(value).__name__}")
    return value


class PersistedReport(BaseModel):
    """Externally persisted report record (artifact maps only).

    Accepts both the camelCase field names of the stored JSON and the
    snake_case attribute names.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    stage_results: dict[str, str] = Field(default_factory=dict, alias="stageResults")
    concept_report_versions: dict[str, str] = Field(
        default_factory=dict, alias="conceptReportVersions"
    )
    substep_results: dict[str, SubstepResult] = Field(
        default_factory=dict, alias="substepResults"
    )

    @field_validator("stage_results", mode="before")
    @classmethod
    def latest_stage_results(cls, value: Any) -> dict[str, str]:
        cleaned: dict[str, str] = {}
        for key, item in _as_mapping(value, "stageResults").items():
            if isinstance(item, str):
                cleaned[key] = item
            elif isinstance(item, list) and item and isinstance(item[-1], str):
                cleaned[key] = item[-1]
            else:
                logger.debug("Dropping non-text stage result for %s", key)
        return cleaned

    @field_validator("concept_report_versions", mode="before")
    @classmethod
    def concept_texts(cls, value: Any) -> dict[str, str]:
        cleaned: dict[str, str] = {}
        for key, item in _as_mapping(value, "conceptReportVersions").items():
            if isinstance(item, str):
                cleaned[key] = item
            elif isinstance(item, Mapping) and isinstance(item.get("content"), str):
                cleaned[key] = item["content"]
            else:
                logger.debug("Dropping non-text concept version for %s", key)
        return cleaned

    @field_validator("substep_results", mode="before")
    @classmethod
    def substep_mappings(cls, value: Any) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, item in _as_mapping(value, "substepResults").items():
            if isinstance(item, (Mapping, SubstepResult)):
                cleaned[key] = item
        return cleaned

    def to_payload(self) -> dict[str, Any]:
        """Dump using the stored (camelCase) field names."""
        return self.model_dump(by_alias=True, exclude_none=True)
