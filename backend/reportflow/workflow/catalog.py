"""Stage catalog - the immutable ordered list of workflow stages.

Default order:
- 1a: Informatiecheck - intake, gate stage (blocks when information is missing)
- 1b: Informatiecheck e-mail - side channel of 1a, drafts a clarification request
- 2:  Complexiteitscheck - complexity and scope
- 3:  Generatie - base report, fans out into the reviewers
- 4a-4f: Specialist reviewers - review, then feedback processing
- 6:  Change summary - final stage
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from reportflow.config_store import load_catalog_document
from reportflow.errors import CatalogError, UnknownStageError
from reportflow.models.stages import Stage, StageRole, SubstepDescriptor, SubstepRole
from reportflow.settings import Settings

GATE_STAGE = "1a_informatiecheck"
CLARIFICATION_STAGE = "1b_informatiecheck_email"
FAN_OUT_STAGE = "3_generatie"
FEEDBACK_PROCESSOR_STAGE = "5_feedback_verwerker"
FINAL_STAGE = "6_change_summary"


def _reviewer(key: str, label: str, description: str) -> Stage:
    return Stage(
        key=key,
        label=label,
        role=StageRole.REVIEWER,
        description=description,
        substeps=(
            SubstepDescriptor(key="review", label="Review & JSON feedback", role=SubstepRole.REVIEW),
            SubstepDescriptor(
                key="update",
                label="Rapport update",
                role=SubstepRole.PROCESSING,
                executor_stage=FEEDBACK_PROCESSOR_STAGE,
            ),
        ),
    )


DEFAULT_STAGES: tuple[Stage, ...] = (
    Stage(
        key=GATE_STAGE,
        label="Informatie Analyse",
        role=StageRole.GENERATOR,
        description="Ruwe tekst → gestructureerde informatie",
        side_channel=CLARIFICATION_STAGE,
    ),
    Stage(
        key="2_complexiteitscheck",
        label="Complexiteits Check",
        role=StageRole.GENERATOR,
        description="Analyse van complexiteit en scope",
    ),
    Stage(
        key=FAN_OUT_STAGE,
        label="Basis Rapport",
        role=StageRole.GENERATOR,
        description="Basis rapport generatie",
        mirror_manual_to_concept=True,
    ),
    _reviewer("4a_BronnenSpecialist", "Bronnen Review", "Review bronnen → feedback → rapport update"),
    _reviewer(
        "4b_FiscaalTechnischSpecialist",
        "Fiscaal Technisch",
        "Review fiscale techniek → feedback → rapport update",
    ),
    _reviewer("4c_ScenarioGatenAnalist", "Scenario Analyse", "Review scenario's → feedback → rapport update"),
    _reviewer("4e_DeAdvocaat", "Juridisch Review", "Review juridisch → feedback → rapport update"),
    _reviewer("4f_HoofdCommunicatie", "Hoofd Communicatie", "Review communicatie → feedback → rapport update"),
    Stage(
        key=FINAL_STAGE,
        label="Wijzigingen Samenvatting",
        role=StageRole.GENERATOR,
        description="Samenvatting van alle wijzigingen",
    ),
)


class StageCatalog:
    """Ordered, immutable description of every stage in a session.

    The catalog also names the three stages the transition rules treat
    specially: the gate (content-dependent branch), the fan-out generator
    (leads into the reviewers) and the final stage (no successor).
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        *,
        gate: str | None = None,
        fan_out: str | None = None,
        final: str | None = None,
    ) -> None:
        if not stages:
            raise CatalogError("catalog needs at least one stage")
        self._stages: tuple[Stage, ...] = tuple(stages)
        self._index: dict[str, int] = {}
        for position, stage in enumerate(self._stages):
            if stage.key in self._index:
                raise CatalogError(f"duplicate stage key '{stage.key}'")
            self._index[stage.key] = position

        self._reviewers: tuple[str, ...] = tuple(s.key for s in self._stages if s.is_reviewer)
        self._final_key = final or self._stages[-1].key
        self._gate_key = gate
        self._fan_out_key = fan_out if fan_out is not None else self._default_fan_out()
        self._validate()

    def _default_fan_out(self) -> str | None:
        if not self._reviewers:
            return None
        first = self._index[self._reviewers[0]]
        if first == 0 or self._stages[first - 1].is_reviewer:
            return None
        return self._stages[first - 1].key

    def _validate(self) -> None:
        for name, key in (("final", self._final_key), ("gate", self._gate_key), ("fan_out", self._fan_out_key)):
            if key is not None and key not in self._index:
                raise CatalogError(f"{name} stage '{key}' is not in the catalog")
        if self.final.is_reviewer:
            raise CatalogError("the final stage cannot be a reviewer")
        if self._gate_key is not None and self.gate.is_reviewer:
            raise CatalogError("the gate stage cannot be a reviewer")
        if self._fan_out_key is not None:
            if self.get(self._fan_out_key).is_reviewer:
                raise CatalogError("the fan-out stage cannot be a reviewer")
            if not self._reviewers:
                raise CatalogError("a fan-out stage needs at least one reviewer")
        for stage in self._stages:
            if stage.next_stage is not None and stage.next_stage not in self._index:
                raise CatalogError(f"stage '{stage.key}' points to unknown next stage '{stage.next_stage}'")
            if stage.side_channel is not None and stage.side_channel in self._index:
                raise CatalogError(f"side channel '{stage.side_channel}' must not be a catalog stage")

    # Sequence protocol

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[Stage]:
        return iter(self._stages)

    def __getitem__(self, index: int) -> Stage:
        return self._stages[index]

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __repr__(self) -> str:
        return f"StageCatalog({', '.join(self.keys)})"

    # Lookups

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(s.key for s in self._stages)

    @property
    def last_index(self) -> int:
        return len(self._stages) - 1

    @property
    def reviewer_keys(self) -> tuple[str, ...]:
        return self._reviewers

    @property
    def gate(self) -> Stage | None:
        return self.get(self._gate_key) if self._gate_key is not None else None

    @property
    def fan_out(self) -> Stage | None:
        return self.get(self._fan_out_key) if self._fan_out_key is not None else None

    @property
    def final(self) -> Stage:
        return self.get(self._final_key)

    @property
    def side_channels(self) -> dict[str, str]:
        """Map of side-channel key to the stage that owns it."""
        return {s.side_channel: s.key for s in self._stages if s.side_channel}

    def index_of(self, key: str) -> int:
        try:
            return self._index[key]
        except KeyError:
            raise UnknownStageError(f"unknown stage '{key}'", stage=key) from None

    def get(self, key: str) -> Stage:
        return self._stages[self.index_of(key)]

    def clamp(self, index: int) -> int:
        """Clamp an index into the valid range."""
        return max(0, min(index, self.last_index))

    def stages_from(self, key: str) -> tuple[str, ...]:
        """Keys of the given stage and every stage after it."""
        return self.keys[self.index_of(key):]

    # Construction

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "StageCatalog":
        """Build a catalog from a parsed YAML/JSON document.

        Expected shape: {"stages": [...], "gate": ..., "fan_out": ..., "final": ...}
        """
        try:
            stages = [Stage.model_validate(entry) for entry in document.get("stages", [])]
        except ValidationError as e:
            raise CatalogError(f"invalid stage entry: {e}") from e
        return cls(
            stages,
            gate=document.get("gate"),
            fan_out=document.get("fan_out"),
            final=document.get("final"),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "StageCatalog":
        return cls.from_document(load_catalog_document(path))


def default_catalog() -> StageCatalog:
    """The fiscal report pipeline."""
    return StageCatalog(DEFAULT_STAGES, gate=GATE_STAGE, fan_out=FAN_OUT_STAGE, final=FINAL_STAGE)


def load_catalog(settings: Settings) -> StageCatalog:
    """Catalog from the configured YAML file, or the built-in default."""
    if settings.catalog_path is not None:
        return StageCatalog.from_yaml(settings.catalog_path)
    return default_catalog()
