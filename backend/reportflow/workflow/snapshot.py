"""Conversion between the persisted report record and live workflow state."""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from reportflow.models.report import PersistedReport
from reportflow.models.stages import SubstepRole
from reportflow.settings import settings
from reportflow.workflow.catalog import StageCatalog
from reportflow.workflow.store import ArtifactStore
from reportflow.workflow.transitions import TransitionEngine

logger = logging.getLogger(__name__)


class SnapshotBridge:
    """Hydrate a store and pointer from a PersistedReport, and dump one back.

    Hydration is idempotent: hydrating the dump of a hydrated report gives
    the same store and pointer.
    """

    def __init__(
        self,
        catalog: StageCatalog,
        engine: TransitionEngine | None = None,
        store_factory: Callable[[], ArtifactStore] | None = None,
    ) -> None:
        self.catalog = catalog
        self.engine = engine or TransitionEngine(catalog)
        self._store_factory = store_factory or (lambda: ArtifactStore.from_settings(settings))

    def hydrate(self, report: PersistedReport | Mapping[str, Any]) -> tuple[ArtifactStore, int]:
        if not isinstance(report, PersistedReport):
            report = PersistedReport.model_validate(report)

        store = self._store_factory()
        for key, text in report.stage_results.items():
            store.set_stage_result(key, text)
        for key, text in report.concept_report_versions.items():
            store.set_concept_version(key, text)
        for key, result in report.substep_results.items():
            # Review first: writing a review resets the processing half
            if result.review is not None:
                store.set_substep_result(key, SubstepRole.REVIEW, result.review)
            if result.processing is not None:
                store.set_substep_result(key, SubstepRole.PROCESSING, result.processing)

        pointer = self.pointer_for(store)
        logger.info(
            "Hydrated report %s: %d stage results, pointer at %s",
            report.id or "<unsaved>",
            len(store.stage_results),
            self.catalog[pointer].key,
        )
        return store, pointer

    def pointer_for(self, store: ArtifactStore) -> int:
        """Stage after the furthest recorded one, or the gate when it blocks."""
        gate = self.catalog.gate
        if gate is not None and self.engine.gate_blocked(store):
            return self.catalog.index_of(gate.key)
        highest = self.engine.highest_completed_index(store)
        if highest < 0:
            return 0
        return self.catalog.clamp(highest + 1)

    def dump(self, store: ArtifactStore, report_id: str | None = None) -> PersistedReport:
        return PersistedReport(
            id=report_id,
            stage_results=dict(store.stage_results),
            concept_report_versions=dict(store.concept_versions),
            substep_results={k: v for k, v in store.substep_results.items() if not v.is_empty},
        )
