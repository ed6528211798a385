"""Tests for hydrating and dumping persisted reports."""

import pytest
from pydantic import ValidationError

from reportflow.models import PersistedReport
from reportflow.workflow.snapshot import SnapshotBridge
from reportflow.workflow.store import ArtifactStore, EvictionPolicy
from tests.factories import INTAKE_COMPLETE, INTAKE_INCOMPLETE


@pytest.fixture
def fiscal_bridge(fiscal_catalog):
    return SnapshotBridge(fiscal_catalog, store_factory=ArtifactStore)


@pytest.fixture
def abc_bridge(abc_catalog):
    return SnapshotBridge(abc_catalog, store_factory=ArtifactStore)


class TestHydratePointer:
    """Pointer reconstruction."""

    def test_empty_report(self, abc_bridge):
        store, pointer = abc_bridge.hydrate({})
        assert store.is_empty
        assert pointer == 0

    def test_pointer_after_furthest_complete(self, abc_bridge):
        _, pointer = abc_bridge.hydrate({"stageResults": {"A": "draft"}})
        assert pointer == 1

    def test_pointer_clamped_at_last(self, abc_bridge):
        _, pointer = abc_bridge.hydrate(
            {
                "stageResults": {"A": "a", "C": "c"},
                "substepResults": {"B": {"review": "r", "processing": "p"}},
            }
        )
        assert pointer == 2

    def test_incomplete_reviewer_not_counted(self, abc_bridge):
        _, pointer = abc_bridge.hydrate(
            {"stageResults": {"A": "a"}, "substepResults": {"B": {"review": "r"}}}
        )
        assert pointer == 1

    def test_reviewer_key_in_stage_results_counts(self, abc_bridge):
        store, pointer = abc_bridge.hydrate({"stageResults": {"A": "a", "B": "review text"}})
        assert pointer == 2
        assert not abc_bridge.engine.is_complete(store, "B")

    def test_incomplete_gate_pins_pointer(self, fiscal_bridge):
        _, pointer = fiscal_bridge.hydrate(
            {
                "stageResults": {
                    "1a_informatiecheck": INTAKE_INCOMPLETE,
                    "2_complexiteitscheck": "scope",
                    "3_generatie": "report",
                }
            }
        )
        assert pointer == 0

    def test_complete_gate_does_not_pin(self, fiscal_bridge):
        _, pointer = fiscal_bridge.hydrate(
            {"stageResults": {"1a_informatiecheck": INTAKE_COMPLETE, "2_complexiteitscheck": "scope"}}
        )
        assert pointer == 2


class TestIdempotence:
    """hydrate(dump(hydrate(r))) == hydrate(r)."""

    def test_round_trip(self, fiscal_bridge):
        report = {
            "id": "rep-42",
            "stageResults": {
                "1a_informatiecheck": INTAKE_COMPLETE,
                "2_complexiteitscheck": "scope",
                "3_generatie": "report",
                "1b_informatiecheck_email": "mail",
            },
            "conceptReportVersions": {"3_generatie": "# Rapport", "latest": {"pointer": "3_generatie", "v": 1}},
            "substepResults": {
                "4a_BronnenSpecialist": {"review": "bronnen ok", "processing": "bijgewerkt"},
                "4b_FiscaalTechnischSpecialist": {"review": "fiscaal"},
            },
        }
        store, pointer = fiscal_bridge.hydrate(report)
        again, again_pointer = fiscal_bridge.hydrate(fiscal_bridge.dump(store, "rep-42"))
        assert again == store
        assert again_pointer == pointer == 4

    def test_dump_uses_stored_field_names(self, abc_bridge):
        store, _ = abc_bridge.hydrate({"stageResults": {"A": "x"}})
        payload = abc_bridge.dump(store, "r").to_payload()
        assert payload == {
            "id": "r",
            "stageResults": {"A": "x"},
            "conceptReportVersions": {},
            "substepResults": {},
        }

    def test_hydrate_applies_bounds(self, abc_catalog):
        bridge = SnapshotBridge(
            abc_catalog,
            store_factory=lambda: ArtifactStore(stage_policy=EvictionPolicy(max_entries=3, keep_recent=1)),
        )
        runs = {f"A_v{i}": f"run {i}" for i in range(1, 6)}
        store, _ = bridge.hydrate({"stageResults": runs})
        assert list(store.stage_results) == ["A_v4", "A_v5"]


class TestLegacyShapes:
    """PersistedReport normalisation of older records."""

    def test_list_keeps_last_run(self):
        report = PersistedReport.model_validate({"stageResults": {"A": ["first", "second"]}})
        assert report.stage_results == {"A": "second"}

    def test_concept_content_object(self):
        report = PersistedReport.model_validate(
            {"conceptReportVersions": {"3_generatie": {"v": 2, "content": "tekst"}}}
        )
        assert report.concept_report_versions == {"3_generatie": "tekst"}

    def test_non_text_dropped(self):
        report = PersistedReport.model_validate(
            {
                "stageResults": {"A": 12, "B": None, "C": []},
                "conceptReportVersions": {"latest": {"pointer": "x"}, "history": [1, 2]},
            }
        )
        assert report.stage_results == {}
        assert report.concept_report_versions == {}

    def test_snake_case_accepted(self):
        report = PersistedReport(stage_results={"A": "x"})
        assert report.stage_results == {"A": "x"}

    def test_empty_substep_values(self):
        report = PersistedReport.model_validate({"substepResults": {"B": {"review": "", "processing": 3}}})
        assert report.substep_results["B"].is_empty

    def test_non_mapping_rejected(self):
        with pytest.raises(ValidationError):
            PersistedReport.model_validate({"stageResults": ["not", "a", "map"]})

    def test_null_maps(self):
        report = PersistedReport.model_validate(
            {"stageResults": None, "conceptReportVersions": None, "substepResults": None}
        )
        assert report.stage_results == {}
