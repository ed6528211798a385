"""Tests for settings and YAML catalog loading."""
from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from reportflow.config_store import load_catalog_document, load_yaml
from reportflow.errors import CatalogError
from reportflow.settings import Settings
from reportflow.workflow.catalog import StageCatalog, default_catalog, load_catalog


def test_env_prefix(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REPORTFLOW_AUTO_ADVANCE", "false")
    monkeypatch.setenv("REPORTFLOW_MAX_STAGE_RESULTS", "12")
    monkeypatch.setenv("REPORTFLOW_EXECUTOR_BASE_URL", "http://svc:8080")
    s = Settings()
    assert s.auto_advance is False
    assert s.max_stage_results == 12
    assert s.executor_base_url == "http://svc:8080"


def test_bounds_validated() -> None:
    with pytest.raises(ValidationError):
        Settings(max_stage_results=0)


def test_config_dir_defaults_to_repo_config(tmp_path: Path) -> None:
    s = Settings(repo_root=tmp_path)
    assert s.resolved_config_dir == tmp_path / "config"
    assert s.default_catalog_file == tmp_path / "config" / "workflow_stages.yaml"


def test_shipped_catalog_matches_builtin() -> None:
    shipped = Settings().default_catalog_file
    assert shipped.exists()
    catalog = StageCatalog.from_yaml(shipped)
    builtin = default_catalog()
    assert [s.model_dump() for s in catalog] == [s.model_dump() for s in builtin]
    assert catalog.gate.key == builtin.gate.key
    assert catalog.fan_out.key == builtin.fan_out.key
    assert catalog.final.key == builtin.final.key


def test_load_catalog_uses_configured_path(tmp_path: Path) -> None:
    path = tmp_path / "stages.yaml"
    path.write_text(
        "stages:\n"
        "  - {key: intake, role: generator}\n"
        "  - {key: summary, role: generator}\n",
        encoding="utf-8",
    )
    catalog = load_catalog(Settings(catalog_path=path))
    assert catalog.keys == ("intake", "summary")


def test_load_catalog_default() -> None:
    assert load_catalog(Settings(catalog_path=None)).keys == default_catalog().keys


def test_load_yaml_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    assert load_yaml(path) == {}


@pytest.mark.parametrize(
    "content,message",
    [
        ("stages: [\n", "not valid YAML"),
        ("gate: a\n", "no 'stages' list"),
        ("stages: []\n", "no 'stages' list"),
        ("stages:\n  - {key: a, role: generator}\ngate: [a]\n", "must be a stage key"),
    ],
)
def test_invalid_catalog_documents(tmp_path: Path, content: str, message: str) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(CatalogError, match=message):
        load_catalog_document(path)
