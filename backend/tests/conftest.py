"""
Pytest configuration for backend tests.

Shared fixtures for catalogs, stores, executors and coordinators.
"""
import sys
from pathlib import Path

import pytest

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from reportflow.settings import Settings
from reportflow.workflow.catalog import StageCatalog, default_catalog
from reportflow.workflow.coordinator import ExecutionCoordinator
from reportflow.workflow.events import EventEmitter
from reportflow.workflow.store import ArtifactStore
from tests.factories import FakeExecutor, make_abc_catalog, make_gated_catalog


# --- Settings ---
@pytest.fixture
def settings() -> Settings:
    """Settings with defaults, independent of the environment."""
    return Settings(_env_file=None, catalog_path=None, auto_advance=True, auto_clarification=True)


# --- Catalogs ---
@pytest.fixture
def abc_catalog() -> StageCatalog:
    return make_abc_catalog()


@pytest.fixture
def gated_catalog() -> StageCatalog:
    return make_gated_catalog()


@pytest.fixture
def fiscal_catalog() -> StageCatalog:
    """The built-in fiscal report catalog."""
    return default_catalog()


# --- Store ---
@pytest.fixture
def store() -> ArtifactStore:
    return ArtifactStore()


# --- Executor and coordinator ---
@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def make_coordinator(executor: FakeExecutor, settings: Settings, emitter: EventEmitter):
    """Factory: build a coordinator over any catalog, sharing the fixtures above."""
    shared_executor = executor

    def _make(catalog: StageCatalog, executor=None, **kwargs) -> ExecutionCoordinator:
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("emitter", emitter)
        return ExecutionCoordinator(catalog, executor or shared_executor, **kwargs)

    return _make
