"""Workflow orchestration core.

Contains the stage catalog, artifact store, transition engine, execution
coordinator and snapshot bridge.

Dependency order:
- catalog: ordered stage descriptions
- store: bounded artifact maps
- transitions: completeness, prerequisites and next-stage rules
- coordinator: executes stages and owns the session state
- snapshot: persisted report <-> store and pointer
"""

from reportflow.workflow.catalog import StageCatalog, default_catalog, load_catalog
from reportflow.workflow.coordinator import ExecutionCoordinator
from reportflow.workflow.events import EventEmitter, EventType, PipelineEvent
from reportflow.workflow.executor import (
    HttpStageExecutor,
    StageExecution,
    StageExecutionError,
    StageExecutor,
    ThreadedStageExecutor,
)
from reportflow.workflow.gate import is_intake_complete
from reportflow.workflow.snapshot import SnapshotBridge
from reportflow.workflow.state import StageRunResult, StageStatus, WorkflowState
from reportflow.workflow.store import ArtifactStore, EvictionPolicy
from reportflow.workflow.transitions import TransitionEngine

__all__ = [
    "StageCatalog",
    "default_catalog",
    "load_catalog",
    "ArtifactStore",
    "EvictionPolicy",
    "TransitionEngine",
    "is_intake_complete",
    "ExecutionCoordinator",
    "StageExecution",
    "StageExecutor",
    "StageExecutionError",
    "HttpStageExecutor",
    "ThreadedStageExecutor",
    "SnapshotBridge",
    "StageRunResult",
    "StageStatus",
    "WorkflowState",
    "EventEmitter",
    "EventType",
    "PipelineEvent",
]
