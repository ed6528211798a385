"""Execution coordinator - the single entry point for mutating a session.

Every operator action goes through here:
- execute a stage (or a reviewer sub-step) through the StageExecutor
- submit manual content for a stage, with the same checks and writes
- reset a stage and everything after it
- cancel an outstanding execution
- move the advisory pointer

Mutations happen synchronously between awaits on one event loop, so the
store never needs a lock. The same processing-flag key never has two
outstanding executor calls; distinct keys may run concurrently.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from reportflow.errors import (
    AlreadyInProgressError,
    ExecutorFailure,
    InvalidManualContentError,
    NotReadyError,
    UnknownStageError,
    WorkflowError,
)
from reportflow.models.report import PersistedReport
from reportflow.models.stages import Stage, SubstepRole
from reportflow import settings as settings_module
from reportflow.settings import Settings
from reportflow.workflow.catalog import StageCatalog
from reportflow.workflow.events import EventEmitter, EventType
from reportflow.workflow.executor import StageExecution, StageExecutor
from reportflow.workflow.snapshot import SnapshotBridge
from reportflow.workflow.state import StageRunResult, StageStatus, WorkflowState
from reportflow.workflow.store import ArtifactStore
from reportflow.workflow.transitions import TransitionEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Target:
    """A resolved execution target: a stage, a reviewer sub-step or a side channel."""

    key: str
    flag_key: str
    executor_key: str
    stage: Stage | None = None
    substep: SubstepRole | None = None

    @property
    def is_side_channel(self) -> bool:
        return self.stage is None


class ExecutionCoordinator:
    """Mediates between the operator, the StageExecutor and the session state."""

    def __init__(
        self,
        catalog: StageCatalog,
        executor: StageExecutor,
        *,
        engine: TransitionEngine | None = None,
        state: WorkflowState | None = None,
        settings: Settings | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        self.catalog = catalog
        self.executor = executor
        self.settings = settings or settings_module.settings
        self.engine = engine or TransitionEngine(catalog)
        self.state = state or WorkflowState(store=ArtifactStore.from_settings(self.settings))
        self.emitter = emitter or EventEmitter()
        self.bridge = SnapshotBridge(catalog, self.engine, store_factory=self.state.store.empty_copy)

        self._inflight: dict[str, asyncio.Task[StageExecution]] = {}
        self._cancelled: set[asyncio.Task[StageExecution]] = set()
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def store(self) -> ArtifactStore:
        return self.state.store

    @property
    def pointer(self) -> int:
        return self.state.pointer

    # Target resolution and checks

    def _target(self, stage_key: str, substep: SubstepRole | None = None) -> _Target:
        owner = self.catalog.side_channels.get(stage_key)
        if owner is not None:
            if substep is not None:
                raise UnknownStageError(f"side channel '{stage_key}' has no substeps", stage=stage_key)
            return _Target(key=stage_key, flag_key=stage_key, executor_key=stage_key)

        stage = self.catalog.get(stage_key)
        if substep is None and stage.is_reviewer:
            # A reviewer runs per sub-step; the bare stage call is its review
            substep = SubstepRole.REVIEW
        if substep is not None:
            try:
                stage.substep(substep)
            except KeyError:
                raise UnknownStageError(
                    f"stage '{stage_key}' has no {substep.value} substep", stage=stage_key
                ) from None
        return _Target(
            key=stage.key,
            flag_key=stage.flag_key(substep),
            executor_key=stage.executor_key(substep),
            stage=stage,
            substep=substep,
        )

    def _check_ready(self, target: _Target) -> None:
        reason = self.engine.blocked_reason(self.store, target.key, target.substep)
        if reason is not None:
            raise NotReadyError(reason, stage=target.flag_key)
        if self.state.is_processing(target.flag_key):
            raise AlreadyInProgressError(f"'{target.flag_key}' is already running", stage=target.flag_key)
        if target.substep is not None:
            # A review rerun and the processing derived from the previous review never overlap
            other = SubstepRole.PROCESSING if target.substep == SubstepRole.REVIEW else SubstepRole.REVIEW
            sibling = target.stage.flag_key(other)
            if self.state.is_processing(sibling):
                raise AlreadyInProgressError(
                    f"'{sibling}' is running; wait for it before running '{target.flag_key}'",
                    stage=target.flag_key,
                )

    def _event_data(self, target: _Target, **extra: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "stage": target.key,
            "flag": target.flag_key,
            "substep": target.substep.value if target.substep else None,
        }
        data.update(extra)
        return data

    # Execution

    async def execute(
        self,
        stage_key: str,
        input_text: str,
        custom_context: str | None = None,
        substep: SubstepRole | None = None,
    ) -> StageRunResult:
        """Run a stage (or reviewer sub-step) through the executor.

        Raises:
            NotReadyError: The prerequisite is not complete. Nothing changes.
            AlreadyInProgressError: The same key is already running. Nothing changes.
            ExecutorFailure: The executor raised. Store and pointer are untouched.
        """
        target = self._target(stage_key, substep)
        self._check_ready(target)

        flag = target.flag_key
        self.state.mark_processing(flag)
        started = time.monotonic()
        logger.info("Stage %s started (executor stage %s)", flag, target.executor_key)
        self.emitter.emit(EventType.STAGE_START, self._event_data(target))

        task = asyncio.create_task(self.executor.execute(target.executor_key, input_text, custom_context))
        self._inflight[flag] = task
        try:
            execution = await task
        except asyncio.CancelledError:
            if task in self._cancelled:
                self._cancelled.discard(task)
                return self._cancelled_result(target)
            # The caller itself was cancelled
            self._release(flag, task)
            self.emitter.emit(EventType.STAGE_CANCELLED, self._event_data(target))
            raise
        except Exception as e:
            if task in self._cancelled:
                self._cancelled.discard(task)
                return self._cancelled_result(target)
            self._release(flag, task)
            logger.warning("Stage %s failed: %s", flag, e)
            self.emitter.emit(EventType.STAGE_FAILED, self._event_data(target, error=str(e)))
            raise ExecutorFailure(str(e), stage=flag, cause=e) from e

        if task in self._cancelled:
            # Finished before the cancel took effect; still discarded
            self._cancelled.discard(task)
            return self._cancelled_result(target)

        self._release(flag, task)
        if execution.elapsed_ms is not None:
            elapsed_s = execution.elapsed_ms / 1000
        else:
            elapsed_s = time.monotonic() - started
        return self._commit(target, execution.result_text, execution.concept_text, elapsed_s=elapsed_s)

    def _release(self, flag: str, task: asyncio.Task[StageExecution]) -> None:
        if self._inflight.get(flag) is task:
            del self._inflight[flag]
            self.state.clear_processing(flag)

    def _cancelled_result(self, target: _Target) -> StageRunResult:
        logger.info("Stage %s cancelled", target.flag_key)
        self.emitter.emit(EventType.STAGE_CANCELLED, self._event_data(target))
        return StageRunResult(
            stage_key=target.key,
            flag_key=target.flag_key,
            pointer=self.state.pointer,
            substep=target.substep,
            cancelled=True,
        )

    def cancel(self, flag_key: str) -> bool:
        """Cancel the outstanding execution for a flag key.

        The flag is cleared immediately; the pending ``execute`` call returns
        a cancelled result and writes nothing.

        Returns:
            False when nothing was running under that key.
        """
        task = self._inflight.pop(flag_key, None)
        if task is None:
            return False
        self._cancelled.add(task)
        self.state.clear_processing(flag_key)
        task.cancel()
        return True

    async def submit_manual(
        self,
        stage_key: str,
        text: str,
        substep: SubstepRole | None = None,
        concept_text: str | None = None,
    ) -> StageRunResult:
        """Complete a stage with operator-supplied content instead of the executor.

        Raises:
            InvalidManualContentError: ``text`` is empty or whitespace.
            NotReadyError: The prerequisite is not complete.
            AlreadyInProgressError: An execution for the same key is outstanding.
        """
        target = self._target(stage_key, substep)
        if not text or not text.strip():
            raise InvalidManualContentError("manual content is empty", stage=target.flag_key)
        self._check_ready(target)

        if concept_text is None and target.substep is None and target.stage is not None:
            if target.stage.mirror_manual_to_concept:
                concept_text = text
        logger.info("Stage %s completed manually", target.flag_key)
        return self._commit(target, text, concept_text, manual=True)

    def _commit(
        self,
        target: _Target,
        text: str,
        concept_text: str | None,
        *,
        elapsed_s: float | None = None,
        manual: bool = False,
    ) -> StageRunResult:
        """Write a confirmed result, then re-evaluate the pointer."""
        store = self.store
        if target.substep is not None:
            store.set_substep_result(target.key, target.substep, text)
        else:
            store.set_stage_result(target.key, text)
        if concept_text and not target.is_side_channel:
            store.set_concept_version(target.key, concept_text)
        if elapsed_s is not None:
            self.state.stage_times[target.flag_key] = elapsed_s

        advanced = False
        if not target.is_side_channel and self.settings.auto_advance:
            pointer = self.state.pointer
            # Only the stage being viewed moves the pointer
            if self.catalog[pointer].key == target.key:
                advanced = self._move_pointer(self.engine.next_index(store, pointer))

        self.emitter.emit(
            EventType.STAGE_COMPLETE,
            self._event_data(target, manual=manual, elapsed_s=elapsed_s, pointer=self.state.pointer),
        )
        logger.info(
            "Stage %s complete%s, pointer at %s",
            target.flag_key,
            f" in {elapsed_s:.1f}s" if elapsed_s is not None else "",
            self.catalog[self.state.pointer].key,
        )

        self._maybe_schedule_clarification(target)
        return StageRunResult(
            stage_key=target.key,
            flag_key=target.flag_key,
            pointer=self.state.pointer,
            substep=target.substep,
            result_text=text,
            concept_text=concept_text,
            elapsed_s=elapsed_s,
            manual=manual,
            advanced=advanced,
        )

    def _move_pointer(self, index: int) -> bool:
        previous = self.state.pointer
        if index == previous:
            return False
        self.state.pointer = index
        self.emitter.emit(
            EventType.POINTER_MOVED,
            {"from": previous, "to": index, "stage": self.catalog[index].key},
        )
        return True

    # Gate side channel

    def _clarification_key(self) -> str | None:
        gate = self.catalog.gate
        return gate.side_channel if gate is not None else None

    def _maybe_schedule_clarification(self, target: _Target) -> None:
        gate = self.catalog.gate
        if gate is None or target.key != gate.key or not gate.side_channel:
            return
        if not self.settings.auto_clarification or not self.engine.gate_blocked(self.store):
            return
        if self.state.is_processing(gate.side_channel):
            return
        task = asyncio.create_task(self._clarify_in_background())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _clarify_in_background(self) -> None:
        try:
            await self.request_clarification()
        except Exception as e:  # noqa: BLE001
            logger.warning("Clarification request failed (best effort): %s", e)
            self.emitter.emit(EventType.CLARIFICATION_FAILED, {"stage": self._clarification_key(), "error": str(e)})

    async def request_clarification(self, custom_context: str | None = None) -> StageRunResult:
        """Run the gate's side channel now, with the gate's output as input.

        Never moves the pointer.
        """
        side = self._clarification_key()
        if side is None:
            raise WorkflowError("the catalog has no clarification stage")
        gate_output = self.store.stage_result(self.catalog.gate.key) or ""
        result = await self.execute(side, gate_output, custom_context)
        if not result.cancelled:
            self.emitter.emit(EventType.CLARIFICATION_READY, {"stage": side})
        return result

    async def ensure_clarification(self) -> StageRunResult | None:
        """Run the side channel when the gate blocks and no clarification exists yet."""
        side = self._clarification_key()
        if side is None or not self.engine.gate_blocked(self.store):
            return None
        if self.store.stage_result(side) is not None or self.state.is_processing(side):
            return None
        return await self.request_clarification()

    # Reset

    def _flag_keys(self, stage_keys: tuple[str, ...]) -> list[str]:
        flags: list[str] = []
        for key in stage_keys:
            stage = self.catalog.get(key)
            flags.append(stage.flag_key())
            for descriptor in stage.substeps:
                flags.append(stage.flag_key(descriptor.role))
            if stage.side_channel:
                flags.append(stage.side_channel)
        return flags

    def reset(self, stage_key: str) -> list[str]:
        """Clear a stage and every later stage, and point at it.

        Returns:
            The artifact keys that were removed.

        Raises:
            AlreadyInProgressError: One of the affected keys is running.
        """
        index = self.catalog.index_of(stage_key)
        affected = self.catalog.stages_from(stage_key)
        side_channels = [s for s, owner in self.catalog.side_channels.items() if owner in affected]
        flags = self._flag_keys(affected)

        running = [f for f in flags if self.state.is_processing(f)]
        if running:
            raise AlreadyInProgressError(
                f"cannot reset '{stage_key}' while {', '.join(running)} is running", stage=stage_key
            )

        removed = self.store.discard([*affected, *side_channels])
        for flag in flags:
            self.state.stage_times.pop(flag, None)

        logger.info("Reset %s: cleared %d artifacts", stage_key, len(removed))
        self.emitter.emit(EventType.STAGE_RESET, {"stage": stage_key, "cleared": removed})
        self._move_pointer(index)
        return removed

    # Navigation

    def navigate(self, index: int) -> None:
        """Point the view at another stage."""
        if not 0 <= index < len(self.catalog):
            raise IndexError(f"stage index {index} out of range 0..{self.catalog.last_index}")
        self._move_pointer(index)

    def advance(self) -> int:
        """Apply the transition rules to the current pointer."""
        self._move_pointer(self.engine.next_index(self.store, self.state.pointer))
        return self.state.pointer

    # Queries

    @property
    def current_stage(self) -> Stage:
        return self.catalog[self.state.pointer]

    def stage_status(self, index: int) -> StageStatus:
        if not 0 <= index < len(self.catalog):
            raise IndexError(f"stage index {index} out of range 0..{self.catalog.last_index}")
        stage = self.catalog[index]
        if self.engine.is_complete(self.store, stage.key):
            return StageStatus.COMPLETED
        if index == self.state.pointer:
            return StageStatus.CURRENT
        return StageStatus.PENDING

    def can_execute(self, stage_key: str, substep: SubstepRole | None = None) -> bool:
        return self.engine.can_execute(self.store, stage_key, substep)

    def blocked_reason(self, stage_key: str, substep: SubstepRole | None = None) -> str | None:
        return self.engine.blocked_reason(self.store, stage_key, substep)

    def is_processing(self, flag_key: str) -> bool:
        return self.state.is_processing(flag_key)

    def elapsed(self, flag_key: str) -> float | None:
        """Seconds running so far, or the duration of the last successful run."""
        started = self.state.started_at.get(flag_key)
        if started is not None and self.state.is_processing(flag_key):
            return time.monotonic() - started
        return self.state.stage_times.get(flag_key)

    @property
    def progress_percentage(self) -> int:
        return self.engine.progress_percentage(self.store)

    @property
    def total_processing_time(self) -> float:
        return sum(self.state.stage_times.values())

    @property
    def is_finished(self) -> bool:
        return self.engine.is_finished(self.store)

    # Persistence

    def hydrate(self, report: PersistedReport | Mapping[str, Any]) -> int:
        """Replace the session state with a persisted report.

        Flags and timings are cleared. Returns the new pointer.
        """
        if self.state.any_processing:
            raise AlreadyInProgressError("cannot hydrate while stages are running")
        store, pointer = self.bridge.hydrate(report)
        self.state = WorkflowState(store=store, pointer=pointer)
        self.emitter.emit(EventType.HYDRATED, {"pointer": pointer, "stage": self.catalog[pointer].key})
        return pointer

    def to_persisted(self, report_id: str | None = None) -> PersistedReport:
        return self.bridge.dump(self.store, report_id)

    async def aclose(self) -> None:
        """Cancel background work and outstanding executions, then close the emitter."""
        for flag in list(self._inflight):
            self.cancel(flag)
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.emitter.close()
