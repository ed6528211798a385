"""Stage executors: the boundary to whatever actually runs a stage.

The coordinator only needs ``await executor.execute(stage_key, input_text,
custom_context)``. Two implementations ship here:
- HttpStageExecutor calls the report server's stage endpoint
- ThreadedStageExecutor runs a blocking callable in a worker thread

Executors own their own timeouts; the coordinator never adds one.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import anyio
import httpx

from reportflow.settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class StageExecution:
    """Output of one executor call."""

    result_text: str
    concept_text: str | None = None
    elapsed_ms: float | None = None


@runtime_checkable
class StageExecutor(Protocol):
    """Anything that can run a stage for the coordinator."""

    async def execute(
        self,
        stage_key: str,
        input_text: str,
        custom_context: str | None = None,
    ) -> StageExecution: ...


class StageExecutionError(RuntimeError):
    """The remote stage endpoint reported a failure."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _error_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return str(error.get("userMessage") or error.get("message") or fallback)
        if isinstance(error, str) and error:
            return error
        if isinstance(payload.get("message"), str):
            return payload["message"]
    return fallback


def parse_stage_response(payload: Any) -> StageExecution:
    """Read a stage endpoint response.

    Accepts both the wrapped ``{"success": true, "data": {...}}`` shape and a
    bare data object. The result text is taken from ``stageResult`` or
    ``stageOutput``; the concept report from ``conceptReport``.
    """
    if isinstance(payload, dict) and "success" in payload:
        if not payload["success"]:
            raise StageExecutionError(_error_message(payload, "stage execution failed"))
        payload = payload.get("data")

    if not isinstance(payload, dict):
        raise StageExecutionError("stage response is not a JSON object")

    result = payload.get("stageResult")
    if result is None:
        result = payload.get("stageOutput")
    if not isinstance(result, str):
        raise StageExecutionError("stage response has no stageResult")

    concept = payload.get("conceptReport")
    if not isinstance(concept, str) or not concept:
        concept = None

    elapsed = payload.get("elapsedMs")
    return StageExecution(
        result_text=result,
        concept_text=concept,
        elapsed_ms=float(elapsed) if isinstance(elapsed, (int, float)) else None,
    )


class HttpStageExecutor:
    """Run stages through the report server's HTTP API.

    ``POST {base_url}/api/reports/{report_id}/stage/{stage_key}`` with the
    operator's input as ``customInput``. The server owns the prompt and
    reads the rest of the dossier itself, so ``input_text`` is only sent
    when no custom context is given.
    """

    def __init__(
        self,
        base_url: str,
        report_id: str,
        *,
        timeout_s: float = 600.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._report_id = report_id
        self._timeout_s = timeout_s
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: Settings, report_id: str | None = None) -> "HttpStageExecutor":
        rid = report_id or settings.report_id
        if not rid:
            raise ValueError("report_id is required (pass it or set REPORTFLOW_REPORT_ID)")
        return cls(settings.executor_base_url, rid, timeout_s=settings.executor_timeout_s)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    def stage_url(self, stage_key: str) -> str:
        return f"{self._base_url}/api/reports/{self._report_id}/stage/{stage_key}"

    async def execute(
        self,
        stage_key: str,
        input_text: str,
        custom_context: str | None = None,
    ) -> StageExecution:
        url = self.stage_url(stage_key)
        body: dict[str, Any] = {"customInput": custom_context if custom_context is not None else input_text}

        started = time.perf_counter()
        response = await self._get_client().post(url, json=body)
        elapsed_ms = (time.perf_counter() - started) * 1000

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error:
            message = _error_message(payload, f"HTTP {response.status_code} from {url}")
            logger.warning("Stage %s failed with HTTP %d: %s", stage_key, response.status_code, message)
            raise StageExecutionError(message, status_code=response.status_code)

        execution = parse_stage_response(payload)
        if execution.elapsed_ms is None:
            execution.elapsed_ms = elapsed_ms
        return execution

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


StageFunction = Callable[[str, str, str | None], StageExecution | str]


class ThreadedStageExecutor:
    """Run a blocking stage function in a worker thread.

    The function receives ``(stage_key, input_text, custom_context)`` and
    returns either a StageExecution or the raw result text.
    """

    def __init__(self, func: StageFunction) -> None:
        self._func = func

    async def execute(
        self,
        stage_key: str,
        input_text: str,
        custom_context: str | None = None,
    ) -> StageExecution:
        job = lambda: self._func(stage_key, input_text, custom_context)
        result = await anyio.to_thread.run_sync(job)
        if isinstance(result, StageExecution):
            return result
        if isinstance(result, str):
            return StageExecution(result_text=result)
        raise TypeError(f"stage function returned {type(result).__name__}, expected str or StageExecution")
