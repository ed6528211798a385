"""Factory functions and fakes for workflow tests.

Usage:
    from tests.factories import FakeExecutor, make_abc_catalog

    catalog = make_abc_catalog()
    executor = FakeExecutor(results={"A": "draft"})
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional

from reportflow.models import Stage, StageRole, SubstepDescriptor, SubstepRole
from reportflow.workflow.catalog import StageCatalog
from reportflow.workflow.executor import StageExecution

INTAKE_COMPLETE = json.dumps({"status": "COMPLEET", "dossier": {"samenvatting_onderwerp": "Box 3"}})
INTAKE_INCOMPLETE = json.dumps(
    {"status": "INCOMPLEET", "ontbrekende_informatie": ["jaaropgave 2023"]}
)


def make_stage(key: str, role: StageRole = StageRole.GENERATOR, **kwargs) -> Stage:
    """Create a Stage; reviewers get the standard review/processing pair."""
    if role == StageRole.REVIEWER and "substeps" not in kwargs:
        kwargs["substeps"] = (
            SubstepDescriptor(key="review", role=SubstepRole.REVIEW),
            SubstepDescriptor(key="update", role=SubstepRole.PROCESSING),
        )
    return Stage(key=key, label=kwargs.pop("label", key), role=role, **kwargs)


def make_abc_catalog() -> StageCatalog:
    """[A (generator), B (reviewer), C (generator, final)]."""
    return StageCatalog(
        [
            make_stage("A"),
            make_stage("B", StageRole.REVIEWER),
            make_stage("C"),
        ]
    )


def make_gated_catalog() -> StageCatalog:
    """Gate G (with side channel G_mail) directly followed by fan-out F.

    G -> F -> R1 -> R2 -> Z
    """
    return StageCatalog(
        [
            make_stage("G", side_channel="G_mail"),
            make_stage("F"),
            make_stage("R1", StageRole.REVIEWER),
            make_stage("R2", StageRole.REVIEWER),
            make_stage("Z"),
        ],
        gate="G",
    )


class FakeExecutor:
    """In-memory StageExecutor.

    Args:
        results: Result text per executor stage key (default "<key> output")
        concepts: Concept report per executor stage key
        errors: Exception to raise per executor stage key
        elapsed_ms: Reported elapsed time, None to let the coordinator measure
    """

    def __init__(
        self,
        results: Optional[dict[str, str]] = None,
        *,
        concepts: Optional[dict[str, str]] = None,
        errors: Optional[dict[str, Exception]] = None,
        elapsed_ms: Optional[float] = None,
    ) -> None:
        self.results = dict(results or {})
        self.concepts = dict(concepts or {})
        self.errors = dict(errors or {})
        self.elapsed_ms = elapsed_ms
        self.calls: list[tuple[str, str, Optional[str]]] = []
        self._holds: dict[str, asyncio.Event] = {}

    def hold(self, stage_key: str) -> asyncio.Event:
        """Block calls for ``stage_key`` until the returned event is set."""
        event = asyncio.Event()
        self._holds[stage_key] = event
        return event

    async def execute(
        self,
        stage_key: str,
        input_text: str,
        custom_context: Optional[str] = None,
    ) -> StageExecution:
        self.calls.append((stage_key, input_text, custom_context))
        event = self._holds.get(stage_key)
        if event is not None:
            await event.wait()
        if stage_key in self.errors:
            raise self.errors[stage_key]
        return StageExecution(
            result_text=self.results.get(stage_key, f"{stage_key} output"),
            concept_text=self.concepts.get(stage_key),
            elapsed_ms=self.elapsed_ms,
        )

    def called_keys(self) -> list[str]:
        return [call[0] for call in self.calls]


async def drain(rounds: int = 10) -> None:
    """Let scheduled background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
