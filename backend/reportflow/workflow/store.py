"""Bounded artifact storage for one workflow session.

Three independent maps are kept:
- stage results: raw output per stage (or side-channel) key
- concept versions: snapshot of the cumulative report as of a stage
- substep results: review/processing pair per reviewer stage

Operators may re-run stages any number of times, so every map is bounded.
When a map grows past its limit, keys are grouped by their base stage
(run-iteration suffix stripped) and only the latest entry per base stage,
the most recently written keys and the map's protected keys survive.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Generic, TypeVar

from reportflow.models.report import SubstepResult
from reportflow.models.stages import SubstepRole
from reportflow.settings import Settings

logger = logging.getLogger(__name__)

V = TypeVar("V")

# "_v2", "_iter3" or an ISO timestamp appended to a stage key
_ITERATION_SUFFIX = re.compile(r"_(?:v\d+|iter\d+|\d{4}-\d{2}-\d{2}T)")

# Concept map bookkeeping keys, never evicted
CONCEPT_SPECIAL_KEYS = frozenset({"latest", "history"})


def base_stage_key(key: str) -> str:
    """Strip a run-iteration suffix: "3_generatie_v2" -> "3_generatie"."""
    match = _ITERATION_SUFFIX.search(key)
    if match is None or match.start() == 0:
        return key
    return key[: match.start()]


@dataclass(frozen=True)
class EvictionPolicy:
    """Bound for one artifact map.

    Attributes:
        max_entries: Eviction runs when the map holds more keys than this.
        keep_recent: Number of most recently written keys always kept.
        protected: Keys that are never evicted.
    """

    max_entries: int
    keep_recent: int
    protected: frozenset[str] = field(default_factory=frozenset)

    def select_evictions(self, keys: Sequence[str]) -> list[str]:
        """Keys to evict, given all keys ordered oldest write first."""
        if len(keys) <= self.max_entries:
            return []

        regular = [k for k in keys if k not in self.protected]
        latest_per_stage: dict[str, str] = {}
        for key in regular:
            latest_per_stage[base_stage_key(key)] = key

        keep = set(latest_per_stage.values())
        if self.keep_recent > 0:
            keep.update(regular[-self.keep_recent:])
        return [k for k in regular if k not in keep]


class BoundedMap(Generic[V]):
    """Insertion-ordered map that tracks write recency and evicts on overflow."""

    def __init__(self, name: str, policy: EvictionPolicy) -> None:
        self.name = name
        self.policy = policy
        self._data: dict[str, V] = {}

    def set(self, key: str, value: V) -> list[str]:
        """Write (or overwrite) a key and evict if over the bound.

        Returns:
            The keys evicted by this write.
        """
        # Re-insert so the key becomes the most recent write
        self._data.pop(key, None)
        self._data[key] = value

        evicted = self.policy.select_evictions(list(self._data))
        for old_key in evicted:
            del self._data[old_key]
        if evicted:
            logger.info(
                "Pruned %d old %s (kept latest per stage + last %d overall)",
                len(evicted),
                self.name,
                self.policy.keep_recent,
            )
        return evicted

    def get(self, key: str) -> V | None:
        return self._data.get(key)

    def discard_stages(self, stage_keys: set[str]) -> list[str]:
        """Remove every key whose base stage is in ``stage_keys``."""
        removed = [k for k in self._data if base_stage_key(k) in stage_keys]
        for key in removed:
            del self._data[key]
        return removed

    def view(self) -> Mapping[str, V]:
        return MappingProxyType(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


class ArtifactStore:
    """Per-session store for stage results, concept versions and substep results.

    Writes never fail and never append: a write for an existing key
    replaces it. The only delete is ``discard`` (used by stage reset).
    """

    def __init__(
        self,
        *,
        stage_policy: EvictionPolicy | None = None,
        concept_policy: EvictionPolicy | None = None,
        substep_policy: EvictionPolicy | None = None,
    ) -> None:
        self._stage_results: BoundedMap[str] = BoundedMap(
            "stage results", stage_policy or EvictionPolicy(max_entries=100, keep_recent=20)
        )
        self._concept_versions: BoundedMap[str] = BoundedMap(
            "concept versions",
            concept_policy
            or EvictionPolicy(max_entries=50, keep_recent=15, protected=CONCEPT_SPECIAL_KEYS),
        )
        self._substep_results: BoundedMap[SubstepResult] = BoundedMap(
            "substep results", substep_policy or EvictionPolicy(max_entries=50, keep_recent=15)
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ArtifactStore":
        return cls(
            stage_policy=EvictionPolicy(
                max_entries=settings.max_stage_results,
                keep_recent=settings.keep_recent_stage_results,
            ),
            concept_policy=EvictionPolicy(
                max_entries=settings.max_concept_versions,
                keep_recent=settings.keep_recent_concept_versions,
                protected=CONCEPT_SPECIAL_KEYS,
            ),
            substep_policy=EvictionPolicy(
                max_entries=settings.max_substep_results,
                keep_recent=settings.keep_recent_substep_results,
            ),
        )

    def empty_copy(self) -> "ArtifactStore":
        """A new, empty store with the same bounds."""
        return ArtifactStore(
            stage_policy=self._stage_results.policy,
            concept_policy=self._concept_versions.policy,
            substep_policy=self._substep_results.policy,
        )

    # Reads

    @property
    def stage_results(self) -> Mapping[str, str]:
        return self._stage_results.view()

    @property
    def concept_versions(self) -> Mapping[str, str]:
        return self._concept_versions.view()

    @property
    def substep_results(self) -> Mapping[str, SubstepResult]:
        return self._substep_results.view()

    def stage_result(self, key: str) -> str | None:
        return self._stage_results.get(key)

    def concept_version(self, key: str) -> str | None:
        return self._concept_versions.get(key)

    def substep_result(self, key: str) -> SubstepResult:
        return self._substep_results.get(key) or SubstepResult()

    def latest_concept(self, stage_order: Sequence[str]) -> str | None:
        """Concept report of the furthest stage (in ``stage_order``) that has one."""
        by_stage: dict[str, str] = {}
        for key, text in self._concept_versions.view().items():
            by_stage[base_stage_key(key)] = text
        for stage_key in reversed(stage_order):
            if stage_key in by_stage:
                return by_stage[stage_key]
        return None

    @property
    def is_empty(self) -> bool:
        return not (len(self._stage_results) or len(self._concept_versions) or len(self._substep_results))

    # Writes

    def set_stage_result(self, key: str, text: str) -> list[str]:
        return self._stage_results.set(key, text)

    def set_concept_version(self, key: str, text: str) -> list[str]:
        return self._concept_versions.set(key, text)

    def set_substep_result(self, key: str, role: SubstepRole, text: str) -> list[str]:
        """Write one half of a reviewer's substep pair.

        A new review supersedes the previous feedback round, so it drops
        any processing result derived from the old review.
        """
        if role == SubstepRole.REVIEW:
            result = SubstepResult(review=text)
        else:
            result = self.substep_result(key).model_copy(update={"processing": text})
        return self._substep_results.set(key, result)

    def discard(self, stage_keys: Iterable[str]) -> list[str]:
        """Remove all entries belonging to the given stages, in every map.

        Returns:
            Every raw key that was removed (deduplicated, map order).
        """
        targets = set(stage_keys)
        removed: list[str] = []
        for bounded in (self._stage_results, self._concept_versions, self._substep_results):
            for key in bounded.discard_stages(targets):
                if key not in removed:
                    removed.append(key)
        return removed

    # Snapshots

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Plain-dict copy of the three maps."""
        return {
            "stage_results": dict(self._stage_results.view()),
            "concept_versions": dict(self._concept_versions.view()),
            "substep_results": {
                key: value.model_dump(exclude_none=True)
                for key, value in self._substep_results.view().items()
            },
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ArtifactStore):
            return NotImplemented
        return self.snapshot() == other.snapshot()

    def __repr__(self) -> str:
        return (
            f"ArtifactStore(stage_results={len(self._stage_results)}, "
            f"concept_versions={len(self._concept_versions)}, "
            f"substep_results={len(self._substep_results)})"
        )
