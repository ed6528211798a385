"""
Workflow event system for progress streaming.

Each coordinator owns one emitter. Events are emitted when a stage starts,
completes, fails or is cancelled, when the stage pointer moves, and when a
stage is reset. Subscribers (e.g. an SSE endpoint) read from a queue.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from queue import Full, Queue
from typing import Any


class EventType(Enum):
    """Event types for workflow progress tracking."""

    # Stage execution
    STAGE_START = "stage_start"
    STAGE_COMPLETE = "stage_complete"
    STAGE_FAILED = "stage_failed"
    STAGE_CANCELLED = "stage_cancelled"

    # Navigation
    POINTER_MOVED = "pointer_moved"
    STAGE_RESET = "stage_reset"

    # Gate side channel
    CLARIFICATION_READY = "clarification_ready"
    CLARIFICATION_FAILED = "clarification_failed"

    # Session
    HYDRATED = "hydrated"


@dataclass
class PipelineEvent:
    """A single event from the workflow."""

    event_type: EventType
    data: dict[str, Any]
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event_type.value,
            "data": self.data,
            "timestamp": self.timestamp,
        }

    def to_sse(self) -> str:
        """Format as Server-Sent Event."""
        return f"data: {json.dumps(self.to_dict())}\n\n"


class EventEmitter:
    """
    Event emitter for one workflow session.

    Supports multiple subscribers. Safe to call from sync code and from
    the event loop alike, since emit never blocks.

    Usage:
        emitter = EventEmitter()
        queue = emitter.subscribe()
        coordinator = ExecutionCoordinator(catalog, executor, emitter=emitter)
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._subscribers: list[Queue[PipelineEvent | None]] = []
        self._closed = False
        self._maxsize = maxsize

    def subscribe(self) -> Queue[PipelineEvent | None]:
        """Create a new subscriber queue."""
        queue: Queue[PipelineEvent | None] = Queue(maxsize=self._maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: Queue[PipelineEvent | None]) -> None:
        """Remove a subscriber."""
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        """Emit event to all subscribers (put_nowait, slow consumers miss events)."""
        if self._closed:
            return

        event = PipelineEvent(event_type=event_type, data=data)

        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except Full:
                pass

    def close(self) -> None:
        """Signal end of events to all subscribers."""
        if self._closed:
            return
        self._closed = True
        for queue in self._subscribers:
            try:
                queue.put_nowait(None)  # Sentinel value
            except Full:
                pass

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def has_subscribers(self) -> bool:
        return len(self._subscribers) > 0
