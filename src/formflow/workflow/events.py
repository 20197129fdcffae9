"""Analytics extension points.

The engine emits a ``WorkflowEvent`` at each defined point of the lifecycle and
fans it out to the registered sinks. Sinks are observers only; one that
raises is logged and skipped.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    WORKFLOW_START = "workflow_start"
    WORKFLOW_COMPLETE = "workflow_complete"
    WORKFLOW_ABANDON = "workflow_abandon"
    STEP_START = "step_start"
    STEP_COMPLETE = "step_complete"
    STEP_SKIP = "step_skip"
    VALIDATION_ERROR = "validation_error"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class WorkflowEvent:
    type: EventType
    workflow_id: str
    payload: dict[str, object] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class AnalyticsSink(Protocol):
    def track(self, event: WorkflowEvent) -> None: ...


class RecordingSink:
    """Keep emitted events in memory."""

    def __init__(self) -> None:
        self.events: list[WorkflowEvent] = []

    def track(self, event: WorkflowEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[WorkflowEvent]:
        return [e for e in self.events if e.type is event_type]


class EventEmitter:
    def __init__(self, workflow_id: str, sinks: Iterable[AnalyticsSink] = ()) -> None:
        self.workflow_id = workflow_id
        self._sinks: list[AnalyticsSink] = list(sinks)

    def add_sink(self, sink: AnalyticsSink) -> None:
        self._sinks.append(sink)

    def emit(self, event_type: EventType, **payload: object) -> WorkflowEvent:
        event = WorkflowEvent(type=event_type, workflow_id=self.workflow_id, payload=payload)
        for sink in self._sinks:
            try:
                sink.track(event)
            except Exception:
                logger.exception(
                    "Analytics sink failed",
                    extra={"event_type": event_type.value, "sink": type(sink).__name__},
                )
        return event
