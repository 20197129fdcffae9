"""Builder plugins.

A plugin is installed into a ``WorkflowBuilder`` with ``use()`` and may
register forms, analytics sinks or steps. Dependencies between plugins are
checked when the workflow is validated.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from formflow.workflow.events import WorkflowEvent

if TYPE_CHECKING:
    from formflow.workflow.builder import WorkflowBuilder

logger = logging.getLogger(__name__)


class WorkflowPlugin(Protocol):
    name: str
    version: str
    dependencies: Sequence[str]

    def install(self, builder: WorkflowBuilder) -> None: ...


class LoggingAnalyticsSink:
    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def track(self, event: WorkflowEvent) -> None:
        logger.log(
            self.level,
            "Workflow event: %s",
            event.type.value,
            extra={
                "workflow_id": event.workflow_id,
                "event_type": event.type.value,
                "payload": event.payload,
            },
        )


@dataclass(frozen=True, slots=True)
class AnalyticsLoggingPlugin:
    """Send every workflow event to the ``formflow.workflow.plugins`` logger."""

    level: int = logging.INFO
    name: str = "analytics-logging"
    version: str = "1.0.0"
    dependencies: tuple[str, ...] = ()

    def install(self, builder: WorkflowBuilder) -> None:
        builder.add_analytics(LoggingAnalyticsSink(self.level))
