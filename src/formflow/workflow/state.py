"""The immutable workflow state value."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(frozen=True, slots=True)
class WorkflowState:
    """One snapshot of a running workflow.

    ``all_data`` maps step id to that step's field values; ``step_data`` is the
    current step's entry in it. The store replaces the whole value on every
    action, so instances can be shared freely. Treat the dicts as read-only.
    """

    current_step_index: int = 0
    all_data: dict[str, dict[str, Any]] = field(default_factory=dict)
    step_data: dict[str, Any] = field(default_factory=dict)
    visited_steps: frozenset[str] = frozenset()
    passed_steps: frozenset[str] = frozenset()
    is_submitting: bool = False
    is_transitioning: bool = False

    def evolve(self, **changes: Any) -> WorkflowState:
        return replace(self, **changes)
