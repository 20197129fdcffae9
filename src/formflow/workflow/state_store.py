"""The workflow's single source of truth.

The store owns an immutable ``WorkflowState`` and replaces it atomically on
each dispatched action. Observers registered with ``subscribe()`` are told
about every change after it is installed.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from formflow.errors import StateStoreError
from formflow.workflow.actions import (
    Action,
    ActionContext,
    LoadSnapshot,
    MarkPassed,
    MarkVisited,
    Reset,
    SetAllData,
    SetCurrentStep,
    SetFieldValue,
    SetStepData,
    SetSubmitting,
    SetTransitioning,
)
from formflow.workflow.flattening import extract_step_data
from formflow.workflow.state import WorkflowState

logger = logging.getLogger(__name__)

Observer = Callable[[WorkflowState, WorkflowState, Action], None]


class WorkflowStateStore:
    def __init__(
        self,
        step_ids: Sequence[str],
        *,
        default_values: Mapping[str, Mapping[str, Any]] | None = None,
        default_step_index: int = 0,
    ) -> None:
        if not step_ids:
            raise StateStoreError("A workflow store needs at least one step")
        if not 0 <= default_step_index < len(step_ids):
            raise StateStoreError(f"Default step index {default_step_index} out of range")

        all_data = {str(k): copy.deepcopy(dict(v)) for k, v in (default_values or {}).items()}
        initial = WorkflowState(
            current_step_index=default_step_index,
            all_data=all_data,
            step_data=extract_step_data(all_data, step_ids[default_step_index]),
        )
        self._ctx = ActionContext(step_ids=tuple(step_ids), initial=initial)
        self._state = copy.deepcopy(initial)
        self._observers: list[Observer] = []
        self._lock = threading.RLock()

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def step_ids(self) -> tuple[str, ...]:
        return self._ctx.step_ids

    @property
    def current_step_id(self) -> str:
        return self._ctx.step_ids[self._state.current_step_index]

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer``; returns a callable that removes it again."""

        with self._lock:
            self._observers.append(observer)

        def _unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return _unsubscribe

    def dispatch(self, action: Action) -> WorkflowState:
        with self._lock:
            previous = self._state
            state = action.apply(previous, self._ctx)
            self._state = state
            observers = list(self._observers)

        logger.debug(
            "Store action applied",
            extra={"action": action.name, "current_step_index": state.current_step_index},
        )
        for observer in observers:
            try:
                observer(state, previous, action)
            except Exception:
                logger.exception("Store observer failed", extra={"action": action.name})
        return state

    def set_current_step(self, index: int) -> WorkflowState:
        return self.dispatch(SetCurrentStep(index))

    def set_step_data(
        self, data: Mapping[str, Any], step_id: str | None = None
    ) -> WorkflowState:
        return self.dispatch(SetStepData(data, step_id))

    def set_all_data(self, data: Mapping[str, Mapping[str, Any]]) -> WorkflowState:
        return self.dispatch(SetAllData(data))

    def set_field_value(
        self, field_id: str, value: Any, step_id: str | None = None
    ) -> WorkflowState:
        return self.dispatch(SetFieldValue(field_id, value, step_id))

    def mark_visited(self, step_id: str) -> WorkflowState:
        return self.dispatch(MarkVisited(step_id))

    def mark_passed(self, step_id: str) -> WorkflowState:
        return self.dispatch(MarkPassed(step_id))

    def set_submitting(self, value: bool) -> WorkflowState:
        return self.dispatch(SetSubmitting(value))

    def set_transitioning(self, value: bool) -> WorkflowState:
        return self.dispatch(SetTransitioning(value))

    def reset(self) -> WorkflowState:
        return self.dispatch(Reset())

    def load_snapshot(self, restored: WorkflowState) -> WorkflowState:
        return self.dispatch(LoadSnapshot(restored))
