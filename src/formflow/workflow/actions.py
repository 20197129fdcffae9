"""Named store actions.

Every mutation of a ``WorkflowStateStore`` goes through one of these. An
action is a pure function of the previous state: it returns the next state or
raises ``StateStoreError`` and leaves the store untouched.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from formflow.errors import StateStoreError
from formflow.workflow.flattening import extract_step_data
from formflow.workflow.state import WorkflowState


@dataclass(frozen=True, slots=True)
class ActionContext:
    """What an action may consult besides the state itself."""

    step_ids: tuple[str, ...]
    initial: WorkflowState

    def step_id_at(self, index: int) -> str:
        if not 0 <= index < len(self.step_ids):
            raise StateStoreError(
                f"Step index {index} out of range (0..{len(self.step_ids) - 1})"
            )
        return self.step_ids[index]

    def require_step(self, step_id: str) -> str:
        if step_id not in self.step_ids:
            raise StateStoreError(f"Unknown step id: {step_id!r}")
        return step_id


class Action(Protocol):
    """A named, deterministic state transition."""

    name: str

    def apply(self, state: WorkflowState, ctx: ActionContext) -> WorkflowState: ...


def _with_step_data(
    state: WorkflowState, ctx: ActionContext, step_id: str, data: dict[str, Any]
) -> WorkflowState:
    all_data = {**state.all_data, step_id: data}
    if step_id == ctx.step_id_at(state.current_step_index):
        return state.evolve(all_data=all_data, step_data=data)
    return state.evolve(all_data=all_data)


def _resync(state: WorkflowState, ctx: ActionContext) -> WorkflowState:
    current = ctx.step_id_at(state.current_step_index)
    return state.evolve(step_data=extract_step_data(state.all_data, current))


@dataclass(frozen=True, slots=True)
class SetCurrentStep(Action):
    index: int
    name: str = field(default="set_current_step", init=False)

    def apply(self, state: WorkflowState, ctx: ActionContext) -> WorkflowState:
        step_id = ctx.step_id_at(self.index)
        return state.evolve(
            current_step_index=self.index,
            step_data=extract_step_data(state.all_data, step_id),
        )


@dataclass(frozen=True, slots=True)
class SetStepData(Action):
    """Replace one step's data (the current step when ``step_id`` is omitted)."""

    data: Mapping[str, Any]
    step_id: str | None = None
    name: str = field(default="set_step_data", init=False)

    def apply(self, state: WorkflowState, ctx: ActionContext) -> WorkflowState:
        step_id = (
            ctx.require_step(self.step_id)
            if self.step_id is not None
            else ctx.step_id_at(state.current_step_index)
        )
        return _with_step_data(state, ctx, step_id, copy.deepcopy(dict(self.data)))


@dataclass(frozen=True, slots=True)
class SetAllData(Action):
    data: Mapping[str, Mapping[str, Any]]
    name: str = field(default="set_all_data", init=False)

    def apply(self, state: WorkflowState, ctx: ActionContext) -> WorkflowState:
        all_data = {str(k): copy.deepcopy(dict(v)) for k, v in self.data.items()}
        return _resync(state.evolve(all_data=all_data), ctx)


@dataclass(frozen=True, slots=True)
class SetFieldValue(Action):
    field_id: str
    value: Any
    step_id: str | None = None
    name: str = field(default="set_field_value", init=False)

    def apply(self, state: WorkflowState, ctx: ActionContext) -> WorkflowState:
        step_id = (
            ctx.require_step(self.step_id)
            if self.step_id is not None
            else ctx.step_id_at(state.current_step_index)
        )
        data = {
            **extract_step_data(state.all_data, step_id),
            self.field_id: copy.deepcopy(self.value),
        }
        return _with_step_data(state, ctx, step_id, data)


@dataclass(frozen=True, slots=True)
class MarkVisited(Action):
    step_id: str
    name: str = field(default="mark_visited", init=False)

    def apply(self, state: WorkflowState, ctx: ActionContext) -> WorkflowState:
        ctx.require_step(self.step_id)
        return state.evolve(visited_steps=state.visited_steps | {self.step_id})


@dataclass(frozen=True, slots=True)
class MarkPassed(Action):
    step_id: str
    name: str = field(default="mark_passed", init=False)

    def apply(self, state: WorkflowState, ctx: ActionContext) -> WorkflowState:
        ctx.require_step(self.step_id)
        return state.evolve(passed_steps=state.passed_steps | {self.step_id})


@dataclass(frozen=True, slots=True)
class SetSubmitting(Action):
    value: bool
    name: str = field(default="set_submitting", init=False)

    def apply(self, state: WorkflowState, ctx: ActionContext) -> WorkflowState:
        return state.evolve(is_submitting=bool(self.value))


@dataclass(frozen=True, slots=True)
class SetTransitioning(Action):
    value: bool
    name: str = field(default="set_transitioning", init=False)

    def apply(self, state: WorkflowState, ctx: ActionContext) -> WorkflowState:
        return state.evolve(is_transitioning=bool(self.value))


@dataclass(frozen=True, slots=True)
class Reset(Action):
    """Return to the defaults the store was created with."""

    name: str = field(default="reset", init=False)

    def apply(self, state: WorkflowState, ctx: ActionContext) -> WorkflowState:
        return copy.deepcopy(ctx.initial)


@dataclass(frozen=True, slots=True)
class LoadSnapshot(Action):
    """Install a restored state.

    Flags are cleared; a non-empty ``step_data`` is folded into the current
    step's ``all_data`` entry so the two agree afterwards.
    """

    restored: WorkflowState
    name: str = field(default="load_snapshot", init=False)

    def apply(self, state: WorkflowState, ctx: ActionContext) -> WorkflowState:
        restored = copy.deepcopy(self.restored)
        step_id = ctx.step_id_at(restored.current_step_index)
        unknown = (restored.visited_steps | restored.passed_steps) - set(ctx.step_ids)
        if unknown:
            raise StateStoreError(f"Snapshot references unknown steps: {sorted(unknown)}")

        step_data = {**extract_step_data(restored.all_data, step_id), **restored.step_data}
        return restored.evolve(
            all_data={**restored.all_data, step_id: step_data},
            step_data=step_data,
            is_submitting=False,
            is_transitioning=False,
        )
