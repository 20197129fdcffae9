"""Step navigation.

Moving forward is a fixed sequence: validate the current step, run its
after-hook to completion, mark it passed, recompute visibility from the
post-hook data and only then pick the next visible step. Running the hook
first is what lets a hook's prefill make a conditional step appear in the
same ``go_next()`` call.

``is_transitioning`` on the store doubles as a reentrancy guard. It is set
before the first ``await`` so concurrent navigation requests are rejected
with ``TRANSITION_IN_PROGRESS`` instead of interleaving.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from formflow.workflow.definitions import StepDefinition, WorkflowDefinition
from formflow.workflow.events import EventEmitter, EventType
from formflow.workflow.flattening import extract_step_data
from formflow.workflow.forms import StepValidator, ValidationError, run_validator
from formflow.workflow.state_store import WorkflowStateStore
from formflow.workflow.visibility import VisibilityMap, VisibilityResolver

logger = logging.getLogger(__name__)

StepChangeCallback = Callable[[int, int], Awaitable[None] | None]


class NavigationPhase(str, Enum):
    IDLE = "idle"
    TRANSITIONING = "transitioning"
    SUBMITTABLE = "submittable"


class NavigationOutcome(str, Enum):
    MOVED = "moved"
    NO_FURTHER_STEP = "no_further_step"
    NO_PREVIOUS_STEP = "no_previous_step"
    OUT_OF_RANGE = "out_of_range"
    STEP_HIDDEN = "step_hidden"
    NOT_SKIPPABLE = "not_skippable"
    VALIDATION_FAILED = "validation_failed"
    TRANSITION_IN_PROGRESS = "transition_in_progress"


@dataclass(frozen=True, slots=True)
class NavigationResult:
    outcome: NavigationOutcome
    from_index: int
    to_index: int | None = None
    errors: tuple[ValidationError, ...] = ()

    @property
    def ok(self) -> bool:
        return self.outcome is NavigationOutcome.MOVED


async def _maybe_await(value: object) -> None:
    if inspect.isawaitable(value):
        await value


class _NextStep:
    def __init__(self, ctx: StepContext) -> None:
        self._ctx = ctx

    @property
    def step_id(self) -> str | None:
        ids = self._ctx._store.step_ids
        index = self._ctx.step_index + 1
        return ids[index] if index < len(ids) else None

    def prefill(self, fields: Mapping[str, Any]) -> None:
        """Merge ``fields`` into the data of the step after this one."""

        step_id = self.step_id
        if step_id is None:
            logger.warning(
                "prefill() called on the last step; ignored",
                extra={"step_id": self._ctx.step_id},
            )
            return
        self._ctx.workflow.set(step_id, fields)

    def skip(self) -> None:
        """Jump over the next visible step once this step completes.

        Ignored when that step is the last visible one.
        """

        self._ctx._skip_next = True


class _WorkflowHandle:
    def __init__(self, ctx: StepContext) -> None:
        self._ctx = ctx

    def get(self, step_id: str) -> dict[str, Any]:
        return extract_step_data(self._ctx._store.state.all_data, step_id)

    def all(self) -> dict[str, dict[str, Any]]:
        return {k: dict(v) for k, v in self._ctx._store.state.all_data.items()}

    def set(self, step_id: str, fields: Mapping[str, Any]) -> None:
        current = self.get(step_id)
        self._ctx._store.set_step_data({**current, **fields}, step_id)

    def goto(self, step_id: str) -> None:
        """Continue at ``step_id`` instead of the next visible step."""

        self._ctx._goto = step_id


class StepContext:
    """What an after-hook sees of the workflow while its step completes."""

    def __init__(
        self,
        *,
        store: WorkflowStateStore,
        step: StepDefinition,
        step_index: int,
        is_first: bool,
        is_last: bool,
    ) -> None:
        self._store = store
        self._skip_next = False
        self._goto: str | None = None
        self.step = step
        self.step_index = step_index
        self.is_first = is_first
        self.is_last = is_last
        self.next = _NextStep(self)
        self.workflow = _WorkflowHandle(self)

    @property
    def step_id(self) -> str:
        return self.step.id

    @property
    def data(self) -> dict[str, Any]:
        return self.workflow.get(self.step.id)

    @property
    def meta(self) -> Mapping[str, Any]:
        return self.step.metadata


class NavigationEngine:
    def __init__(
        self,
        definition: WorkflowDefinition,
        store: WorkflowStateStore,
        resolver: VisibilityResolver,
        *,
        validator: StepValidator | None = None,
        events: EventEmitter | None = None,
        on_step_change: StepChangeCallback | None = None,
    ) -> None:
        self._definition = definition
        self._store = store
        self._resolver = resolver
        self._validator = validator
        self._events = events or EventEmitter(definition.id)
        self._on_step_change = on_step_change

    @property
    def visibility(self) -> VisibilityMap:
        state = self._store.state
        return self._resolver.resolve(state.all_data, state.step_data)

    @property
    def current_index(self) -> int:
        return self._store.state.current_step_index

    @property
    def phase(self) -> NavigationPhase:
        if self._store.state.is_transitioning:
            return NavigationPhase.TRANSITIONING
        if self.is_last_step():
            return NavigationPhase.SUBMITTABLE
        return NavigationPhase.IDLE

    def is_first_step(self) -> bool:
        return self.visibility.previous_visible(self.current_index) is None

    def is_last_step(self) -> bool:
        return self.visibility.next_visible(self.current_index) is None

    def can_go_next(self) -> bool:
        return not self._store.state.is_transitioning and not self.is_last_step()

    def can_go_previous(self) -> bool:
        return not self._store.state.is_transitioning and not self.is_first_step()

    def can_go_to_step(self, index: int) -> bool:
        return not self._store.state.is_transitioning and self.visibility.is_visible(index)

    def can_skip_current_step(self) -> bool:
        visibility = self.visibility
        index = self.current_index
        return (
            not self._store.state.is_transitioning
            and visibility.is_visible(index)
            and visibility.is_skippable(index)
        )

    async def go_next(self) -> NavigationResult:
        return await self._advance(validate=True)

    async def skip_step(self) -> NavigationResult:
        """Leave the current step without validating it."""

        index = self.current_index
        if self._store.state.is_transitioning:
            return NavigationResult(NavigationOutcome.TRANSITION_IN_PROGRESS, index)
        if not self.can_skip_current_step():
            return NavigationResult(NavigationOutcome.NOT_SKIPPABLE, index)

        self._events.emit(
            EventType.STEP_SKIP, step_id=self._store.current_step_id, reason="user_skip"
        )
        return await self._advance(validate=False)

    async def go_previous(self) -> NavigationResult:
        index = self.current_index
        if not self._begin():
            return NavigationResult(NavigationOutcome.TRANSITION_IN_PROGRESS, index)
        try:
            target = self.visibility.previous_visible(index)
            if target is None:
                return NavigationResult(NavigationOutcome.NO_PREVIOUS_STEP, index)
            return await self._move(index, target)
        finally:
            self._store.set_transitioning(False)

    async def go_to_step(self, index: int) -> NavigationResult:
        current = self.current_index
        if not 0 <= index < len(self._definition.steps):
            return NavigationResult(NavigationOutcome.OUT_OF_RANGE, current)
        if not self._begin():
            return NavigationResult(NavigationOutcome.TRANSITION_IN_PROGRESS, current)
        try:
            if not self.visibility.is_visible(index):
                return NavigationResult(NavigationOutcome.STEP_HIDDEN, current)
            return await self._move(current, index)
        finally:
            self._store.set_transitioning(False)

    def _begin(self) -> bool:
        if self._store.state.is_transitioning:
            return False
        self._store.set_transitioning(True)
        return True

    async def _advance(self, *, validate: bool) -> NavigationResult:
        state = self._store.state
        index = state.current_step_index
        if not self._begin():
            return NavigationResult(NavigationOutcome.TRANSITION_IN_PROGRESS, index)

        step = self._definition.steps[index]
        try:
            if validate and self._validator is not None:
                result = await run_validator(self._validator, step.id, state.step_data)
                if not result.is_valid:
                    self._events.emit(
                        EventType.VALIDATION_ERROR,
                        step_id=step.id,
                        errors=[e.to_json() for e in result.errors],
                    )
                    return NavigationResult(
                        NavigationOutcome.VALIDATION_FAILED, index, errors=result.errors
                    )

            before = self.visibility
            ctx = StepContext(
                store=self._store,
                step=step,
                step_index=index,
                is_first=before.previous_visible(index) is None,
                is_last=before.next_visible(index) is None,
            )
            if step.after_hook is not None:
                try:
                    await _maybe_await(step.after_hook(ctx))
                except Exception as e:
                    logger.exception("After-hook failed", extra={"step_id": step.id})
                    self._events.emit(
                        EventType.ERROR, step_id=step.id, phase="after_hook", error=str(e)
                    )
                    raise

            self._store.mark_passed(step.id)
            self._events.emit(EventType.STEP_COMPLETE, step_id=step.id)

            target = self._pick_target(self.visibility, index, ctx)
            if target is None:
                return NavigationResult(NavigationOutcome.NO_FURTHER_STEP, index)
            return await self._move(index, target)
        finally:
            self._store.set_transitioning(False)

    def _pick_target(self, visibility: VisibilityMap, index: int, ctx: StepContext) -> int | None:
        if ctx._goto is not None:
            target = self._definition.index_of(ctx._goto)
            if target is not None and visibility.is_visible(target):
                return target
            logger.warning(
                "goto() target is unknown or hidden; continuing with the next visible step",
                extra={"step_id": ctx.step_id, "goto": ctx._goto},
            )

        target = visibility.next_visible(index)
        if ctx._skip_next and target is not None:
            after = visibility.next_visible(target)
            if after is None:
                # The last visible step is never skipped.
                logger.warning(
                    "skip() would pass the last visible step; ignored",
                    extra={"step_id": ctx.step_id},
                )
                return target
            self._events.emit(
                EventType.STEP_SKIP, step_id=self._definition.steps[target].id, reason="hook_skip"
            )
            target = after
        return target

    async def _move(self, from_index: int, to_index: int) -> NavigationResult:
        if self._on_step_change is not None:
            await _maybe_await(self._on_step_change(from_index, to_index))
        self._store.set_current_step(to_index)
        step_id = self._store.current_step_id
        self._store.mark_visited(step_id)
        self._events.emit(EventType.STEP_START, step_id=step_id, step_index=to_index)
        logger.info(
            "Moved to step",
            extra={"workflow_id": self._definition.id, "from": from_index, "to": to_index},
        )
        return NavigationResult(NavigationOutcome.MOVED, from_index, to_index)
