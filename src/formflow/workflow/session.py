"""A running workflow.

``WorkflowSession`` owns everything one user's pass through a workflow needs:
the state store, a visibility resolver, the navigation engine and (optionally)
a persistence scheduler. Nothing is shared between sessions.

Typical use::

    async with WorkflowSession(definition, adapter=InMemoryAdapter()) as session:
        session.set_value("email", "a@example.com")
        await session.go_next()
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from formflow.errors import StateStoreError
from formflow.persistence.adapters import JsonFileAdapter, PersistenceAdapter
from formflow.persistence.scheduler import PersistenceOptions, PersistenceScheduler
from formflow.persistence.utils import merge_persisted_state
from formflow.workflow.definitions import StepDefinition, WorkflowDefinition
from formflow.workflow.events import EventEmitter, EventType
from formflow.workflow.forms import FormStepValidator, StepValidator, run_validator
from formflow.workflow.navigation import NavigationEngine, NavigationResult, StepChangeCallback
from formflow.workflow.state import WorkflowState
from formflow.workflow.state_store import WorkflowStateStore
from formflow.workflow.visibility import FieldBehavior, VisibilityMap, VisibilityResolver

if TYPE_CHECKING:
    from formflow.config import FormflowSettings

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[dict[str, dict[str, Any]]], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class WorkflowContext:
    """Read-only view of a session at one point in time."""

    workflow_id: str
    workflow_name: str
    current_step_index: int
    current_step_id: str
    total_steps: int
    visible_steps: tuple[str, ...]
    all_data: dict[str, dict[str, Any]]
    step_data: dict[str, Any]
    visited_steps: frozenset[str]
    passed_steps: frozenset[str]
    is_first_step: bool
    is_last_step: bool
    is_submitting: bool
    is_transitioning: bool


class WorkflowSession:
    def __init__(
        self,
        definition: WorkflowDefinition,
        *,
        default_values: Mapping[str, Mapping[str, Any]] | None = None,
        default_step_index: int = 0,
        validator: StepValidator | None = None,
        adapter: PersistenceAdapter | None = None,
        persistence: PersistenceOptions | None = None,
        on_step_change: StepChangeCallback | None = None,
        on_complete: CompletionCallback | None = None,
        visibility_cache_size: int = 64,
    ) -> None:
        self.definition = definition
        self.store = WorkflowStateStore(
            definition.step_ids,
            default_values=default_values,
            default_step_index=default_step_index,
        )
        self.resolver = VisibilityResolver(definition.steps, cache_size=visibility_cache_size)
        self.events = EventEmitter(definition.id, definition.analytics)
        self.validator = validator or FormStepValidator(definition.forms_by_step())
        self.navigation = NavigationEngine(
            definition,
            self.store,
            self.resolver,
            validator=self.validator,
            events=self.events,
            on_step_change=on_step_change,
        )
        self.persistence = (
            PersistenceScheduler(
                adapter, definition.id, options=persistence, step_order=definition.step_ids
            )
            if adapter is not None
            else None
        )
        self._on_complete = on_complete
        self._started_at: float | None = None
        self._completed = False

    @classmethod
    def from_settings(
        cls,
        definition: WorkflowDefinition,
        settings: FormflowSettings,
        *,
        adapter: PersistenceAdapter | None = None,
        **kwargs: Any,
    ) -> WorkflowSession:
        """Create a session persisting to ``settings.state_path`` unless ``adapter`` is given."""

        if adapter is None:
            adapter = JsonFileAdapter(
                Path(settings.state_path),
                key_prefix=settings.storage_key_prefix,
                max_age_seconds=settings.snapshot_max_age_seconds,
                max_total_bytes=settings.max_storage_bytes,
            )
        kwargs.setdefault("persistence", PersistenceOptions.from_settings(settings))
        kwargs.setdefault("visibility_cache_size", settings.visibility_cache_size)
        return cls(definition, adapter=adapter, **kwargs)

    async def __aenter__(self) -> WorkflowSession:
        await self.start()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    @property
    def state(self) -> WorkflowState:
        return self.store.state

    @property
    def current_step(self) -> StepDefinition:
        return self.definition.steps[self.store.state.current_step_index]

    @property
    def visibility(self) -> VisibilityMap:
        return self.navigation.visibility

    @property
    def is_started(self) -> bool:
        return self._started_at is not None

    @property
    def context(self) -> WorkflowContext:
        state = self.store.state
        visibility = self.visibility
        return WorkflowContext(
            workflow_id=self.definition.id,
            workflow_name=self.definition.name,
            current_step_index=state.current_step_index,
            current_step_id=self.store.current_step_id,
            total_steps=len(self.definition.steps),
            visible_steps=tuple(self.definition.step_ids[i] for i in visibility.visible_indices()),
            all_data=state.all_data,
            step_data=state.step_data,
            visited_steps=state.visited_steps,
            passed_steps=state.passed_steps,
            is_first_step=self.navigation.is_first_step(),
            is_last_step=self.navigation.is_last_step(),
            is_submitting=state.is_submitting,
            is_transitioning=state.is_transitioning,
        )

    async def start(self) -> WorkflowContext:
        """Restore any saved snapshot and enter the first reachable step."""

        if self.persistence is not None:
            if self.persistence.options.auto_load:
                await self._restore()
            self.persistence.attach(self.store)

        visibility = self.visibility
        if not visibility.is_visible(self.store.state.current_step_index):
            first = visibility.first_visible()
            if first is not None:
                self.store.set_current_step(first)
            else:
                logger.warning("No visible step", extra={"workflow_id": self.definition.id})
        self.store.mark_visited(self.store.current_step_id)

        self._started_at = time.monotonic()
        self._completed = False
        self.events.emit(
            EventType.WORKFLOW_START,
            step_id=self.store.current_step_id,
            total_steps=len(self.definition.steps),
        )
        self.events.emit(
            EventType.STEP_START,
            step_id=self.store.current_step_id,
            step_index=self.store.state.current_step_index,
        )
        return self.context

    async def _restore(self) -> None:
        assert self.persistence is not None
        snapshot = await self.persistence.load()
        if snapshot is None:
            return
        merged = merge_persisted_state(
            self.store.state, snapshot, self.persistence.options.merge_strategy
        )
        try:
            state = self.store.load_snapshot(merged)
        except StateStoreError:
            logger.warning(
                "Saved snapshot does not fit this workflow; starting fresh",
                extra={"workflow_id": self.definition.id, "key": self.persistence.key},
                exc_info=True,
            )
            return
        self.persistence.mark_synced(state)
        logger.info(
            "Workflow restored",
            extra={"workflow_id": self.definition.id, "step_index": state.current_step_index},
        )

    def set_value(self, field_id: str, value: Any, step_id: str | None = None) -> WorkflowState:
        return self.store.set_field_value(field_id, value, step_id)

    def set_step_data(
        self, data: Mapping[str, Any], step_id: str | None = None
    ) -> WorkflowState:
        return self.store.set_step_data(data, step_id)

    def field_behaviors(self, step_id: str | None = None) -> dict[str, FieldBehavior]:
        step = (
            self.current_step if step_id is None else self.definition.get_step(step_id)
        )
        if step is None:
            raise KeyError(f"Unknown step id: {step_id!r}")
        state = self.store.state
        return self.resolver.fields(step.form, state.all_data, state.step_data)

    async def go_next(self) -> NavigationResult:
        return await self.navigation.go_next()

    async def go_previous(self) -> NavigationResult:
        return await self.navigation.go_previous()

    async def skip_step(self) -> NavigationResult:
        return await self.navigation.skip_step()

    async def go_to_step(self, index: int) -> NavigationResult:
        return await self.navigation.go_to_step(index)

    def can_submit(self) -> bool:
        state = self.store.state
        return (
            not state.is_submitting
            and not state.is_transitioning
            and self.navigation.is_last_step()
        )

    async def submit(self) -> bool:
        """Validate the last step and hand the collected data to ``on_complete``.

        Returns ``False`` when submission is not possible right now or the
        step is invalid. Errors raised by ``on_complete`` propagate.
        """

        if not self.can_submit():
            logger.warning(
                "Submit requested before the last step",
                extra={"workflow_id": self.definition.id},
            )
            return False

        step_id = self.store.current_step_id
        self.store.set_submitting(True)
        try:
            result = await run_validator(self.validator, step_id, self.store.state.step_data)
            if not result.is_valid:
                self.events.emit(
                    EventType.VALIDATION_ERROR,
                    step_id=step_id,
                    errors=[e.to_json() for e in result.errors],
                )
                return False

            self.store.mark_passed(step_id)
            if self._on_complete is not None:
                outcome = self._on_complete(
                    {k: dict(v) for k, v in self.store.state.all_data.items()}
                )
                if inspect.isawaitable(outcome):
                    await outcome
        except Exception as e:
            self.events.emit(EventType.ERROR, step_id=step_id, phase="submit", error=str(e))
            raise
        finally:
            self.store.set_submitting(False)

        self._completed = True
        duration_ms = (
            int((time.monotonic() - self._started_at) * 1000) if self._started_at else 0
        )
        self.events.emit(EventType.WORKFLOW_COMPLETE, duration_ms=duration_ms)
        logger.info(
            "Workflow completed",
            extra={"workflow_id": self.definition.id, "duration_ms": duration_ms},
        )
        if self.persistence is not None:
            if self.persistence.options.clear_on_complete:
                await self.persistence.clear()
            else:
                await self.persistence.save_now()
        return True

    async def reset(self, *, clear_persisted: bool = False) -> WorkflowState:
        state = self.store.reset()
        self._completed = False
        if clear_persisted and self.persistence is not None:
            await self.persistence.clear()
        return state

    async def close(self) -> None:
        if self._started_at is not None and not self._completed:
            self.events.emit(
                EventType.WORKFLOW_ABANDON,
                step_id=self.store.current_step_id,
                step_index=self.store.state.current_step_index,
            )
        if self.persistence is not None:
            self.persistence.close()
        self._started_at = None
