"""Debounced, best-effort persistence for one workflow session.

The scheduler observes a ``WorkflowStateStore`` and saves a snapshot once the
state has stopped changing for ``debounce_ms``. Saving never blocks or fails
navigation: errors are kept on ``status.error`` and can be retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from formflow.persistence.adapters import PersistenceAdapter
from formflow.persistence.types import PersistedSnapshot, PersistenceError, PersistenceErrorCode
from formflow.persistence.utils import (
    MergeStrategy,
    generate_storage_key,
    has_significant_changes,
    state_to_snapshot,
)
from formflow.workflow.state import WorkflowState
from formflow.workflow.state_store import WorkflowStateStore

if TYPE_CHECKING:
    from formflow.config import FormflowSettings

logger = logging.getLogger(__name__)


class PersistenceOptions(BaseModel):
    auto_persist: bool = True
    auto_load: bool = True
    debounce_ms: int = Field(default=500, ge=0)
    user_id: str | None = None
    storage_key: str | None = Field(
        default=None, description="Overrides the key derived from workflow and user id"
    )
    merge_strategy: MergeStrategy = MergeStrategy.PERSIST
    clear_on_complete: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: FormflowSettings, **overrides: Any) -> PersistenceOptions:
        values: dict[str, Any] = {
            "auto_persist": settings.auto_persist,
            "debounce_ms": settings.persist_debounce_ms,
            "user_id": settings.user_id,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class PersistenceStatus:
    is_persisting: bool = False
    has_pending_changes: bool = False
    last_saved: int | None = None
    error: PersistenceError | None = None


def _wrap(e: Exception, code: PersistenceErrorCode, message: str) -> PersistenceError:
    if isinstance(e, PersistenceError):
        return e
    return PersistenceError(f"{message}: {e}", code, e)


class PersistenceScheduler:
    def __init__(
        self,
        adapter: PersistenceAdapter,
        workflow_id: str,
        *,
        options: PersistenceOptions | None = None,
        step_order: Sequence[str] = (),
    ) -> None:
        self.adapter = adapter
        self.workflow_id = workflow_id
        self.options = options or PersistenceOptions()
        self.status = PersistenceStatus()
        self._step_order = tuple(step_order)
        self._store: WorkflowStateStore | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._last_saved_state: WorkflowState | None = None
        self._pending: asyncio.Task[None] | None = None
        self._saving_task: asyncio.Task[Any] | None = None
        self._save_lock = asyncio.Lock()

    @property
    def key(self) -> str:
        if self.options.storage_key:
            return self.options.storage_key
        return generate_storage_key(self.workflow_id, self.options.user_id)

    def attach(self, store: WorkflowStateStore) -> None:
        self.detach()
        self._store = store
        self._unsubscribe = store.subscribe(lambda state, _prev, _action: self.notify(state))

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def mark_synced(self, state: WorkflowState) -> None:
        """Record ``state`` as already persisted (e.g. right after a restore)."""

        self._last_saved_state = state
        self.status.has_pending_changes = False

    def notify(self, state: WorkflowState) -> None:
        if not self.options.auto_persist:
            return
        if state.is_submitting or state.is_transitioning:
            # Clearing the flag notifies again and reschedules.
            self._cancel_waiting()
            return
        if not has_significant_changes(state, self._last_saved_state):
            return
        self.status.has_pending_changes = True
        self._schedule()

    def _schedule(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; autosave deferred", extra={"key": self.key})
            return
        self._cancel_waiting()
        self._pending = loop.create_task(self._debounced_save())

    async def _debounced_save(self) -> None:
        await asyncio.sleep(self.options.debounce_ms / 1000)
        if self._store is None:
            return
        state = self._store.state
        if state.is_submitting or state.is_transitioning:
            return
        self._saving_task = asyncio.current_task()
        try:
            await self._save(state)
        finally:
            self._saving_task = None

    def _cancel_waiting(self) -> None:
        # A task that already started writing is left to finish.
        pending = self._pending
        if pending is not None and not pending.done() and pending is not self._saving_task:
            pending.cancel()

    async def _save(self, state: WorkflowState) -> bool:
        async with self._save_lock:
            self.status.is_persisting = True
            try:
                snapshot = state_to_snapshot(
                    state,
                    self.workflow_id,
                    step_order=self._step_order,
                    metadata=self.options.metadata or None,
                )
                await self.adapter.save(self.key, snapshot)
            except Exception as e:
                self.status.error = _wrap(e, PersistenceErrorCode.SAVE_FAILED, "Save failed")
                logger.warning(
                    "Workflow snapshot save failed",
                    extra={"key": self.key, "code": self.status.error.code.value},
                )
                return False
            finally:
                self.status.is_persisting = False

            self._last_saved_state = state
            self.status.last_saved = snapshot.last_saved
            self.status.error = None
            if self._store is None or self._store.state == state:
                self.status.has_pending_changes = False
            logger.debug("Workflow snapshot saved", extra={"key": self.key})
            return True

    async def save_now(self, state: WorkflowState | None = None) -> bool:
        """Save immediately, bypassing the debounce. Returns whether it succeeded."""

        self._cancel_waiting()
        if state is None:
            if self._store is None:
                raise RuntimeError("save_now() needs a state or an attached store")
            state = self._store.state
        return await self._save(state)

    async def retry(self) -> bool:
        return await self.save_now()

    async def load(self) -> PersistedSnapshot | None:
        self.status.error = None
        try:
            snapshot = await self.adapter.load(self.key)
        except Exception as e:
            self.status.error = _wrap(e, PersistenceErrorCode.LOAD_FAILED, "Load failed")
            logger.warning("Workflow snapshot load failed", extra={"key": self.key})
            return None
        if snapshot is not None and snapshot.workflow_id != self.workflow_id:
            logger.warning(
                "Ignoring snapshot saved for another workflow",
                extra={"key": self.key, "saved_workflow_id": snapshot.workflow_id},
            )
            return None
        return snapshot

    async def exists(self) -> bool:
        try:
            return await self.adapter.exists(self.key)
        except Exception as e:
            self.status.error = _wrap(e, PersistenceErrorCode.OPERATION_FAILED, "Exists failed")
            return False

    async def clear(self) -> bool:
        self.cancel()
        try:
            await self.adapter.remove(self.key)
        except Exception as e:
            self.status.error = _wrap(e, PersistenceErrorCode.REMOVE_FAILED, "Remove failed")
            logger.warning("Workflow snapshot removal failed", extra={"key": self.key})
            return False
        self._last_saved_state = None
        self.status.last_saved = None
        self.status.has_pending_changes = False
        return True

    def cancel(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def flush(self) -> bool:
        """Save right away if a debounced save is pending."""

        if not self.status.has_pending_changes or self._store is None:
            return True
        return await self.save_now()

    def close(self) -> None:
        self.cancel()
        self.detach()
