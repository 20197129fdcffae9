"""Conversions between live workflow state and persisted snapshots."""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from pydantic import ValidationError

from formflow.persistence.types import PersistedSnapshot, PersistenceError, PersistenceErrorCode
from formflow.workflow.flattening import deep_merge
from formflow.workflow.state import WorkflowState


class MergeStrategy(str, Enum):
    PERSIST = "persist"
    CURRENT = "current"
    MERGE = "merge"


def now_ms() -> int:
    return int(time.time() * 1000)


def _ordered(steps: frozenset[str], step_order: Sequence[str] | None) -> list[str]:
    order = {step_id: i for i, step_id in enumerate(step_order or ())}
    known = sorted((s for s in steps if s in order), key=order.__getitem__)
    return known + sorted(s for s in steps if s not in order)


def state_to_snapshot(
    state: WorkflowState,
    workflow_id: str,
    *,
    step_order: Sequence[str] | None = None,
    metadata: Mapping[str, Any] | None = None,
    saved_at_ms: int | None = None,
) -> PersistedSnapshot:
    """Capture ``state`` as a snapshot; sets become arrays in step order."""

    return PersistedSnapshot(
        workflow_id=workflow_id,
        current_step_index=state.current_step_index,
        all_data=state.all_data,
        step_data=state.step_data,
        visited_steps=_ordered(state.visited_steps, step_order),
        passed_steps=_ordered(state.passed_steps, step_order),
        last_saved=now_ms() if saved_at_ms is None else saved_at_ms,
        metadata=dict(metadata) if metadata is not None else None,
    )


def snapshot_to_state(snapshot: PersistedSnapshot) -> WorkflowState:
    # Transient flags are never restored.
    return WorkflowState(
        current_step_index=snapshot.current_step_index,
        all_data={k: dict(v) for k, v in snapshot.all_data.items()},
        step_data=dict(snapshot.step_data),
        visited_steps=frozenset(snapshot.visited_steps),
        passed_steps=frozenset(snapshot.passed_steps),
        is_submitting=False,
        is_transitioning=False,
    )


def parse_snapshot(payload: object) -> PersistedSnapshot:
    """Validate a raw (camelCase) payload, raising ``PersistenceError`` if it is malformed."""

    try:
        return PersistedSnapshot.model_validate(payload)
    except ValidationError as e:
        raise PersistenceError(
            f"Invalid persisted workflow data: {e.error_count()} error(s)",
            PersistenceErrorCode.LOAD_FAILED,
            e,
        ) from e


def is_valid_snapshot(payload: object) -> bool:
    try:
        parse_snapshot(payload)
    except PersistenceError:
        return False
    return True


def generate_storage_key(workflow_id: str, user_id: str | None = None) -> str:
    return f"{user_id}:{workflow_id}" if user_id else workflow_id


def merge_persisted_state(
    current: WorkflowState,
    snapshot: PersistedSnapshot,
    strategy: MergeStrategy | str = MergeStrategy.PERSIST,
) -> WorkflowState:
    """Combine a loaded snapshot with the live state.

    - ``persist``: the snapshot wins; live transient flags are kept.
    - ``current``: the live state wins; visited/passed sets are unioned.
    - ``merge``: live step position, data merged with live values on top.
    """

    strategy = MergeStrategy(strategy)
    persisted = snapshot_to_state(snapshot)

    if strategy is MergeStrategy.PERSIST:
        return persisted.evolve(
            is_submitting=current.is_submitting, is_transitioning=current.is_transitioning
        )
    if strategy is MergeStrategy.CURRENT:
        return current.evolve(
            visited_steps=current.visited_steps | persisted.visited_steps,
            passed_steps=current.passed_steps | persisted.passed_steps,
        )
    return current.evolve(
        all_data=deep_merge(persisted.all_data, current.all_data),
        step_data={**persisted.step_data, **current.step_data},
        visited_steps=current.visited_steps | persisted.visited_steps,
        passed_steps=current.passed_steps | persisted.passed_steps,
    )


def has_significant_changes(current: WorkflowState, last_saved: WorkflowState | None) -> bool:
    if last_saved is None:
        return True
    return (
        current.current_step_index != last_saved.current_step_index
        or current.all_data != last_saved.all_data
        or current.step_data != last_saved.step_data
        or current.visited_steps != last_saved.visited_steps
    )
