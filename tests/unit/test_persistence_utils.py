"""Unit tests for snapshot conversion helpers."""

from __future__ import annotations

import pytest

from formflow.persistence.types import PersistedSnapshot, PersistenceError, PersistenceErrorCode
from formflow.persistence.utils import (
    MergeStrategy,
    generate_storage_key,
    has_significant_changes,
    is_valid_snapshot,
    merge_persisted_state,
    parse_snapshot,
    snapshot_to_state,
    state_to_snapshot,
)
from formflow.workflow.state import WorkflowState

STATE = WorkflowState(
    current_step_index=1,
    all_data={"s1": {"a": 1}, "s2": {"b": 2}},
    step_data={"b": 2},
    visited_steps=frozenset({"s2", "s1"}),
    passed_steps=frozenset({"s1"}),
    is_submitting=True,
    is_transitioning=True,
)


def test_state_to_snapshot_orders_steps_and_uses_camel_case() -> None:
    snapshot = state_to_snapshot(
        STATE, "wf", step_order=("s1", "s2"), metadata={"source": "web"}, saved_at_ms=1000
    )

    assert snapshot.to_json() == {
        "workflowId": "wf",
        "currentStepIndex": 1,
        "allData": {"s1": {"a": 1}, "s2": {"b": 2}},
        "stepData": {"b": 2},
        "visitedSteps": ["s1", "s2"],
        "passedSteps": ["s1"],
        "lastSaved": 1000,
        "metadata": {"source": "web"},
    }


def test_snapshot_to_state_clears_transient_flags() -> None:
    state = snapshot_to_state(state_to_snapshot(STATE, "wf"))

    assert state == STATE.evolve(is_submitting=False, is_transitioning=False)


def test_parse_snapshot_accepts_wire_format_and_keeps_metadata() -> None:
    snapshot = parse_snapshot(
        {
            "workflowId": "wf",
            "currentStepIndex": 0,
            "allData": {},
            "stepData": {},
            "visitedSteps": [],
            "lastSaved": 5,
            "metadata": {"anything": ["goes"]},
        }
    )

    assert snapshot.metadata == {"anything": ["goes"]}
    assert snapshot.passed_steps == []


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {"workflowId": "wf"},
        {"workflowId": "", "currentStepIndex": 0, "lastSaved": 1},
        {"workflowId": "wf", "currentStepIndex": -1, "lastSaved": 1},
        {"workflowId": "wf", "currentStepIndex": 0, "lastSaved": 1, "visitedSteps": "s1"},
    ],
)
def test_invalid_payloads(payload: object) -> None:
    assert is_valid_snapshot(payload) is False
    with pytest.raises(PersistenceError) as excinfo:
        parse_snapshot(payload)
    assert excinfo.value.code is PersistenceErrorCode.LOAD_FAILED


def test_storage_key() -> None:
    assert generate_storage_key("wf") == "wf"
    assert generate_storage_key("wf", "user-1") == "user-1:wf"


def test_merge_strategies() -> None:
    current = WorkflowState(
        current_step_index=0,
        all_data={"s1": {"a": 9, "c": 3}},
        step_data={"a": 9, "c": 3},
        visited_steps=frozenset({"s1"}),
        is_transitioning=True,
    )
    snapshot = state_to_snapshot(STATE, "wf")

    persisted = merge_persisted_state(current, snapshot, "persist")
    assert persisted.current_step_index == 1
    assert persisted.is_transitioning is True
    assert persisted.is_submitting is False

    kept = merge_persisted_state(current, snapshot, MergeStrategy.CURRENT)
    assert kept.all_data == current.all_data
    assert kept.visited_steps == {"s1", "s2"}
    assert kept.passed_steps == {"s1"}

    merged = merge_persisted_state(current, snapshot, MergeStrategy.MERGE)
    assert merged.current_step_index == 0
    assert merged.all_data == {"s1": {"a": 9, "c": 3}, "s2": {"b": 2}}
    assert merged.step_data == {"a": 9, "b": 2, "c": 3}


def test_has_significant_changes() -> None:
    assert has_significant_changes(STATE, None)
    assert not has_significant_changes(STATE, STATE.evolve(is_submitting=False))
    assert not has_significant_changes(STATE, STATE.evolve(passed_steps=frozenset()))
    assert has_significant_changes(STATE, STATE.evolve(current_step_index=0))
    assert has_significant_changes(STATE, STATE.evolve(visited_steps=frozenset({"s1"})))
    assert has_significant_changes(STATE, STATE.evolve(all_data={}))


def test_persistence_error_message_format() -> None:
    error = PersistenceError("disk full", PersistenceErrorCode.QUOTA_EXCEEDED)

    assert str(error) == "[WorkflowPersistence] disk full (Code: QUOTA_EXCEEDED)"
    assert error.code is PersistenceErrorCode.QUOTA_EXCEEDED


def test_snapshot_model_populates_by_field_name() -> None:
    snapshot = PersistedSnapshot(workflow_id="wf", current_step_index=0, last_saved=1)

    assert snapshot.to_json()["workflowId"] == "wf"
