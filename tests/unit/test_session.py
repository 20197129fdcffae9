"""Unit tests for running a workflow end to end."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from formflow.config import FormflowSettings
from formflow.persistence.adapters import InMemoryAdapter, JsonFileAdapter
from formflow.persistence.scheduler import PersistenceOptions
from formflow.persistence.types import PersistedSnapshot
from formflow.workflow.builder import WorkflowBuilder
from formflow.workflow.conditions import when
from formflow.workflow.definitions import StepConditions, StepConfig, WorkflowDefinition
from formflow.workflow.events import EventType, RecordingSink
from formflow.workflow.forms import (
    FieldConditions,
    FieldDefinition,
    FormDefinition,
    ValidationError,
    ValidationResult,
)
from formflow.workflow.navigation import StepContext
from formflow.workflow.session import WorkflowSession


def _snapshot(**overrides: Any) -> PersistedSnapshot:
    values: dict[str, Any] = {
        "workflowId": "onboarding",
        "currentStepIndex": 1,
        "allData": {"step1": {"field": "x"}, "step2": {"email": "a@example.com"}},
        "stepData": {"email": "a@example.com"},
        "visitedSteps": ["step1", "step2"],
        "passedSteps": ["step1"],
        "lastSaved": 1,
    }
    values.update(overrides)
    return PersistedSnapshot.model_validate(values)


@pytest.mark.asyncio
async def test_start_enters_first_step_and_emits_events(
    three_step_workflow: WorkflowDefinition, sink: RecordingSink
) -> None:
    session = WorkflowSession(three_step_workflow)

    context = await session.start()

    assert session.is_started
    assert context.current_step_id == "step1"
    assert context.visible_steps == ("step1", "step2")
    assert context.is_first_step and not context.is_last_step
    assert context.visited_steps == {"step1"}
    assert [e.type for e in sink.events] == [EventType.WORKFLOW_START, EventType.STEP_START]
    assert sink.events[0].payload == {"step_id": "step1", "total_steps": 3}


@pytest.mark.asyncio
async def test_start_skips_hidden_first_step() -> None:
    definition = (
        WorkflowBuilder("wf", "Workflow", forms=[FormDefinition(ref="f")])
        .add_step(
            [
                StepConfig(
                    id="intro",
                    title="Intro",
                    form_ref="f",
                    conditions=StepConditions(visible=when("flags.intro").equals(True)),
                ),
                StepConfig(id="main", title="Main", form_ref="f"),
            ]
        )
        .build()
    )

    async with WorkflowSession(definition) as session:
        assert session.current_step.id == "main"
        assert session.state.visited_steps == {"main"}


@pytest.mark.asyncio
async def test_start_restores_saved_snapshot(three_step_workflow: WorkflowDefinition) -> None:
    adapter = InMemoryAdapter()
    await adapter.save("onboarding", _snapshot())

    async with WorkflowSession(three_step_workflow, adapter=adapter) as session:
        state = session.state
        assert state.current_step_index == 1
        assert state.step_data == {"email": "a@example.com"}
        assert state.all_data["step2"] == {"email": "a@example.com"}
        assert state.passed_steps == {"step1"}
        assert session.visibility.is_visible(2)
        assert session.persistence is not None
        assert session.persistence.status.has_pending_changes is False


@pytest.mark.asyncio
async def test_unusable_snapshot_starts_fresh(three_step_workflow: WorkflowDefinition) -> None:
    adapter = InMemoryAdapter()
    await adapter.save("onboarding", _snapshot(visitedSteps=["step1", "retired"]))

    async with WorkflowSession(three_step_workflow, adapter=adapter) as session:
        assert session.state.current_step_index == 0
        assert session.state.all_data == {}


@pytest.mark.asyncio
async def test_submit_hands_over_data_and_clears_snapshot(
    three_step_workflow: WorkflowDefinition, sink: RecordingSink
) -> None:
    adapter = InMemoryAdapter()
    received: list[dict[str, dict[str, Any]]] = []

    async def on_complete(data: dict[str, dict[str, Any]]) -> None:
        received.append(data)

    session = WorkflowSession(
        three_step_workflow,
        adapter=adapter,
        persistence=PersistenceOptions(clear_on_complete=True),
        on_complete=on_complete,
    )
    await session.start()
    session.set_value("field", "y")
    assert not session.can_submit()
    assert await session.submit() is False

    await session.go_next()
    session.set_value("email", "a@example.com")
    assert session.can_submit()
    assert await session.submit() is True

    assert received == [{"step1": {"field": "y"}, "step2": {"email": "a@example.com"}}]
    assert session.state.passed_steps == {"step1", "step2"}
    assert not session.state.is_submitting
    assert sink.of_type(EventType.WORKFLOW_COMPLETE)
    assert await adapter.exists("onboarding") is False

    await session.close()
    assert sink.of_type(EventType.WORKFLOW_ABANDON) == []


@pytest.mark.asyncio
async def test_submit_blocked_by_invalid_last_step(sink: RecordingSink) -> None:
    def needs_email(data: Any) -> ValidationResult:
        if data.get("email"):
            return ValidationResult.ok()
        return ValidationResult.failed(ValidationError("Email is required", field="email"))

    definition = (
        WorkflowBuilder("wf", "Workflow", forms=[FormDefinition(ref="f", validator=needs_email)])
        .add_step(StepConfig(id="only", title="Only", form_ref="f"))
        .add_analytics(sink)
        .build()
    )
    session = WorkflowSession(definition)
    await session.start()

    assert await session.submit() is False
    errors = sink.of_type(EventType.VALIDATION_ERROR)
    assert errors[0].payload["errors"] == [{"message": "Email is required", "field": "email"}]
    assert session.state.passed_steps == frozenset()


@pytest.mark.asyncio
async def test_failing_completion_callback_propagates(
    three_step_workflow: WorkflowDefinition, sink: RecordingSink
) -> None:
    def on_complete(_data: dict[str, dict[str, Any]]) -> None:
        raise RuntimeError("api down")

    session = WorkflowSession(three_step_workflow, on_complete=on_complete)
    await session.start()
    await session.go_next()

    with pytest.raises(RuntimeError, match="api down"):
        await session.submit()

    assert not session.state.is_submitting
    assert sink.of_type(EventType.ERROR)[0].payload["phase"] == "submit"
    assert sink.of_type(EventType.WORKFLOW_COMPLETE) == []


@pytest.mark.asyncio
async def test_close_before_completion_emits_abandon(
    three_step_workflow: WorkflowDefinition, sink: RecordingSink
) -> None:
    async with WorkflowSession(three_step_workflow):
        pass

    abandon = sink.of_type(EventType.WORKFLOW_ABANDON)
    assert [e.payload for e in abandon] == [{"step_id": "step1", "step_index": 0}]


@pytest.mark.asyncio
async def test_field_behaviors_follow_current_data() -> None:
    form = FormDefinition(
        ref="contact",
        fields=(
            FieldDefinition("email"),
            FieldDefinition(
                "company",
                conditions=FieldConditions(
                    visible=when("kind").equals("business"),
                    required=when("kind").equals("business"),
                ),
            ),
        ),
    )
    definition = (
        WorkflowBuilder("wf", "Workflow", forms=[form])
        .add_step(StepConfig(id="contact", title="Contact", form_ref="contact"))
        .build()
    )

    async with WorkflowSession(definition) as session:
        assert session.field_behaviors()["company"].visible is False

        session.set_value("kind", "business")
        company = session.field_behaviors("contact")["company"]
        assert company.visible and company.required

        with pytest.raises(KeyError):
            session.field_behaviors("missing")


@pytest.mark.asyncio
async def test_reset_can_clear_persisted_snapshot(
    three_step_workflow: WorkflowDefinition,
) -> None:
    adapter = InMemoryAdapter()
    await adapter.save("onboarding", _snapshot())

    async with WorkflowSession(three_step_workflow, adapter=adapter) as session:
        state = await session.reset(clear_persisted=True)

        assert state.current_step_index == 0
        assert state.all_data == {}
        assert await adapter.exists("onboarding") is False


@pytest.mark.asyncio
async def test_from_settings_persists_to_state_path(
    three_step_workflow: WorkflowDefinition, tmp_path: Path
) -> None:
    settings = FormflowSettings(
        _env_file=None,
        FORMFLOW_STATE_PATH=tmp_path,
        FORMFLOW_USER_ID="u1",
        FORMFLOW_PERSIST_DEBOUNCE_MS=10_000,
    )

    async with WorkflowSession.from_settings(three_step_workflow, settings) as session:
        session.set_value("field", "x")
        assert session.persistence is not None
        assert session.persistence.key == "u1:onboarding"
        assert await session.persistence.flush() is True

    adapter = JsonFileAdapter(tmp_path)
    snapshot = await adapter.load("u1:onboarding")
    assert snapshot is not None
    assert snapshot.all_data == {"step1": {"field": "x"}}


@pytest.mark.asyncio
async def test_workflow_completes_when_hook_skips_final_step() -> None:
    def skip_next(ctx: StepContext) -> None:
        ctx.next.skip()

    definition = (
        WorkflowBuilder("wf", "Workflow", forms=[FormDefinition(ref="f")])
        .add_step(
            [
                StepConfig(id="a", title="A", form_ref="f", after_hook=skip_next),
                StepConfig(id="b", title="B", form_ref="f"),
            ]
        )
        .build()
    )

    async with WorkflowSession(definition) as session:
        assert (await session.go_next()).to_index == 1
        assert session.can_submit()
        assert await session.submit() is True
