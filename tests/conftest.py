"""Test configuration and fixtures."""

from __future__ import annotations

import pytest

from formflow.workflow.builder import WorkflowBuilder
from formflow.workflow.conditions import when
from formflow.workflow.definitions import StepConditions, StepConfig, WorkflowDefinition
from formflow.workflow.events import RecordingSink
from formflow.workflow.forms import FieldDefinition, FormDefinition, FormRegistry


@pytest.fixture
def forms() -> FormRegistry:
    """Provide one form per step of the three-step workflow."""
    return FormRegistry(
        [
            FormDefinition(
                ref="profile", fields=(FieldDefinition("field"), FieldDefinition("name"))
            ),
            FormDefinition(ref="contact", fields=(FieldDefinition("email"),)),
            FormDefinition(ref="extra", fields=(FieldDefinition("details"),)),
        ]
    )


@pytest.fixture
def sink() -> RecordingSink:
    """Provide an analytics sink that keeps every event."""
    return RecordingSink()


@pytest.fixture
def three_step_workflow(forms: FormRegistry, sink: RecordingSink) -> WorkflowDefinition:
    """Provide a workflow whose third step only shows when step1.field == 'x'."""
    return (
        WorkflowBuilder("onboarding", "Onboarding", forms=forms)
        .add_step(
            [
                StepConfig(id="step1", title="Profile", form_ref="profile"),
                StepConfig(id="step2", title="Contact", form_ref="contact", allow_skip=True),
                StepConfig(
                    id="step3",
                    title="Extra",
                    form_ref="extra",
                    conditions=StepConditions(visible=when("step1.field").equals("x")),
                ),
            ]
        )
        .configure(analytics=sink)
        .build()
    )
