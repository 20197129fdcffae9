"""Unit tests for the workflow builder."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import pytest

from formflow.errors import PluginInstallError, WorkflowBuildError
from formflow.workflow.builder import WorkflowBuilder
from formflow.workflow.conditions import when
from formflow.workflow.definitions import StepConditions, StepConfig
from formflow.workflow.events import EventEmitter, EventType, WorkflowEvent
from formflow.workflow.forms import FieldDefinition, FormDefinition, FormRegistry
from formflow.workflow.plugins import AnalyticsLoggingPlugin


@dataclass(frozen=True)
class NeedsOther:
    name: str = "needs-other"
    version: str = "0.1.0"
    dependencies: tuple[str, ...] = ("other",)

    def install(self, builder: WorkflowBuilder) -> None:
        builder.register_form(FormDefinition(ref="plugin-form"))


def test_step_ids_are_generated(forms: FormRegistry) -> None:
    builder = WorkflowBuilder("wf", "Workflow", forms=forms)
    builder.add_step(StepConfig(title="One", form_ref="profile"))
    builder.add_step(StepConfig(title="Two", form_ref="contact"))

    assert [s.id for s in builder.get_steps()] == ["step-1", "step-2"]


def test_generated_id_avoids_taken_ids(forms: FormRegistry) -> None:
    builder = WorkflowBuilder("wf", "Workflow", forms=forms)
    builder.add_step(StepConfig(id="step-1", title="One", form_ref="profile"))
    builder.add_step(StepConfig(title="Two", form_ref="contact"))

    assert [s.id for s in builder.get_steps()] == ["step-1", "step-2"]


def test_step_config_requires_title_and_form_ref() -> None:
    with pytest.raises(ValueError):
        StepConfig(title="", form_ref="profile")
    with pytest.raises(ValueError):
        StepConfig(title="One", form_ref=" ")
    with pytest.raises(TypeError):
        StepConfig(title="One")  # type: ignore[call-arg]


def test_validate_aggregates_every_problem(forms: FormRegistry) -> None:
    builder = WorkflowBuilder("wf", "Workflow", forms=forms)
    builder.add_step(
        [
            StepConfig(id="a", title="A", form_ref="profile"),
            StepConfig(id="a", title="A again", form_ref="contact"),
            StepConfig(id="b", title="B", form_ref="nowhere"),
        ]
    )
    builder.use(NeedsOther())

    errors = builder.validate()

    assert errors == [
        "Duplicate step IDs: a",
        "Step 'b' references unknown form 'nowhere'",
        "Plugin 'needs-other' requires missing dependencies: other",
    ]
    with pytest.raises(WorkflowBuildError) as excinfo:
        builder.build()
    assert excinfo.value.errors == errors
    assert str(excinfo.value).startswith("Workflow validation failed: ")


def test_empty_workflow_is_invalid() -> None:
    assert WorkflowBuilder("wf", "Workflow").validate() == ["Workflow must have at least one step"]


def test_build_resolves_forms(forms: FormRegistry) -> None:
    definition = (
        WorkflowBuilder("wf", "Workflow", forms=forms)
        .add_step(StepConfig(id="a", title="A", form_ref="profile", allow_skip=True))
        .build()
    )

    step = definition.steps[0]
    assert step.form.field_ids == ["field", "name"]
    assert step.allow_skip is True
    assert step.conditions == StepConditions()
    assert definition.index_of("a") == 0
    assert definition.get_step("missing") is None


def test_step_management(forms: FormRegistry) -> None:
    builder = WorkflowBuilder("wf", "Workflow", forms=forms).add_step(
        [
            StepConfig(id="a", title="A", form_ref="profile"),
            StepConfig(id="b", title="B", form_ref="contact"),
        ]
    )

    builder.update_step("a", title="Renamed", allow_skip=True)
    builder.remove_step("b")

    step = builder.get_step("a")
    assert step is not None and step.title == "Renamed" and step.allow_skip
    assert builder.get_step("b") is None
    with pytest.raises(KeyError):
        builder.update_step("b", title="x")
    assert builder.clear_steps().get_steps() == []


def test_clone_is_independent(forms: FormRegistry) -> None:
    original = WorkflowBuilder("wf", "Workflow", forms=forms).add_step(
        StepConfig(id="a", title="A", form_ref="profile")
    )

    copy = original.clone("wf-2")
    copy.add_step(StepConfig(id="b", title="B", form_ref="contact"))

    assert copy.workflow_id == "wf-2"
    assert [s.id for s in original.get_steps()] == ["a"]
    assert [s.id for s in copy.get_steps()] == ["a", "b"]


def test_plugins_install_and_reject_duplicates(caplog: pytest.LogCaptureFixture) -> None:
    builder = WorkflowBuilder("wf", "Workflow", forms=[FormDefinition(ref="f")])
    builder.add_step(StepConfig(id="a", title="A", form_ref="f"))
    builder.use(AnalyticsLoggingPlugin())

    with pytest.raises(PluginInstallError):
        builder.use(AnalyticsLoggingPlugin())

    definition = builder.build()
    assert [p.name for p in definition.plugins] == ["analytics-logging"]
    emitter = EventEmitter(definition.id, definition.analytics)
    with caplog.at_level(logging.INFO, logger="formflow.workflow.plugins"):
        event = emitter.emit(EventType.STEP_START, step_id="a")
    assert isinstance(event, WorkflowEvent)
    assert "Workflow event: step_start" in caplog.text

    builder.remove_plugin("analytics-logging")
    assert builder.plugins == []


def test_failing_plugin_install_is_wrapped() -> None:
    class Broken:
        name = "broken"
        version = "0.0.1"
        dependencies: tuple[str, ...] = ()

        def install(self, builder: WorkflowBuilder) -> None:
            raise RuntimeError("nope")

    with pytest.raises(PluginInstallError, match="broken"):
        WorkflowBuilder("wf", "Workflow").use(Broken())


def test_stats(forms: FormRegistry) -> None:
    builder = WorkflowBuilder("wf", "Workflow", forms=forms).add_step(
        [
            StepConfig(id="a", title="A", form_ref="profile", after_hook=lambda ctx: None),
            StepConfig(
                id="b",
                title="B",
                form_ref="contact",
                allow_skip=True,
                conditions=StepConditions(visible=when("a.field").exists()),
            ),
        ]
    )

    assert builder.get_stats() == {
        "total_steps": 2,
        "dynamic_steps": 1,
        "skippable_steps": 1,
        "steps_with_hooks": 1,
        "plugins": 0,
        "estimated_fields": 3,
    }


def test_json_round_trip() -> None:
    payload = {
        "id": "wf",
        "name": "Workflow",
        "forms": [
            {
                "ref": "company",
                "fields": [
                    {
                        "id": "vat",
                        "conditions": {
                            "required": {
                                "field": "company.country",
                                "operator": "equals",
                                "value": "FR",
                            }
                        },
                    }
                ],
            }
        ],
        "steps": [
            {"id": "company", "title": "Company", "formRef": "company", "allowSkip": True},
            {
                "id": "extra",
                "title": "Extra",
                "formRef": "company",
                "conditions": {"visible": {"field": "company.vat", "operator": "exists"}},
            },
        ],
    }

    builder = WorkflowBuilder.from_json(payload)
    definition = builder.build()

    assert definition.step_ids == ("company", "extra")
    assert definition.steps[0].allow_skip is True
    assert definition.steps[1].conditions.visible == when("company.vat").exists()
    vat = definition.steps[0].form.fields[0]
    assert isinstance(vat, FieldDefinition)
    assert vat.conditions.required == when("company.country").equals("FR")
    assert WorkflowBuilder.from_json(builder.to_json()).to_json() == builder.to_json()
