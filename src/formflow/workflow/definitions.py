"""Typed step and workflow definitions.

``StepConfig`` is what callers hand to the builder; ``StepDefinition`` and
``WorkflowDefinition`` are the resolved, immutable result of ``build()``.
Required fields are positional and checked on construction.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from formflow.workflow.conditions import Condition, condition_from_json, extract_dependencies
from formflow.workflow.forms import FormDefinition

if TYPE_CHECKING:
    from formflow.workflow.events import AnalyticsSink
    from formflow.workflow.navigation import StepContext
    from formflow.workflow.plugins import WorkflowPlugin

AfterHook = Callable[["StepContext"], Awaitable[None] | None]


def _require_text(value: object, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")


@dataclass(frozen=True, slots=True)
class StepConditions:
    visible: Condition | None = None
    skippable: Condition | None = None
    disabled: Condition | None = None
    required: Condition | None = None

    def dependencies(self) -> list[str]:
        paths: list[str] = []
        for condition in (self.visible, self.skippable, self.disabled, self.required):
            paths.extend(extract_dependencies(condition))
        return list(dict.fromkeys(paths))

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {}
        for name in ("visible", "skippable", "disabled", "required"):
            condition = getattr(self, name)
            if condition is not None:
                out[name] = condition.to_json()
        return out

    @staticmethod
    def from_json(obj: Mapping[str, Any]) -> StepConditions:
        def _cond(key: str) -> Condition | None:
            raw = obj.get(key)
            return condition_from_json(raw) if isinstance(raw, Mapping) else None

        return StepConditions(
            visible=_cond("visible"),
            skippable=_cond("skippable"),
            disabled=_cond("disabled"),
            required=_cond("required"),
        )


@dataclass(frozen=True, slots=True)
class StepConfig:
    """Builder input for one step. ``id`` is generated when omitted."""

    title: str
    form_ref: str
    id: str | None = None
    description: str | None = None
    allow_skip: bool = False
    conditions: StepConditions | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    after_hook: AfterHook | None = None

    def __post_init__(self) -> None:
        _require_text(self.title, "Step title")
        _require_text(self.form_ref, "Step form_ref")
        if self.id is not None:
            _require_text(self.id, "Step id")

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"title": self.title, "formRef": self.form_ref}
        if self.id is not None:
            out["id"] = self.id
        if self.description is not None:
            out["description"] = self.description
        if self.allow_skip:
            out["allowSkip"] = True
        if self.conditions is not None:
            out["conditions"] = self.conditions.to_json()
        if self.metadata:
            out["metadata"] = dict(self.metadata)
        return out

    @staticmethod
    def from_json(obj: Mapping[str, Any]) -> StepConfig:
        conditions = obj.get("conditions")
        metadata = obj.get("metadata")
        return StepConfig(
            title=obj.get("title", ""),
            form_ref=obj.get("formRef", obj.get("form_ref", "")),
            id=obj.get("id"),
            description=obj.get("description"),
            allow_skip=bool(obj.get("allowSkip", obj.get("allow_skip", False))),
            conditions=(
                StepConditions.from_json(conditions) if isinstance(conditions, Mapping) else None
            ),
            metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        )


@dataclass(frozen=True, slots=True)
class StepDefinition:
    id: str
    title: str
    form: FormDefinition
    description: str | None = None
    allow_skip: bool = False
    conditions: StepConditions = StepConditions()
    metadata: Mapping[str, Any] = field(default_factory=dict)
    after_hook: AfterHook | None = None

    def __post_init__(self) -> None:
        _require_text(self.id, "Step id")
        _require_text(self.title, "Step title")

    @property
    def form_ref(self) -> str:
        return self.form.ref

    def to_config(self) -> StepConfig:
        return StepConfig(
            title=self.title,
            form_ref=self.form.ref,
            id=self.id,
            description=self.description,
            allow_skip=self.allow_skip,
            conditions=self.conditions,
            metadata=self.metadata,
            after_hook=self.after_hook,
        )


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    """A built, validated workflow."""

    id: str
    name: str
    steps: tuple[StepDefinition, ...]
    description: str | None = None
    analytics: tuple[AnalyticsSink, ...] = ()
    plugins: tuple[WorkflowPlugin, ...] = ()

    @property
    def step_ids(self) -> tuple[str, ...]:
        return tuple(step.id for step in self.steps)

    def index_of(self, step_id: str) -> int | None:
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        return None

    def get_step(self, step_id: str) -> StepDefinition | None:
        index = self.index_of(step_id)
        return None if index is None else self.steps[index]

    def forms_by_step(self) -> dict[str, FormDefinition]:
        return {step.id: step.form for step in self.steps}

    def to_json(self) -> dict[str, object]:
        forms: dict[str, object] = {}
        for step in self.steps:
            forms.setdefault(step.form.ref, step.form.to_json())
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "steps": [step.to_config().to_json() for step in self.steps],
            "forms": list(forms.values()),
            "plugins": [plugin.name for plugin in self.plugins],
        }
