"""Fluent construction of ``WorkflowDefinition`` objects.

The builder collects step configs, forms, analytics sinks and plugins. It does
not fail on the first problem: ``validate()`` reports everything it finds and
``build()`` raises a single ``WorkflowBuildError`` carrying that list.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any

from formflow.errors import PluginInstallError, WorkflowBuildError
from formflow.workflow.definitions import (
    StepConditions,
    StepConfig,
    StepDefinition,
    WorkflowDefinition,
)
from formflow.workflow.events import AnalyticsSink
from formflow.workflow.forms import FormDefinition, FormRegistry
from formflow.workflow.plugins import WorkflowPlugin

logger = logging.getLogger(__name__)


class WorkflowBuilder:
    def __init__(
        self,
        workflow_id: str,
        name: str,
        description: str | None = None,
        *,
        forms: FormRegistry | Iterable[FormDefinition] | None = None,
    ) -> None:
        if not isinstance(workflow_id, str) or not workflow_id.strip():
            raise ValueError("Workflow id must be a non-empty string")
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Workflow name must be a non-empty string")
        self.workflow_id = workflow_id
        self.name = name
        self.description = description
        self.forms = forms if isinstance(forms, FormRegistry) else FormRegistry(forms or ())
        self._steps: list[StepConfig] = []
        self._analytics: list[AnalyticsSink] = []
        self._plugins: dict[str, WorkflowPlugin] = {}
        self._id_counter = 0

    @classmethod
    def create(
        cls, workflow_id: str, name: str, description: str | None = None
    ) -> WorkflowBuilder:
        return cls(workflow_id, name, description)

    def _next_step_id(self) -> str:
        taken = {s.id for s in self._steps}
        while True:
            self._id_counter += 1
            candidate = f"step-{self._id_counter}"
            if candidate not in taken:
                return candidate

    def add_step(self, step: StepConfig | Iterable[StepConfig]) -> WorkflowBuilder:
        """Append one step or several; steps without an id get ``step-N``."""

        configs = [step] if isinstance(step, StepConfig) else list(step)
        for config in configs:
            if not isinstance(config, StepConfig):
                raise TypeError(f"Expected StepConfig, got {type(config).__name__}")
            if config.id is None:
                config = replace(config, id=self._next_step_id())
            self._steps.append(config)
        return self

    def register_form(self, form: FormDefinition) -> WorkflowBuilder:
        self.forms.register(form)
        return self

    def add_analytics(self, sink: AnalyticsSink) -> WorkflowBuilder:
        self._analytics.append(sink)
        return self

    def configure(
        self, *, analytics: AnalyticsSink | Iterable[AnalyticsSink] | None = None
    ) -> WorkflowBuilder:
        if analytics is not None:
            sinks = [analytics] if hasattr(analytics, "track") else analytics
            for sink in sinks:  # type: ignore[union-attr]
                self.add_analytics(sink)
        return self

    def use(self, plugin: WorkflowPlugin) -> WorkflowBuilder:
        if plugin.name in self._plugins:
            raise PluginInstallError(f"Plugin '{plugin.name}' is already installed")
        try:
            plugin.install(self)
        except Exception as e:
            raise PluginInstallError(f"Failed to install plugin '{plugin.name}': {e}") from e
        self._plugins[plugin.name] = plugin
        logger.debug(
            "Plugin installed",
            extra={
                "workflow_id": self.workflow_id,
                "plugin": plugin.name,
                "version": plugin.version,
            },
        )
        return self

    def remove_plugin(self, name: str) -> WorkflowBuilder:
        self._plugins.pop(name, None)
        return self

    @property
    def plugins(self) -> list[WorkflowPlugin]:
        return list(self._plugins.values())

    def _index(self, step_id: str) -> int:
        for index, config in enumerate(self._steps):
            if config.id == step_id:
                return index
        raise KeyError(f"Step with id '{step_id}' not found")

    def update_step(self, step_id: str, **changes: Any) -> WorkflowBuilder:
        index = self._index(step_id)
        self._steps[index] = replace(self._steps[index], **changes)
        return self

    def remove_step(self, step_id: str) -> WorkflowBuilder:
        del self._steps[self._index(step_id)]
        return self

    def get_step(self, step_id: str) -> StepConfig | None:
        try:
            return self._steps[self._index(step_id)]
        except KeyError:
            return None

    def get_steps(self) -> list[StepConfig]:
        return list(self._steps)

    def clear_steps(self) -> WorkflowBuilder:
        self._steps.clear()
        self._id_counter = 0
        return self

    def clone(
        self, workflow_id: str | None = None, name: str | None = None
    ) -> WorkflowBuilder:
        other = WorkflowBuilder(
            workflow_id or f"{self.workflow_id}-clone",
            name or self.name,
            self.description,
            forms=FormRegistry(self.forms),
        )
        other._steps = list(self._steps)
        other._analytics = list(self._analytics)
        other._plugins = dict(self._plugins)
        other._id_counter = self._id_counter
        return other

    def validate(self) -> list[str]:
        errors: list[str] = []
        if not self._steps:
            errors.append("Workflow must have at least one step")

        counts = Counter(s.id for s in self._steps)
        duplicates = sorted(step_id for step_id, n in counts.items() if n > 1 and step_id)
        if duplicates:
            errors.append(f"Duplicate step IDs: {', '.join(duplicates)}")

        for config in self._steps:
            if config.form_ref not in self.forms:
                errors.append(f"Step '{config.id}' references unknown form '{config.form_ref}'")

        for plugin in self._plugins.values():
            missing = [dep for dep in plugin.dependencies if dep not in self._plugins]
            if missing:
                errors.append(
                    f"Plugin '{plugin.name}' requires missing dependencies: {', '.join(missing)}"
                )
        return errors

    def build(self) -> WorkflowDefinition:
        errors = self.validate()
        if errors:
            raise WorkflowBuildError(errors)

        steps = []
        for config in self._steps:
            form = self.forms.get(config.form_ref)
            assert config.id is not None and form is not None
            steps.append(
                StepDefinition(
                    id=config.id,
                    title=config.title,
                    form=form,
                    description=config.description,
                    allow_skip=config.allow_skip,
                    conditions=config.conditions or StepConditions(),
                    metadata=dict(config.metadata),
                    after_hook=config.after_hook,
                )
            )
        definition = WorkflowDefinition(
            id=self.workflow_id,
            name=self.name,
            description=self.description,
            steps=tuple(steps),
            analytics=tuple(self._analytics),
            plugins=tuple(self._plugins.values()),
        )
        logger.info(
            "Workflow built",
            extra={"workflow_id": self.workflow_id, "steps": len(steps)},
        )
        return definition

    def get_stats(self) -> dict[str, int]:
        return {
            "total_steps": len(self._steps),
            "dynamic_steps": sum(
                1 for s in self._steps if s.conditions is not None and s.conditions.to_json()
            ),
            "skippable_steps": sum(1 for s in self._steps if s.allow_skip),
            "steps_with_hooks": sum(1 for s in self._steps if s.after_hook is not None),
            "plugins": len(self._plugins),
            "estimated_fields": sum(
                len(form.fields) for s in self._steps if (form := self.forms.get(s.form_ref))
            ),
        }

    def to_json(self) -> dict[str, object]:
        """Serialise the declarative parts; hooks, sinks and plugins are not included."""

        return {
            "id": self.workflow_id,
            "name": self.name,
            "description": self.description,
            "forms": [form.to_json() for form in self.forms],
            "steps": [config.to_json() for config in self._steps],
        }

    @classmethod
    def from_json(
        cls, payload: Mapping[str, Any], *, forms: FormRegistry | None = None
    ) -> WorkflowBuilder:
        builder = cls(
            payload.get("id", ""),
            payload.get("name", ""),
            payload.get("description"),
            forms=forms,
        )
        for raw in payload.get("forms") or []:
            builder.register_form(FormDefinition.from_json(raw))
        for raw in payload.get("steps") or []:
            builder.add_step(StepConfig.from_json(raw))
        return builder
