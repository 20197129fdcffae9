"""Form-side contracts consumed by the workflow engine.

The engine never renders or validates fields itself. A step points at a
``FormDefinition`` (its fields and their conditional behaviour) and delegates
validation to a ``StepValidator``.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from formflow.workflow.conditions import Condition, condition_from_json


@dataclass(frozen=True, slots=True)
class ValidationError:
    message: str
    field: str | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"message": self.message}
        if self.field is not None:
            out["field"] = self.field
        return out


@dataclass(frozen=True, slots=True)
class ValidationResult:
    is_valid: bool
    errors: tuple[ValidationError, ...] = ()

    @staticmethod
    def ok() -> ValidationResult:
        return ValidationResult(is_valid=True)

    @staticmethod
    def failed(*errors: ValidationError) -> ValidationResult:
        return ValidationResult(is_valid=False, errors=tuple(errors))


FormValidator = Callable[[Mapping[str, Any]], ValidationResult | Awaitable[ValidationResult]]


class StepValidator(Protocol):
    def validate(
        self, step_id: str, data: Mapping[str, Any]
    ) -> ValidationResult | Awaitable[ValidationResult]: ...


async def run_validator(
    validator: StepValidator, step_id: str, data: Mapping[str, Any]
) -> ValidationResult:
    result = validator.validate(step_id, data)
    if inspect.isawaitable(result):
        result = await result
    return result


def _optional_condition(raw: object) -> Condition | None:
    return condition_from_json(raw) if isinstance(raw, Mapping) else None


@dataclass(frozen=True, slots=True)
class FieldConditions:
    visible: Condition | None = None
    disabled: Condition | None = None
    required: Condition | None = None
    readonly: Condition | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {}
        for name in ("visible", "disabled", "required", "readonly"):
            condition = getattr(self, name)
            if condition is not None:
                out[name] = condition.to_json()
        return out

    @staticmethod
    def from_json(obj: Mapping[str, object]) -> FieldConditions:
        return FieldConditions(
            visible=_optional_condition(obj.get("visible")),
            disabled=_optional_condition(obj.get("disabled")),
            required=_optional_condition(obj.get("required")),
            readonly=_optional_condition(obj.get("readonly")),
        )


@dataclass(frozen=True, slots=True)
class FieldDefinition:
    id: str
    conditions: FieldConditions = FieldConditions()
    label: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValueError("Field id must be a non-empty string")

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"id": self.id}
        if self.label is not None:
            out["label"] = self.label
        conditions = self.conditions.to_json()
        if conditions:
            out["conditions"] = conditions
        return out


@dataclass(frozen=True, slots=True)
class FormDefinition:
    """The sub-form a step renders, referenced by ``ref``."""

    ref: str
    fields: tuple[FieldDefinition, ...] = ()
    validator: FormValidator | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.ref, str) or not self.ref.strip():
            raise ValueError("Form ref must be a non-empty string")
        object.__setattr__(self, "fields", tuple(self.fields))

    @property
    def field_ids(self) -> list[str]:
        return [f.id for f in self.fields]

    def to_json(self) -> dict[str, object]:
        return {"ref": self.ref, "fields": [f.to_json() for f in self.fields]}

    @staticmethod
    def from_json(obj: Mapping[str, Any]) -> FormDefinition:
        fields = []
        for raw in obj.get("fields") or []:
            conditions = raw.get("conditions")
            fields.append(
                FieldDefinition(
                    id=raw.get("id", ""),
                    label=raw.get("label"),
                    conditions=(
                        FieldConditions.from_json(conditions)
                        if isinstance(conditions, Mapping)
                        else FieldConditions()
                    ),
                )
            )
        return FormDefinition(ref=obj.get("ref", ""), fields=tuple(fields))


class FormRegistry:
    """Forms addressable by ref; steps are resolved against it at build time."""

    def __init__(self, forms: Iterable[FormDefinition] = ()) -> None:
        self._forms: dict[str, FormDefinition] = {}
        for form in forms:
            self.register(form)

    def register(self, form: FormDefinition) -> FormDefinition:
        self._forms[form.ref] = form
        return form

    def get(self, ref: str) -> FormDefinition | None:
        return self._forms.get(ref)

    def __contains__(self, ref: object) -> bool:
        return ref in self._forms

    def __iter__(self) -> Iterator[FormDefinition]:
        return iter(self._forms.values())

    def __len__(self) -> int:
        return len(self._forms)


class FormStepValidator:
    """Validate a step with the validator its form declares (valid when it has none)."""

    def __init__(self, forms_by_step: Mapping[str, FormDefinition]) -> None:
        self._forms_by_step = dict(forms_by_step)

    def validate(
        self, step_id: str, data: Mapping[str, Any]
    ) -> ValidationResult | Awaitable[ValidationResult]:
        form = self._forms_by_step.get(step_id)
        if form is None or form.validator is None:
            return ValidationResult.ok()
        return form.validator(data)
