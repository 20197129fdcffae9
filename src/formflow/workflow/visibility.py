"""Step and field visibility derived from workflow data.

``resolve_steps`` is a pure function of the step list and a condition
context. ``VisibilityResolver`` wraps it with a small LRU cache keyed on a
hash of the workflow data so repeated lookups for unchanged data are cheap.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections import OrderedDict
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from formflow.workflow.conditions import Condition, evaluate
from formflow.workflow.definitions import StepDefinition
from formflow.workflow.flattening import combine
from formflow.workflow.forms import FormDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StepVisibility:
    visible: bool = True
    skippable: bool = False
    disabled: bool = False
    required: bool = False


@dataclass(frozen=True, slots=True)
class FieldBehavior:
    visible: bool = True
    disabled: bool = False
    required: bool = False
    readonly: bool = False


def _check(condition: Condition | None, context: Mapping[str, Any], default: bool) -> bool:
    return default if condition is None else evaluate(condition, context)


def resolve_step(step: StepDefinition, context: Mapping[str, Any]) -> StepVisibility:
    conditions = step.conditions
    return StepVisibility(
        visible=_check(conditions.visible, context, True),
        skippable=step.allow_skip or _check(conditions.skippable, context, False),
        disabled=_check(conditions.disabled, context, False),
        required=_check(conditions.required, context, False),
    )


def resolve_steps(
    steps: Sequence[StepDefinition], context: Mapping[str, Any]
) -> tuple[StepVisibility, ...]:
    return tuple(resolve_step(step, context) for step in steps)


def resolve_fields(form: FormDefinition, context: Mapping[str, Any]) -> dict[str, FieldBehavior]:
    out: dict[str, FieldBehavior] = {}
    for f in form.fields:
        c = f.conditions
        out[f.id] = FieldBehavior(
            visible=_check(c.visible, context, True),
            disabled=_check(c.disabled, context, False),
            required=_check(c.required, context, False),
            readonly=_check(c.readonly, context, False),
        )
    return out


@dataclass(frozen=True, slots=True)
class VisibilityMap:
    """Resolved visibility for every step, with the scans navigation relies on.

    Indices outside the workflow are neither visible nor skippable.
    """

    step_ids: tuple[str, ...]
    steps: tuple[StepVisibility, ...]

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[StepVisibility]:
        return iter(self.steps)

    def at(self, index: int) -> StepVisibility | None:
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None

    def get(self, step_id: str) -> StepVisibility | None:
        try:
            return self.steps[self.step_ids.index(step_id)]
        except ValueError:
            return None

    def is_visible(self, index: int) -> bool:
        entry = self.at(index)
        return entry is not None and entry.visible

    def is_skippable(self, index: int) -> bool:
        entry = self.at(index)
        return entry is not None and entry.skippable

    def visible_indices(self) -> list[int]:
        return [i for i, entry in enumerate(self.steps) if entry.visible]

    def next_visible(self, after: int) -> int | None:
        for index in range(max(after + 1, 0), len(self.steps)):
            if self.steps[index].visible:
                return index
        return None

    def previous_visible(self, before: int) -> int | None:
        for index in range(min(before, len(self.steps)) - 1, -1, -1):
            if self.steps[index].visible:
                return index
        return None

    def first_visible(self) -> int | None:
        return self.next_visible(-1)

    def last_visible(self) -> int | None:
        return self.previous_visible(len(self.steps))

    def to_json(self) -> dict[str, dict[str, bool]]:
        return {
            step_id: {
                "visible": entry.visible,
                "skippable": entry.skippable,
                "disabled": entry.disabled,
                "required": entry.required,
            }
            for step_id, entry in zip(self.step_ids, self.steps, strict=True)
        }


def _fingerprint(*parts: object) -> str | None:
    try:
        raw = json.dumps(parts, sort_keys=True, default=repr)
    except (TypeError, ValueError):
        return None
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class VisibilityResolver:
    """Memoised visibility for one workflow's steps."""

    def __init__(self, steps: Sequence[StepDefinition], *, cache_size: int = 64) -> None:
        if cache_size <= 0:
            raise ValueError("cache_size must be positive")
        self._steps = tuple(steps)
        self._step_ids = tuple(step.id for step in self._steps)
        self._cache_size = cache_size
        self._cache: OrderedDict[str, VisibilityMap] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def resolve(
        self, all_data: Mapping[str, Any], step_data: Mapping[str, Any] | None = None
    ) -> VisibilityMap:
        step_data = step_data or {}
        key = _fingerprint(all_data, step_data)
        if key is not None and key in self._cache:
            self.hits += 1
            self._cache.move_to_end(key)
            return self._cache[key]

        self.misses += 1
        result = VisibilityMap(
            step_ids=self._step_ids,
            steps=resolve_steps(self._steps, combine(all_data, step_data)),
        )
        if key is not None:
            self._cache[key] = result
            if len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        else:
            logger.debug("Workflow data is not hashable; visibility not cached")
        return result

    def fields(
        self,
        form: FormDefinition,
        all_data: Mapping[str, Any],
        step_data: Mapping[str, Any] | None = None,
    ) -> dict[str, FieldBehavior]:
        return resolve_fields(form, combine(all_data, step_data or {}))

    def clear(self) -> None:
        self._cache.clear()
