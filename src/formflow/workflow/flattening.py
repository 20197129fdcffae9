"""Flatten nested workflow data into dot-notation lookups.

Conditions reference fields as ``"step_id.field_id"`` (or deeper), while the
workflow keeps its data nested per step. The helpers here bridge the two.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from typing import Any


def _is_leaf(value: object) -> bool:
    # Sequences, dates and None are values in their own right, never walked.
    return not isinstance(value, Mapping) or isinstance(value, date)


def flatten(obj: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten a nested mapping into ``{"a.b.c": value}`` form.

    Empty nested mappings contribute no keys.
    """

    out: dict[str, Any] = {}
    for key, value in obj.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if _is_leaf(value):
            out[path] = value
        else:
            out.update(flatten(value, path))
    return out


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into ``base`` recursively; ``override`` wins on leaf collisions."""

    merged: dict[str, Any] = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def combine(all_data: Mapping[str, Any], step_data: Mapping[str, Any]) -> dict[str, Any]:
    """Build the condition context from workflow-wide and current-step data.

    The result holds the nested merge of both inputs plus every dot-path of
    each of them. ``step_data`` wins on collisions, but a dot-path that only
    ``all_data`` provides is never lost: with step ``legalForm`` holding a
    field ``legalForm``, ``"legalForm.legalForm"`` still resolves after the
    current step's flat ``legalForm`` key shadowed the nested mapping.
    """

    nested = deep_merge(all_data, step_data)
    flat = flatten(all_data)
    flat.update(flatten(nested))
    return {**nested, **flat}


def extract_step_data(all_data: Mapping[str, Any], step_id: str) -> dict[str, Any]:
    value = all_data.get(step_id)
    return dict(value) if isinstance(value, Mapping) else {}


def merge_step_data(
    all_data: Mapping[str, Any], step_id: str, data: Mapping[str, Any]
) -> dict[str, Any]:
    """Return a copy of ``all_data`` with ``data`` shallow-merged into ``step_id``."""

    return {**all_data, step_id: {**extract_step_data(all_data, step_id), **data}}
