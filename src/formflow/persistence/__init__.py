"""Snapshot persistence: wire types, adapters and the debounced scheduler."""

__all__: list[str] = []
