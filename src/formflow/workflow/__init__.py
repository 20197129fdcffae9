"""Workflow engine: conditions, visibility, state store and navigation.

The engine is deliberately split so each piece can be tested on its own:
conditions and visibility are pure, the store is the only mutable state, and
navigation sequences hooks, visibility and store actions.
"""

__all__: list[str] = []
