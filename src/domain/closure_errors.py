"""Errors raised by the annotation closure core.

"Not found" conditions (unknown principal, dataset without annotations,
missing index) are never raised; they are answered with empty results.
"""

from typing import Any


class ClosureError(Exception):
    """Base class for closure failures that abort a request."""


class MalformedTermError(ClosureError):
    """An ontology term is missing a required property."""

    def __init__(self, node_id: Any, property_name: str):
        self.node_id = node_id
        self.property_name = property_name
        super().__init__(
            f"Ontology term {node_id!r} is missing required property '{property_name}'"
        )


class StoreUnavailableError(ClosureError):
    """The graph store could not open a transaction."""


class InvalidShapeError(ClosureError, ValueError):
    """An unknown output shape was requested."""
