"""
Error types raised by the reallocation and merge steps.

Every error is raised where it is detected; a failed step never returns a
partial table.
"""

from typing import Iterable, List


def _preview(ids: Iterable, limit: int = 10) -> str:
    ids = [str(i) for i in ids]
    text = ", ".join(ids[:limit])
    if len(ids) > limit:
        text += f", ... ({len(ids)} total)"
    return text


class ReallocationError(ValueError):
    """Base class for all pipeline errors."""


class ProjectionMismatch(ReallocationError):
    """Layers are not in one common planar coordinate reference system."""


class InvalidGeometry(ReallocationError):
    """Null, empty, zero-area or self-intersecting polygons."""

    def __init__(self, role: str, ids: List, reason: str = "invalid"):
        self.role = role
        self.ids = list(ids)
        self.reason = reason
        super().__init__(
            f"{len(self.ids)} {reason} geometries in {role} layer: {_preview(self.ids)}"
        )


class DuplicateKey(ReallocationError):
    """Non-unique (or null) identifiers where unique ones are required."""

    def __init__(self, field: str, ids: List, where: str = "layer"):
        self.field = field
        self.ids = list(ids)
        super().__init__(
            f"Duplicate or null '{field}' values in {where}: {_preview(self.ids)}"
        )


class UndefinedValue(ReallocationError):
    """Missing, non-numeric or negative values in a numeric field."""

    def __init__(self, field: str, ids: List, reason: str = "missing or non-numeric"):
        self.field = field
        self.ids = list(ids)
        self.reason = reason
        super().__init__(
            f"{len(self.ids)} {reason} values in '{field}': {_preview(self.ids)}"
        )


class ConservationMismatch(ReallocationError):
    """Reallocated total differs from the source total by an unexpected amount."""

    def __init__(self, label: str, delta: float, expected_delta: float, tolerance: float):
        self.label = label
        self.delta = delta
        self.expected_delta = expected_delta
        self.tolerance = tolerance
        super().__init__(
            f"{label}: reallocated total is off by {delta:+,.4f} "
            f"(expected {expected_delta:+,.4f}, tolerance {tolerance:,.4f})"
        )


class KeyTypeMismatch(ReallocationError):
    """Vintage tables do not share one merge-key dtype."""


class VariableKindError(ReallocationError):
    """An attribute is declared with an unknown or conflicting kind."""
