# src/formgraph/contracts/errors.py
"""Exception taxonomy for graph construction and evaluation.

Build-time errors (UnknownNodeError, DuplicateNodeError, and CycleError for
declared cycles) are raised by DataGraph and DataGraph.build() before any
instance exists. Evaluation errors (ValidationError, CycleError for runaway
cascades) abort the call and leave the committed snapshot untouched.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class FormGraphError(Exception):
    """Base class for all formgraph errors."""


class ValidationError(FormGraphError, ValueError):
    """A written or computed value failed its schema.

    The whole call is discarded; the snapshot is unchanged.

    Attributes:
        key: Node whose value was rejected
        errors: Structured error entries from pydantic (may be empty)
    """

    def __init__(self, key: str, message: str, *, errors: Sequence[Any] = ()) -> None:
        self.key = key
        self.errors = tuple(errors)
        super().__init__(f"{key}: {message}")


class UnknownNodeError(FormGraphError, LookupError):
    """A dependency, discriminant or effect references an undeclared key.

    Raised at graph-construction time only, never during evaluation.
    """

    def __init__(self, key: str, message: str | None = None) -> None:
        self.key = key
        super().__init__(message or f"Unknown node '{key}'")


class DuplicateNodeError(UnknownNodeError):
    """A key is declared twice within one composition (declaration or merge)."""

    def __init__(self, key: str, message: str | None = None) -> None:
        super().__init__(key, message or f"Node '{key}' is already declared in this composition")


class CycleError(FormGraphError):
    """A declared dependency cycle, or a cascade that exceeded its cap.

    Attributes:
        cycle: Keys on the cycle (for declared cycles) or the keys written in
            the last cascade pass (for runaway cascades)
    """

    def __init__(self, message: str, *, cycle: Sequence[str] = ()) -> None:
        self.cycle = tuple(cycle)
        super().__init__(message)


class ReentrancyError(FormGraphError, RuntimeError):
    """An instance was driven from inside its own evaluation or notification."""


class GraphStateError(FormGraphError, RuntimeError):
    """An instance was used before init()."""
