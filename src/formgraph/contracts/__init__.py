# src/formgraph/contracts/__init__.py
"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes live in formgraph.core.config.
"""

from formgraph.contracts.enums import BranchValuePolicy, InactiveWritePolicy, RemovalReason
from formgraph.contracts.errors import (
    CycleError,
    DuplicateNodeError,
    FormGraphError,
    GraphStateError,
    ReentrancyError,
    UnknownNodeError,
    ValidationError,
)
from formgraph.contracts.snapshot import EMPTY_SNAPSHOT, Snapshot, UnmountEvent
from formgraph.contracts.storage import KeyValueRepository
from formgraph.contracts.types import (
    WILDCARD,
    ExternalContext,
    NodeContext,
    NodeKey,
    ResourceId,
    Setter,
)

__all__ = [
    "EMPTY_SNAPSHOT",
    "WILDCARD",
    "BranchValuePolicy",
    "CycleError",
    "DuplicateNodeError",
    "ExternalContext",
    "FormGraphError",
    "GraphStateError",
    "InactiveWritePolicy",
    "KeyValueRepository",
    "NodeContext",
    "NodeKey",
    "ReentrancyError",
    "RemovalReason",
    "ResourceId",
    "Setter",
    "Snapshot",
    "UnknownNodeError",
    "UnmountEvent",
    "ValidationError",
]
