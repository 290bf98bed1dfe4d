# src/formgraph/engine/state.py
"""Mutable evaluation state of one graph instance.

Every call works on a copy; the instance only swaps its committed state
for the copy once the whole call (resolver passes, remounts and effect
cascades) has succeeded. A failed call simply drops the copy.
"""

from __future__ import annotations

from collections.abc import Hashable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final

from formgraph.contracts.enums import RemovalReason


class _Missing(Enum):
    MISSING = "MISSING"

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Final = _Missing.MISSING
"""Sentinel for 'no value' (None is a legitimate node value)."""


@dataclass(frozen=True, slots=True)
class PendingWrite:
    """A value waiting to be applied to a node.

    Strict writes (from callers and effects) raise ValidationError when
    rejected. Lenient writes (values carried across reset()) fall back to
    the node's default instead.
    """

    value: Any
    strict: bool = True
    source: str = "set"


@dataclass(slots=True)
class EngineState:
    """Values, mounts and bookkeeping for one instance.

    Attributes:
        values: Resolved values of mounted, visible nodes
        meta: Metadata published by each visible node's current config
        requires: External resource identifiers per visible node
        hidden: Mounted keys whose config currently says ``when=False``
        mounts: Discriminator path -> mounted variant position
        dormant: (owner scope path, key) -> last value, kept for the restore policy
        effect_seen: Effect id -> dependency values observed on its last run
        removal_reasons: Why keys left the values during the current call
    """

    values: dict[str, Any] = field(default_factory=dict)
    meta: dict[str, Mapping[str, Any]] = field(default_factory=dict)
    requires: dict[str, frozenset[Hashable]] = field(default_factory=dict)
    hidden: set[str] = field(default_factory=set)
    mounts: dict[str, int] = field(default_factory=dict)
    dormant: dict[tuple[str, str], Any] = field(default_factory=dict)
    effect_seen: dict[str, tuple[Any, ...]] = field(default_factory=dict)
    removal_reasons: dict[str, RemovalReason] = field(default_factory=dict)

    def copy(self) -> EngineState:
        """Working copy for a new call (removal reasons start empty)."""
        return EngineState(
            values=dict(self.values),
            meta=dict(self.meta),
            requires=dict(self.requires),
            hidden=set(self.hidden),
            mounts=dict(self.mounts),
            dormant=dict(self.dormant),
            effect_seen=dict(self.effect_seen),
        )

    def forget(self, key: str) -> None:
        """Drop metadata and visibility bookkeeping for a key leaving the plan."""
        self.meta.pop(key, None)
        self.requires.pop(key, None)
        self.hidden.discard(key)
