# src/formgraph/contracts/snapshot.py
"""Read-only views of settled graph state."""

from __future__ import annotations

from collections.abc import Hashable, Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from formgraph.contracts.enums import RemovalReason

_EMPTY_META: Mapping[str, Any] = MappingProxyType({})


class Snapshot(Mapping[str, Any]):
    """The fully resolved, currently valid state of a graph instance.

    Contains only nodes that are mounted and visible. Behaves as a read-only
    mapping of key to value; per-node metadata and aggregated external
    resource requirements ride alongside the values.

    Equality compares values only, so two snapshots with identical values
    but different versions are equal.
    """

    __slots__ = ("_meta", "_requires", "_values", "_version")

    def __init__(
        self,
        values: Mapping[str, Any] | None = None,
        *,
        meta: Mapping[str, Mapping[str, Any]] | None = None,
        requires: Mapping[str, frozenset[Hashable]] | None = None,
        version: int = 0,
    ) -> None:
        self._values: Mapping[str, Any] = MappingProxyType(dict(values or {}))
        self._meta: Mapping[str, Mapping[str, Any]] = MappingProxyType(dict(meta or {}))
        self._requires: Mapping[str, frozenset[Hashable]] = MappingProxyType(dict(requires or {}))
        self._version = version

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Snapshot(version={self._version}, values={dict(self._values)!r})"

    @property
    def version(self) -> int:
        """Monotonic counter, bumped on every commit that changed something."""
        return self._version

    def meta(self, key: str) -> Mapping[str, Any]:
        """Metadata published by a node (empty when it has none or is absent)."""
        return self._meta.get(key, _EMPTY_META)

    def requirements(self, key: str) -> frozenset[Hashable]:
        """External resource identifiers a single node currently requires."""
        return self._requires.get(key, frozenset())

    @property
    def required_resources(self) -> frozenset[Hashable]:
        """Union of external resource identifiers required by visible nodes."""
        result: set[Hashable] = set()
        for ids in self._requires.values():
            result.update(ids)
        return frozenset(result)

    def to_dict(self) -> dict[str, Any]:
        """Plain dict copy of the values (for serialization)."""
        return dict(self._values)

    def changed_keys(self, previous: Snapshot) -> frozenset[str]:
        """Keys whose value, presence, metadata or requirements differ from ``previous``."""
        changed = set(self._values.keys() ^ previous._values.keys())
        for key in self._values.keys() & previous._values.keys():
            if (
                self._values[key] != previous._values[key]
                or self.meta(key) != previous.meta(key)
                or self.requirements(key) != previous.requirements(key)
            ):
                changed.add(key)
        return frozenset(changed)


EMPTY_SNAPSHOT = Snapshot()


@dataclass(frozen=True, slots=True)
class UnmountEvent:
    """Notification that a key left the snapshot.

    Owners use this to release external resources tied to the key
    (e.g. reference-counted fetches).
    """

    key: str
    value: Any
    reason: RemovalReason
