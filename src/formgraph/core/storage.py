# src/formgraph/core/storage.py
"""Scoped persistence of snapshot values.

The engine never persists anything itself. ScopedStorageAdapter reads
settled snapshots and spreads their values over storage records, each
record addressed by a storage key:

    prefix                     unnamed group
    prefix.name                named group without scope
    prefix.name.<scope value>  named group partitioned by a snapshot value

so that, for example, sampler settings are remembered per ecosystem while
the prompt is shared by all of them. Values of nodes absent from the
snapshot (unmounted or hidden) are left in their records and come back
when the node does.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import structlog

from formgraph.contracts.storage import KeyValueRepository
from formgraph.contracts.types import WILDCARD

if TYPE_CHECKING:
    from formgraph.engine.instance import GraphInstance

__all__ = ["FilesystemRepository", "InMemoryRepository", "ScopedStorageAdapter", "StorageGroup"]

slog = structlog.get_logger(__name__)

_STORAGE_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.:\-]+$")


class InMemoryRepository:
    """Dict-backed repository; records are copied on the way in and out."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}

    def get(self, storage_key: str) -> Mapping[str, Any] | None:
        record = self._records.get(storage_key)
        return None if record is None else dict(record)

    def put(self, storage_key: str, record: Mapping[str, Any]) -> None:
        self._records[storage_key] = dict(record)

    def delete(self, storage_key: str) -> bool:
        return self._records.pop(storage_key, None) is not None

    def keys(self) -> Iterator[str]:
        return iter(list(self._records))


class FilesystemRepository:
    """One JSON file per storage key under ``base_path``.

    Structure: base_path/<storage key>.json
    """

    def __init__(self, base_path: Path) -> None:
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path_for_key(self, storage_key: str) -> Path:
        """Get the file for a storage key.

        Raises:
            ValueError: If the key contains characters that could escape base_path
        """
        if not _STORAGE_KEY_PATTERN.match(storage_key) or storage_key.startswith("."):
            raise ValueError(f"Invalid storage key {storage_key!r}: use letters, digits, '_', '-', ':' and '.'")
        return self.base_path / f"{storage_key}.json"

    def get(self, storage_key: str) -> Mapping[str, Any] | None:
        path = self._path_for_key(storage_key)
        if not path.exists():
            return None
        record = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(record, dict):
            raise ValueError(f"Storage record {path} is not a JSON object")
        return record

    def put(self, storage_key: str, record: Mapping[str, Any]) -> None:
        path = self._path_for_key(storage_key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(dict(record), sort_keys=True), encoding="utf-8")
        tmp.replace(path)

    def delete(self, storage_key: str) -> bool:
        path = self._path_for_key(storage_key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def keys(self) -> Iterator[str]:
        return iter(sorted(path.stem for path in self.base_path.glob("*.json")))


@dataclass(frozen=True, slots=True)
class StorageGroup:
    """Which keys go to which storage record.

    Attributes:
        name: Record name under the prefix (None = the prefix record itself)
        keys: Node keys stored by this group, or ``"*"`` for every key no
            explicit group claimed
        scope: Snapshot key whose value partitions the record; the group is
            skipped while that key is absent
        condition: Extra predicate over the current values
    """

    name: str | None = None
    keys: tuple[str, ...] | Literal["*"] = WILDCARD
    scope: str | None = None
    condition: Callable[[Mapping[str, Any]], bool] | None = None

    def __post_init__(self) -> None:
        if self.keys != WILDCARD:
            object.__setattr__(self, "keys", tuple(self.keys))
        if self.scope is not None and self.name is None:
            raise ValueError(f"Scoped storage group (scope={self.scope!r}) needs a name")

    @property
    def is_wildcard(self) -> bool:
        return self.keys == WILDCARD

    def storage_key(self, prefix: str, values: Mapping[str, Any]) -> str | None:
        """Record address for ``values``, or None if the group does not apply."""
        if self.condition is not None and not self.condition(values):
            return None
        if self.name is None:
            return prefix
        if self.scope is None:
            return f"{prefix}.{self.name}"
        if values.get(self.scope) is None:
            return None
        return f"{prefix}.{self.name}.{values[self.scope]}"


class ScopedStorageAdapter:
    """Persists snapshot values into a KeyValueRepository by storage group.

    Each key is stored by the first applicable group listing it explicitly;
    keys no explicit group claims go to the first applicable wildcard group.
    Keys no group claims are not persisted.

    Example:
        adapter = ScopedStorageAdapter(
            "generation",
            [
                StorageGroup(keys=("workflow", "prompt", "seed")),
                StorageGroup("ecosystem", WILDCARD, scope="ecosystem"),
            ],
            InMemoryRepository(),
        )
        instance.init(adapter.load())
        unsubscribe = adapter.attach(instance)
    """

    def __init__(self, prefix: str, groups: Iterable[StorageGroup], repository: KeyValueRepository) -> None:
        self._prefix = prefix
        self._groups = tuple(groups)
        self._repository = repository

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def groups(self) -> tuple[StorageGroup, ...]:
        return self._groups

    def _route(self, key: str, values: Mapping[str, Any]) -> str | None:
        for wildcard in (False, True):
            for group in self._groups:
                if group.is_wildcard != wildcard or (not wildcard and key not in group.keys):
                    continue
                storage_key = group.storage_key(self._prefix, values)
                if storage_key is not None:
                    return storage_key
        return None

    def save(self, snapshot: Mapping[str, Any]) -> list[str]:
        """Write every routable value of ``snapshot`` into its record.

        Existing values in a record are kept unless overwritten, so values
        of currently inactive nodes survive.

        Returns:
            Storage keys written, in first-write order
        """
        records: dict[str, dict[str, Any]] = {}
        for key, value in snapshot.items():
            storage_key = self._route(key, snapshot)
            if storage_key is not None:
                records.setdefault(storage_key, {})[key] = value
        for storage_key, updates in records.items():
            existing = self._repository.get(storage_key)
            record = dict(existing) if existing is not None else {}
            record.update(updates)
            self._repository.put(storage_key, record)
        slog.debug("storage_saved", prefix=self._prefix, records=list(records))
        return list(records)

    def load(self, seed: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Assemble an init seed from stored records.

        ``seed`` wins over stored values. Scoped groups are resolved against
        the values gathered so far, repeating until nothing new is found, so
        a scope key that is itself stored (e.g. ``ecosystem``) still selects
        its partition.
        """
        values: dict[str, Any] = dict(seed or {})
        ordered = [group for group in self._groups if not group.is_wildcard] + [group for group in self._groups if group.is_wildcard]
        visited: set[tuple[str, int]] = set()
        progressed = True
        while progressed:
            progressed = False
            for position, group in enumerate(ordered):
                storage_key = group.storage_key(self._prefix, values)
                if storage_key is None or (storage_key, position) in visited:
                    continue
                visited.add((storage_key, position))
                record = self._repository.get(storage_key) or {}
                for key, value in record.items():
                    if key in values or (not group.is_wildcard and key not in group.keys):
                        continue
                    values[key] = value
                    progressed = True
        slog.debug("storage_loaded", prefix=self._prefix, keys=sorted(values))
        return values

    def clear(self) -> int:
        """Delete every record under this adapter's prefix; returns how many."""
        doomed = [key for key in self._repository.keys() if key == self._prefix or key.startswith(f"{self._prefix}.")]
        for storage_key in doomed:
            self._repository.delete(storage_key)
        slog.info("storage_cleared", prefix=self._prefix, records=len(doomed))
        return len(doomed)

    def attach(self, instance: GraphInstance) -> Callable[[], None]:
        """Save every committed snapshot of ``instance`` from now on.

        The current snapshot is saved immediately when the instance is
        already initialized.
        """
        if instance.initialized:
            self.save(instance.get_snapshot())
        return instance.subscribe(WILDCARD, self.save)
