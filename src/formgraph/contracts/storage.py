# src/formgraph/contracts/storage.py
"""KeyValueRepository protocol for persisting form values.

This protocol defines the interface used by:
- core/storage.py (InMemoryRepository and ScopedStorageAdapter)

The graph engine itself never touches a repository; a wrapping layer reads
settled snapshots and decides what to persist.
"""

from collections.abc import Iterator, Mapping
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class KeyValueRepository(Protocol):
    """Protocol for storage backends holding one record per storage key."""

    def get(self, storage_key: str) -> Mapping[str, Any] | None:
        """Return the stored record, or None if nothing is stored."""
        ...

    def put(self, storage_key: str, record: Mapping[str, Any]) -> None:
        """Replace the record stored under ``storage_key``."""
        ...

    def delete(self, storage_key: str) -> bool:
        """Delete a record.

        Returns:
            True if a record was deleted, False if none existed
        """
        ...

    def keys(self) -> Iterator[str]:
        """Iterate over all storage keys."""
        ...
