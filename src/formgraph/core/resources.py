# src/formgraph/core/resources.py
"""Reference-counted tracking of externally fetched resources.

Nodes declare the resources they need through ``NodeConfig.requires``; the
snapshot aggregates them as ``required_resources``. A ResourceTracker keeps
one registry handle per required identifier, so a resource stays registered
while any attached instance still needs it and the registry's release
listeners fire when the last user lets go.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable
from types import TracebackType
from typing import TYPE_CHECKING

import structlog

from formgraph.contracts.snapshot import Snapshot
from formgraph.contracts.types import WILDCARD

if TYPE_CHECKING:
    from formgraph.engine.instance import GraphInstance

__all__ = ["ResourceHandle", "ResourceRegistry", "ResourceTracker"]

slog = structlog.get_logger(__name__)

type ReleaseCallback = Callable[[Hashable], None]


class ResourceHandle:
    """One registration of a resource; release it exactly once.

    Usable as a context manager:

        with registry.register(model_id):
            ...
    """

    __slots__ = ("_registry", "_released", "resource_id")

    def __init__(self, registry: ResourceRegistry, resource_id: Hashable) -> None:
        self._registry = registry
        self._released = False
        self.resource_id = resource_id

    def __repr__(self) -> str:
        return f"ResourceHandle({self.resource_id!r}, released={self._released})"

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Drop this registration. Releasing twice is a no-op."""
        if self._released:
            return
        self._released = True
        self._registry._release(self.resource_id)

    def __enter__(self) -> ResourceHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()


class ResourceRegistry:
    """Counts live handles per resource identifier."""

    def __init__(self) -> None:
        self._counts: dict[Hashable, int] = {}
        self._listeners: list[ReleaseCallback] = []

    def register(self, resource_id: Hashable) -> ResourceHandle:
        self._counts[resource_id] = self._counts.get(resource_id, 0) + 1
        return ResourceHandle(self, resource_id)

    def count(self, resource_id: Hashable) -> int:
        return self._counts.get(resource_id, 0)

    @property
    def active_ids(self) -> frozenset[Hashable]:
        return frozenset(self._counts)

    def on_release(self, callback: ReleaseCallback) -> Callable[[], None]:
        """Call ``callback(resource_id)`` when a resource's last handle is released."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _release(self, resource_id: Hashable) -> None:
        remaining = self._counts[resource_id] - 1
        if remaining:
            self._counts[resource_id] = remaining
            return
        del self._counts[resource_id]
        slog.debug("resource_released", resource_id=resource_id)
        for callback in list(self._listeners):
            callback(resource_id)


class ResourceTracker:
    """Mirrors the ``required_resources`` of attached instances into a registry."""

    def __init__(self, registry: ResourceRegistry) -> None:
        self._registry = registry
        self._handles: dict[int, dict[Hashable, ResourceHandle]] = {}

    @property
    def registry(self) -> ResourceRegistry:
        return self._registry

    def sync(self, owner: int, snapshot: Snapshot) -> None:
        """Register newly required resources and release those no longer required."""
        held = self._handles.setdefault(owner, {})
        required = snapshot.required_resources
        for resource_id in required - held.keys():
            held[resource_id] = self._registry.register(resource_id)
        for resource_id in held.keys() - required:
            held.pop(resource_id).release()

    def attach(self, instance: GraphInstance) -> Callable[[], None]:
        """Track ``instance`` until the returned detach function is called.

        Detaching releases every handle held for the instance.
        """
        owner = id(instance)
        self.sync(owner, instance.get_snapshot())
        unsubscribe = instance.subscribe(WILDCARD, lambda snapshot: self.sync(owner, snapshot))

        def detach() -> None:
            unsubscribe()
            for handle in self._handles.pop(owner, {}).values():
                handle.release()

        return detach
