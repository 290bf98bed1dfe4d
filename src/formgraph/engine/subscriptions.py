# src/formgraph/engine/subscriptions.py
"""Synchronous listener registries for committed snapshots and unmounts.

Listeners are dispatched in registration order. Exceptions propagate to the
caller of the operation that committed; the state is already committed by
then, so a failing listener never leaves the instance half-updated.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from formgraph.contracts.snapshot import Snapshot, UnmountEvent
from formgraph.contracts.types import WILDCARD

type SnapshotCallback = Callable[[Snapshot], None]
type UnmountCallback = Callable[[UnmountEvent], None]
type Unsubscribe = Callable[[], None]


@dataclass(eq=False, slots=True)
class _Subscription:
    key: str
    callback: SnapshotCallback


class SubscriptionRegistry:
    """Key and wildcard listeners for committed snapshots.

    Example:
        registry = SubscriptionRegistry()
        unsubscribe = registry.subscribe("steps", lambda snap: print(snap["steps"]))
        registry.notify(snapshot, frozenset({"steps"}))
        unsubscribe()
    """

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, key: str, callback: SnapshotCallback) -> Unsubscribe:
        """Register ``callback`` for changes of ``key`` (or any key with ``"*"``).

        Returns:
            A function removing this subscription; calling it twice is harmless
        """
        subscription = _Subscription(key, callback)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def notify(self, snapshot: Snapshot, changed: Iterable[str]) -> None:
        """Call every listener whose key is in ``changed``, once each."""
        changed = frozenset(changed)
        if not changed:
            return
        # Copy: listeners may unsubscribe while being dispatched
        for subscription in list(self._subscriptions):
            if subscription.key == WILDCARD or subscription.key in changed:
                subscription.callback(snapshot)


class UnmountListeners:
    """Listeners told about every key that left the snapshot."""

    def __init__(self) -> None:
        self._callbacks: list[UnmountCallback] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def subscribe(self, callback: UnmountCallback) -> Unsubscribe:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def emit(self, events: Iterable[UnmountEvent]) -> None:
        events = list(events)
        for callback in list(self._callbacks):
            for event in events:
                callback(event)
