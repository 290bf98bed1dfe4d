# src/formgraph/engine/instance.py
"""GraphInstance: the mutable, transactional runtime of a compiled graph.

Each public operation builds a working copy of the engine state, runs
resolver passes, remounts and effect cascades on it, and only then commits
it together with a new Snapshot. Listeners are notified after the commit.
Any exception raised before the commit leaves the instance untouched.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

import structlog

from formgraph.contracts.enums import RemovalReason
from formgraph.contracts.errors import CycleError, GraphStateError, ReentrancyError, UnknownNodeError
from formgraph.contracts.snapshot import EMPTY_SNAPSHOT, Snapshot, UnmountEvent
from formgraph.contracts.types import WILDCARD, ExternalContext
from formgraph.core.config import EngineSettings
from formgraph.engine.discriminator import describe_mounts
from formgraph.engine.effects import EffectRunner
from formgraph.engine.resolver import Resolver
from formgraph.engine.state import EngineState, PendingWrite
from formgraph.engine.subscriptions import SnapshotCallback, SubscriptionRegistry, UnmountCallback, UnmountListeners, Unsubscribe

if TYPE_CHECKING:
    from formgraph.core.dag.builder import CompiledGraph

slog = structlog.get_logger(__name__)

_CURRENT: Any = object()


class GraphInstance:
    """Holds the values of one form built from a CompiledGraph.

    Example:
        instance = compiled.create_instance(ext={"user_tier": "pro"})
        instance.subscribe("*", render)
        instance.init({"ecosystem": "SD1"})
        instance.set({"workflow": "img2img"})
        instance.get_snapshot()["steps"]

    Not thread-safe. Calling init/set/reset/set_external_context from a
    listener, compute function, config factory or effect raises
    ReentrancyError.
    """

    def __init__(self, graph: CompiledGraph, ext: ExternalContext = None, *, settings: EngineSettings | None = None) -> None:
        self._graph = graph
        self._settings = settings if settings is not None else EngineSettings()
        self._ext = ext
        self._resolver = Resolver(graph, self._settings)
        self._effects = EffectRunner()
        self._state: EngineState | None = None
        self._snapshot: Snapshot = EMPTY_SNAPSHOT
        self._subscriptions = SubscriptionRegistry()
        self._unmount_listeners = UnmountListeners()
        self._busy: str | None = None

    def __repr__(self) -> str:
        return f"GraphInstance(initialized={self.initialized}, version={self._snapshot.version})"

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def graph(self) -> CompiledGraph:
        return self._graph

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def external_context(self) -> ExternalContext:
        return self._ext

    @property
    def initialized(self) -> bool:
        return self._state is not None

    def get_snapshot(self) -> Snapshot:
        """The last committed snapshot (empty before ``init``)."""
        return self._snapshot

    def mounted_variants(self) -> dict[str, str]:
        """Discriminator path -> label of the mounted variant."""
        if self._state is None:
            return {}
        plan = self._graph.plan_for(self._state.mounts)
        return describe_mounts(plan.branches, self._state.mounts)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def init(self, seed: Mapping[str, Any] | None = None) -> Snapshot:
        """Evaluate every node from scratch, applying ``seed`` where given.

        May be called again to start over; unlike reset(), nothing of the
        current state is carried and seeds are strict writes.
        """
        writes = {key: PendingWrite(value, source="seed") for key, value in (seed or {}).items()}
        return self._transact("init", EngineState(), writes, full=True)

    def set(self, partial: Mapping[str, Any]) -> Snapshot:
        """Write several values at once and settle everything they affect.

        Raises:
            GraphStateError: Before init()
            ValidationError: A value fails its node's schema (nothing is applied)
            CycleError: Effects or remounts kept cascading
            ReentrancyError: Called while this instance is evaluating or notifying
        """
        state = self._require_state("set")
        writes = {key: PendingWrite(value) for key, value in partial.items()}
        return self._transact("set", state.copy(), writes)

    def reset(self, exclude: Iterable[str] = ()) -> Snapshot:
        """Return every node to its default, keeping the excluded keys' values.

        Excluded values survive only where they are still valid under the
        freshly evaluated configuration; otherwise their default applies.
        """
        self._require_state("reset")
        carried = {
            key: PendingWrite(self._snapshot[key], strict=False, source="reset")
            for key in exclude
            if key in self._snapshot
        }
        return self._transact("reset", EngineState(), carried, full=True)

    def set_external_context(self, ext: ExternalContext) -> Snapshot:
        """Replace the external context and re-evaluate every node against it.

        Before init() the context is only stored.
        """
        self._guard("set_external_context")
        if self._state is None:
            self._ext = ext
            return self._snapshot
        return self._transact("set_external_context", self._state.copy(), {}, full=True, ext=ext)

    def subscribe(self, key: str, callback: SnapshotCallback) -> Unsubscribe:
        """Call ``callback(snapshot)`` after each commit that changed ``key``.

        ``"*"`` subscribes to every change.

        Raises:
            UnknownNodeError: ``key`` is neither ``"*"`` nor declared in the graph
        """
        if key != WILDCARD and key not in self._graph.declared_keys:
            raise UnknownNodeError(key)
        return self._subscriptions.subscribe(key, callback)

    def on_unmount(self, callback: UnmountCallback) -> Unsubscribe:
        """Call ``callback(event)`` for every key that leaves the snapshot."""
        return self._unmount_listeners.subscribe(callback)

    # -------------------------------------------------------------------------
    # Transaction
    # -------------------------------------------------------------------------

    def _require_state(self, operation: str) -> EngineState:
        self._guard(operation)
        if self._state is None:
            raise GraphStateError(f"{operation}() called before init()")
        return self._state

    def _guard(self, operation: str) -> None:
        if self._busy is not None:
            raise ReentrancyError(f"Cannot call {operation}() while {self._busy} is in progress on the same instance")

    def _transact(
        self,
        operation: str,
        state: EngineState,
        writes: Mapping[str, PendingWrite],
        *,
        full: bool = False,
        ext: ExternalContext = _CURRENT,
    ) -> Snapshot:
        self._guard(operation)
        if ext is _CURRENT:
            ext = self._ext
        self._busy = operation
        try:
            self._settle(state, writes, ext, full=full)
            snapshot, changed = self._build_snapshot(state)
        except Exception as exc:
            slog.debug("evaluation_rolled_back", operation=operation, error=str(exc), error_type=type(exc).__name__)
            raise
        finally:
            self._busy = None

        previous = self._snapshot
        # A key declared by both the old and the new variant was still unmounted
        # and mounted again; its owning scope tells the two apart
        owners_before = self._graph.plan_for(self._state.mounts).owners if self._state is not None else {}
        owners_after = self._graph.plan_for(state.mounts).owners
        removed = [
            UnmountEvent(key, previous[key], state.removal_reasons.get(key, RemovalReason.UNMOUNTED))
            for key in previous
            if key not in snapshot or owners_before.get(key) != owners_after.get(key)
        ]
        state.removal_reasons.clear()
        self._state = state
        self._snapshot = snapshot
        self._ext = ext
        slog.debug("evaluation_committed", operation=operation, version=snapshot.version, changed=sorted(changed))

        self._busy = "notification"
        try:
            if removed:
                self._unmount_listeners.emit(removed)
            self._subscriptions.notify(snapshot, changed)
        finally:
            self._busy = None
        return snapshot

    def _settle(self, state: EngineState, writes: Mapping[str, PendingWrite], ext: ExternalContext, *, full: bool) -> None:
        """Resolver pass, then effect passes until no effect writes anything."""
        self._resolver.resolve(state, writes, ext, full=full)
        depth = 0
        while True:
            plan = self._graph.plan_for(state.mounts)
            effect_writes = self._effects.run(state, plan, ext)
            if not effect_writes:
                return
            depth += 1
            if depth > self._settings.max_effect_depth:
                raise CycleError(
                    f"Effects kept writing after {self._settings.max_effect_depth} cascading passes",
                    cycle=sorted(effect_writes),
                )
            self._resolver.resolve(state, effect_writes, ext)

    def _build_snapshot(self, state: EngineState) -> tuple[Snapshot, frozenset[str]]:
        plan = self._graph.plan_for(state.mounts)
        values = {key: state.values[key] for key in plan.order if key in state.values}
        meta = {key: state.meta[key] for key in values if key in state.meta}
        requires = {key: state.requires[key] for key in values if key in state.requires}
        candidate = Snapshot(values, meta=meta, requires=requires, version=self._snapshot.version)
        changed = candidate.changed_keys(self._snapshot)
        if not changed:
            return self._snapshot, changed
        return Snapshot(values, meta=meta, requires=requires, version=self._snapshot.version + 1), changed
