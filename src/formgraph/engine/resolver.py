# src/formgraph/engine/resolver.py
"""Topological re-evaluation of dirty nodes over the active plan.

A pass starts from the written keys (or from every key for init, reset and
external-context changes), walks the active plan in topological order and
re-evaluates each node that is dirty or not yet resolved. A changed value
marks its direct dependents dirty, so the pass covers exactly the
transitive closure of what changed. Discriminants are reconciled right
after they are evaluated; a remount re-derives the plan and continues the
same pass on the new one.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import structlog

from formgraph.contracts.enums import BranchValuePolicy, InactiveWritePolicy, RemovalReason
from formgraph.contracts.errors import CycleError, ValidationError
from formgraph.contracts.types import ExternalContext
from formgraph.core.config import EngineSettings
from formgraph.core.dag.builder import CompiledGraph
from formgraph.core.dag.models import ActivePlan, NodeConfig, NodeDefinition
from formgraph.engine.discriminator import DiscriminatorEngine
from formgraph.engine.state import MISSING, EngineState, PendingWrite

slog = structlog.get_logger(__name__)


class Resolver:
    """Runs resolver passes against an EngineState working copy."""

    def __init__(self, graph: CompiledGraph, settings: EngineSettings) -> None:
        self._graph = graph
        self._settings = settings
        self._branches = DiscriminatorEngine(settings)

    def resolve(
        self,
        state: EngineState,
        writes: Mapping[str, PendingWrite],
        ext: ExternalContext,
        *,
        full: bool = False,
    ) -> None:
        """Apply ``writes`` and settle every affected node.

        Args:
            state: Working copy, mutated in place
            writes: Pending writes by key
            ext: External context handed to factories and compute functions
            full: Re-evaluate every active node, not just the written ones

        Raises:
            ValidationError: A strict write, a default or a discriminant is invalid
            CycleError: A discriminator was remounted again more than
                ``max_remounts`` times (an oscillation)
        """
        pass_writes = _PassWrites(pending=dict(writes))
        plan = self._graph.plan_for(state.mounts)
        dirty = set(plan.order) if full else {key for key in pass_writes.pending if key in plan.nodes}
        # Only a branch that changes again within the pass counts towards the cap
        changed: set[str] = set()
        remounts = 0
        while True:
            path = self._branches.prepare(state, plan, dirty) or self._sweep(state, plan, dirty, pass_writes, ext)
            if path is None:
                break
            if path in changed:
                remounts += 1
                if remounts > self._settings.max_remounts:
                    raise CycleError(
                        f"Discriminator '{path}' remounted more than {self._settings.max_remounts} times in one pass",
                        cycle=sorted(state.mounts),
                    )
            changed.add(path)
            plan = self._graph.plan_for(state.mounts)
        self._settle_leftovers(state, pass_writes)
        slog.debug("resolver_pass_settled", full=full, remounts=remounts, active=len(plan.order))

    def _sweep(
        self,
        state: EngineState,
        plan: ActivePlan,
        dirty: set[str],
        writes: _PassWrites,
        ext: ExternalContext,
    ) -> str | None:
        """One walk over ``plan``; the path of a remounted branch if the plan went stale."""
        for key in plan.order:
            if key not in dirty and (key in state.values or key in state.hidden):
                continue
            dirty.discard(key)
            self._evaluate(state, plan, key, dirty, writes, ext)
            for branch in plan.branches_on(key):
                if self._branches.reconcile(state, plan, branch, dirty):
                    return branch.path
        return None

    def _evaluate(
        self,
        state: EngineState,
        plan: ActivePlan,
        key: str,
        dirty: set[str],
        writes: _PassWrites,
        ext: ExternalContext,
    ) -> None:
        definition = plan.nodes[key]
        ctx = MappingProxyType(state.values)
        config = definition.resolve_config(ctx, ext)
        old = state.values.get(key, MISSING)

        if not config.when:
            state.forget(key)
            state.hidden.add(key)
            if old is not MISSING:
                if self._settings.branch_values is BranchValuePolicy.RESTORE:
                    state.dormant[(plan.owners[key], key)] = old
                del state.values[key]
                state.removal_reasons[key] = RemovalReason.HIDDEN
                dirty.update(plan.dependents[key])
            return

        state.hidden.discard(key)
        value = self._resolve_value(state, plan, definition, config, old, writes, ext)
        if config.meta:
            state.meta[key] = config.meta
        else:
            state.meta.pop(key, None)
        if config.requires:
            state.requires[key] = config.requires
        else:
            state.requires.pop(key, None)
        if old is MISSING or old != value:
            state.values[key] = value
            dirty.update(plan.dependents[key])

    def _resolve_value(
        self,
        state: EngineState,
        plan: ActivePlan,
        definition: NodeDefinition,
        config: NodeConfig,
        old: Any,
        writes: _PassWrites,
        ext: ExternalContext,
    ) -> Any:
        key = definition.key
        ctx = MappingProxyType(state.values)
        write = writes.pending.pop(key, None)
        if write is not None and write.strict:
            owner = plan.owners[key]
            prior = old if old is not MISSING else state.dormant.get((owner, key), MISSING)
            writes.applied[key] = (owner, prior, write.source)

        if definition.compute is not None:
            value = config.validate_output(key, definition.compute(ctx, ext))
            # Echoing the current (or new) derived value back is allowed, so
            # set(get_snapshot()) stays a no-op
            if write is not None and write.strict and write.value != value and write.value != old:
                raise ValidationError(key, "computed node is read-only")
            return value

        if write is not None:
            try:
                return config.coerce_write(key, write.value, ctx, ext)
            except ValidationError:
                if write.strict:
                    raise
                slog.debug("carried_value_dropped", key=key, source=write.source)

        if old is not MISSING and config.accepts(old):
            return old

        if self._settings.branch_values is BranchValuePolicy.RESTORE:
            stashed = state.dormant.pop((plan.owners[key], key), MISSING)
            if stashed is not MISSING and config.accepts(stashed):
                return stashed

        return config.validate_output(key, config.resolve_default(ctx, ext))

    def _settle_leftovers(self, state: EngineState, writes: _PassWrites) -> None:
        """Deal with strict writes whose node is not active and visible once the pass settled.

        That covers writes that never reached a node as well as writes that
        were applied and then unmounted or hidden later in the same pass.
        """
        leftovers = [(key, write.source) for key, write in writes.pending.items() if write.strict]
        for key, (owner, prior, source) in writes.applied.items():
            if key in state.values:
                continue
            leftovers.append((key, source))
            if self._settings.branch_values is BranchValuePolicy.RESTORE:
                # The unmount stashed the written value; keep what was there before
                if prior is MISSING:
                    state.dormant.pop((owner, key), None)
                else:
                    state.dormant[(owner, key)] = prior
        for key, source in leftovers:
            if self._settings.inactive_writes is InactiveWritePolicy.REJECT:
                if key not in self._graph.declared_keys:
                    raise ValidationError(key, "no such node in this graph")
                raise ValidationError(key, "node is not mounted or is hidden")
            slog.info("inactive_write_discarded", key=key, source=source, declared=key in self._graph.declared_keys)


@dataclass(slots=True)
class _PassWrites:
    """Writes for one resolver pass.

    Attributes:
        pending: Writes not yet handed to their node
        applied: Key -> (owner scope, value before the write, source) for
            strict writes already handed to their node
    """

    pending: dict[str, PendingWrite]
    applied: dict[str, tuple[str, Any, str]] = field(default_factory=dict)
