# src/formgraph/engine/discriminator.py
"""Branch reconciliation: mounting and unmounting discriminator variants."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from formgraph.contracts.enums import BranchValuePolicy, RemovalReason
from formgraph.contracts.errors import ValidationError
from formgraph.core.config import EngineSettings
from formgraph.core.dag.graph import nested_branch_paths, scope_keys
from formgraph.core.dag.models import ActivePlan, BranchPoint
from formgraph.engine.state import EngineState

slog = structlog.get_logger(__name__)


class DiscriminatorEngine:
    """Keeps ``state.mounts`` in line with resolved discriminant values.

    Remounting happens inside the resolver's working state, so the removal
    of old-variant keys and the arrival of new-variant keys become visible
    in one commit. Removed keys are recorded in ``state.removal_reasons``
    for the instance's unmount notifications.
    """

    def __init__(self, settings: EngineSettings) -> None:
        self._settings = settings

    def prepare(self, state: EngineState, plan: ActivePlan, dirty: set[str]) -> str | None:
        """Reconcile branches whose discriminant is not part of this sweep.

        Branches whose discriminant is no longer active are unmounted.
        Branches that have never been mounted get their discriminant queued
        so the sweep reaches them.

        Returns:
            Path of the branch that was unmounted (the plan is stale), or None
        """
        for branch in plan.branches:
            if branch.path in state.mounts:
                if branch.key not in plan.nodes:
                    self._unmount(state, plan, branch, dirty)
                    return branch.path
            elif branch.key in state.values:
                dirty.add(branch.key)
        return None

    def reconcile(self, state: EngineState, plan: ActivePlan, branch: BranchPoint, dirty: set[str]) -> bool:
        """Mount the variant selected by the discriminant's current value.

        Returns:
            True if the mounted variant changed (the plan is stale)

        Raises:
            ValidationError: If the discriminant value maps to no variant
        """
        current = state.mounts.get(branch.path)
        target: int | None = None
        if branch.key in state.values:
            value = state.values[branch.key]
            target = branch.definition.variant_index(value)
            if target is None:
                expected = ", ".join(sorted(repr(tag) for tag in branch.definition.tags))
                raise ValidationError(branch.key, f"no variant for discriminant value {value!r} (expected one of {expected})")
        if target == current:
            return False
        if current is not None:
            self._unmount(state, plan, branch, dirty)
        if target is not None:
            state.mounts[branch.path] = target
        slog.info(
            "branch_remounted",
            branch=branch.path,
            previous=None if current is None else branch.definition.variants[current].label,
            mounted=None if target is None else branch.definition.variants[target].label,
        )
        return True

    def _unmount(self, state: EngineState, plan: ActivePlan, branch: BranchPoint, dirty: set[str]) -> None:
        position = state.mounts.pop(branch.path)
        scope = branch.scopes[position]
        for path in nested_branch_paths(scope):
            state.mounts.pop(path, None)
        restore = self._settings.branch_values is BranchValuePolicy.RESTORE
        for key in scope_keys(scope):
            state.forget(key)
            if key not in state.values:
                continue
            value = state.values.pop(key)
            if restore:
                state.dormant[(plan.owners.get(key, scope.path), key)] = value
            state.removal_reasons[key] = RemovalReason.UNMOUNTED
            dirty.update(plan.dependents.get(key, ()))
        self._forget_effects(state, _scope_prefixes(scope.path))

    @staticmethod
    def _forget_effects(state: EngineState, prefixes: tuple[str, ...]) -> None:
        # Remounted effects run again, as on first mount
        for effect_id in [effect_id for effect_id in state.effect_seen if effect_id.startswith(prefixes)]:
            del state.effect_seen[effect_id]


def _scope_prefixes(path: str) -> tuple[str, ...]:
    return (f"{path}#", f"{path}/")


def describe_mounts(plan_branches: Iterable[BranchPoint], mounts: dict[str, int]) -> dict[str, str]:
    """Discriminator path -> mounted variant label, for introspection."""
    return {branch.path: branch.definition.variants[mounts[branch.path]].label for branch in plan_branches if branch.path in mounts}
