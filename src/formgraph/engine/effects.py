# src/formgraph/engine/effects.py
"""Effect scheduling.

Effects run after a resolver pass has settled. An effect is due when the
values of its dependencies differ from what it observed on its previous
run, or when it has never run since it was mounted. Due effects run in
declaration order against the same settled context; their writes are
returned together so the caller can feed them into the next pass.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any

import structlog

from formgraph.contracts.types import ExternalContext
from formgraph.core.dag.models import ActivePlan, EffectDefinition
from formgraph.engine.state import MISSING, EngineState, PendingWrite

slog = structlog.get_logger(__name__)


def observe(state: EngineState, effect: EffectDefinition) -> tuple[Any, ...]:
    """Current values of an effect's dependencies (MISSING for absent keys)."""
    return tuple(state.values.get(key, MISSING) for key in effect.dependencies)


class EffectRunner:
    """Runs due effects of an active plan and collects their writes."""

    def run(self, state: EngineState, plan: ActivePlan, ext: ExternalContext) -> dict[str, PendingWrite]:
        """Run every due effect once.

        Later writes to the same key win. The observed dependency values are
        recorded before the writes are applied, so an effect only runs again
        when something it depends on changes afterwards.
        """
        ctx = MappingProxyType(dict(state.values))
        writes: dict[str, PendingWrite] = {}
        for effect_id, effect in plan.effects:
            observed = observe(state, effect)
            if state.effect_seen.get(effect_id) == observed:
                continue
            state.effect_seen[effect_id] = observed

            def setter(key: str, value: Any, _source: str = f"effect:{effect.name}") -> None:
                if not isinstance(key, str):
                    raise TypeError(f"Effect writes need a string key, got {type(key).__name__}")
                writes[key] = PendingWrite(value, source=_source)

            slog.debug("effect_run", effect=effect.name, id=effect_id)
            effect.run(ctx, ext, setter)
        return writes
