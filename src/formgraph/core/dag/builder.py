# src/formgraph/core/dag/builder.py
"""DataGraph declaration API and compilation into CompiledGraph.

DataGraph is an immutable template: every builder call returns a new graph,
so shared sub-graphs (a common model selector, a seed field) can be merged
into many parents without aliasing. Key uniqueness is enforced on every
call; unknown references and cycles are checked by build(), which returns
the CompiledGraph that instances are created from.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

import structlog

from formgraph.contracts.errors import UnknownNodeError
from formgraph.core.dag.graph import (
    build_plan,
    check_composition,
    index_scopes,
    scope_keys,
)
from formgraph.core.dag.models import (
    ROOT_PATH,
    ActivePlan,
    BranchPoint,
    ComputeFn,
    ConfigFactory,
    DiscriminatorDefinition,
    EffectDefinition,
    EffectFn,
    MountScope,
    NodeConfig,
    NodeDefinition,
    ScopeEntry,
    Variant,
)

if TYPE_CHECKING:
    from formgraph.core.config import EngineSettings
    from formgraph.engine.instance import GraphInstance

slog = structlog.get_logger(__name__)

type _Entry = NodeDefinition | EffectDefinition | DiscriminatorDefinition


class DataGraph:
    """Immutable, ordered template of nodes, discriminators and effects.

    Example:
        graph = (
            DataGraph()
            .node("ecosystem", enum_node(["SD1", "SDXL"], default="SDXL"))
            .node("steps", lambda ctx, ext: slider_node(1, 50 if ctx["ecosystem"] == "SDXL" else 30, default=20), ["ecosystem"])
            .computed("family", lambda ctx, ext: "legacy" if ctx["ecosystem"] == "SD1" else "modern", ["ecosystem"])
            .discriminator("family", {"legacy": legacy_graph, "modern": modern_graph})
        )
        instance = graph.build().create_instance()
        instance.init({"ecosystem": "SD1"})
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[_Entry] = ()) -> None:
        self._entries: tuple[_Entry, ...] = tuple(entries)

    def __repr__(self) -> str:
        return f"DataGraph(keys={sorted(self.keys())!r})"

    @property
    def entries(self) -> tuple[_Entry, ...]:
        return self._entries

    def keys(self) -> frozenset[str]:
        """Every node key declared in this graph, including all variants."""
        return scope_keys(_compile_scope(self, ROOT_PATH))

    def root_keys(self) -> tuple[str, ...]:
        """Keys declared at this level (not inside variants), in order."""
        return tuple(entry.key for entry in self._entries if isinstance(entry, NodeDefinition))

    # -------------------------------------------------------------------------
    # Declaration
    # -------------------------------------------------------------------------

    def node(
        self,
        key: str,
        config: NodeConfig | ConfigFactory,
        dependencies: Iterable[str] = (),
    ) -> DataGraph:
        """Declare a writable node.

        Args:
            key: Node key, unique within the composition
            config: Static NodeConfig, or a factory ``(ctx, ext) -> NodeConfig``
                re-run whenever a dependency changes
            dependencies: Keys the factory (or the default) reads

        Raises:
            DuplicateNodeError: If ``key`` is already declared
        """
        if isinstance(config, NodeConfig):
            definition = NodeDefinition(key=key, dependencies=tuple(dependencies), config=config)
        elif callable(config):
            definition = NodeDefinition(key=key, dependencies=tuple(dependencies), factory=config)
        else:
            raise TypeError(f"Node '{key}' config must be a NodeConfig or a callable, got {type(config).__name__}")
        return self._extend(definition)

    def computed(
        self,
        key: str,
        compute: ComputeFn,
        dependencies: Iterable[str],
        *,
        output: Any = Any,
        meta: Mapping[str, Any] | None = None,
    ) -> DataGraph:
        """Declare a derived node whose value is always ``compute(ctx, ext)``."""
        config = NodeConfig(output=output, meta=meta or {})
        definition = NodeDefinition(key=key, dependencies=tuple(dependencies), config=config, compute=compute)
        return self._extend(definition)

    def effect(self, run: EffectFn, dependencies: Iterable[str], *, name: str | None = None) -> DataGraph:
        """Declare a side effect ``run(ctx, ext, set)`` triggered by its dependencies."""
        effect_name = name or getattr(run, "__qualname__", repr(run))
        return self._extend(EffectDefinition(run=run, dependencies=tuple(dependencies), name=effect_name))

    def discriminator(self, key: str, variants: Mapping[Hashable, DataGraph]) -> DataGraph:
        """Mount exactly one sub-graph per value of ``key``.

        Every distinct value is its own variant, so any change of value
        remounts even if two values share a sub-graph object.
        """
        if not variants:
            raise ValueError(f"Discriminator on '{key}' needs at least one variant")
        definition = DiscriminatorDefinition(
            key=key,
            variants=tuple(Variant(tags=frozenset([tag]), graph=graph, label=str(tag)) for tag, graph in variants.items()),
        )
        return self._extend(definition)

    def grouped_discriminator(
        self,
        key: str,
        groups: Iterable[tuple[Iterable[Hashable], DataGraph]],
    ) -> DataGraph:
        """Mount one sub-graph per group of discriminant values.

        Moving between values of the same group keeps the variant mounted
        (no remount, no value churn).
        """
        variants = []
        for tags, graph in groups:
            tag_set = frozenset(tags)
            if not tag_set:
                raise ValueError(f"Grouped discriminator on '{key}' has a group with no values")
            variants.append(Variant(tags=tag_set, graph=graph, label="|".join(sorted(map(str, tag_set)))))
        if not variants:
            raise ValueError(f"Grouped discriminator on '{key}' needs at least one group")
        return self._extend(DiscriminatorDefinition(key=key, variants=tuple(variants), grouped=True))

    def merge(self, child: DataGraph) -> DataGraph:
        """Copy another graph's nodes, discriminators and effects into this one.

        Raises:
            DuplicateNodeError: If any key collides with an existing one
        """
        return self._extend(*child.entries)

    def _extend(self, *entries: _Entry) -> DataGraph:
        candidate = DataGraph((*self._entries, *entries))
        check_composition(_compile_scope(candidate, ROOT_PATH), full=False)
        return candidate

    # -------------------------------------------------------------------------
    # Compilation
    # -------------------------------------------------------------------------

    def build(self) -> CompiledGraph:
        """Validate the whole composition and freeze it for evaluation.

        Each variant scope is checked against what can be mounted alongside
        it, so the cost grows with the number of scopes rather than with the
        number of mount configurations.

        Raises:
            UnknownNodeError: A dependency, effect dependency or discriminant is undeclared
            DuplicateNodeError: Two definitions that can be mounted together share a key
            CycleError: Declared dependencies form a cycle in some configuration
        """
        root = _compile_scope(self, ROOT_PATH)
        declared = scope_keys(root)
        for definition in root.iter_nodes():
            for dependency in definition.dependencies:
                if dependency not in declared:
                    raise UnknownNodeError(dependency, f"Node '{definition.key}' depends on undeclared node '{dependency}'")
        scopes, _ = index_scopes(root)
        for scope in scopes.values():
            for entry in scope.entries:
                if not isinstance(entry, EffectDefinition):
                    continue
                for dependency in entry.dependencies:
                    if dependency not in declared:
                        raise UnknownNodeError(dependency, f"Effect '{entry.name}' depends on undeclared node '{dependency}'")
        check_composition(root, full=True)
        slog.debug("graph_built", nodes=len(declared), scopes=len(scopes))
        return CompiledGraph(self, root)


def _compile_scope(graph: DataGraph, path: str) -> MountScope:
    """Turn a DataGraph into a MountScope rooted at ``path``."""
    entries: list[ScopeEntry] = []
    for entry in graph.entries:
        if isinstance(entry, DiscriminatorDefinition):
            branch_path = f"{path}/{entry.key}"
            scopes = tuple(_compile_scope(variant.graph, f"{branch_path}[{position}]") for position, variant in enumerate(entry.variants))
            entries.append(BranchPoint(path=branch_path, definition=entry, scopes=scopes))
        else:
            entries.append(entry)
    return MountScope(path=path, entries=tuple(entries))


class CompiledGraph:
    """A validated graph ready to create instances.

    Plans are derived lazily per mount configuration and cached; the cache
    belongs to this object, there is no module-level state.
    """

    def __init__(self, template: DataGraph, root: MountScope) -> None:
        self._template = template
        self._root = root
        self._declared = scope_keys(root)
        self._scopes, self._branches = index_scopes(root)
        self._plans: dict[frozenset[tuple[str, int]], ActivePlan] = {}

    @property
    def template(self) -> DataGraph:
        return self._template

    @property
    def root(self) -> MountScope:
        return self._root

    @property
    def declared_keys(self) -> frozenset[str]:
        return self._declared

    def scope(self, path: str) -> MountScope:
        return self._scopes[path]

    def branch(self, path: str) -> BranchPoint:
        return self._branches[path]

    def plan_for(self, mounts: Mapping[str, int]) -> ActivePlan:
        """Evaluation plan for the given mounted variants (cached)."""
        cache_key = frozenset(mounts.items())
        plan = self._plans.get(cache_key)
        if plan is None:
            plan = build_plan(self._root, mounts)
            self._plans[cache_key] = plan
        return plan

    def create_instance(self, ext: Any = None, *, settings: EngineSettings | None = None) -> GraphInstance:
        """Create a mutable instance; call ``init()`` on it before use."""
        from formgraph.engine.instance import GraphInstance

        return GraphInstance(self, ext, settings=settings)

    def describe(self) -> dict[str, Any]:
        """Structural summary (nodes, branches, effects) for tooling."""
        nodes = []
        for definition in self._root.iter_nodes():
            nodes.append(
                {
                    "key": definition.key,
                    "kind": "computed" if definition.is_computed else "node",
                    "dynamic": definition.factory is not None,
                    "dependencies": list(definition.dependencies),
                }
            )
        branches = [
            {
                "path": branch.path,
                "key": branch.key,
                "grouped": branch.definition.grouped,
                "variants": [
                    {"label": variant.label, "keys": sorted(scope_keys(scope))}
                    for variant, scope in zip(branch.definition.variants, branch.scopes, strict=True)
                ],
            }
            for branch in self._root.iter_branches()
        ]
        effects = [
            {"path": path, "name": definition.name, "dependencies": list(definition.dependencies)}
            for path, scope in self._scopes.items()
            for definition in scope.entries
            if isinstance(definition, EffectDefinition)
        ]
        return {"nodes": nodes, "branches": branches, "effects": effects, "root_order": list(self.plan_for({}).order)}


def is_graph_like(value: object) -> bool:
    """Whether ``value`` can be turned into a CompiledGraph."""
    return isinstance(value, DataGraph | CompiledGraph)


def ensure_compiled(value: DataGraph | CompiledGraph) -> CompiledGraph:
    if isinstance(value, CompiledGraph):
        return value
    return value.build()


__all__ = [
    "CompiledGraph",
    "DataGraph",
    "ensure_compiled",
    "is_graph_like",
]
