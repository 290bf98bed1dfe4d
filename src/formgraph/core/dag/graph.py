# src/formgraph/core/dag/graph.py
"""DependencyGraph class and mount-plan derivation.

The graph layer is static: it knows which definitions are reachable for a
given set of mounted variants and in which order they must be computed.
Runtime values live in the engine.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from types import MappingProxyType

import networkx as nx
from networkx import DiGraph

from formgraph.contracts.errors import CycleError, DuplicateNodeError, UnknownNodeError
from formgraph.core.dag.models import (
    ActivePlan,
    BranchPoint,
    EffectDefinition,
    MountScope,
    NodeDefinition,
)


class DependencyGraph:
    """Static dependency DAG over node keys.

    Wraps a NetworkX DiGraph. Edges point from a dependency to its
    dependent, so successors are the nodes to recompute after a change.
    Dependencies on keys outside the graph (unmounted or undeclared) are
    dropped; callers validate declared keys separately.
    """

    def __init__(self) -> None:
        self._graph: DiGraph[str] = nx.DiGraph()

    @classmethod
    def from_definitions(cls, definitions: Iterable[NodeDefinition]) -> DependencyGraph:
        """Build from definitions, recording declaration order as the tie-breaker."""
        graph = cls()
        definitions = list(definitions)
        for index, definition in enumerate(definitions):
            graph.add_node(definition.key, index=index)
        for definition in definitions:
            for dependency in definition.dependencies:
                if graph.has_node(dependency):
                    graph.add_dependency(definition.key, dependency)
        return graph

    def has_node(self, key: str) -> bool:
        """Check if node exists."""
        return self._graph.has_node(key)

    def add_node(self, key: str, *, index: int) -> None:
        """Add a node; ``index`` orders otherwise unordered nodes."""
        if self._graph.has_node(key):
            raise DuplicateNodeError(key)
        self._graph.add_node(key, index=index)

    def add_dependency(self, dependent: str, dependency: str) -> None:
        """Declare that ``dependent`` is computed from ``dependency``."""
        self._graph.add_edge(dependency, dependent)

    def is_acyclic(self) -> bool:
        """Check if the graph is acyclic (a valid DAG)."""
        return nx.is_directed_acyclic_graph(self._graph)

    def validate(self) -> None:
        """Raise CycleError if the declared dependencies contain a cycle."""
        if self.is_acyclic():
            return
        try:
            cycle = nx.find_cycle(self._graph)
        except nx.NetworkXNoCycle:
            raise CycleError("Dependency graph contains a cycle") from None
        keys = [edge[0] for edge in cycle]
        raise CycleError(f"Dependency cycle: {' -> '.join([*keys, keys[0]])}", cycle=keys)

    def topological_order(self) -> list[str]:
        """Keys with every dependency before its dependents.

        Independent keys keep declaration order so evaluation (and the
        snapshot's key order) is deterministic.

        Raises:
            CycleError: If the graph has a cycle
        """
        self.validate()
        return list(nx.lexicographical_topological_sort(self._graph, key=lambda key: self._graph.nodes[key]["index"]))

    def dependents(self, key: str) -> frozenset[str]:
        """Keys that directly depend on ``key``."""
        return frozenset(self._graph.successors(key))


# =============================================================================
# Mount plans
# =============================================================================


def collect_active(
    scope: MountScope,
    mounts: Mapping[str, int],
) -> tuple[list[tuple[NodeDefinition, str]], list[tuple[str, EffectDefinition]], list[BranchPoint]]:
    """Walk the scope tree following ``mounts``.

    Returns:
        (node definition, owning scope path) pairs, (effect id, effect) pairs
        and reachable branch points, all in declaration order.

    Raises:
        DuplicateNodeError: If two reachable definitions share a key
    """
    nodes: list[tuple[NodeDefinition, str]] = []
    effects: list[tuple[str, EffectDefinition]] = []
    branches: list[BranchPoint] = []
    seen: set[str] = set()

    def walk(current: MountScope) -> None:
        effect_index = 0
        for entry in current.entries:
            if isinstance(entry, NodeDefinition):
                if entry.key in seen:
                    raise DuplicateNodeError(entry.key)
                seen.add(entry.key)
                nodes.append((entry, current.path))
            elif isinstance(entry, EffectDefinition):
                effects.append((f"{current.path}#{effect_index}", entry))
                effect_index += 1
            else:
                branches.append(entry)
                mounted = mounts.get(entry.path)
                if mounted is not None:
                    walk(entry.scopes[mounted])

    walk(scope)
    return nodes, effects, branches


def build_plan(scope: MountScope, mounts: Mapping[str, int]) -> ActivePlan:
    """Derive the evaluation plan for one mount configuration."""
    nodes, effects, branches = collect_active(scope, mounts)
    graph = DependencyGraph.from_definitions(definition for definition, _ in nodes)
    order = graph.topological_order()
    definitions = {definition.key: definition for definition, _ in nodes}
    return ActivePlan(
        order=tuple(order),
        nodes=MappingProxyType(definitions),
        owners=MappingProxyType({definition.key: owner for definition, owner in nodes}),
        dependents=MappingProxyType({key: graph.dependents(key) for key in order}),
        effects=tuple(effects),
        branches=tuple(branches),
    )


def scope_keys(scope: MountScope) -> frozenset[str]:
    """Every node key declared anywhere under ``scope``."""
    return frozenset(definition.key for definition in scope.iter_nodes())


def index_scopes(scope: MountScope) -> tuple[Mapping[str, MountScope], Mapping[str, BranchPoint]]:
    """Lookup tables from path to scope and from path to branch point."""
    scopes: dict[str, MountScope] = {scope.path: scope}
    branches: dict[str, BranchPoint] = {}
    for branch in scope.iter_branches():
        branches[branch.path] = branch
        for variant_scope in branch.scopes:
            scopes[variant_scope.path] = variant_scope
    return MappingProxyType(scopes), MappingProxyType(branches)


def nested_branch_paths(scope: MountScope) -> Sequence[str]:
    """Paths of discriminators nested anywhere inside ``scope``."""
    return [branch.path for branch in scope.iter_branches()]


# =============================================================================
# Composition checks
# =============================================================================


def check_composition(root: MountScope, *, full: bool = True) -> None:
    """Validate a scope tree without enumerating its mount configurations.

    Each scope is checked against the keys that can be mounted alongside it:
    its ancestors' own keys and everything under sibling discriminators.
    Variants of the same discriminator never coexist, so they may reuse keys.

    Args:
        root: Compiled root scope
        full: Also check discriminants and dependency cycles (``build()``);
            builder calls only need the duplicate check

    Raises:
        DuplicateNodeError: Two definitions that can be mounted together share a key
        UnknownNodeError: A discriminant is not declared in or above its scope
        CycleError: Definitions that can be mounted together depend on each other
    """
    placed: list[tuple[NodeDefinition, str, Mapping[str, int]]] = []

    def walk(scope: MountScope, alongside: frozenset[str], above: frozenset[str], selection: Mapping[str, int]) -> None:
        own: set[str] = set()
        for entry in scope.entries:
            if isinstance(entry, NodeDefinition):
                if entry.key in own or entry.key in alongside:
                    raise DuplicateNodeError(entry.key)
                own.add(entry.key)
                placed.append((entry, scope.path, selection))
        branches = [entry for entry in scope.entries if isinstance(entry, BranchPoint)]
        subtree = {branch.path: frozenset().union(*(scope_keys(variant) for variant in branch.scopes)) for branch in branches}
        visible = above | own
        for branch in branches:
            if full and branch.key not in visible:
                raise UnknownNodeError(branch.key, f"Discriminant '{branch.key}' is not declared outside its own variants")
            siblings = frozenset().union(*(keys for path, keys in subtree.items() if path != branch.path))
            for position, variant in enumerate(branch.scopes):
                walk(variant, alongside | own | siblings, visible, {**selection, branch.path: position})

    walk(root, frozenset(), frozenset(), {})
    if full:
        _check_cycles(placed)


def _coexist(left: Mapping[str, int], right: Mapping[str, int]) -> bool:
    """Whether two variant selections can be mounted at the same time."""
    return all(left[path] == right[path] for path in left.keys() & right.keys())


def _check_cycles(placed: Sequence[tuple[NodeDefinition, str, Mapping[str, int]]]) -> None:
    graph: DiGraph[tuple[str, str]] = nx.DiGraph()
    by_key: dict[str, list[tuple[str, Mapping[str, int]]]] = {}
    for definition, owner, selection in placed:
        graph.add_node((owner, definition.key), selection=selection)
        by_key.setdefault(definition.key, []).append((owner, selection))
    for definition, owner, selection in placed:
        for dependency in definition.dependencies:
            for other_owner, other_selection in by_key.get(dependency, ()):
                if _coexist(selection, other_selection):
                    graph.add_edge((other_owner, dependency), (owner, definition.key))
    if nx.is_directed_acyclic_graph(graph):
        return
    # Edges only join definitions that coexist pairwise; a cycle is real
    # when all of its members do
    for cycle in nx.simple_cycles(graph):
        selections = [graph.nodes[node]["selection"] for node in cycle]
        if all(_coexist(a, b) for i, a in enumerate(selections) for b in selections[i + 1 :]):
            keys = [key for _, key in cycle]
            raise CycleError(f"Dependency cycle: {' -> '.join([*keys, keys[0]])}", cycle=keys)
