# src/formgraph/core/dag/models.py
"""Types for graph declarations and compiled mount plans.

Leaf module: imports nothing from formgraph beyond contracts.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import pydantic
from pydantic import TypeAdapter

from formgraph.contracts.errors import ValidationError
from formgraph.contracts.types import ExternalContext, NodeContext, Setter

if TYPE_CHECKING:
    from formgraph.core.dag.builder import DataGraph

type ComputeFn = Callable[[NodeContext, ExternalContext], Any]
type ConfigFactory = Callable[[NodeContext, ExternalContext], NodeConfig]
type TransformFn = Callable[[Any, NodeContext], Any]
type EffectFn = Callable[[NodeContext, ExternalContext, Setter], None]

ROOT_PATH = ""


def _describe_errors(exc: pydantic.ValidationError) -> str:
    """Collapse pydantic's error list into one line for exception messages."""
    parts = []
    for error in exc.errors(include_url=False):
        loc = ".".join(str(p) for p in error["loc"])
        parts.append(f"{loc}: {error['msg']}" if loc else error["msg"])
    return "; ".join(parts)


@dataclass(frozen=True, slots=True)
class NodeConfig:
    """Resolved configuration of a node for the current context.

    Static nodes carry one NodeConfig for their whole life. Nodes declared
    with a factory get a fresh NodeConfig whenever a dependency changes, so
    the schema, default, visibility and metadata can all follow other nodes.

    Schemas are anything pydantic's TypeAdapter accepts: plain types,
    Literal[...], Annotated[int, Field(ge=1)], BaseModel subclasses.

    Attributes:
        output: Schema every value in the snapshot must satisfy
        input: Schema applied to raw writes before the output schema (None = skip)
        default: Static default value
        compute_default: Default computed from (ctx, ext); wins over ``default``
        when: False hides the node: it leaves the snapshot like an unmounted node
        meta: Free-form metadata published with the snapshot (option lists etc.)
        requires: External resource identifiers this node needs fetched
        transform: Normalizes written values before output validation
    """

    output: Any = Any
    input: Any = None
    default: Any = None
    compute_default: ComputeFn | None = None
    when: bool = True
    meta: Mapping[str, Any] = field(default_factory=dict)
    requires: frozenset[Hashable] = frozenset()
    transform: TransformFn | None = None
    _output_adapter: TypeAdapter[Any] = field(init=False, repr=False, compare=False)
    _input_adapter: TypeAdapter[Any] | None = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "meta", MappingProxyType(dict(self.meta)))
        object.__setattr__(self, "requires", frozenset(self.requires))
        object.__setattr__(self, "_output_adapter", TypeAdapter(self.output))
        object.__setattr__(self, "_input_adapter", None if self.input is None else TypeAdapter(self.input))

    def resolve_default(self, ctx: NodeContext, ext: ExternalContext) -> Any:
        if self.compute_default is not None:
            return self.compute_default(ctx, ext)
        return self.default

    def validate_output(self, key: str, value: Any) -> Any:
        """Validate against the output schema, returning the parsed value.

        Raises:
            ValidationError: If the value does not satisfy the output schema
        """
        try:
            return self._output_adapter.validate_python(value)
        except pydantic.ValidationError as exc:
            raise ValidationError(key, _describe_errors(exc), errors=exc.errors(include_url=False)) from exc

    def accepts(self, value: Any) -> bool:
        """Whether ``value`` passes the output schema unchanged in meaning."""
        try:
            self._output_adapter.validate_python(value)
        except pydantic.ValidationError:
            return False
        return True

    def coerce_write(self, key: str, value: Any, ctx: NodeContext, ext: ExternalContext) -> Any:
        """Run a raw write through input schema, default fallback, transform and output schema.

        A write of None to a node whose output schema rejects None selects
        the default, mirroring an "unset" field.

        Raises:
            ValidationError: If any stage rejects the value
        """
        if self._input_adapter is not None:
            try:
                value = self._input_adapter.validate_python(value)
            except pydantic.ValidationError as exc:
                raise ValidationError(key, _describe_errors(exc), errors=exc.errors(include_url=False)) from exc
        if value is None and not self.accepts(None):
            value = self.resolve_default(ctx, ext)
        if self.transform is not None:
            value = self.transform(value, ctx)
        return self.validate_output(key, value)


@dataclass(frozen=True, slots=True)
class NodeDefinition:
    """Declaration of one node: a key, its static dependencies and how to configure it.

    Exactly one of ``config`` or ``factory`` is set. Computed nodes also set
    ``compute``; their value is always derived and never user-writable.
    """

    key: str
    dependencies: tuple[str, ...] = ()
    config: NodeConfig | None = None
    factory: ConfigFactory | None = None
    compute: ComputeFn | None = None

    def __post_init__(self) -> None:
        if (self.config is None) == (self.factory is None):
            raise TypeError(f"Node '{self.key}' needs exactly one of a NodeConfig or a config factory")
        if self.key in self.dependencies:
            raise ValueError(f"Node '{self.key}' cannot depend on itself")

    @property
    def is_computed(self) -> bool:
        return self.compute is not None

    def resolve_config(self, ctx: NodeContext, ext: ExternalContext) -> NodeConfig:
        if self.factory is None:
            assert self.config is not None
            return self.config
        config = self.factory(ctx, ext)
        if not isinstance(config, NodeConfig):
            raise TypeError(f"Config factory for node '{self.key}' returned {type(config).__name__}, expected NodeConfig")
        return config


@dataclass(frozen=True, slots=True)
class EffectDefinition:
    """A side effect that may write other nodes after its dependencies change."""

    run: EffectFn
    dependencies: tuple[str, ...]
    name: str


@dataclass(frozen=True, slots=True)
class Variant:
    """One mutually exclusive sub-graph, selected by any of its tags."""

    tags: frozenset[Hashable]
    graph: DataGraph
    label: str


@dataclass(frozen=True, slots=True)
class DiscriminatorDefinition:
    """Selects one variant from the resolved value of the discriminant node.

    A plain discriminator has one variant per tag, so every tag change
    remounts. A grouped discriminator maps several tags onto one variant;
    moving between tags of the same group keeps the variant mounted.
    """

    key: str
    variants: tuple[Variant, ...]
    grouped: bool = False
    _index: Mapping[Hashable, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        index: dict[Hashable, int] = {}
        for position, variant in enumerate(self.variants):
            for tag in variant.tags:
                if tag in index:
                    raise ValueError(f"Discriminant value {tag!r} of '{self.key}' is mapped to more than one variant")
                index[tag] = position
        object.__setattr__(self, "_index", MappingProxyType(index))

    @property
    def tags(self) -> frozenset[Hashable]:
        return frozenset(self._index)

    def variant_index(self, value: Any) -> int | None:
        """Variant position for a discriminant value, None when unmapped."""
        try:
            return self._index.get(value)
        except TypeError:
            # Unhashable values can never be tags
            return None


@dataclass(frozen=True, slots=True)
class BranchPoint:
    """A discriminator placed at a concrete path in the compiled scope tree."""

    path: str
    definition: DiscriminatorDefinition
    scopes: tuple[MountScope, ...]

    @property
    def key(self) -> str:
        return self.definition.key


type ScopeEntry = NodeDefinition | EffectDefinition | BranchPoint


@dataclass(frozen=True, slots=True)
class MountScope:
    """Entries owned by the root graph or by one variant, in declaration order."""

    path: str
    entries: tuple[ScopeEntry, ...]

    def iter_nodes(self) -> Iterator[NodeDefinition]:
        """Node definitions in this scope and every nested variant."""
        for entry in self.entries:
            if isinstance(entry, NodeDefinition):
                yield entry
            elif isinstance(entry, BranchPoint):
                for scope in entry.scopes:
                    yield from scope.iter_nodes()

    def iter_branches(self) -> Iterator[BranchPoint]:
        for entry in self.entries:
            if isinstance(entry, BranchPoint):
                yield entry
                for scope in entry.scopes:
                    yield from scope.iter_branches()


@dataclass(frozen=True, slots=True)
class ActivePlan:
    """Evaluation plan for one mount configuration.

    Derived from the definitions reachable through the currently mounted
    variants; cached per configuration by CompiledGraph.

    Attributes:
        order: Active node keys in topological order (ties by declaration order)
        nodes: Active node definitions by key
        owners: Scope path owning each active key
        dependents: Direct dependents of each active key among active nodes
        effects: (effect id, definition) pairs in declaration order
        branches: Discriminators whose owning scope is mounted
    """

    order: tuple[str, ...]
    nodes: Mapping[str, NodeDefinition]
    owners: Mapping[str, str]
    dependents: Mapping[str, frozenset[str]]
    effects: tuple[tuple[str, EffectDefinition], ...]
    branches: tuple[BranchPoint, ...]
    _branches_by_key: Mapping[str, tuple[BranchPoint, ...]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_key: dict[str, list[BranchPoint]] = {}
        for branch in self.branches:
            by_key.setdefault(branch.key, []).append(branch)
        object.__setattr__(self, "_branches_by_key", MappingProxyType({k: tuple(v) for k, v in by_key.items()}))

    def branches_on(self, key: str) -> tuple[BranchPoint, ...]:
        """Active discriminators driven by ``key``."""
        return self._branches_by_key.get(key, ())
