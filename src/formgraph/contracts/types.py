# src/formgraph/contracts/types.py
"""Semantic type aliases shared across the graph layer and the engine.

Keys are plain strings at runtime; the aliases exist so signatures say what a
string means.
"""

from collections.abc import Callable, Hashable, Mapping
from typing import Any

type NodeKey = str
"""Name of a node, unique within any mounted composition (e.g. 'workflow')."""

type NodeContext = Mapping[str, Any]
"""Read-only view of the resolved values visible to a compute function."""

type ExternalContext = Any
"""Opaque caller-supplied environment facts (quotas, feature flags)."""

type ResourceId = Hashable
"""Identifier of externally fetched data a node requires (e.g. a model version id)."""

type Setter = Callable[[str, Any], None]
"""Write callback handed to effect bodies: ``set(key, value)``."""

WILDCARD = "*"
"""Subscription key matching every node."""
