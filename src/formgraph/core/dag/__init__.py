# src/formgraph/core/dag/__init__.py
"""Graph declaration, validation and mount planning.

Package re-exports for the declaration API.
"""

from formgraph.core.dag.builder import CompiledGraph, DataGraph, ensure_compiled, is_graph_like
from formgraph.core.dag.graph import DependencyGraph
from formgraph.core.dag.models import ActivePlan, NodeConfig, NodeDefinition
from formgraph.core.dag.presets import enum_node, seed_node, slider_node, text_node, toggle_node

__all__ = [
    "ActivePlan",
    "CompiledGraph",
    "DataGraph",
    "DependencyGraph",
    "NodeConfig",
    "NodeDefinition",
    "ensure_compiled",
    "enum_node",
    "is_graph_like",
    "seed_node",
    "slider_node",
    "text_node",
    "toggle_node",
]
