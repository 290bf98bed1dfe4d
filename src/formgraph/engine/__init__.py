# src/formgraph/engine/__init__.py
"""Runtime evaluation of compiled graphs."""

from formgraph.engine.instance import GraphInstance

__all__ = ["GraphInstance"]
