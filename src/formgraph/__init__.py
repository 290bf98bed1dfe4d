"""
formgraph: reactive parameter-dependency graphs for dynamic configuration forms.

Declare fields, their dependencies, mutually exclusive branches and effects
once as an immutable DataGraph, then drive a mutable GraphInstance with
init/set/reset and observe settled snapshots.
"""

__version__ = "0.1.0"
