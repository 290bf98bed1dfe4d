# src/formgraph/core/__init__.py
"""Core infrastructure: graph declaration, configuration, logging, resources, storage."""
