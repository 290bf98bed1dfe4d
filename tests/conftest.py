# tests/conftest.py
"""Shared test fixtures and hypothesis configuration.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest
import structlog
from hypothesis import Phase, Verbosity, settings

from formgraph.core.config import EngineSettings
from formgraph.core.dag.builder import CompiledGraph
from formgraph.engine.instance import GraphInstance
from tests.fixtures.graphs import build_generation_graph

# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def generation_graph() -> CompiledGraph:
    """The ecosystem/workflow form used across engine tests."""
    return build_generation_graph().build()


@pytest.fixture
def instance(generation_graph: CompiledGraph) -> GraphInstance:
    """An initialized instance of the generation graph with default settings."""
    created = generation_graph.create_instance()
    created.init()
    return created


@pytest.fixture
def restore_settings() -> EngineSettings:
    return EngineSettings(branch_values="restore")


@pytest.fixture
def captured_logs() -> Iterator[list[dict[str, object]]]:
    """Structured log events emitted during the test."""
    with structlog.testing.capture_logs() as logs:
        yield logs
