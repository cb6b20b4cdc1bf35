# tests/conftest.py
"""Shared test fixtures and helpers.

This module provides scenario builders (raw definition dicts) and a
factory for loaded, seeded simulations.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

import os
from collections.abc import Callable
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

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

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Scenario builders
# =============================================================================


def source_node(
    node_id: str,
    *destinations: str,
    interval: int = 1,
    value: int | float | None = None,
    value_min: int | float = 0,
    value_max: int | float = 10,
) -> dict[str, Any]:
    """Raw Source config. A fixed value pins value_min == value_max."""
    if value is not None:
        value_min = value_max = value
    return {
        "kind": "source",
        "node_id": node_id,
        "interval": interval,
        "value_min": value_min,
        "value_max": value_max,
        "outputs": [{"destination_node_id": d} for d in destinations],
    }


def sink_node(node_id: str) -> dict[str, Any]:
    return {"kind": "sink", "node_id": node_id}


def queue_node(
    node_id: str,
    *destinations: str,
    method: str = "sum",
    window: int = 5,
    capacity: int | None = None,
) -> dict[str, Any]:
    return {
        "kind": "queue",
        "node_id": node_id,
        "capacity": capacity,
        "aggregation": {"method": method, "window": window},
        "outputs": [{"destination_node_id": d} for d in destinations],
    }


def process_node(
    node_id: str,
    inputs: list[str],
    outputs: list[tuple[str, str]],
) -> dict[str, Any]:
    """Raw Process config; outputs are (destination, formula) pairs."""
    return {
        "kind": "process",
        "node_id": node_id,
        "inputs": [{"node_id": i} for i in inputs],
        "outputs": [
            {"name": f"out{n}", "destination_node_id": dest, "formula": formula}
            for n, (dest, formula) in enumerate(outputs)
        ],
    }


def scenario(*nodes: dict[str, Any], scenario_id: str = "test") -> dict[str, Any]:
    return {"scenario_id": scenario_id, "name": "Test scenario", "nodes": list(nodes)}


@pytest.fixture
def simple_pipeline() -> dict[str, Any]:
    """Source emitting 5 every tick straight into a sink."""
    return scenario(source_node("src", "sink", value=5), sink_node("sink"))


@pytest.fixture
def make_simulation() -> Callable[..., Any]:
    """Factory: loaded Simulation with a fixed random seed.

    Usage:
        sim = make_simulation(raw, undo_depth=3)
    """
    from tokensim.core.config import EngineSettings
    from tokensim.engine.clock import MockClock
    from tokensim.engine.simulation import Simulation

    def _make(raw: dict[str, Any], **overrides: Any) -> Simulation:
        overrides.setdefault("random_seed", 0)
        sim = Simulation(EngineSettings(**overrides), clock=MockClock())
        outcome = sim.load(raw)
        assert outcome is not None and outcome.ok, outcome.errors if outcome else "ignored"
        return sim

    return _make


__all__ = [
    "process_node",
    "queue_node",
    "scenario",
    "sink_node",
    "source_node",
]
