# src/tokensim/core/__init__.py
"""Core infrastructure: Definition, Canonical, Configuration, DAG, Ledger, Lineage, Logging."""

from tokensim.core.canonical import (
    CANONICAL_VERSION,
    canonical_json,
    stable_hash,
)
from tokensim.core.config import (
    EngineSettings,
    LedgerSettings,
    LoggingSettings,
    PlaybackSettings,
    load_settings,
)
from tokensim.core.dag import (
    FlowGraph,
    GraphValidationError,
    NodeInfo,
)
from tokensim.core.definition import (
    DefinitionValidation,
    GraphDefinition,
    load_definition_file,
    validate_definition,
)
from tokensim.core.ledger import ActivityLedger
from tokensim.core.lineage import LineageStore
from tokensim.core.logging import (
    configure_logging,
    get_logger,
)
from tokensim.core.snapshots import ScenarioSnapshot, SnapshotManager

__all__ = [
    "CANONICAL_VERSION",
    "ActivityLedger",
    "DefinitionValidation",
    "EngineSettings",
    "FlowGraph",
    "GraphDefinition",
    "GraphValidationError",
    "LedgerSettings",
    "LineageStore",
    "LoggingSettings",
    "NodeInfo",
    "PlaybackSettings",
    "ScenarioSnapshot",
    "SnapshotManager",
    "canonical_json",
    "configure_logging",
    "get_logger",
    "load_definition_file",
    "load_settings",
    "stable_hash",
    "validate_definition",
]
