"""Shared contracts for cross-boundary data types.

Enums, dataclasses and exceptions that travel between the definition
layer, the ledger and lineage stores, and the engine live here.

Import pattern:
    from tokensim.contracts import NodeKind, Token, TickReport
"""

from tokensim.contracts.enums import (
    ActionKind,
    AggregationMethod,
    EnhancedFsmPhase,
    LedgerAction,
    LineageOperation,
    ModulePhase,
    NodeKind,
    ProcessPhase,
    QueuePhase,
    SinkPhase,
    SourcePhase,
    TriggerKind,
)
from tokensim.contracts.errors import (
    CascadeOverflowError,
    DefinitionValidationError,
    ExpressionEvaluationError,
    ExpressionSecurityError,
    ExpressionSyntaxError,
    SimulationError,
    UnknownNodeError,
)
from tokensim.contracts.audit import ActivityLedgerEntry
from tokensim.contracts.identity import LineageRecord, LineageSummary, Token
from tokensim.contracts.results import (
    AggregationResult,
    DeliveryOutcome,
    FormulaResult,
    TickReport,
)
from tokensim.contracts.state import (
    EnhancedFsmState,
    FsmState,
    ModuleState,
    NodeState,
    ProcessState,
    QueueState,
    SinkState,
    SourceState,
    StateMachineInfo,
    TransitionRecord,
)

__all__ = [
    # enums
    "ActionKind",
    "AggregationMethod",
    "EnhancedFsmPhase",
    "LedgerAction",
    "LineageOperation",
    "ModulePhase",
    "NodeKind",
    "ProcessPhase",
    "QueuePhase",
    "SinkPhase",
    "SourcePhase",
    "TriggerKind",
    # errors
    "CascadeOverflowError",
    "DefinitionValidationError",
    "ExpressionEvaluationError",
    "ExpressionSecurityError",
    "ExpressionSyntaxError",
    "SimulationError",
    "UnknownNodeError",
    # audit
    "ActivityLedgerEntry",
    # identity
    "LineageRecord",
    "LineageSummary",
    "Token",
    # results
    "AggregationResult",
    "DeliveryOutcome",
    "FormulaResult",
    "TickReport",
    # state
    "EnhancedFsmState",
    "FsmState",
    "ModuleState",
    "NodeState",
    "ProcessState",
    "QueueState",
    "SinkState",
    "SourceState",
    "StateMachineInfo",
    "TransitionRecord",
]
