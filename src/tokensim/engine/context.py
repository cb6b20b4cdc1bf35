# src/tokensim/engine/context.py
"""Run context shared by the step driver and node executors.

The RunContext carries everything an executor might need during a tick:
- The loaded node configs and their mutable states
- The activity ledger and lineage store
- Engine settings and the seeded random generator
- The current tick and the user-visible error list
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np
import structlog

from tokensim.contracts.audit import ActivityLedgerEntry
from tokensim.contracts.enums import LedgerAction
from tokensim.contracts.identity import Token
from tokensim.contracts.state import NodeState
from tokensim.core.config import EngineSettings
from tokensim.core.definition import NodeConfig
from tokensim.core.ledger import ActivityLedger
from tokensim.core.lineage import LineageStore

slog = structlog.get_logger(__name__)


@dataclass
class RunContext:
    """Mutable simulation state for one loaded definition.

    Example:
        ctx.transition(node_id, QueuePhase.ACCUMULATING, "token_received")
        ctx.record(node_id, LedgerAction.ACCUMULATING, value=3, token=token)
    """

    settings: EngineSettings
    configs: dict[str, NodeConfig] = field(default_factory=dict)
    states: dict[str, NodeState] = field(default_factory=dict)
    ledger: ActivityLedger = field(default_factory=ActivityLedger)
    lineage: LineageStore = field(default_factory=LineageStore)
    error_messages: list[str] = field(default_factory=list)
    tick: int = 0
    rng: np.random.Generator = field(default_factory=np.random.default_rng)

    def config(self, node_id: str) -> NodeConfig | None:
        return self.configs.get(node_id)

    def transition(self, node_id: str, to_state: str | Enum, trigger: str) -> None:
        """Move a node's state machine, recording it in transition history."""
        target = to_state.value if isinstance(to_state, Enum) else to_state
        self.states[node_id].state_machine.transition(target, self.tick, trigger)

    def record(
        self,
        node_id: str,
        action: LedgerAction,
        *,
        value: Any = None,
        details: str = "",
        token: Token | None = None,
        related: Sequence[Token] = (),
    ) -> ActivityLedgerEntry | None:
        """Append a ledger entry using the node's authoritative state.

        The entry is added to the history of token and of every token in
        related. An unknown node id is reported in error_messages rather
        than raised.
        """
        state = self.states.get(node_id)
        if state is None or not self.ledger.has_node(node_id):
            message = f"Logging error: Invalid node id '{node_id}' for action '{action.value}'"
            self.error_messages.append(message)
            slog.warning("Ledger record for unknown node", node_id=node_id, action=action.value)
            return None

        buffer_size, output_buffer_size = state.buffer_sizes()
        entry = self.ledger.record(
            node_id,
            action,
            tick=self.tick,
            value=value,
            details=details,
            state=state.state_machine.current_state,
            buffer_size=buffer_size,
            output_buffer_size=output_buffer_size,
            token_id=token.token_id if token else None,
        )
        if token is not None:
            self.lineage.append_history(token.token_id, entry)
        for other in related:
            self.lineage.append_history(other.token_id, entry)
        return entry

    def report_error(self, node_id: str, message: str, *, details: str = "") -> None:
        """Record an isolated failure: ledger error entry plus user message."""
        self.error_messages.append(message)
        slog.warning("Simulation error", node_id=node_id, tick=self.tick, error=message)
        if node_id in self.states:
            self.record(node_id, LedgerAction.ERROR, details=details or message)
