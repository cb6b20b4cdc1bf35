"""Activity ledger records.

These are the domain log of a simulation: every state change and token
movement a node makes. They are distinct from diagnostic logging.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from tokensim.contracts.enums import LedgerAction


@dataclass(frozen=True)
class ActivityLedgerEntry:
    """One entry in a node's (and the global) activity ledger.

    state, buffer_size and output_buffer_size are read from the node's
    state at the moment of recording, so the entry reflects what the
    node actually held rather than what the caller believed.
    """

    tick: int
    sequence: int
    node_id: str
    action: LedgerAction
    value: Any = None
    details: str = ""
    state: str | None = None
    buffer_size: int = 0
    output_buffer_size: int = 0
    token_id: str | None = None
    recorded_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly form used by the CLI."""
        return {
            "tick": self.tick,
            "sequence": self.sequence,
            "node_id": self.node_id,
            "action": self.action.value,
            "value": self.value,
            "details": self.details,
            "state": self.state,
            "buffer_size": self.buffer_size,
            "output_buffer_size": self.output_buffer_size,
            "token_id": self.token_id,
        }
