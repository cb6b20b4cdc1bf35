"""Token identity and lineage records.

A Token carries identity only. Everything that grows over a token's
lifetime (its history, its descendants) lives in the lineage store,
keyed by token id.
"""

from dataclasses import dataclass, field
from typing import Any

from tokensim.contracts.audit import ActivityLedgerEntry
from tokensim.contracts.enums import LineageOperation


@dataclass(frozen=True)
class Token:
    """A unit of value flowing through the graph.

    Attributes:
        token_id: Unique per run
        value: Payload (number for sources and aggregations, any
            formula result for transformations)
        created_at: Tick at which the token was created
        origin_node_id: Node that created the token
    """

    token_id: str
    value: Any
    created_at: int
    origin_node_id: str

    def as_context(self) -> dict[str, Any]:
        """Render as a formula context value (``input.value`` etc.)."""
        return {
            "id": self.token_id,
            "value": self.value,
            "created_at": self.created_at,
            "origin": self.origin_node_id,
        }


@dataclass
class LineageRecord:
    """Provenance of one token.

    generation_level and ultimate_sources are fixed at creation time from
    the parents' own records. history only grows.
    """

    token_id: str
    origin_node_id: str
    created_at: int
    value: Any
    operation: LineageOperation
    parent_ids: tuple[str, ...]
    generation_level: int
    ultimate_sources: tuple[str, ...]
    history: list[ActivityLedgerEntry] = field(default_factory=list)

    @property
    def is_root(self) -> bool:
        return not self.parent_ids


@dataclass(frozen=True)
class LineageSummary:
    """Aggregate view of a token's provenance."""

    token_id: str
    generation_level: int
    ancestor_count: int
    descendant_count: int
    ultimate_source_count: int
    contributing_nodes: tuple[str, ...]
