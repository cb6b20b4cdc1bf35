# src/tokensim/core/lineage.py
"""Token lineage store.

The single source of provenance for a run. Every token created by the
engine is registered here with its parents; edges run parent -> child
with the parent's ordinal among the child's sources. Records outlive the
buffers and ledgers that held the token, so a sink can explain a token
whose ancestors were evicted long ago.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import networkx as nx
from networkx import DiGraph

from tokensim.contracts.audit import ActivityLedgerEntry
from tokensim.contracts.enums import LineageOperation
from tokensim.contracts.identity import LineageRecord, LineageSummary, Token


class LineageStore:
    """Provenance graph keyed by token id.

    Example:
        store = LineageStore()
        store.register(root, parents=(), operation=LineageOperation.SOURCE)
        store.register(child, parents=(root.token_id,), operation=LineageOperation.TRANSFORMED)
        store.get(child.token_id).generation_level  # 1
    """

    def __init__(self) -> None:
        self._graph: DiGraph[str] = nx.DiGraph()
        self._names: dict[str, str] = {}

    def __contains__(self, token_id: object) -> bool:
        return isinstance(token_id, str) and self._graph.has_node(token_id)

    def __len__(self) -> int:
        return self._graph.number_of_nodes()

    def set_node_names(self, names: dict[str, str]) -> None:
        """Display names used by lineage_chain, keyed by node id."""
        self._names = dict(names)

    # === Recording ===

    def register(
        self,
        token: Token,
        *,
        parents: Sequence[str],
        operation: LineageOperation,
    ) -> LineageRecord:
        """Record a new token and its parents.

        generation_level and ultimate_sources come only from the parents'
        own records. A parent with no record counts as an ultimate source
        at generation 0.

        Raises:
            ValueError: If the token id is already registered
        """
        if token.token_id in self:
            raise ValueError(f"Token already registered: {token.token_id}")

        parent_ids = tuple(dict.fromkeys(parents))
        if parent_ids:
            levels = []
            ultimate: dict[str, None] = {}
            for parent_id in parent_ids:
                parent = self.get(parent_id)
                if parent is None:
                    levels.append(0)
                    ultimate[parent_id] = None
                else:
                    levels.append(parent.generation_level)
                    ultimate.update(dict.fromkeys(parent.ultimate_sources))
            generation_level = max(levels) + 1
            ultimate_sources = tuple(ultimate)
        else:
            generation_level = 0
            ultimate_sources = (token.token_id,)

        record = LineageRecord(
            token_id=token.token_id,
            origin_node_id=token.origin_node_id,
            created_at=token.created_at,
            value=token.value,
            operation=operation,
            parent_ids=parent_ids,
            generation_level=generation_level,
            ultimate_sources=ultimate_sources,
        )
        self._graph.add_node(token.token_id, record=record)
        for ordinal, parent_id in enumerate(parent_ids):
            if parent_id in self:
                self._graph.add_edge(parent_id, token.token_id, ordinal=ordinal)
        return record

    def append_history(self, token_id: str, entry: ActivityLedgerEntry) -> None:
        """Add a ledger entry to a token's history. Unknown ids are ignored."""
        record = self.get(token_id)
        if record is not None:
            record.history.append(entry)

    def clear(self) -> None:
        self._graph.clear()

    # === Queries ===

    def get(self, token_id: str) -> LineageRecord | None:
        if token_id not in self:
            return None
        record: LineageRecord = self._graph.nodes[token_id]["record"]
        return record

    def history(self, token_id: str) -> list[ActivityLedgerEntry]:
        record = self.get(token_id)
        return list(record.history) if record else []

    def ancestors(self, token_id: str) -> list[LineageRecord]:
        """All recorded ancestors, nearest generation first."""
        if token_id not in self:
            return []
        records = [self._record(t) for t in nx.ancestors(self._graph, token_id)]
        return sorted(records, key=lambda r: (-r.generation_level, r.created_at, r.token_id))

    def descendants(self, token_id: str) -> list[LineageRecord]:
        """All recorded descendants, nearest generation first."""
        if token_id not in self:
            return []
        records = [self._record(t) for t in nx.descendants(self._graph, token_id)]
        return sorted(records, key=lambda r: (r.generation_level, r.created_at, r.token_id))

    def siblings(self, token_id: str) -> list[LineageRecord]:
        """Tokens created at the same tick from exactly the same parents.

        Root tokens have no siblings.
        """
        record = self.get(token_id)
        if record is None or not record.parent_ids:
            return []
        parent_set = set(record.parent_ids)
        candidates: set[str] = set()
        for parent_id in record.parent_ids:
            if parent_id in self:
                candidates.update(self._graph.successors(parent_id))
        candidates.discard(token_id)
        return [
            self._record(t)
            for t in sorted(candidates)
            if set(self._record(t).parent_ids) == parent_set
            and self._record(t).created_at == record.created_at
        ]

    def source_tokens(self, token_id: str) -> list[LineageRecord]:
        """Recorded ultimate sources of a token."""
        record = self.get(token_id)
        if record is None:
            return []
        return [r for t in record.ultimate_sources if (r := self.get(t)) is not None]

    def full_path(self, token_id: str) -> list[LineageRecord]:
        """One derivation path from a root to the token.

        At each step the first-listed parent is followed, so the path is
        deterministic for a given lineage.
        """
        path: list[LineageRecord] = []
        current = self.get(token_id)
        while current is not None:
            path.append(current)
            next_id = next((p for p in current.parent_ids if p in self), None)
            current = self.get(next_id) if next_id else None
        path.reverse()
        return path

    def lineage_chain(self, token_id: str) -> str:
        """Render full_path as ``Name(token) -> Name(token) -> ...``."""
        return " -> ".join(
            f"{self._names.get(r.origin_node_id, r.origin_node_id)}({r.token_id})"
            for r in self.full_path(token_id)
        )

    def summary(self, token_id: str) -> LineageSummary | None:
        record = self.get(token_id)
        if record is None:
            return None
        ancestors = self.ancestors(token_id)
        contributing = dict.fromkeys(
            r.origin_node_id for r in (*ancestors, record)
        )
        return LineageSummary(
            token_id=token_id,
            generation_level=record.generation_level,
            ancestor_count=len(ancestors),
            descendant_count=len(self.descendants(token_id)),
            ultimate_source_count=len(record.ultimate_sources),
            contributing_nodes=tuple(contributing),
        )

    def records(self) -> list[LineageRecord]:
        return [self._record(t) for t in self._graph.nodes]

    def to_dict(self, token_id: str) -> dict[str, Any] | None:
        """Plain-data view of one record, history excluded."""
        record = self.get(token_id)
        if record is None:
            return None
        return {
            "token_id": record.token_id,
            "origin_node_id": record.origin_node_id,
            "created_at": record.created_at,
            "value": record.value,
            "operation": record.operation.value,
            "parent_ids": list(record.parent_ids),
            "generation_level": record.generation_level,
            "ultimate_sources": list(record.ultimate_sources),
        }

    def copy(self) -> LineageStore:
        """Independent copy for execution records.

        History lists are copied; ledger entries themselves are immutable.
        """
        clone = LineageStore()
        clone._names = dict(self._names)
        for token_id, data in self._graph.nodes(data=True):
            record: LineageRecord = data["record"]
            clone._graph.add_node(
                token_id,
                record=LineageRecord(
                    token_id=record.token_id,
                    origin_node_id=record.origin_node_id,
                    created_at=record.created_at,
                    value=record.value,
                    operation=record.operation,
                    parent_ids=record.parent_ids,
                    generation_level=record.generation_level,
                    ultimate_sources=record.ultimate_sources,
                    history=list(record.history),
                ),
            )
        clone._graph.add_edges_from(self._graph.edges(data=True))
        return clone

    def _record(self, token_id: str) -> LineageRecord:
        record: LineageRecord = self._graph.nodes[token_id]["record"]
        return record
