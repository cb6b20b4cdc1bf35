# src/tokensim/core/ledger.py
"""Bounded activity ledgers.

Every entry is written twice: once to the node's own ledger and once to
the global ledger. Both are FIFO ring buffers, so the oldest entries are
evicted first and the survivors stay in recording order.

The sequence counter is monotonic across the whole ledger lifetime and is
never reset by eviction, only by clear().
"""

from collections import deque
from collections.abc import Iterator
from typing import Any

from tokensim.contracts.audit import ActivityLedgerEntry
from tokensim.contracts.enums import LedgerAction


class ActivityLedger:
    """Per-node and global activity logs with fixed capacities."""

    def __init__(self, node_capacity: int = 500, global_capacity: int = 1000) -> None:
        self._node_capacity = node_capacity
        self._global_capacity = global_capacity
        self._by_node: dict[str, deque[ActivityLedgerEntry]] = {}
        self._global: deque[ActivityLedgerEntry] = deque(maxlen=global_capacity)
        self._sequence = 0

    @property
    def node_capacity(self) -> int:
        return self._node_capacity

    @property
    def global_capacity(self) -> int:
        return self._global_capacity

    @property
    def next_sequence(self) -> int:
        return self._sequence

    def register_node(self, node_id: str) -> None:
        self._by_node.setdefault(node_id, deque(maxlen=self._node_capacity))

    def has_node(self, node_id: str) -> bool:
        return node_id in self._by_node

    def record(
        self,
        node_id: str,
        action: LedgerAction,
        *,
        tick: int,
        value: Any = None,
        details: str = "",
        state: str | None = None,
        buffer_size: int = 0,
        output_buffer_size: int = 0,
        token_id: str | None = None,
    ) -> ActivityLedgerEntry:
        """Append an entry to the node's ledger and the global ledger.

        Raises:
            KeyError: If node_id was never registered
        """
        node_log = self._by_node.get(node_id)
        if node_log is None:
            raise KeyError(node_id)

        entry = ActivityLedgerEntry(
            tick=tick,
            sequence=self._sequence,
            node_id=node_id,
            action=action,
            value=value,
            details=details,
            state=state,
            buffer_size=buffer_size,
            output_buffer_size=output_buffer_size,
            token_id=token_id,
        )
        self._sequence += 1
        node_log.append(entry)
        self._global.append(entry)
        return entry

    def for_node(self, node_id: str) -> list[ActivityLedgerEntry]:
        """Entries of one node, oldest first. Unknown nodes have none."""
        return list(self._by_node.get(node_id, ()))

    def global_entries(self) -> list[ActivityLedgerEntry]:
        return list(self._global)

    def entries_with_action(
        self, action: LedgerAction, node_id: str | None = None
    ) -> list[ActivityLedgerEntry]:
        source = self._global if node_id is None else self._by_node.get(node_id, ())
        return [e for e in source if e.action == action]

    def __iter__(self) -> Iterator[ActivityLedgerEntry]:
        return iter(list(self._global))

    def __len__(self) -> int:
        return len(self._global)

    def clear(self) -> None:
        """Drop every entry and node registration, and restart sequencing."""
        self._by_node.clear()
        self._global.clear()
        self._sequence = 0

    def copy(self) -> "ActivityLedger":
        """Independent copy; entries are immutable so they are shared."""
        clone = ActivityLedger(self._node_capacity, self._global_capacity)
        clone._by_node = {k: deque(v, maxlen=self._node_capacity) for k, v in self._by_node.items()}
        clone._global = deque(self._global, maxlen=self._global_capacity)
        clone._sequence = self._sequence
        return clone
