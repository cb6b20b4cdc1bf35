# tests/core/test_ledger.py
"""Tests for the bounded activity ledger."""

import pytest

from tokensim.contracts import LedgerAction


class TestActivityLedger:
    """Per-node and global FIFO-bounded logs."""

    def test_record_appends_to_node_and_global(self) -> None:
        from tokensim.core.ledger import ActivityLedger

        ledger = ActivityLedger()
        ledger.register_node("a")
        entry = ledger.record("a", LedgerAction.TOKEN_EMITTED, tick=1, value=5)

        assert ledger.for_node("a") == [entry]
        assert ledger.global_entries() == [entry]
        assert len(ledger) == 1

    def test_unregistered_node_raises(self) -> None:
        from tokensim.core.ledger import ActivityLedger

        with pytest.raises(KeyError):
            ActivityLedger().record("ghost", LedgerAction.ERROR, tick=0)

    def test_unknown_node_has_no_entries(self) -> None:
        from tokensim.core.ledger import ActivityLedger

        assert ActivityLedger().for_node("ghost") == []

    def test_sequence_is_monotonic_across_nodes(self) -> None:
        from tokensim.core.ledger import ActivityLedger

        ledger = ActivityLedger()
        ledger.register_node("a")
        ledger.register_node("b")
        sequences = [
            ledger.record(node, LedgerAction.TOKEN_RECEIVED, tick=1).sequence
            for node in ("a", "b", "a", "b")
        ]
        assert sequences == [0, 1, 2, 3]
        assert ledger.next_sequence == 4

    def test_node_capacity_evicts_oldest(self) -> None:
        """501 records on one node leave exactly the last 500."""
        from tokensim.core.ledger import ActivityLedger

        ledger = ActivityLedger(node_capacity=500, global_capacity=1000)
        ledger.register_node("a")
        for tick in range(501):
            ledger.record("a", LedgerAction.ACCUMULATING, tick=tick)

        entries = ledger.for_node("a")
        assert len(entries) == 500
        assert entries[0].tick == 1
        assert entries[-1].tick == 500

    def test_global_capacity_is_independent(self) -> None:
        from tokensim.core.ledger import ActivityLedger

        ledger = ActivityLedger(node_capacity=5, global_capacity=3)
        ledger.register_node("a")
        for tick in range(5):
            ledger.record("a", LedgerAction.ACCUMULATING, tick=tick)

        assert len(ledger.for_node("a")) == 5
        assert [e.tick for e in ledger.global_entries()] == [2, 3, 4]

    def test_entries_with_action(self) -> None:
        from tokensim.core.ledger import ActivityLedger

        ledger = ActivityLedger()
        ledger.register_node("a")
        ledger.register_node("b")
        ledger.record("a", LedgerAction.ERROR, tick=1)
        ledger.record("b", LedgerAction.ERROR, tick=1)
        ledger.record("b", LedgerAction.FIRING, tick=1)

        assert len(ledger.entries_with_action(LedgerAction.ERROR)) == 2
        assert len(ledger.entries_with_action(LedgerAction.ERROR, node_id="b")) == 1

    def test_clear_restarts_sequence(self) -> None:
        from tokensim.core.ledger import ActivityLedger

        ledger = ActivityLedger()
        ledger.register_node("a")
        ledger.record("a", LedgerAction.ERROR, tick=1)
        ledger.clear()

        assert len(ledger) == 0
        assert not ledger.has_node("a")
        assert ledger.next_sequence == 0

    def test_copy_is_independent(self) -> None:
        from tokensim.core.ledger import ActivityLedger

        ledger = ActivityLedger()
        ledger.register_node("a")
        ledger.record("a", LedgerAction.ERROR, tick=1)
        clone = ledger.copy()
        ledger.record("a", LedgerAction.ERROR, tick=2)

        assert len(clone) == 1
        assert len(clone.for_node("a")) == 1
        assert clone.next_sequence == 1
