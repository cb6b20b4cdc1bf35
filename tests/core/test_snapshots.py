# tests/core/test_snapshots.py
"""Tests for definition snapshots and undo/redo stacks."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from tests.conftest import scenario, sink_node, source_node


def _definition(interval: int = 1):
    from tokensim.core.definition import GraphDefinition

    return GraphDefinition.model_validate(
        scenario(source_node("src", "sink", interval=interval), sink_node("sink"))
    )


class TestTakeSnapshot:
    def test_hash_matches_definition(self) -> None:
        from tokensim.core.canonical import stable_hash
        from tokensim.core.snapshots import take_snapshot

        definition = _definition()
        snapshot = take_snapshot(definition, "initial")

        assert snapshot.definition == definition
        assert snapshot.definition is not definition
        assert snapshot.definition_hash == stable_hash(definition.to_raw())
        assert snapshot.description == "initial"

    def test_equal_definitions_hash_equal(self) -> None:
        from tokensim.core.snapshots import take_snapshot

        assert (
            take_snapshot(_definition(3), "a").definition_hash
            == take_snapshot(_definition(3), "b").definition_hash
        )
        assert (
            take_snapshot(_definition(3), "a").definition_hash
            != take_snapshot(_definition(4), "a").definition_hash
        )


class TestSnapshotManager:
    """Bounded undo and redo stacks."""

    def test_empty(self) -> None:
        from tokensim.core.snapshots import SnapshotManager

        manager = SnapshotManager()
        assert not manager.can_undo
        assert not manager.can_redo
        assert manager.undo(_definition()) is None

    def test_save_clears_redo(self) -> None:
        from tokensim.core.snapshots import SnapshotManager

        manager = SnapshotManager()
        manager.save(_definition(1), "a")
        manager.undo(_definition(2))
        assert manager.can_redo

        manager.save(_definition(3), "c")
        assert not manager.can_redo

    def test_depth_is_bounded(self) -> None:
        from tokensim.core.snapshots import SnapshotManager

        manager = SnapshotManager(max_depth=3)
        for interval in range(1, 6):
            manager.save(_definition(interval), f"v{interval}")

        stack = manager.undo_stack
        assert [s.description for s in stack] == ["v3", "v4", "v5"]

    def test_undo_skips_snapshots_equal_to_current(self) -> None:
        """Saving right after an edit, then undoing, returns to the earlier state."""
        from tokensim.core.snapshots import SnapshotManager

        a, b = _definition(1), _definition(2)
        manager = SnapshotManager()
        manager.save(a, "a")
        manager.save(b, "b")

        restored = manager.undo(b)
        assert restored is not None
        assert restored.definition == a
        assert not manager.can_undo

    def test_undo_with_all_snapshots_equal(self) -> None:
        """Undo still moves a snapshot across when nothing differs."""
        from tokensim.core.snapshots import SnapshotManager

        a = _definition(1)
        manager = SnapshotManager()
        manager.save(a, "first")
        manager.save(a, "second")

        restored = manager.undo(a)

        assert restored is not None
        assert restored.description == "first"
        assert restored.definition == a
        assert not manager.can_undo
        assert [s.description for s in manager.redo_stack] == ["Current state before undo"]

    def test_redo_mirrors_undo(self) -> None:
        from tokensim.core.snapshots import SnapshotManager

        a, b = _definition(1), _definition(2)
        manager = SnapshotManager()
        manager.save(a, "a")

        restored = manager.undo(b)
        assert restored.definition == a
        redone = manager.redo(restored.definition)
        assert redone.definition == b
        assert manager.can_undo

    def test_clear(self) -> None:
        from tokensim.core.snapshots import SnapshotManager

        manager = SnapshotManager()
        manager.save(_definition(), "a")
        manager.clear()
        assert not manager.can_undo


class TestUndoRedoProperty:
    @given(st.integers(min_value=1, max_value=50), st.integers(min_value=1, max_value=50))
    def test_save_edit_save_undo_redo(self, first: int, second: int) -> None:
        """save(A); edit to B; save(B); undo -> A; redo -> B."""
        from tokensim.core.snapshots import SnapshotManager

        a, b = _definition(first), _definition(second)
        manager = SnapshotManager()
        manager.save(a, "a")
        manager.save(b, "b")

        restored = manager.undo(b)
        assert restored.definition == a
        assert not manager.can_undo
        redone = manager.redo(a)
        assert redone is not None
        assert redone.definition == b

    def test_frozen_snapshot(self) -> None:
        from dataclasses import FrozenInstanceError

        from tokensim.core.snapshots import take_snapshot

        snapshot = take_snapshot(_definition(), "a")
        with pytest.raises(FrozenInstanceError):
            snapshot.description = "b"  # type: ignore[misc]
