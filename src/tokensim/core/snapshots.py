# src/tokensim/core/snapshots.py
"""Editing-level undo/redo over graph definitions.

Snapshots hold definitions only. Simulation progress (node state,
ledgers, the tick counter) is never captured; restoring a snapshot means
reloading a definition from scratch.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime

from tokensim.core.canonical import stable_hash
from tokensim.core.definition import GraphDefinition


@dataclass(frozen=True)
class ScenarioSnapshot:
    """A definition captured at a point in editing history."""

    definition: GraphDefinition
    description: str
    definition_hash: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


def take_snapshot(definition: GraphDefinition, description: str) -> ScenarioSnapshot:
    """Deep-copy a definition into a snapshot."""
    return ScenarioSnapshot(
        definition=definition.model_copy(deep=True),
        description=description,
        definition_hash=stable_hash(definition.to_raw()),
    )


class SnapshotManager:
    """Bounded undo and redo stacks.

    Stacks are ordered oldest to newest; when a stack is full the oldest
    snapshot falls off. Saving a new snapshot clears the redo stack.
    """

    def __init__(self, max_depth: int = 20) -> None:
        self._max_depth = max_depth
        self._undo: deque[ScenarioSnapshot] = deque(maxlen=max_depth)
        self._redo: deque[ScenarioSnapshot] = deque(maxlen=max_depth)

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_stack(self) -> list[ScenarioSnapshot]:
        return list(self._undo)

    @property
    def redo_stack(self) -> list[ScenarioSnapshot]:
        return list(self._redo)

    def save(self, definition: GraphDefinition, description: str) -> ScenarioSnapshot:
        snapshot = take_snapshot(definition, description)
        self._undo.append(snapshot)
        self._redo.clear()
        return snapshot

    def undo(self, current: GraphDefinition) -> ScenarioSnapshot | None:
        """Step back to the most recent snapshot that differs from current.

        Snapshots identical to the current definition are discarded on the
        way down, so saving right after an edit and then undoing returns to
        the previous saved state rather than to the current one. When every
        snapshot matches, the oldest is restored and the stack empties. The
        current definition is pushed onto the redo stack.

        Returns:
            The snapshot to restore, or None if the undo stack is empty
        """
        return self._step(current, self._undo, self._redo, "Current state before undo")

    def redo(self, current: GraphDefinition) -> ScenarioSnapshot | None:
        """Step forward; the mirror of undo()."""
        return self._step(current, self._redo, self._undo, "Current state before redo")

    def _step(
        self,
        current: GraphDefinition,
        source: deque[ScenarioSnapshot],
        target: deque[ScenarioSnapshot],
        description: str,
    ) -> ScenarioSnapshot | None:
        if not source:
            return None
        current_hash = stable_hash(current.to_raw())
        depth = next(
            (i for i, snap in enumerate(reversed(source)) if snap.definition_hash != current_hash),
            len(source) - 1,
        )
        for _ in range(depth):
            source.pop()
        target.append(take_snapshot(current, description))
        return source.pop()

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()
