"""Mutable runtime state per node.

One dataclass per node kind, mirroring the NodeConfig union. States are
created on load, mutated only by the engine within a tick, and thrown
away on any reload.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any

from tokensim.contracts.identity import Token


@dataclass(frozen=True)
class TransitionRecord:
    """One machine-state change."""

    from_state: str
    to_state: str
    tick: int
    trigger: str


@dataclass
class StateMachineInfo:
    """Current machine state plus a bounded transition history."""

    current_state: str
    previous_state: str | None = None
    state_changed_at: int = 0
    history_limit: int = 10
    transition_history: deque[TransitionRecord] = field(init=False)

    def __post_init__(self) -> None:
        self.transition_history = deque(maxlen=self.history_limit)

    def transition(self, to_state: str, tick: int, trigger: str) -> None:
        """Move to to_state, recording where it came from."""
        self.transition_history.append(
            TransitionRecord(
                from_state=self.current_state,
                to_state=to_state,
                tick=tick,
                trigger=trigger,
            )
        )
        self.previous_state = self.current_state
        self.current_state = to_state
        self.state_changed_at = tick


@dataclass
class SourceState:
    state_machine: StateMachineInfo
    last_emission_time: int = -1

    def buffer_sizes(self) -> tuple[int, int]:
        return 0, 0


@dataclass
class QueueState:
    state_machine: StateMachineInfo
    input_buffer: list[Token] = field(default_factory=list)
    output_buffer: list[Token] = field(default_factory=list)
    last_aggregation_time: int = -1

    def buffer_sizes(self) -> tuple[int, int]:
        return len(self.input_buffer), len(self.output_buffer)


@dataclass
class ProcessState:
    """Join buffers keyed by the id of the node that sent the token."""

    state_machine: StateMachineInfo
    input_buffers: dict[str, list[Token]] = field(default_factory=dict)
    last_fired_time: int = -1

    def buffer_sizes(self) -> tuple[int, int]:
        return sum(len(b) for b in self.input_buffers.values()), 0


@dataclass
class FsmState:
    """Input buffers keyed by input name, plus the machine's variables."""

    state_machine: StateMachineInfo
    input_buffers: dict[str, list[Token]] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)
    last_transition_time: int = -1

    def buffer_sizes(self) -> tuple[int, int]:
        return sum(len(b) for b in self.input_buffers.values()), 0

    def latest_tokens(self) -> dict[str, Token]:
        """Most recent token per non-empty input buffer."""
        return {name: buf[-1] for name, buf in self.input_buffers.items() if buf}


@dataclass
class EnhancedFsmState:
    state_machine: StateMachineInfo
    token_buffer: list[Token] = field(default_factory=list)
    processed_count: int = 0
    last_processed_time: int = -1

    def buffer_sizes(self) -> tuple[int, int]:
        return len(self.token_buffer), 0


@dataclass
class SinkState:
    """Consumption counters plus a capped list of the latest tokens."""

    state_machine: StateMachineInfo
    retention: int = 50
    consumed_token_count: int = 0
    last_consumed_time: int = -1
    consumed_tokens: deque[Token] = field(init=False)

    def __post_init__(self) -> None:
        self.consumed_tokens = deque(maxlen=self.retention)

    def buffer_sizes(self) -> tuple[int, int]:
        return len(self.consumed_tokens), 0


@dataclass
class ModuleState:
    state_machine: StateMachineInfo
    input_buffers: dict[str, list[Token]] = field(default_factory=dict)
    is_expanded: bool = False

    def buffer_sizes(self) -> tuple[int, int]:
        return sum(len(b) for b in self.input_buffers.values()), 0


NodeState = (
    SourceState
    | QueueState
    | ProcessState
    | FsmState
    | EnhancedFsmState
    | SinkState
    | ModuleState
)
