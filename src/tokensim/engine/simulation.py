# src/tokensim/engine/simulation.py
"""Simulation: step driver and control surface.

Coordinates:
- Loading (validate, then rebuild every node state from scratch)
- Ticking in a fixed phase order
- The cooperative play loop
- Snapshot undo/redo of the graph definition
- In-memory execution history

Phase order within a tick:
1. Sources emit
2. Finite state machines run timer and condition transitions
3. Enhanced state machines drain to sinks
4. Queues run their aggregation state machine
5. Queues forward one output token

Process nodes are never polled: they fire from inside the delivery
cascade that follows each node's phase work.
"""

import copy
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import numpy as np
import structlog

from tokensim.contracts.audit import ActivityLedgerEntry
from tokensim.contracts.enums import (
    EnhancedFsmPhase,
    ModulePhase,
    NodeKind,
    ProcessPhase,
    QueuePhase,
    SinkPhase,
    SourcePhase,
)
from tokensim.contracts.errors import SimulationError, UnknownNodeError
from tokensim.contracts.identity import LineageRecord
from tokensim.contracts.results import TickReport
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
)
from tokensim.core.config import EngineSettings
from tokensim.core.definition import (
    DefinitionValidation,
    EnhancedFsmConfig,
    FsmConfig,
    GraphDefinition,
    ModuleConfig,
    NodeConfig,
    ProcessConfig,
    QueueConfig,
    SinkConfig,
    SourceConfig,
    validate_definition,
)
from tokensim.core.ledger import ActivityLedger
from tokensim.core.lineage import LineageStore
from tokensim.core.snapshots import ScenarioSnapshot, SnapshotManager
from tokensim.engine.clock import DEFAULT_CLOCK, Clock
from tokensim.engine.context import RunContext
from tokensim.engine.executors import (
    EnhancedFsmExecutor,
    ModuleExecutor,
    ProcessExecutor,
    QueueExecutor,
    SinkExecutor,
    SourceExecutor,
)
from tokensim.engine.fsm_executor import FsmExecutor
from tokensim.engine.router import TokenRouter
from tokensim.engine.tokens import TokenManager

slog = structlog.get_logger(__name__)

TickListener = Callable[[TickReport], None]


@dataclass
class ExecutionRecord:
    """One recorded run of a definition.

    The captured fields are filled in when the execution ends.
    """

    execution_id: str
    name: str
    definition: GraphDefinition
    started_at: datetime
    start_tick: int
    ended_at: datetime | None = None
    end_tick: int | None = None
    states: dict[str, NodeState] = field(default_factory=dict)
    ledger: ActivityLedger | None = None
    lineage: LineageStore | None = None
    error_messages: list[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.ended_at is not None


class Simulation:
    """Discrete-time simulation of one graph definition.

    Owns the loaded configs, node states, ledgers, lineage store and
    snapshot stacks. Nothing is shared between instances.

    Example:
        sim = Simulation(EngineSettings(random_seed=7))
        sim.load(definition)
        sim.step(3)
        sim.states["sink"].consumed_token_count
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._clock = clock if clock is not None else DEFAULT_CLOCK
        self._snapshots = SnapshotManager(self._settings.undo_depth)
        self._definition: GraphDefinition | None = None
        self._running = False
        self._listeners: list[TickListener] = []
        self._executions: list[ExecutionRecord] = []
        self._active_execution: ExecutionRecord | None = None
        self._ctx = self._new_context()
        self._build_engine()

    # === Read surface ===

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def definition(self) -> GraphDefinition | None:
        return self._definition

    @property
    def configs(self) -> dict[str, NodeConfig]:
        return dict(self._ctx.configs)

    @property
    def states(self) -> dict[str, NodeState]:
        """Live node states keyed by node id."""
        return self._ctx.states

    @property
    def tick(self) -> int:
        return self._ctx.tick

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def run_in_progress(self) -> bool:
        """Playing, or partway through an active execution."""
        return self._running or (self._ctx.tick > 0 and self._active_execution is not None)

    @property
    def error_messages(self) -> list[str]:
        return list(self._ctx.error_messages)

    @property
    def ledger(self) -> ActivityLedger:
        return self._ctx.ledger

    @property
    def lineage(self) -> LineageStore:
        return self._ctx.lineage

    @property
    def can_undo(self) -> bool:
        return self._snapshots.can_undo

    @property
    def can_redo(self) -> bool:
        return self._snapshots.can_redo

    @property
    def executions(self) -> list[ExecutionRecord]:
        return list(self._executions)

    @property
    def active_execution(self) -> ExecutionRecord | None:
        return self._active_execution

    def node_state(self, node_id: str) -> NodeState:
        state = self._ctx.states.get(node_id)
        if state is None:
            raise UnknownNodeError(node_id)
        return state

    def node_ledger(self, node_id: str) -> list[ActivityLedgerEntry]:
        return self._ctx.ledger.for_node(node_id)

    def global_ledger(self) -> list[ActivityLedgerEntry]:
        return self._ctx.ledger.global_entries()

    def token_lineage(self, token_id: str) -> LineageRecord | None:
        return self._ctx.lineage.get(token_id)

    def clear_errors(self) -> None:
        self._ctx.error_messages.clear()

    # === Loading ===

    def load(self, definition: GraphDefinition | dict[str, Any]) -> DefinitionValidation | None:
        """Validate and install a definition, rebuilding all runtime state.

        Ignored while a run is in progress. An invalid definition clears
        the current one and leaves its errors in error_messages.

        Returns:
            The validation outcome, or None if the load was ignored
        """
        if self.run_in_progress:
            slog.warning("Load ignored while run in progress", tick=self._ctx.tick)
            return None

        outcome = validate_definition(definition)
        if outcome.definition is None:
            self._clear()
            self._ctx.error_messages.extend(outcome.errors)
            slog.warning("Scenario rejected", errors=len(outcome.errors))
            return outcome

        self._install(outcome.definition)
        for warning in outcome.warnings:
            slog.warning("Scenario warning", warning=warning)
        slog.info(
            "Scenario loaded",
            scenario=outcome.definition.scenario_id,
            nodes=len(outcome.definition.nodes),
        )
        return outcome

    def update_node_config(self, node_id: str, **changes: Any) -> DefinitionValidation:
        """Edit one node's configuration.

        The edited definition is validated first; only a valid edit is
        applied, after an automatic snapshot of the current definition.
        Node states are kept: an edit cannot change a node's id or kind.

        Raises:
            UnknownNodeError: If node_id is not loaded
            ValueError: If changes touch node_id or kind
        """
        if self._definition is None or node_id not in self._ctx.configs:
            raise UnknownNodeError(node_id)
        if {"node_id", "kind"} & changes.keys():
            raise ValueError("node_id and kind cannot be changed by an edit")

        outcome = validate_definition(self._definition.with_node_changes(node_id, changes))
        if outcome.definition is None:
            slog.warning("Node edit rejected", node_id=node_id, errors=outcome.errors)
            return outcome

        self.save_snapshot(f"Update {node_id}")
        self._definition = outcome.definition
        self._ctx.configs = {n.node_id: n for n in outcome.definition.nodes}
        self._ctx.lineage.set_node_names({n.node_id: n.name for n in outcome.definition.nodes})
        return outcome

    def _new_context(self) -> RunContext:
        ledger_settings = self._settings.ledger
        return RunContext(
            settings=self._settings,
            ledger=ActivityLedger(ledger_settings.node_capacity, ledger_settings.global_capacity),
            lineage=LineageStore(),
            rng=np.random.default_rng(self._settings.random_seed),
        )

    def _build_engine(self) -> None:
        ctx = self._ctx
        self._tokens = TokenManager(ctx.lineage)
        self._router = TokenRouter(ctx, max_iterations=self._settings.max_cascade_iterations)
        self._sources = SourceExecutor(ctx, self._tokens, self._router)
        self._queues = QueueExecutor(ctx, self._tokens, self._router)
        self._process = ProcessExecutor(ctx, self._tokens, self._router)
        self._fsm = FsmExecutor(
            ctx, self._tokens, self._router, timer_interval=self._settings.timer_interval
        )
        self._enhanced = EnhancedFsmExecutor(ctx, self._tokens, self._router)
        self._sinks = SinkExecutor(ctx, self._tokens, self._router)
        self._modules = ModuleExecutor(ctx, self._tokens, self._router)
        self._router.bind(
            {
                NodeKind.QUEUE.value: self._queues,
                NodeKind.PROCESS.value: self._process,
                NodeKind.FSM.value: self._fsm,
                NodeKind.ENHANCED_FSM.value: self._enhanced,
                NodeKind.SINK.value: self._sinks,
                NodeKind.MODULE.value: self._modules,
            }
        )

    def _install(self, definition: GraphDefinition) -> None:
        self._definition = definition
        self._running = False
        self._ctx = self._new_context()
        for node in definition.nodes:
            self._ctx.configs[node.node_id] = node
            self._ctx.states[node.node_id] = self._initial_state(node)
            self._ctx.ledger.register_node(node.node_id)
        self._ctx.lineage.set_node_names({n.node_id: n.name for n in definition.nodes})
        self._build_engine()

    def _clear(self) -> None:
        self._definition = None
        self._running = False
        self._ctx = self._new_context()
        self._build_engine()

    def _machine(self, initial: str) -> StateMachineInfo:
        return StateMachineInfo(
            current_state=initial,
            history_limit=self._settings.transition_history,
        )

    def _initial_state(self, config: NodeConfig) -> NodeState:
        match config:
            case SourceConfig():
                return SourceState(self._machine(SourcePhase.IDLE.value))
            case QueueConfig():
                return QueueState(self._machine(QueuePhase.IDLE.value))
            case ProcessConfig():
                return ProcessState(
                    self._machine(ProcessPhase.IDLE.value),
                    input_buffers={port.node_id or "": [] for port in config.inputs},
                )
            case FsmConfig():
                return FsmState(
                    self._machine(config.fsm.initial_state),
                    variables=copy.deepcopy(config.fsm.variables),
                )
            case EnhancedFsmConfig():
                return EnhancedFsmState(self._machine(EnhancedFsmPhase.IDLE.value))
            case SinkConfig():
                return SinkState(
                    self._machine(SinkPhase.IDLE.value),
                    retention=self._settings.sink_retention,
                )
            case ModuleConfig():
                return ModuleState(
                    self._machine(ModulePhase.IDLE.value),
                    is_expanded=config.is_expanded,
                )
            case _:
                raise TypeError(f"Unknown node config: {type(config).__name__}")

    # === Ticking ===

    def add_tick_listener(self, listener: TickListener) -> None:
        """Call listener with a TickReport after every tick."""
        self._listeners.append(listener)

    def remove_tick_listener(self, listener: TickListener) -> None:
        self._listeners.remove(listener)

    def step(self, n: int = 1) -> int:
        """Advance n ticks immediately.

        Ignored while the play loop is running or with nothing loaded.

        Returns:
            Number of ticks advanced
        """
        if n < 1:
            raise ValueError(f"step count must be positive, got {n}")
        if self._running:
            slog.warning("Step ignored while playing", tick=self._ctx.tick)
            return 0
        if self._definition is None:
            slog.warning("Step ignored: no scenario loaded")
            return 0
        for _ in range(n):
            self._advance()
        return n

    def play(self, max_ticks: int | None = None) -> int:
        """Run ticks until paused (or max_ticks is reached).

        Cooperative: a pause() from a tick listener takes effect once the
        current tick has finished. Ticks are paced by
        settings.playback.ticks_per_second on the injected clock.

        Returns:
            Number of ticks advanced
        """
        if self._running or self._definition is None:
            return 0
        if self._active_execution is None:
            self.start_execution()

        delay = self._settings.playback.tick_delay
        advanced = 0
        self._running = True
        slog.info("Playback started", tick=self._ctx.tick, max_ticks=max_ticks)
        try:
            while self._running:
                started = self._clock.monotonic()
                self._advance()
                advanced += 1
                if not self._running or (max_ticks is not None and advanced >= max_ticks):
                    break
                remaining = delay - (self._clock.monotonic() - started)
                if remaining > 0:
                    self._clock.sleep(remaining)
        finally:
            self._running = False
        slog.info("Playback stopped", tick=self._ctx.tick, advanced=advanced)
        return advanced

    def pause(self) -> None:
        self._running = False

    def _advance(self) -> TickReport:
        ctx = self._ctx
        ctx.tick += 1
        errors_before = len(ctx.error_messages)
        created_before = self._tokens.created_count
        delivered_before = self._router.delivered_count

        phases: list[tuple[str, Callable[[str], object]]] = [
            (NodeKind.SOURCE.value, self._sources.tick),
            (NodeKind.FSM.value, self._fsm.tick),
            (NodeKind.ENHANCED_FSM.value, self._enhanced.drain),
            (NodeKind.QUEUE.value, self._queues.aggregate),
            (NodeKind.QUEUE.value, self._queues.forward),
        ]
        for kind, run in phases:
            for node_id, config in list(ctx.configs.items()):
                if config.kind != kind:
                    continue
                with self._router.cascade(node_id):
                    run(node_id)

        report = TickReport(
            tick=ctx.tick,
            tokens_created=self._tokens.created_count - created_before,
            deliveries=self._router.delivered_count - delivered_before,
            errors=ctx.error_messages[errors_before:],
        )
        slog.debug(
            "Tick complete",
            tick=report.tick,
            tokens_created=report.tokens_created,
            deliveries=report.deliveries,
            errors=len(report.errors),
        )
        for listener in list(self._listeners):
            listener(report)
        return report

    # === Snapshots ===

    def save_snapshot(self, description: str) -> ScenarioSnapshot | None:
        """Push the current definition onto the undo stack.

        Node state and ledgers are not captured.
        """
        if self._definition is None:
            return None
        return self._snapshots.save(self._definition, description)

    def undo(self) -> bool:
        """Restore the previous definition. Simulation progress is reset."""
        if self._definition is None:
            return False
        snapshot = self._snapshots.undo(self._definition)
        if snapshot is None:
            return False
        slog.info("Undo", description=snapshot.description)
        return self._restore(snapshot)

    def redo(self) -> bool:
        if self._definition is None:
            return False
        snapshot = self._snapshots.redo(self._definition)
        if snapshot is None:
            return False
        slog.info("Redo", description=snapshot.description)
        return self._restore(snapshot)

    def _restore(self, snapshot: ScenarioSnapshot) -> bool:
        outcome = validate_definition(snapshot.definition)
        if outcome.definition is None:
            self._ctx.error_messages.extend(outcome.errors)
            slog.error("Snapshot failed validation", description=snapshot.description)
            return False
        if self._active_execution is not None:
            self.end_execution()
        self._install(outcome.definition)
        return True

    # === Execution history ===

    def start_execution(self, name: str | None = None) -> ExecutionRecord:
        """Begin recording a run of the loaded definition.

        Raises:
            SimulationError: If no definition is loaded
        """
        if self._definition is None:
            raise SimulationError("No scenario loaded")
        if self._active_execution is not None:
            self.end_execution()
        record = ExecutionRecord(
            execution_id=uuid.uuid4().hex,
            name=name or f"Execution {len(self._executions) + 1}",
            definition=self._definition,
            started_at=datetime.now(UTC),
            start_tick=self._ctx.tick,
        )
        self._executions.append(record)
        self._active_execution = record
        return record

    def end_execution(self) -> ExecutionRecord | None:
        """Stop playback and capture the active execution's final state."""
        record = self._active_execution
        if record is None:
            return None
        self.pause()
        record.ended_at = datetime.now(UTC)
        record.end_tick = self._ctx.tick
        record.states = copy.deepcopy(self._ctx.states)
        record.ledger = self._ctx.ledger.copy()
        record.lineage = self._ctx.lineage.copy()
        record.error_messages = list(self._ctx.error_messages)
        self._active_execution = None
        return record

    def restore_execution(self, execution_id: str) -> bool:
        """Reinstate a completed execution's definition and final state.

        Returns:
            False if playing, or if the execution is unknown or still active
        """
        if self._running:
            return False
        record = next((r for r in self._executions if r.execution_id == execution_id), None)
        if record is None or not record.is_complete:
            return False
        if self._active_execution is not None:
            self.end_execution()

        self._install(record.definition)
        self._ctx.states = copy.deepcopy(record.states)
        if record.ledger is not None:
            self._ctx.ledger = record.ledger.copy()
        if record.lineage is not None:
            self._ctx.lineage = record.lineage.copy()
        self._ctx.error_messages = list(record.error_messages)
        self._ctx.tick = record.end_tick or 0
        self._build_engine()
        return True
