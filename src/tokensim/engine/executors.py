# src/tokensim/engine/executors.py
"""Node executors: per-kind behavior for sources, queues, process nodes,
enhanced state machines, sinks and modules.

Each executor wraps one node kind and is shared by every node of that kind:
1. Reads the node's config and state from the RunContext
2. Moves the node's state machine
3. Creates tokens through the TokenManager
4. Records ledger entries
5. Routes output tokens through the TokenRouter

Finite state machine nodes live in fsm_executor.py.
"""

from typing import TYPE_CHECKING, TypeVar

from tokensim.contracts.enums import (
    LedgerAction,
    LineageOperation,
    NodeKind,
    ProcessPhase,
    QueuePhase,
    SinkPhase,
    SourcePhase,
)
from tokensim.contracts.identity import Token
from tokensim.contracts.results import DeliveryOutcome
from tokensim.contracts.state import (
    EnhancedFsmState,
    ModuleState,
    ProcessState,
    QueueState,
    SinkState,
    SourceState,
)
from tokensim.core.definition import (
    EnhancedFsmConfig,
    INT64_LIMIT,
    InputPort,
    ProcessConfig,
    QueueConfig,
    SourceConfig,
)
from tokensim.engine.aggregation import aggregate
from tokensim.engine.context import RunContext
from tokensim.engine.expression_parser import evaluate_formula

if TYPE_CHECKING:
    from tokensim.engine.router import TokenRouter
    from tokensim.engine.tokens import TokenManager

C = TypeVar("C")
S = TypeVar("S")


class NodeExecutor:
    """Typed access to a node's config and state."""

    def __init__(self, ctx: RunContext, tokens: "TokenManager", router: "TokenRouter") -> None:
        self._ctx = ctx
        self._tokens = tokens
        self._router = router

    def _config(self, node_id: str, expected: type[C]) -> C:
        config = self._ctx.configs[node_id]
        if not isinstance(config, expected):
            raise TypeError(f"Node {node_id} is {type(config).__name__}, not {expected.__name__}")
        return config

    def _state(self, node_id: str, expected: type[S]) -> S:
        state = self._ctx.states[node_id]
        if not isinstance(state, expected):
            raise TypeError(f"Node {node_id} has {type(state).__name__}, not {expected.__name__}")
        return state


def _draw_value(ctx: RunContext, low: int | float, high: int | float) -> int | float:
    """Uniform draw from [low, high]; integer when both bounds are integral int64 values."""
    if all(float(b).is_integer() and abs(b) < INT64_LIMIT for b in (low, high)):
        return int(ctx.rng.integers(int(low), int(high), endpoint=True))
    return float(ctx.rng.uniform(low, high))


class SourceExecutor(NodeExecutor):
    """Emits a root token every ``interval`` ticks."""

    def tick(self, node_id: str) -> Token | None:
        """Emit if the interval has elapsed since the last emission.

        Returns:
            The emitted token, or None if the source did not fire
        """
        config = self._config(node_id, SourceConfig)
        state = self._state(node_id, SourceState)
        tick = self._ctx.tick

        if tick < max(state.last_emission_time, 0) + config.interval:
            return None

        self._ctx.transition(node_id, SourcePhase.GENERATING, "interval_reached")
        try:
            value = _draw_value(self._ctx, config.value_min, config.value_max)
        except (ValueError, OverflowError) as e:
            self._ctx.report_error(node_id, f"Node {node_id} value draw failed: {e}")
            state.last_emission_time = tick
            self._ctx.transition(node_id, SourcePhase.IDLE, "draw_failed")
            return None
        token = self._tokens.create_source_token(node_id, value, tick)
        self._ctx.transition(node_id, SourcePhase.EMITTING, "token_created")

        for port in config.outputs:
            self._ctx.record(
                node_id,
                LedgerAction.TOKEN_EMITTED,
                value=value,
                details=f"Emitted to {port.destination_node_id}",
                token=token,
            )
            self._router.route(token, node_id, port)

        state.last_emission_time = tick
        self._ctx.transition(node_id, SourcePhase.IDLE, "emission_complete")
        return token


class QueueExecutor(NodeExecutor):
    """Buffers tokens and aggregates them once per window.

    Three entry points, called at different times:
    - receive(): on token arrival, from the router
    - aggregate(): once per tick, the aggregation state machine
    - forward(): once per tick after every queue aggregated
    """

    def receive(
        self,
        node_id: str,
        token: Token,
        sender_id: str,
        input_name: str | None,
    ) -> DeliveryOutcome:
        config = self._config(node_id, QueueConfig)
        state = self._state(node_id, QueueState)

        if config.capacity is not None and len(state.input_buffer) >= config.capacity:
            self._ctx.record(
                node_id,
                LedgerAction.TOKEN_DROPPED,
                value=token.value,
                details=f"Capacity {config.capacity} reached; dropped token from {sender_id}",
                token=token,
            )
            return DeliveryOutcome(node_id, accepted=False, reason="capacity")

        if state.state_machine.current_state in (QueuePhase.IDLE, QueuePhase.ACCUMULATING):
            self._ctx.transition(node_id, QueuePhase.ACCUMULATING, "token_received")
        state.input_buffer.append(token)
        self._ctx.record(
            node_id,
            LedgerAction.ACCUMULATING,
            value=len(state.input_buffer),
            details=f"Buffered token from {sender_id}",
            token=token,
        )
        return DeliveryOutcome(node_id, accepted=True)

    def aggregate(self, node_id: str) -> Token | None:
        """Run one step of the aggregation state machine.

        Returns:
            The aggregated token if the window triggered on a non-empty buffer
        """
        config = self._config(node_id, QueueConfig)
        state = self._state(node_id, QueueState)
        phase = state.state_machine.current_state
        tick = self._ctx.tick

        if phase == QueuePhase.EMITTING:
            if not state.output_buffer:
                self._ctx.transition(node_id, QueuePhase.IDLE, "output_drained")
            return None
        if phase not in (QueuePhase.IDLE, QueuePhase.ACCUMULATING):
            return None
        if tick < max(state.last_aggregation_time, 0) + config.aggregation.window:
            return None

        if not state.input_buffer:
            self._ctx.record(node_id, LedgerAction.TRIGGER_MET, details="No tokens in input buffer.")
            state.last_aggregation_time = tick
            if phase == QueuePhase.ACCUMULATING:
                self._ctx.transition(node_id, QueuePhase.IDLE, "no_tokens_to_process")
            return None

        self._ctx.transition(node_id, QueuePhase.PROCESSING, "aggregation_window_triggered")
        consumed = list(state.input_buffer)
        try:
            result = aggregate(config.aggregation.method, consumed)
        except ValueError as e:
            state.input_buffer.clear()
            state.last_aggregation_time = tick
            self._ctx.report_error(
                node_id,
                f"Node {node_id} aggregation error: {e}",
                details=f"{config.aggregation.method.value} failed: {e}",
            )
            self._ctx.transition(node_id, QueuePhase.IDLE, "aggregation_failed")
            return None

        token = self._tokens.create_token(
            node_id,
            result.value,
            tick,
            consumed,
            operation=LineageOperation.AGGREGATED,
        )
        state.input_buffer.clear()
        state.output_buffer.append(token)
        state.last_aggregation_time = tick
        self._ctx.record(
            node_id,
            LedgerAction.PROCESSING,
            value=result.value,
            details=result.calculation,
            token=token,
            related=consumed,
        )
        self._ctx.transition(node_id, QueuePhase.EMITTING, "aggregation_complete")
        return token

    def forward(self, node_id: str) -> Token | None:
        """Send the oldest output token to every destination."""
        config = self._config(node_id, QueueConfig)
        state = self._state(node_id, QueueState)
        if not state.output_buffer:
            return None

        token = state.output_buffer.pop(0)
        if state.state_machine.current_state != QueuePhase.EMITTING:
            self._ctx.transition(node_id, QueuePhase.EMITTING, "forwarding_token")
        destinations = ", ".join(p.destination_node_id for p in config.outputs) or "nowhere"
        self._ctx.record(
            node_id,
            LedgerAction.EMITTING,
            value=token.value,
            details=f"Sending to {destinations}",
            token=token,
        )
        for port in config.outputs:
            self._router.route(token, node_id, port)
        if not state.output_buffer:
            self._ctx.transition(node_id, QueuePhase.IDLE, "forwarding_complete")
        return token


def _formula_context(consumed: list[tuple[InputPort, Token]]) -> dict[str, object]:
    """Formula names for one firing.

    Each consumed token is visible as ``inputs.<alias>``, ``<alias>`` and
    ``<alias>_value``; ``values`` lists the values in input order.
    """
    context: dict[str, object] = {}
    inputs: dict[str, object] = {}
    for port, token in consumed:
        rendered = token.as_context()
        inputs[port.key] = rendered
        context[port.key] = rendered
        context[f"{port.key}_value"] = token.value
    context["inputs"] = inputs
    context["values"] = [token.value for _, token in consumed]
    return context


class ProcessExecutor(NodeExecutor):
    """Join node: fires when every declared input holds a token."""

    def receive(
        self,
        node_id: str,
        token: Token,
        sender_id: str,
        input_name: str | None,
    ) -> DeliveryOutcome:
        state = self._state(node_id, ProcessState)
        buffer = state.input_buffers.setdefault(sender_id, [])
        buffer.append(token)
        self._ctx.record(
            node_id,
            LedgerAction.TOKEN_RECEIVED,
            value=token.value,
            details=f"From {sender_id} ({len(buffer)} buffered)",
            token=token,
        )
        self.try_fire(node_id)
        return DeliveryOutcome(node_id, accepted=True)

    def ready(self, node_id: str) -> bool:
        config = self._config(node_id, ProcessConfig)
        state = self._state(node_id, ProcessState)
        return all(state.input_buffers.get(port.node_id or "") for port in config.inputs)

    def try_fire(self, node_id: str) -> list[Token]:
        """Fire once if every input holds at least one token.

        Returns:
            Output tokens created by the firing (empty if it did not fire)
        """
        if not self.ready(node_id):
            return []

        config = self._config(node_id, ProcessConfig)
        state = self._state(node_id, ProcessState)
        tick = self._ctx.tick

        self._ctx.transition(node_id, ProcessPhase.EMITTING, "fire")
        consumed = [
            (port, state.input_buffers[port.node_id or ""].pop(0)) for port in config.inputs
        ]
        consumed_tokens = [token for _, token in consumed]
        state.last_fired_time = tick
        self._ctx.record(
            node_id,
            LedgerAction.FIRING,
            value=len(config.inputs),
            details="Consumed " + ", ".join(f"{p.key}={t.value}" for p, t in consumed),
            related=consumed_tokens,
        )

        context = _formula_context(consumed)
        created: list[Token] = []
        for index, output in enumerate(config.outputs):
            result = evaluate_formula(output.formula, context)
            if not result.ok:
                self._ctx.report_error(
                    node_id,
                    f"Node {node_id} (output {index}) formula error: {result.error}",
                    details=f"Output '{output.name}' formula '{output.formula}': {result.error}",
                )
                continue
            token = self._tokens.create_token(
                node_id,
                result.value,
                tick,
                consumed_tokens,
                operation=LineageOperation.TRANSFORMED,
            )
            self._ctx.record(
                node_id,
                LedgerAction.TOKEN_EMITTED,
                value=result.value,
                details=f"{output.name} -> {output.destination_node_id}",
                token=token,
            )
            self._router.route(token, node_id, output)
            created.append(token)

        self._ctx.transition(node_id, ProcessPhase.IDLE, "outputs_sent")
        return created


class EnhancedFsmExecutor(NodeExecutor):
    """Buffers tokens and drains them to directly connected sinks each tick."""

    def receive(
        self,
        node_id: str,
        token: Token,
        sender_id: str,
        input_name: str | None,
    ) -> DeliveryOutcome:
        state = self._state(node_id, EnhancedFsmState)
        state.token_buffer.append(token)
        self._ctx.record(
            node_id,
            LedgerAction.TOKEN_RECEIVED,
            value=token.value,
            details=f"From {sender_id}",
            token=token,
        )
        return DeliveryOutcome(node_id, accepted=True)

    def drain(self, node_id: str) -> int:
        """Forward every buffered token to each Sink output.

        Returns:
            Number of tokens drained
        """
        config = self._config(node_id, EnhancedFsmConfig)
        state = self._state(node_id, EnhancedFsmState)
        if not state.token_buffer:
            return 0

        drained = list(state.token_buffer)
        state.token_buffer.clear()
        sink_ports = [
            port
            for port in config.outputs
            if (dest := self._ctx.config(port.destination_node_id)) is not None
            and dest.kind == NodeKind.SINK.value
        ]
        for token in drained:
            for port in sink_ports:
                self._router.route(token, node_id, port)

        state.processed_count += len(drained)
        state.last_processed_time = self._ctx.tick
        self._ctx.record(
            node_id,
            LedgerAction.TOKENS_PROCESSED,
            value=len(drained),
            details="Forwarded to " + (", ".join(p.destination_node_id for p in sink_ports) or "no sinks"),
        )
        return len(drained)


class SinkExecutor(NodeExecutor):
    """Consumes tokens."""

    def receive(
        self,
        node_id: str,
        token: Token,
        sender_id: str,
        input_name: str | None,
    ) -> DeliveryOutcome:
        state = self._state(node_id, SinkState)
        self._ctx.transition(node_id, SinkPhase.PROCESSING, "token_received")
        state.consumed_tokens.append(token)
        state.consumed_token_count += 1
        state.last_consumed_time = self._ctx.tick
        self._ctx.record(
            node_id,
            LedgerAction.CONSUMING,
            value=token.value,
            details=f"From {sender_id}",
            token=token,
        )
        self._ctx.record(
            node_id,
            LedgerAction.TOKEN_CONSUMED,
            value=state.consumed_token_count,
            details=f"Consumed value {token.value}",
            token=token,
        )
        self._ctx.transition(node_id, SinkPhase.IDLE, "consumption_complete")
        return DeliveryOutcome(node_id, accepted=True)


class ModuleExecutor(NodeExecutor):
    """Holds tokens delivered to a module.

    Sub-graph execution is not implemented; modules stay idle.
    """

    def receive(
        self,
        node_id: str,
        token: Token,
        sender_id: str,
        input_name: str | None,
    ) -> DeliveryOutcome:
        state = self._state(node_id, ModuleState)
        state.input_buffers.setdefault(sender_id, []).append(token)
        self._ctx.record(
            node_id,
            LedgerAction.TOKEN_RECEIVED,
            value=token.value,
            details=f"Held in input buffer '{sender_id}'",
            token=token,
        )
        return DeliveryOutcome(node_id, accepted=True)
