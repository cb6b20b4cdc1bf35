# src/tokensim/engine/fsm_executor.py
"""FsmExecutor: user-defined finite state machines.

Transitions are evaluated at two points:
- On token arrival: every token_received transition leaving the state the
  machine was in when the token arrived, then the condition transitions.
- Once per tick: timer transitions due on this tick, then the condition
  transitions.

Executing a transition records it, runs the old state's on_exit actions,
moves the state machine and runs the new state's on_entry actions.
Action and condition formula failures are isolated to that action or
condition.
"""

from typing import TYPE_CHECKING, Any

from tokensim.contracts.enums import ActionKind, LedgerAction, LineageOperation, TriggerKind
from tokensim.contracts.identity import Token
from tokensim.contracts.results import DeliveryOutcome
from tokensim.contracts.state import FsmState
from tokensim.core.definition import FsmAction, FsmConfig, FsmTransition
from tokensim.engine.context import RunContext
from tokensim.engine.executors import NodeExecutor
from tokensim.engine.expression_parser import evaluate_formula

if TYPE_CHECKING:
    from tokensim.engine.router import TokenRouter
    from tokensim.engine.tokens import TokenManager

DEFAULT_INPUT = "input"


class FsmExecutor(NodeExecutor):
    """Runs FiniteStateMachine nodes.

    Example:
        executor = FsmExecutor(ctx, tokens, router, timer_interval=5)
        executor.receive("fsm_1", token, "source_1", None)  # token_received
        executor.tick("fsm_1")                              # timers, conditions
    """

    def __init__(
        self,
        ctx: RunContext,
        tokens: "TokenManager",
        router: "TokenRouter",
        *,
        timer_interval: int = 5,
    ) -> None:
        super().__init__(ctx, tokens, router)
        self._timer_interval = timer_interval

    def receive(
        self,
        node_id: str,
        token: Token,
        sender_id: str,
        input_name: str | None,
    ) -> DeliveryOutcome:
        config = self._config(node_id, FsmConfig)
        state = self._state(node_id, FsmState)
        name = input_name or DEFAULT_INPUT

        state.input_buffers.setdefault(name, []).append(token)
        self._ctx.record(
            node_id,
            LedgerAction.TOKEN_RECEIVED,
            value=token.value,
            details=f"{name} <- {sender_id}",
            token=token,
        )

        # Selected against the state at arrival; no mutual-exclusion guard
        arrival_state = state.state_machine.current_state
        due = [
            t
            for t in config.fsm.transitions
            if t.trigger == TriggerKind.TOKEN_RECEIVED and t.from_state == arrival_state
        ]
        for transition in due:
            self.execute_transition(node_id, transition)

        self.evaluate_conditions(node_id)
        return DeliveryOutcome(node_id, accepted=True)

    def tick(self, node_id: str) -> None:
        """Fire timer transitions due on this tick, then check conditions."""
        config = self._config(node_id, FsmConfig)
        state = self._state(node_id, FsmState)
        tick = self._ctx.tick
        current = state.state_machine.current_state

        due = [
            t
            for t in config.fsm.transitions
            if t.trigger == TriggerKind.TIMER
            and t.from_state == current
            and tick % (t.interval or self._timer_interval) == 0
        ]
        for transition in due:
            self.execute_transition(node_id, transition)

        self.evaluate_conditions(node_id)

    def evaluate_conditions(self, node_id: str) -> None:
        """One pass over the condition transitions in declaration order.

        Each transition is checked against the state current at that point,
        so an earlier transition in the pass can enable a later one.
        """
        config = self._config(node_id, FsmConfig)
        state = self._state(node_id, FsmState)

        for transition in config.fsm.transitions:
            if transition.trigger != TriggerKind.CONDITION:
                continue
            if transition.from_state != state.state_machine.current_state:
                continue
            result = evaluate_formula(transition.condition or "", self.context(node_id))
            if not result.ok:
                self._ctx.report_error(
                    node_id,
                    f"Node {node_id} condition error: {result.error}",
                    details=f"Condition '{transition.condition}': {result.error}",
                )
                continue
            if result.value:
                self.execute_transition(node_id, transition)

    def execute_transition(self, node_id: str, transition: FsmTransition) -> None:
        config = self._config(node_id, FsmConfig)
        state = self._state(node_id, FsmState)

        self._ctx.record(
            node_id,
            LedgerAction.FSM_TRANSITION,
            value=transition.to_state,
            details=(
                f"{transition.from_state} -> {transition.to_state} "
                f"({transition.trigger.value})"
            ),
        )

        old_state = config.fsm.state(transition.from_state)
        if old_state is not None:
            for action in old_state.on_exit:
                self.run_action(node_id, action)

        self._ctx.transition(node_id, transition.to_state, transition.trigger.value)
        state.last_transition_time = self._ctx.tick

        new_state = config.fsm.state(transition.to_state)
        if new_state is not None:
            for action in new_state.on_entry:
                self.run_action(node_id, action)

    def context(self, node_id: str) -> dict[str, Any]:
        """Formula names: variables, then the latest token per input."""
        state = self._state(node_id, FsmState)
        context: dict[str, Any] = dict(state.variables)
        latest = {name: token.as_context() for name, token in state.latest_tokens().items()}
        context.update(latest)
        context["variables"] = dict(state.variables)
        context["inputs"] = latest
        context["tick"] = self._ctx.tick
        return context

    def run_action(self, node_id: str, action: FsmAction) -> None:
        state = self._state(node_id, FsmState)

        match action.action:
            case ActionKind.EMIT:
                self._emit(node_id, action)
            case ActionKind.LOG:
                message = str(action.value) if action.value is not None else action.formula or ""
                self._ctx.record(node_id, LedgerAction.FSM_LOG, value=action.value, details=message)
            case ActionKind.SET_VARIABLE:
                ok, value = self._action_value(node_id, action)
                if ok:
                    state.variables[action.target or ""] = value
            case ActionKind.INCREMENT | ActionKind.DECREMENT:
                step = action.value if action.value is not None else 1
                target = action.target or ""
                try:
                    if action.action == ActionKind.DECREMENT:
                        step = -step
                    state.variables[target] = state.variables.get(target, 0) + step
                except TypeError as e:
                    self._ctx.report_error(
                        node_id,
                        f"Node {node_id} {action.action.value} '{target}' failed: {e}",
                    )
            case _:
                raise TypeError(f"Unhandled action kind: {action.action}")

    def _action_value(self, node_id: str, action: FsmAction) -> tuple[bool, Any]:
        """Formula result if a formula is set, else the literal value."""
        if action.formula is None:
            return True, action.value
        result = evaluate_formula(action.formula, self.context(node_id))
        if not result.ok:
            self._ctx.report_error(
                node_id,
                f"Node {node_id} {action.action.value} formula error: {result.error}",
                details=f"Formula '{action.formula}': {result.error}",
            )
            return False, None
        return True, result.value

    def _emit(self, node_id: str, action: FsmAction) -> None:
        config = self._config(node_id, FsmConfig)
        port = next((o for o in config.outputs if o.name == action.target), None)
        if port is None:
            self._ctx.report_error(node_id, f"Node {node_id}: no output named '{action.target}'")
            return

        ok, value = self._action_value(node_id, action)
        if not ok:
            return

        token = self._tokens.create_token(
            node_id,
            value,
            self._ctx.tick,
            operation=LineageOperation.EMITTED,
        )
        self._ctx.record(
            node_id,
            LedgerAction.TOKEN_EMITTED,
            value=value,
            details=f"{port.name} -> {port.destination_node_id}",
            token=token,
        )
        self._router.route(token, node_id, port)
