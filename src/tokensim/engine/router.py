# src/tokensim/engine/router.py
"""TokenRouter: delivers tokens to destination nodes through a work queue.

Routing never calls a receiver directly from the sender. Deliveries are
queued and drained first-in first-out inside a cascade scope, so a
Process node that fires in response to a delivery only enqueues its own
outputs. Chains of firings therefore run iteratively, bounded by
max_iterations, instead of recursing.

A cascade that exceeds the bound is cut off: the remaining deliveries are
discarded and the overflow is recorded against the node that started the
cascade.
"""

from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Protocol

import structlog

from tokensim.contracts.errors import CascadeOverflowError
from tokensim.contracts.identity import Token
from tokensim.contracts.results import DeliveryOutcome
from tokensim.core.definition import OutputPort
from tokensim.engine.context import RunContext

slog = structlog.get_logger(__name__)

# Default iteration guard; EngineSettings.max_cascade_iterations overrides it
MAX_CASCADE_ITERATIONS = 10_000


class TokenReceiver(Protocol):
    """Kind-specific reception rule for tokens arriving at a node."""

    def receive(
        self,
        node_id: str,
        token: Token,
        sender_id: str,
        input_name: str | None,
    ) -> DeliveryOutcome: ...


@dataclass
class _Delivery:
    """Item in the delivery work queue."""

    token: Token
    sender_id: str
    destination_id: str
    input_name: str | None


class TokenRouter:
    """Queues deliveries and dispatches them by destination kind.

    Example:
        router = TokenRouter(ctx)
        router.bind({"sink": sink_executor, "process": process_executor, ...})
        with router.cascade("source_1"):
            router.route(token, "source_1", port)
        # every delivery, including ones enqueued by firings, is done here
    """

    def __init__(self, ctx: RunContext, *, max_iterations: int = MAX_CASCADE_ITERATIONS) -> None:
        self._ctx = ctx
        self._max_iterations = max_iterations
        self._receivers: dict[str, TokenReceiver] = {}
        self._queue: deque[_Delivery] = deque()
        self._active = False
        self._delivered = 0
        self._outcomes: list[DeliveryOutcome] = []

    @property
    def delivered_count(self) -> int:
        """Deliveries dispatched since the router was built."""
        return self._delivered

    @property
    def last_outcomes(self) -> list[DeliveryOutcome]:
        """Outcomes of the most recently completed cascade."""
        return list(self._outcomes)

    def bind(self, receivers: dict[str, TokenReceiver]) -> None:
        """Register the receiver for each node kind."""
        self._receivers = dict(receivers)

    def route(self, token: Token, sender_id: str, port: OutputPort) -> None:
        """Send token along an output port."""
        self.deliver(token, sender_id, port.destination_node_id, port.destination_input_name)

    def deliver(
        self,
        token: Token,
        sender_id: str,
        destination_id: str,
        input_name: str | None = None,
    ) -> None:
        """Queue a delivery. Outside a cascade scope it is drained at once."""
        self._queue.append(_Delivery(token, sender_id, destination_id, input_name))
        if not self._active:
            with self.cascade(sender_id):
                pass

    @contextmanager
    def cascade(self, origin_node_id: str) -> Iterator[None]:
        """Scope in which deliveries queue up; they drain on exit.

        Nested scopes join the outermost one.
        """
        if self._active:
            yield
            return

        self._active = True
        self._outcomes = []
        try:
            yield
            self._drain(origin_node_id)
        except CascadeOverflowError as e:
            slog.warning(
                "Cascade overflow",
                origin=e.origin_node_id,
                iterations=e.iterations,
                discarded=e.pending,
                tick=self._ctx.tick,
            )
            self._ctx.report_error(origin_node_id, str(e), details=f"cascade_overflow: {e}")
        finally:
            self._queue.clear()
            self._active = False

    def _drain(self, origin_node_id: str) -> None:
        iterations = 0
        while self._queue:
            if iterations >= self._max_iterations:
                raise CascadeOverflowError(origin_node_id, iterations, len(self._queue))
            iterations += 1
            delivery = self._queue.popleft()
            self._dispatch(delivery)

    def _dispatch(self, delivery: _Delivery) -> None:
        config = self._ctx.config(delivery.destination_id)
        if config is None:
            self._ctx.report_error(
                delivery.sender_id,
                f"Node {delivery.sender_id}: destination '{delivery.destination_id}' does not exist",
            )
            return
        receiver = self._receivers.get(config.kind)
        if receiver is None:
            self._ctx.report_error(
                delivery.sender_id,
                f"Node {delivery.sender_id}: {config.kind} node "
                f"'{delivery.destination_id}' cannot receive tokens",
            )
            return

        self._delivered += 1
        outcome = receiver.receive(
            delivery.destination_id,
            delivery.token,
            delivery.sender_id,
            delivery.input_name,
        )
        self._outcomes.append(outcome)
