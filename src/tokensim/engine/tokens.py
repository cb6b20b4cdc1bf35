# src/tokensim/engine/tokens.py
"""TokenManager: token creation with lineage registration.

Every token the engine creates goes through here, so no token can exist
without a lineage record.
"""

import uuid
from collections.abc import Sequence
from typing import Any

from tokensim.contracts.enums import LineageOperation
from tokensim.contracts.identity import Token
from tokensim.core.lineage import LineageStore


def _generate_id() -> str:
    """Generate a unique token ID."""
    return uuid.uuid4().hex


class TokenManager:
    """High-level token creation.

    Example:
        manager = TokenManager(lineage)
        root = manager.create_source_token("src", value=5, tick=1)
        total = manager.create_token(
            "queue", 12, 5, [a, b, c], operation=LineageOperation.AGGREGATED
        )
    """

    def __init__(self, lineage: LineageStore) -> None:
        self._lineage = lineage
        self._created = 0

    @property
    def created_count(self) -> int:
        """Tokens created since this manager was built."""
        return self._created

    def create_token(
        self,
        origin_node_id: str,
        value: Any,
        tick: int,
        sources: Sequence[Token] = (),
        *,
        operation: LineageOperation,
    ) -> Token:
        """Create a token and register its lineage.

        Args:
            origin_node_id: Node creating the token
            value: Token payload
            tick: Current tick
            sources: Tokens consumed to produce this one (empty for roots)
            operation: How the token was produced

        Returns:
            The new token
        """
        token = Token(
            token_id=_generate_id(),
            value=value,
            created_at=tick,
            origin_node_id=origin_node_id,
        )
        self._lineage.register(
            token,
            parents=[s.token_id for s in sources],
            operation=operation,
        )
        self._created += 1
        return token

    def create_source_token(self, origin_node_id: str, value: Any, tick: int) -> Token:
        return self.create_token(
            origin_node_id, value, tick, operation=LineageOperation.SOURCE
        )
