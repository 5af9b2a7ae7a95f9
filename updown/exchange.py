"""
Exchange — the price-quoting / order-submission capability the engine drives.

The engine never talks to the network directly. It is handed an
``Exchange`` implementation (``PolymarketExchange`` in production, a
scripted fake in tests) and treats it as a black box with latency and
transient failures. Every call into it goes through a ``RetryPolicy``.

Contract:
  - ``get_price(token_id, side)`` returns a decimal strictly inside (0, 1),
    or raises ``PriceFetchError`` / ``NetworkError``.
  - ``submit_market_order(token_id, side, amount, fee_rate_bps)`` places a
    fill-and-kill market order and returns the exchange order id, or raises
    ``OrderError`` (retryable only when the exchange says so).
    ``amount`` is USD for BUY and shares for SELL.
  - ``get_fee_rate_bps(token_id)`` returns the taker fee in basis points.
"""

from __future__ import annotations

import abc

from pydantic import BaseModel

from updown.models import Side


class Credentials(BaseModel):
    """Opaque L2 API credentials. Presence switches the engine to live orders."""

    api_key: str
    api_secret: str
    passphrase: str

    def __repr__(self) -> str:
        return f"Credentials(api_key={self.api_key[:6]!r}...)"

    __str__ = __repr__


class Exchange(abc.ABC):
    """Abstract exchange capability consumed by the executor."""

    @abc.abstractmethod
    async def get_price(self, token_id: str, side: Side) -> float: ...

    @abc.abstractmethod
    async def submit_market_order(
        self,
        token_id: str,
        side: Side,
        amount: float,
        fee_rate_bps: int,
    ) -> str: ...

    async def get_fee_rate_bps(self, token_id: str) -> int:
        """Taker fee for a token. Implementations without a fee endpoint return 0."""
        return 0
