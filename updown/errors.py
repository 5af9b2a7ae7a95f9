"""
Structured Error Taxonomy — Typed exceptions for the UP/DOWN trading engine.

Design principles:
  - Every error carries `retryable` + `error_code` for automated decisions
  - Hierarchy mirrors the engine layers: Validation → Exchange → Execution
  - Structured logging friendly: all errors serialize cleanly to JSON
  - `is_retryable()` is the single retryability predicate used by RetryPolicy
"""

from __future__ import annotations

from typing import Any

import httpx

__all__ = [
    # Base
    "UpDownError",
    # Validation layer
    "ValidationError",
    "InvalidPriceError",
    # Exchange layer
    "ExchangeError",
    "NetworkError",
    "RateLimitError",
    "PriceFetchError",
    "OrderError",
    "NoCredentialsError",
    # Execution layer
    "PositionCloseError",
    # Predicates
    "is_retryable",
]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Base
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class UpDownError(Exception):
    """Root exception for the trading engine.

    Attributes:
        retryable: If True, the caller should consider retrying the operation.
        error_code: Machine-readable code for dashboards and alerting.
        context: Extra key/value data for structured logs (token id, side...).
    """

    retryable: bool = False
    error_code: str = "UPDOWN_ERROR"

    def __init__(
        self,
        message: str,
        *,
        detail: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.detail = detail
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Serialize for structured logging."""
        return {
            "error_code": self.error_code,
            "message": str(self),
            "detail": self.detail,
            "retryable": self.retryable,
            "context": self.context,
        }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Validation Layer: bad configuration or input, never retried
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ValidationError(UpDownError):
    """Configuration or input failed validation."""

    error_code = "INVALID_STRATEGY_CONFIG"

    def __init__(self, message: str, *, field: str = "", value: Any = None, **kwargs):
        self.field = field
        self.value = value
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["field"] = self.field
        d["value"] = self.value
        return d


class InvalidPriceError(UpDownError):
    """A price fell outside its valid scale ((0,1) decimal or [0,100] percent)."""

    error_code = "INVALID_PRICE"

    def __init__(self, message: str, *, price: Any = None, **kwargs):
        self.price = price
        super().__init__(message, **kwargs)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Exchange Layer: errors from price quoting / order submission
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ExchangeError(UpDownError):
    """Base for all errors raised by an Exchange implementation."""

    error_code = "EXCHANGE_ERROR"


class NetworkError(ExchangeError):
    """Exchange is unreachable (connect failure, timeout)."""

    retryable = True
    error_code = "NETWORK_ERROR"


class RateLimitError(NetworkError):
    """Exchange returned a rate limit error."""

    error_code = "RATE_LIMIT_EXCEEDED"


class PriceFetchError(ExchangeError):
    """A price quote could not be obtained."""

    retryable = True
    error_code = "PRICE_FETCH_FAILED"


class OrderError(ExchangeError):
    """The exchange rejected an order.

    Retryability is server-indicated (e.g. 5xx), so it is set per instance.
    """

    error_code = "ORDER_PLACEMENT_FAILED"

    def __init__(self, message: str, *, retryable: bool = False, **kwargs):
        self.retryable = retryable
        super().__init__(message, **kwargs)


class NoCredentialsError(ExchangeError):
    """Live order submission attempted without API credentials."""

    error_code = "NO_API_CREDENTIALS"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Execution Layer
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class PositionCloseError(UpDownError):
    """The forced stop-loss exit could not close the position."""

    error_code = "POSITION_CLOSE_FAILED"

    def __init__(self, message: str, *, remaining_size: float = 0.0, **kwargs):
        self.remaining_size = remaining_size
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["remaining_size"] = self.remaining_size
        return d


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Predicates
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def is_retryable(exc: BaseException) -> bool:
    """Default retryability predicate for external calls."""
    if isinstance(exc, UpDownError):
        return exc.retryable
    return isinstance(exc, httpx.TransportError)
