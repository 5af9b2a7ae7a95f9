"""
Order splitting and fill aggregation.

Large notional is split into legs at staggered target prices to bound
market impact; filled legs are folded back into one size-weighted entry
price. Both functions are pure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol

SPLIT_THRESHOLD_USD = 50.0
SPLIT_LEGS = 3


@dataclass(frozen=True)
class OrderLeg:
    """One planned sub-order: USD size at a target price (0–100 scale)."""

    price: float
    size: float


class _Fill(Protocol):
    price: float
    size: float


def split_order(
    trade_size: float,
    entry_price: float,
    *,
    threshold: float = SPLIT_THRESHOLD_USD,
    legs: int = SPLIT_LEGS,
) -> list[OrderLeg]:
    """Divide a USD trade into legs.

    ``trade_size <= threshold`` yields a single leg at ``entry_price``.
    Larger trades yield ``legs`` equal legs at ``entry_price + i``.
    """
    if trade_size <= threshold:
        return [OrderLeg(price=entry_price, size=trade_size)]

    per_leg = trade_size / legs
    return [OrderLeg(price=entry_price + i, size=per_leg) for i in range(legs)]


def split_size(
    size: float,
    *,
    threshold: float = SPLIT_THRESHOLD_USD,
    legs: int = SPLIT_LEGS,
) -> list[float]:
    """Leg sizes for an exit of ``size`` USD (no target prices on sells)."""
    if size <= threshold:
        return [size]
    return [size / legs] * legs


def weighted_average_price(fills: Iterable[_Fill]) -> float:
    """Size-weighted average price of the fills, or 0.0 when there are none."""
    total_value = 0.0
    total_size = 0.0
    for fill in fills:
        total_value += fill.price * fill.size
        total_size += fill.size
    return total_value / total_size if total_size > 0 else 0.0
