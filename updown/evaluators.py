"""
Entry and exit condition evaluators.

Pure functions over freshly fetched BUY-side quotes (0–100 scale) and the
strategy thresholds. They never perform I/O; the engine fetches quotes and
acts on the returned decision.

Entry is range based: a token qualifies when its price lies in the
inclusive band ``[entry_price, entry_price + entry_band_width]``. UP is
checked first, so it wins when both tokens qualify.

Exit is threshold based on the held token's price: at or above the profit
target takes profit, at or below the stop loss stops out.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from updown.models import Direction, MarketContext, SpotSnapshot, StrategyConfig

PRICE_DIFFERENCE_TOLERANCE = 0.01


@dataclass(frozen=True)
class PriceQuotes:
    """BUY-side quotes for both outcome tokens, 0–100 scale."""

    up_price: float
    down_price: float

    def for_direction(self, direction: Direction) -> float:
        return self.up_price if direction == Direction.UP else self.down_price


@dataclass(frozen=True)
class EntryDecision:
    token_id: str
    direction: Direction
    observed_price: float


class ExitKind(str, enum.Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"


@dataclass(frozen=True)
class ExitSignal:
    kind: ExitKind
    observed_price: float


# ── Entry ────────────────────────────────────────────────────────────


def passes_price_difference_filter(
    config: StrategyConfig, spot: SpotSnapshot | None
) -> bool:
    """True when the optional spot/reference gap gate is off or satisfied.

    With the filter set, both prices must be known and
    ``|reference - spot|`` must sit within 0.01 of the filter value.
    """
    target = config.price_difference_filter
    if target is None:
        return True
    if spot is None or spot.current_price is None or spot.reference_price is None:
        return False
    gap = abs(spot.reference_price - spot.current_price)
    return abs(gap - target) <= PRICE_DIFFERENCE_TOLERANCE


def in_entry_band(price: float, config: StrategyConfig) -> bool:
    low = config.entry_price
    return low <= price <= low + config.entry_band_width


def evaluate_entry(
    quotes: PriceQuotes,
    config: StrategyConfig,
    market: MarketContext,
    spot: SpotSnapshot | None = None,
) -> EntryDecision | None:
    """Decide whether to enter and on which token. None means no action."""
    if not passes_price_difference_filter(config, spot):
        return None

    if in_entry_band(quotes.up_price, config):
        return EntryDecision(
            token_id=market.up_token_id,
            direction=Direction.UP,
            observed_price=quotes.up_price,
        )
    if in_entry_band(quotes.down_price, config):
        return EntryDecision(
            token_id=market.down_token_id,
            direction=Direction.DOWN,
            observed_price=quotes.down_price,
        )
    return None


# ── Exit ─────────────────────────────────────────────────────────────


def evaluate_exit(
    direction: Direction,
    quotes: PriceQuotes,
    config: StrategyConfig,
) -> ExitSignal | None:
    """Decide whether the held position should take profit or stop out."""
    return evaluate_exit_price(quotes.for_direction(direction), config)


def evaluate_exit_price(observed: float, config: StrategyConfig) -> ExitSignal | None:
    if observed >= config.profit_target_price:
        return ExitSignal(kind=ExitKind.TAKE_PROFIT, observed_price=observed)
    if observed <= config.stop_loss_price:
        return ExitSignal(kind=ExitKind.STOP_LOSS, observed_price=observed)
    return None
