"""
Pydantic models for the UP/DOWN trading engine.

Defines the records that flow between the engine, the executor and
subscribers:

    StrategyConfig  — entry/exit thresholds, validated at configure time
    MarketContext   — the active UP/DOWN token pair
    SpotSnapshot    — external spot price vs. the window's reference price
    Position        — the single live position owned by the engine
    Trade           — one ledger entry per submitted order leg
    TradingStatus   — derived summary published to subscribers

All prices on these models use the 0–100 display scale.
"""

from __future__ import annotations

import enum
import time
from uuid import uuid4

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────


class Side(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"


class Direction(str, enum.Enum):
    """Which outcome token a position holds."""

    UP = "UP"
    DOWN = "DOWN"


class TradeStatus(str, enum.Enum):
    PENDING = "pending"
    FILLED = "filled"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OrderType(str, enum.Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


# ── Strategy ─────────────────────────────────────────────────────────


class StrategyConfig(BaseModel):
    """Entry/exit thresholds for the poll loop.

    Field ranges are enforced by pydantic; the ordering invariant
    ``stop_loss_price < entry_price < profit_target_price`` is enforced by
    ``updown.strategy_store.validate_strategy``.
    """

    enabled: bool = False
    entry_price: float = Field(
        default=96.0, ge=0, le=100, description="Lower bound of the entry band"
    )
    entry_band_width: float = Field(
        default=1.0, gt=0, description="Band is [entry_price, entry_price + width]"
    )
    profit_target_price: float = Field(default=100.0, ge=0, le=100)
    stop_loss_price: float = Field(default=91.0, ge=0, le=100)
    trade_size: float = Field(default=50.0, gt=0, le=10_000, description="USD notional")
    price_difference_filter: float | None = Field(
        default=None,
        ge=0,
        description="Required |reference - spot| before entering; None disables",
    )


# ── Market inputs ────────────────────────────────────────────────────


class MarketContext(BaseModel):
    """The currently active market window and its outcome tokens."""

    slug: str
    up_token_id: str = ""
    down_token_id: str = ""

    @property
    def is_tradeable(self) -> bool:
        return bool(self.up_token_id and self.down_token_id)

    def token_for(self, direction: Direction) -> str:
        return self.up_token_id if direction == Direction.UP else self.down_token_id


class SpotSnapshot(BaseModel):
    """External spot price and the window's reference ("price to beat")."""

    current_price: float | None = None
    reference_price: float | None = None


# ── Position ─────────────────────────────────────────────────────────


class FilledOrder(BaseModel):
    """One filled entry leg backing a position."""

    order_id: str
    price: float
    size: float
    timestamp: float = Field(default_factory=time.time)


class Position(BaseModel):
    """The single open position. Size is USD; entry_price is size-weighted."""

    market_slug: str
    token_id: str
    direction: Direction
    size: float
    entry_price: float
    filled_orders: list[FilledOrder] = Field(default_factory=list)
    # Transient, recomputed every poll
    current_price: float | None = None
    unrealized_pnl: float | None = None

    def mark(self, current_price: float) -> None:
        """Update the transient mark-to-market fields."""
        self.current_price = current_price
        if self.entry_price > 0:
            self.unrealized_pnl = (
                (current_price - self.entry_price) / self.entry_price * self.size
            )


# ── Trade ledger ─────────────────────────────────────────────────────


class Trade(BaseModel):
    """One submitted order leg. Immutable once filled/failed/cancelled."""

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    market_slug: str
    token_id: str
    side: Side
    size: float
    price: float
    timestamp: float = Field(default_factory=time.time)
    status: TradeStatus = TradeStatus.PENDING
    order_type: OrderType = OrderType.MARKET
    direction: Direction
    reason: str = ""
    profit: float | None = None
    transaction_hash: str | None = None

    def resolve(self, status: TradeStatus, **updates) -> Trade:
        """Return a copy moved out of ``pending`` into a terminal status."""
        return self.model_copy(
            update={"status": status, "timestamp": time.time(), **updates}
        )


class TradingStatus(BaseModel):
    """Summary derived from the ledger and the current position."""

    is_active: bool = False
    total_trades: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    total_profit: float = 0.0
    pending_orders: int = 0
    current_position: Position | None = None
