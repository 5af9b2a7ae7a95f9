"""
TradeLedger — the engine's trade history, open position and derived status.

Owned by one ``TradingEngine``; the executor mutates it through the
methods below so every mutation is followed by a notification on the
engine's bus. Subscribers only ever see deep copies.

Status counters are derived from the ledger rather than kept as running
totals:
  - ``total_trades``       — legs that reached filled or failed
  - ``successful_trades``  — filled legs
  - ``failed_trades``      — failed legs
  - ``total_profit``       — sum of realized profit on filled SELL legs
"""

from __future__ import annotations

import structlog

from updown.bus import STATUS_CHANGED, TRADE_RECORDED, EventBus
from updown.models import Position, Side, Trade, TradeStatus, TradingStatus

logger = structlog.get_logger(__name__)


class TradeLedger:
    """Append-only trade list plus the single live position."""

    def __init__(self, bus: EventBus, *, sender: str = "engine") -> None:
        self._bus = bus
        self._sender = sender
        self._trades: list[Trade] = []
        self.position: Position | None = None
        self.is_active = False
        self.pending_orders = 0

    # ── Mutations ────────────────────────────────────────────────────

    async def record(self, trade: Trade) -> None:
        """Append a resolved trade and notify ``trade.recorded`` subscribers."""
        self._trades.append(trade)
        logger.info(
            "trade_recorded",
            trade_id=trade.id,
            side=trade.side.value,
            status=trade.status.value,
            size=round(trade.size, 2),
            price=round(trade.price, 2),
            profit=round(trade.profit, 4) if trade.profit is not None else None,
        )
        await self._bus.publish(
            TRADE_RECORDED, trade.model_dump(mode="json"), sender=self._sender
        )

    def clear(self) -> None:
        self._trades.clear()
        self.position = None

    async def publish_status(self) -> TradingStatus:
        status = self.status()
        await self._bus.publish(
            STATUS_CHANGED, status.model_dump(mode="json"), sender=self._sender
        )
        return status

    # ── Views ────────────────────────────────────────────────────────

    def trades(self) -> list[Trade]:
        """Copy of the ledger, oldest first."""
        return [t.model_copy() for t in self._trades]

    def status(self) -> TradingStatus:
        resolved = [
            t
            for t in self._trades
            if t.status in (TradeStatus.FILLED, TradeStatus.FAILED)
        ]
        filled = [t for t in resolved if t.status == TradeStatus.FILLED]
        profit = sum(
            t.profit or 0.0 for t in filled if t.side == Side.SELL
        )
        return TradingStatus(
            is_active=self.is_active,
            total_trades=len(resolved),
            successful_trades=len(filled),
            failed_trades=len(resolved) - len(filled),
            total_profit=profit,
            pending_orders=self.pending_orders,
            current_position=(
                self.position.model_copy(deep=True) if self.position else None
            ),
        )
