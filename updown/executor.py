"""
OrderExecutor — turns entry/exit decisions into submitted order legs.

Responsibilities:
  - Split the requested size into legs and submit them strictly one after
    another (never concurrently) against the exchange
  - Record one ledger Trade per leg (filled, failed or cancelled)
  - Build / extend / shrink / destroy the Position from the legs that
    actually filled
  - Enforce single-flight: while an entry or exit sequence is running,
    further attempts are dropped, not queued

Execution mode:
  - With ``Credentials``: live. Each leg quotes the token, looks up the fee
    rate and submits a fill-and-kill market order, all under RetryPolicy.
  - Without: simulated. Each leg fills at the observed price with no
    order I/O, so the engine runs end to end without a wallet.
"""

from __future__ import annotations

import asyncio
import enum
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable
from uuid import uuid4

import structlog

from updown.evaluators import EntryDecision
from updown.exchange import Credentials, Exchange
from updown.ledger import TradeLedger
from updown.models import (
    FilledOrder,
    MarketContext,
    Position,
    Side,
    StrategyConfig,
    Trade,
    TradeStatus,
)
from updown.orders import (
    SPLIT_LEGS,
    SPLIT_THRESHOLD_USD,
    split_order,
    split_size,
    weighted_average_price,
)
from updown.pricing import (
    to_decimal,
    to_percentage,
    validate_decimal_price,
    validate_price,
)
from updown.retry import RetryPolicy

logger = structlog.get_logger(__name__)

DEFAULT_FEE_RATE_BPS = 1000
_SIZE_EPSILON = 1e-9


class ExecutionState(str, enum.Enum):
    IDLE = "idle"
    ENTERING = "entering_position"
    EXITING = "exiting_position"


# ── Pending legs ─────────────────────────────────────────────────────


class PendingOrders:
    """Planned legs not yet handed to the exchange, keyed by token id."""

    def __init__(self) -> None:
        self._by_token: dict[str, list[Trade]] = {}

    def add(self, trade: Trade) -> None:
        self._by_token.setdefault(trade.token_id, []).append(trade)

    def take(self, trade: Trade) -> bool:
        """Remove a leg right before submission. False if it was cancelled."""
        legs = self._by_token.get(trade.token_id, [])
        for i, pending in enumerate(legs):
            if pending.id == trade.id:
                del legs[i]
                if not legs:
                    del self._by_token[trade.token_id]
                return True
        return False

    def cancel_all(self) -> list[Trade]:
        cancelled = [
            t.resolve(TradeStatus.CANCELLED, reason="Trading stopped - order cancelled")
            for legs in self._by_token.values()
            for t in legs
        ]
        self._by_token.clear()
        return cancelled

    def discard(self, token_id: str) -> None:
        self._by_token.pop(token_id, None)

    def __len__(self) -> int:
        return sum(len(legs) for legs in self._by_token.values())


# ── Results ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LegFill:
    order_id: str
    price: float  # 0–100
    amount: float  # USD for BUY, shares for SELL


@dataclass
class ExitResult:
    """Outcome of one exit sequence against the current position."""

    legs: int = 0
    filled_size: float = 0.0
    failed_legs: int = 0
    realized_profit: float = 0.0
    fill_prices: list[float] = field(default_factory=list)
    closed: bool = False


def _short(token_id: str) -> str:
    return token_id[:12] + "..." if len(token_id) > 12 else token_id


class OrderExecutor:
    """Drives OrderSplitter + Exchange calls and keeps the ledger in sync."""

    def __init__(
        self,
        exchange: Exchange,
        ledger: TradeLedger,
        *,
        credentials: Credentials | None = None,
        price_retry: RetryPolicy | None = None,
        order_retry: RetryPolicy | None = None,
        leg_delay: float = 0.5,
        split_threshold: float = SPLIT_THRESHOLD_USD,
        split_legs: int = SPLIT_LEGS,
        default_fee_rate_bps: int = DEFAULT_FEE_RATE_BPS,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._exchange = exchange
        self._ledger = ledger
        self.credentials = credentials
        self._price_retry = price_retry or RetryPolicy(initial_delay=0.5)
        self._order_retry = order_retry or RetryPolicy(initial_delay=1.0)
        self._leg_delay = leg_delay
        self._split_threshold = split_threshold
        self._split_legs = split_legs
        self._default_fee_rate_bps = default_fee_rate_bps
        self._sleep = sleep

        self._lock = asyncio.Lock()
        self._state = ExecutionState.IDLE
        self.pending = PendingOrders()

    # ── Single-flight guard ──────────────────────────────────────────

    @property
    def state(self) -> ExecutionState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def simulated(self) -> bool:
        return self.credentials is None

    @asynccontextmanager
    async def single_flight(self, state: ExecutionState) -> AsyncIterator[bool]:
        """Hold the order-placement guard for one sequence.

        Yields False without waiting when another sequence holds it. The
        guard is released on every exit path, exceptions included.
        """
        if self._lock.locked():
            logger.info(
                "order_sequence_skipped",
                requested=state.value,
                in_flight=self._state.value,
            )
            yield False
            return

        async with self._lock:
            self._state = state
            try:
                yield True
            finally:
                self._state = ExecutionState.IDLE

    # ── Quotes ───────────────────────────────────────────────────────

    async def quote(self, token_id: str, side: Side) -> float:
        """Fetch a validated quote under the price retry policy (0–100 scale)."""
        raw = await self._price_retry.call(self._exchange.get_price, token_id, side)
        return to_percentage(validate_decimal_price(raw, f"{side.value} price"))

    async def _fee_rate_bps(self, token_id: str) -> int:
        try:
            fee = await self._price_retry.call(self._exchange.get_fee_rate_bps, token_id)
        except Exception as e:
            logger.warning(
                "fee_rate_lookup_failed",
                token_id=_short(token_id),
                error=str(e),
                fallback_bps=self._default_fee_rate_bps,
            )
            return self._default_fee_rate_bps
        return fee or self._default_fee_rate_bps

    async def _fill_leg(
        self, token_id: str, side: Side, usd_size: float, reference_price: float
    ) -> LegFill:
        if self.simulated:
            return LegFill(
                order_id=f"0x{uuid4().hex}",
                price=validate_price(reference_price, "reference price"),
                amount=usd_size,
            )

        price = await self.quote(token_id, side)
        fee_rate_bps = await self._fee_rate_bps(token_id)
        amount = usd_size if side == Side.BUY else usd_size / to_decimal(price)

        logger.info(
            "submitting_market_order",
            token_id=_short(token_id),
            side=side.value,
            price=round(price, 2),
            amount=round(amount, 4),
            fee_rate_bps=fee_rate_bps,
        )
        order_id = await self._order_retry.call(
            self._exchange.submit_market_order, token_id, side, amount, fee_rate_bps
        )
        return LegFill(order_id=order_id, price=price, amount=amount)

    # ── Entry ────────────────────────────────────────────────────────

    async def open_position(
        self,
        market: MarketContext,
        decision: EntryDecision,
        config: StrategyConfig,
    ) -> Position | None:
        """Run one entry sequence. Returns a copy of the resulting position."""
        async with self.single_flight(ExecutionState.ENTERING) as acquired:
            if not acquired:
                return None
            return await self._enter(market, decision, config)

    async def _enter(
        self,
        market: MarketContext,
        decision: EntryDecision,
        config: StrategyConfig,
    ) -> Position | None:
        legs = split_order(
            config.trade_size,
            config.entry_price,
            threshold=self._split_threshold,
            legs=self._split_legs,
        )
        total = len(legs)
        mode = "Simulated market order (FAK)" if self.simulated else "Market order"
        logger.info(
            "entry_sequence_started",
            token_id=_short(decision.token_id),
            direction=decision.direction.value,
            observed=round(decision.observed_price, 2),
            trade_size=config.trade_size,
            legs=total,
            simulated=self.simulated,
        )

        planned = [
            Trade(
                market_slug=market.slug,
                token_id=decision.token_id,
                side=Side.BUY,
                size=leg.size,
                price=leg.price,
                direction=decision.direction,
                reason=f"Entry leg {i + 1}/{total} at target {leg.price:.2f}",
            )
            for i, leg in enumerate(legs)
        ]
        for trade in planned:
            self.pending.add(trade)
        self._ledger.pending_orders = len(self.pending)

        fills: list[FilledOrder] = []
        for i, (leg, trade) in enumerate(zip(legs, planned)):
            if not self.pending.take(trade):
                logger.info("entry_leg_cancelled", leg=i + 1, legs=total)
                continue
            self._ledger.pending_orders = len(self.pending)
            if i > 0 and not self.simulated:
                await self._sleep(self._leg_delay)

            label = f"({i + 1}/{total}) " if total > 1 else ""
            try:
                fill = await self._fill_leg(
                    decision.token_id, Side.BUY, leg.size, decision.observed_price
                )
            except Exception as e:
                logger.error(
                    "entry_leg_failed", leg=i + 1, legs=total, error=str(e)
                )
                await self._ledger.record(
                    trade.resolve(
                        TradeStatus.FAILED,
                        reason=f"{mode} {label}failed: {e}",
                    )
                )
                continue

            fills.append(FilledOrder(order_id=fill.order_id, price=fill.price, size=leg.size))
            await self._ledger.record(
                trade.resolve(
                    TradeStatus.FILLED,
                    price=fill.price,
                    transaction_hash=fill.order_id,
                    reason=(
                        f"{mode} {label}filled at {fill.price:.2f} "
                        f"({decision.direction.value})"
                    ),
                )
            )

        if fills:
            self._apply_entry_fills(market, decision, fills)
        else:
            logger.error("entry_sequence_no_fills", legs=total)

        await self._ledger.publish_status()
        position = self._ledger.position
        return position.model_copy(deep=True) if position else None

    def _apply_entry_fills(
        self,
        market: MarketContext,
        decision: EntryDecision,
        fills: list[FilledOrder],
    ) -> None:
        """Create the position, or fold new fills into one on the same token."""
        existing = self._ledger.position
        all_fills = list(fills)
        if existing is not None and existing.token_id == decision.token_id:
            all_fills = existing.filled_orders + all_fills

        position = Position(
            market_slug=market.slug,
            token_id=decision.token_id,
            direction=decision.direction,
            size=sum(f.size for f in all_fills),
            entry_price=weighted_average_price(all_fills),
            filled_orders=all_fills,
        )
        self._ledger.position = position
        logger.info(
            "position_opened",
            direction=position.direction.value,
            size=round(position.size, 2),
            entry_price=round(position.entry_price, 4),
            orders=len(position.filled_orders),
        )

    # ── Exit ─────────────────────────────────────────────────────────

    async def close_position(
        self, reason: str, reference_price: float
    ) -> ExitResult | None:
        """Run one guarded exit sequence for the whole position."""
        async with self.single_flight(ExecutionState.EXITING) as acquired:
            if not acquired:
                return None
            return await self.sell(reason, reference_price)

    async def sell(self, reason: str, reference_price: float) -> ExitResult | None:
        """Sell the current position. The caller must hold the guard.

        ``reference_price`` is the simulated fill price; live legs fill at
        the quote fetched right before submission.
        """
        position = self._ledger.position
        if position is None:
            return None

        sizes = split_size(
            position.size, threshold=self._split_threshold, legs=self._split_legs
        )
        total = len(sizes)
        result = ExitResult(legs=total)
        mode = "Simulated exit" if self.simulated else "Exit"
        logger.info(
            "exit_sequence_started",
            token_id=_short(position.token_id),
            size=round(position.size, 2),
            entry_price=round(position.entry_price, 4),
            legs=total,
            reason=reason,
            simulated=self.simulated,
        )

        planned = [
            Trade(
                market_slug=position.market_slug,
                token_id=position.token_id,
                side=Side.SELL,
                size=size,
                price=reference_price,
                direction=position.direction,
                reason=reason,
            )
            for size in sizes
        ]
        for trade in planned:
            self.pending.add(trade)
        self._ledger.pending_orders = len(self.pending)

        for i, (size, trade) in enumerate(zip(sizes, planned)):
            if not self.pending.take(trade):
                logger.info("exit_leg_cancelled", leg=i + 1, legs=total)
                continue
            self._ledger.pending_orders = len(self.pending)
            if i > 0 and not self.simulated:
                await self._sleep(self._leg_delay)

            label = f"({i + 1}/{total}) " if total > 1 else ""
            try:
                fill = await self._fill_leg(
                    position.token_id, Side.SELL, size, reference_price
                )
            except Exception as e:
                result.failed_legs += 1
                logger.error("exit_leg_failed", leg=i + 1, legs=total, error=str(e))
                await self._ledger.record(
                    trade.resolve(
                        TradeStatus.FAILED,
                        reason=f"{mode} {label}failed: {reason}: {e}",
                    )
                )
                continue

            profit = (fill.price - position.entry_price) / position.entry_price * size
            result.filled_size += size
            result.realized_profit += profit
            result.fill_prices.append(fill.price)
            await self._ledger.record(
                trade.resolve(
                    TradeStatus.FILLED,
                    price=fill.price,
                    profit=profit,
                    transaction_hash=fill.order_id,
                    reason=f"{mode} {label}{reason}",
                )
            )

        remaining = position.size - result.filled_size
        if remaining <= _SIZE_EPSILON:
            result.closed = True
            self._ledger.position = None
            self.pending.discard(position.token_id)
            self._ledger.pending_orders = len(self.pending)
            logger.info(
                "position_closed",
                direction=position.direction.value,
                realized_profit=round(result.realized_profit, 4),
                orders=len(result.fill_prices),
            )
        elif result.filled_size > 0:
            position.size = remaining
            logger.warning(
                "position_partially_closed",
                remaining_size=round(remaining, 2),
                realized_profit=round(result.realized_profit, 4),
            )
        else:
            logger.error("exit_sequence_no_fills", legs=total, reason=reason)

        await self._ledger.publish_status()
        return result

    # ── Stop ─────────────────────────────────────────────────────────

    async def cancel_pending(self) -> list[Trade]:
        """Cancel every leg not yet submitted and record it in the ledger."""
        cancelled = self.pending.cancel_all()
        self._ledger.pending_orders = 0
        for trade in cancelled:
            await self._ledger.record(trade)
        if cancelled:
            logger.info("pending_legs_cancelled", count=len(cancelled))
        return cancelled
