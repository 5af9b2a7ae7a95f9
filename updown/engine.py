"""
TradingEngine — top-level orchestrator for the UP/DOWN poll loop.

One engine instance owns:
  - the active ``StrategyConfig`` (validated, persisted through ``StrategyStore``)
  - the ``TradeLedger`` (trades, the single position, derived status)
  - the ``OrderExecutor`` and the ``AdaptiveExitStrategy`` built over it
  - the ``EventBus`` on which every state change is published

Every ``poll_interval_seconds`` the loop runs one cycle:

    no market / untradeable market  → skip
    position on a rolled-over market → quote the held token, then as below
    position held                    → mark to market, ExitEvaluator
        TakeProfit → executor.close_position
        StopLoss   → AdaptiveExitStrategy
    no position                      → EntryEvaluator → executor.open_position

A cycle never raises into the loop: every exception is logged, and a
``PositionCloseError`` is additionally published on ``engine.error``.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from updown.adaptive_exit import AdaptiveExitStrategy
from updown.bus import (
    ENGINE_ERROR,
    STATUS_CHANGED,
    TRADE_RECORDED,
    EventBus,
    Subscription,
    TradingEvent,
)
from updown.config import TraderSettings, get_settings
from updown.errors import PositionCloseError
from updown.evaluators import ExitKind, PriceQuotes, evaluate_entry, evaluate_exit_price
from updown.exchange import Credentials, Exchange
from updown.executor import OrderExecutor
from updown.ledger import TradeLedger
from updown.models import (
    MarketContext,
    Position,
    Side,
    SpotSnapshot,
    StrategyConfig,
    Trade,
    TradingStatus,
)
from updown.retry import RetryPolicy
from updown.strategy_store import StrategyStore, validate_strategy

logger = structlog.get_logger(__name__)

StatusCallback = Callable[[TradingStatus], Awaitable[None]]
TradeCallback = Callable[[Trade], Awaitable[None]]


class TradingEngine:
    """Polls prices, evaluates the strategy and drives the executor."""

    def __init__(
        self,
        exchange: Exchange,
        *,
        settings: TraderSettings | None = None,
        credentials: Credentials | None = None,
        store: StrategyStore | None = None,
        bus: EventBus | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        settings = settings or get_settings()
        self._settings = settings
        self._store = store
        self.bus = bus or EventBus()
        self.ledger = TradeLedger(self.bus)

        def policy(initial_delay: float) -> RetryPolicy:
            return RetryPolicy(
                attempts=settings.retry_attempts,
                initial_delay=initial_delay,
                multiplier=settings.retry_backoff_multiplier,
                sleep=sleep,
            )

        self.executor = OrderExecutor(
            exchange,
            self.ledger,
            credentials=credentials,
            price_retry=policy(settings.price_retry_initial_delay),
            order_retry=policy(settings.order_retry_initial_delay),
            leg_delay=settings.leg_delay_seconds,
            split_threshold=settings.split_threshold_usd,
            split_legs=settings.split_legs,
            default_fee_rate_bps=settings.default_fee_rate_bps,
            sleep=sleep,
        )
        self.adaptive_exit = AdaptiveExitStrategy(
            self.executor,
            self.ledger,
            max_attempts=settings.adaptive_exit_attempts,
            retry_delay=settings.adaptive_exit_delay_seconds,
            sleep=sleep,
        )

        self._config = store.load() if store else StrategyConfig()
        self._market: MarketContext | None = None
        self._spot: SpotSnapshot | None = None
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    # ── Configuration ────────────────────────────────────────────────

    @property
    def config(self) -> StrategyConfig:
        return self._config.model_copy()

    def configure(
        self, config: StrategyConfig | dict[str, Any] | None = None, **updates: Any
    ) -> StrategyConfig:
        """Merge an update over the current strategy, validate, persist.

        Raises:
            ValidationError: naming the offending field; the current
                strategy is left unchanged.
        """
        if isinstance(config, StrategyConfig):
            changes = config.model_dump()
        else:
            changes = dict(config or {})
        changes.update(updates)

        merged = validate_strategy({**self._config.model_dump(), **changes})
        self._config = merged
        if self._store is not None:
            self._store.save(merged)
        logger.info("strategy_configured", **merged.model_dump())
        return merged.model_copy()

    def update_market_data(
        self, market: MarketContext | None, spot: SpotSnapshot | None = None
    ) -> None:
        """Set the active market and the spot/reference snapshot for the next cycle."""
        if market and (self._market is None or self._market.slug != market.slug):
            logger.info("active_market_changed", slug=market.slug)
        self._market = market
        self._spot = spot

    # ── Lifecycle ────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> bool:
        """Begin the poll loop. False if already running or the strategy is disabled."""
        if self.is_running:
            return False
        if not self._config.enabled:
            logger.warning("strategy_not_enabled")
            return False

        self._stop_event.clear()
        self.ledger.is_active = True
        await self.ledger.publish_status()
        self._task = asyncio.create_task(self.run_forever(), name="updown-poll-loop")
        logger.info(
            "trading_started",
            interval_s=self._settings.poll_interval_seconds,
            simulated=self.executor.simulated,
        )
        return True

    async def stop(self) -> None:
        """Stop polling and cancel legs that have not been submitted yet.

        The current cycle, if any, finishes; submitted legs resolve naturally.
        """
        self._stop_event.set()
        self.ledger.is_active = False
        await self.executor.cancel_pending()
        await self.ledger.publish_status()

        if self._task is not None:
            await self._task
            self._task = None
        logger.info("trading_stopped")

    async def run_forever(self) -> None:
        interval = self._settings.poll_interval_seconds
        while not self._stop_event.is_set():
            await self.run_cycle()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    # ── Poll cycle ───────────────────────────────────────────────────

    async def run_cycle(self) -> None:
        """One evaluation pass. Never raises."""
        try:
            await self._evaluate()
        except PositionCloseError as e:
            logger.error("position_close_failed", **e.to_dict())
            await self.bus.publish(ENGINE_ERROR, e.to_dict(), sender="engine")
        except Exception as e:
            logger.exception("poll_cycle_failed", error=str(e))

    async def _evaluate(self) -> None:
        config = self._config
        market = self._market
        if not config.enabled or market is None or not market.is_tradeable:
            return
        if self.executor.busy:
            logger.debug("cycle_skipped_order_in_flight", state=self.executor.state.value)
            return

        position = self.ledger.position
        if position is not None and position.market_slug != market.slug:
            # The window rolled over; the held token still trades until it resolves
            observed = await self.executor.quote(position.token_id, Side.BUY)
            if self.executor.busy or self.ledger.position is not position:
                return
            logger.debug(
                "managing_position_on_previous_market",
                position_market=position.market_slug,
                active_market=market.slug,
                observed=round(observed, 2),
            )
            await self._manage_position(position, observed, config)
            return

        quotes = await self._fetch_quotes(market)
        if self.executor.busy or self.ledger.position is not position:
            # Another cycle acted while quotes were in flight
            return

        if position is not None:
            await self._manage_position(
                position, quotes.for_direction(position.direction), config
            )
            return

        decision = evaluate_entry(quotes, config, market, self._spot)
        if decision is None:
            return
        logger.info(
            "entry_condition_met",
            direction=decision.direction.value,
            observed=round(decision.observed_price, 2),
            band_low=config.entry_price,
            band_high=config.entry_price + config.entry_band_width,
        )
        await self.executor.open_position(market, decision, config)

    async def _manage_position(
        self, position: Position, observed: float, config: StrategyConfig
    ) -> None:
        position.mark(observed)
        await self.ledger.publish_status()

        signal = evaluate_exit_price(observed, config)
        if signal is None:
            return
        if signal.kind == ExitKind.TAKE_PROFIT:
            logger.info("take_profit_triggered", observed=round(signal.observed_price, 2))
            result = await self.executor.close_position(
                f"Profit target reached at {signal.observed_price:.2f}",
                signal.observed_price,
            )
            if result is not None and result.filled_size == 0:
                logger.warning("take_profit_no_fills")
        else:
            await self.adaptive_exit.run(
                config.stop_loss_price, signal.observed_price, reason="Stop loss"
            )

    async def _fetch_quotes(self, market: MarketContext) -> PriceQuotes:
        up, down = await asyncio.gather(
            self.executor.quote(market.up_token_id, Side.BUY),
            self.executor.quote(market.down_token_id, Side.BUY),
        )
        return PriceQuotes(up_price=up, down_price=down)

    # ── Views ────────────────────────────────────────────────────────

    def get_status(self) -> TradingStatus:
        return self.ledger.status()

    def get_trades(self) -> list[Trade]:
        return self.ledger.trades()

    def recent_errors(self, limit: int = 5) -> list[dict[str, Any]]:
        """Payloads of the latest ``engine.error`` events, newest first."""
        return [event.payload for event in self.bus.history(ENGINE_ERROR, limit=limit)]

    async def clear_trades(self) -> None:
        """Empty the ledger and drop the position and any pending legs."""
        self.ledger.clear()
        self.executor.pending.cancel_all()
        self.ledger.pending_orders = 0
        logger.info("trades_cleared")
        await self.ledger.publish_status()

    # ── Subscriptions ────────────────────────────────────────────────

    def on_status_change(self, callback: StatusCallback) -> Subscription:
        """Subscribe to ``TradingStatus`` snapshots published after each change."""

        async def handler(event: TradingEvent) -> None:
            await callback(TradingStatus.model_validate(event.payload))

        handler.__name__ = getattr(callback, "__name__", "status_callback")
        return self.bus.subscribe(STATUS_CHANGED, handler)

    def on_trade_recorded(self, callback: TradeCallback) -> Subscription:
        """Subscribe to each ``Trade`` as it is appended to the ledger."""

        async def handler(event: TradingEvent) -> None:
            await callback(Trade.model_validate(event.payload))

        handler.__name__ = getattr(callback, "__name__", "trade_callback")
        return self.bus.subscribe(TRADE_RECORDED, handler)

    def on_error(self, callback: Callable[[TradingEvent], Awaitable[None]]) -> Subscription:
        return self.bus.subscribe(ENGINE_ERROR, callback)
