"""
Tests for updown.engine — poll cycle orchestration, configuration,
lifecycle and subscriber notifications.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from updown.bus import ENGINE_ERROR
from updown.engine import TradingEngine
from updown.errors import OrderError, ValidationError
from updown.models import (
    Direction,
    FilledOrder,
    MarketContext,
    Position,
    Side,
    SpotSnapshot,
    Trade,
    TradeStatus,
    TradingStatus,
)
from updown.strategy_store import StrategyStore


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def make_engine(exchange, settings, sleep):
    def _make(credentials=None, store=None, **strategy) -> TradingEngine:
        engine = TradingEngine(
            exchange,
            settings=settings,
            credentials=credentials,
            store=store,
            sleep=sleep,
        )
        engine.configure(enabled=True, **strategy)
        return engine

    return _make


def _quote(exchange, up: float, down: float) -> None:
    exchange.script_quotes("up-token", Side.BUY, up)
    exchange.script_quotes("down-token", Side.BUY, down)


def _hold(
    engine: TradingEngine,
    market: MarketContext,
    size=50.0,
    entry=96.0,
    token_id="up-token",
) -> None:
    engine.ledger.position = Position(
        market_slug=market.slug,
        token_id=token_id,
        direction=Direction.UP,
        size=size,
        entry_price=entry,
        filled_orders=[FilledOrder(order_id="o0", price=entry, size=size)],
    )


# ── Entry ────────────────────────────────────────────────────────────


class TestEntry:
    @pytest.mark.asyncio
    async def test_simple_entry_simulated(self, make_engine, exchange, market):
        _quote(exchange, 0.964, 0.40)
        engine = make_engine(entry_price=96, entry_band_width=1)
        engine.update_market_data(market)

        await engine.run_cycle()

        status = engine.get_status()
        assert status.current_position.direction == Direction.UP
        assert status.current_position.entry_price == pytest.approx(96.4)
        assert status.current_position.size == 50
        assert status.successful_trades == 1
        assert exchange.submitted == []

    @pytest.mark.asyncio
    async def test_down_entry(self, make_engine, exchange, market):
        _quote(exchange, 0.03, 0.965)
        engine = make_engine()
        engine.update_market_data(market)

        await engine.run_cycle()

        position = engine.get_status().current_position
        assert position.direction == Direction.DOWN
        assert position.token_id == "down-token"

    @pytest.mark.asyncio
    async def test_out_of_band_does_nothing(self, make_engine, exchange, market):
        _quote(exchange, 0.6, 0.4)
        engine = make_engine()
        engine.update_market_data(market)

        await engine.run_cycle()

        assert engine.get_trades() == []
        assert len(exchange.price_calls) == 2

    @pytest.mark.asyncio
    async def test_price_difference_filter(self, make_engine, exchange, market):
        _quote(exchange, 0.964, 0.03)
        engine = make_engine(price_difference_filter=50)

        engine.update_market_data(market)
        await engine.run_cycle()
        assert engine.get_status().current_position is None

        engine.update_market_data(
            market, SpotSnapshot(current_price=100_050.0, reference_price=100_000.0)
        )
        await engine.run_cycle()
        assert engine.get_status().current_position is not None

    @pytest.mark.asyncio
    async def test_concurrent_cycles_place_one_sequence(
        self, make_engine, exchange, market, credentials
    ):
        _quote(exchange, 0.964, 0.40)
        exchange.gate = asyncio.Event()
        engine = make_engine(credentials)
        engine.update_market_data(market)

        cycles = [asyncio.create_task(engine.run_cycle()) for _ in range(2)]
        while not exchange.submitted:
            await asyncio.sleep(0)
        exchange.gate.set()
        await asyncio.gather(*cycles)

        assert len(exchange.submitted) == 1
        assert len(engine.get_trades()) == 1


# ── Skips ────────────────────────────────────────────────────────────


class TestSkippedCycles:
    @pytest.mark.asyncio
    async def test_disabled_strategy(self, make_engine, exchange, market):
        engine = make_engine()
        engine.configure(enabled=False)
        engine.update_market_data(market)

        await engine.run_cycle()

        assert exchange.price_calls == []

    @pytest.mark.asyncio
    async def test_no_market(self, make_engine, exchange):
        await make_engine().run_cycle()
        assert exchange.price_calls == []

    @pytest.mark.asyncio
    async def test_market_without_tokens(self, make_engine, exchange):
        engine = make_engine()
        engine.update_market_data(MarketContext(slug="x", up_token_id="up-token"))

        await engine.run_cycle()

        assert exchange.price_calls == []

    @pytest.mark.asyncio
    async def test_cycle_never_raises(self, make_engine, exchange, market):
        _quote(exchange, ValueError("unexpected payload"), 0.4)
        engine = make_engine()
        engine.update_market_data(market)

        await engine.run_cycle()

        assert engine.get_trades() == []


# ── Exit ─────────────────────────────────────────────────────────────


class TestExit:
    @pytest.mark.asyncio
    async def test_take_profit(self, make_engine, exchange, market):
        _quote(exchange, 0.992, 0.008)
        engine = make_engine(profit_target_price=99)
        _hold(engine, market)
        engine.update_market_data(market)

        await engine.run_cycle()

        status = engine.get_status()
        assert status.current_position is None
        assert status.total_profit == pytest.approx((99.2 - 96) / 96 * 50)
        assert engine.get_trades()[0].side == Side.SELL

    @pytest.mark.asyncio
    async def test_hold_marks_to_market(self, make_engine, exchange, market):
        _quote(exchange, 0.965, 0.035)
        engine = make_engine()
        _hold(engine, market)
        engine.update_market_data(market)

        await engine.run_cycle()

        position = engine.get_status().current_position
        assert position.current_price == pytest.approx(96.5)
        assert position.unrealized_pnl == pytest.approx((96.5 - 96) / 96 * 50)
        assert engine.get_trades() == []

    @pytest.mark.asyncio
    async def test_stop_loss_simulated(self, make_engine, exchange, market):
        _quote(exchange, 0.85, 0.15)
        engine = make_engine()
        _hold(engine, market)
        engine.update_market_data(market)

        await engine.run_cycle()

        status = engine.get_status()
        assert status.current_position is None
        assert status.total_profit == pytest.approx((85 - 96) / 96 * 50)

    @pytest.mark.asyncio
    async def test_failed_forced_exit_is_published(
        self, make_engine, exchange, market, credentials
    ):
        _quote(exchange, 0.85, 0.15)
        exchange.script_quotes("up-token", Side.SELL, 0.95)
        exchange.script_orders(OrderError("rejected"), OrderError("rejected"))
        engine = make_engine(credentials)
        _hold(engine, market)
        engine.update_market_data(market)
        errors = AsyncMock()
        engine.on_error(errors)

        await engine.run_cycle()

        event = errors.await_args.args[0]
        assert event.topic == ENGINE_ERROR
        assert event.payload["error_code"] == "POSITION_CLOSE_FAILED"
        assert event.payload["remaining_size"] == 50
        assert engine.get_status().current_position is not None
        assert [e["error_code"] for e in engine.recent_errors()] == ["POSITION_CLOSE_FAILED"]


# ── Market rollover ──────────────────────────────────────────────────


PREVIOUS_MARKET = MarketContext(
    slug="btc-updown-15m-1767224700",
    up_token_id="old-up",
    down_token_id="old-down",
)


class TestMarketRollover:
    @pytest.mark.asyncio
    async def test_held_token_stops_out_after_rollover(self, make_engine, exchange, market):
        exchange.script_quotes("old-up", Side.BUY, 0.50)
        _quote(exchange, 0.965, 0.035)
        engine = make_engine()
        _hold(engine, PREVIOUS_MARKET, token_id="old-up")
        engine.update_market_data(market)

        await engine.run_cycle()

        assert exchange.price_calls == [("old-up", Side.BUY)]
        assert engine.get_status().current_position is None
        trade = engine.get_trades()[0]
        assert trade.token_id == "old-up"
        assert trade.side == Side.SELL
        assert trade.profit == pytest.approx((50 - 96) / 96 * 50)

        # The next cycle trades the new window
        await engine.run_cycle()

        position = engine.get_status().current_position
        assert position.market_slug == market.slug
        assert position.token_id == "up-token"
        assert position.entry_price == pytest.approx(96.5)

    @pytest.mark.asyncio
    async def test_held_token_in_range_is_marked_and_kept(
        self, make_engine, exchange, market
    ):
        exchange.script_quotes("old-up", Side.BUY, 0.95)
        _quote(exchange, 0.965, 0.035)
        engine = make_engine()
        _hold(engine, PREVIOUS_MARKET, token_id="old-up")
        engine.update_market_data(market)

        await engine.run_cycle()

        position = engine.get_status().current_position
        assert position.market_slug == PREVIOUS_MARKET.slug
        assert position.current_price == pytest.approx(95.0)
        assert engine.get_trades() == []
        assert ("up-token", Side.BUY) not in exchange.price_calls

    @pytest.mark.asyncio
    async def test_held_token_takes_profit_after_rollover(
        self, make_engine, exchange, market
    ):
        exchange.script_quotes("old-up", Side.BUY, 0.992)
        engine = make_engine(profit_target_price=99)
        _hold(engine, PREVIOUS_MARKET, token_id="old-up")
        engine.update_market_data(market)

        await engine.run_cycle()

        assert engine.get_status().current_position is None
        assert engine.get_trades()[0].reason.startswith("Profit target reached")


# ── Exchange quotes at threshold edges ───────────────────────────────


class TestThresholdEdges:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("up_quote, expected", [(0.57, 57.0), (0.58, 58.0)])
    async def test_quote_on_band_edge_enters(
        self, make_engine, exchange, market, up_quote, expected
    ):
        _quote(exchange, up_quote, 0.40)
        engine = make_engine(entry_price=57, stop_loss_price=50)
        engine.update_market_data(market)

        await engine.run_cycle()

        position = engine.get_status().current_position
        assert position is not None
        assert position.entry_price == expected

    @pytest.mark.asyncio
    async def test_quote_on_stop_loss_stops_out(self, make_engine, exchange, market):
        _quote(exchange, 0.28, 0.72)
        engine = make_engine(entry_price=40, stop_loss_price=28)
        _hold(engine, market, entry=40.0)
        engine.update_market_data(market)

        await engine.run_cycle()

        assert engine.get_status().current_position is None
        assert engine.get_trades()[0].price == 28.0


# ── Configuration ────────────────────────────────────────────────────


class TestConfigure:
    def test_partial_update_merges(self, make_engine):
        engine = make_engine()
        config = engine.configure(trade_size=150)

        assert config.trade_size == 150
        assert config.entry_price == 96
        assert config.enabled is True

    def test_rejects_inverted_stop_loss(self, make_engine):
        engine = make_engine()

        with pytest.raises(ValidationError) as exc_info:
            engine.configure(stop_loss_price=97)

        assert exc_info.value.field == "stop_loss_price"
        assert engine.config.stop_loss_price == 91

    def test_rejects_out_of_range_field(self, make_engine):
        with pytest.raises(ValidationError) as exc_info:
            make_engine().configure({"trade_size": 20_000})
        assert exc_info.value.field == "trade_size"

    def test_persisted_through_store(self, make_engine, exchange, settings):
        store = StrategyStore(settings.strategy_file)
        make_engine(store=store, entry_price=95, stop_loss_price=90)

        reloaded = TradingEngine(exchange, settings=settings, store=store)

        assert reloaded.config.entry_price == 95
        assert reloaded.config.stop_loss_price == 90
        assert reloaded.config.enabled is True


# ── Lifecycle ────────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, make_engine, exchange, market):
        _quote(exchange, 0.5, 0.5)
        engine = make_engine()
        engine.update_market_data(market)

        assert await engine.start() is True
        assert await engine.start() is False
        await asyncio.sleep(0.05)
        assert engine.get_status().is_active is True

        await engine.stop()

        assert not engine.is_running
        assert engine.get_status().is_active is False
        assert len(exchange.price_calls) >= 2

    @pytest.mark.asyncio
    async def test_start_disabled(self, make_engine):
        engine = make_engine()
        engine.configure(enabled=False)

        assert await engine.start() is False
        assert not engine.is_running

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_legs(
        self, make_engine, exchange, market, credentials
    ):
        _quote(exchange, 0.964, 0.40)
        exchange.gate = asyncio.Event()
        engine = make_engine(credentials, trade_size=150)
        engine.update_market_data(market)

        await engine.start()
        while not exchange.submitted:
            await asyncio.sleep(0)
        stopping = asyncio.create_task(engine.stop())
        await asyncio.sleep(0)
        exchange.gate.set()
        await stopping

        statuses = [t.status for t in engine.get_trades()]
        assert statuses.count(TradeStatus.CANCELLED) == 2
        assert statuses.count(TradeStatus.FILLED) == 1
        assert engine.get_status().pending_orders == 0

    @pytest.mark.asyncio
    async def test_clear_trades(self, make_engine, exchange, market):
        _quote(exchange, 0.964, 0.40)
        engine = make_engine()
        engine.update_market_data(market)
        await engine.run_cycle()

        await engine.clear_trades()

        status = engine.get_status()
        assert engine.get_trades() == []
        assert status.current_position is None
        assert status.total_trades == 0


# ── Subscriptions ────────────────────────────────────────────────────


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_callbacks_receive_snapshots(self, make_engine, exchange, market):
        _quote(exchange, 0.964, 0.40)
        engine = make_engine()
        engine.update_market_data(market)
        statuses, trades = [], []

        async def on_status(status: TradingStatus) -> None:
            statuses.append(status)

        async def on_trade(trade: Trade) -> None:
            trades.append(trade)

        engine.on_status_change(on_status)
        engine.on_trade_recorded(on_trade)

        await engine.run_cycle()

        assert isinstance(trades[0], Trade)
        assert trades[0].status == TradeStatus.FILLED
        assert isinstance(statuses[-1], TradingStatus)
        assert statuses[-1].current_position.entry_price == pytest.approx(96.4)

        # Snapshots are detached from engine state
        statuses[-1].current_position.size = 0
        assert engine.get_status().current_position.size == 50

    @pytest.mark.asyncio
    async def test_unsubscribe(self, make_engine, exchange, market):
        _quote(exchange, 0.964, 0.40)
        engine = make_engine()
        engine.update_market_data(market)
        callback = AsyncMock()
        sub = engine.on_trade_recorded(callback)
        engine.bus.unsubscribe(sub)

        await engine.run_cycle()

        callback.assert_not_awaited()
