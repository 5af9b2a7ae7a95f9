#!/usr/bin/env python3
"""
UpDown CLI — configure and run the trading engine.

Usage:
    updown configure --entry-price 96 --stop-loss 91 --trade-size 150 --enable
    updown show
    updown run            # simulation: real quotes, no orders
    updown run --live     # live orders when Polymarket credentials are set

The strategy is persisted in the file named by ``STRATEGY_FILE``
(default ``data/trading_strategy.json``); everything else comes from the
environment / ``.env`` (see ``updown.config.TraderSettings``).
"""

import argparse
import asyncio
import json
import sys

import structlog
from dotenv import load_dotenv

from updown.config import TraderSettings, get_settings
from updown.connectors.polymarket_connector import PolymarketConnector
from updown.engine import TradingEngine
from updown.errors import ValidationError
from updown.logging import bind_session, setup_logging
from updown.models import Trade
from updown.strategy_store import StrategyStore, validate_strategy

logger = structlog.get_logger(__name__)

# argparse dest → StrategyConfig field
_STRATEGY_FLAGS = {
    "entry_price": "entry_price",
    "band_width": "entry_band_width",
    "profit_target": "profit_target_price",
    "stop_loss": "stop_loss_price",
    "trade_size": "trade_size",
    "price_difference": "price_difference_filter",
}


def configure(args: argparse.Namespace, settings: TraderSettings) -> int:
    store = StrategyStore(settings.strategy_file)
    updates = {
        field: getattr(args, dest)
        for dest, field in _STRATEGY_FLAGS.items()
        if getattr(args, dest) is not None
    }
    if args.no_price_difference:
        updates["price_difference_filter"] = None
    if args.enable is not None:
        updates["enabled"] = args.enable

    try:
        config = validate_strategy({**store.load().model_dump(), **updates})
    except ValidationError as e:
        print(f"Error: {e} (field: {e.field})")
        return 1

    store.save(config)
    print(f"✅ Strategy saved to {store.path}")
    print(json.dumps(config.model_dump(), indent=2))
    return 0


def show(settings: TraderSettings) -> int:
    config = StrategyStore(settings.strategy_file).load()
    mode = "live" if settings.credentials() and settings.polymarket_private_key else "simulation"
    print(f"Strategy ({settings.strategy_file}):")
    print(json.dumps(config.model_dump(), indent=2))
    print(f"Market duration: {settings.market_duration}")
    print(f"Execution mode with --live: {mode}")
    return 0


async def run_session(settings: TraderSettings, live: bool) -> None:
    """Refresh the active market every poll interval while the engine trades."""
    connector = PolymarketConnector(settings)
    await connector.setup()
    exchange = connector.exchange

    credentials = settings.credentials() if live and connector.live_trading else None
    if live and credentials is None:
        logger.warning("live_requested_without_credentials", mode="simulation")
    bind_session(simulated=credentials is None, market_duration=settings.market_duration)

    engine = TradingEngine(
        exchange,
        settings=settings,
        credentials=credentials,
        store=StrategyStore(settings.strategy_file),
    )
    if engine.config.price_difference_filter is not None:
        logger.warning("price_difference_filter_without_spot_feed")

    async def print_trade(trade: Trade) -> None:
        print(
            f"  {trade.side.value:<4} {trade.status.value:<9} "
            f"{trade.size:>8.2f} USD @ {trade.price:6.2f}  {trade.reason}"
        )

    engine.on_trade_recorded(print_trade)

    try:
        engine.update_market_data(
            await exchange.find_active_market(settings.market_duration)
        )
        if not await engine.start():
            print("Strategy is disabled — run `updown configure --enable` first.")
            return

        while True:
            await asyncio.sleep(settings.poll_interval_seconds)
            try:
                market = await exchange.find_active_market(settings.market_duration)
            except Exception as e:
                logger.warning("market_refresh_failed", error=str(e))
                continue
            engine.update_market_data(market)
    finally:
        await engine.stop()
        await connector.teardown()
        status = engine.get_status()
        print(
            f"\nTrades: {status.total_trades} "
            f"(filled {status.successful_trades}, failed {status.failed_trades}) "
            f"realized P&L {status.total_profit:+.2f} USD"
        )
        for error in engine.recent_errors():
            print(f"  ! {error.get('error_code')}: {error.get('message')}")


def main(argv: list[str] | None = None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="UpDown trading engine")
    subparsers = parser.add_subparsers(dest="command", required=True)

    cfg = subparsers.add_parser("configure", help="Update and persist the strategy")
    cfg.add_argument("--entry-price", type=float, help="Lower bound of the entry band (0-100)")
    cfg.add_argument("--band-width", type=float, help="Entry band width")
    cfg.add_argument("--profit-target", type=float, help="Take-profit price (0-100)")
    cfg.add_argument("--stop-loss", type=float, help="Stop-loss price (0-100)")
    cfg.add_argument("--trade-size", type=float, help="Trade size in USD")
    cfg.add_argument("--price-difference", type=float, help="Required |reference - spot| gap")
    cfg.add_argument(
        "--no-price-difference",
        action="store_true",
        help="Disable the price difference filter",
    )
    toggle = cfg.add_mutually_exclusive_group()
    toggle.add_argument("--enable", dest="enable", action="store_true", default=None)
    toggle.add_argument("--disable", dest="enable", action="store_false")

    subparsers.add_parser("show", help="Print the saved strategy")

    run = subparsers.add_parser("run", help="Run the poll loop until interrupted")
    run.add_argument(
        "--live",
        action="store_true",
        help="Submit real orders (requires Polymarket credentials)",
    )

    args = parser.parse_args(argv)
    settings = get_settings()

    if args.command == "configure":
        return configure(args, settings)
    if args.command == "show":
        return show(settings)

    setup_logging(settings.log_level, json_output=settings.json_logs)
    try:
        asyncio.run(run_session(settings, live=args.live))
    except KeyboardInterrupt:
        print("\n👋 Trading stopped.\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
