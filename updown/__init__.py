"""
UpDown — trading decision & order-execution engine for binary UP/DOWN markets.

Polls both outcome tokens of the active market window, enters when one
trades inside the configured band, and exits on profit target or through
the adaptive stop-loss cascade.
"""

from updown.engine import TradingEngine
from updown.exchange import Credentials, Exchange
from updown.models import (
    Direction,
    MarketContext,
    Position,
    Side,
    SpotSnapshot,
    StrategyConfig,
    Trade,
    TradeStatus,
    TradingStatus,
)

__all__ = [
    "TradingEngine",
    # Exchange capability
    "Exchange",
    "Credentials",
    # Records
    "Direction",
    "MarketContext",
    "Position",
    "Side",
    "SpotSnapshot",
    "StrategyConfig",
    "Trade",
    "TradeStatus",
    "TradingStatus",
]
