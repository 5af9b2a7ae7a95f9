"""
Connectors — Exchange integrations for the trading engine.

Usage:
    from updown.connectors import PolymarketConnector

    connector = PolymarketConnector()
    market = await connector.exchange.find_active_market("15m")
"""

from updown.connectors.base_connector import BaseConnector, ConnectorInfo
from updown.connectors.polymarket_connector import (
    PolymarketConnector,
    PolymarketExchange,
)

__all__ = [
    "BaseConnector",
    "ConnectorInfo",
    "PolymarketConnector",
    "PolymarketExchange",
]
