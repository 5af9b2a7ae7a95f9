"""
BaseConnector — Abstract base class for external integrations.

A connector owns the clients for one external service and exposes a small
lifecycle the CLI drives around a trading session: ``setup`` before the
engine starts, ``teardown`` after it stops, and ``health_check`` for a
connectivity probe.

Usage:
    class MyConnector(BaseConnector):
        name = "my_exchange"
        description = "Connects to My Exchange API"

        async def setup(self) -> None:
            self._client = MyExchangeClient()

        async def health_check(self) -> bool:
            return await self._client.ping()
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel


class ConnectorInfo(BaseModel):
    """Summary info for the CLI ``show`` command."""

    name: str
    description: str
    healthy: bool = True
    live_trading: bool = False


class BaseConnector(ABC):
    """
    Abstract base class for integration connectors.

    Subclasses MUST define:
      - name: str — Unique identifier (e.g. "polymarket")
      - description: str — What this connector does

    Subclasses MAY override:
      - setup(): One-time initialization (auth, client creation)
      - teardown(): Cleanup (close connections)
      - health_check(): Verify the connection is alive
      - live_trading: Whether orders go to the exchange
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique connector identifier."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    def live_trading(self) -> bool:
        return False

    # ── Lifecycle Hooks ──────────────────────────────────────────────

    async def setup(self) -> None:
        pass

    async def teardown(self) -> None:
        pass

    async def health_check(self) -> bool:
        return True

    # ── Info ──────────────────────────────────────────────────────────

    async def get_info(self) -> ConnectorInfo:
        return ConnectorInfo(
            name=self.name,
            description=self.description,
            healthy=await self.health_check(),
            live_trading=self.live_trading,
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
