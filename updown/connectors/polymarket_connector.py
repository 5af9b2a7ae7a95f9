"""
PolymarketConnector — Polymarket implementation of the ``Exchange`` capability.

Two APIs:
  - Gamma (https://gamma-api.polymarket.com) — public market discovery,
    used to resolve the active BTC up/down window into a ``MarketContext``
  - CLOB (https://clob.polymarket.com) — ``/price`` and ``/fee-rate`` reads
    over httpx, and fill-and-kill market orders through py-clob-client,
    which handles order signing

HTTP failures are mapped onto the engine's error taxonomy so the
executor's ``RetryPolicy`` can tell transient from permanent:
  - connect / timeout         → NetworkError (retryable)
  - 429                       → RateLimitError (retryable)
  - 5xx                       → NetworkError (retryable)
  - 401 / other 4xx           → ExchangeError (not retryable)

Usage:
    exchange = PolymarketExchange(credentials=settings.credentials(), ...)
    market = await exchange.find_active_market("15m")
    price = await exchange.get_price(market.up_token_id, Side.BUY)
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from updown.config import TraderSettings, get_settings
from updown.connectors.base_connector import BaseConnector
from updown.errors import (
    ExchangeError,
    NetworkError,
    NoCredentialsError,
    OrderError,
    PriceFetchError,
    RateLimitError,
)
from updown.exchange import Credentials, Exchange
from updown.models import MarketContext, Side

logger = structlog.get_logger(__name__)

GAMMA_API_URL = "https://gamma-api.polymarket.com"
CLOB_API_URL = "https://clob.polymarket.com"
POLYGON_CHAIN_ID = 137

WINDOW_SECONDS = {"5m": 300, "15m": 900, "1h": 3600}


def window_slug(duration: str, now: float | None = None) -> tuple[str, int, int]:
    """Slug and ``[start, end)`` bounds of the window containing ``now``.

    Polymarket opens one BTC up/down market per window with a slug like
    ``btc-updown-15m-<window_start>``.
    """
    interval = WINDOW_SECONDS.get(duration, WINDOW_SECONDS["15m"])
    now_s = int(time.time() if now is None else now)
    start = (now_s // interval) * interval
    return f"btc-updown-{duration}-{start}", start, start + interval


def _token_ids(market: dict) -> list[str]:
    raw = market.get("clobTokenIds") or []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return []
    return [str(t) for t in raw]


def _short(token_id: str) -> str:
    return token_id[:20] + "..." if len(token_id) > 20 else token_id


# ── Exchange ─────────────────────────────────────────────────────────


class PolymarketExchange(Exchange):
    """
    Async Polymarket client exposing the ``Exchange`` contract.

    Features:
    - httpx.AsyncClient with HTTP/2 and connection pooling
    - Structured logging for every API call
    - Lazy py-clob-client initialization on the first order

    Order submission requires a private key (signing) and L2 API
    credentials. Quotes and market discovery are public.
    """

    def __init__(
        self,
        *,
        credentials: Credentials | None = None,
        private_key: str | None = None,
        proxy_wallet: str | None = None,
    ):
        self._credentials = credentials
        self._private_key = private_key
        self._proxy_wallet = proxy_wallet
        self._clob_client = None  # Lazy-initialized py-clob-client

        # Gamma API: public, no auth needed
        self._gamma = httpx.AsyncClient(
            base_url=GAMMA_API_URL,
            http2=True,
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(30.0, connect=10.0, read=20.0, pool=5.0),
        )

        # CLOB API: public for reads
        self._clob_http = httpx.AsyncClient(
            base_url=CLOB_API_URL,
            http2=True,
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(15.0, connect=5.0, read=10.0, pool=5.0),
            limits=httpx.Limits(
                max_connections=20,
                max_keepalive_connections=10,
                keepalive_expiry=30.0,
            ),
        )

    @property
    def can_trade(self) -> bool:
        return bool(self._private_key and self._credentials)

    async def _request(
        self, client: httpx.AsyncClient, api: str, method: str, path: str, **kwargs
    ) -> Any:
        start = time.monotonic()
        try:
            resp = await client.request(method, path, **kwargs)
        except httpx.ConnectError as e:
            raise NetworkError(f"Connection failed: {e}", context={"path": path}) from e
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timed out: {e}", context={"path": path}) from e

        latency_ms = (time.monotonic() - start) * 1000

        if resp.status_code == 429:
            logger.warning("polymarket_rate_limited", api=api, path=path)
            raise RateLimitError("Rate limit exceeded", context={"path": path})
        if resp.status_code == 401:
            raise ExchangeError(
                "Authentication failed — check private key / API creds",
                detail="401",
            )
        if resp.status_code >= 500:
            raise NetworkError(
                f"{api} API error: {resp.status_code} — {resp.text}",
                detail=str(resp.status_code),
            )
        if resp.status_code >= 400:
            raise ExchangeError(
                f"{api} API error: {resp.status_code} — {resp.text}",
                detail=str(resp.status_code),
            )

        logger.debug(
            "polymarket_request",
            api=api,
            method=method,
            path=path,
            status=resp.status_code,
            latency_ms=round(latency_ms),
        )
        return resp.json()

    async def _gamma_request(self, method: str, path: str, **kwargs) -> Any:
        return await self._request(self._gamma, "Gamma", method, path, **kwargs)

    async def _clob_request(self, method: str, path: str, **kwargs) -> Any:
        return await self._request(self._clob_http, "CLOB", method, path, **kwargs)

    # ── Gamma API: Market Discovery ─────────────────────────────────

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type(RateLimitError),
        reraise=True,
    )
    async def find_active_market(self, duration: str = "15m") -> MarketContext | None:
        """Resolve the current BTC up/down window into a ``MarketContext``.

        Returns None when the window's event is not listed yet or carries
        no token pair.
        """
        slug, start, end = window_slug(duration)
        events = await self._gamma_request(
            "GET", "/events", params={"slug": slug, "limit": 1}
        )
        if not events or not isinstance(events, list):
            logger.info("polymarket_no_event_for_slug", slug=slug)
            return None

        markets = events[0].get("markets", [])
        tokens = _token_ids(markets[0]) if markets else []
        if len(tokens) < 2:
            logger.info("polymarket_event_without_tokens", slug=slug)
            return None

        now = int(time.time())
        logger.info(
            "polymarket_active_market",
            slug=slug,
            title=events[0].get("title", ""),
            seconds_elapsed=now - start,
            seconds_remaining=end - now,
        )
        # First outcome token is UP, second is DOWN
        return MarketContext(slug=slug, up_token_id=tokens[0], down_token_id=tokens[1])

    # ── CLOB API: Quotes ────────────────────────────────────────────

    async def get_price(self, token_id: str, side: Side) -> float:
        """Best price for a token on one side, as a decimal in (0, 1)."""
        data = await self._clob_request(
            "GET", "/price", params={"token_id": token_id, "side": side.value}
        )
        try:
            return float(data["price"])
        except (KeyError, TypeError, ValueError) as e:
            raise PriceFetchError(
                f"Malformed price response for {_short(token_id)}: {data!r}",
                context={"token_id": token_id, "side": side.value},
            ) from e

    async def get_fee_rate_bps(self, token_id: str) -> int:
        data = await self._clob_request(
            "GET", "/fee-rate", params={"token_id": token_id}
        )
        if not isinstance(data, dict):
            return 0
        return int(data.get("base_fee") or data.get("fee_rate_bps") or 0)

    # ── CLOB API: Trading (requires auth) ───────────────────────────

    def _ensure_clob_client(self):
        """Lazy-initialize the py-clob-client with pre-derived L2 creds."""
        if self._clob_client is not None:
            return self._clob_client

        if not self.can_trade:
            raise NoCredentialsError(
                "POLYMARKET_PRIVATE_KEY and API credentials are required for trading"
            )

        try:
            from py_clob_client.client import ClobClient
            from py_clob_client.clob_types import ApiCreds
        except ImportError as e:
            raise ExchangeError(
                "py-clob-client package is required for trading. "
                "Install it with: pip install py-clob-client"
            ) from e

        self._clob_client = ClobClient(
            host=CLOB_API_URL,
            key=self._private_key,
            chain_id=POLYGON_CHAIN_ID,
            creds=ApiCreds(
                api_key=self._credentials.api_key,
                api_secret=self._credentials.api_secret,
                api_passphrase=self._credentials.passphrase,
            ),
            signature_type=2,  # POLY_GNOSIS_SAFE
            funder=self._proxy_wallet or "",
        )
        logger.info("polymarket_clob_client_initialized")
        return self._clob_client

    def _post_market_order(
        self, token_id: str, side: Side, amount: float, fee_rate_bps: int
    ) -> dict:
        from py_clob_client.clob_types import MarketOrderArgs, OrderType
        from py_clob_client.exceptions import PolyApiException
        from py_clob_client.order_builder.constants import BUY, SELL

        client = self._ensure_clob_client()
        args = MarketOrderArgs(
            token_id=token_id,
            amount=amount,
            side=BUY if side == Side.BUY else SELL,
            fee_rate_bps=fee_rate_bps,
        )
        try:
            signed = client.create_market_order(args)
            return client.post_order(signed, OrderType.FAK)
        except PolyApiException as e:
            status = getattr(e, "status_code", None) or 0
            raise OrderError(
                f"Market order rejected: {getattr(e, 'error_msg', e)}",
                retryable=status == 429 or status >= 500,
                detail=str(status) if status else None,
                context={"token_id": token_id, "side": side.value},
            ) from e

    async def submit_market_order(
        self,
        token_id: str,
        side: Side,
        amount: float,
        fee_rate_bps: int,
    ) -> str:
        """Submit a fill-and-kill market order. ``amount`` is USD (BUY) or shares (SELL)."""
        logger.info(
            "polymarket_placing_market_order",
            token_id=_short(token_id),
            side=side.value,
            amount=round(amount, 4),
            fee_rate_bps=fee_rate_bps,
        )
        # py-clob-client is synchronous
        response = await asyncio.to_thread(
            self._post_market_order, token_id, side, amount, fee_rate_bps
        )

        order_id = response.get("orderID") if isinstance(response, dict) else None
        if not order_id or (isinstance(response, dict) and response.get("success") is False):
            error = response.get("errorMsg") if isinstance(response, dict) else response
            raise OrderError(
                f"Market order not accepted: {error or 'no order id returned'}",
                context={"token_id": token_id, "side": side.value},
            )

        logger.info("polymarket_market_order_placed", order_id=order_id)
        return order_id

    # ── Lifecycle ────────────────────────────────────────────────────

    async def close(self):
        """Close all HTTP connection pools."""
        await self._gamma.aclose()
        await self._clob_http.aclose()


# ── Connector ────────────────────────────────────────────────────────


class PolymarketConnector(BaseConnector):
    """
    Polymarket integration block for a trading session.

    Provides the ``Exchange`` via ``self.exchange``, built from
    ``TraderSettings`` on first access.
    """

    @property
    def name(self) -> str:
        return "polymarket"

    @property
    def description(self) -> str:
        return "Polymarket BTC up/down markets — quotes & market orders"

    def __init__(self, settings: TraderSettings | None = None):
        self._settings = settings or get_settings()
        self._exchange: PolymarketExchange | None = None

    @property
    def exchange(self) -> PolymarketExchange:
        """Get the exchange client. Lazy-initializes on first access."""
        if self._exchange is None:
            self._exchange = PolymarketExchange(
                credentials=self._settings.credentials(),
                private_key=self._settings.polymarket_private_key or None,
                proxy_wallet=self._settings.polymarket_proxy_wallet or None,
            )
        return self._exchange

    @property
    def live_trading(self) -> bool:
        return self.exchange.can_trade

    async def setup(self) -> None:
        _ = self.exchange

    async def teardown(self) -> None:
        """Close the HTTP connection pools."""
        if self._exchange:
            await self._exchange.close()
            self._exchange = None

    async def health_check(self) -> bool:
        """Check Gamma connectivity by resolving the active window."""
        try:
            await self.exchange.find_active_market(self._settings.market_duration)
            return True
        except Exception as e:
            logger.warning("polymarket_health_check_failed", error=str(e))
            return False
