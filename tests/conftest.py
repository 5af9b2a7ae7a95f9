import asyncio

import pytest
from opentelemetry import trace

from updown.config import TraderSettings
from updown.exchange import Credentials, Exchange
from updown.models import MarketContext, Side


@pytest.fixture(autouse=True)
def disable_tracing():
    """Disable OpenTelemetry tracer console exports to prevent Pytest stdout closed exceptions."""
    from opentelemetry.sdk.trace import TracerProvider

    trace.set_tracer_provider(TracerProvider())
    yield


# ── Scripted exchange ────────────────────────────────────────────────


class FakeExchange(Exchange):
    """In-memory exchange with scripted quotes and order outcomes.

    Quotes are decimals per ``(token_id, side)``; each call consumes the
    next scripted value and the last one repeats. An Exception in a script
    is raised instead of returned.
    """

    def __init__(self, *, fee_rate_bps: int = 0):
        self._quotes: dict[tuple[str, Side], list] = {}
        self._orders: list = []
        self.fee_rate_bps = fee_rate_bps
        self.price_calls: list[tuple[str, Side]] = []
        self.submitted: list[tuple[str, Side, float, int]] = []
        # When set, submissions wait on it (holds a sequence in flight)
        self.gate: asyncio.Event | None = None

    def script_quotes(self, token_id: str, side: Side, *values) -> None:
        self._quotes[(token_id, side)] = list(values)

    def script_orders(self, *outcomes) -> None:
        self._orders = list(outcomes)

    async def get_price(self, token_id: str, side: Side) -> float:
        self.price_calls.append((token_id, side))
        await asyncio.sleep(0)
        script = self._quotes[(token_id, side)]
        value = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(value, BaseException):
            raise value
        return value

    async def submit_market_order(
        self, token_id: str, side: Side, amount: float, fee_rate_bps: int
    ) -> str:
        self.submitted.append((token_id, side, amount, fee_rate_bps))
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        if self._orders:
            outcome = self._orders.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return f"order-{len(self.submitted)}"

    async def get_fee_rate_bps(self, token_id: str) -> int:
        return self.fee_rate_bps


class RecordingSleep:
    """Drop-in for ``asyncio.sleep`` that records delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def exchange() -> FakeExchange:
    return FakeExchange()


@pytest.fixture
def market() -> MarketContext:
    return MarketContext(
        slug="btc-updown-15m-1767225600",
        up_token_id="up-token",
        down_token_id="down-token",
    )


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(api_key="key-123456", api_secret="secret", passphrase="pass")


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def settings(tmp_path) -> TraderSettings:
    """Settings isolated from the environment, with no real waiting."""
    return TraderSettings(
        _env_file=None,
        poll_interval_seconds=0.01,
        leg_delay_seconds=0.5,
        price_retry_initial_delay=0.5,
        order_retry_initial_delay=1.0,
        adaptive_exit_delay_seconds=0.5,
        strategy_file=str(tmp_path / "trading_strategy.json"),
        polymarket_private_key="",
        polymarket_proxy_wallet="",
        polymarket_api_key="",
        polymarket_api_secret="",
        polymarket_passphrase="",
    )
