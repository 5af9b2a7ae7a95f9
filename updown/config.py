"""
Trader Configuration — Process-wide settings for the trading engine.

The settings cover:
  - Poll loop cadence and inter-leg pacing
  - Order splitting constants
  - Retry / backoff parameters for external calls
  - Adaptive stop-loss search bounds
  - Polymarket credentials (presence gates live vs. simulated execution)

Strategy thresholds (entry/exit prices, trade size) are NOT here; they are
a `StrategyConfig` persisted by `StrategyStore`.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from updown.exchange import Credentials


class TraderSettings(BaseSettings):
    """Process-wide trader settings, read from env / .env files."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Runtime ───────────────────────────────────────────────────────
    environment: Literal["development", "production"] = "development"
    log_level: str = "INFO"
    json_logs: bool = False

    # ── Poll loop ─────────────────────────────────────────────────────
    poll_interval_seconds: float = 2.0
    leg_delay_seconds: float = 0.5
    market_duration: Literal["5m", "15m", "1h"] = "15m"

    # ── Order splitting ───────────────────────────────────────────────
    split_threshold_usd: float = 50.0
    split_legs: int = 3

    # ── Retry policy ──────────────────────────────────────────────────
    retry_attempts: int = 3
    price_retry_initial_delay: float = 0.5
    order_retry_initial_delay: float = 1.0
    retry_backoff_multiplier: float = 2.0

    # ── Adaptive stop-loss ────────────────────────────────────────────
    adaptive_exit_attempts: int = 5
    adaptive_exit_delay_seconds: float = 0.5

    # ── Fees ──────────────────────────────────────────────────────────
    default_fee_rate_bps: int = 1000

    # ── Strategy persistence ──────────────────────────────────────────
    strategy_file: str = "data/trading_strategy.json"

    # ── Polymarket ────────────────────────────────────────────────────
    polymarket_private_key: str = ""
    polymarket_proxy_wallet: str = ""
    polymarket_api_key: str = ""
    polymarket_api_secret: str = ""
    polymarket_passphrase: str = ""

    def credentials(self) -> Credentials | None:
        """L2 API credentials, or None when any part is missing (simulation mode)."""
        if not (
            self.polymarket_api_key
            and self.polymarket_api_secret
            and self.polymarket_passphrase
        ):
            return None
        return Credentials(
            api_key=self.polymarket_api_key,
            api_secret=self.polymarket_api_secret,
            passphrase=self.polymarket_passphrase,
        )


@lru_cache
def get_settings() -> TraderSettings:
    """Singleton accessor — parsed once, cached forever."""
    return TraderSettings()
