"""
AdaptiveExitStrategy — the three-stage stop-loss cascade.

When the held token trades at or below the stop loss the position must be
closed even into a thin book. The cascade, all under one single-flight
guard:

  1. ImmediateSell — sell every leg at the observed price.
  2. AdaptiveSearch — for k in 0..N-1 target ``stop_loss - k``. Re-quote
     the SELL side; sell once the live price is at or below the target.
     A target outside [0, 100] ends the search early.
  3. ForcedExit — sell at whatever the market quotes. Failure here is the
     only stop-loss outcome that raises (``PositionCloseError``).

Each stage works on whatever remains after partial fills of the previous
one; the position size shrinks as legs fill.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog

from updown.errors import PositionCloseError
from updown.executor import ExecutionState, ExitResult, OrderExecutor
from updown.ledger import TradeLedger
from updown.models import Side

logger = structlog.get_logger(__name__)


class ExitStage(str, enum.Enum):
    IMMEDIATE = "immediate_sell"
    ADAPTIVE = "adaptive_search"
    FORCED = "forced_exit"


@dataclass
class AdaptiveExitOutcome:
    stage: ExitStage
    result: ExitResult
    attempts: int = 0
    target_price: float | None = None


class AdaptiveExitStrategy:
    def __init__(
        self,
        executor: OrderExecutor,
        ledger: TradeLedger,
        *,
        max_attempts: int = 5,
        retry_delay: float = 0.5,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._executor = executor
        self._ledger = ledger
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._sleep = sleep

    async def run(
        self, stop_loss_price: float, observed_price: float, reason: str = "Stop loss"
    ) -> AdaptiveExitOutcome | None:
        """Close the position. None when another sequence holds the guard.

        Raises:
            PositionCloseError: ForcedExit left part of the position open.
        """
        async with self._executor.single_flight(ExecutionState.EXITING) as acquired:
            if not acquired:
                return None
            return await self._cascade(stop_loss_price, observed_price, reason)

    async def _cascade(
        self, stop_loss_price: float, observed_price: float, reason: str
    ) -> AdaptiveExitOutcome | None:
        position = self._ledger.position
        if position is None:
            return None
        token_id = position.token_id

        logger.warning(
            "stop_loss_triggered",
            observed=round(observed_price, 2),
            stop_loss=stop_loss_price,
            size=round(position.size, 2),
        )

        # 1. ImmediateSell
        result = await self._executor.sell(
            f"{reason} - Immediate sell at {observed_price:.2f}", observed_price
        )
        if result is None or result.closed:
            return AdaptiveExitOutcome(
                stage=ExitStage.IMMEDIATE, result=result or ExitResult(closed=True)
            )

        # 2. AdaptiveSearch
        attempts = 0
        for k in range(self._max_attempts):
            target = stop_loss_price - k
            if target < 0 or target > 100:
                logger.warning("adaptive_target_out_of_range", target=target)
                break
            attempts += 1

            try:
                live = await self._executor.quote(token_id, Side.SELL)
            except Exception as e:
                logger.warning(
                    "adaptive_quote_failed", attempt=attempts, target=target, error=str(e)
                )
                await self._sleep(self._retry_delay)
                continue

            logger.info(
                "adaptive_exit_attempt",
                attempt=attempts,
                target=target,
                live=round(live, 2),
            )
            if live <= target:
                result = await self._executor.sell(
                    f"{reason} - Adaptive sell at {live:.2f} (target was {target:.2f})",
                    live,
                )
                if result is None or result.closed:
                    return AdaptiveExitOutcome(
                        stage=ExitStage.ADAPTIVE,
                        result=result or ExitResult(closed=True),
                        attempts=attempts,
                        target_price=target,
                    )
            await self._sleep(self._retry_delay)

        # 3. ForcedExit
        remaining = self._ledger.position
        if remaining is None:
            return AdaptiveExitOutcome(
                stage=ExitStage.ADAPTIVE, result=ExitResult(closed=True), attempts=attempts
            )
        try:
            live = await self._executor.quote(token_id, Side.SELL)
        except Exception as e:
            live = remaining.current_price or observed_price
            logger.error("forced_exit_quote_failed", fallback=live, error=str(e))

        logger.error("forced_exit", live=round(live, 2), size=round(remaining.size, 2))
        result = await self._executor.sell(
            f"{reason} - All attempts failed, selling at market price", live
        )
        if result is not None and result.closed:
            return AdaptiveExitOutcome(
                stage=ExitStage.FORCED, result=result, attempts=attempts
            )

        left = self._ledger.position.size if self._ledger.position else 0.0
        raise PositionCloseError(
            f"Failed to close position after forced exit; {left:.2f} USD remains open",
            remaining_size=left,
            context={"token_id": token_id, "attempts": attempts},
        )
