"""
Strategy validation and persistence.

``validate_strategy`` is the single gate a ``StrategyConfig`` passes before
the engine uses it: pydantic field constraints first, then the ordering
invariant ``stop_loss_price < entry_price < profit_target_price``. Every
failure is a ``ValidationError`` naming the offending field.

``StrategyStore`` keeps the config in a small JSON document under the key
``tradingStrategy``. Only the strategy is persisted; positions and trades
live in memory for the lifetime of the process.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pydantic
import structlog

from updown.errors import ValidationError
from updown.models import StrategyConfig

logger = structlog.get_logger(__name__)

STORAGE_KEY = "tradingStrategy"


def validate_strategy(data: StrategyConfig | dict[str, Any]) -> StrategyConfig:
    """Build (or re-check) a StrategyConfig and enforce cross-field ordering.

    Raises:
        ValidationError: naming the first offending field.
    """
    raw = data.model_dump() if isinstance(data, StrategyConfig) else data
    try:
        config = StrategyConfig.model_validate(raw)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "strategy"
        raise ValidationError(
            f"Invalid {field}: {first.get('msg', 'invalid value')}",
            field=field,
            value=first.get("input"),
        ) from e

    if config.stop_loss_price >= config.entry_price:
        raise ValidationError(
            "Stop loss price must be below entry price",
            field="stop_loss_price",
            value=config.stop_loss_price,
        )
    if config.profit_target_price <= config.entry_price:
        raise ValidationError(
            "Profit target price must be above entry price",
            field="profit_target_price",
            value=config.profit_target_price,
        )
    return config


class StrategyStore:
    """JSON-file persistence for the strategy config."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> StrategyConfig:
        """Saved values merged over defaults. Unreadable or invalid data yields defaults."""
        defaults = StrategyConfig()
        if not self.path.exists():
            return defaults

        try:
            document = json.loads(self.path.read_text())
            saved = document.get(STORAGE_KEY, {})
            config = validate_strategy({**defaults.model_dump(), **saved})
            logger.info("strategy_loaded", path=str(self.path))
            return config
        except (json.JSONDecodeError, OSError, AttributeError, TypeError, ValidationError) as e:
            logger.warning("strategy_load_failed", path=str(self.path), error=str(e))
            return defaults

    def save(self, config: StrategyConfig) -> None:
        """Write the config, keeping any other keys already in the document."""
        document: dict[str, Any] = {}
        if self.path.exists():
            try:
                existing = json.loads(self.path.read_text())
                if isinstance(existing, dict):
                    document = existing
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("strategy_file_unreadable", path=str(self.path), error=str(e))

        document[STORAGE_KEY] = config.model_dump(mode="json")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(document, indent=2))
        logger.info("strategy_saved", path=str(self.path))
