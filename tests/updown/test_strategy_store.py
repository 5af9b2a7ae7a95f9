"""
Tests for updown.strategy_store — validation and JSON persistence.
"""

import json

import pytest

from updown.errors import ValidationError
from updown.models import StrategyConfig
from updown.strategy_store import STORAGE_KEY, StrategyStore, validate_strategy


# ── Validation ───────────────────────────────────────────────────────


class TestValidateStrategy:
    def test_defaults_are_valid(self):
        config = validate_strategy({})
        assert config == StrategyConfig()
        assert config.enabled is False
        assert config.entry_price == 96
        assert config.entry_band_width == 1
        assert config.profit_target_price == 100
        assert config.stop_loss_price == 91
        assert config.trade_size == 50
        assert config.price_difference_filter is None

    @pytest.mark.parametrize(
        "data, field",
        [
            ({"entry_price": 101}, "entry_price"),
            ({"stop_loss_price": -1}, "stop_loss_price"),
            ({"trade_size": 0}, "trade_size"),
            ({"trade_size": 10_001}, "trade_size"),
            ({"entry_band_width": 0}, "entry_band_width"),
            ({"price_difference_filter": -5}, "price_difference_filter"),
        ],
    )
    def test_field_constraints(self, data, field):
        with pytest.raises(ValidationError) as exc_info:
            validate_strategy(data)
        assert exc_info.value.field == field
        assert exc_info.value.to_dict()["error_code"] == "INVALID_STRATEGY_CONFIG"

    def test_stop_loss_must_be_below_entry(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_strategy({"entry_price": 90, "stop_loss_price": 90})
        assert exc_info.value.field == "stop_loss_price"

    def test_profit_target_must_be_above_entry(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_strategy({"entry_price": 96, "profit_target_price": 96})
        assert exc_info.value.field == "profit_target_price"

    def test_accepts_model(self):
        config = StrategyConfig(entry_price=50, stop_loss_price=40, profit_target_price=60)
        assert validate_strategy(config) == config


# ── Persistence ──────────────────────────────────────────────────────


class TestStrategyStore:
    def test_missing_file_gives_defaults(self, tmp_path):
        store = StrategyStore(tmp_path / "missing.json")
        assert store.load() == StrategyConfig()

    def test_save_and_load(self, tmp_path):
        store = StrategyStore(tmp_path / "nested" / "strategy.json")
        config = StrategyConfig(enabled=True, trade_size=150, price_difference_filter=25)

        store.save(config)

        document = json.loads(store.path.read_text())
        assert document[STORAGE_KEY]["trade_size"] == 150
        assert store.load() == config

    def test_partial_document_merges_over_defaults(self, tmp_path):
        path = tmp_path / "strategy.json"
        path.write_text(json.dumps({STORAGE_KEY: {"enabled": True, "trade_size": 75}}))

        config = StrategyStore(path).load()

        assert config.enabled is True
        assert config.trade_size == 75
        assert config.entry_price == 96

    def test_corrupt_file_gives_defaults(self, tmp_path):
        path = tmp_path / "strategy.json"
        path.write_text("{not json")

        assert StrategyStore(path).load() == StrategyConfig()

    def test_invalid_saved_values_give_defaults(self, tmp_path):
        path = tmp_path / "strategy.json"
        path.write_text(json.dumps({STORAGE_KEY: {"stop_loss_price": 99}}))

        assert StrategyStore(path).load() == StrategyConfig()

    def test_save_keeps_other_keys(self, tmp_path):
        path = tmp_path / "strategy.json"
        path.write_text(json.dumps({"theme": "dark"}))

        StrategyStore(path).save(StrategyConfig())

        document = json.loads(path.read_text())
        assert document["theme"] == "dark"
        assert STORAGE_KEY in document
