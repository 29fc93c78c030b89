from __future__ import annotations

import pytest
from pydantic import ValidationError

from botfleet.core.bot_config import BotConfig, VirtualBalance
from botfleet.core.types import Market


def test_defaults_are_safe():
    cfg = BotConfig(id="x")
    assert cfg.enabled is False
    assert cfg.dry_run is True
    assert cfg.use_testnet is True
    assert cfg.market == Market.SPOT
    assert cfg.symbol == "BTCUSDT"
    assert cfg.environment == "testnet"


def test_order_amount_below_minimum_is_rejected():
    with pytest.raises(ValidationError):
        BotConfig.model_validate({"id": "x", "risk": {"order_quote_amount": 5}})


def test_fast_period_must_be_below_slow():
    with pytest.raises(ValidationError):
        BotConfig.model_validate({"id": "x", "strategy": {"fast_period": 21, "slow_period": 21}})


def test_leverage_range():
    with pytest.raises(ValidationError):
        BotConfig.model_validate({"id": "x", "risk": {"leverage": 0}})
    assert BotConfig.model_validate({"id": "x", "risk": {"leverage": 20}}).risk.leverage == 20


def test_config_is_immutable():
    cfg = BotConfig(id="x")
    with pytest.raises(ValidationError):
        cfg.enabled = True  # type: ignore[misc]


def test_with_virtual_balance_returns_a_copy():
    cfg = BotConfig(id="x")
    vb = VirtualBalance(current_quote_balance=900.0, current_base_balance=1.0, entry_price=100.0)
    new = cfg.with_virtual_balance(vb)
    assert new.virtual_balance.current_quote_balance == 900.0
    assert cfg.virtual_balance.current_quote_balance == 1000.0


def test_symbol_is_upper_cased():
    cfg = BotConfig.model_validate({"id": "x", "base_asset": "eth", "quote_asset": "usdt", "market": "futures"})
    assert cfg.symbol == "ETHUSDT"
    assert cfg.market == Market.FUTURES
