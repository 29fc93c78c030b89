from __future__ import annotations

import os
from pathlib import Path

import pytest

from botfleet.core.config import load_config
from botfleet.core.env import env_str, load_dotenv
from botfleet.core.types import Market


def test_load_config_reads_yaml_and_applies_overrides(tmp_path: Path):
    p = tmp_path / "cfg.yaml"
    p.write_text("logging:\n  level: DEBUG\nworker:\n  candle_limit: 50\n  min_poll_ms: 250\n")
    cfg = load_config(str(p), overrides={"worker": {"min_poll_ms": 1000}})
    assert cfg.logging.level == "DEBUG"
    assert cfg.worker.candle_limit == 50
    assert cfg.worker.min_poll_ms == 1000
    assert cfg.worker.stop_timeout_sec == 10.0


def test_load_config_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_default_config_file_is_valid():
    root = Path(__file__).resolve().parents[2]
    cfg = load_config(str(root / "configs" / "default.yaml"))
    assert cfg.exchange.base_url(Market.FUTURES, True) == "https://testnet.binancefuture.com"
    assert cfg.exchange.base_url(Market.SPOT, False) == "https://api.binance.com"


def test_dotenv_never_overrides_existing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("BF_KEEP", "original")
    for name in ("BF_NEW", "BF_EXPORTED"):
        # registered with monkeypatch so teardown removes what load_dotenv sets
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    p = tmp_path / ".env"
    p.write_text('# comment\nBF_KEEP=changed\nBF_NEW="fresh"\nexport BF_EXPORTED=yes\n\nnot a pair\n')

    assert load_dotenv(str(p)) == 2
    assert os.environ["BF_KEEP"] == "original"
    assert env_str("BF_NEW") == "fresh"
    assert env_str("BF_EXPORTED") == "yes"


def test_dotenv_missing_file(tmp_path: Path):
    assert load_dotenv(str(tmp_path / "missing.env")) == 0
