from __future__ import annotations

import pytest

from botfleet.core.types import Signal
from botfleet.indicators.sma import sma
from botfleet.strategies.ma_cross import compute_signal, crossover_signal


def test_sma_uses_trailing_window():
    assert sma([1.0, 2.0, 3.0, 4.0], 2) == pytest.approx(3.5)
    assert sma([1.0], 2) is None
    assert sma([1.0, 2.0], 0) is None


def test_crossover_levels():
    assert crossover_signal(2.0, 1.0) == Signal.LONG
    assert crossover_signal(1.0, 2.0) == Signal.SHORT
    assert crossover_signal(1.0, 1.0) == Signal.HOLD
    assert crossover_signal(None, 1.0) == Signal.HOLD


def test_spike_turns_long():
    s = compute_signal([1.0, 2.0, 3.0, 100.0], fast_period=2, slow_period=3)
    assert s.price == 100.0
    assert s.fast == pytest.approx(51.5)
    assert s.slow == pytest.approx(35.0)
    assert s.signal == Signal.LONG


def test_falling_series_is_short():
    closes = [float(x) for x in range(40, 10, -1)]
    s = compute_signal(closes, fast_period=9, slow_period=21)
    assert s.signal == Signal.SHORT
    assert s.fast < s.slow


def test_not_enough_history_holds():
    s = compute_signal([10.0, 11.0, 12.0], fast_period=2, slow_period=5)
    assert s.signal == Signal.HOLD
    assert s.fast is None and s.slow is None
    assert s.price == 12.0


def test_empty_series_has_no_price():
    s = compute_signal([], fast_period=2, slow_period=3)
    assert s.price is None
    assert s.signal == Signal.HOLD
