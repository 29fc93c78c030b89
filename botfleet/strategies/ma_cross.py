from __future__ import annotations

from typing import Sequence

from botfleet.core.types import MarketSample, Signal
from botfleet.indicators.sma import sma


def crossover_signal(fast: float | None, slow: float | None) -> Signal:
    """
    Compares the two averages at the latest sample: fast above slow -> LONG, below -> SHORT.

    This is a level comparison, not edge detection; a trend keeps reporting the same signal
    tick after tick and the risk engine is what prevents repeated entries.
    """
    if fast is None or slow is None:
        return Signal.HOLD
    if fast > slow:
        return Signal.LONG
    if fast < slow:
        return Signal.SHORT
    return Signal.HOLD


def compute_signal(closes: Sequence[float], fast_period: int, slow_period: int) -> MarketSample:
    price = float(closes[-1]) if closes else None
    if len(closes) < slow_period:
        return MarketSample(price=price, fast=None, slow=None, signal=Signal.HOLD)
    fast = sma(closes, fast_period)
    slow = sma(closes, slow_period)
    return MarketSample(price=price, fast=fast, slow=slow, signal=crossover_signal(fast, slow))
