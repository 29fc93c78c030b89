from __future__ import annotations

from typing import Sequence


def sma(values: Sequence[float], period: int) -> float | None:
    """Arithmetic mean of the trailing `period` values, or None while there are too few."""
    if period <= 0 or len(values) < period:
        return None
    window = values[len(values) - period :]
    return sum(window) / float(period)
