"""ISI layer: stateless technical indicators over closing-price series.

Every function returns ``None`` (or a "not crossed" record) when the series is
too short. Callers must treat that as "condition not satisfied", never as zero.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from statistics import mean, stdev


@dataclass(frozen=True, slots=True)
class BollingerBands:
    lower: float
    middle: float
    upper: float


@dataclass(frozen=True, slots=True)
class EmaCrossover:
    """Fast-over-slow crossover between the last two samples."""

    crossed: bool
    fast_prev: float | None = None
    slow_prev: float | None = None
    fast_last: float | None = None
    slow_last: float | None = None


def simple_moving_average(series: Sequence[float], period: int) -> float | None:
    if period <= 0 or len(series) < period:
        return None
    return mean(series[-period:])


def rsi(series: Sequence[float], period: int = 14) -> float | None:
    """Wilder RSI over the last ``period + 1`` closes."""
    if period <= 0 or len(series) < period + 1:
        return None
    window = series[-(period + 1):]
    gains = []
    losses = []
    for idx in range(1, len(window)):
        diff = window[idx] - window[idx - 1]
        gains.append(max(0.0, diff))
        losses.append(max(0.0, -diff))
    avg_gain = mean(gains)
    avg_loss = mean(losses)
    if avg_loss == 0:
        return 50.0 if avg_gain == 0 else 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def bollinger_bands(
    series: Sequence[float], period: int = 20, std_dev_multiplier: float = 2.0
) -> BollingerBands | None:
    """Bands from the SMA and sample standard deviation of the trailing window."""
    if period < 2 or len(series) < period + 1:
        return None
    window = series[-period:]
    middle = mean(window)
    spread = stdev(window) * std_dev_multiplier
    return BollingerBands(lower=middle - spread, middle=middle, upper=middle + spread)


def ema_series(series: Sequence[float], period: int) -> list[float]:
    """EMA seeded with the SMA of the first ``period`` values.

    The result holds one value per sample from index ``period - 1`` onward, so it
    is end-aligned with ``series``.
    """
    if period <= 0 or len(series) < period:
        return []
    alpha = 2.0 / (period + 1.0)
    ema = mean(series[:period])
    history = [ema]
    for value in series[period:]:
        ema = alpha * value + (1.0 - alpha) * ema
        history.append(ema)
    return history


def ema_crossover(series: Sequence[float], fast_period: int = 9, slow_period: int = 21) -> EmaCrossover:
    fast = ema_series(series, fast_period)
    slow = ema_series(series, slow_period)
    if len(fast) < 2 or len(slow) < 2:
        return EmaCrossover(crossed=False)
    fast_prev, fast_last = fast[-2], fast[-1]
    slow_prev, slow_last = slow[-2], slow[-1]
    return EmaCrossover(
        crossed=fast_prev <= slow_prev and fast_last > slow_last,
        fast_prev=fast_prev,
        slow_prev=slow_prev,
        fast_last=fast_last,
        slow_last=slow_last,
    )


def drawdown_from_high(series: Sequence[float], lookback: int = 10) -> float | None:
    """Fractional distance of the last close below the high of the last ``lookback`` closes."""
    if lookback <= 0 or not series:
        return None
    high = max(series[-lookback:])
    if high <= 0:
        return None
    return (high - series[-1]) / high


def lower_band_touched(series: Sequence[float], bands: BollingerBands | None) -> bool:
    return bands is not None and bool(series) and series[-1] <= bands.lower
