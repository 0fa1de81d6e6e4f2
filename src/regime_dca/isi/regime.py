"""ISI layer: market regime classification from daily closes."""

from __future__ import annotations

from collections.abc import Sequence

from regime_dca.core.config import Settings
from regime_dca.core.types import MarketAssessment, Regime
from regime_dca.isi.indicators import simple_moving_average


def classify_regime(closes: Sequence[float], settings: Settings) -> Regime:
    """Label the trend from the fast/slow SMA spread.

    With fewer closes than the slow window the answer is SIDEWAYS, a data
    shortfall fallback rather than a market judgment.
    """
    if len(closes) < settings.regime_slow_ma:
        return Regime.SIDEWAYS
    fast = simple_moving_average(closes, settings.regime_fast_ma)
    slow = simple_moving_average(closes, settings.regime_slow_ma)
    if fast is None or slow is None:
        return Regime.SIDEWAYS
    if fast > slow * (1.0 + settings.regime_band):
        return Regime.BULLISH
    if fast < slow * (1.0 - settings.regime_band):
        return Regime.BEARISH
    return Regime.SIDEWAYS


def is_massively_bearish(closes: Sequence[float], settings: Settings) -> bool:
    """True when a bearish market also closes a further margin below its slow SMA."""
    if len(closes) < settings.regime_slow_ma:
        return False
    if classify_regime(closes, settings) is not Regime.BEARISH:
        return False
    slow = simple_moving_average(closes, settings.regime_slow_ma)
    if slow is None:
        return False
    return closes[-1] <= slow * settings.massive_bear_factor


def max_wait_days_for(regime: Regime, settings: Settings) -> float:
    # same bound for every regime until per-regime waits are configured
    _ = regime
    return settings.max_wait_days


def assess_market(closes: Sequence[float], settings: Settings) -> MarketAssessment:
    regime = classify_regime(closes, settings)
    return MarketAssessment(
        regime=regime,
        massively_bearish=regime is Regime.BEARISH and is_massively_bearish(closes, settings),
        max_wait_days=max_wait_days_for(regime, settings),
    )
