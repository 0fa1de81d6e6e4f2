"""DE layer: regime-specific buy triggers and their dispatch.

Each evaluator returns a ``TriggerVerdict`` whose diagnostic lists every
condition it looked at. Short inputs yield ``ok=False`` with a shortfall note.
"""

from __future__ import annotations

from collections.abc import Sequence

from regime_dca.core.config import Settings
from regime_dca.core.types import Condition, MarketAssessment, Regime, TriggerDiagnostic, TriggerVerdict
from regime_dca.isi import indicators

BULL_MIN_DAILY = 60
SIDEWAYS_MIN_DAILY = 60
SIDEWAYS_MIN_FOUR_HOUR = 60
BEAR_MASSIVE_MIN_DAILY = 20
BEAR_NORMAL_MIN_DAILY = 60


def eval_bullish_fast_daily(daily: Sequence[float], settings: Settings) -> TriggerVerdict:
    name = "bull"
    if len(daily) < BULL_MIN_DAILY:
        return _shortfall(name, f"need daily>={BULL_MIN_DAILY} ({len(daily)})")

    value = indicators.rsi(daily, settings.rsi_period)
    drawdown = indicators.drawdown_from_high(daily, settings.bull_lookback_days)
    rsi_ok = value is not None and value < settings.bull_rsi_max
    pullback_ok = drawdown is not None and drawdown >= settings.bull_pullback_pct

    conditions = (
        Condition(
            "rsi_below_max",
            rsi_ok,
            value,
            settings.bull_rsi_max,
            label=f"RSI{settings.rsi_period}<{settings.bull_rsi_max:g}",
        ),
        Condition(
            "pullback_from_high",
            pullback_ok,
            drawdown,
            settings.bull_pullback_pct,
            label=f"dd{settings.bull_lookback_days}D≥{settings.bull_pullback_pct * 100:g}%",
        ),
    )
    return TriggerVerdict(rsi_ok or pullback_ok, TriggerDiagnostic(name, conditions, path="rsi_or_pullback"))


def eval_sideways_daily_plus_4h(
    daily: Sequence[float], four_hour: Sequence[float], settings: Settings
) -> TriggerVerdict:
    name = "sideways"
    if len(daily) < SIDEWAYS_MIN_DAILY or len(four_hour) < SIDEWAYS_MIN_FOUR_HOUR:
        return _shortfall(
            name,
            f"need daily>={SIDEWAYS_MIN_DAILY},4h>={SIDEWAYS_MIN_FOUR_HOUR} ({len(daily)},{len(four_hour)})",
        )

    value = indicators.rsi(daily, settings.rsi_period)
    bands = indicators.bollinger_bands(daily, settings.bb_period, settings.bb_std_dev)
    cross = indicators.ema_crossover(four_hour, settings.fast_ema, settings.slow_ema)
    rsi_ok = value is not None and value <= settings.sideways_rsi_max

    conditions = (
        Condition(
            "rsi_at_most_max",
            rsi_ok,
            value,
            settings.sideways_rsi_max,
            label=f"RSI≤{settings.sideways_rsi_max:g}",
        ),
        _lower_band_condition(daily, bands),
        _cross_condition(cross, settings),
    )
    ok = all(item.passed for item in conditions)
    return TriggerVerdict(ok, TriggerDiagnostic(name, conditions, path="confirmed"))


def eval_bear_massive_daily(daily: Sequence[float], settings: Settings) -> TriggerVerdict:
    name = "bear(massive)"
    if len(daily) < BEAR_MASSIVE_MIN_DAILY:
        return _shortfall(name, f"need daily>={BEAR_MASSIVE_MIN_DAILY} ({len(daily)})")

    value = indicators.rsi(daily, settings.rsi_period)
    bands = indicators.bollinger_bands(daily, settings.bb_period, settings.bb_std_dev)
    band = _lower_band_condition(daily, bands)
    early = _rsi_early_condition(value, settings)

    band_path = settings.bear_allow_lower_bb_only and band.passed
    rsi_path = settings.bear_allow_rsi_only and early.passed
    path = "lower_bb" if band_path else "rsi_early" if rsi_path else ""
    disabled = [
        label
        for label, enabled in (
            ("lowerBB path off", settings.bear_allow_lower_bb_only),
            ("RSI path off", settings.bear_allow_rsi_only),
        )
        if not enabled
    ]
    note = "; ".join(["no 4h confirm", *disabled])
    return TriggerVerdict(band_path or rsi_path, TriggerDiagnostic(name, (band, early), path=path, note=note))


def eval_bear_normal_daily_plus_4h(
    daily: Sequence[float], four_hour: Sequence[float], settings: Settings
) -> TriggerVerdict:
    """Ordered cascade: RSI-only, lower-band-only, deep value, then 4h-confirmed.

    The first matching path wins; the 4h series is only read by the last one.
    """
    name = "bear"
    if len(daily) < BEAR_NORMAL_MIN_DAILY:
        return _shortfall(name, f"need daily>={BEAR_NORMAL_MIN_DAILY} ({len(daily)})")

    value = indicators.rsi(daily, settings.rsi_period)
    bands = indicators.bollinger_bands(daily, settings.bb_period, settings.bb_std_dev)
    sma = indicators.simple_moving_average(daily, settings.regime_slow_ma)
    last = daily[-1]
    seen: list[Condition] = []

    early = _rsi_early_condition(value, settings)
    if settings.bear_allow_rsi_only:
        seen.append(early)
        if early.passed:
            return _matched(name, seen, "rsi_early")

    band = _lower_band_condition(daily, bands)
    if settings.bear_allow_lower_bb_only:
        seen.append(band)
        if band.passed:
            return _matched(name, seen, "lower_bb")

    below = (sma - last) / sma if sma else None
    deep = Condition(
        "below_sma",
        below is not None and below >= settings.bear_below_sma_pct,
        below,
        settings.bear_below_sma_pct,
        label=f"below{settings.regime_slow_ma}SMA≥{settings.bear_below_sma_pct * 100:g}%",
    )
    seen.append(deep)
    if deep.passed:
        return _matched(name, seen, "deep_value")

    needed = max(settings.fast_ema, settings.slow_ema) + 2
    if len(four_hour) >= needed:
        cross = indicators.ema_crossover(four_hour, settings.fast_ema, settings.slow_ema)
        confirm_rsi = Condition(
            "rsi_at_most_max",
            value is not None and value <= settings.bear_rsi_max,
            value,
            settings.bear_rsi_max,
            label=f"RSI≤{settings.bear_rsi_max:g}",
        )
        confirmed = (confirm_rsi, band, _cross_condition(cross, settings))
        ok = all(item.passed for item in confirmed)
        return TriggerVerdict(ok, TriggerDiagnostic(name, (*seen, *confirmed), path="confirmed"))

    return TriggerVerdict(
        False,
        TriggerDiagnostic(name, tuple(seen), path="waiting", note=f"4h<{needed} ({len(four_hour)})"),
    )


def evaluate_triggers(
    assessment: MarketAssessment,
    daily: Sequence[float],
    four_hour: Sequence[float],
    settings: Settings,
) -> TriggerVerdict:
    """Route to the evaluator for the assessed regime; shared by live and replay."""
    if assessment.regime is Regime.BULLISH:
        return eval_bullish_fast_daily(daily, settings)
    if assessment.regime is Regime.SIDEWAYS:
        return eval_sideways_daily_plus_4h(daily, four_hour, settings)
    if assessment.massively_bearish:
        return eval_bear_massive_daily(daily, settings)
    return eval_bear_normal_daily_plus_4h(daily, four_hour, settings)


def _shortfall(name: str, note: str) -> TriggerVerdict:
    return TriggerVerdict(False, TriggerDiagnostic(name, (), path="insufficient_data", note=note))


def _matched(name: str, seen: list[Condition], path: str) -> TriggerVerdict:
    return TriggerVerdict(True, TriggerDiagnostic(name, tuple(seen), path=path, note="no 4h confirm"))


def _rsi_early_condition(value: float | None, settings: Settings) -> Condition:
    return Condition(
        "rsi_early",
        value is not None and value <= settings.bear_rsi_early,
        value,
        settings.bear_rsi_early,
        label=f"RSI≤{settings.bear_rsi_early:g}",
    )


def _lower_band_condition(daily: Sequence[float], bands: indicators.BollingerBands | None) -> Condition:
    return Condition(
        "lower_bb_touch",
        indicators.lower_band_touched(daily, bands),
        daily[-1] if daily else None,
        bands.lower if bands is not None else None,
        label="lowerBB",
    )


def _cross_condition(cross: indicators.EmaCrossover, settings: Settings) -> Condition:
    return Condition(
        "ema_cross_4h",
        cross.crossed,
        cross.fast_last,
        cross.slow_last,
        label=f"4h EMA{settings.fast_ema}>{settings.slow_ema}",
    )
