"""DE layer: the monthly purchase-window state machine.

One ``PurchaseWindowMachine.step`` is one check cycle. It never mutates the
state it receives; the caller persists the returned state. The backtest replay
steps the very same machine, so live and simulated fallback rules cannot drift.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum

from regime_dca.core.config import Settings
from regime_dca.core.types import MarketAssessment, TraderState, TriggerDiagnostic, TriggerVerdict
from regime_dca.de.triggers import evaluate_triggers
from regime_dca.isi.regime import assess_market

DAY = timedelta(days=1)


class WindowAction(str, Enum):
    SKIP_TRADED = "skip_traded"
    SKIP_FUNDS = "skip_funds"
    WAIT = "wait"
    BUY_TRIGGER = "buy_trigger"
    BUY_FALLBACK = "buy_fallback"


@dataclass(frozen=True, slots=True)
class WindowDecision:
    action: WindowAction
    month_key: str
    assessment: MarketAssessment | None = None
    verdict: TriggerVerdict | None = None
    window_age_days: float = 0.0
    opened_window: bool = False

    @property
    def wants_purchase(self) -> bool:
        return self.action in (WindowAction.BUY_TRIGGER, WindowAction.BUY_FALLBACK)

    @property
    def is_fallback(self) -> bool:
        return self.action is WindowAction.BUY_FALLBACK

    def summary(self) -> str:
        if self.assessment is None or self.verdict is None:
            return self.action.value
        return (
            f"[{self.assessment.label}] windowAge={self.window_age_days:.2f}d "
            f"(max {self.assessment.max_wait_days:g}d) -> {self.verdict.pretty}"
        )


@dataclass(frozen=True, slots=True)
class WindowStep:
    decision: WindowDecision
    state: TraderState


def month_key(now: datetime, settings: Settings) -> str:
    return now.astimezone(settings.tz).strftime("%Y-%m")


def week_key(now: datetime, settings: Settings) -> str:
    iso = now.astimezone(settings.tz).isocalendar()
    return f"{iso.year}-W{iso.week:02d}"


class PurchaseWindowMachine:
    """NoWindow -> WindowOpen(started_at) -> NoWindow, advanced once per cycle."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def step(
        self,
        state: TraderState,
        *,
        now: datetime,
        available_funds: float,
        daily: Sequence[float],
        four_hour: Sequence[float],
        assessment: MarketAssessment | None = None,
    ) -> WindowStep:
        """Advance one cycle.

        ``assessment`` pins the regime (the replay fixes it at the monthly
        anchor); when omitted it is recomputed from ``daily``.
        """
        key = month_key(now, self._settings)
        if state.last_trade_month_key == key:
            return WindowStep(WindowDecision(WindowAction.SKIP_TRADED, key), state)
        if available_funds < self._settings.min_order:
            return WindowStep(WindowDecision(WindowAction.SKIP_FUNDS, key), state)

        opened = not state.window.is_open
        if opened:
            state = state.with_window(now)
        started_at = state.window.started_at or now

        market = assessment or assess_market(daily, self._settings)
        age_days = (now - started_at) / DAY
        verdict = evaluate_triggers(market, daily, four_hour, self._settings)

        if verdict.ok:
            action = WindowAction.BUY_TRIGGER
        elif age_days >= market.max_wait_days:
            action = WindowAction.BUY_FALLBACK
            verdict = _as_fallback(verdict, market, age_days)
        else:
            action = WindowAction.WAIT

        decision = WindowDecision(
            action=action,
            month_key=key,
            assessment=market,
            verdict=verdict,
            window_age_days=age_days,
            opened_window=opened,
        )
        return WindowStep(decision, state)


def _as_fallback(verdict: TriggerVerdict, market: MarketAssessment, age_days: float) -> TriggerVerdict:
    note = f"fallback {market.label}: window {age_days:.2f}d >= {market.max_wait_days:g}d"
    if verdict.diagnostic.note:
        note = f"{note}; {verdict.diagnostic.note}"
    diagnostic: TriggerDiagnostic = replace(verdict.diagnostic, path="fallback", note=note)
    return TriggerVerdict(False, diagnostic)
