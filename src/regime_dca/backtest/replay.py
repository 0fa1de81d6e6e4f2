"""Historical replay of the trigger strategy against a fixed-date DCA baseline.

The replay steps the live ``PurchaseWindowMachine`` over daily candles, so the
regime and trigger dispatch are the live ones by construction. Fallback buys
price at the daily close on the window end date.
"""

from __future__ import annotations

import logging
from bisect import bisect_right
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from regime_dca.ao.executor import units_for_spend
from regime_dca.core.config import BacktestSettings, Settings
from regime_dca.core.types import Candle, PurchaseWindow, TraderState
from regime_dca.de.window import PurchaseWindowMachine, WindowAction, WindowDecision
from regime_dca.epl.buffer import closes_up_to
from regime_dca.isi.regime import assess_market

logger = logging.getLogger(__name__)

FOUR_HOURS = timedelta(hours=4)


@dataclass(frozen=True, slots=True)
class BacktestPurchase:
    anchor: datetime
    executed_at: datetime
    price: float
    units: float
    fallback: bool
    verdict: str


@dataclass(frozen=True, slots=True)
class AnchorReplay:
    """Every window decision taken for one monthly anchor, plus the purchase it led to."""

    anchor: datetime
    decisions: tuple[WindowDecision, ...]
    purchase: BacktestPurchase | None


@dataclass(slots=True)
class StrategyTotals:
    invested: float = 0.0
    units: float = 0.0

    def buy(self, spend: float, price: float, fee_buffer: float) -> float:
        units = units_for_spend(spend, price, fee_buffer)
        self.invested += spend
        self.units += units
        return units


@dataclass(frozen=True, slots=True)
class BacktestReport:
    anchors: int
    deposit: float
    fee_buffer: float
    final_price: float
    baseline: StrategyTotals
    strategy: StrategyTotals
    purchases: tuple[BacktestPurchase, ...] = field(default_factory=tuple)

    @property
    def baseline_value(self) -> float:
        return self.baseline.units * self.final_price

    @property
    def strategy_value(self) -> float:
        return self.strategy.units * self.final_price

    @property
    def units_vs_baseline_pct(self) -> float | None:
        if self.baseline.units == 0:
            return None
        return (self.strategy.units / self.baseline.units - 1.0) * 100.0

    @property
    def value_vs_baseline_pct(self) -> float | None:
        if self.baseline_value == 0:
            return None
        return (self.strategy_value / self.baseline_value - 1.0) * 100.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "anchors": self.anchors,
            "deposit": self.deposit,
            "fee_buffer": self.fee_buffer,
            "final_price": self.final_price,
            "baseline": {
                "invested": self.baseline.invested,
                "units": self.baseline.units,
                "final_value": self.baseline_value,
            },
            "strategy": {
                "invested": self.strategy.invested,
                "units": self.strategy.units,
                "final_value": self.strategy_value,
                "units_vs_baseline_pct": self.units_vs_baseline_pct,
                "value_vs_baseline_pct": self.value_vs_baseline_pct,
            },
            "purchases": [
                {
                    "anchor": item.anchor.isoformat(),
                    "executed_at": item.executed_at.isoformat(),
                    "price": item.price,
                    "units": item.units,
                    "fallback": item.fallback,
                    "verdict": item.verdict,
                }
                for item in self.purchases
            ],
        }


def monthly_anchors(start: datetime, end: datetime, buy_day: int, hour: int, minute: int) -> list[datetime]:
    """Anchor instants (UTC) on ``buy_day`` of each month strictly inside (start, end)."""
    anchors: list[datetime] = []
    cursor = datetime(start.year, start.month, 1, tzinfo=UTC)
    while cursor < end:
        anchor = cursor.replace(day=buy_day, hour=hour, minute=minute)
        if start < anchor < end:
            anchors.append(anchor)
        cursor = datetime(cursor.year + cursor.month // 12, cursor.month % 12 + 1, 1, tzinfo=UTC)
    return anchors


def baseline_candle(four_hour: Sequence[Candle], anchor: datetime) -> Candle | None:
    """The 4h candle containing ``anchor``, else the one nearest to it."""
    if not four_hour:
        return None
    for candle in four_hour:
        if candle.time <= anchor < candle.time + FOUR_HOURS:
            return candle
    return min(four_hour, key=lambda candle: abs((candle.time - anchor).total_seconds()))


def replay_anchor(
    anchor: datetime,
    daily: Sequence[Candle],
    four_hour: Sequence[Candle],
    machine: PurchaseWindowMachine,
    config: Settings,
    deposit: float,
) -> AnchorReplay:
    """Open a window at ``anchor`` and walk daily candles up to the window end.

    Without a trigger the fallback buys at the daily candle dated on the window
    end's UTC day, else the first one after it, else the last close.
    """
    anchor_closes = closes_up_to(daily, anchor)
    if not anchor_closes:
        return AnchorReplay(anchor, (), None)
    assessment = assess_market(anchor_closes, config)
    window_end = anchor + timedelta(days=assessment.max_wait_days)
    state = TraderState(window=PurchaseWindow(started_at=anchor))
    four_times = [candle.time for candle in four_hour]
    four_closes = [candle.close for candle in four_hour]
    daily_closes = [candle.close for candle in daily]

    decisions: list[WindowDecision] = []
    for idx, candle in enumerate(daily):
        if candle.time < anchor:
            continue
        if candle.time > window_end:
            break
        cut = bisect_right(four_times, candle.time)
        step = machine.step(
            state,
            now=candle.time,
            available_funds=deposit,
            daily=daily_closes[: idx + 1],
            four_hour=four_closes[:cut],
            assessment=assessment,
        )
        decisions.append(step.decision)
        state = step.state
        if step.decision.action is WindowAction.SKIP_FUNDS:
            logger.warning("deposit %.2f below minimum order; anchor %s skipped", deposit, anchor.isoformat())
            return AnchorReplay(anchor, tuple(decisions), None)
        if step.decision.action is WindowAction.BUY_TRIGGER:
            verdict = step.decision.verdict.pretty if step.decision.verdict is not None else ""
            purchase = BacktestPurchase(
                anchor=anchor,
                executed_at=candle.time,
                price=candle.close,
                units=units_for_spend(deposit, candle.close, config.fee_buffer),
                fallback=False,
                verdict=verdict,
            )
            return AnchorReplay(anchor, tuple(decisions), purchase)
        if step.decision.is_fallback:
            break

    chosen = fallback_candle(daily, window_end)
    last = decisions[-1] if decisions else None
    if last is not None and last.is_fallback and last.verdict is not None:
        verdict = last.verdict.pretty
    elif chosen.time.astimezone(UTC).date() < window_end.astimezone(UTC).date():
        verdict = f"fallback {assessment.label}: history ends before window end"
    else:
        verdict = f"fallback {assessment.label}: window end {window_end.isoformat()}"
    purchase = BacktestPurchase(
        anchor=anchor,
        executed_at=chosen.time,
        price=chosen.close,
        units=units_for_spend(deposit, chosen.close, config.fee_buffer),
        fallback=True,
        verdict=verdict,
    )
    return AnchorReplay(anchor, tuple(decisions), purchase)


def fallback_candle(daily: Sequence[Candle], window_end: datetime) -> Candle:
    """Daily candle on the window end's UTC date, else the first after it, else the last one."""
    end_day = window_end.astimezone(UTC).date()
    for candle in daily:
        if candle.time.astimezone(UTC).date() == end_day:
            return candle
    for candle in daily:
        if candle.time > window_end:
            return candle
    return daily[-1]


def run_backtest(
    daily: Sequence[Candle],
    four_hour: Sequence[Candle],
    anchors: Sequence[datetime],
    config: Settings,
    backtest: BacktestSettings,
) -> BacktestReport:
    if not daily:
        raise ValueError("daily history is empty")
    if not anchors:
        raise ValueError("no monthly anchors generated for the chosen window")

    machine = PurchaseWindowMachine(config)
    baseline = StrategyTotals()
    strategy = StrategyTotals()
    purchases: list[BacktestPurchase] = []

    for anchor in anchors:
        candle = baseline_candle(four_hour, anchor)
        if candle is not None:
            baseline.buy(backtest.deposit, candle.close, config.fee_buffer)

        replay = replay_anchor(anchor, daily, four_hour, machine, config, backtest.deposit)
        if replay.purchase is None:
            continue
        strategy.buy(backtest.deposit, replay.purchase.price, config.fee_buffer)
        purchases.append(replay.purchase)
        logger.debug(
            "anchor %s -> %s @ %.2f (%s)",
            anchor.isoformat(),
            replay.purchase.executed_at.isoformat(),
            replay.purchase.price,
            replay.purchase.verdict,
        )

    return BacktestReport(
        anchors=len(anchors),
        deposit=backtest.deposit,
        fee_buffer=config.fee_buffer,
        final_price=daily[-1].close,
        baseline=baseline,
        strategy=strategy,
        purchases=tuple(purchases),
    )


def format_report(report: BacktestReport, backtest: BacktestSettings) -> str:
    def pct(value: float | None) -> str:
        return "n/a" if value is None else f"{value:.2f}%"

    return "\n".join(
        [
            "=== Backtest Summary ===",
            f"Period: {backtest.years:g} years | Deposits: {report.deposit:.2f} / month | "
            f"Fee buffer: {report.fee_buffer * 100:.2f}%",
            f"Anchors tested: {report.anchors}",
            "",
            f"DCA @ day {backtest.buy_day} {backtest.buy_time} UTC:",
            f"  Total invested:  {report.baseline.invested:.2f}",
            f"  Units acquired:  {report.baseline.units:.6f}",
            f"  Final price:     {report.final_price:.2f}",
            f"  Final value:     {report.baseline_value:.2f}",
            "",
            "Trigger strategy (regime-aware):",
            f"  Total invested:  {report.strategy.invested:.2f}",
            f"  Units acquired:  {report.strategy.units:.6f} ({pct(report.units_vs_baseline_pct)} vs DCA)",
            f"  Final price:     {report.final_price:.2f}",
            f"  Final value:     {report.strategy_value:.2f} ({pct(report.value_vs_baseline_pct)} vs DCA)",
            f"  Fallback buys:   {sum(1 for item in report.purchases if item.fallback)}",
        ]
    )
