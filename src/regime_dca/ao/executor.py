"""AO layer: guarded purchase execution shared by triggered and fallback buys."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from regime_dca.ao.kraken import ExchangeClient
from regime_dca.core.config import Settings
from regime_dca.core.types import TraderState
from regime_dca.de.window import WindowDecision, month_key, week_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PurchaseOutcome:
    """Result of one purchase attempt; ``state`` is unchanged unless ``executed``."""

    executed: bool
    reason: str
    state: TraderState
    spend: float = 0.0
    volume: float = 0.0
    ask: float = 0.0
    order_id: str = ""


def units_for_spend(spend: float, price: float, fee_buffer: float) -> float:
    """Asset volume bought for ``spend`` at ``price`` after reserving the fee buffer."""
    if price <= 0:
        return 0.0
    return (spend / price) * (1.0 - fee_buffer)


class PurchaseExecutor:
    """Applies cooldown, weekly cap and minimum order before placing a market buy."""

    def __init__(self, config: Settings, exchange: ExchangeClient) -> None:
        self._config = config
        self._exchange = exchange

    def check_guards(self, state: TraderState, *, now: datetime, spend: float) -> str | None:
        """Return the abort reason, or None when a purchase may proceed."""
        cooldown = timedelta(hours=self._config.cooldown_hours)
        if state.last_buy_at is not None and now - state.last_buy_at < cooldown:
            return f"cooldown active ({self._config.cooldown_hours:g}h)"
        week = week_key(now, self._config)
        buys = state.buys_this_week if state.current_week_key == week else 0
        if buys >= self._config.max_buys_per_week:
            return f"weekly buy cap reached ({self._config.max_buys_per_week})"
        if spend < self._config.min_order:
            return f"spend {spend:.2f} below minimum order {self._config.min_order:g}"
        return None

    def execute(
        self,
        state: TraderState,
        decision: WindowDecision,
        *,
        now: datetime,
        available_funds: float,
    ) -> PurchaseOutcome:
        spend = max(available_funds, 0.0)
        reason = self.check_guards(state, now=now, spend=spend)
        if reason is not None:
            logger.info("purchase aborted: %s", reason)
            return PurchaseOutcome(executed=False, reason=reason, state=state)

        ticker = self._exchange.fetch_ticker(self._config.pair)
        volume = units_for_spend(spend, ticker.ask, self._config.fee_buffer)
        logger.info(
            "EXECUTE BUY vol=%.6f @ ~%.2f for %.2f (fee buf %.2f%%, fallback=%s, dry=%s)",
            volume,
            ticker.ask,
            spend,
            self._config.fee_buffer * 100,
            decision.is_fallback,
            self._config.dry_run,
        )
        order_id = self._exchange.place_market_buy(self._config.pair, volume)

        week = week_key(now, self._config)
        buys = state.buys_this_week if state.current_week_key == week else 0
        committed = replace(
            state,
            last_trade_month_key=month_key(now, self._config),
            last_buy_at=now,
            current_week_key=week,
            buys_this_week=buys + 1,
        ).with_window(None)
        return PurchaseOutcome(
            executed=True,
            reason="fallback" if decision.is_fallback else "trigger",
            state=committed,
            spend=spend,
            volume=volume,
            ask=ticker.ask,
            order_id=order_id,
        )
