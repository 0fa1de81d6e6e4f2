"""End-to-end runtime wiring feed buffers -> window machine -> executor -> state."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from regime_dca.ao.executor import PurchaseExecutor, PurchaseOutcome
from regime_dca.ao.kraken import DryRunBroker, ExchangeClient, ExchangeError, KrakenClient
from regime_dca.core.config import Settings
from regime_dca.core.types import PurchaseDetails
from regime_dca.de.window import PurchaseWindowMachine, WindowAction, WindowDecision, month_key
from regime_dca.epl.buffer import CandleBuffer
from regime_dca.isi import indicators
from regime_dca.isi.regime import assess_market
from regime_dca.notify import FanoutNotifier, LogNotifier, Notifier, WebhookNotifier
from regime_dca.sm.manager import StateManager

logger = logging.getLogger(__name__)

DAILY_MINUTES = 1440
FOUR_HOUR_MINUTES = 240


@dataclass(frozen=True, slots=True)
class CycleResult:
    """What one check cycle did; ``status`` is a WindowAction value, "purchased", "aborted" or "skipped_busy"."""

    status: str
    decision: WindowDecision | None = None
    outcome: PurchaseOutcome | None = None
    available_funds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status, "available_funds": self.available_funds}
        if self.decision is not None:
            payload["action"] = self.decision.action.value
            payload["window_age_days"] = self.decision.window_age_days
            if self.decision.assessment is not None:
                payload["regime"] = self.decision.assessment.label
                payload["max_wait_days"] = self.decision.assessment.max_wait_days
            if self.decision.verdict is not None:
                payload["verdict"] = self.decision.verdict.pretty
                payload["diagnostic"] = self.decision.verdict.diagnostic.to_dict()
        if self.outcome is not None:
            payload["purchase"] = {
                "executed": self.outcome.executed,
                "reason": self.outcome.reason,
                "spend": self.outcome.spend,
                "volume": self.outcome.volume,
                "ask": self.outcome.ask,
                "order_id": self.outcome.order_id,
            }
        return payload


class DcaRuntime:
    """Live engine: one guarded check cycle at a time over buffer snapshots."""

    def __init__(
        self,
        config: Settings,
        exchange: ExchangeClient,
        store: StateManager,
        notifier: Notifier | None = None,
    ) -> None:
        self.config = config
        self.exchange = exchange
        self.store = store
        self.notifier = notifier or LogNotifier()
        self.daily = CandleBuffer("1d", config.daily_history)
        self.four_hour = CandleBuffer("4h", config.four_hour_history)
        self.machine = PurchaseWindowMachine(config)
        self.executor = PurchaseExecutor(config, exchange)
        self.state = store.load_trader_state()
        self._cycle_guard = threading.Lock()

    def seed_history(self) -> None:
        self.daily.replace(self.exchange.fetch_recent_candles(self.config.pair, DAILY_MINUTES))
        self.four_hour.replace(self.exchange.fetch_recent_candles(self.config.pair, FOUR_HOUR_MINUTES))
        logger.info("seeded history 1D:%d 4h:%d", len(self.daily), len(self.four_hour))

    def refresh_market(self) -> None:
        self.daily.merge_recent(self.exchange.fetch_recent_candles(self.config.pair, DAILY_MINUTES))
        self.four_hour.merge_recent(self.exchange.fetch_recent_candles(self.config.pair, FOUR_HOUR_MINUTES))

    def check_once(self, now: datetime | None = None) -> CycleResult:
        """Run one evaluation-and-purchase cycle unless another is in flight."""
        if not self._cycle_guard.acquire(blocking=False):
            logger.warning("check cycle already in flight; skipping")
            return CycleResult(status="skipped_busy")
        try:
            return self._run_cycle(now or datetime.now(UTC))
        finally:
            self._cycle_guard.release()

    def run_loop(
        self,
        *,
        iterations: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Refresh and check every ``check_every_hours``; failures wait for the next tick."""
        interval_s = self.config.check_every_hours * 3600
        count = 0
        while iterations is None or count < iterations:
            try:
                self.refresh_market()
                self.check_once()
            except ExchangeError as exc:
                logger.error("check cycle failed: %s", exc)
            except Exception:  # noqa: BLE001
                logger.exception("check cycle crashed; retrying next tick")
            count += 1
            next_check = datetime.now(UTC) + timedelta(seconds=interval_s)
            logger.info("next check scheduled: %s", next_check.astimezone(self.config.tz).isoformat())
            if iterations is None or count < iterations:
                sleep(interval_s)

    def indicator_snapshot(self) -> dict[str, Any]:
        daily = self.daily.closes()
        four_hour = self.four_hour.closes()
        bands = indicators.bollinger_bands(daily, self.config.bb_period, self.config.bb_std_dev)
        cross = indicators.ema_crossover(four_hour, self.config.fast_ema, self.config.slow_ema)
        return {
            "regime": assess_market(daily, self.config).label,
            "rsi_1d": indicators.rsi(daily, self.config.rsi_period),
            "bollinger_1d": None
            if bands is None
            else {"lower": bands.lower, "middle": bands.middle, "upper": bands.upper},
            "ema_cross_4h": cross.crossed,
        }

    def _available_funds(self) -> float:
        balances = self.exchange.fetch_balance()
        for code in self.config.quote_asset_codes:
            if code in balances:
                return float(balances[code])
        return 0.0

    def _run_cycle(self, now: datetime) -> CycleResult:
        key = month_key(now, self.config)
        if self.state.last_trade_month_key == key:
            logger.info("already traded this month (%s)", key)
            return CycleResult(status=WindowAction.SKIP_TRADED.value)

        funds = self._available_funds()
        logger.info("balance check: %.2f available (dry=%s)", funds, self.config.dry_run)

        step = self.machine.step(
            self.state,
            now=now,
            available_funds=funds,
            daily=self.daily.closes(),
            four_hour=self.four_hour.closes(),
        )
        decision = step.decision
        if decision.opened_window:
            self.store.save_trader_state(step.state)
            logger.info("opened monthly purchase window at %s", now.isoformat())
        self.state = step.state

        if not decision.wants_purchase:
            if decision.action is not WindowAction.SKIP_FUNDS:
                logger.info("%s", decision.summary())
            return CycleResult(status=decision.action.value, decision=decision, available_funds=funds)

        logger.info("%s", decision.summary())
        outcome = self.executor.execute(self.state, decision, now=now, available_funds=funds)
        if not outcome.executed:
            return CycleResult(status="aborted", decision=decision, outcome=outcome, available_funds=funds)

        details = PurchaseDetails(
            pair=self.config.pair,
            spend=outcome.spend,
            volume=outcome.volume,
            ask=outcome.ask,
            order_id=outcome.order_id,
            dry_run=self.config.dry_run,
            fallback=decision.is_fallback,
            verdict=decision.verdict.pretty if decision.verdict is not None else "",
            executed_at=now,
            snapshot=self.indicator_snapshot(),
        )
        self.store.save_trader_state(outcome.state, purchase=details)
        self.state = outcome.state
        if isinstance(self.exchange, DryRunBroker):
            self.exchange.settle(outcome.spend, outcome.volume)
        self._notify(details)
        return CycleResult(status="purchased", decision=decision, outcome=outcome, available_funds=funds)

    def _notify(self, details: PurchaseDetails) -> None:
        try:
            self.notifier.notify_purchase(details)
        except Exception as exc:
            logger.warning("purchase notification failed: %s", exc)


def build_runtime(config: Settings) -> DcaRuntime:
    """Wire the Kraken client (dry-run wrapped when configured), store and notifiers."""
    client: ExchangeClient = KrakenClient(
        base_url=config.kraken_base_url,
        api_key=config.kraken_api_key,
        api_secret=config.kraken_api_secret,
        timeout_s=config.http_timeout_s,
    )
    if config.dry_run:
        client = DryRunBroker(
            client,
            quote_asset=config.quote_asset_codes[0],
            base_asset=config.base_asset_code,
            balance=config.dry_balance,
        )
    notifiers: list[Notifier] = [LogNotifier()]
    if config.webhook_url:
        notifiers.append(WebhookNotifier(config.webhook_url, timeout_s=config.http_timeout_s))
    return DcaRuntime(config, client, StateManager(config.db_url), FanoutNotifier(notifiers))
