from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import pytest

from helpers import DAY, FOUR_HOURS, FakeExchange, crossing_series, flat_then_drop, make_candles, rising
from regime_dca.ao.kraken import ExchangeNetworkError
from regime_dca.core.config import Settings
from regime_dca.core.types import PurchaseDetails
from regime_dca.notify import NotificationError
from regime_dca.runtime import DcaRuntime
from regime_dca.sm.manager import StateManager


@pytest.fixture
def store(tmp_path: Path) -> StateManager:
    return StateManager(f"sqlite:///{tmp_path / 'state.db'}")


def _triggering_exchange(start: datetime, **kwargs) -> FakeExchange:  # type: ignore[no-untyped-def]
    return FakeExchange(
        daily=make_candles(flat_then_drop(), start - 60 * DAY, DAY),
        four_hour=make_candles(crossing_series(), start - 61 * FOUR_HOURS, FOUR_HOURS),
        **kwargs,
    )


def _runtime(settings: Settings, exchange: FakeExchange, store: StateManager, notifier=None) -> DcaRuntime:  # type: ignore[no-untyped-def]
    runtime = DcaRuntime(settings, exchange, store, notifier)
    runtime.seed_history()
    return runtime


class RaisingNotifier:
    def notify_purchase(self, details: PurchaseDetails) -> None:
        raise NotificationError("smtp down")


def test_triggered_purchase_is_persisted_with_audit_entry(settings, store, start) -> None:  # type: ignore[no-untyped-def]
    exchange = _triggering_exchange(start)
    runtime = _runtime(settings, exchange, store)

    result = runtime.check_once(start)

    assert result.status == "purchased"
    assert result.to_dict()["regime"] == "sideways"
    assert len(exchange.buys) == 1
    persisted = store.load_trader_state()
    assert persisted.last_trade_month_key == "2026-01"
    assert persisted.window.is_open is False
    purchases = store.get_purchases()
    assert len(purchases) == 1
    assert purchases[0]["order_id"] == "order-1"
    assert purchases[0]["details"]["fallback"] is False


def test_traded_month_skips_before_balance_fetch(settings, store, start) -> None:  # type: ignore[no-untyped-def]
    exchange = _triggering_exchange(start)
    runtime = _runtime(settings, exchange, store)
    runtime.check_once(start)

    again = runtime.check_once(start + 3 * DAY)

    assert again.status == "skip_traded"
    assert exchange.balance_calls == 1
    assert len(exchange.buys) == 1


def test_opened_window_is_persisted_while_waiting(settings, store, start) -> None:  # type: ignore[no-untyped-def]
    exchange = FakeExchange(daily=make_candles(rising(60), start - 60 * DAY, DAY))
    runtime = _runtime(settings, exchange, store)

    result = runtime.check_once(start)

    assert result.status == "wait"
    assert store.load_trader_state().window.started_at == start
    reloaded = DcaRuntime(settings, exchange, store)
    assert reloaded.state.window.started_at == start


def test_exchange_failure_leaves_state_untouched(settings, store, start) -> None:  # type: ignore[no-untyped-def]
    exchange = _triggering_exchange(start, fail_with=ExchangeNetworkError("timeout"))
    runtime = _runtime(settings, exchange, store)

    with pytest.raises(ExchangeNetworkError):
        runtime.check_once(start)

    assert exchange.buys == []
    assert store.load_trader_state().window.is_open is False
    assert store.get_purchases() == []


def test_notification_failure_does_not_undo_purchase(settings, store, start, caplog) -> None:  # type: ignore[no-untyped-def]
    exchange = _triggering_exchange(start)
    runtime = _runtime(settings, exchange, store, RaisingNotifier())

    with caplog.at_level(logging.WARNING, logger="regime_dca"):
        result = runtime.check_once(start)

    assert result.status == "purchased"
    assert len(store.get_purchases()) == 1
    assert "purchase notification failed" in caplog.text


def test_overlapping_check_is_skipped(settings, store, start) -> None:  # type: ignore[no-untyped-def]
    nested = []

    class ReentrantNotifier:
        def notify_purchase(self, details: PurchaseDetails) -> None:
            nested.append(runtime.check_once(start))

    exchange = _triggering_exchange(start)
    runtime = _runtime(settings, exchange, store, ReentrantNotifier())

    assert runtime.check_once(start).status == "purchased"
    assert [item.status for item in nested] == ["skipped_busy"]
    assert len(exchange.buys) == 1


def test_insufficient_funds_keeps_window_closed(settings, store, start) -> None:  # type: ignore[no-untyped-def]
    exchange = _triggering_exchange(start, balance=5.0)
    runtime = _runtime(settings, exchange, store)

    result = runtime.check_once(start)

    assert result.status == "skip_funds"
    assert result.available_funds == pytest.approx(5.0)
    assert store.load_trader_state().window.is_open is False


def test_run_loop_logs_failures_and_keeps_ticking(settings, store, start, caplog) -> None:  # type: ignore[no-untyped-def]
    exchange = _triggering_exchange(start, fail_with=ExchangeNetworkError("timeout"))
    runtime = _runtime(settings, exchange, store)
    sleeps: list[float] = []

    with caplog.at_level(logging.ERROR, logger="regime_dca"):
        runtime.run_loop(iterations=2, sleep=sleeps.append)

    assert exchange.balance_calls == 2
    assert sleeps == [settings.check_every_hours * 3600]
    assert caplog.text.count("check cycle failed") == 2


def test_indicator_snapshot_reports_current_buffers(settings, store, start) -> None:  # type: ignore[no-untyped-def]
    runtime = _runtime(settings, _triggering_exchange(start), store)
    snapshot = runtime.indicator_snapshot()
    assert snapshot["regime"] == "sideways"
    assert snapshot["rsi_1d"] == pytest.approx(0.0)
    assert snapshot["bollinger_1d"] is not None
    assert snapshot["ema_cross_4h"] is True


def test_run_loop_survives_unexpected_errors(settings, store, start, caplog) -> None:  # type: ignore[no-untyped-def]
    exchange = _triggering_exchange(start, fail_with=RuntimeError("disk full"))
    runtime = _runtime(settings, exchange, store)

    with caplog.at_level(logging.ERROR, logger="regime_dca"):
        runtime.run_loop(iterations=2, sleep=lambda _: None)

    assert exchange.balance_calls == 2
    assert caplog.text.count("check cycle crashed") == 2
    assert "disk full" in caplog.text
