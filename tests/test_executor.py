from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from helpers import FakeExchange
from regime_dca.ao.executor import PurchaseExecutor, units_for_spend
from regime_dca.core.config import Settings
from regime_dca.core.types import TraderState
from regime_dca.de.window import WindowAction, WindowDecision


def _decision(action: WindowAction = WindowAction.BUY_TRIGGER) -> WindowDecision:
    return WindowDecision(action=action, month_key="2026-01")


def test_volume_reserves_fee_buffer() -> None:
    assert units_for_spend(100.0, 50.0, 0.0015) == pytest.approx(2.0 * 0.9985)
    assert units_for_spend(100.0, 0.0, 0.0015) == 0.0


def test_executed_purchase_commits_state(settings: Settings, start: datetime) -> None:
    exchange = FakeExchange(ask=50.0)
    executor = PurchaseExecutor(settings, exchange)
    state = TraderState().with_window(start - timedelta(days=3))

    outcome = executor.execute(state, _decision(), now=start, available_funds=100.0)

    assert outcome.executed is True
    assert outcome.reason == "trigger"
    assert outcome.order_id == "order-1"
    assert outcome.volume == pytest.approx(2.0 * (1 - settings.fee_buffer))
    assert exchange.buys == [(settings.pair, outcome.volume)]
    assert outcome.state.last_trade_month_key == "2026-01"
    assert outcome.state.last_buy_at == start
    assert outcome.state.current_week_key == "2026-W01"
    assert outcome.state.buys_this_week == 1
    assert outcome.state.window.is_open is False


def test_fallback_reason_is_reported(settings: Settings, start: datetime) -> None:
    executor = PurchaseExecutor(settings, FakeExchange())
    outcome = executor.execute(TraderState(), _decision(WindowAction.BUY_FALLBACK), now=start, available_funds=60.0)
    assert outcome.reason == "fallback"


def test_cooldown_blocks_second_buy_within_window(settings: Settings, start: datetime) -> None:
    exchange = FakeExchange()
    executor = PurchaseExecutor(settings, exchange)

    first = executor.execute(TraderState(), _decision(), now=start, available_funds=100.0)
    second = executor.execute(first.state, _decision(), now=start + timedelta(hours=23), available_funds=100.0)

    assert first.executed is True
    assert second.executed is False
    assert "cooldown" in second.reason
    assert second.state is first.state
    assert len(exchange.buys) == 1


def test_weekly_cap_limits_buys() -> None:
    config = Settings(_env_file=None, cooldown_hours=0)
    exchange = FakeExchange()
    executor = PurchaseExecutor(config, exchange)
    monday = datetime(2026, 3, 2, 12, tzinfo=UTC)

    state = TraderState()
    results = []
    for offset in range(3):
        outcome = executor.execute(state, _decision(), now=monday + timedelta(days=offset), available_funds=100.0)
        results.append(outcome.executed)
        state = outcome.state

    assert results == [True, True, False]
    assert len(exchange.buys) == 2
    assert state.buys_this_week == 2


def test_week_counter_resets_in_a_new_week() -> None:
    config = Settings(_env_file=None, cooldown_hours=0)
    executor = PurchaseExecutor(config, FakeExchange())
    state = TraderState(current_week_key="2026-W09", buys_this_week=2)

    outcome = executor.execute(state, _decision(), now=datetime(2026, 3, 9, 12, tzinfo=UTC), available_funds=100.0)

    assert outcome.executed is True
    assert outcome.state.current_week_key == "2026-W11"
    assert outcome.state.buys_this_week == 1


def test_spend_below_minimum_aborts(settings: Settings, start: datetime) -> None:
    exchange = FakeExchange()
    outcome = PurchaseExecutor(settings, exchange).execute(
        TraderState(), _decision(), now=start, available_funds=20.0
    )
    assert outcome.executed is False
    assert "minimum order" in outcome.reason
    assert exchange.buys == []
