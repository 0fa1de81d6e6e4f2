"""Series builders and an in-memory exchange double shared by the tests."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from regime_dca.core.types import Candle, Ticker

DAY = timedelta(days=1)
FOUR_HOURS = timedelta(hours=4)


def flat_then_drop(length: int = 60, level: float = 100.0, last: float = 90.0) -> list[float]:
    """Flat closes ending in one sharp drop: RSI 0 and a lower Bollinger touch."""
    return [level] * (length - 1) + [last]


def crossing_series(length: int = 61) -> list[float]:
    """Steady decline then a spike: the fast EMA crosses over the slow one on the last sample."""
    return [160.0 - i for i in range(length - 1)] + [300.0]


def rising(length: int, base: float = 100.0, step: float = 1.0) -> list[float]:
    return [base + step * i for i in range(length)]


def make_candles(closes: Sequence[float], start: datetime, step: timedelta) -> list[Candle]:
    return [
        Candle(time=start + step * idx, open=close, high=close, low=close, close=close, volume=1.0)
        for idx, close in enumerate(closes)
    ]


class FakeExchange:
    """In-memory exchange double recording every market buy."""

    def __init__(
        self,
        *,
        daily: list[Candle] | None = None,
        four_hour: list[Candle] | None = None,
        balance: float = 100.0,
        ask: float = 50.0,
        fail_with: Exception | None = None,
    ) -> None:
        self.daily = daily or []
        self.four_hour = four_hour or []
        self.balance = balance
        self.ask = ask
        self.fail_with = fail_with
        self.buys: list[tuple[str, float]] = []
        self.balance_calls = 0

    def fetch_recent_candles(self, pair: str, interval_minutes: int) -> list[Candle]:
        return list(self.daily if interval_minutes == 1440 else self.four_hour)

    def fetch_ticker(self, pair: str) -> Ticker:
        return Ticker(ask=self.ask, bid=self.ask - 1, last=self.ask)

    def fetch_balance(self) -> dict[str, float]:
        self.balance_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return {"ZGBP": self.balance}

    def place_market_buy(self, pair: str, volume: float) -> str:
        self.buys.append((pair, volume))
        return f"order-{len(self.buys)}"
