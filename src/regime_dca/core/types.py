"""Canonical domain types shared across layers."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class Regime(str, Enum):
    """Broad trend label derived from two moving averages."""

    BULLISH = "bullish"
    BEARISH = "bearish"
    SIDEWAYS = "sideways"


@dataclass(frozen=True, slots=True)
class Candle:
    """Normalized OHLCV candle; ``time`` is the candle open instant (UTC)."""

    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True, slots=True)
class Ticker:
    ask: float
    bid: float
    last: float


@dataclass(frozen=True, slots=True)
class Condition:
    """One sub-condition of a trigger with the quantities it compared."""

    name: str
    passed: bool
    value: float | None = None
    threshold: float | None = None
    label: str = ""

    def render(self) -> str:
        text = self.label or self.name
        if self.value is None and self.threshold is None:
            return f"{text}={self.passed}"
        value = "n/a" if self.value is None else f"{self.value:.4g}"
        return f"{text}={self.passed} ({value})"


@dataclass(frozen=True, slots=True)
class TriggerDiagnostic:
    """Structured audit record of one trigger evaluation."""

    evaluator: str
    conditions: tuple[Condition, ...] = ()
    path: str = ""
    note: str = ""

    def condition(self, name: str) -> Condition | None:
        for item in self.conditions:
            if item.name == name:
                return item
        return None

    def render(self) -> str:
        head = self.evaluator if not self.path else f"{self.evaluator}[{self.path}]"
        parts = [item.render() for item in self.conditions]
        if self.note:
            parts.append(self.note)
        return f"{head}: " + " | ".join(parts) if parts else head

    def to_dict(self) -> dict[str, Any]:
        return {
            "evaluator": self.evaluator,
            "path": self.path,
            "note": self.note,
            "conditions": [
                {
                    "name": c.name,
                    "label": c.label,
                    "passed": c.passed,
                    "value": c.value,
                    "threshold": c.threshold,
                }
                for c in self.conditions
            ],
        }


@dataclass(frozen=True, slots=True)
class TriggerVerdict:
    """Immutable result of one trigger evaluation."""

    ok: bool
    diagnostic: TriggerDiagnostic

    @property
    def pretty(self) -> str:
        return self.diagnostic.render()


@dataclass(frozen=True, slots=True)
class MarketAssessment:
    regime: Regime
    massively_bearish: bool
    max_wait_days: float

    @property
    def label(self) -> str:
        return f"{self.regime.value}|massive" if self.massively_bearish else self.regime.value


@dataclass(frozen=True, slots=True)
class PurchaseWindow:
    """An open monthly purchase obligation; ``started_at`` is None when closed."""

    started_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.started_at is not None


@dataclass(frozen=True, slots=True)
class TraderState:
    """Persisted aggregate owned by the purchase window machine."""

    last_trade_month_key: str | None = None
    last_buy_at: datetime | None = None
    current_week_key: str | None = None
    buys_this_week: int = 0
    window: PurchaseWindow = field(default_factory=PurchaseWindow)

    def with_window(self, started_at: datetime | None) -> TraderState:
        return replace(self, window=PurchaseWindow(started_at=started_at))

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_trade_month_key": self.last_trade_month_key,
            "last_buy_at": _iso(self.last_buy_at),
            "current_week_key": self.current_week_key,
            "buys_this_week": self.buys_this_week,
            "window_started_at": _iso(self.window.started_at),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> TraderState:
        """Rebuild state from its JSON form; raises ValueError/TypeError on bad payloads."""
        month = payload.get("last_trade_month_key")
        week = payload.get("current_week_key")
        return cls(
            last_trade_month_key=str(month) if month is not None else None,
            last_buy_at=_parse_instant(payload.get("last_buy_at")),
            current_week_key=str(week) if week is not None else None,
            buys_this_week=int(payload.get("buys_this_week", 0)),
            window=PurchaseWindow(started_at=_parse_instant(payload.get("window_started_at"))),
        )


@dataclass(frozen=True, slots=True)
class PurchaseDetails:
    """Payload handed to notifiers after an executed purchase."""

    pair: str
    spend: float
    volume: float
    ask: float
    order_id: str
    dry_run: bool
    fallback: bool
    verdict: str
    executed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    snapshot: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pair": self.pair,
            "spend": self.spend,
            "volume": self.volume,
            "ask": self.ask,
            "order_id": self.order_id,
            "dry_run": self.dry_run,
            "fallback": self.fallback,
            "verdict": self.verdict,
            "executed_at": self.executed_at.isoformat(),
            "snapshot": self.snapshot,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_instant(raw: object) -> datetime | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)):
        # epoch milliseconds, as written by older state files
        try:
            millis = float(raw)
            if not math.isfinite(millis):
                raise ValueError(f"non-finite instant: {raw!r}")
            return datetime.fromtimestamp(millis / 1000, tz=UTC)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"instant out of range: {raw!r}") from exc
    parsed = datetime.fromisoformat(str(raw))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
