"""EPL layer: owned candle buffers fed by history seeding and live refreshes."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from datetime import datetime

from regime_dca.core.types import Candle

logger = logging.getLogger(__name__)


class CandleBuffer:
    """Bounded, time-ordered candle series with upsert semantics.

    Writers go through ``append``/``replace``/``merge_recent``; readers only receive an
    immutable ``snapshot`` so an evaluation never sees a half-applied update.
    """

    def __init__(self, name: str, maxlen: int) -> None:
        if maxlen <= 0:
            raise ValueError("maxlen must be positive")
        self.name = name
        self._maxlen = maxlen
        self._candles: list[Candle] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._candles)

    def append(self, candle: Candle) -> bool:
        """Upsert one candle; returns False when it is older than the tail and was dropped."""
        with self._lock:
            accepted = self._upsert(candle)
            self._prune()
        if not accepted:
            logger.warning("buffer=%s dropped out_of_order candle at %s", self.name, candle.time.isoformat())
        return accepted

    def replace(self, candles: Iterable[Candle]) -> None:
        ordered = sorted(candles, key=lambda item: item.time)
        with self._lock:
            self._candles = []
            for candle in ordered:
                self._upsert(candle)
            self._prune()

    def prune(self, maxlen: int | None = None) -> None:
        with self._lock:
            if maxlen is not None:
                self._maxlen = maxlen
            self._prune()

    def merge_recent(self, candles: Iterable[Candle]) -> int:
        """Upsert candles at or after the current tail, ignoring older history."""
        merged = 0
        with self._lock:
            for candle in candles:
                if self._candles and candle.time < self._candles[-1].time:
                    continue
                self._upsert(candle)
                merged += 1
            self._prune()
        return merged

    def snapshot(self) -> tuple[Candle, ...]:
        with self._lock:
            return tuple(self._candles)

    def closes(self) -> tuple[float, ...]:
        return tuple(candle.close for candle in self.snapshot())

    def _upsert(self, candle: Candle) -> bool:
        if self._candles:
            last = self._candles[-1]
            if candle.time == last.time:
                self._candles[-1] = candle
                return True
            if candle.time < last.time:
                return False
        self._candles.append(candle)
        return True

    def _prune(self) -> None:
        overflow = len(self._candles) - self._maxlen
        if overflow > 0:
            del self._candles[:overflow]


def closes_up_to(candles: Iterable[Candle], cutoff: datetime) -> tuple[float, ...]:
    """Closes of every candle whose open time is at or before ``cutoff``."""
    return tuple(candle.close for candle in candles if candle.time <= cutoff)
