"""Regime-aware dollar-cost-averaging purchase engine."""

from regime_dca.core.config import BacktestSettings, Settings
from regime_dca.core.types import Candle, MarketAssessment, Regime, TraderState, TriggerVerdict
from regime_dca.de.triggers import evaluate_triggers
from regime_dca.de.window import PurchaseWindowMachine
from regime_dca.isi.regime import assess_market, classify_regime, is_massively_bearish

__all__ = [
    "BacktestSettings",
    "Candle",
    "MarketAssessment",
    "PurchaseWindowMachine",
    "Regime",
    "Settings",
    "TraderState",
    "TriggerVerdict",
    "assess_market",
    "classify_regime",
    "evaluate_triggers",
    "is_massively_bearish",
]
