"""Purchase notifiers: always a log line, optionally a JSON webhook."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from regime_dca.core.types import PurchaseDetails

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when a notification could not be delivered."""


class Notifier(Protocol):
    def notify_purchase(self, details: PurchaseDetails) -> None: ...


class LogNotifier:
    def notify_purchase(self, details: PurchaseDetails) -> None:
        logger.info(
            "purchase %s %s spend=%.2f vol=%.6f ask=%.2f order=%s (%s) trigger=%s",
            "DRY" if details.dry_run else "LIVE",
            details.pair,
            details.spend,
            details.volume,
            details.ask,
            details.order_id,
            "fallback" if details.fallback else "triggered",
            details.verdict,
        )


class WebhookNotifier:
    """POSTs the purchase payload as JSON to a configured URL."""

    def __init__(self, url: str, *, timeout_s: float = 5.0, transport: httpx.BaseTransport | None = None) -> None:
        self._url = url
        self._timeout = httpx.Timeout(timeout_s)
        self._transport = transport

    def notify_purchase(self, details: PurchaseDetails) -> None:
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(self._url, json=details.to_dict())
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"webhook delivery failed: {exc}") from exc


class FanoutNotifier:
    def __init__(self, notifiers: list[Notifier]) -> None:
        self._notifiers = notifiers

    def notify_purchase(self, details: PurchaseDetails) -> None:
        for notifier in self._notifiers:
            notifier.notify_purchase(details)
