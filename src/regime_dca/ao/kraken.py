"""AO layer: Kraken REST client and the dry-run broker wrapper."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
import time
from datetime import UTC, datetime
from typing import Any, Protocol
from urllib.parse import urlencode

import httpx

from regime_dca.core.types import Candle, Ticker

logger = logging.getLogger(__name__)


class ExchangeError(Exception):
    """Base exchange client error."""


class ExchangeAPIError(ExchangeError):
    """The exchange answered but rejected the request."""


class ExchangeNetworkError(ExchangeError):
    """The exchange could not be reached or did not answer in time."""


class ExchangeClient(Protocol):
    def fetch_recent_candles(self, pair: str, interval_minutes: int) -> list[Candle]: ...

    def fetch_ticker(self, pair: str) -> Ticker: ...

    def fetch_balance(self) -> dict[str, float]: ...

    def place_market_buy(self, pair: str, volume: float) -> str: ...


class KrakenClient:
    """Synchronous Kraken REST client; no retries, failures surface to the caller."""

    def __init__(
        self,
        *,
        base_url: str = "https://api.kraken.com",
        api_key: str = "",
        api_secret: str = "",
        timeout_s: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._api_secret = api_secret.strip()
        self._client = httpx.Client(base_url=base_url, timeout=httpx.Timeout(timeout_s), transport=transport)

    def close(self) -> None:
        self._client.close()

    def fetch_recent_candles(self, pair: str, interval_minutes: int, since: int | None = None) -> list[Candle]:
        params: dict[str, Any] = {"pair": pair, "interval": interval_minutes}
        if since is not None:
            params["since"] = since
        result = self._public("/0/public/OHLC", params)
        rows = _first_pair_value(result)
        return [_parse_ohlc_row(row) for row in rows]

    def fetch_ticker(self, pair: str) -> Ticker:
        result = self._public("/0/public/Ticker", {"pair": pair})
        entry = _first_pair_value(result)
        try:
            return Ticker(ask=float(entry["a"][0]), bid=float(entry["b"][0]), last=float(entry["c"][0]))
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ExchangeAPIError(f"Kraken ticker payload malformed: {exc}") from exc

    def fetch_balance(self) -> dict[str, float]:
        result = self._private("/0/private/Balance", {})
        try:
            return {str(asset): float(amount) for asset, amount in result.items()}
        except (TypeError, ValueError) as exc:
            raise ExchangeAPIError(f"Kraken balance payload malformed: {exc}") from exc

    def place_market_buy(self, pair: str, volume: float) -> str:
        result = self._private(
            "/0/private/AddOrder",
            {"pair": pair, "type": "buy", "ordertype": "market", "volume": f"{volume:.8f}"},
        )
        txids = result.get("txid") or []
        return ", ".join(str(txid) for txid in txids) or "n/a"

    def _public(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        return self._send("GET", path, params=params)

    def _private(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        if not self._api_key or not self._api_secret:
            raise ExchangeAPIError("Kraken API key/secret are not configured")
        body = {"nonce": str(time.time_ns() // 1000), **params}
        headers = {
            "API-Key": self._api_key,
            "API-Sign": sign_request(path, body, self._api_secret),
            "Content-Type": "application/x-www-form-urlencoded",
        }
        return self._send("POST", path, content=urlencode(body), headers=headers)

    def _send(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            excerpt = _extract_response_excerpt(exc.response.text, limit=300)
            raise ExchangeAPIError(f"Kraken request failed (status={status_code}, body={excerpt!r})") from exc
        except httpx.TransportError as exc:
            raise ExchangeNetworkError(f"Kraken unreachable: {exc}") from exc
        except ValueError as exc:
            raise ExchangeAPIError(f"Kraken returned invalid JSON: {exc}") from exc

        if not isinstance(payload, dict):
            raise ExchangeAPIError("Kraken response is not a JSON object")
        errors = payload.get("error") or []
        if errors:
            raise ExchangeAPIError(", ".join(str(item) for item in errors))
        result = payload.get("result")
        if not isinstance(result, dict):
            raise ExchangeAPIError("Kraken response without result payload")
        return result


class DryRunBroker:
    """Passes public calls through and simulates balances and fills."""

    def __init__(self, client: ExchangeClient, *, quote_asset: str, base_asset: str, balance: float) -> None:
        self._client = client
        self._quote_asset = quote_asset
        self._base_asset = base_asset
        self._quote = balance
        self._base = 0.0

    def fetch_recent_candles(self, pair: str, interval_minutes: int) -> list[Candle]:
        return self._client.fetch_recent_candles(pair, interval_minutes)

    def fetch_ticker(self, pair: str) -> Ticker:
        return self._client.fetch_ticker(pair)

    def fetch_balance(self) -> dict[str, float]:
        return {self._quote_asset: self._quote, self._base_asset: self._base}

    def place_market_buy(self, pair: str, volume: float) -> str:
        order_id = f"dry-{time.time_ns() // 1_000_000}"
        logger.info("dry order %s market buy %s vol=%.8f", order_id, pair, volume)
        return order_id

    def settle(self, spend: float, volume: float) -> None:
        self._quote = max(0.0, self._quote - max(0.0, spend))
        self._base += max(0.0, volume)
        logger.info("dry settlement quote=%.2f base=%.6f", self._quote, self._base)


def sign_request(path: str, body: dict[str, Any], secret: str) -> str:
    """Kraken API-Sign: HMAC-SHA512(path + SHA256(nonce + postdata)) with the decoded secret."""
    postdata = urlencode(body)
    digest = hashlib.sha256((str(body["nonce"]) + postdata).encode("utf-8")).digest()
    mac = hmac.new(base64.b64decode(secret), path.encode("utf-8") + digest, hashlib.sha512)
    return base64.b64encode(mac.digest()).decode("ascii")


def _first_pair_value(result: dict[str, Any]) -> Any:
    for key, value in result.items():
        if key != "last":
            return value
    raise ExchangeAPIError("Kraken result without pair data")


def _parse_ohlc_row(row: Any) -> Candle:
    try:
        time_s, open_, high, low, close, _vwap, volume = row[:7]
        return Candle(
            time=datetime.fromtimestamp(int(time_s), tz=UTC),
            open=float(open_),
            high=float(high),
            low=float(low),
            close=float(close),
            volume=float(volume),
        )
    except (TypeError, ValueError) as exc:
        raise ExchangeAPIError(f"Kraken OHLC row malformed: {row!r}") from exc


def _extract_response_excerpt(raw_text: str, *, limit: int) -> str:
    compact = re.sub(r"\s+", " ", raw_text).strip()
    if not compact:
        return "<empty>"
    return compact[:limit]
