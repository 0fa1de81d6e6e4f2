from __future__ import annotations

import base64
from datetime import UTC, datetime
from urllib.parse import parse_qs

import httpx
import pytest

from regime_dca.ao.kraken import (
    DryRunBroker,
    ExchangeAPIError,
    ExchangeNetworkError,
    KrakenClient,
    sign_request,
)

SECRET = base64.b64encode(b"not-a-real-secret").decode("ascii")


def _client(handler, **kwargs) -> KrakenClient:  # type: ignore[no-untyped-def]
    return KrakenClient(base_url="https://kraken.test", transport=httpx.MockTransport(handler), **kwargs)


def test_fetch_ticker_parses_ask_bid_last() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/0/public/Ticker"
        assert request.url.params["pair"] == "XXBTZGBP"
        payload = {"XXBTZGBP": {"a": ["51000.1", "1", "1.0"], "b": ["50999.9", "1", "1.0"], "c": ["51000.0", "0.1"]}}
        return httpx.Response(200, json={"error": [], "result": payload})

    ticker = _client(handler).fetch_ticker("XXBTZGBP")
    assert ticker.ask == pytest.approx(51000.1)
    assert ticker.bid == pytest.approx(50999.9)
    assert ticker.last == pytest.approx(51000.0)


def test_fetch_candles_parses_rows_and_passes_since() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        rows = [
            [1704067200, "100", "110", "90", "105", "101", "12.5", 40],
            [1704153600, "105", "120", "100", "118", "110", "8", 30],
        ]
        return httpx.Response(200, json={"error": [], "result": {"XXBTZGBP": rows, "last": 1704153600}})

    candles = _client(handler).fetch_recent_candles("XXBTZGBP", 1440, since=1704000000)

    assert seen["interval"] == "1440"
    assert seen["since"] == "1704000000"
    assert [candle.close for candle in candles] == [105.0, 118.0]
    assert candles[0].time == datetime(2024, 1, 1, tzinfo=UTC)
    assert candles[1].volume == pytest.approx(8.0)


def test_error_array_raises_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": ["EQuery:Unknown asset pair"], "result": {}})

    with pytest.raises(ExchangeAPIError, match="Unknown asset pair"):
        _client(handler).fetch_ticker("NOPE")


def test_http_status_error_includes_body_excerpt() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="  bad\n gateway  ")

    with pytest.raises(ExchangeAPIError, match="status=502") as info:
        _client(handler).fetch_ticker("XXBTZGBP")
    assert "bad gateway" in str(info.value)


def test_transport_failure_is_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExchangeNetworkError):
        _client(handler).fetch_ticker("XXBTZGBP")


def test_private_calls_need_credentials() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(ExchangeAPIError, match="not configured"):
        _client(handler).fetch_balance()


def test_add_order_is_signed_and_returns_txids() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/0/private/AddOrder"
        assert request.headers["API-Key"] == "key"
        body = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
        assert body["ordertype"] == "market"
        assert body["volume"] == "0.01234568"
        assert request.headers["API-Sign"] == sign_request("/0/private/AddOrder", body, SECRET)
        return httpx.Response(200, json={"error": [], "result": {"txid": ["OABC-1", "OABC-2"]}})

    client = _client(handler, api_key="key", api_secret=SECRET)
    assert client.place_market_buy("XXBTZGBP", 0.012345678) == "OABC-1, OABC-2"


def test_balance_values_are_floats() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": [], "result": {"ZGBP": "123.45", "XXBT": "0.5"}})

    balances = _client(handler, api_key="key", api_secret=SECRET).fetch_balance()
    assert balances == {"ZGBP": pytest.approx(123.45), "XXBT": pytest.approx(0.5)}


def test_dry_run_broker_simulates_balance_and_fills() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("dry broker must not hit private endpoints")

    broker = DryRunBroker(_client(handler), quote_asset="ZGBP", base_asset="XXBT", balance=50.0)
    assert broker.fetch_balance() == {"ZGBP": 50.0, "XXBT": 0.0}

    order_id = broker.place_market_buy("XXBTZGBP", 0.001)
    broker.settle(50.0, 0.001)

    assert order_id.startswith("dry-")
    assert broker.fetch_balance() == {"ZGBP": 0.0, "XXBT": pytest.approx(0.001)}


def test_malformed_balance_is_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": [], "result": {"ZGBP": "lots"}})

    with pytest.raises(ExchangeAPIError, match="balance payload malformed"):
        _client(handler, api_key="key", api_secret=SECRET).fetch_balance()
