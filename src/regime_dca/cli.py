"""CLI entrypoint for live checks, the scheduler loop and backtests."""

from __future__ import annotations

import argparse
import json
import logging
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError

from regime_dca.ao.kraken import ExchangeError, KrakenClient
from regime_dca.backtest.replay import format_report, monthly_anchors, run_backtest
from regime_dca.core.config import BacktestSettings, Settings
from regime_dca.core.logs import configure_logging
from regime_dca.runtime import DAILY_MINUTES, FOUR_HOUR_MINUTES, build_runtime
from regime_dca.sm.manager import StateManager

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Regime-aware DCA purchase engine")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("check", help="Seed history and run a single check cycle")

    run = sub.add_parser("run", help="Seed history and check on a fixed schedule")
    run.add_argument("--iterations", type=int, default=None, help="Stop after N cycles (default: forever)")

    backtest = sub.add_parser("backtest", help="Replay history against a fixed-date DCA baseline")
    backtest.add_argument("--json", action="store_true", help="Print the report as JSON")

    sub.add_parser("state", help="Print persisted trader state and purchase log")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = Settings()
    except ValidationError as exc:
        configure_logging("ERROR")
        logger.error("invalid configuration: %s", exc)
        return 2
    configure_logging(settings.log_level)

    if args.command == "state":
        store = StateManager(settings.db_url)
        payload = {"state": store.load_trader_state().to_dict(), "purchases": store.get_purchases()}
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    if args.command == "backtest":
        try:
            backtest_settings = BacktestSettings()
        except ValidationError as exc:
            logger.error("invalid backtest configuration: %s", exc)
            return 2
        return _backtest(settings, backtest_settings, as_json=args.json)

    runtime = build_runtime(settings)
    try:
        runtime.seed_history()
    except ExchangeError as exc:
        logger.error("history seeding failed: %s", exc)
        return 1

    if args.command == "check":
        try:
            result = runtime.check_once()
        except ExchangeError as exc:
            logger.error("check cycle failed: %s", exc)
            return 1
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
        return 0

    if args.command == "run":
        runtime.run_loop(iterations=args.iterations)
        return 0

    return 1


def _backtest(settings: Settings, backtest: BacktestSettings, *, as_json: bool) -> int:
    end = datetime.now(UTC)
    start = end - timedelta(days=round(365 * backtest.years))
    since = int(start.timestamp())
    client = KrakenClient(base_url=settings.kraken_base_url, timeout_s=settings.http_timeout_s)
    try:
        daily = client.fetch_recent_candles(settings.pair, DAILY_MINUTES, since=since)
        four_hour = client.fetch_recent_candles(settings.pair, FOUR_HOUR_MINUTES, since=since)
    except ExchangeError as exc:
        logger.error("history fetch failed: %s", exc)
        return 1
    finally:
        client.close()

    logger.info("fetched history 1D:%d 4h:%d from %s", len(daily), len(four_hour), start.isoformat())
    hour, minute = backtest.buy_hour_minute
    anchors = monthly_anchors(start, end, backtest.buy_day, hour, minute)
    try:
        report = run_backtest(daily, four_hour, anchors, settings, backtest)
    except ValueError as exc:
        logger.error("backtest failed: %s", exc)
        return 1

    if as_json:
        print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    else:
        print(format_report(report, backtest))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
