"""Market movers command-line entry point.

Usage:
    python run_pipeline.py scan [--min-pct 7] [--session pre|regular|post]
    python run_pipeline.py news SYMBOL
    python run_pipeline.py market-news
    python run_pipeline.py candles SYMBOL [--timeframe 1h] [--backtest]
    python run_pipeline.py quote SYMBOL

Loads config.yaml and the environment once, builds the requested component,
and prints its result as JSON to stdout.

Exit codes:
    0  success (an empty result is still a success)
    1  rejected input, insufficient data, or an unreadable config
    2  unexpected failure (details in the log, never on stdout)
"""

import argparse
import json
import sys
from typing import List, Optional

from market_movers.core.config import Settings, load_config
from market_movers.core.errors import MoversError
from market_movers.core.logger import logger
from market_movers.pipeline.candles import (
    BACKTEST_LOOKBACK_SECONDS, LOOKBACK_SECONDS, default_candle_service,
)
from market_movers.pipeline.engine import default_quote_lookup, default_scanner
from market_movers.pipeline.news import default_news_aggregator

DEFAULT_MIN_PCT = 7.0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="run_pipeline", description="Multi-provider market movers engine")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Scan for movers in the current (or forced) session")
    scan.add_argument("--min-pct", type=float, default=None, help="Minimum absolute %% change")
    scan.add_argument("--session", choices=["pre", "regular", "post"], default=None)

    news = sub.add_parser("news", help="Merged news for one symbol")
    news.add_argument("symbol")

    sub.add_parser("market-news", help="Merged broad-market catalyst news")

    candles = sub.add_parser("candles", help="Historical candles for one symbol")
    candles.add_argument("symbol")
    candles.add_argument(
        "--timeframe", default="1h",
        help=f"Chart: {', '.join(LOOKBACK_SECONDS)}; with --backtest: {', '.join(BACKTEST_LOOKBACK_SECONDS)}",
    )
    candles.add_argument("--backtest", action="store_true", help="Use the backtest lookback window")

    quote = sub.add_parser("quote", help="Single resolved quote")
    quote.add_argument("symbol")
    return parser


def run(args: argparse.Namespace, config: dict, settings: Settings) -> dict:
    """Dispatch one subcommand and return its JSON-ready payload."""
    if args.command == "scan":
        min_pct = args.min_pct
        if min_pct is None:
            min_pct = float((config.get("scanner") or {}).get("min_change_pct", DEFAULT_MIN_PCT))
        return default_scanner(settings).scan(min_pct, session=args.session).to_dict()

    if args.command == "news":
        return default_news_aggregator(settings).fetch(args.symbol).to_dict()

    if args.command == "market-news":
        return default_news_aggregator(settings).fetch_market().to_dict()

    if args.command == "candles":
        service = default_candle_service(settings)
        if args.backtest:
            return service.fetch_for_backtest(args.symbol, args.timeframe).to_dict()
        return service.fetch(args.symbol, args.timeframe).to_dict()

    if args.command == "quote":
        return default_quote_lookup(settings).get(args.symbol).to_dict()

    raise ValueError(f"unknown command {args.command!r}")


def main(argv: Optional[List[str]] = None) -> int:
    """Run the CLI. Returns 0 on success, 1 on a rejected request, 2 on failure."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        logger.error(f"run_pipeline: failed to load config: {exc}")
        print(json.dumps({"error": str(exc), "status": 500}), file=sys.stderr)
        return 1

    settings = Settings.from_env(config)

    try:
        payload = run(args, config, settings)
    except MoversError as exc:
        logger.warning(f"run_pipeline: {args.command} rejected: {exc}")
        print(json.dumps(exc.to_dict()), file=sys.stderr)
        return 1
    except Exception as exc:
        logger.error(f"run_pipeline: {args.command} failed: {exc}", exc_info=True)
        print(json.dumps({"error": "internal error", "status": 500}), file=sys.stderr)
        return 2

    print(json.dumps(payload, indent=2, default=str))
    logger.info(f"run_pipeline: {args.command} completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
