"""Historical candle service: lookback windows, provider fallback, minimum-data rule.

Two lookback tables keyed by the uniform timeframe code:
  LOOKBACK_SECONDS           — chart windows (intraday-heavy)
  BACKTEST_LOOKBACK_SECONDS  — longer windows handed to a backtest runner

A backtest is never attempted on fewer than ``MIN_CANDLES`` candles.
"""

import time
from typing import Any, Callable, Optional, Sequence

from market_movers.core.config import Settings
from market_movers.core.errors import InsufficientData, UnsupportedConfiguration
from market_movers.core.logger import logger
from market_movers.models.datatypes import CandleResult, normalize_symbol
from market_movers.providers.base import CandleProvider
from market_movers.providers.candles import (
    AlphaVantageCandleProvider, FinnhubCandleProvider, PolygonCandleProvider, YFinanceCandleProvider,
)

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR

MIN_CANDLES = 30

LOOKBACK_SECONDS = {
    "1m": 2 * HOUR,
    "5m": 8 * HOUR,
    "15m": DAY,
    "30m": 2 * DAY,
    "1h": 5 * DAY,
    "4h": 20 * DAY,
    "1D": 90 * DAY,
}

BACKTEST_LOOKBACK_SECONDS = {
    "1h": 30 * DAY,
    "4h": 60 * DAY,
    "1D": 730 * DAY,
    "1W": 4 * 365 * DAY,
    "1M": 8 * 365 * DAY,
}

BacktestRunner = Callable[..., Any]


class CandleService:
    """Walks candle providers in order; the first non-empty answer wins.

    Args:
        providers: Ordered :class:`CandleProvider` chain.
        clock: Returns the current unix time.
    """

    def __init__(self, providers: Sequence[CandleProvider], clock: Callable[[], float] = time.time) -> None:
        self.providers = list(providers)
        self.clock = clock

    def fetch(self, symbol: str, timeframe: str) -> CandleResult:
        """Candles for a chart window. An empty result is valid.

        Raises:
            MalformedInput: Missing or invalid symbol.
            UnsupportedConfiguration: ``timeframe`` has no chart lookback.
        """
        symbol = normalize_symbol(symbol)
        if timeframe not in LOOKBACK_SECONDS:
            raise UnsupportedConfiguration("timeframe", timeframe)
        return self._fetch(symbol, timeframe, LOOKBACK_SECONDS[timeframe])

    def fetch_for_backtest(
        self,
        symbol: str,
        timeframe: str,
        strategy: Optional[str] = None,
        runner: Optional[BacktestRunner] = None,
    ) -> Any:
        """Fetch backtest-length history and hand it to ``runner``.

        Args:
            symbol: Ticker symbol.
            timeframe: One of ``BACKTEST_LOOKBACK_SECONDS``.
            strategy: Opaque strategy identifier passed through to ``runner``.
            runner: ``runner(candles, symbol, timeframe, strategy)``; when
                omitted the :class:`CandleResult` is returned instead.

        Raises:
            InsufficientData: Fewer than ``MIN_CANDLES`` candles; ``runner``
                is not called.
        """
        symbol = normalize_symbol(symbol)
        if timeframe not in BACKTEST_LOOKBACK_SECONDS:
            raise UnsupportedConfiguration("timeframe", timeframe)

        result = self._fetch(symbol, timeframe, BACKTEST_LOOKBACK_SECONDS[timeframe])
        if len(result.candles) < MIN_CANDLES:
            raise InsufficientData(
                f"Not enough candle data for backtest: {len(result.candles)} candles "
                f"for {symbol} [{timeframe}], need at least {MIN_CANDLES}"
            )
        if runner is None:
            return result
        return runner(list(result.candles), symbol, timeframe, strategy)

    def _fetch(self, symbol: str, timeframe: str, lookback: int) -> CandleResult:
        end = int(self.clock())
        start = end - lookback
        for provider in self.providers:
            try:
                candles = provider.fetch_candles(symbol, timeframe, start, end)
            except Exception as exc:
                logger.error(f"CandleService: INFRA_FAILURE at {provider.name} for {symbol}: {exc}")
                continue
            if candles:
                logger.info(f"CandleService: {len(candles)} candles for {symbol} [{timeframe}] from {provider.name}")
                return CandleResult(symbol, timeframe, tuple(candles), provider.name, float(end))
            logger.info(f"CandleService: {provider.name} empty for {symbol} [{timeframe}] — trying next provider")

        logger.warning(f"CandleService: no provider returned candles for {symbol} [{timeframe}]")
        return CandleResult(symbol, timeframe, (), None, float(end))


def default_candle_service(settings: Settings) -> CandleService:
    """Finnhub, Polygon, Alpha Vantage, then yfinance."""
    return CandleService([
        FinnhubCandleProvider(settings.finnhub_key, settings.timeout),
        PolygonCandleProvider(settings.polygon_key, settings.timeout),
        AlphaVantageCandleProvider(settings.alpha_vantage_key, settings.timeout),
        YFinanceCandleProvider(settings.timeout),
    ])
