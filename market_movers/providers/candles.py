"""Historical candle providers (Finnhub, Polygon, Alpha Vantage, yfinance).

Each provider owns a table translating the uniform timeframe code
(``1m 5m 15m 30m 1h 4h 1D 1W 1M``) into its own vocabulary. An unmapped
timeframe yields no candles. Output is always ascending by ``time``.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pandas as pd
import requests
import yfinance as yf

from market_movers.core.errors import ProviderUnavailable
from market_movers.core.http import get_json
from market_movers.core.logger import logger
from market_movers.core.retry import with_retries
from market_movers.models.datatypes import Candle
from market_movers.providers.base import CandleProvider

_FINNHUB_BASE = "https://finnhub.io/api/v1"
_POLYGON_BASE = "https://api.polygon.io"
_ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"

FINNHUB_RESOLUTIONS: Dict[str, str] = {
    "1m": "1", "5m": "5", "15m": "15", "30m": "30",
    "1h": "60", "4h": "240", "1D": "D", "1W": "W", "1M": "M",
}

POLYGON_RANGES: Dict[str, Tuple[int, str]] = {
    "1m": (1, "minute"), "5m": (5, "minute"), "15m": (15, "minute"), "30m": (30, "minute"),
    "1h": (1, "hour"), "4h": (4, "hour"),
    "1D": (1, "day"), "1W": (1, "week"), "1M": (1, "month"),
}

ALPHA_VANTAGE_FUNCTIONS: Dict[str, Tuple[str, Optional[str]]] = {
    "1m": ("TIME_SERIES_INTRADAY", "1min"),
    "5m": ("TIME_SERIES_INTRADAY", "5min"),
    "15m": ("TIME_SERIES_INTRADAY", "15min"),
    "30m": ("TIME_SERIES_INTRADAY", "30min"),
    "1h": ("TIME_SERIES_INTRADAY", "60min"),
    "1D": ("TIME_SERIES_DAILY", None),
    "1W": ("TIME_SERIES_WEEKLY", None),
    "1M": ("TIME_SERIES_MONTHLY", None),
}

YFINANCE_INTERVALS: Dict[str, str] = {
    "1m": "1m", "5m": "5m", "15m": "15m", "30m": "30m",
    "1h": "60m", "1D": "1d", "1W": "1wk", "1M": "1mo",
}


def _sorted(candles: List[Candle]) -> List[Candle]:
    return sorted(candles, key=lambda c: c.time)


# ── Finnhub ───────────────────────────────────────────────────────────────────

class FinnhubCandleProvider(CandleProvider):
    """Finnhub ``/stock/candle`` (column-oriented arrays, ``s == "ok"``)."""

    name = "finnhub"

    def __init__(self, api_key: str, timeout: float = 10.0, session: Optional[requests.Session] = None) -> None:
        super().__init__(timeout=timeout, session=session)
        self.api_key = api_key

    def fetch_candles(self, symbol: str, timeframe: str, start: int, end: int) -> List[Candle]:
        resolution = FINNHUB_RESOLUTIONS.get(timeframe)
        if resolution is None or not self.api_key:
            return []
        try:
            data = get_json(
                self.session, f"{_FINNHUB_BASE}/stock/candle", provider=self.name,
                params={"symbol": symbol, "resolution": resolution, "from": start, "to": end,
                        "token": self.api_key},
                timeout=self.timeout,
            )
            return _sorted(_normalize_finnhub_candles(data))
        except ProviderUnavailable as exc:
            logger.error(f"FinnhubCandleProvider: INFRA_FAILURE for {symbol}: {exc}")
            return []


def _normalize_finnhub_candles(raw: Any) -> List[Candle]:
    if not isinstance(raw, dict) or raw.get("s") != "ok" or not raw.get("t"):
        return []
    try:
        return [
            Candle(
                time=int(t), open=float(raw["o"][i]), high=float(raw["h"][i]),
                low=float(raw["l"][i]), close=float(raw["c"][i]), volume=float(raw["v"][i]),
            )
            for i, t in enumerate(raw["t"])
        ]
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise ProviderUnavailable("finnhub", f"malformed candle arrays: {exc}") from exc


# ── Polygon ───────────────────────────────────────────────────────────────────

class PolygonCandleProvider(CandleProvider):
    """Polygon ``/v2/aggs`` range aggregates (timestamps in milliseconds)."""

    name = "polygon"

    def __init__(self, api_key: str, timeout: float = 10.0, session: Optional[requests.Session] = None) -> None:
        super().__init__(timeout=timeout, session=session)
        self.api_key = api_key

    def fetch_candles(self, symbol: str, timeframe: str, start: int, end: int) -> List[Candle]:
        mapping = POLYGON_RANGES.get(timeframe)
        if mapping is None:
            return []
        multiplier, timespan = mapping
        from_date = datetime.fromtimestamp(start, tz=timezone.utc).strftime("%Y-%m-%d")
        to_date = datetime.fromtimestamp(end, tz=timezone.utc).strftime("%Y-%m-%d")
        url = f"{_POLYGON_BASE}/v2/aggs/ticker/{symbol}/range/{multiplier}/{timespan}/{from_date}/{to_date}"
        try:
            data = get_json(
                self.session, url, provider=self.name,
                params={"adjusted": "true", "sort": "asc", "limit": 5000, "apiKey": self.api_key},
                timeout=self.timeout,
            )
        except ProviderUnavailable as exc:
            logger.error(f"PolygonCandleProvider: INFRA_FAILURE for {symbol}: {exc}")
            return []

        results = data.get("results") if isinstance(data, dict) else None
        candles = []
        for r in results or []:
            try:
                candles.append(Candle(
                    time=int(r["t"]) // 1000,
                    open=float(r["o"]), high=float(r["h"]), low=float(r["l"]),
                    close=float(r["c"]), volume=float(r.get("v") or 0),
                ))
            except (KeyError, TypeError, ValueError):
                logger.debug(f"PolygonCandleProvider: skipped malformed bar {r!r}")
        return _sorted(candles)


# ── Alpha Vantage ─────────────────────────────────────────────────────────────

class AlphaVantageCandleProvider(CandleProvider):
    """Alpha Vantage time series — the historical-candle fallback.

    The payload is a mapping of timestamp string → bar, newest first, under a
    key containing ``"Time Series"``; intraday timestamps are local to the
    zone named in the metadata block.
    """

    name = "alpha_vantage"

    def __init__(self, api_key: str = "demo", timeout: float = 10.0, session: Optional[requests.Session] = None) -> None:
        super().__init__(timeout=timeout, session=session)
        self.api_key = api_key

    def fetch_candles(self, symbol: str, timeframe: str, start: int, end: int) -> List[Candle]:
        mapping = ALPHA_VANTAGE_FUNCTIONS.get(timeframe)
        if mapping is None:
            return []
        function, interval = mapping
        params = {"function": function, "symbol": symbol, "apikey": self.api_key, "outputsize": "compact"}
        if interval:
            params["interval"] = interval
        try:
            data = get_json(self.session, _ALPHA_VANTAGE_URL, provider=self.name, params=params,
                            timeout=self.timeout)
        except ProviderUnavailable as exc:
            logger.error(f"AlphaVantageCandleProvider: INFRA_FAILURE for {symbol}: {exc}")
            return []
        return _sorted(_normalize_av_series(data))


def _normalize_av_series(raw: Any) -> List[Candle]:
    if not isinstance(raw, dict):
        return []
    series_key = next((k for k in raw if "Time Series" in k), None)
    series = raw.get(series_key) if series_key else None
    if not isinstance(series, dict):
        return []

    meta = raw.get("Meta Data") or {}
    zone_name = next((v for k, v in meta.items() if "Time Zone" in k), "US/Eastern")
    try:
        zone = ZoneInfo(zone_name)
    except (ZoneInfoNotFoundError, ValueError):
        zone = ZoneInfo("America/New_York")

    candles = []
    for stamp, bar in series.items():
        try:
            moment = datetime.fromisoformat(stamp)
            if moment.tzinfo is None:
                moment = moment.replace(tzinfo=zone)
            candles.append(Candle(
                time=int(moment.timestamp()),
                open=float(bar["1. open"]), high=float(bar["2. high"]),
                low=float(bar["3. low"]), close=float(bar["4. close"]),
                volume=float(bar.get("5. volume") or 0),
            ))
        except (KeyError, TypeError, ValueError):
            logger.debug(f"AlphaVantageCandleProvider: skipped malformed bar at {stamp!r}")
    return candles


# ── yfinance ──────────────────────────────────────────────────────────────────

class YFinanceCandleProvider(CandleProvider):
    """Yahoo Finance history through ``yfinance`` — last-resort candle source.

    Args:
        ticker_factory: Builds a ticker object exposing ``history``; defaults
            to ``yfinance.Ticker``.
    """

    name = "yfinance"

    def __init__(
        self,
        timeout: float = 10.0,
        ticker_factory: Callable[[str], Any] = yf.Ticker,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self.ticker_factory = ticker_factory

    def fetch_candles(self, symbol: str, timeframe: str, start: int, end: int) -> List[Candle]:
        interval = YFINANCE_INTERVALS.get(timeframe)
        if interval is None:
            return []
        logger.info(f"YFinanceCandleProvider: fetching {symbol} [{interval}]")
        try:
            hist = self._history(symbol, interval, start, end)
        except Exception as exc:
            logger.error(f"YFinanceCandleProvider: INFRA_FAILURE for {symbol}: {exc}")
            return []

        if hist is None or hist.empty:
            logger.warning(f"YFinanceCandleProvider: no history returned for {symbol}")
            return []
        return _sorted(_normalize_history(hist))

    @with_retries(max_retries=2, initial_delay=1)
    def _history(self, symbol: str, interval: str, start: int, end: int) -> pd.DataFrame:
        ticker = self.ticker_factory(symbol)
        return ticker.history(
            start=datetime.fromtimestamp(start, tz=timezone.utc),
            end=datetime.fromtimestamp(end, tz=timezone.utc),
            interval=interval,
            timeout=self.timeout,
        )


def _normalize_history(hist: pd.DataFrame) -> List[Candle]:
    frame = hist.copy()
    for column in ("Open", "High", "Low", "Close", "Volume"):
        frame[column] = pd.to_numeric(frame[column], errors="coerce")
    frame = frame.dropna(subset=["Open", "High", "Low", "Close"])
    frame["Volume"] = frame["Volume"].fillna(0)

    index = pd.to_datetime(frame.index)
    if index.tz is None:
        index = index.tz_localize("UTC")

    return [
        Candle(
            time=int(ts.timestamp()),
            open=float(row.Open), high=float(row.High), low=float(row.Low),
            close=float(row.Close), volume=float(row.Volume),
        )
        for ts, row in zip(index, frame.itertuples(index=False))
    ]
