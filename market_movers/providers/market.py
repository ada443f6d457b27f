"""Quote-snapshot and gainers providers (Polygon, Finnhub, Yahoo, Alpha Vantage).

Every adapter maps its provider's payload onto :class:`PartialQuote` in a
single ``_normalize_*`` function and converts any failure into an empty list.
"""

from typing import Any, Dict, List, Optional, Sequence

import requests

from market_movers.core.errors import ProviderUnavailable
from market_movers.core.http import BROWSER_HEADERS, get_json
from market_movers.core.logger import logger
from market_movers.models.datatypes import PartialQuote, Session
from market_movers.pipeline.batch import ChunkedBatchFetcher, gather
from market_movers.providers.base import GainersProvider, QuoteProvider

_POLYGON_BASE = "https://api.polygon.io"
_FINNHUB_BASE = "https://finnhub.io/api/v1"
_YAHOO_QUOTE_URL = "https://query1.finance.yahoo.com/v7/finance/quote"
_ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"


def _num(value: Any) -> Optional[float]:
    """Coerce a loosely typed payload value to float; ``None`` when impossible."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%").replace(",", "")
        if not value:
            return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# ── Polygon ───────────────────────────────────────────────────────────────────

class PolygonSnapshotProvider(QuoteProvider, GainersProvider):
    """Polygon.io stock snapshots.

    Two request variants:
    - ``fetch_gainers`` — the gainers endpoint, ranked by ``todaysChangePerc``.
      That field stays at zero until the regular session opens.
    - ``fetch_quotes`` — ticker snapshots for an explicit watchlist, exposing
      ``lastTrade.p`` (latest extended-hours trade) next to ``prevDay.c``.
      Used during pre-market instead of the gainers list.
    """

    name = "polygon"

    def __init__(
        self,
        api_key: str,
        timeout: float = 10.0,
        chunk_size: int = 100,
        max_workers: int = 5,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self.api_key = api_key
        self.fetcher = ChunkedBatchFetcher(chunk_size, max_workers)

    def fetch_gainers(self, min_percent: float, session: Session) -> List[PartialQuote]:
        try:
            data = get_json(
                self.session, f"{_POLYGON_BASE}/v2/snapshot/locale/us/markets/stocks/gainers",
                provider=self.name, params={"apiKey": self.api_key}, timeout=self.timeout,
            )
        except ProviderUnavailable as exc:
            logger.error(f"PolygonSnapshotProvider: INFRA_FAILURE (gainers): {exc}")
            return []

        tickers = data.get("tickers") if isinstance(data, dict) else None
        if not tickers:
            return []

        quotes = [q for q in (_normalize_polygon_snapshot(t, "polygon_gainers") for t in tickers) if q]
        kept = [q for q in quotes if abs(q.change_percent or 0.0) >= min_percent]
        logger.info(f"PolygonSnapshotProvider: {len(kept)}/{len(quotes)} gainers ≥ {min_percent}%")
        return kept

    def fetch_quotes(self, symbols: Sequence[str], session: Session) -> List[PartialQuote]:
        return self.fetcher.fetch_all(symbols, self._fetch_chunk, label="polygon_snapshot")

    def _fetch_chunk(self, symbols: List[str]) -> List[PartialQuote]:
        data = get_json(
            self.session, f"{_POLYGON_BASE}/v2/snapshot/locale/us/markets/stocks/tickers",
            provider=self.name,
            params={"tickers": ",".join(symbols), "apiKey": self.api_key},
            timeout=self.timeout,
        )
        tickers = data.get("tickers") if isinstance(data, dict) else None
        return [q for q in (_normalize_polygon_snapshot(t, "polygon_snapshot") for t in tickers or []) if q]


def _normalize_polygon_snapshot(raw: Dict[str, Any], source: str) -> Optional[PartialQuote]:
    if not isinstance(raw, dict) or not raw.get("ticker"):
        return None
    day = raw.get("day") or {}
    prev = raw.get("prevDay") or {}
    minute = raw.get("min") or {}
    last = raw.get("lastTrade") or {}
    updated = _num(raw.get("updated"))
    return PartialQuote(
        symbol=str(raw["ticker"]).upper(),
        source=source,
        last_trade_price=_num(last.get("p")),
        day_close=_num(day.get("c")),
        change=_num(raw.get("todaysChange")),
        change_percent=_num(raw.get("todaysChangePerc")),
        volume=_num(day.get("v")),
        session_volume=_num(minute.get("av")),  # accumulated, not the last bar
        average_volume=_num(prev.get("v")),
        high=_num(day.get("h")),
        low=_num(day.get("l")),
        open=_num(day.get("o")),
        previous_close=_num(prev.get("c")),
        observed_at=updated / 1e9 if updated else None,  # nanoseconds
    )


# ── Finnhub ───────────────────────────────────────────────────────────────────

class FinnhubQuoteProvider(QuoteProvider):
    """Finnhub ``/quote`` — one request per symbol, fanned out concurrently.

    Also serves as the real-time price enrichment source for the scanner.
    """

    name = "finnhub"

    def __init__(
        self,
        api_key: str,
        timeout: float = 10.0,
        max_workers: int = 8,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self.api_key = api_key
        self.max_workers = max_workers

    def fetch_quotes(self, symbols: Sequence[str], session: Session) -> List[PartialQuote]:
        if not self.api_key:
            logger.warning("FinnhubQuoteProvider: no API key configured — skipping")
            return []
        if not symbols:
            return []

        outcomes = gather(
            [(s, (lambda s=s: self._fetch_one(s))) for s in symbols],
            self.max_workers,
        )
        quotes = [o.value for o in outcomes if o.ok and o.value is not None]
        failed = sum(1 for o in outcomes if not o.ok)
        if failed:
            logger.error(f"FinnhubQuoteProvider: INFRA_FAILURE for {failed}/{len(symbols)} symbols")
        return quotes

    def _fetch_one(self, symbol: str) -> Optional[PartialQuote]:
        data = get_json(
            self.session, f"{_FINNHUB_BASE}/quote", provider=self.name,
            params={"symbol": symbol, "token": self.api_key}, timeout=self.timeout,
        )
        return _normalize_finnhub_quote(symbol, data)


def _normalize_finnhub_quote(symbol: str, raw: Any) -> Optional[PartialQuote]:
    # Finnhub answers unknown symbols with an all-zero payload.
    if not isinstance(raw, dict) or not _num(raw.get("c")):
        return None
    return PartialQuote(
        symbol=symbol.upper(),
        source="finnhub",
        price=_num(raw.get("c")),
        change=_num(raw.get("d")),
        change_percent=_num(raw.get("dp")),
        high=_num(raw.get("h")),
        low=_num(raw.get("l")),
        open=_num(raw.get("o")),
        previous_close=_num(raw.get("pc")),
        observed_at=_num(raw.get("t")),
    )


# ── Yahoo Finance ─────────────────────────────────────────────────────────────

# price, change, percent, timestamp and the close the change is measured from.
# Extended-hours moves are quoted against the last regular-session price.
_YAHOO_SESSION_FIELDS = {
    Session.PRE: (
        "preMarketPrice", "preMarketChange", "preMarketChangePercent", "preMarketTime",
        "regularMarketPrice",
    ),
    Session.REGULAR: (
        "regularMarketPrice", "regularMarketChange", "regularMarketChangePercent", "regularMarketTime",
        "regularMarketPreviousClose",
    ),
    Session.POST: (
        "postMarketPrice", "postMarketChange", "postMarketChangePercent", "postMarketTime",
        "regularMarketPrice",
    ),
}


class YahooQuoteProvider(QuoteProvider):
    """Yahoo Finance ``/v7/finance/quote`` for an extended-hours watchlist.

    No public API: requests carry browser headers and are chunked to stay
    under the endpoint's URL-length limit (~50 symbols).
    """

    name = "yahoo"

    def __init__(
        self,
        timeout: float = 10.0,
        chunk_size: int = 40,
        max_workers: int = 4,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self.fetcher = ChunkedBatchFetcher(chunk_size, max_workers)

    def fetch_quotes(self, symbols: Sequence[str], session: Session) -> List[PartialQuote]:
        return self.fetcher.fetch_all(
            symbols, lambda chunk: self._fetch_chunk(chunk, session), label="yahoo_quote",
        )

    def _fetch_chunk(self, symbols: List[str], session: Session) -> List[PartialQuote]:
        data = get_json(
            self.session, _YAHOO_QUOTE_URL, provider=self.name,
            params={"symbols": ",".join(symbols)}, headers=BROWSER_HEADERS, timeout=self.timeout,
        )
        try:
            results = data["quoteResponse"]["result"] or []
        except (KeyError, TypeError) as exc:
            raise ProviderUnavailable(self.name, f"unexpected payload shape: {exc}") from exc
        return [q for q in (_normalize_yahoo_quote(r, session) for r in results) if q]


def _normalize_yahoo_quote(raw: Dict[str, Any], session: Session) -> Optional[PartialQuote]:
    if not isinstance(raw, dict) or not raw.get("symbol"):
        return None
    price_key, change_key, pct_key, time_key, close_key = _YAHOO_SESSION_FIELDS[session]
    return PartialQuote(
        symbol=str(raw["symbol"]).upper(),
        source="yahoo",
        display_name=raw.get("shortName") or raw.get("longName"),
        price=_num(raw.get(price_key)),
        change=_num(raw.get(change_key)),
        change_percent=_num(raw.get(pct_key)),
        volume=_num(raw.get("regularMarketVolume")),
        average_volume=_num(raw.get("averageDailyVolume3Month")),
        high=_num(raw.get("regularMarketDayHigh")),
        low=_num(raw.get("regularMarketDayLow")),
        open=_num(raw.get("regularMarketOpen")),
        previous_close=_num(raw.get(close_key)),
        observed_at=_num(raw.get(time_key)),
    )


# ── Alpha Vantage ─────────────────────────────────────────────────────────────

class AlphaVantageGainersProvider(GainersProvider):
    """Alpha Vantage ``TOP_GAINERS_LOSERS`` — coarse, low-tier fallback.

    Only symbol, price, change and percent are available; everything else is
    left absent for the scanner to default.
    """

    name = "alpha_vantage"

    def __init__(
        self,
        api_key: str = "demo",
        timeout: float = 10.0,
        limit: int = 20,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self.api_key = api_key
        self.limit = limit

    def fetch_gainers(self, min_percent: float, session: Session) -> List[PartialQuote]:
        try:
            data = get_json(
                self.session, _ALPHA_VANTAGE_URL, provider=self.name,
                params={"function": "TOP_GAINERS_LOSERS", "apikey": self.api_key},
                timeout=self.timeout,
            )
        except ProviderUnavailable as exc:
            logger.error(f"AlphaVantageGainersProvider: INFRA_FAILURE: {exc}")
            return []

        if not isinstance(data, dict):
            return []
        gainers = data.get("top_gainers")
        if not gainers:
            # Rate-limited responses come back 200 with a "Note"/"Information" field.
            note = data.get("Note") or data.get("Information")
            if note:
                logger.warning(f"AlphaVantageGainersProvider: no gainers ({note[:120]})")
            return []

        quotes = [q for q in (_normalize_av_gainer(g) for g in gainers[:self.limit]) if q]
        return [q for q in quotes if abs(q.change_percent or 0.0) >= min_percent]


def _normalize_av_gainer(raw: Dict[str, Any]) -> Optional[PartialQuote]:
    if not isinstance(raw, dict):
        return None
    symbol = raw.get("ticker") or raw.get("symbol")
    if not symbol:
        return None
    return PartialQuote(
        symbol=str(symbol).upper(),
        source="alpha_vantage",
        price=_num(raw.get("price")),
        change=_num(raw.get("change_amount")),
        change_percent=_num(raw.get("change_percentage") or raw.get("changePercent")),
        volume=_num(raw.get("volume")),
    )
