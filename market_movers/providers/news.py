"""News feed providers.

Sources:
  1. RssNewsProvider         — any RSS 2.0 feed (Google News search, Yahoo headline feed)
  2. YahooSearchNewsProvider — Yahoo Finance search JSON
  3. FinnhubNewsProvider     — Finnhub company news JSON (needs a key)

Feeds are fetched with ``requests`` so every call carries its own timeout;
RSS bodies are parsed with ``feedparser``. A feed that is not well-formed XML
yields no items.
"""

import calendar
import io
import xml.sax
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

import feedparser
import requests

from market_movers.core.errors import ProviderUnavailable
from market_movers.core.http import BROWSER_HEADERS, RSS_HEADERS, get_json, get_text
from market_movers.core.logger import logger
from market_movers.core.news_utils import parse_pub_date
from market_movers.models.datatypes import NewsItem
from market_movers.providers.base import NewsProvider

_GOOGLE_RSS_BASE = "https://news.google.com/rss/search"
_YAHOO_RSS_BASE = "https://feeds.finance.yahoo.com/rss/2.0/headline"
_YAHOO_SEARCH_URL = "https://query1.finance.yahoo.com/v1/finance/search"
_FINNHUB_NEWS_URL = "https://finnhub.io/api/v1/company-news"


# ── RSS ───────────────────────────────────────────────────────────────────────

class RssNewsProvider(NewsProvider):
    """Generic RSS provider.

    Args:
        name: Source label stamped on every item.
        url: Feed URL.
        params: Query parameters; ``{query}`` placeholders are filled per call.
        default_publisher: Publisher used when an item has no ``<source>``.
        timeout: Per-call timeout in seconds.
        session: Optional shared ``requests.Session``.
    """

    def __init__(
        self,
        name: str,
        url: str,
        params: Mapping[str, str],
        default_publisher: str,
        timeout: float = 8.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self.name = name
        self.url = url
        self.params = dict(params)
        self.default_publisher = default_publisher

    def fetch_news(self, query: str) -> List[NewsItem]:
        params = {k: v.format(query=query) for k, v in self.params.items()}
        logger.info(f"RssNewsProvider[{self.name}]: fetching q={query!r}")
        try:
            xml_text = get_text(self.session, self.url, provider=self.name, params=params,
                                headers=RSS_HEADERS, timeout=self.timeout)
        except ProviderUnavailable as exc:
            logger.error(f"RssNewsProvider[{self.name}]: INFRA_FAILURE for {query}: {exc}")
            return []

        items = parse_rss_items(xml_text, self.name, self.default_publisher)
        logger.info(f"RssNewsProvider[{self.name}]: {len(items)} items for {query}")
        return items


def parse_rss_items(xml_text: str, source: str, default_publisher: str) -> List[NewsItem]:
    """Parse ``<item>`` blocks into :class:`NewsItem` records.

    Reads ``title``, ``link`` (falling back to ``guid``), ``pubDate`` and
    ``source``; CDATA-wrapped and plain text content are both accepted.
    Returns an empty list for XML that fails to parse.
    """
    feed = feedparser.parse(io.BytesIO((xml_text or "").encode("utf-8")))
    if feed.bozo and isinstance(getattr(feed, "bozo_exception", None), xml.sax.SAXException):
        logger.warning(f"parse_rss_items[{source}]: malformed feed ({feed.bozo_exception}) — 0 items")
        return []

    items = []
    for entry in feed.entries:
        title = (entry.get("title") or "").strip()
        url = (entry.get("link") or entry.get("id") or "").strip()
        if not title or not url:
            continue

        published_at = parse_pub_date(entry.get("published"))
        if not published_at and entry.get("published_parsed"):
            published_at = calendar.timegm(entry.published_parsed)

        source_raw = entry.get("source")
        publisher = source_raw.get("title") if isinstance(source_raw, Mapping) else None

        items.append(NewsItem(
            title=title,
            url=url,
            publisher=publisher or default_publisher,
            published_at=published_at,
            source=source,
            summary=entry.get("summary") or None,
        ))
    return items


def google_news(query_format: str = "{query} stock", timeout: float = 8.0,
                session: Optional[requests.Session] = None) -> RssNewsProvider:
    """Google News search RSS (US edition)."""
    return RssNewsProvider(
        name="google",
        url=_GOOGLE_RSS_BASE,
        params={"q": query_format, "hl": "en-US", "gl": "US", "ceid": "US:en"},
        default_publisher="Google News",
        timeout=timeout,
        session=session,
    )


def yahoo_rss(timeout: float = 8.0, session: Optional[requests.Session] = None) -> RssNewsProvider:
    """Yahoo Finance per-symbol headline RSS."""
    return RssNewsProvider(
        name="yahoo_rss",
        url=_YAHOO_RSS_BASE,
        params={"s": "{query}", "region": "US", "lang": "en-US"},
        default_publisher="Yahoo Finance",
        timeout=timeout,
        session=session,
    )


# ── Yahoo search JSON ─────────────────────────────────────────────────────────

class YahooSearchNewsProvider(NewsProvider):
    """Yahoo Finance ``/v1/finance/search`` news results."""

    name = "yahoo_json"

    def __init__(self, timeout: float = 8.0, count: int = 20, session: Optional[requests.Session] = None) -> None:
        super().__init__(timeout=timeout, session=session)
        self.count = count

    def fetch_news(self, query: str) -> List[NewsItem]:
        params = {
            "q": query, "lang": "en-US", "region": "US",
            "quotesCount": 0, "newsCount": self.count, "enableCb": "true", "type": "news",
        }
        try:
            data = get_json(self.session, _YAHOO_SEARCH_URL, provider=self.name, params=params,
                            headers=BROWSER_HEADERS, timeout=self.timeout)
        except ProviderUnavailable as exc:
            logger.error(f"YahooSearchNewsProvider: INFRA_FAILURE for {query}: {exc}")
            return []

        raw = data.get("news") if isinstance(data, dict) else None
        return [i for i in (_normalize_yahoo_news(n) for n in raw or []) if i]


def _normalize_yahoo_news(raw: Dict[str, Any]) -> Optional[NewsItem]:
    if not isinstance(raw, dict):
        return None
    title = (raw.get("title") or "").strip()
    url = raw.get("link") or ""
    if not title or not url:
        return None
    try:
        published_at = int(raw.get("providerPublishTime") or 0)
    except (TypeError, ValueError):
        published_at = 0
    return NewsItem(
        title=title,
        url=url,
        publisher=raw.get("publisher") or "Yahoo Finance",
        published_at=published_at,
        source="yahoo_json",
        summary=raw.get("summary") or None,
    )


# ── Finnhub ───────────────────────────────────────────────────────────────────

class FinnhubNewsProvider(NewsProvider):
    """Finnhub ``/company-news`` for the trailing ``lookback_days``."""

    name = "finnhub"

    def __init__(self, api_key: str, timeout: float = 8.0, lookback_days: int = 7,
                 session: Optional[requests.Session] = None) -> None:
        super().__init__(timeout=timeout, session=session)
        self.api_key = api_key
        self.lookback_days = lookback_days

    def fetch_news(self, query: str) -> List[NewsItem]:
        if not self.api_key:
            logger.debug("FinnhubNewsProvider: no API key configured — skipping")
            return []

        today = datetime.now(timezone.utc).date()
        params = {
            "symbol": query,
            "from": (today - timedelta(days=self.lookback_days)).isoformat(),
            "to": today.isoformat(),
            "token": self.api_key,
        }
        try:
            data = get_json(self.session, _FINNHUB_NEWS_URL, provider=self.name, params=params,
                            timeout=self.timeout)
        except ProviderUnavailable as exc:
            logger.error(f"FinnhubNewsProvider: INFRA_FAILURE for {query}: {exc}")
            return []

        if not isinstance(data, list):
            return []
        return [i for i in (_normalize_finnhub_news(n) for n in data) if i]


def _normalize_finnhub_news(raw: Dict[str, Any]) -> Optional[NewsItem]:
    if not isinstance(raw, dict):
        return None
    title = (raw.get("headline") or "").strip()
    url = raw.get("url") or ""
    if not title or not url:
        return None
    try:
        published_at = int(raw.get("datetime") or 0)
    except (TypeError, ValueError):
        published_at = 0
    return NewsItem(
        title=title,
        url=url,
        publisher=raw.get("source") or "Finnhub",
        published_at=published_at,
        source="finnhub",
        summary=raw.get("summary") or None,
    )
