"""News aggregation: concurrent feed fan-out, title-key dedup, newest-first cap.

Flow per request:
  1. Fan-out   — every NewsProvider runs concurrently through ``gather``
  2. Merge     — outcomes walked in the fixed provider order; failed ones skipped
  3. Dedup     — first occurrence of each ``dedup_key`` wins
  4. Sort/cap  — newest first (unparsable dates last), truncated to ``cap``
  5. Annotate  — category (keyword rules) and sentiment label per item
"""

import dataclasses
import time
from collections import Counter
from typing import Callable, Iterable, List, Optional, Sequence

from market_movers.core.config import Settings
from market_movers.core.logger import logger
from market_movers.core.news_utils import DEDUP_KEY_LENGTH, categorize, dedup_key
from market_movers.models.datatypes import NewsItem, NewsResult, Outcome, normalize_symbol
from market_movers.pipeline.batch import gather
from market_movers.providers.base import NewsProvider, SentimentProvider
from market_movers.providers.news import (
    FinnhubNewsProvider, YahooSearchNewsProvider, google_news, yahoo_rss,
)
from market_movers.providers.sentiment import build_sentiment_provider

DEFAULT_CAP = 20


class NewsDeduplicator:
    """Merge per-provider outcomes into one deduplicated, newest-first list.

    Args:
        cap: Maximum number of items kept.
        key_length: Characters of the lower-cased title used as identity.
    """

    def __init__(self, cap: int = DEFAULT_CAP, key_length: int = DEDUP_KEY_LENGTH) -> None:
        self.cap = cap
        self.key_length = key_length

    def merge(self, outcomes: Iterable[Outcome]) -> List[NewsItem]:
        seen = set()
        unique: List[NewsItem] = []
        for outcome in outcomes:
            if not outcome.ok:
                continue
            for item in outcome.value or []:
                key = dedup_key(item.title, self.key_length)
                if not key or key in seen:
                    continue
                seen.add(key)
                unique.append(item)

        # Stable sort: equal timestamps keep provider order.
        unique.sort(key=lambda i: i.published_at or 0, reverse=True)
        return unique[:self.cap]


class NewsAggregator:
    """Fan out to independent news feeds and merge the results.

    Args:
        providers: Per-symbol providers, in merge-priority order.
        deduplicator: Merge policy; defaults to ``NewsDeduplicator()``.
        sentiment: Labels each surviving item; items stay ``neutral`` when omitted.
        max_workers: Concurrent provider calls.
        market_provider: Free-text provider used by :meth:`fetch_market`.
        market_queries: Broad-market queries for :meth:`fetch_market`.
        clock: Returns the current unix time.
    """

    def __init__(
        self,
        providers: Sequence[NewsProvider],
        deduplicator: Optional[NewsDeduplicator] = None,
        sentiment: Optional[SentimentProvider] = None,
        max_workers: int = 8,
        market_provider: Optional[NewsProvider] = None,
        market_queries: Sequence[str] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.providers = list(providers)
        self.deduplicator = deduplicator or NewsDeduplicator()
        self.sentiment = sentiment
        self.max_workers = max_workers
        self.market_provider = market_provider
        self.market_queries = tuple(market_queries)
        self.clock = clock

    def fetch(self, symbol: str) -> NewsResult:
        """Merged news for one symbol.

        Raises:
            MalformedInput: Missing or invalid symbol (before any network call).
        """
        symbol = normalize_symbol(symbol)
        tasks = [(p.name, (lambda p=p: p.fetch_news(symbol))) for p in self.providers]
        return self._collect(symbol, tasks)

    def fetch_market(self) -> NewsResult:
        """Merged broad-market news over every configured query."""
        if self.market_provider is None or not self.market_queries:
            logger.warning("NewsAggregator: no market provider or queries configured")
            return NewsResult(symbol=None, items=(), sources={}, fetched_at=self.clock())

        provider = self.market_provider
        tasks = [(provider.name, (lambda q=q: provider.fetch_news(q))) for q in self.market_queries]
        return self._collect(None, tasks)

    # ── internal ──────────────────────────────────────────────────────────────

    def _collect(self, symbol: Optional[str], tasks) -> NewsResult:
        outcomes = gather(tasks, self.max_workers)

        sources: Counter = Counter()
        for outcome in outcomes:
            sources[outcome.name] += len(outcome.value or []) if outcome.ok else 0

        items = [self._annotate(i) for i in self.deduplicator.merge(outcomes)]
        failed = [o.name for o in outcomes if not o.ok]
        if failed:
            logger.warning(f"NewsAggregator: INFRA_FAILURE from {failed}")
        logger.info(
            f"NewsAggregator: {len(items)} items for {symbol or 'market'} "
            f"(raw per source: {dict(sources)})"
        )
        return NewsResult(symbol=symbol, items=tuple(items), sources=dict(sources), fetched_at=self.clock())

    def _annotate(self, item: NewsItem) -> NewsItem:
        category = categorize(item.title, item.summary)
        if self.sentiment is None:
            return dataclasses.replace(item, category=category)
        result = self.sentiment.analyze(f"{item.title} {item.summary or ''}")
        return dataclasses.replace(item, category=category, sentiment=result.label)


def default_news_aggregator(settings: Settings) -> NewsAggregator:
    """Google, Yahoo RSS, Yahoo search and Finnhub, in that merge order."""
    feed_timeout = min(settings.timeout, 8.0)
    return NewsAggregator(
        providers=[
            google_news(timeout=feed_timeout),
            yahoo_rss(timeout=feed_timeout),
            YahooSearchNewsProvider(timeout=feed_timeout),
            FinnhubNewsProvider(settings.finnhub_key, timeout=feed_timeout),
        ],
        deduplicator=NewsDeduplicator(cap=settings.news_cap),
        sentiment=build_sentiment_provider(settings.sentiment),
        max_workers=settings.max_workers,
        market_provider=google_news(query_format="{query}", timeout=feed_timeout),
        market_queries=settings.market_queries,
    )
