"""Abstract base classes for data providers."""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import requests

from market_movers.models.datatypes import Candle, NewsItem, PartialQuote, Session


class Provider(ABC):
    """Shared plumbing: a name, a per-call timeout and an HTTP session.

    Args:
        timeout: Seconds before a single call is abandoned.
        session: Optional ``requests.Session``; one is created when omitted.
    """

    name = "provider"

    def __init__(self, timeout: float = 10.0, session: Optional[requests.Session] = None) -> None:
        self.timeout = timeout
        self.session = session or requests.Session()


class QuoteProvider(Provider):
    """Abstract interface for quote snapshots of an explicit symbol list."""

    @abstractmethod
    def fetch_quotes(self, symbols: Sequence[str], session: Session) -> List[PartialQuote]:
        """
        Fetch snapshot quotes for the given symbols.

        Args:
            symbols (Sequence[str]): Ticker symbols to look up.
            session (Session): The resolved trading session.

        Returns:
            List[PartialQuote]: Possibly fewer records than symbols; an absent
            symbol means "unknown". Empty on any provider failure.
        """
        pass


class GainersProvider(Provider):
    """Abstract interface for provider-side top-gainer lists."""

    @abstractmethod
    def fetch_gainers(self, min_percent: float, session: Session) -> List[PartialQuote]:
        """
        Fetch the provider's gainers whose change clears ``min_percent``.

        Returns:
            List[PartialQuote]: Empty on any provider failure.
        """
        pass


class CandleProvider(Provider):
    """Abstract interface for historical OHLCV candles."""

    @abstractmethod
    def fetch_candles(self, symbol: str, timeframe: str, start: int, end: int) -> List[Candle]:
        """
        Fetch candles for ``symbol`` between two unix timestamps.

        Args:
            symbol (str): The ticker symbol.
            timeframe (str): Uniform timeframe code (``1m``, ``1h``, ``1D`` ...).
            start (int): Range start, unix seconds.
            end (int): Range end, unix seconds.

        Returns:
            List[Candle]: Ascending by ``time``; empty for an unmapped
            timeframe or any provider failure.
        """
        pass


class NewsProvider(Provider):
    """Abstract interface for fetching company-specific news headlines."""

    @abstractmethod
    def fetch_news(self, query: str) -> List[NewsItem]:
        """
        Fetch news items for a symbol or free-text query.

        Returns:
            List[NewsItem]: Normalized items; empty on any provider failure.
        """
        pass


class SentimentProvider(ABC):
    """Abstract interface for classifying financial text sentiment."""

    @abstractmethod
    def analyze(self, text: str):
        """
        Analyze the sentiment of a given text.

        Args:
            text (str): The text to analyze.

        Returns:
            SentimentResult: Label (bullish/neutral/bearish) and score in [-1.0, 1.0].
        """
        pass
