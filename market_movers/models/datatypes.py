"""Data structures for the movers aggregation engine."""

import math
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from market_movers.core.errors import MalformedInput
from market_movers.core.news_utils import dedup_key


_SYMBOL_RE = re.compile(r"^[A-Z][A-Z0-9.\-]{0,9}$")


def normalize_symbol(symbol: Optional[str]) -> str:
    """Upper-case and validate a ticker symbol.

    Raises:
        MalformedInput: If the symbol is missing or not ticker-shaped.
    """
    cleaned = (symbol or "").strip().upper()
    if not cleaned:
        raise MalformedInput("symbol is required")
    if not _SYMBOL_RE.match(cleaned):
        raise MalformedInput(f"invalid symbol '{symbol}'")
    return cleaned


class Session(str, Enum):
    """New-York trading session, decided purely by wall-clock minute of day."""
    PRE = "pre"
    REGULAR = "regular"
    POST = "post"


@dataclass(frozen=True)
class PartialQuote:
    """
    What one provider knows about one symbol, before waterfall resolution.

    Every field except ``symbol`` may be absent. ``last_trade_price`` and
    ``session_volume`` (volume accumulated since the session opened) carry the
    extended-hours view some snapshot providers report next to their generic
    day fields.
    """
    symbol: str
    source: str = ""
    display_name: Optional[str] = None
    price: Optional[float] = None
    last_trade_price: Optional[float] = None
    day_close: Optional[float] = None
    change: Optional[float] = None
    change_percent: Optional[float] = None
    volume: Optional[float] = None
    session_volume: Optional[float] = None
    average_volume: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    open: Optional[float] = None
    previous_close: Optional[float] = None
    observed_at: Optional[float] = None


@dataclass(frozen=True)
class Quote:
    """Canonical, fully resolved mover record."""
    symbol: str
    display_name: str
    price: float
    change: float
    change_percent: float
    volume: float
    average_volume: float
    volume_ratio: float
    high: float
    low: float
    open: float
    previous_close: float
    session: Session
    observed_at: float
    triggered: bool
    source: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["session"] = self.session.value
        return data


def volume_ratio(volume: float, average_volume: float) -> float:
    """``volume / average_volume``, or ``1.0`` when the average is unknown."""
    if not average_volume or math.isnan(average_volume):
        return 1.0
    return volume / average_volume


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar; ``time`` is unix seconds."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NewsItem:
    """
    Represents a normalized news article fetched from any news provider.
    """
    title: str
    url: str
    publisher: str
    published_at: int  # unix seconds, 0 when the feed date was unparsable
    source: str = ""
    summary: Optional[str] = None
    category: str = "General"
    sentiment: str = "neutral"

    @property
    def dedup_key(self) -> str:
        return dedup_key(self.title)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Outcome:
    """Result of one task in a concurrent fan-out: a value or a failure reason."""
    name: str
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ProviderBatchRequest:
    """Symbols to fetch from one provider under its request-size ceiling."""
    symbols: Tuple[str, ...]
    chunk_size: int

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {self.chunk_size}")

    def chunks(self) -> Iterator[List[str]]:
        for start in range(0, len(self.symbols), self.chunk_size):
            yield list(self.symbols[start:start + self.chunk_size])

    @property
    def chunk_count(self) -> int:
        return math.ceil(len(self.symbols) / self.chunk_size)


@dataclass(frozen=True)
class ScanResult:
    """Output of one scanner run.

    ``source`` names the chain step whose records were used; ``None`` means
    every configured provider came back empty.
    """
    session: Session
    quotes: Tuple[Quote, ...]
    source: Optional[str]
    scanned_at: float
    threshold: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session": self.session.value,
            "source": self.source,
            "threshold": self.threshold,
            "scanned_at": self.scanned_at,
            "count": len(self.quotes),
            "stocks": [q.to_dict() for q in self.quotes],
        }


@dataclass(frozen=True)
class NewsResult:
    """Merged, deduplicated news for one symbol (or the broad market)."""
    symbol: Optional[str]
    items: Tuple[NewsItem, ...]
    sources: Dict[str, int] = field(default_factory=dict)
    fetched_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "total": len(self.items),
            "sources": dict(self.sources),
            "fetched_at": self.fetched_at,
            "items": [i.to_dict() for i in self.items],
        }


@dataclass(frozen=True)
class CandleResult:
    """Candles for one symbol/timeframe from the first provider that had any."""
    symbol: str
    timeframe: str
    candles: Tuple[Candle, ...]
    source: Optional[str]
    fetched_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "source": self.source,
            "fetched_at": self.fetched_at,
            "count": len(self.candles),
            "candles": [c.to_dict() for c in self.candles],
        }
