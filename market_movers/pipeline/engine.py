"""Mover scanner: session-aware provider fallback, field waterfalls, threshold filter.

Flow per scan:
  1. Session      — classify_session() once (unless forced by the caller)
  2. Chain        — ProviderStep list for that session, first non-empty wins
  3. Low tier     — coarse gainers list when every chain step came back empty
  4. Enrichment   — real-time quotes for the winning symbols (concurrent)
  5. Resolution   — per-field Waterfall over (chain record, enrichment record)
  6. Filter/sort  — |change_percent| >= threshold, descending

Empty results are valid. ``ScanResult.source`` is ``None`` when every provider
came back empty, which tells that case apart from "nothing cleared the threshold".
"""

import math
import numbers
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from market_movers.core.config import Settings
from market_movers.core.errors import MalformedInput, NoDataAvailable
from market_movers.core.logger import logger
from market_movers.models.datatypes import (
    PartialQuote, Quote, ScanResult, Session, normalize_symbol, volume_ratio,
)
from market_movers.pipeline.session import SESSION_HOURS, classify_session
from market_movers.pipeline.waterfall import Waterfall, field, resolve
from market_movers.providers.base import GainersProvider, QuoteProvider
from market_movers.providers.market import (
    AlphaVantageGainersProvider, FinnhubQuoteProvider, PolygonSnapshotProvider, YahooQuoteProvider,
)

CHAIN = 0
ENRICHMENT = 1

# ── Waterfalls ────────────────────────────────────────────────────────────────

PRICE_WATERFALLS: Dict[Session, Waterfall] = {
    Session.PRE: Waterfall("price", (
        (CHAIN, field("last_trade_price")),
        (CHAIN, field("price")),
        (ENRICHMENT, field("price")),
        (CHAIN, field("day_close")),
    )),
    Session.REGULAR: Waterfall("price", (
        (ENRICHMENT, field("price")),
        (CHAIN, field("price")),
        (CHAIN, field("last_trade_price")),
        (CHAIN, field("day_close")),
    )),
    Session.POST: Waterfall("price", (
        (CHAIN, field("price")),
        (CHAIN, field("last_trade_price")),
        (ENRICHMENT, field("price")),
        (CHAIN, field("day_close")),
    )),
}

PREVIOUS_CLOSE = Waterfall("previous_close", (
    (CHAIN, field("previous_close")),
    (ENRICHMENT, field("previous_close")),
))

VOLUME_WATERFALLS: Dict[Session, Waterfall] = {
    Session.PRE: Waterfall("volume", ((CHAIN, field("session_volume")), (CHAIN, field("volume")))),
    Session.REGULAR: Waterfall("volume", ((CHAIN, field("volume")),)),
    Session.POST: Waterfall("volume", ((CHAIN, field("volume")),)),
}

AVERAGE_VOLUME = Waterfall("average_volume", ((CHAIN, field("average_volume")), (CHAIN, field("volume"))))

PROVIDER_PERCENT = Waterfall("change_percent", (
    (CHAIN, field("change_percent")),
    (ENRICHMENT, field("change_percent")),
))


def _ohlc(name: str) -> Waterfall:
    return Waterfall(name, ((CHAIN, field(name)), (ENRICHMENT, field(name))))


HIGH, LOW, OPEN = _ohlc("high"), _ohlc("low"), _ohlc("open")


def validate_threshold(threshold) -> float:
    """Return ``threshold`` as float; reject anything not finite and non-negative."""
    if isinstance(threshold, bool) or not isinstance(threshold, numbers.Real):
        raise MalformedInput(f"threshold must be a number, got {threshold!r}")
    value = float(threshold)
    if not math.isfinite(value) or value < 0:
        raise MalformedInput(f"threshold must be a finite non-negative number, got {threshold!r}")
    return value


def resolve_quote(
    record: PartialQuote,
    enrichment: Optional[PartialQuote],
    session: Session,
    threshold: float,
    observed_at: float,
    low_tier: bool = False,
) -> Quote:
    """Resolve one chain record (plus optional enrichment record) into a :class:`Quote`.

    Args:
        record: The record from the winning chain step.
        enrichment: Same symbol from the enrichment provider, if any.
        session: Selects the price and volume priority lists.
        threshold: Percent-change threshold used for ``triggered``.
        observed_at: Fallback timestamp when no record carries one.
        low_tier: Default high/low/open to 0 instead of the resolved price.
    """
    records = (record, enrichment)

    price, price_origin = PRICE_WATERFALLS[session].resolve_with_origin(records)
    prev, prev_origin = PREVIOUS_CLOSE.resolve_with_origin(records)

    if prev > 0 and price > 0:
        change_percent = (price - prev) / prev * 100
    else:
        change_percent = PROVIDER_PERCENT.resolve(records)

    same_record = price_origin is not None and price_origin == prev_origin
    supplied_change = records[price_origin].change if same_record else None
    if same_record and supplied_change:
        change = supplied_change
    elif prev > 0 and price > 0:
        change = price - prev
    else:
        change = resolve(record.change, enrichment.change if enrichment else None)

    volume = VOLUME_WATERFALLS[session].resolve(records)
    average_volume = AVERAGE_VOLUME.resolve(records)
    ohlc_fallback = 0.0 if low_tier else price

    return Quote(
        symbol=record.symbol,
        display_name=resolve(record.display_name, enrichment.display_name if enrichment else None,
                             fallback=record.symbol),
        price=price,
        change=change,
        change_percent=change_percent,
        volume=volume,
        average_volume=average_volume,
        volume_ratio=volume_ratio(volume, average_volume),
        high=HIGH.resolve(records, fallback=ohlc_fallback),
        low=LOW.resolve(records, fallback=ohlc_fallback),
        open=OPEN.resolve(records, fallback=ohlc_fallback),
        previous_close=prev,
        session=session,
        observed_at=resolve(record.observed_at, enrichment.observed_at if enrichment else None,
                            fallback=observed_at),
        triggered=abs(change_percent) >= threshold,
        source=record.source,
    )


# ── Chain steps ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProviderStep:
    """One named entry in a session's provider chain.

    ``fetch`` receives ``(threshold, session)`` and returns partial records.
    Build steps with :meth:`quotes` (fixed symbol universe) or :meth:`gainers`.
    """
    name: str
    fetch: Callable[[float, Session], List[PartialQuote]]

    @classmethod
    def quotes(cls, name: str, provider: QuoteProvider, symbols: Sequence[str]) -> "ProviderStep":
        universe = tuple(symbols)
        return cls(name, lambda threshold, session: provider.fetch_quotes(universe, session))

    @classmethod
    def gainers(cls, name: str, provider: GainersProvider) -> "ProviderStep":
        return cls(name, provider.fetch_gainers)

    def run(self, threshold: float, session: Session) -> List[PartialQuote]:
        try:
            return list(self.fetch(threshold, session) or [])
        except Exception as exc:
            logger.error(f"ProviderStep[{self.name}]: INFRA_FAILURE: {exc}", exc_info=True)
            return []


class MoverScanner:
    """Session-aware mover scan over ordered provider chains.

    Args:
        chain_by_session: Ordered :class:`ProviderStep` list per session.
        enrichment: Optional real-time quote provider merged as the second
            waterfall candidate.
        low_tier: Optional gainers step tried once every chain step is empty.
        max_records: Cap on records enriched and resolved per scan.
        clock: Returns the current unix time.
        session_clock: Returns the ``datetime`` used for session classification.
    """

    def __init__(
        self,
        chain_by_session: Mapping[Session, Sequence[ProviderStep]],
        enrichment: Optional[QuoteProvider] = None,
        low_tier: Optional[ProviderStep] = None,
        max_records: int = 30,
        clock: Callable[[], float] = time.time,
        session_clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.chain_by_session = {s: tuple(steps) for s, steps in chain_by_session.items()}
        self.enrichment = enrichment
        self.low_tier = low_tier
        self.max_records = max_records
        self.clock = clock
        self.session_clock = session_clock

    # ── public ────────────────────────────────────────────────────────────────

    def scan(self, threshold: float, session: Optional[Session] = None) -> ScanResult:
        """Run one scan and return every record whose |change %| clears ``threshold``.

        Args:
            threshold: Minimum absolute percent change, finite and >= 0.
            session: Force a session instead of classifying the clock.

        Raises:
            MalformedInput: If ``threshold`` is not a finite non-negative number.
        """
        threshold = validate_threshold(threshold)
        if session is None:
            session = classify_session(self.session_clock() if self.session_clock else None)
        else:
            session = Session(session)
        now = self.clock()
        logger.info(f"MoverScanner: session={session.value} ({SESSION_HOURS[session]}) threshold={threshold}%")

        source, records, low_tier = self._walk_chain(threshold, session)
        if source is None:
            logger.warning(f"MoverScanner: all providers empty for session={session.value}")
            return ScanResult(session=session, quotes=(), source=None, scanned_at=now, threshold=threshold)

        records = _rank(records, session, now)[:self.max_records]
        enriched = {} if low_tier else self._enrich(records, session)

        quotes = [
            resolve_quote(r, enriched.get(r.symbol), session, threshold, now, low_tier=low_tier)
            for r in records
        ]
        movers = sorted(
            (q for q in quotes if q.triggered),
            key=lambda q: abs(q.change_percent),
            reverse=True,
        )
        if not movers:
            logger.info(f"MoverScanner: no record cleared {threshold}% (source={source})")
        else:
            logger.info(f"MoverScanner: {len(movers)} movers from {source}")
        return ScanResult(session=session, quotes=tuple(movers), source=source, scanned_at=now,
                          threshold=threshold)

    # ── internal ──────────────────────────────────────────────────────────────

    def _walk_chain(
        self, threshold: float, session: Session,
    ) -> Tuple[Optional[str], List[PartialQuote], bool]:
        """Return ``(source, records, is_low_tier)`` for the first step with a mover.

        When providers answered but nothing moved, ``source`` names the first
        step that answered and ``records`` is empty.
        """
        now = self.clock()
        answered: Optional[str] = None
        for step in self.chain_by_session.get(session, ()):
            records = _dedupe(step.run(threshold, session))
            if any(_provisional_percent(r, session, now) >= threshold for r in records):
                logger.info(f"MoverScanner: {step.name} answered with {len(records)} records")
                return step.name, records, False
            if records and answered is None:
                answered = step.name
            logger.info(f"MoverScanner: {step.name} had no movers — trying next provider")

        if self.low_tier is not None:
            records = _dedupe(self.low_tier.run(threshold, session))
            if records:
                logger.info(f"MoverScanner: chain exhausted — low tier {self.low_tier.name} "
                            f"answered with {len(records)} records")
                return self.low_tier.name, records, True
        return answered, [], False

    def _enrich(self, records: Sequence[PartialQuote], session: Session) -> Dict[str, PartialQuote]:
        if self.enrichment is None or not records:
            return {}
        try:
            extra = self.enrichment.fetch_quotes([r.symbol for r in records], session)
        except Exception as exc:
            logger.error(f"MoverScanner: INFRA_FAILURE in enrichment ({self.enrichment.name}): {exc}")
            return {}
        return {q.symbol: q for q in extra}


def _dedupe(records: Sequence[PartialQuote]) -> List[PartialQuote]:
    seen = set()
    unique = []
    for r in records:
        if r.symbol not in seen:
            seen.add(r.symbol)
            unique.append(r)
    return unique


def _provisional_percent(record: PartialQuote, session: Session, now: float) -> float:
    return abs(resolve_quote(record, None, session, math.inf, now).change_percent)


def _rank(records: Sequence[PartialQuote], session: Session, now: float) -> List[PartialQuote]:
    """Order records by provisional |change %| so the cap keeps the biggest movers."""
    return sorted(records, key=lambda r: _provisional_percent(r, session, now), reverse=True)


# ── Single-quote lookup ───────────────────────────────────────────────────────

class QuoteLookup:
    """Resolve one symbol through an ordered list of quote providers.

    Args:
        providers: Tried in order; the first with a record wins.
        clock: Returns the current unix time.
    """

    def __init__(self, providers: Sequence[QuoteProvider], clock: Callable[[], float] = time.time) -> None:
        self.providers = list(providers)
        self.clock = clock

    def get(self, symbol: str, session: Optional[Session] = None) -> Quote:
        symbol = normalize_symbol(symbol)
        session = Session(session) if session is not None else classify_session()
        for provider in self.providers:
            try:
                records = provider.fetch_quotes([symbol], session)
            except Exception as exc:
                logger.error(f"QuoteLookup: INFRA_FAILURE at {provider.name} for {symbol}: {exc}")
                continue
            match = next((r for r in records if r.symbol == symbol), None)
            if match is not None:
                return resolve_quote(match, None, session, math.inf, self.clock())
            logger.info(f"QuoteLookup: {provider.name} had no data for {symbol} — trying next provider")
        raise NoDataAvailable(f"no quote data available for {symbol}")


# ── Wiring ────────────────────────────────────────────────────────────────────

def default_scanner(settings: Settings) -> MoverScanner:
    """Standard chains: Polygon and Yahoo per session, Alpha Vantage low tier, Finnhub enrichment."""
    polygon = PolygonSnapshotProvider(
        settings.polygon_key, settings.timeout, settings.polygon_chunk_size, settings.max_workers,
    )
    yahoo = YahooQuoteProvider(settings.timeout, settings.yahoo_chunk_size, settings.max_workers)
    alpha = AlphaVantageGainersProvider(settings.alpha_vantage_key, settings.timeout)
    finnhub = FinnhubQuoteProvider(settings.finnhub_key, settings.timeout, settings.max_workers)

    gainers = ProviderStep.gainers("polygon_gainers", polygon)
    chains = {
        Session.PRE: [
            ProviderStep.quotes("polygon_snapshot", polygon, settings.watchlist),
            ProviderStep.quotes("yahoo_extended", yahoo, settings.watchlist),
            gainers,
        ],
        Session.REGULAR: [gainers, ProviderStep.quotes("yahoo_regular", yahoo, settings.watchlist)],
        Session.POST: [gainers, ProviderStep.quotes("yahoo_extended", yahoo, settings.watchlist)],
    }
    return MoverScanner(
        chains,
        enrichment=finnhub if settings.finnhub_key else None,
        low_tier=ProviderStep.gainers("alpha_vantage_gainers", alpha),
        max_records=settings.max_records,
    )


def default_quote_lookup(settings: Settings) -> QuoteLookup:
    """Finnhub first, then Polygon ticker snapshots."""
    return QuoteLookup([
        FinnhubQuoteProvider(settings.finnhub_key, settings.timeout, settings.max_workers),
        PolygonSnapshotProvider(settings.polygon_key, settings.timeout, settings.polygon_chunk_size),
    ])
