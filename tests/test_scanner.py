import math
from datetime import datetime, timezone

import pytest

from market_movers.core.config import Settings
from market_movers.core.errors import MalformedInput, NoDataAvailable
from market_movers.models.datatypes import PartialQuote, Session
from market_movers.pipeline.engine import (
    MoverScanner,
    ProviderStep,
    QuoteLookup,
    default_scanner,
    resolve_quote,
)
from market_movers.providers.base import QuoteProvider

NOW = 1_722_600_000.0


class FakeQuoteProvider(QuoteProvider):
    def __init__(self, name, records=(), error=None):
        super().__init__()
        self.name = name
        self.records = list(records)
        self.error = error
        self.requested = []

    def fetch_quotes(self, symbols, session):
        self.requested.append(list(symbols))
        if self.error:
            raise self.error
        return [r for r in self.records if r.symbol in symbols]


def _step(name, records):
    return ProviderStep(name, lambda threshold, session: list(records))


def _scanner(chains, **kwargs):
    return MoverScanner(chains, clock=lambda: NOW, **kwargs)


def test_pre_session_falls_back_when_primary_has_nothing_moving():
    flat = PartialQuote("BBB", source="polygon_snapshot", last_trade_price=10.0, previous_close=10.0)
    mover = PartialQuote("AAA", source="yahoo", price=10.9, previous_close=10.0,
                         change=0.9, change_percent=9.0)
    calls = []

    def primary(threshold, session):
        calls.append("primary")
        return [flat]

    def secondary(threshold, session):
        calls.append("secondary")
        return [mover]

    scanner = _scanner({Session.PRE: [ProviderStep("polygon_snapshot", primary),
                                      ProviderStep("yahoo_extended", secondary)]})
    result = scanner.scan(7, session=Session.PRE)

    assert calls == ["primary", "secondary"]
    assert result.source == "yahoo_extended"
    assert result.session is Session.PRE
    [quote] = result.quotes
    assert quote.symbol == "AAA"
    assert quote.price == 10.9
    assert quote.change_percent == pytest.approx(9.0)
    assert quote.change == 0.9
    assert quote.triggered is True


def test_first_non_empty_step_short_circuits():
    second_called = []
    mover = PartialQuote("AAA", price=11.0, previous_close=10.0)

    scanner = _scanner({Session.REGULAR: [
        _step("first", [mover]),
        ProviderStep("second", lambda t, s: second_called.append(True) or []),
    ]})
    result = scanner.scan(5, session=Session.REGULAR)

    assert result.source == "first"
    assert second_called == []


def test_pre_session_prefers_last_trade_over_day_close():
    record = PartialQuote("AAA", last_trade_price=12.0, day_close=10.0, previous_close=10.0,
                          change_percent=0.0, session_volume=5_000, volume=1_000_000,
                          average_volume=2_000_000)
    quote = resolve_quote(record, None, Session.PRE, 7, NOW)

    assert quote.price == 12.0
    assert quote.change_percent == pytest.approx(20.0)
    assert quote.change == pytest.approx(2.0)
    assert quote.volume == 5_000
    assert quote.volume_ratio == pytest.approx(5_000 / 2_000_000)
    assert quote.high == quote.low == quote.open == 12.0
    assert quote.observed_at == NOW


def test_regular_session_prefers_enrichment_price():
    chain = PartialQuote("AAA", source="polygon_gainers", day_close=11.0, previous_close=10.0,
                         change=1.0, change_percent=10.0, high=11.5)
    enrichment = PartialQuote("AAA", source="finnhub", price=12.0, previous_close=10.0,
                              display_name="Triple A")
    quote = resolve_quote(chain, enrichment, Session.REGULAR, 7, NOW)

    assert quote.price == 12.0
    assert quote.change_percent == pytest.approx(20.0)
    # price and previous close came from different records
    assert quote.change == pytest.approx(2.0)
    assert quote.high == 11.5
    assert quote.display_name == "Triple A"
    assert quote.source == "polygon_gainers"


def test_provider_percent_used_without_previous_close():
    record = PartialQuote("AAA", price=4.5, change=0.5, change_percent=12.5)
    quote = resolve_quote(record, None, Session.REGULAR, 7, NOW, low_tier=True)

    assert quote.change_percent == 12.5
    assert quote.change == 0.5
    assert quote.previous_close == 0.0
    assert (quote.high, quote.low, quote.open) == (0.0, 0.0, 0.0)
    assert quote.volume_ratio == 1.0
    assert quote.display_name == "AAA"


def test_enrichment_becomes_second_candidate():
    chain = PartialQuote("AAA", source="polygon_gainers", day_close=11.0, previous_close=10.0,
                         change_percent=10.0)
    finnhub = FakeQuoteProvider("finnhub", [PartialQuote("AAA", price=12.0, previous_close=10.0)])

    scanner = _scanner({Session.REGULAR: [_step("polygon_gainers", [chain])]}, enrichment=finnhub)
    [quote] = scanner.scan(7, session=Session.REGULAR).quotes

    assert finnhub.requested == [["AAA"]]
    assert quote.price == 12.0


def test_enrichment_failure_is_absorbed():
    chain = PartialQuote("AAA", day_close=11.0, previous_close=10.0)
    broken = FakeQuoteProvider("finnhub", error=RuntimeError("down"))

    scanner = _scanner({Session.REGULAR: [_step("polygon_gainers", [chain])]}, enrichment=broken)
    [quote] = scanner.scan(7, session=Session.REGULAR).quotes

    assert quote.price == 11.0


def test_filter_and_sort_by_absolute_change():
    records = [
        PartialQuote("AAA", price=10.8, previous_close=10.0),
        PartialQuote("BBB", price=8.5, previous_close=10.0),
        PartialQuote("CCC", price=10.2, previous_close=10.0),
    ]
    result = _scanner({Session.REGULAR: [_step("chain", records)]}).scan(7, session="regular")

    assert [q.symbol for q in result.quotes] == ["BBB", "AAA"]
    assert all(q.triggered for q in result.quotes)


def test_max_records_keeps_biggest_movers():
    records = [PartialQuote(f"S{i}", price=10.0 + i, previous_close=10.0) for i in range(1, 6)]
    scanner = _scanner({Session.REGULAR: [_step("chain", records)]}, max_records=2)

    result = scanner.scan(1, session=Session.REGULAR)

    assert [q.symbol for q in result.quotes] == ["S5", "S4"]


def test_low_tier_used_when_chain_exhausted():
    coarse = PartialQuote("CCC", source="alpha_vantage", price=4.5, change=0.5, change_percent=12.5)
    scanner = _scanner(
        {Session.POST: [_step("polygon_gainers", []), _step("yahoo_extended", [])]},
        low_tier=_step("alpha_vantage_gainers", [coarse]),
    )
    result = scanner.scan(7, session=Session.POST)

    assert result.source == "alpha_vantage_gainers"
    [quote] = result.quotes
    assert quote.change_percent == 12.5
    assert quote.high == 0.0


def test_all_providers_empty_is_a_valid_empty_result():
    scanner = _scanner({Session.PRE: [_step("a", []), _step("b", [])]}, low_tier=_step("c", []))
    result = scanner.scan(7, session=Session.PRE)

    assert result.quotes == ()
    assert result.source is None
    assert result.to_dict()["count"] == 0


def test_nothing_clearing_threshold_keeps_source():
    calm = PartialQuote("AAA", price=10.1, previous_close=10.0)
    scanner = _scanner({Session.REGULAR: [_step("chain", [calm])]})

    result = scanner.scan(5, session=Session.REGULAR)
    assert result.source == "chain"
    assert result.quotes == ()


def test_failing_step_falls_through():
    def broken(threshold, session):
        raise RuntimeError("adapter bug")

    mover = PartialQuote("AAA", price=11.0, previous_close=10.0)
    scanner = _scanner({Session.REGULAR: [ProviderStep("broken", broken), _step("ok", [mover])]})

    assert scanner.scan(5, session=Session.REGULAR).source == "ok"


@pytest.mark.parametrize("threshold", [-1, math.nan, math.inf, "7", None, True])
def test_invalid_threshold_rejected(threshold):
    with pytest.raises(MalformedInput):
        _scanner({}).scan(threshold, session=Session.PRE)


def test_session_resolved_from_clock():
    seen = []

    def step(threshold, session):
        seen.append(session)
        return []

    scanner = MoverScanner(
        {s: [ProviderStep("x", step)] for s in Session},
        clock=lambda: NOW,
        session_clock=lambda: datetime(2024, 1, 15, 13, 0, tzinfo=timezone.utc),
    )
    result = scanner.scan(7)

    assert seen == [Session.PRE]
    assert result.session is Session.PRE


def test_default_scanner_wiring():
    settings = Settings(polygon_key="p", finnhub_key="", watchlist=("AAPL", "MSFT"))
    scanner = default_scanner(settings)

    assert [s.name for s in scanner.chain_by_session[Session.PRE]] == [
        "polygon_snapshot", "yahoo_extended", "polygon_gainers",
    ]
    assert [s.name for s in scanner.chain_by_session[Session.REGULAR]] == ["polygon_gainers", "yahoo_regular"]
    assert scanner.low_tier.name == "alpha_vantage_gainers"
    assert scanner.enrichment is None


# ── QuoteLookup ───────────────────────────────────────────────────────────────

def test_quote_lookup_falls_back_to_next_provider():
    empty = FakeQuoteProvider("finnhub")
    polygon = FakeQuoteProvider("polygon", [PartialQuote("AAPL", last_trade_price=190.0, previous_close=200.0)])

    quote = QuoteLookup([empty, polygon], clock=lambda: NOW).get("aapl", session=Session.PRE)

    assert quote.symbol == "AAPL"
    assert quote.change_percent == pytest.approx(-5.0)
    assert quote.triggered is False
    assert empty.requested == [["AAPL"]]


def test_quote_lookup_nothing_found():
    with pytest.raises(NoDataAvailable) as exc:
        QuoteLookup([FakeQuoteProvider("finnhub"), FakeQuoteProvider("polygon", error=RuntimeError("x"))]).get(
            "AAPL", session=Session.REGULAR)
    assert exc.value.status_code == 404


@pytest.mark.parametrize("symbol", ["", None, "   ", "BAD SYMBOL!"])
def test_quote_lookup_rejects_bad_symbols(symbol):
    provider = FakeQuoteProvider("finnhub")
    with pytest.raises(MalformedInput):
        QuoteLookup([provider]).get(symbol)
    assert provider.requested == []
