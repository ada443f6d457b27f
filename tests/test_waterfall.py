import math

from market_movers.models.datatypes import PartialQuote
from market_movers.pipeline.waterfall import Waterfall, field, resolve


def test_resolve_skips_none_zero_and_nan():
    assert resolve(None, 0, float("nan"), 5.0, 7.0) == 5.0


def test_resolve_returns_fallback_when_nothing_present():
    assert resolve(None, 0.0, math.nan) == 0.0
    assert resolve(None, fallback="n/a") == "n/a"
    assert resolve() == 0.0


def test_resolve_keeps_negative_values():
    assert resolve(None, -2.5, 3.0) == -2.5


def test_waterfall_walks_steps_across_records():
    price = Waterfall("price", (
        (0, field("last_trade_price")),
        (1, field("price")),
        (0, field("day_close")),
    ))
    chain = PartialQuote("AAA", last_trade_price=None, day_close=10.0)
    enrichment = PartialQuote("AAA", price=11.0)

    assert price.resolve((chain, enrichment)) == 11.0
    assert price.resolve_with_origin((chain, enrichment)) == (11.0, 1)


def test_waterfall_ignores_missing_records():
    price = Waterfall("price", ((1, field("price")), (0, field("day_close"))))
    chain = PartialQuote("AAA", day_close=10.0)

    assert price.resolve((chain, None)) == 10.0
    assert price.resolve((chain,)) == 10.0
    assert price.resolve_with_origin((chain, None)) == (10.0, 0)


def test_waterfall_fallback_has_no_origin():
    price = Waterfall("price", ((0, field("price")),))
    assert price.resolve_with_origin((PartialQuote("AAA"),), fallback=0.0) == (0.0, None)


def test_priority_order_is_per_call_site():
    chain = PartialQuote("AAA", price=9.0, last_trade_price=10.0)
    pre = Waterfall("price", ((0, field("last_trade_price")), (0, field("price"))))
    regular = Waterfall("price", ((0, field("price")), (0, field("last_trade_price"))))

    assert pre.resolve((chain,)) == 10.0
    assert regular.resolve((chain,)) == 9.0
