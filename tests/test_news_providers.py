from market_movers.providers.news import (
    FinnhubNewsProvider,
    YahooSearchNewsProvider,
    google_news,
    parse_rss_items,
    yahoo_rss,
)

GOOGLE_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>"AAPL stock" - Google News</title>
    <item>
      <title><![CDATA[Apple beats Q3 estimates]]></title>
      <link>https://news.google.com/articles/abc</link>
      <pubDate>Fri, 02 Aug 2024 13:00:00 GMT</pubDate>
      <source url="https://www.reuters.com">Reuters</source>
    </item>
    <item>
      <title>Apple supplier update</title>
      <guid isPermaLink="true">https://news.google.com/articles/def</guid>
      <pubDate>not a date</pubDate>
    </item>
    <item>
      <title></title>
      <link>https://news.google.com/articles/empty</link>
    </item>
  </channel>
</rss>
"""


def test_parse_rss_items_handles_cdata_guid_and_source():
    items = parse_rss_items(GOOGLE_FEED, "google", "Google News")

    assert len(items) == 2
    first, second = items
    assert first.title == "Apple beats Q3 estimates"
    assert first.url == "https://news.google.com/articles/abc"
    assert first.publisher == "Reuters"
    assert first.published_at == 1_722_603_600
    assert first.source == "google"
    assert second.url == "https://news.google.com/articles/def"
    assert second.publisher == "Google News"
    assert second.published_at == 0


def test_malformed_feed_yields_no_items():
    assert parse_rss_items("<rss><channel><item><title>broken", "google", "Google News") == []


def test_google_news_query_and_headers(fake_session, response):
    session = fake_session({"news.google.com": response(None, text=GOOGLE_FEED)})

    items = google_news(session=session).fetch_news("AAPL")

    assert len(items) == 2
    call = session.calls[0]
    assert call["params"]["q"] == "AAPL stock"
    assert call["params"]["ceid"] == "US:en"
    assert "Mozilla" in call["headers"]["User-Agent"]
    assert call["timeout"] == 8.0


def test_yahoo_rss_passes_symbol(fake_session, response):
    session = fake_session({"feeds.finance.yahoo.com": response(None, text=GOOGLE_FEED)})

    items = yahoo_rss(session=session).fetch_news("AAPL")

    assert session.calls[0]["params"]["s"] == "AAPL"
    assert items[1].publisher == "Yahoo Finance"
    assert {i.source for i in items} == {"yahoo_rss"}


def test_rss_http_failure_yields_empty(fake_session, response):
    session = fake_session({"news.google.com": response(None, status_code=503, text="busy")})
    assert google_news(session=session).fetch_news("AAPL") == []


def test_yahoo_search_json(fake_session, response):
    payload = {"news": [
        {"title": "Apple beats Q3 estimates", "link": "https://finance.yahoo.com/a",
         "publisher": "Bloomberg", "providerPublishTime": 1_722_600_000},
        {"title": "", "link": "https://finance.yahoo.com/b"},
    ]}
    session = fake_session({"/v1/finance/search": response(payload)})

    items = YahooSearchNewsProvider(session=session).fetch_news("AAPL")

    assert len(items) == 1
    assert items[0].publisher == "Bloomberg"
    assert items[0].published_at == 1_722_600_000
    assert items[0].source == "yahoo_json"


def test_finnhub_news_needs_key(fake_session):
    session = fake_session()
    assert FinnhubNewsProvider("", session=session).fetch_news("AAPL") == []
    assert session.calls == []


def test_finnhub_news_maps_fields(fake_session, response):
    payload = [{"headline": "Apple expands buyback", "url": "https://x.test/1", "source": "MarketWatch",
                "datetime": 1_722_500_000, "summary": "More buybacks."}]
    session = fake_session({"/company-news": response(payload)})

    [item] = FinnhubNewsProvider("key", session=session).fetch_news("AAPL")

    assert item.title == "Apple expands buyback"
    assert item.publisher == "MarketWatch"
    assert item.summary == "More buybacks."
    params = session.calls[0]["params"]
    assert params["symbol"] == "AAPL" and params["token"] == "key"
