"""Tests for the Alpha Vantage and Finnhub adapters."""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest

from fetch_quote.providers.alpha_vantage import AlphaVantageProvider, parse_av_timestamp
from fetch_quote.providers.base import Feature, ProviderError
from fetch_quote.providers.finnhub import FinnhubProvider
from fetch_quote.utils.cache import MemoryCache
from fetch_quote.utils.http import BackoffConfig

FAST = BackoffConfig(max_retries=0, jitter_ms=0)


def query_of(call) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(call["url"]).query).items()}


AV_QUOTE = {
    "Global Quote": {
        "01. symbol": "IBM",
        "05. price": "150.00",
        "06. volume": "3000000",
        "07. latest trading day": "2024-01-31",
        "08. previous close": "148.00",
        "09. change": "2.00",
        "10. change percent": "1.3514%",
    }
}

AV_DAILY = {
    "Time Series (Daily)": {
        "2024-01-29": {"1. open": "10", "2. high": "11", "3. low": "9", "4. close": "10", "5. adjusted close": "10", "6. volume": "100", "8. split coefficient": "1.0"},
        "2024-01-31": {"1. open": "12", "2. high": "13", "3. low": "11", "4. close": "12", "5. adjusted close": "12", "6. volume": "300", "8. split coefficient": "1.0"},
        "2024-01-30": {"1. open": "11", "2. high": "12", "3. low": "10", "4. close": "11", "5. adjusted close": "5.5", "6. volume": "200", "8. split coefficient": "2.0"},
    }
}


class TestAlphaVantage:
    def test_quote_normalization(self, fake_session, fake_response):
        session = fake_session([fake_response(200, AV_QUOTE)])
        provider = AlphaVantageProvider("secret", session=session, backoff=FAST)

        quote = provider.fetch_quote("IBM")

        assert quote.price == 150.0
        assert quote.change == 2.0
        assert quote.previous_close == 148.0
        assert quote.change_percent == pytest.approx(2.0 / 148.0)
        assert quote.volume == 3_000_000
        assert quote.latest_trading_day == "2024-01-31"
        assert quote.source == "alpha_vantage"
        params = query_of(session.calls[0])
        assert params == {"function": "GLOBAL_QUOTE", "symbol": "IBM", "apikey": "secret"}

    def test_quote_derives_previous_close(self, fake_session, fake_response):
        payload = {"Global Quote": {"05. price": "10.0", "09. change": "-1.0"}}
        provider = AlphaVantageProvider("k", session=fake_session([fake_response(200, payload)]), backoff=FAST)
        quote = provider.fetch_quote("X")
        assert quote.previous_close == 11.0
        assert quote.change_percent == pytest.approx(-1 / 11)

    def test_missing_price_raises(self, fake_session, fake_response):
        provider = AlphaVantageProvider("k", session=fake_session([fake_response(200, {"Global Quote": {}})]), backoff=FAST)
        with pytest.raises(ProviderError, match="No quote data for X"):
            provider.fetch_quote("X")

    def test_error_message_raises_provider_error(self, fake_session, fake_response):
        body = {"Error Message": "Invalid API call."}
        provider = AlphaVantageProvider("k", session=fake_session([fake_response(200, body)]), backoff=FAST)
        with pytest.raises(ProviderError, match="Invalid API call"):
            provider.fetch_quote("X")

    def test_daily_sorted_newest_first_and_truncated(self, fake_session, fake_response):
        session = fake_session([fake_response(200, AV_DAILY)])
        provider = AlphaVantageProvider("k", session=session, backoff=FAST)

        bars = provider.fetch_daily("X", days=2)

        assert [b.date for b in bars] == ["2024-01-31", "2024-01-30"]
        assert bars[1].adjusted_close == 5.5
        assert bars[1].split_coefficient == 2.0
        assert bars[0].volume == 300
        assert query_of(session.calls[0])["outputsize"] == "full"

    def test_daily_without_series_raises(self, fake_session, fake_response):
        provider = AlphaVantageProvider("k", session=fake_session([fake_response(200, {})]), backoff=FAST)
        with pytest.raises(ProviderError):
            provider.fetch_daily("X")

    def test_news_parsing(self, fake_session, fake_response):
        feed = {
            "feed": [
                {
                    "title": "IBM beats",
                    "url": "https://news.test/1",
                    "time_published": "20230914T210000",
                    "source": "Reuters",
                    "overall_sentiment_score": 0.25,
                    "ticker_sentiment": [{"ticker": "IBM"}],
                },
                {"title": "", "url": None, "time_published": "bogus"},
            ]
        }
        session = fake_session([fake_response(200, feed)])
        provider = AlphaVantageProvider("k", session=session, backoff=FAST)

        news = provider.fetch_news("IBM", limit=6)

        assert news[0].title == "IBM beats"
        assert news[0].published_at.isoformat() == "2023-09-14T21:00:00+00:00"
        assert news[0].tickers == ["IBM"]
        assert news[0].sentiment == 0.25
        assert news[1].title == "Untitled"
        params = query_of(session.calls[0])
        assert params["function"] == "NEWS_SENTIMENT"
        assert params["tickers"] == "IBM"
        assert params["sort"] == "LATEST"

    def test_top_news_uses_topics(self, fake_session, fake_response):
        session = fake_session([fake_response(200, {"feed": []})])
        provider = AlphaVantageProvider("k", session=session, backoff=FAST)
        assert provider.fetch_top_news() == []
        assert query_of(session.calls[0])["topics"] == "financial_markets,earnings"

    def test_responses_are_cached(self, fake_session, fake_response):
        session = fake_session([fake_response(200, AV_QUOTE)])
        provider = AlphaVantageProvider("k", session=session, cache=MemoryCache(), backoff=FAST)
        provider.fetch_quote("IBM")
        provider.fetch_quote("IBM")
        assert len(session.calls) == 1

    def test_parse_av_timestamp(self):
        assert parse_av_timestamp("20240102T0930").minute == 30
        assert parse_av_timestamp(None) is None
        assert parse_av_timestamp("yesterday") is None


class TestFinnhub:
    def test_quote(self, fake_session, fake_response):
        body = {"c": 105.0, "d": 5.0, "dp": 5.0, "pc": 100.0, "t": 1706745600}
        session = fake_session([fake_response(200, body)])
        provider = FinnhubProvider("tok", session=session, backoff=FAST)

        quote = provider.fetch_quote("AAPL")

        assert quote.price == 105.0
        assert quote.change_percent == pytest.approx(0.05)
        assert quote.volume == 0
        assert quote.latest_trading_day == "2024-02-01"
        assert query_of(session.calls[0]) == {"symbol": "AAPL", "token": "tok"}
        assert session.calls[0]["url"].startswith("https://finnhub.io/api/v1/quote?")

    def test_zero_price_raises(self, fake_session, fake_response):
        provider = FinnhubProvider("tok", session=fake_session([fake_response(200, {"c": 0, "d": None})]), backoff=FAST)
        with pytest.raises(ProviderError):
            provider.fetch_quote("NOPE")

    def test_candles_reversed_to_newest_first(self, fake_session, fake_response):
        body = {
            "s": "ok",
            "t": [1704153600, 1704240000],
            "o": [1, 2],
            "h": [1.5, 2.5],
            "l": [0.5, 1.5],
            "c": [1.2, 2.2],
            "v": [10, 20],
        }
        provider = FinnhubProvider("tok", session=fake_session([fake_response(200, body)]), backoff=FAST)

        bars = provider.fetch_daily("AAPL", days=30)

        assert [b.date for b in bars] == ["2024-01-03", "2024-01-02"]
        assert bars[0].adjusted_close == bars[0].close == 2.2
        assert bars[0].volume == 20

    def test_no_data_candles_raise(self, fake_session, fake_response):
        provider = FinnhubProvider("tok", session=fake_session([fake_response(200, {"s": "no_data"})]), backoff=FAST)
        with pytest.raises(ProviderError):
            provider.fetch_daily("AAPL")

    def test_news_and_non_list_payload(self, fake_session, fake_response):
        items = [{"headline": "Apple up", "url": "u", "datetime": 1704153600, "source": "CNBC", "related": "AAPL,MSFT"}]
        session = fake_session([fake_response(200, items), fake_response(200, {"error": "x"})])
        provider = FinnhubProvider("tok", session=session, backoff=FAST)

        news = provider.fetch_news("AAPL")
        assert news[0].tickers == ["AAPL", "MSFT"]
        assert news[0].source == "CNBC"
        assert provider.fetch_top_news() == []
        assert query_of(session.calls[1])["category"] == "general"


class TestAvailability:
    def test_available_only_with_key(self):
        assert AlphaVantageProvider("k").is_available()
        assert not AlphaVantageProvider(None).is_available()
        assert not FinnhubProvider("").is_available()

    def test_feature_table(self):
        provider = FinnhubProvider("k")
        assert provider.supports(Feature.NEWS)
        assert provider.supports(Feature.DAILY)
        assert not provider.supports(Feature.CRYPTO)
