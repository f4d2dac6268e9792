from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List
from urllib.parse import urlencode

from .base import DataProvider, DailyBar, Feature, NewsItem, ProviderError, Quote, to_float, to_int

BASE_URL = "https://www.alphavantage.co/query"
NEWS_DAYS_BACK = 60
TOP_NEWS_DAYS_BACK = 3


def parse_av_timestamp(value: str | None) -> datetime | None:
    """Parse Alpha Vantage news timestamps such as ``20230914T210000`` (UTC)."""
    if not value:
        return None
    for fmt in ("%Y%m%dT%H%M%S", "%Y%m%dT%H%M"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def _av_time_from(days_back: int) -> str:
    start = datetime.now(timezone.utc) - timedelta(days=days_back)
    return start.strftime("%Y%m%dT%H%M")


class AlphaVantageProvider(DataProvider):
    """
    Alpha Vantage query API. Quotes come from GLOBAL_QUOTE, bars from
    TIME_SERIES_DAILY_ADJUSTED and headlines from NEWS_SENTIMENT.
    """

    id = "alpha_vantage"
    name = "Alpha Vantage"
    FEATURES = frozenset({Feature.REALTIME, Feature.DAILY, Feature.NEWS})

    def build_url(self, params: Dict[str, str]) -> str:
        query = dict(params)
        query["apikey"] = self.api_key
        return f"{BASE_URL}?{urlencode(query)}"

    def _fetch(self, params: Dict[str, str], ttl_ms: int) -> Any:
        data = self._get_json(self.build_url(params), ttl_ms)
        if isinstance(data, dict) and data.get("Error Message"):
            raise ProviderError(f"Alpha Vantage error: {data['Error Message']}")
        return data

    def fetch_quote(self, symbol: str) -> Quote:
        data = self._fetch({"function": "GLOBAL_QUOTE", "symbol": symbol}, self.ttl.quote_ms)
        gq = data.get("Global Quote") if isinstance(data, dict) else None
        if not gq or not gq.get("05. price"):
            raise ProviderError(f"No quote data for {symbol}")

        price = to_float(gq.get("05. price"))
        change = to_float(gq.get("09. change"), 0.0)
        prev_close = to_float(gq.get("08. previous close"), 0.0)
        if not prev_close or math.isnan(prev_close):
            prev_close = price - change
        change_percent = change / prev_close if prev_close else 0.0

        return Quote(
            symbol=gq.get("01. symbol") or symbol,
            price=price,
            change=change,
            change_percent=change_percent,
            volume=to_int(gq.get("06. volume")),
            previous_close=prev_close,
            latest_trading_day=gq.get("07. latest trading day") or "",
            timestamp=datetime.now(timezone.utc),
            source=self.id,
        )

    def fetch_daily(self, symbol: str, days: int = 365) -> List[DailyBar]:
        data = self._fetch(
            {"function": "TIME_SERIES_DAILY_ADJUSTED", "symbol": symbol, "outputsize": "full"},
            self.ttl.daily_ms,
        )
        series = data.get("Time Series (Daily)") if isinstance(data, dict) else None
        if not series:
            raise ProviderError(f"No daily data for {symbol}")

        bars: List[DailyBar] = []
        for date in sorted(series.keys(), reverse=True)[:days]:
            row = series[date]
            close = to_float(row.get("4. close"))
            bars.append(
                DailyBar(
                    date=date,
                    open=to_float(row.get("1. open")),
                    high=to_float(row.get("2. high")),
                    low=to_float(row.get("3. low")),
                    close=close,
                    adjusted_close=to_float(row.get("5. adjusted close"), close),
                    volume=to_int(row.get("6. volume")),
                    split_coefficient=to_float(row.get("8. split coefficient"), 1.0),
                )
            )
        return bars

    def _parse_feed(self, data: Any, limit: int) -> List[NewsItem]:
        feed = data.get("feed") if isinstance(data, dict) else None
        items: List[NewsItem] = []
        for item in (feed or [])[:limit]:
            tickers = [t.get("ticker") for t in item.get("ticker_sentiment") or [] if t.get("ticker")]
            sentiment = item.get("overall_sentiment_score")
            items.append(
                NewsItem(
                    title=item.get("title") or "Untitled",
                    url=item.get("url") or "",
                    published_at=parse_av_timestamp(item.get("time_published")) or datetime.now(timezone.utc),
                    source=item.get("source") or self.name,
                    tickers=tickers,
                    sentiment=float(sentiment) if sentiment is not None else None,
                )
            )
        return items

    def fetch_news(self, symbol: str, limit: int = 6) -> List[NewsItem]:
        data = self._fetch(
            {
                "function": "NEWS_SENTIMENT",
                "tickers": symbol,
                "limit": str(limit),
                "sort": "LATEST",
                "time_from": _av_time_from(NEWS_DAYS_BACK),
            },
            self.ttl.news_ms,
        )
        return self._parse_feed(data, limit)

    def fetch_top_news(self, limit: int = 10) -> List[NewsItem]:
        data = self._fetch(
            {
                "function": "NEWS_SENTIMENT",
                "topics": "financial_markets,earnings",
                "limit": str(limit),
                "sort": "LATEST",
                "time_from": _av_time_from(TOP_NEWS_DAYS_BACK),
            },
            self.ttl.news_ms,
        )
        return self._parse_feed(data, limit)
