from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List
from urllib.parse import urlencode

from .base import DataProvider, DailyBar, Feature, NewsItem, ProviderError, Quote, to_float, to_int

BASE_URL = "https://finnhub.io/api/v1"
NEWS_DAYS_BACK = 60


def _utc(epoch: float) -> datetime:
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


class FinnhubProvider(DataProvider):
    """
    Finnhub REST API. Quotes carry no volume and candles carry no adjusted
    close, so those fields are zero / the raw close respectively.
    """

    id = "finnhub"
    name = "Finnhub"
    FEATURES = frozenset({Feature.REALTIME, Feature.DAILY, Feature.NEWS})

    def build_url(self, path: str, params: Dict[str, str]) -> str:
        query = dict(params)
        query["token"] = self.api_key
        return f"{BASE_URL}{path}?{urlencode(query)}"

    def fetch_quote(self, symbol: str) -> Quote:
        data = self._get_json(self.build_url("/quote", {"symbol": symbol}), self.ttl.quote_ms)
        if not isinstance(data, dict) or not data or not to_float(data.get("c"), 0.0):
            raise ProviderError(f"No quote data for {symbol}")

        price = to_float(data.get("c"))
        change = to_float(data.get("d"), 0.0)
        prev_close = to_float(data.get("pc"), 0.0) or price - change
        if prev_close:
            change_percent = change / prev_close
        else:
            change_percent = to_float(data.get("dp"), 0.0) / 100

        ts = _utc(to_float(data.get("t"), time.time()))
        return Quote(
            symbol=symbol,
            price=price,
            change=change,
            change_percent=change_percent,
            volume=0,
            previous_close=prev_close,
            latest_trading_day=ts.date().isoformat(),
            timestamp=ts,
            source=self.id,
        )

    def fetch_daily(self, symbol: str, days: int = 365) -> List[DailyBar]:
        now = int(time.time())
        start = now - days * 86400
        url = self.build_url(
            "/stock/candle",
            {"symbol": symbol, "resolution": "D", "from": str(start), "to": str(now)},
        )
        data = self._get_json(url, self.ttl.daily_ms)
        if not isinstance(data, dict) or data.get("s") != "ok" or not data.get("t"):
            raise ProviderError(f"No daily data for {symbol}")

        bars: List[DailyBar] = []
        for i in reversed(range(len(data["t"]))):
            close = to_float(data["c"][i])
            bars.append(
                DailyBar(
                    date=_utc(data["t"][i]).date().isoformat(),
                    open=to_float(data["o"][i]),
                    high=to_float(data["h"][i]),
                    low=to_float(data["l"][i]),
                    close=close,
                    adjusted_close=close,
                    volume=to_int(data["v"][i]),
                )
            )
        return bars

    def _parse_news(self, data: Any, limit: int) -> List[NewsItem]:
        if not isinstance(data, list):
            return []
        return [
            NewsItem(
                title=item.get("headline") or "Untitled",
                url=item.get("url") or "",
                published_at=_utc(to_float(item.get("datetime"), time.time())),
                source=item.get("source") or self.name,
                tickers=[t for t in (item.get("related") or "").split(",") if t],
            )
            for item in data[:limit]
        ]

    def fetch_news(self, symbol: str, limit: int = 6) -> List[NewsItem]:
        now = datetime.now(timezone.utc)
        start = now - timedelta(days=NEWS_DAYS_BACK)
        url = self.build_url(
            "/company-news",
            {"symbol": symbol, "from": start.date().isoformat(), "to": now.date().isoformat()},
        )
        return self._parse_news(self._get_json(url, self.ttl.news_ms), limit)

    def fetch_top_news(self, limit: int = 10) -> List[NewsItem]:
        url = self.build_url("/news", {"category": "general"})
        return self._parse_news(self._get_json(url, self.ttl.news_ms), limit)
