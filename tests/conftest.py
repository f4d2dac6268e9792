"""Shared test fixtures for fetch-quote."""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone
from typing import Any, List

import pytest
import requests

from fetch_quote.providers.base import DailyBar, DataProvider, Feature, NewsItem, Quote


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None):
        self.status_code = status_code
        if body is None:
            self.text = ""
        elif isinstance(body, str):
            self.text = body
        else:
            self.text = json.dumps(body)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def raise_for_status(self) -> None:
        if not self.ok:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    """Replays queued responses (or raises queued exceptions) and records every request."""

    def __init__(self, responses: List[Any] | None = None):
        self.responses = list(responses or [])
        self.calls: List[dict] = []

    def _next(self):
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, timeout=None, params=None, headers=None):
        self.calls.append({"method": "GET", "url": url, "params": params, "headers": headers})
        return self._next()

    def post(self, url, data=None, json=None, headers=None, timeout=None):
        self.calls.append({"method": "POST", "url": url, "data": data, "json": json, "headers": headers})
        return self._next()


class StubProvider(DataProvider):
    """In-memory provider; ``error`` makes every call raise."""

    FEATURES = frozenset({Feature.REALTIME, Feature.DAILY, Feature.NEWS})

    def __init__(self, provider_id: str, price: float = 100.0, error: Exception | None = None,
                 api_key: str = "key", bars: List[DailyBar] | None = None, news: List[NewsItem] | None = None):
        super().__init__(api_key)
        self.id = provider_id
        self.name = provider_id
        self.price = price
        self.error = error
        self.bars = bars or []
        self.news = news or []
        self.calls: List[str] = []

    def fetch_quote(self, symbol: str) -> Quote:
        self.calls.append(f"quote:{symbol}")
        if self.error:
            raise self.error
        return make_quote(symbol, self.price, source=self.id)

    def fetch_daily(self, symbol: str, days: int = 365) -> List[DailyBar]:
        self.calls.append(f"daily:{symbol}")
        if self.error:
            raise self.error
        return self.bars[:days]

    def fetch_news(self, symbol: str, limit: int = 6) -> List[NewsItem]:
        self.calls.append(f"news:{symbol}")
        if self.error:
            raise self.error
        return self.news[:limit]


def make_quote(symbol: str = "TEST", price: float = 100.0, change: float = 1.0, volume: int = 1_000_000,
               source: str = "stub") -> Quote:
    prev = price - change
    return Quote(
        symbol=symbol,
        price=price,
        change=change,
        change_percent=change / prev if prev else 0.0,
        volume=volume,
        previous_close=prev,
        latest_trading_day="2024-01-31",
        timestamp=datetime(2024, 1, 31, 21, 0, tzinfo=timezone.utc),
        source=source,
    )


def make_bars(closes: List[float], start: date = date(2023, 1, 2), volume: int = 1_000) -> List[DailyBar]:
    """Bars from chronological closes, returned newest first like a provider would."""
    bars = [
        DailyBar(
            date=(start + timedelta(days=i)).isoformat(),
            open=c,
            high=c,
            low=c,
            close=c,
            adjusted_close=c,
            volume=volume,
        )
        for i, c in enumerate(closes)
    ]
    return list(reversed(bars))


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def stub_provider():
    return StubProvider


@pytest.fixture
def quote_factory():
    return make_quote


@pytest.fixture
def bars_factory():
    return make_bars


@pytest.fixture
def no_sleep(monkeypatch):
    """Record backoff waits instead of sleeping."""
    slept: List[float] = []
    monkeypatch.setattr("fetch_quote.utils.http.time.sleep", lambda s: slept.append(s))
    return slept
