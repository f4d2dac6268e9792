from __future__ import annotations

import abc
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, FrozenSet, List, Optional

import requests

from ..utils.cache import ResponseCache
from ..utils.http import BackoffConfig, CancelToken, RetryInfo, cached_fetch_json


class ProviderError(RuntimeError):
    pass


class Feature(str, Enum):
    REALTIME = "realtime"
    DAILY = "daily"
    INTRADAY = "intraday"
    NEWS = "news"
    FUNDAMENTALS = "fundamentals"
    CRYPTO = "crypto"


@dataclass(frozen=True)
class Quote:
    symbol: str
    price: float
    change: float
    change_percent: float  # decimal fraction, 0.0123 == 1.23%
    volume: int
    previous_close: float
    latest_trading_day: str
    timestamp: datetime
    source: str


@dataclass(frozen=True)
class DailyBar:
    date: str  # YYYY-MM-DD
    open: float
    high: float
    low: float
    close: float
    adjusted_close: float
    volume: int
    split_coefficient: Optional[float] = None


@dataclass(frozen=True)
class NewsItem:
    title: str
    url: str
    published_at: datetime
    source: str
    tickers: List[str] = field(default_factory=list)
    sentiment: Optional[float] = None


@dataclass
class CacheTTL:
    quote_ms: int = 60_000
    daily_ms: int = 6 * 60 * 60 * 1000
    news_ms: int = 10 * 60 * 1000


def to_float(value, default: float = float("nan")) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def to_int(value, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


class DataProvider(abc.ABC):
    """
    A market-data source. Subclasses normalize upstream payloads into
    Quote / DailyBar / NewsItem records.
    """

    id: str = ""
    name: str = ""
    FEATURES: FrozenSet[Feature] = frozenset()

    def __init__(
        self,
        api_key: str | None,
        session: requests.Session | None = None,
        cache: ResponseCache | None = None,
        ttl: CacheTTL | None = None,
        backoff: BackoffConfig | None = None,
        on_retry: Callable[[RetryInfo], None] | None = None,
        timeout: float = 10.0,
        cancel: CancelToken | None = None,
    ):
        self.api_key = api_key or ""
        self.session = session or requests.Session()
        self.cache = cache
        self.ttl = ttl or CacheTTL()
        self.backoff = backoff
        self.on_retry = on_retry
        self.timeout = timeout
        self.cancel = cancel

    def supports(self, feature: Feature) -> bool:
        return feature in self.FEATURES

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _get_json(self, url: str, ttl_ms: int):
        return cached_fetch_json(
            url,
            self.cache,
            ttl_ms,
            backoff=self.backoff,
            on_retry=self.on_retry,
            session=self.session,
            timeout=self.timeout,
            cancel=self.cancel,
        )

    @abc.abstractmethod
    def fetch_quote(self, symbol: str) -> Quote:
        """
        Return the latest Quote for ``symbol``.
        Raise ProviderError when the upstream payload has no usable price.
        """

    @abc.abstractmethod
    def fetch_daily(self, symbol: str, days: int = 365) -> List[DailyBar]:
        """
        Return up to ``days`` daily bars, newest first.
        """

    def fetch_news(self, symbol: str, limit: int = 6) -> List[NewsItem]:
        """
        Optional: recent headlines for ``symbol``.
        Default implementation returns an empty list.
        """
        return []

    def fetch_top_news(self, limit: int = 10) -> List[NewsItem]:
        return []
