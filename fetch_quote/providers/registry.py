from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, TypeVar

from .base import DailyBar, DataProvider, Feature, NewsItem, ProviderError, Quote

T = TypeVar("T")


class NewsStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    FATAL = "fatal"


@dataclass
class NewsResult:
    status: NewsStatus
    items: List[NewsItem] = field(default_factory=list)
    error: Optional[Exception] = None


class ProviderRegistry:
    """
    Holds the configured providers and runs each request through them in
    preference order until one succeeds.
    """

    def __init__(self):
        self._providers: Dict[str, DataProvider] = {}
        self.default_id: str | None = None
        self.fallback_id: str | None = None

    def register(self, provider: DataProvider) -> None:
        self._providers[provider.id] = provider

    def set_default(self, provider_id: str) -> None:
        if provider_id not in self._providers:
            raise ProviderError(f"Unknown provider: {provider_id}")
        self.default_id = provider_id

    def set_fallback(self, provider_id: str) -> None:
        if provider_id not in self._providers:
            raise ProviderError(f"Unknown provider: {provider_id}")
        self.fallback_id = provider_id

    def get(self, provider_id: str) -> DataProvider | None:
        return self._providers.get(provider_id)

    def get_default(self) -> DataProvider | None:
        """The configured default, else the first registered provider."""
        if self.default_id:
            return self._providers.get(self.default_id)
        return next(iter(self._providers.values()), None)

    def all(self) -> List[DataProvider]:
        return list(self._providers.values())

    def by_feature(self, feature: Feature) -> List[DataProvider]:
        return [p for p in self._providers.values() if p.supports(feature)]

    def provider_order(self, preferred: str | None = None) -> List[DataProvider]:
        ids: List[str] = []
        if preferred and preferred in self._providers:
            ids.append(preferred)
        if self.default_id and self.default_id not in ids:
            ids.append(self.default_id)
        if self.fallback_id and self.fallback_id not in ids:
            ids.append(self.fallback_id)
        for pid in self._providers:
            if pid not in ids:
                ids.append(pid)
        return [self._providers[pid] for pid in ids if pid in self._providers]

    def _attempt(
        self,
        what: str,
        call: Callable[[DataProvider], T],
        preferred: str | None,
        feature: Feature | None = None,
    ) -> T:
        last_error: Exception | None = None
        for provider in self.provider_order(preferred):
            if feature is not None and not provider.supports(feature):
                continue
            if not provider.is_available():
                continue
            try:
                return call(provider)
            except Exception as exc:
                last_error = exc
                logging.warning("Provider %s failed for %s: %s", provider.id, what, exc)
        if last_error is not None:
            raise last_error
        raise ProviderError(f"All providers failed for {what}")

    def fetch_quote(self, symbol: str, preferred: str | None = None) -> Quote:
        return self._attempt(f"quote {symbol}", lambda p: p.fetch_quote(symbol), preferred)

    def fetch_daily(self, symbol: str, days: int | None = None, preferred: str | None = None) -> List[DailyBar]:
        def call(p: DataProvider) -> List[DailyBar]:
            return p.fetch_daily(symbol, days) if days is not None else p.fetch_daily(symbol)

        return self._attempt(f"daily {symbol}", call, preferred)

    def _news_result(self, what: str, call: Callable[[DataProvider], List[NewsItem]], preferred: str | None) -> NewsResult:
        try:
            items = self._attempt(what, call, preferred, feature=Feature.NEWS)
        except Exception as exc:
            return NewsResult(status=NewsStatus.FATAL, error=exc)
        if not items:
            return NewsResult(status=NewsStatus.EMPTY)
        return NewsResult(status=NewsStatus.OK, items=list(items))

    def fetch_news_result(self, symbol: str, limit: int | None = None, preferred: str | None = None) -> NewsResult:
        def call(p: DataProvider) -> List[NewsItem]:
            return p.fetch_news(symbol, limit) if limit is not None else p.fetch_news(symbol)

        return self._news_result(f"news {symbol}", call, preferred)

    def fetch_top_news_result(self, limit: int | None = None, preferred: str | None = None) -> NewsResult:
        def call(p: DataProvider) -> List[NewsItem]:
            return p.fetch_top_news(limit) if limit is not None else p.fetch_top_news()

        return self._news_result("top news", call, preferred)

    def fetch_news(self, symbol: str, limit: int | None = None, preferred: str | None = None) -> List[NewsItem]:
        """News is best-effort: any failure yields an empty list."""
        return self.fetch_news_result(symbol, limit, preferred).items

    def fetch_top_news(self, limit: int | None = None, preferred: str | None = None) -> List[NewsItem]:
        return self.fetch_top_news_result(limit, preferred).items
