from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from ..providers.base import DailyBar, NewsItem, Quote
from ..providers.registry import ProviderRegistry
from ..utils.analysis import (
    DEFAULT_BUY_PCT,
    DEFAULT_SELL_PCT,
    Metrics,
    TradingZones,
    calculate_zones,
    compute_metrics,
    determine_signal,
    extract_price_history,
    volume_comparison,
)
from ..utils.http import CancelToken, map_limit
from ..utils.indicators import ChronologicalBars, IndicatorConfig, IndicatorOutput, calculate_indicators

DAILY_DAYS = 365
CHART_DAYS = 180
NEWS_LIMIT = 6


@dataclass
class ScanOptions:
    buy_pct: float = DEFAULT_BUY_PCT
    sell_pct: float = DEFAULT_SELL_PCT
    daily_days: int = DAILY_DAYS
    include_news: bool = False
    news_limit: int = NEWS_LIMIT
    include_chart: bool = False
    chart_days: int = CHART_DAYS
    indicators: Optional[IndicatorConfig] = None  # None disables indicators
    preferred_source: Optional[str] = None
    concurrency: int = 2


@dataclass
class TickerResult:
    symbol: str
    quote: Quote
    metrics: Metrics
    zones: TradingZones
    signal: Optional[str]
    today_volume: float
    volume_vs_avg: float
    indicators: Optional[IndicatorOutput] = None
    news: List[NewsItem] = field(default_factory=list)
    price_history: List[Dict] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class BatchResult:
    generated_at: datetime
    tickers: List[TickerResult]
    errors: List[Dict[str, str]] = field(default_factory=list)


def _today_volume(quote: Quote, bars: Sequence[DailyBar]) -> float:
    # Finnhub quotes carry no volume; fall back to the latest bar
    if quote.volume:
        return float(quote.volume)
    return float(bars[0].volume) if bars else float("nan")


class QuoteScanner:
    """
    Single, ordered per-symbol pipeline: quote, daily bars, metrics, zones,
    signal, volume, then the optional indicators, news and chart history.
    """

    def __init__(self, registry: ProviderRegistry, options: ScanOptions | None = None, cancel: CancelToken | None = None):
        self.registry = registry
        self.options = options or ScanOptions()
        self.cancel = cancel

    def analyze_symbol(self, symbol: str) -> TickerResult:
        opts = self.options
        quote = self.registry.fetch_quote(symbol, preferred=opts.preferred_source)
        bars = self.registry.fetch_daily(symbol, opts.daily_days, preferred=opts.preferred_source)

        metrics = compute_metrics(bars)
        zones = calculate_zones(metrics.high_52_week, opts.buy_pct, opts.sell_pct)
        signal = determine_signal(quote.price, metrics.high_52_week, opts.buy_pct, opts.sell_pct)
        today_volume = _today_volume(quote, bars)

        indicators = None
        if opts.indicators is not None:
            indicators = calculate_indicators(ChronologicalBars.from_provider(bars), opts.indicators)

        news: List[NewsItem] = []
        if opts.include_news:
            news = self.registry.fetch_news(symbol, opts.news_limit, preferred=opts.preferred_source)

        history = extract_price_history(bars, opts.chart_days) if opts.include_chart else []

        logging.debug("Analyzed %s: price=%.2f signal=%s", symbol, quote.price, signal)
        return TickerResult(
            symbol=symbol,
            quote=quote,
            metrics=metrics,
            zones=zones,
            signal=signal,
            today_volume=today_volume,
            volume_vs_avg=volume_comparison(today_volume, metrics.avg_volume_30_day),
            indicators=indicators,
            news=news,
            price_history=history,
        )

    def scan(self, symbols: Sequence[str]) -> BatchResult:
        """Analyze every symbol with bounded concurrency; one failure never sinks the batch."""
        outcomes = map_limit(symbols, self.options.concurrency, self.analyze_symbol, cancel=self.cancel)
        tickers: List[TickerResult] = []
        errors: List[Dict[str, str]] = []
        for outcome in outcomes:
            if outcome.ok:
                tickers.append(outcome.value)
            else:
                logging.warning("Failed to analyze %s: %s", outcome.item, outcome.error)
                errors.append({"symbol": outcome.item, "error": str(outcome.error)})
        return BatchResult(generated_at=datetime.now(timezone.utc), tickers=tickers, errors=errors)
