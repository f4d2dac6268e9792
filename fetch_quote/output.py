from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Sequence

from .providers.base import NewsItem
from .scanners.alert_monitor import format_condition
from .scanners.portfolio import PortfolioSummary
from .scanners.quote_scanner import BatchResult, TickerResult
from .scanners.watch import WatchUpdate, format_watch_change
from .utils.format import PLACEHOLDER, fmt_date, fmt_int, fmt_money, fmt_percent, truncate
from .utils.indicators import IndicatorOutput
from .utils.state_store import Alert

RED = "\x1b[31m"
GREEN = "\x1b[32m"
YELLOW = "\x1b[33m"
CYAN = "\x1b[36m"
BOLD = "\x1b[1m"
DIM = "\x1b[2m"
RESET = "\x1b[0m"

SIGNAL_LABELS = {"BUY": "→ Buy zone", "SELL": "→ Sell", "HOLD": "→ Hold"}


# --- JSON ----------------------------------------------------------------
def _clean(value: Any) -> Any:
    """Make a structure JSON-safe: NaN/inf -> None, datetimes -> ISO strings."""
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, datetime):
        return fmt_date(value)
    if isinstance(value, Mapping):
        return {k: _clean(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_clean(v) for v in value]
    return value


def indicators_to_dict(ind: IndicatorOutput) -> Dict[str, Any]:
    out: Dict[str, Any] = {"computedAt": ind.computed_at}
    if ind.rsi is not None:
        out["rsi"] = {"period": ind.rsi.period, "value": ind.rsi.value, "interpretation": ind.rsi.interpretation}
    if ind.sma:
        smas = []
        for sma in ind.sma:
            item = {"period": sma.period, "value": sma.value, "priceRelation": sma.price_relation}
            if sma.crossover:
                item["crossover"] = sma.crossover
            smas.append(item)
        out["sma"] = smas
    if ind.macd is not None:
        out["macd"] = {
            "macdLine": ind.macd.macd_line,
            "signalLine": ind.macd.signal_line,
            "histogram": ind.macd.histogram,
            "trend": ind.macd.trend,
        }
    return out


def news_to_dict(item: NewsItem) -> Dict[str, Any]:
    return {
        "title": item.title,
        "url": item.url,
        "publishedAt": item.published_at,
        "source": item.source,
        "tickers": list(item.tickers),
    }


def ticker_to_dict(result: TickerResult) -> Dict[str, Any]:
    q = result.quote
    out: Dict[str, Any] = {
        "symbol": result.symbol,
        "timestamp": result.timestamp,
        "quote": {
            "price": q.price,
            "change": q.change,
            "changePercent": q.change_percent,
            "volume": q.volume,
            "previousClose": q.previous_close,
            "latestTradingDay": q.latest_trading_day,
            "source": q.source,
        },
        "analysis": {
            "high52Week": result.metrics.high_52_week,
            "avgVolume30Day": result.metrics.avg_volume_30_day,
            "volumeVsAvg": result.volume_vs_avg,
            "buyZone": {"low": result.zones.buy_zone_low, "high": result.zones.buy_zone_high},
            "sellThreshold": result.zones.sell_threshold,
            "signal": result.signal,
        },
    }
    if result.indicators is not None:
        out["indicators"] = indicators_to_dict(result.indicators)
    if result.news:
        out["news"] = [news_to_dict(n) for n in result.news]
    if result.price_history:
        out["chart"] = result.price_history
    return out


class JsonFormatter:
    def __init__(self, pretty: bool = False):
        self.pretty = pretty

    def dumps(self, data: Any) -> str:
        return json.dumps(_clean(data), indent=2 if self.pretty else None, allow_nan=False)

    def format_ticker(self, result: TickerResult) -> str:
        return self.dumps(ticker_to_dict(result))

    def format_batch(self, batch: BatchResult) -> str:
        return self.dumps(
            {
                "generatedAt": batch.generated_at,
                "tickers": [ticker_to_dict(t) for t in batch.tickers],
                "errors": batch.errors,
            }
        )

    def format_news(self, news: Sequence[NewsItem], title: str = "News") -> str:
        return self.dumps({"title": title, "generatedAt": datetime.now(timezone.utc), "articles": [news_to_dict(n) for n in news]})

    def format_portfolio(self, summary: PortfolioSummary) -> str:
        return self.dumps(
            {
                "generatedAt": datetime.now(timezone.utc),
                "summary": {
                    "totalValue": summary.total_value,
                    "totalCost": summary.total_cost,
                    "totalGainLoss": summary.total_gain_loss,
                    "totalGainLossPercent": summary.total_gain_loss_percent,
                    "dayChange": summary.day_change,
                    "dayChangePercent": summary.day_change_percent,
                },
                "positions": [
                    {
                        "symbol": v.position.symbol,
                        "shares": v.position.shares,
                        "avgCostPerShare": v.position.avg_cost_per_share,
                        "costBasis": v.position.cost_basis,
                        "currentPrice": v.current_price,
                        "currentValue": v.current_value,
                        "gainLoss": v.gain_loss,
                        "gainLossPercent": v.gain_loss_percent,
                        "dayChange": v.day_change,
                        "dayChangePercent": v.day_change_percent,
                    }
                    for v in summary.positions
                ],
            }
        )

    def format_alerts(self, alerts: Sequence[Alert]) -> str:
        return self.dumps({"alerts": [a.to_dict() for a in alerts]})

    def format_watch(self, updates: Sequence[WatchUpdate], header: str = "") -> str:
        return self.dumps(
            {
                "generatedAt": datetime.now(timezone.utc),
                "updates": [
                    dict(ticker_to_dict(u.result), priceChange=u.price_change, priceChangePercent=u.price_change_percent)
                    for u in updates
                ],
            }
        )


# --- Console -------------------------------------------------------------
class ConsoleFormatter:
    def __init__(self, color: bool = True):
        self.color = color

    def _c(self, code: str, text: str) -> str:
        return f"{code}{text}{RESET}" if self.color else text

    def _signal(self, signal: str | None) -> str:
        if signal is None:
            return PLACEHOLDER
        code = {"BUY": GREEN, "SELL": RED}.get(signal, YELLOW)
        return self._c(code, SIGNAL_LABELS[signal])

    def _indicator_lines(self, ind: IndicatorOutput) -> List[str]:
        lines = []
        if ind.rsi is not None:
            interp = "" if ind.rsi.interpretation == "neutral" else f" ({ind.rsi.interpretation})"
            lines.append(f"  RSI({ind.rsi.period}): {ind.rsi.value:.2f}{interp}")
        for sma in ind.sma:
            lines.append(f"  SMA({sma.period}): {fmt_money(sma.value)} (price {sma.price_relation})")
            if sma.crossover:
                label = "Golden Cross" if sma.crossover == "golden" else "Death Cross"
                lines.append(f"    ^ {label} detected")
        if ind.macd is not None:
            m = ind.macd
            trend = "" if m.trend == "neutral" else f" ({m.trend})"
            sign = "+" if m.histogram > 0 else ""
            lines.append(f"  MACD: {m.macd_line:.2f} / {m.signal_line:.2f} / {sign}{m.histogram:.2f}{trend}")
        return lines

    def format_ticker(self, result: TickerResult) -> str:
        q = result.quote
        up = q.change >= 0
        price = self._c(GREEN if up else RED, fmt_money(q.price))
        sign = "+" if up else ""
        lines = [
            self._c(BOLD, f"{result.symbol} @ {q.latest_trading_day or PLACEHOLDER}:"),
            f" Price: {price} ({sign}{q.change:.2f} {fmt_percent(q.change_percent)})  [{q.source}]",
        ]
        vol_code = GREEN if (result.volume_vs_avg or 0) >= 0 else RED
        lines.append(
            f" Volume: {fmt_int(result.today_volume)}  Avg30: {fmt_int(result.metrics.avg_volume_30_day)}  "
            f"{self._c(vol_code, fmt_percent(result.volume_vs_avg))}"
        )
        z = result.zones
        lines.append(f" 52wk High: {fmt_money(result.metrics.high_52_week)}")
        lines.append(f" BuyZone : {fmt_money(z.buy_zone_low)} - {fmt_money(z.buy_zone_high)}")
        lines.append(f" Sell<   : {fmt_money(z.sell_threshold)}")
        lines.append(f" {self._signal(result.signal)}")

        if result.indicators is not None:
            ind_lines = self._indicator_lines(result.indicators)
            if ind_lines:
                lines.append(self._c(BOLD, " Indicators:"))
                lines.extend(ind_lines)
        if result.news:
            lines.append(self._c(BOLD, f" News for {result.symbol}:"))
            lines.extend(f"  - {truncate(n.title, 100)}" for n in result.news)
        if result.price_history:
            lines.append(self.format_sparkline(result.price_history))
        lines.append("-" * 60)
        return "\n".join(lines)

    def format_sparkline(self, history: Sequence[Mapping[str, Any]], width: int = 60) -> str:
        blocks = "▁▂▃▄▅▆▇█"
        prices = [p["price"] for p in history]
        if not prices:
            return ""
        step = max(1, math.ceil(len(prices) / width))
        sampled = prices[::step]
        low, high = min(sampled), max(sampled)
        span = high - low or 1.0
        line = "".join(blocks[int((p - low) / span * (len(blocks) - 1))] for p in sampled)
        return f" {history[0]['date']} {line} {history[-1]['date']}"

    def format_batch(self, batch: BatchResult) -> str:
        parts = [self.format_ticker(t) for t in batch.tickers]
        parts.extend(self._c(RED, f"Error {e['symbol']}: {e['error']}") for e in batch.errors)
        return "\n".join(parts)

    def format_news(self, news: Sequence[NewsItem], title: str = "News") -> str:
        if not news:
            return f"No {title.lower()} found."
        lines = [self._c(BOLD, f"\n{title}:")]
        for n in news:
            when = n.published_at.strftime("%Y-%m-%d %H:%M")
            lines.append(f" - {truncate(n.title, 100)} {self._c(DIM, f'({n.source}, {when})')}")
        return "\n".join(lines)

    def format_portfolio(self, summary: PortfolioSummary) -> str:
        if not summary.positions:
            return "Portfolio is empty."
        lines = [self._c(BOLD, f"{'Symbol':<8}{'Shares':>10}{'Avg Cost':>12}{'Price':>12}{'Value':>14}{'P&L':>14}{'P&L %':>10}")]
        for v in summary.positions:
            code = GREEN if v.gain_loss >= 0 else RED
            lines.append(
                f"{v.position.symbol:<8}{v.position.shares:>10g}{fmt_money(v.position.avg_cost_per_share):>12}"
                f"{fmt_money(v.current_price):>12}{fmt_money(v.current_value):>14}"
                + self._c(code, f"{fmt_money(v.gain_loss):>14}{fmt_percent(v.gain_loss_percent / 100):>10}")
            )
        total_code = GREEN if summary.total_gain_loss >= 0 else RED
        lines.append("-" * 80)
        lines.append(
            f"Total value {fmt_money(summary.total_value)}  cost {fmt_money(summary.total_cost)}  "
            + self._c(total_code, f"P&L {fmt_money(summary.total_gain_loss)} ({fmt_percent(summary.total_gain_loss_percent / 100)})")
            + f"  day {fmt_money(summary.day_change)} ({fmt_percent(summary.day_change_percent / 100)})"
        )
        return "\n".join(lines)

    def format_alerts(self, alerts: Sequence[Alert]) -> str:
        if not alerts:
            return "No alerts configured."
        lines = []
        for a in alerts:
            state = "on " if a.enabled else "off"
            last = f" last {a.last_triggered}" if a.last_triggered else ""
            lines.append(f"[{state}] {a.id}  {a.symbol:<6} {format_condition(a.condition)}{last}")
        return "\n".join(lines)

    def format_watch(self, updates: Sequence[WatchUpdate], header: str = "") -> str:
        lines = [self._c(CYAN, header)] if header else []
        for u in updates:
            q = u.result.quote
            change = format_watch_change(u.price_change, u.price_change_percent)
            lines.append(f"{u.symbol:<8}{fmt_money(q.price):>12} {fmt_percent(q.change_percent):>9} {self._signal(u.result.signal)} {change}")
        return "\n".join(lines)
