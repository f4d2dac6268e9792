from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..providers.base import Quote
from ..utils.http import CancelToken
from ..utils.time_utils import MARKET_TIMEZONE, is_market_open

MIN_INTERVAL_SECONDS = 15


@dataclass
class WatchUpdate:
    symbol: str
    result: Any  # whatever the fetch callback returns; must expose .quote
    previous_quote: Optional[Quote] = None
    price_change: Optional[float] = None
    price_change_percent: Optional[float] = None


@dataclass
class WatchState:
    update_count: int = 0
    last_update: Optional[datetime] = None
    previous_quotes: Dict[str, Quote] = field(default_factory=dict)
    errors: Dict[str, Exception] = field(default_factory=dict)


class WatchMode:
    """Refreshes a fixed symbol list on an interval until cancelled."""

    def __init__(self, cancel: CancelToken | None = None):
        self.cancel = cancel or CancelToken()
        self.state = WatchState()

    def run_update(
        self,
        symbols: Sequence[str],
        fetch: Callable[[str], Any],
        on_error: Callable[[str, Exception], None] | None = None,
    ) -> List[WatchUpdate]:
        updates: List[WatchUpdate] = []
        for symbol in symbols:
            if self.cancel.cancelled:
                break
            try:
                result = fetch(symbol)
            except Exception as exc:
                self.state.errors[symbol] = exc
                if on_error is not None:
                    on_error(symbol, exc)
                else:
                    logging.warning("Watch update failed for %s: %s", symbol, exc)
                continue

            quote = result.quote
            previous = self.state.previous_quotes.get(symbol)
            update = WatchUpdate(symbol=symbol, result=result, previous_quote=previous)
            if previous is not None:
                update.price_change = quote.price - previous.price
                update.price_change_percent = (
                    (quote.price - previous.price) / previous.price * 100 if previous.price > 0 else 0.0
                )
            updates.append(update)
            self.state.previous_quotes[symbol] = quote
            self.state.errors.pop(symbol, None)

        self.state.update_count += 1
        self.state.last_update = datetime.now()
        return updates

    def run(
        self,
        symbols: Sequence[str],
        fetch: Callable[[str], Any],
        on_update: Callable[[List[WatchUpdate]], None],
        interval_seconds: float = 60,
        on_error: Callable[[str, Exception], None] | None = None,
        market_hours_only: bool = False,
        market_timezone: str = MARKET_TIMEZONE,
        max_updates: int | None = None,
    ) -> None:
        interval = max(MIN_INTERVAL_SECONDS, interval_seconds)
        while not self.cancel.cancelled:
            if market_hours_only and not is_market_open(market_timezone):
                logging.info("Outside market hours; skipping refresh.")
            else:
                on_update(self.run_update(symbols, fetch, on_error))
                if max_updates is not None and self.state.update_count >= max_updates:
                    break
            if self.cancel.wait(interval):
                break

    def stop(self) -> None:
        self.cancel.cancel()


def format_watch_header(update_count: int, last_update: datetime | None, interval: float) -> str:
    time_str = last_update.strftime("%H:%M:%S") if last_update else "N/A"
    return f"Watch Mode | Update #{update_count} | Last: {time_str} | Interval: {interval:g}s | Ctrl+C to exit"


def format_watch_change(change: float | None, change_percent: float | None) -> str:
    if change is None or change_percent is None:
        return ""
    arrow = "↑" if change > 0 else "↓" if change < 0 else "→"
    sign = "+" if change >= 0 else "-"
    return f"{arrow} {sign}${abs(change):.2f} ({sign}{abs(change_percent):.2f}%)"
