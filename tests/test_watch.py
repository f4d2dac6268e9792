"""Tests for watch mode refreshes and market-hours helpers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import pytz

from fetch_quote.providers.base import Quote
from fetch_quote.scanners import watch
from fetch_quote.scanners.watch import WatchMode, format_watch_change, format_watch_header
from fetch_quote.utils.http import CancelToken
from fetch_quote.utils.time_utils import is_market_open, is_weekend, market_status

EASTERN = pytz.timezone("America/New_York")


@dataclass
class Snapshot:
    quote: Quote
    signal: str = "HOLD"


def price_feed(quote_factory, prices):
    """fetch callback returning successive prices per symbol."""
    remaining = {sym: list(seq) for sym, seq in prices.items()}

    def fetch(symbol):
        seq = remaining[symbol]
        if not seq:
            raise RuntimeError(f"no more prices for {symbol}")
        return Snapshot(quote=quote_factory(symbol, seq.pop(0)))

    return fetch


class TestWatchMode:
    def test_changes_tracked_between_updates(self, quote_factory):
        mode = WatchMode()
        fetch = price_feed(quote_factory, {"AAPL": [100.0, 110.0]})

        first = mode.run_update(["AAPL"], fetch)
        assert first[0].price_change is None

        second = mode.run_update(["AAPL"], fetch)
        assert second[0].price_change == 10.0
        assert second[0].price_change_percent == 10.0
        assert second[0].previous_quote.price == 100.0
        assert mode.state.update_count == 2

    def test_errors_reported_and_recorded(self, quote_factory):
        mode = WatchMode()
        failures = []
        fetch = price_feed(quote_factory, {"AAPL": [], "MSFT": [50.0]})

        updates = mode.run_update(["AAPL", "MSFT"], fetch, on_error=lambda s, e: failures.append(s))

        assert [u.symbol for u in updates] == ["MSFT"]
        assert failures == ["AAPL"]
        assert "AAPL" in mode.state.errors

    def test_run_respects_max_updates(self, quote_factory):
        seen = []
        fetch = price_feed(quote_factory, {"AAPL": [1.0, 2.0, 3.0]})
        WatchMode().run(["AAPL"], fetch, seen.append, interval_seconds=0, max_updates=1)
        assert len(seen) == 1

    def test_closed_market_skips_refresh(self, quote_factory, monkeypatch):
        cancel = CancelToken()

        def closed(tz_name):
            cancel.cancel()
            return False

        monkeypatch.setattr(watch, "is_market_open", closed)
        seen = []
        WatchMode(cancel).run(["AAPL"], price_feed(quote_factory, {"AAPL": [1.0]}), seen.append, market_hours_only=True)
        assert seen == []

    def test_stop(self):
        mode = WatchMode()
        mode.stop()
        assert mode.cancel.cancelled


class TestWatchFormatting:
    def test_header(self):
        header = format_watch_header(3, datetime(2024, 1, 2, 9, 45, 0), 60)
        assert header == "Watch Mode | Update #3 | Last: 09:45:00 | Interval: 60s | Ctrl+C to exit"
        assert "Last: N/A" in format_watch_header(0, None, 15)

    def test_change(self):
        assert format_watch_change(1.5, 1.0) == "↑ +$1.50 (+1.00%)"
        assert format_watch_change(-2.0, -1.25) == "↓ -$2.00 (-1.25%)"
        assert format_watch_change(0.0, 0.0) == "→ +$0.00 (+0.00%)"
        assert format_watch_change(None, None) == ""


class TestMarketHours:
    def test_regular_session(self):
        assert is_market_open(now=EASTERN.localize(datetime(2024, 1, 2, 10, 0)))
        assert not is_market_open(now=EASTERN.localize(datetime(2024, 1, 2, 9, 0)))
        assert not is_market_open(now=EASTERN.localize(datetime(2024, 1, 2, 16, 30)))

    def test_other_timezones_are_converted(self):
        london = pytz.timezone("Europe/London")
        assert is_market_open("Europe/London", london.localize(datetime(2024, 1, 2, 15, 0)))

    def test_weekend(self):
        saturday = EASTERN.localize(datetime(2024, 1, 6, 12, 0))
        assert is_weekend(now=saturday)
        assert market_status(now=saturday) == "weekend"
        assert market_status(now=EASTERN.localize(datetime(2024, 1, 2, 20, 0))) == "closed"
        assert market_status(now=EASTERN.localize(datetime(2024, 1, 2, 11, 0))) == "open"
