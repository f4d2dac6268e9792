from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..providers.base import DailyBar

TRADING_DAYS_WINDOW = 270
VOLUME_AVG_DAYS = 30
DEFAULT_BUY_PCT = 7.0
DEFAULT_SELL_PCT = 8.0


@dataclass(frozen=True)
class Metrics:
    high_52_week: float
    avg_volume_30_day: float


@dataclass(frozen=True)
class TradingZones:
    buy_zone_low: float
    buy_zone_high: float
    sell_threshold: float


def _finite(x) -> bool:
    return x is not None and math.isfinite(x)


def compute_metrics(
    bars: Sequence[DailyBar],
    window: int = TRADING_DAYS_WINDOW,
    volume_window_days: int = VOLUME_AVG_DAYS,
) -> Metrics:
    """
    Split-adjusted 52-week high and average volume from newest-first bars.

    Each high is scaled by adjusted_close / close so that highs printed before
    a split line up with today's share count. Missing data yields NaN.
    """
    recent = list(bars[:window])
    if not recent:
        return Metrics(high_52_week=float("nan"), avg_volume_30_day=float("nan"))

    highs = np.array([b.high for b in recent], dtype=float)
    closes = np.array([b.close for b in recent], dtype=float)
    adjusted = np.array([b.adjusted_close for b in recent], dtype=float)

    with np.errstate(divide="ignore", invalid="ignore"):
        usable = np.isfinite(adjusted) & np.isfinite(closes) & (closes != 0)
        multiplier = np.where(usable, adjusted / np.where(closes == 0, 1, closes), 1.0)
        adj_highs = highs * multiplier
    adj_highs = adj_highs[np.isfinite(adj_highs)]
    high = float(adj_highs.max()) if adj_highs.size else float("nan")

    volumes = np.array([b.volume for b in recent[:volume_window_days]], dtype=float)
    volumes = volumes[np.isfinite(volumes)]
    avg_volume = float(volumes.mean()) if volumes.size else float("nan")

    return Metrics(high_52_week=high, avg_volume_30_day=avg_volume)


def calculate_zones(high_52_week: float, buy_pct: float = DEFAULT_BUY_PCT, sell_pct: float = DEFAULT_SELL_PCT) -> TradingZones:
    return TradingZones(
        buy_zone_low=high_52_week * (1 - buy_pct / 100),
        buy_zone_high=high_52_week,
        sell_threshold=high_52_week * (1 - sell_pct / 100),
    )


def determine_signal(
    price: float,
    high_52_week: float,
    buy_pct: float = DEFAULT_BUY_PCT,
    sell_pct: float = DEFAULT_SELL_PCT,
) -> Optional[str]:
    """BUY / SELL / HOLD, or None when the inputs can't support a decision. SELL wins overlaps."""
    if not _finite(price) or not _finite(high_52_week) or high_52_week <= 0:
        return None

    zones = calculate_zones(high_52_week, buy_pct, sell_pct)
    if price <= zones.sell_threshold:
        return "SELL"
    if zones.buy_zone_low <= price <= zones.buy_zone_high:
        return "BUY"
    return "HOLD"


def volume_comparison(today_volume: float, avg_volume: float) -> float:
    if not _finite(today_volume) or not _finite(avg_volume) or avg_volume == 0:
        return float("nan")
    return (today_volume - avg_volume) / avg_volume


def extract_price_history(bars: Sequence[DailyBar], days: int = 90) -> List[Dict[str, float | str]]:
    """Most recent ``days`` bars as chronological {date, price} points for charting."""
    history = []
    for bar in reversed(list(bars[:days])):
        price = bar.adjusted_close or bar.close
        if _finite(price):
            history.append({"date": bar.date, "price": price})
    return history
