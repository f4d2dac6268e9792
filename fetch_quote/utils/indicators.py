from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..providers.base import DailyBar

RSI_PERIOD = 14
RSI_OVERBOUGHT = 70.0
RSI_OVERSOLD = 30.0
SMA_PERIODS = (50, 200)
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9


def round2(value: float) -> float:
    """Round half up to 2 decimals (Python's round() is half-to-even). NaN and inf pass through."""
    if not math.isfinite(value):
        return value
    return math.floor(value * 100 + 0.5) / 100


class ChronologicalBars:
    """
    Daily bars ordered oldest first.

    Providers hand out bars newest first; indicators need the opposite. Build
    one with ``from_provider`` so the ordering is fixed in exactly one place.
    """

    __slots__ = ("_bars", "_closes")

    def __init__(self, bars: Sequence[DailyBar], _token: object = None):
        if _token is not _BUILD_TOKEN:
            raise TypeError("Use ChronologicalBars.from_provider() to build chronological bars")
        self._bars = tuple(bars)
        self._closes = pd.Series([b.close for b in self._bars], dtype=float)

    @classmethod
    def from_provider(cls, bars: Iterable[DailyBar]) -> "ChronologicalBars":
        return cls(sorted(bars, key=lambda b: b.date), _BUILD_TOKEN)

    @property
    def bars(self) -> tuple:
        return self._bars

    @property
    def closes(self) -> pd.Series:
        return self._closes

    def without_last(self) -> "ChronologicalBars":
        return ChronologicalBars(self._bars[:-1], _BUILD_TOKEN)

    def __len__(self) -> int:
        return len(self._bars)


_BUILD_TOKEN = object()


def _require(bars) -> ChronologicalBars:
    if not isinstance(bars, ChronologicalBars):
        raise TypeError("Indicators need ChronologicalBars (oldest first); wrap provider bars with ChronologicalBars.from_provider()")
    return bars


@dataclass(frozen=True)
class RSIResult:
    period: int
    value: float
    interpretation: str  # oversold | neutral | overbought


@dataclass(frozen=True)
class SMAResult:
    period: int
    value: float
    price_relation: str  # above | below | at
    crossover: Optional[str] = None  # golden | death


@dataclass(frozen=True)
class MACDResult:
    macd_line: float
    signal_line: float
    histogram: float
    trend: str  # bullish | bearish | neutral
    fast: int = MACD_FAST
    slow: int = MACD_SLOW
    signal: int = MACD_SIGNAL


@dataclass
class IndicatorConfig:
    rsi_enabled: bool = True
    rsi_period: int = RSI_PERIOD
    rsi_overbought: float = RSI_OVERBOUGHT
    rsi_oversold: float = RSI_OVERSOLD
    sma_enabled: bool = True
    sma_periods: List[int] = field(default_factory=lambda: list(SMA_PERIODS))
    macd_enabled: bool = True
    macd_fast: int = MACD_FAST
    macd_slow: int = MACD_SLOW
    macd_signal: int = MACD_SIGNAL


@dataclass(frozen=True)
class IndicatorOutput:
    computed_at: datetime
    rsi: Optional[RSIResult] = None
    sma: List[SMAResult] = field(default_factory=list)
    macd: Optional[MACDResult] = None


# --- RSI -----------------------------------------------------------------
def _wilder_averages(closes: pd.Series, period: int):
    """Yield (avg_gain, avg_loss) after the seed window and after every later bar."""
    deltas = closes.diff().to_numpy()[1:]
    gains = np.clip(deltas, 0, None)
    losses = np.clip(-deltas, 0, None)
    avg_gain = float(gains[:period].mean())
    avg_loss = float(losses[:period].mean())
    yield avg_gain, avg_loss
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        yield avg_gain, avg_loss


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - 100 / (1 + rs)


def calculate_rsi(
    bars: ChronologicalBars,
    period: int = RSI_PERIOD,
    overbought: float = RSI_OVERBOUGHT,
    oversold: float = RSI_OVERSOLD,
) -> RSIResult | None:
    """Wilder RSI of the latest close. None until there are period + 1 bars."""
    bars = _require(bars)
    if period < 1 or len(bars) < period + 1:
        return None

    avg_gain = avg_loss = 0.0
    for avg_gain, avg_loss in _wilder_averages(bars.closes, period):
        pass
    value = _rsi_value(avg_gain, avg_loss)
    if not math.isfinite(value):
        return None

    if value <= oversold:
        interpretation = "oversold"
    elif value >= overbought:
        interpretation = "overbought"
    else:
        interpretation = "neutral"
    return RSIResult(period=period, value=round2(value), interpretation=interpretation)


def calculate_rsi_history(bars: ChronologicalBars, period: int = RSI_PERIOD) -> List[float]:
    """RSI for every bar from index ``period`` onward."""
    bars = _require(bars)
    if period < 1 or len(bars) < period + 1:
        return []
    return [round2(_rsi_value(g, l)) for g, l in _wilder_averages(bars.closes, period)]


# --- SMA -----------------------------------------------------------------
def calculate_sma(bars: ChronologicalBars, period: int) -> SMAResult | None:
    bars = _require(bars)
    if period < 1 or len(bars) < period:
        return None

    closes = bars.closes
    value = float(closes.iloc[-period:].mean(skipna=False))
    price = float(closes.iloc[-1])
    if not (math.isfinite(value) and math.isfinite(price)):
        return None
    if math.isclose(price, value, rel_tol=1e-12, abs_tol=1e-12):
        relation = "at"
    elif price > value:
        relation = "above"
    else:
        relation = "below"
    return SMAResult(period=period, value=round2(value), price_relation=relation)


def calculate_smas(bars: ChronologicalBars, periods: Sequence[int] = SMA_PERIODS) -> Dict[int, SMAResult]:
    results: Dict[int, SMAResult] = {}
    for period in periods:
        sma = calculate_sma(bars, period)
        if sma is not None:
            results[period] = sma
    return results


def calculate_sma_history(bars: ChronologicalBars, period: int) -> List[float]:
    """Rolling SMA aligned with the input; NaN until the window fills."""
    bars = _require(bars)
    rolling = bars.closes.rolling(period).mean()
    return [round2(v) if not math.isnan(v) else float("nan") for v in rolling.tolist()]


def detect_sma_cross(bars: ChronologicalBars, short_period: int = 50, long_period: int = 200) -> str | None:
    """golden / death when the short SMA crossed the long one on the latest bar, else none."""
    bars = _require(bars)
    if len(bars) < long_period + 1:
        return None

    prev = bars.without_last()
    current_short = calculate_sma(bars, short_period)
    current_long = calculate_sma(bars, long_period)
    prev_short = calculate_sma(prev, short_period)
    prev_long = calculate_sma(prev, long_period)
    if not (current_short and current_long and prev_short and prev_long):
        return None

    current_diff = current_short.value - current_long.value
    prev_diff = prev_short.value - prev_long.value
    if prev_diff <= 0 and current_diff > 0:
        return "golden"
    if prev_diff >= 0 and current_diff < 0:
        return "death"
    return "none"


# --- MACD ----------------------------------------------------------------
def calculate_ema(values: Sequence[float], period: int) -> List[float]:
    """EMA seeded with the SMA of the first ``period`` values."""
    values = list(values)
    if period < 1 or len(values) < period:
        return []
    multiplier = 2 / (period + 1)
    ema = [sum(values[:period]) / period]
    for value in values[period:]:
        ema.append((value - ema[-1]) * multiplier + ema[-1])
    return ema


def _macd_series(closes: List[float], fast: int, slow: int, signal: int):
    fast_ema = calculate_ema(closes, fast)
    slow_ema = calculate_ema(closes, slow)
    aligned_fast = fast_ema[slow - fast:]
    macd_line = [f - s for f, s in zip(aligned_fast, slow_ema)]
    signal_line = calculate_ema(macd_line, signal)
    return macd_line, signal_line


def calculate_macd(
    bars: ChronologicalBars,
    fast: int = MACD_FAST,
    slow: int = MACD_SLOW,
    signal: int = MACD_SIGNAL,
) -> MACDResult | None:
    bars = _require(bars)
    if fast < 1 or slow <= fast or signal < 1 or len(bars) < slow + signal - 1:
        return None

    macd_line, signal_line = _macd_series(bars.closes.tolist(), fast, slow, signal)
    if not signal_line:
        return None

    current_macd = macd_line[-1]
    current_signal = signal_line[-1]
    if not (math.isfinite(current_macd) and math.isfinite(current_signal)):
        return None
    current_hist = current_macd - current_signal
    if len(macd_line) > 1 and len(signal_line) > 1:
        prev_hist = macd_line[-2] - signal_line[-2]
    else:
        prev_hist = 0.0

    if prev_hist <= 0 and current_hist > 0:
        trend = "bullish"
    elif prev_hist >= 0 and current_hist < 0:
        trend = "bearish"
    else:
        trend = "neutral"

    macd_rounded = round2(current_macd)
    signal_rounded = round2(current_signal)
    return MACDResult(
        macd_line=macd_rounded,
        signal_line=signal_rounded,
        histogram=round2(macd_rounded - signal_rounded),
        trend=trend,
        fast=fast,
        slow=slow,
        signal=signal,
    )


def calculate_macd_history(
    bars: ChronologicalBars,
    fast: int = MACD_FAST,
    slow: int = MACD_SLOW,
    signal: int = MACD_SIGNAL,
) -> Dict[str, List[float]]:
    bars = _require(bars)
    if fast < 1 or slow <= fast or len(bars) < slow:
        return {"macd": [], "signal": [], "histogram": []}

    macd_line, signal_line = _macd_series(bars.closes.tolist(), fast, slow, signal)
    offset = signal - 1
    histogram = [macd_line[i + offset] - s for i, s in enumerate(signal_line)]
    return {
        "macd": [round2(v) for v in macd_line],
        "signal": [round2(v) for v in signal_line],
        "histogram": [round2(v) for v in histogram],
    }


def calculate_indicators(bars: ChronologicalBars, config: IndicatorConfig | None = None) -> IndicatorOutput:
    cfg = config or IndicatorConfig()
    bars = _require(bars)

    rsi = None
    if cfg.rsi_enabled:
        rsi = calculate_rsi(bars, cfg.rsi_period, cfg.rsi_overbought, cfg.rsi_oversold)

    sma_results: List[SMAResult] = []
    if cfg.sma_enabled:
        smas = calculate_smas(bars, cfg.sma_periods)
        cross = None
        if 50 in cfg.sma_periods and 200 in cfg.sma_periods:
            cross = detect_sma_cross(bars)
        for period, sma in smas.items():
            if period == 50 and cross and cross != "none":
                sma = SMAResult(period=sma.period, value=sma.value, price_relation=sma.price_relation, crossover=cross)
            sma_results.append(sma)

    macd = None
    if cfg.macd_enabled:
        macd = calculate_macd(bars, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal)

    return IndicatorOutput(computed_at=datetime.now(timezone.utc), rsi=rsi, sma=sma_results, macd=macd)
