"""Tests for RSI, SMA and MACD on chronological bars."""

from __future__ import annotations

import math

import pytest

from fetch_quote.utils.indicators import (
    ChronologicalBars,
    IndicatorConfig,
    calculate_ema,
    calculate_indicators,
    calculate_macd,
    calculate_macd_history,
    calculate_rsi,
    calculate_rsi_history,
    calculate_sma,
    calculate_sma_history,
    calculate_smas,
    detect_sma_cross,
    round2,
)


@pytest.fixture
def chrono(bars_factory):
    def build(closes):
        return ChronologicalBars.from_provider(bars_factory(closes))

    return build


class TestChronologicalBars:
    def test_from_provider_reverses_newest_first(self, bars_factory):
        bars = ChronologicalBars.from_provider(bars_factory([1, 2, 3]))
        assert bars.closes.tolist() == [1, 2, 3]
        assert len(bars.without_last()) == 2

    def test_direct_construction_rejected(self, bars_factory):
        with pytest.raises(TypeError):
            ChronologicalBars(bars_factory([1, 2]))

    def test_plain_lists_rejected_by_indicators(self, bars_factory):
        with pytest.raises(TypeError):
            calculate_rsi(bars_factory(list(range(30))))
        with pytest.raises(TypeError):
            calculate_sma(bars_factory([1, 2, 3]), 2)


class TestRSI:
    def test_needs_period_plus_one_bars(self, chrono):
        assert calculate_rsi(chrono(list(range(14)))) is None
        assert calculate_rsi(chrono(list(range(15)))) is not None

    def test_only_gains_is_overbought(self, chrono):
        rsi = calculate_rsi(chrono([float(i) for i in range(1, 31)]))
        assert rsi.value == 100
        assert rsi.interpretation == "overbought"

    def test_only_losses_is_oversold(self, chrono):
        rsi = calculate_rsi(chrono([float(i) for i in range(30, 0, -1)]))
        assert rsi.value == 0
        assert rsi.interpretation == "oversold"

    def test_value_in_range_and_rounded(self, chrono):
        closes = [44, 44.3, 44.1, 44.5, 43.9, 44.8, 45.1, 44.7, 45.3, 45.6, 45.2, 46.0, 45.7, 46.2, 46.1, 45.8]
        rsi = calculate_rsi(chrono(closes))
        assert 0 <= rsi.value <= 100
        assert rsi.value == round2(rsi.value)

    def test_custom_thresholds(self, chrono):
        closes = [10, 11, 10, 11, 10, 11, 10, 11, 10, 11, 10, 11, 10, 11, 10, 11]
        rsi = calculate_rsi(chrono(closes), overbought=40, oversold=20)
        assert rsi.interpretation == "overbought"

    def test_history_length(self, chrono):
        closes = [float(i % 7) for i in range(40)]
        assert len(calculate_rsi_history(chrono(closes), 14)) == 40 - 14
        assert calculate_rsi_history(chrono(closes[:10]), 14) == []


class TestSMA:
    def test_constant_series_is_at(self, chrono):
        sma = calculate_sma(chrono([50.0] * 60), 50)
        assert sma.value == 50
        assert sma.price_relation == "at"

    def test_relation_above_and_below(self, chrono):
        assert calculate_sma(chrono([1, 2, 3, 4, 10]), 5).price_relation == "above"
        assert calculate_sma(chrono([10, 9, 8, 7, 1]), 5).price_relation == "below"

    def test_insufficient_data(self, chrono):
        assert calculate_sma(chrono([1, 2]), 3) is None
        assert calculate_smas(chrono([1, 2, 3]), [2, 5]).keys() == {2}

    def test_history_aligned_with_nan_prefix(self, chrono):
        history = calculate_sma_history(chrono([1, 2, 3, 4]), 2)
        assert math.isnan(history[0])
        assert history[1:] == [1.5, 2.5, 3.5]

    def test_golden_cross(self, chrono):
        assert detect_sma_cross(chrono([100.0] * 200 + [200.0])) == "golden"

    def test_death_cross(self, chrono):
        assert detect_sma_cross(chrono([100.0] * 200 + [50.0])) == "death"

    def test_no_cross(self, chrono):
        closes = [float(i) for i in range(1, 203)]
        assert detect_sma_cross(chrono(closes)) == "none"
        assert detect_sma_cross(chrono(closes[:200])) is None


class TestMACD:
    def test_ema_seeded_with_sma(self):
        assert calculate_ema([1, 2, 3, 4], 2) == pytest.approx([1.5, 2.5, 3.5])
        assert calculate_ema([1], 2) == []

    def test_needs_slow_plus_signal_minus_one_bars(self, chrono):
        closes = [float(i) for i in range(33)]
        assert calculate_macd(chrono(closes)) is None
        assert calculate_macd(chrono(closes + [33.0])) is not None

    def test_invalid_periods(self, chrono):
        closes = [float(i) for i in range(60)]
        assert calculate_macd(chrono(closes), fast=26, slow=12) is None
        assert calculate_macd(chrono(closes), fast=12, slow=12) is None

    def test_histogram_built_from_rounded_lines(self, chrono):
        closes = [100 + 5 * math.sin(i / 3) for i in range(80)]
        macd = calculate_macd(chrono(closes))
        assert macd.histogram == round2(macd.macd_line - macd.signal_line)
        assert macd.trend in ("bullish", "bearish", "neutral")
        assert (macd.fast, macd.slow, macd.signal) == (12, 26, 9)

    def test_history_lengths(self, chrono):
        closes = [float(i) for i in range(50)]
        history = calculate_macd_history(chrono(closes))
        assert len(history["macd"]) == 50 - 26 + 1
        assert len(history["signal"]) == len(history["macd"]) - 9 + 1
        assert len(history["histogram"]) == len(history["signal"])


class TestMissingCloses:
    NAN = float("nan")

    def test_rsi_is_none_once_a_close_is_missing(self, chrono):
        closes = [float(i % 7) for i in range(40)]
        closes[20] = self.NAN
        assert calculate_rsi(chrono(closes)) is None
        assert all(math.isnan(v) for v in calculate_rsi_history(chrono(closes))[-10:])

    def test_sma_window_with_gap_is_none(self, chrono):
        assert calculate_sma(chrono([10, self.NAN, 30]), 3) is None
        assert calculate_sma(chrono([self.NAN, 10, 30]), 2).value == 20

    def test_macd_is_none_instead_of_raising(self, chrono):
        closes = [100 + math.sin(i / 3) for i in range(60)]
        closes[20] = self.NAN
        assert calculate_macd(chrono(closes)) is None

    def test_calculate_indicators_survives(self, chrono):
        closes = [float(100 + i % 3) for i in range(60)]
        closes[-3] = self.NAN
        output = calculate_indicators(chrono(closes), IndicatorConfig(sma_periods=[2, 50]))
        assert output.rsi is None
        assert output.macd is None
        assert [s.period for s in output.sma] == [2]


class TestCalculateIndicators:
    def test_crossover_tagged_on_short_sma(self, chrono):
        output = calculate_indicators(chrono([100.0] * 200 + [200.0]))
        by_period = {s.period: s for s in output.sma}
        assert by_period[50].crossover == "golden"
        assert by_period[200].crossover is None
        assert output.rsi is not None
        assert output.macd is not None

    def test_disabled_and_short_data(self, chrono):
        config = IndicatorConfig(rsi_enabled=False, macd_enabled=False, sma_periods=[20])
        output = calculate_indicators(chrono([1.0] * 10), config)
        assert output.rsi is None
        assert output.macd is None
        assert output.sma == []


class TestRound2:
    def test_half_rounds_up(self):
        assert round2(0.125) == 0.13
        assert round2(2.5) == 2.5
        assert round2(-0.126) == -0.13

    def test_non_finite_passes_through(self):
        assert math.isnan(round2(float("nan")))
        assert round2(float("inf")) == float("inf")
