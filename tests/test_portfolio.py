"""Tests for portfolio bookkeeping and valuation."""

from __future__ import annotations

import pytest

from fetch_quote.scanners.portfolio import (
    Portfolio,
    PortfolioStore,
    add_position,
    calculate_allocation,
    calculate_portfolio_summary,
    calculate_position_value,
    calculate_realized_gains,
    remove_position,
)


@pytest.fixture
def portfolio():
    p = Portfolio()
    add_position(p, "aapl", 10, 100.0)
    add_position(p, "AAPL", 10, 200.0)
    add_position(p, "MSFT", 5, 300.0)
    return p


class TestPositions:
    def test_buys_average_cost(self, portfolio):
        aapl = portfolio.get_position("aapl")
        assert aapl.shares == 20
        assert aapl.cost_basis == 3_000
        assert aapl.avg_cost_per_share == 150
        assert portfolio.symbols() == ["AAPL", "MSFT"]
        assert [t.type for t in portfolio.transactions_for("AAPL")] == ["buy", "buy"]

    def test_invalid_buy(self):
        with pytest.raises(ValueError):
            add_position(Portfolio(), "AAPL", 0, 10)

    def test_partial_sell_keeps_average(self, portfolio):
        remove_position(portfolio, "AAPL", 5, 250.0)
        aapl = portfolio.get_position("AAPL")
        assert aapl.shares == 15
        assert aapl.cost_basis == pytest.approx(2_250)
        assert aapl.avg_cost_per_share == 150

    def test_full_sell_drops_position(self, portfolio):
        remove_position(portfolio, "MSFT", 5, 310.0)
        assert portfolio.get_position("MSFT") is None
        assert portfolio.transactions_for("MSFT")[-1].type == "sell"

    def test_sell_errors(self, portfolio):
        with pytest.raises(ValueError, match="not found"):
            remove_position(portfolio, "TSLA", 1, 1)
        with pytest.raises(ValueError, match="only 5 owned"):
            remove_position(portfolio, "MSFT", 6, 1)
        with pytest.raises(ValueError):
            remove_position(portfolio, "MSFT", 0, 1)

    def test_realized_gains_match_oldest_lots(self, portfolio):
        remove_position(portfolio, "AAPL", 15, 210.0)
        # 10 @ 100 then 5 @ 200
        assert calculate_realized_gains(portfolio) == pytest.approx(10 * 110 + 5 * 10)


class TestValuation:
    def test_position_value(self, portfolio, quote_factory):
        value = calculate_position_value(portfolio.get_position("MSFT"), quote_factory("MSFT", 330.0, change=30.0))
        assert value.current_value == 1_650
        assert value.gain_loss == 150
        assert value.gain_loss_percent == pytest.approx(10.0)
        assert value.day_change == 150
        assert value.day_change_percent == pytest.approx(10.0)

    def test_summary_and_allocation(self, portfolio, quote_factory):
        quotes = {"AAPL": quote_factory("AAPL", 150.0, change=0.0), "MSFT": quote_factory("MSFT", 300.0, change=0.0)}
        summary = calculate_portfolio_summary(portfolio, quotes)
        assert summary.total_value == 4_500
        assert summary.total_cost == 4_500
        assert summary.total_gain_loss == 0
        assert summary.day_change == 0

        allocation = calculate_allocation(summary.positions)
        assert allocation["AAPL"] == pytest.approx(3_000 / 4_500 * 100)
        assert sum(allocation.values()) == pytest.approx(100)

    def test_unpriced_position_counts_as_total_loss(self, portfolio, quote_factory):
        summary = calculate_portfolio_summary(portfolio, {"AAPL": quote_factory("AAPL", 150.0)})
        msft = next(v for v in summary.positions if v.position.symbol == "MSFT")
        assert msft.current_value == 0
        assert msft.gain_loss_percent == -100
        assert summary.total_gain_loss == -1_500

    def test_empty_allocation(self):
        assert calculate_allocation([]) == {}


class TestPortfolioStore:
    def test_missing_file_gives_empty_portfolio(self, tmp_path):
        assert PortfolioStore(tmp_path / "none.json").load().positions == []

    def test_save_and_load(self, tmp_path, portfolio):
        store = PortfolioStore(tmp_path / "nested" / "portfolio.json")
        store.save(portfolio)
        loaded = store.load()
        assert loaded.symbols() == ["AAPL", "MSFT"]
        assert loaded.get_position("AAPL").avg_cost_per_share == 150
        assert len(loaded.transactions) == 3
        assert loaded.version == "1.0"
