from __future__ import annotations

import json
import secrets
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from ..providers.base import Quote

PORTFOLIO_VERSION = "1.0"
DEFAULT_PORTFOLIO_PATH = Path("~/.fetch_quote/portfolio.json")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Position:
    symbol: str
    shares: float
    cost_basis: float
    avg_cost_per_share: float
    added_at: str
    last_updated: str


@dataclass
class Transaction:
    id: str
    symbol: str
    type: str  # buy | sell
    shares: float
    price_per_share: float
    date: str
    notes: Optional[str] = None


@dataclass
class Portfolio:
    version: str = PORTFOLIO_VERSION
    positions: List[Position] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    last_updated: str = field(default_factory=_now)

    def get_position(self, symbol: str) -> Position | None:
        symbol = symbol.upper()
        return next((p for p in self.positions if p.symbol == symbol), None)

    def symbols(self) -> List[str]:
        return [p.symbol for p in self.positions]

    def transactions_for(self, symbol: str | None = None) -> List[Transaction]:
        if symbol is None:
            return list(self.transactions)
        symbol = symbol.upper()
        return [t for t in self.transactions if t.symbol == symbol]


@dataclass
class PositionValue:
    position: Position
    current_price: float
    current_value: float
    gain_loss: float
    gain_loss_percent: float
    day_change: float
    day_change_percent: float


@dataclass
class PortfolioSummary:
    positions: List[PositionValue]
    total_value: float
    total_cost: float
    total_gain_loss: float
    total_gain_loss_percent: float
    day_change: float
    day_change_percent: float


def _txn_id() -> str:
    return f"txn_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def add_position(portfolio: Portfolio, symbol: str, shares: float, price_per_share: float, notes: str | None = None) -> Portfolio:
    """Record a buy and fold it into the position at a weighted average cost."""
    if shares <= 0 or price_per_share < 0:
        raise ValueError("Shares must be positive and price non-negative")
    now = _now()
    symbol = symbol.upper()
    portfolio.transactions.append(
        Transaction(id=_txn_id(), symbol=symbol, type="buy", shares=shares, price_per_share=price_per_share, date=now, notes=notes)
    )

    existing = portfolio.get_position(symbol)
    if existing is not None:
        existing.cost_basis += shares * price_per_share
        existing.shares += shares
        existing.avg_cost_per_share = existing.cost_basis / existing.shares
        existing.last_updated = now
    else:
        portfolio.positions.append(
            Position(
                symbol=symbol,
                shares=shares,
                cost_basis=shares * price_per_share,
                avg_cost_per_share=price_per_share,
                added_at=now,
                last_updated=now,
            )
        )
    portfolio.last_updated = now
    return portfolio


def remove_position(portfolio: Portfolio, symbol: str, shares: float, price_per_share: float, notes: str | None = None) -> Portfolio:
    """Record a sell. Cost basis shrinks pro rata; selling everything drops the position."""
    symbol = symbol.upper()
    existing = portfolio.get_position(symbol)
    if existing is None:
        raise ValueError(f"Position not found: {symbol}")
    if shares <= 0:
        raise ValueError("Shares must be positive")
    if shares > existing.shares:
        raise ValueError(f"Cannot sell {shares:g} shares of {symbol}, only {existing.shares:g} owned")

    now = _now()
    portfolio.transactions.append(
        Transaction(id=_txn_id(), symbol=symbol, type="sell", shares=shares, price_per_share=price_per_share, date=now, notes=notes)
    )
    remaining = existing.shares - shares
    if remaining == 0:
        portfolio.positions = [p for p in portfolio.positions if p.symbol != symbol]
    else:
        existing.cost_basis -= existing.cost_basis * (shares / existing.shares)
        existing.shares = remaining
        existing.last_updated = now
    portfolio.last_updated = now
    return portfolio


def calculate_position_value(position: Position, quote: Quote) -> PositionValue:
    current_value = position.shares * quote.price
    gain_loss = current_value - position.cost_basis
    previous_value = position.shares * quote.previous_close
    day_change = current_value - previous_value
    return PositionValue(
        position=position,
        current_price=quote.price,
        current_value=current_value,
        gain_loss=gain_loss,
        gain_loss_percent=gain_loss / position.cost_basis * 100 if position.cost_basis > 0 else 0.0,
        day_change=day_change,
        day_change_percent=day_change / previous_value * 100 if previous_value > 0 else 0.0,
    )


def calculate_portfolio_summary(portfolio: Portfolio, quotes: Mapping[str, Quote]) -> PortfolioSummary:
    values: List[PositionValue] = []
    total_value = total_cost = previous_total = 0.0
    for position in portfolio.positions:
        quote = quotes.get(position.symbol)
        total_cost += position.cost_basis
        if quote is None:
            # unpriced positions count as fully lost until a quote arrives
            values.append(
                PositionValue(
                    position=position,
                    current_price=0.0,
                    current_value=0.0,
                    gain_loss=-position.cost_basis,
                    gain_loss_percent=-100.0,
                    day_change=0.0,
                    day_change_percent=0.0,
                )
            )
            continue
        value = calculate_position_value(position, quote)
        values.append(value)
        total_value += value.current_value
        previous_total += position.shares * quote.previous_close

    total_gain = total_value - total_cost
    day_change = total_value - previous_total
    return PortfolioSummary(
        positions=values,
        total_value=total_value,
        total_cost=total_cost,
        total_gain_loss=total_gain,
        total_gain_loss_percent=total_gain / total_cost * 100 if total_cost > 0 else 0.0,
        day_change=day_change,
        day_change_percent=day_change / previous_total * 100 if previous_total > 0 else 0.0,
    )


def calculate_allocation(values: List[PositionValue]) -> Dict[str, float]:
    total = sum(v.current_value for v in values)
    return {v.position.symbol: (v.current_value / total * 100 if total > 0 else 0.0) for v in values}


def calculate_realized_gains(portfolio: Portfolio) -> float:
    """Realized P&L over all sells, matching each against the oldest open buy lots."""
    realized = 0.0
    lots: Dict[str, List[List[float]]] = {}
    for txn in portfolio.transactions:
        open_lots = lots.setdefault(txn.symbol, [])
        if txn.type == "buy":
            open_lots.append([txn.shares, txn.price_per_share])
            continue
        to_sell = txn.shares
        while to_sell > 0 and open_lots:
            lot = open_lots[0]
            matched = min(to_sell, lot[0])
            realized += matched * (txn.price_per_share - lot[1])
            to_sell -= matched
            lot[0] -= matched
            if lot[0] == 0:
                open_lots.pop(0)
    return realized


class PortfolioStore:
    def __init__(self, path: str | Path = DEFAULT_PORTFOLIO_PATH):
        self.path = Path(path).expanduser()

    def load(self) -> Portfolio:
        if not self.path.exists():
            return Portfolio()
        with self.path.open() as f:
            raw = json.load(f) or {}
        return Portfolio(
            version=raw.get("version") or PORTFOLIO_VERSION,
            positions=[Position(**p) for p in raw.get("positions", [])],
            transactions=[Transaction(**t) for t in raw.get("transactions", [])],
            created_at=raw.get("created_at") or _now(),
            last_updated=raw.get("last_updated") or _now(),
        )

    def save(self, portfolio: Portfolio) -> None:
        portfolio.last_updated = _now()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w") as f:
            json.dump(asdict(portfolio), f, indent=2)
