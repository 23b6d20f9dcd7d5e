"""Paper trading engine that simulates fills with slippage and market impact."""

from __future__ import annotations

import copy
import random
import uuid
from dataclasses import dataclass, replace
from typing import Optional

from .models import (
    ExecutionReport,
    Level,
    OrderBookSnapshot,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
)

BPS = 10000.0
FILL_LIQUIDITY_FRACTION = 0.9
EXECUTION_LATENCY = 1000
FLAT_EPSILON = 1e-9
MIN_LIQUIDITY = 0.001


@dataclass
class Position:
    """Net position in one symbol."""

    symbol: str
    quantity: float = 0.0
    avg_price: float = 0.0
    unrealized_pnl: float = 0.0


class PaperTradingEngine:
    """Fills orders against the latest order book for each symbol."""

    def __init__(
        self,
        slippage_bps: float,
        market_impact_bps: float,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.slippage_bps = slippage_bps
        self.market_impact_bps = market_impact_bps
        self._rng = rng if rng is not None else random.Random()
        self._positions: dict[str, Position] = {}
        self._order_books: dict[str, OrderBookSnapshot] = {}

    def update_market_data(self, book: OrderBookSnapshot) -> None:
        """Store the latest book and mark any open position to its mid price."""
        self._order_books[book.symbol] = copy.deepcopy(book)
        position = self._positions.get(book.symbol)
        if position is not None:
            position.unrealized_pnl = (book.mid_price - position.avg_price) * position.quantity

    def execute_order(self, order: OrderRequest) -> ExecutionReport:
        """Simulate execution of an order and report the outcome."""
        book = self._order_books.get(order.symbol)
        if book is None:
            return self._report(order, OrderStatus.REJECTED)
        if order.order_type is OrderType.LIMIT:
            return self._execute_limit(order, book)
        return self._execute_market(order, book)

    @staticmethod
    def _report(order: OrderRequest, status: OrderStatus) -> ExecutionReport:
        return ExecutionReport(
            order_id=order.order_id,
            exec_id=str(uuid.uuid4()),
            status=status,
            filled_qty=0.0,
            fill_price=None,
            timestamp=order.timestamp,
        )

    @staticmethod
    def _touch(order: OrderRequest, book: OrderBookSnapshot) -> Optional[Level]:
        levels = book.asks if order.side is OrderSide.BUY else book.bids
        return levels[0] if levels else None

    def _fill(self, order: OrderRequest, available: float, fill_price: float) -> ExecutionReport:
        filled_qty = min(order.quantity, available * FILL_LIQUIDITY_FRACTION)
        self._update_position(order.symbol, filled_qty, fill_price, order.side)
        return ExecutionReport(
            order_id=order.order_id,
            exec_id=str(uuid.uuid4()),
            status=OrderStatus.FILLED if filled_qty >= order.quantity else OrderStatus.PARTIALLY_FILLED,
            filled_qty=filled_qty,
            fill_price=fill_price,
            timestamp=order.timestamp + EXECUTION_LATENCY,
        )

    def _execute_market(self, order: OrderRequest, book: OrderBookSnapshot) -> ExecutionReport:
        best = self._touch(order, book)
        if best is None:
            return self._report(order, OrderStatus.REJECTED)

        multiplier = self._rng.uniform(-1.0, 1.0)
        slippage = self.slippage_bps * (1.0 + multiplier * 0.5)
        liquidity_ratio = min(order.quantity / max(best.quantity, MIN_LIQUIDITY), 1.0)
        market_impact = self.market_impact_bps * liquidity_ratio
        total_cost_bps = slippage + market_impact

        if order.side is OrderSide.BUY:
            fill_price = best.price * (1.0 + total_cost_bps / BPS)
        else:
            fill_price = best.price * (1.0 - total_cost_bps / BPS)
        return self._fill(order, best.quantity, fill_price)

    def _execute_limit(self, order: OrderRequest, book: OrderBookSnapshot) -> ExecutionReport:
        limit_price = order.price
        if limit_price is None:
            return self._execute_market(order, book)

        best = self._touch(order, book)
        if best is None:
            return self._report(order, OrderStatus.REJECTED)

        if order.side is OrderSide.BUY:
            if best.price > limit_price:
                return self._report(order, OrderStatus.ACKNOWLEDGED)
            fill_price = min(best.price, limit_price)
        else:
            if best.price < limit_price:
                return self._report(order, OrderStatus.ACKNOWLEDGED)
            fill_price = max(best.price, limit_price)
        return self._fill(order, best.quantity, fill_price)

    def _update_position(self, symbol: str, qty: float, price: float, side: OrderSide) -> None:
        position = self._positions.setdefault(symbol, Position(symbol))
        if side is OrderSide.BUY:
            total_cost = position.avg_price * position.quantity + price * qty
            position.quantity += qty
            if position.quantity > 0.0:
                position.avg_price = total_cost / position.quantity
        else:
            position.quantity -= qty
            if abs(position.quantity) < FLAT_EPSILON:
                position.quantity = 0.0
                position.avg_price = 0.0

    def open_positions(self) -> dict[str, Position]:
        """Copies of every non-flat position, keyed by symbol."""
        return {
            symbol: replace(position)
            for symbol, position in self._positions.items()
            if abs(position.quantity) > FLAT_EPSILON
        }

    def total_pnl(self) -> float:
        """Sum of unrealized P&L across all positions."""
        return sum(position.unrealized_pnl for position in self._positions.values())