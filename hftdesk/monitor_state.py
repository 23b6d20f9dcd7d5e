"""In-memory view of the trading pipeline kept by the monitoring service."""

from __future__ import annotations

import sys
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Optional

from .metrics import Metrics, RateTracker
from .models import (
    ExecutionReport,
    OrderBookSnapshot,
    OrderRequest,
    OrderStatus,
    Signal,
    TickEvent,
)

MAX_RECENT_TRADES = 1000
MAX_RECENT_ORDERS = 1000
MAX_RECENT_CANDLES = 500
MAX_ORDERS_BY_ID = 10000
ORDER_EVICTION_BATCH = 1000
MAX_BOOKS = 10
DEFAULT_VIEW_LIMIT = 100
UNKNOWN = "UNKNOWN"
PENDING = "PENDING"


@dataclass
class TradeEvent:
    """A filled order as shown on the dashboard."""

    order_id: str
    symbol: str
    side: str
    quantity: float
    price: float
    status: str
    timestamp: int
    strategy: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class OrderEvent:
    """An order and its latest known status."""

    order_id: str
    symbol: str
    side: str
    quantity: float
    price: Optional[float]
    status: str
    timestamp: int
    strategy: str

    def to_dict(self) -> dict:
        return asdict(self)


def _latency_us(tick: TickEvent) -> int:
    diff = tick.timestamp_recv - tick.timestamp_exchange
    return diff // 1000 if diff >= 0 else -((-diff) // 1000)


class MonitorState:
    """Recent orders, trades, candles and books plus the live metrics."""

    def __init__(
        self,
        metrics: Optional[Metrics] = None,
        rate_tracker: Optional[RateTracker] = None,
    ) -> None:
        self.metrics = metrics if metrics is not None else Metrics()
        self.rate_tracker = rate_tracker if rate_tracker is not None else RateTracker(1)
        self.recent_trades: deque[TradeEvent] = deque(maxlen=MAX_RECENT_TRADES)
        self.recent_orders: deque[OrderEvent] = deque(maxlen=MAX_RECENT_ORDERS)
        self.orders_by_id: dict[str, OrderRequest] = {}
        self.recent_candles: deque[Any] = deque(maxlen=MAX_RECENT_CANDLES)
        self.order_books: dict[str, OrderBookSnapshot] = {}

    def handle_tick(self, tick: TickEvent) -> None:
        self.metrics.record_tick(tick)
        self.rate_tracker.record_tick(float(_latency_us(tick)))

    def handle_signal(self, signal: Signal) -> None:
        self.metrics.record_signal(signal)
        self.rate_tracker.record_signal()

    def handle_order(self, order: OrderRequest) -> OrderEvent:
        """Count the order, remember it by id and list it as pending."""
        self.metrics.record_order(order)
        self.rate_tracker.record_order()

        self.orders_by_id[order.order_id] = order
        if len(self.orders_by_id) > MAX_ORDERS_BY_ID:
            for key in list(self.orders_by_id)[:ORDER_EVICTION_BATCH]:
                del self.orders_by_id[key]

        event = OrderEvent(
            order_id=order.order_id,
            symbol=order.symbol,
            side=order.side.value,
            quantity=order.quantity,
            price=order.price,
            status=PENDING,
            timestamp=order.timestamp,
            strategy=order.strategy_name,
        )
        self.recent_orders.append(event)
        return event

    def handle_execution(self, report: ExecutionReport) -> Optional[TradeEvent]:
        """Update the order's status; a fill becomes a trade, which is returned."""
        self.metrics.record_execution(report)

        order = self.orders_by_id.get(report.order_id)
        if order is not None:
            symbol, side, strategy = order.symbol, order.side.value, order.strategy_name
        else:
            print(f"Order not found in cache for order_id: {report.order_id}", file=sys.stderr)
            symbol = side = strategy = UNKNOWN

        event = next((e for e in self.recent_orders if e.order_id == report.order_id), None)
        if event is not None:
            event.status = report.status.value

        if report.status is not OrderStatus.FILLED:
            return None
        trade = TradeEvent(
            order_id=report.order_id,
            symbol=symbol,
            side=side,
            quantity=report.filled_qty,
            price=report.fill_price if report.fill_price is not None else 0.0,
            status=report.status.value,
            timestamp=report.timestamp,
            strategy=strategy,
        )
        self.recent_trades.append(trade)
        return trade

    def handle_candle(self, candle: Any) -> None:
        self.recent_candles.append(candle)

    def handle_book(self, book: OrderBookSnapshot) -> None:
        """Keep the latest book per symbol, for at most ten symbols."""
        self.order_books[book.symbol] = book
        excess = len(self.order_books) - MAX_BOOKS
        if excess > 0:
            for key in list(self.order_books)[:excess]:
                del self.order_books[key]

    def recent_trades_view(self, limit: int = DEFAULT_VIEW_LIMIT) -> list[TradeEvent]:
        """Newest trades first, at most `limit` of them."""
        return list(reversed(self.recent_trades))[:limit]

    def recent_orders_view(self, limit: int = DEFAULT_VIEW_LIMIT) -> list[OrderEvent]:
        """Newest orders first, at most `limit` of them."""
        return list(reversed(self.recent_orders))[:limit]