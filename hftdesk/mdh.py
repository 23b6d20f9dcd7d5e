"""Market data handler: fixed-point order books, trade tape and latency tracking."""

from __future__ import annotations

import asyncio
import queue
import sys
import time
from collections import deque
from typing import Any, Optional

from .models import BookDepth, Level, OrderBookSnapshot, Side, TickEvent

PRICE_SCALE = 1e8
TRADE_TAPE_LENGTH = 1000
LATENCY_SAMPLES = 10000


def now_ns() -> int:
    """Current wall-clock time in nanoseconds since the epoch."""
    return time.time_ns()


def _to_fixed(price: float) -> int:
    return max(0, int(price * PRICE_SCALE))


def _from_fixed(level: int) -> float:
    return level / PRICE_SCALE


class LatencyTracker:
    """Keeps a bounded window of latency samples in nanoseconds."""

    def __init__(self, max_samples: int) -> None:
        self.max_samples = max_samples
        self.tick_latencies: deque[int] = deque(maxlen=max_samples)
        self.book_latencies: deque[int] = deque(maxlen=max_samples)

    def record_tick_latency(self, latency_ns: int) -> None:
        self.tick_latencies.append(latency_ns)

    def record_book_latency(self, latency_ns: int) -> None:
        self.book_latencies.append(latency_ns)

    def average_tick_latency(self) -> float:
        if not self.tick_latencies:
            return 0.0
        return sum(self.tick_latencies) / len(self.tick_latencies)

    def p99_tick_latency(self) -> int:
        if not self.tick_latencies:
            return 0
        ordered = sorted(self.tick_latencies)
        index = int(len(ordered) * 0.99)
        return ordered[min(index, len(ordered) - 1)]


class OrderBook:
    """Order book keyed by fixed-point price, with L1/L2/L3 snapshots."""

    def __init__(self, symbol: str, depth_level: BookDepth = BookDepth.L2) -> None:
        self.symbol = symbol
        self.depth_level = depth_level
        self._bids: dict[int, float] = {}
        self._asks: dict[int, float] = {}
        self.last_update = now_ns()

    def update_from_tick(self, tick: TickEvent) -> None:
        self.last_update = now_ns()
        level = _to_fixed(tick.price)
        if tick.side is Side.BID:
            side = self._bids
        elif tick.side is Side.ASK:
            side = self._asks
        else:
            return
        if tick.quantity > 0.0:
            side[level] = tick.quantity
        else:
            side.pop(level, None)

    def snapshot(self, max_levels: int) -> OrderBookSnapshot:
        limit = 1 if self.depth_level is BookDepth.L1 else max_levels
        bids = [
            Level(_from_fixed(price), qty)
            for price, qty in sorted(self._bids.items(), reverse=True)[:limit]
        ]
        asks = [
            Level(_from_fixed(price), qty)
            for price, qty in sorted(self._asks.items())[:limit]
        ]

        best_bid = bids[0].price if bids else None
        best_ask = asks[0].price if asks else None
        if best_bid is not None and best_ask is not None:
            mid_price = (best_bid + best_ask) / 2.0
            spread = best_ask - best_bid
        else:
            mid_price = best_bid if best_bid is not None else (best_ask or 0.0)
            spread = 0.0

        return OrderBookSnapshot(
            symbol=self.symbol,
            timestamp=self.last_update // 1_000_000,
            bids=bids,
            asks=asks,
            mid_price=mid_price,
            spread=spread,
            depth_level=self.depth_level,
            timestamp_ns=self.last_update,
        )


class MarketDataHandler:
    """Maintains order books per symbol and forwards ticks to an event queue."""

    def __init__(self, events: Any = None, backpressure_threshold: int = 10000) -> None:
        self.events = events
        self.backpressure_threshold = backpressure_threshold
        self.order_books: dict[str, OrderBook] = {}
        self.trade_tape: dict[str, deque] = {}
        self.latency_tracker = LatencyTracker(LATENCY_SAMPLES)

    def process_tick(self, tick: TickEvent) -> None:
        latency_ns = max(0, now_ns() - tick.timestamp_recv)
        self.latency_tracker.record_tick_latency(latency_ns)

        book = self.order_books.get(tick.symbol)
        if book is None:
            book = OrderBook(tick.symbol, BookDepth.L2)
            self.order_books[tick.symbol] = book
        book.update_from_tick(tick)

        if self.events is not None:
            try:
                self.events.put_nowait(tick)
            except (queue.Full, asyncio.QueueFull):
                print("Event queue full - dropping event (backpressure)", file=sys.stderr)

    def get_snapshot(self, symbol: str, max_levels: int) -> Optional[OrderBookSnapshot]:
        book = self.order_books.get(symbol)
        return book.snapshot(max_levels) if book is not None else None

    def record_trade(self, symbol: str, trade: Any) -> None:
        tape = self.trade_tape.setdefault(symbol, deque(maxlen=TRADE_TAPE_LENGTH))
        tape.append(trade)