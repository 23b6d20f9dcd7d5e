"""Simple top-of-book builder that keeps ten levels per side."""

from __future__ import annotations

import copy
from typing import Optional

from .models import BookDepth, Level, OrderBookSnapshot, Side, TickEvent

MAX_LEVELS = 10


class OrderBookBuilder:
    """Builds per-symbol order book snapshots from tick events."""

    def __init__(self) -> None:
        self._books: dict[str, OrderBookSnapshot] = {}

    def update(self, tick: TickEvent) -> None:
        book = self._books.get(tick.symbol)
        if book is None:
            book = OrderBookSnapshot(
                symbol=tick.symbol,
                timestamp=tick.timestamp_recv,
                depth_level=BookDepth.L2,
            )
            self._books[tick.symbol] = book

        if tick.side is Side.BID:
            book.bids = self._apply(book.bids, tick, descending=True)
        elif tick.side is Side.ASK:
            book.asks = self._apply(book.asks, tick, descending=False)

        if book.bids and book.asks:
            best_bid, best_ask = book.bids[0].price, book.asks[0].price
            book.mid_price = (best_bid + best_ask) / 2.0
            book.spread = best_ask - best_bid

        book.timestamp = tick.timestamp_recv

    @staticmethod
    def _apply(levels: list[Level], tick: TickEvent, descending: bool) -> list[Level]:
        levels = [level for level in levels if level.price != tick.price]
        if tick.quantity > 0.0:
            levels.append(Level(price=tick.price, quantity=tick.quantity))
            levels.sort(key=lambda level: level.price, reverse=descending)
            del levels[MAX_LEVELS:]
        return levels

    def get_snapshot(self, symbol: str) -> Optional[OrderBookSnapshot]:
        """Return a copy of the book for a symbol, or None if unseen."""
        book = self._books.get(symbol)
        return copy.deepcopy(book) if book is not None else None

    def get_all_symbols(self) -> list[str]:
        return list(self._books)