"""Exchange WebSocket adapters that turn feed messages into tick events."""

from __future__ import annotations

import json
import re
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from .mdh import now_ns
from .models import Side, TickEvent

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt ](\d{2}):(\d{2}):(\d{2})"
    r"(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})\Z"
)


class Exchange(Enum):
    """Supported exchanges; the value is the display name."""

    COINBASE_PRO = "Coinbase"
    BINANCE = "Binance"


def _string(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _number(value: Any) -> Optional[float]:
    """Parse a decimal string the way exchange feeds send prices and sizes."""
    if not isinstance(value, str) or value != value.strip() or "_" in value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _integer(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _parse_rfc3339_ns(text: str) -> Optional[int]:
    """Parse an RFC 3339 timestamp into nanoseconds since the epoch."""
    match = _RFC3339.match(text)
    if match is None:
        return None
    year, month, day, hour, minute, second = (int(part) for part in match.groups()[:6])
    fraction = match.group(7) or ""
    offset = match.group(8)
    try:
        if offset in ("Z", "z"):
            tz = timezone.utc
        else:
            sign = 1 if offset[0] == "+" else -1
            tz = timezone(sign * timedelta(hours=int(offset[1:3]), minutes=int(offset[4:6])))
        moment = datetime(year, month, day, hour, minute, second, tzinfo=tz)
    except ValueError:
        return None
    seconds = (moment - _EPOCH) // timedelta(seconds=1)
    nanos = int(fraction[:9].ljust(9, "0")) if fraction else 0
    return seconds * 1_000_000_000 + nanos


@dataclass
class WebSocketAdapter:
    """Knows how to reach one exchange feed and parse its messages."""

    exchange: Exchange
    symbol: str
    url: Optional[str] = None

    def ws_url(self) -> str:
        if self.url is not None:
            return self.url
        if self.exchange is Exchange.COINBASE_PRO:
            return "wss://ws-feed.exchange.coinbase.com"
        stream = self.symbol.lower().replace("-", "")
        return f"wss://stream.binance.com:9443/ws/{stream}@depth20@100ms"

    def subscription(self) -> dict:
        if self.exchange is Exchange.COINBASE_PRO:
            return {
                "type": "subscribe",
                "product_ids": [self.symbol],
                "channels": ["level2", "ticker", "matches"],
            }
        return {}

    def parse_message(self, msg: str) -> Optional[list[TickEvent]]:
        """Parse one feed message; None when it carries no usable ticks."""
        try:
            obj = json.loads(msg)
        except (ValueError, TypeError):
            return None
        if not isinstance(obj, dict):
            return None
        if self.exchange is Exchange.COINBASE_PRO:
            tick = self._parse_coinbase(obj)
            return [tick] if tick is not None else None
        return self._parse_binance(obj)

    def _tick(self, symbol: str, timestamp: int, side: Side, price: float, quantity: float) -> TickEvent:
        return TickEvent(
            symbol=symbol,
            timestamp_exchange=timestamp,
            timestamp_recv=now_ns(),
            side=side,
            price=price,
            quantity=quantity,
            sequence=0,
        )

    @staticmethod
    def _event_time(obj: dict) -> Optional[int]:
        text = _string(obj.get("time"))
        if text is None:
            return None
        parsed = _parse_rfc3339_ns(text)
        return parsed if parsed is not None else now_ns()

    def _parse_coinbase(self, obj: dict) -> Optional[TickEvent]:
        msg_type = _string(obj.get("type"))
        if msg_type == "l2update":
            changes = obj.get("changes")
            if not isinstance(changes, list) or not changes:
                return None
            change = changes[0]
            if not isinstance(change, list) or len(change) < 3:
                return None
            side_name = _string(change[0])
            price = _number(change[1])
            quantity = _number(change[2])
            if side_name is None or price is None or quantity is None:
                return None
            side = {"buy": Side.BID, "sell": Side.ASK}.get(side_name)
            if side is None:
                return None
            timestamp = self._event_time(obj)
            if timestamp is None:
                return None
            return self._tick(self.symbol, timestamp, side, price, quantity)
        if msg_type == "match":
            price = _number(obj.get("price"))
            quantity = _number(obj.get("size"))
            if price is None or quantity is None:
                return None
            timestamp = self._event_time(obj)
            if timestamp is None:
                return None
            return self._tick(self.symbol, timestamp, Side.TRADE, price, quantity)
        return None

    def _parse_binance(self, obj: dict) -> Optional[list[TickEvent]]:
        event_type = _string(obj.get("e"))
        if event_type == "depthUpdate":
            bids = obj.get("b")
            asks = obj.get("a")
            if not isinstance(bids, list) or not isinstance(asks, list):
                return None
            event_ms = _integer(obj.get("E"))
            symbol = _string(obj.get("s"))
            if event_ms is None or symbol is None:
                return None
            timestamp = event_ms * 1_000_000
            ticks: list[TickEvent] = []
            for side, entries in ((Side.BID, bids), (Side.ASK, asks)):
                for entry in entries:
                    if not isinstance(entry, list) or len(entry) < 2:
                        continue
                    price = _number(entry[0])
                    quantity = _number(entry[1])
                    if price is None or quantity is None:
                        return None
                    if quantity > 0.0:
                        ticks.append(self._tick(symbol, timestamp, side, price, quantity))
            return ticks or None
        if event_type == "24hrTicker":
            price = _number(obj.get("c"))
            quantity = _number(obj.get("v"))
            event_ms = _integer(obj.get("E"))
            if price is None or quantity is None or event_ms is None:
                return None
            return [self._tick(self.symbol, event_ms * 1_000_000, Side.TRADE, price, quantity)]
        return None


async def connect_and_stream(adapter: WebSocketAdapter, queue: Any) -> None:
    """Stream ticks from the exchange into an asyncio queue until the feed ends."""
    url = adapter.ws_url()
    print(f"Attempting to connect to: {url}")
    try:
        connection = await websockets.connect(url)
    except Exception as exc:
        print(f"Failed to connect to {url}: {exc}", file=sys.stderr)
        raise

    try:
        if adapter.exchange is Exchange.COINBASE_PRO:
            try:
                await connection.send(json.dumps(adapter.subscription()))
            except ConnectionClosed as exc:
                print(f"Failed to send subscription message: {exc}", file=sys.stderr)
                raise
        print(f"Connected to {adapter.exchange.value} WebSocket")
        try:
            async for message in connection:
                if not isinstance(message, str):
                    continue
                for tick in adapter.parse_message(message) or ():
                    await queue.put(tick)
        except ConnectionClosed as exc:
            print(f"WebSocket error: {exc}", file=sys.stderr)
        else:
            print("WebSocket connection closed")
    finally:
        await connection.close()