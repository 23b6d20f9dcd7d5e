"""Message types shared by the trading services, with their JSON wire form."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Optional, Type, TypeVar, Union


class Side(str, Enum):
    """Which side of the book a tick touches."""

    BID = "Bid"
    ASK = "Ask"
    TRADE = "Trade"


class OrderSide(str, Enum):
    BUY = "Buy"
    SELL = "Sell"


class OrderType(str, Enum):
    MARKET = "Market"
    LIMIT = "Limit"


class OrderStatus(str, Enum):
    ACKNOWLEDGED = "Acknowledged"
    PARTIALLY_FILLED = "PartiallyFilled"
    FILLED = "Filled"
    REJECTED = "Rejected"


class SignalType(str, Enum):
    BUY = "Buy"
    SELL = "Sell"


class BookDepth(str, Enum):
    L1 = "L1"
    L2 = "L2"
    L3 = "L3"


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


class _Message:
    """Mixin giving dataclass messages a plain-dict form."""

    def to_dict(self) -> dict:
        return _plain(self)


@dataclass
class Level(_Message):
    price: float
    quantity: float

    @classmethod
    def from_dict(cls, obj: dict) -> "Level":
        return cls(price=float(obj["price"]), quantity=float(obj["quantity"]))


@dataclass
class TickEvent(_Message):
    symbol: str
    timestamp_exchange: int
    timestamp_recv: int
    side: Side
    price: float
    quantity: float
    sequence: int = 0

    @classmethod
    def from_dict(cls, obj: dict) -> "TickEvent":
        return cls(
            symbol=str(obj["symbol"]),
            timestamp_exchange=int(obj["timestamp_exchange"]),
            timestamp_recv=int(obj["timestamp_recv"]),
            side=Side(obj["side"]),
            price=float(obj["price"]),
            quantity=float(obj["quantity"]),
            sequence=int(obj.get("sequence", 0)),
        )


@dataclass
class OrderBookSnapshot(_Message):
    symbol: str
    timestamp: int
    bids: list[Level] = field(default_factory=list)
    asks: list[Level] = field(default_factory=list)
    mid_price: float = 0.0
    spread: float = 0.0
    depth_level: BookDepth = BookDepth.L2
    timestamp_ns: Optional[int] = None

    @classmethod
    def from_dict(cls, obj: dict) -> "OrderBookSnapshot":
        return cls(
            symbol=str(obj["symbol"]),
            timestamp=int(obj["timestamp"]),
            bids=[Level.from_dict(level) for level in obj["bids"]],
            asks=[Level.from_dict(level) for level in obj["asks"]],
            mid_price=float(obj["mid_price"]),
            spread=float(obj["spread"]),
            depth_level=BookDepth(obj["depth_level"]),
            timestamp_ns=_optional_int(obj.get("timestamp_ns")),
        )


@dataclass
class OrderRequest(_Message):
    order_id: str
    signal_id: str
    symbol: str
    side: OrderSide
    order_type: OrderType
    price: Optional[float]
    quantity: float
    timestamp: int
    strategy_name: str

    @classmethod
    def from_dict(cls, obj: dict) -> "OrderRequest":
        return cls(
            order_id=str(obj["order_id"]),
            signal_id=str(obj["signal_id"]),
            symbol=str(obj["symbol"]),
            side=OrderSide(obj["side"]),
            order_type=OrderType(obj["order_type"]),
            price=_optional_float(obj.get("price")),
            quantity=float(obj["quantity"]),
            timestamp=int(obj["timestamp"]),
            strategy_name=str(obj["strategy_name"]),
        )


@dataclass
class ExecutionReport(_Message):
    order_id: str
    exec_id: str
    status: OrderStatus
    filled_qty: float
    fill_price: Optional[float]
    timestamp: int

    @classmethod
    def from_dict(cls, obj: dict) -> "ExecutionReport":
        return cls(
            order_id=str(obj["order_id"]),
            exec_id=str(obj["exec_id"]),
            status=OrderStatus(obj["status"]),
            filled_qty=float(obj["filled_qty"]),
            fill_price=_optional_float(obj.get("fill_price")),
            timestamp=int(obj["timestamp"]),
        )


@dataclass
class Signal(_Message):
    signal_id: str
    symbol: str
    signal_type: SignalType
    price: Optional[float]
    quantity: float
    timestamp: int
    strategy_name: str

    @classmethod
    def from_dict(cls, obj: dict) -> "Signal":
        return cls(
            signal_id=str(obj["signal_id"]),
            symbol=str(obj["symbol"]),
            signal_type=SignalType(obj["signal_type"]),
            price=_optional_float(obj.get("price")),
            quantity=float(obj["quantity"]),
            timestamp=int(obj["timestamp"]),
            strategy_name=str(obj["strategy_name"]),
        )


M = TypeVar("M")


def encode(message: Any) -> bytes:
    """Serialise a message to compact JSON bytes."""
    return json.dumps(_plain(message), separators=(",", ":")).encode("utf-8")


def decode(kind: Type[M], data: Union[bytes, bytearray, str]) -> M:
    """Parse JSON bytes or text into a message of the given type.

    Raises ValueError when the payload is not a valid message of that type.
    """
    text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
    obj = json.loads(text)
    if not isinstance(obj, dict):
        raise ValueError(f"invalid {kind.__name__} message: expected a JSON object")
    try:
        return kind.from_dict(obj)  # type: ignore[attr-defined]
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"invalid {kind.__name__} message: {exc}") from exc