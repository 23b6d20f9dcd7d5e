"""Pre-trade risk checks that turn strategy signals into approved orders."""

from __future__ import annotations

import argparse
import asyncio
import math
import sys
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional

import redis.asyncio as aioredis
import zmq
import zmq.asyncio
from redis.exceptions import RedisError

from .models import OrderRequest, OrderSide, OrderType, Signal, SignalType, decode, encode

KILL_SWITCH_KEY = "risk:kill_switch"
MAX_POSITION_KEY = "risk:max_position"
MAX_ORDER_SIZE_KEY = "risk:max_order_size"
MAX_DAILY_LOSS_KEY = "risk:max_daily_loss"
DAILY_LOSS_KEY = "risk:daily_loss"

DEFAULT_MAX_POSITION = 10.0
DEFAULT_MAX_ORDER_SIZE = 5.0
DEFAULT_MAX_DAILY_LOSS = 1000.0
MAX_MESSAGES_PER_SECOND = 100
PRICE_BAND = 0.1


@dataclass(frozen=True)
class RiskDecision:
    """Outcome of a risk check; a rejection carries its reason."""

    approved: bool
    reason: str = ""

    @classmethod
    def approve(cls) -> "RiskDecision":
        return cls(True)

    @classmethod
    def reject(cls, reason: str) -> "RiskDecision":
        return cls(False, reason)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _as_bool(value: Any) -> Optional[bool]:
    text = _text(value)
    if text is None:
        return None
    text = text.strip().lower()
    if text in ("1", "true"):
        return True
    if text in ("0", "false"):
        return False
    return None


def _as_float(value: Any) -> Optional[float]:
    text = _text(value)
    if text is None:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _display(value: float) -> str:
    """Shortest plain decimal form of a float, without a trailing '.0'."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value == int(value):
        return str(int(value))
    return format(Decimal(repr(value)), "f")


async def _fetch(redis: Any, key: str) -> Any:
    try:
        return await redis.get(key)
    except RedisError:
        return None


class RiskManager:
    """Tracks positions and enforces limits held in Redis."""

    def __init__(
        self,
        redis: Any,
        *,
        max_position: float = DEFAULT_MAX_POSITION,
        max_order_size: float = DEFAULT_MAX_ORDER_SIZE,
        max_daily_loss: float = DEFAULT_MAX_DAILY_LOSS,
        kill_switch_active: bool = False,
        price_bands: Optional[dict[str, tuple[float, float]]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.redis = redis
        self.clock = clock
        self.positions: dict[str, float] = {}
        self.max_position = max_position
        self.max_order_size = max_order_size
        self.max_daily_loss = max_daily_loss
        self.message_count = 0
        self.message_window_start = int(clock())
        self.max_messages_per_second = MAX_MESSAGES_PER_SECOND
        self.kill_switch_active = kill_switch_active
        self.price_bands: dict[str, tuple[float, float]] = dict(price_bands or {})

    @classmethod
    async def load(cls, redis: Any) -> "RiskManager":
        """Build a manager from the kill switch, limits and price bands in Redis."""
        kill_switch = _as_bool(await _fetch(redis, KILL_SWITCH_KEY))
        max_position = _as_float(await _fetch(redis, MAX_POSITION_KEY))
        max_order_size = _as_float(await _fetch(redis, MAX_ORDER_SIZE_KEY))
        max_daily_loss = _as_float(await _fetch(redis, MAX_DAILY_LOSS_KEY))

        bands: dict[str, tuple[float, float]] = {}
        try:
            symbols = await redis.smembers("symbols")
        except RedisError:
            symbols = set()
        for raw in symbols:
            symbol = _text(raw)
            price = _as_float(await _fetch(redis, f"price:{symbol}"))
            if price is not None:
                bands[symbol] = (price * (1 - PRICE_BAND), price * (1 + PRICE_BAND))

        return cls(
            redis,
            max_position=DEFAULT_MAX_POSITION if max_position is None else max_position,
            max_order_size=DEFAULT_MAX_ORDER_SIZE if max_order_size is None else max_order_size,
            max_daily_loss=DEFAULT_MAX_DAILY_LOSS if max_daily_loss is None else max_daily_loss,
            kill_switch_active=bool(kill_switch),
            price_bands=bands,
        )

    async def refresh_limits(self) -> None:
        """Pick up any limits changed in Redis."""
        max_position = _as_float(await _fetch(self.redis, MAX_POSITION_KEY))
        if max_position is not None:
            self.max_position = max_position
        max_order_size = _as_float(await _fetch(self.redis, MAX_ORDER_SIZE_KEY))
        if max_order_size is not None:
            self.max_order_size = max_order_size
        max_daily_loss = _as_float(await _fetch(self.redis, MAX_DAILY_LOSS_KEY))
        if max_daily_loss is not None:
            self.max_daily_loss = max_daily_loss

    async def update_daily_loss(self) -> None:
        """Sync the kill switch state from Redis."""
        active = _as_bool(await _fetch(self.redis, KILL_SWITCH_KEY))
        if active is not None:
            self.kill_switch_active = active

    async def check_order(self, order: OrderRequest) -> RiskDecision:
        """Run every pre-trade check; on approval record the new position.

        Raises a RedisError when the new position cannot be stored.
        """
        if self.kill_switch_active:
            return RiskDecision.reject("KILL SWITCH ACTIVE")
        if _as_bool(await _fetch(self.redis, KILL_SWITCH_KEY)):
            self.kill_switch_active = True
            return RiskDecision.reject("KILL SWITCH ACTIVE")

        now = int(self.clock())
        if now - self.message_window_start >= 1:
            self.message_count = 0
            self.message_window_start = now
        self.message_count += 1
        if self.message_count > self.max_messages_per_second:
            return RiskDecision.reject("MESSAGE RATE LIMIT EXCEEDED")

        if order.quantity > self.max_order_size:
            return RiskDecision.reject(
                f"ORDER SIZE EXCEEDED: {_display(order.quantity)} > {_display(self.max_order_size)}"
            )

        if order.price is not None and order.symbol in self.price_bands:
            low, high = self.price_bands[order.symbol]
            if order.price < low or order.price > high:
                return RiskDecision.reject(
                    f"PRICE OUT OF BANDS: {_display(order.price)} not in [{low:.2f}, {high:.2f}]"
                )

        current = self.positions.get(order.symbol, 0.0)
        if order.side is OrderSide.BUY:
            new_position = current + order.quantity
        else:
            new_position = current - order.quantity
        if abs(new_position) > self.max_position:
            return RiskDecision.reject(
                f"POSITION LIMIT EXCEEDED: {_display(abs(new_position))} > {_display(self.max_position)}"
            )

        max_daily_loss = _as_float(await _fetch(self.redis, MAX_DAILY_LOSS_KEY))
        if max_daily_loss is not None:
            self.max_daily_loss = max_daily_loss
        daily_loss = _as_float(await _fetch(self.redis, DAILY_LOSS_KEY))
        if daily_loss is not None and daily_loss >= self.max_daily_loss:
            return RiskDecision.reject("DAILY LOSS LIMIT EXCEEDED")

        self.positions[order.symbol] = new_position
        await self.redis.set(f"position:{order.symbol}", new_position)
        return RiskDecision.approve()


def signal_to_order(signal: Signal) -> OrderRequest:
    """Turn a strategy signal into an order: limit if priced, market otherwise."""
    return OrderRequest(
        order_id=str(uuid.uuid4()),
        signal_id=signal.signal_id,
        symbol=signal.symbol,
        side=OrderSide.BUY if signal.signal_type is SignalType.BUY else OrderSide.SELL,
        order_type=OrderType.LIMIT if signal.price is not None else OrderType.MARKET,
        price=signal.price,
        quantity=signal.quantity,
        timestamp=signal.timestamp,
        strategy_name=signal.strategy_name,
    )


async def _monitor(manager: RiskManager, lock: asyncio.Lock) -> None:
    while True:
        await asyncio.sleep(1)
        async with lock:
            await manager.update_daily_loss()
            await manager.refresh_limits()


async def _run(args: argparse.Namespace) -> None:
    client = aioredis.from_url(args.redis_url)
    await client.ping()

    context = zmq.asyncio.Context.instance()
    subscriber = context.socket(zmq.SUB)
    subscriber.connect(args.signals)
    subscriber.setsockopt(zmq.SUBSCRIBE, b"")
    publisher = context.socket(zmq.PUB)
    publisher.bind(args.orders)

    print("Risk Management started")
    print("   Redis: Connected")
    print("   Listening: Strategies (signals)")
    print(f"   Publishing: Orders -> {args.orders}")

    manager = await RiskManager.load(client)
    lock = asyncio.Lock()
    monitor = asyncio.create_task(_monitor(manager, lock))
    try:
        while True:
            payload = await subscriber.recv()
            order = signal_to_order(decode(Signal, payload))
            async with lock:
                try:
                    decision = await manager.check_order(order)
                except RedisError as exc:
                    print(f"Risk check error: {exc}", file=sys.stderr)
                    print(f"REJECTED (error): {order.order_id}")
                    continue
            if decision.approved:
                side = "BUY" if order.side is OrderSide.BUY else "SELL"
                print(f"APPROVED: {order.symbol} {side} {order.quantity:.2f}")
                await publisher.send(encode(order))
            else:
                print(f"REJECTED: {order.order_id} - {decision.reason}")
    finally:
        monitor.cancel()
        subscriber.close()
        publisher.close()
        await client.connection_pool.disconnect()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="hftdesk-risk", description="Pre-trade risk service.")
    parser.add_argument("--redis-url", default="redis://127.0.0.1/")
    parser.add_argument("--signals", default="tcp://localhost:5557")
    parser.add_argument("--orders", default="tcp://0.0.0.0:5558")
    args = parser.parse_args(argv)
    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 0
    return 0