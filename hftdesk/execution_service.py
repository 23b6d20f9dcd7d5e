"""Execution service: fills orders from the risk layer on the paper trading engine."""

from __future__ import annotations

import argparse
import asyncio
import random
import sys
import uuid
from typing import Awaitable, Callable, Optional

import zmq
import zmq.asyncio

from .models import (
    ExecutionReport,
    OrderBookSnapshot,
    OrderRequest,
    OrderSide,
    OrderStatus,
    decode,
    encode,
)
from .paper_trading import PaperTradingEngine

SLIPPAGE_BPS = 2.5
MARKET_IMPACT_BPS = 1.0

Publish = Callable[[bytes], Awaitable[None]]


async def process_order(
    order: OrderRequest, engine: PaperTradingEngine, publish: Publish
) -> ExecutionReport:
    """Acknowledge an order, execute it and publish both reports.

    Returns the execution report; errors from `publish` propagate.
    """
    await asyncio.sleep(random.randrange(50, 500) / 1_000_000)

    ack = ExecutionReport(
        order_id=order.order_id,
        exec_id=str(uuid.uuid4()),
        status=OrderStatus.ACKNOWLEDGED,
        filled_qty=0.0,
        fill_price=None,
        timestamp=order.timestamp,
    )
    await publish(encode(ack))

    report = engine.execute_order(order)
    await publish(encode(report))
    return report


async def _follow_books(socket: zmq.asyncio.Socket, engine: PaperTradingEngine) -> None:
    while True:
        payload = await socket.recv()
        try:
            book = decode(OrderBookSnapshot, payload)
        except ValueError:
            continue
        engine.update_market_data(book)


async def _guarded(order: OrderRequest, engine: PaperTradingEngine, publish: Publish) -> None:
    try:
        await process_order(order, engine, publish)
    except Exception as exc:  # a failed order must not stop the service
        print(f"Error processing order: {exc}", file=sys.stderr)


async def _run(args: argparse.Namespace) -> None:
    context = zmq.asyncio.Context.instance()
    orders = context.socket(zmq.SUB)
    orders.connect(args.orders)
    orders.setsockopt(zmq.SUBSCRIBE, b"")
    books = context.socket(zmq.SUB)
    books.connect(args.books)
    books.setsockopt(zmq.SUBSCRIBE, b"")
    reports = context.socket(zmq.PUB)
    reports.bind(args.reports)

    engine = PaperTradingEngine(SLIPPAGE_BPS, MARKET_IMPACT_BPS)
    send_lock = asyncio.Lock()

    async def publish(payload: bytes) -> None:
        async with send_lock:
            await reports.send(payload)

    print("Paper Trading Engine started")
    print("   Listening: OMS (orders) + Market Data (order books)")
    print(f"   Publishing: Execution Reports -> {args.reports}")
    print("   Features: Realistic slippage, market impact, position tracking")

    book_task = asyncio.create_task(_follow_books(books, engine))
    pending: set[asyncio.Task] = set()
    try:
        while True:
            payload = await orders.recv()
            order = decode(OrderRequest, payload)
            side = "BUY" if order.side is OrderSide.BUY else "SELL"
            print(f"Executing: {order.order_id} ({side} {order.quantity})")
            task = asyncio.create_task(_guarded(order, engine, publish))
            pending.add(task)
            task.add_done_callback(pending.discard)
    finally:
        book_task.cancel()
        for task in pending:
            task.cancel()
        orders.close()
        books.close()
        reports.close()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="hftdesk-execution", description="Paper trading execution service."
    )
    parser.add_argument("--orders", default="tcp://localhost:5559")
    parser.add_argument("--books", default="tcp://localhost:5556")
    parser.add_argument("--reports", default="tcp://0.0.0.0:5560")
    args = parser.parse_args(argv)
    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 0
    return 0