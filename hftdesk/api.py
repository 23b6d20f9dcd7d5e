"""HTTP API and dashboard served by the monitoring service."""

from __future__ import annotations

import json
import math
import sys
from datetime import date
from typing import Any, Optional

from redis.exceptions import RedisError
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import (
    HTMLResponse,
    JSONResponse,
    PlainTextResponse,
    RedirectResponse,
    Response,
)
from starlette.routing import Route

from .analytics import compute_metrics, compute_pnl
from .backtest import EmaStrategy, load_candles
from .models import BookDepth, OrderBookSnapshot, encode
from .monitor_state import MonitorState
from .risk import (
    DAILY_LOSS_KEY,
    DEFAULT_MAX_DAILY_LOSS,
    DEFAULT_MAX_ORDER_SIZE,
    DEFAULT_MAX_POSITION,
    KILL_SWITCH_KEY,
    MAX_DAILY_LOSS_KEY,
    MAX_ORDER_SIZE_KEY,
    MAX_POSITION_KEY,
)

DEFAULT_DATA_PATH = "data/btc.csv"
DEFAULT_SYMBOL = "BTC-USD"
BACKTEST_START = date(2018, 10, 8)
DEFAULT_EMA_PERIOD = 20
DEFAULT_RISK_REWARD = 2.0
DEFAULT_STOP_BUFFER = 0.001
STRATEGY_NAMES = ("MarketMaker-1", "MeanRev-1", "VWAP-Exec")
FALLBACK_STRATEGY = "MarketMaker-1"
METRICS_CONTENT_TYPE = "text/plain; version=0.0.4"
POSITION_PREFIX = "position:"

_REDIS_ERRORS = (RedisError, OSError)

_DASHBOARD = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><title>Trading Monitor</title></head>
<body>
<h1>Trading Monitor</h1>
<ul>
<li><a href="/api/metrics/data">Metrics</a></li>
<li><a href="/api/trades">Recent trades</a></li>
<li><a href="/api/orders">Recent orders</a></li>
<li><a href="/api/positions">Positions</a></li>
<li><a href="/api/risk/status">Risk status</a></li>
<li><a href="/api/pnl">P&amp;L</a></li>
<li><a href="/api/strategies">Strategies</a></li>
<li><a href="/api/candles">Candles</a></li>
<li><a href="/api/orderbook">Order book</a></li>
<li><a href="/api/backtest">Backtest</a></li>
<li><a href="/metrics">Prometheus metrics</a></li>
</ul>
</body>
</html>
"""


def _clean(value: Any) -> Any:
    """Make a value JSON-safe: non-finite floats become null."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {key: _clean(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_clean(item) for item in value]
    return value


def _json(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(_clean(data), status_code=status_code)


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


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


async def _connected(redis: Any, purpose: str) -> bool:
    if redis is None:
        print(f"Redis is not configured for {purpose}", file=sys.stderr)
        return False
    try:
        await redis.ping()
    except _REDIS_ERRORS as exc:
        print(f"Failed to get Redis connection for {purpose}: {exc}", file=sys.stderr)
        return False
    return True


async def _get(redis: Any, key: str) -> Any:
    try:
        return await redis.get(key)
    except _REDIS_ERRORS:
        return None


async def _set(redis: Any, key: str, value: Any) -> bool:
    try:
        await redis.set(key, value)
    except _REDIS_ERRORS as exc:
        print(f"Failed to set {key} in Redis: {exc}", file=sys.stderr)
        return False
    return True


async def _read_object(request: Request) -> Optional[dict]:
    try:
        data = json.loads(await request.body())
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _flag(active: bool) -> str:
    return "1" if active else "0"


def create_app(state: MonitorState, redis: Any = None, data_path: str = DEFAULT_DATA_PATH) -> Starlette:
    """Build the dashboard application over a monitor state and an async Redis client."""

    async def root(request: Request) -> Response:
        return RedirectResponse("/dashboard", status_code=308)

    async def favicon(request: Request) -> Response:
        return Response(status_code=204)

    async def serve_metrics(request: Request) -> Response:
        return Response(
            state.metrics.render(),
            status_code=200,
            headers={"Content-Type": METRICS_CONTENT_TYPE},
        )

    async def serve_dashboard(request: Request) -> Response:
        return HTMLResponse(_DASHBOARD)

    async def get_positions(request: Request) -> Response:
        if not await _connected(redis, "positions"):
            return _json([])
        positions = []
        try:
            keys = await redis.keys(f"{POSITION_PREFIX}*")
        except _REDIS_ERRORS:
            keys = []
        for raw in keys:
            key = _text(raw)
            if not key.startswith(POSITION_PREFIX):
                continue
            quantity = _as_float(await _get(redis, key))
            if quantity is not None and quantity != 0.0:
                positions.append(
                    {"symbol": key[len(POSITION_PREFIX):], "quantity": quantity, "avg_price": None}
                )
        return _json(positions)

    async def get_risk_status(request: Request) -> Response:
        defaults = {
            "kill_switch_active": False,
            "daily_loss": 0.0,
            "max_daily_loss": DEFAULT_MAX_DAILY_LOSS,
            "max_position": DEFAULT_MAX_POSITION,
            "max_order_size": DEFAULT_MAX_ORDER_SIZE,
        }
        if not await _connected(redis, "risk status"):
            return _json(defaults)

        async def number(key: str, default: float) -> float:
            value = _as_float(await _get(redis, key))
            return default if value is None else value

        kill_switch = _as_bool(await _get(redis, KILL_SWITCH_KEY))
        return _json(
            {
                "kill_switch_active": bool(kill_switch),
                "daily_loss": await number(DAILY_LOSS_KEY, 0.0),
                "max_daily_loss": await number(MAX_DAILY_LOSS_KEY, DEFAULT_MAX_DAILY_LOSS),
                "max_position": await number(MAX_POSITION_KEY, DEFAULT_MAX_POSITION),
                "max_order_size": await number(MAX_ORDER_SIZE_KEY, DEFAULT_MAX_ORDER_SIZE),
            }
        )

    async def set_kill_switch(request: Request) -> Response:
        body = await _read_object(request)
        if body is None:
            return PlainTextResponse("Invalid JSON body", status_code=400)
        active = body.get("active")
        if not isinstance(active, bool):
            return PlainTextResponse("Field 'active' must be a boolean", status_code=422)
        if not await _connected(redis, "kill switch"):
            return Response(status_code=503)
        if not await _set(redis, KILL_SWITCH_KEY, _flag(active)):
            return Response(status_code=503)
        return Response(status_code=200)

    async def update_risk_limits(request: Request) -> Response:
        body = await _read_object(request)
        if body is None:
            return PlainTextResponse("Invalid JSON body", status_code=400)
        fields = (
            ("max_position", MAX_POSITION_KEY),
            ("max_order_size", MAX_ORDER_SIZE_KEY),
            ("max_daily_loss", MAX_DAILY_LOSS_KEY),
        )
        for name, _ in fields:
            value = body.get(name)
            if value is not None and not _is_number(value):
                return PlainTextResponse(f"Field '{name}' must be a number", status_code=422)
        if not await _connected(redis, "risk limits"):
            return Response(status_code=503)
        for name, key in fields:
            value = body.get(name)
            if value is not None and not await _set(redis, key, float(value)):
                return Response(status_code=500)
        return Response(status_code=200)

    async def get_recent_trades(request: Request) -> Response:
        return _json([trade.to_dict() for trade in state.recent_trades_view(100)])

    async def get_recent_orders(request: Request) -> Response:
        return _json([order.to_dict() for order in state.recent_orders_view(100)])

    async def get_metrics_data(request: Request) -> Response:
        return _json(compute_metrics(state))

    async def get_backtest(request: Request) -> Response:
        params = request.query_params
        try:
            ema_period = int(params.get("ema_period", DEFAULT_EMA_PERIOD))
            risk_reward = float(params.get("risk_reward", DEFAULT_RISK_REWARD))
            stop_buffer = float(params.get("stop_buffer", DEFAULT_STOP_BUFFER))
            strategy = EmaStrategy(ema_period, risk_reward, stop_buffer, BACKTEST_START)
        except ValueError as exc:
            return PlainTextResponse(f"Invalid query: {exc}", status_code=400)

        try:
            candles = await run_in_threadpool(load_candles, data_path)
        except (OSError, ValueError) as exc:
            print(f"Failed to load BTC data: {exc}", file=sys.stderr)
            return _json({"error": f"Failed to load BTC data: {exc}"}, status_code=500)

        result = await run_in_threadpool(strategy.backtest, candles)
        return _json(result.to_dict())

    async def get_pnl_data(request: Request) -> Response:
        return _json(compute_pnl(state.recent_trades))

    async def get_strategies_status(request: Request) -> Response:
        if not await _connected(redis, "strategies"):
            return _json(
                [
                    {
                        "name": FALLBACK_STRATEGY,
                        "enabled": True,
                        "parameters": {},
                        "signals_generated": 0,
                        "last_signal_time": None,
                    }
                ]
            )
        strategies = []
        for name in STRATEGY_NAMES:
            enabled = _as_bool(await _get(redis, f"strategy:{name}:enabled"))
            parameters = {}
            for parameter in ("spread_bps", "quantity"):
                value = _text(await _get(redis, f"strategy:{name}:{parameter}"))
                if value is not None:
                    parameters[parameter] = value
            strategies.append(
                {
                    "name": name,
                    "enabled": True if enabled is None else enabled,
                    "parameters": parameters,
                    "signals_generated": 0,
                    "last_signal_time": None,
                }
            )
        return _json(strategies)

    async def control_strategy(request: Request) -> Response:
        body = await _read_object(request)
        if body is None:
            return PlainTextResponse("Invalid JSON body", status_code=400)
        name = body.get("name")
        action = body.get("action")
        parameters = body.get("parameters")
        if not isinstance(name, str) or not isinstance(action, str):
            return PlainTextResponse("Fields 'name' and 'action' must be strings", status_code=422)
        if parameters is not None and not (
            isinstance(parameters, dict)
            and all(isinstance(value, str) for value in parameters.values())
        ):
            return PlainTextResponse("Field 'parameters' must map names to strings", status_code=422)
        if not await _connected(redis, "strategy control"):
            return Response(status_code=503)

        if action in ("start", "stop"):
            ok = await _set(redis, f"strategy:{name}:enabled", _flag(action == "start"))
            return Response(status_code=200 if ok else 500)
        if action == "update":
            for key, value in (parameters or {}).items():
                if not await _set(redis, f"strategy:{name}:{key}", value):
                    return Response(status_code=500)
            return Response(status_code=200)
        return Response(status_code=400)

    async def get_candles(request: Request) -> Response:
        return _json(list(state.recent_candles))

    async def get_orderbook(request: Request) -> Response:
        symbol = request.query_params.get("symbol", DEFAULT_SYMBOL)
        book = state.order_books.get(symbol)
        if book is None:
            book = OrderBookSnapshot(symbol=symbol, timestamp=0, depth_level=BookDepth.L2)
        return _json(json.loads(encode(book)))

    routes = [
        Route("/", root, methods=["GET"]),
        Route("/favicon.ico", favicon, methods=["GET"]),
        Route("/metrics", serve_metrics, methods=["GET"]),
        Route("/dashboard", serve_dashboard, methods=["GET"]),
        Route("/api/positions", get_positions, methods=["GET"]),
        Route("/api/risk/status", get_risk_status, methods=["GET"]),
        Route("/api/risk/kill-switch", set_kill_switch, methods=["POST"]),
        Route("/api/risk/limits", update_risk_limits, methods=["POST"]),
        Route("/api/trades", get_recent_trades, methods=["GET"]),
        Route("/api/orders", get_recent_orders, methods=["GET"]),
        Route("/api/metrics/data", get_metrics_data, methods=["GET"]),
        Route("/api/backtest", get_backtest, methods=["GET"]),
        Route("/api/pnl", get_pnl_data, methods=["GET"]),
        Route("/api/strategies", get_strategies_status, methods=["GET"]),
        Route("/api/strategies/control", control_strategy, methods=["POST"]),
        Route("/api/candles", get_candles, methods=["GET"]),
        Route("/api/orderbook", get_orderbook, methods=["GET"]),
    ]
    middleware = [
        Middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    ]
    return Starlette(routes=routes, middleware=middleware)