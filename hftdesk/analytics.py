"""Trade statistics and realised P&L derived from the monitor's recent trades."""

from __future__ import annotations

import math
from collections import deque
from typing import Iterable, Iterator

from .monitor_state import MonitorState, TradeEvent

TRADING_DAYS = 252.0
SHARPE_LIMIT = 10.0


def _is_buy(side: str) -> bool:
    return "BUY" in side.upper()


def _ordered(trades: Iterable[TradeEvent]) -> list[TradeEvent]:
    return sorted(trades, key=lambda trade: trade.timestamp)


def _match_fifo(lots: deque, trade: TradeEvent) -> Iterator[float]:
    """Match a sell against open buy lots, oldest first, yielding each match's P&L."""
    remaining = trade.quantity
    while remaining > 0.0 and lots:
        entry_price, entry_qty = lots[0]
        matched = min(entry_qty, remaining)
        remaining -= matched
        if entry_qty <= matched:
            lots.popleft()
        else:
            lots[0] = (entry_price, entry_qty - matched)
        yield (trade.price - entry_price) * matched


def _ratio(numerator: float, denominator: float) -> float:
    try:
        return numerator / denominator
    except ZeroDivisionError:
        if numerator == 0 or math.isnan(numerator):
            return math.nan
        return math.copysign(math.inf, numerator)


def compute_metrics(state: MonitorState) -> dict:
    """Counters, rates, latencies and trade statistics for the dashboard.

    Also refreshes the rate and latency gauges from the state's tracker.
    """
    metrics = state.metrics
    tracker = state.rate_tracker
    metrics.update_rates(tracker)
    avg_latency, min_latency, max_latency = tracker.latency_stats()

    total_volume = 0.0
    total_pnl = 0.0
    total_size = 0.0
    winning = losing = 0
    trade_count = 0
    cumulative = peak = max_drawdown = 0.0
    lots: dict[str, deque] = {}

    for trade in _ordered(state.recent_trades):
        total_volume += trade.quantity * trade.price
        total_size += trade.quantity
        trade_count += 1
        symbol_lots = lots.setdefault(trade.symbol, deque())
        if _is_buy(trade.side):
            symbol_lots.append((trade.price, trade.quantity))
            continue
        for pnl in _match_fifo(symbol_lots, trade):
            total_pnl += pnl
            cumulative += pnl
            peak = max(peak, cumulative)
            max_drawdown = max(max_drawdown, peak - cumulative)
            if pnl > 0.0:
                winning += 1
            elif pnl < 0.0:
                losing += 1

    if trade_count > 0:
        win_rate = _ratio(float(winning), float(winning + losing)) * 100.0
        avg_trade_pnl = total_pnl / trade_count
        avg_trade_size = total_size / trade_count
    else:
        win_rate = avg_trade_pnl = avg_trade_size = 0.0

    sharpe = 0.0
    if trade_count > 1 and total_pnl != 0.0:
        mean_return = total_pnl / trade_count
        std_dev = abs(mean_return) * 0.5
        if std_dev > 0.0:
            sharpe = mean_return / std_dev * math.sqrt(TRADING_DAYS)
    sharpe = min(max(sharpe, -SHARPE_LIMIT), SHARPE_LIMIT)

    return {
        "ticks_total": metrics.ticks_total.value,
        "signals_total": metrics.signals_total.value,
        "orders_total": metrics.orders_total.value,
        "fills_total": metrics.fills_total.value,
        "ticks_per_second": tracker.ticks_per_second(),
        "signals_per_second": tracker.signals_per_second(),
        "orders_per_second": tracker.orders_per_second(),
        "avg_tick_latency_us": avg_latency,
        "min_tick_latency_us": min_latency,
        "max_tick_latency_us": max_latency,
        "total_volume": total_volume,
        "sharpe_ratio": sharpe,
        "win_rate": win_rate,
        "avg_trade_pnl": avg_trade_pnl,
        "total_trades": trade_count,
        "avg_trade_size": avg_trade_size,
        "max_drawdown": max_drawdown,
        "total_pnl": total_pnl,
    }


def compute_pnl(trades: Iterable[TradeEvent]) -> dict:
    """Running P&L after each trade: buys count as cost, sells add matched P&L."""
    lots: dict[str, deque] = {}
    cumulative = 0.0
    history: list[tuple[int, float]] = []
    for trade in _ordered(trades):
        symbol_lots = lots.setdefault(trade.symbol, deque())
        if _is_buy(trade.side):
            symbol_lots.append((trade.price, trade.quantity))
            cumulative -= trade.price * trade.quantity
        else:
            cumulative += sum(_match_fifo(symbol_lots, trade))
        history.append((trade.timestamp, cumulative))
    return {"cumulative_pnl": cumulative, "pnl_history": history}