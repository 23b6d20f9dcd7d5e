"""Throughput and latency tracking plus Prometheus-style metrics."""

from __future__ import annotations

import math
import time
from collections import deque
from typing import Callable, Iterable

from .models import ExecutionReport, OrderRequest, OrderStatus, Signal, TickEvent

TICK_LATENCY_BUCKETS = (1.0, 5.0, 10.0, 50.0, 100.0, 500.0, 1000.0)
ORDER_LATENCY_BUCKETS = (10.0, 50.0, 100.0, 500.0, 1000.0, 5000.0)


def _prune(times: deque, now: int, window: int, *companions: deque) -> None:
    cutoff = max(0, now - window)
    while times and times[0] < cutoff:
        times.popleft()
        for other in companions:
            other.popleft()


class RateTracker:
    """Counts ticks, signals and orders seen within a sliding window of seconds."""

    def __init__(self, window_seconds: int, clock: Callable[[], float] = time.time) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self.tick_times: deque[int] = deque()
        self.signal_times: deque[int] = deque()
        self.order_times: deque[int] = deque()
        self.tick_latencies: deque[float] = deque()

    def _now(self) -> int:
        return int(self._clock())

    def record_tick(self, latency: float) -> None:
        now = self._now()
        self.tick_times.append(now)
        self.tick_latencies.append(latency)
        _prune(self.tick_times, now, self.window_seconds, self.tick_latencies)

    def record_signal(self) -> None:
        now = self._now()
        self.signal_times.append(now)
        _prune(self.signal_times, now, self.window_seconds)

    def record_order(self) -> None:
        now = self._now()
        self.order_times.append(now)
        _prune(self.order_times, now, self.window_seconds)

    def ticks_per_second(self) -> float:
        return len(self.tick_times) / self.window_seconds

    def signals_per_second(self) -> float:
        return len(self.signal_times) / self.window_seconds

    def orders_per_second(self) -> float:
        return len(self.order_times) / self.window_seconds

    def latency_stats(self) -> tuple[float, float, float]:
        """Average, minimum and maximum tick latency in the window."""
        if not self.tick_latencies:
            return (0.0, 0.0, 0.0)
        values = list(self.tick_latencies)
        return (sum(values) / len(values), min(values), max(values))


def _fmt(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


class _Counter:
    kind = "counter"

    def __init__(self, name: str, help_text: str) -> None:
        self.name = name
        self.help = help_text
        self.value = 0.0

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount

    def samples(self) -> Iterable[str]:
        yield f"{self.name} {_fmt(self.value)}"


class _Gauge(_Counter):
    kind = "gauge"

    def set(self, value: float) -> None:
        self.value = float(value)


class _Histogram:
    kind = "histogram"

    def __init__(self, name: str, help_text: str, buckets: Iterable[float]) -> None:
        self.name = name
        self.help = help_text
        self.buckets = tuple(sorted(buckets))
        self.bucket_counts = [0] * len(self.buckets)
        self.count = 0
        self.sum = 0.0

    def observe(self, value: float) -> None:
        self.count += 1
        self.sum += value
        for index, bound in enumerate(self.buckets):
            if value <= bound:
                self.bucket_counts[index] += 1

    def samples(self) -> Iterable[str]:
        for bound, count in zip(self.buckets, self.bucket_counts):
            yield f'{self.name}_bucket{{le="{_fmt(bound)}"}} {count}'
        yield f'{self.name}_bucket{{le="+Inf"}} {self.count}'
        yield f"{self.name}_sum {_fmt(self.sum)}"
        yield f"{self.name}_count {self.count}"


def _latency_us(tick: TickEvent) -> int:
    diff = tick.timestamp_recv - tick.timestamp_exchange
    return diff // 1000 if diff >= 0 else -((-diff) // 1000)


class Metrics:
    """Counters, gauges and histograms for the trading pipeline."""

    def __init__(self) -> None:
        self.ticks_total = _Counter("ticks_total", "Total ticks processed")
        self.signals_total = _Counter("signals_total", "Total signals generated")
        self.orders_total = _Counter("orders_total", "Total orders sent")
        self.fills_total = _Counter("fills_total", "Total fills received")
        self.tick_latency = _Histogram(
            "tick_latency_us", "Tick processing latency in microseconds", TICK_LATENCY_BUCKETS
        )
        self.order_latency = _Histogram(
            "order_latency_us", "Order routing latency in microseconds", ORDER_LATENCY_BUCKETS
        )
        self.active_positions = _Gauge("active_positions", "Current active positions")
        self.ticks_per_second = _Gauge("ticks_per_second", "Ticks processed per second")
        self.signals_per_second = _Gauge("signals_per_second", "Signals generated per second")
        self.orders_per_second = _Gauge("orders_per_second", "Orders sent per second")
        self.avg_tick_latency_us = _Gauge("avg_tick_latency_us", "Average tick latency in microseconds")
        self.min_tick_latency_us = _Gauge("min_tick_latency_us", "Minimum tick latency in microseconds")
        self.max_tick_latency_us = _Gauge("max_tick_latency_us", "Maximum tick latency in microseconds")
        self._all = [
            self.ticks_total,
            self.signals_total,
            self.orders_total,
            self.fills_total,
            self.tick_latency,
            self.order_latency,
            self.active_positions,
            self.ticks_per_second,
            self.signals_per_second,
            self.orders_per_second,
            self.avg_tick_latency_us,
            self.min_tick_latency_us,
            self.max_tick_latency_us,
        ]

    def record_tick(self, tick: TickEvent) -> None:
        self.ticks_total.inc()
        self.tick_latency.observe(float(_latency_us(tick)))

    def record_signal(self, signal: Signal) -> None:
        self.signals_total.inc()

    def record_order(self, order: OrderRequest) -> None:
        self.orders_total.inc()

    def record_execution(self, report: ExecutionReport) -> None:
        if report.status is OrderStatus.FILLED:
            self.fills_total.inc()

    def update_rates(self, tracker: RateTracker) -> None:
        """Copy the tracker's current rates and latency stats into the gauges."""
        self.ticks_per_second.set(tracker.ticks_per_second())
        self.signals_per_second.set(tracker.signals_per_second())
        self.orders_per_second.set(tracker.orders_per_second())
        avg, low, high = tracker.latency_stats()
        self.avg_tick_latency_us.set(avg)
        self.min_tick_latency_us.set(low)
        self.max_tick_latency_us.set(high)

    def render(self) -> str:
        """All metrics in the Prometheus text exposition format."""
        lines: list[str] = []
        for metric in sorted(self._all, key=lambda m: m.name):
            lines.append(f"# HELP {metric.name} {metric.help}")
            lines.append(f"# TYPE {metric.name} {metric.kind}")
            lines.extend(metric.samples())
        return "\n".join(lines) + "\n"