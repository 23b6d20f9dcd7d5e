import pytest

from hftdesk.metrics import Metrics, RateTracker
from hftdesk.models import (
    ExecutionReport,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    Side,
    Signal,
    SignalType,
    TickEvent,
)


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_tick(exchange=1_000_000, recv=1_050_000):
    return TickEvent(
        symbol="BTC-USD",
        timestamp_exchange=exchange,
        timestamp_recv=recv,
        side=Side.BID,
        price=50000.0,
        quantity=1.0,
    )


def make_report(status):
    return ExecutionReport(
        order_id="o-1", exec_id="e-1", status=status, filled_qty=1.0,
        fill_price=100.0, timestamp=1,
    )


def test_rate_tracker_counts_within_window():
    clock = Clock()
    tracker = RateTracker(1, clock=clock)
    for _ in range(4):
        tracker.record_tick(10.0)
    tracker.record_signal()
    tracker.record_order()
    tracker.record_order()
    assert tracker.ticks_per_second() == 4.0
    assert tracker.signals_per_second() == 1.0
    assert tracker.orders_per_second() == 2.0


def test_rate_tracker_prunes_old_entries():
    clock = Clock()
    tracker = RateTracker(1, clock=clock)
    tracker.record_tick(5.0)
    tracker.record_tick(7.0)
    clock.now += 1
    tracker.record_tick(9.0)
    assert len(tracker.tick_times) == 3
    clock.now += 1
    tracker.record_tick(11.0)
    assert list(tracker.tick_latencies) == [9.0, 11.0]
    assert len(tracker.tick_times) == len(tracker.tick_latencies)


def test_rate_tracker_prunes_signals_and_orders():
    clock = Clock()
    tracker = RateTracker(2, clock=clock)
    tracker.record_signal()
    tracker.record_order()
    clock.now += 10
    tracker.record_signal()
    tracker.record_order()
    assert len(tracker.signal_times) == 1
    assert len(tracker.order_times) == 1


def test_rate_tracker_window_divides_rate():
    clock = Clock()
    tracker = RateTracker(4, clock=clock)
    for _ in range(2):
        tracker.record_tick(1.0)
    assert tracker.ticks_per_second() == pytest.approx(2 / 4)


def test_latency_stats_empty():
    assert RateTracker(1, clock=Clock()).latency_stats() == (0.0, 0.0, 0.0)


def test_latency_stats_values():
    tracker = RateTracker(1, clock=Clock())
    for value in (3.0, 9.0, 6.0):
        tracker.record_tick(value)
    avg, low, high = tracker.latency_stats()
    assert low == 3.0
    assert high == 9.0
    assert low <= avg <= high


def test_record_tick_counts_and_observes():
    metrics = Metrics()
    metrics.record_tick(make_tick(exchange=0, recv=50_000))
    metrics.record_tick(make_tick(exchange=0, recv=2_000_000))
    assert metrics.ticks_total.value == 2
    assert metrics.tick_latency.count == 2
    assert metrics.tick_latency.sum == 50.0 + 2000.0
    bucket = dict(zip(metrics.tick_latency.buckets, metrics.tick_latency.bucket_counts))
    assert bucket[50.0] == 1
    assert bucket[1000.0] == 1


def test_record_signal_and_order():
    metrics = Metrics()
    metrics.record_signal(Signal("s", "BTC-USD", SignalType.BUY, None, 1.0, 1, "strat"))
    metrics.record_order(OrderRequest("o", "s", "BTC-USD", OrderSide.BUY, OrderType.MARKET,
                                      None, 1.0, 1, "strat"))
    assert metrics.signals_total.value == 1
    assert metrics.orders_total.value == 1


@pytest.mark.parametrize(
    "status, expected",
    [
        (OrderStatus.FILLED, 1),
        (OrderStatus.PARTIALLY_FILLED, 0),
        (OrderStatus.ACKNOWLEDGED, 0),
        (OrderStatus.REJECTED, 0),
    ],
)
def test_record_execution_counts_only_fills(status, expected):
    metrics = Metrics()
    metrics.record_execution(make_report(status))
    assert metrics.fills_total.value == expected


def test_update_rates_copies_tracker():
    tracker = RateTracker(1, clock=Clock())
    tracker.record_tick(2.0)
    tracker.record_tick(8.0)
    tracker.record_signal()
    metrics = Metrics()
    metrics.update_rates(tracker)
    assert metrics.ticks_per_second.value == tracker.ticks_per_second()
    assert metrics.signals_per_second.value == tracker.signals_per_second()
    assert metrics.orders_per_second.value == 0.0
    assert (
        metrics.avg_tick_latency_us.value,
        metrics.min_tick_latency_us.value,
        metrics.max_tick_latency_us.value,
    ) == tracker.latency_stats()


def test_render_exposition_format():
    metrics = Metrics()
    metrics.record_tick(make_tick(exchange=0, recv=50_000))
    text = metrics.render()
    lines = text.splitlines()
    assert "# HELP ticks_total Total ticks processed" in lines
    assert "# TYPE ticks_total counter" in lines
    assert "ticks_total 1" in lines
    assert "# TYPE tick_latency_us histogram" in lines
    assert 'tick_latency_us_bucket{le="+Inf"} 1' in lines
    assert 'tick_latency_us_bucket{le="10"} 0' in lines
    assert "tick_latency_us_count 1" in lines
    assert "# TYPE ticks_per_second gauge" in lines
    assert text.endswith("\n")


def test_render_families_sorted_by_name():
    names = [
        line.split()[2]
        for line in Metrics().render().splitlines()
        if line.startswith("# TYPE")
    ]
    assert names == sorted(names)
    assert len(names) == 13


def test_histogram_buckets_are_cumulative():
    metrics = Metrics()
    for recv in (500, 3_000, 40_000, 900_000, 5_000_000):
        metrics.record_tick(make_tick(exchange=0, recv=recv))
    counts = metrics.tick_latency.bucket_counts
    assert counts == sorted(counts)
    assert counts[-1] <= metrics.tick_latency.count
    assert metrics.tick_latency.count == 5