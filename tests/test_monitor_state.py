import pytest

from hftdesk.metrics import RateTracker
from hftdesk.models import (
    BookDepth,
    ExecutionReport,
    OrderBookSnapshot,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    Side,
    Signal,
    SignalType,
    TickEvent,
)
from hftdesk.monitor_state import (
    MAX_BOOKS,
    MAX_ORDERS_BY_ID,
    MAX_RECENT_ORDERS,
    ORDER_EVICTION_BATCH,
    MonitorState,
)


def _state():
    return MonitorState(rate_tracker=RateTracker(1, clock=lambda: 1000.0))


def _order(order_id="o1", side=OrderSide.BUY, price=None):
    return OrderRequest(
        order_id=order_id,
        signal_id="s1",
        symbol="BTC-USD",
        side=side,
        order_type=OrderType.LIMIT if price is not None else OrderType.MARKET,
        price=price,
        quantity=0.5,
        timestamp=42,
        strategy_name="MarketMaker-1",
    )


def _report(order_id="o1", status=OrderStatus.FILLED, fill_price=50000.0):
    return ExecutionReport(
        order_id=order_id,
        exec_id="e1",
        status=status,
        filled_qty=0.5,
        fill_price=fill_price,
        timestamp=77,
    )


def test_handle_tick_counts_and_records_latency():
    state = _state()
    tick = TickEvent("BTC-USD", 1000, 5000, Side.BID, 50000.0, 1.0, 1)
    state.handle_tick(tick)
    assert state.metrics.ticks_total.value == 1.0
    assert list(state.rate_tracker.tick_latencies) == [4.0]
    assert state.rate_tracker.ticks_per_second() == 1.0


def test_handle_signal_counts():
    state = _state()
    signal = Signal("s1", "BTC-USD", SignalType.BUY, None, 1.0, 1, "MeanRev-1")
    state.handle_signal(signal)
    state.handle_signal(signal)
    assert state.metrics.signals_total.value == 2.0
    assert state.rate_tracker.signals_per_second() == 2.0


def test_handle_order_lists_pending_event():
    state = _state()
    event = state.handle_order(_order(price=49000.0))
    assert event.status == "PENDING"
    assert event.side == "Buy"
    assert event.price == 49000.0
    assert event.strategy == "MarketMaker-1"
    assert state.orders_by_id["o1"].symbol == "BTC-USD"
    assert state.metrics.orders_total.value == 1.0
    assert state.recent_orders_view() == [event]


def test_filled_execution_becomes_trade_with_order_details():
    state = _state()
    state.handle_order(_order(side=OrderSide.SELL))
    trade = state.handle_execution(_report())
    assert trade is not None
    assert trade.symbol == "BTC-USD"
    assert trade.side == "Sell"
    assert trade.strategy == "MarketMaker-1"
    assert trade.price == 50000.0
    assert trade.status == "Filled"
    assert trade.timestamp == 77
    assert state.recent_orders_view()[0].status == "Filled"
    assert state.metrics.fills_total.value == 1.0
    assert state.recent_trades_view() == [trade]


def test_non_fill_updates_status_only():
    state = _state()
    state.handle_order(_order())
    assert state.handle_execution(_report(status=OrderStatus.ACKNOWLEDGED, fill_price=None)) is None
    assert state.recent_orders_view()[0].status == "Acknowledged"
    assert state.recent_trades_view() == []
    assert state.metrics.fills_total.value == 0.0


def test_execution_for_unknown_order_uses_placeholders():
    state = _state()
    trade = state.handle_execution(_report(order_id="missing", fill_price=None))
    assert (trade.symbol, trade.side, trade.strategy) == ("UNKNOWN", "UNKNOWN", "UNKNOWN")
    assert trade.price == 0.0


def test_orders_by_id_evicts_oldest_batch():
    state = _state()
    for n in range(MAX_ORDERS_BY_ID + 1):
        state.handle_order(_order(order_id=f"o{n}"))
    assert len(state.orders_by_id) == MAX_ORDERS_BY_ID + 1 - ORDER_EVICTION_BATCH
    assert "o0" not in state.orders_by_id
    assert f"o{MAX_ORDERS_BY_ID}" in state.orders_by_id
    assert len(state.recent_orders) == MAX_RECENT_ORDERS


@pytest.mark.parametrize("limit", [1, 3, 10])
def test_views_are_newest_first_and_limited(limit):
    state = _state()
    for n in range(5):
        state.handle_order(_order(order_id=f"o{n}"))
    view = state.recent_orders_view(limit)
    assert len(view) == min(limit, 5)
    assert view[0].order_id == "o4"
    assert [e.order_id for e in view] == sorted((e.order_id for e in view), reverse=True)


def test_books_kept_for_limited_symbols():
    state = _state()
    for n in range(MAX_BOOKS + 2):
        state.handle_book(OrderBookSnapshot(symbol=f"SYM{n}", timestamp=n, depth_level=BookDepth.L2))
    assert len(state.order_books) == MAX_BOOKS
    assert f"SYM{MAX_BOOKS + 1}" in state.order_books


def test_candles_are_stored_in_order():
    state = _state()
    state.handle_candle({"close": 1.0})
    state.handle_candle({"close": 2.0})
    assert list(state.recent_candles) == [{"close": 1.0}, {"close": 2.0}]