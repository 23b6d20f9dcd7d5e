from hftdesk.models import Side, TickEvent
from hftdesk.orderbook import OrderBookBuilder


def _tick(side, price, quantity, seq=1, symbol="BTC-USD"):
    return TickEvent(
        symbol=symbol,
        timestamp_exchange=1000 + seq,
        timestamp_recv=1100 + seq,
        side=side,
        price=price,
        quantity=quantity,
        sequence=seq,
    )


def test_orderbook_builder_new():
    builder = OrderBookBuilder()
    assert builder.get_all_symbols() == []
    assert builder.get_snapshot("BTC-USD") is None


def test_orderbook_builder_update_bid():
    builder = OrderBookBuilder()
    builder.update(_tick(Side.BID, 50000.0, 1.0))
    book = builder.get_snapshot("BTC-USD")
    assert len(book.bids) == 1
    assert book.bids[0].price == 50000.0
    assert book.bids[0].quantity == 1.0


def test_orderbook_builder_update_ask():
    builder = OrderBookBuilder()
    builder.update(_tick(Side.ASK, 50100.0, 2.0))
    book = builder.get_snapshot("BTC-USD")
    assert len(book.asks) == 1
    assert book.asks[0].price == 50100.0
    assert book.asks[0].quantity == 2.0


def test_orderbook_builder_calculate_mid_price():
    builder = OrderBookBuilder()
    builder.update(_tick(Side.BID, 50000.0, 1.0, seq=1))
    builder.update(_tick(Side.ASK, 50100.0, 1.0, seq=2))
    book = builder.get_snapshot("BTC-USD")
    assert book.mid_price == 50050.0
    assert book.spread == 100.0


def test_orderbook_builder_bid_sorting():
    builder = OrderBookBuilder()
    builder.update(_tick(Side.BID, 49800.0, 1.0, seq=1))
    builder.update(_tick(Side.BID, 50000.0, 1.0, seq=2))
    builder.update(_tick(Side.BID, 49900.0, 1.0, seq=3))
    book = builder.get_snapshot("BTC-USD")
    assert [level.price for level in book.bids] == [50000.0, 49900.0, 49800.0]


def test_orderbook_builder_ask_sorting():
    builder = OrderBookBuilder()
    builder.update(_tick(Side.ASK, 50200.0, 1.0, seq=1))
    builder.update(_tick(Side.ASK, 50100.0, 1.0, seq=2))
    builder.update(_tick(Side.ASK, 50300.0, 1.0, seq=3))
    book = builder.get_snapshot("BTC-USD")
    assert [level.price for level in book.asks] == [50100.0, 50200.0, 50300.0]


def test_orderbook_builder_zero_quantity_removes_level():
    builder = OrderBookBuilder()
    builder.update(_tick(Side.BID, 50000.0, 1.0, seq=1))
    assert len(builder.get_snapshot("BTC-USD").bids) == 1
    builder.update(_tick(Side.BID, 50000.0, 0.0, seq=2))
    assert len(builder.get_snapshot("BTC-USD").bids) == 0


def test_orderbook_builder_multiple_symbols():
    builder = OrderBookBuilder()
    builder.update(_tick(Side.BID, 50000.0, 1.0, seq=1))
    builder.update(_tick(Side.BID, 3000.0, 1.0, seq=2, symbol="ETH-USD"))
    assert len(builder.get_all_symbols()) == 2
    assert builder.get_snapshot("BTC-USD").symbol == "BTC-USD"
    assert builder.get_snapshot("ETH-USD").symbol == "ETH-USD"


def test_same_price_replaces_quantity():
    builder = OrderBookBuilder()
    builder.update(_tick(Side.ASK, 50100.0, 1.0, seq=1))
    builder.update(_tick(Side.ASK, 50100.0, 3.0, seq=2))
    book = builder.get_snapshot("BTC-USD")
    assert len(book.asks) == 1
    assert book.asks[0].quantity == 3.0


def test_keeps_only_best_ten_levels():
    builder = OrderBookBuilder()
    for seq, price in enumerate(range(100, 115), start=1):
        builder.update(_tick(Side.BID, float(price), 1.0, seq=seq))
    bids = builder.get_snapshot("BTC-USD").bids
    assert len(bids) == 10
    assert bids[0].price == 114.0
    assert bids[-1].price == 105.0


def test_trade_tick_leaves_levels_and_updates_timestamp():
    builder = OrderBookBuilder()
    builder.update(_tick(Side.BID, 50000.0, 1.0, seq=1))
    builder.update(_tick(Side.TRADE, 50050.0, 0.5, seq=5))
    book = builder.get_snapshot("BTC-USD")
    assert len(book.bids) == 1
    assert book.asks == []
    assert book.timestamp == 1105


def test_snapshot_is_a_copy():
    builder = OrderBookBuilder()
    builder.update(_tick(Side.BID, 50000.0, 1.0))
    snapshot = builder.get_snapshot("BTC-USD")
    snapshot.bids.clear()
    assert len(builder.get_snapshot("BTC-USD").bids) == 1