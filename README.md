# hftdesk

Building blocks for a small paper-trading desk. Services talk over ZeroMQ
publish/subscribe sockets, carry JSON messages and share limits and
positions through Redis.

- **Messages**: `hftdesk.models` defines `TickEvent`, `OrderBookSnapshot`,
  `Level`, `Signal`, `OrderRequest` and `ExecutionReport` with their enums.
  `encode(message)` turns a message into compact JSON bytes.
  `decode(kind, data)` parses bytes or text into a message and raises
  `ValueError` on a bad payload.
- **Market data**:
  - `hftdesk.websocket_adapter.WebSocketAdapter` parses exchange feed messages
    into `TickEvent`s. It handles Binance `depthUpdate` and `24hrTicker`, and
    Coinbase `l2update` and `match`. `connect_and_stream(adapter, queue)`
    streams ticks from the feed into an asyncio queue.
  - `hftdesk.orderbook.OrderBookBuilder` keeps the ten best levels per side
    for each symbol.
  - `hftdesk.mdh.MarketDataHandler` keeps fixed-point order books with
    L1/L2/L3 snapshots. It also keeps a trade tape and a `LatencyTracker`.
- **Risk**: `hftdesk.risk.RiskManager.check_order` runs these checks in order:
  1. the kill switch
  2. a 100-messages-per-second rate limit
  3. the maximum order size
  4. ±10% price bands
  5. the position limit
  6. the daily loss limit

  It returns a `RiskDecision`. `signal_to_order` turns a `Signal` into a limit
  order when the signal has a price and a market order when it does not.
- **Execution**: `hftdesk.paper_trading.PaperTradingEngine` fills orders
  against the latest book for the symbol. Market orders get random slippage
  plus market impact, and limit orders fill at the limit or better. Each fill
  takes at most 90% of the quantity at the best level. The engine tracks
  positions and unrealised P&L.
- **Monitoring**:
  - `hftdesk.monitor_state.MonitorState` collects ticks, signals, orders,
    executions, candles and books.
  - `hftdesk.metrics` tracks rates and latency and renders Prometheus text.
  - `hftdesk.analytics` computes trade statistics and FIFO realised P&L.
  - `hftdesk.api.create_app(state, redis=None, data_path="data/btc.csv")`
    builds a Starlette application over all of this.
- **Backtesting**: `hftdesk.backtest.EmaStrategy` runs an EMA-crossover
  backtest with trailing stops over daily candles read by `load_candles`.

## Installing

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Commands

```
hftdesk-risk [--redis-url redis://127.0.0.1/] [--signals tcp://localhost:5557] [--orders tcp://0.0.0.0:5558]
```

This command subscribes to signals and publishes approved orders. It reads the
following Redis keys:

- `risk:max_position`, default 10
- `risk:max_order_size`, default 5
- `risk:max_daily_loss`, default 1000
- `risk:daily_loss`
- `risk:kill_switch`

It stores each approved position under `position:<SYMBOL>`. Price bands come
from the `symbols` set and the `price:<SYMBOL>` keys. Limits and the kill
switch are refreshed every second.

```
hftdesk-execution [--orders tcp://localhost:5559] [--books tcp://localhost:5556] [--reports tcp://0.0.0.0:5560]
```

This command follows order books and executes each incoming order on a
`PaperTradingEngine`, with 2.5 bps base slippage and 1.0 bps market impact.
For each order it publishes an `Acknowledged` report and then the execution
report.

## The monitoring API

`create_app` takes a `MonitorState`, an optional async Redis client such as
`redis.asyncio.Redis`, and the path of the candle CSV. It returns an ASGI
application:

| Path | Method | What it returns |
| --- | --- | --- |
| `/` | GET | redirect to `/dashboard` |
| `/dashboard` | GET | an HTML page linking the endpoints |
| `/metrics` | GET | Prometheus text exposition |
| `/api/metrics/data` | GET | counters, rates, latency and trade statistics |
| `/api/trades` | GET | the latest 100 filled trades, newest first |
| `/api/orders` | GET | the latest 100 orders, newest first |
| `/api/pnl` | GET | cumulative realised P&L and its history |
| `/api/positions` | GET | non-zero `position:*` values in Redis |
| `/api/risk/status` | GET | kill switch, daily loss and limits, with defaults when Redis is unavailable |
| `/api/risk/kill-switch` | POST | `{"active": true}` sets the kill switch; 503 without Redis |
| `/api/risk/limits` | POST | any of `max_position`, `max_order_size`, `max_daily_loss` |
| `/api/strategies` | GET | enablement and parameters of `MarketMaker-1`, `MeanRev-1`, `VWAP-Exec` |
| `/api/strategies/control` | POST | `{"name": ..., "action": "start" \| "stop" \| "update", "parameters": {...}}` |
| `/api/candles` | GET | candles passed to `MonitorState.handle_candle` |
| `/api/orderbook?symbol=BTC-USD` | GET | the latest book for a symbol, or an empty one |
| `/api/backtest` | GET | EMA backtest over the candle CSV |

The backtest endpoint takes three query parameters:

- `ema_period`, default 20
- `risk_reward`, default 2.0
- `stop_buffer`, default 0.001

It starts on 2018-10-08. The CSV needs the columns
`date,open,high,low,close,volume`.

To receive messages, call the `MonitorState.handle_*` methods. Serve the
application with any ASGI server.

## What is not included

- The package has no monitoring command. Nothing subscribes the monitoring
  state to the ZeroMQ streams or starts the HTTP server. You must feed
  `MonitorState` and serve `create_app` yourself.
- There is no market data command. `connect_and_stream` fills a queue, but
  nothing publishes ticks or book snapshots onto ZeroMQ.
- There is no terminal dashboard.

## Using the pieces directly

```python
from hftdesk.models import Side, TickEvent
from hftdesk.orderbook import OrderBookBuilder

builder = OrderBookBuilder()
builder.update(TickEvent(symbol="BTC-USD", timestamp_exchange=1000,
                         timestamp_recv=1100, side=Side.BID,
                         price=50000.0, quantity=1.0, sequence=1))
builder.update(TickEvent(symbol="BTC-USD", timestamp_exchange=1001,
                         timestamp_recv=1101, side=Side.ASK,
                         price=50100.0, quantity=1.0, sequence=2))
book = builder.get_snapshot("BTC-USD")
print(book.mid_price, book.spread)   # 50050.0 100.0
```

```python
import datetime
from hftdesk.backtest import EmaStrategy, load_candles

candles = load_candles("data/btc.csv")
strategy = EmaStrategy(20, 2.0, 0.001, datetime.date(2018, 10, 8))
result = strategy.backtest(candles)
print(result.total_trades, result.fill_rate, result.avg_slippage_bps)
```