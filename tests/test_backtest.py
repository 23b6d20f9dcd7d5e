import json
import math
import random
from datetime import date, timedelta

import pytest

from hftdesk.backtest import (
    BacktestResult,
    Candle,
    EmaStrategy,
    calculate_ema,
    load_candles,
)

START = date(2020, 1, 1)


def _candles(closes, start=START):
    return [
        Candle(start + timedelta(days=i), c, c + 1.0, c - 1.0, c, 1000.0)
        for i, c in enumerate(closes)
    ]


def _strategy(seed=1, start=START, period=20):
    return EmaStrategy(period, 2.0, 0.001, start, rng=random.Random(seed))


RISING = [100.0] * 30 + [110.0 + 10.0 * k for k in range(10)]
FALLING = [100.0] * 30 + [90.0 - 5.0 * k for k in range(9)]
STOPPED = [100.0] * 30 + [110.0, 120.0, 80.0]


def test_ema_too_few_values_is_empty():
    assert calculate_ema([1.0, 2.0], 3) == []


def test_ema_seeded_with_average():
    assert calculate_ema([2.0, 4.0, 6.0], 3) == [4.0]


def test_ema_constant_series_and_length():
    values = [7.5] * 12
    ema = calculate_ema(values, 5)
    assert len(ema) == len(values) - 5 + 1
    assert all(v == pytest.approx(7.5) for v in ema)


def test_ema_rejects_non_positive_period():
    with pytest.raises(ValueError):
        calculate_ema([1.0, 2.0], 0)


def test_strategy_rejects_zero_period():
    with pytest.raises(ValueError):
        EmaStrategy(0, 2.0, 0.001, START)


def test_too_few_candles_gives_empty_result():
    result = _strategy().backtest(_candles([100.0] * 5))
    assert result == BacktestResult()


def test_flat_market_makes_no_trades():
    result = _strategy().backtest(_candles([100.0] * 30))
    assert result.trades == []
    assert result.total_trades == 0
    assert result.fill_rate == 0.0
    assert [v for _, v in result.equity_curve] == [100000.0, 100000.0]


def test_long_entry_closed_at_end():
    candles = _candles(RISING)
    result = _strategy().backtest(candles)
    assert [t.side for t in result.trades] == ["BUY", "SELL"]
    assert result.total_trades == len(result.trades)
    assert result.order_type_distribution == {"MARKET": 1}
    assert result.fill_rate == 100.0
    assert result.equity_curve[-1][0] == candles[-1].date
    assert result.equity_curve[-1][1] > 100000.0
    assert result.trades[0].date == candles[30].date


def test_short_entry_closed_at_end():
    result = _strategy().backtest(_candles(FALLING))
    assert [t.side for t in result.trades] == ["SELL", "BUY"]
    assert result.trades[0].quantity == result.trades[1].quantity
    assert result.equity_curve[-1][1] > 100000.0


def test_trailing_stop_exit_price():
    result = _strategy().backtest(_candles(STOPPED))
    assert [t.side for t in result.trades] == ["BUY", "SELL"]
    assert result.order_type_distribution == {"MARKET": 2}
    stop = 119.0 * (1.0 - 0.001)
    assert abs(result.trades[1].price / stop - 1.0) <= 2.5e-4


def test_slippage_bounds_and_cost_savings():
    result = _strategy(seed=3).backtest(_candles(RISING))
    assert 0.0 <= result.avg_slippage_bps <= 2.5
    assert result.cost_savings_bps == pytest.approx(5.0 - result.avg_slippage_bps)
    assert result.fees_and_rebates > 0.0
    for trade, base in zip(result.trades, (110.0, RISING[-1])):
        assert abs(trade.price / base - 1.0) <= 2.5e-4


def test_same_seed_same_result():
    candles = _candles(RISING)
    first = _strategy(seed=11).backtest(candles)
    second = _strategy(seed=11).backtest(candles)
    assert first.to_dict() == second.to_dict()


def test_start_date_past_data_uses_everything():
    candles = _candles(RISING)
    early = _strategy(seed=5).backtest(candles)
    late = _strategy(seed=5, start=date(2099, 1, 1)).backtest(candles)
    assert early.to_dict() == late.to_dict()


def test_trades_never_precede_start_date():
    closes = [100.0 + 10.0 * math.sin(i / 3.0) for i in range(120)]
    candles = _candles(closes)
    start = candles[60].date
    result = _strategy(seed=2, start=start).backtest(candles)
    assert result.trades
    assert all(t.date >= start for t in result.trades)


def test_history_lengths_match():
    result = _strategy().backtest(_candles(RISING))
    assert len(result.fill_rate_history) == len(result.slippage_history)
    assert len(result.equity_curve) == len(result.fill_rate_history) + 1


def test_to_dict_is_json_ready():
    result = _strategy().backtest(_candles(RISING))
    data = json.loads(json.dumps(result.to_dict()))
    assert data["trades"][0]["date"] == "2020-01-31"
    assert data["trades"][0]["order_type"] == "MARKET"
    assert data["equity_curve"][-1][0] == (START + timedelta(days=39)).isoformat()
    assert data["total_trades"] == 2


def test_load_candles_sorted(tmp_path):
    path = tmp_path / "btc.csv"
    path.write_text(
        "date,open,high,low,close,volume\n"
        "2018-10-09,2.0,3.0,1.0,2.5,10\n"
        "2018-10-08,1.0,2.0,0.5,1.5,20\n"
    )
    candles = load_candles(str(path))
    assert [c.date for c in candles] == [date(2018, 10, 8), date(2018, 10, 9)]
    assert candles[0].close == 1.5
    assert candles[1].volume == 10.0


def test_load_candles_bad_date(tmp_path):
    path = tmp_path / "btc.csv"
    path.write_text("date,open,high,low,close,volume\n10/08/2018,1,2,0.5,1.5,20\n")
    with pytest.raises(ValueError):
        load_candles(str(path))


def test_load_candles_missing_column(tmp_path):
    path = tmp_path / "btc.csv"
    path.write_text("date,open,high,low,close\n2018-10-08,1,2,0.5,1.5\n")
    with pytest.raises(ValueError):
        load_candles(str(path))


def test_load_candles_bad_number(tmp_path):
    path = tmp_path / "btc.csv"
    path.write_text("date,open,high,low,close,volume\n2018-10-08,x,2,0.5,1.5,20\n")
    with pytest.raises(ValueError):
        load_candles(str(path))


def test_load_candles_missing_file(tmp_path):
    with pytest.raises(OSError):
        load_candles(str(tmp_path / "absent.csv"))