"""EMA crossover backtester with trailing stops over daily candles."""

from __future__ import annotations

import csv
import math
import random
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Optional, Sequence

STARTING_EQUITY = 100000.0
RISK_PER_TRADE = 0.01
FEE_RATE = 0.001
MAX_SLIPPAGE_BPS = 2.5
BENCHMARK_COST_BPS = 5.0
RECORD_EVERY = 10
MARKET = "MARKET"


@dataclass
class Candle:
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass
class Trade:
    date: date
    side: str
    price: float
    quantity: float
    order_type: str


@dataclass
class BacktestResult:
    total_trades: int = 0
    avg_slippage_bps: float = 0.0
    fees_and_rebates: float = 0.0
    cost_savings_bps: float = 0.0
    fill_rate: float = 0.0
    trades: list[Trade] = field(default_factory=list)
    equity_curve: list[tuple[date, float]] = field(default_factory=list)
    order_type_distribution: dict[str, int] = field(default_factory=dict)
    fill_rate_history: list[tuple[date, float]] = field(default_factory=list)
    slippage_history: list[tuple[date, float]] = field(default_factory=list)

    def to_dict(self) -> dict:
        """A JSON-ready form with dates as ISO strings."""

        def series(points: list[tuple[date, float]]) -> list[list]:
            return [[day.isoformat(), value] for day, value in points]

        trades = []
        for trade in self.trades:
            item = asdict(trade)
            item["date"] = trade.date.isoformat()
            trades.append(item)
        return {
            "total_trades": self.total_trades,
            "avg_slippage_bps": self.avg_slippage_bps,
            "fees_and_rebates": self.fees_and_rebates,
            "cost_savings_bps": self.cost_savings_bps,
            "fill_rate": self.fill_rate,
            "trades": trades,
            "equity_curve": series(self.equity_curve),
            "order_type_distribution": dict(self.order_type_distribution),
            "fill_rate_history": series(self.fill_rate_history),
            "slippage_history": series(self.slippage_history),
        }


def calculate_ema(values: Sequence[float], period: int) -> list[float]:
    """EMA seeded with the simple average of the first `period` values.

    Returns an empty list when there are fewer values than the period.
    """
    if period < 1:
        raise ValueError("EMA period must be at least 1")
    if len(values) < period:
        return []
    multiplier = 2.0 / (period + 1.0)
    ema = [sum(values[:period]) / period]
    for value in values[period:]:
        ema.append((value - ema[-1]) * multiplier + ema[-1])
    return ema


def _divide(numerator: float, denominator: float) -> float:
    try:
        return numerator / denominator
    except ZeroDivisionError:
        if numerator == 0 or math.isnan(numerator):
            return math.nan
        return math.copysign(math.inf, numerator) * math.copysign(1.0, denominator)


class _Ledger:
    """Running equity, fees, fills and slippage of one backtest."""

    def __init__(self, rng: random.Random) -> None:
        self.rng = rng
        self.equity = STARTING_EQUITY
        self.orders = 0
        self.fills = 0
        self.fees = 0.0
        self.slippage_total = 0.0
        self.slippage_samples = 0
        self.trades: list[Trade] = []
        self.distribution: dict[str, int] = {}

    def slipped(self, price: float) -> float:
        slippage_bps = self.rng.random() * (2 * MAX_SLIPPAGE_BPS) - MAX_SLIPPAGE_BPS
        self.slippage_total += abs(slippage_bps)
        self.slippage_samples += 1
        return price * (1.0 + slippage_bps / 10000.0)

    def charge(self, notional: float) -> float:
        fee = notional * FEE_RATE
        self.fees += fee
        return fee

    def book(self, day: date, side: str, price: float, quantity: float, counted: bool = True) -> None:
        self.trades.append(Trade(day, side, price, quantity, MARKET))
        if counted:
            self.distribution[MARKET] = self.distribution.get(MARKET, 0) + 1
        self.fills += 1

    def fill_rate(self) -> float:
        return self.fills / self.orders * 100.0 if self.orders > 0 else 0.0

    def avg_slippage(self) -> float:
        if self.slippage_samples > 0:
            return self.slippage_total / self.slippage_samples
        return 0.0


class EmaStrategy:
    """Enter on close crossing the EMA; exit on a trailing stop or the opposite cross."""

    def __init__(
        self,
        ema_period: int,
        risk_reward_ratio: float,
        stop_buffer_pct: float,
        start_date: date,
        rng: Optional[random.Random] = None,
    ) -> None:
        if ema_period < 1:
            raise ValueError("EMA period must be at least 1")
        self.ema_period = ema_period
        self.risk_reward_ratio = risk_reward_ratio
        self.stop_buffer_pct = stop_buffer_pct
        self.start_date = start_date
        self._rng = rng if rng is not None else random.Random()

    def backtest(self, candles: Sequence[Candle]) -> BacktestResult:
        period = self.ema_period
        if len(candles) < period:
            return BacktestResult()

        start_idx = next(
            (index for index, candle in enumerate(candles) if candle.date >= self.start_date), 0
        )
        series = list(candles[max(0, start_idx - period):])
        if len(series) < period:
            return BacktestResult()

        ema_values = calculate_ema([candle.close for candle in series], period)
        ledger = _Ledger(self._rng)
        buffer = self.stop_buffer_pct
        # (entry_price, signed quantity, stop_loss)
        position: Optional[tuple[float, float, float]] = None
        equity_curve: list[tuple[date, float]] = []
        fill_rate_history: list[tuple[date, float]] = []
        slippage_history: list[tuple[date, float]] = []
        last_index = len(series) - 1

        for i in range(period, len(series)):
            candle = series[i]
            prev_candle = series[i - 1]
            ema = ema_values[i - period]
            prev_close = prev_candle.close

            should_buy = candle.close > ema and prev_close <= ema
            should_sell = candle.close < ema and prev_close >= ema

            if position is not None:
                entry_price, quantity, stop_loss = position
                is_long = quantity > 0.0
                if is_long:
                    new_stop = max(prev_candle.low * (1.0 - buffer), stop_loss)
                    hit_stop = candle.low <= new_stop
                else:
                    new_stop = min(prev_candle.high * (1.0 + buffer), stop_loss)
                    hit_stop = candle.high >= new_stop

                if hit_stop or should_sell:
                    ledger.orders += 1
                    exit_price = new_stop if hit_stop else candle.close
                    filled = ledger.slipped(exit_price)
                    size = abs(quantity)
                    pnl = (filled - entry_price) * size if is_long else (entry_price - filled) * size
                    fee = ledger.charge(filled * size)
                    ledger.equity += pnl - fee
                    ledger.book(candle.date, "SELL" if is_long else "BUY", filled, size)
                    position = None
                else:
                    position = (entry_price, quantity, new_stop)
            elif should_buy:
                stop_loss = prev_candle.low * (1.0 - buffer)
                risk = candle.close - stop_loss
                quantity = _divide(ledger.equity * RISK_PER_TRADE, risk)
                ledger.orders += 1
                filled = ledger.slipped(candle.close)
                ledger.equity -= ledger.charge(filled * quantity)
                ledger.book(candle.date, "BUY", filled, quantity)
                position = (filled, quantity, stop_loss)
            elif should_sell:
                stop_loss = prev_candle.high * (1.0 + buffer)
                risk = stop_loss - candle.close
                quantity = -_divide(ledger.equity * RISK_PER_TRADE, risk)
                ledger.orders += 1
                filled = ledger.slipped(candle.close)
                ledger.equity -= ledger.charge(filled * abs(quantity))
                ledger.book(candle.date, "SELL", filled, abs(quantity))
                position = (filled, quantity, stop_loss)

            if i % RECORD_EVERY == 0 or i == last_index:
                equity_curve.append((candle.date, ledger.equity))
                fill_rate_history.append((candle.date, ledger.fill_rate()))
                slippage_history.append((candle.date, ledger.avg_slippage()))

        if position is not None:
            entry_price, quantity, _ = position
            last = series[-1]
            filled = ledger.slipped(last.close)
            if quantity > 0.0:
                pnl = (filled - entry_price) * quantity
            else:
                pnl = (entry_price - filled) * abs(quantity)
            fee = ledger.charge(filled * abs(quantity))
            ledger.equity += pnl - fee
            ledger.book(last.date, "SELL" if quantity > 0.0 else "BUY", filled, abs(quantity), counted=False)
            ledger.orders += 1
            equity_curve.append((last.date, ledger.equity))

        avg_slippage = ledger.avg_slippage()
        return BacktestResult(
            total_trades=ledger.fills,
            avg_slippage_bps=avg_slippage,
            fees_and_rebates=ledger.fees,
            cost_savings_bps=BENCHMARK_COST_BPS - avg_slippage,
            fill_rate=ledger.fill_rate(),
            trades=ledger.trades,
            equity_curve=equity_curve,
            order_type_distribution=ledger.distribution,
            fill_rate_history=fill_rate_history,
            slippage_history=slippage_history,
        )


_COLUMNS = ("open", "high", "low", "close", "volume")


def load_candles(path: str = "data/btc.csv") -> list[Candle]:
    """Read daily candles from a CSV with a header row, sorted by date.

    Raises OSError when the file cannot be read and ValueError on a bad row.
    """
    candles: list[Candle] = []
    with open(path, newline="", encoding="utf-8") as handle:
        for line, row in enumerate(csv.DictReader(handle), start=2):
            try:
                day = datetime.strptime(row["date"], "%Y-%m-%d").date()
                values = {name: float(row[name]) for name in _COLUMNS}
            except (KeyError, TypeError, ValueError) as exc:
                raise ValueError(f"{path}:{line}: invalid candle row: {exc}") from exc
            candles.append(Candle(date=day, **values))
    candles.sort(key=lambda candle: candle.date)
    return candles