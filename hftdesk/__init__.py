"""Paper-trading desk: market data books, risk checks, simulated execution, monitoring API and backtests."""

__version__ = "0.1.0"