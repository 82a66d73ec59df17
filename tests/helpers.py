import numpy as np
import pandas as pd

from portsim.feed import FrameFeed, TradingCalendar
from portsim.measurement import PerformanceMeasurement
from portsim.metrics import Performance
from portsim.transaction import Transaction, TransactionKind


def trading_days(start: str, periods: int) -> pd.DatetimeIndex:
    return pd.bdate_range(start, periods=periods)


def make_feed(prices: dict, start: str = "2021-01-04", dividends: dict = None,
              splits: dict = None, risk_free=0.0):
    """FrameFeed over business days from `start`; event dicts map security -> {day index: amount}."""
    n = len(next(iter(prices.values())))
    index = trading_days(start, n)
    frame = pd.DataFrame(prices, index=index)

    def _events(events):
        if not events:
            return None
        cols = {}
        for security, by_day in events.items():
            cols[security] = pd.Series({index[i]: amount for i, amount in by_day.items()})
        return pd.DataFrame(cols)

    feed = FrameFeed(frame, dividends=_events(dividends), splits=_events(splits), risk_free=risk_free)
    return feed, TradingCalendar.from_days(index)


def rising(start: float, rate: float, n: int) -> list:
    return [start * (1.0 + rate) ** k for k in range(n)]


def make_performance(values, dates=None, start: str = "2021-01-04", benchmark=None,
                     risk_free=None, deposited=None, withdrawn=None, **columns) -> Performance:
    """
    Performance built straight from value series.

    Growth-of-$10k columns are derived from the flow-adjusted day returns;
    extra keyword lists set any other measurement field per day.
    """
    values = np.asarray(values, dtype=float)
    n = len(values)
    dates = pd.DatetimeIndex(dates) if dates is not None else trading_days(start, n)
    benchmark = np.asarray(benchmark if benchmark is not None else values, dtype=float)
    risk_free = np.asarray(risk_free if risk_free is not None else np.full(n, values[0]), dtype=float)
    deposited = np.asarray(deposited if deposited is not None else np.full(n, values[0]), dtype=float)
    withdrawn = np.asarray(withdrawn if withdrawn is not None else np.zeros(n), dtype=float)

    def _growth(series):
        g = [10_000.0]
        for i in range(1, n):
            flow = (deposited[i] - deposited[i - 1]) - (withdrawn[i] - withdrawn[i - 1])
            g.append(g[-1] * (series[i] - flow) / series[i - 1])
        return g

    sg, bg, rg = _growth(values), _growth(benchmark), _growth(risk_free)
    perf = Performance("test")
    for i in range(n):
        fields = dict(
            time=dates[i], value=values[i], benchmark_value=benchmark[i],
            risk_free_value=risk_free[i], total_deposited=deposited[i],
            total_withdrawn=withdrawn[i], strategy_growth_of_10k=sg[i],
            benchmark_growth_of_10k=bg[i], risk_free_growth_of_10k=rg[i],
            after_tax_value=values[i],
        )
        for name, series in columns.items():
            fields[name] = series[i]
        perf.append(PerformanceMeasurement(**fields))
    return perf


def buy(date, security, shares, price, **kwargs) -> Transaction:
    return Transaction(date=pd.Timestamp(date), security=security, kind=TransactionKind.BUY,
                       shares=shares, price_per_share=price, total_value=shares * price, **kwargs)


def sell(date, security, shares, price, **kwargs) -> Transaction:
    return Transaction(date=pd.Timestamp(date), security=security, kind=TransactionKind.SELL,
                       shares=shares, price_per_share=price, total_value=shares * price, **kwargs)


class CancelAfter:
    """Cancellation token that trips after `limit` checks."""

    def __init__(self, limit: int):
        self.limit = limit
        self.calls = 0

    def is_set(self) -> bool:
        self.calls += 1
        return self.calls > self.limit
