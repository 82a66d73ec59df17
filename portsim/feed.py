"""
Market data and trading calendar collaborators.

The performance pipeline only talks to the MarketDataFeed protocol and a
TradingCalendar snapshot; FrameFeed is an in-memory implementation over
pandas objects, used by tests and stand-alone runs.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Union

import numpy as np
import pandas as pd

from portsim.errors import DataUnavailableError

logger = logging.getLogger(__name__)


class MarketDataFeed(Protocol):
    def price(self, security: str, date) -> float:
        """Close price on date, NaN when unknown."""

    def latest_price_before(self, security: str, date) -> float:
        """Most recent known close at or before date."""

    def dividends(self, security: str) -> pd.Series:
        """Cash dividend per share indexed by ex-date."""

    def splits(self, security: str) -> pd.Series:
        """Split factor (new shares per old share) indexed by date."""

    def risk_free_rate(self, date) -> float:
        """Annualized risk-free rate in percent."""


@dataclass(frozen=True, eq=False)
class TradingCalendar:
    """Immutable, versioned list of trading days."""
    days: pd.DatetimeIndex
    version: str

    @classmethod
    def from_days(cls, days: Iterable, version: Optional[str] = None) -> "TradingCalendar":
        idx = pd.DatetimeIndex(pd.to_datetime(list(days))).normalize().unique().sort_values()
        if version is None:
            digest = hashlib.blake2b(digest_size=8)
            digest.update(idx.asi8.tobytes())
            version = digest.hexdigest()
        return cls(days=idx, version=version)

    @classmethod
    def from_business_days(cls, start, end, holidays: Iterable = (),
                           version: Optional[str] = None) -> "TradingCalendar":
        days = pd.bdate_range(start, end, freq='C', holidays=list(holidays))
        return cls.from_days(days, version)

    def __len__(self):
        return len(self.days)

    def trading_days(self, start, end) -> pd.DatetimeIndex:
        start, end = pd.Timestamp(start).normalize(), pd.Timestamp(end).normalize()
        return self.days[(self.days >= start) & (self.days <= end)]

    def is_trading_day(self, date) -> bool:
        return pd.Timestamp(date).normalize() in self.days

    def _is_last_in_period(self, date, freq: str) -> bool:
        date = pd.Timestamp(date).normalize()
        if not self.is_trading_day(date):
            return False
        pos = self.days.get_loc(date)
        if pos == len(self.days) - 1:
            # past the end of the snapshot, assume the next business day trades
            nxt = date + pd.offsets.BDay(1)
        else:
            nxt = self.days[pos + 1]
        return date.to_period(freq) != nxt.to_period(freq)

    def is_last_trading_day_of_week(self, date) -> bool:
        return self._is_last_in_period(date, 'W')

    def is_last_trading_day_of_month(self, date) -> bool:
        return self._is_last_in_period(date, 'M')

    def is_last_trading_day_of_year(self, date) -> bool:
        return self._is_last_in_period(date, 'Y')


class FrameFeed:
    """
    MarketDataFeed backed by pandas objects.

    Args:
        prices: Close prices, DatetimeIndex rows, one column per security
        dividends: Optional per-share cash dividends, same layout
        splits: Optional split factors, same layout
        risk_free: Annualized percent rate, either a constant or a Series
            looked up as-of each date
    """

    def __init__(self, prices: pd.DataFrame, dividends: Optional[pd.DataFrame] = None,
                 splits: Optional[pd.DataFrame] = None,
                 risk_free: Union[float, pd.Series] = 0.0):
        self.prices = prices.sort_index()
        self.prices.index = pd.DatetimeIndex(self.prices.index).normalize()
        self._dividends = dividends if dividends is not None else pd.DataFrame()
        self._splits = splits if splits is not None else pd.DataFrame()
        if isinstance(risk_free, pd.Series):
            risk_free = risk_free.sort_index()
            risk_free.index = pd.DatetimeIndex(risk_free.index).normalize()
        self._risk_free = risk_free

    def _column(self, security: str) -> pd.Series:
        if security not in self.prices.columns:
            raise DataUnavailableError(f"no quote for security {security}")
        return self.prices[security]

    def price(self, security: str, date) -> float:
        col = self._column(security)
        date = pd.Timestamp(date).normalize()
        if date not in col.index:
            return np.nan
        return float(col.loc[date])

    def latest_price_before(self, security: str, date) -> float:
        col = self._column(security).loc[:pd.Timestamp(date).normalize()].dropna()
        if col.empty:
            raise DataUnavailableError(f"no prior quote for security {security}", date)
        return float(col.iloc[-1])

    def _events(self, frame: pd.DataFrame, security: str, neutral: float) -> pd.Series:
        if security not in frame.columns:
            return pd.Series(dtype=float)
        s = frame[security].dropna()
        s.index = pd.DatetimeIndex(s.index).normalize()
        return s[s != neutral].sort_index()

    def dividends(self, security: str) -> pd.Series:
        return self._events(self._dividends, security, 0.0)

    def splits(self, security: str) -> pd.Series:
        return self._events(self._splits, security, 1.0)

    def risk_free_rate(self, date) -> float:
        if not isinstance(self._risk_free, pd.Series):
            return float(self._risk_free)
        s = self._risk_free.loc[:pd.Timestamp(date).normalize()].dropna()
        if s.empty:
            logger.warning("no risk-free rate on or before %s; using 0", date)
            return 0.0
        return float(s.iloc[-1])
