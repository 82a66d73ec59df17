"""
Notification accessors.

A portfolio subscribes to a bitmask of NotificationFrequency values. On a
given date the subscriptions that fall due (every trading day, the last
trading day of the week, month or year) each produce a Notification with
the matching period-to-date return and the year-to-date return. Delivery
is left to the caller.
"""

import logging
from dataclasses import dataclass
from enum import IntFlag
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from portsim.feed import TradingCalendar
from portsim.measurement import PerformanceMeasurement, ReportableHolding
from portsim.metrics import Performance

logger = logging.getLogger(__name__)


class NotificationFrequency(IntFlag):
    DAILY = 0x10
    WEEKLY = 0x100
    MONTHLY = 0x1000
    ANNUALLY = 0x10000

    @property
    def label(self) -> str:
        return self.name.capitalize() if self.name else "Unknown"


_PERIOD_FIELD = {
    NotificationFrequency.DAILY: 'twrr_one_day',
    NotificationFrequency.WEEKLY: 'twrr_week_to_date',
    NotificationFrequency.MONTHLY: 'twrr_month_to_date',
    NotificationFrequency.ANNUALLY: 'twrr_year_to_date',
}


@dataclass(frozen=True)
class Notification:
    for_date: pd.Timestamp
    frequency: NotificationFrequency
    portfolio_id: str
    holdings: Tuple[ReportableHolding, ...]
    period_return: float
    ytd_return: float

    @property
    def assets(self) -> str:
        return ", ".join(h.security for h in self.holdings)


def format_percent(value: float) -> str:
    return f"{value * 100:.2f}%"


def measurement_on(perf: Performance, date) -> Optional[PerformanceMeasurement]:
    """The measurement dated `date`, or None."""
    date = pd.Timestamp(date).normalize()
    for m in reversed(perf.measurements):
        t = pd.Timestamp(m.time).normalize()
        if t == date:
            return m
        if t < date:
            break
    return None


def period_return(perf: Performance, frequency: NotificationFrequency, for_date=None) -> float:
    """
    Period-to-date TWRR matching a notification frequency.

    Uses the measurement on `for_date`, or the newest one when omitted;
    NaN when there is no such measurement.
    """
    m = perf.last if for_date is None else measurement_on(perf, for_date)
    if m is None:
        return np.nan
    attr = _PERIOD_FIELD.get(NotificationFrequency(frequency))
    if attr is None:
        logger.error("unknown notification frequency %r", frequency)
        return np.nan
    return getattr(m, attr)


def ytd_return(perf: Performance) -> float:
    """Strategy TWRR year to date as of the run's summary."""
    return perf.portfolio_returns.twrr_ytd


def requested_notifications(subscribed: int, for_date,
                            calendar: TradingCalendar) -> List[NotificationFrequency]:
    """Subscribed frequencies that are due on for_date, in increasing period order."""
    subscribed = NotificationFrequency(subscribed)
    due = {
        NotificationFrequency.DAILY: calendar.is_trading_day,
        NotificationFrequency.WEEKLY: calendar.is_last_trading_day_of_week,
        NotificationFrequency.MONTHLY: calendar.is_last_trading_day_of_month,
        NotificationFrequency.ANNUALLY: calendar.is_last_trading_day_of_year,
    }
    frequencies = [freq for freq, check in due.items() if freq in subscribed and check(for_date)]
    logger.debug("notifications due on %s: %s", pd.Timestamp(for_date).date(),
                 [f.label for f in frequencies])
    return frequencies


def notification_for(perf: Performance, subscribed: int, for_date,
                     calendar: TradingCalendar) -> List[Notification]:
    """
    Build one Notification per subscription due on for_date.

    A date with no measurement yields no notifications and logs an error.
    """
    frequencies = requested_notifications(subscribed, for_date, calendar)
    if not frequencies:
        return []
    m = measurement_on(perf, for_date)
    if m is None:
        logger.error("no measurement for portfolio %s on %s", perf.portfolio_id,
                     pd.Timestamp(for_date).date())
        return []
    return [
        Notification(
            for_date=pd.Timestamp(for_date).normalize(),
            frequency=freq,
            portfolio_id=perf.portfolio_id,
            holdings=m.holdings,
            period_return=getattr(m, _PERIOD_FIELD[freq]),
            ytd_return=ytd_return(perf),
        )
        for freq in frequencies
    ]
