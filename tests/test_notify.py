import math

import pandas as pd
import pytest

from portsim.feed import TradingCalendar
from portsim.measurement import ReportableHolding, Returns
from portsim.notify import (
    Notification, NotificationFrequency, format_percent, notification_for, period_return,
    requested_notifications, ytd_return,
)
from tests.helpers import make_performance

CALENDAR = TradingCalendar.from_business_days("2021-01-04", "2021-02-26")


def _perf():
    dates = CALENDAR.trading_days("2021-01-25", "2021-01-29")
    n = len(dates)
    perf = make_performance(
        [100.0 + i for i in range(n)], dates=dates,
        twrr_one_day=[0.01] * n, twrr_week_to_date=[0.02] * n,
        twrr_month_to_date=[0.03] * n, twrr_year_to_date=[0.04] * n,
    )
    perf.portfolio_returns = Returns(twrr_ytd=0.04)
    return perf


def test_period_return_by_frequency():
    perf = _perf()
    assert period_return(perf, NotificationFrequency.DAILY) == 0.01
    assert period_return(perf, NotificationFrequency.WEEKLY) == 0.02
    assert period_return(perf, NotificationFrequency.MONTHLY) == 0.03
    assert period_return(perf, NotificationFrequency.ANNUALLY) == 0.04
    assert math.isnan(period_return(perf, NotificationFrequency.DAILY, "2021-02-01"))
    assert ytd_return(perf) == 0.04


def test_requested_notifications():
    everything = (NotificationFrequency.DAILY | NotificationFrequency.WEEKLY
                  | NotificationFrequency.MONTHLY | NotificationFrequency.ANNUALLY)
    assert requested_notifications(everything, "2021-01-27", CALENDAR) == [NotificationFrequency.DAILY]
    assert requested_notifications(everything, "2021-01-29", CALENDAR) == [
        NotificationFrequency.DAILY, NotificationFrequency.WEEKLY, NotificationFrequency.MONTHLY,
    ]
    assert requested_notifications(NotificationFrequency.WEEKLY, "2021-01-27", CALENDAR) == []
    assert requested_notifications(everything, "2021-01-30", CALENDAR) == []


def test_notification_for_builds_one_per_frequency():
    perf = _perf()
    subscribed = int(NotificationFrequency.DAILY | NotificationFrequency.MONTHLY)
    notes = notification_for(perf, subscribed, pd.Timestamp("2021-01-29"), CALENDAR)
    assert [n.frequency for n in notes] == [NotificationFrequency.DAILY, NotificationFrequency.MONTHLY]
    assert [n.period_return for n in notes] == [0.01, 0.03]
    assert all(n.ytd_return == 0.04 for n in notes)
    assert notes[0].frequency.label == "Daily"


def test_notification_without_measurement(caplog):
    perf = _perf()
    assert notification_for(perf, NotificationFrequency.DAILY, "2021-02-01", CALENDAR) == []
    assert "no measurement" in caplog.text


def test_format_percent():
    assert format_percent(0.01234) == "1.23%"


def test_notification_lists_assets():
    note = Notification(
        for_date=pd.Timestamp("2021-01-29"), frequency=NotificationFrequency.WEEKLY,
        portfolio_id="p1",
        holdings=(ReportableHolding("AAA", 10.0, 0.6, 600.0), ReportableHolding("BBB", 8.0, 0.4, 400.0)),
        period_return=0.01, ytd_return=0.02,
    )
    assert note.assets == "AAA, BBB"
    assert note.frequency.label == "Weekly"
