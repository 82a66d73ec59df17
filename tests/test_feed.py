import math

import pandas as pd
import pytest

from portsim.errors import DataUnavailableError
from portsim.feed import FrameFeed, TradingCalendar


def test_calendar_from_business_days_skips_holidays():
    cal = TradingCalendar.from_business_days("2021-12-20", "2022-01-07", holidays=["2021-12-24"])
    assert not cal.is_trading_day("2021-12-24")
    assert not cal.is_trading_day("2021-12-25")
    assert cal.is_trading_day("2021-12-23")
    assert cal.is_last_trading_day_of_week("2021-12-23")
    assert cal.is_last_trading_day_of_month("2021-12-31")
    assert cal.is_last_trading_day_of_year("2021-12-31")
    assert not cal.is_last_trading_day_of_month("2021-12-30")
    assert len(cal.trading_days("2021-12-27", "2021-12-31")) == 5


def test_calendar_version_depends_on_days():
    days = pd.bdate_range("2021-01-04", periods=10)
    assert TradingCalendar.from_days(days).version == TradingCalendar.from_days(list(days)).version
    assert TradingCalendar.from_days(days).version != TradingCalendar.from_days(days[:-1]).version
    assert TradingCalendar.from_days(days, version="v1").version == "v1"


def test_calendar_end_looks_at_next_business_day():
    cal = TradingCalendar.from_days(pd.bdate_range("2021-01-04", "2021-01-29"))
    assert cal.is_last_trading_day_of_month("2021-01-29")
    assert not cal.is_last_trading_day_of_year("2021-01-29")
    assert not TradingCalendar.from_days(cal.days[:-5]).is_last_trading_day_of_month("2021-01-22")


def _feed(**kwargs):
    index = pd.bdate_range("2021-01-04", periods=5)
    prices = pd.DataFrame({"AAA": [10.0, math.nan, 12.0, 13.0, 14.0]}, index=index)
    return FrameFeed(prices, **kwargs), index


def test_prices_and_fallback():
    feed, index = _feed()
    assert feed.price("AAA", index[0]) == 10.0
    assert math.isnan(feed.price("AAA", index[1]))
    assert math.isnan(feed.price("AAA", "2021-01-09"))
    assert feed.latest_price_before("AAA", index[1]) == 10.0
    assert feed.latest_price_before("AAA", "2021-01-09") == 14.0


def test_unknown_security_raises():
    feed, index = _feed()
    with pytest.raises(DataUnavailableError):
        feed.price("ZZZ", index[0])
    with pytest.raises(DataUnavailableError):
        feed.latest_price_before("AAA", "2020-12-31")


def test_corporate_action_series_drop_neutral_values():
    index = pd.bdate_range("2021-01-04", periods=3)
    dividends = pd.DataFrame({"AAA": [0.0, 0.25, 0.0]}, index=index)
    splits = pd.DataFrame({"AAA": [1.0, 1.0, 2.0]}, index=index)
    feed, _ = _feed(dividends=dividends, splits=splits)
    assert feed.dividends("AAA").to_dict() == {index[1]: 0.25}
    assert feed.splits("AAA").to_dict() == {index[2]: 2.0}
    assert feed.dividends("BBB").empty


def test_risk_free_rate_as_of():
    rates = pd.Series([1.0, 2.0], index=pd.to_datetime(["2021-01-04", "2021-01-06"]))
    feed, _ = _feed(risk_free=rates)
    assert feed.risk_free_rate("2021-01-05") == 1.0
    assert feed.risk_free_rate("2021-01-07") == 2.0
    assert feed.risk_free_rate("2020-12-31") == 0.0
    assert _feed(risk_free=4.5)[0].risk_free_rate("2021-01-05") == 4.5
