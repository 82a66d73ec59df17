import pytest

from portsim.portfolio import new_portfolio
from tests.helpers import make_feed, rising

N_DAYS = 30


@pytest.fixture
def rising_market():
    """AAA up 1% a day, BBB flat at 50, benchmark flat at 100."""
    return make_feed({
        "AAA": rising(10.0, 0.01, N_DAYS),
        "BBB": [50.0] * N_DAYS,
        "VFINX": [100.0] * N_DAYS,
    })


@pytest.fixture
def funded_portfolio(rising_market):
    feed, calendar = rising_market
    portfolio = new_portfolio("test", calendar.days[0], 10_000.0, feed, portfolio_id="p1")
    portfolio.rebalance_to(calendar.days[0], {"AAA": 1.0})
    return portfolio
