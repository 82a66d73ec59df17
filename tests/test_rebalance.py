import math

import pytest

from portsim.errors import InvalidSellError, RebalanceTargetError
from portsim.rebalance import rebalance_to, validate_target
from portsim.transaction import TransactionKind

DATE = "2021-01-04"


def test_cash_into_single_security():
    holdings, trades = rebalance_to({"$CASH": 10_000.0}, {"AAA": 10.0}, {"AAA": 1.0}, DATE)
    assert holdings == pytest.approx({"AAA": 1000.0})
    assert len(trades) == 1
    assert trades[0].kind == TransactionKind.BUY
    assert trades[0].shares == pytest.approx(1000.0)
    assert trades[0].total_value == pytest.approx(10_000.0)


def test_unchanged_prices_produce_no_trades():
    holdings = {"AAA": 500.0, "BBB": 100.0}
    prices = {"AAA": 10.0, "BBB": 50.0}
    new, trades = rebalance_to(holdings, prices, {"AAA": 0.5, "BBB": 0.5}, DATE)
    assert trades == []
    assert new == pytest.approx(holdings)


def test_sells_come_before_buys():
    holdings = {"AAA": 100.0}
    prices = {"AAA": 10.0, "BBB": 20.0}
    new, trades = rebalance_to(holdings, prices, {"BBB": 1.0}, DATE, {"score": 1.5})
    assert [t.kind for t in trades] == [TransactionKind.SELL, TransactionKind.BUY]
    assert trades[0].security == "AAA"
    assert trades[0].total_value == pytest.approx(1000.0)
    assert trades[1].shares == pytest.approx(50.0)
    assert new == pytest.approx({"BBB": 50.0})
    assert all(t.justification == (("score", 1.5),) for t in trades)


def test_trim_and_top_up():
    holdings = {"AAA": 100.0, "BBB": 10.0}
    prices = {"AAA": 10.0, "BBB": 100.0}
    new, trades = rebalance_to(holdings, prices, {"AAA": 0.25, "BBB": 0.75}, DATE)
    by_security = {t.security: t for t in trades}
    assert by_security["AAA"].kind == TransactionKind.SELL
    assert by_security["AAA"].shares == pytest.approx(50.0)
    assert by_security["BBB"].kind == TransactionKind.BUY
    assert by_security["BBB"].total_value == pytest.approx(500.0)
    assert new == pytest.approx({"AAA": 50.0, "BBB": 15.0})


def test_unknown_price_writes_off_liquidated_position(caplog):
    new, trades = rebalance_to({"AAA": 100.0, "$CASH": 500.0}, {"BBB": 10.0}, {"BBB": 1.0}, DATE)
    assert trades[0].kind == TransactionKind.SELL
    assert trades[0].total_value == 0.0
    assert new == pytest.approx({"BBB": 50.0})
    assert "writing off" in caplog.text


def test_unknown_price_skips_new_purchase():
    new, trades = rebalance_to({"$CASH": 100.0}, {"AAA": math.nan}, {"AAA": 1.0}, DATE)
    assert trades == []
    assert new == {"$CASH": 100.0}


def test_weights_must_sum_to_one():
    with pytest.raises(RebalanceTargetError):
        rebalance_to({"$CASH": 100.0}, {"AAA": 10.0}, {"AAA": 0.5}, DATE)
    assert validate_target({"AAA": 0.5, "BBB": 0.5}) == pytest.approx(1.0)


def test_negative_weight_rejected():
    with pytest.raises(RebalanceTargetError):
        validate_target({"AAA": 1.5, "BBB": -0.5})


def test_out_of_sync_holdings_raise():
    with pytest.raises(InvalidSellError):
        rebalance_to({"AAA": 1e-7, "$CASH": 100.0}, {"AAA": 10.0}, {"AAA": 1.0}, DATE)


def test_dust_sell_means_holdings_out_of_sync(caplog):
    holdings = {"AAA": 100.0, "BBB": 100.0000001}
    prices = {"AAA": 10.0, "BBB": 10.0}
    with pytest.raises(InvalidSellError) as exc:
        rebalance_to(holdings, prices, {"AAA": 0.5, "BBB": 0.5}, DATE)
    assert exc.value.security == "BBB"
    assert "refusing to sell" in caplog.text


def test_dust_buy_is_skipped(caplog):
    holdings = {"AAA": 100.0, "$CASH": 0.000001}
    new, trades = rebalance_to(holdings, {"AAA": 10.0}, {"AAA": 1.0}, DATE)
    assert trades == []
    assert new["AAA"] == 100.0
    assert "refusing to buy" in caplog.text
