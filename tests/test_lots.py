import pandas as pd
import pytest

from portsim.errors import TaxLotSyncError
from portsim.tax.lots import (
    LotSelectionMethod, TaxLot, TaxLotLedger, is_long_term, link_sell_with_lots,
)
from portsim.transaction import TaxDisposition
from tests.helpers import buy, sell


def _ledger(*buys, method=LotSelectionMethod.FIFO):
    ledger = TaxLotLedger(method=method)
    for trx in buys:
        ledger.open(trx)
    return ledger


def test_one_year_to_the_day_is_short_term():
    assert not is_long_term("2019-07-01", "2020-07-01")
    assert is_long_term("2019-06-30", "2020-07-01")


def test_fifo_sell_splits_into_long_and_short_term():
    old = buy("2019-01-02", "AAA", 60, 10.0)
    new = buy("2020-06-01", "AAA", 100, 12.0)
    ledger = _ledger(old, new)

    realized = ledger.sell(sell("2020-07-01", "AAA", 100, 15.0))

    assert [r.tax_disposition for r in realized] == [TaxDisposition.LTC, TaxDisposition.STC]
    ltc, stc = realized
    assert ltc.shares == pytest.approx(60)
    assert ltc.gain_loss == pytest.approx(300.0)
    assert ltc.related == (old.id,)
    assert stc.shares == pytest.approx(40)
    assert stc.gain_loss == pytest.approx(120.0)
    assert stc.related == (new.id,)

    assert len(ledger) == 1
    assert ledger.lots[0].transaction_id == new.id
    assert ledger.shares("AAA") == pytest.approx(60)


def test_realized_ids_are_stable_for_the_same_sell():
    lots = [TaxLot("AAA", pd.Timestamp("2020-01-02"), 10, 5.0, "lot-1")]
    trx = sell("2020-03-02", "AAA", 10, 6.0)
    _, first = link_sell_with_lots(lots, trx)
    _, second = link_sell_with_lots(lots, trx)
    assert first[0].id == second[0].id


def test_lifo_and_hifo_pick_different_lots():
    cheap = buy("2020-01-02", "AAA", 10, 5.0)
    pricey = buy("2020-02-03", "AAA", 10, 20.0)
    late = buy("2020-03-02", "AAA", 10, 8.0)

    lifo = _ledger(cheap, pricey, late, method=LotSelectionMethod.LIFO)
    realized = lifo.sell(sell("2020-04-01", "AAA", 10, 10.0))
    assert realized[0].related == (late.id,)

    hifo = _ledger(cheap, pricey, late, method=LotSelectionMethod.HIFO)
    realized = hifo.sell(sell("2020-04-01", "AAA", 10, 10.0))
    assert realized[0].related == (pricey.id,)
    assert realized[0].gain_loss == pytest.approx(-100.0)


def test_oversized_sell_logs_desync(caplog):
    ledger = _ledger(buy("2020-01-02", "AAA", 10, 5.0))
    ledger.sell(sell("2020-02-03", "AAA", 15, 6.0))
    assert "out of sync" in caplog.text
    assert len(ledger) == 0


def test_split_keeps_cost_basis():
    ledger = _ledger(buy("2020-01-02", "AAA", 10, 50.0), buy("2020-01-02", "BBB", 4, 25.0))
    ledger.split("AAA", 2.0)
    assert ledger.shares("AAA") == pytest.approx(20)
    assert ledger.cost_basis("AAA") == pytest.approx(500.0)
    assert ledger.shares("BBB") == pytest.approx(4)


def test_unrealized_gain_by_term():
    ledger = _ledger(buy("2019-01-02", "AAA", 10, 10.0), buy("2020-06-01", "AAA", 10, 12.0))
    lt, st = ledger.unrealized_gain({"AAA": 15.0}, as_of="2020-07-01")
    assert lt == pytest.approx(50.0)
    assert st == pytest.approx(30.0)


def test_out_of_sync_lists_mismatched_securities():
    ledger = _ledger(buy("2020-01-02", "AAA", 10, 10.0))
    assert ledger.out_of_sync({"AAA": 10.0, "$CASH": 5.0}) == []
    assert ledger.out_of_sync({"AAA": 9.0}) == ["AAA"]


def test_sell_across_long_and_short_term_lots_empties_ledger():
    sold_on = pd.Timestamp("2021-06-01")
    old = buy(sold_on - pd.Timedelta(days=400), "AAA", 60, 10.0)
    recent = buy(sold_on - pd.Timedelta(days=30), "AAA", 40, 12.0)
    ledger = _ledger(old, recent)

    realized = ledger.sell(sell(sold_on, "AAA", 100, 15.0))

    assert [(r.tax_disposition, r.shares) for r in realized] == [
        (TaxDisposition.LTC, pytest.approx(60)),
        (TaxDisposition.STC, pytest.approx(40)),
    ]
    assert realized[0].gain_loss == pytest.approx(300.0)
    assert realized[1].gain_loss == pytest.approx(120.0)
    assert len(ledger) == 0
    assert ledger.shares("AAA") == 0.0
    assert ledger.out_of_sync({}) == []


def test_check_sync_raises_on_mismatch():
    ledger = _ledger(buy("2020-01-02", "AAA", 10, 5.0))
    ledger.check_sync({"AAA": 10.0, "$CASH": 50.0})
    with pytest.raises(TaxLotSyncError, match="AAA"):
        ledger.check_sync({"AAA": 12.0})
