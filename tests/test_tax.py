import math

import pandas as pd
import pytest

from portsim.tax import (
    GOLDEN_TESTS, CapitalLossUsageStrategy, DEFAULT_TAX_RATES, TaxEngine, TaxRates,
    TaxpayerElections, compute_capital_gains, resolve_tax_rates, tax_cost_ratio,
)
from portsim.transaction import TaxDisposition
from tests.helpers import sell


@pytest.mark.parametrize("case", GOLDEN_TESTS, ids=lambda c: c.name)
def test_golden_netting_cases(case):
    passed, message = case.run()
    assert passed, message


def test_lt_first_election_changes_carryforward_order():
    result = compute_capital_gains(10_000, 0, 10_000, 0, st_loss_cf_in=0, lt_loss_cf_in=5_000,
                                   elections=TaxpayerElections(CapitalLossUsageStrategy.MINIMIZE_LT_FIRST))
    assert result.taxable_lt == pytest.approx(5_000)
    assert result.taxable_st == pytest.approx(10_000)


def _gain(date, amount, term=TaxDisposition.STC):
    return sell(date, "AAA", 1, 0.0, gain_loss=amount, tax_disposition=term)


def test_engine_liability_for_short_and_long_term_gains():
    engine = TaxEngine()
    a = engine.record(pd.Timestamp("2021-03-01"), [_gain("2021-03-01", 1_000.0)])
    assert a.realized_short_term == 1_000.0
    assert a.tax_liability == pytest.approx(370.0)

    a = engine.record(pd.Timestamp("2021-03-02"), [_gain("2021-03-02", 1_000.0, TaxDisposition.LTC)])
    assert a.realized_long_term == 1_000.0
    assert a.tax_liability == pytest.approx(570.0)


def test_engine_income_is_taxed():
    engine = TaxEngine(TaxRates(ordinary=0.3, qualified_dividend=0.15, long_term=0.15,
                                short_term=0.3, state=0.05))
    a = engine.record(pd.Timestamp("2021-03-01"), qualified=100.0, non_qualified=200.0)
    assert a.qualified_dividends == 100.0
    assert a.non_qualified_income == 200.0
    assert a.tax_liability == pytest.approx(100 * 0.15 + 200 * 0.3 + 300 * 0.05)


def test_engine_closes_year_and_carries_losses():
    engine = TaxEngine()
    engine.record(pd.Timestamp("2020-06-01"), [_gain("2020-06-01", -10_000.0)])
    a = engine.record(pd.Timestamp("2021-01-04"), [_gain("2021-01-04", 7_000.0)])

    assert engine.st_loss_cf == pytest.approx(7_000.0)
    # 2020 settles a $3,000 deduction; 2021's gain is fully absorbed by the carryforward
    assert engine.paid == pytest.approx(-3_000.0 * 0.37)
    assert a.tax_liability == pytest.approx(-3_000.0 * 0.37)
    assert a.realized_short_term == pytest.approx(-3_000.0)


def test_nan_gains_are_ignored():
    engine = TaxEngine()
    a = engine.record(pd.Timestamp("2021-03-01"), [_gain("2021-03-01", math.nan)])
    assert a.tax_liability == 0.0


def test_rate_provider_resolution():
    assert resolve_tax_rates(None) is DEFAULT_TAX_RATES
    assert resolve_tax_rates(lambda: None) is DEFAULT_TAX_RATES
    rates = resolve_tax_rates({"long_term": 0.1})
    assert rates.long_term == 0.1
    assert rates.short_term == DEFAULT_TAX_RATES.short_term
    assert DEFAULT_TAX_RATES.for_state("ca").state == pytest.approx(0.093)
    with pytest.raises(KeyError):
        DEFAULT_TAX_RATES.for_state("ZZ")


def test_tax_cost_ratio():
    assert tax_cost_ratio(0.10, 0.08) == pytest.approx(1.0 - 1.08 / 1.10)
    assert math.isnan(tax_cost_ratio(math.nan, 0.08))
