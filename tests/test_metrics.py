import math

import numpy as np
import pandas as pd
import pytest

from portsim.measurement import Kind
from portsim.metrics import Performance, window_growth, xirr, to_years
from tests.helpers import make_performance


def test_twrr_chains_daily_returns():
    perf = make_performance([100.0, 110.0, 121.0])
    assert perf.twrr(1) == pytest.approx(0.1)
    assert perf.twrr(2) == pytest.approx(0.21)


def test_window_that_does_not_fit_is_nan():
    perf = make_performance([100.0, 110.0, 121.0])
    assert math.isnan(perf.twrr(3))
    assert math.isnan(perf.twrr(0))
    assert math.isnan(perf.mwrr(3))
    assert math.isnan(perf.beta(5))


def test_twrr_backs_out_deposits():
    perf = make_performance([100.0, 210.0], deposited=[100.0, 200.0])
    assert perf.twrr(1) == pytest.approx(0.1)


def test_twrr_annualizes_beyond_one_year():
    dates = pd.to_datetime(["2018-01-02", "2020-01-02"])
    perf = make_performance([100.0, 121.0], dates=dates)
    years = (dates[1] - dates[0]).days / 365.2425
    assert perf.twrr(1) == pytest.approx(1.21 ** (1.0 / years) - 1.0)


def test_mwrr_single_period_uses_ratio():
    perf = make_performance([100.0, 210.0], deposited=[100.0, 200.0])
    assert perf.mwrr(1) == pytest.approx(0.1)


def test_mwrr_deposit_without_gain_is_zero():
    perf = make_performance([100.0, 100.0, 200.0, 200.0], deposited=[100.0, 100.0, 200.0, 200.0])
    assert perf.twrr(3) == pytest.approx(0.0)
    assert perf.mwrr(3) == pytest.approx(0.0, abs=1e-3)


def test_mwrr_closed_form_matches_xirr():
    dates = pd.bdate_range("2018-01-02", periods=600)
    values = 100.0 * 1.0004 ** np.arange(600)
    perf = make_performance(values, dates=dates)

    periods = 599
    flows = [(dates[0], -values[0]), (dates[-1], values[-1])]
    assert perf.mwrr(periods) == pytest.approx(xirr(flows), abs=1e-3)


def test_window_growth_with_intermediate_flow():
    times = [pd.Timestamp(d).value for d in ("2020-01-02", "2020-07-01", "2021-01-04")]
    flows = [-100.0, -100.0, 200.0]
    assert window_growth(times, flows) == pytest.approx(1.0, abs=1e-3)


def test_xirr_needs_two_flows():
    assert math.isnan(xirr([(pd.Timestamp("2020-01-02"), -100.0)]))


def test_to_years():
    start = pd.Timestamp("2020-01-01").value
    end = pd.Timestamp("2021-01-01").value
    assert to_years(start, end) == pytest.approx(366 / 365.2425)


def test_active_return_and_beta():
    rb = np.array([0.01, -0.02, 0.03, 0.005, -0.01])
    bench = 100.0 * np.concatenate(([1.0], np.cumprod(1.0 + rb)))
    strat = 100.0 * np.concatenate(([1.0], np.cumprod(1.0 + 2.0 * rb)))
    perf = make_performance(strat, benchmark=bench)

    assert perf.beta(5) == pytest.approx(2.0)
    assert perf.active_return(5) == pytest.approx(strat[-1] / 100.0 - bench[-1] / 100.0)
    # risk-free is flat, so alpha reduces to Rp - beta * Rb
    assert perf.alpha(5) == pytest.approx(
        (strat[-1] / 100.0 - 1.0) - 2.0 * (bench[-1] / 100.0 - 1.0))


def test_identical_series_have_no_tracking_error():
    perf = make_performance([100.0, 101.0, 99.0, 102.0])
    assert perf.tracking_error(3) == pytest.approx(0.0)
    assert math.isnan(perf.information_ratio(3))


def test_drawdown_episode_with_recovery():
    perf = make_performance([10_000.0, 11_000.0, 10_020.0, 11_000.0])
    t = perf.times()
    [dd] = perf.all_drawdowns(3)
    assert dd.begin == pd.Timestamp(t[1])
    assert dd.end == pd.Timestamp(t[2])
    assert dd.recovery == pd.Timestamp(t[3])
    assert dd.loss_percent == pytest.approx(-0.0890909, abs=1e-6)


def test_trailing_drawdown_has_no_recovery():
    perf = make_performance([100.0, 90.0, 95.0])
    [dd] = perf.all_drawdowns(10)   # longer than the history: clamped
    assert not dd.recovered
    assert dd.loss_percent == pytest.approx(-0.1)
    assert dd.end == pd.Timestamp(perf.times()[1])


def test_top_drawdowns_sorted_by_depth():
    perf = make_performance([100.0, 95.0, 100.0, 80.0, 100.0, 90.0, 100.0])
    top = perf.top10_drawdowns(6)
    assert [round(d.loss_percent, 4) for d in top] == [-0.2, -0.1, -0.05]
    assert perf.max_drawdown(6).loss_percent == pytest.approx(-0.2)
    assert perf.average_drawdown(6) == pytest.approx(-0.35 / 3)


def test_no_drawdown():
    perf = make_performance([100.0, 101.0, 102.0])
    assert perf.all_drawdowns(2) == []
    assert perf.max_drawdown(2) is None
    assert math.isnan(perf.average_drawdown(2))
    assert perf.calmar_ratio(2) == pytest.approx(perf.twrr(2))


def test_keller_ratio():
    perf = make_performance([100.0, 80.0, 120.0])
    depth = 0.2
    expected = 0.2 * (1.0 - depth / (1.0 - depth))
    assert perf.keller_ratio(2) == pytest.approx(expected)

    losing = make_performance([100.0, 80.0, 90.0])
    assert losing.keller_ratio(2) == 0.0


def test_ulcer_index_needs_full_lookback():
    assert math.isnan(make_performance([100.0] * 13).ulcer_index())
    assert make_performance([100.0] * 14).ulcer_index() == 0.0


def test_ulcer_index_of_single_dip():
    values = [100.0] * 13 + [90.0]
    perf = make_performance(values)
    assert perf.ulcer_index() == pytest.approx(math.sqrt(100.0 / 14))


def test_ulcer_index_summaries_skip_nan():
    perf = make_performance([100.0] * 5, ulcer_index=[math.nan, 1.0, 2.0, 3.0, 4.0])
    assert perf.avg_ulcer_index(4) == pytest.approx(2.5)
    assert perf.ulcer_index_percentile(4, 0.5) == 2.0
    assert perf.ulcer_index_percentile(4, 0.99) == 4.0
    assert math.isnan(perf.ulcer_index_percentile(4, 1.5))


def _noisy_uptrend(n):
    steps = np.where(np.arange(n) % 2 == 0, 0.003, -0.001)
    return 100.0 * np.concatenate(([1.0], np.cumprod(1.0 + steps)))


def test_ratios_on_noisy_uptrend():
    values = _noisy_uptrend(120)
    perf = make_performance(values)
    periods = len(values) - 1
    assert perf.sharpe_ratio(periods) > 0
    assert perf.std_dev(periods) > 0
    assert perf.downside_deviation(periods) == 0.0
    assert math.isnan(perf.sortino_ratio(periods))
    assert perf.k_ratio(periods) > 0


def test_monthly_returns_exclude_open_month():
    dates = pd.to_datetime(["2021-01-04", "2021-01-29", "2021-02-26", "2021-03-01"])
    perf = make_performance([100.0, 110.0, 121.0, 130.0], dates=dates)
    rets = perf.monthly_returns(3)
    assert list(rets) == pytest.approx([0.1, 0.1])


def test_skew_and_kurtosis_need_enough_months():
    perf = make_performance([100.0, 101.0, 102.0])
    assert math.isnan(perf.skew(2))
    assert math.isnan(perf.excess_kurtosis(2))


def test_ytd_counts_from_last_measurement_year():
    dates = pd.to_datetime(["2020-12-30", "2020-12-31", "2021-01-04", "2021-01-05"])
    perf = make_performance([100.0, 100.0, 110.0, 121.0], dates=dates)
    assert perf.ytd_periods() == 2
    assert perf.twrr_ytd() == pytest.approx(0.21)


def test_net_profit():
    perf = make_performance([100.0, 250.0], deposited=[100.0, 200.0])
    assert perf.net_profit() == pytest.approx(50.0)
    assert perf.net_profit_percent() == pytest.approx(0.25)


def test_measurements_must_move_forward():
    perf = make_performance([100.0, 101.0])
    with pytest.raises(ValueError):
        perf.append(perf.measurements[0])


def test_storage_grows_past_initial_capacity():
    perf = make_performance(np.linspace(100.0, 200.0, 150))
    assert len(perf) == 150
    assert perf.values(Kind.STRATEGY)[-1] == pytest.approx(200.0)


def test_best_and_worst_year():
    perf = Performance()
    perf.annual_returns = {2019: (0.1, 0.05), 2020: (-0.2, 0.15), 2021: (0.3, -0.1)}
    best, worst = perf.best_and_worst_year(Kind.STRATEGY)
    assert (best.year, worst.year) == (2021, 2020)
    best, worst = perf.best_and_worst_year(Kind.BENCHMARK)
    assert (best.year, best.ret) == (2020, 0.15)
    assert perf.best_and_worst_year()[0] is not None
    assert Performance().best_and_worst_year() == (None, None)


def test_best_and_worst_year_skips_missing_returns():
    perf = Performance()
    perf.annual_returns = {
        2018: (0.4, np.nan), 2019: (np.nan, 0.05), 2020: (-0.2, 0.15), 2021: (np.nan, -0.1),
    }
    best, worst = perf.best_and_worst_year(Kind.STRATEGY)
    assert (best.year, worst.year) == (2018, 2020)
    best, worst = perf.best_and_worst_year(Kind.BENCHMARK)
    assert (best.year, worst.year) == (2020, 2021)

    perf.annual_returns = {2020: (np.nan, np.nan)}
    assert perf.best_and_worst_year() == (None, None)
