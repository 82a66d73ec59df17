import math

import numpy as np
import pytest

from portsim.simulation import (
    circular_bootstrap, monthly_return_to_annual, constant_withdrawal_balance,
    safe_withdrawal_rate, perpetual_withdrawal_rate, dynamic_withdrawal_rate,
)


def test_monthly_to_annual_drops_partial_year():
    annual = monthly_return_to_annual([0.01] * 30)
    assert annual.shape == (2,)
    assert annual == pytest.approx(np.full(2, 1.01 ** 12 - 1.0))


def test_monthly_to_annual_short_series():
    assert len(monthly_return_to_annual([0.01] * 11)) == 0


def test_bootstrap_shape_and_constant_series():
    paths = circular_bootstrap([0.01] * 24, block_size=12, n=50, m=360)
    assert paths.shape == (50, 30)
    assert np.allclose(paths, 1.01 ** 12 - 1.0)


def test_bootstrap_is_reproducible_with_seed():
    series = np.linspace(-0.05, 0.05, 40)
    a = circular_bootstrap(series, 12, 20, 120, np.random.default_rng(7))
    b = circular_bootstrap(series, 12, 20, 120, np.random.default_rng(7))
    assert np.array_equal(a, b)


def test_bootstrap_blocks_wrap_around():
    series = np.arange(5, dtype=float)
    paths = circular_bootstrap(series, block_size=12, n=1, m=12, rng=np.random.default_rng(0))
    assert paths.shape == (1, 1)


def test_bootstrap_empty_series():
    assert circular_bootstrap([], n=3, m=12).shape == (3, 0)


def test_constant_withdrawal_balance():
    # 5% return, withdraw exactly the gain
    assert constant_withdrawal_balance(0.05, 0.0, [0.05] * 10) == pytest.approx(1_000_000.0)


def test_safe_rate_matches_annuity():
    paths = np.full((3, 30), 0.05)
    annuity = 0.05 / (1.0 - 1.05 ** -30)
    assert safe_withdrawal_rate(paths, inflation=0.0) == pytest.approx(annuity, abs=1e-3)


def test_perpetual_rate_is_the_return_without_inflation():
    paths = np.full((3, 30), 0.05)
    assert perpetual_withdrawal_rate(paths, inflation=0.0) == pytest.approx(0.05, abs=1e-3)


def test_dynamic_rate_on_constant_return():
    paths = np.full((2, 30), 0.05)
    assert dynamic_withdrawal_rate(paths, inflation=0.0) == pytest.approx(0.05, abs=2e-3)


def test_inflation_lowers_the_safe_rate():
    paths = np.full((2, 30), 0.05)
    assert safe_withdrawal_rate(paths, inflation=0.03) < safe_withdrawal_rate(paths, inflation=0.0)


def test_no_paths_is_nan():
    assert math.isnan(safe_withdrawal_rate(np.empty((0, 30)), inflation=0.0))
