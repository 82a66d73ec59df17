"""
Measurement records produced by the performance pipeline.

A PerformanceMeasurement is one trading day of a portfolio's history. It
is frozen: the pipeline assembles it with a MeasurementBuilder, stage by
stage, and appends the finished record exactly once. MeasurementField
names every stored field by its persisted column name and maps it to an
accessor; the table is checked for completeness at import.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from operator import attrgetter
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from portsim.tax.lots import TaxLot

NaN = float("nan")


class Kind(str, Enum):
    """Which value series a metric is computed on."""
    STRATEGY = "strategy"
    BENCHMARK = "benchmark"
    RISK_FREE = "risk_free"
    AFTER_TAX = "after_tax"


@dataclass(frozen=True)
class ReportableHolding:
    security: str
    shares: float
    percent_portfolio: float
    value: float


@dataclass(frozen=True)
class DrawDown:
    begin: pd.Timestamp
    end: pd.Timestamp
    recovery: Optional[pd.Timestamp]
    loss_percent: float

    @property
    def recovered(self) -> bool:
        return self.recovery is not None


@dataclass(frozen=True)
class AnnualReturn:
    year: int
    ret: float


@dataclass(frozen=True)
class PerformanceMeasurement:
    time: pd.Timestamp

    value: float = NaN
    benchmark_value: float = NaN
    risk_free_value: float = NaN
    total_deposited: float = 0.0
    total_withdrawn: float = 0.0

    strategy_growth_of_10k: float = NaN
    benchmark_growth_of_10k: float = NaN
    risk_free_growth_of_10k: float = NaN

    holdings: Tuple[ReportableHolding, ...] = ()
    tax_lots: Tuple[TaxLot, ...] = ()
    justification: Tuple[Tuple[str, float], ...] = ()

    # tax
    realized_long_term_gain: float = 0.0
    realized_short_term_gain: float = 0.0
    unrealized_long_term_gain: float = 0.0
    unrealized_short_term_gain: float = 0.0
    qualified_dividends: float = 0.0
    non_qualified_dividends: float = 0.0
    interest_income: float = 0.0
    tax_liability: float = 0.0
    after_tax_value: float = NaN
    after_tax_return: float = NaN
    tax_cost_ratio: float = NaN

    # time-weighted rate of return
    twrr_one_day: float = NaN
    twrr_week_to_date: float = NaN
    twrr_one_week: float = NaN
    twrr_month_to_date: float = NaN
    twrr_one_month: float = NaN
    twrr_three_month: float = NaN
    twrr_year_to_date: float = NaN
    twrr_one_year: float = NaN
    twrr_three_year: float = NaN
    twrr_five_year: float = NaN
    twrr_ten_year: float = NaN

    # money-weighted rate of return
    mwrr_one_day: float = NaN
    mwrr_week_to_date: float = NaN
    mwrr_one_week: float = NaN
    mwrr_month_to_date: float = NaN
    mwrr_one_month: float = NaN
    mwrr_three_month: float = NaN
    mwrr_year_to_date: float = NaN
    mwrr_one_year: float = NaN
    mwrr_three_year: float = NaN
    mwrr_five_year: float = NaN
    mwrr_ten_year: float = NaN

    active_return_one_year: float = NaN
    active_return_three_year: float = NaN
    active_return_five_year: float = NaN
    active_return_ten_year: float = NaN

    alpha_one_year: float = NaN
    alpha_three_year: float = NaN
    alpha_five_year: float = NaN
    alpha_ten_year: float = NaN

    beta_one_year: float = NaN
    beta_three_year: float = NaN
    beta_five_year: float = NaN
    beta_ten_year: float = NaN

    calmar_ratio: float = NaN
    downside_deviation: float = NaN
    information_ratio: float = NaN
    k_ratio: float = NaN
    keller_ratio: float = NaN
    sharpe_ratio: float = NaN
    sortino_ratio: float = NaN
    std_dev: float = NaN
    treynor_ratio: float = NaN
    ulcer_index: float = NaN


_VALUATION_FIELDS = frozenset({
    'value', 'benchmark_value', 'risk_free_value', 'total_deposited', 'total_withdrawn',
    'holdings', 'tax_lots', 'justification',
})
_GROWTH_FIELDS = frozenset({
    'strategy_growth_of_10k', 'benchmark_growth_of_10k', 'risk_free_growth_of_10k',
})
_TAX_FIELDS = frozenset({
    'realized_long_term_gain', 'realized_short_term_gain', 'unrealized_long_term_gain',
    'unrealized_short_term_gain', 'qualified_dividends', 'non_qualified_dividends',
    'interest_income', 'tax_liability', 'after_tax_value', 'after_tax_return', 'tax_cost_ratio',
})
_ROLLING_FIELDS = frozenset(
    f.name for f in fields(PerformanceMeasurement)
) - _VALUATION_FIELDS - _GROWTH_FIELDS - _TAX_FIELDS - {'time'}

_STAGES = (
    ('valuation', _VALUATION_FIELDS),
    ('growth', _GROWTH_FIELDS),
    ('tax', _TAX_FIELDS),
    ('rolling', _ROLLING_FIELDS),
)


class MeasurementBuilder:
    """
    Staged construction of a PerformanceMeasurement.

    Stages must be filled in order (valuation, growth, tax, rolling); any
    stage may be skipped. draft() returns the record as it stands so
    rolling metrics can see the day being built; build() may only be
    called once.
    """

    def __init__(self, time):
        self._values: Dict[str, Any] = {'time': pd.Timestamp(time)}
        self._stage = -1
        self._built = False

    def _set(self, stage: str, **values) -> "MeasurementBuilder":
        if self._built:
            raise RuntimeError("measurement already built")
        idx = next(i for i, (name, _) in enumerate(_STAGES) if name == stage)
        if idx < self._stage:
            raise RuntimeError(f"stage {stage} cannot follow {_STAGES[self._stage][0]}")
        allowed = _STAGES[idx][1]
        unknown = set(values) - allowed
        if unknown:
            raise KeyError(f"fields {sorted(unknown)} do not belong to stage {stage}")
        self._stage = idx
        self._values.update(values)
        return self

    def valuation(self, **values) -> "MeasurementBuilder":
        return self._set('valuation', **values)

    def growth(self, **values) -> "MeasurementBuilder":
        return self._set('growth', **values)

    def tax(self, **values) -> "MeasurementBuilder":
        return self._set('tax', **values)

    def rolling(self, **values) -> "MeasurementBuilder":
        return self._set('rolling', **values)

    def draft(self) -> PerformanceMeasurement:
        return PerformanceMeasurement(**self._values)

    def build(self) -> PerformanceMeasurement:
        if self._built:
            raise RuntimeError("measurement already built")
        self._built = True
        return PerformanceMeasurement(**self._values)


class MeasurementField(str, Enum):
    """Every stored measurement field, valued by its persisted column name."""
    EVENT_DATE = "event_date"
    STRATEGY_VALUE = "strategy_value"
    BENCHMARK_VALUE = "benchmark_value"
    RISK_FREE_VALUE = "risk_free_value"
    TOTAL_DEPOSITED = "total_deposited_to_date"
    TOTAL_WITHDRAWN = "total_withdrawn_to_date"
    STRATEGY_GROWTH_OF_10K = "strategy_growth_of_10k"
    BENCHMARK_GROWTH_OF_10K = "benchmark_growth_of_10k"
    RISK_FREE_GROWTH_OF_10K = "risk_free_growth_of_10k"
    HOLDINGS = "holdings"
    TAX_LOTS = "tax_lots"
    JUSTIFICATION = "justification"
    REALIZED_LTC = "realized_long_term_gain"
    REALIZED_STC = "realized_short_term_gain"
    UNREALIZED_LTC = "unrealized_long_term_gain"
    UNREALIZED_STC = "unrealized_short_term_gain"
    QUALIFIED_DIVIDENDS = "qualified_dividends"
    NON_QUALIFIED_DIVIDENDS = "non_qualified_dividends"
    INTEREST_INCOME = "interest_income"
    TAX_LIABILITY = "tax_liability"
    AFTER_TAX_VALUE = "after_tax_value"
    AFTER_TAX_RETURN = "after_tax_return"
    TAX_COST_RATIO = "tax_cost_ratio"
    TWRR_1D = "twrr_1d"
    TWRR_WTD = "twrr_wtd"
    TWRR_1WK = "twrr_1wk"
    TWRR_MTD = "twrr_mtd"
    TWRR_1MO = "twrr_1mo"
    TWRR_3MO = "twrr_3mo"
    TWRR_YTD = "twrr_ytd"
    TWRR_1YR = "twrr_1yr"
    TWRR_3YR = "twrr_3yr"
    TWRR_5YR = "twrr_5yr"
    TWRR_10YR = "twrr_10yr"
    MWRR_1D = "mwrr_1d"
    MWRR_WTD = "mwrr_wtd"
    MWRR_1WK = "mwrr_1wk"
    MWRR_MTD = "mwrr_mtd"
    MWRR_1MO = "mwrr_1mo"
    MWRR_3MO = "mwrr_3mo"
    MWRR_YTD = "mwrr_ytd"
    MWRR_1YR = "mwrr_1yr"
    MWRR_3YR = "mwrr_3yr"
    MWRR_5YR = "mwrr_5yr"
    MWRR_10YR = "mwrr_10yr"
    ACTIVE_RETURN_1YR = "active_return_1yr"
    ACTIVE_RETURN_3YR = "active_return_3yr"
    ACTIVE_RETURN_5YR = "active_return_5yr"
    ACTIVE_RETURN_10YR = "active_return_10yr"
    ALPHA_1YR = "alpha_1yr"
    ALPHA_3YR = "alpha_3yr"
    ALPHA_5YR = "alpha_5yr"
    ALPHA_10YR = "alpha_10yr"
    BETA_1YR = "beta_1yr"
    BETA_3YR = "beta_3yr"
    BETA_5YR = "beta_5yr"
    BETA_10YR = "beta_10yr"
    CALMAR_RATIO = "calmar_ratio"
    DOWNSIDE_DEVIATION = "downside_deviation"
    INFORMATION_RATIO = "information_ratio"
    K_RATIO = "k_ratio"
    KELLER_RATIO = "keller_ratio"
    SHARPE_RATIO = "sharpe_ratio"
    SORTINO_RATIO = "sortino_ratio"
    STD_DEV = "std_dev"
    TREYNOR_RATIO = "treynor_ratio"
    ULCER_INDEX = "ulcer_index"


FIELD_ATTRIBUTES: Dict[MeasurementField, str] = {
    MeasurementField.EVENT_DATE: 'time',
    MeasurementField.STRATEGY_VALUE: 'value',
    MeasurementField.BENCHMARK_VALUE: 'benchmark_value',
    MeasurementField.RISK_FREE_VALUE: 'risk_free_value',
    MeasurementField.TOTAL_DEPOSITED: 'total_deposited',
    MeasurementField.TOTAL_WITHDRAWN: 'total_withdrawn',
    MeasurementField.STRATEGY_GROWTH_OF_10K: 'strategy_growth_of_10k',
    MeasurementField.BENCHMARK_GROWTH_OF_10K: 'benchmark_growth_of_10k',
    MeasurementField.RISK_FREE_GROWTH_OF_10K: 'risk_free_growth_of_10k',
    MeasurementField.HOLDINGS: 'holdings',
    MeasurementField.TAX_LOTS: 'tax_lots',
    MeasurementField.JUSTIFICATION: 'justification',
    MeasurementField.REALIZED_LTC: 'realized_long_term_gain',
    MeasurementField.REALIZED_STC: 'realized_short_term_gain',
    MeasurementField.UNREALIZED_LTC: 'unrealized_long_term_gain',
    MeasurementField.UNREALIZED_STC: 'unrealized_short_term_gain',
    MeasurementField.QUALIFIED_DIVIDENDS: 'qualified_dividends',
    MeasurementField.NON_QUALIFIED_DIVIDENDS: 'non_qualified_dividends',
    MeasurementField.INTEREST_INCOME: 'interest_income',
    MeasurementField.TAX_LIABILITY: 'tax_liability',
    MeasurementField.AFTER_TAX_VALUE: 'after_tax_value',
    MeasurementField.AFTER_TAX_RETURN: 'after_tax_return',
    MeasurementField.TAX_COST_RATIO: 'tax_cost_ratio',
    MeasurementField.TWRR_1D: 'twrr_one_day',
    MeasurementField.TWRR_WTD: 'twrr_week_to_date',
    MeasurementField.TWRR_1WK: 'twrr_one_week',
    MeasurementField.TWRR_MTD: 'twrr_month_to_date',
    MeasurementField.TWRR_1MO: 'twrr_one_month',
    MeasurementField.TWRR_3MO: 'twrr_three_month',
    MeasurementField.TWRR_YTD: 'twrr_year_to_date',
    MeasurementField.TWRR_1YR: 'twrr_one_year',
    MeasurementField.TWRR_3YR: 'twrr_three_year',
    MeasurementField.TWRR_5YR: 'twrr_five_year',
    MeasurementField.TWRR_10YR: 'twrr_ten_year',
    MeasurementField.MWRR_1D: 'mwrr_one_day',
    MeasurementField.MWRR_WTD: 'mwrr_week_to_date',
    MeasurementField.MWRR_1WK: 'mwrr_one_week',
    MeasurementField.MWRR_MTD: 'mwrr_month_to_date',
    MeasurementField.MWRR_1MO: 'mwrr_one_month',
    MeasurementField.MWRR_3MO: 'mwrr_three_month',
    MeasurementField.MWRR_YTD: 'mwrr_year_to_date',
    MeasurementField.MWRR_1YR: 'mwrr_one_year',
    MeasurementField.MWRR_3YR: 'mwrr_three_year',
    MeasurementField.MWRR_5YR: 'mwrr_five_year',
    MeasurementField.MWRR_10YR: 'mwrr_ten_year',
    MeasurementField.ACTIVE_RETURN_1YR: 'active_return_one_year',
    MeasurementField.ACTIVE_RETURN_3YR: 'active_return_three_year',
    MeasurementField.ACTIVE_RETURN_5YR: 'active_return_five_year',
    MeasurementField.ACTIVE_RETURN_10YR: 'active_return_ten_year',
    MeasurementField.ALPHA_1YR: 'alpha_one_year',
    MeasurementField.ALPHA_3YR: 'alpha_three_year',
    MeasurementField.ALPHA_5YR: 'alpha_five_year',
    MeasurementField.ALPHA_10YR: 'alpha_ten_year',
    MeasurementField.BETA_1YR: 'beta_one_year',
    MeasurementField.BETA_3YR: 'beta_three_year',
    MeasurementField.BETA_5YR: 'beta_five_year',
    MeasurementField.BETA_10YR: 'beta_ten_year',
    MeasurementField.CALMAR_RATIO: 'calmar_ratio',
    MeasurementField.DOWNSIDE_DEVIATION: 'downside_deviation',
    MeasurementField.INFORMATION_RATIO: 'information_ratio',
    MeasurementField.K_RATIO: 'k_ratio',
    MeasurementField.KELLER_RATIO: 'keller_ratio',
    MeasurementField.SHARPE_RATIO: 'sharpe_ratio',
    MeasurementField.SORTINO_RATIO: 'sortino_ratio',
    MeasurementField.STD_DEV: 'std_dev',
    MeasurementField.TREYNOR_RATIO: 'treynor_ratio',
    MeasurementField.ULCER_INDEX: 'ulcer_index',
}

FIELD_ACCESSORS: Dict[MeasurementField, Callable[[PerformanceMeasurement], Any]] = {
    f: attrgetter(attr) for f, attr in FIELD_ATTRIBUTES.items()
}

_missing = set(MeasurementField) - set(FIELD_ATTRIBUTES)
_unmapped = {f.name for f in fields(PerformanceMeasurement)} - set(FIELD_ATTRIBUTES.values())
if _missing or _unmapped:
    raise RuntimeError(
        f"measurement field table incomplete: no accessor for {sorted(m.name for m in _missing)}, "
        f"no column for {sorted(_unmapped)}"
    )

# Columns that hold plain floats (everything except date and composites)
NUMERIC_FIELDS: List[MeasurementField] = [
    f for f in MeasurementField
    if f not in (MeasurementField.EVENT_DATE, MeasurementField.HOLDINGS,
                 MeasurementField.TAX_LOTS, MeasurementField.JUSTIFICATION)
]


def get_field(measurement: PerformanceMeasurement, which: MeasurementField):
    return FIELD_ACCESSORS[MeasurementField(which)](measurement)


@dataclass(frozen=True)
class Returns:
    mwrr_since_inception: float = NaN
    mwrr_ytd: float = NaN
    mwrr_one_year: float = NaN
    mwrr_three_year: float = NaN
    mwrr_five_year: float = NaN
    mwrr_ten_year: float = NaN

    twrr_since_inception: float = NaN
    twrr_ytd: float = NaN
    twrr_one_year: float = NaN
    twrr_three_year: float = NaN
    twrr_five_year: float = NaN
    twrr_ten_year: float = NaN


@dataclass(frozen=True)
class Metrics:
    alpha_since_inception: float = NaN
    avg_draw_down: float = NaN
    beta_since_inception: float = NaN
    best_year: Optional[AnnualReturn] = None
    worst_year: Optional[AnnualReturn] = None
    downside_deviation_since_inception: float = NaN
    excess_kurtosis_since_inception: float = NaN
    final_balance: float = NaN
    max_draw_down: Optional[DrawDown] = None
    sharpe_ratio_since_inception: float = NaN
    skewness: float = NaN
    sortino_ratio_since_inception: float = NaN
    std_dev_since_inception: float = NaN
    total_deposited: float = NaN
    total_withdrawn: float = NaN
    ulcer_index_avg: float = NaN
    ulcer_index_p50: float = NaN
    ulcer_index_p90: float = NaN
    ulcer_index_p99: float = NaN
    dynamic_withdrawal_rate_since_inception: float = NaN
    perpetual_withdrawal_rate_since_inception: float = NaN
    safe_withdrawal_rate_since_inception: float = NaN
    after_tax_return_since_inception: float = NaN
    tax_cost_ratio_since_inception: float = NaN
    net_profit: float = NaN
    net_profit_percent: float = NaN


def holdings_snapshot(holdings: Dict[str, float], values: Dict[str, float],
                      total_value: float, epsilon: float) -> Tuple[ReportableHolding, ...]:
    """Holdings above epsilon shares, sorted by security."""
    snapshot = []
    for security in sorted(holdings):
        shares = holdings[security]
        if shares <= epsilon:
            continue
        value = values.get(security, 0.0)
        if np.isnan(value):
            value = 0.0
        pct = value / total_value if total_value else NaN
        snapshot.append(ReportableHolding(security, shares, pct, value))
    return tuple(snapshot)
