"""
Return and risk metrics over a portfolio's measurement history.

Performance keeps the numeric fields of every measurement in numpy
columns so each metric is a slice and a few vector operations. Every
metric looks at a trailing window of `periods` measurements ending at
the most recent one; the window spans periods + 1 measurements, and a
window that does not fit the history yields NaN, never an error.

Monthly statistics (Sharpe, std dev, downside deviation) follow the
Morningstar convention of sampling growth-of-$10k at month ends and
annualizing with sqrt(12); daily statistics annualize with sqrt(252).
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from portsim import config as cfg
from portsim.errors import DidNotConvergeError
from portsim.fsolve import fsolve
from portsim.measurement import (
    Kind, PerformanceMeasurement, DrawDown, Returns, Metrics, AnnualReturn,
)

logger = logging.getLogger(__name__)

_NS_PER_DAY = 86_400 * 10 ** 9

_VALUE_COLUMNS = {
    Kind.STRATEGY: 'value',
    Kind.BENCHMARK: 'benchmark_value',
    Kind.RISK_FREE: 'risk_free_value',
    Kind.AFTER_TAX: 'after_tax_value',
}

_GROWTH_COLUMNS = {
    Kind.STRATEGY: 'strategy_growth_of_10k',
    Kind.BENCHMARK: 'benchmark_growth_of_10k',
    Kind.RISK_FREE: 'risk_free_growth_of_10k',
}

_FLOAT_COLUMNS = (
    'value', 'benchmark_value', 'risk_free_value', 'after_tax_value',
    'total_deposited', 'total_withdrawn',
    'strategy_growth_of_10k', 'benchmark_growth_of_10k', 'risk_free_growth_of_10k',
    'ulcer_index',
)


def to_years(start_ns: int, end_ns: int) -> float:
    return (end_ns - start_ns) / _NS_PER_DAY / cfg.DAYS_PER_YEAR


def _annualize(rate: float, years: float) -> float:
    if years > 1:
        return rate ** (1.0 / years) - 1.0
    return rate - 1.0


def window_growth(times: Sequence[int], flows: Sequence[float]) -> float:
    """
    Growth multiple over the whole window that zeroes the cash flows' NPV.

    Flow times are expressed as fractions of the window, so the solution
    is the IRR compounded over the window instead of over a year. The
    bracket starts just above zero and doubles upward until the NPV
    changes sign.

    Args:
        times: Flow timestamps in ns, first and last bound the window
        flows: Outflows negative, inflows positive

    Returns:
        Window growth multiple, NaN if the solver cannot bracket a root
    """
    t = np.asarray(times, dtype=np.int64)
    cf = np.asarray(flows, dtype=float)
    span = float(t[-1] - t[0])
    if span <= 0 or not np.all(np.isfinite(cf)):
        return np.nan
    frac = (t - t[0]) / span

    def npv(g):
        with np.errstate(over='ignore', divide='ignore', invalid='ignore'):
            return float(np.sum(cf * g ** -frac))

    lo, hi = 1e-9, 2.0
    f_lo = npv(lo)
    while np.sign(npv(hi)) == np.sign(f_lo) and hi < 1e6:
        hi *= 2.0

    try:
        return fsolve(npv, 1.0, lo=lo, hi=hi)
    except DidNotConvergeError as exc:
        logger.debug("xirr did not converge: %s", exc)
        return np.nan


def xirr(cashflows: Sequence[Tuple[pd.Timestamp, float]]) -> float:
    """
    Annualized internal rate of return of dated cash flows.

    Public helper for callers holding a plain list of (date, amount) pairs,
    outflows negative. Performance.mwrr builds the same schedule from its
    columns and calls window_growth directly, annualizing only windows
    longer than a year.
    """
    if len(cashflows) < 2:
        return np.nan
    times = [pd.Timestamp(d).value for d, _ in cashflows]
    growth = window_growth(times, [v for _, v in cashflows])
    years = to_years(times[0], times[-1])
    if np.isnan(growth) or years <= 0:
        return np.nan
    return growth ** (1.0 / years) - 1.0


def _drawdowns(times: np.ndarray, values: np.ndarray) -> List[DrawDown]:
    peak = np.maximum.accumulate(values)
    under = values < peak
    if not under.any():
        return []

    edges = np.diff(under.astype(np.int8))
    starts = list(np.nonzero(edges == 1)[0] + 1)
    ends = list(np.nonzero(edges == -1)[0] + 1)   # first index back at a peak
    if len(ends) < len(starts):
        ends.append(None)

    with np.errstate(divide='ignore', invalid='ignore'):
        losses = values / peak - 1.0

    episodes = []
    for s, e in zip(starts, ends):
        stop = len(values) if e is None else e
        trough = s + int(np.argmin(losses[s:stop]))
        episodes.append(DrawDown(
            begin=pd.Timestamp(times[s - 1]),
            end=pd.Timestamp(times[trough]),
            recovery=None if e is None else pd.Timestamp(times[e]),
            loss_percent=float(losses[trough]),
        ))
    return episodes


class Performance:
    """
    A portfolio's measurement history plus the summary of one run.

    Measurements are appended once each, in strictly increasing date
    order. While the pipeline builds a day it can stage() a draft so the
    rolling metrics for that day see it as the newest measurement; the
    finished record then replaces the draft through append().
    """

    def __init__(self, portfolio_id: str = "",
                 measurements: Optional[Sequence[PerformanceMeasurement]] = None):
        self.portfolio_id = portfolio_id
        self.period_start: Optional[pd.Timestamp] = None
        self.period_end: Optional[pd.Timestamp] = None
        self.computed_on: Optional[pd.Timestamp] = None
        self.current_assets: tuple = ()
        self.drawdowns: List[DrawDown] = []
        self.portfolio_returns = Returns()
        self.benchmark_returns = Returns()
        self.portfolio_metrics = Metrics()
        self.benchmark_metrics = Metrics()
        self.realized: list = []
        self.annual_returns: Dict[int, Tuple[float, float]] = {}
        self.state = None   # pipeline state after the last measurement, for resuming

        self.measurements: List[PerformanceMeasurement] = []
        self._count = 0
        self._staged = False
        self._alloc(64)
        for m in measurements or ():
            self.append(m)

    # ------------------------------------------------------------------
    # storage

    def _alloc(self, capacity: int):
        self._capacity = capacity
        self._time = np.zeros(capacity, dtype=np.int64)
        self._month = np.zeros(capacity, dtype=np.int64)
        self._year = np.zeros(capacity, dtype=np.int64)
        self._cols: Dict[str, np.ndarray] = {c: np.full(capacity, np.nan) for c in _FLOAT_COLUMNS}

    def _grow(self):
        old_time, old_month, old_year, old_cols = self._time, self._month, self._year, self._cols
        n = self._count
        self._alloc(self._capacity * 2)
        self._time[:n] = old_time[:n]
        self._month[:n] = old_month[:n]
        self._year[:n] = old_year[:n]
        for c in _FLOAT_COLUMNS:
            self._cols[c][:n] = old_cols[c][:n]

    def _write(self, idx: int, m: PerformanceMeasurement):
        t = pd.Timestamp(m.time)
        self._time[idx] = t.value
        self._year[idx] = t.year
        self._month[idx] = t.year * 12 + t.month - 1
        for c in _FLOAT_COLUMNS:
            self._cols[c][idx] = getattr(m, c)

    def _check_order(self, m: PerformanceMeasurement):
        if self._count and pd.Timestamp(m.time).value <= self._time[self._count - 1]:
            raise ValueError(
                f"measurement on {m.time} does not follow {pd.Timestamp(self._time[self._count - 1])}"
            )

    def stage(self, draft: PerformanceMeasurement):
        """Expose a draft of the day being built to the metric methods."""
        self._check_order(draft)
        if self._count == self._capacity:
            self._grow()
        self._write(self._count, draft)
        self._staged = True

    def append(self, m: PerformanceMeasurement):
        """Commit a finished measurement; replaces any staged draft."""
        self._check_order(m)
        if self._count == self._capacity:
            self._grow()
        self._write(self._count, m)
        self.measurements.append(m)
        self._count += 1
        self._staged = False

    def truncate(self, count: int):
        """Drop every measurement after the first `count`."""
        count = max(0, min(count, self._count))
        del self.measurements[count:]
        self._count = count
        self._staged = False

    def __len__(self):
        return self._count

    @property
    def n(self) -> int:
        """Measurements visible to the metrics, including a staged draft."""
        return self._count + (1 if self._staged else 0)

    @property
    def last(self) -> Optional[PerformanceMeasurement]:
        return self.measurements[-1] if self.measurements else None

    def column(self, name: str) -> np.ndarray:
        return self._cols[name][:self.n]

    def values(self, kind: Kind) -> np.ndarray:
        return self._cols[_VALUE_COLUMNS[Kind(kind)]][:self.n]

    def times(self) -> np.ndarray:
        return self._time[:self.n]

    def _window(self, periods: int) -> Optional[int]:
        """Start index of the window, None when it does not fit."""
        if periods < 1 or periods + 1 > self.n:
            return None
        return self.n - periods - 1

    def _years(self, start: int) -> float:
        return to_years(self._time[start], self._time[self.n - 1])

    # ------------------------------------------------------------------
    # helpers

    def period_returns(self, periods: int, kind: Kind = Kind.STRATEGY) -> np.ndarray:
        """Single-period returns with each day's deposits and withdrawals backed out."""
        start = self._window(periods)
        if start is None:
            return np.array([])
        end = self.n
        v = self.values(kind)[start:end]
        dep = np.diff(self._cols['total_deposited'][start:end])
        wd = np.diff(self._cols['total_withdrawn'][start:end])
        with np.errstate(divide='ignore', invalid='ignore'):
            return (v[1:] - dep + wd) / v[:-1] - 1.0

    def excess_returns(self, periods: int) -> np.ndarray:
        rp = self.period_returns(periods, Kind.STRATEGY)
        rf = self.period_returns(periods, Kind.RISK_FREE)
        return rp - rf

    def monthly_returns(self, periods: int, kind: Kind = Kind.STRATEGY) -> np.ndarray:
        """
        Month-over-month growth-of-$10k returns inside the window.

        A return is closed on the last measurement of each month that is
        followed by a measurement in a new month, so the (incomplete)
        month containing the newest measurement is not included.
        """
        start = max(self.n - periods - 1, 0)
        end = self.n
        if end - start < 2:
            return np.array([])
        growth = self._cols[_GROWTH_COLUMNS[Kind(kind)]]
        months = self._month[start:end]
        boundaries = start + np.nonzero(months[1:] != months[:-1])[0]
        if len(boundaries) == 0:
            return np.array([])
        anchors = np.concatenate(([start], boundaries[:-1]))
        with np.errstate(divide='ignore', invalid='ignore'):
            return growth[boundaries] / growth[anchors] - 1.0

    def vami(self, periods: int) -> np.ndarray:
        """Value of a hypothetical $1,000 investment over the last `periods` measurements."""
        if periods < 1 or periods > self.n:
            return np.array([])
        rets = self.period_returns(periods - 1, Kind.STRATEGY) if periods > 1 else np.array([])
        return 1000.0 * np.concatenate(([1.0], np.cumprod(1.0 + rets)))

    def ytd_periods(self) -> int:
        """Measurements in the calendar year of the newest measurement."""
        if self.n == 0:
            return 0
        years = self._year[:self.n]
        return int(np.count_nonzero(years == years[-1]))

    # ------------------------------------------------------------------
    # returns

    def twrr(self, periods: int, kind: Kind = Kind.STRATEGY) -> float:
        """
        Time-weighted rate of return.

        Single-period returns are chain-linked; the result is annualized
        when the window spans more than a year.
        """
        start = self._window(periods)
        if start is None:
            return np.nan
        rate = float(np.prod(1.0 + self.period_returns(periods, kind)))
        return _annualize(rate, self._years(start))

    def mwrr(self, periods: int, kind: Kind = Kind.STRATEGY) -> float:
        """
        Money-weighted rate of return.

        A one-period window uses the flow-adjusted ratio directly. Longer
        windows build a cash-flow schedule (starting value out, net
        deposits out, ending value in). With no intermediate flows the
        ratio of the two endpoints is exact; otherwise the window growth
        is solved for as an IRR. Results over a year are annualized.
        """
        start = self._window(periods)
        if start is None:
            return np.nan
        end = self.n - 1
        years = self._years(start)
        v = self.values(kind)
        dep = self._cols['total_deposited']
        wd = self._cols['total_withdrawn']

        if periods == 1:
            deposited = dep[end] - dep[start]
            withdrawn = wd[end] - wd[start]
            with np.errstate(divide='ignore', invalid='ignore'):
                rate = (v[end] - deposited + withdrawn) / v[start]
            return _annualize(float(rate), years)

        times = [int(self._time[start])]
        flows = [-float(v[start])]
        net = np.diff(dep[start:end]) - np.diff(wd[start:end])
        for offset in np.nonzero(net)[0]:
            times.append(int(self._time[start + offset + 1]))
            flows.append(-float(net[offset]))
        times.append(int(self._time[end]))
        flows.append(float(v[end]))

        if len(flows) == 2:
            with np.errstate(divide='ignore', invalid='ignore'):
                rate = flows[1] / -flows[0]
            return _annualize(float(rate), years)

        growth = window_growth(times, flows)
        return _annualize(growth, years)

    def twrr_ytd(self, kind: Kind = Kind.STRATEGY) -> float:
        periods = self.ytd_periods()
        if periods == self.n:
            periods -= 1
        return self.twrr(periods, kind)

    def mwrr_ytd(self, kind: Kind = Kind.STRATEGY) -> float:
        periods = self.ytd_periods()
        if periods == self.n:
            periods -= 1
        return self.mwrr(periods, kind)

    def active_return(self, periods: int) -> float:
        """Strategy TWRR minus benchmark TWRR."""
        if self._window(periods) is None:
            return np.nan
        return self.twrr(periods, Kind.STRATEGY) - self.twrr(periods, Kind.BENCHMARK)

    def net_profit(self) -> float:
        m = self.last
        if m is None:
            return np.nan
        return m.value - m.total_deposited + m.total_withdrawn

    def net_profit_percent(self) -> float:
        m = self.last
        if m is None or m.total_deposited == 0:
            return np.nan
        return (m.total_deposited + self.net_profit()) / m.total_deposited - 1.0

    # ------------------------------------------------------------------
    # risk

    def beta(self, periods: int) -> float:
        if self._window(periods) is None:
            return np.nan
        rp = self.period_returns(periods, Kind.STRATEGY)
        rb = self.period_returns(periods, Kind.BENCHMARK)
        if len(rp) < 2:
            return np.nan
        var = np.var(rb, ddof=1)
        if var == 0 or np.isnan(var):
            return np.nan
        return float(np.cov(rp, rb, ddof=1)[0, 1] / var)

    def alpha(self, periods: int) -> float:
        """Jensen's alpha: Rp - [Rf + (Rb - Rf) * beta]."""
        if self._window(periods) is None:
            return np.nan
        rp = self.twrr(periods, Kind.STRATEGY)
        rf = self.twrr(periods, Kind.RISK_FREE)
        rb = self.twrr(periods, Kind.BENCHMARK)
        return rp - (rf + (rb - rf) * self.beta(periods))

    def tracking_error(self, periods: int) -> float:
        if self._window(periods) is None:
            return np.nan
        diff = self.period_returns(periods, Kind.STRATEGY) - self.period_returns(periods, Kind.BENCHMARK)
        if len(diff) < 2:
            return np.nan
        return float(np.std(diff, ddof=1))

    def information_ratio(self, periods: int) -> float:
        if self._window(periods) is None:
            return np.nan
        rp = np.mean(self.period_returns(periods, Kind.STRATEGY))
        rb = np.mean(self.period_returns(periods, Kind.BENCHMARK))
        te = self.tracking_error(periods)
        if te == 0 or np.isnan(te):
            return np.nan
        return float((rp - rb) / te * np.sqrt(cfg.TRADING_DAYS_PER_YEAR))

    def treynor_ratio(self, periods: int) -> float:
        """Mean excess return per unit of beta."""
        if self._window(periods) is None:
            return np.nan
        beta = self.beta(periods)
        if beta == 0 or np.isnan(beta):
            return np.nan
        return float(np.mean(self.excess_returns(periods)) / beta)

    def std_dev(self, periods: int, kind: Kind = Kind.STRATEGY) -> float:
        """Annualized standard deviation of monthly returns."""
        if self._window(periods) is None:
            return np.nan
        rets = self.monthly_returns(periods, kind)
        if len(rets) < 2:
            return np.nan
        return float(np.std(rets, ddof=1) * np.sqrt(cfg.MONTHS_PER_YEAR))

    def downside_deviation(self, periods: int, kind: Kind = Kind.STRATEGY) -> float:
        """Annualized root-mean-square of negative monthly excess returns."""
        if self._window(periods) is None:
            return np.nan
        rp = self.monthly_returns(periods, kind)
        rf = self.monthly_returns(periods, Kind.RISK_FREE)
        if len(rp) == 0:
            return np.nan
        excess = rp - rf
        downside = np.sum(np.square(excess[excess < 0]))
        return float(np.sqrt(downside / len(rp)) * np.sqrt(cfg.MONTHS_PER_YEAR))

    def _compounded_excess(self, rp: np.ndarray, rf: np.ndarray, start: int) -> float:
        rate = float(np.prod(1.0 + rp - rf))
        return _annualize(rate, self._years(start))

    def sharpe_ratio(self, periods: int, kind: Kind = Kind.STRATEGY) -> float:
        """
        Compounded monthly excess return over annualized monthly std dev.

        Monthly sampling keeps the figure comparable with what Morningstar
        and most data providers publish.
        """
        start = self._window(periods)
        if start is None:
            return np.nan
        rp = self.monthly_returns(periods, kind)
        rf = self.monthly_returns(periods, Kind.RISK_FREE)
        if len(rp) < 2:
            return np.nan
        stdev = np.std(rp, ddof=1) * np.sqrt(cfg.MONTHS_PER_YEAR)
        if stdev == 0:
            return np.nan
        return float(self._compounded_excess(rp, rf, start) / stdev)

    def sortino_ratio(self, periods: int, kind: Kind = Kind.STRATEGY) -> float:
        """Compounded excess return over downside deviation."""
        start = self._window(periods)
        if start is None:
            return np.nan
        rp = self.period_returns(periods, kind)
        rf = self.period_returns(periods, Kind.RISK_FREE)
        dd = self.downside_deviation(periods, kind)
        if dd == 0 or np.isnan(dd):
            return np.nan
        return float(self._compounded_excess(rp, rf, start) / dd)

    def skew(self, periods: int, kind: Kind = Kind.STRATEGY) -> float:
        if self._window(periods) is None:
            return np.nan
        rets = self.monthly_returns(periods, kind)
        if len(rets) < 3 or np.std(rets) == 0:
            return np.nan
        return float(stats.skew(rets, bias=False))

    def excess_kurtosis(self, periods: int, kind: Kind = Kind.STRATEGY) -> float:
        if self._window(periods) is None:
            return np.nan
        rets = self.monthly_returns(periods, kind)
        if len(rets) < 4 or np.std(rets) == 0:
            return np.nan
        return float(stats.kurtosis(rets, fisher=True, bias=False))

    def k_ratio(self, periods: int) -> float:
        """
        Slope of the log-VAMI regression over its standard error, scaled
        by the number of observations.
        """
        if self._window(periods) is None:
            return np.nan
        y = np.log(self.vami(periods))
        if len(y) < 3 or not np.all(np.isfinite(y)):
            return np.nan
        fit = stats.linregress(np.arange(len(y), dtype=float), y)
        if fit.stderr == 0 or np.isnan(fit.stderr):
            return np.nan
        return float(fit.slope / (fit.stderr * len(y)))

    # ------------------------------------------------------------------
    # drawdowns

    def _drawdown_window(self, periods: int) -> Optional[int]:
        # longer windows than the history are clamped to the whole history
        if periods < 1 or self.n < 2:
            return None
        periods = min(periods, self.n - 1)
        return self.n - periods - 1

    def all_drawdowns(self, periods: int, kind: Kind = Kind.STRATEGY) -> List[DrawDown]:
        """
        Every peak-to-trough-to-recovery episode in the window, oldest first.

        An episode begins at the peak measurement, ends at the trough and
        recovers at the first measurement back at or above the peak. An
        episode still under water at the end of the window has no recovery.
        """
        start = self._drawdown_window(periods)
        if start is None:
            return []
        return _drawdowns(self._time[start:self.n], self.values(kind)[start:])

    def top10_drawdowns(self, periods: int, kind: Kind = Kind.STRATEGY) -> List[DrawDown]:
        episodes = sorted(self.all_drawdowns(periods, kind), key=lambda d: d.loss_percent)
        return episodes[:10]

    def max_drawdown(self, periods: int, kind: Kind = Kind.STRATEGY) -> Optional[DrawDown]:
        top = self.top10_drawdowns(periods, kind)
        return top[0] if top else None

    def average_drawdown(self, periods: int, kind: Kind = Kind.STRATEGY) -> float:
        episodes = self.all_drawdowns(periods, kind)
        if not episodes:
            return np.nan
        return float(np.mean([d.loss_percent for d in episodes]))

    def calmar_ratio(self, periods: int, kind: Kind = Kind.STRATEGY) -> float:
        """Annualized return over the magnitude of the worst drawdown."""
        if self._window(periods) is None:
            return np.nan
        cagr = self.twrr(periods, kind)
        dd = self.max_drawdown(periods, kind)
        if dd is None:
            return cagr
        return cagr / -dd.loss_percent

    def keller_ratio(self, periods: int, kind: Kind = Kind.STRATEGY) -> float:
        """
        Return adjusted for drawdown severity.

        K = R * (1 - D / (1 - D)) when R >= 0 and D <= 50%, else 0, with D
        the depth of the worst drawdown as a positive fraction.
        """
        if self._window(periods) is None:
            return np.nan
        cagr = self.twrr(periods, kind)
        dd = self.max_drawdown(periods, kind)
        depth = -dd.loss_percent if dd is not None else 0.0
        if cagr >= 0 and depth <= 0.5:
            return cagr * (1.0 - depth / (1.0 - depth))
        return 0.0

    # ------------------------------------------------------------------
    # ulcer index

    def ulcer_index(self) -> float:
        """
        Root-mean-square percentage drawdown from the running high of the
        last ULCER_INDEX_LOOKBACK strategy growth values.
        """
        lookback = cfg.ULCER_INDEX_LOOKBACK
        if self.n < lookback:
            return np.nan
        g = self._cols['strategy_growth_of_10k'][self.n - lookback:self.n]
        high = np.maximum.accumulate(g)
        pct = (g - high) / high * 100.0
        return float(np.sqrt(np.mean(np.square(pct))))

    def _ulcer_values(self, periods: int) -> np.ndarray:
        start = self._window(periods)
        if start is None:
            return np.array([])
        u = self._cols['ulcer_index'][start:self.n]
        return u[~np.isnan(u)]

    def avg_ulcer_index(self, periods: int) -> float:
        u = self._ulcer_values(periods)
        return float(np.mean(u)) if len(u) else np.nan

    def ulcer_index_percentile(self, periods: int, percentile: float) -> float:
        if percentile < 0.0 or percentile > 1.0:
            return np.nan
        u = np.sort(self._ulcer_values(periods))
        if len(u) == 0:
            return np.nan
        idx = min(int(np.ceil(len(u) * percentile)) - 1, len(u) - 1)
        return float(u[max(idx, 0)])

    # ------------------------------------------------------------------
    # summaries

    def returns_summary(self, kind: Kind = Kind.STRATEGY) -> Returns:
        since_inception = self.n - 1
        return Returns(
            mwrr_since_inception=self.mwrr(since_inception, kind),
            mwrr_ytd=self.mwrr_ytd(kind),
            mwrr_one_year=self.mwrr(cfg.WINDOW_1YR, kind),
            mwrr_three_year=self.mwrr(cfg.WINDOW_3YR, kind),
            mwrr_five_year=self.mwrr(cfg.WINDOW_5YR, kind),
            mwrr_ten_year=self.mwrr(cfg.WINDOW_10YR, kind),
            twrr_since_inception=self.twrr(since_inception, kind),
            twrr_ytd=self.twrr_ytd(kind),
            twrr_one_year=self.twrr(cfg.WINDOW_1YR, kind),
            twrr_three_year=self.twrr(cfg.WINDOW_3YR, kind),
            twrr_five_year=self.twrr(cfg.WINDOW_5YR, kind),
            twrr_ten_year=self.twrr(cfg.WINDOW_10YR, kind),
        )

    def best_and_worst_year(self, kind: Kind = Kind.STRATEGY
                            ) -> Tuple[Optional[AnnualReturn], Optional[AnnualReturn]]:
        idx = 0 if kind == Kind.STRATEGY else 1
        years = [(year, rets[idx]) for year, rets in self.annual_returns.items()
                 if not np.isnan(rets[idx])]
        if not years:
            return None, None
        ranked = sorted(years, key=lambda kv: kv[1])
        worst_year, worst = ranked[0]
        best_year, best = ranked[-1]
        return AnnualReturn(best_year, best), AnnualReturn(worst_year, worst)
