"""
Daily performance measurement pipeline.

calculate_performance() replays a portfolio's transactions one trading
day at a time, values the resulting holdings, shadows a benchmark and a
risk-free account with the same cash flows, runs the tax engine, and
appends one PerformanceMeasurement per day with its rolling statistics.
Summary returns, metrics and withdrawal-rate estimates are computed once
at the end of the run.

A run can resume from a previous Performance (its measurements plus the
pipeline state stored with them) and can be cancelled between days, in
which case it falls back to the last checkpoint handed to the caller.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from portsim import config as cfg
from portsim import processor
from portsim.errors import DataUnavailableError, SimulationCancelled, SimulationError
from portsim.feed import MarketDataFeed, TradingCalendar
from portsim.measurement import (
    Kind, MeasurementBuilder, Metrics, ReportableHolding, holdings_snapshot,
)
from portsim.metrics import Performance
from portsim.processor import RunningSums
from portsim.simulation import (
    circular_bootstrap, safe_withdrawal_rate, perpetual_withdrawal_rate, dynamic_withdrawal_rate,
)
from portsim.tax.engine import TaxEngine, tax_cost_ratio
from portsim.tax.lots import TaxLot, TaxLotLedger
from portsim.tax.rates import TaxRateProvider
from portsim.transaction import Transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineState:
    """Everything the daily loop carries from one day to the next."""
    last_date: Optional[pd.Timestamp] = None
    trx_index: int = 0
    holdings: Tuple[Tuple[str, float], ...] = ()
    lots: Tuple[TaxLot, ...] = ()
    sums: RunningSums = field(default_factory=RunningSums)
    risk_free_value: float = 0.0
    benchmark_value: float = 0.0
    benchmark_shares: float = 0.0
    strategy_growth: float = cfg.GROWTH_BASE
    benchmark_growth: float = cfg.GROWTH_BASE
    risk_free_growth: float = cfg.GROWTH_BASE
    last_assets: Optional[Tuple[ReportableHolding, ...]] = None
    days_to_start_of_week: int = 0
    days_to_start_of_month: int = 0
    days_to_start_of_year: int = 0
    prev_twrr_ytd: float = np.nan
    ytd_benchmark: float = np.nan
    tax_engine: Optional[TaxEngine] = None


class _Loop:
    """Mutable working copy of PipelineState for the duration of a run."""

    def __init__(self, state: PipelineState, tax_rates: TaxRateProvider):
        self.last_date = state.last_date
        self.trx_index = state.trx_index
        self.holdings: Dict[str, float] = dict(state.holdings)
        self.ledger = TaxLotLedger(state.lots)
        self.sums = state.sums
        self.risk_free_value = state.risk_free_value
        self.benchmark_value = state.benchmark_value
        self.benchmark_shares = state.benchmark_shares
        self.strategy_growth = state.strategy_growth
        self.benchmark_growth = state.benchmark_growth
        self.risk_free_growth = state.risk_free_growth
        self.last_assets = state.last_assets
        self.days_to_start_of_week = state.days_to_start_of_week
        self.days_to_start_of_month = state.days_to_start_of_month
        self.days_to_start_of_year = state.days_to_start_of_year
        self.prev_twrr_ytd = state.prev_twrr_ytd
        self.ytd_benchmark = state.ytd_benchmark
        if state.tax_engine is not None:
            self.tax_engine = copy.deepcopy(state.tax_engine)
        else:
            self.tax_engine = TaxEngine(tax_rates)

    def snapshot(self) -> PipelineState:
        return PipelineState(
            last_date=self.last_date,
            trx_index=self.trx_index,
            holdings=tuple(sorted(self.holdings.items())),
            lots=self.ledger.snapshot(),
            sums=self.sums,
            risk_free_value=self.risk_free_value,
            benchmark_value=self.benchmark_value,
            benchmark_shares=self.benchmark_shares,
            strategy_growth=self.strategy_growth,
            benchmark_growth=self.benchmark_growth,
            risk_free_growth=self.risk_free_growth,
            last_assets=self.last_assets,
            days_to_start_of_week=self.days_to_start_of_week,
            days_to_start_of_month=self.days_to_start_of_month,
            days_to_start_of_year=self.days_to_start_of_year,
            prev_twrr_ytd=self.prev_twrr_ytd,
            ytd_benchmark=self.ytd_benchmark,
            tax_engine=copy.deepcopy(self.tax_engine),
        )

    def counters(self, date: pd.Timestamp) -> Tuple[int, int, int]:
        """Days since the start of the week, month and year, counting date."""
        last = self.last_date
        week, month, year = (self.days_to_start_of_week, self.days_to_start_of_month,
                             self.days_to_start_of_year)
        week = 1 if last is None or last.to_period('W') != date.to_period('W') else week + 1
        month = 1 if last is None or (last.year, last.month) != (date.year, date.month) else month + 1
        year = 1 if last is None or last.year != date.year else year + 1
        return week, month, year


def _close(feed: MarketDataFeed, security: str, date: pd.Timestamp) -> float:
    """Close on date, falling back to the latest earlier close when unknown."""
    price = feed.price(security, date)
    if price is None or np.isnan(price):
        price = feed.latest_price_before(security, date)
    return price


def _value_holdings(holdings: Dict[str, float], feed: MarketDataFeed,
                    date: pd.Timestamp) -> Tuple[float, Dict[str, float], Dict[str, float]]:
    prices: Dict[str, float] = {}
    values: Dict[str, float] = {}
    total = 0.0
    for security, qty in holdings.items():
        if security == cfg.CASH_SECURITY:
            if np.isnan(qty):
                logger.warning("cash position is NaN on %s", date.date())
                continue
            values[security] = qty
            total += qty
            continue
        price = _close(feed, security, date)
        prices[security] = price
        values[security] = price * qty
        total += price * qty
    return total, prices, values


def _day_justification(transactions: Sequence[Transaction], start: int, stop: int):
    justification = ()
    for trx in transactions[start:stop]:
        if trx.justification:
            justification = trx.justification
    return justification


def _rolling(perf: Performance, wtd: int, mtd: int, ytd: int) -> dict:
    windows = {
        'one_day': cfg.WINDOW_1D,
        'week_to_date': wtd,
        'one_week': cfg.WINDOW_1WK,
        'month_to_date': mtd,
        'one_month': cfg.WINDOW_1MO,
        'three_month': cfg.WINDOW_3MO,
        'year_to_date': ytd,
        'one_year': cfg.WINDOW_1YR,
        'three_year': cfg.WINDOW_3YR,
        'five_year': cfg.WINDOW_5YR,
        'ten_year': cfg.WINDOW_10YR,
    }
    values = {}
    for name, periods in windows.items():
        values[f'twrr_{name}'] = perf.twrr(periods, Kind.STRATEGY)
        values[f'mwrr_{name}'] = perf.mwrr(periods, Kind.STRATEGY)

    for name, periods in (('one_year', cfg.WINDOW_1YR), ('three_year', cfg.WINDOW_3YR),
                          ('five_year', cfg.WINDOW_5YR), ('ten_year', cfg.WINDOW_10YR)):
        values[f'active_return_{name}'] = perf.active_return(periods)
        values[f'alpha_{name}'] = perf.alpha(periods)
        values[f'beta_{name}'] = perf.beta(periods)

    lookback = cfg.RATIO_LOOKBACK
    values.update(
        calmar_ratio=perf.calmar_ratio(lookback, Kind.STRATEGY),
        downside_deviation=perf.downside_deviation(lookback, Kind.STRATEGY),
        information_ratio=perf.information_ratio(lookback),
        k_ratio=perf.k_ratio(lookback),
        keller_ratio=perf.keller_ratio(lookback, Kind.STRATEGY),
        sharpe_ratio=perf.sharpe_ratio(lookback, Kind.STRATEGY),
        sortino_ratio=perf.sortino_ratio(lookback, Kind.STRATEGY),
        std_dev=perf.std_dev(cfg.STD_DEV_LOOKBACK, Kind.STRATEGY),
        treynor_ratio=perf.treynor_ratio(lookback),
        ulcer_index=perf.ulcer_index(),
    )
    return values


def _measure_day(perf: Performance, loop: _Loop, date: pd.Timestamp,
                 transactions: Sequence[Transaction], feed: MarketDataFeed,
                 benchmark: str, through: pd.Timestamp, compute_tax: bool) -> List[Transaction]:
    """Process one trading day and append its measurement. Returns realized gains."""
    wtd, mtd, ytd = loop.counters(date)

    benchmark_value = loop.benchmark_value
    if loop.benchmark_shares != 0.0:
        benchmark_value = loop.benchmark_shares * _close(feed, benchmark, date)

    prev_sums = loop.sums
    start_index = loop.trx_index
    result = processor.apply(loop.holdings, loop.ledger, transactions,
                             loop.trx_index, date, loop.sums)
    sums = result.sums
    flow = (sums.deposited - prev_sums.deposited) - (sums.withdrawn - prev_sums.withdrawn)
    benchmark_value += flow

    # benchmark shares absorb today's flows at today's price
    benchmark_price = feed.price(benchmark, date)
    if benchmark_price is None or np.isnan(benchmark_price):
        logger.warning("benchmark %s has no price on %s; using latest earlier close",
                       benchmark, date.date())
        benchmark_price = feed.latest_price_before(benchmark, date)
    benchmark_shares = benchmark_value / benchmark_price

    total, prices, values = _value_holdings(result.holdings, feed, date)
    current_assets = holdings_snapshot(result.holdings, values, total, cfg.SHARE_EPSILON)
    reported_assets = loop.last_assets if loop.last_assets is not None else current_assets

    rate = feed.risk_free_rate(date)
    risk_free_value = (loop.risk_free_value + flow) * (1.0 + rate / 100.0 / cfg.TRADING_DAYS_PER_YEAR)

    builder = MeasurementBuilder(date)
    builder.valuation(
        value=total,
        benchmark_value=benchmark_value,
        risk_free_value=risk_free_value,
        total_deposited=sums.deposited,
        total_withdrawn=sums.withdrawn,
        holdings=reported_assets,
        tax_lots=result.ledger.snapshot(),
        justification=_day_justification(transactions, start_index, result.next_index),
    )

    # growth of $10k, chained from today's single-period returns
    strategy_growth = loop.strategy_growth
    benchmark_growth = loop.benchmark_growth
    risk_free_growth = loop.risk_free_growth
    builder.growth(strategy_growth_of_10k=strategy_growth,
                   benchmark_growth_of_10k=benchmark_growth,
                   risk_free_growth_of_10k=risk_free_growth)
    perf.stage(builder.draft())
    if perf.n >= 2:
        for kind in (Kind.STRATEGY, Kind.BENCHMARK, Kind.RISK_FREE):
            r = perf.twrr(1, kind)
            if np.isnan(r):
                continue
            if kind == Kind.STRATEGY:
                strategy_growth *= 1.0 + r
            elif kind == Kind.BENCHMARK:
                benchmark_growth *= 1.0 + r
            else:
                risk_free_growth *= 1.0 + r
        builder.growth(strategy_growth_of_10k=strategy_growth,
                       benchmark_growth_of_10k=benchmark_growth,
                       risk_free_growth_of_10k=risk_free_growth)

    tax_engine = copy.copy(loop.tax_engine)
    if compute_tax:
        assessment = tax_engine.record(
            date,
            realized=result.realized,
            qualified=sums.qualified_dividends - prev_sums.qualified_dividends,
            non_qualified=(sums.non_qualified_dividends - prev_sums.non_qualified_dividends
                           + sums.interest - prev_sums.interest),
        )
        unrealized_lt, unrealized_st = result.ledger.unrealized_gain(prices, as_of=date)
        after_tax_value = total - assessment.tax_liability
        builder.tax(
            realized_long_term_gain=assessment.realized_long_term,
            realized_short_term_gain=assessment.realized_short_term,
            unrealized_long_term_gain=unrealized_lt,
            unrealized_short_term_gain=unrealized_st,
            qualified_dividends=assessment.qualified_dividends,
            non_qualified_dividends=assessment.non_qualified_income,
            interest_income=sums.interest,
            tax_liability=assessment.tax_liability,
            after_tax_value=after_tax_value,
        )
        perf.stage(builder.draft())
        if perf.n >= 2:
            pre_tax = perf.twrr(perf.n - 1, Kind.STRATEGY)
            after_tax = perf.twrr(perf.n - 1, Kind.AFTER_TAX)
            builder.tax(after_tax_return=after_tax, tax_cost_ratio=tax_cost_ratio(pre_tax, after_tax))
    else:
        builder.tax(after_tax_value=total)

    perf.stage(builder.draft())
    if perf.n >= 2:
        if ytd == perf.n:
            ytd -= 1
        builder.rolling(**_rolling(perf, wtd, mtd, ytd))

    measurement = builder.build()
    perf.append(measurement)

    # best / worst year bookkeeping
    if loop.last_date is not None and loop.last_date.year != date.year:
        perf.annual_returns[loop.last_date.year] = (loop.prev_twrr_ytd, loop.ytd_benchmark)
    loop.ytd_benchmark = perf.twrr(ytd, Kind.BENCHMARK)
    loop.prev_twrr_ytd = measurement.twrr_year_to_date

    loop.days_to_start_of_week = wtd
    loop.days_to_start_of_month = mtd
    loop.days_to_start_of_year = ytd
    loop.tax_engine = tax_engine
    loop.benchmark_value = benchmark_value
    loop.last_date = date
    loop.trx_index = result.next_index
    loop.holdings = result.holdings
    loop.ledger = result.ledger
    loop.sums = sums
    loop.risk_free_value = risk_free_value
    loop.benchmark_shares = benchmark_shares
    loop.strategy_growth = strategy_growth
    loop.benchmark_growth = benchmark_growth
    loop.risk_free_growth = risk_free_growth
    loop.last_assets = current_assets
    if date <= through:
        perf.current_assets = current_assets
    return result.realized


def _failed(perf: Performance, loop: _Loop, date: pd.Timestamp, exc: Exception,
            last_completed) -> SimulationError:
    # drop the half-built day; state stays at the last completed one
    perf.truncate(len(perf))
    perf.state = loop.snapshot()
    err = SimulationError(f"measuring {date.date()} failed: {exc}", last_completed)
    err.performance = perf
    return err


def _summarize(perf: Performance, loop: _Loop, calendar: TradingCalendar,
               config: cfg.SimulationConfig):
    since_inception = perf.n - 1
    last = perf.last

    # the final year counts once it is complete
    if calendar.is_last_trading_day_of_year(last.time):
        perf.annual_returns[last.time.year] = (last.twrr_year_to_date, loop.ytd_benchmark)

    perf.drawdowns = perf.top10_drawdowns(since_inception, Kind.STRATEGY)
    perf.portfolio_returns = perf.returns_summary(Kind.STRATEGY)
    perf.benchmark_returns = perf.returns_summary(Kind.BENCHMARK)

    best, worst = perf.best_and_worst_year(Kind.STRATEGY)
    dynamic = perpetual = safe = np.nan
    if config.compute_withdrawal_rates:
        monthly = perf.monthly_returns(since_inception, Kind.STRATEGY)
        if len(monthly):
            rng = np.random.default_rng(config.seed)
            paths = circular_bootstrap(monthly, config.bootstrap_block_size,
                                       config.bootstrap_num_samples, config.bootstrap_num_months, rng)
            dynamic = dynamic_withdrawal_rate(paths, config.inflation)
            perpetual = perpetual_withdrawal_rate(paths, config.inflation)
            safe = safe_withdrawal_rate(paths, config.inflation)

    pre_tax = perf.twrr(since_inception, Kind.STRATEGY)
    after_tax = perf.twrr(since_inception, Kind.AFTER_TAX) if config.compute_tax else np.nan

    perf.portfolio_metrics = Metrics(
        alpha_since_inception=perf.alpha(since_inception),
        avg_draw_down=perf.average_drawdown(since_inception, Kind.STRATEGY),
        beta_since_inception=perf.beta(since_inception),
        best_year=best,
        worst_year=worst,
        downside_deviation_since_inception=perf.downside_deviation(since_inception, Kind.STRATEGY),
        excess_kurtosis_since_inception=perf.excess_kurtosis(since_inception, Kind.STRATEGY),
        final_balance=last.value,
        max_draw_down=perf.max_drawdown(since_inception, Kind.STRATEGY),
        sharpe_ratio_since_inception=perf.sharpe_ratio(since_inception, Kind.STRATEGY),
        skewness=perf.skew(since_inception, Kind.STRATEGY),
        sortino_ratio_since_inception=perf.sortino_ratio(since_inception, Kind.STRATEGY),
        std_dev_since_inception=perf.std_dev(since_inception, Kind.STRATEGY),
        total_deposited=last.total_deposited,
        total_withdrawn=last.total_withdrawn,
        ulcer_index_avg=perf.avg_ulcer_index(since_inception),
        ulcer_index_p50=perf.ulcer_index_percentile(since_inception, 0.5),
        ulcer_index_p90=perf.ulcer_index_percentile(since_inception, 0.9),
        ulcer_index_p99=perf.ulcer_index_percentile(since_inception, 0.99),
        dynamic_withdrawal_rate_since_inception=dynamic,
        perpetual_withdrawal_rate_since_inception=perpetual,
        safe_withdrawal_rate_since_inception=safe,
        after_tax_return_since_inception=after_tax,
        tax_cost_ratio_since_inception=tax_cost_ratio(pre_tax, after_tax),
        net_profit=perf.net_profit(),
        net_profit_percent=perf.net_profit_percent(),
    )

    best, worst = perf.best_and_worst_year(Kind.BENCHMARK)
    perf.benchmark_metrics = Metrics(
        avg_draw_down=perf.average_drawdown(since_inception, Kind.BENCHMARK),
        best_year=best,
        worst_year=worst,
        downside_deviation_since_inception=perf.downside_deviation(since_inception, Kind.BENCHMARK),
        excess_kurtosis_since_inception=perf.excess_kurtosis(since_inception, Kind.BENCHMARK),
        final_balance=last.benchmark_value,
        max_draw_down=perf.max_drawdown(since_inception, Kind.BENCHMARK),
        sharpe_ratio_since_inception=perf.sharpe_ratio(since_inception, Kind.BENCHMARK),
        skewness=perf.skew(since_inception, Kind.BENCHMARK),
        sortino_ratio_since_inception=perf.sortino_ratio(since_inception, Kind.BENCHMARK),
        std_dev_since_inception=perf.std_dev(since_inception, Kind.BENCHMARK),
    )


def calculate_performance(
    transactions: Iterable[Transaction],
    feed: MarketDataFeed,
    calendar: TradingCalendar,
    through,
    benchmark: str = "VFINX",
    portfolio_id: str = "",
    resume: Optional[Performance] = None,
    cancel=None,
    on_checkpoint: Optional[Callable[[Performance], None]] = None,
    checkpoint_every: int = cfg.CHECKPOINT_INTERVAL,
    config: Optional[cfg.SimulationConfig] = None,
    tax_rates: TaxRateProvider = None,
) -> Performance:
    """
    Measure a portfolio day by day from its first transaction through `through`.

    Args:
        transactions: The portfolio's transactions; ordered by (date, sequence)
        feed: Market data for holdings, the benchmark and the risk-free rate
        calendar: Trading days to measure
        through: Last date (inclusive) to measure
        benchmark: Security the benchmark account holds
        portfolio_id: Carried onto the result
        resume: Earlier result of the same portfolio; measuring continues
            after its last measurement using the state stored with it
        cancel: Object with is_set(), checked between days
        on_checkpoint: Called with the result every `checkpoint_every` days
            once the state is saved; a cancelled run rolls back to the last
            of these
        checkpoint_every: Days between checkpoints
        config: Simulation knobs, defaults to get_simulation_config()
        tax_rates: TaxRates, mapping or callable; DEFAULT_TAX_RATES if None

    Returns:
        Performance with measurements and summary metrics

    Raises:
        SimulationCancelled: cancel was set; the result so far is on
            `exc.performance`, truncated to the last checkpoint
        SimulationError: any failure while measuring a day, with the cause
            chained and the last completed date attached
    """
    config = config or cfg.get_simulation_config()
    transactions = sorted(transactions, key=lambda t: (pd.Timestamp(t.date), t.sequence))
    if not transactions:
        raise SimulationError("cannot calculate performance for portfolio with no transactions")
    through = pd.Timestamp(through)

    if resume is not None:
        if getattr(resume, 'state', None) is None:
            raise ValueError("cannot resume from a performance without pipeline state")
        perf = Performance(resume.portfolio_id or portfolio_id, resume.measurements)
        perf.annual_returns = dict(resume.annual_returns)
        perf.realized = list(resume.realized)
        perf.period_start = resume.period_start
        state = resume.state
    else:
        perf = Performance(portfolio_id)
        perf.period_start = pd.Timestamp(transactions[0].date).normalize()
        state = PipelineState()

    perf.period_end = through
    perf.computed_on = pd.Timestamp.now()
    perf.state = state

    loop = _Loop(state, tax_rates)
    first_day = perf.period_start if loop.last_date is None else loop.last_date + pd.Timedelta(days=1)
    days = calendar.trading_days(first_day, through)
    logger.info("measuring %s: %d trading days %s - %s (calendar %s)", portfolio_id or "portfolio",
                len(days), first_day.date(), through.date(), calendar.version)

    checkpoint = (len(perf), perf.state, dict(perf.annual_returns), len(perf.realized))
    since_checkpoint = 0
    for date in days:
        if cancel is not None and cancel.is_set():
            count, saved, annual, realized = checkpoint
            perf.truncate(count)
            perf.state = saved
            perf.annual_returns = annual
            del perf.realized[realized:]
            logger.info("performance run cancelled on %s; rolled back to %d measurements",
                        date.date(), count)
            exc = SimulationCancelled(perf.last.time if perf.last else None)
            exc.performance = perf
            raise exc

        last_completed = perf.last.time if perf.last else None
        try:
            realized = _measure_day(perf, loop, date, transactions, feed, benchmark,
                                    through, config.compute_tax)
        except DataUnavailableError as exc:
            logger.error("performance run stopped on %s: %s", date.date(), exc)
            raise _failed(perf, loop, date, exc, last_completed) from exc
        except Exception as exc:
            logger.exception("performance run failed on %s", date.date())
            raise _failed(perf, loop, date, exc, last_completed) from exc
        perf.realized.extend(realized)

        since_checkpoint += 1
        if on_checkpoint is not None and since_checkpoint >= checkpoint_every:
            perf.state = loop.snapshot()
            on_checkpoint(perf)
            checkpoint = (len(perf), perf.state, dict(perf.annual_returns), len(perf.realized))
            since_checkpoint = 0

    if len(perf) == 0:
        raise SimulationError(f"no trading days between {first_day.date()} and {through.date()}")

    perf.state = loop.snapshot()
    _summarize(perf, loop, calendar, config)
    logger.info("measured %d days; final value %.2f", len(perf), perf.last.value)
    return perf
