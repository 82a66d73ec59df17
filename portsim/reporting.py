"""
Console reporting for performance runs.

Prints the summary of one or more Performance results in the same banner
and fixed-width table style as the rest of the command line output.
"""

from typing import Optional, Sequence

import numpy as np

from portsim.measurement import AnnualReturn, DrawDown, Metrics, Returns
from portsim.metrics import Performance

WIDTH = 100


def _pct(value: float, width: int = 10) -> str:
    if value is None or np.isnan(value):
        return f"{'n/a':>{width}}"
    return f"{value * 100:>{width - 1}.2f}%"


def _num(value: float, width: int = 10, fmt: str = ".2f") -> str:
    if value is None or np.isnan(value):
        return f"{'n/a':>{width}}"
    return f"{value:>{width}{fmt}}"


def _year(ar: Optional[AnnualReturn]) -> str:
    if ar is None:
        return "n/a"
    return f"{ar.year} ({ar.ret * 100:.2f}%)"


def _drawdown(dd: Optional[DrawDown]) -> str:
    if dd is None:
        return "none"
    recovery = dd.recovery.date() if dd.recovered else "not recovered"
    return f"{dd.loss_percent * 100:.2f}% {dd.begin.date()} -> {dd.end.date()} (recovered {recovery})"


def _returns_rows(strategy: Returns, benchmark: Returns):
    rows = [
        ("TWRR since inception", strategy.twrr_since_inception, benchmark.twrr_since_inception),
        ("TWRR YTD", strategy.twrr_ytd, benchmark.twrr_ytd),
        ("TWRR 1Y", strategy.twrr_one_year, benchmark.twrr_one_year),
        ("TWRR 3Y", strategy.twrr_three_year, benchmark.twrr_three_year),
        ("TWRR 5Y", strategy.twrr_five_year, benchmark.twrr_five_year),
        ("TWRR 10Y", strategy.twrr_ten_year, benchmark.twrr_ten_year),
        ("MWRR since inception", strategy.mwrr_since_inception, benchmark.mwrr_since_inception),
        ("MWRR YTD", strategy.mwrr_ytd, benchmark.mwrr_ytd),
        ("MWRR 1Y", strategy.mwrr_one_year, benchmark.mwrr_one_year),
    ]
    for label, s, b in rows:
        print(f"  {label:<28} {_pct(s, 12)} {_pct(b, 12)}")


def _metrics_rows(strategy: Metrics, benchmark: Metrics):
    pct_rows = [
        ("Std dev", strategy.std_dev_since_inception, benchmark.std_dev_since_inception),
        ("Downside deviation", strategy.downside_deviation_since_inception,
         benchmark.downside_deviation_since_inception),
        ("Average drawdown", strategy.avg_draw_down, benchmark.avg_draw_down),
    ]
    num_rows = [
        ("Sharpe", strategy.sharpe_ratio_since_inception, benchmark.sharpe_ratio_since_inception),
        ("Sortino", strategy.sortino_ratio_since_inception, benchmark.sortino_ratio_since_inception),
        ("Skew", strategy.skewness, benchmark.skewness),
        ("Excess kurtosis", strategy.excess_kurtosis_since_inception,
         benchmark.excess_kurtosis_since_inception),
    ]
    for label, s, b in pct_rows:
        print(f"  {label:<28} {_pct(s, 12)} {_pct(b, 12)}")
    for label, s, b in num_rows:
        print(f"  {label:<28} {_num(s, 12)} {_num(b, 12)}")
    print(f"  {'Final balance':<28} {_num(strategy.final_balance, 12, ',.0f')} "
          f"{_num(benchmark.final_balance, 12, ',.0f')}")


def print_summary(perf: Performance, name: str = ""):
    """Print the summary of one performance run."""
    pm, bm = perf.portfolio_metrics, perf.benchmark_metrics
    title = name or perf.portfolio_id or "PORTFOLIO"

    print("\n" + "=" * WIDTH)
    print(f"PERFORMANCE SUMMARY - {title}")
    print("=" * WIDTH)
    if perf.period_start is not None and perf.last is not None:
        print(f"  Period: {perf.period_start.date()} to {perf.last.time.date()} "
              f"({len(perf):,} trading days)")
    print(f"  Deposited: ${pm.total_deposited:,.2f}   Withdrawn: ${pm.total_withdrawn:,.2f}")
    print(f"  Net profit: ${pm.net_profit:,.2f} ({_pct(pm.net_profit_percent, 1).strip()})")

    print(f"\n  {'':<28} {'Strategy':>12} {'Benchmark':>12}")
    print("  " + "-" * 54)
    _returns_rows(perf.portfolio_returns, perf.benchmark_returns)
    print("  " + "-" * 54)
    _metrics_rows(pm, bm)

    print(f"\n  Alpha / beta since inception: {_pct(pm.alpha_since_inception, 1).strip()} / "
          f"{_num(pm.beta_since_inception, 1).strip()}")
    print(f"  Best year:  {_year(pm.best_year):<24} benchmark {_year(bm.best_year)}")
    print(f"  Worst year: {_year(pm.worst_year):<24} benchmark {_year(bm.worst_year)}")
    print(f"  Max drawdown: {_drawdown(pm.max_draw_down)}")
    print(f"  Ulcer index avg/p50/p90/p99: {_num(pm.ulcer_index_avg, 1).strip()} / "
          f"{_num(pm.ulcer_index_p50, 1).strip()} / {_num(pm.ulcer_index_p90, 1).strip()} / "
          f"{_num(pm.ulcer_index_p99, 1).strip()}")

    print(f"\n  Withdrawal rates (safe / perpetual / dynamic): "
          f"{_pct(pm.safe_withdrawal_rate_since_inception, 1).strip()} / "
          f"{_pct(pm.perpetual_withdrawal_rate_since_inception, 1).strip()} / "
          f"{_pct(pm.dynamic_withdrawal_rate_since_inception, 1).strip()}")
    print(f"  After-tax return: {_pct(pm.after_tax_return_since_inception, 1).strip()}   "
          f"Tax cost ratio: {_pct(pm.tax_cost_ratio_since_inception, 1).strip()}")

    if perf.drawdowns:
        print(f"\n  {'Top drawdowns':<28}")
        for i, dd in enumerate(perf.drawdowns, 1):
            print(f"  {i:>3}. {_drawdown(dd)}")
    print("=" * WIDTH)


def print_comparison(results: Sequence):
    """One line per RunResult: final balance, CAGR, Sharpe and max drawdown."""
    print("\n" + "=" * WIDTH)
    print("PORTFOLIO COMPARISON")
    print("=" * WIDTH)
    print(f"{'Portfolio':<30} {'Final $':>14} {'TWRR':>10} {'Sharpe':>8} {'MaxDD':>10}  Status")
    for r in results:
        perf = r.performance
        if perf is None or perf.last is None:
            print(f"{r.name:<30} {'':>14} {'':>10} {'':>8} {'':>10}  FAILED: {r.error}")
            continue
        pm = perf.portfolio_metrics
        dd = pm.max_draw_down.loss_percent if pm.max_draw_down is not None else np.nan
        status = "ok" if r.ok else f"partial: {r.error}"
        print(f"{r.name:<30} {perf.last.value:>14,.2f} {_pct(perf.portfolio_returns.twrr_since_inception)} "
              f"{_num(pm.sharpe_ratio_since_inception, 8)} {_pct(dd)}  {status}")
    print("=" * WIDTH)
