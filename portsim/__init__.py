"""
portsim - Portfolio Simulation & Performance Analytics Engine

Entry point: portsim.run()
"""

import time
from portsim import config as cfg

__version__ = "1.0.0"


def _fmt_elapsed(seconds):
    """Format elapsed seconds as human-readable string."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    m, s = divmod(seconds, 60)
    return f"{int(m)}m {s:.1f}s"


def run(prices_path, allocations, start_date, amount=10_000.0, benchmark="VFINX",
        through=None, risk_free=0.0, n_jobs=None, save=True):
    """
    Measure a set of buy-and-rebalance-once portfolios over a price history.

    Args:
        prices_path: CSV of daily closes, first column the date, one column
            per security (the benchmark included)
        allocations: {portfolio name: {security: weight}}
        start_date: Funding and first trade date
        amount: Initial deposit of every portfolio
        benchmark: Benchmark security column
        through: Last date to measure, defaults to the last price row
        risk_free: Annualized risk-free rate in percent
        n_jobs: Worker processes, defaults to N_WORKERS
        save: Write a performance blob per portfolio under CACHE_DIR

    Returns:
        List of RunResult
    """
    run_start = time.time()
    step_times = []

    def _step(label):
        """Print step timing and record it."""
        now = time.time()
        if step_times:
            prev_label, prev_start = step_times[-1]
            elapsed = now - prev_start
            print(f"  [{_fmt_elapsed(elapsed)}] {prev_label}")
        step_times.append((label, now))

    cfg.init_cache()
    cfg.print_banner()

    # Lazy imports to keep import time light
    import pandas as pd
    from portsim.tax.engine import run_golden_tests
    from portsim.feed import FrameFeed, TradingCalendar
    from portsim.portfolio import new_portfolio
    from portsim.runner import run_portfolios
    from portsim.reporting import print_summary, print_comparison
    from portsim.persistence import save_blob

    _step("Tax engine validation")
    results = run_golden_tests()
    if results['failed']:
        print("\nCAPITAL GAINS NETTING REGRESSION FAILED - STOPPING")
        return []

    _step("Load prices")
    prices = pd.read_csv(prices_path, index_col=0, parse_dates=True)
    feed = FrameFeed(prices, risk_free=risk_free)
    calendar = TradingCalendar.from_days(feed.prices.index)
    through = pd.Timestamp(through) if through is not None else calendar.days[-1]
    print(f"\n  Prices loaded: {calendar.days[0].date()} to {calendar.days[-1].date()}")
    print(f"  Securities: {', '.join(prices.columns)}")
    print(f"  Trading days: {len(calendar):,} ({len(calendar) / cfg.TRADING_DAYS_PER_YEAR:.2f} years)")

    _step("Build portfolios")
    start = calendar.trading_days(start_date, through)[0]
    portfolios = []
    for name, target in allocations.items():
        portfolio = new_portfolio(name, start, amount, feed, benchmark=benchmark)
        portfolio.rebalance_to(start, target)
        portfolios.append(portfolio)

    _step("Measure performance")
    results = run_portfolios(portfolios, calendar, through, n_jobs=n_jobs)

    _step("Report")
    for r in results:
        if r.performance is not None and r.performance.last is not None:
            print_summary(r.performance, r.name)
            if save:
                save_blob(r.performance)
    print_comparison(results)

    _step("done")

    total_elapsed = time.time() - run_start
    print("\n" + "=" * 80)
    print("TIMING SUMMARY")
    print("=" * 80)
    for i in range(len(step_times) - 1):
        label, start_time = step_times[i]
        _, end = step_times[i + 1]
        elapsed = end - start_time
        pct = (elapsed / total_elapsed) * 100 if total_elapsed > 0 else 0
        print(f"  {label:<40s} {_fmt_elapsed(elapsed):>8s}  ({pct:5.1f}%)")
    print(f"  {'':->56s}")
    print(f"  {'TOTAL':<40s} {_fmt_elapsed(total_elapsed):>8s}")
    print("=" * 80)
    return results
