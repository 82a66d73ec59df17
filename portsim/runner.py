"""
Fan performance runs out across portfolios.

Portfolios share no state, so each one is measured in its own worker
process. A failing portfolio does not stop the others; its error (and
whatever it completed before failing) comes back in its RunResult.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from joblib import Parallel, delayed
from tqdm import tqdm

from portsim import config as cfg
from portsim.errors import SimulationError
from portsim.feed import TradingCalendar
from portsim.metrics import Performance
from portsim.portfolio import Portfolio

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    portfolio_id: str
    name: str
    performance: Optional[Performance] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _run_one(portfolio: Portfolio, calendar: TradingCalendar, through, kwargs: Dict) -> RunResult:
    try:
        perf = portfolio.calculate_performance(through, calendar, **kwargs)
    except SimulationError as exc:
        return RunResult(portfolio.id, portfolio.name, getattr(exc, 'performance', None), str(exc))
    return RunResult(portfolio.id, portfolio.name, perf)


def run_portfolios(portfolios: Sequence[Portfolio], calendar: TradingCalendar, through,
                   n_jobs: Optional[int] = None, progress: bool = True, **kwargs) -> List[RunResult]:
    """
    Measure every portfolio through `through`.

    Args:
        portfolios: Portfolios to measure
        calendar: Trading calendar shared by every run
        through: Last date to measure
        n_jobs: Worker processes, N_WORKERS by default; 1 runs in-process
        progress: Show a tqdm progress bar
        **kwargs: Passed on to calculate_performance

    Returns:
        One RunResult per portfolio, in input order
    """
    n_jobs = n_jobs or cfg.N_WORKERS
    items = tqdm(portfolios, desc="Performance", unit="portfolio", disable=not progress)
    if n_jobs == 1:
        results = [_run_one(p, calendar, through, kwargs) for p in items]
    else:
        results = Parallel(n_jobs=n_jobs, backend='loky', verbose=0)(
            delayed(_run_one)(p, calendar, through, kwargs) for p in items
        )

    failed = [r for r in results if not r.ok]
    for r in failed:
        logger.error("portfolio %s (%s) failed: %s", r.name, r.portfolio_id, r.error)
    logger.info("measured %d portfolios, %d failed", len(results), len(failed))
    return results
