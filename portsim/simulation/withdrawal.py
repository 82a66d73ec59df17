"""
Withdrawal rates estimated from bootstrapped annual-return paths.

Each path starts with WITHDRAWAL_REFERENCE_BALANCE. A withdrawal is taken
at the end of every year, after that year's return, and grows with
inflation. The solved rate is the first-year withdrawal as a fraction of
the starting balance.
"""

import logging
from typing import Callable

import numpy as np

from portsim import config as cfg
from portsim.errors import DidNotConvergeError
from portsim.fsolve import fsolve

logger = logging.getLogger(__name__)


def constant_withdrawal_balance(rate: float, inflation: float, path) -> float:
    """Ending balance when withdrawing rate * start, inflation-adjusted, every year."""
    balance = cfg.WITHDRAWAL_REFERENCE_BALANCE
    withdrawal = balance * rate
    for ret in path:
        balance = balance * (1.0 + ret) - withdrawal
        withdrawal *= 1.0 + inflation
    return balance


def dynamic_withdrawal_balance(rate: float, inflation: float, path) -> float:
    """
    Ending balance when the withdrawal is capped at rate * current balance.

    The inflation-adjusted withdrawal keeps growing in the background; the
    amount actually taken each year is the smaller of it and rate times
    the balance after that year.
    """
    balance = cfg.WITHDRAWAL_REFERENCE_BALANCE
    planned = balance * rate
    withdrawal = planned
    for ret in path:
        balance = balance * (1.0 + ret) - withdrawal
        planned *= 1.0 + inflation
        withdrawal = min(planned, balance * rate)
    return balance


def _inflated_reference(inflation: float, years: int) -> float:
    return cfg.WITHDRAWAL_REFERENCE_BALANCE * (1.0 + inflation) ** max(years - 1, 0)


def _mean_rate(paths, objective: Callable[[float, np.ndarray], float], label: str) -> float:
    rates = []
    failed = 0
    for path in paths:
        try:
            rates.append(fsolve(lambda r: objective(r, path), 0.05))
        except DidNotConvergeError:
            failed += 1
    if failed:
        logger.debug("%s withdrawal rate: %d of %d paths did not converge", label, failed, len(paths))
    if not rates:
        return np.nan
    return float(np.mean(rates))


def safe_withdrawal_rate(paths, inflation: float = cfg.WITHDRAWAL_INFLATION) -> float:
    """Mean constant withdrawal rate that exhausts the balance exactly at the end of each path."""
    return _mean_rate(paths, lambda r, p: constant_withdrawal_balance(r, inflation, p), "safe")


def perpetual_withdrawal_rate(paths, inflation: float = cfg.WITHDRAWAL_INFLATION) -> float:
    """Mean constant withdrawal rate that leaves the inflation-adjusted starting balance intact."""
    return _mean_rate(
        paths,
        lambda r, p: constant_withdrawal_balance(r, inflation, p) - _inflated_reference(inflation, len(p)),
        "perpetual",
    )


def dynamic_withdrawal_rate(paths, inflation: float = cfg.WITHDRAWAL_INFLATION) -> float:
    """Mean capped withdrawal rate that leaves the inflation-adjusted starting balance intact."""
    return _mean_rate(
        paths,
        lambda r, p: dynamic_withdrawal_balance(r, inflation, p) - _inflated_reference(inflation, len(p)),
        "dynamic",
    )
