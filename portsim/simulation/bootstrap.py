import numpy as np
from typing import Optional, Sequence

from portsim import config as cfg


def monthly_return_to_annual(monthly: Sequence[float]) -> np.ndarray:
    """
    Compound monthly returns into calendar-length annual returns.

    Trailing months that do not fill a whole year are dropped.
    """
    monthly = np.asarray(monthly, dtype=float)
    years = len(monthly) // cfg.MONTHS_PER_YEAR
    if years == 0:
        return np.array([])
    grid = monthly[:years * cfg.MONTHS_PER_YEAR].reshape(years, cfg.MONTHS_PER_YEAR)
    return np.prod(1.0 + grid, axis=1) - 1.0


def circular_bootstrap(series: Sequence[float], block_size: int = cfg.BOOTSTRAP_BLOCK_SIZE,
                       n: int = cfg.BOOTSTRAP_NUM_SAMPLES, m: int = cfg.BOOTSTRAP_NUM_MONTHS,
                       rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Resample a monthly return series into annual-return paths.

    One block of `block_size` consecutive months starts at every position
    of the series, wrapping around the end, so early and late months are
    as likely to be drawn as the middle. Each path concatenates randomly
    chosen blocks (with replacement) until it holds `m` months, then is
    compounded into annual returns.

    Args:
        series: Monthly returns
        block_size: Months per block
        n: Number of paths
        m: Months per path
        rng: Random generator; seeded from RANDOM_SEED when omitted

    Returns:
        Array of shape (n, m // 12) of annual returns
    """
    series = np.asarray(series, dtype=float)
    if len(series) == 0 or n < 1 or m < 1:
        return np.empty((max(n, 0), 0))
    if rng is None:
        rng = np.random.default_rng(cfg.RANDOM_SEED)

    N = len(series)
    blocks = series[(np.arange(N)[:, None] + np.arange(block_size)[None, :]) % N]

    blocks_per_path = -(-m // block_size)
    picks = rng.integers(0, N, size=(n, blocks_per_path))
    samples = blocks[picks].reshape(n, blocks_per_path * block_size)[:, :m]

    return np.array([monthly_return_to_annual(path) for path in samples])
