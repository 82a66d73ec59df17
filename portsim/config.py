from pathlib import Path
from dataclasses import dataclass
import multiprocessing

# ============================================================================
# CONFIGURATION
# ============================================================================

# Synthetic security used to hold uninvested cash in a holdings map
CASH_SECURITY = "$CASH"

# Anything at or below this many shares (or dollars) is treated as zero
SHARE_EPSILON = 1e-5

# Target allocations must sum to 1.0 within this tolerance
TARGET_SUM_TOLERANCE = 1e-11

# Calendar conventions
TRADING_DAYS_PER_YEAR = 252
DAYS_PER_YEAR = 365.2425
MONTHS_PER_YEAR = 12

# Rolling windows (trading days) stored on every measurement
WINDOW_1D = 1
WINDOW_1WK = 5
WINDOW_1MO = 21
WINDOW_3MO = 63
WINDOW_1YR = 252
WINDOW_3YR = 756
WINDOW_5YR = 1260
WINDOW_10YR = 2520

# Lookbacks for the daily ratio metrics
RATIO_LOOKBACK = WINDOW_3YR
STD_DEV_LOOKBACK = WINDOW_3MO
ULCER_INDEX_LOOKBACK = 14

# Growth of $10,000 series start value
GROWTH_BASE = 10_000.0

# Root finder
FSOLVE_MAX_ITERATIONS = 500
FSOLVE_TOLERANCE = 1e-4
FSOLVE_BISECT_AFTER = 4      # false-position steps before a bisection is considered
FSOLVE_BISECT_WIDTH = 4.0    # bracket must shrink this much per round of false-position

# Withdrawal-rate Monte Carlo
WITHDRAWAL_REFERENCE_BALANCE = 1_000_000.0
WITHDRAWAL_INFLATION = 0.03
BOOTSTRAP_BLOCK_SIZE = 12          # months per block
BOOTSTRAP_NUM_SAMPLES = 5000       # number of simulated histories
BOOTSTRAP_NUM_MONTHS = 360         # months per simulated history (30 years)
RANDOM_SEED = 42

# Trading days between pipeline checkpoints handed to the caller
CHECKPOINT_INTERVAL = 252

# Tax engine
CAPITAL_LOSS_DEDUCTION_LIMIT = 3000.0

# Parallel execution across portfolios
N_WORKERS = max(1, multiprocessing.cpu_count() - 2)

# Cache / persistence
CACHE_DIR = Path("portsim_cache")
BLOB_VERSION = 1


def init_cache():
    """Create the cache directory if it doesn't exist."""
    CACHE_DIR.mkdir(exist_ok=True)


def clear_all_caches():
    """Remove every cached performance blob."""
    if CACHE_DIR.exists():
        for f in CACHE_DIR.glob("*.pkl"):
            f.unlink()
        print("All caches cleared")


@dataclass(frozen=True)
class SimulationConfig:
    """Knobs for one performance run. Defaults come from the module constants."""
    bootstrap_block_size: int = BOOTSTRAP_BLOCK_SIZE
    bootstrap_num_samples: int = BOOTSTRAP_NUM_SAMPLES
    bootstrap_num_months: int = BOOTSTRAP_NUM_MONTHS
    inflation: float = WITHDRAWAL_INFLATION
    seed: int = RANDOM_SEED
    compute_withdrawal_rates: bool = True
    compute_tax: bool = True


def get_simulation_config() -> SimulationConfig:
    """Return the active simulation configuration in one canonical object."""
    return SimulationConfig(
        bootstrap_block_size=BOOTSTRAP_BLOCK_SIZE,
        bootstrap_num_samples=BOOTSTRAP_NUM_SAMPLES,
        bootstrap_num_months=BOOTSTRAP_NUM_MONTHS,
        inflation=float(WITHDRAWAL_INFLATION),
        seed=RANDOM_SEED,
    )


def print_banner():
    print("=" * 80)
    print("PORTSIM - PORTFOLIO SIMULATION & PERFORMANCE ANALYTICS")
    print("=" * 80)
    print(f"  Workers: {N_WORKERS}")
    print(f"  Bootstrap: {BOOTSTRAP_NUM_SAMPLES:,} histories x {BOOTSTRAP_NUM_MONTHS} months "
          f"(block {BOOTSTRAP_BLOCK_SIZE})")
    print(f"  Inflation assumption: {WITHDRAWAL_INFLATION:.1%}")
    print("=" * 80)
