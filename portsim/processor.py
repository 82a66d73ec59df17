import logging
import math
from dataclasses import dataclass, field, replace, asdict
from typing import List, Dict, Sequence

import pandas as pd

from portsim import config as cfg
from portsim.errors import InvalidTransactionTypeError
from portsim.tax.lots import TaxLotLedger
from portsim.transaction import Transaction, TransactionKind, TaxDisposition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunningSums:
    """Cumulative cash-flow and income totals carried from day to day."""
    deposited: float = 0.0
    withdrawn: float = 0.0
    long_term_gain: float = 0.0
    short_term_gain: float = 0.0
    qualified_dividends: float = 0.0
    non_qualified_dividends: float = 0.0
    interest: float = 0.0


@dataclass
class ProcessResult:
    holdings: Dict[str, float]
    ledger: TaxLotLedger
    next_index: int
    sums: RunningSums
    realized: List[Transaction] = field(default_factory=list)


def _kind(trx: Transaction) -> TransactionKind:
    try:
        return TransactionKind(trx.kind)
    except ValueError:
        raise InvalidTransactionTypeError(trx.kind) from None


def _floor_cash(holdings: Dict[str, float], trx: Transaction):
    cash = holdings.get(cfg.CASH_SECURITY)
    if cash is None:
        return
    if math.isnan(cash):
        logger.warning("cash position is NaN after %s %s on %s; zeroing",
                       trx.kind, trx.security, trx.date)
        cash = 0.0
    elif cash < -cfg.SHARE_EPSILON:
        logger.warning("cash overdrawn by %.2f after %s %s on %s",
                       -cash, trx.kind, trx.security, trx.date)
    if cash <= cfg.SHARE_EPSILON:
        del holdings[cfg.CASH_SECURITY]
    else:
        holdings[cfg.CASH_SECURITY] = cash


def apply(
    holdings: Dict[str, float],
    ledger: TaxLotLedger,
    transactions: Sequence[Transaction],
    start: int,
    cutoff,
    sums: RunningSums,
) -> ProcessResult:
    """
    Fold transactions[start:] with date <= cutoff into holdings and tax lots.

    Works on copies of holdings, ledger and sums, so the caller's state is
    untouched if a transaction in the batch is rejected.

    Args:
        holdings: security -> shares, cash under CASH_SECURITY
        ledger: Open tax lots
        transactions: Full date-ordered transaction list
        start: Index of the first unprocessed transaction
        cutoff: Last date (inclusive) to process
        sums: Running totals

    Returns:
        ProcessResult with the updated state and the index of the first
        transaction after cutoff

    Raises:
        InvalidTransactionTypeError: a transaction kind is not recognized
    """
    cutoff = pd.Timestamp(cutoff)
    holdings = dict(holdings)
    ledger = ledger.copy()
    totals = asdict(sums)
    realized: List[Transaction] = []

    idx = start
    while idx < len(transactions):
        trx = transactions[idx]
        if trx.date > cutoff:
            break

        kind = _kind(trx)
        cash = holdings.get(cfg.CASH_SECURITY, 0.0)
        shares = holdings.get(trx.security, 0.0)

        if kind == TransactionKind.DEPOSIT:
            holdings[cfg.CASH_SECURITY] = cash + trx.total_value
            totals['deposited'] += trx.total_value
            _floor_cash(holdings, trx)
            idx += 1
            continue

        if kind == TransactionKind.WITHDRAW:
            holdings[cfg.CASH_SECURITY] = cash - trx.total_value
            totals['withdrawn'] += trx.total_value
            _floor_cash(holdings, trx)
            idx += 1
            continue

        if kind == TransactionKind.BUY:
            shares += trx.shares
            holdings[cfg.CASH_SECURITY] = cash - trx.total_value - trx.commission
            ledger.open(trx)
            logger.debug("on %s buy %.5f shares of %s for %.2f", trx.date, trx.shares,
                         trx.security, trx.total_value)
        elif kind == TransactionKind.SELL:
            shares -= trx.shares
            holdings[cfg.CASH_SECURITY] = cash + trx.total_value - trx.commission
            gains = ledger.sell(trx)
            for gain in gains:
                if gain.tax_disposition == TaxDisposition.LTC:
                    totals['long_term_gain'] += gain.gain_loss
                else:
                    totals['short_term_gain'] += gain.gain_loss
            realized.extend(gains)
            logger.debug("on %s sell %.5f shares of %s for %.2f", trx.date, trx.shares,
                         trx.security, trx.total_value)
        elif kind == TransactionKind.SPLIT:
            factor = trx.split_factor
            if factor == 1.0 and shares > cfg.SHARE_EPSILON:
                factor = trx.shares / shares
            ledger.split(trx.security, factor)
            shares = trx.shares
            logger.debug("on %s %s split %.4f:1", trx.date, trx.security, factor)
        elif kind == TransactionKind.DIVIDEND:
            holdings[cfg.CASH_SECURITY] = cash + trx.total_value
            if trx.tax_disposition == TaxDisposition.QUALIFIED:
                totals['qualified_dividends'] += trx.total_value
            else:
                totals['non_qualified_dividends'] += trx.total_value
            _floor_cash(holdings, trx)
            idx += 1
            continue
        elif kind == TransactionKind.INTEREST:
            holdings[cfg.CASH_SECURITY] = cash + trx.total_value
            totals['interest'] += trx.total_value
            _floor_cash(holdings, trx)
            idx += 1
            continue
        elif kind == TransactionKind.MARKER:
            idx += 1
            continue

        _floor_cash(holdings, trx)

        if shares <= cfg.SHARE_EPSILON:
            holdings.pop(trx.security, None)
            ledger.discard(trx.security)
        else:
            holdings[trx.security] = shares
        idx += 1

    return ProcessResult(
        holdings=holdings,
        ledger=ledger,
        next_index=idx,
        sums=replace(sums, **totals),
        realized=realized,
    )
