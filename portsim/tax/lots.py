import logging
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Dict, Tuple, Iterable, Optional

import numpy as np
import pandas as pd

from portsim import config as cfg
from portsim.errors import TaxLotSyncError
from portsim.transaction import Transaction, TransactionKind, TaxDisposition

logger = logging.getLogger(__name__)

# Namespace for the realized-gain transaction ids derived from a sell id
_REALIZED_NAMESPACE = uuid.UUID("6c0f5f4e-2a39-4c1e-9d0e-8a4b6f0f7d21")


class LotSelectionMethod(Enum):
    """
    Which open lot a sell consumes first.

    FIFO: First In, First Out (default)
    LIFO: Last In, First Out (sell newest first)
    HIFO: Highest In, First Out (highest cost basis first, minimizes gains)
    """
    FIFO = "fifo"
    LIFO = "lifo"
    HIFO = "hifo"


@dataclass(frozen=True)
class TaxLot:
    security: str
    date: pd.Timestamp
    shares: float
    price_per_share: float
    transaction_id: str

    @property
    def cost_basis(self) -> float:
        return self.shares * self.price_per_share


def is_long_term(acquired, sold) -> bool:
    """A lot is long-term when acquired more than one year before the sale."""
    cutoff = pd.Timestamp(sold) - pd.DateOffset(years=1) - pd.Timedelta(1, "ns")
    return pd.Timestamp(acquired) < cutoff


def _selection_order(lots: List[TaxLot], idxs: List[int], method: LotSelectionMethod) -> List[int]:
    if method == LotSelectionMethod.LIFO:
        return list(reversed(idxs))
    if method == LotSelectionMethod.HIFO:
        return sorted(idxs, key=lambda i: -lots[i].price_per_share)
    return idxs


def _realized(sell: Transaction, disposition: TaxDisposition, shares: float,
              gain_loss: float, related: List[str]) -> Transaction:
    return Transaction(
        id=str(uuid.uuid5(_REALIZED_NAMESPACE, f"{sell.id}:{disposition.value}")),
        date=sell.date,
        security=sell.security,
        kind=TransactionKind.SELL,
        shares=shares,
        price_per_share=sell.price_per_share,
        total_value=shares * sell.price_per_share + sell.commission,
        commission=sell.commission,
        tax_disposition=disposition,
        gain_loss=gain_loss,
        source=sell.source,
        justification=sell.justification,
        memo=sell.memo,
        related=tuple(related),
    )


def link_sell_with_lots(
    lots: List[TaxLot],
    sell: Transaction,
    method: LotSelectionMethod = LotSelectionMethod.FIFO,
) -> Tuple[List[TaxLot], List[Transaction]]:
    """
    Match a sell against open lots and split its gain into tax terms.

    Lots of the sold security are consumed in selection order (acquisition
    order for FIFO) until the sell quantity is covered; a partially
    consumed lot stays open with its remaining shares. Gains are bucketed
    into long-term and short-term by each lot's acquisition date.

    Args:
        lots: Open lots in acquisition order (all securities)
        sell: The SELL transaction
        method: Lot selection method

    Returns:
        (remaining_lots, realized) where realized holds at most two SELL
        transactions, LTC first then STC, each listing the consumed lot
        transaction ids in `related`
    """
    if sell.kind != TransactionKind.SELL:
        return list(lots), []

    candidates = [i for i, lot in enumerate(lots) if lot.security == sell.security]
    to_find = sell.shares
    left_after: Dict[int, float] = {}

    buckets = {
        TaxDisposition.LTC: [0.0, 0.0, []],
        TaxDisposition.STC: [0.0, 0.0, []],
    }

    for i in _selection_order(lots, candidates, method):
        if to_find <= 0:
            break
        lot = lots[i]
        exercised = min(lot.shares, to_find)
        to_find -= exercised
        left_after[i] = lot.shares - exercised

        term = TaxDisposition.LTC if is_long_term(lot.date, sell.date) else TaxDisposition.STC
        bucket = buckets[term]
        bucket[0] += exercised
        bucket[1] += exercised * (sell.price_per_share - lot.price_per_share)
        bucket[2].append(lot.transaction_id)

    if to_find > cfg.SHARE_EPSILON:
        logger.warning(
            "tax lots and transactions are out of sync: %s sell %s on %s left %.6f shares unmatched",
            sell.security, sell.id, sell.date, to_find,
        )

    remaining = []
    for i, lot in enumerate(lots):
        if i not in left_after:
            remaining.append(lot)
        elif left_after[i] > cfg.SHARE_EPSILON:
            remaining.append(replace(lot, shares=left_after[i]))

    realized = []
    for term, (shares, gain, related) in buckets.items():
        if shares > cfg.SHARE_EPSILON:
            realized.append(_realized(sell, term, shares, gain, related))

    return remaining, realized


class TaxLotLedger:
    """Open tax lots for every security a portfolio holds."""

    def __init__(self, lots: Optional[Iterable[TaxLot]] = None,
                 method: LotSelectionMethod = LotSelectionMethod.FIFO):
        self.lots: List[TaxLot] = list(lots or [])
        self.method = method

    def __len__(self):
        return len(self.lots)

    def copy(self) -> "TaxLotLedger":
        return TaxLotLedger(self.lots, self.method)

    def open(self, buy: Transaction):
        self.lots.append(TaxLot(
            security=buy.security,
            date=pd.Timestamp(buy.date),
            shares=buy.shares,
            price_per_share=buy.price_per_share,
            transaction_id=buy.id,
        ))

    def sell(self, sell: Transaction) -> List[Transaction]:
        self.lots, realized = link_sell_with_lots(self.lots, sell, self.method)
        return realized

    def split(self, security: str, factor: float):
        """Rescale open lots so cost basis is unchanged."""
        if factor == 1.0 or factor <= 0 or np.isnan(factor):
            return
        self.lots = [
            replace(lot, shares=lot.shares * factor, price_per_share=lot.price_per_share / factor)
            if lot.security == security else lot
            for lot in self.lots
        ]

    def discard(self, security: str):
        self.lots = [lot for lot in self.lots if lot.security != security]

    def shares(self, security: str) -> float:
        return sum(lot.shares for lot in self.lots if lot.security == security)

    def securities(self) -> List[str]:
        return sorted({lot.security for lot in self.lots})

    def snapshot(self) -> Tuple[TaxLot, ...]:
        return tuple(self.lots)

    def cost_basis(self, security: Optional[str] = None) -> float:
        return sum(lot.cost_basis for lot in self.lots
                   if security is None or lot.security == security)

    def unrealized_gain(self, prices: Dict[str, float], as_of=None) -> Tuple[float, float]:
        """
        Unrealized gain split into (long_term, short_term) at the given prices.

        Lots whose price is unknown contribute nothing.
        """
        lt, st = 0.0, 0.0
        for lot in self.lots:
            price = prices.get(lot.security, np.nan)
            if price is None or np.isnan(price):
                continue
            gain = lot.shares * (price - lot.price_per_share)
            if as_of is not None and is_long_term(lot.date, as_of):
                lt += gain
            else:
                st += gain
        return lt, st

    def out_of_sync(self, holdings: Dict[str, float]) -> List[str]:
        """Securities whose lot shares differ from holdings by more than SHARE_EPSILON."""
        bad = []
        for security in set(holdings) | set(self.securities()):
            if security == cfg.CASH_SECURITY:
                continue
            if abs(holdings.get(security, 0.0) - self.shares(security)) > cfg.SHARE_EPSILON:
                bad.append(security)
        return sorted(bad)

    def check_sync(self, holdings: Dict[str, float]):
        """Raise TaxLotSyncError when any security's lots disagree with holdings."""
        bad = self.out_of_sync(holdings)
        if bad:
            detail = ", ".join(f"{s} lots={self.shares(s):.5f} held={holdings.get(s, 0.0):.5f}" for s in bad)
            raise TaxLotSyncError(f"tax lots out of sync with holdings: {detail}")
