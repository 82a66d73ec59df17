import hashlib
import uuid
from dataclasses import dataclass, field, replace, asdict
from enum import Enum
from typing import List, Dict, Tuple, Optional

import pandas as pd

from portsim import config as cfg

# Justification key carrying a split's share multiplier
SPLIT_FACTOR = "SplitFactor"

# Source tag for transactions generated by the rebalancing engine
SOURCE_NAME = "portsim"


class TransactionKind(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"
    INTEREST = "INTEREST"
    SPLIT = "SPLIT"
    MARKER = "MARKER"


class TaxDisposition(str, Enum):
    NONE = ""
    LTC = "LTC"                       # long-term capital gain
    STC = "STC"                       # short-term capital gain
    QUALIFIED = "QUALIFIED"           # qualified dividend
    NON_QUALIFIED = "NON_QUALIFIED"   # ordinary dividend


@dataclass(frozen=True)
class Transaction:
    date: pd.Timestamp
    security: str
    kind: TransactionKind
    shares: float = 0.0
    price_per_share: float = 0.0
    total_value: float = 0.0
    commission: float = 0.0
    tax_disposition: TaxDisposition = TaxDisposition.NONE
    gain_loss: float = 0.0
    source: str = ""
    justification: Tuple[Tuple[str, float], ...] = ()
    memo: str = ""
    related: Tuple[str, ...] = ()
    sequence: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def split_factor(self) -> float:
        """Share multiplier of a split, 1.0 for every other kind."""
        if self.kind != TransactionKind.SPLIT:
            return 1.0
        for key, value in self.justification:
            if key == SPLIT_FACTOR:
                return value
        return 1.0

    @property
    def source_id(self) -> str:
        """16-byte content hash of the fields that identify a transaction."""
        h = hashlib.blake2b(digest_size=16)
        h.update(pd.Timestamp(self.date).isoformat().encode())
        h.update(self.source.encode())
        h.update(self.security.encode())
        h.update(TransactionKind(self.kind).value.encode())
        h.update(f"{self.price_per_share:.5f}".encode())
        h.update(f"{self.shares:.5f}".encode())
        h.update(f"{self.total_value:.5f}".encode())
        return h.hexdigest()


def deposit(date, amount: float, memo: str = "") -> Transaction:
    return Transaction(
        date=pd.Timestamp(date),
        security=cfg.CASH_SECURITY,
        kind=TransactionKind.DEPOSIT,
        shares=amount,
        price_per_share=1.0,
        total_value=amount,
        memo=memo,
    )


def withdraw(date, amount: float, memo: str = "") -> Transaction:
    return Transaction(
        date=pd.Timestamp(date),
        security=cfg.CASH_SECURITY,
        kind=TransactionKind.WITHDRAW,
        shares=amount,
        price_per_share=1.0,
        total_value=amount,
        memo=memo,
    )


class TransactionJournal:
    """
    Append-only, date-ordered list of transactions.

    Each appended transaction gets the next sequence number so ordering
    within a single date is stable no matter how the list is later sorted.
    """

    def __init__(self, transactions: Optional[List[Transaction]] = None):
        self.transactions: List[Transaction] = []
        self._next_sequence = 0
        for trx in transactions or []:
            self.append(trx)

    def __len__(self):
        return len(self.transactions)

    def __iter__(self):
        return iter(self.transactions)

    def __getitem__(self, idx):
        return self.transactions[idx]

    @property
    def last_date(self) -> Optional[pd.Timestamp]:
        if not self.transactions:
            return None
        return self.transactions[-1].date

    def append(self, trx: Transaction) -> Transaction:
        trx = replace(trx, date=pd.Timestamp(trx.date), sequence=self._next_sequence)
        self._next_sequence += 1
        self.transactions.append(trx)
        return trx

    def extend(self, transactions) -> List[Transaction]:
        return [self.append(trx) for trx in transactions]

    def sort(self):
        self.transactions.sort(key=lambda t: (t.date, t.sequence))

    def between(self, start, end) -> List[Transaction]:
        """Transactions with start < date <= end."""
        start, end = pd.Timestamp(start), pd.Timestamp(end)
        return [t for t in self.transactions if start < t.date <= end]

    def get_summary(self) -> dict:
        trades = [t for t in self.transactions
                  if t.kind in (TransactionKind.BUY, TransactionKind.SELL)]
        if not trades:
            return {'count': 0, 'volume': 0}
        return {
            'count': len(trades),
            'volume': sum(t.total_value for t in trades)
        }

    def to_records(self) -> List[Dict]:
        """Plain dict rows, handy for building a DataFrame."""
        return [asdict(trx) for trx in self.transactions]
