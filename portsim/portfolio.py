"""
Portfolio model: initial funding, rebalancing against a feed, target
allocation streams and corporate actions.

The portfolio owns a TransactionJournal and keeps holdings, tax lots and
running sums in step with it by folding every new transaction through the
transaction processor.
"""

import logging
import uuid
from typing import Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from portsim import config as cfg
from portsim import performance, processor
from portsim.errors import DataUnavailableError
from portsim.feed import MarketDataFeed, TradingCalendar
from portsim.metrics import Performance
from portsim.processor import RunningSums
from portsim.rebalance import rebalance_to, Justification
from portsim.tax.lots import TaxLotLedger
from portsim.tax.rates import TaxRateProvider
from portsim.transaction import (
    Transaction, TransactionKind, TransactionJournal, TaxDisposition, SPLIT_FACTOR, deposit,
)

logger = logging.getLogger(__name__)

TARGET_COLUMN = "target"


class Portfolio:
    """
    A simulated account.

    Args:
        name: Display name
        feed: Market data used for rebalancing prices and corporate actions
        benchmark: Security the benchmark shadow account holds
        dividend_disposition: Tax treatment recorded on dividends found by
            fill_corporate_actions
    """

    def __init__(self, name: str, feed: MarketDataFeed, benchmark: str = "VFINX",
                 portfolio_id: Optional[str] = None,
                 dividend_disposition: TaxDisposition = TaxDisposition.NON_QUALIFIED):
        self.id = portfolio_id or str(uuid.uuid4())
        self.name = name
        self.feed = feed
        self.benchmark = benchmark
        self.dividend_disposition = dividend_disposition
        self.start_date: Optional[pd.Timestamp] = None
        self.end_date: Optional[pd.Timestamp] = None

        self.journal = TransactionJournal()
        self.holdings: Dict[str, float] = {}
        self.ledger = TaxLotLedger()
        self.sums = RunningSums()
        self.realized: List[Transaction] = []
        self._processed = 0

    def __repr__(self):
        return f"Portfolio({self.name!r}, holdings={len(self.holdings)}, transactions={len(self.journal)})"

    @property
    def transactions(self) -> List[Transaction]:
        return self.journal.transactions

    def _record(self, transactions) -> List[Transaction]:
        """
        Append to the journal and fold into holdings; all or nothing.

        Raises:
            TaxLotSyncError: the lots no longer match the holdings
        """
        transactions = list(transactions)
        if not transactions:
            return []
        n_before = len(self.journal)
        added = self.journal.extend(transactions)
        cutoff = max(trx.date for trx in added)
        try:
            result = processor.apply(self.holdings, self.ledger, self.journal.transactions,
                                     self._processed, cutoff, self.sums)
            result.ledger.check_sync(result.holdings)
        except Exception:
            del self.journal.transactions[n_before:]
            raise
        self.holdings = result.holdings
        self.ledger = result.ledger
        self.sums = result.sums
        self.realized.extend(result.realized)
        self._processed = result.next_index
        return added

    def deposit(self, date, amount: float, memo: str = "") -> Transaction:
        date = pd.Timestamp(date)
        if self.start_date is None:
            self.start_date = date
        return self._record([deposit(date, amount, memo)])[0]

    # ------------------------------------------------------------------

    def _prices(self, securities, date: pd.Timestamp) -> Dict[str, float]:
        prices = {}
        for security in securities:
            try:
                prices[security] = self.feed.price(security, date)
            except DataUnavailableError as exc:
                logger.warning("%s", exc)
                prices[security] = np.nan
        return prices

    def rebalance_to(self, date, target: Mapping[str, float],
                     justification: Justification = ()) -> List[Transaction]:
        """
        Trade the portfolio to `target` weights at the closes on `date`.

        Corporate actions up to the date are filled in first.

        Raises:
            ValueError: date is earlier than the last transaction
            RebalanceTargetError, InvalidSellError: from rebalance_to; the
                portfolio is left unchanged
        """
        date = pd.Timestamp(date)
        last = self.journal.last_date
        if last is not None and date < last:
            raise ValueError(f"cannot rebalance on {date.date()}: last transaction is {last.date()}")

        self.fill_corporate_actions(date)

        securities = set(self.holdings) | set(target)
        securities.discard(cfg.CASH_SECURITY)
        prices = self._prices(sorted(securities), date)
        _, trades = rebalance_to(self.holdings, prices, target, date, justification)
        added = self._record(trades)
        self.end_date = date
        logger.debug("rebalanced %s on %s: %d trades", self.name, date.date(), len(added))
        return added

    def target_portfolio(self, frame: pd.DataFrame) -> List[Transaction]:
        """
        Replay a stream of target allocations.

        `frame` is indexed by date and has a `target` column holding either
        a ticker (100% allocation) or a {ticker: weight} mapping. Any other
        numeric columns are recorded as the justification of that date's
        trades. If the portfolio has only its initial deposit, the deposit
        is moved to the first target date.
        """
        if frame.empty:
            return []
        if TARGET_COLUMN not in frame.columns:
            raise KeyError(f"missing required column: {TARGET_COLUMN}")
        frame = frame.sort_index()
        dates = pd.DatetimeIndex(frame.index)

        if len(self.journal) == 1 and self.journal[0].kind == TransactionKind.DEPOSIT:
            first = dates[0]
            initial = self.journal[0]
            self.journal = TransactionJournal()
            self.holdings, self.ledger, self.sums = {}, TaxLotLedger(), RunningSums()
            self._processed = 0
            self.start_date = first
            self._record([Transaction(
                date=first, security=initial.security, kind=initial.kind,
                shares=initial.shares, price_per_share=initial.price_per_share,
                total_value=initial.total_value, memo=initial.memo, id=initial.id,
            )])

        extra = [c for c in frame.columns if c != TARGET_COLUMN]
        added = []
        for date, (_, row) in zip(dates, frame.iterrows()):
            target = row[TARGET_COLUMN]
            if isinstance(target, str):
                target = {target: 1.0}
            justification = []
            for key in extra:
                value = row.get(key)
                if isinstance(value, (int, float, np.floating, np.integer)) and not isinstance(value, bool):
                    justification.append((key, float(value)))
            added.extend(self.rebalance_to(date, dict(target), justification))

        self.end_date = min(dates[-1], pd.Timestamp.now().normalize())
        return added

    def fill_corporate_actions(self, through) -> List[Transaction]:
        """
        Record dividends and splits of held securities after the last
        transaction's date, through `through` inclusive.

        Events are applied in date order so a split changes the share count
        later dividends are paid on.
        """
        last = self.journal.last_date
        if last is None:
            return []
        start = last.normalize()
        through = pd.Timestamp(through).normalize()
        if start > through:
            raise ValueError(f"start date {start.date()} occurs after through date {through.date()}")

        events = []
        for security in sorted(self.holdings):
            if security == cfg.CASH_SECURITY:
                continue
            for date, amount in self.feed.dividends(security).items():
                if start < date <= through:
                    events.append((date, 0, security, float(amount)))
            for date, factor in self.feed.splits(security).items():
                if start < date <= through:
                    events.append((date, 1, security, float(factor)))

        added = []
        for date, order, security, amount in sorted(events):
            shares = self.holdings.get(security, 0.0)
            if shares <= cfg.SHARE_EPSILON:
                continue
            if order == 0:
                trx = Transaction(
                    date=date, security=security, kind=TransactionKind.DIVIDEND,
                    shares=shares, price_per_share=amount, total_value=shares * amount,
                    tax_disposition=self.dividend_disposition,
                    memo=f"{security} dividend {amount:.4f}/share",
                )
            else:
                trx = Transaction(
                    date=date, security=security, kind=TransactionKind.SPLIT,
                    shares=shares * amount, justification=((SPLIT_FACTOR, amount),),
                    memo=f"{security} split {amount:g}:1",
                )
            added.extend(self._record([trx]))
        if added:
            logger.debug("%s: %d corporate actions through %s", self.name, len(added), through.date())
        return added

    def calculate_performance(self, through, calendar: TradingCalendar,
                              tax_rates: TaxRateProvider = None, **kwargs) -> Performance:
        last = self.journal.last_date
        if last is not None and pd.Timestamp(through).normalize() >= last.normalize():
            self.fill_corporate_actions(through)
        return performance.calculate_performance(
            self.transactions, self.feed, calendar, through,
            benchmark=self.benchmark, portfolio_id=self.id, tax_rates=tax_rates, **kwargs
        )


def new_portfolio(name: str, start_date, amount: float, feed: MarketDataFeed,
                  benchmark: str = "VFINX", **kwargs) -> Portfolio:
    """Create a portfolio funded with an initial deposit on start_date."""
    portfolio = Portfolio(name, feed, benchmark=benchmark, **kwargs)
    portfolio.deposit(start_date, amount, memo="initial deposit")
    return portfolio
