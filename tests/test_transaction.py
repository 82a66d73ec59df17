import pandas as pd
import pytest

from portsim.transaction import (
    SPLIT_FACTOR, Transaction, TransactionJournal, TransactionKind, deposit, withdraw,
)
from tests.helpers import buy, sell


def test_source_id_ignores_generated_fields():
    a = buy("2021-01-04", "AAA", 10.0, 25.0, source="portsim")
    b = buy("2021-01-04", "AAA", 10.0, 25.0, source="portsim")
    assert a.id != b.id
    assert a.source_id == b.source_id
    assert len(a.source_id) == 32
    assert buy("2021-01-04", "AAA", 11.0, 25.0, source="portsim").source_id != a.source_id


def test_split_factor():
    split = Transaction(date=pd.Timestamp("2021-01-04"), security="AAA", kind=TransactionKind.SPLIT,
                        shares=200.0, justification=((SPLIT_FACTOR, 2.0),))
    assert split.split_factor == 2.0
    assert buy("2021-01-04", "AAA", 1.0, 1.0).split_factor == 1.0


def test_journal_assigns_sequence_and_sorts():
    journal = TransactionJournal()
    journal.append(deposit("2021-01-05", 1_000.0))
    journal.append(withdraw("2021-01-04", 100.0))
    journal.append(buy("2021-01-05", "AAA", 10.0, 50.0))
    assert [t.sequence for t in journal] == [0, 1, 2]

    journal.sort()
    assert [t.kind for t in journal] == [
        TransactionKind.WITHDRAW, TransactionKind.DEPOSIT, TransactionKind.BUY,
    ]
    assert journal.last_date == pd.Timestamp("2021-01-05")


def test_journal_between_is_half_open():
    journal = TransactionJournal([
        deposit("2021-01-04", 1_000.0),
        buy("2021-01-05", "AAA", 10.0, 50.0),
        sell("2021-01-06", "AAA", 5.0, 52.0),
    ])
    picked = journal.between("2021-01-04", "2021-01-05")
    assert [t.kind for t in picked] == [TransactionKind.BUY]


def test_journal_summary_counts_trades():
    journal = TransactionJournal()
    assert journal.get_summary() == {'count': 0, 'volume': 0}
    journal.extend([
        deposit("2021-01-04", 1_000.0),
        buy("2021-01-05", "AAA", 10.0, 50.0),
        sell("2021-01-06", "AAA", 5.0, 52.0),
    ])
    summary = journal.get_summary()
    assert summary['count'] == 2
    assert summary['volume'] == pytest.approx(760.0)


def test_journal_records():
    journal = TransactionJournal([deposit("2021-01-04", 1_000.0, memo="initial")])
    frame = pd.DataFrame(journal.to_records())
    assert len(frame) == 1
    assert frame.loc[0, "total_value"] == 1_000.0
    assert frame.loc[0, "memo"] == "initial"
