"""Shared fixtures for ledger CSV tool tests."""

import datetime
from decimal import Decimal

import pytest

SCENARIO_FILE = "test.ledger"

# Register rows for a small ledger file:
#
#    9  2016/03/21 Local Grocery Store
#   10      Expenses:Grocery                          $10.00
#   11      Liabilities:Credit Card
#   13  2016/03/22 Another Local Grocery Store
#   14      Expenses:Grocery                          $10.00
#   15      Liabilities:Another Credit Card
#   17  2016/03/25 Another Local Grocery Store
#   18      Expenses:Grocery                          $10.00
#   19      ; SuppressDuplicates: 2016/03/22
#   20      Liabilities:Credit Card
#   22  2016/04/21 Another Local Grocery Store
#   23      Expenses:Grocery                          $10.00
#   24      Liabilities:Another Credit Card
SCENARIO_ROWS = [
    [SCENARIO_FILE, "9", "", "2016/03/21", "", "Local Grocery Store",
     "10", "Expenses:Grocery", "$", "10.00", "", ""],
    [SCENARIO_FILE, "9", "", "2016/03/21", "", "Local Grocery Store",
     "11", "Liabilities:Credit Card", "$", "-10.00", "", ""],
    [SCENARIO_FILE, "13", "", "2016/03/22", "", "Another Local Grocery Store",
     "14", "Expenses:Grocery", "$", "10.00", "", ""],
    [SCENARIO_FILE, "13", "", "2016/03/22", "", "Another Local Grocery Store",
     "15", "Liabilities:Another Credit Card", "$", "-10.00", "", ""],
    [SCENARIO_FILE, "17", "", "2016/03/25", "", "Another Local Grocery Store",
     "18", "Expenses:Grocery", "$", "10.00", "", "SuppressDuplicates: 2016/03/22"],
    [SCENARIO_FILE, "17", "", "2016/03/25", "", "Another Local Grocery Store",
     "20", "Liabilities:Credit Card", "$", "-10.00", "", ""],
    [SCENARIO_FILE, "22", "", "2016/04/21", "", "Another Local Grocery Store",
     "23", "Expenses:Grocery", "$", "10.00", "", ""],
    [SCENARIO_FILE, "22", "", "2016/04/21", "", "Another Local Grocery Store",
     "24", "Liabilities:Another Credit Card", "$", "-10.00", "", ""],
]


def ledger_quote(value):
    """Quote a field the way ledger's quoted() does."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def to_ledger_csv(rows):
    """Render rows as ledger CSV output bytes."""
    lines = [",".join(ledger_quote(field) for field in row) + "\n" for row in rows]
    return "".join(lines).encode("utf-8")


@pytest.fixture
def ledger_csv():
    """Function rendering a list of 12-field rows as ledger CSV bytes."""
    return to_ledger_csv


@pytest.fixture
def scenario_rows():
    return [list(row) for row in SCENARIO_ROWS]


@pytest.fixture
def scenario_csv():
    """Ledger CSV bytes of the four-transaction grocery scenario."""
    return to_ledger_csv(SCENARIO_ROWS)


@pytest.fixture
def make_transaction():
    """Factory for balanced, fully linked transactions.

    Each posting is (account, amount) or (account, amount, notes).
    """
    from ledger_csv_tools.common import Posting, Transaction

    def _make(date, postings, payee="Payee", code="", notes=None,
              src_file="a.ledger", beg_line=1, currency="$"):
        transaction = Transaction(
            src_file=src_file,
            beg_line=beg_line,
            date=datetime.date.fromisoformat(date),
            code=code,
            payee=payee,
            notes=list(notes or []),
        )
        for offset, spec in enumerate(postings, start=1):
            account, amount = spec[0], spec[1]
            posting_notes = list(spec[2]) if len(spec) > 2 else []
            transaction.postings.append(
                Posting(
                    account=account,
                    currency=currency,
                    amount=Decimal(amount),
                    notes=posting_notes,
                    beg_line=beg_line + offset,
                    transaction=transaction,
                )
            )
        return transaction

    return _make
