#!/usr/bin/env python3
"""Shared utilities and data structures for ledger CSV processing tools.

This module contains common functions, constants, exceptions and dataclasses
used across the register reader, the duplicate finder and the report writers.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Final

# ============================================================================
# Constants
# ============================================================================

# Date layout used by ledger's register export and by suppression directives
DATE_FORMAT: Final = "%Y/%m/%d"
DATE_TEXT_LENGTH: Final = 10

# Postings of one transaction must sum to zero within this tolerance
BALANCE_TOLERANCE: Final = Decimal("0.001")

# Clearing state of a posting with neither "*" nor "!"
STATE_UNSET: Final = ""

# Note directives that silence duplicate reports for specific dates, e.g.
#   ; SuppressAmountDuplicates: 2016/03/22, 2016/03/23
GENERIC_SUPPRESS_PREFIX: Final = "SuppressDuplicates"
AMOUNT_SUPPRESS_PREFIXES: Final[tuple[str, ...]] = (
    "SuppressAmountDuplicates",
    GENERIC_SUPPRESS_PREFIX,
)
CODE_SUPPRESS_PREFIXES: Final[tuple[str, ...]] = (
    "SuppressCodeDuplicates",
    GENERIC_SUPPRESS_PREFIX,
)

CODE_PREFIX: Final = "#"

# Ledger text rendering
AMOUNT_ALIGNMENT_COL: Final = 65
INDENT: Final = "    "


# ============================================================================
# Exceptions
# ============================================================================


class ValidationError(Exception):
    """Ledger export validation or processing error."""

    pass


class FormatError(ValidationError):
    """A row or field of the register export cannot be parsed."""

    pass


class ImbalanceError(ValidationError):
    """Postings of a transaction do not sum to zero."""

    pass


class StructuralError(ValidationError):
    """A transaction has fewer than two postings."""

    pass


class LedgerCommandError(ValidationError):
    """The ledger executable is missing or failed."""

    pass


# ============================================================================
# Dataclasses
# ============================================================================


@dataclass
class FlattenedRecord:
    """One row of the register export.

    Carries the transaction-level fields (repeated on every row of the
    transaction) together with the posting-level fields.
    """

    src_file: str
    xact_line: int
    date: datetime.date
    code: str
    payee: str
    xact_notes: list[str]
    posting_line: int
    account: str
    currency: str
    amount: Decimal
    state: str = STATE_UNSET
    posting_notes: list[str] = field(default_factory=list)

    @property
    def origin(self) -> tuple[str, int]:
        """Identity of the transaction this row belongs to."""
        return (self.src_file, self.xact_line)


@dataclass
class Posting:
    """A change to one account within a transaction."""

    account: str
    currency: str
    amount: Decimal
    state: str = STATE_UNSET
    notes: list[str] = field(default_factory=list)
    beg_line: int = 0
    # Set once by the assembler after the owning transaction exists
    transaction: Transaction | None = field(default=None, repr=False, compare=False)

    @property
    def amount_text(self) -> str:
        """Currency symbol followed by the amount with two decimals.

        Examples:
            >>> Posting("Expenses:Grocery", "$", Decimal("10")).amount_text
            '$10.00'
        """
        return format_amount(self.currency, self.amount)

    @property
    def xact(self) -> Transaction:
        """Owning transaction.

        Raises:
            ValueError: If the posting was never attached to a transaction
        """
        if self.transaction is None:
            raise ValueError(f"Posting {self.account} is not attached to a transaction")
        return self.transaction


@dataclass
class Transaction:
    """A balanced group of postings sharing date, payee and code."""

    src_file: str
    beg_line: int
    date: datetime.date
    code: str
    payee: str
    notes: list[str] = field(default_factory=list)
    postings: list[Posting] = field(default_factory=list)

    @property
    def date_text(self) -> str:
        return format_date(self.date)

    @property
    def location(self) -> str:
        return f"{self.src_file}:{self.beg_line}"


# ============================================================================
# Date and Amount Formatting
# ============================================================================


def parse_ledger_date(date_str: str) -> datetime.date:
    """Parse a ledger date in YYYY/MM/DD form.

    Raises:
        ValueError: If the text is not a valid date in that layout
    """
    return datetime.datetime.strptime(date_str, DATE_FORMAT).date()


def format_date(date: datetime.date) -> str:
    return date.strftime(DATE_FORMAT)


def format_amount(currency: str, amount: Decimal) -> str:
    return f"{currency}{amount:.2f}"


def normalize_code(code: str) -> str:
    """Ensure a transaction code starts with "#".

    Examples:
        >>> normalize_code("123")
        '#123'
        >>> normalize_code("#123")
        '#123'
    """
    if code.startswith(CODE_PREFIX):
        return code
    return CODE_PREFIX + code


# ============================================================================
# Ledger Text Rendering
# ============================================================================


def format_posting(posting: Posting) -> str:
    """Render a posting line with the amount right-aligned."""
    account = posting.account
    if posting.state:
        account = f"{posting.state} {account}"
    prefix = INDENT + account
    suffix = "  " + posting.amount_text
    padding = AMOUNT_ALIGNMENT_COL - (len(prefix) + len(suffix))
    return prefix + " " * max(padding, 0) + suffix


def format_transaction(transaction: Transaction) -> str:
    """Render a transaction in ledger's text format.

    Examples:
        2016/03/21 (#1001) Local Grocery Store
            ; receipt in drawer
            Expenses:Grocery                                     $10.00
            Liabilities:Credit Card                             $-10.00
    """
    tokens = [transaction.date_text]
    if transaction.code:
        tokens.append(f"({transaction.code})")
    tokens.append(transaction.payee)

    lines = [" ".join(tokens)]
    lines.extend(f"{INDENT}; {note}" for note in transaction.notes)
    for posting in transaction.postings:
        lines.append(format_posting(posting))
        lines.extend(f"{INDENT}; {note}" for note in posting.notes)
    return "\n".join(lines)
