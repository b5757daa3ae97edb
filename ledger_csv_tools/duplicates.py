#!/usr/bin/env python3
"""Find postings and transactions that may have been recorded twice.

Two kinds of candidates are detected while transactions are added in file
order:

- Amount duplicates: two postings to the same account for the same amount
  whose dates are at most ``days`` apart.
- Code duplicates: two transactions with the same code (check number), on
  any dates. ``123`` and ``#123`` are the same code.

A note of the form ``SuppressAmountDuplicates: 2016/03/22`` (or
``SuppressCodeDuplicates:``, or ``SuppressDuplicates:`` for both kinds)
silences the match against an entry dated 2016/03/22.
"""

from __future__ import annotations

import datetime
import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Protocol, Union

from .common import (
    AMOUNT_SUPPRESS_PREFIXES,
    CODE_PREFIX,
    CODE_SUPPRESS_PREFIXES,
    DATE_TEXT_LENGTH,
    Posting,
    Transaction,
    normalize_code,
    parse_ledger_date,
)

logger = logging.getLogger(__name__)

AmountKey = tuple[str, str, datetime.date]


# ============================================================================
# Suppression Directives
# ============================================================================


def suppressed_dates(prefixes: Sequence[str], notes: Iterable[str]) -> list[str]:
    """Collect dates named by suppression directives in note lines.

    Each line may hold ``<Prefix>: d1, d2, ...``. Parsing of a line stops at
    a token too short to be a date, or after a valid date followed by extra
    text.

    Args:
        prefixes: Directive names to look for, without the colon
        notes: Note lines

    Returns:
        Dates in YYYY/MM/DD form, in note order

    Examples:
        >>> suppressed_dates(["SuppressAmountDuplicates"],
        ...                  ["SuppressAmountDuplicates: 2016/04/03,2016/04/04"])
        ['2016/04/03', '2016/04/04']
    """
    dates = []
    for line in notes:
        for prefix in prefixes:
            _, found, rest = line.partition(prefix + ":")
            if not found:
                continue
            for token in rest.split(","):
                token = token.strip()
                if len(token) < DATE_TEXT_LENGTH:
                    break
                candidate = token[:DATE_TEXT_LENGTH]
                try:
                    parse_ledger_date(candidate)
                except ValueError:
                    pass
                else:
                    dates.append(candidate)
                if len(token) > DATE_TEXT_LENGTH:
                    # Trailing text after a date ends this directive
                    break
    return dates


def is_date_suppressed(date_text: str, prefixes: Sequence[str], notes: Iterable[str]) -> bool:
    return date_text in suppressed_dates(prefixes, notes)


# ============================================================================
# Duplicate Candidates
# ============================================================================


@dataclass(frozen=True)
class Diagnostic:
    """One report entry, attributed to a single side of a candidate."""

    src_file: str
    line: int
    message: str


class Duplicate(Protocol):
    """Capabilities shared by every kind of duplicate candidate."""

    def render_text(self) -> str: ...

    def is_suppressed(self) -> bool: ...

    def diagnostics(self) -> list[Diagnostic]: ...


@dataclass
class AmountDuplicate:
    """Two postings with the same account and amount on nearby dates."""

    one: Posting
    two: Posting

    def render_text(self) -> str:
        return "\n".join(
            [
                f"Possible duplicate {self.one.amount_text} {self.one.account}",
                _posting_line(self.one),
                _posting_line(self.two),
            ]
        )

    def is_suppressed(self) -> bool:
        return is_date_suppressed(
            self.one.xact.date_text, AMOUNT_SUPPRESS_PREFIXES, _posting_notes(self.two)
        ) or is_date_suppressed(
            self.two.xact.date_text, AMOUNT_SUPPRESS_PREFIXES, _posting_notes(self.one)
        )

    def diagnostics(self) -> list[Diagnostic]:
        return [
            _amount_diagnostic(self.one, self.two),
            _amount_diagnostic(self.two, self.one),
        ]


@dataclass
class CodeDuplicate:
    """Two transactions carrying the same code.

    ``code`` is the code as displayed: if one side wrote it with a leading
    "#", that form is kept.
    """

    code: str
    one: Transaction
    two: Transaction

    @classmethod
    def from_pair(cls, one: Transaction, two: Transaction) -> CodeDuplicate:
        code = two.code if two.code.startswith(CODE_PREFIX) else one.code
        return cls(code, one, two)

    def render_text(self) -> str:
        return "\n".join(
            [
                f"Code duplicate ({self.code})",
                _transaction_line(self.one),
                _transaction_line(self.two),
            ]
        )

    def is_suppressed(self) -> bool:
        return is_date_suppressed(
            self.one.date_text, CODE_SUPPRESS_PREFIXES, self.two.notes
        ) or is_date_suppressed(
            self.two.date_text, CODE_SUPPRESS_PREFIXES, self.one.notes
        )

    def diagnostics(self) -> list[Diagnostic]:
        return [
            _code_diagnostic(self.one, self.two),
            _code_diagnostic(self.two, self.one),
        ]


DuplicateCandidate = Union[AmountDuplicate, CodeDuplicate]


def _posting_notes(posting: Posting) -> Iterator[str]:
    yield from posting.notes
    yield from posting.xact.notes


def _posting_line(posting: Posting) -> str:
    xact = posting.xact
    return f"\tat {xact.date_text} {xact.payee} ({xact.src_file}:{posting.beg_line})"


def _transaction_line(transaction: Transaction) -> str:
    return f"\tat {transaction.date_text} {transaction.payee} ({transaction.location})"


def _amount_diagnostic(posting: Posting, other: Posting) -> Diagnostic:
    other_xact = other.xact
    message = (
        f"Possible duplicate of {other_xact.date_text} {other_xact.payee} "
        f"{other.amount_text} {other.account} at {other_xact.src_file}:{other.beg_line}"
    )
    return Diagnostic(posting.xact.src_file, posting.beg_line, message)


def _code_diagnostic(transaction: Transaction, other: Transaction) -> Diagnostic:
    message = f"Possible duplicate of {other.date_text} ({other.code}) at {other.location}"
    return Diagnostic(transaction.src_file, transaction.beg_line, message)


# ============================================================================
# Finder
# ============================================================================


class DuplicateFinder:
    """Track postings and transactions and collect potential duplicates.

    Transactions must be added in file order: each pair is reported once,
    when its second member is added.

    Args:
        days: Number of days either side of a posting's date to search for
            amount duplicates. 0 matches same-day postings only; a negative
            value turns amount duplicate detection off.
    """

    def __init__(self, days: int) -> None:
        self.days = days
        self._amounts: dict[AmountKey, list[Posting]] = defaultdict(list)
        self._codes: dict[str, list[Transaction]] = defaultdict(list)
        self._duplicates: list[DuplicateCandidate] = []

    @property
    def duplicates(self) -> list[DuplicateCandidate]:
        """Unsuppressed candidates in the order they were found."""
        return self._duplicates

    def add(self, transaction: Transaction) -> None:
        """Check a transaction against everything added before it, then track it."""
        self._add_code(transaction)
        for posting in transaction.postings:
            self._add_posting(posting)

    def add_all(self, transactions: Iterable[Transaction]) -> None:
        for transaction in transactions:
            self.add(transaction)

    def _record(self, candidate: DuplicateCandidate) -> None:
        if candidate.is_suppressed():
            logger.debug("Suppressed: %s", candidate.render_text())
            return
        logger.debug("Found: %s", candidate.render_text())
        self._duplicates.append(candidate)

    def _add_code(self, transaction: Transaction) -> None:
        if not transaction.code:
            return
        bucket = self._codes[normalize_code(transaction.code)]
        for earlier in bucket:
            self._record(CodeDuplicate.from_pair(earlier, transaction))
        bucket.append(transaction)

    def _candidate_keys(self, account: str, amount: str, date: datetime.date) -> list[AmountKey]:
        if self.days < 0:
            return []
        keys = [(account, amount, date)]
        for i in range(1, self.days + 1):
            delta = datetime.timedelta(days=i)
            keys.append((account, amount, date - delta))
            keys.append((account, amount, date + delta))
        return keys

    def _add_posting(self, posting: Posting) -> None:
        date = posting.xact.date
        amount = posting.amount_text
        for key in self._candidate_keys(posting.account, amount, date):
            for earlier in self._amounts.get(key, ()):
                self._record(AmountDuplicate(earlier, posting))
        self._amounts[(posting.account, amount, date)].append(posting)
