#!/usr/bin/env python3
"""Read ledger's register as transactions.

Runs ``ledger csv`` with a fixed 12-column format, parses every row into a
FlattenedRecord and folds consecutive rows of the same transaction back into
balanced Transaction objects.
"""

from __future__ import annotations

import argparse
import csv
import logging
import re
import shutil
import subprocess
import sys
import threading
from collections.abc import Iterable, Iterator, Sequence
from decimal import Decimal
from pathlib import Path
from typing import IO, BinaryIO, Final

from .common import (
    BALANCE_TOLERANCE,
    STATE_UNSET,
    FlattenedRecord,
    FormatError,
    ImbalanceError,
    LedgerCommandError,
    Posting,
    StructuralError,
    Transaction,
    ValidationError,
    format_amount,
    format_transaction,
    parse_ledger_date,
)
from .escaping import open_unescaped_text

logger = logging.getLogger(__name__)

# Format passed to `ledger csv --csv-format`. Column order must match the
# COL_* offsets below.
CSV_FORMAT: Final = "".join(
    [
        "%(quoted(filename)),",
        "%(quoted(xact.beg_line)),",
        "%(quoted(join(xact.note))),",
        "%(quoted(date)),",
        "%(quoted(code)),",
        "%(quoted(payee)),",
        "%(quoted(beg_line)),",
        "%(quoted(display_account)),",
        "%(quoted(commodity(scrub(display_amount)))),",
        "%(quoted(quantity(scrub(display_amount)))),",
        '%(quoted(cleared ? "*" : (pending ? "!" : ""))),',
        "%(quoted(join(note)))",
        "\\n",
    ]
)

COL_FILENAME: Final = 0
COL_XACT_LINE: Final = 1
COL_XACT_NOTE: Final = 2
COL_DATE: Final = 3
COL_CODE: Final = 4
COL_PAYEE: Final = 5
COL_POSTING_LINE: Final = 6
COL_ACCOUNT: Final = 7
COL_CURRENCY: Final = 8
COL_AMOUNT: Final = 9
COL_STATE: Final = 10
COL_POSTING_NOTE: Final = 11

COLUMN_NAMES: Final[tuple[str, ...]] = (
    "filename",
    "transaction line",
    "transaction note",
    "date",
    "code",
    "payee",
    "posting line",
    "account",
    "currency",
    "amount",
    "state",
    "posting note",
)
NUM_COLUMNS: Final = len(COLUMN_NAMES)

# Line numbers and quantities as ledger prints them
LINE_NUMBER_PATTERN: Final = re.compile(r"-?[0-9]+")
QUANTITY_PATTERN: Final = re.compile(r"[-+]?[0-9]+(\.[0-9]+)?")

LEDGER_EXECUTABLE: Final = "ledger"
DRAIN_CHUNK_SIZE: Final = 65536


# ============================================================================
# Row Parsing
# ============================================================================


def _row_context(record: Sequence[str], row_num: int) -> str:
    """Describe where a row came from, e.g. "Row 4 (books/2016.ledger:47)"."""
    context = f"Row {row_num}"
    if len(record) <= COL_XACT_LINE or not record[COL_FILENAME]:
        return context
    line = record[COL_XACT_LINE]
    if len(record) > COL_POSTING_LINE and record[COL_POSTING_LINE]:
        line = record[COL_POSTING_LINE]
    return f"{context} ({record[COL_FILENAME]}:{line})"


def _parse_int(record: Sequence[str], col: int, context: str) -> int:
    value = record[col]
    if not LINE_NUMBER_PATTERN.fullmatch(value):
        raise FormatError(
            f"{context}: column '{COLUMN_NAMES[col]}' is not an integer: {value!r}"
        )
    return int(value)


def _split_notes(text: str) -> list[str]:
    return text.split("\n") if text else []


def parse_record(record: Sequence[str], row_num: int = 0) -> FlattenedRecord:
    """Convert one register row into a FlattenedRecord.

    Error messages start with the row number and, when the row carries
    them, the ledger file and line of the offending posting.

    Args:
        record: The 12 text fields of one CSV row
        row_num: 1-based row number, used in error messages

    Returns:
        Parsed record

    Raises:
        FormatError: If a column is missing or cannot be parsed
    """
    context = _row_context(record, row_num)
    if len(record) < NUM_COLUMNS:
        raise FormatError(
            f"{context}: expected {NUM_COLUMNS} columns, got {len(record)} "
            f"(missing column '{COLUMN_NAMES[len(record)]}')"
        )
    if len(record) > NUM_COLUMNS:
        raise FormatError(
            f"{context}: expected {NUM_COLUMNS} columns, got {len(record)}"
        )

    xact_line = _parse_int(record, COL_XACT_LINE, context)
    posting_line = _parse_int(record, COL_POSTING_LINE, context)

    try:
        date = parse_ledger_date(record[COL_DATE])
    except ValueError:
        raise FormatError(
            f"{context}: column '{COLUMN_NAMES[COL_DATE]}' is not a "
            f"YYYY/MM/DD date: {record[COL_DATE]!r}"
        ) from None

    if not QUANTITY_PATTERN.fullmatch(record[COL_AMOUNT]):
        raise FormatError(
            f"{context}: column '{COLUMN_NAMES[COL_AMOUNT]}' is not a "
            f"decimal number: {record[COL_AMOUNT]!r}"
        )
    amount = Decimal(record[COL_AMOUNT])

    state_text = record[COL_STATE]
    state = state_text[0] if state_text else STATE_UNSET

    return FlattenedRecord(
        src_file=record[COL_FILENAME],
        xact_line=xact_line,
        date=date,
        code=record[COL_CODE],
        payee=record[COL_PAYEE],
        xact_notes=_split_notes(record[COL_XACT_NOTE]),
        posting_line=posting_line,
        account=record[COL_ACCOUNT],
        currency=record[COL_CURRENCY],
        amount=amount,
        state=state,
        posting_notes=_split_notes(record[COL_POSTING_NOTE]),
    )


# ============================================================================
# Transaction Assembly
# ============================================================================


def _describe_record(record: FlattenedRecord) -> str:
    return (
        f"  {record.src_file}:{record.posting_line} {record.account} "
        f"{format_amount(record.currency, record.amount)}"
    )


def build_transaction(run: Sequence[FlattenedRecord]) -> Transaction:
    """Build one Transaction from the rows of a single transaction.

    Args:
        run: Consecutive records sharing the same (file, transaction line)

    Returns:
        Transaction owning one Posting per record, in order

    Raises:
        StructuralError: If there are fewer than two records
        ImbalanceError: If the amounts do not sum to zero within tolerance
    """
    if len(run) < 2:
        where = f" at {run[0].src_file}:{run[0].xact_line}" if run else ""
        raise StructuralError(
            f"Transaction{where} has {len(run)} posting(s), at least 2 are required"
        )

    total = sum((r.amount for r in run), Decimal(0))
    if abs(total) > BALANCE_TOLERANCE:
        error_msg = f"Transaction does not balance, postings sum to {total}:\n"
        for record in run:
            error_msg += _describe_record(record) + "\n"
        raise ImbalanceError(error_msg.rstrip())

    first = run[0]
    transaction = Transaction(
        src_file=first.src_file,
        beg_line=first.xact_line,
        date=first.date,
        code=first.code,
        payee=first.payee,
        notes=first.xact_notes,
        postings=[
            Posting(
                account=r.account,
                currency=r.currency,
                amount=r.amount,
                state=r.state,
                notes=r.posting_notes,
                beg_line=r.posting_line,
            )
            for r in run
        ],
    )
    for posting in transaction.postings:
        posting.transaction = transaction
    return transaction


def next_transaction(
    records: Sequence[FlattenedRecord],
) -> tuple[Transaction, Sequence[FlattenedRecord]]:
    """Consume the first transaction from a sequence of records.

    Call repeatedly with the returned remainder until it is empty.

    Returns:
        Tuple of (transaction, remaining records)

    Raises:
        StructuralError: If ``records`` is empty or the first run is too short
        ImbalanceError: If the first run does not balance
    """
    if not records:
        raise StructuralError("No records left to build a transaction from")

    origin = records[0].origin
    end = 1
    while end < len(records) and records[end].origin == origin:
        end += 1
    return build_transaction(records[:end]), records[end:]


def assemble_transactions(records: Iterable[FlattenedRecord]) -> Iterator[Transaction]:
    """Fold a stream of records into transactions.

    Keeps the current run plus one lookahead record, so any iterable works.

    Yields:
        Transactions in input order
    """
    run: list[FlattenedRecord] = []
    for record in records:
        if run and record.origin != run[0].origin:
            yield build_transaction(run)
            run = []
        run.append(record)
    if run:
        yield build_transaction(run)


def _parse_rows(text: IO[str]) -> Iterator[FlattenedRecord]:
    reader = csv.reader(text)
    row_num = 0
    while True:
        try:
            row = next(reader)
        except StopIteration:
            return
        except (csv.Error, UnicodeDecodeError) as e:
            raise FormatError(f"Row {row_num + 1}: malformed CSV: {e}") from e
        row_num += 1
        yield parse_record(row, row_num)


def read_ledger_csv(source: BinaryIO) -> list[Transaction]:
    """Read ledger-style CSV (backslash escaped) into transactions.

    Args:
        source: Binary stream of `ledger csv` output in CSV_FORMAT layout

    Returns:
        All transactions in file order

    Raises:
        FormatError: If a row cannot be parsed
        ImbalanceError: If a transaction does not balance
        StructuralError: If a transaction has fewer than two postings
    """
    with open_unescaped_text(source) as text:
        transactions = list(assemble_transactions(_parse_rows(text)))
    logger.debug("Assembled %d transaction(s)", len(transactions))
    return transactions


# ============================================================================
# Ledger Subprocess
# ============================================================================


def find_ledger(ledger: str | None = None) -> str:
    """Locate the ledger executable.

    Raises:
        LedgerCommandError: If it cannot be found
    """
    name = ledger or LEDGER_EXECUTABLE
    path = shutil.which(name)
    if path is None:
        raise LedgerCommandError(f"ledger executable not found: {name}")
    return path


def build_command(ledger: str, filename: str | Path | None = None) -> list[str]:
    cmd = [ledger, "csv", "--csv-format", CSV_FORMAT]
    if filename:
        cmd.extend(["-f", str(filename)])
    return cmd


def _forward_stream(stream: BinaryIO, sink: IO[str]) -> None:
    for line in stream:
        sink.write(line.decode("utf-8", errors="replace"))


def _drain(stream: BinaryIO) -> None:
    while stream.read(DRAIN_CHUNK_SIZE):
        pass


def read_register(
    filename: str | Path | None = None,
    ledger: str | None = None,
    stderr: IO[str] | None = None,
) -> list[Transaction]:
    """Run ledger and read its register as transactions.

    stdout is drained to the end even when parsing fails, and stderr is
    forwarded on a separate thread, so ledger never blocks on a full pipe.

    Args:
        filename: Ledger file to read (default: ledger's own default file)
        ledger: Name or path of the ledger executable
        stderr: Where ledger's stderr goes (default: sys.stderr)

    Returns:
        All transactions in file order

    Raises:
        LedgerCommandError: If ledger is missing or exits with an error
        ValidationError: If its output cannot be turned into transactions
    """
    cmd = build_command(find_ledger(ledger), filename)
    sink = stderr if stderr is not None else sys.stderr
    logger.debug("Running %s", " ".join(cmd))

    try:
        proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as e:
        raise LedgerCommandError(f"Unable to run {cmd[0]}: {e}") from e

    read_error: ValidationError | None = None
    transactions: list[Transaction] = []
    with proc:
        forwarder = threading.Thread(
            target=_forward_stream, args=(proc.stderr, sink), daemon=True
        )
        forwarder.start()
        try:
            transactions = read_ledger_csv(proc.stdout)
        except ValidationError as e:
            read_error = e
        finally:
            _drain(proc.stdout)
            returncode = proc.wait()
            forwarder.join()

    if returncode != 0:
        raise LedgerCommandError(
            f"{cmd[0]} exited with code {returncode}"
        ) from read_error
    if read_error is not None:
        raise read_error
    logger.debug("Read %d transaction(s) from %s", len(transactions), cmd[0])
    return transactions


# ============================================================================
# Command Line
# ============================================================================


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        description="Read a ledger register and print it as ledger transactions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Print the default ledger file
  %(prog)s

  # Print a specific ledger file
  %(prog)s -f household.ledger

  # Print an existing export of `ledger csv`
  %(prog)s -i register.csv
""",
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "-f",
        "--file",
        type=Path,
        metavar="FILE",
        help="ledger file to read (default: ledger's default file)",
    )
    source.add_argument(
        "-i",
        "--input",
        type=Path,
        metavar="FILE",
        help="read an existing `ledger csv` export instead of running ledger",
    )

    parser.add_argument(
        "--ledger",
        metavar="PATH",
        help=f"ledger executable (default: {LEDGER_EXECUTABLE} on PATH)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="enable verbose output",
    )

    return parser


def load_transactions(args: argparse.Namespace) -> list[Transaction]:
    """Load transactions from the source selected on the command line."""
    if args.input is not None:
        try:
            with args.input.open("rb") as f:
                return read_ledger_csv(f)
        except OSError as e:
            raise ValidationError(f"Error reading {args.input}: {e}") from e
    return read_register(args.file, args.ledger)


def configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )


def main(argv: list[str] | None = None) -> int:
    """Main execution flow."""
    parser = create_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        transactions = load_transactions(args)
    except ValidationError as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        return 1

    for i, transaction in enumerate(transactions):
        if i:
            print()
        print(format_transaction(transaction))

    return 0


if __name__ == "__main__":
    sys.exit(main())
