#!/usr/bin/env python3
"""Look for potentially duplicate postings in a ledger file.

Reads the register through ledger (or an existing `ledger csv` export),
feeds every transaction to a DuplicateFinder in file order and reports the
candidates as plain text or checkstyle XML.
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path
from typing import Final

from .common import ValidationError
from .duplicates import DuplicateFinder
from .register import LEDGER_EXECUTABLE, configure_logging, load_transactions
from .report import write_checkstyle, write_plain

DEFAULT_DUP_DAYS: Final = 3


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        description="Look for potentially duplicate postings in a ledger file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Lint the default ledger file, matching postings up to 3 days apart
  %(prog)s

  # Only same-day matches, checkstyle output for an editor or CI tool
  %(prog)s -d 0 -c -f household.ledger

  # Lint an existing export of `ledger csv`
  %(prog)s -i register.csv

Suppress a reported match by adding a note to either entry:
  ; SuppressAmountDuplicates: 2016/03/22
  ; SuppressCodeDuplicates: 2016/03/22
""",
    )

    parser.add_argument(
        "-d",
        "--dupdays",
        type=int,
        default=DEFAULT_DUP_DAYS,
        metavar="DAYS",
        help=(
            "number of days to consider when looking for duplicate postings "
            f"(default: {DEFAULT_DUP_DAYS}); 0 considers only same-day postings, "
            "a negative value disables amount checks"
        ),
    )

    parser.add_argument(
        "-c",
        "--checkstyle",
        action="store_true",
        help="use checkstyle-compatible XML output",
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "-f",
        "--file",
        type=Path,
        metavar="FILE",
        help="ledger file to lint (default: ledger's default file)",
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


def main(argv: list[str] | None = None) -> int:
    """Main execution flow."""
    parser = create_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    start = time.monotonic()
    try:
        transactions = load_transactions(args)
    except ValidationError as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        return 1

    if not args.checkstyle:
        elapsed = time.monotonic() - start
        print(f"Read {len(transactions):,} transaction(s) in {elapsed:.3f}s")

    if args.dupdays < 0 and args.verbose:
        print("⚠ Warning: negative --dupdays, amount duplicates are not checked", file=sys.stderr)

    finder = DuplicateFinder(args.dupdays)
    finder.add_all(transactions)

    try:
        if args.checkstyle:
            write_checkstyle(finder.duplicates, sys.stdout)
        else:
            write_plain(finder.duplicates, sys.stdout)
    except OSError as e:
        print(f"✗ Error writing report: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
