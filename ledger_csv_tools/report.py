#!/usr/bin/env python3
"""Write duplicate candidates as javac-style text or checkstyle XML."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Sequence
from typing import Final, TextIO

from .duplicates import Diagnostic, Duplicate

# Checkstyle document attributes
CHECKSTYLE_VERSION: Final = "7.2"
SEVERITY: Final = "warning"
SOURCE: Final = "dupdetector"


def write_plain(duplicates: Sequence[Duplicate], out: TextIO) -> int:
    """Write one text block per candidate followed by a count line.

    Args:
        duplicates: Candidates from a DuplicateFinder
        out: Text stream to write to

    Returns:
        Number of candidates written
    """
    for duplicate in duplicates:
        out.write(duplicate.render_text() + "\n")
    out.write(f"\n {len(duplicates)} potential duplicates found\n")
    return len(duplicates)


def group_by_file(duplicates: Sequence[Duplicate]) -> dict[str, list[Diagnostic]]:
    """Collect the diagnostics of every candidate per source file.

    Files appear in the order they are first mentioned.
    """
    by_file: dict[str, list[Diagnostic]] = {}
    for duplicate in duplicates:
        for diagnostic in duplicate.diagnostics():
            by_file.setdefault(diagnostic.src_file, []).append(diagnostic)
    return by_file


def build_checkstyle(duplicates: Sequence[Duplicate]) -> ET.Element:
    """Build the checkstyle document tree.

    Layout:
        <checkstyle version="7.2">
          <file name="a.ledger">
            <error line="10" severity="warning" message="..." source="dupdetector" />
          </file>
        </checkstyle>
    """
    root = ET.Element("checkstyle", version=CHECKSTYLE_VERSION)
    for name, diagnostics in group_by_file(duplicates).items():
        file_elem = ET.SubElement(root, "file", name=name)
        for diagnostic in diagnostics:
            ET.SubElement(
                file_elem,
                "error",
                line=str(diagnostic.line),
                severity=SEVERITY,
                message=diagnostic.message,
                source=SOURCE,
            )
    return root


def write_checkstyle(duplicates: Sequence[Duplicate], out: TextIO) -> int:
    """Write checkstyle-compatible XML for all candidates.

    Every candidate yields two errors, one on each side, each pointing at the
    other occurrence.

    Returns:
        Number of candidates written
    """
    tree = ET.ElementTree(build_checkstyle(duplicates))
    ET.indent(tree, space="  ")
    tree.write(out, encoding="unicode")
    out.write("\n")
    return len(duplicates)
