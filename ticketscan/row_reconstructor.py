"""
Row Reconstruction and Canonical Ticket Format
==============================================

Maps per-cell results back into ordered ticket rows and converts rows to and
from the canonical wire string passed to presentation:

    Lottery: 4 8 15 16 23 42|1 2 3 4 5 6 Ticket:OCR

Each row is ``n1 n2 n3 n4 n5 special``; -1 marks an unreadable entry and 0
an empty one.
"""

import re
from typing import List, Optional, Tuple

from ticketscan.errors import ParseError
from ticketscan.models import EMPTY, REGULAR_COUNT, UNREADABLE, LotteryGrid, ScanResult, TicketRow

DEFAULT_SOURCE_TAG = "OCR"

CANONICAL_PATTERN = re.compile(r"^Lottery: (?P<rows>.*) Ticket:(?P<tag>\S*)$")
ROW_SEPARATOR = "|"


def reconstruct(grid: LotteryGrid, scan_result: ScanResult) -> List[TicketRow]:
    """
    Rebuild ticket rows from a grid and its per-cell results.

    Regular cells are ordered by column; failed or missing results become
    -1, and rows with fewer than five regular cells are padded with 0. The
    first special cell (if any) supplies the special number, otherwise 0.

    Args:
        grid: Grid the scan ran over
        scan_result: Values recorded by the cell fan-out

    Returns:
        One TicketRow per grid row, in grid order
    """
    rows = []
    for row_index in range(grid.row_count):
        positions = grid.positions_in_row(row_index)
        regular = [p for p in positions if not p.is_special]
        special = [p for p in positions if p.is_special]

        numbers = [scan_result.get(p, UNREADABLE) for p in regular][:REGULAR_COUNT]
        numbers += [EMPTY] * (REGULAR_COUNT - len(numbers))

        special_value = scan_result.get(special[0], UNREADABLE) if special else EMPTY
        rows.append(TicketRow(numbers=tuple(numbers), special=special_value))

    return rows


def drop_empty_rows(rows: List[TicketRow]) -> List[TicketRow]:
    """Remove rows with no value at all, keeping the order of the rest."""
    return [row for row in rows if not row.is_empty]


def format_row(row: TicketRow) -> str:
    return " ".join(str(n) for n in (*row.numbers, row.special))


def serialize_rows(rows: List[TicketRow], tag: str = DEFAULT_SOURCE_TAG) -> str:
    """
    Build the canonical ticket string.

    Every row is written, including fully empty ones; callers that want
    empty rows gone run drop_empty_rows first.

    Args:
        rows: Ticket rows
        tag: Source tag written after ``Ticket:``

    Returns:
        Canonical string
    """
    body = ROW_SEPARATOR.join(format_row(row) for row in rows)
    return f"Lottery: {body} Ticket:{tag}"


def parse_row(text: str) -> TicketRow:
    """
    Parse one ``n1 n2 n3 n4 n5 special`` row.

    Raises:
        ParseError: On a wrong value count or a non-integer token
    """
    tokens = text.split()
    if len(tokens) != REGULAR_COUNT + 1:
        raise ParseError(f"Row '{text}' has {len(tokens)} values, expected {REGULAR_COUNT + 1}")
    try:
        values = [int(token) for token in tokens]
    except ValueError as e:
        raise ParseError(f"Row '{text}' contains a non-integer value") from e
    if any(v < UNREADABLE for v in values):
        raise ParseError(f"Row '{text}' contains a value below {UNREADABLE}")
    return TicketRow(numbers=tuple(values[:REGULAR_COUNT]), special=values[REGULAR_COUNT])


def parse_canonical(text: str) -> Tuple[List[TicketRow], str]:
    """
    Parse a canonical ticket string.

    Args:
        text: String produced by serialize_rows

    Returns:
        (rows, source tag)

    Raises:
        ParseError: If the string does not follow the canonical grammar
    """
    match = CANONICAL_PATTERN.match(text.strip())
    if not match:
        raise ParseError("Not a canonical ticket string (expected 'Lottery: ... Ticket:<tag>')")

    body = match.group("rows").strip()
    rows = [parse_row(chunk) for chunk in body.split(ROW_SEPARATOR)] if body else []
    return rows, match.group("tag")


def is_canonical(text: Optional[str]) -> bool:
    return bool(text) and CANONICAL_PATTERN.match(text.strip()) is not None
