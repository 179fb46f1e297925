"""
Full-line fallback OCR.

Reads whole text lines instead of single cells, for tickets too noisy to
segment into a grid. Less precise, more robust: lines are grouped with the
same row rule as the grid path, split into tokens, and the first five tokens
become the regular numbers with an optional sixth as the special number.
"""

import re
from typing import List, Optional

from PIL import Image
from loguru import logger

from ticketscan.cell_recognizer import OCR_CONFUSIONS, correct_confusions
from ticketscan.config import ScanSettings
from ticketscan.models import EMPTY, REGULAR_COUNT, UNREADABLE, GameConstraint, TextObservation, TicketRow
from ticketscan.row_grouping import group_into_rows
from ticketscan.text_recognition import RecognitionOptions, TextRecognizer

_CONFUSABLE = re.escape("".join(OCR_CONFUSIONS))
NUMERIC_LINE = re.compile(rf"^[0-9{_CONFUSABLE}\s,|]+$")
HAS_DIGIT = re.compile(r"[0-9]")
TOKEN_SEPARATORS = re.compile(r"[\s,|]+")


def is_numeric_line(text: str) -> bool:
    """Digits, separators and digit look-alikes only, with at least one real digit."""
    text = text.strip()
    return bool(NUMERIC_LINE.match(text)) and bool(HAS_DIGIT.search(text))


def parse_tokens(text: str) -> List[int]:
    """Split merged row text and coerce each token, skipping unparseable ones."""
    values = []
    for token in TOKEN_SEPARATORS.split(text.strip()):
        corrected = correct_confusions(token)
        if corrected.isdigit():
            values.append(int(corrected))
    return values


def _bounded(value: int, upper: int) -> int:
    return value if 1 <= value <= upper else UNREADABLE


def tokens_to_row(tokens: List[int], constraint: GameConstraint) -> Optional[TicketRow]:
    """
    Assign parsed tokens to a ticket row.

    Out-of-range tokens become -1; rows with fewer than five tokens are
    zero-padded.

    Returns:
        TicketRow, or None when there are no tokens
    """
    if not tokens:
        return None

    numbers = [_bounded(v, constraint.max_regular) for v in tokens[:REGULAR_COUNT]]
    numbers += [EMPTY] * (REGULAR_COUNT - len(numbers))

    special = EMPTY
    if len(tokens) > REGULAR_COUNT:
        special = _bounded(tokens[REGULAR_COUNT], constraint.max_special) if constraint.has_special else EMPTY

    return TicketRow(numbers=tuple(numbers), special=special)


class LineParser:
    """Whole-line OCR path producing ticket rows without a grid."""

    def __init__(self, recognizer: TextRecognizer, settings: Optional[ScanSettings] = None):
        self.recognizer = recognizer
        self.settings = settings or ScanSettings()

    def read_lines(self, image: Image.Image) -> List[TextObservation]:
        """Recognize text lines and keep the ones that look numeric."""
        options = RecognitionOptions(
            min_text_height=self.settings.line_min_text_height,
            language_correction=False,
            line_mode=True,
        )
        lines = [
            TextObservation(text=obs.text.strip(), box=obs.box)
            for obs in self.recognizer.recognize(image, options)
            if is_numeric_line(obs.text)
        ]
        logger.debug(f"Line OCR kept {len(lines)} numeric line(s)")
        return lines

    def parse_rows(self, lines: List[TextObservation], constraint: GameConstraint) -> List[TicketRow]:
        """
        Group numeric lines into ticket rows.

        Args:
            lines: Output of read_lines
            constraint: Game bounds for range checks

        Returns:
            Rows in top-to-bottom order; rows without any token are dropped
        """
        rows = []
        for group in group_into_rows(lines, self.settings.line_row_tolerance):
            merged = " ".join(obs.text for obs in group)
            row = tokens_to_row(parse_tokens(merged), constraint)
            if row is not None:
                rows.append(row)
        logger.info(f"Line OCR produced {len(rows)} row(s) for {constraint.game_id}")
        return rows

    def read_rows(self, image: Image.Image, constraint: GameConstraint) -> List[TicketRow]:
        return self.parse_rows(self.read_lines(image), constraint)
