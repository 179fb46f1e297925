"""
Per-cell Number Recognition
===========================

Reads one number from one cropped cell. Small, noisy ticket glyphs fail
often on any single pass, so recognition retries along two axes: several
preprocessing variants of the cell, and several candidate strings per
variant. A value is accepted only if it fits the assumed game's range.

The grid fan-out runs every cell concurrently and blocks until all of them
finish before handing the ScanResult on.
"""

from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, List, Optional

from PIL import Image
from loguru import logger

from ticketscan.config import ScanSettings
from ticketscan.errors import RecognitionFailure
from ticketscan.image_preprocessor import ImageNormalizer
from ticketscan.models import GameConstraint, LotteryGrid, NumberPosition, ScanResult
from ticketscan.text_recognition import DIGIT_VOCABULARY, RecognitionOptions, TextRecognizer

# Latin letters commonly read in place of digits
OCR_CONFUSIONS: Dict[str, str] = {
    "O": "0",
    "Q": "0",
    "D": "0",
    "I": "1",
    "l": "1",
    "S": "5",
    "B": "8",
    "G": "6",
    "Z": "2",
}

MAX_REGULAR_DIGITS = 2


def correct_confusions(text: str) -> str:
    """Strip whitespace and replace letter/digit look-alikes."""
    return "".join(OCR_CONFUSIONS.get(ch, ch) for ch in text.strip())


def normalize_to_int(raw: str, is_special: bool = False) -> Optional[int]:
    """
    Turn raw OCR text into an integer, without range checks.

    Letters are corrected, non-digits dropped, and regular-number cells keep
    only the last two digits (regular numbers never exceed two digits).

    Args:
        raw: Text as returned by the recognizer
        is_special: Whether the cell holds the special number

    Returns:
        Parsed integer, or None if no digits remain
    """
    digits = "".join(ch for ch in correct_confusions(raw) if ch.isdigit())
    if not digits:
        return None
    if not is_special and len(digits) > MAX_REGULAR_DIGITS:
        digits = digits[-MAX_REGULAR_DIGITS:]
    return int(digits)


class CellRecognizer:
    """Recognizes single numbers from grid cells."""

    def __init__(self, recognizer: TextRecognizer, normalizer: Optional[ImageNormalizer] = None,
                 settings: Optional[ScanSettings] = None):
        self.recognizer = recognizer
        self.settings = settings or ScanSettings()
        self.normalizer = normalizer or ImageNormalizer(upscale_factor=self.settings.digit_upscale_factor)
        self.options = RecognitionOptions(
            min_text_height=self.settings.digit_min_text_height,
            language_correction=False,
            vocabulary_hint=DIGIT_VOCABULARY,
        )

    def _candidate_strings(self, variant: Image.Image) -> List[str]:
        observations = self.recognizer.recognize(variant, self.options)
        if not observations:
            return []
        limit = self.settings.alternate_candidates
        candidates = [observations[0].text]
        for observation in observations:
            candidates.extend(observation.candidates(limit))
        return candidates

    def read_value(self, text: str, position: NumberPosition, constraint: GameConstraint) -> Optional[int]:
        """Normalize ``text`` and return it only if the game accepts it for this cell."""
        value = normalize_to_int(text, position.is_special)
        if value is None or not constraint.accepts(value, position.is_special):
            return None
        return value

    def recognize(self, position: NumberPosition, constraint: GameConstraint) -> int:
        """
        Recognize the number in one cell.

        Args:
            position: Cell with its cropped image
            constraint: Currently assumed game bounds

        Returns:
            Accepted number

        Raises:
            RecognitionFailure: If no variant yields an in-range value
        """
        if position.image is None:
            raise RecognitionFailure(f"Cell r{position.row}c{position.column} has no image")

        for index, variant in enumerate(self.normalizer.digit_variants(position.image)):
            for text in self._candidate_strings(variant):
                value = self.read_value(text, position, constraint)
                if value is not None:
                    logger.debug(f"Cell r{position.row}c{position.column}: {value} "
                                 f"(variant {index}, raw '{text}')")
                    return value

        raise RecognitionFailure(f"All variants failed for cell r{position.row}c{position.column}")

    def _scan_position(self, position: NumberPosition, constraint: GameConstraint, result: ScanResult) -> None:
        try:
            result.record(position, self.recognize(position, constraint))
        except RecognitionFailure as e:
            logger.debug(str(e))
            result.record_failure(position)
        except Exception as e:
            logger.warning(f"Recognition error in cell r{position.row}c{position.column}: {e}")
            result.record_failure(position)

    def scan_grid(self, grid: LotteryGrid, constraint: GameConstraint) -> ScanResult:
        """
        Recognize every cell of the grid concurrently.

        Blocks until all cells are done. Per-cell failures are recorded as
        the unreadable sentinel and never raised.

        Args:
            grid: Detected grid
            constraint: Game bounds gating acceptance

        Returns:
            ScanResult with one entry per grid position
        """
        result = ScanResult()
        if not grid.positions:
            return result

        workers = max(1, min(self.settings.max_workers, len(grid.positions)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cell-ocr") as executor:
            futures = [
                executor.submit(self._scan_position, position, constraint, result)
                for position in grid.positions
            ]
            wait(futures)

        logger.info(f"Scanned {len(result)} cells for {constraint.game_id}: "
                    f"{len(result) - result.failure_count} read, {result.failure_count} unreadable")
        return result
