"""
Cell Segmentation
=================

Turns raw text-recognition output for a whole ticket into a grid of number
cells: keep digit-only tokens in 1-99, group them into rows, number the
columns left to right and crop a padded sub-image for each cell.
"""

import re
from typing import List

from PIL import Image
from loguru import logger

from ticketscan.config import ScanSettings
from ticketscan.errors import SegmentationError
from ticketscan.models import REGULAR_COUNT, BoundingBox, LotteryGrid, NumberPosition, TextObservation
from ticketscan.row_grouping import group_into_rows
from ticketscan.text_recognition import RecognitionOptions, TextRecognizer

DIGITS_ONLY = re.compile(r"^[0-9]+$")

MIN_GRID_ROWS = 2
# Five regular cells followed by one special cell
MAX_CELLS_PER_ROW = REGULAR_COUNT + 1


def is_lottery_number(text: str) -> bool:
    """Loose numeric-token filter: digits only, value within 1-99."""
    text = text.strip()
    if not DIGITS_ONLY.match(text):
        return False
    return 1 <= int(text) <= 99


def crop_cell(image: Image.Image, box: BoundingBox, padding: int) -> Image.Image:
    """
    Crop a cell with ``padding`` pixels on every side, clamped to the image.

    Args:
        image: Image the box is normalized against
        box: Normalized bounding box of the number
        padding: Extra pixels so glyph ascenders/descenders are not clipped

    Returns:
        Cropped PIL image
    """
    width, height = image.size
    left, top, right, bottom = box.to_pixels(width, height)
    crop_box = (
        max(0, left - padding),
        max(0, top - padding),
        min(width, right + padding),
        min(height, bottom + padding),
    )
    return image.crop(crop_box)


class CellSegmenter:
    """Detects the row/column grid of lottery numbers on a ticket."""

    def __init__(self, recognizer: TextRecognizer, settings: ScanSettings = None):
        self.recognizer = recognizer
        self.settings = settings or ScanSettings()

    def find_number_candidates(self, image: Image.Image) -> List[TextObservation]:
        """Run text recognition and keep tokens that look like lottery numbers."""
        options = RecognitionOptions(
            min_text_height=self.settings.grid_min_text_height,
            language_correction=False,
        )
        observations = self.recognizer.recognize(image, options)
        candidates = [
            TextObservation(text=obs.text.strip(), box=obs.box, alternates=obs.alternates)
            for obs in observations
            if is_lottery_number(obs.text)
        ]
        logger.debug(f"Kept {len(candidates)} of {len(observations)} observations as number candidates")
        return candidates

    def segment(self, image: Image.Image) -> LotteryGrid:
        """
        Build the number grid for a (normalized) ticket image.

        Args:
            image: Preprocessed ticket image

        Returns:
            LotteryGrid with one NumberPosition per detected number

        Raises:
            SegmentationError: If fewer than two rows of numbers were found
        """
        candidates = self.find_number_candidates(image)
        rows = group_into_rows(candidates, self.settings.grid_row_tolerance)

        if len(rows) < MIN_GRID_ROWS:
            raise SegmentationError(
                f"Found {len(rows)} row(s) of numbers, need at least {MIN_GRID_ROWS}"
            )

        positions = []
        for row_index, row in enumerate(rows):
            if len(row) > MAX_CELLS_PER_ROW:
                logger.debug(f"Row {row_index}: ignoring {len(row) - MAX_CELLS_PER_ROW} trailing cell(s)")
            for column, observation in enumerate(row[:MAX_CELLS_PER_ROW]):
                positions.append(NumberPosition(
                    row=row_index,
                    column=column,
                    is_special=column >= REGULAR_COUNT,
                    image=crop_cell(image, observation.box, self.settings.cell_padding_px),
                    bounds=observation.box,
                ))

        grid = LotteryGrid(row_count=len(rows), column_count=MAX_CELLS_PER_ROW, positions=tuple(positions))
        logger.info(f"Grid detected: {grid.row_count} rows, {len(grid.positions)} cells")
        return grid
