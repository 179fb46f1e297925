"""
Core data structures for ticket number extraction.

Coordinates are normalized to the [0, 1] range with a top-left origin,
so sorting by ``mid_y`` ascending walks the ticket from top to bottom.
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from PIL import Image

# Sentinels used instead of raising, so consumers can tell
# "OCR tried and failed" apart from "nothing was there".
UNREADABLE = -1
EMPTY = 0

REGULAR_COUNT = 5


@dataclass(frozen=True)
class BoundingBox:
    """Normalized rectangle (top-left origin)."""
    x: float
    y: float
    width: float
    height: float

    @property
    def min_x(self) -> float:
        return self.x

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def min_y(self) -> float:
        return self.y

    @property
    def max_y(self) -> float:
        return self.y + self.height

    @property
    def mid_x(self) -> float:
        return self.x + self.width / 2

    @property
    def mid_y(self) -> float:
        return self.y + self.height / 2

    @classmethod
    def from_center(cls, cx: float, cy: float, width: float = 0.0, height: float = 0.0) -> "BoundingBox":
        return cls(x=cx - width / 2, y=cy - height / 2, width=width, height=height)

    def union(self, other: "BoundingBox") -> "BoundingBox":
        left = min(self.min_x, other.min_x)
        top = min(self.min_y, other.min_y)
        right = max(self.max_x, other.max_x)
        bottom = max(self.max_y, other.max_y)
        return BoundingBox(x=left, y=top, width=right - left, height=bottom - top)

    def to_pixels(self, image_width: int, image_height: int) -> Tuple[int, int, int, int]:
        """Convert to a PIL crop box ``(left, top, right, bottom)`` in pixels."""
        return (
            int(round(self.min_x * image_width)),
            int(round(self.min_y * image_height)),
            int(round(self.max_x * image_width)),
            int(round(self.max_y * image_height)),
        )


@dataclass(frozen=True)
class TextObservation:
    """One piece of text returned by the text-recognition service."""
    text: str
    box: BoundingBox
    alternates: Tuple[str, ...] = ()

    def candidates(self, limit: int) -> List[str]:
        """Top candidate followed by alternates, capped at ``limit`` strings."""
        return [self.text, *self.alternates][:limit]


@dataclass(frozen=True)
class TicketRow:
    """
    One play on the ticket: exactly five regular numbers plus a special number.

    Entries are either a real number, ``UNREADABLE`` (-1) or ``EMPTY`` (0).
    """
    numbers: Tuple[int, ...]
    special: int = EMPTY

    def __post_init__(self):
        numbers = tuple(int(n) for n in self.numbers)[:REGULAR_COUNT]
        if len(numbers) < REGULAR_COUNT:
            numbers = numbers + (EMPTY,) * (REGULAR_COUNT - len(numbers))
        object.__setattr__(self, "numbers", numbers)
        object.__setattr__(self, "special", EMPTY if self.special is None else int(self.special))

    @property
    def is_empty(self) -> bool:
        return all(n == EMPTY for n in self.numbers) and self.special == EMPTY

    @property
    def needs_review(self) -> bool:
        return any(n <= 0 for n in self.numbers) or self.special <= 0

    def to_dict(self) -> Dict:
        return {"numbers": list(self.numbers), "special": self.special}


@dataclass(frozen=True)
class NumberPosition:
    """
    A single grid cell. Identity is ``(row, column, is_special)`` only;
    the cropped image and bounds ride along without affecting equality.
    """
    row: int
    column: int
    is_special: bool
    image: Optional[Image.Image] = field(default=None, compare=False, repr=False)
    bounds: Optional[BoundingBox] = field(default=None, compare=False)


@dataclass(frozen=True)
class LotteryGrid:
    row_count: int
    column_count: int
    positions: Tuple[NumberPosition, ...]

    def positions_in_row(self, row: int) -> List[NumberPosition]:
        return sorted((p for p in self.positions if p.row == row), key=lambda p: p.column)


@dataclass(frozen=True)
class GameConstraint:
    """Static catalog entry. ``max_special == 0`` means the game has no special number."""
    game_id: str
    max_regular: int
    max_special: int

    @property
    def has_special(self) -> bool:
        return self.max_special > 0

    def accepts(self, value: int, is_special: bool) -> bool:
        upper = self.max_special if is_special else self.max_regular
        return 1 <= value <= upper


class ScanResult:
    """
    Per-cell recognition results for one scan attempt.

    Written concurrently by the cell fan-out; every mutation goes through
    a single lock.
    """

    def __init__(self):
        self._values: Dict[NumberPosition, int] = {}
        self._lock = threading.Lock()

    def record(self, position: NumberPosition, value: int) -> None:
        with self._lock:
            self._values[position] = value

    def record_failure(self, position: NumberPosition) -> None:
        self.record(position, UNREADABLE)

    def get(self, position: NumberPosition, default: Optional[int] = None) -> Optional[int]:
        with self._lock:
            return self._values.get(position, default)

    def items(self) -> List[Tuple[NumberPosition, int]]:
        with self._lock:
            return list(self._values.items())

    @property
    def failure_count(self) -> int:
        with self._lock:
            return sum(1 for v in self._values.values() if v == UNREADABLE)

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def __contains__(self, position: NumberPosition) -> bool:
        with self._lock:
            return position in self._values

    def __iter__(self) -> Iterator[NumberPosition]:
        return iter([p for p, _ in self.items()])
