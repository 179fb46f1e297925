"""
Text Recognition Adapter

The pipeline treats text recognition as a black box: give it an image, get
back recognized strings with normalized bounding boxes. TextRecognizer is
that contract; TesseractTextRecognizer is the default implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import pytesseract
from PIL import Image
from loguru import logger

from ticketscan.models import BoundingBox, TextObservation

DIGIT_VOCABULARY: Tuple[str, ...] = tuple(str(n) for n in range(100))

# Page segmentation modes: 11 = sparse text, 7 = single line,
# 8 = single word, 13 = raw line, 6 = uniform block.
SPARSE_TEXT_PSM = 11
SINGLE_LINE_PSM = 7
ALTERNATE_PSMS = (8, 13, 6)


@dataclass(frozen=True)
class RecognitionOptions:
    """Per-request recognition options."""
    min_text_height: float = 0.01
    language_correction: bool = False
    vocabulary_hint: Optional[Sequence[str]] = None
    line_mode: bool = False

    @property
    def digits_only(self) -> bool:
        return bool(self.vocabulary_hint) and all(word.isdigit() for word in self.vocabulary_hint)


class TextRecognizer(ABC):
    """
    Abstract base class for text recognition services.

    Implementations return observations with boxes normalized to [0, 1]
    (top-left origin) and may offer alternate candidate strings per box.
    """

    @abstractmethod
    def recognize(self, image: Image.Image, options: RecognitionOptions) -> List[TextObservation]:
        """
        Recognize text in an image.

        Args:
            image: PIL image to read
            options: Minimum text height, language correction, vocabulary hint

        Returns:
            Observations in no particular order
        """

    @property
    @abstractmethod
    def name(self) -> str:
        """Engine identifier (e.g. "tesseract")."""


class TesseractTextRecognizer(TextRecognizer):
    """Text recognition backed by the Tesseract engine via pytesseract."""

    def __init__(self, lang: str = "eng"):
        self.lang = lang

    @property
    def name(self) -> str:
        return "tesseract"

    def _build_config(self, psm: int, options: RecognitionOptions) -> str:
        parts = [f"--oem 3 --psm {psm}"]
        if options.digits_only:
            parts.append("-c tessedit_char_whitelist=0123456789")
        if not options.language_correction:
            parts.append("-c load_system_dawg=0 -c load_freq_dawg=0")
        return " ".join(parts)

    def recognize(self, image: Image.Image, options: RecognitionOptions) -> List[TextObservation]:
        width, height = image.size
        if width == 0 or height == 0:
            return []

        psm = SINGLE_LINE_PSM if options.digits_only else SPARSE_TEXT_PSM
        data = pytesseract.image_to_data(
            image,
            lang=self.lang,
            config=self._build_config(psm, options),
            output_type=pytesseract.Output.DICT,
        )

        words = self._collect_words(data, width, height, options.min_text_height)
        if options.line_mode:
            observations = self._merge_lines(words)
        else:
            observations = [TextObservation(text=text, box=box) for text, box, _ in words]

        if options.digits_only:
            observations = self._attach_alternates(image, observations, options)

        logger.debug(f"Tesseract returned {len(observations)} observations (psm {psm})")
        return observations

    def _collect_words(self, data: Dict[str, list], width: int, height: int,
                       min_text_height: float) -> List[Tuple[str, BoundingBox, Tuple[int, int, int]]]:
        words = []
        for i, raw in enumerate(data.get("text", [])):
            text = (raw or "").strip()
            if not text:
                continue
            box = BoundingBox(
                x=data["left"][i] / width,
                y=data["top"][i] / height,
                width=data["width"][i] / width,
                height=data["height"][i] / height,
            )
            if box.height < min_text_height:
                continue
            line_key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
            words.append((text, box, line_key))
        return words

    def _merge_lines(self, words) -> List[TextObservation]:
        """Join words that Tesseract placed on the same line."""
        lines: Dict[Tuple[int, int, int], Tuple[List[str], BoundingBox]] = {}
        for text, box, key in words:
            if key in lines:
                texts, merged = lines[key]
                texts.append(text)
                lines[key] = (texts, merged.union(box))
            else:
                lines[key] = ([text], box)
        return [TextObservation(text=" ".join(texts), box=box) for texts, box in lines.values()]

    def _attach_alternates(self, image: Image.Image, observations: List[TextObservation],
                           options: RecognitionOptions) -> List[TextObservation]:
        """Gather extra candidate strings by re-reading with other segmentation modes."""
        alternates = []
        for psm in ALTERNATE_PSMS:
            text = pytesseract.image_to_string(
                image, lang=self.lang, config=self._build_config(psm, options)
            ).strip()
            if text and text not in alternates:
                alternates.append(text)

        if not observations:
            if not alternates:
                return []
            full_box = BoundingBox(x=0.0, y=0.0, width=1.0, height=1.0)
            return [TextObservation(text=alternates[0], box=full_box, alternates=tuple(alternates[1:]))]

        first = observations[0]
        extra = tuple(a for a in alternates if a != first.text)
        return [TextObservation(text=first.text, box=first.box, alternates=extra), *observations[1:]]


def create_text_recognizer(lang: str = "eng") -> TextRecognizer:
    """
    Create the default text recognizer.

    Returns:
        TesseractTextRecognizer instance
    """
    return TesseractTextRecognizer(lang=lang)
