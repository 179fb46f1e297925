"""
Extraction Orchestrator
=======================

Sequences the extraction tiers for one ticket image:

    LocalGrid -> (yield check) -> CloudNoHint -> CloudWithHint (optional) -> Done | Exhausted

The local tier runs segmentation and the per-cell fan-out under an assumed
game. When it recovers enough numbers the game is re-inferred from them and,
if it changed, the cells are scanned again under the new bounds. Otherwise
the cloud tiers run one after another, never concurrently. Tier errors fall
through to the next tier; only exhaustion of every tier reaches the caller.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from PIL import Image
from loguru import logger

from ticketscan.cell_recognizer import CellRecognizer
from ticketscan.cell_segmenter import CellSegmenter
from ticketscan.cloud_vision import CloudVisionClient, create_cloud_vision_client
from ticketscan.config import ScanSettings, load_settings
from ticketscan.errors import (ConfigurationError, ExtractionExhausted, NetworkError, ParseError,
                               RefusalError, ScanCancelled, SegmentationError)
from ticketscan.game_catalog import GameCatalog, create_game_catalog
from ticketscan.image_preprocessor import ImageNormalizer
from ticketscan.line_parser import LineParser
from ticketscan.models import GameConstraint, TicketRow
from ticketscan.row_reconstructor import drop_empty_rows, reconstruct, serialize_rows
from ticketscan.text_recognition import TextRecognizer, create_text_recognizer

CLOUD_ERRORS = (NetworkError, RefusalError, ParseError)


class ExtractionTier(str, Enum):
    LOCAL_GRID = "local_grid"
    LOCAL_LINES = "local_lines"
    CLOUD_NO_HINT = "cloud_no_hint"
    CLOUD_WITH_HINT = "cloud_with_hint"


class LocalStrategy(str, Enum):
    """Which local path runs first: per-cell grid or whole-line OCR."""
    GRID = "grid"
    LINES = "lines"


class CancellationToken:
    """Caller-visible signal to stop issuing network calls for a scan."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ScanCancelled("Scan was cancelled")


@dataclass
class ExtractionResult:
    rows: List[TicketRow]
    game_id: str
    tier: ExtractionTier
    row_count_hint: Optional[int] = None
    source_tag: str = "OCR"

    @property
    def canonical(self) -> str:
        return serialize_rows(self.rows, self.source_tag)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": [row.to_dict() for row in self.rows],
            "canonical": self.canonical,
            "game_id": self.game_id,
            "tier": self.tier.value,
            "row_count_hint": self.row_count_hint,
        }


def count_yield(rows: List[TicketRow]):
    """Number of recovered (positive) regular and special values."""
    regular = sum(1 for row in rows for n in row.numbers if n > 0)
    special = sum(1 for row in rows if row.special > 0)
    return regular, special


class ExtractionOrchestrator:
    """Runs the local and cloud tiers for a ticket image."""

    def __init__(self, segmenter: CellSegmenter, cell_recognizer: CellRecognizer,
                 line_parser: LineParser, catalog: GameCatalog,
                 cloud: Optional[CloudVisionClient] = None,
                 normalizer: Optional[ImageNormalizer] = None,
                 settings: Optional[ScanSettings] = None):
        """
        Args:
            segmenter: Grid detection for the local tier
            cell_recognizer: Per-cell recognition and fan-out
            line_parser: Whole-line OCR path
            catalog: Game table used for constraints and inference
            cloud: Cloud vision client; None disables the cloud tiers
            normalizer: Whole-image preprocessing before the local tier
            settings: Yield thresholds and source tag
        """
        self.segmenter = segmenter
        self.cell_recognizer = cell_recognizer
        self.line_parser = line_parser
        self.catalog = catalog
        self.cloud = cloud
        self.settings = settings or ScanSettings()
        self.normalizer = normalizer or ImageNormalizer(upscale_factor=self.settings.digit_upscale_factor)

    @property
    def cloud_enabled(self) -> bool:
        return self.cloud is not None

    def has_sufficient_yield(self, rows: List[TicketRow]) -> bool:
        regular, special = count_yield(rows)
        return regular >= self.settings.min_regular_yield or special >= self.settings.min_special_yield

    def _result(self, rows: List[TicketRow], game_id: str, tier: ExtractionTier,
                row_count_hint: Optional[int] = None) -> ExtractionResult:
        return ExtractionResult(
            rows=rows,
            game_id=game_id,
            tier=tier,
            row_count_hint=row_count_hint,
            source_tag=self.settings.source_tag,
        )

    def _prepare_local(self, image: Image.Image, strategy: LocalStrategy) -> Callable[[GameConstraint], List[TicketRow]]:
        """
        Run the constraint-independent part of the local tier once.

        Returns a function that produces rows under a given constraint, so a
        re-scan after game inference reuses the detected grid or lines.

        Raises:
            SegmentationError: If the grid could not be formed
        """
        normalized = self.normalizer.normalize(image)

        if strategy is LocalStrategy.LINES:
            lines = self.line_parser.read_lines(normalized)
            return lambda constraint: self.line_parser.parse_rows(lines, constraint)

        grid = self.segmenter.segment(normalized)
        return lambda constraint: drop_empty_rows(
            reconstruct(grid, self.cell_recognizer.scan_grid(grid, constraint))
        )

    def run_local_tier(self, image: Image.Image, game_id: Optional[str] = None,
                       strategy: LocalStrategy = LocalStrategy.GRID,
                       cancel_token: Optional[CancellationToken] = None):
        """
        Run the local tier including the yield check and game re-detection.

        Args:
            image: Ticket image
            game_id: Game to pin; when omitted the default game is assumed and
                re-inferred from the recovered numbers
            strategy: Grid or whole-line path
            cancel_token: Checked before each recognition pass

        Returns:
            (ExtractionResult or None when the yield is insufficient, rows recovered)

        Raises:
            SegmentationError: If the grid could not be formed
            ScanCancelled: If cancellation was observed
        """
        cancel_token = cancel_token or CancellationToken()
        strategy = LocalStrategy(strategy)
        tier = ExtractionTier.LOCAL_LINES if strategy is LocalStrategy.LINES else ExtractionTier.LOCAL_GRID
        assumed = self.catalog.constraint_for(game_id or self.settings.default_game_id)

        scan = self._prepare_local(image, strategy)
        cancel_token.raise_if_cancelled()
        rows = scan(assumed)

        regular, special = count_yield(rows)
        if not self.has_sufficient_yield(rows):
            logger.info(f"{tier.value}: insufficient yield ({regular} regular, {special} special)")
            return None, rows

        if game_id is not None:
            logger.info(f"{tier.value}: {len(rows)} row(s) for pinned game {assumed.game_id}")
            return self._result(rows, assumed.game_id, tier), rows

        inferred = self.catalog.infer_game_from_rows(rows)
        if inferred != assumed.game_id:
            logger.info(f"Inferred {inferred} differs from assumed {assumed.game_id}, re-scanning")
            cancel_token.raise_if_cancelled()
            rows = scan(self.catalog.constraint_for(inferred))

        logger.info(f"{tier.value}: {len(rows)} row(s), game {inferred}")
        return self._result(rows, inferred, tier), rows

    def _cloud_game_id(self, rows: List[TicketRow], game_id: Optional[str]) -> str:
        if game_id is not None:
            return self.catalog.constraint_for(game_id).game_id
        return self.catalog.infer_game_from_rows(rows)

    def _run_cloud_tier(self, image: Image.Image, tier: ExtractionTier, game_id: Optional[str],
                        expected_row_count: Optional[int] = None) -> ExtractionResult:
        logger.info(f"Entering {tier.value}")
        rows = drop_empty_rows(self.cloud.extract(image, expected_row_count=expected_row_count))
        if not rows:
            raise ParseError("Cloud response contained no rows")
        return self._result(rows, self._cloud_game_id(rows, game_id), tier, expected_row_count)

    def extract(self, image: Image.Image, game_id: Optional[str] = None,
                expected_row_count: Optional[int] = None,
                cancel_token: Optional[CancellationToken] = None,
                local_strategy: LocalStrategy = LocalStrategy.GRID) -> ExtractionResult:
        """
        Extract ticket rows, falling through the tiers until one succeeds.

        Args:
            image: Ticket image (already cropped to the ticket)
            game_id: Game to pin instead of inferring it
            expected_row_count: Row count obtained beforehand; enables the
                CloudWithHint tier after CloudNoHint
            cancel_token: Stops further network calls once cancelled
            local_strategy: Which local path to run first

        Returns:
            ExtractionResult from the first successful tier

        Raises:
            ExtractionExhausted: If every tier failed
            ScanCancelled: If cancellation was observed before a network call
        """
        cancel_token = cancel_token or CancellationToken()
        last_error: Optional[Exception] = None
        partial_rows: List[TicketRow] = []

        cancel_token.raise_if_cancelled()
        try:
            result, partial_rows = self.run_local_tier(image, game_id, local_strategy, cancel_token)
            if result is not None:
                return result
        except SegmentationError as e:
            logger.warning(f"Local tier failed: {e}")
            last_error = e

        if not self.cloud_enabled:
            logger.error("Local tier insufficient and cloud tiers are not configured")
            raise ExtractionExhausted("Local tier insufficient and no cloud client configured",
                                      last_error=last_error, partial_rows=partial_rows) from last_error

        cloud_tiers = [(ExtractionTier.CLOUD_NO_HINT, None)]
        if expected_row_count is not None:
            cloud_tiers.append((ExtractionTier.CLOUD_WITH_HINT, expected_row_count))

        for tier, hint in cloud_tiers:
            cancel_token.raise_if_cancelled()
            try:
                return self._run_cloud_tier(image, tier, game_id, hint)
            except CLOUD_ERRORS as e:
                logger.warning(f"{tier.value} failed: {type(e).__name__}: {e}")
                last_error = e

        logger.error(f"All extraction tiers failed, last error: {last_error}")
        raise ExtractionExhausted(f"All extraction tiers failed: {last_error}",
                                  last_error=last_error, partial_rows=partial_rows) from last_error

    def extract_with_row_count(self, image: Image.Image, game_id: Optional[str] = None,
                               cancel_token: Optional[CancellationToken] = None) -> ExtractionResult:
        """
        Ask the cloud service for the row count, then extract with that hint.

        A failed row-count call is not fatal: extraction proceeds without a hint.

        Raises:
            ConfigurationError: If no cloud client is configured
            ExtractionExhausted: If the extraction call failed
            ScanCancelled: If cancellation was observed before a network call
        """
        if not self.cloud_enabled:
            raise ConfigurationError("Row-count extraction requires a configured cloud client")
        cancel_token = cancel_token or CancellationToken()

        cancel_token.raise_if_cancelled()
        try:
            row_count = self.cloud.detect_row_count(image)
        except CLOUD_ERRORS as e:
            logger.warning(f"Row count detection failed, continuing without a hint: {e}")
            row_count = None

        tier = ExtractionTier.CLOUD_WITH_HINT if row_count is not None else ExtractionTier.CLOUD_NO_HINT
        cancel_token.raise_if_cancelled()
        try:
            return self._run_cloud_tier(image, tier, game_id, row_count)
        except CLOUD_ERRORS as e:
            logger.error(f"{tier.value} failed: {e}")
            raise ExtractionExhausted(f"Cloud extraction failed: {e}", last_error=e) from e


def create_orchestrator(settings: Optional[ScanSettings] = None,
                        recognizer: Optional[TextRecognizer] = None,
                        cloud: Optional[CloudVisionClient] = None,
                        enable_cloud: bool = True) -> ExtractionOrchestrator:
    """
    Build an orchestrator with all components wired from settings.

    The cloud tiers are optional: without an API key the orchestrator runs
    the local tier only.

    Args:
        settings: Pipeline settings; loaded from config/config.ini when omitted
        recognizer: Text recognizer; Tesseract when omitted
        cloud: Cloud client to use instead of one built from the environment
        enable_cloud: Set False to skip the cloud tiers entirely

    Returns:
        ExtractionOrchestrator instance
    """
    settings = settings or load_settings()
    recognizer = recognizer or create_text_recognizer(settings.tesseract_lang)
    normalizer = ImageNormalizer(upscale_factor=settings.digit_upscale_factor)

    if cloud is None and enable_cloud:
        try:
            cloud = create_cloud_vision_client(settings)
        except ConfigurationError as e:
            logger.warning(f"Cloud vision tiers disabled: {e}")
            cloud = None
    elif not enable_cloud:
        cloud = None

    return ExtractionOrchestrator(
        segmenter=CellSegmenter(recognizer, settings),
        cell_recognizer=CellRecognizer(recognizer, normalizer, settings),
        line_parser=LineParser(recognizer, settings),
        catalog=create_game_catalog(settings),
        cloud=cloud,
        normalizer=normalizer,
        settings=settings,
    )
