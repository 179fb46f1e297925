"""
API endpoints for ticket number extraction.
"""

import io
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from PIL import Image, ImageOps, UnidentifiedImageError
from loguru import logger
from pydantic import BaseModel

from ticketscan import __version__
from ticketscan.crop import CropStrategy, crop_to_region
from ticketscan.errors import ConfigurationError, ExtractionExhausted, NetworkError, ParseError
from ticketscan.models import BoundingBox, TicketRow
from ticketscan.orchestrator import ExtractionOrchestrator, ExtractionResult, LocalStrategy, create_orchestrator
from ticketscan.row_reconstructor import parse_canonical

MAX_UPLOAD_BYTES = 25 * 1024 * 1024  # 25MB, mobile photos

ticket_router = APIRouter(prefix="/api/v1/ticket", tags=["ticket"])


@lru_cache(maxsize=1)
def get_orchestrator() -> ExtractionOrchestrator:
    """Shared orchestrator, built on first use."""
    return create_orchestrator()


class ParseRequest(BaseModel):
    canonical: str
    game_id: Optional[str] = None


def _rows_payload(rows: List[TicketRow]) -> List[Dict[str, Any]]:
    return [row.to_dict() for row in rows]


def _check_game_id(orchestrator: ExtractionOrchestrator, game_id: Optional[str]) -> None:
    if game_id is not None and game_id not in orchestrator.catalog.constraints:
        raise HTTPException(status_code=400, detail=f"Unknown game '{game_id}'")


def _crop_region(crop_x: Optional[float], crop_y: Optional[float],
                 crop_width: Optional[float], crop_height: Optional[float]) -> Optional[BoundingBox]:
    """Build the normalized crop region from form fields (all four or none)."""
    fields = [crop_x, crop_y, crop_width, crop_height]
    if all(v is None for v in fields):
        return None
    if any(v is None for v in fields):
        raise HTTPException(status_code=400,
                            detail="Crop region needs crop_x, crop_y, crop_width and crop_height")
    if not (0 <= crop_x <= 1 and 0 <= crop_y <= 1 and 0 < crop_width <= 1 and 0 < crop_height <= 1):
        raise HTTPException(status_code=400, detail="Crop region must be normalized to the 0-1 range")
    return BoundingBox(x=crop_x, y=crop_y, width=crop_width, height=crop_height)


async def _read_image(file: UploadFile) -> Image.Image:
    """Validate an upload and decode it into an upright RGB image."""
    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="File must be an image (JPG, PNG, etc.)")

    image_data = await file.read()
    if len(image_data) == 0:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(image_data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File size too large. Maximum size is 25MB")

    logger.info(f"Processing ticket image: {file.filename}, size: {len(image_data)} bytes")
    try:
        image = Image.open(io.BytesIO(image_data))
        image = ImageOps.exif_transpose(image)
        return image.convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Could not decode uploaded image {file.filename}: {e}")
        raise HTTPException(status_code=400, detail="Uploaded file is not a readable image")


def _extraction_response(orchestrator: ExtractionOrchestrator, result: ExtractionResult) -> Dict[str, Any]:
    constraint = orchestrator.catalog.constraint_for(result.game_id)
    return {
        "success": True,
        "rows": _rows_payload(result.rows),
        "canonical": result.canonical,
        "game_id": result.game_id,
        "tier": result.tier.value,
        "row_count_hint": result.row_count_hint,
        "validation": orchestrator.catalog.validate_rows(result.rows, constraint),
    }


def _exhausted_error(e: ExtractionExhausted) -> HTTPException:
    status_code = 503 if isinstance(e.last_error, NetworkError) else 422
    return HTTPException(
        status_code=status_code,
        detail={
            "error": "Could not extract ticket numbers",
            "details": str(e.last_error) if e.last_error else str(e),
            "partial_rows": _rows_payload(e.partial_rows),
        },
    )


@ticket_router.post("/scan")
async def scan_ticket(file: UploadFile = File(...),
                      crop_x: Optional[float] = Form(None),
                      crop_y: Optional[float] = Form(None),
                      crop_width: Optional[float] = Form(None),
                      crop_height: Optional[float] = Form(None),
                      strategy: CropStrategy = Form(CropStrategy.EXACT),
                      game_id: Optional[str] = Form(None),
                      local_strategy: LocalStrategy = Form(LocalStrategy.GRID),
                      orchestrator: ExtractionOrchestrator = Depends(get_orchestrator)):
    """
    Extract the number rows from an uploaded ticket image.

    Runs the local tier first and falls back to the cloud vision service.

    Args:
        file: Uploaded ticket image
        crop_x, crop_y, crop_width, crop_height: Optional normalized capture region
        strategy: How the capture region is applied
        game_id: Game to pin instead of inferring it
        local_strategy: Grid or whole-line local OCR

    Returns:
        Rows, canonical string, game, tier and per-row validation
    """
    region = _crop_region(crop_x, crop_y, crop_width, crop_height)
    _check_game_id(orchestrator, game_id)
    image = await _read_image(file)

    try:
        image = crop_to_region(image, region, strategy)
        result = await run_in_threadpool(orchestrator.extract, image, game_id=game_id,
                                         local_strategy=local_strategy)
    except ExtractionExhausted as e:
        logger.error(f"Ticket extraction exhausted for {file.filename}: {e}")
        raise _exhausted_error(e)
    except Exception as e:
        logger.error(f"Error in ticket scan endpoint: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error during ticket scan: {str(e)}")

    logger.info(f"Ticket scan completed: {len(result.rows)} row(s) via {result.tier.value}")
    return _extraction_response(orchestrator, result)


@ticket_router.post("/scan-with-row-count")
async def scan_ticket_with_row_count(file: UploadFile = File(...),
                                     game_id: Optional[str] = Form(None),
                                     orchestrator: ExtractionOrchestrator = Depends(get_orchestrator)):
    """
    Ask the cloud service for the number of plays, then extract exactly that many.
    """
    _check_game_id(orchestrator, game_id)
    if not orchestrator.cloud_enabled:
        raise HTTPException(status_code=503, detail="Cloud vision service is not configured")
    image = await _read_image(file)

    try:
        result = await run_in_threadpool(orchestrator.extract_with_row_count, image, game_id=game_id)
    except ExtractionExhausted as e:
        logger.error(f"Row-count extraction exhausted for {file.filename}: {e}")
        raise _exhausted_error(e)
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Error in row-count scan endpoint: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error during ticket scan: {str(e)}")

    return _extraction_response(orchestrator, result)


@ticket_router.post("/parse")
async def parse_ticket_string(body: ParseRequest,
                              orchestrator: ExtractionOrchestrator = Depends(get_orchestrator)):
    """
    Parse a canonical ``Lottery: ... Ticket:<tag>`` string back into rows.
    """
    _check_game_id(orchestrator, body.game_id)
    try:
        rows, tag = parse_canonical(body.canonical)
    except ParseError as e:
        raise HTTPException(status_code=422, detail=str(e))

    game_id = body.game_id or orchestrator.catalog.infer_game_from_rows(rows)
    return {
        "success": True,
        "rows": _rows_payload(rows),
        "source_tag": tag,
        "game_id": game_id,
        "validation": orchestrator.catalog.validate_rows(rows, orchestrator.catalog.constraint_for(game_id)),
    }


@ticket_router.get("/games")
async def list_games(orchestrator: ExtractionOrchestrator = Depends(get_orchestrator)):
    """Supported games in inference priority order."""
    return {
        "default_game_id": orchestrator.catalog.default_game_id,
        "games": [
            {
                "game_id": game.game_id,
                "max_regular": game.max_regular,
                "max_special": game.max_special,
                "has_special": game.has_special,
            }
            for game in orchestrator.catalog.games()
        ],
    }


@ticket_router.get("/health")
async def health_check(orchestrator: ExtractionOrchestrator = Depends(get_orchestrator)):
    return {"status": "healthy", "cloud_configured": orchestrator.cloud_enabled}


# --- Application Initialization ---
logger.info("Initializing FastAPI application...")
app = FastAPI(
    title="TicketScan API",
    description="Extracts lottery ticket number rows from photos.",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

app.include_router(ticket_router)
