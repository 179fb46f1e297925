"""
Capture-region cropping.

The capture layer hands over a full frame plus the region the user framed.
How that region becomes the image fed to the pipeline is picked once per
capture through CropStrategy.
"""

from enum import Enum
from typing import Optional

from PIL import Image
from loguru import logger

from ticketscan.models import BoundingBox

DEFAULT_CROP_PADDING = 18
CENTER_FRACTION = 0.6


class CropStrategy(str, Enum):
    EXACT = "exact"
    PADDED = "padded"
    CENTER_PERCENTAGE = "center_percentage"


def _clamp_box(left: int, top: int, right: int, bottom: int, width: int, height: int):
    return max(0, left), max(0, top), min(width, right), min(height, bottom)


def crop_to_region(image: Image.Image, region: Optional[BoundingBox] = None,
                   strategy: CropStrategy = CropStrategy.EXACT,
                   padding: int = DEFAULT_CROP_PADDING) -> Image.Image:
    """
    Crop a captured frame according to the chosen strategy.

    Args:
        image: Full captured frame
        region: User-selected region, normalized with a top-left origin.
            Ignored by CENTER_PERCENTAGE; without it EXACT and PADDED return
            the frame unchanged.
        strategy: How to turn the region into a crop
        padding: Pixels added on every side for PADDED

    Returns:
        Cropped image (never larger than the input)
    """
    width, height = image.size
    strategy = CropStrategy(strategy)

    if strategy is CropStrategy.CENTER_PERCENTAGE:
        crop_w, crop_h = int(width * CENTER_FRACTION), int(height * CENTER_FRACTION)
        left, top = (width - crop_w) // 2, (height - crop_h) // 2
        box = (left, top, left + crop_w, top + crop_h)
    elif region is None:
        logger.debug(f"No crop region for {strategy.value}, using the full frame")
        return image
    else:
        left, top, right, bottom = region.to_pixels(width, height)
        if strategy is CropStrategy.PADDED:
            left, top, right, bottom = left - padding, top - padding, right + padding, bottom + padding
        box = _clamp_box(left, top, right, bottom, width, height)

    if box[2] <= box[0] or box[3] <= box[1]:
        logger.warning(f"Crop region {box} is empty after clamping, using the full frame")
        return image

    logger.debug(f"Cropping {width}x{height} frame to {box} ({strategy.value})")
    return image.crop(box)
