"""
Image preprocessing module for lottery ticket OCR enhancement.
Deterministic PIL filter chains for whole tickets and single number cells,
plus size-bounded JPEG encoding for cloud uploads.
"""

import io
from typing import List, Optional

import numpy as np
from PIL import Image, ImageEnhance, ImageFilter, ImageOps
from loguru import logger

from ticketscan.config import ScanSettings


class ImageNormalizer:
    """Recognition-friendly preprocessing for lottery ticket images."""

    def __init__(self, upscale_factor: int = 3):
        """
        Initialize the normalizer.

        Args:
            upscale_factor: Scale applied to single-cell crops before digit OCR
        """
        self.upscale_factor = upscale_factor

    def normalize(self, image: Image.Image) -> Image.Image:
        """
        Apply the full-ticket filter chain.

        Contrast boost (+50%) with a slight brightness lift, luminance
        sharpening, grayscale conversion and a light gaussian blur for
        sensor noise. Pure: the input image is never modified.

        Args:
            image: Source image in any PIL mode

        Returns:
            Grayscale ("L") image of the same size
        """
        enhanced = self._enhance_contrast(image, contrast=1.5, brightness=1.1)
        enhanced = self._sharpen_for_text(enhanced, percent=80)
        gray = enhanced.convert("L")
        return gray.filter(ImageFilter.GaussianBlur(radius=0.5))

    def digit_variants(self, cell_image: Image.Image) -> List[Image.Image]:
        """
        Produce the three variants tried, in order, for single-cell recognition.

        Args:
            cell_image: Cropped image of one number

        Returns:
            [upscaled + binarized, strong contrast + desaturated, inverted]
        """
        base = self.normalize(self._upscale_on_white(cell_image))

        binarized = self._apply_binarization(base)

        strong = self._enhance_contrast(base, contrast=2.0, brightness=1.15)
        strong = ImageEnhance.Color(strong).enhance(0.0)
        strong = self._sharpen_for_text(strong, percent=100).convert("L")

        inverted = ImageOps.invert(base)

        return [binarized, strong, inverted]

    def _upscale_on_white(self, image: Image.Image) -> Image.Image:
        """Upscale a small crop, flattening any transparency onto white."""
        width, height = image.size
        new_size = (max(1, width * self.upscale_factor), max(1, height * self.upscale_factor))

        if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
            rgba = image.convert("RGBA")
            background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
            image = Image.alpha_composite(background, rgba)

        return image.convert("RGB").resize(new_size, Image.Resampling.LANCZOS)

    def _enhance_contrast(self, image: Image.Image, contrast: float, brightness: float) -> Image.Image:
        """Enhance contrast for better text visibility."""
        if image.mode != "RGB":
            image = image.convert("RGB")
        enhanced = ImageEnhance.Contrast(image).enhance(contrast)
        return ImageEnhance.Brightness(enhanced).enhance(brightness)

    def _sharpen_for_text(self, image: Image.Image, percent: int) -> Image.Image:
        """Apply an unsharp mask tuned for small glyphs."""
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        return image.filter(ImageFilter.UnsharpMask(radius=1.0, percent=percent, threshold=1))

    def _apply_binarization(self, image: Image.Image) -> Image.Image:
        """Global Otsu threshold; ink goes to black, paper to white."""
        pixels = np.asarray(image.convert("L"), dtype=np.uint8)
        threshold = otsu_threshold(pixels)
        binary = np.where(pixels > threshold, 255, 0).astype(np.uint8)
        return Image.fromarray(binary)


def otsu_threshold(pixels: np.ndarray) -> int:
    """
    Compute Otsu's threshold for an 8-bit grayscale array.

    Args:
        pixels: uint8 array of any shape

    Returns:
        Threshold in [0, 255] maximizing between-class variance
    """
    histogram = np.bincount(pixels.ravel(), minlength=256).astype(np.float64)
    total = histogram.sum()
    if total == 0:
        return 127

    levels = np.arange(256, dtype=np.float64)
    weight_bg = np.cumsum(histogram)
    weight_fg = total - weight_bg
    cumulative_mean = np.cumsum(histogram * levels)
    global_mean = cumulative_mean[-1]

    with np.errstate(divide="ignore", invalid="ignore"):
        mean_bg = cumulative_mean / weight_bg
        mean_fg = (global_mean - cumulative_mean) / weight_fg
        between = weight_bg * weight_fg * (mean_bg - mean_fg) ** 2

    between = np.nan_to_num(between, nan=0.0, posinf=0.0, neginf=0.0)
    return int(np.argmax(between))


def encode_jpeg(image: Image.Image, quality: float) -> bytes:
    """Encode as JPEG; ``quality`` is on the 0-1 scale."""
    buffer = io.BytesIO()
    image.convert("RGB").save(buffer, format="JPEG", quality=max(1, int(round(quality * 100))))
    return buffer.getvalue()


def prepare_for_upload(image: Image.Image, settings: Optional[ScanSettings] = None) -> bytes:
    """
    Resize and re-encode an image so the cloud service accepts it.

    The image is shrunk (never enlarged) to fit within the configured
    bounds, then JPEG-encoded at decreasing quality until it fits the byte
    budget. If even the minimum quality is too large, the dimensions are
    halved and the quality ladder starts over.

    Args:
        image: Ticket image
        settings: Upload bounds; defaults when omitted

    Returns:
        JPEG bytes no larger than ``upload_max_kb``
    """
    settings = settings or ScanSettings()
    budget = settings.upload_max_kb * 1024

    resized = image.convert("RGB")
    resized.thumbnail((settings.upload_max_width, settings.upload_max_height), Image.Resampling.LANCZOS)

    while True:
        quality = settings.upload_initial_quality
        data = encode_jpeg(resized, quality)
        while len(data) > budget and quality - settings.upload_quality_step >= settings.upload_min_quality - 1e-9:
            quality -= settings.upload_quality_step
            data = encode_jpeg(resized, quality)

        if len(data) <= budget or min(resized.size) <= 16:
            logger.debug(f"Upload payload: {resized.size[0]}x{resized.size[1]}, "
                         f"quality {quality:.1f}, {len(data) // 1024} KB")
            return data

        logger.warning(f"Payload still {len(data) // 1024} KB at minimum quality, halving dimensions")
        resized = resized.resize((max(1, resized.size[0] // 2), max(1, resized.size[1] // 2)),
                                 Image.Resampling.LANCZOS)
