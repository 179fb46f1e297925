import pytest
from PIL import Image

from ticketscan.crop import CropStrategy, crop_to_region
from ticketscan.models import BoundingBox


@pytest.fixture()
def frame():
    return Image.new("RGB", (1000, 500), "white")


def test_exact_crops_to_region(frame):
    cropped = crop_to_region(frame, BoundingBox(0.1, 0.2, 0.5, 0.4), CropStrategy.EXACT)
    assert cropped.size == (500, 200)


def test_padded_expands_and_clamps(frame):
    inner = crop_to_region(frame, BoundingBox(0.1, 0.2, 0.5, 0.4), CropStrategy.PADDED, padding=18)
    edge = crop_to_region(frame, BoundingBox(0.0, 0.0, 0.5, 0.4), CropStrategy.PADDED, padding=18)

    assert inner.size == (536, 236)
    assert edge.size == (518, 218)


def test_center_percentage_ignores_region(frame):
    cropped = crop_to_region(frame, BoundingBox(0.0, 0.0, 0.1, 0.1), CropStrategy.CENTER_PERCENTAGE)
    assert cropped.size == (600, 300)


def test_strategy_accepts_plain_strings(frame):
    assert crop_to_region(frame, None, "center_percentage").size == (600, 300)


def test_missing_region_keeps_full_frame(frame):
    assert crop_to_region(frame, None, CropStrategy.PADDED) is frame


def test_region_outside_frame_keeps_full_frame(frame):
    assert crop_to_region(frame, BoundingBox(1.5, 1.5, 0.2, 0.2), CropStrategy.EXACT) is frame
