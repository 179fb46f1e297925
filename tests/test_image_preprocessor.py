import io

import numpy as np
from PIL import Image

from ticketscan.config import ScanSettings
from ticketscan.image_preprocessor import ImageNormalizer, otsu_threshold, prepare_for_upload


def _noise_image(width, height, seed=0):
    rng = np.random.default_rng(seed)
    return Image.fromarray(rng.integers(0, 256, (height, width, 3), dtype=np.uint8))


class TestImageNormalizer:
    def test_normalize_is_pure_and_deterministic(self, ticket_image):
        original = ticket_image.tobytes()
        normalizer = ImageNormalizer()

        first = normalizer.normalize(ticket_image)
        second = normalizer.normalize(ticket_image)

        assert first.tobytes() == second.tobytes()
        assert ticket_image.tobytes() == original
        assert first.mode == "L"
        assert first.size == ticket_image.size

    def test_digit_variants(self):
        cell = Image.new("RGBA", (20, 30), (0, 0, 0, 0))

        variants = ImageNormalizer(upscale_factor=3).digit_variants(cell)

        assert len(variants) == 3
        assert all(v.size == (60, 90) for v in variants)
        assert all(v.mode == "L" for v in variants)
        # Transparent cells are flattened onto white, so the inverted variant is dark
        assert variants[2].getpixel((30, 45)) < 50

    def test_binarized_variant_is_black_and_white(self, ticket_image):
        binarized = ImageNormalizer().digit_variants(ticket_image.crop((0, 0, 60, 40)))[0]
        assert set(np.unique(np.asarray(binarized))) <= {0, 255}


def test_otsu_threshold_splits_bimodal_histogram():
    pixels = np.array([30] * 500 + [220] * 500, dtype=np.uint8)
    threshold = otsu_threshold(pixels)
    assert 30 <= threshold < 220


def test_prepare_for_upload_fits_bounds_and_budget():
    payload = prepare_for_upload(_noise_image(3000, 2000), ScanSettings())

    assert len(payload) <= 500 * 1024
    decoded = Image.open(io.BytesIO(payload))
    assert decoded.format == "JPEG"
    assert max(decoded.size) <= 1024


def test_prepare_for_upload_shrinks_when_quality_is_not_enough():
    settings = ScanSettings(upload_max_kb=5)

    payload = prepare_for_upload(_noise_image(1024, 1024, seed=1), settings)

    assert len(payload) <= 5 * 1024
    assert max(Image.open(io.BytesIO(payload)).size) < 1024


def test_prepare_for_upload_never_enlarges():
    payload = prepare_for_upload(Image.new("RGB", (200, 100), "white"))
    assert Image.open(io.BytesIO(payload)).size == (200, 100)
