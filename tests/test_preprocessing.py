"""Tests for image references and preprocessing."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

from photogate.ml.image_ref import ImageRef, InvalidImageRefError
from photogate.ml.preprocessing import (
    InvalidImageError,
    decode_image,
    load_image,
    preprocess_for_classification,
)

if TYPE_CHECKING:
    from collections.abc import Callable


def _encode(img: Image.Image, fmt: str = "PNG", **params: object) -> bytes:
    buf = BytesIO()
    img.save(buf, format=fmt, **params)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# ImageRef
# ---------------------------------------------------------------------------


class TestImageRef:
    def test_coerce_accepts_paths_and_strings(self, tmp_path: Path) -> None:
        assert ImageRef.coerce(tmp_path / "a.png") == ImageRef(str(tmp_path / "a.png"))
        assert ImageRef.coerce("a.png") == ImageRef("a.png")
        ref = ImageRef("a.png")
        assert ImageRef.coerce(ref) is ref

    def test_coerce_rejects_other_types(self) -> None:
        with pytest.raises(InvalidImageRefError):
            ImageRef.coerce(42)  # type: ignore[arg-type]

    def test_file_uri_resolves_to_path(self, image_file: Callable[..., ImageRef]) -> None:
        path = image_file().path
        ref = ImageRef(path.as_uri())
        assert ref.path == path
        ref.validate()

    def test_remote_uri_is_rejected(self) -> None:
        with pytest.raises(InvalidImageRefError, match="scheme"):
            ImageRef("https://example.com/dog.jpg").validate()

    def test_missing_file_is_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidImageRefError, match="not found"):
            ImageRef(str(tmp_path / "gone.png")).validate()

    def test_blob_reference(self) -> None:
        ref = ImageRef.from_bytes(b"\x89PNG", name="pick.png")
        assert ref.uri == "memory://pick.png"
        assert ref.is_blob
        assert ref.read_bytes() == b"\x89PNG"
        ref.validate()
        with pytest.raises(InvalidImageRefError):
            _ = ref.path

    def test_empty_blob_is_rejected(self) -> None:
        with pytest.raises(InvalidImageRefError, match="empty"):
            ImageRef.from_bytes(b"").validate()


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class TestDecodeImage:
    def test_decodes_to_rgb_array(self) -> None:
        image = decode_image(_encode(Image.new("RGB", (8, 4), "red")), max_image_pixels=1000)
        assert image.shape == (4, 8, 3)
        assert image.dtype == np.uint8
        assert tuple(image[0, 0]) == (255, 0, 0)

    def test_converts_rgba_and_grayscale(self) -> None:
        rgba = decode_image(_encode(Image.new("RGBA", (4, 4), (0, 0, 255, 128))), max_image_pixels=1000)
        gray = decode_image(_encode(Image.new("L", (4, 4), 200)), max_image_pixels=1000)
        assert rgba.shape == (4, 4, 3)
        assert gray.shape == (4, 4, 3)

    def test_applies_exif_orientation(self) -> None:
        exif = Image.Exif()
        exif[0x0112] = 6  # rotated 90 degrees clockwise
        data = _encode(Image.new("RGB", (8, 4), "white"), "JPEG", exif=exif)

        image = decode_image(data, max_image_pixels=1000)

        assert image.shape == (8, 4, 3)

    def test_rejects_too_many_pixels(self) -> None:
        with pytest.raises(InvalidImageError, match="pixels"):
            decode_image(_encode(Image.new("RGB", (100, 100))), max_image_pixels=9_999)

    def test_rejects_garbage(self) -> None:
        with pytest.raises(InvalidImageError):
            decode_image(b"definitely not an image", max_image_pixels=1000)


class TestLoadImage:
    def test_loads_from_file(self, image_file: Callable[..., ImageRef]) -> None:
        image = load_image(image_file(size=(10, 6)), max_image_pixels=1000, max_file_size=1_000_000)
        assert image.shape == (6, 10, 3)

    def test_rejects_oversized_file(self, image_file: Callable[..., ImageRef]) -> None:
        with pytest.raises(InvalidImageError, match="bytes"):
            load_image(image_file(), max_image_pixels=1000, max_file_size=10)

    def test_unreadable_file(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidImageError, match="Could not read"):
            load_image(ImageRef(str(tmp_path / "vanished.png")), max_image_pixels=1000, max_file_size=1000)


class TestPreprocess:
    def test_nhwc_batch_in_unit_range(self) -> None:
        image = np.full((30, 50, 3), 255, dtype=np.uint8)
        tensor = preprocess_for_classification(image, 224)
        assert tensor.shape == (1, 224, 224, 3)
        assert tensor.dtype == np.float32
        assert float(tensor.max()) == pytest.approx(1.0)

    def test_nchw_layout(self) -> None:
        image = np.zeros((30, 50, 3), dtype=np.uint8)
        tensor = preprocess_for_classification(image, 299, layout="nchw")
        assert tensor.shape == (1, 3, 299, 299)
        assert float(tensor.max()) == 0.0
