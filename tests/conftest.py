"""Shared fixtures."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from PIL import Image

from photogate.ml.image_ref import ImageRef

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


@pytest.fixture()
def image_file(tmp_path: Path) -> Callable[..., ImageRef]:
    """Factory writing a small real PNG and returning a reference to it."""

    def _make(name: str = "photo.png", size: tuple[int, int] = (32, 24), color: str = "tan") -> ImageRef:
        path = tmp_path / name
        Image.new("RGB", size, color).save(path, format="PNG")
        return ImageRef(str(path))

    return _make
