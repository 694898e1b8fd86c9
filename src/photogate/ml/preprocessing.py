"""Image preprocessing pipeline.

Decodes an image reference, applies EXIF orientation, converts to RGB,
validates size limits, and produces the float tensor the moderation model
expects.
"""

from __future__ import annotations

from io import BytesIO
from typing import TYPE_CHECKING, Literal

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from photogate.ml.image_ref import ImageRef

TensorLayout = Literal["nhwc", "nchw"]


class InvalidImageError(ValueError):
    """Raised when image data cannot be decoded or exceeds size limits."""


def decode_image(image_bytes: bytes, *, max_image_pixels: int) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGB uint8 numpy array.

    Args:
        image_bytes: Raw file bytes (any format Pillow can open).
        max_image_pixels: Upper bound on width * height.

    Returns:
        HxWx3 RGB uint8 numpy array.

    Raises:
        InvalidImageError: If the image cannot be decoded or exceeds size limits.
    """
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            pixels = img.width * img.height
            if pixels > max_image_pixels:
                raise InvalidImageError(f"Image has {pixels} pixels, limit is {max_image_pixels}")
            oriented = ImageOps.exif_transpose(img)
            rgb = oriented.convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise InvalidImageError(f"Could not decode image: {exc}") from exc
    return np.asarray(rgb, dtype=np.uint8)


def load_image(image_ref: ImageRef, *, max_image_pixels: int, max_file_size: int) -> NDArray[np.uint8]:
    """Read and decode the image behind ``image_ref``."""
    try:
        data = image_ref.read_bytes()
    except OSError as exc:
        raise InvalidImageError(f"Could not read {image_ref.uri}: {exc}") from exc
    if len(data) > max_file_size:
        raise InvalidImageError(f"Image is {len(data)} bytes, limit is {max_file_size}")
    return decode_image(data, max_image_pixels=max_image_pixels)


def preprocess_for_classification(
    image: NDArray[np.uint8],
    input_size: int,
    layout: TensorLayout = "nhwc",
) -> NDArray[np.float32]:
    """Resize and scale an image for the moderation model.

    Args:
        image: HxWx3 RGB uint8 array.
        input_size: Square edge length the model was trained on.
        layout: Tensor layout of the model input.

    Returns:
        Batch of one float32 image scaled to [0, 1].
    """
    resized = Image.fromarray(image).resize((input_size, input_size), Image.Resampling.BILINEAR)
    tensor = np.asarray(resized, dtype=np.float32) / 255.0
    if layout == "nchw":
        tensor = tensor.transpose(2, 0, 1)
    return tensor[np.newaxis, ...]
