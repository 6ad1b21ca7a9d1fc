"""Image preprocessing pipeline.

Handles decoding of uploaded image bytes, orientation correction,
the crop/scale policy applied before classification, and conversion
to the normalized NCHW float tensor the classifier expects.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

import cv2
import numpy as np

from scenelens.errors import InvalidImage
from scenelens.pipeline.state import Orientation

if TYPE_CHECKING:
    from numpy.typing import NDArray

IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)

# Downscale factor of cv2.IMREAD_REDUCED_GRAYSCALE_8.
REDUCED_SCALE = 8


class CropAndScale(StrEnum):
    """How an image is fitted to the square model input."""

    CENTER_CROP = "center_crop"
    SCALE_FIT = "scale_fit"
    SCALE_FILL = "scale_fill"


def decode_image(image_bytes: bytes, max_pixels: int) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGB uint8 numpy array.

    Args:
        image_bytes: Raw file bytes (any format OpenCV can read).
        max_pixels: Upper bound on width * height.

    Returns:
        HxWx3 RGB uint8 numpy array.

    Raises:
        InvalidImage: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise InvalidImage("Empty image payload")

    buf = np.frombuffer(image_bytes, dtype=np.uint8)

    # An eighth-scale grayscale decode is far cheaper than a full one and
    # bounds the true size from below, so oversized images fail early.
    preview = cv2.imdecode(buf, cv2.IMREAD_REDUCED_GRAYSCALE_8)
    if preview is None:
        raise InvalidImage("Unsupported or corrupt image data")
    min_height = (preview.shape[0] - 1) * REDUCED_SCALE + 1
    min_width = (preview.shape[1] - 1) * REDUCED_SCALE + 1
    if min_height * min_width > max_pixels:
        raise InvalidImage(f"Image has at least {min_height * min_width} pixels, limit is {max_pixels}")

    bgr = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if bgr is None:
        raise InvalidImage("Unsupported or corrupt image data")

    height, width = bgr.shape[:2]
    if height * width > max_pixels:
        raise InvalidImage(f"Image has {height * width} pixels, limit is {max_pixels}")
    return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)


def apply_orientation(pixels: NDArray[np.uint8], orientation: Orientation) -> NDArray[np.uint8]:
    """Rotate/mirror pixels so that the result is upright (Orientation.UP)."""
    if orientation is Orientation.UP:
        return pixels
    if orientation is Orientation.UP_MIRRORED:
        return pixels[:, ::-1]
    if orientation is Orientation.DOWN:
        return np.rot90(pixels, 2)
    if orientation is Orientation.DOWN_MIRRORED:
        return pixels[::-1, :]
    if orientation is Orientation.LEFT_MIRRORED:
        return np.transpose(pixels, (1, 0, 2))
    if orientation is Orientation.RIGHT:
        return np.rot90(pixels, -1)
    if orientation is Orientation.RIGHT_MIRRORED:
        return np.rot90(pixels, 2).transpose(1, 0, 2)
    # Orientation.LEFT
    return np.rot90(pixels, 1)


def center_crop_and_scale(pixels: NDArray[np.uint8], size: int, policy: CropAndScale) -> NDArray[np.uint8]:
    """Fit an HxWx3 image to a size x size square according to ``policy``."""
    height, width = pixels.shape[:2]
    if policy is CropAndScale.CENTER_CROP:
        side = min(height, width)
        top = (height - side) // 2
        left = (width - side) // 2
        square = pixels[top : top + side, left : left + side]
        return cv2.resize(np.ascontiguousarray(square), (size, size), interpolation=cv2.INTER_AREA)

    if policy is CropAndScale.SCALE_FILL:
        return cv2.resize(np.ascontiguousarray(pixels), (size, size), interpolation=cv2.INTER_AREA)

    # SCALE_FIT: letterbox onto a black square, preserving aspect ratio.
    scale = size / max(height, width)
    new_w = max(1, round(width * scale))
    new_h = max(1, round(height * scale))
    resized = cv2.resize(np.ascontiguousarray(pixels), (new_w, new_h), interpolation=cv2.INTER_AREA)
    canvas = np.zeros((size, size, 3), dtype=np.uint8)
    top = (size - new_h) // 2
    left = (size - new_w) // 2
    canvas[top : top + new_h, left : left + new_w] = resized
    return canvas


def to_model_input(
    pixels: NDArray[np.uint8],
    mean: NDArray[np.float32] = IMAGENET_MEAN,
    std: NDArray[np.float32] = IMAGENET_STD,
) -> NDArray[np.float32]:
    """Normalize an HxWx3 RGB image into a 1x3xHxW float32 tensor."""
    scaled = pixels.astype(np.float32) / 255.0
    normalized = (scaled - mean) / std
    return np.ascontiguousarray(normalized.transpose(2, 0, 1)[np.newaxis, ...], dtype=np.float32)


def preprocess_for_classification(
    pixels: NDArray[np.uint8],
    orientation: Orientation,
    size: int,
    policy: CropAndScale = CropAndScale.CENTER_CROP,
    mean: NDArray[np.float32] = IMAGENET_MEAN,
    std: NDArray[np.float32] = IMAGENET_STD,
) -> NDArray[np.float32]:
    """Run the full preprocessing chain for one image."""
    upright = apply_orientation(pixels, orientation)
    fitted = center_crop_and_scale(upright, size, policy)
    return to_model_input(fitted, mean, std)
