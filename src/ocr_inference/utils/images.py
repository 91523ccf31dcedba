"""Image I/O helpers.

Every pipeline stage works on RGB uint8 arrays of shape (H, W, 3). These
helpers turn file paths, PIL images and grayscale or RGBA arrays into that
layout.

Examples
--------
    from ocr_inference.utils.images import to_rgb_array

    image = to_rgb_array("receipt.jpg")
    image = to_rgb_array(Image.open("receipt.png"))
"""

import logging
from pathlib import Path
from typing import Union

import cv2
import numpy as np
from PIL import Image

from ..exceptions import ValidationError

logger = logging.getLogger(__name__)

ImageInput = Union[str, Path, np.ndarray, Image.Image]


def load_image(image_path: Union[str, Path]) -> np.ndarray:
    """Load an image file as an RGB uint8 array."""
    image_path = Path(image_path)
    if not image_path.exists():
        raise ValidationError(f"Image file not found: {image_path}", "image", str(image_path))

    image = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
    if image is None:
        raise ValidationError(f"Could not decode image: {image_path}", "image", str(image_path))

    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def ensure_rgb(image: np.ndarray) -> np.ndarray:
    """Convert a grayscale, single-channel or RGBA array to RGB uint8."""
    if not isinstance(image, np.ndarray) or image.size == 0:
        raise ValidationError("Image must be a non-empty numpy array", "image")

    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    if image.ndim == 3 and image.shape[2] == 1:
        return cv2.cvtColor(image[:, :, 0], cv2.COLOR_GRAY2RGB)
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2RGB)
    if image.ndim == 3 and image.shape[2] == 3:
        return image

    raise ValidationError(f"Unsupported image shape: {image.shape}", "image", image.shape)


def to_rgb_array(image: ImageInput) -> np.ndarray:
    """Accept a path, PIL image or array and return an RGB uint8 array."""
    if isinstance(image, (str, Path)):
        return load_image(image)
    if isinstance(image, Image.Image):
        return np.asarray(image.convert("RGB"), dtype=np.uint8)
    return ensure_rgb(image)


__all__ = ["ImageInput", "load_image", "ensure_rgb", "to_rgb_array"]
