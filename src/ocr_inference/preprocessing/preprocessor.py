"""Tensor preparation for the detection and recognition models.

Both entry points are pure functions: the same image and box always produce
the same tensor and metadata.

Detection input is a square canvas with the image scaled to fit, centred,
and padded with black. The scale and offsets are kept in a
DetectionTransform so detector coordinates can be mapped back to the
original image.

Recognition input is a grayscale crop scaled to a fixed height and laid on
a white canvas at least ``min_width`` pixels wide.

Examples
--------
    from ocr_inference.preprocessing import preprocess_for_detection

    det = preprocess_for_detection(image, config.detection)
    det.tensor.shape            # (1, 3, 640, 640)
    det.transform.to_original(320.0, 320.0)
"""

import math
from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np

from ..config import DetectionConfig, RecognitionConfig
from ..exceptions import ValidationError
from ..types import BoundingBox

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float32)


@dataclass(frozen=True)
class DetectionTransform:
    """Mapping between original-image and detection-canvas coordinates."""
    scale: float
    offset_x: int
    offset_y: int
    canvas_size: int
    original_width: int
    original_height: int

    def to_canvas(self, x: float, y: float) -> Tuple[float, float]:
        return (x * self.scale + self.offset_x, y * self.scale + self.offset_y)

    def to_original(self, x: float, y: float) -> Tuple[float, float]:
        return ((x - self.offset_x) / self.scale, (y - self.offset_y) / self.scale)


@dataclass(frozen=True)
class DetectionInput:
    tensor: np.ndarray
    transform: DetectionTransform


@dataclass(frozen=True)
class RecognitionInput:
    """Single-channel NCHW tensor of shape (1, 1, height, width), values in [0, 1]."""
    tensor: np.ndarray
    width: int
    height: int
    crop: BoundingBox

    @property
    def image(self) -> np.ndarray:
        return self.tensor[0, 0]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def preprocess_for_detection(image: np.ndarray, config: DetectionConfig) -> DetectionInput:
    """Letterbox an RGB image into the detector canvas and normalize it."""
    if image.ndim != 3 or image.shape[2] != 3 or image.size == 0:
        raise ValidationError("Detection input must be a non-empty RGB image", "image", image.shape)

    height, width = image.shape[:2]
    size = config.canvas_size
    scale = min(size / width, size / height)

    scaled_w = min(size, max(1, _round_half_up(width * scale)))
    scaled_h = min(size, max(1, _round_half_up(height * scale)))
    offset_x = (size - scaled_w) // 2
    offset_y = (size - scaled_h) // 2

    resized = cv2.resize(image, (scaled_w, scaled_h), interpolation=cv2.INTER_LINEAR)
    canvas = np.zeros((size, size, 3), dtype=np.uint8)
    canvas[offset_y:offset_y + scaled_h, offset_x:offset_x + scaled_w] = resized

    mean = np.asarray(config.mean, dtype=np.float32)
    std = np.asarray(config.std, dtype=np.float32)
    normalized = (canvas.astype(np.float32) / 255.0 - mean) / std
    tensor = np.ascontiguousarray(normalized.transpose(2, 0, 1)[np.newaxis], dtype=np.float32)

    transform = DetectionTransform(
        scale=scale,
        offset_x=offset_x,
        offset_y=offset_y,
        canvas_size=size,
        original_width=width,
        original_height=height,
    )
    return DetectionInput(tensor=tensor, transform=transform)


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """RGB uint8 to float32 luma in [0, 1]."""
    return (image.astype(np.float32) @ LUMA_WEIGHTS) / 255.0


def fit_to_recognizer(gray: np.ndarray, config: RecognitionConfig) -> np.ndarray:
    """Scale a [0, 1] grayscale image onto the recognizer canvas.

    The canvas is ``target_height`` tall and at least ``min_width`` wide; the
    image keeps its aspect ratio, is centred, and the rest is filled white.
    """
    src_h, src_w = gray.shape[:2]
    if src_h == 0 or src_w == 0:
        raise ValidationError("Cannot fit an empty crop", "crop", gray.shape)

    target_h = config.target_height
    target_w = max(config.min_width, _round_half_up(target_h * src_w / src_h))

    scale = min(target_w / src_w, target_h / src_h)
    scaled_w = min(target_w, max(1, _round_half_up(src_w * scale)))
    scaled_h = min(target_h, max(1, _round_half_up(src_h * scale)))
    offset_x = (target_w - scaled_w) // 2
    offset_y = (target_h - scaled_h) // 2

    resized = cv2.resize(gray.astype(np.float32), (scaled_w, scaled_h),
                         interpolation=cv2.INTER_LINEAR)
    canvas = np.ones((target_h, target_w), dtype=np.float32)
    canvas[offset_y:offset_y + scaled_h, offset_x:offset_x + scaled_w] = resized
    np.clip(canvas, 0.0, 1.0, out=canvas)
    return canvas[np.newaxis, np.newaxis]


def expand_region(bbox: BoundingBox, image_width: int, image_height: int,
                  config: RecognitionConfig) -> BoundingBox:
    """Pad a region by max(min_padding, padding_ratio * short side) and clamp it."""
    padding = max(config.min_padding, min(bbox.width, bbox.height) * config.padding_ratio)
    expanded = BoundingBox(
        bbox.x - padding,
        bbox.y - padding,
        bbox.width + padding * 2,
        bbox.height + padding * 2,
    )
    return expanded.clamp(image_width, image_height)


def preprocess_for_recognition(image: np.ndarray, bbox: BoundingBox,
                               config: RecognitionConfig) -> RecognitionInput:
    """Crop a region from an RGB image and build the recognizer tensor."""
    image_h, image_w = image.shape[:2]
    crop_box = expand_region(bbox, image_w, image_h, config)

    x0 = int(math.floor(crop_box.x))
    y0 = int(math.floor(crop_box.y))
    x1 = int(math.ceil(crop_box.right))
    y1 = int(math.ceil(crop_box.bottom))
    if x1 <= x0 or y1 <= y0:
        raise ValidationError("Region lies outside the image", "bbox", bbox.to_dict())

    crop = image[y0:y1, x0:x1]
    tensor = fit_to_recognizer(to_grayscale(crop), config)
    return RecognitionInput(
        tensor=tensor,
        width=tensor.shape[3],
        height=tensor.shape[2],
        crop=crop_box,
    )


__all__ = [
    "DetectionTransform",
    "DetectionInput",
    "RecognitionInput",
    "preprocess_for_detection",
    "preprocess_for_recognition",
    "expand_region",
    "fit_to_recognizer",
    "to_grayscale",
]
