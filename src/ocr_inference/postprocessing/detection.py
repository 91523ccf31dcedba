"""Detector output to text regions.

Converts an EAST-style probability map and 4-channel geometry map
(distances to the top, right, bottom and left edges per pixel) into
de-duplicated regions in original-image coordinates.

Steps: threshold pixels, rebuild one box per pixel, drop boxes that are too
small or too elongated, greedy NMS, inverse letterbox transform, clamp.
Output is deterministic for identical inputs and thresholds.

Examples
--------
    from ocr_inference.postprocessing import DetectionPostprocessor

    post = DetectionPostprocessor(config.detection)
    regions = post.process(prob_map, geometry, det_input.transform)
"""

import logging
import math
from typing import List, Optional, Tuple

import numpy as np

from ..config import DetectionConfig
from ..exceptions import InferenceError
from ..types import BoundingBox, TextRegion, RegionSource

logger = logging.getLogger(__name__)


def reconstruct_box(px: float, py: float, top: float, right: float,
                    bottom: float, left: float) -> Tuple[float, float, float, float]:
    """Box corners (x1, y1, x2, y2) from a pixel and its edge distances."""
    return (px - left, py - top, px + right, py + bottom)


def is_valid_box(width: float, height: float,
                 min_size: float = 5.0, max_aspect_ratio: float = 20.0) -> bool:
    """Reject boxes with a short side or an extreme long/short ratio."""
    if width < min_size or height < min_size or width <= 0 or height <= 0:
        return False
    return max(width / height, height / width) <= max_aspect_ratio


def _as_prob_map(prob_map: np.ndarray) -> np.ndarray:
    prob = np.asarray(prob_map, dtype=np.float64)
    while prob.ndim > 2 and prob.shape[0] == 1:
        prob = prob[0]
    if prob.ndim != 2:
        raise InferenceError(f"Unexpected probability map shape {np.shape(prob_map)}", "detection")
    return prob


def _as_geometry(geometry: np.ndarray, height: int, width: int) -> np.ndarray:
    geom = np.asarray(geometry, dtype=np.float64)
    while geom.ndim > 3 and geom.shape[0] == 1:
        geom = geom[0]
    if geom.shape != (4, height, width):
        raise InferenceError(
            f"Geometry map shape {np.shape(geometry)} does not match probability map "
            f"({height}, {width})", "detection")
    return geom


def extract_candidates(prob_map: np.ndarray,
                       geometry: np.ndarray,
                       threshold: float,
                       stride: float = 1.0,
                       min_box_size: float = 5.0,
                       max_aspect_ratio: float = 20.0) -> Tuple[np.ndarray, np.ndarray]:
    """Candidate boxes in canvas space for every pixel above threshold.

    Returns ``(boxes, scores)`` where boxes is an (N, 4) array of
    ``x1, y1, x2, y2`` in row-major pixel order.
    """
    prob = _as_prob_map(prob_map)
    geom = _as_geometry(geometry, *prob.shape)

    ys, xs = np.nonzero(prob > threshold)
    if ys.size == 0:
        return np.zeros((0, 4), dtype=np.float64), np.zeros(0, dtype=np.float64)

    top, right, bottom, left = (geom[c, ys, xs] for c in range(4))
    px = xs * stride
    py = ys * stride
    boxes = np.stack(reconstruct_box(px, py, top, right, bottom, left), axis=1)
    scores = prob[ys, xs]

    widths = boxes[:, 2] - boxes[:, 0]
    heights = boxes[:, 3] - boxes[:, 1]
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = np.maximum(widths / heights, heights / widths)
    keep = ((widths >= min_box_size) & (heights >= min_box_size)
            & (widths > 0) & (heights > 0)
            & np.isfinite(ratio) & (ratio <= max_aspect_ratio))

    return boxes[keep], scores[keep]


def compute_iou(box: np.ndarray, boxes: np.ndarray) -> np.ndarray:
    """IoU of one (x1, y1, x2, y2) box against an (N, 4) array."""
    ix1 = np.maximum(box[0], boxes[:, 0])
    iy1 = np.maximum(box[1], boxes[:, 1])
    ix2 = np.minimum(box[2], boxes[:, 2])
    iy2 = np.minimum(box[3], boxes[:, 3])
    intersection = np.clip(ix2 - ix1, 0, None) * np.clip(iy2 - iy1, 0, None)

    area = (box[2] - box[0]) * (box[3] - box[1])
    areas = (boxes[:, 2] - boxes[:, 0]) * (boxes[:, 3] - boxes[:, 1])
    union = area + areas - intersection
    with np.errstate(divide="ignore", invalid="ignore"):
        iou = np.where(union > 0, intersection / union, 0.0)
    return iou


def apply_nms(boxes: np.ndarray, scores: np.ndarray, threshold: float) -> List[int]:
    """Greedy non-maximum suppression.

    Returns indices of kept boxes, highest score first. Ties keep their
    input order.
    """
    if len(scores) == 0:
        return []

    order = np.argsort(-np.asarray(scores), kind="stable")
    suppressed = np.zeros(len(order), dtype=bool)
    keep = []

    for rank, index in enumerate(order):
        if suppressed[rank]:
            continue
        keep.append(int(index))
        rest = order[rank + 1:]
        if rest.size == 0:
            break
        overlaps = compute_iou(boxes[index], boxes[rest])
        suppressed[rank + 1:] |= overlaps > threshold

    return keep


def estimate_font_size(height: float, scale: float = 0.8,
                       min_size: int = 8, max_size: int = 72) -> int:
    return int(math.floor(max(min_size, min(max_size, height * scale)) + 0.5))


def box_to_original(box: np.ndarray, transform) -> BoundingBox:
    """Map a canvas-space (x1, y1, x2, y2) box to a clamped image-space BoundingBox."""
    x1, y1 = transform.to_original(float(box[0]), float(box[1]))
    x2, y2 = transform.to_original(float(box[2]), float(box[3]))
    return BoundingBox(x1, y1, x2 - x1, y2 - y1).clamp(
        transform.original_width, transform.original_height)


class DetectionPostprocessor:
    """Turns raw detector maps into confidence-ordered text regions."""

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DetectionConfig()

    def process(self, prob_map: np.ndarray, geometry: np.ndarray, transform,
                threshold: Optional[float] = None,
                nms_threshold: Optional[float] = None) -> List[TextRegion]:
        threshold = self.config.threshold if threshold is None else threshold
        nms_threshold = self.config.nms_threshold if nms_threshold is None else nms_threshold

        prob = _as_prob_map(prob_map)
        stride = transform.canvas_size / prob.shape[1]

        boxes, scores = extract_candidates(
            prob, geometry, threshold,
            stride=stride,
            min_box_size=self.config.min_box_size,
            max_aspect_ratio=self.config.max_aspect_ratio,
        )
        kept = apply_nms(boxes, scores, nms_threshold)

        regions = []
        for index in kept:
            bbox = box_to_original(boxes[index], transform)
            if bbox.width <= 0 or bbox.height <= 0:
                # Box lies entirely in the letterbox padding
                continue
            confidence = float(min(1.0, max(0.0, scores[index])))
            regions.append(TextRegion(
                bbox=bbox,
                confidence=confidence,
                font_size=estimate_font_size(
                    bbox.height, self.config.font_scale,
                    self.config.min_font_size, self.config.max_font_size),
                source=RegionSource.DETECTION.value,
                detection_confidence=confidence,
            ))

        regions.sort(key=lambda region: region.confidence, reverse=True)
        logger.debug(f"Detection: {len(boxes)} candidates, {len(kept)} after NMS, "
                     f"{len(regions)} regions")
        return regions


__all__ = [
    "reconstruct_box",
    "is_valid_box",
    "extract_candidates",
    "compute_iou",
    "apply_nms",
    "estimate_font_size",
    "box_to_original",
    "DetectionPostprocessor",
]
