"""Post-processing: detector output decoding and result aggregation."""

from .detection import (
    DetectionPostprocessor,
    apply_nms,
    compute_iou,
    extract_candidates,
    estimate_font_size,
    is_valid_box,
    reconstruct_box,
)
from .aggregation import build_statistics, overall_confidence, mean_confidence

__all__ = [
    "DetectionPostprocessor",
    "apply_nms",
    "compute_iou",
    "extract_candidates",
    "estimate_font_size",
    "is_valid_box",
    "reconstruct_box",
    "build_statistics",
    "overall_confidence",
    "mean_confidence",
]
