"""Combine per-region recognition results into run statistics and an overall score."""

from typing import Iterable, Optional, Sequence

from ..types import ProcessingStatistics, TextRegion

DETECTION_WEIGHT = 0.3
RECOGNITION_WEIGHT = 0.7
DETECTION_ONLY_FACTOR = 0.5


def _clamp_unit(value: float) -> float:
    if value != value:  # NaN
        return 0.0
    return min(1.0, max(0.0, value))


def mean_confidence(regions: Iterable[TextRegion]) -> float:
    values = [region.confidence for region in regions]
    return sum(values) / len(values) if values else 0.0


def overall_confidence(detection_confidence: float,
                       recognized: Sequence[TextRegion]) -> float:
    """Blend detection and recognition confidence.

    With no recognized text only half the detection confidence is credited.
    """
    if not recognized:
        return _clamp_unit(detection_confidence * DETECTION_ONLY_FACTOR)
    combined = (detection_confidence * DETECTION_WEIGHT
                + mean_confidence(recognized) * RECOGNITION_WEIGHT)
    return _clamp_unit(combined)


def build_statistics(regions: Sequence[TextRegion],
                     detection_confidence: float,
                     overall: float,
                     failed_regions: int = 0,
                     total_regions: Optional[int] = None) -> ProcessingStatistics:
    total = len(regions) if total_regions is None else total_regions
    recognized = sum(1 for region in regions if region.text.strip())
    return ProcessingStatistics(
        total_regions=total,
        recognized_regions=recognized,
        failed_regions=failed_regions,
        average_confidence=overall,
        detection_confidence=detection_confidence,
        recognition_rate=recognized / max(1, total),
    )


__all__ = [
    "mean_confidence",
    "overall_confidence",
    "build_statistics",
]
