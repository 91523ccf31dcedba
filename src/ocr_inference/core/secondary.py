"""Whole-image and region OCR on the secondary engine.

Converts SecondaryResult values into the same OCRResult shape the primary
pipeline returns. Word confidences arrive on a 0-100 scale; words at or
below ``min_word_confidence`` are dropped.
"""

import math
import time
from typing import Callable, Optional

import numpy as np

from ..config import EngineConfig
from ..engines.base_engine import SecondaryEngine
from ..postprocessing.aggregation import build_statistics
from ..postprocessing.detection import estimate_font_size
from ..types import (
    Backend, BoundingBox, OCRResult, ProcessingStatistics, ProgressEvent,
    RegionSource, TextRegion,
)


def _unit(confidence: float) -> float:
    value = float(confidence) / 100.0
    if value != value:  # NaN
        return 0.0
    return min(1.0, max(0.0, value))


class SecondaryPipeline:
    """Adapts a SecondaryEngine to the OCRResult contract."""

    def __init__(self, config: EngineConfig, engine: SecondaryEngine,
                 progress: Optional[Callable[[ProgressEvent], None]] = None):
        self.config = config
        self.engine = engine
        self.progress = progress

    def _report(self, message: str, percent: int) -> None:
        if self.progress is not None:
            self.progress(ProgressEvent(message, percent))

    def _font_size(self, height: float) -> int:
        det = self.config.detection
        return estimate_font_size(height, det.font_scale, det.min_font_size, det.max_font_size)

    def run_image(self, image: np.ndarray) -> OCRResult:
        start = time.perf_counter()
        height, width = image.shape[:2]

        self._report(f"Recognizing text with {self.engine.name}", 10)
        result = self.engine.recognize(image)

        self._report("Combining results", 90)
        min_conf = self.config.fallback.min_word_confidence
        regions = []
        for word in result.words:
            if word.confidence <= min_conf or not word.text.strip():
                continue
            bbox = word.bbox.clamp(width, height)
            confidence = _unit(word.confidence)
            regions.append(TextRegion(
                bbox=bbox,
                confidence=confidence,
                text=word.text,
                font_size=self._font_size(bbox.height),
                source=RegionSource.TESSERACT.value,
                recognition_confidence=confidence,
            ))
        regions.sort(key=lambda region: region.confidence, reverse=True)

        overall = _unit(result.confidence)
        self._report("Done", 100)
        return OCRResult(
            regions=tuple(regions),
            confidence=overall,
            statistics=build_statistics(regions, 0.0, overall),
            engine_used=self.engine.name,
            backend=Backend.SECONDARY,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            image_size=(width, height),
            processing_steps=(self.engine.name,),
            fallback=True,
        )

    def run_region(self, image: np.ndarray, bbox: BoundingBox) -> OCRResult:
        start = time.perf_counter()
        height, width = image.shape[:2]

        self._report("Cropping region", 20)
        x0 = max(0, int(math.floor(bbox.x + 0.5)))
        y0 = max(0, int(math.floor(bbox.y + 0.5)))
        x1 = min(width, int(math.floor(bbox.right + 0.5)))
        y1 = min(height, int(math.floor(bbox.bottom + 0.5)))
        crop = np.ascontiguousarray(image[y0:max(y1, y0 + 1), x0:max(x1, x0 + 1)])

        self._report(f"Recognizing text with {self.engine.name}", 50)
        result = self.engine.recognize(crop)

        self._report("Done", 100)
        text = result.text.strip()
        confidence = _unit(result.confidence)
        regions = ()
        if text:
            regions = (TextRegion(
                bbox=bbox,
                confidence=confidence,
                text=text,
                font_size=self._font_size(bbox.height),
                source=RegionSource.TESSERACT_REGION.value,
                recognition_confidence=confidence,
            ),)

        recognized = 1 if text else 0
        return OCRResult(
            regions=regions,
            confidence=confidence,
            statistics=ProcessingStatistics(
                total_regions=1,
                recognized_regions=recognized,
                average_confidence=confidence,
                recognition_rate=float(recognized),
            ),
            engine_used=self.engine.name,
            backend=Backend.SECONDARY,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            image_size=(width, height),
            processing_steps=("manual-region", self.engine.name),
            fallback=True,
        )


__all__ = ["SecondaryPipeline"]
