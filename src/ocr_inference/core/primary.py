"""Detection + recognition pipeline on the numeric backend.

All methods are blocking and meant to run on the engine's worker thread.
Regions are recognized one at a time in batches, highest detection
confidence first. A region whose recognition fails is kept with empty text,
zero confidence and a diagnostic.
"""

import dataclasses
import logging
import time
from typing import Callable, List, Optional, Tuple

import numpy as np

from ..config import EngineConfig
from ..exceptions import InferenceError, ValidationError
from ..postprocessing.aggregation import build_statistics, overall_confidence, mean_confidence
from ..postprocessing.detection import DetectionPostprocessor, estimate_font_size
from ..preprocessing.preprocessor import preprocess_for_detection, preprocess_for_recognition
from ..recognition.angle import AngleCorrector
from ..recognition.decoder import RecognitionDecoder, region_confidence
from ..types import (
    Backend, BoundingBox, OCRResult, ProcessingOptions, ProcessingStatistics,
    ProgressEvent, RegionSource, TextRegion,
)
from ..utils.logging import log_diagnostic
from .sessions import ModelSet

logger = logging.getLogger(__name__)

ENGINE_NAME = "onnx"


class PrimaryPipeline:
    """Runs the detector, angle classifier and recognizer of one ModelSet."""

    def __init__(self, config: EngineConfig, models: ModelSet, backend: Backend,
                 progress: Optional[Callable[[ProgressEvent], None]] = None):
        self.config = config
        self.models = models
        self.backend = backend
        self.progress = progress
        self.detector = DetectionPostprocessor(config.detection)
        self.decoder = RecognitionDecoder(models.charset, config.recognition.unknown_symbol)
        self.angle = AngleCorrector(models.angle, config.recognition)

    def _report(self, message: str, percent: float) -> None:
        if self.progress is not None:
            self.progress(ProgressEvent(message, int(round(percent))))

    def _font_size(self, height: float) -> int:
        det = self.config.detection
        return estimate_font_size(height, det.font_scale, det.min_font_size, det.max_font_size)

    def detect(self, image: np.ndarray, options: ProcessingOptions) -> List[TextRegion]:
        det_input = preprocess_for_detection(image, self.config.detection)
        session = self.models.detection
        try:
            outputs = session.run({session.input_names[0]: det_input.tensor})
            prob_map = outputs[session.output_names[0]]
            geometry = outputs[session.output_names[1]]
        except Exception as e:
            raise InferenceError(f"Detection model failed: {e}", "detection") from e

        return self.detector.process(prob_map, geometry, det_input.transform,
                                     options.detection_threshold, options.nms_threshold)

    def recognize_region(self, image: np.ndarray, region: TextRegion,
                         use_angle: bool) -> TextRegion:
        crop = preprocess_for_recognition(image, region.bbox, self.config.recognition)
        crop = self.angle.correct(crop, enabled=use_angle)
        try:
            decoded = self.decoder.recognize(self.models.recognition, crop.tensor)
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError(f"Recognition model failed: {e}", "recognition") from e

        detection_conf = (region.detection_confidence
                          if region.detection_confidence is not None else region.confidence)
        source = region.source
        if source == RegionSource.DETECTION.value:
            source = RegionSource.ONNX_RECOGNITION.value

        return dataclasses.replace(
            region,
            text=decoded.text,
            confidence=region_confidence(detection_conf, decoded.confidence),
            recognition_confidence=decoded.confidence,
            characters=decoded.characters,
            diagnostics=region.diagnostics + decoded.diagnostics,
            source=source,
        )

    def _recognize_or_degrade(self, image: np.ndarray, region: TextRegion,
                              use_angle: bool) -> Tuple[TextRegion, bool]:
        try:
            return self.recognize_region(image, region, use_angle), True
        except Exception as e:
            log_diagnostic(logger, "region_recognition_failed",
                           f"Recognition failed for region at {region.bbox.to_dict()}: {e}",
                           error_type=type(e).__name__)
            failed = dataclasses.replace(
                region,
                text="",
                confidence=0.0,
                recognition_confidence=0.0,
                diagnostics=region.diagnostics + (f"recognition failed: {e}",),
            )
            return failed, False

    def run_image(self, image: np.ndarray,
                  options: Optional[ProcessingOptions] = None) -> OCRResult:
        options = options or ProcessingOptions()
        start = time.perf_counter()
        batch_size = options.batch_size or self.config.recognition.batch_size
        use_angle = (self.config.recognition.use_angle_correction
                     if options.use_angle_correction is None else options.use_angle_correction)

        self._report("Detecting text", 10)
        detected = self.detect(image, options)
        detection_conf = mean_confidence(detected)

        self._report("Recognizing text", 50)
        ordered = sorted(detected, key=lambda region: region.confidence, reverse=True)
        results: List[TextRegion] = []
        failed = 0
        total = len(ordered)
        for start_index in range(0, total, batch_size):
            batch = ordered[start_index:start_index + batch_size]
            self._report(f"Recognizing text ({start_index + 1}/{total})",
                         50 + (start_index / total) * 40)
            for region in batch:
                region_result, ok = self._recognize_or_degrade(image, region, use_angle)
                results.append(region_result)
                failed += 0 if ok else 1

        self._report("Combining results", 90)
        recognized = [region for region in results if region.text.strip()]
        overall = overall_confidence(detection_conf, recognized)
        statistics = build_statistics(results, detection_conf, overall, failed)

        self._report("Done", 100)
        height, width = image.shape[:2]
        return OCRResult(
            regions=tuple(results),
            confidence=overall,
            statistics=statistics,
            engine_used=ENGINE_NAME,
            backend=self.backend,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            image_size=(width, height),
            processing_steps=("detection", "recognition"),
        )

    def run_region(self, image: np.ndarray, bbox: BoundingBox,
                   options: Optional[ProcessingOptions] = None) -> OCRResult:
        options = options or ProcessingOptions()
        start = time.perf_counter()
        use_angle = (self.config.recognition.use_angle_correction
                     if options.use_angle_correction is None else options.use_angle_correction)

        self._report("Cropping region", 20)
        region = TextRegion(
            bbox=bbox,
            confidence=1.0,
            font_size=self._font_size(bbox.height),
            source=RegionSource.MANUAL_SELECTION.value,
            detection_confidence=1.0,
        )

        self._report("Recognizing text", 60)
        result_region = self.recognize_region(image, region, use_angle)

        self._report("Done", 100)
        recognized = 1 if result_region.text.strip() else 0
        height, width = image.shape[:2]
        return OCRResult(
            regions=(result_region,),
            confidence=result_region.confidence,
            statistics=ProcessingStatistics(
                total_regions=1,
                recognized_regions=recognized,
                average_confidence=result_region.confidence,
                detection_confidence=1.0,
                recognition_rate=float(recognized),
            ),
            engine_used=ENGINE_NAME,
            backend=self.backend,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            image_size=(width, height),
            processing_steps=("manual-region", "recognition"),
        )


def validate_region(bbox: BoundingBox, image_width: int, image_height: int) -> BoundingBox:
    """Clamp a caller-supplied region to the image, rejecting empty results."""
    clamped = bbox.clamp(image_width, image_height)
    if clamped.width < 1 or clamped.height < 1:
        raise ValidationError("Region does not overlap the image", "bbox", bbox.to_dict())
    return clamped


__all__ = ["PrimaryPipeline", "validate_region", "ENGINE_NAME"]
