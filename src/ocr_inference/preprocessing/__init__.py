"""Tensor preprocessing for detection and recognition."""

from .preprocessor import (
    DetectionTransform,
    DetectionInput,
    RecognitionInput,
    preprocess_for_detection,
    preprocess_for_recognition,
    fit_to_recognizer,
    expand_region,
)

__all__ = [
    "DetectionTransform",
    "DetectionInput",
    "RecognitionInput",
    "preprocess_for_detection",
    "preprocess_for_recognition",
    "fit_to_recognizer",
    "expand_region",
]
