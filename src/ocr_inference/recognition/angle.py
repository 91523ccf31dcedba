"""Text orientation correction before recognition.

The angle classifier scores four classes: 0, 90, 180 and 270 degrees. For a
non-zero class the crop is rotated clockwise by that amount and re-fitted to
the recognizer geometry. Any failure leaves the crop untouched.
"""

import logging
from typing import Optional

import numpy as np

from ..config import RecognitionConfig
from ..preprocessing.preprocessor import RecognitionInput, fit_to_recognizer
from ..utils.logging import log_diagnostic

logger = logging.getLogger(__name__)

ANGLE_CLASSES = (0, 90, 180, 270)


def rotate_clockwise(image: np.ndarray, angle_class: int) -> np.ndarray:
    """Rotate a 2-D image by ``angle_class * 90`` degrees clockwise."""
    return np.ascontiguousarray(np.rot90(image, k=-angle_class))


class AngleCorrector:
    """Optional per-region rotation normalization."""

    def __init__(self, session=None, config: Optional[RecognitionConfig] = None):
        self.session = session
        self.config = config or RecognitionConfig()

    @property
    def available(self) -> bool:
        return self.session is not None

    def classify(self, tensor: np.ndarray) -> int:
        outputs = self.session.run({self.session.input_names[0]: tensor})
        scores = np.asarray(outputs[self.session.output_names[0]], dtype=np.float64).reshape(-1)
        if scores.size != len(ANGLE_CLASSES):
            raise ValueError(f"expected {len(ANGLE_CLASSES)} angle scores, got shape "
                             f"{np.shape(outputs[self.session.output_names[0]])}")
        if not np.all(np.isfinite(scores)):
            raise ValueError("angle scores are not finite")
        return int(np.argmax(scores))

    def correct(self, crop: RecognitionInput, enabled: bool = True) -> RecognitionInput:
        """Return the crop rotated upright, or unchanged when bypassed or on failure."""
        if not enabled or self.session is None:
            return crop

        try:
            angle_class = self.classify(crop.tensor)
            if angle_class == 0:
                return crop

            rotated = rotate_clockwise(crop.image, angle_class)
            tensor = fit_to_recognizer(rotated, self.config)
            logger.debug(f"Rotated region by {ANGLE_CLASSES[angle_class]} degrees")
            return RecognitionInput(
                tensor=tensor,
                width=tensor.shape[3],
                height=tensor.shape[2],
                crop=crop.crop,
            )
        except Exception as e:
            log_diagnostic(logger, "angle_correction_failed",
                           f"Angle correction skipped: {e}",
                           error_type=type(e).__name__)
            return crop


__all__ = ["AngleCorrector", "ANGLE_CLASSES", "rotate_clockwise"]
