"""Recognition stage: angle correction, CTC decoding and charsets."""

from .angle import AngleCorrector, rotate_clockwise
from .charset import default_charset, load_charset
from .decoder import (
    RecognitionDecoder,
    DecodedText,
    ctc_greedy_decode,
    recognition_confidence,
    region_confidence,
)

__all__ = [
    "AngleCorrector",
    "rotate_clockwise",
    "default_charset",
    "load_charset",
    "RecognitionDecoder",
    "DecodedText",
    "ctc_greedy_decode",
    "recognition_confidence",
    "region_confidence",
]
