"""Secondary OCR engines used when the numeric pipeline is unavailable."""

from .base_engine import EngineStatus, SecondaryEngine, SecondaryResult, SecondaryWord
from .tesseract_engine import TesseractEngine

__all__ = [
    "EngineStatus",
    "SecondaryEngine",
    "SecondaryResult",
    "SecondaryWord",
    "TesseractEngine",
]
