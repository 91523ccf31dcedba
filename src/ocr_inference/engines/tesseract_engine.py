"""
Tesseract secondary engine.

Runs pytesseract over the whole image (or a cropped region) and reports
words with their boxes and 0-100 confidences. Lines are rebuilt from
Tesseract's block/paragraph/line numbering.
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
import pytesseract
from PIL import Image

from .base_engine import SecondaryEngine, SecondaryResult, SecondaryWord
from ..config import FallbackConfig
from ..exceptions import InitializationError
from ..types import BoundingBox


class TesseractEngine(SecondaryEngine):
    """Secondary engine backed by the Tesseract command-line binary."""

    name = "tesseract"

    def __init__(self, config: Optional[FallbackConfig] = None):
        super().__init__()
        self.config = config or FallbackConfig()
        self.languages = self.config.languages
        self.version = None

        if self.config.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.config.tesseract_cmd

    def _initialize_engine(self) -> None:
        try:
            self.version = pytesseract.get_tesseract_version()
        except pytesseract.TesseractNotFoundError as e:
            raise InitializationError("Tesseract binary not found", reason=str(e)) from e
        self.logger.info(f"Tesseract version: {self.version}")

        try:
            installed = set(pytesseract.get_languages(config=""))
        except pytesseract.TesseractError as e:
            self.logger.warning(f"Could not list Tesseract languages: {e}")
            return

        missing = [lang for lang in self.languages.split("+") if lang not in installed]
        if len(missing) == len(self.languages.split("+")):
            raise InitializationError(
                f"None of the Tesseract languages '{self.languages}' are installed",
                reason="missing traineddata")
        if missing:
            self.logger.warning(f"Tesseract languages not installed: {missing}")
            self.languages = "+".join(l for l in self.languages.split("+") if l in installed)

    def _recognize(self, image: np.ndarray) -> SecondaryResult:
        if image is None or image.size == 0:
            raise ValueError("Invalid input image")

        data = pytesseract.image_to_data(
            Image.fromarray(image),
            lang=self.languages,
            config=self.config.tesseract_config,
            output_type=pytesseract.Output.DICT,
        )
        return self._convert(data)

    @staticmethod
    def _convert(data: Dict[str, list]) -> SecondaryResult:
        words: List[SecondaryWord] = []
        lines: Dict[Tuple[int, int, int], List[str]] = {}
        confidences: List[float] = []

        for i, raw_text in enumerate(data.get("text", [])):
            text = (raw_text or "").strip()
            confidence = float(data["conf"][i])
            # Tesseract reports -1 for non-word layout rows
            if not text or confidence < 0:
                continue

            bbox = BoundingBox(float(data["left"][i]), float(data["top"][i]),
                               float(data["width"][i]), float(data["height"][i]))
            words.append(SecondaryWord(text, confidence, bbox))
            confidences.append(confidence)

            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(text)

        text = "\n".join(" ".join(parts) for _, parts in sorted(lines.items()))
        confidence = float(np.mean(confidences)) if confidences else 0.0
        return SecondaryResult(text=text, confidence=confidence, words=words)


__all__ = ["TesseractEngine"]
