"""CTC greedy decoding for the recognition model.

The recognizer emits logits of shape ``[T, C]`` (a leading batch axis of one
is accepted). Class ``C - 1`` is the blank. At each timestep the arg-max
class is kept when it is neither blank nor equal to the previous
timestep's arg-max.

Confidence is the geometric mean of the softmax probability of each kept
symbol, with every probability floored at 1e-10 before the logarithm so the
result stays finite when probabilities underflow.

Examples
--------
    from ocr_inference.recognition import RecognitionDecoder

    decoder = RecognitionDecoder(charset)
    decoded = decoder.decode(logits)
    decoded.text, decoded.confidence
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..exceptions import InferenceError
from ..types import DecodedCharacter
from ..utils.logging import log_diagnostic

logger = logging.getLogger(__name__)

PROBABILITY_FLOOR = 1e-10


@dataclass(frozen=True)
class CTCDecoding:
    """Raw greedy decoding: kept class indices with their probabilities and timesteps."""
    indices: Tuple[int, ...]
    probabilities: Tuple[float, ...]
    timesteps: Tuple[int, ...]


@dataclass(frozen=True)
class DecodedText:
    text: str
    confidence: float
    characters: Tuple[DecodedCharacter, ...] = ()
    diagnostics: Tuple[str, ...] = ()


def _as_logits(logits: np.ndarray) -> np.ndarray:
    values = np.asarray(logits, dtype=np.float64)
    while values.ndim > 2 and values.shape[0] == 1:
        values = values[0]
    if values.ndim != 2 or values.shape[1] < 1:
        raise InferenceError(f"Unexpected recognition output shape {np.shape(logits)}",
                             "recognition")
    # NaN scores never win the arg-max
    return np.nan_to_num(values, nan=-np.inf)


def softmax(logits: np.ndarray) -> np.ndarray:
    """Row-wise softmax, stable for large and infinite logits."""
    with np.errstate(all="ignore"):
        row_max = np.max(logits, axis=-1, keepdims=True)
        row_max = np.where(np.isfinite(row_max), row_max, 0.0)
        exp = np.nan_to_num(np.exp(logits - row_max), nan=0.0, posinf=1.0)
        total = np.sum(exp, axis=-1, keepdims=True)
        probs = np.where(total > 0, exp / np.where(total > 0, total, 1.0), 0.0)
    return probs


def ctc_greedy_decode(logits: np.ndarray) -> CTCDecoding:
    values = _as_logits(logits)
    blank = values.shape[1] - 1
    best = np.argmax(values, axis=1)
    probs = softmax(values)

    indices, probabilities, timesteps = [], [], []
    previous = -1
    for t, index in enumerate(best.tolist()):
        if index != blank and index != previous:
            indices.append(index)
            probabilities.append(float(probs[t, index]))
            timesteps.append(t)
        previous = index

    return CTCDecoding(tuple(indices), tuple(probabilities), tuple(timesteps))


def recognition_confidence(probabilities: Sequence[float]) -> float:
    """Geometric mean of symbol probabilities, clamped to [0, 1]."""
    if len(probabilities) == 0:
        return 0.0
    values = np.nan_to_num(np.asarray(probabilities, dtype=np.float64), nan=0.0)
    log_mean = np.mean(np.log(np.maximum(values, PROBABILITY_FLOOR)))
    confidence = float(np.exp(log_mean))
    if not np.isfinite(confidence):
        return 0.0
    return min(1.0, max(0.0, confidence))


class RecognitionDecoder:
    """Maps recognizer logits to text through a charset."""

    def __init__(self, charset: Sequence[str], unknown_symbol: str = "?"):
        self.charset = list(charset)
        self.unknown_symbol = unknown_symbol

    def decode(self, logits: np.ndarray) -> DecodedText:
        decoding = ctc_greedy_decode(logits)

        symbols: List[str] = []
        characters: List[DecodedCharacter] = []
        diagnostics: List[str] = []
        for index, probability, timestep in zip(decoding.indices,
                                                decoding.probabilities,
                                                decoding.timesteps):
            if 0 <= index < len(self.charset):
                symbol = self.charset[index]
            else:
                symbol = self.unknown_symbol
                message = (f"class index {index} at timestep {timestep} is outside "
                           f"the charset ({len(self.charset)} symbols)")
                diagnostics.append(message)
                log_diagnostic(logger, "unknown_symbol", message,
                               index=index, timestep=timestep)
            symbols.append(symbol)
            characters.append(DecodedCharacter(symbol, index, probability, timestep))

        return DecodedText(
            text="".join(symbols),
            confidence=recognition_confidence(decoding.probabilities),
            characters=tuple(characters),
            diagnostics=tuple(diagnostics),
        )

    def recognize(self, session, tensor: np.ndarray) -> DecodedText:
        """Run the recognition session on one tensor and decode its first output."""
        outputs = session.run({session.input_names[0]: tensor})
        return self.decode(outputs[session.output_names[0]])


def region_confidence(detection_confidence: Optional[float], recognition: float) -> float:
    """A region is only as confident as its weakest stage."""
    if detection_confidence is None:
        return recognition
    return min(detection_confidence, recognition)


__all__ = [
    "CTCDecoding",
    "DecodedText",
    "softmax",
    "ctc_greedy_decode",
    "recognition_confidence",
    "region_confidence",
    "RecognitionDecoder",
    "PROBABILITY_FLOOR",
]
