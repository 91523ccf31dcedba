"""
Test 5: CTC decoding
Greedy decoding, confidence estimation and charset mapping.
"""

import math

import numpy as np
import pytest

from ocr_inference.exceptions import InferenceError
from ocr_inference.recognition import (
    RecognitionDecoder, ctc_greedy_decode, recognition_confidence, region_confidence,
)
from ocr_inference.recognition.decoder import PROBABILITY_FLOOR, softmax


def logits_for(indices, num_classes, high=8.0):
    logits = np.zeros((len(indices), num_classes), dtype=np.float32)
    for t, index in enumerate(indices):
        logits[t, index] = high
    return logits


def test_repeated_symbol_collapses_to_one():
    # 7 classes, blank is index 6
    decoding = ctc_greedy_decode(logits_for([5, 5, 6], 7))
    assert decoding.indices == (5,)
    assert decoding.timesteps == (0,)


def test_blank_separates_repeated_symbols():
    decoding = ctc_greedy_decode(logits_for([1, 3, 1, 1, 3, 0], 4))
    assert decoding.indices == (1, 1, 0)


def test_all_blank_sequence_decodes_to_empty_text():
    decoded = RecognitionDecoder(["A", "B"]).decode(logits_for([2, 2, 2, 2], 3))
    assert decoded.text == ""
    assert decoded.confidence == 0.0
    assert decoded.characters == ()


def test_output_never_longer_than_timesteps():
    rng = np.random.default_rng(11)
    for steps in (1, 5, 40):
        logits = rng.normal(size=(1, steps, 12))
        assert len(ctc_greedy_decode(logits).indices) <= steps


def test_text_and_confidence():
    decoder = RecognitionDecoder(["A", "B", "C"])
    decoded = decoder.decode(logits_for([0, 0, 3, 1, 2], 4)[np.newaxis])

    assert decoded.text == "ABC"
    assert [c.timestep for c in decoded.characters] == [0, 3, 4]
    expected = math.exp(8.0) / (math.exp(8.0) + 3)
    assert decoded.confidence == pytest.approx(expected, rel=1e-5)


def test_confidence_is_geometric_mean():
    assert recognition_confidence([0.25, 1.0]) == pytest.approx(0.5)
    assert recognition_confidence([]) == 0.0


def test_confidence_survives_underflow():
    value = recognition_confidence([0.0, 1e-320, 1.0])
    assert math.isfinite(value)
    assert 0.0 <= value <= 1.0
    assert value == pytest.approx(PROBABILITY_FLOOR ** (2 / 3), rel=1e-6)


def test_extreme_logits_stay_finite():
    logits = np.array([
        [1e30, -1e30, 0.0],
        [np.inf, 0.0, 0.0],
        [np.nan, 5.0, -np.inf],
        [-np.inf, -np.inf, -np.inf],
    ])
    probs = softmax(logits)
    assert np.all(np.isfinite(probs))

    decoded = RecognitionDecoder(["A", "B"]).decode(logits)
    assert 0.0 <= decoded.confidence <= 1.0
    assert math.isfinite(decoded.confidence)


def test_index_outside_charset_uses_unknown_symbol():
    decoder = RecognitionDecoder(["A"], unknown_symbol="?")
    decoded = decoder.decode(logits_for([0, 2, 3], 4))
    assert decoded.text == "A?"
    assert len(decoded.diagnostics) == 1
    assert "outside the charset" in decoded.diagnostics[0]


def test_unexpected_shape_is_an_inference_error():
    with pytest.raises(InferenceError):
        ctc_greedy_decode(np.zeros((2, 3, 4)))


def test_region_confidence_takes_weaker_stage():
    assert region_confidence(0.9, 0.6) == 0.6
    assert region_confidence(0.4, 0.6) == 0.4
    assert region_confidence(None, 0.6) == 0.6
