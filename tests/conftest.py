"""
Shared fakes and fixtures for the test suite.

Model sessions, backend probes and the secondary engine are replaced by
in-process fakes so the pipeline can be exercised without model files,
GPU drivers or a Tesseract installation.
"""

import sys
import time
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from ocr_inference.config import EngineConfig
from ocr_inference.core.backend_selector import BackendProbe
from ocr_inference.engines.base_engine import SecondaryEngine, SecondaryResult, SecondaryWord
from ocr_inference.pipeline import OCREngine
from ocr_inference.types import Backend, BoundingBox

CHARSET = ["A", "B", "C"]
BLANK = len(CHARSET)
CANVAS = 64

# (px, py, score, (top, right, bottom, left)) on a 64x64 detector map
DEFAULT_POINTS = [
    (20, 30, 0.9, (5.0, 15.0, 5.0, 10.0)),
    (40, 50, 0.8, (4.0, 10.0, 4.0, 10.0)),
]


def one_hot_logits(indices, num_classes=BLANK + 1, high=10.0):
    logits = np.zeros((1, len(indices), num_classes), dtype=np.float32)
    for t, index in enumerate(indices):
        logits[0, t, index] = high
    return logits


def detection_maps(points=DEFAULT_POINTS, size=CANVAS):
    prob = np.zeros((1, 1, size, size), dtype=np.float32)
    geometry = np.zeros((1, 4, size, size), dtype=np.float32)
    for px, py, score, distances in points:
        prob[0, 0, py, px] = score
        geometry[0, :, py, px] = distances
    return prob, geometry


class FakeSession:
    """Stands in for ModelSession; ``handler(feeds)`` returns the outputs."""

    def __init__(self, handler, input_names=("x",), output_names=("y",), delay=0.0):
        self.handler = handler
        self.input_names = list(input_names)
        self.output_names = list(output_names)
        self.delay = delay
        self.calls = 0
        self.released = False

    def run(self, feeds):
        if self.released:
            raise RuntimeError("session has been released")
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        outputs = self.handler(feeds)
        if isinstance(outputs, dict):
            return outputs
        if not isinstance(outputs, (list, tuple)):
            outputs = [outputs]
        return dict(zip(self.output_names, outputs))

    def release(self):
        self.released = True


def detection_session(points=DEFAULT_POINTS, fail=False):
    prob, geometry = detection_maps(points)

    def handler(feeds):
        if fail:
            raise RuntimeError("detector crashed")
        return [prob, geometry]

    return FakeSession(handler, input_names=["image"], output_names=["prob", "geometry"])


def recognition_session(indices=(0, 0, BLANK, 1), delay=0.0):
    return FakeSession(lambda feeds: one_hot_logits(indices),
                       input_names=["crop"], output_names=["logits"], delay=delay)


class FakeProbe(BackendProbe):
    """Backend probe whose sessions come from per-filename factories."""

    def __init__(self, backend=Backend.VECTORIZED, supported=True, error=None,
                 delay=0.0, sessions=None):
        self.backend = backend
        self.supported = supported
        self.error = error
        self.delay = delay
        self.sessions = sessions if sessions is not None else {
            "text_det.onnx": detection_session,
            "text_rec_jp.onnx": recognition_session,
        }
        self.probe_calls = 0
        self.configured = None
        self.created = []

    def is_supported(self):
        return self.supported

    def probe(self):
        self.probe_calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error

    def configure(self, runtime):
        self.configured = runtime

    def create_session(self, model_path):
        name = Path(model_path).name
        factory = self.sessions.get(name)
        if factory is None:
            raise RuntimeError(f"no session registered for {name}")
        session = factory()
        self.created.append((name, session))
        return session

    def session(self, name):
        return [s for n, s in self.created if n == name][-1]


class FakeSecondaryEngine(SecondaryEngine):
    """Secondary engine returning canned words."""

    name = "tesseract"

    def __init__(self, words=None, text=None, confidence=90.0, fail_init=False):
        super().__init__()
        if words is None:
            words = [
                SecondaryWord("hello", 95.0, BoundingBox(2, 2, 20, 10)),
                SecondaryWord("world", 60.0, BoundingBox(2, 20, 24, 10)),
                SecondaryWord("noise", 20.0, BoundingBox(40, 40, 5, 5)),
            ]
        self.words = list(words)
        self.text = text
        self.confidence = confidence
        self.fail_init = fail_init
        self.init_calls = 0
        self.images = []
        self.terminated = False

    def _initialize_engine(self):
        self.init_calls += 1
        if self.fail_init:
            raise RuntimeError("tesseract is not installed")

    def _recognize(self, image):
        self.images.append(image.shape)
        text = self.text if self.text is not None else " ".join(w.text for w in self.words)
        return SecondaryResult(text=text, confidence=self.confidence, words=list(self.words))

    def _terminate_engine(self):
        self.terminated = True


def write_models(directory, charset=CHARSET, detection=True, recognition=True, angle=False):
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    if detection:
        (directory / "text_det.onnx").write_bytes(b"det-model")
    if recognition:
        (directory / "text_rec_jp.onnx").write_bytes(b"rec-model")
    if angle:
        (directory / "text_angle.onnx").write_bytes(b"angle-model")
    if charset is not None:
        (directory / "charset_jp.txt").write_text("\n".join(charset) + "\n", encoding="utf-8")
    return directory


def make_config(models_dir, **sections):
    config = {
        "models": {
            "models_path": str(models_dir),
            "min_model_bytes": 0,
            "min_angle_model_bytes": 0,
            "use_angle_model": False,
        },
        "detection": {"canvas_size": CANVAS},
        "runtime": {"backends": ["vectorized"], "probe_timeout": 5.0},
    }
    for name, values in sections.items():
        config.setdefault(name, {}).update(values)
    return EngineConfig.from_dict(config)


def make_engine(config, probe=None, secondary=None, probes=None):
    probes = probes if probes is not None else [probe or FakeProbe()]
    secondary = secondary if secondary is not None else FakeSecondaryEngine()
    return OCREngine(config, probes=probes, secondary_factory=lambda: secondary)


@pytest.fixture
def models_dir(tmp_path):
    return write_models(tmp_path / "models")


@pytest.fixture
def config(models_dir):
    return make_config(models_dir)


@pytest.fixture
def image():
    """64x64 white RGB image with two dark text-like bars."""
    rgb = np.full((CANVAS, CANVAS, 3), 255, dtype=np.uint8)
    rgb[27:33, 12:33] = 20
    rgb[47:53, 32:48] = 20
    return rgb
