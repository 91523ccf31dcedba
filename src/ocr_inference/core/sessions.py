"""Model sessions and the model set used by the primary pipeline.

A ModelSession wraps a runtime inference session behind a small interface:
named inputs and outputs, ``run(feeds) -> {name: array}`` and ``release()``.
The ModelLoader opens the detection, recognition and optional angle models
on the selected backend and reads the charset.

Examples
--------
    loader = ModelLoader(config.models)
    models = loader.load(probe, progress=lambda event: print(event.percent))
    outputs = models.detection.run({models.detection.input_names[0]: tensor})
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import numpy as np

from ..config import ModelConfig
from ..exceptions import ModelLoadError
from ..recognition.charset import load_charset
from ..types import ProgressEvent
from ..utils.logging import log_diagnostic

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


class ModelSession:
    """Named-input, named-output wrapper around an inference session."""

    def __init__(self, session):
        self._session = session
        self.input_names = [node.name for node in session.get_inputs()]
        self.output_names = [node.name for node in session.get_outputs()]

    @property
    def released(self) -> bool:
        return self._session is None

    def run(self, feeds: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        if self._session is None:
            raise RuntimeError("session has been released")
        outputs = self._session.run(None, feeds)
        return dict(zip(self.output_names, outputs))

    def release(self) -> None:
        self._session = None


def load_session(path: Union[str, Path], probe, min_bytes: int = 0,
                 model_name: Optional[str] = None):
    """Open one model file on the probe's backend.

    Missing files and runtime rejections raise ModelLoadError. Files smaller
    than ``min_bytes`` are loaded anyway but flagged as likely placeholders.
    """
    path = Path(path)
    model_name = model_name or path.stem

    if not path.is_file():
        raise ModelLoadError(f"Model file not found: {path}", str(path), model_name)

    size = path.stat().st_size
    if size < min_bytes:
        log_diagnostic(logger, "model_size_suspicious",
                       f"{model_name} model is only {size} bytes; it may be a placeholder",
                       model=model_name, size=size, expected_min=min_bytes)
    else:
        logger.info(f"{model_name} model size: {size / 1024 / 1024:.1f} MB")

    try:
        session = probe.create_session(path)
    except Exception as e:
        raise ModelLoadError(f"Failed to create {model_name} session: {e}",
                             str(path), model_name) from e

    logger.info(f"Loaded {model_name} model on {probe.name}")
    return session


@dataclass
class ModelSet:
    """Sessions and charset owned by one engine."""
    detection: object
    recognition: object
    angle: Optional[object] = None
    charset: List[str] = field(default_factory=list)

    def sessions(self) -> list:
        return [s for s in (self.detection, self.recognition, self.angle) if s is not None]

    def release(self) -> None:
        for session in self.sessions():
            try:
                session.release()
            except Exception as e:
                logger.warning(f"Failed to release session: {e}")
        self.detection = None
        self.recognition = None
        self.angle = None


class ModelLoader:
    """Loads the charset and models in a fixed order, reporting progress."""

    def __init__(self, config: Optional[ModelConfig] = None):
        self.config = config or ModelConfig()

    def _load_angle(self, probe):
        if not self.config.use_angle_model:
            return None
        path = self.config.resolve(self.config.angle_model)
        try:
            return load_session(path, probe, self.config.min_angle_model_bytes, "angle")
        except ModelLoadError as e:
            log_diagnostic(logger, "angle_model_unavailable",
                           f"Angle correction disabled: {e}", model_path=str(path))
            return None

    def load(self, probe, progress: Optional[ProgressCallback] = None) -> ModelSet:
        def report(message: str, percent: int) -> None:
            if progress is not None:
                progress(ProgressEvent(message, percent))

        report("Loading charset", 10)
        charset = load_charset(self.config.resolve(self.config.charset_file))

        report("Loading detection model", 30)
        detection = load_session(self.config.resolve(self.config.detection_model), probe,
                                 self.config.min_model_bytes, "detection")

        try:
            report("Loading recognition model", 60)
            recognition = load_session(self.config.resolve(self.config.recognition_model),
                                       probe, self.config.min_model_bytes, "recognition")

            report("Loading angle classification model", 90)
            angle = self._load_angle(probe)
        except Exception:
            detection.release()
            raise

        report("Models loaded", 100)
        return ModelSet(detection=detection, recognition=recognition,
                        angle=angle, charset=charset)


__all__ = [
    "ModelSession",
    "ModelSet",
    "ModelLoader",
    "load_session",
    "ProgressCallback",
]
