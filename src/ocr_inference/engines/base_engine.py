"""
Base interface for secondary (non-numeric) OCR engines.
Provides the standard lifecycle, status tracking and performance counters;
subclasses implement the engine-specific initialization and recognition.
"""

import time
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

from ..exceptions import InitializationError, InferenceError
from ..types import BoundingBox


class EngineStatus(Enum):
    """Secondary engine operational status."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class SecondaryWord:
    """A word reported by the secondary engine. Confidence is on a 0-100 scale."""
    text: str
    confidence: float
    bbox: BoundingBox


@dataclass(frozen=True)
class SecondaryResult:
    """Raw secondary engine output. Confidence is on a 0-100 scale."""
    text: str
    confidence: float
    words: List[SecondaryWord] = field(default_factory=list)


class SecondaryEngine(ABC):
    """
    Abstract base class for secondary OCR engines.
    Engines are synchronous; the coordinator runs them off the event loop.
    """

    name = "secondary"

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.name}")
        self._status = EngineStatus.UNINITIALIZED
        self._status_lock = threading.RLock()
        self._last_error: Optional[str] = None
        self._initialization_time: Optional[float] = None

        self._total_recognitions = 0
        self._failed_recognitions = 0
        self._total_processing_time = 0.0

    @property
    def status(self) -> EngineStatus:
        with self._status_lock:
            return self._status

    @property
    def is_ready(self) -> bool:
        return self.status == EngineStatus.READY

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def get_performance_stats(self) -> Dict[str, Any]:
        """Get engine performance statistics."""
        total = self._total_recognitions
        return {
            'engine_name': self.name,
            'status': self.status.value,
            'total_recognitions': total,
            'failed_recognitions': self._failed_recognitions,
            'success_rate': (total - self._failed_recognitions) / total if total else 0.0,
            'average_processing_time': self._total_processing_time / total if total else 0.0,
            'initialization_time': self._initialization_time,
            'last_error': self._last_error,
        }

    def initialize(self) -> None:
        """Start the engine. Raises InitializationError on failure."""
        with self._status_lock:
            if self._status == EngineStatus.READY:
                return
            self._status = EngineStatus.INITIALIZING

        start_time = time.time()
        try:
            self._initialize_engine()
        except Exception as e:
            with self._status_lock:
                self._status = EngineStatus.ERROR
                self._last_error = str(e)
            self.logger.error(f"Failed to initialize {self.name} engine: {e}")
            if isinstance(e, InitializationError):
                raise
            raise InitializationError(f"{self.name} engine failed to start",
                                      reason=str(e)) from e

        self._initialization_time = time.time() - start_time
        with self._status_lock:
            self._status = EngineStatus.READY
            self._last_error = None
        self.logger.info(f"Initialized {self.name} engine in {self._initialization_time:.2f}s")

    def recognize(self, image: np.ndarray) -> SecondaryResult:
        """Recognize text in an RGB image."""
        if not self.is_ready:
            raise InferenceError(f"{self.name} engine is not ready ({self.status.value})",
                                 self.name)

        start_time = time.time()
        self._total_recognitions += 1
        try:
            return self._recognize(image)
        except Exception as e:
            self._failed_recognitions += 1
            self._last_error = str(e)
            raise
        finally:
            self._total_processing_time += time.time() - start_time

    def terminate(self) -> None:
        """Release engine resources. Safe to call more than once."""
        with self._status_lock:
            if self._status == EngineStatus.TERMINATED:
                return
            self._status = EngineStatus.TERMINATED
        self._terminate_engine()
        self.logger.info(f"Terminated {self.name} engine")

    @abstractmethod
    def _initialize_engine(self) -> None:
        """Subclass-specific initialization logic."""

    @abstractmethod
    def _recognize(self, image: np.ndarray) -> SecondaryResult:
        """Subclass-specific recognition."""

    def _terminate_engine(self) -> None:
        """Subclass-specific cleanup."""


__all__ = ["EngineStatus", "SecondaryWord", "SecondaryResult", "SecondaryEngine"]
