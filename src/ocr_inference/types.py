"""Data structures and type definitions for the OCR inference engine.

Defines the enums and dataclasses shared by every pipeline stage: backends,
engine states, bounding boxes, recognized regions, results and status
reports. Result types are frozen so a finished OCRResult can be handed to
any consumer without copying.

Examples
--------
    from ocr_inference import OCREngine, ProcessingOptions

    async with OCREngine() as engine:
        options = ProcessingOptions(detection_threshold=0.6)
        result = await engine.process_image("scan.png", options)
        for region in result.regions:
            print(region.text, region.confidence, region.bbox.to_dict())
"""

from dataclasses import dataclass, field, asdict
from typing import List, Dict, Optional, Tuple, Any
from enum import Enum


class Backend(Enum):
    """Inference backend a primary session runs on."""
    GPU_COMPUTE = "gpu_compute"
    GPU_SHADER = "gpu_shader"
    VECTORIZED = "vectorized"
    SECONDARY = "secondary"


class EngineState(Enum):
    """Lifecycle states of the engine."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY_PRIMARY = "ready_primary"
    READY_FALLBACK = "ready_fallback"
    DISPOSED = "disposed"


class RegionSource(Enum):
    """Where a text region came from."""
    DETECTION = "detection"
    ONNX_RECOGNITION = "onnx-recognition"
    MANUAL_SELECTION = "manual-selection"
    TESSERACT = "tesseract"
    TESSERACT_REGION = "tesseract-region"


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in original-image pixel coordinates."""
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def iou(self, other: "BoundingBox") -> float:
        """Intersection over union with another box."""
        x1 = max(self.x, other.x)
        y1 = max(self.y, other.y)
        x2 = min(self.right, other.right)
        y2 = min(self.bottom, other.bottom)
        if x2 <= x1 or y2 <= y1:
            return 0.0
        intersection = (x2 - x1) * (y2 - y1)
        union = self.area + other.area - intersection
        return intersection / union if union > 0 else 0.0

    def clamp(self, image_width: float, image_height: float) -> "BoundingBox":
        """Clip the box to [0, image_width] x [0, image_height]."""
        x1 = min(max(self.x, 0.0), image_width)
        y1 = min(max(self.y, 0.0), image_height)
        x2 = min(max(self.right, 0.0), image_width)
        y2 = min(max(self.bottom, 0.0), image_height)
        return BoundingBox(x1, y1, max(0.0, x2 - x1), max(0.0, y2 - y1))

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoundingBox":
        return cls(float(data["x"]), float(data["y"]),
                   float(data["width"]), float(data["height"]))


@dataclass(frozen=True)
class DecodedCharacter:
    """One symbol emitted by CTC decoding."""
    symbol: str
    index: int
    probability: float
    timestep: int


@dataclass(frozen=True)
class TextRegion:
    """A detected and (possibly) recognized text region."""
    bbox: BoundingBox
    confidence: float
    text: str = ""
    font_size: int = 12
    source: str = RegionSource.DETECTION.value
    detection_confidence: Optional[float] = None
    recognition_confidence: Optional[float] = None
    characters: Tuple[DecodedCharacter, ...] = ()
    diagnostics: Tuple[str, ...] = ()

    @property
    def recognized(self) -> bool:
        return bool(self.text)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "bbox": self.bbox.to_dict(),
            "confidence": self.confidence,
            "text": self.text,
            "font_size": self.font_size,
            "source": self.source,
        }
        if self.detection_confidence is not None:
            data["detection_confidence"] = self.detection_confidence
        if self.recognition_confidence is not None:
            data["recognition_confidence"] = self.recognition_confidence
        if self.diagnostics:
            data["diagnostics"] = list(self.diagnostics)
        return data


@dataclass(frozen=True)
class ProcessingStatistics:
    """Aggregate counters for one OCR run."""
    total_regions: int = 0
    recognized_regions: int = 0
    failed_regions: int = 0
    average_confidence: float = 0.0
    detection_confidence: float = 0.0
    recognition_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class OCRResult:
    """Final result of process_image or process_region."""
    regions: Tuple[TextRegion, ...]
    confidence: float
    statistics: ProcessingStatistics
    engine_used: str
    backend: Backend
    processing_time_ms: float = 0.0
    image_size: Tuple[int, int] = (0, 0)
    processing_steps: Tuple[str, ...] = ()
    fallback: bool = False

    @property
    def text(self) -> str:
        """Recognized text of all regions, one region per line."""
        return "\n".join(region.text for region in self.regions if region.text)

    @property
    def region_count(self) -> int:
        return len(self.regions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regions": [region.to_dict() for region in self.regions],
            "confidence": self.confidence,
            "statistics": self.statistics.to_dict(),
            "engine_used": self.engine_used,
            "backend": self.backend.value,
            "processing_time_ms": self.processing_time_ms,
            "image_size": {"width": self.image_size[0], "height": self.image_size[1]},
            "processing_steps": list(self.processing_steps),
            "fallback": self.fallback,
        }


@dataclass
class ProcessingOptions:
    """Per-call overrides for the primary pipeline. None keeps the configured value."""
    detection_threshold: Optional[float] = None
    nms_threshold: Optional[float] = None
    batch_size: Optional[int] = None
    use_angle_correction: Optional[bool] = None

    def __post_init__(self):
        for name in ("detection_threshold", "nms_threshold"):
            value = getattr(self, name)
            if value is not None and not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0.0 and 1.0")
        if self.batch_size is not None and self.batch_size < 1:
            raise ValueError("batch_size must be positive")


@dataclass(frozen=True)
class InitializationStatus:
    """Returned by OCREngine.initialize()."""
    initialized: bool
    backend: Optional[Backend]
    using_fallback: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialized": self.initialized,
            "backend": self.backend.value if self.backend else None,
            "using_fallback": self.using_fallback,
        }


@dataclass(frozen=True)
class EngineInfo:
    """Snapshot of the engine's state for status reporting."""
    initialized: bool
    state: EngineState
    backend: Optional[Backend]
    using_fallback: bool
    models_loaded: bool
    fallback_available: bool
    fallback_reason: Optional[str] = None
    supported_backends: Tuple[str, ...] = ()
    version: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialized": self.initialized,
            "state": self.state.value,
            "backend": self.backend.value if self.backend else None,
            "using_fallback": self.using_fallback,
            "models_loaded": self.models_loaded,
            "fallback_available": self.fallback_available,
            "fallback_reason": self.fallback_reason,
            "supported_backends": list(self.supported_backends),
            "version": self.version,
        }


@dataclass(frozen=True)
class ProgressEvent:
    """Progress notification emitted during loading and processing."""
    message: str
    percent: int

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "percent": self.percent}


__all__ = [
    "Backend",
    "EngineState",
    "RegionSource",
    "BoundingBox",
    "DecodedCharacter",
    "TextRegion",
    "ProcessingStatistics",
    "OCRResult",
    "ProcessingOptions",
    "InitializationStatus",
    "EngineInfo",
    "ProgressEvent",
]
