"""Engine facade composing backend selection, the numeric pipeline and fallback.

OCREngine is the public entry point. All operations are coroutines; numeric
work runs on a single dedicated worker thread, and ``process_image`` /
``process_region`` calls on one engine are serialized.

Examples
--------
    from ocr_inference import OCREngine, ProcessingOptions

    # Basic usage
    async with OCREngine() as engine:
        result = await engine.process_image("receipt.jpg")
        print(result.text)

    # Explicit lifecycle with progress reporting
    engine = OCREngine(EngineConfig.load("ocr.yaml"))
    status = await engine.initialize()
    await engine.load_models(progress=lambda e: print(e.message, e.percent))
    result = await engine.process_region(image, {"x": 10, "y": 20, "width": 200, "height": 40})
    await engine.dispose()
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Sequence, Union

from .config import EngineConfig
from .core.backend_selector import BackendProbe
from .core.fallback import FallbackCoordinator
from .core.primary import PrimaryPipeline, validate_region
from .core.progress import threadsafe_callback
from .core.secondary import SecondaryPipeline
from .core.sessions import ModelLoader
from .engines.base_engine import SecondaryEngine
from .exceptions import EngineDisposedError, ValidationError
from .types import (
    BoundingBox, EngineInfo, EngineState, InitializationStatus, OCRResult,
    ProcessingOptions, ProgressEvent,
)
from .utils.images import ImageInput, to_rgb_array
from .utils.logging import setup_logger

__version__ = "1.0.0"

ProgressCallback = Callable[[ProgressEvent], None]


def _as_bbox(bbox: Union[BoundingBox, Dict[str, Any], Sequence[float]]) -> BoundingBox:
    if isinstance(bbox, BoundingBox):
        return bbox
    try:
        if isinstance(bbox, dict):
            return BoundingBox.from_dict(bbox)
        x, y, width, height = bbox
        return BoundingBox(float(x), float(y), float(width), float(height))
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid bounding box: {e}", "bbox", bbox) from e


class OCREngine:
    """OCR engine with automatic fallback to a secondary engine.

    Without ``config`` the engine reads the packaged defaults and any
    ``OCR_*`` environment overrides through ``EngineConfig.load()``.
    Dependencies can be injected for embedding and testing: ``probes`` replaces
    the ONNX Runtime backend probes, ``secondary_factory`` builds the secondary
    engine, ``model_loader`` replaces the default loader.
    """

    def __init__(self, config: Optional[EngineConfig] = None,
                 probes: Optional[Sequence[BackendProbe]] = None,
                 secondary_factory: Optional[Callable[[], SecondaryEngine]] = None,
                 model_loader: Optional[ModelLoader] = None):
        self.logger = setup_logger(self.__class__.__name__)
        self.config = config if config is not None else EngineConfig.load()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ocr-inference")
        self._lock = asyncio.Lock()
        self.coordinator = FallbackCoordinator(
            self.config,
            probes=probes,
            secondary_factory=secondary_factory,
            model_loader=model_loader,
            executor=self._executor,
        )

    # ------------------------------------------------------------- lifecycle

    @property
    def state(self) -> EngineState:
        return self.coordinator.state

    def add_fallback_listener(self, listener: Callable[[str], None]) -> None:
        self.coordinator.add_fallback_listener(listener)

    async def initialize(self, config: Optional[EngineConfig] = None,
                         progress: Optional[ProgressCallback] = None) -> InitializationStatus:
        """Select a backend (or the secondary engine) and load models."""
        if config is not None and self.coordinator.state is EngineState.UNINITIALIZED:
            self.config = config
            self.coordinator.config = config
        status = await self.coordinator.initialize(progress)
        self.logger.info(f"Engine initialized: backend={status.backend.value if status.backend else None}, "
                         f"fallback={status.using_fallback}")
        return status

    async def load_models(self, progress: Optional[ProgressCallback] = None) -> None:
        """Load the ModelSet now. No-op when loaded or running on the secondary engine."""
        await self.coordinator.load_models(progress)

    def get_engine_info(self) -> EngineInfo:
        """Snapshot of the engine state. Still answers after dispose(), reporting DISPOSED."""
        coordinator = self.coordinator
        return EngineInfo(
            initialized=coordinator.state in (EngineState.READY_PRIMARY, EngineState.READY_FALLBACK),
            state=coordinator.state,
            backend=coordinator.backend,
            using_fallback=coordinator.using_fallback,
            models_loaded=coordinator.models_loaded,
            fallback_available=coordinator.secondary is not None,
            fallback_reason=coordinator.fallback_reason,
            supported_backends=tuple(self.config.runtime.backends),
            version=__version__,
        )

    async def dispose(self) -> None:
        """Release models and the secondary engine. Later calls raise EngineDisposedError."""
        if self.coordinator.state is EngineState.DISPOSED:
            raise EngineDisposedError("dispose")
        async with self._lock:
            self.coordinator.dispose()
        self._executor.shutdown(wait=False)

    async def __aenter__(self) -> "OCREngine":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.coordinator.state is not EngineState.DISPOSED:
            await self.dispose()

    # ------------------------------------------------------------- processing

    async def _run_blocking(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: func(*args))

    async def process_image(self, image: ImageInput,
                            options: Optional[ProcessingOptions] = None,
                            progress: Optional[ProgressCallback] = None) -> OCRResult:
        """Detect and recognize every text region of an image."""
        if self.coordinator.state is EngineState.DISPOSED:
            raise EngineDisposedError("process_image")
        rgb = to_rgb_array(image)
        relay = threadsafe_callback(progress, asyncio.get_running_loop())

        async def primary(models):
            pipeline = PrimaryPipeline(self.config, models, self.coordinator.backend, relay)
            return await self._run_blocking(pipeline.run_image, rgb, options)

        async def secondary(engine):
            pipeline = SecondaryPipeline(self.config, engine, relay)
            return await self._run_blocking(pipeline.run_image, rgb)

        async with self._lock:
            result = await self.coordinator.run("process_image", primary, secondary, progress)
        self.logger.info(f"process_image: {result.region_count} regions via {result.engine_used} "
                         f"in {result.processing_time_ms:.0f} ms")
        return result

    async def process_region(self, image: ImageInput,
                             bbox: Union[BoundingBox, Dict[str, Any], Sequence[float]],
                             options: Optional[ProcessingOptions] = None,
                             progress: Optional[ProgressCallback] = None) -> OCRResult:
        """Re-run recognition on one caller-selected region."""
        if self.coordinator.state is EngineState.DISPOSED:
            raise EngineDisposedError("process_region")
        rgb = to_rgb_array(image)
        height, width = rgb.shape[:2]
        region = validate_region(_as_bbox(bbox), width, height)
        relay = threadsafe_callback(progress, asyncio.get_running_loop())

        async def primary(models):
            pipeline = PrimaryPipeline(self.config, models, self.coordinator.backend, relay)
            return await self._run_blocking(pipeline.run_region, rgb, region, options)

        async def secondary(engine):
            pipeline = SecondaryPipeline(self.config, engine, relay)
            return await self._run_blocking(pipeline.run_region, rgb, region)

        async with self._lock:
            return await self.coordinator.run("process_region", primary, secondary, progress)


__all__ = ["OCREngine", "ProgressCallback", "__version__"]
