"""OCR inference engine with runtime backend selection and Tesseract fallback.

Runs a two-stage ONNX text detector and CTC recognizer on the best available
ONNX Runtime execution provider, and switches once and for all to Tesseract
when the primary pipeline is unavailable or fails.

Examples
--------
    import asyncio
    from ocr_inference import OCREngine, extract_text

    # Quick text extraction
    text = extract_text("document.jpg")

    # Full control
    async def main():
        async with OCREngine() as engine:
            result = await engine.process_image("document.jpg")
            for region in result.regions:
                print(region.text, region.confidence)

    asyncio.run(main())
"""

import asyncio

from .config import EngineConfig
from .pipeline import OCREngine, __version__
from .types import (
    Backend,
    BoundingBox,
    EngineInfo,
    EngineState,
    InitializationStatus,
    OCRResult,
    ProcessingOptions,
    ProgressEvent,
    TextRegion,
)
from .exceptions import (
    OCREngineError,
    InitializationError,
    NoBackendAvailableError,
    ModelLoadError,
    InferenceError,
    OCRTimeoutError,
    EngineDisposedError,
    ConfigurationError,
    ValidationError,
)
from .core.progress import ProgressChannel
from .utils.logging import setup_logging

__all__ = [
    'OCREngine',
    'EngineConfig',
    'Backend',
    'BoundingBox',
    'EngineInfo',
    'EngineState',
    'InitializationStatus',
    'OCRResult',
    'ProcessingOptions',
    'ProgressEvent',
    'ProgressChannel',
    'TextRegion',
    'OCREngineError',
    'InitializationError',
    'NoBackendAvailableError',
    'ModelLoadError',
    'InferenceError',
    'OCRTimeoutError',
    'EngineDisposedError',
    'ConfigurationError',
    'ValidationError',
    'extract_text',
    'configure_logging',
    '__version__',
]


def extract_text(image, config: EngineConfig = None, **kwargs) -> str:
    """Extract text from an image with a short-lived engine.

    Convenience function for scripts. Keyword arguments become
    ProcessingOptions. Must not be called from a running event loop.
    """
    options = ProcessingOptions(**kwargs) if kwargs else None

    async def _run():
        async with OCREngine(config) as engine:
            result = await engine.process_image(image, options)
        return result.text

    return asyncio.run(_run())


def configure_logging(level: str = "INFO", log_file: str = None, json_format: bool = False) -> None:
    """Configure logging level and output destination for the library."""
    setup_logging(level=level, log_file=log_file, json_format=json_format)


# Initialize default logging
setup_logging(level="WARNING")
