"""Engine lifecycle and one-way fallback to the secondary engine.

The coordinator owns the EngineState, the selected backend probe, the
ModelSet and the secondary engine. Initialization is single-flight: every
concurrent ``initialize()`` awaits the same task. Once the coordinator has
switched to the secondary engine it never returns to the primary pipeline.

Examples
--------
    coordinator = FallbackCoordinator(config, executor=executor)
    status = await coordinator.initialize()
    result = await coordinator.run("process_image", run_primary, run_secondary)
"""

import asyncio
import functools
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from ..config import EngineConfig
from ..engines.base_engine import SecondaryEngine
from ..engines.tesseract_engine import TesseractEngine
from ..exceptions import (
    EngineDisposedError, InitializationError, ModelLoadError,
    NoBackendAvailableError, ValidationError,
)
from ..types import Backend, EngineState, InitializationStatus
from ..utils.logging import log_diagnostic
from .backend_selector import BackendProbe, BackendSelector, create_probes
from .progress import threadsafe_callback
from .sessions import ModelLoader, ModelSet
from .state import EngineEvent, is_ready, next_state

logger = logging.getLogger(__name__)

T = TypeVar("T")

FallbackListener = Callable[[str], None]


class FallbackCoordinator:
    """State machine driving primary initialization and fallback switching."""

    def __init__(self, config: EngineConfig,
                 probes: Optional[Sequence[BackendProbe]] = None,
                 secondary_factory: Optional[Callable[[], SecondaryEngine]] = None,
                 model_loader: Optional[ModelLoader] = None,
                 executor=None):
        self.config = config
        self._probes = list(probes) if probes is not None else None
        self._secondary_factory = secondary_factory or (lambda: TesseractEngine(self.config.fallback))
        self._model_loader = model_loader
        self.executor = executor

        self.state = EngineState.UNINITIALIZED
        self.probe: Optional[BackendProbe] = None
        self.models: Optional[ModelSet] = None
        self.secondary: Optional[SecondaryEngine] = None
        self.fallback_reason: Optional[str] = None
        self._init_task: Optional[asyncio.Task] = None
        self._listeners: List[FallbackListener] = []

    # ------------------------------------------------------------------ state

    def _transition(self, event: EngineEvent) -> None:
        previous = self.state
        self.state = next_state(self.state, event)
        logger.debug(f"Engine state {previous.value} -> {self.state.value} ({event.value})")

    @property
    def using_fallback(self) -> bool:
        return self.state is EngineState.READY_FALLBACK

    @property
    def backend(self) -> Optional[Backend]:
        if self.state is EngineState.READY_FALLBACK:
            return Backend.SECONDARY
        if self.state is EngineState.READY_PRIMARY and self.probe is not None:
            return self.probe.backend
        return None

    @property
    def models_loaded(self) -> bool:
        if self.state is EngineState.READY_FALLBACK:
            return True
        return self.models is not None

    def status(self) -> InitializationStatus:
        return InitializationStatus(
            initialized=is_ready(self.state),
            backend=self.backend,
            using_fallback=self.using_fallback,
        )

    def add_fallback_listener(self, listener: FallbackListener) -> None:
        """Register a callback invoked with the reason when the engine falls back."""
        self._listeners.append(listener)

    def _ensure_not_disposed(self, operation: str) -> None:
        if self.state is EngineState.DISPOSED:
            raise EngineDisposedError(operation)

    async def _run_blocking(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, functools.partial(func, *args))

    @property
    def model_loader(self) -> ModelLoader:
        if self._model_loader is None:
            self._model_loader = ModelLoader(self.config.models)
        return self._model_loader

    # --------------------------------------------------------- initialization

    async def initialize(self, progress=None) -> InitializationStatus:
        """Bring the engine to READY_PRIMARY or READY_FALLBACK (single-flight)."""
        self._ensure_not_disposed("initialize")
        if is_ready(self.state):
            return self.status()

        if self._init_task is None:
            self._transition(EngineEvent.BEGIN_INIT)
            self._init_task = asyncio.ensure_future(self._initialize(progress))

        return await asyncio.shield(self._init_task)

    async def _initialize(self, progress) -> InitializationStatus:
        try:
            event = await self._initialize_backends(progress)
            self._complete(event)
            return self.status()
        except BaseException as e:
            if self.state is EngineState.INITIALIZING:
                self._transition(EngineEvent.INIT_FAILED)
                self._release_models()
                self.probe = None
            elif self.state is EngineState.DISPOSED:
                self._release_all()
                if isinstance(e, Exception) and not isinstance(e, EngineDisposedError):
                    raise EngineDisposedError("initialize") from e
            raise
        finally:
            self._init_task = None

    async def _initialize_backends(self, progress) -> EngineEvent:
        if self.config.fallback.force:
            logger.info("Fallback forced by configuration")
            await self._start_secondary("fallback forced by configuration")
            return EngineEvent.FALLBACK_READY

        probes = self._probes if self._probes is not None else create_probes(self.config.runtime)
        selector = BackendSelector(probes, self.config.runtime)
        try:
            self.probe = await selector.select()
        except NoBackendAvailableError as e:
            await self._start_secondary(str(e), cause=e)
            return EngineEvent.FALLBACK_READY
        self._ensure_not_disposed("initialize")

        if self.config.models.preload:
            relay = threadsafe_callback(progress, asyncio.get_running_loop())
            try:
                self.models = await self._run_blocking(self.model_loader.load, self.probe, relay)
            except ModelLoadError as e:
                self.probe = None
                await self._start_secondary(f"model loading failed: {e}", cause=e)
                return EngineEvent.FALLBACK_READY

        return EngineEvent.PRIMARY_READY

    def _complete(self, event: EngineEvent) -> None:
        if self.state is EngineState.DISPOSED:
            # dispose() ran while initialization was in flight
            self._release_all()
            raise EngineDisposedError("initialize")
        self._transition(event)
        if event is EngineEvent.FALLBACK_READY:
            self._notify_fallback()
        else:
            logger.info(f"Engine ready on backend {self.probe.name}")

    async def _start_secondary(self, reason: str, cause: Optional[BaseException] = None) -> None:
        """Start the secondary engine if needed and record why."""
        if not self.config.fallback.enabled:
            raise InitializationError("Primary pipeline unavailable and fallback is disabled",
                                      reason=reason) from cause

        if self.secondary is None:
            try:
                engine = self._secondary_factory()
            except Exception as e:
                raise InitializationError("Could not create secondary engine",
                                          reason=str(e)) from e
            await self._run_blocking(engine.initialize)
            self.secondary = engine

        self.fallback_reason = reason

    def _notify_fallback(self) -> None:
        log_diagnostic(logger, "fallback_switch",
                       f"Using secondary engine: {self.fallback_reason}",
                       reason=self.fallback_reason)
        for listener in list(self._listeners):
            try:
                listener(self.fallback_reason)
            except Exception as e:
                logger.warning(f"Fallback listener failed: {e}")

    # ----------------------------------------------------------------- models

    async def ensure_models(self, progress=None) -> None:
        """Load the ModelSet on first use when preloading is disabled."""
        if self.state is not EngineState.READY_PRIMARY or self.models is not None:
            return
        relay = threadsafe_callback(progress, asyncio.get_running_loop())
        models = await self._run_blocking(self.model_loader.load, self.probe, relay)
        if self.state is not EngineState.READY_PRIMARY:
            models.release()
            self._ensure_not_disposed("load_models")
            return
        self.models = models

    async def load_models(self, progress=None) -> None:
        self._ensure_not_disposed("load_models")
        if not is_ready(self.state):
            raise InitializationError("Engine is not initialized", reason="not_initialized")
        try:
            await self.ensure_models(progress)
        except ModelLoadError as e:
            if not self.config.fallback.enabled:
                raise
            await self.switch_to_fallback(f"model loading failed: {e}", cause=e)

    # -------------------------------------------------------------- execution

    async def switch_to_fallback(self, reason: str, cause: Optional[BaseException] = None) -> None:
        """Move from READY_PRIMARY to READY_FALLBACK. Never reversed."""
        self._ensure_not_disposed("switch_to_fallback")
        if self.state is EngineState.READY_FALLBACK:
            return

        await self._start_secondary(reason, cause)
        self._ensure_not_disposed("switch_to_fallback")
        self._release_models()
        self.probe = None
        self._transition(EngineEvent.FALLBACK_READY)
        self._notify_fallback()

    async def run(self, operation: str,
                  primary: Callable[[ModelSet], Awaitable[T]],
                  secondary: Callable[[SecondaryEngine], Awaitable[T]],
                  progress=None) -> T:
        """Run an operation on the active engine, falling back once on primary failure."""
        self._ensure_not_disposed(operation)
        if not is_ready(self.state):
            raise InitializationError("Engine is not initialized", reason="not_initialized")

        if self.state is EngineState.READY_FALLBACK:
            return await secondary(self.secondary)

        try:
            await self.ensure_models(progress)
            return await primary(self.models)
        except (EngineDisposedError, ValidationError):
            raise
        except Exception as e:
            self._ensure_not_disposed(operation)
            if not self.config.fallback.enabled:
                raise
            logger.warning(f"{operation} failed on the primary pipeline: {e}")
            await self.switch_to_fallback(f"{operation} failed: {e}", cause=e)

        return await secondary(self.secondary)

    # ---------------------------------------------------------------- dispose

    def _release_models(self) -> None:
        if self.models is not None:
            self.models.release()
            self.models = None

    def _release_all(self) -> None:
        self._release_models()
        if self.secondary is not None:
            try:
                self.secondary.terminate()
            except Exception as e:
                logger.warning(f"Failed to terminate secondary engine: {e}")
            self.secondary = None
        self.probe = None

    def dispose(self) -> None:
        """Release every resource. The coordinator accepts no calls afterwards."""
        self._transition(EngineEvent.DISPOSE)
        self._release_all()
        logger.info("Engine disposed")


__all__ = ["FallbackCoordinator", "FallbackListener"]
