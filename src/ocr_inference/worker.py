"""Message-passing front end for running the engine in an isolated context.

The worker side consumes request envelopes ``{"type", "id", "data"}`` from an
inbox and writes response envelopes ``{"type", "id", "data" | "error"}`` to
an outbox. Every request id is answered by exactly one terminal SUCCESS or
ERROR message, preceded by zero or more PROGRESS messages. The client side
hands out fresh ids, tracks pending requests and enforces per-request
timeouts.

Examples
--------
    inbox, outbox = asyncio.Queue(), asyncio.Queue()
    worker = EngineWorker()
    server = asyncio.create_task(worker.serve(inbox, outbox))

    client = EngineWorkerClient(inbox, outbox, timeout=30.0)
    await client.start()
    await client.initialize()
    result = await client.process_image("page.png", progress=print)
    await client.close()
    await server
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set, Union

from .config import EngineConfig
from .exceptions import OCREngineError, OCRTimeoutError, ValidationError
from .pipeline import OCREngine
from .types import BoundingBox, ProcessingOptions, ProgressEvent

logger = logging.getLogger(__name__)

RequestId = Union[int, str]


class MessageType(Enum):
    """Request types understood by the worker."""
    INIT = "INIT"
    LOAD_MODELS = "LOAD_MODELS"
    PROCESS_IMAGE = "PROCESS_IMAGE"
    PROCESS_REGION = "PROCESS_REGION"
    GET_STATUS = "GET_STATUS"
    DISPOSE = "DISPOSE"


class ResponseType(Enum):
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    PROGRESS = "PROGRESS"


@dataclass
class Request:
    type: MessageType
    id: RequestId
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "id": self.id, "data": self.data}

    @classmethod
    def from_dict(cls, message: Dict[str, Any]) -> "Request":
        if not isinstance(message, dict):
            raise ValidationError("Request must be a mapping", "message", type(message).__name__)
        if message.get("id") is None:
            raise ValidationError("Request has no id", "id")
        try:
            message_type = MessageType(message.get("type"))
        except ValueError as e:
            raise ValidationError(f"Unknown request type: {message.get('type')!r}",
                                  "type", message.get("type")) from e
        data = message.get("data") or {}
        if not isinstance(data, dict):
            raise ValidationError("Request data must be a mapping", "data", type(data).__name__)
        return cls(message_type, message["id"], data)


@dataclass
class Response:
    type: ResponseType
    id: Optional[RequestId]
    data: Any = None
    error: Optional[Dict[str, Any]] = None

    @property
    def terminal(self) -> bool:
        return self.type is not ResponseType.PROGRESS

    def to_dict(self) -> Dict[str, Any]:
        message = {"type": self.type.value, "id": self.id}
        if self.type is ResponseType.ERROR:
            message["error"] = self.error
        else:
            message["data"] = self.data
        return message

    @classmethod
    def from_dict(cls, message: Dict[str, Any]) -> "Response":
        return cls(ResponseType(message["type"]), message.get("id"),
                   message.get("data"), message.get("error"))


def error_payload(error: BaseException) -> Dict[str, Any]:
    """Serializable description of an exception."""
    if isinstance(error, OCREngineError):
        return {"type": type(error).__name__, "message": error.message,
                "details": {k: v for k, v in error.details.items()}}
    return {"type": type(error).__name__, "message": str(error), "details": {}}


class WorkerError(OCREngineError):
    """An ERROR response received by the client."""

    def __init__(self, error: Dict[str, Any]):
        error = error or {}
        super().__init__(error.get("message", "Worker request failed"), error.get("details"))
        self.error_type = error.get("type", "Error")


def _options(data: Dict[str, Any]) -> Optional[ProcessingOptions]:
    options = data.get("options")
    if options is None or isinstance(options, ProcessingOptions):
        return options
    try:
        return ProcessingOptions(**options)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid processing options: {e}", "options", options) from e


class EngineWorker:
    """Serves engine requests arriving as message envelopes."""

    def __init__(self, engine_factory: Optional[Callable[[], OCREngine]] = None):
        self._engine_factory = engine_factory or OCREngine
        self.engine: Optional[OCREngine] = None
        self._seen_ids: Set[RequestId] = set()

    def _get_engine(self) -> OCREngine:
        if self.engine is None:
            self.engine = self._engine_factory()
        return self.engine

    async def handle(self, message: Dict[str, Any],
                     emit: Callable[[Dict[str, Any]], None]) -> Dict[str, Any]:
        """Process one request; PROGRESS goes to ``emit``, the terminal response is returned."""
        request_id = message.get("id") if isinstance(message, dict) else None
        try:
            request = Request.from_dict(message)
            if request.id in self._seen_ids:
                raise ValidationError(f"Request id {request.id!r} was already used", "id", request.id)
            self._seen_ids.add(request.id)

            def progress(event: ProgressEvent) -> None:
                emit(Response(ResponseType.PROGRESS, request.id, event.to_dict()).to_dict())

            data = await self._dispatch(request, progress)
            return Response(ResponseType.SUCCESS, request.id, data).to_dict()
        except Exception as e:
            logger.warning(f"Request {request_id!r} failed: {e}")
            return Response(ResponseType.ERROR, request_id, error=error_payload(e)).to_dict()

    async def _dispatch(self, request: Request, progress) -> Any:
        data = request.data
        message_type = request.type

        if message_type is MessageType.INIT:
            config = data.get("config")
            if isinstance(config, dict):
                config = EngineConfig.from_dict(config)
            status = await self._get_engine().initialize(config, progress)
            return status.to_dict()

        if message_type is MessageType.LOAD_MODELS:
            await self._get_engine().load_models(progress)
            return {"models_loaded": self._get_engine().get_engine_info().models_loaded}

        if message_type is MessageType.PROCESS_IMAGE:
            if data.get("image") is None:
                raise ValidationError("PROCESS_IMAGE requires an image", "image")
            result = await self._get_engine().process_image(data["image"], _options(data), progress)
            return result.to_dict()

        if message_type is MessageType.PROCESS_REGION:
            if data.get("image") is None or data.get("bbox") is None:
                raise ValidationError("PROCESS_REGION requires an image and a bbox", "bbox")
            result = await self._get_engine().process_region(
                data["image"], data["bbox"], _options(data), progress)
            return result.to_dict()

        if message_type is MessageType.GET_STATUS:
            return self._get_engine().get_engine_info().to_dict()

        await self._get_engine().dispose()
        return {"disposed": True}

    async def serve(self, inbox: asyncio.Queue, outbox: asyncio.Queue) -> None:
        """Answer requests from ``inbox`` until a ``None`` sentinel arrives.

        Requests are handled concurrently; the engine itself serializes
        processing calls. ``None`` is written to ``outbox`` once every
        in-flight request has been answered.
        """
        tasks: Set[asyncio.Task] = set()

        async def answer(message):
            outbox.put_nowait(await self.handle(message, outbox.put_nowait))

        while True:
            message = await inbox.get()
            if message is None:
                break
            task = asyncio.ensure_future(answer(message))
            tasks.add(task)
            task.add_done_callback(tasks.discard)

        if tasks:
            await asyncio.gather(*tasks)
        outbox.put_nowait(None)
        logger.info("Engine worker stopped")


class EngineWorkerClient:
    """Caller side of the worker protocol."""

    def __init__(self, inbox: asyncio.Queue, outbox: asyncio.Queue, timeout: float = 30.0):
        self._inbox = inbox
        self._outbox = outbox
        self.timeout = timeout
        self._ids = itertools.count(1)
        self._pending: Dict[RequestId, asyncio.Future] = {}
        self._progress: Dict[RequestId, Callable[[ProgressEvent], None]] = {}
        self._reader: Optional[asyncio.Task] = None
        self._init_future: Optional[asyncio.Future] = None

    @classmethod
    def from_config(cls, inbox: asyncio.Queue, outbox: asyncio.Queue,
                    config: EngineConfig) -> "EngineWorkerClient":
        return cls(inbox, outbox, timeout=config.runtime.request_timeout)

    async def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.ensure_future(self._read_responses())

    async def _read_responses(self) -> None:
        while True:
            message = await self._outbox.get()
            if message is None:
                break
            self._deliver(Response.from_dict(message))
        self._fail_pending(OCREngineError("Worker stopped"))

    def _deliver(self, response: Response) -> None:
        if response.type is ResponseType.PROGRESS:
            callback = self._progress.get(response.id)
            if callback is not None:
                data = response.data or {}
                callback(ProgressEvent(data.get("message", ""), data.get("percent", 0)))
            return

        future = self._pending.pop(response.id, None)
        self._progress.pop(response.id, None)
        if future is None or future.done():
            logger.debug(f"Dropping response for unknown or expired request {response.id!r}")
            return
        if response.type is ResponseType.SUCCESS:
            future.set_result(response.data)
        else:
            future.set_exception(WorkerError(response.error))

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        self._progress.clear()
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    async def request(self, message_type: MessageType, data: Optional[Dict[str, Any]] = None,
                      progress: Optional[Callable[[ProgressEvent], None]] = None,
                      timeout: Optional[float] = None) -> Any:
        """Send a request and wait for its terminal response."""
        await self.start()
        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        if progress is not None:
            self._progress[request_id] = progress

        await self._inbox.put(Request(message_type, request_id, data or {}).to_dict())

        timeout = self.timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            raise OCRTimeoutError(message_type.value, timeout) from None
        finally:
            self._pending.pop(request_id, None)
            self._progress.pop(request_id, None)

    async def initialize(self, config: Optional[Union[EngineConfig, Dict[str, Any]]] = None,
                         progress=None) -> Dict[str, Any]:
        """Initialize the remote engine. Concurrent callers share one request."""
        if self._init_future is None:
            if isinstance(config, EngineConfig):
                config = config.to_dict()
            data = {"config": config} if config is not None else {}
            self._init_future = asyncio.ensure_future(
                self.request(MessageType.INIT, data, progress))
        future = self._init_future
        try:
            return await asyncio.shield(future)
        except Exception:
            if self._init_future is future:
                self._init_future = None
            raise

    async def load_models(self, progress=None) -> Dict[str, Any]:
        return await self.request(MessageType.LOAD_MODELS, progress=progress)

    async def process_image(self, image, options: Optional[Dict[str, Any]] = None,
                            progress=None, timeout: Optional[float] = None) -> Dict[str, Any]:
        data = {"image": image}
        if options is not None:
            data["options"] = options
        return await self.request(MessageType.PROCESS_IMAGE, data, progress, timeout)

    async def process_region(self, image, bbox, options: Optional[Dict[str, Any]] = None,
                             progress=None, timeout: Optional[float] = None) -> Dict[str, Any]:
        if isinstance(bbox, BoundingBox):
            bbox = bbox.to_dict()
        data = {"image": image, "bbox": bbox}
        if options is not None:
            data["options"] = options
        return await self.request(MessageType.PROCESS_REGION, data, progress, timeout)

    async def get_status(self) -> Dict[str, Any]:
        return await self.request(MessageType.GET_STATUS)

    async def dispose(self) -> Dict[str, Any]:
        return await self.request(MessageType.DISPOSE)

    async def close(self) -> None:
        """Stop the worker and wait for the response reader to drain."""
        await self._inbox.put(None)
        if self._reader is not None:
            await self._reader
            self._reader = None


__all__ = [
    "MessageType",
    "ResponseType",
    "Request",
    "Response",
    "WorkerError",
    "error_payload",
    "EngineWorker",
    "EngineWorkerClient",
]
