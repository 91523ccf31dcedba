"""Exception classes for the OCR inference engine.

Defines the exception hierarchy raised by the engine facade, the fallback
coordinator and the numeric pipeline stages. All exceptions inherit from
OCREngineError so callers can catch every engine failure at once.

Examples
--------
    from ocr_inference import OCREngine, OCREngineError, EngineDisposedError

    try:
        result = await engine.process_image("receipt.png")
    except EngineDisposedError:
        print("Engine was disposed, create a new one")
    except OCREngineError as e:
        print(f"OCR failed: {e}")
"""


class OCREngineError(Exception):
    """Base exception for all OCR engine errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class InitializationError(OCREngineError):
    """Raised when neither the primary nor the secondary engine could start."""

    def __init__(self, message: str, reason: str = None, details: dict = None):
        details = dict(details or {})
        if reason:
            details["reason"] = reason
        super().__init__(message, details)
        self.reason = reason


class NoBackendAvailableError(InitializationError):
    """Raised when every candidate inference backend failed its probe."""

    def __init__(self, attempted: list = None, failures: dict = None):
        attempted = list(attempted or [])
        failures = dict(failures or {})
        message = "No inference backend available"
        if attempted:
            message += f" (tried: {', '.join(attempted)})"
        super().__init__(message, details={"attempted": attempted, "failures": failures})
        self.attempted = attempted
        self.failures = failures


class ModelLoadError(OCREngineError):
    """Raised when a model artifact is missing, unreadable or rejected by the runtime."""

    def __init__(self, message: str, model_path: str = None, model_name: str = None):
        details = {}
        if model_path:
            details["model_path"] = str(model_path)
        if model_name:
            details["model_name"] = model_name
        super().__init__(message, details)
        self.model_path = model_path
        self.model_name = model_name


class InferenceError(OCREngineError):
    """Raised when a model session fails during a pipeline stage."""

    def __init__(self, message: str, stage: str = None):
        details = {"stage": stage} if stage else {}
        super().__init__(message, details)
        self.stage = stage


class OCRTimeoutError(OCREngineError, TimeoutError):
    """Raised when a worker request is not answered within its timeout.

    The underlying computation is not cancelled; the caller simply stops waiting.
    """

    def __init__(self, operation: str, timeout: float):
        message = f"Operation '{operation}' timed out after {timeout} seconds"
        super().__init__(message, {"operation": operation, "timeout": timeout})
        self.operation = operation
        self.timeout = timeout


class EngineDisposedError(OCREngineError):
    """Raised when an operation is attempted after dispose()."""

    def __init__(self, operation: str = None):
        message = "Engine has been disposed"
        if operation:
            message += f"; cannot {operation}"
        super().__init__(message, {"operation": operation} if operation else None)
        self.operation = operation


class InvalidStateTransition(OCREngineError):
    """Raised when the engine state machine receives an event it cannot accept."""

    def __init__(self, state, event):
        state_name = getattr(state, "value", state)
        event_name = getattr(event, "value", event)
        super().__init__(
            f"Invalid transition: '{event_name}' from state '{state_name}'",
            {"state": state_name, "event": event_name},
        )
        self.state = state
        self.event = event


class ConfigurationError(OCREngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_key: str = None, config_value=None):
        details = {}
        if config_key:
            details["config_key"] = config_key
        if config_value is not None:
            details["config_value"] = str(config_value)
        super().__init__(message, details)
        self.config_key = config_key
        self.config_value = config_value


class ValidationError(OCREngineError):
    """Raised when input validation fails."""

    def __init__(self, message: str, parameter: str = None, value=None):
        details = {}
        if parameter:
            details["parameter"] = parameter
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.parameter = parameter
        self.value = value


__all__ = [
    "OCREngineError",
    "InitializationError",
    "NoBackendAvailableError",
    "ModelLoadError",
    "InferenceError",
    "OCRTimeoutError",
    "EngineDisposedError",
    "InvalidStateTransition",
    "ConfigurationError",
    "ValidationError",
]
