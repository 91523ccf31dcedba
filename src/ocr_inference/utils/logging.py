"""Logging setup for the inference engine.

Every module logs under the ``ocr_inference`` namespace. ``setup_logging``
owns the handlers of that namespace; records do not reach the root logger.
Failures the engine recovers from (backend probes, angle correction,
unknown charset symbols, fallback switches) go through ``log_diagnostic`` so
they carry an ``event`` name and structured fields.

Examples
--------
    from ocr_inference.utils.logging import setup_logging, setup_logger, log_diagnostic

    setup_logging(level="DEBUG", log_file="ocr.log", json_format=True)

    logger = setup_logger("BackendSelector")
    log_diagnostic(logger, "probe_failed", "CUDA probe failed", backend="gpu_compute")
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

ROOT_LOGGER_NAME = "ocr_inference"

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Attributes every LogRecord has; anything else arrived through ``extra``
_RESERVED_RECORD_KEYS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message", "asctime", "taskName",
}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with ``extra`` fields as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update((key, value) for key, value in vars(record).items()
                     if key not in _RESERVED_RECORD_KEYS)

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
            }

        return json.dumps(entry, ensure_ascii=False, default=str)


def _numeric_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: Union[str, int] = "INFO",
                  log_file: Optional[str] = None,
                  json_format: bool = False,
                  name: str = ROOT_LOGGER_NAME) -> None:
    """(Re)configure the engine's logger: stdout always, plus an optional file."""
    threshold = _numeric_level(level)
    formatter = JSONFormatter() if json_format else logging.Formatter(TEXT_FORMAT)

    package_logger = logging.getLogger(name)
    package_logger.setLevel(threshold)
    package_logger.propagate = False
    for old in list(package_logger.handlers):
        package_logger.removeHandler(old)
        old.close()

    handlers = [logging.StreamHandler(sys.stdout)]
    file_error = None
    if log_file:
        target = Path(log_file)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(target, encoding="utf-8"))
        except OSError as e:
            file_error = e

    for handler in handlers:
        handler.setLevel(threshold)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    if file_error is not None:
        package_logger.warning(f"Cannot log to {log_file}: {file_error}")


def setup_logger(name: str, level: Union[str, int, None] = None) -> logging.Logger:
    """Component logger under the engine's namespace."""
    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
    if level is not None:
        logger.setLevel(_numeric_level(level))

    if not logging.getLogger(ROOT_LOGGER_NAME).handlers:
        setup_logging(level=level or "INFO")

    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    return logging.getLogger(name)


def log_diagnostic(logger: logging.Logger,
                   event: str,
                   message: str,
                   level: int = logging.WARNING,
                   **fields) -> None:
    """Log a recovered failure as a structured diagnostic record.

    The event name and every keyword field are attached to the record as
    extras, so JSONFormatter emits them as top-level keys. Fields that would
    clash with built-in record attributes are dropped.
    """
    extra = {"event": event}
    extra.update({key: value for key, value in fields.items()
                  if key not in _RESERVED_RECORD_KEYS})
    logger.log(level, f"[{event}] {message}", extra=extra)


__all__ = [
    "JSONFormatter",
    "setup_logging",
    "setup_logger",
    "get_logger",
    "log_diagnostic",
]
