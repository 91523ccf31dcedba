"""Layered configuration for the OCR inference engine.

Sources are applied in order, later ones winning key by key:
dataclass defaults, ``resources/default.yaml``, a user YAML file, then
``OCR_*`` environment variables.

Recognized environment variables:

- ``OCR_MODELS_PATH``: directory holding the model artifacts
- ``OCR_FORCE_FALLBACK``: skip the primary pipeline and use the secondary engine
- ``OCR_BACKENDS``: comma separated backend order, e.g. ``vectorized``
- ``OCR_LOG_LEVEL``: logging level for the engine

Examples
--------
    from ocr_inference.utils.config import load_config, get_config_value

    settings = load_config("ocr.yaml")
    languages = get_config_value(settings, 'fallback.languages', 'eng')
"""

import os
import logging
from copy import deepcopy
from pathlib import Path
from typing import Dict, Any, Optional, Union, Mapping

import yaml

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

RESOURCES_DIR = Path(__file__).resolve().parent.parent / "resources"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def resource_path(name: str) -> Path:
    """Path of a file shipped in the package's resources directory."""
    return RESOURCES_DIR / name


def read_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML mapping. An empty file yields an empty dict."""
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Config file does not exist: {path}")

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    if data is None:
        logger.warning(f"Config file {path} is empty")
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Top level of {path} must be a mapping, not {type(data).__name__}")
    return data


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return a deep copy of ``base`` with ``override`` merged in recursively."""
    result = deepcopy(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = merge_configs(current, value)
        else:
            result[key] = deepcopy(value)
    return result


def builtin_defaults() -> Dict[str, Any]:
    from ..config import EngineConfig
    return EngineConfig().to_dict()


def get_config_value(config: Dict[str, Any], dotted_key: str, default: Any = None) -> Any:
    """Look up ``'section.key'`` in a nested dict, returning ``default`` if absent."""
    node: Any = config
    for part in dotted_key.split('.'):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def apply_env_overrides(config: Dict[str, Any],
                        environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Apply OCR_* environment variables on top of a configuration dictionary."""
    environ = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}

    models_path = environ.get("OCR_MODELS_PATH")
    if models_path:
        overrides.setdefault("models", {})["models_path"] = models_path

    force = environ.get("OCR_FORCE_FALLBACK")
    if force is not None and force.strip():
        overrides.setdefault("fallback", {})["force"] = force.strip().lower() in _TRUE_VALUES

    backends = environ.get("OCR_BACKENDS")
    if backends:
        overrides.setdefault("runtime", {})["backends"] = [
            name.strip() for name in backends.split(",") if name.strip()
        ]

    log_level = environ.get("OCR_LOG_LEVEL")
    if log_level:
        overrides.setdefault("runtime", {})["log_level"] = log_level.upper()

    if overrides:
        logger.debug(f"Applying environment overrides: {sorted(overrides)}")
    return merge_configs(config, overrides)


def load_config(config_path: Optional[Union[str, Path]] = None,
                environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Build the merged configuration dictionary from every source."""
    settings = builtin_defaults()

    shipped = resource_path("default.yaml")
    if shipped.is_file():
        settings = merge_configs(settings, read_yaml(shipped))
        logger.debug(f"Merged shipped defaults from {shipped}")

    if config_path:
        settings = merge_configs(settings, read_yaml(config_path))
        logger.info(f"Merged user configuration from {config_path}")

    return apply_env_overrides(settings, environ)


__all__ = [
    'load_config',
    'merge_configs',
    'apply_env_overrides',
    'builtin_defaults',
    'resource_path',
    'read_yaml',
    'get_config_value',
]
