"""
Engine configuration with validated defaults.
Groups the settings of every pipeline stage into one EngineConfig that can be
built from dictionaries, YAML strings or files.
"""

from dataclasses import dataclass, field, fields, asdict
from typing import Dict, List, Optional, Any, Union, Tuple
from pathlib import Path
import yaml

from .exceptions import ConfigurationError
from .types import Backend

PRIMARY_BACKENDS = tuple(b.value for b in Backend if b is not Backend.SECONDARY)


@dataclass
class ModelConfig:
    """Locations and sanity limits for the model artifacts."""

    models_path: str = "models"
    detection_model: str = "text_det.onnx"
    recognition_model: str = "text_rec_jp.onnx"
    angle_model: str = "text_angle.onnx"
    charset_file: str = "charset_jp.txt"

    # Files below these sizes are suspicious but still loaded
    min_model_bytes: int = 1_000_000
    min_angle_model_bytes: int = 100_000

    preload: bool = True
    use_angle_model: bool = True

    def __post_init__(self):
        if not self.models_path:
            raise ConfigurationError("models_path must not be empty", "models.models_path")
        if self.min_model_bytes < 0 or self.min_angle_model_bytes < 0:
            raise ConfigurationError("minimum model sizes must be non-negative", "models")

    def resolve(self, filename: str) -> Path:
        return Path(self.models_path) / filename


@dataclass
class DetectionConfig:
    """Detector input geometry and candidate filtering."""

    canvas_size: int = 640
    threshold: float = 0.5
    nms_threshold: float = 0.3
    min_box_size: float = 5.0
    max_aspect_ratio: float = 20.0
    mean: Tuple[float, float, float] = (0.485, 0.456, 0.406)
    std: Tuple[float, float, float] = (0.229, 0.224, 0.225)

    font_scale: float = 0.8
    min_font_size: int = 8
    max_font_size: int = 72

    def __post_init__(self):
        self.mean = tuple(float(v) for v in self.mean)
        self.std = tuple(float(v) for v in self.std)
        if self.canvas_size <= 0:
            raise ConfigurationError("canvas_size must be positive",
                                     "detection.canvas_size", self.canvas_size)
        if not 0.0 <= self.threshold <= 1.0:
            raise ConfigurationError("threshold must be between 0 and 1",
                                     "detection.threshold", self.threshold)
        if not 0.0 <= self.nms_threshold <= 1.0:
            raise ConfigurationError("nms_threshold must be between 0 and 1",
                                     "detection.nms_threshold", self.nms_threshold)
        if len(self.mean) != 3 or len(self.std) != 3:
            raise ConfigurationError("mean and std need exactly three channels", "detection")
        if any(s <= 0 for s in self.std):
            raise ConfigurationError("std values must be positive", "detection.std", self.std)
        if self.min_box_size < 0 or self.max_aspect_ratio < 1:
            raise ConfigurationError("invalid box filter limits", "detection")
        if self.min_font_size > self.max_font_size:
            raise ConfigurationError("min_font_size exceeds max_font_size", "detection")


@dataclass
class RecognitionConfig:
    """Recognizer input geometry and decoding options."""

    target_height: int = 48
    min_width: int = 128
    batch_size: int = 8
    padding_ratio: float = 0.1
    min_padding: float = 2.0
    unknown_symbol: str = "?"
    use_angle_correction: bool = True

    def __post_init__(self):
        if self.target_height <= 0 or self.min_width <= 0:
            raise ConfigurationError("recognizer geometry must be positive", "recognition")
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be positive",
                                     "recognition.batch_size", self.batch_size)
        if self.padding_ratio < 0 or self.min_padding < 0:
            raise ConfigurationError("padding must be non-negative", "recognition")


@dataclass
class FallbackConfig:
    """Secondary engine settings."""

    enabled: bool = True
    force: bool = False
    languages: str = "jpn+eng"
    min_word_confidence: float = 30.0
    tesseract_cmd: Optional[str] = None
    tesseract_config: str = ""

    def __post_init__(self):
        if not 0.0 <= self.min_word_confidence <= 100.0:
            raise ConfigurationError("min_word_confidence must be between 0 and 100",
                                     "fallback.min_word_confidence", self.min_word_confidence)
        if not self.languages:
            raise ConfigurationError("languages must not be empty", "fallback.languages")


@dataclass
class RuntimeConfig:
    """Backend probing and session options."""

    backends: List[str] = field(default_factory=lambda: list(PRIMARY_BACKENDS))
    probe_timeout: float = 30.0
    request_timeout: float = 30.0
    num_threads: Optional[int] = None
    graph_optimization: str = "all"
    execution_mode: str = "sequential"
    enable_memory_pattern: bool = True
    enable_cpu_mem_arena: bool = True
    log_level: str = "WARNING"

    def __post_init__(self):
        self.backends = list(self.backends)
        unknown = [b for b in self.backends if b not in PRIMARY_BACKENDS]
        if unknown:
            raise ConfigurationError(f"Unknown backends: {unknown}", "runtime.backends", unknown)
        if self.probe_timeout <= 0 or self.request_timeout <= 0:
            raise ConfigurationError("timeouts must be positive", "runtime")
        if self.num_threads is not None and self.num_threads < 1:
            raise ConfigurationError("num_threads must be positive",
                                     "runtime.num_threads", self.num_threads)
        if self.graph_optimization not in ("disable", "basic", "extended", "all"):
            raise ConfigurationError("unknown graph optimization level",
                                     "runtime.graph_optimization", self.graph_optimization)
        if self.execution_mode not in ("sequential", "parallel"):
            raise ConfigurationError("unknown execution mode",
                                     "runtime.execution_mode", self.execution_mode)

    @property
    def backend_order(self) -> List[Backend]:
        return [Backend(name) for name in self.backends]


_SECTIONS = {
    "models": ModelConfig,
    "detection": DetectionConfig,
    "recognition": RecognitionConfig,
    "fallback": FallbackConfig,
    "runtime": RuntimeConfig,
}


def _build_section(section_cls, values: Optional[Dict[str, Any]], section: str):
    values = values or {}
    if not isinstance(values, dict):
        raise ConfigurationError(f"Section '{section}' must be a mapping", section, values)
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(f"Unknown keys in '{section}': {sorted(unknown)}", section)
    return section_cls(**values)


@dataclass
class EngineConfig:
    """Complete engine configuration."""

    models: ModelConfig = field(default_factory=ModelConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    recognition: RecognitionConfig = field(default_factory=RecognitionConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        data = {name: asdict(getattr(self, name)) for name in _SECTIONS}
        for key in ("mean", "std"):
            data["detection"][key] = list(data["detection"][key])
        return data

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    def save_to_file(self, file_path: Union[str, Path]):
        """Save configuration to YAML file."""
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'w', encoding='utf-8') as f:
            f.write(self.to_yaml())

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'EngineConfig':
        """Create configuration from dictionary. Missing sections use defaults."""
        config_dict = config_dict or {}
        unknown = set(config_dict) - set(_SECTIONS)
        if unknown:
            raise ConfigurationError(f"Unknown configuration sections: {sorted(unknown)}")
        return cls(**{
            name: _build_section(section_cls, config_dict.get(name), name)
            for name, section_cls in _SECTIONS.items()
        })

    @classmethod
    def from_yaml(cls, yaml_content: str) -> 'EngineConfig':
        """Create configuration from YAML string."""
        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML configuration: {e}") from e
        return cls.from_dict(config_dict or {})

    @classmethod
    def load_from_file(cls, file_path: Union[str, Path]) -> 'EngineConfig':
        """Load configuration from a single YAML file, without packaged defaults."""
        file_path = Path(file_path)
        if not file_path.exists():
            raise ConfigurationError(f"Configuration file not found: {file_path}")

        with open(file_path, 'r', encoding='utf-8') as f:
            return cls.from_yaml(f.read())

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None,
             environ: Optional[Dict[str, str]] = None) -> 'EngineConfig':
        """Load defaults, packaged default.yaml, a custom file and environment overrides."""
        from .utils.config import load_config
        return cls.from_dict(load_config(config_path, environ=environ))


__all__ = [
    "ModelConfig",
    "DetectionConfig",
    "RecognitionConfig",
    "FallbackConfig",
    "RuntimeConfig",
    "EngineConfig",
    "PRIMARY_BACKENDS",
]
