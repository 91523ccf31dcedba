"""
Utility modules for the OCR inference engine.
"""

from .config import load_config, get_config_value
from .logging import setup_logger, setup_logging, get_logger, log_diagnostic
from .images import load_image, to_rgb_array

__all__ = [
    'load_config',
    'get_config_value',
    'setup_logger',
    'setup_logging',
    'get_logger',
    'log_diagnostic',
    'load_image',
    'to_rgb_array',
]
