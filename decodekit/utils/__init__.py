"""
Utility functions for the generation engine.

This module provides:
- Device management (CPU/CUDA/MPS)
- Configuration loading
- Seeding, random sources and logging
"""

from .device import get_device, to_device
from .config import load_config, merge_configs
from .helpers import set_seed, create_generator, count_parameters, get_logger, format_number

__all__ = [
    # Device
    "get_device",
    "to_device",
    # Config
    "load_config",
    "merge_configs",
    # Helpers
    "set_seed",
    "create_generator",
    "count_parameters",
    "get_logger",
    "format_number",
]
