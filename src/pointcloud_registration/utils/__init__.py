"""
Utility Functions Module

This module provides common utility functions used across the registration project.
- Logging setup and verbosity handling
- Typed YAML configuration
- Stage timeline recording

Export helpers live in `utils.export` and are imported from there.
"""

from .logging import setup_logger, set_log_level, parse_level
from .config import AppConfig, load_config
from .timeline import Timeline, TimelineEntry

__all__ = [
    "setup_logger",
    "set_log_level",
    "parse_level",
    "AppConfig",
    "load_config",
    "Timeline",
    "TimelineEntry",
]
