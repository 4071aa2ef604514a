"""
Core Module

Configuration and logging shared by the rest of the broker.
"""

from .config import Settings, get_settings
from .logger import get_logger, setup_logging

__all__ = [
    "Settings",
    "get_settings",
    "setup_logging",
    "get_logger",
]
