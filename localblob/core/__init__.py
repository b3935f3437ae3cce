"""Core module initialization."""

from .clock import Clock, ManualClock, utc_now
from .config_manager import ConfigManager, LocalBlobConfig
from .logging_config import setup_logging, get_logger

__all__ = [
    "Clock",
    "ManualClock",
    "utc_now",
    "ConfigManager",
    "LocalBlobConfig",
    "setup_logging",
    "get_logger",
]
