"""Core module initialization."""

from .config_manager import ConfigManager, ExplorerConfig
from .logging_config import setup_logging

__all__ = [
    "ConfigManager",
    "ExplorerConfig",
    "setup_logging",
]
