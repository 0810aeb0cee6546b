"""Utility modules."""

from .cache import StorageManager, MemoryStorage, DiskStorage, create_storage
from .config_loader import EngineConfig, load_config, save_config, get_default_config
from .logger import setup_logger

__all__ = [
    "StorageManager",
    "MemoryStorage",
    "DiskStorage",
    "create_storage",
    "EngineConfig",
    "load_config",
    "save_config",
    "get_default_config",
    "setup_logger",
]
