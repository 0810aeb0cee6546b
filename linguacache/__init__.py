"""
LinguaCache - content-addressed translation caching and batching.

Strings are fingerprinted, resolved through a static bundle and a
persistent cache, and only then sent to the remote translation API in
deduplicated, time-windowed batches.
"""

__version__ = "1.0.0"
__author__ = "LinguaCache Team"

from linguacache.core.exceptions import (
    LinguaCacheError,
    ValidationError,
    NetworkError,
    APIError,
    QuotaExceededError,
    TranslationCancelledError,
    CacheError,
    ConfigurationError,
    OfflineError,
)
from linguacache.core.fingerprint import fingerprint, content_hash, normalize_text, is_translatable
from linguacache.core.models import TranslateOptions, TranslationEntry
from linguacache.core.plugins import Plugin, PluginManager, DebugPlugin, PerformancePlugin
from linguacache.core.engine import TranslationEngine, get_default_engine, reset_default_engine
from linguacache.utils.config_loader import EngineConfig, load_config

__all__ = [
    "__version__",
    "TranslationEngine",
    "get_default_engine",
    "reset_default_engine",
    "EngineConfig",
    "load_config",
    "TranslateOptions",
    "TranslationEntry",
    "Plugin",
    "PluginManager",
    "DebugPlugin",
    "PerformancePlugin",
    "fingerprint",
    "content_hash",
    "normalize_text",
    "is_translatable",
    "LinguaCacheError",
    "ValidationError",
    "NetworkError",
    "APIError",
    "QuotaExceededError",
    "TranslationCancelledError",
    "CacheError",
    "ConfigurationError",
    "OfflineError",
]
