"""Persistent translation storage."""

import json
import logging
from collections import deque
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Dict, Any, List, Callable

import diskcache

from linguacache.core.exceptions import CacheError
from linguacache.core.models import (
    CacheRecord,
    CACHE_SCHEMA_VERSION,
    TRANSLATION_MAX_AGE_MS,
    LOCALE_MAX_AGE_MS,
    now_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "linguacache"
MAX_RECENT_ERRORS = 50


class StorageAdapter(ABC):
    """Minimal string key/value store the storage manager writes through."""

    name = "abstract"

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    def close(self) -> None:
        """Release underlying resources. Memory stores have none."""


class MemoryStorage(StorageAdapter):
    """Process-local dict storage."""

    name = "memory"

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def clear(self) -> None:
        self._data.clear()


class DiskStorage(StorageAdapter):
    """Storage backed by a diskcache directory, shared across runs."""

    name = "disk"

    def __init__(self, cache_dir: str = ".cache/linguacache"):
        self.cache_dir = Path(cache_dir)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self._cache = diskcache.Cache(str(self.cache_dir))
        except Exception as e:
            raise CacheError(
                f"Failed to initialize disk cache at {self.cache_dir}: {e}",
                cache_type="disk",
                operation="init"
            ) from e
        logger.debug(f"Using disk cache at {self.cache_dir}")

    def get_item(self, key: str) -> Optional[str]:
        return self._cache.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._cache.set(key, value)

    def remove_item(self, key: str) -> None:
        self._cache.delete(key)

    def keys(self) -> List[str]:
        return [k for k in self._cache.iterkeys() if isinstance(k, str)]

    def clear(self) -> None:
        self._cache.clear()

    def close(self) -> None:
        self._cache.close()


def create_storage(use_disk: bool = False, cache_dir: str = ".cache/linguacache",
                   fallback_to_memory: bool = True) -> StorageAdapter:
    """
    Build a storage adapter, falling back to memory if the disk cache fails.

    Args:
        use_disk: Persist to ``cache_dir`` via diskcache
        cache_dir: Directory for the disk cache
        fallback_to_memory: Use memory storage if the disk cache cannot open

    Returns:
        A ready storage adapter
    """
    if use_disk:
        try:
            return DiskStorage(cache_dir)
        except CacheError as e:
            if not fallback_to_memory:
                raise
            logger.warning(f"{e.message}. Falling back to memory cache.")
    return MemoryStorage()


class StorageManager:
    """
    Versioned, TTL-gated record store on top of a StorageAdapter.

    Keys follow ``{prefix}_{type}_{identifier}``; values are JSON records
    ``{"data", "timestamp", "version"}``. Records written under another
    schema version or older than the caller's max age are evicted when
    read. Storage failures never propagate from get/set: they are logged
    and treated as a miss.
    """

    def __init__(
        self,
        adapter: Optional[StorageAdapter] = None,
        prefix: str = DEFAULT_PREFIX,
        schema_version: str = CACHE_SCHEMA_VERSION,
        clock: Callable[[], int] = now_ms
    ):
        self.adapter = adapter or MemoryStorage()
        self.prefix = prefix
        self.schema_version = schema_version
        self.clock = clock
        self._errors: deque = deque(maxlen=MAX_RECENT_ERRORS)
        self._error_count = 0

    def _key(self, kind: str, identifier: str) -> str:
        return f"{self.prefix}_{kind}_{identifier}"

    def translation_key(self, text: str, source_locale: str, target_locale: str) -> str:
        return self._key("translation", f"{source_locale}_{target_locale}_{text}")

    def _record_error(self, message: str) -> None:
        self._errors.append(message)
        self._error_count += 1
        logger.warning(f"{message}. Continuing without cache.")

    def _write(self, key: str, payload: Any) -> None:
        record = CacheRecord(payload=payload, timestamp=self.clock(), schema_version=self.schema_version)
        try:
            self.adapter.set_item(key, record.to_json())
        except Exception as e:
            self._record_error(f"Cache set failed for {key}: {e}")

    def _read(self, key: str, max_age_ms: int) -> Optional[Any]:
        try:
            raw = self.adapter.get_item(key)
        except Exception as e:
            self._record_error(f"Cache get failed for {key}: {e}")
            return None
        if raw is None:
            return None

        try:
            record = CacheRecord.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.debug(f"Evicting malformed cache record {key}: {e}")
            self._remove(key)
            return None

        if not record.is_valid(self.clock(), max_age_ms, self.schema_version):
            self._remove(key)
            return None

        return record.payload

    def _remove(self, key: str) -> None:
        try:
            self.adapter.remove_item(key)
        except Exception as e:
            self._record_error(f"Cache remove failed for {key}: {e}")

    def cache_translation(self, text: str, source_locale: str, target_locale: str, translation: str) -> None:
        self._write(self.translation_key(text, source_locale, target_locale), translation)

    def get_cached_translation(
        self,
        text: str,
        source_locale: str,
        target_locale: str,
        max_age_ms: int = TRANSLATION_MAX_AGE_MS
    ) -> Optional[str]:
        """
        Get a cached translation.

        Returns:
            The translation, or None when absent, expired or written under
            another schema version (never raises)
        """
        value = self._read(self.translation_key(text, source_locale, target_locale), max_age_ms)
        return value if isinstance(value, str) else None

    def cache_locale_data(self, locale: str, data: Dict[str, str]) -> None:
        self._write(self._key("locale", locale), dict(data))

    def get_cached_locale_data(self, locale: str, max_age_ms: int = LOCALE_MAX_AGE_MS) -> Optional[Dict[str, str]]:
        value = self._read(self._key("locale", locale), max_age_ms)
        return value if isinstance(value, dict) else None

    def _own_keys(self) -> List[str]:
        try:
            return [k for k in self.adapter.keys() if k.startswith(f"{self.prefix}_")]
        except Exception as e:
            self._record_error(f"Cache key listing failed: {e}")
            return []

    def clear_cache(self) -> int:
        """Remove every record under this manager's prefix. Returns the count removed."""
        keys = self._own_keys()
        for key in keys:
            self._remove(key)
        logger.info(f"Cleared {len(keys)} cache records")
        return len(keys)

    def export_cache(self) -> str:
        """Serialize all translation records to a JSON string."""
        exported: Dict[str, Any] = {}
        marker = f"{self.prefix}_translation_"
        for key in self._own_keys():
            if not key.startswith(marker):
                continue
            try:
                raw = self.adapter.get_item(key)
                if raw is not None:
                    exported[key] = json.loads(raw)
            except Exception as e:
                logger.warning(f"Skipping unreadable cache record {key}: {e}")
        return json.dumps(exported, ensure_ascii=False)

    def import_cache(self, data: str) -> int:
        """
        Load records produced by ``export_cache``.

        Args:
            data: JSON string mapping storage keys to records

        Returns:
            Number of records imported

        Raises:
            CacheError: If ``data`` is not a JSON object of records
        """
        try:
            records = json.loads(data)
        except (TypeError, ValueError) as e:
            raise CacheError(f"Invalid cache import data: {e}", operation="import") from e
        if not isinstance(records, dict):
            raise CacheError("Invalid cache import data: expected a JSON object", operation="import")

        imported = 0
        for key, record in records.items():
            if not isinstance(key, str) or not key.startswith(f"{self.prefix}_"):
                continue
            try:
                self.adapter.set_item(key, json.dumps(record, ensure_ascii=False))
                imported += 1
            except Exception as e:
                self._record_error(f"Cache import failed for {key}: {e}")
        logger.info(f"Imported {imported} cache records")
        return imported

    def cleanup_old_cache(self, max_age_ms: int = TRANSLATION_MAX_AGE_MS) -> int:
        """Evict invalid or expired records. Returns the number removed."""
        removed = 0
        now = self.clock()
        for key in self._own_keys():
            try:
                raw = self.adapter.get_item(key)
                record = CacheRecord.from_json(raw) if raw is not None else None
            except (ValueError, KeyError, TypeError):
                record = None
            except Exception as e:
                self._record_error(f"Cache get failed for {key}: {e}")
                continue
            if record is None or not record.is_valid(now, max_age_ms, self.schema_version):
                self._remove(key)
                removed += 1
        if removed:
            logger.info(f"Removed {removed} stale cache records")
        return removed

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        keys = self._own_keys()
        total_size = 0
        for key in keys:
            try:
                raw = self.adapter.get_item(key)
            except Exception:
                continue
            if raw:
                total_size += len(key) + len(raw)

        stats: Dict[str, Any] = {
            "type": self.adapter.name,
            "total_items": len(keys),
            "translations": sum(1 for k in keys if k.startswith(f"{self.prefix}_translation_")),
            "locales": sum(1 for k in keys if k.startswith(f"{self.prefix}_locale_")),
            "total_size": total_size,
            "schema_version": self.schema_version,
            "errors": self._error_count,
        }
        if self._errors:
            stats["recent_errors"] = list(self._errors)[-5:]
        return stats

    def close(self) -> None:
        self.adapter.close()
