"""
Core data models for LinguaCache.

Plain dataclasses shared by the cache, the scheduler, the engine and the
offline manager. Wire-level request/response models live in
``linguacache.translation.base``.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Any
import asyncio
import json
import time

from .fingerprint import fingerprint as make_fingerprint, content_hash as make_content_hash


CACHE_SCHEMA_VERSION = "1.0"

# Record lifetimes in milliseconds
TRANSLATION_MAX_AGE_MS = 7 * 24 * 60 * 60 * 1000
LOCALE_MAX_AGE_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


class EntryStatus(Enum):
    """Lifecycle of a discovered piece of content."""
    NEW = "new"
    TRANSLATED = "translated"
    UPDATED = "updated"


class CacheTier(Enum):
    """Where a resolved translation came from."""
    STATIC = "static"
    PERSISTENT = "persistent"
    MISS = "miss"


@dataclass
class TranslationEntry:
    """A fingerprinted piece of source content and its known translations."""
    fingerprint: str
    source_text: str
    content_hash: str
    version: int = 1
    translations: Dict[str, str] = field(default_factory=dict)
    status: EntryStatus = EntryStatus.NEW
    last_translated_at: Optional[int] = None  # epoch ms

    @classmethod
    def track(cls, existing: Optional[TranslationEntry], source_text: str) -> TranslationEntry:
        """
        Create or update the entry for ``source_text``.

        A first sighting yields version 1 with status NEW. If the content
        hash differs from ``existing``, the version is bumped and the status
        becomes UPDATED while earlier translations are kept around. Otherwise
        the existing entry is carried forward unchanged.
        """
        new_hash = make_content_hash(source_text)

        if existing is None:
            return cls(
                fingerprint=make_fingerprint(source_text),
                source_text=source_text,
                content_hash=new_hash,
            )

        if existing.content_hash != new_hash:
            return cls(
                fingerprint=existing.fingerprint,
                source_text=source_text,
                content_hash=new_hash,
                version=existing.version + 1,
                translations=dict(existing.translations),
                status=EntryStatus.UPDATED,
                last_translated_at=existing.last_translated_at,
            )

        return existing

    def record_translation(self, locale: str, translation: str, timestamp: Optional[int] = None) -> None:
        self.translations[locale] = translation
        self.status = EntryStatus.TRANSLATED
        self.last_translated_at = timestamp if timestamp is not None else now_ms()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "source_text": self.source_text,
            "content_hash": self.content_hash,
            "version": self.version,
            "translations": dict(self.translations),
            "status": self.status.value,
            "last_translated_at": self.last_translated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TranslationEntry:
        return cls(
            fingerprint=data["fingerprint"],
            source_text=data["source_text"],
            content_hash=data["content_hash"],
            version=data.get("version", 1),
            translations=dict(data.get("translations", {})),
            status=EntryStatus(data.get("status", "new")),
            last_translated_at=data.get("last_translated_at"),
        )


@dataclass
class CacheRecord:
    """A persisted payload stamped with its write time and schema version."""
    payload: Any
    timestamp: int  # epoch ms
    schema_version: str = CACHE_SCHEMA_VERSION

    def is_valid(self, now: int, max_age_ms: int, current_version: str = CACHE_SCHEMA_VERSION) -> bool:
        """Valid iff written under the current schema and younger than max_age_ms."""
        if self.schema_version != current_version:
            return False
        return now - self.timestamp < max_age_ms

    def to_json(self) -> str:
        return json.dumps({
            "data": self.payload,
            "timestamp": self.timestamp,
            "version": self.schema_version,
        }, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> CacheRecord:
        """Parse a stored record. Raises ValueError/KeyError on malformed data."""
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("cache record must be a JSON object")
        return cls(
            payload=data["data"],
            timestamp=int(data["timestamp"]),
            schema_version=str(data.get("version", "")),
        )


@dataclass
class ResolveResult:
    """Outcome of a tiered cache lookup."""
    hit: bool
    value: Optional[str] = None
    tier: CacheTier = CacheTier.MISS

    @classmethod
    def miss(cls) -> ResolveResult:
        return cls(hit=False, value=None, tier=CacheTier.MISS)


@dataclass
class TranslateOptions:
    """Per-call options for ``TranslationEngine.translate``."""
    cache: bool = True
    retry_count: int = 0
    context: Optional[Dict[str, Any]] = None


@dataclass
class BatchQueueItem:
    """Text waiting for the next batch flush, with the future its caller awaits."""
    text: str
    future: asyncio.Future
    context: Optional[Dict[str, Any]] = None
    persist: bool = True


@dataclass
class OfflineRequest:
    """A translation requested while offline."""
    key: str
    text: str
    locale: str
    timestamp: int = field(default_factory=now_ms)
