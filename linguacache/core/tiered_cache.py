"""
Tiered translation lookup.

Tier 1 is the static locale bundle shipped with the application (exact
text key, then fingerprint key, then a reverse match on the bundle
values). Tier 2 is the persistent store. Bundles are read-only once
loaded; only tier 2 is written by the pipeline.
"""

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from .exceptions import CacheError
from .fingerprint import fingerprint
from .models import CacheTier, ResolveResult, TRANSLATION_MAX_AGE_MS, LOCALE_MAX_AGE_MS
from linguacache.utils.cache import StorageManager

logger = logging.getLogger(__name__)


class TieredCache:
    """Resolves translations from static bundles, then from persistent storage."""

    def __init__(
        self,
        storage: Optional[StorageManager] = None,
        translation_max_age_ms: int = TRANSLATION_MAX_AGE_MS,
        locale_max_age_ms: int = LOCALE_MAX_AGE_MS
    ):
        self.storage = storage or StorageManager()
        self.translation_max_age_ms = translation_max_age_ms
        self.locale_max_age_ms = locale_max_age_ms
        self._bundles: Dict[str, Dict[str, str]] = {}
        # translated values per locale, for the reverse lookup
        self._reverse: Dict[str, frozenset] = {}

    # Static bundles

    def load_bundle(self, locale: str, mapping: Mapping[str, str], persist: bool = True) -> None:
        """Install the static bundle for ``locale``, replacing any previous one."""
        bundle = {str(k): str(v) for k, v in mapping.items()}
        self._bundles[locale] = bundle
        self._reverse[locale] = frozenset(bundle.values())
        if persist:
            self.storage.cache_locale_data(locale, bundle)
        logger.debug(f"Loaded {len(bundle)} entries for locale {locale}")

    def load_bundle_file(self, locale: str, path) -> None:
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise CacheError(f"Failed to load locale bundle {path}: {e}", cache_type="static", operation="load") from e
        if not isinstance(data, dict):
            raise CacheError(f"Locale bundle {path} must be a JSON object", cache_type="static", operation="load")
        self.load_bundle(locale, data)

    def load_bundles_from_dir(self, directory) -> int:
        """Load every ``{locale}.json`` file in ``directory``. Returns the number loaded."""
        directory = Path(directory)
        if not directory.is_dir():
            logger.warning(f"Locale directory not found: {directory}")
            return 0
        count = 0
        for path in sorted(directory.glob("*.json")):
            self.load_bundle_file(path.stem, path)
            count += 1
        return count

    def restore_bundle(self, locale: str) -> bool:
        """Reinstall a bundle persisted by an earlier session, if still fresh."""
        data = self.storage.get_cached_locale_data(locale, self.locale_max_age_ms)
        if data is None:
            return False
        self.load_bundle(locale, data, persist=False)
        return True

    def has_bundle(self, locale: str) -> bool:
        return locale in self._bundles

    def bundle(self, locale: str) -> Mapping[str, str]:
        return MappingProxyType(self._bundles.get(locale, {}))

    @property
    def locales(self):
        return list(self._bundles.keys())

    def static_lookup(self, text: str, target_locale: str) -> Optional[str]:
        bundle = self._bundles.get(target_locale)
        if not bundle:
            return None

        if text in bundle:
            return bundle[text]

        fp = fingerprint(text)
        if fp in bundle:
            return bundle[fp]

        # text may already be a translated value
        if text in self._reverse.get(target_locale, ()):
            return text

        return None

    # Lookup

    def resolve(self, text: str, source_locale: str, target_locale: str, use_persistent: bool = True) -> ResolveResult:
        """
        Resolve ``text`` through the tiers in order.

        Args:
            text: Source text
            source_locale: Source locale code
            target_locale: Target locale code
            use_persistent: Consult the persistent tier

        Returns:
            ResolveResult naming the tier that answered, or a miss
        """
        value = self.static_lookup(text, target_locale)
        if value is not None:
            return ResolveResult(hit=True, value=value, tier=CacheTier.STATIC)

        if use_persistent:
            value = self.storage.get_cached_translation(
                text, source_locale, target_locale, self.translation_max_age_ms
            )
            if value is not None:
                return ResolveResult(hit=True, value=value, tier=CacheTier.PERSISTENT)

        return ResolveResult.miss()

    def store(self, text: str, source_locale: str, target_locale: str, translation: str) -> None:
        """Write a translation to the persistent tier."""
        self.storage.cache_translation(text, source_locale, target_locale, translation)

    def get_persistent(self, text: str, source_locale: str, target_locale: str) -> Optional[str]:
        return self.storage.get_cached_translation(
            text, source_locale, target_locale, self.translation_max_age_ms
        )
