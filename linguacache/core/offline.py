"""Connectivity tracking and cache-only resolution while offline."""

import logging
from typing import Callable, Dict, List, Mapping, Optional

from .models import OfflineRequest
from linguacache.utils.cache import StorageManager

logger = logging.getLogger(__name__)


class OfflineManager:
    """
    Answers translations from the persistent cache while the network is down.

    Misses made while offline are remembered with a timestamp and the
    caller gets the original text back (or None without fallback). No
    network work is ever started from here.

    Note:
        Going back online clears the remembered misses without sending
        them. Callers that want them translated must ask again.
    """

    def __init__(self, storage: Optional[StorageManager] = None, online: bool = True):
        self.storage = storage or StorageManager()
        self._online = online
        self._online_callbacks: List[Callable[[], None]] = []
        self._offline_callbacks: List[Callable[[], None]] = []
        self._pending: Dict[str, OfflineRequest] = {}

    @property
    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        """Record a connectivity change and notify subscribers."""
        if online == self._online:
            return
        self._online = online

        if online:
            logger.info("Back online")
            self._run_callbacks(self._online_callbacks, "online")
            self._drop_pending()
        else:
            logger.info("Gone offline, using cached translations only")
            self._run_callbacks(self._offline_callbacks, "offline")

    def _run_callbacks(self, callbacks: List[Callable[[], None]], kind: str) -> None:
        for callback in list(callbacks):
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in {kind} callback: {e}")

    def _drop_pending(self) -> None:
        if not self._pending:
            return
        logger.warning(f"Dropping {len(self._pending)} translations requested while offline; they are not resubmitted")
        self._pending.clear()

    def on_online(self, callback: Callable[[], None]) -> Callable[[], None]:
        return self._subscribe(self._online_callbacks, callback)

    def on_offline(self, callback: Callable[[], None]) -> Callable[[], None]:
        return self._subscribe(self._offline_callbacks, callback)

    @staticmethod
    def _subscribe(callbacks: List[Callable[[], None]], callback: Callable[[], None]) -> Callable[[], None]:
        callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def get_translation(
        self,
        text: str,
        source_locale: str,
        target_locale: str,
        fallback_to_original: bool = True
    ) -> Optional[str]:
        """
        Resolve from cache, queueing the request when offline.

        Returns:
            Cached translation; the original text (or None) when offline
            with no cache entry; None when online with no cache entry,
            meaning a network call is needed
        """
        cached = self.storage.get_cached_translation(text, source_locale, target_locale)
        if cached is not None:
            return cached

        if not self._online:
            key = f"{text}_{source_locale}_{target_locale}"
            self._pending[key] = OfflineRequest(key=key, text=text, locale=target_locale)
            logger.debug(f"Queued offline translation request {key!r}")
            return text if fallback_to_original else None

        return None

    def cache_translation(self, text: str, source_locale: str, target_locale: str, translation: str) -> None:
        self.storage.cache_translation(text, source_locale, target_locale, translation)

    def preload_translations(self, locale_data: Mapping[str, Mapping[str, str]], source_locale: str = "en") -> int:
        """Store every bundle entry as an individual cached translation. Returns the count."""
        total = 0
        for locale, data in locale_data.items():
            for key, translation in data.items():
                self.storage.cache_translation(key, source_locale, locale, translation)
                total += 1
        logger.info(f"Preloaded {total} translations for offline use")
        return total

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def get_pending(self) -> List[OfflineRequest]:
        return list(self._pending.values())

    def clear_pending(self) -> None:
        self._pending.clear()

    def destroy(self) -> None:
        self._online_callbacks.clear()
        self._offline_callbacks.clear()
        self._pending.clear()
