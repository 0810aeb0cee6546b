"""
Translation engine.

The engine is the single entry point callers use. For each request it:
1. Runs before_translate plugin hooks
2. Resolves through the static bundle and the persistent cache
3. Answers from cache only while offline
4. Joins an in-flight request for the same key, or starts one
5. Sends the text through the batch scheduler (or as a single-entry
   batch), retrying with exponential backoff
6. Persists fresh translations, then runs after_translate hooks

A locale switch bumps the request token so anything queued or in flight
for the previous locale is dropped instead of delivered.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple, TypeVar, Union

from .exceptions import (
    ConfigurationError,
    LinguaCacheError,
    OfflineError,
    QuotaExceededError,
    TranslationCancelledError,
    ValidationError,
    APIError,
)
from .fingerprint import fingerprint
from .models import TranslateOptions, TranslationEntry
from .offline import OfflineManager
from .plugins import DebugPlugin, PluginManager
from .tiered_cache import TieredCache
from linguacache.translation.api_client import APIClient
from linguacache.translation.base import BatchEntry, TranslationBackend, TranslationRequest
from linguacache.translation.notifications import NotificationSystem
from linguacache.translation.output_cleaner import clean_translation
from linguacache.utils.batch_scheduler import BatchScheduler, RequestToken
from linguacache.utils.cache import StorageManager, create_storage
from linguacache.utils.config_loader import EngineConfig, load_config
from linguacache.utils.dedup import InflightRegistry, make_request_key
from linguacache.utils.rate_limiter import RateLimiter
from linguacache.utils.security import require_locale

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that a retry cannot fix
NON_RETRYABLE = (ValidationError, QuotaExceededError, TranslationCancelledError, ConfigurationError)


class TranslationEngine:
    """Cache-first, deduplicated, batched translation with retries and fallback."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        backend: Optional[TranslationBackend] = None,
        storage: Optional[StorageManager] = None,
        offline: Optional[OfflineManager] = None,
        plugins: Optional[PluginManager] = None,
        notifier: Optional[NotificationSystem] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize engine.

        Args:
            config: Engine configuration (defaults to ``EngineConfig()``)
            backend: Translation backend; built from ``config.api_key`` when omitted
            storage: Persistent storage manager
            offline: Connectivity tracker
            plugins: Plugin manager
            notifier: Sink for quota and API error notices
            sleep: Coroutine used for backoff delays, in seconds

        Raises:
            ConfigurationError: If ``config`` fails validation
        """
        self.config = config or EngineConfig()
        self.config.raise_if_invalid()
        self.notifier = notifier or NotificationSystem()
        self._owns_storage = storage is None
        self.storage = storage or StorageManager(
            create_storage(self.config.use_disk_cache, self.config.cache_dir)
        )
        self.cache = TieredCache(
            self.storage,
            translation_max_age_ms=self.config.cache_ttls["translation"],
            locale_max_age_ms=self.config.cache_ttls["locale"],
        )
        self.offline = offline or OfflineManager(self.storage)
        self.plugins = plugins or PluginManager()
        self.backend = backend if backend is not None else self._create_backend()

        self.token = RequestToken()
        self.inflight = InflightRegistry()
        self._schedulers: Dict[Tuple[str, str], BatchScheduler] = {}
        self._entries: Dict[str, TranslationEntry] = {}
        self._locale_listeners: List[Callable[[str], Any]] = []
        self._background: Set[asyncio.Future] = set()
        self._current_locale = self.config.locale
        self._sleep = sleep
        self.stats = {
            "translations": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "network_requests": 0,
            "retries": 0,
            "fallbacks": 0,
            "errors": 0,
        }

    def _create_backend(self) -> Optional[TranslationBackend]:
        if not self.config.api_key:
            logger.debug("No API key configured; only cached translations are available")
            return None

        return APIClient(
            api_key=self.config.api_key,
            base_url=self.config.api_url,
            timeout=self.config.timeout,
            model=self.config.model,
            rate_limiter=RateLimiter(
                max_requests=self.config.rate_limit["max_requests"],
                window_ms=self.config.rate_limit["window_ms"],
            ),
            notifier=self.notifier,
        )

    # Lifecycle

    async def init(self) -> None:
        """Initialize plugins and load locale bundles."""
        if self.config.debug and self.plugins.get_plugin(DebugPlugin.name) is None:
            self.plugins.use(DebugPlugin())
        await self.plugins.init(self.config)

        if self.config.locale_dir:
            count = self.cache.load_bundles_from_dir(self.config.locale_dir)
            logger.info(f"Loaded {count} locale bundles from {self.config.locale_dir}")
            self.offline.preload_translations(
                {locale: dict(self.cache.bundle(locale)) for locale in self.cache.locales},
                self.config.source_language,
            )
        for locale in [self._current_locale, *self.config.target_languages]:
            self._ensure_bundle(locale)

    async def destroy(self) -> None:
        for scheduler in self._schedulers.values():
            scheduler.cancel_pending("Engine destroyed")
        self.inflight.cancel_all()
        await self.plugins.destroy()
        self.offline.destroy()
        self._locale_listeners.clear()
        close = getattr(self.backend, "aclose", None)
        if close is not None:
            await close()
        if self._owns_storage:
            self.storage.close()

    async def __aenter__(self):
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.destroy()

    # Plugins

    def use(self, plugin: Any) -> "TranslationEngine":
        self.plugins.use(plugin)
        return self

    async def unuse(self, name: str) -> bool:
        return await self.plugins.unuse(name)

    def get_plugin(self, name: str) -> Optional[Any]:
        return self.plugins.get_plugin(name)

    # Locale

    @property
    def current_locale(self) -> str:
        return self._current_locale

    @property
    def source_locale(self) -> str:
        return self.config.source_language

    async def set_locale(self, locale: str) -> None:
        """
        Switch the current locale.

        Work queued or in flight for the previous locale is cancelled
        before any hook runs; its callers get TranslationCancelledError
        (or their original text when fallback is on).
        """
        require_locale(locale)
        old = self._current_locale
        if locale == old:
            return

        self.token.bump()
        cancelled = 0
        for scheduler in self._schedulers.values():
            cancelled += scheduler.cancel_pending("Locale changed")
            cancelled += scheduler.cancel_inflight()
        if self.backend is not None:
            cancelled += self.backend.cancel_all_requests()
        if cancelled:
            logger.debug(f"Cancelled {cancelled} pending translation requests")

        self._current_locale = locale
        logger.info(f"Locale changed: {old} -> {locale}")

        await self.plugins.run_fanout("on_locale_change", locale, old)
        self._ensure_bundle(locale)

        for listener in list(self._locale_listeners):
            try:
                listener(locale)
            except Exception as e:
                logger.error(f"Locale change listener failed: {e}")

    def on_locale_changed(self, callback: Callable[[str], Any]) -> Callable[[], None]:
        """Subscribe to locale switches. Returns an unsubscribe function."""
        self._locale_listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._locale_listeners:
                self._locale_listeners.remove(callback)

        return unsubscribe

    def _ensure_bundle(self, locale: str) -> None:
        if locale == self.config.source_language or self.cache.has_bundle(locale):
            return
        if self.cache.restore_bundle(locale):
            return
        if self.config.locale_dir:
            path = Path(self.config.locale_dir) / f"{locale}.json"
            if path.exists():
                self.cache.load_bundle_file(locale, path)

    def load_locale_data(self, locale: str, data: Dict[str, str]) -> None:
        """Install a static bundle for ``locale``."""
        self.cache.load_bundle(locale, data)

    # Content discovery

    def notify_content_discovered(self, text: str) -> str:
        """Track ``text`` as translatable content and return its fingerprint."""
        fp = fingerprint(text)
        self._entries[fp] = TranslationEntry.track(self._entries.get(fp), text)
        return fp

    def get_entry(self, fp: str) -> Optional[TranslationEntry]:
        return self._entries.get(fp)

    # Connectivity

    def is_offline(self) -> bool:
        return not self.offline.is_online

    def set_online(self, online: bool) -> None:
        self.offline.set_online(online)

    def pending_offline_count(self) -> int:
        return self.offline.pending_count

    # Translation

    async def translate(
        self,
        text: str,
        target_locale: Optional[str] = None,
        options: Optional[TranslateOptions] = None
    ) -> str:
        """
        Translate ``text`` into ``target_locale`` (default: the current locale).

        Args:
            text: Source text
            target_locale: Target locale code
            options: Per-call options (cache use, context)

        Returns:
            The translation, or the original text when fallback applies

        Raises:
            LinguaCacheError: Only when fallback is disabled
        """
        options = options or TranslateOptions()
        target = target_locale or self._current_locale
        source = self.config.source_language

        if self.config.deactivate or not text or target == source:
            return text

        self.stats["translations"] += 1
        text = await self.plugins.run_chain("before_translate", text, target, options)
        key = make_request_key(text, source, target)

        result = self.cache.resolve(text, source, target, use_persistent=options.cache)
        if result.hit:
            self.stats["cache_hits"] += 1
            await self.plugins.run_fanout("on_cache_hit", key, result.value)
            return await self._after(result.value, text, target, options)

        if not self.offline.is_online:
            value = self.offline.get_translation(text, source, target, self.config.fallback)
            if value is None:
                raise OfflineError(text, target)
            return await self._after(value, text, target, options)

        self.stats["cache_misses"] += 1
        await self.plugins.run_fanout("on_cache_miss", key)

        resolved = await self.plugins.run_first("resolve_translation", text, source, target)
        if resolved is not None:
            if options.cache:
                self._persist(text, source, target, resolved)
            return await self._after(resolved, text, target, options)

        try:
            value = await self.inflight.dedupe(
                key, lambda: self._fetch_with_fallback(text, source, target, options)
            )
        except TranslationCancelledError:
            if not self.config.fallback:
                raise
            self.stats["fallbacks"] += 1
            value = text

        return await self._after(value, text, target, options)

    async def _after(self, value: str, original: str, target: str, options: TranslateOptions) -> str:
        return await self.plugins.run_chain("after_translate", value, original, target, options)

    async def _fetch_with_fallback(self, text: str, source: str, target: str, options: TranslateOptions) -> str:
        epoch = self.token.value
        recheck = (lambda: self.cache.get_persistent(text, source, target)) if options.cache else None
        try:
            return await self._with_retry(
                lambda: self._fetch_once(text, source, target, options),
                recheck,
                attempts=options.retry_count or None,
                epoch=epoch,
            )
        except TranslationCancelledError:
            raise
        except LinguaCacheError as e:
            return await self._fallback_after_failure(text, source, target, e)

    async def _fetch_once(self, text: str, source: str, target: str, options: TranslateOptions) -> str:
        if self.backend is None:
            raise ConfigurationError("No translation backend configured", config_key="api_key")

        if self.config.batching:
            scheduler = self._scheduler_for(source, target)
            return clean_translation(await scheduler.enqueue(text, context=options.context, persist=options.cache))

        epoch = self.token.value
        self.stats["network_requests"] += 1
        request = TranslationRequest(
            entries=[BatchEntry(id="single", text=text, context=options.context)],
            source_language=source,
            target_language=target,
            model=self.config.model,
        )
        response = await self.backend.translate_batch(request, request_key=make_request_key(text, source, target))

        if not self.token.is_current(epoch):
            raise TranslationCancelledError("Locale changed while request was in flight")
        if not response.success:
            raise APIError(response.error or "Translation failed")

        translation = response.translations.get("single")
        if translation is None:
            if self.config.fallback:
                return text
            raise APIError("No translation returned")

        translation = clean_translation(translation)
        if options.cache:
            self._persist(text, source, target, translation)
        return translation

    def _scheduler_for(self, source: str, target: str) -> BatchScheduler:
        scheduler = self._schedulers.get((source, target))
        if scheduler is None:
            scheduler = BatchScheduler(
                self.backend,
                source,
                target,
                token=self.token,
                window_ms=self.config.batch_window_ms,
                fallback=self.config.fallback,
                model=self.config.model,
                on_translated=lambda text, translation: self._persist(
                    text, source, target, clean_translation(translation)
                ),
            )
            self._schedulers[(source, target)] = scheduler
        return scheduler

    async def _with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        recheck: Optional[Callable[[], Optional[T]]] = None,
        attempts: Optional[int] = None,
        epoch: Optional[int] = None
    ) -> T:
        """
        Run ``operation`` up to ``attempts`` times (default ``max_retries``)
        with exponential backoff.

        After failed attempt n (0-based) the engine waits 2**n seconds.
        Before each retry ``recheck`` is consulted, since a concurrent
        caller may have filled the cache meanwhile. When ``epoch`` is given
        and a locale switch happened during the wait, no further attempt is
        made.
        """
        attempts = max(1, attempts or self.config.max_retries)
        last_error: Optional[LinguaCacheError] = None

        for attempt in range(attempts):
            if attempt > 0 and recheck is not None:
                cached = recheck()
                if cached is not None:
                    logger.debug("Cache filled while waiting to retry")
                    return cached
            try:
                return await operation()
            except NON_RETRYABLE:
                raise
            except LinguaCacheError as e:
                last_error = e
            except Exception as e:
                last_error = LinguaCacheError(
                    f"Unexpected translation failure: {e}",
                    details={"original_error": str(e), "error_type": type(e).__name__},
                    recoverable=True
                )

            if attempt + 1 >= attempts:
                break
            delay_ms = 2 ** attempt * 1000
            self.stats["retries"] += 1
            logger.warning(f"Attempt {attempt + 1}/{attempts} failed: {last_error.message}. Retrying in {delay_ms} ms")
            await self._sleep(delay_ms / 1000)

            if epoch is not None and not self.token.is_current(epoch):
                raise TranslationCancelledError("Locale changed while waiting to retry")

        raise last_error

    async def _fallback_after_failure(self, text: str, source: str, target: str, error: LinguaCacheError) -> str:
        self.stats["errors"] += 1
        logger.error(f"Translation failed for {target}: {error.message}")
        await self.plugins.run_fanout("on_error", error, {"text": text, "source": source, "target": target})

        fallback = self.cache.static_lookup(text, target) or self.cache.get_persistent(text, source, target)
        if fallback is not None:
            self.stats["fallbacks"] += 1
            return fallback
        if self.config.fallback:
            self.stats["fallbacks"] += 1
            return text
        raise error

    def _persist(self, text: str, source: str, target: str, translation: str) -> None:
        self.cache.store(text, source, target, translation)

        entry = self._entries.get(fingerprint(text))
        if entry is not None and entry.source_text == text:
            entry.record_translation(target, translation)

        if self.plugins.plugins:
            self._spawn(self.plugins.run_fanout("on_cache_set", make_request_key(text, source, target), translation))

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def translate_batch(
        self,
        entries: Sequence[Union[BatchEntry, Dict[str, Any]]],
        target_locale: Optional[str] = None,
        options: Optional[TranslateOptions] = None
    ) -> Dict[str, str]:
        """
        Translate up to 100 entries in one request.

        Cached entries are answered locally; the rest go out as a single
        batch with the same retry policy as ``translate``.

        Returns:
            Mapping of entry id to translation
        """
        options = options or TranslateOptions()
        items = [e if isinstance(e, BatchEntry) else BatchEntry(**e) for e in entries]
        if not 1 <= len(items) <= TranslationBackend.max_batch_size:
            raise ValidationError(
                f"Batch must contain between 1 and {TranslationBackend.max_batch_size} entries",
                field="entries",
                value=len(items)
            )

        target = target_locale or self._current_locale
        source = self.config.source_language
        if self.config.deactivate or target == source:
            return {item.id: item.text for item in items}

        results: Dict[str, str] = {}
        misses: List[BatchEntry] = []
        for item in items:
            text = await self.plugins.run_chain("before_translate", item.text, target, options)
            hit = self.cache.resolve(text, source, target, use_persistent=options.cache)
            if hit.hit:
                self.stats["cache_hits"] += 1
                await self.plugins.run_fanout("on_cache_hit", make_request_key(text, source, target), hit.value)
                results[item.id] = hit.value
            else:
                self.stats["cache_misses"] += 1
                misses.append(BatchEntry(id=item.id, text=text, context=item.context or options.context))

        if misses and not self.offline.is_online:
            for item in misses:
                value = self.offline.get_translation(item.text, source, target, self.config.fallback)
                if value is None:
                    raise OfflineError(item.text, target)
                results[item.id] = value
            misses = []

        if misses:
            results.update(await self._translate_misses(misses, source, target, options))

        originals = {item.id: item.text for item in items}
        return {
            item.id: await self._after(results[item.id], originals[item.id], target, options)
            for item in items
        }

    async def _translate_misses(
        self,
        misses: List[BatchEntry],
        source: str,
        target: str,
        options: TranslateOptions
    ) -> Dict[str, str]:
        if self.backend is None:
            error = ConfigurationError("No translation backend configured", config_key="api_key")
            return {item.id: await self._fallback_after_failure(item.text, source, target, error) for item in misses}

        epoch = self.token.value

        async def send() -> Dict[str, str]:
            self.stats["network_requests"] += 1
            response = await self.backend.translate_batch(
                TranslationRequest(entries=misses, source_language=source,
                                   target_language=target, model=self.config.model)
            )
            if not self.token.is_current(epoch):
                raise TranslationCancelledError("Locale changed while batch was in flight")
            if not response.success:
                raise APIError(response.error or "Batch translation failed")
            return response.translations

        try:
            translations = await self._with_retry(send, attempts=options.retry_count or None, epoch=epoch)
        except TranslationCancelledError:
            if not self.config.fallback:
                raise
            return {item.id: item.text for item in misses}
        except LinguaCacheError as e:
            return {item.id: await self._fallback_after_failure(item.text, source, target, e) for item in misses}

        results = {}
        for item in misses:
            translation = translations.get(item.id)
            if translation is None:
                if not self.config.fallback:
                    raise APIError(f"No translation returned for entry {item.id}")
                results[item.id] = item.text
                continue
            translation = clean_translation(translation)
            if options.cache:
                self._persist(item.text, source, target, translation)
            results[item.id] = translation
        return results

    async def flush(self) -> None:
        """Send every queued batch immediately."""
        await asyncio.gather(*(s.flush_now() for s in self._schedulers.values()))

    # Cache management

    def clear_cache(self) -> int:
        return self.storage.clear_cache()

    def export_cache(self) -> str:
        return self.storage.export_cache()

    def import_cache(self, data: str) -> int:
        return self.storage.import_cache(data)

    def get_stats(self) -> Dict[str, Any]:
        engine_stats = dict(self.stats)
        engine_stats["network_requests"] += sum(s.stats["flushes"] for s in self._schedulers.values())
        return {
            "engine": engine_stats,
            "cache": self.storage.get_stats(),
            "inflight": len(self.inflight),
            "offline_pending": self.offline.pending_count,
            "locale": self._current_locale,
            "plugins": [getattr(p, "name", "?") for p in self.plugins.plugins],
        }


_default_engine: Optional[TranslationEngine] = None


def get_default_engine(config: Optional[EngineConfig] = None) -> TranslationEngine:
    """
    Return the process-wide engine, creating it on first use.

    Pass an explicit engine around instead where possible; this exists for
    callers that have no place to hold one.
    """
    global _default_engine
    if _default_engine is None:
        _default_engine = TranslationEngine(config or load_config())
    return _default_engine


def reset_default_engine() -> None:
    global _default_engine
    _default_engine = None
