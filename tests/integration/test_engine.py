"""
Integration tests for the translation engine.

Covers the full translate path: static and persistent tiers, in-flight
de-duplication, batching, retries with backoff, locale switches,
offline mode and plugin hooks.
"""

import asyncio
import json

import httpx
import pytest

from conftest import StubBackend, wait_until
from linguacache.core.engine import TranslationEngine, get_default_engine, reset_default_engine
from linguacache.core.exceptions import (
    APIError,
    ConfigurationError,
    OfflineError,
    QuotaExceededError,
    TranslationCancelledError,
    ValidationError,
)
from linguacache.core.models import EntryStatus, TranslateOptions
from linguacache.core.plugins import Plugin
from linguacache.translation.api_client import APIClient
from linguacache.translation.base import TranslationResponse
from linguacache.utils.cache import DiskStorage
from linguacache.utils.config_loader import EngineConfig


def failing_then(successes_after: int, error_factory=lambda: APIError("server error", status=500)):
    """Responder that fails the first ``successes_after`` calls."""
    state = {"calls": 0}

    def respond(request):
        state["calls"] += 1
        if state["calls"] <= successes_after:
            raise error_factory()
        return TranslationResponse(
            success=True,
            translations={e.id: f"{request.target_language}:{e.text}" for e in request.entries},
        )

    return respond


class TestCacheTiers:
    """Test that cached answers never reach the backend."""

    @pytest.mark.asyncio
    async def test_static_bundle(self, make_engine):
        backend = StubBackend()
        engine = make_engine(backend)
        engine.load_locale_data("es", {"Hello": "Hola"})

        assert await engine.translate("Hello", "es") == "Hola"
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_fresh_translation_is_persisted(self, make_engine, storage):
        backend = StubBackend()
        engine = make_engine(backend)

        assert await engine.translate("Hello", "es") == "es:Hello"
        assert await engine.translate("Hello", "es") == "es:Hello"

        assert len(backend.calls) == 1
        assert storage.get_cached_translation("Hello", "en", "es") == "es:Hello"

    @pytest.mark.asyncio
    async def test_cache_bypass_option(self, make_engine, storage):
        backend = StubBackend()
        engine = make_engine(backend)
        storage.cache_translation("Hello", "en", "es", "Hola")

        assert await engine.translate("Hello", "es", TranslateOptions(cache=False)) == "es:Hello"
        assert len(backend.calls) == 1
        assert storage.get_cached_translation("Hello", "en", "es") == "Hola"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("batching", [True, False])
    async def test_cache_bypass_does_not_store(self, make_engine, storage, batching):
        backend = StubBackend()
        engine = make_engine(backend, batching=batching)

        assert await engine.translate("Hello", "es", TranslateOptions(cache=False)) == "es:Hello"
        assert storage.get_cached_translation("Hello", "en", "es") is None

        results = await engine.translate_batch([{"id": "a", "text": "Bye"}], "es", TranslateOptions(cache=False))
        assert results == {"a": "es:Bye"}
        assert storage.get_cached_translation("Bye", "en", "es") is None

    @pytest.mark.asyncio
    async def test_pass_through_cases(self, make_engine):
        backend = StubBackend()
        engine = make_engine(backend)

        assert await engine.translate("", "es") == ""
        assert await engine.translate("Hello", "en") == "Hello"
        assert await make_engine(backend, deactivate=True).translate("Hello", "es") == "Hello"
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_api_client_end_to_end(self, make_engine, storage, notifier):
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "translations": {"single": "Hola mundo"}})

        client = APIClient(
            api_key="sk-test-0123456789",
            base_url="https://api.test/v1",
            notifier=notifier,
            transport=httpx.MockTransport(handler),
        )
        engine = make_engine(client, batching=False)

        assert await engine.translate("Hello world", "es") == "Hola mundo"
        assert await engine.translate("Hello world", "es") == "Hola mundo"

        assert len(requests) == 1
        assert requests[0]["entries"] == [{"id": "single", "text": "Hello world"}]
        assert storage.get_cached_translation("Hello world", "en", "es") == "Hola mundo"
        await engine.destroy()

    @pytest.mark.asyncio
    async def test_api_client_non_ascii_text(self, make_engine, storage, notifier, sleeper):
        headers = []

        def handler(request):
            headers.append(request.headers["X-Request-Id"])
            return httpx.Response(200, json={"success": True, "translations": {"single": "Tamaño"}})

        client = APIClient(
            api_key="sk-test-0123456789",
            base_url="https://api.test/v1",
            notifier=notifier,
            transport=httpx.MockTransport(handler),
        )
        engine = make_engine(client, batching=False)

        assert await engine.translate("Größe", "es") == "Tamaño"

        assert len(headers) == 1
        assert headers[0].isascii()
        assert sleeper.calls == []
        assert storage.get_cached_translation("Größe", "en", "es") == "Tamaño"
        await engine.destroy()


class TestDedupAndBatching:
    """Test that concurrent calls collapse into one request."""

    @pytest.mark.asyncio
    async def test_identical_concurrent_calls_share_one_request(self, make_engine):
        backend = StubBackend()
        engine = make_engine(backend)

        results = await asyncio.gather(*(engine.translate("Hello", "es") for _ in range(5)))

        assert results == ["es:Hello"] * 5
        assert backend.texts == [["Hello"]]

    @pytest.mark.asyncio
    async def test_distinct_texts_share_one_batch(self, make_engine):
        backend = StubBackend()
        engine = make_engine(backend)

        results = await asyncio.gather(*(engine.translate(t, "es") for t in ("One", "Two", "Three")))

        assert results == ["es:One", "es:Two", "es:Three"]
        assert backend.texts == [["One", "Two", "Three"]]

    @pytest.mark.asyncio
    async def test_targets_are_batched_separately(self, make_engine):
        backend = StubBackend()
        engine = make_engine(backend)

        results = await asyncio.gather(engine.translate("Hello", "es"), engine.translate("Hello", "fr"))

        assert results == ["es:Hello", "fr:Hello"]
        assert sorted(r.target_language for r in backend.calls) == ["es", "fr"]

    @pytest.mark.asyncio
    async def test_missing_batch_entry_falls_back_and_is_not_cached(self, make_engine, storage):
        engine = make_engine(StubBackend(lambda request: TranslationResponse(success=True, translations={})))

        assert await engine.translate("Hello", "es") == "Hello"
        assert storage.get_cached_translation("Hello", "en", "es") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("batching", [True, False])
    async def test_context_is_forwarded(self, make_engine, batching):
        backend = StubBackend()
        engine = make_engine(backend, batching=batching)

        await engine.translate("Save", "es", TranslateOptions(context={"element": "button"}))
        await engine.translate_batch([{"id": "a", "text": "Open"}], "es", TranslateOptions(context={"page": "home"}))

        assert [e.context for request in backend.calls for e in request.entries] == [
            {"element": "button"},
            {"page": "home"},
        ]

    @pytest.mark.asyncio
    async def test_flush(self, make_engine):
        backend = StubBackend()
        engine = make_engine(backend, batch_window_ms=60_000)

        task = asyncio.ensure_future(engine.translate("Hello", "es"))
        await wait_until(lambda: engine._schedulers and engine._schedulers[("en", "es")].pending_count == 1)
        await engine.flush()

        assert await task == "es:Hello"


class TestRetry:
    """Test exponential backoff and the failure ladder."""

    @pytest.mark.asyncio
    async def test_two_failures_then_success(self, make_engine, sleeper):
        backend = StubBackend(failing_then(2))
        engine = make_engine(backend, batching=False)

        assert await engine.translate("Hello", "es") == "es:Hello"
        assert len(backend.calls) == 3
        assert sleeper.calls == [1.0, 2.0]
        assert engine.stats["retries"] == 2

    @pytest.mark.asyncio
    async def test_retry_through_batching(self, make_engine, sleeper):
        backend = StubBackend(failing_then(1))
        engine = make_engine(backend)

        assert await engine.translate("Hello", "es") == "es:Hello"
        assert len(backend.calls) == 2
        assert sleeper.calls == [1.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_fall_back_to_source(self, make_engine, sleeper):
        errors = []

        class ErrorWatcher(Plugin):
            name = "watcher"

            def on_error(self, error, context):
                errors.append((type(error).__name__, context["target"]))

        backend = StubBackend(failing_then(10))
        engine = make_engine(backend, batching=False).use(ErrorWatcher())

        assert await engine.translate("Hello", "es") == "Hello"
        assert len(backend.calls) == 3
        assert sleeper.calls == [1.0, 2.0]
        assert errors == [("APIError", "es")]

    @pytest.mark.asyncio
    async def test_exhausted_retries_without_fallback(self, make_engine):
        engine = make_engine(StubBackend(failing_then(10)), batching=False, fallback=False)

        with pytest.raises(APIError):
            await engine.translate("Hello", "es")

    @pytest.mark.asyncio
    async def test_quota_errors_are_not_retried(self, make_engine, sleeper):
        backend = StubBackend(failing_then(10, lambda: QuotaExceededError()))
        engine = make_engine(backend, batching=False)

        assert await engine.translate("Hello", "es") == "Hello"
        assert len(backend.calls) == 1
        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_retried(self, make_engine):
        backend = StubBackend(failing_then(1, lambda: RuntimeError("socket closed")))
        engine = make_engine(backend, batching=False)

        assert await engine.translate("Hello", "es") == "es:Hello"
        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    async def test_cache_rechecked_before_retry(self, make_engine, storage):
        def respond(request):
            # another process fills the cache while this call fails
            storage.cache_translation("Hello", "en", "es", "Hola")
            raise APIError("server error", status=500)

        backend = StubBackend(respond)
        engine = make_engine(backend, batching=False)

        assert await engine.translate("Hello", "es") == "Hola"
        assert len(backend.calls) == 1

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_bypassed_cache_value(self, make_engine, storage):
        backend = StubBackend(failing_then(10))
        engine = make_engine(backend, batching=False, fallback=False)
        storage.cache_translation("Hello", "en", "es", "Hola")

        assert await engine.translate("Hello", "es", TranslateOptions(cache=False)) == "Hola"
        assert len(backend.calls) == 3

    @pytest.mark.asyncio
    async def test_retry_count_option(self, make_engine, sleeper):
        backend = StubBackend(failing_then(10))
        engine = make_engine(backend, batching=False)

        assert await engine.translate("Hello", "es", TranslateOptions(retry_count=1)) == "Hello"
        assert len(backend.calls) == 1
        assert sleeper.calls == []

        backend = StubBackend(failing_then(4))
        engine = make_engine(backend, batching=False)

        assert await engine.translate("Bye", "es", TranslateOptions(retry_count=5)) == "es:Bye"
        assert len(backend.calls) == 5
        assert sleeper.calls == [1.0, 2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("batching", [True, False])
    async def test_locale_switch_during_backoff_cancels_retry(self, storage, notifier, batching):
        backend = StubBackend(failing_then(1))

        async def switch_locale(seconds):
            await engine.set_locale("fr")

        engine = TranslationEngine(
            EngineConfig(batching=batching, batch_window_ms=1, fallback=False),
            backend=backend,
            storage=storage,
            notifier=notifier,
            sleep=switch_locale,
        )

        with pytest.raises(TranslationCancelledError):
            await engine.translate("Hello", "es")
        assert len(backend.calls) == 1
        assert storage.get_cached_translation("Hello", "en", "es") is None

    @pytest.mark.asyncio
    async def test_locale_switch_during_backoff_falls_back(self, storage, notifier):
        backend = StubBackend(failing_then(1))

        async def switch_locale(seconds):
            await engine.set_locale("fr")

        engine = TranslationEngine(
            EngineConfig(batching=False), backend=backend, storage=storage, notifier=notifier, sleep=switch_locale
        )

        assert await engine.translate("Hello", "es") == "Hello"
        assert len(backend.calls) == 1

    @pytest.mark.asyncio
    async def test_no_backend(self, storage, notifier):
        engine = TranslationEngine(EngineConfig(), storage=storage, notifier=notifier)
        assert engine.backend is None

        assert await engine.translate("Hello", "es") == "Hello"

        strict = TranslationEngine(EngineConfig(fallback=False), storage=storage, notifier=notifier)
        with pytest.raises(ConfigurationError):
            await strict.translate("Hello", "es")


class TestLocaleSwitch:
    """Test that a locale switch drops work for the old locale."""

    @pytest.mark.asyncio
    async def test_queued_work_is_cancelled(self, make_engine):
        backend = StubBackend()
        engine = make_engine(backend, batch_window_ms=50)

        tasks = [asyncio.ensure_future(engine.translate(t, "es")) for t in ("One", "Two", "Three")]
        await wait_until(lambda: engine._schedulers and engine._schedulers[("en", "es")].pending_count == 3)
        await engine.set_locale("fr")

        assert await asyncio.gather(*tasks) == ["One", "Two", "Three"]
        assert backend.calls == []
        assert engine.current_locale == "fr"

    @pytest.mark.asyncio
    async def test_cancellation_without_fallback(self, make_engine):
        engine = make_engine(StubBackend(), batch_window_ms=50, fallback=False)

        task = asyncio.ensure_future(engine.translate("Hello", "es"))
        await wait_until(lambda: engine._schedulers and engine._schedulers[("en", "es")].pending_count == 1)
        await engine.set_locale("de")

        with pytest.raises(TranslationCancelledError):
            await task

    @pytest.mark.asyncio
    async def test_in_flight_response_is_discarded(self, make_engine, storage):
        engine = make_engine(StubBackend(delay=0.05), batch_window_ms=1)

        task = asyncio.ensure_future(engine.translate("Hello", "es"))
        await asyncio.sleep(0.02)
        await engine.set_locale("fr")

        assert await task == "Hello"
        assert storage.get_cached_translation("Hello", "en", "es") is None

    @pytest.mark.asyncio
    async def test_hooks_and_listeners(self, make_engine):
        changes = []

        class LocaleWatcher(Plugin):
            name = "locale-watcher"

            def on_locale_change(self, new_locale, old_locale):
                changes.append(("plugin", new_locale, old_locale))

        engine = make_engine().use(LocaleWatcher())
        unsubscribe = engine.on_locale_changed(lambda locale: changes.append(("listener", locale)))

        await engine.set_locale("es")
        await engine.set_locale("es")
        unsubscribe()
        await engine.set_locale("fr")

        assert changes == [
            ("plugin", "es", "en"),
            ("listener", "es"),
            ("plugin", "fr", "es"),
        ]

    @pytest.mark.asyncio
    async def test_default_target_is_current_locale(self, make_engine):
        engine = make_engine()
        await engine.set_locale("it")

        assert await engine.translate("Hello") == "it:Hello"

    @pytest.mark.asyncio
    async def test_invalid_locale(self, make_engine):
        with pytest.raises(ValidationError):
            await make_engine().set_locale("Italian")

    @pytest.mark.asyncio
    async def test_bundle_restored_on_switch(self, make_engine, storage):
        make_engine().load_locale_data("es", {"Hello": "Hola"})
        backend = StubBackend()
        engine = make_engine(backend)

        await engine.set_locale("es")

        assert engine.cache.has_bundle("es")
        assert await engine.translate("Hello") == "Hola"
        assert backend.calls == []


class TestOffline:
    """Test cache-only behaviour while offline."""

    @pytest.mark.asyncio
    async def test_offline_uses_cache_and_queues_misses(self, make_engine, storage):
        backend = StubBackend()
        engine = make_engine(backend)
        storage.cache_translation("Hello", "en", "es", "Hola")
        engine.set_online(False)

        assert engine.is_offline()
        assert await engine.translate("Hello", "es") == "Hola"
        assert await engine.translate("Goodbye", "es") == "Goodbye"
        assert engine.pending_offline_count() == 1
        assert backend.calls == []

        engine.set_online(True)
        assert engine.pending_offline_count() == 0

    @pytest.mark.asyncio
    async def test_offline_without_fallback(self, make_engine):
        engine = make_engine(fallback=False)
        engine.set_online(False)

        with pytest.raises(OfflineError):
            await engine.translate("Goodbye", "es")


class TestBatchTranslate:
    """Test explicit batch translation."""

    @pytest.mark.asyncio
    async def test_only_misses_are_sent(self, make_engine, storage):
        backend = StubBackend()
        engine = make_engine(backend)
        storage.cache_translation("Two", "en", "es", "Dos")

        results = await engine.translate_batch(
            [{"id": "a", "text": "One"}, {"id": "b", "text": "Two"}, {"id": "c", "text": "Three"}], "es"
        )

        assert results == {"a": "es:One", "b": "Dos", "c": "es:Three"}
        assert backend.texts == [["One", "Three"]]
        assert [e.id for e in backend.calls[0].entries] == ["a", "c"]
        assert storage.get_cached_translation("Three", "en", "es") == "es:Three"

    @pytest.mark.asyncio
    async def test_batch_size_limits(self, make_engine):
        engine = make_engine()

        with pytest.raises(ValidationError):
            await engine.translate_batch([], "es")
        with pytest.raises(ValidationError):
            await engine.translate_batch([{"id": str(i), "text": "x"} for i in range(101)], "es")

    @pytest.mark.asyncio
    async def test_batch_failure_falls_back_per_entry(self, make_engine, sleeper):
        engine = make_engine(StubBackend(failing_then(10)))

        results = await engine.translate_batch([{"id": "a", "text": "Bye"}], "es")

        assert results == {"a": "Bye"}
        assert sleeper.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_batch_offline(self, make_engine, storage):
        engine = make_engine()
        storage.cache_translation("One", "en", "es", "Uno")
        engine.set_online(False)

        assert await engine.translate_batch([{"id": "a", "text": "One"}, {"id": "b", "text": "Two"}], "es") == {
            "a": "Uno",
            "b": "Two",
        }


class TestPluginsAndTracking:
    """Test hooks around translate and content tracking."""

    @pytest.mark.asyncio
    async def test_failing_plugin_is_isolated(self, make_engine):
        reported = []

        class Broken(Plugin):
            name = "broken"

            def before_translate(self, text, locale, options):
                raise RuntimeError("plugin bug")

            def on_error(self, error, context):
                reported.append(context["hook"])

        class Shouting(Plugin):
            name = "shouting"

            def after_translate(self, result, original, locale, options):
                return result.upper()

        engine = make_engine().use(Broken()).use(Shouting())

        assert await engine.translate("Hello", "es") == "ES:HELLO"
        assert reported == ["before_translate"]

    @pytest.mark.asyncio
    async def test_resolve_translation_hook(self, make_engine, storage):
        class Glossary(Plugin):
            name = "glossary"

            def resolve_translation(self, text, source, target):
                return "LinguaCache" if text == "LinguaCache" else None

        backend = StubBackend()
        engine = make_engine(backend).use(Glossary())

        assert await engine.translate("LinguaCache", "es") == "LinguaCache"
        assert backend.calls == []
        assert storage.get_cached_translation("LinguaCache", "en", "es") == "LinguaCache"

    @pytest.mark.asyncio
    async def test_cache_events(self, make_engine):
        events = []

        class Watcher(Plugin):
            name = "watcher"

            def on_cache_hit(self, key, value):
                events.append(("hit", key))

            def on_cache_miss(self, key):
                events.append(("miss", key))

            def on_cache_set(self, key, value):
                events.append(("set", key))

        engine = make_engine(batching=False).use(Watcher())
        await engine.translate("Hello", "es")
        await asyncio.sleep(0)
        await engine.translate("Hello", "es")

        assert events == [("miss", "Hello|en|es"), ("set", "Hello|en|es"), ("hit", "Hello|en|es")]

    @pytest.mark.asyncio
    async def test_content_tracking(self, make_engine):
        engine = make_engine(batching=False)

        fp = engine.notify_content_discovered("Hello")
        assert engine.get_entry(fp).status == EntryStatus.NEW

        await engine.translate("Hello", "es")

        entry = engine.get_entry(fp)
        assert entry.status == EntryStatus.TRANSLATED
        assert entry.translations == {"es": "es:Hello"}


class TestLifecycle:
    """Test init, destroy and the shared default engine."""

    @pytest.mark.asyncio
    async def test_context_manager_loads_bundles(self, tmp_path, storage, notifier):
        (tmp_path / "es.json").write_text(json.dumps({"Hello": "Hola"}), encoding="utf-8")
        config = EngineConfig(locale_dir=str(tmp_path))

        async with TranslationEngine(config, backend=StubBackend(), storage=storage, notifier=notifier) as engine:
            assert await engine.translate("Hello", "es") == "Hola"
            # bundle entries are also available to the offline path
            assert storage.get_cached_translation("Hello", "en", "es") == "Hola"

    @pytest.mark.asyncio
    async def test_stats(self, make_engine):
        engine = make_engine()
        await asyncio.gather(*(engine.translate(t, "es") for t in ("Hello", "Bye", "Yes")))

        stats = engine.get_stats()

        assert stats["engine"]["translations"] == 3
        assert stats["engine"]["cache_misses"] == 3
        assert stats["engine"]["network_requests"] == 1
        assert stats["cache"]["translations"] == 3
        assert stats["locale"] == "en"

    def test_invalid_config_is_rejected(self, storage, notifier):
        with pytest.raises(ConfigurationError, match="max_retries"):
            TranslationEngine(EngineConfig(max_retries=0), backend=StubBackend(), storage=storage, notifier=notifier)
        with pytest.raises(ConfigurationError, match="target_languages"):
            TranslationEngine(EngineConfig(target_languages=["Spanish"]), storage=storage, notifier=notifier)

    @pytest.mark.asyncio
    async def test_init_loads_target_bundles_and_debug_plugin(self, storage, notifier):
        config = EngineConfig(target_languages=["es", "de"], debug=True)
        engine = TranslationEngine(config, backend=StubBackend(), storage=storage, notifier=notifier)
        storage.cache_locale_data("de", {"Hello": "Hallo"})

        await engine.init()

        assert engine.cache.has_bundle("de")
        assert engine.get_plugin("debug") is not None
        await engine.destroy()

    @pytest.mark.asyncio
    async def test_destroy_closes_owned_storage(self, tmp_path, notifier, monkeypatch):
        closed = []
        original_close = DiskStorage.close

        def close(self):
            closed.append(self)
            original_close(self)

        monkeypatch.setattr(DiskStorage, "close", close)
        config = EngineConfig(use_disk_cache=True, cache_dir=str(tmp_path / "cache"))
        engine = TranslationEngine(config, backend=StubBackend(), notifier=notifier)

        await engine.destroy()

        assert closed == [engine.storage.adapter]

    def test_default_engine(self):
        reset_default_engine()
        try:
            engine = get_default_engine(EngineConfig())
            assert get_default_engine() is engine
        finally:
            reset_default_engine()
