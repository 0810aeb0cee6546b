"""Unit tests for time-windowed batching."""

import asyncio

import pytest

from conftest import StubBackend
from linguacache.core.exceptions import APIError, TranslationCancelledError
from linguacache.translation.base import TranslationResponse
from linguacache.utils.batch_scheduler import BatchScheduler, RequestToken


class TestRequestToken:
    """Test the epoch counter."""

    def test_bump(self):
        token = RequestToken()
        epoch = token.value

        assert token.is_current(epoch)
        assert token.bump() == epoch + 1
        assert not token.is_current(epoch)


class TestBatchScheduler:
    """Test coalescing, cancellation and delivery."""

    @pytest.mark.asyncio
    async def test_window_coalesces_calls(self):
        backend = StubBackend()
        scheduler = BatchScheduler(backend, "en", "es", window_ms=10)

        futures = [scheduler.enqueue(text) for text in ("One", "Two", "Three")]
        results = await asyncio.gather(*futures)

        assert results == ["es:One", "es:Two", "es:Three"]
        assert len(backend.calls) == 1
        request = backend.calls[0]
        assert [e.id for e in request.entries] == ["batch_0", "batch_1", "batch_2"]
        assert request.source_language == "en"
        assert request.target_language == "es"

    @pytest.mark.asyncio
    async def test_context_and_persist_per_item(self):
        backend = StubBackend()
        persisted = []
        scheduler = BatchScheduler(
            backend, "en", "es", window_ms=10,
            on_translated=lambda text, translation: persisted.append(text),
        )

        results = await asyncio.gather(
            scheduler.enqueue("One", context={"screen": "home"}),
            scheduler.enqueue("Two", persist=False),
        )

        assert results == ["es:One", "es:Two"]
        assert [e.context for e in backend.calls[0].entries] == [{"screen": "home"}, None]
        assert persisted == ["One"]

    @pytest.mark.asyncio
    async def test_separate_windows(self):
        backend = StubBackend()
        scheduler = BatchScheduler(backend, "en", "es", window_ms=1)

        assert await scheduler.enqueue("One") == "es:One"
        assert await scheduler.enqueue("Two") == "es:Two"
        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    async def test_epoch_change_before_flush_cancels_without_calling(self):
        backend = StubBackend()
        token = RequestToken()
        scheduler = BatchScheduler(backend, "en", "es", token=token, window_ms=10)

        futures = [scheduler.enqueue(text) for text in ("One", "Two", "Three")]
        token.bump()
        results = await asyncio.gather(*futures, return_exceptions=True)

        assert all(isinstance(r, TranslationCancelledError) for r in results)
        assert backend.calls == []
        assert scheduler.stats["cancelled"] == 3

    @pytest.mark.asyncio
    async def test_stale_response_is_discarded(self):
        token = RequestToken()
        persisted = []

        def respond(request):
            token.bump()
            return TranslationResponse(success=True, translations={"batch_0": "Hola"})

        scheduler = BatchScheduler(
            StubBackend(respond), "en", "es", token=token, window_ms=1,
            on_translated=lambda text, translation: persisted.append((text, translation)),
        )

        with pytest.raises(TranslationCancelledError):
            await scheduler.enqueue("Hello")
        assert persisted == []
        assert scheduler.stats["discarded"] == 1

    @pytest.mark.asyncio
    async def test_missing_entries_fall_back_to_source(self):
        persisted = []

        def respond(request):
            return TranslationResponse(success=True, translations={"batch_0": "Hola"})

        scheduler = BatchScheduler(
            StubBackend(respond), "en", "es", window_ms=1,
            on_translated=lambda text, translation: persisted.append((text, translation)),
        )

        results = await asyncio.gather(scheduler.enqueue("Hello"), scheduler.enqueue("World"))

        assert results == ["Hola", "World"]
        assert persisted == [("Hello", "Hola")]

    @pytest.mark.asyncio
    async def test_missing_entries_without_fallback(self):
        def respond(request):
            return TranslationResponse(success=True, translations={})

        scheduler = BatchScheduler(StubBackend(respond), "en", "es", window_ms=1, fallback=False)

        with pytest.raises(APIError):
            await scheduler.enqueue("Hello")

    @pytest.mark.asyncio
    async def test_unsuccessful_response_rejects_everything(self):
        def respond(request):
            return TranslationResponse(success=False, error="model overloaded")

        scheduler = BatchScheduler(StubBackend(respond), "en", "es", window_ms=1)
        results = await asyncio.gather(
            scheduler.enqueue("One"), scheduler.enqueue("Two"), return_exceptions=True
        )

        assert all(isinstance(r, APIError) and r.message == "model overloaded" for r in results)

    @pytest.mark.asyncio
    async def test_backend_error_rejects_items(self):
        error = APIError("server error", status=500)

        def respond(request):
            raise error

        scheduler = BatchScheduler(StubBackend(respond), "en", "es", window_ms=1)

        with pytest.raises(APIError) as exc_info:
            await scheduler.enqueue("Hello")
        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_cancel_pending(self):
        backend = StubBackend()
        scheduler = BatchScheduler(backend, "en", "es", window_ms=1000)

        future = scheduler.enqueue("Hello")
        assert scheduler.pending_count == 1
        assert scheduler.cancel_pending("Locale changed") == 1

        with pytest.raises(TranslationCancelledError, match="Locale changed"):
            await future
        assert scheduler.pending_count == 0
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_flush_now_skips_the_timer(self):
        backend = StubBackend()
        scheduler = BatchScheduler(backend, "en", "es", window_ms=60_000)

        future = scheduler.enqueue("Hello")
        await scheduler.flush_now()

        assert future.result() == "es:Hello"
        assert len(backend.calls) == 1

    @pytest.mark.asyncio
    async def test_cancel_inflight_uses_request_key(self):
        backend = StubBackend(delay=0.05)
        scheduler = BatchScheduler(backend, "en", "es", window_ms=1)

        future = scheduler.enqueue("Hello")
        await asyncio.sleep(0.02)
        scheduler.cancel_inflight()

        assert backend.cancelled and backend.cancelled[0].startswith("batch_en_es_")
        await future
