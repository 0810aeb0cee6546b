"""
Time-windowed batching of individual translate calls.

The first enqueue arms a fixed timer; everything enqueued before it fires
goes out as one batch request. A RequestToken shared with the engine marks
the current locale epoch: a window opened under an older epoch is never
sent, and a response that comes back after the epoch moved on is dropped.
"""

import asyncio
import itertools
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from linguacache.core.exceptions import APIError, TranslationCancelledError
from linguacache.core.models import BatchQueueItem
from linguacache.translation.base import BatchEntry, TranslationBackend, TranslationRequest

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MS = 100


class RequestToken:
    """Monotonic epoch counter, bumped on every locale switch."""

    def __init__(self):
        self.value = 0

    def bump(self) -> int:
        self.value += 1
        return self.value

    def is_current(self, value: Optional[int]) -> bool:
        return value == self.value


def _reject(future: asyncio.Future, error: BaseException) -> None:
    if not future.done():
        future.set_exception(error)


def _resolve(future: asyncio.Future, value: str) -> None:
    if not future.done():
        future.set_result(value)


class BatchScheduler:
    """Coalesces translate calls for one source/target pair into batch requests."""

    _flush_ids = itertools.count()

    def __init__(
        self,
        backend: TranslationBackend,
        source_locale: str,
        target_locale: str,
        token: Optional[RequestToken] = None,
        window_ms: int = DEFAULT_WINDOW_MS,
        fallback: bool = True,
        model: Optional[str] = None,
        on_translated: Optional[Callable[[str, str], None]] = None
    ):
        """
        Initialize scheduler.

        Args:
            backend: Backend that performs the batch call
            source_locale: Source language of every queued text
            target_locale: Target language of every queued text
            token: Epoch token shared with whoever switches locales
            window_ms: Fixed delay between the first enqueue and the flush
            fallback: Resolve texts missing from a response to themselves
            model: Model name forwarded with each batch
            on_translated: Called with (text, translation) for every real
                translation before its future resolves
        """
        self.backend = backend
        self.source_locale = source_locale
        self.target_locale = target_locale
        self.token = token or RequestToken()
        self.window_ms = window_ms
        self.fallback = fallback
        self.model = model
        self.on_translated = on_translated

        self._queue: List[BatchQueueItem] = []
        self._epoch: Optional[int] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._flushes: Set[asyncio.Task] = set()
        self._inflight_keys: Set[str] = set()
        self.stats = {"enqueued": 0, "flushes": 0, "cancelled": 0, "discarded": 0}

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    def enqueue(
        self,
        text: str,
        context: Optional[Dict[str, Any]] = None,
        persist: bool = True
    ) -> asyncio.Future:
        """
        Queue ``text`` for the next flush and return the future of its translation.

        ``context`` travels with the entry to the backend. With ``persist``
        off, ``on_translated`` is skipped for this text.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        if not self._queue:
            self._epoch = self.token.value
        self._queue.append(BatchQueueItem(text=text, future=future, context=context, persist=persist))
        self.stats["enqueued"] += 1

        if self._timer is None:
            self._timer = loop.call_later(self.window_ms / 1000, self._on_timer)
        return future

    def _on_timer(self) -> None:
        self._timer = None
        self._start_flush()

    def _take_queue(self):
        items, epoch = self._queue, self._epoch
        self._queue = []
        self._epoch = None
        return items, epoch

    def _start_flush(self) -> Optional[asyncio.Task]:
        items, epoch = self._take_queue()
        if not items:
            return None

        if not self.token.is_current(epoch):
            self._cancel_items(items, "Locale changed before batch was sent")
            return None

        task = asyncio.ensure_future(self._flush(items, epoch))
        self._flushes.add(task)
        task.add_done_callback(self._flushes.discard)
        return task

    async def flush_now(self) -> None:
        """Send whatever is queued immediately and wait for the batch to settle."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        task = self._start_flush()
        if task is not None:
            await task

    def cancel_pending(self, reason: str = "Translation cancelled") -> int:
        """Reject every queued item that has not been sent yet."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        items, _ = self._take_queue()
        self._cancel_items(items, reason)
        return len(items)

    def cancel_inflight(self) -> int:
        """Abort batch calls that are already on the wire."""
        return sum(1 for key in list(self._inflight_keys) if self.backend.cancel_request(key))

    def _cancel_items(self, items: List[BatchQueueItem], reason: str) -> None:
        for item in items:
            _reject(item.future, TranslationCancelledError(reason))
        self.stats["cancelled"] += len(items)

    async def _flush(self, items: List[BatchQueueItem], epoch: int) -> None:
        ids = [f"batch_{i}" for i in range(len(items))]
        request = TranslationRequest(
            entries=[
                BatchEntry(id=entry_id, text=item.text, context=item.context)
                for entry_id, item in zip(ids, items)
            ],
            source_language=self.source_locale,
            target_language=self.target_locale,
            model=self.model,
        )
        request_key = f"batch_{self.source_locale}_{self.target_locale}_{next(self._flush_ids)}"
        self.stats["flushes"] += 1
        logger.debug(f"Flushing batch of {len(items)} texts ({self.source_locale} -> {self.target_locale})")

        self._inflight_keys.add(request_key)
        try:
            response = await self.backend.translate_batch(request, request_key=request_key)
        except asyncio.CancelledError:
            self._cancel_items(items, "Batch flush cancelled")
            raise
        except Exception as e:
            if not self.token.is_current(epoch):
                self._cancel_items(items, "Locale changed while batch was in flight")
            else:
                for item in items:
                    _reject(item.future, e)
            return
        finally:
            self._inflight_keys.discard(request_key)

        if not self.token.is_current(epoch):
            logger.debug(f"Discarding stale batch response for {self.target_locale}")
            self.stats["discarded"] += 1
            self._cancel_items(items, "Locale changed while batch was in flight")
            return

        if not response.success:
            error = APIError(response.error or "Batch translation failed")
            for item in items:
                _reject(item.future, error)
            return

        self._deliver(items, ids, response.translations)

    def _deliver(self, items: List[BatchQueueItem], ids: List[str], translations: Dict[str, str]) -> None:
        for entry_id, item in zip(ids, items):
            translation = translations.get(entry_id)
            if translation is not None:
                if self.on_translated is not None and item.persist:
                    try:
                        self.on_translated(item.text, translation)
                    except Exception as e:
                        logger.warning(f"Failed to persist translation for {entry_id}: {e}")
                _resolve(item.future, translation)
            elif self.fallback:
                _resolve(item.future, item.text)
            else:
                _reject(item.future, APIError(f"No translation returned for entry {entry_id}"))
