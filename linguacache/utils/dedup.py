"""In-flight request de-duplication."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def make_request_key(text: str, source_locale: str, target_locale: str) -> str:
    return f"{text}|{source_locale}|{target_locale}"


class InflightRegistry:
    """
    Maps request keys to the single task doing the work for that key.

    Concurrent callers asking for the same key share one task. The entry
    is registered before the work starts and removed once it settles,
    whatever the outcome.
    """

    def __init__(self):
        self._inflight: Dict[str, asyncio.Task] = {}
        self.stats = {"started": 0, "joined": 0}

    def dedupe(self, key: str, factory: Callable[[], Awaitable[T]]) -> Awaitable[T]:
        """
        Return an awaitable for ``key``, starting ``factory()`` only if nothing is in flight.

        Each caller gets a shielded view of the shared task, so one caller
        being cancelled does not cancel the work for the others.
        """
        existing = self._inflight.get(key)
        if existing is not None and not existing.done():
            self.stats["joined"] += 1
            logger.debug(f"Joining in-flight request {key!r}")
            return asyncio.shield(existing)

        task = asyncio.ensure_future(factory())
        self._inflight[key] = task
        self.stats["started"] += 1
        task.add_done_callback(lambda t: self._settle(key, t))
        return asyncio.shield(task)

    def _settle(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # mark the exception retrieved when every awaiter has gone away
        if not task.cancelled():
            task.exception()

    def pending(self, key: str) -> bool:
        task = self._inflight.get(key)
        return task is not None and not task.done()

    def cancel_all(self) -> int:
        tasks = [t for t in self._inflight.values() if not t.done()]
        for task in tasks:
            task.cancel()
        return len(tasks)

    def __contains__(self, key: str) -> bool:
        return self.pending(key)

    def __len__(self) -> int:
        return sum(1 for t in self._inflight.values() if not t.done())
