"""Client-side rate limiting for API calls."""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Tuple

from linguacache.core.models import now_ms

logger = logging.getLogger(__name__)


@dataclass
class RateLimiter:
    """
    Fixed-window rate limiter keyed by caller identity.

    Each identifier gets ``max_requests`` calls per window of ``window_ms``.
    The window starts at the first call and resets once it has elapsed.
    Over-limit calls are rejected immediately rather than delayed.
    """

    max_requests: int = 100
    window_ms: int = 60_000
    clock: Callable[[], int] = now_ms
    # identifier -> (window start, count)
    _windows: Dict[str, Tuple[int, int]] = field(default_factory=dict, repr=False)

    def _current(self, identifier: str) -> Tuple[int, int]:
        now = self.clock()
        start, count = self._windows.get(identifier, (now, 0))
        if now - start >= self.window_ms:
            start, count = now, 0
        return start, count

    def try_acquire(self, identifier: str) -> bool:
        """Count a request against ``identifier``. Returns False when over the limit."""
        start, count = self._current(identifier)
        if count >= self.max_requests:
            logger.debug(f"Rate limit reached ({self.max_requests}/{self.window_ms}ms)")
            self._windows[identifier] = (start, count)
            return False
        self._windows[identifier] = (start, count + 1)
        return True

    def remaining(self, identifier: str) -> int:
        _, count = self._current(identifier)
        return max(0, self.max_requests - count)

    def reset_in_ms(self, identifier: str) -> int:
        """Milliseconds until the identifier's window resets."""
        start, _ = self._current(identifier)
        return max(0, self.window_ms - (self.clock() - start))

    def reset(self, identifier: str = None) -> None:
        if identifier is None:
            self._windows.clear()
        else:
            self._windows.pop(identifier, None)
