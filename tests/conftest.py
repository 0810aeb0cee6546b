"""Pytest configuration and fixtures."""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
from loguru import logger as loguru_logger

from linguacache.core.engine import TranslationEngine
from linguacache.translation.base import TranslationBackend, TranslationResponse
from linguacache.translation.notifications import NotificationSystem
from linguacache.utils.cache import MemoryStorage, StorageManager
from linguacache.utils.config_loader import EngineConfig


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class SleepRecorder:
    """Stand-in for asyncio.sleep that records delays without waiting."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class StubBackend(TranslationBackend):
    """
    Backend that records every batch it receives.

    ``responder`` may return a TranslationResponse or raise; by default
    each entry is answered with ``{target}:{text}``.
    """

    def __init__(self, responder=None, delay: float = 0.0):
        super().__init__(api_key="stub-key-0123456789", model="stub")
        self.responder = responder
        self.delay = delay
        self.calls = []
        self.cancelled = []

    async def translate_batch(self, request, request_key=None):
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.responder is not None:
            return self.responder(request)
        return TranslationResponse(
            success=True,
            translations={e.id: f"{request.target_language}:{e.text}" for e in request.entries},
        )

    def cancel_request(self, request_key):
        self.cancelled.append(request_key)
        return False

    @property
    def texts(self):
        return [[e.text for e in request.entries] for request in self.calls]


async def wait_until(condition, attempts: int = 50) -> None:
    """Yield to the loop until ``condition()`` holds."""
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo logger changes made by setup_logger."""
    package_logger = logging.getLogger("linguacache")
    handlers, level, propagate = list(package_logger.handlers), package_logger.level, package_logger.propagate
    yield
    package_logger.handlers = handlers
    package_logger.setLevel(level)
    package_logger.propagate = propagate
    loguru_logger.remove()
    loguru_logger.add(sys.stderr, level="WARNING")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def storage(clock):
    """In-memory storage manager on a fake clock."""
    return StorageManager(MemoryStorage(), clock=clock)


@pytest.fixture
def notifier():
    """Notification system that never believes it runs under CI."""
    return NotificationSystem(environ={})


@pytest.fixture
def stub_backend():
    return StubBackend()


@pytest.fixture
def make_engine(storage, sleeper, notifier):
    """Factory for engines wired to in-memory storage and a recorded sleep."""

    def _make(backend=None, **overrides):
        settings = {"source_language": "en", "batch_window_ms": 10}
        settings.update(overrides)
        return TranslationEngine(
            EngineConfig(**settings),
            backend=backend if backend is not None else StubBackend(),
            storage=storage,
            notifier=notifier,
            sleep=sleeper,
        )

    return _make
