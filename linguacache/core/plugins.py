"""
Plugin hooks around the translate pipeline.

A plugin is any object with a unique ``name`` that defines some of the
hook methods listed in ``HOOK_NAMES``. Handlers may be plain functions or
coroutines. The hook table is built once when the plugin is registered.

Three dispatch styles are used:
- chain hooks (before_translate, after_translate) pass each plugin's
  return value on to the next; returning None keeps the value
- fan-out hooks (on_cache_hit, on_locale_change, ...) call every plugin
- first-result hooks (resolve_translation) stop at the first non-None value

A failing hook is logged and reported to that plugin's own ``on_error``;
it never stops the other plugins or the translation itself.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

CHAIN_HOOKS = ("before_translate", "after_translate")
FANOUT_HOOKS = ("on_cache_hit", "on_cache_miss", "on_cache_set", "on_locale_change", "on_error")
FIRST_RESULT_HOOKS = ("resolve_translation",)
LIFECYCLE_HOOKS = ("on_init", "on_destroy")

HOOK_NAMES = CHAIN_HOOKS + FANOUT_HOOKS + FIRST_RESULT_HOOKS + LIFECYCLE_HOOKS


class Plugin:
    """
    Base class for plugins. Subclasses define only the hooks they need.

    Hook signatures:
        on_init(config)
        on_destroy()
        before_translate(text, locale, options) -> text or None
        after_translate(result, original, locale, options) -> result or None
        on_locale_change(new_locale, old_locale)
        on_error(error, context)
        on_cache_hit(key, value)
        on_cache_miss(key)
        on_cache_set(key, value)
        resolve_translation(text, source_locale, target_locale) -> str or None
    """

    name: str = "plugin"
    version: Optional[str] = None


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class PluginManager:
    """Ordered registry of plugins and their hook handlers."""

    def __init__(self):
        self._plugins: Dict[str, Any] = {}
        self._hooks: Dict[str, Dict[str, Callable]] = {}
        self._config: Any = None
        self._initialized = False
        self._background: Set[asyncio.Future] = set()

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def plugins(self) -> List[Any]:
        return list(self._plugins.values())

    def get_plugin(self, name: str) -> Optional[Any]:
        return self._plugins.get(name)

    @staticmethod
    def _collect_hooks(plugin: Any) -> Dict[str, Callable]:
        hooks = {}
        for hook_name in HOOK_NAMES:
            handler = getattr(plugin, hook_name, None)
            if callable(handler):
                hooks[hook_name] = handler
        return hooks

    def use(self, plugin: Any) -> "PluginManager":
        """
        Register a plugin, replacing any plugin with the same name.

        If the manager is already initialized, the plugin's ``on_init``
        runs right away (scheduled on the running loop when async).
        """
        name = getattr(plugin, "name", None)
        if not name:
            raise ValueError("Plugin must have a non-empty name")

        if name in self._plugins:
            logger.warning(f"Plugin '{name}' is already registered. Overwriting...")

        self._plugins[name] = plugin
        self._hooks[name] = self._collect_hooks(plugin)

        if self._initialized and "on_init" in self._hooks[name]:
            try:
                result = self._hooks[name]["on_init"](self._config)
            except Exception as e:
                logger.error(f"Plugin '{name}' initialization failed: {e}")
            else:
                if inspect.isawaitable(result):
                    self._run_detached(result, f"Plugin '{name}' initialization")
        return self

    def _run_detached(self, awaitable, label: str) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            try:
                asyncio.run(_maybe_await(awaitable))
            except Exception as e:
                logger.error(f"{label} failed: {e}")
            return

        future = asyncio.ensure_future(awaitable)
        self._background.add(future)

        def _done(f: asyncio.Future) -> None:
            self._background.discard(f)
            if not f.cancelled() and f.exception() is not None:
                logger.error(f"{label} failed: {f.exception()}")

        future.add_done_callback(_done)

    async def unuse(self, name: str) -> bool:
        plugin = self._plugins.pop(name, None)
        if plugin is None:
            return False
        hooks = self._hooks.pop(name, {})
        if "on_destroy" in hooks:
            try:
                await _maybe_await(hooks["on_destroy"]())
            except Exception as e:
                logger.error(f"Plugin '{name}' cleanup failed: {e}")
        return True

    async def init(self, config: Any = None) -> None:
        self._config = config
        self._initialized = True
        for name, hooks in list(self._hooks.items()):
            if "on_init" in hooks:
                try:
                    await _maybe_await(hooks["on_init"](config))
                except Exception as e:
                    logger.error(f"Plugin '{name}' initialization failed: {e}")

    async def destroy(self) -> None:
        for name, hooks in list(self._hooks.items()):
            if "on_destroy" in hooks:
                try:
                    await _maybe_await(hooks["on_destroy"]())
                except Exception as e:
                    logger.error(f"Plugin '{name}' cleanup failed: {e}")
        self._plugins.clear()
        self._hooks.clear()
        self._config = None
        self._initialized = False

    # Dispatch

    async def _report(self, name: str, hook_name: str, error: Exception, args: tuple) -> None:
        logger.error(f"Plugin '{name}' hook '{hook_name}' failed: {error}")
        if hook_name == "on_error":
            return
        on_error = self._hooks.get(name, {}).get("on_error")
        if on_error is None:
            return
        try:
            await _maybe_await(on_error(error, {"hook": hook_name, "args": args}))
        except Exception as e:
            logger.error(f"Plugin '{name}' error hook failed: {e}")

    def _handlers(self, hook_name: str):
        for name, hooks in list(self._hooks.items()):
            handler = hooks.get(hook_name)
            if handler is not None:
                yield name, handler

    async def run_chain(self, hook_name: str, value: Any, *args: Any) -> Any:
        """Thread ``value`` through every plugin's ``hook_name`` handler in order."""
        current = value
        for name, handler in self._handlers(hook_name):
            try:
                result = await _maybe_await(handler(current, *args))
            except Exception as e:
                await self._report(name, hook_name, e, (current,) + args)
                continue
            if result is not None:
                current = result
        return current

    async def run_fanout(self, hook_name: str, *args: Any) -> List[Any]:
        results = []
        for name, handler in self._handlers(hook_name):
            try:
                results.append(await _maybe_await(handler(*args)))
            except Exception as e:
                await self._report(name, hook_name, e, args)
        return results

    async def run_first(self, hook_name: str, *args: Any) -> Any:
        """Return the first non-None result, skipping plugins that fail."""
        for name, handler in self._handlers(hook_name):
            try:
                result = await _maybe_await(handler(*args))
            except Exception as e:
                await self._report(name, hook_name, e, args)
                continue
            if result is not None:
                return result
        return None


class DebugPlugin(Plugin):
    """Logs every translation event."""

    name = "debug"
    version = "1.0.0"

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def on_init(self, config):
        self.log.info("Debug plugin initialized")

    def before_translate(self, text, locale, options):
        self.log.info(f"Translating {text!r} to {locale}")

    def after_translate(self, result, original, locale, options):
        self.log.info(f"Translated {original!r} -> {result!r} ({locale})")

    def on_locale_change(self, new_locale, old_locale):
        self.log.info(f"Locale changed: {old_locale} -> {new_locale}")

    def on_error(self, error, context):
        self.log.error(f"Translation error: {error} ({context})")

    def on_cache_hit(self, key, value):
        self.log.debug(f"Cache hit: {key} -> {value}")

    def on_cache_miss(self, key):
        self.log.debug(f"Cache miss: {key}")

    def on_cache_set(self, key, value):
        self.log.debug(f"Cache set: {key} -> {value}")


class PerformancePlugin(Plugin):
    """Counts translations, cache traffic and errors, and times each translate call."""

    name = "performance"
    version = "1.0.0"

    def __init__(self, clock: Callable[[], float] = time.perf_counter):
        self.clock = clock
        self._start_times: Dict[str, float] = {}
        self._stats = {
            "translations": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "errors": 0,
            "total_time": 0.0,
        }

    def before_translate(self, text, locale, options):
        self._start_times[f"{text}|{locale}"] = self.clock()

    def after_translate(self, result, original, locale, options):
        started = self._start_times.pop(f"{original}|{locale}", None)
        self._stats["translations"] += 1
        if started is not None:
            self._stats["total_time"] += self.clock() - started

    def on_cache_hit(self, key, value):
        self._stats["cache_hits"] += 1

    def on_cache_miss(self, key):
        self._stats["cache_misses"] += 1

    def on_error(self, error, context):
        self._stats["errors"] += 1

    @property
    def stats(self) -> Dict[str, Any]:
        stats = dict(self._stats)
        count = stats["translations"]
        stats["average_time"] = stats["total_time"] / count if count else 0.0
        lookups = stats["cache_hits"] + stats["cache_misses"]
        stats["cache_hit_rate"] = stats["cache_hits"] / lookups if lookups else 0.0
        return stats

    def reset(self) -> None:
        for key in self._stats:
            self._stats[key] = 0.0 if key == "total_time" else 0
        self._start_times.clear()

    def on_destroy(self):
        stats = self.stats
        logger.info(
            f"Performance: {stats['translations']} translations, "
            f"{stats['cache_hit_rate']:.1%} cache hit rate, "
            f"{stats['average_time'] * 1000:.1f} ms average, {stats['errors']} errors"
        )
