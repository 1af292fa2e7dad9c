"""Hook registry: loads audit hooks and fans events out to them.

Hooks come from two places: entries under ``hooks.registered`` in the
configuration (imported by class path at startup) and built-in hooks
attached in code with :meth:`HookRegistry.register` (the audit-log
writer).  Dispatch is fire-and-forget on a
:class:`~concurrent.futures.ThreadPoolExecutor`; a slow or failing hook
never delays or fails the PKI operation that produced the event.

Usage::

    from privca.hooks.registry import HookRegistry

    registry = HookRegistry(settings.hooks)
    registry.dispatch("certificate.issuance", {"action": "certificate.issuance", ...})
"""

from __future__ import annotations

import copy
import importlib
import json
import logging
import re
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from privca.hooks.base import Hook
from privca.hooks.events import EVENT_METHOD_MAP, KNOWN_EVENTS

if TYPE_CHECKING:
    from privca.config.settings import HookEntrySettings, HookSettings

log = logging.getLogger(__name__)

_CLASS_PATH_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)+$")
_RETRY_BASE_DELAY = 0.5


@dataclass(frozen=True)
class _LoadedHook:
    """A hook instance plus the dispatch parameters that apply to it."""

    instance: Hook
    name: str
    subscribed_events: frozenset[str]
    timeout_seconds: int | None = None


class HookRegistry:
    """Registry of loaded hooks with fire-and-forget dispatch.

    Parameters
    ----------
    settings:
        The ``hooks`` section from :class:`PrivcaSettings`.

    """

    def __init__(self, settings: HookSettings) -> None:
        self._settings = settings
        self._hooks: list[_LoadedHook] = []
        self._executor: ThreadPoolExecutor | None = None
        self._shutdown_event = threading.Event()
        self._lock = threading.Lock()
        self._dispatch_count = 0
        self._error_count = 0
        for entry in settings.registered:
            if not entry.enabled:
                log.debug("Hook '%s' is disabled, skipping", entry.class_path)
                continue
            try:
                self._hooks.append(self._import_hook(entry))
            except Exception:
                log.critical(
                    "Failed to load hook '%s'; refusing to start",
                    entry.class_path,
                    exc_info=True,
                )
                raise
        if self._hooks:
            log.info("Loaded %d configured hook(s)", len(self._hooks))

    # -- counters ----------------------------------------------------------

    @property
    def dispatch_count(self) -> int:
        """Total number of hook invocations completed (success + error)."""
        with self._lock:
            return self._dispatch_count

    @property
    def error_count(self) -> int:
        """Total number of hook invocations that ended in error."""
        with self._lock:
            return self._error_count

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown_event.is_set()

    @property
    def hook_names(self) -> list[str]:
        return [h.name for h in self._hooks]

    # -- loading -----------------------------------------------------------

    def _import_hook(self, entry: HookEntrySettings) -> _LoadedHook:
        """Import, validate, and instantiate one configured hook.

        Raises
        ------
        ValueError
            If the class path is malformed or names unknown events.
        TypeError
            If the class is not a :class:`Hook` subclass.

        """
        if not _CLASS_PATH_RE.match(entry.class_path):
            msg = (
                f"Invalid hook class path '{entry.class_path}': must match "
                "'package.module.ClassName' (only alphanumerics and underscores)"
            )
            raise ValueError(msg)

        module_path, _, cls_name = entry.class_path.rpartition(".")
        cls = getattr(importlib.import_module(module_path), cls_name)
        if not (isinstance(cls, type) and issubclass(cls, Hook)):
            msg = f"Hook '{entry.class_path}' must be a subclass of privca.hooks.Hook"
            raise TypeError(msg)

        cls.validate_config(entry.config)
        subscribed = self._subscription(entry.class_path, entry.events)
        log.info(
            "Loaded hook: %s (events=%s)",
            entry.class_path,
            "all" if subscribed == KNOWN_EVENTS else sorted(subscribed),
        )
        return _LoadedHook(
            instance=cls(config=entry.config),
            name=entry.class_path,
            subscribed_events=subscribed,
            timeout_seconds=entry.timeout_seconds,
        )

    @staticmethod
    def _subscription(name: str, events: tuple[str, ...] | None) -> frozenset[str]:
        if not events:
            return KNOWN_EVENTS
        unknown = frozenset(events) - KNOWN_EVENTS
        if unknown:
            msg = (
                f"Hook '{name}' subscribes to unknown events: "
                f"{sorted(unknown)}. Known events: {sorted(KNOWN_EVENTS)}"
            )
            raise ValueError(msg)
        return frozenset(events)

    def register(self, hook: Hook, *, events: tuple[str, ...] | None = None) -> None:
        """Attach an already-built hook (used for built-in hooks).

        Parameters
        ----------
        hook:
            The hook instance.
        events:
            Events to subscribe to; all known events when omitted.

        """
        name = f"{type(hook).__module__}.{type(hook).__qualname__}"
        self._hooks.append(
            _LoadedHook(
                instance=hook,
                name=name,
                subscribed_events=self._subscription(name, events),
            ),
        )
        log.debug("Registered built-in hook %s", name)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._settings.max_workers,
                    thread_name_prefix="privca-hook",
                )
            return self._executor

    # -- dispatch ----------------------------------------------------------

    def dispatch(self, event: str, context: dict) -> None:
        """Dispatch an event to all subscribed hooks (fire-and-forget).

        Parameters
        ----------
        event:
            The event name (e.g. ``"certificate.issuance"``).
        context:
            Event context.  Deep-copied once; each hook receives its
            own shallow copy.

        Raises
        ------
        ValueError
            If *event* is not a known event name.

        """
        method_name = EVENT_METHOD_MAP.get(event)
        if method_name is None:
            msg = f"Unknown hook event '{event}'. Known events: {sorted(KNOWN_EVENTS)}"
            raise ValueError(msg)

        if self._shutdown_event.is_set() or not self._hooks:
            return

        targets = [h for h in self._hooks if event in h.subscribed_events]
        if not targets:
            return

        executor = self._get_executor()
        base_context = copy.deepcopy(context)
        for loaded in targets:
            timeout = (
                loaded.timeout_seconds
                if loaded.timeout_seconds is not None
                else self._settings.timeout_seconds
            )
            try:
                future: Future = executor.submit(
                    self._run_hook,
                    loaded,
                    method_name,
                    base_context.copy(),
                )
            except RuntimeError:
                log.warning(
                    "Executor shut down, cannot dispatch '%s' to '%s'",
                    event,
                    loaded.name,
                )
                continue
            future.add_done_callback(
                lambda f, _l=loaded, _e=event, _t=timeout: self._on_hook_done(f, _l, _e, _t),
            )

    def _run_hook(
        self,
        loaded: _LoadedHook,
        method_name: str,
        context: dict,
    ) -> dict[str, Any]:
        """Call one hook method, retrying with exponential backoff."""
        start = time.monotonic()
        attempts = self._settings.max_retries + 1
        error: str | None = None
        for attempt in range(attempts):
            try:
                getattr(loaded.instance, method_name)(context)
            except Exception as exc:  # noqa: BLE001
                error = str(exc) or type(exc).__name__
                if attempt + 1 < attempts:
                    time.sleep(_RETRY_BASE_DELAY * (2**attempt))
            else:
                error = None
                break
        return {
            "outcome": "error" if error else "success",
            "duration_ms": round((time.monotonic() - start) * 1000, 2),
            "error": error,
            "retries_exhausted": error is not None and attempts > 1,
        }

    def _on_hook_done(
        self,
        future: Future,
        loaded: _LoadedHook,
        event: str,
        timeout: int,
    ) -> None:
        """Done-callback: structured logging and counters."""
        extra = {"hook_name": loaded.name, "event": event}
        try:
            result = future.result(timeout=0)
        except Exception:
            with self._lock:
                self._dispatch_count += 1
                self._error_count += 1
            log.exception("Hook future failed unexpectedly", extra=extra)
            return

        with self._lock:
            self._dispatch_count += 1
            if result["outcome"] == "error":
                self._error_count += 1

        extra.update(outcome=result["outcome"], duration_ms=result["duration_ms"])
        if result["outcome"] == "error":
            log.warning(
                "Audit hook '%s' failed for event '%s' (%.1fms): %s",
                loaded.name,
                event,
                result["duration_ms"],
                result["error"],
                extra=extra,
            )
            if result["retries_exhausted"] and self._settings.dead_letter_log:
                self._write_dead_letter(loaded.name, event, result)
        elif result["duration_ms"] > timeout * 1000:
            log.warning(
                "Audit hook '%s' exceeded timeout for event '%s' (%.1fms > %ds)",
                loaded.name,
                event,
                result["duration_ms"],
                timeout,
                extra=extra,
            )
        else:
            log.debug(
                "Audit hook '%s' handled '%s' in %.1fms",
                loaded.name,
                event,
                result["duration_ms"],
                extra=extra,
            )

    def _write_dead_letter(self, name: str, event: str, result: dict) -> None:
        """Append a failed hook invocation to the dead-letter file."""
        line = json.dumps(
            {
                "timestamp": time.time(),
                "hook_name": name,
                "event": event,
                "error": result["error"],
                "duration_ms": result["duration_ms"],
            },
        )
        try:
            with open(self._settings.dead_letter_log, "a", encoding="utf-8") as f:  # type: ignore[arg-type]  # noqa: PTH123
                f.write(line + "\n")
        except OSError:
            log.exception("Failed to write dead-letter log entry")

    # -- lifecycle ---------------------------------------------------------

    def shutdown(self, wait: bool = True) -> None:  # noqa: FBT001, FBT002
        """Stop the executor.  Only the first call has an effect.

        Parameters
        ----------
        wait:
            Whether to wait for pending hook invocations to complete.

        """
        if self._shutdown_event.is_set():
            return
        self._shutdown_event.set()

        with self._lock:
            executor = self._executor
        if executor is not None:
            executor.shutdown(wait=wait)
            log.info(
                "Hook executor shut down (dispatched=%d, errors=%d)",
                self.dispatch_count,
                self.error_count,
            )
