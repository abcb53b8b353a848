"""EventHooks + SyncEvent enum for replica lifecycle hooks."""

from __future__ import annotations

import inspect
import logging
from enum import Enum, auto
from typing import Any, Callable

logger = logging.getLogger(__name__)


class SyncEvent(Enum):
    AFTER_RECONCILE = auto()
    AFTER_PUSH = auto()
    PUSH_FAILED = auto()
    BEFORE_SHUTDOWN = auto()
    AFTER_SHUTDOWN = auto()


SyncHook = Callable[..., Any]


class EventHooks:
    """Registration and firing of replica hooks; hooks may be sync or async.

    A failing hook is logged and does not interrupt replication.
    """

    def __init__(self) -> None:
        self._hooks: dict[SyncEvent, list[SyncHook]] = {}

    def on(self, event: SyncEvent, hook: SyncHook) -> None:
        self._hooks.setdefault(event, []).append(hook)

    def off(self, event: SyncEvent, hook: SyncHook) -> None:
        hooks = self._hooks.get(event, [])
        if hook in hooks:
            hooks.remove(hook)

    async def fire(self, event: SyncEvent, *args: Any, **kwargs: Any) -> None:
        for hook in list(self._hooks.get(event, [])):
            try:
                result = hook(*args, **kwargs)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("hook %r for %s failed", hook, event.name)

    def hook(self, event: SyncEvent) -> Callable[[SyncHook], SyncHook]:
        """Decorator to register a hook."""
        def decorator(fn: SyncHook) -> SyncHook:
            self.on(event, fn)
            return fn
        return decorator
