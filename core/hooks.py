"""
Publication lifecycle hooks.

Callbacks subscribe to an event name and receive keyword arguments.  A
failing callback is logged and skipped; it never affects the publication.
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

PUBLISH_STARTED = "publish.started"
PUBLISH_COMPLETED = "publish.completed"
PUBLISH_FAILED = "publish.failed"

Hook = Callable[..., Any]


class HookRegistry:
    def __init__(self) -> None:
        self._hooks: Dict[str, List[Hook]] = defaultdict(list)

    def on(self, event: str, callback: Hook) -> Hook:
        """Subscribe ``callback`` (sync or async) to ``event``."""
        self._hooks[event].append(callback)
        return callback

    def off(self, event: str, callback: Hook) -> None:
        if callback in self._hooks.get(event, []):
            self._hooks[event].remove(callback)

    async def emit(self, event: str, **payload: Any) -> None:
        for callback in list(self._hooks.get(event, [])):
            try:
                result = callback(**payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Hook %r for %s failed", callback, event)
