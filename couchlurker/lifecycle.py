"""
Host lifecycle as an explicit cancellation token.

Whoever hosts the watcher owns one HostLifecycle and calls `teardown()` when the
host goes away. Components register what must happen at that point (cancel a
waiting task, release a camera) with `on_teardown`. Use from the event loop thread.
"""
from __future__ import annotations
import logging
from typing import Callable, List

logger = logging.getLogger(__name__)


class HostLifecycle:
    def __init__(self, name: str = "host"):
        self.name = name
        self._torn_down = False
        self._callbacks: List[Callable[[], None]] = []

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def on_teardown(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register `callback` to run at teardown (immediately if already torn down).

        Returns a function that unregisters it.
        """
        if self._torn_down:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def unregister() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return unregister

    def teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        logger.debug(f"[lifecycle] teardown name={self.name} callbacks={len(self._callbacks)}")
        callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            try:
                cb()
            except Exception:
                logger.exception(f"[lifecycle] teardown callback failed name={self.name}")
