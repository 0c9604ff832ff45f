"""
Single-shot bridge from a collaborator callback to an awaiting coroutine.

The callback may fire on any thread; the value is handed to the event loop with
`call_soon_threadsafe` and parked in a queue of capacity one until the single
waiter picks it up. A value arriving after the waiter gave up (cancellation) is
passed to `discard` on the loop thread, so resources such as frames are not leaked.
"""
from __future__ import annotations
import asyncio
import logging
import threading
from typing import Any, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OneShot(Generic[T]):
    def __init__(self, name: str = "oneshot", discard: Optional[Callable[[Any], None]] = None):
        self.name = name
        self._discard = discard
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._write_lock = threading.Lock()
        self._written = False
        self._abandoned = False

    # ---- producer side (any thread) ----
    def set(self, value: T) -> bool:
        return self._write((value, None))

    def fail(self, error: BaseException) -> bool:
        return self._write((None, error))

    def callback(self, value: Any = None, error: Optional[BaseException] = None) -> None:
        """(value, error) callback form used by the device/capture/inference contracts."""
        if error is not None:
            self.fail(error)
        else:
            self.set(value)

    def _write(self, item: tuple) -> bool:
        with self._write_lock:
            if self._written:
                logger.warning(f"[oneshot] {self.name}: ignoring second delivery")
                return False
            self._written = True
        try:
            self._loop.call_soon_threadsafe(self._deliver, item)
        except RuntimeError:
            # event loop already closed; nobody is left to wait
            logger.debug(f"[oneshot] {self.name}: loop closed, dropping delivery")
            self._drop(item)
            return False
        return True

    # ---- loop side ----
    def _deliver(self, item: tuple) -> None:
        if self._abandoned:
            self._drop(item)
            return
        self._queue.put_nowait(item)

    def _drop(self, item: tuple) -> None:
        value, _ = item
        if value is not None and self._discard is not None:
            try:
                self._discard(value)
            except Exception:
                logger.exception(f"[oneshot] {self.name}: discard failed")

    async def wait(self) -> T:
        """Suspend until the value arrives; raise the delivered error if there is one."""
        try:
            value, error = await self._queue.get()
        except asyncio.CancelledError:
            self._abandoned = True
            if not self._queue.empty():
                self._drop(self._queue.get_nowait())
            raise
        if error is not None:
            raise error
        return value
