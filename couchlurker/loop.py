# couchlurker/loop.py
"""
The capture -> detect -> report loop.

Runs until cancelled. Each tick, strictly one after the other:
  1. wait `period` seconds (measured from the end of the previous tick)
  2. capture one Frame from the bound camera
  3. hand it to the inference engine; the frame is released as soon as the call is made
  4. report the face count, or a failure tagged with its kind

Per-tick errors (CaptureFailed, FrameDecodeFailed, InferenceFailed) are contained
in the tick. Cancellation (task.cancel() or lifecycle teardown) is honoured at any
suspension point; a frame that arrives after cancellation is released on arrival.
"""
from __future__ import annotations

import asyncio
import logging
import numbers
import time
from typing import Any, Awaitable, Callable, NoReturn, Optional

from couchlurker.contracts import CaptureDevice, CaptureHandle, InferenceEngine, Reporter
from couchlurker.errors import CaptureFailed, InferenceFailed, TickError
from couchlurker.lifecycle import HostLifecycle
from couchlurker.models import Frame, LoopState, LoopStatus, TickReport
from couchlurker.oneshot import OneShot

logger = logging.getLogger(__name__)

TickCallback = Callable[[TickReport], None]


def _release_orphan(value: Any) -> None:
    if isinstance(value, Frame):
        value.release()


class CaptureDetectLoop:
    def __init__(self,
                 capture_device: CaptureDevice,
                 engine: InferenceEngine,
                 reporter: Reporter,
                 lifecycle: Optional[HostLifecycle] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 clock: Callable[[], float] = time.time):
        self._capture_device = capture_device
        self._engine = engine
        self._reporter = reporter
        self._lifecycle = lifecycle
        self._sleep = sleep
        self._clock = clock

        self.state = LoopState.NOT_STARTED
        self.ticks = 0
        self.consecutive_failures = 0
        self.last_report: Optional[TickReport] = None
        self._running = False

    # ---- lifecycle ----
    async def run(self, handle: CaptureHandle, period: float,
                  on_tick: Optional[TickCallback] = None) -> NoReturn:
        if self._running:
            raise RuntimeError("capture loop already running")
        self._running = True

        task = asyncio.current_task()
        unregister = (self._lifecycle.on_teardown(task.cancel)
                      if self._lifecycle is not None and task is not None else (lambda: None))
        self.state = LoopState.RUNNING
        logger.info(f"[loop] running period={period}s")
        try:
            while True:
                await self._sleep(period)
                if self._lifecycle is not None and self._lifecycle.torn_down:
                    # teardown was requested from this very task (e.g. in on_tick)
                    raise asyncio.CancelledError()
                report = await self._tick(handle)
                self._emit(report, on_tick)
        finally:
            unregister()
            self.state = LoopState.STOPPED
            self._running = False
            logger.info(f"[loop] stopped after {self.ticks} ticks")

    def status(self) -> LoopStatus:
        return LoopStatus(
            state=self.state,
            ticks=self.ticks,
            consecutive_failures=self.consecutive_failures,
            last_report=self.last_report,
        )

    # ---- one tick ----
    async def _tick(self, handle: CaptureHandle) -> TickReport:
        self.ticks += 1
        tick = self.ticks
        try:
            frame = await self._capture(handle)
            count = await self._analyze(frame)
        except TickError as e:
            self.consecutive_failures += 1
            logger.debug(f"[loop] tick={tick} {e.kind.value}: {e}")
            return TickReport(
                tick=tick,
                ts=self._clock(),
                failure=e.kind,
                consecutive_failures=self.consecutive_failures,
            )

        self.consecutive_failures = 0
        return TickReport(tick=tick, ts=self._clock(), face_count=count)

    async def _capture(self, handle: CaptureHandle) -> Frame:
        shot: OneShot[Frame] = OneShot("capture", discard=_release_orphan)
        try:
            self._capture_device.capture(handle, shot.callback)
        except TickError:
            raise
        except Exception as e:
            logger.exception("[loop] capture request raised")
            raise CaptureFailed(f"Capture request failed: {e}") from e

        try:
            frame = await shot.wait()
        except TickError:
            raise
        except Exception as e:
            raise CaptureFailed(f"Capture failed: {e}") from e

        if not isinstance(frame, Frame):
            raise CaptureFailed("Capture delivered no frame")
        return frame

    async def _analyze(self, frame: Frame) -> int:
        shot: OneShot[int] = OneShot("inference")
        try:
            self._engine.infer(frame, shot.callback)
        except TickError:
            raise
        except Exception as e:
            logger.exception("[loop] inference request raised")
            raise InferenceFailed(f"Inference request failed: {e}") from e
        finally:
            frame.release()

        try:
            count = await shot.wait()
        except TickError:
            raise
        except Exception as e:
            raise InferenceFailed(f"Inference failed: {e}") from e

        if isinstance(count, bool) or not isinstance(count, numbers.Integral) or count < 0:
            raise InferenceFailed(f"Engine returned an invalid face count: {count!r}")
        return int(count)

    def _emit(self, report: TickReport, on_tick: Optional[TickCallback]) -> None:
        self.last_report = report
        try:
            self._reporter.report(report)
        except Exception:
            logger.exception("[loop] reporter raised")
        if on_tick is not None:
            try:
                on_tick(report)
            except Exception:
                logger.exception("[loop] on_tick raised")
