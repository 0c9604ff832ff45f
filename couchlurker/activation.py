"""
One activation of the watcher: permission -> camera -> capture loop, in sequence.

The Activation is the owner of the two terminal errors. PermissionDenied and
DeviceAcquisitionFailed end the feature: they are logged, the host lifecycle is
torn down, and `run()` returns the error. Lifecycle teardown while running
cancels whatever step is in flight.
"""
from __future__ import annotations
import asyncio
import logging
from typing import Optional

from couchlurker.capture import OpenCVCapture
from couchlurker.config import Settings
from couchlurker.detector import DeepFaceEngine
from couchlurker.device import DeviceSession, OpenCVDeviceProvider
from couchlurker.errors import DeviceAcquisitionFailed, LurkerError, PermissionDenied
from couchlurker.lifecycle import HostLifecycle
from couchlurker.loop import CaptureDetectLoop, TickCallback
from couchlurker.models import LoopState, LoopStatus, PermissionOutcome
from couchlurker.permission import ConsolePrompter, PermissionGate
from couchlurker.reporter import LogReporter

logger = logging.getLogger(__name__)


class Activation:
    def __init__(self,
                 gate: PermissionGate,
                 session: DeviceSession,
                 loop: CaptureDetectLoop,
                 lifecycle: HostLifecycle,
                 period: float,
                 on_tick: Optional[TickCallback] = None):
        self._gate = gate
        self._session = session
        self._loop = loop
        self._lifecycle = lifecycle
        self._period = period
        self._on_tick = on_tick
        self._phase = LoopState.NOT_STARTED
        self.error: Optional[LurkerError] = None

    @property
    def state(self) -> LoopState:
        if self._phase is LoopState.RUNNING:
            return self._loop.state
        return self._phase

    def status(self) -> LoopStatus:
        snap = self._loop.status()
        return snap.model_copy(update={"state": self.state})

    async def run(self) -> Optional[LurkerError]:
        """
        Run until the lifecycle is torn down (raises CancelledError) or a terminal
        error ends the activation (returned).
        """
        if self._phase is not LoopState.NOT_STARTED:
            raise RuntimeError("activation already started")

        task = asyncio.current_task()
        unregister = self._lifecycle.on_teardown(task.cancel) if task is not None else (lambda: None)
        try:
            await self._activate()
        except (PermissionDenied, DeviceAcquisitionFailed) as e:
            logger.warning(f"[activation] ending: {type(e).__name__}: {e}")
            self.error = e
        finally:
            unregister()
            if self._phase is not LoopState.RUNNING:
                self._phase = LoopState.STOPPED
            # the feature is over either way: release whatever the host still holds
            self._lifecycle.teardown()
        return self.error

    async def _activate(self) -> None:
        self._phase = LoopState.AWAITING_PERMISSION
        outcome = await self._gate.request()
        if outcome is not PermissionOutcome.GRANTED:
            raise PermissionDenied()

        self._phase = LoopState.ACQUIRING_DEVICE
        handle = await self._session.acquire(self._lifecycle)

        self._phase = LoopState.RUNNING
        await self._loop.run(handle, self._period, self._on_tick)


def build_activation(settings: Settings, lifecycle: HostLifecycle,
                     on_tick: Optional[TickCallback] = None) -> Activation:
    """Wire the desktop collaborators (console prompt, OpenCV camera, DeepFace)."""
    capture = OpenCVCapture()
    engine = DeepFaceEngine(
        detector_backend=settings.DETECTOR_BACKEND,
        min_confidence=settings.MIN_FACE_CONFIDENCE,
    )
    lifecycle.on_teardown(capture.close)
    lifecycle.on_teardown(engine.close)

    loop = CaptureDetectLoop(
        capture_device=capture,
        engine=engine,
        reporter=LogReporter(warn_threshold=settings.FAILURE_WARN_THRESHOLD),
        lifecycle=lifecycle,
    )
    return Activation(
        gate=PermissionGate(ConsolePrompter(settings.CAMERA_PERMISSION)),
        session=DeviceSession(OpenCVDeviceProvider(settings)),
        loop=loop,
        lifecycle=lifecycle,
        period=settings.CAPTURE_PERIOD,
        on_tick=on_tick,
    )
