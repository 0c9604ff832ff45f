"""
Camera acquisition.

DeviceSession is the piece the core awaits: it asks a DeviceProvider for an
instance (delivered by callback), then binds the front-facing camera to the host
lifecycle. OpenCVDeviceProvider is the desktop provider built on cv2.VideoCapture.
"""
from __future__ import annotations
import asyncio
import logging
import threading
from typing import Dict, Set

import cv2
import numpy as np

from couchlurker.config import Settings
from couchlurker.contracts import CaptureHandle, DeviceProvider, ResultCallback
from couchlurker.errors import CaptureFailed, DeviceAcquisitionFailed
from couchlurker.lifecycle import HostLifecycle
from couchlurker.models import LensFacing
from couchlurker.oneshot import OneShot

logger = logging.getLogger(__name__)


class DeviceSession:
    """Acquire exactly one bound CaptureHandle, or raise DeviceAcquisitionFailed."""

    def __init__(self, provider: DeviceProvider, selector: LensFacing = LensFacing.FRONT):
        self._provider = provider
        self._selector = selector

    async def acquire(self, lifecycle: HostLifecycle) -> CaptureHandle:
        task = asyncio.current_task()
        unregister = lifecycle.on_teardown(task.cancel) if task is not None else (lambda: None)
        try:
            shot: OneShot = OneShot("device-provider")
            try:
                self._provider.get_instance_async(shot.callback)
            except Exception as e:
                raise DeviceAcquisitionFailed(f"Device provider request failed: {e}") from e

            logger.debug("[device] waiting for provider instance")
            try:
                instance = await shot.wait()
            except Exception as e:
                raise DeviceAcquisitionFailed(f"Device provider unavailable: {e}") from e
            if instance is None:
                raise DeviceAcquisitionFailed("Device provider delivered nothing")

            try:
                handle = self._provider.bind(instance, lifecycle, self._selector)
            except DeviceAcquisitionFailed:
                raise
            except Exception as e:
                raise DeviceAcquisitionFailed(f"Binding {self._selector.value} camera failed: {e}") from e
            if handle is None:
                raise DeviceAcquisitionFailed("Binding returned no capture handle")
        finally:
            unregister()

        logger.info(f"[device] {self._selector.value} camera bound")
        return handle


# -----------------------------------------------------------------------------
# OpenCV provider
# -----------------------------------------------------------------------------
class OpenCVCaptureHandle:
    """
    A cv2.VideoCapture bound to a lifecycle.

    Reads are serialized on `_lock`. `invalidate` never waits on a read in
    flight: it flips the handle invalid and the last reader out releases the
    capture when its blocking `cap.read()` returns.
    """

    def __init__(self, cap, index: int, rotation: int = 0):
        self._cap = cap
        self.index = index
        self.rotation = rotation
        self._lock = threading.Lock()
        self._state = threading.Lock()
        self._valid = True
        self._readers = 0

    @property
    def valid(self) -> bool:
        return self._valid

    def read(self) -> np.ndarray:
        with self._state:
            if not self._valid:
                raise CaptureFailed(f"Camera index {self.index} is no longer bound")
            self._readers += 1
        try:
            with self._lock:
                ok, image = self._cap.read()
        finally:
            with self._state:
                self._readers -= 1
                unbound = not self._valid
                release = unbound and self._readers == 0
            if release:
                self._release()
        if unbound:
            raise CaptureFailed(f"Camera index {self.index} was unbound during read")
        if not ok or image is None:
            raise CaptureFailed(f"Camera index {self.index} returned no image")
        return image

    def invalidate(self) -> None:
        with self._state:
            if not self._valid:
                return
            self._valid = False
            release = self._readers == 0
        if release:
            self._release()
        else:
            logger.debug(f"[device] read in flight, release deferred index={self.index}")
        logger.debug(f"[device] handle invalidated index={self.index}")

    def _release(self) -> None:
        try:
            self._cap.release()
        except Exception:
            logger.exception(f"[device] release failed index={self.index}")


class OpenCVProvider:
    """Provider instance: which OpenCV index serves which lens, and how to open it."""

    def __init__(self, indices: Dict[LensFacing, int], backends: list[str],
                 width: int = 0, height: int = 0, rotation: int = 0):
        self.indices = indices
        self.backends = backends
        self.width = width
        self.height = height
        self.rotation = rotation

    def index_for(self, selector: LensFacing) -> int:
        idx = self.indices.get(selector, -1)
        if idx is None or idx < 0:
            raise DeviceAcquisitionFailed(f"No {selector.value}-facing camera configured")
        return idx


class OpenCVDeviceProvider:
    def __init__(self, settings: Settings):
        self.s = settings
        self._bound: Set[int] = set()

    def get_instance_async(self, callback: ResultCallback) -> None:
        t = threading.Thread(target=self._load, args=(callback,), name="camera-provider", daemon=True)
        t.start()

    def _load(self, callback: ResultCallback) -> None:
        try:
            provider = self._probe()
        except Exception as e:
            logger.error(f"[device] provider probe failed: {e}")
            callback(None, e)
            return
        callback(provider, None)

    def _probe(self) -> OpenCVProvider:
        registry = cv2.videoio_registry
        backends = [registry.getBackendName(b) for b in registry.getCameraBackends()]
        if not backends:
            raise DeviceAcquisitionFailed("OpenCV was built without camera backends")
        logger.debug(f"[device] opencv={cv2.__version__} camera backends={backends}")
        return OpenCVProvider(
            indices={
                LensFacing.FRONT: self.s.FRONT_CAMERA_INDEX,
                LensFacing.BACK: self.s.BACK_CAMERA_INDEX,
            },
            backends=backends,
            width=self.s.CAPTURE_WIDTH,
            height=self.s.CAPTURE_HEIGHT,
            rotation=self.s.ROTATION_DEGREES,
        )

    def bind(self, provider: OpenCVProvider, lifecycle: HostLifecycle,
             selector: LensFacing) -> OpenCVCaptureHandle:
        if lifecycle.torn_down:
            raise DeviceAcquisitionFailed("Host lifecycle already torn down")
        idx = provider.index_for(selector)
        if idx in self._bound:
            raise DeviceAcquisitionFailed(f"Camera index {idx} is already bound")

        cap = cv2.VideoCapture(idx)
        if not cap.isOpened():
            cap.release()
            raise DeviceAcquisitionFailed(f"Could not open camera index {idx}")
        if provider.width:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, provider.width)
        if provider.height:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, provider.height)

        handle = OpenCVCaptureHandle(cap, idx, rotation=provider.rotation)
        self._bound.add(idx)

        def unbind() -> None:
            handle.invalidate()
            self._bound.discard(idx)

        lifecycle.on_teardown(unbind)
        logger.debug(f"[device] bound index={idx} lens={selector.value} rotation={provider.rotation}")
        return handle

    def bound_indices(self) -> Set[int]:
        return set(self._bound)
