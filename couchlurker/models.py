"""
Data models shared by the gate, the device session and the capture loop.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import numpy as np
from pydantic import BaseModel


class PermissionOutcome(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


class LoopState(str, Enum):
    NOT_STARTED = "not_started"
    AWAITING_PERMISSION = "awaiting_permission"
    ACQUIRING_DEVICE = "acquiring_device"
    RUNNING = "running"
    STOPPED = "stopped"


class LensFacing(str, Enum):
    FRONT = "front"
    BACK = "back"


class FailureKind(str, Enum):
    CAPTURE_FAILED = "capture_failed"
    FRAME_DECODE_FAILED = "frame_decode_failed"
    INFERENCE_FAILED = "inference_failed"


ROTATIONS = (0, 90, 180, 270)


@dataclass(eq=False)
class Frame:
    """One captured still.

    `rotation` is the clockwise rotation (degrees) that makes the image upright.
    The pixel buffer is dropped by `release()`; only the first call frees it,
    later calls return False and do nothing.
    """
    image: Optional[np.ndarray]
    rotation: int = 0
    ts: float = 0.0
    on_release: Optional[Callable[[], None]] = field(default=None, repr=False)
    released: bool = False

    def release(self) -> bool:
        if self.released:
            return False
        self.released = True
        self.image = None
        if self.on_release is not None:
            self.on_release()
        return True


class TickReport(BaseModel):
    tick: int
    ts: float
    face_count: Optional[int] = None
    failure: Optional[FailureKind] = None
    consecutive_failures: int = 0

    @property
    def ok(self) -> bool:
        return self.failure is None


class LoopStatus(BaseModel):
    state: LoopState
    ticks: int = 0
    consecutive_failures: int = 0
    last_report: TickReport | None = None
