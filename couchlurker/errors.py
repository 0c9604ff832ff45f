from __future__ import annotations

from couchlurker.models import FailureKind


class LurkerError(Exception):
    """Base class for every error raised by the watcher."""


class PermissionDenied(LurkerError):
    def __init__(self, message: str = "Camera permission denied."):
        super().__init__(message)


class DeviceAcquisitionFailed(LurkerError):
    def __init__(self, message: str = "Camera could not be acquired."):
        super().__init__(message)


class TickError(LurkerError):
    """Per-tick failure. Contained by the capture loop, never fatal."""

    kind: FailureKind

    def __init__(self, message: str):
        super().__init__(message)


class CaptureFailed(TickError):
    kind = FailureKind.CAPTURE_FAILED

    def __init__(self, message: str = "Still capture failed."):
        super().__init__(message)


class FrameDecodeFailed(TickError):
    kind = FailureKind.FRAME_DECODE_FAILED

    def __init__(self, message: str = "Frame payload could not be interpreted."):
        super().__init__(message)


class InferenceFailed(TickError):
    kind = FailureKind.INFERENCE_FAILED

    def __init__(self, message: str = "Face detection failed."):
        super().__init__(message)
