"""
Configuration for the capture/detect watcher.
"""
from pydantic import BaseModel
import os

PERMISSION_MODES = ("granted", "ask", "denied")
DEFAULT_CAPTURE_PERIOD = 5.0

class Settings(BaseModel):
    """
    Runtime settings with environment-variable overrides.
    """
    CAPTURE_PERIOD: float = float(os.getenv("CAPTURE_PERIOD", str(DEFAULT_CAPTURE_PERIOD)))
    CAMERA_PERMISSION: str = (os.getenv("CAMERA_PERMISSION", "ask") or "ask")

    FRONT_CAMERA_INDEX: int = int(os.getenv("FRONT_CAMERA_INDEX", "0"))
    BACK_CAMERA_INDEX: int = int(os.getenv("BACK_CAMERA_INDEX", "-1"))
    CAPTURE_WIDTH: int = int(os.getenv("CAPTURE_WIDTH", "0"))
    CAPTURE_HEIGHT: int = int(os.getenv("CAPTURE_HEIGHT", "0"))
    ROTATION_DEGREES: int = int(os.getenv("ROTATION_DEGREES", "0"))

    DETECTOR_BACKEND: str = os.getenv("DETECTOR_BACKEND", "opencv")
    MIN_FACE_CONFIDENCE: float = float(os.getenv("MIN_FACE_CONFIDENCE", "0.0"))

    FAILURE_WARN_THRESHOLD: int = int(os.getenv("FAILURE_WARN_THRESHOLD", "3"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    def __init__(self, **data):
        super().__init__(**data)
        # CAMERA_PERMISSION is one of granted/ask/denied; unknown values fall back to asking
        mode = ((self.CAMERA_PERMISSION or "").strip() or "ask").split()[0].lower()
        if mode not in PERMISSION_MODES:
            mode = "ask"
        object.__setattr__(self, "CAMERA_PERMISSION", mode)

        if self.CAPTURE_PERIOD < 0:
            object.__setattr__(self, "CAPTURE_PERIOD", DEFAULT_CAPTURE_PERIOD)

        # nearest quarter turn, wrapped into [0, 360)
        rot = (int(round(self.ROTATION_DEGREES / 90.0)) * 90) % 360
        object.__setattr__(self, "ROTATION_DEGREES", rot)

        object.__setattr__(self, "FAILURE_WARN_THRESHOLD", max(1, self.FAILURE_WARN_THRESHOLD))
        object.__setattr__(self, "LOG_LEVEL", (self.LOG_LEVEL or "INFO").strip().upper())
