"""
Still capture from a bound OpenCV camera.

Each `capture` call grabs one image on the capture worker thread and delivers a
Frame (or CaptureFailed) through the callback exactly once.
"""
from __future__ import annotations
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from couchlurker.contracts import ResultCallback
from couchlurker.device import OpenCVCaptureHandle
from couchlurker.errors import CaptureFailed
from couchlurker.models import Frame

logger = logging.getLogger(__name__)


class OpenCVCapture:
    def __init__(self, executor: Optional[ThreadPoolExecutor] = None,
                 clock: Callable[[], float] = time.time):
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="capture")
        self._clock = clock

    def capture(self, handle: OpenCVCaptureHandle, callback: ResultCallback) -> None:
        if not handle.valid:
            raise CaptureFailed(f"Camera index {handle.index} is no longer bound")
        self._executor.submit(self._take_picture, handle, callback)

    def _take_picture(self, handle: OpenCVCaptureHandle, callback: ResultCallback) -> None:
        try:
            image = handle.read()
        except CaptureFailed as e:
            logger.debug(f"[capture] {e}")
            callback(None, e)
            return
        except Exception as e:
            logger.exception("[capture] camera read raised")
            callback(None, CaptureFailed(f"Camera read raised: {e}"))
            return

        h, w = image.shape[:2]
        logger.debug(f"[capture] frame {w}x{h} rotation={handle.rotation}")
        callback(Frame(image=image, rotation=handle.rotation, ts=self._clock()), None)

    def close(self) -> None:
        self._executor.shutdown(wait=False)
