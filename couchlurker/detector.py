"""Face counting with DeepFace.

- upright_image: validate a captured payload and rotate it upright (FrameDecodeFailed otherwise)
- DeepFaceEngine: the inference collaborator; copies the frame pixels synchronously,
  then counts faces on its worker thread and answers through the callback

DeepFace is imported lazily so tests can inject a fake module in sys.modules['deepface'].
"""
from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import cv2
import numpy as np

from couchlurker.contracts import ResultCallback
from couchlurker.errors import FrameDecodeFailed, InferenceFailed
from couchlurker.models import ROTATIONS, Frame

logger = logging.getLogger(__name__)

_ROTATE_CODES = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def upright_image(image: Optional[np.ndarray], rotation: int) -> np.ndarray:
    """Return an upright BGR copy of `image`.

    Args:
        image: HxW (gray), HxWx3 (BGR) or HxWx4 (BGRA) uint8 array
        rotation: clockwise degrees needed to make the image upright

    Raises:
        FrameDecodeFailed: payload missing, empty, of an unsupported layout, or bad rotation
    """
    if image is None or not isinstance(image, np.ndarray):
        raise FrameDecodeFailed("Frame carries no image")
    if image.size == 0 or image.dtype != np.uint8:
        raise FrameDecodeFailed(f"Unsupported frame buffer dtype={image.dtype} size={image.size}")
    if rotation not in ROTATIONS:
        raise FrameDecodeFailed(f"Unsupported rotation {rotation}")

    if image.ndim == 2:
        bgr = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    elif image.ndim == 3 and image.shape[2] == 3:
        bgr = image.copy()
    elif image.ndim == 3 and image.shape[2] == 4:
        bgr = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    else:
        raise FrameDecodeFailed(f"Unsupported frame shape {image.shape}")

    if rotation:
        bgr = cv2.rotate(bgr, _ROTATE_CODES[rotation])
    return bgr


class DeepFaceEngine:
    def __init__(self, detector_backend: str = "opencv", min_confidence: float = 0.0,
                 executor: Optional[ThreadPoolExecutor] = None):
        self.detector_backend = detector_backend
        self.min_confidence = float(min_confidence)
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="detect")

    def infer(self, frame: Frame, callback: ResultCallback) -> None:
        # Copy before returning: the caller releases the frame right after this call.
        image = upright_image(frame.image, frame.rotation)
        self._executor.submit(self._run, image, callback)

    def _run(self, image: np.ndarray, callback: ResultCallback) -> None:
        try:
            count = self.count_faces(image)
        except InferenceFailed as e:
            callback(None, e)
            return
        except Exception as e:
            logger.exception("[detect] DeepFace failed")
            callback(None, InferenceFailed(f"DeepFace failed: {e}"))
            return
        callback(count, None)

    def count_faces(self, image: np.ndarray) -> int:
        """
        Count faces in an upright BGR image.

        With enforce_detection=False DeepFace returns one whole-image entry with
        confidence 0 when nothing is found, so only entries above min_confidence count.
        """
        try:
            from deepface import DeepFace
        except Exception as e:
            raise InferenceFailed("DeepFace import failed. Ensure deepface/tensorflow stack is installed.") from e

        dets = DeepFace.extract_faces(
            img_path=image,
            detector_backend=self.detector_backend,
            enforce_detection=False,
            align=False,
        )
        # DeepFace returns list[dict] or dict depending on version; normalize to list
        if isinstance(dets, dict):
            dets = [dets]

        count = 0
        for d in dets or []:
            try:
                conf = float((d or {}).get("confidence") or 0.0)
            except (TypeError, ValueError):
                conf = 0.0
            if conf > self.min_confidence:
                count += 1
        logger.debug(f"[detect] backend={self.detector_backend} raw={len(dets or [])} faces={count}")
        return count

    def close(self) -> None:
        self._executor.shutdown(wait=False)
