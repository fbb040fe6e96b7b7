from __future__ import annotations

import logging
import threading
from typing import Optional

import cv2
import mediapipe as mp
import numpy as np

from .models import FaceMeta, Landmark
from .regions import MIN_LANDMARKS

logger = logging.getLogger(__name__)

_FACE_LOCK = threading.Lock()


def _to_rgb(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2RGB)
    return image


class LandmarkProvider:
    """MediaPipe FaceMesh wrapper with thread safety.

    ``detect`` returns an ``(N, 3)`` float32 array in the pixel space of the
    input buffer, or None when no usable face was found.
    """

    def __init__(self, min_detection_confidence: float = 0.5) -> None:
        self._min_confidence = min_detection_confidence
        self._mesh = None

    def _face_mesh(self):
        if self._mesh is None:
            self._mesh = mp.solutions.face_mesh.FaceMesh(
                static_image_mode=True,
                max_num_faces=1,
                refine_landmarks=False,
                min_detection_confidence=self._min_confidence,
            )
        return self._mesh

    def detect(self, image: np.ndarray) -> Optional[np.ndarray]:
        h, w = image.shape[:2]
        rgb = _to_rgb(image)
        try:
            with _FACE_LOCK:
                results = self._face_mesh().process(rgb)
        except Exception as exc:
            logger.warning(f"Face detection failed: {exc}", exc_info=True)
            return None
        if not results.multi_face_landmarks:
            return None

        face_landmarks = results.multi_face_landmarks[0].landmark
        pts = np.array(
            [[lm.x * w, lm.y * h, lm.z * w] for lm in face_landmarks],
            dtype=np.float32,
        )
        if len(pts) < MIN_LANDMARKS:
            logger.warning(f"Discarding face with {len(pts)} landmarks")
            return None
        return pts

    @staticmethod
    def serialize(landmarks: Optional[np.ndarray]) -> Optional[FaceMeta]:
        if landmarks is None:
            return None
        x, y, bw, bh = cv2.boundingRect(landmarks[:, :2].astype(np.float32))
        return FaceMeta(
            bbox=[int(x), int(y), int(bw), int(bh)],
            landmarks=[
                Landmark(x=float(p[0]), y=float(p[1]), z=float(p[2]) if len(p) > 2 else 0.0)
                for p in landmarks
            ],
        )
