from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .regions import CHIN, FACE_OVAL, FOREHEAD

FRAME_EPSILON = 1e-3


@dataclass(frozen=True)
class FaceFrame:
    """Rotation-invariant face basis.

    ``up`` points from chin to forehead, ``right`` toward the subject's
    anatomical left. ``width``/``height`` are the oval extents measured along
    ``right``/``up``, so they do not change with in-plane head tilt.
    """

    up: np.ndarray
    right: np.ndarray
    center: np.ndarray
    width: float
    height: float

    def project_up(self, point: Sequence[float]) -> float:
        return float(np.dot(np.asarray(point[:2], dtype=np.float64) - self.center, self.up))

    def project_right(self, point: Sequence[float]) -> float:
        return float(np.dot(np.asarray(point[:2], dtype=np.float64) - self.center, self.right))

    def to_image_vector(self, h: float, v: float) -> np.ndarray:
        return self.right * h + self.up * v

    def to_image_point(self, h: float, v: float) -> np.ndarray:
        return self.center + self.to_image_vector(h, v)


def build_face_frame(
    landmarks: np.ndarray,
    bottom: int = CHIN,
    top: int = FOREHEAD,
    boundary: Sequence[int] = FACE_OVAL,
) -> Optional[FaceFrame]:
    pts = np.asarray(landmarks, dtype=np.float64)[:, :2]
    axis = pts[top] - pts[bottom]
    length = float(np.hypot(axis[0], axis[1]))
    if not np.isfinite(length) or length < FRAME_EPSILON:
        return None
    up = axis / length
    right = np.array([-up[1], up[0]], dtype=np.float64)

    ring = pts[[i for i in boundary if 0 <= i < len(pts)]]
    if ring.size == 0:
        return None
    along_right = ring @ right
    along_up = ring @ up
    r0, r1 = float(along_right.min()), float(along_right.max())
    u0, u1 = float(along_up.min()), float(along_up.max())
    center = right * (r0 + r1) * 0.5 + up * (u0 + u1) * 0.5
    return FaceFrame(
        up=up,
        right=right,
        center=center,
        width=r1 - r0,
        height=u1 - u0,
    )
