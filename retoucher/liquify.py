"""Freehand liquify edits stored as a dense per-pixel displacement field."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np

from .models import LiquifyStroke
from .warp import apply_displacement_field as apply_field

RADIAL_STRENGTH = 0.08
BRUSH_SIGMA_DIVISOR = 2.5
# Field magnitude (display pixels) at which texture preservation is fully engaged.
PRESERVE_FULL_SHIFT_PX = 4.0

ADDITIVE_MODES = ("push", "pull", "shrink", "expand")


def _brush_window(
    cx: float, cy: float, radius: float, width: int, height: int
) -> Optional[Tuple[int, int, int, int]]:
    x0 = max(0, int(math.floor(cx - radius)))
    x1 = min(width - 1, int(math.ceil(cx + radius)))
    y0 = max(0, int(math.floor(cy - radius)))
    y1 = min(height - 1, int(math.ceil(cy + radius)))
    if x1 < x0 or y1 < y0:
        return None
    return x0, x1, y0, y1


@dataclass(frozen=True)
class DisplacementField:
    """Cumulative liquify displacement, one (dx, dy) per pixel.

    Values are in pixel units of the resolution the field belongs to.
    Every edit returns a new field and never touches the arrays of the
    receiver, so older versions stay valid as history snapshots.
    """

    dx: np.ndarray
    dy: np.ndarray

    @classmethod
    def zeros(cls, width: int, height: int) -> "DisplacementField":
        return cls(
            dx=np.zeros((height, width), dtype=np.float32),
            dy=np.zeros((height, width), dtype=np.float32),
        )

    @property
    def width(self) -> int:
        return int(self.dx.shape[1])

    @property
    def height(self) -> int:
        return int(self.dx.shape[0])

    def reset(self) -> "DisplacementField":
        return DisplacementField.zeros(self.width, self.height)

    def stroke(self, stroke: LiquifyStroke) -> "DisplacementField":
        dx = self.dx.copy()
        dy = self.dy.copy()
        _accumulate(dx, dy, stroke)
        return DisplacementField(dx=dx, dy=dy)

    def stroke_pass(self, strokes: Iterable[LiquifyStroke]) -> "DisplacementField":
        """Apply several strokes; additive modes first, then restore."""
        strokes = list(strokes)
        ordered = [s for s in strokes if s.mode in ADDITIVE_MODES] + [s for s in strokes if s.mode == "restore"]
        dx = self.dx.copy()
        dy = self.dy.copy()
        for stroke in ordered:
            _accumulate(dx, dy, stroke)
        return DisplacementField(dx=dx, dy=dy)

    def has_displacement(self) -> bool:
        return bool(np.any(self.dx) or np.any(self.dy))

    def apply(self, image: np.ndarray) -> np.ndarray:
        return apply_field(image, self.dx, self.dy)


def _accumulate(dx: np.ndarray, dy: np.ndarray, stroke: LiquifyStroke) -> None:
    height, width = dx.shape
    radius = float(stroke.radius)
    if radius <= 0:
        return
    window = _brush_window(stroke.x, stroke.y, radius, width, height)
    if window is None:
        return
    x0, x1, y0, y1 = window

    px = np.arange(x0, x1 + 1, dtype=np.float32)[None, :]
    py = np.arange(y0, y1 + 1, dtype=np.float32)[:, None]
    off_x = px - np.float32(stroke.x)
    off_y = py - np.float32(stroke.y)
    dist_sq = off_x**2 + off_y**2
    inside = dist_sq < radius * radius
    sigma2 = (radius / BRUSH_SIGMA_DIVISOR) ** 2
    weight = np.exp(-dist_sq / (2 * sigma2)) * (stroke.strength / 100.0)
    weight = np.where(inside, weight, 0.0).astype(np.float32)

    region_x = dx[y0 : y1 + 1, x0 : x1 + 1]
    region_y = dy[y0 : y1 + 1, x0 : x1 + 1]

    if stroke.mode == "push":
        region_x += stroke.dx * weight
        region_y += stroke.dy * weight
    elif stroke.mode in ADDITIVE_MODES:
        dist = np.sqrt(dist_sq)
        dist[dist == 0] = 1.0
        # Unit vector away from the centre; pull/shrink flip it.
        sign = 1.0 if stroke.mode == "expand" else -1.0
        scale = radius * RADIAL_STRENGTH * weight * sign
        region_x += off_x / dist * scale
        region_y += off_y / dist * scale
    elif stroke.mode == "restore":
        keep = np.clip(1.0 - weight, 0.0, 1.0)
        region_x *= keep
        region_y *= keep


def apply_with_preservation(
    sharp: np.ndarray,
    blurred: np.ndarray,
    dx: np.ndarray,
    dy: np.ndarray,
    amount: float,
    scale: float = 1.0,
) -> np.ndarray:
    """Liquify that swaps in a blurred base where the field is strong.

    Warping a repeating texture produces moire; blending toward the blurred
    copy in proportion to the local shift hides it. ``amount`` is 0..1 and
    ``scale`` is the resolution ratio the field was rescaled by.
    """
    if amount <= 0:
        return apply_field(sharp, dx, dy)
    warped_sharp = apply_field(sharp, dx, dy).astype(np.float32)
    warped_blur = apply_field(blurred, dx, dy).astype(np.float32)
    magnitude = np.sqrt(dx.astype(np.float32) ** 2 + dy.astype(np.float32) ** 2)
    alpha = np.clip(magnitude / (PRESERVE_FULL_SHIFT_PX * scale), 0.0, 1.0) * min(1.0, amount)
    alpha = alpha[..., None]
    if sharp.ndim == 3 and sharp.shape[2] == 4:
        # alpha channel stays from the sharp warp
        alpha = np.concatenate([np.repeat(alpha, 3, axis=2), np.zeros_like(alpha)], axis=2)
    out = warped_sharp * (1.0 - alpha) + warped_blur * alpha
    return np.clip(np.rint(out), 0, 255).astype(sharp.dtype)
