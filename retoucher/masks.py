from __future__ import annotations

import math
from typing import Optional

import numpy as np

from .tone import gaussian_blur

PAINT_RATE = 0.15
PRIVACY_BLUR_RADIUS = 14
PRIVACY_THRESHOLD = 0.1


def empty_mask(width: int, height: int) -> np.ndarray:
    return np.zeros((height, width), dtype=np.float32)


def _brush(mask: np.ndarray, cx: float, cy: float, radius: float):
    h, w = mask.shape
    x0 = max(0, int(math.floor(cx - radius)))
    x1 = min(w - 1, int(math.ceil(cx + radius)))
    y0 = max(0, int(math.floor(cy - radius)))
    y1 = min(h - 1, int(math.ceil(cy + radius)))
    if radius <= 0 or x1 < x0 or y1 < y0:
        return None
    xs = np.arange(x0, x1 + 1, dtype=np.float32)[None, :] - cx
    ys = np.arange(y0, y1 + 1, dtype=np.float32)[:, None] - cy
    dist_sq = xs**2 + ys**2
    return (slice(y0, y1 + 1), slice(x0, x1 + 1)), dist_sq, dist_sq < radius * radius


def paint_mask(
    mask: np.ndarray,
    cx: float,
    cy: float,
    radius: float,
    strength: float = 1.0,
) -> np.ndarray:
    """Return a copy of ``mask`` with a soft dab added at (cx, cy)."""
    out = mask.copy()
    brush = _brush(out, cx, cy, radius)
    if brush is None:
        return out
    window, dist_sq, inside = brush
    t = 1 - np.sqrt(dist_sq) / radius
    dab = np.where(inside, t * t * strength * PAINT_RATE, 0.0)
    out[window] = np.minimum(1.0, out[window] + dab)
    return out


def erase_mask(mask: np.ndarray, cx: float, cy: float, radius: float) -> np.ndarray:
    out = mask.copy()
    brush = _brush(out, cx, cy, radius)
    if brush is None:
        return out
    window, _, inside = brush
    out[window][inside] = 0.0
    return out


def apply_skin_smooth(
    image: np.ndarray,
    mask: Optional[np.ndarray],
    smoothness: float,
    brightness: float,
) -> np.ndarray:
    if mask is None:
        return image
    blurred = gaussian_blur(image, max(2, round(smoothness * 0.12)))
    blend = (mask * (smoothness / 100))[..., None]
    bright = (mask * (brightness * 0.5))[..., None]
    rgb = image[..., :3].astype(np.float32)
    mixed = rgb * (1 - blend) + blurred[..., :3].astype(np.float32) * blend + bright
    out = image.copy()
    out[..., :3] = np.clip(np.rint(mixed), 0, 255).astype(np.uint8)
    return out


def apply_privacy_blur(image: np.ndarray, mask: Optional[np.ndarray]) -> np.ndarray:
    if mask is None:
        return image
    blurred = gaussian_blur(image, PRIVACY_BLUR_RADIUS)
    out = image.copy()
    hit = mask >= PRIVACY_THRESHOLD
    out[hit, :3] = blurred[hit, :3]
    return out
