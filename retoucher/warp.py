from __future__ import annotations

import math
from typing import Sequence, Tuple

import cv2
import numpy as np

from .control_points import ControlPoint

# Gaussian contributions beyond 3 sigma are treated as exactly zero.
CUTOFF_SIGMAS = 3.0


def identity_grid(height: int, width: int) -> Tuple[np.ndarray, np.ndarray]:
    return np.meshgrid(
        np.arange(width, dtype=np.float32),
        np.arange(height, dtype=np.float32),
    )


def displacement_from_control_points(
    control_points: Sequence[ControlPoint],
    shape: Tuple[int, ...],
) -> Tuple[np.ndarray, np.ndarray]:
    """Dense Gaussian-weighted sum of control point displacements.

    Each control point only touches the box enclosing its 3-sigma disc, and
    pixels with ``d^2 > 9 sigma^2`` inside that box get zero weight.
    """
    h, w = shape[:2]
    total_dx = np.zeros((h, w), dtype=np.float64)
    total_dy = np.zeros((h, w), dtype=np.float64)

    for cp in control_points:
        if cp.sigma <= 0:
            continue
        sigma2 = cp.sigma * cp.sigma
        reach = CUTOFF_SIGMAS * cp.sigma
        x0 = max(0, int(math.floor(cp.x - reach)))
        x1 = min(w - 1, int(math.ceil(cp.x + reach)))
        y0 = max(0, int(math.floor(cp.y - reach)))
        y1 = min(h - 1, int(math.ceil(cp.y + reach)))
        if x1 < x0 or y1 < y0:
            continue
        xs = np.arange(x0, x1 + 1, dtype=np.float64) - cp.x
        ys = np.arange(y0, y1 + 1, dtype=np.float64) - cp.y
        dist_sq = xs[None, :] ** 2 + ys[:, None] ** 2
        weight = np.exp(-dist_sq / (2 * sigma2))
        weight[dist_sq > sigma2 * CUTOFF_SIGMAS**2] = 0.0
        total_dx[y0 : y1 + 1, x0 : x1 + 1] += cp.dx * weight
        total_dy[y0 : y1 + 1, x0 : x1 + 1] += cp.dy * weight

    return total_dx.astype(np.float32), total_dy.astype(np.float32)


def remap_bilinear(image: np.ndarray, map_x: np.ndarray, map_y: np.ndarray) -> np.ndarray:
    """Bilinear sampling of ``image`` at (map_x, map_y), clamped to the edges."""
    h, w = image.shape[:2]
    map_x = np.clip(map_x, 0, w - 1).astype(np.float32, copy=False)
    map_y = np.clip(map_y, 0, h - 1).astype(np.float32, copy=False)
    return cv2.remap(
        np.ascontiguousarray(image),
        map_x,
        map_y,
        interpolation=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_REPLICATE,
    )


def apply_control_points(image: np.ndarray, control_points: Sequence[ControlPoint]) -> np.ndarray:
    """Inverse warp: each output pixel pulls from ``position - displacement``."""
    if not control_points:
        return image
    h, w = image.shape[:2]
    total_dx, total_dy = displacement_from_control_points(control_points, (h, w))
    grid_x, grid_y = identity_grid(h, w)
    return remap_bilinear(image, grid_x - total_dx, grid_y - total_dy)


def apply_displacement_field(image: np.ndarray, dx: np.ndarray, dy: np.ndarray) -> np.ndarray:
    """Dense-field warp: each output pixel pulls from ``position + field``."""
    h, w = image.shape[:2]
    grid_x, grid_y = identity_grid(h, w)
    return remap_bilinear(image, grid_x + dx, grid_y + dy)
