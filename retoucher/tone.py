from __future__ import annotations

import cv2
import numpy as np

from .models import ToneAdjustments


def gaussian_blur(image: np.ndarray, radius: float) -> np.ndarray:
    """Gaussian blur with sigma = radius / 3, edges replicated."""
    if radius < 1:
        return image.copy()
    return cv2.GaussianBlur(image, (0, 0), sigmaX=radius / 3.0, borderType=cv2.BORDER_REPLICATE)


def _to_uint8(rgb: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(rgb), 0, 255).astype(np.uint8)


def _with_rgb(image: np.ndarray, rgb: np.ndarray) -> np.ndarray:
    out = image.copy()
    out[..., :3] = _to_uint8(rgb)
    return out


def _unsharp(image: np.ndarray, radius: float, factor: float) -> np.ndarray:
    blurred = gaussian_blur(image, radius)
    rgb = image[..., :3].astype(np.float32)
    detail = rgb - blurred[..., :3].astype(np.float32)
    return _with_rgb(image, rgb + detail * factor)


def is_identity(adj: ToneAdjustments) -> bool:
    return not any(
        (
            adj.brightness,
            adj.contrast,
            adj.saturation,
            adj.warmth,
            adj.exposure,
            adj.shadows,
            adj.highlights,
            adj.clarity > 0,
            adj.sharpness > 0,
        )
    )


def apply_color_adjustments(image: np.ndarray, adj: ToneAdjustments) -> np.ndarray:
    if is_identity(adj):
        return image

    rgb = image[..., :3].astype(np.float32)

    if adj.exposure != 0:
        rgb *= 2.0 ** adj.exposure
    if adj.brightness != 0:
        rgb += adj.brightness * 2.55
    if adj.contrast != 0:
        factor = (259 * (adj.contrast + 255)) / (255 * (259 - adj.contrast))
        rgb = factor * (rgb - 128) + 128
    if adj.warmth != 0:
        rgb[..., 0] += adj.warmth * 0.8
        rgb[..., 2] -= adj.warmth * 0.8
    if adj.saturation != 0:
        sat = adj.saturation / 100 + 1
        gray = (0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2])[..., None]
        rgb = gray + sat * (rgb - gray)
    if adj.shadows != 0:
        lum = rgb.sum(axis=2, keepdims=True) / 765
        rgb += adj.shadows * 0.5 * (1 - lum) ** 2
    if adj.highlights != 0:
        lum = rgb.sum(axis=2, keepdims=True) / 765
        rgb += adj.highlights * 0.5 * lum**2

    result = _with_rgb(image, rgb)
    if adj.clarity > 0:
        result = _unsharp(result, round(result.shape[1] * 0.02 + 4), adj.clarity * 0.015)
    if adj.sharpness > 0:
        result = _unsharp(result, 1, adj.sharpness * 0.008)
    return result


def apply_vignette(image: np.ndarray, amount: float) -> np.ndarray:
    """Darken toward the corners with a radial black gradient."""
    if amount <= 0:
        return image
    h, w = image.shape[:2]
    cx, cy = w / 2, h / 2
    r = np.hypot(cx, cy)
    inner, outer = r * 0.3, r * 1.1
    yy, xx = np.mgrid[0:h, 0:w].astype(np.float32)
    dist = np.hypot(xx - cx, yy - cy)
    t = np.clip((dist - inner) / (outer - inner), 0.0, 1.0)
    alpha = (t * (amount / 100) * 0.75)[..., None]
    rgb = image[..., :3].astype(np.float32) * (1 - alpha)
    return _with_rgb(image, rgb)
