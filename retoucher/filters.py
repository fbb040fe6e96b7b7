from __future__ import annotations

from typing import Callable, Dict

import numpy as np

FILM_GRAIN_SEED = 7

FilterFn = Callable[[np.ndarray], np.ndarray]
FILTERS: Dict[str, FilterFn] = {}


def register_filter(name: str) -> Callable[[FilterFn], FilterFn]:
    def register(fn: FilterFn) -> FilterFn:
        FILTERS[name] = fn
        return fn

    return register


def _gray(rgb: np.ndarray) -> np.ndarray:
    return (0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2])[..., None]


def _saturate(rgb: np.ndarray, factor: float) -> np.ndarray:
    gray = _gray(rgb)
    return gray + factor * (rgb - gray)


def _channels(rgb: np.ndarray, gains, offsets) -> np.ndarray:
    return rgb * np.array(gains, dtype=np.float32) + np.array(offsets, dtype=np.float32)


@register_filter("clear")
def _clear(rgb: np.ndarray) -> np.ndarray:
    return _channels(rgb, (1.04, 1.04, 1.08), (6, 4, 8))


@register_filter("soft")
def _soft(rgb: np.ndarray) -> np.ndarray:
    gray = _gray(rgb)
    out = np.empty_like(rgb)
    out[..., 0] = (gray[..., 0] + 1.1 * (rgb[..., 0] - gray[..., 0])) * 1.03 + 8
    out[..., 1] = gray[..., 0] + 1.1 * (rgb[..., 1] - gray[..., 0]) + 3
    out[..., 2] = gray[..., 0] + 0.9 * (rgb[..., 2] - gray[..., 0]) - 2
    return out


@register_filter("film")
def _film(rgb: np.ndarray) -> np.ndarray:
    lifted = np.maximum(20, _channels(rgb, (0.9, 0.88, 0.82), (15, 18, 12)))
    # Fixed seed: equal sizes get equal grain.
    rng = np.random.default_rng(FILM_GRAIN_SEED)
    grain = (rng.random(rgb.shape[:2], dtype=np.float32) - 0.5) * 8
    return lifted + grain[..., None]


@register_filter("vivid")
def _vivid(rgb: np.ndarray) -> np.ndarray:
    factor = (259 * (40 + 255)) / (255 * (259 - 40))
    return factor * (_saturate(rgb, 1.4) - 128) + 128


@register_filter("matte")
def _matte(rgb: np.ndarray) -> np.ndarray:
    return np.clip(_saturate(rgb, 0.85) * 0.88 + 20, 20, 240)


@register_filter("warm")
def _warm(rgb: np.ndarray) -> np.ndarray:
    return _channels(rgb, (1.08, 1.02, 0.88), (12, 4, -8))


@register_filter("cool")
def _cool(rgb: np.ndarray) -> np.ndarray:
    return _channels(rgb, (0.9, 1.01, 1.12), (-6, 2, 14))


@register_filter("bw")
def _bw(rgb: np.ndarray) -> np.ndarray:
    gray = np.rint(_gray(rgb))
    return np.repeat((gray - 128) * 1.1 + 128, 3, axis=2)


@register_filter("portrait")
def _portrait(rgb: np.ndarray) -> np.ndarray:
    glow = (_gray(rgb) / 255) ** 1.5 * 10
    return _channels(rgb, (1.04, 1.02, 0.97), (5, 2, -2)) + glow


def apply_filter(image: np.ndarray, name: str) -> np.ndarray:
    fn = FILTERS.get(name)
    if fn is None:
        return image
    out = image.copy()
    rgb = fn(image[..., :3].astype(np.float32))
    out[..., :3] = np.clip(np.rint(rgb), 0, 255).astype(np.uint8)
    return out
