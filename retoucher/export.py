"""Replaying display-resolution edits on the full-resolution source."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

from .compositor import Compositor, RenderInputs
from .liquify import DisplacementField
from .models import ExportSettings
from .resample import (
    has_content,
    resize_displacement,
    resize_mask_nearest,
    scale_anchors,
    scale_points,
)

logger = logging.getLogger(__name__)


def _rescale_mask(mask: Optional[np.ndarray], width: int, height: int, stride: int) -> Optional[np.ndarray]:
    if not has_content(mask, stride):
        return None
    return resize_mask_nearest(mask, width, height)


def _rescale_field(
    liquify: Optional[DisplacementField],
    width: int,
    height: int,
    ratio: float,
    stride: int,
) -> Optional[DisplacementField]:
    if liquify is None:
        return None
    if not (has_content(liquify.dx, stride) or has_content(liquify.dy, stride)):
        return None
    return DisplacementField(
        dx=resize_displacement(liquify.dx, width, height, ratio),
        dy=resize_displacement(liquify.dy, width, height, ratio),
    )


def rescale_inputs(
    inputs: RenderInputs,
    image: np.ndarray,
    ratio: float,
    mask_probe_stride: int = 200,
    field_probe_stride: int = 500,
) -> RenderInputs:
    """Move every resolution-bound input onto ``image``.

    ``ratio`` is target size over display size.
    """
    height, width = image.shape[:2]
    return replace(
        inputs,
        image=image,
        landmarks=scale_points(inputs.landmarks, ratio),
        anchors=scale_anchors(inputs.anchors, ratio),
        skin_mask=_rescale_mask(inputs.skin_mask, width, height, mask_probe_stride),
        privacy_mask=_rescale_mask(inputs.privacy_mask, width, height, mask_probe_stride),
        liquify=_rescale_field(inputs.liquify, width, height, ratio, field_probe_stride),
        field_scale=inputs.field_scale * ratio,
    )


def render_at_resolution(
    original: np.ndarray,
    inputs: RenderInputs,
    ratio: float,
    mask_probe_stride: int = 200,
    field_probe_stride: int = 500,
) -> np.ndarray:
    scaled = rescale_inputs(inputs, original, ratio, mask_probe_stride, field_probe_stride)
    h, w = original.shape[:2]
    logger.info(f"Rendering export at {w}x{h} (ratio {ratio:.3f})")
    compositor = Compositor(mask_probe_stride=mask_probe_stride, field_probe_stride=field_probe_stride)
    return compositor.render(scaled)


def fit_to_box(image: np.ndarray, box_width: int, box_height: int) -> np.ndarray:
    """Aspect-preserving resize so the image fits inside the box."""
    if box_width <= 0 or box_height <= 0:
        return image
    h, w = image.shape[:2]
    if w / h > box_width / box_height:
        new_w, new_h = box_width, max(1, round(box_width * h / w))
    else:
        new_w, new_h = max(1, round(box_height * w / h)), box_height
    if (new_w, new_h) == (w, h):
        return image
    interpolation = cv2.INTER_AREA if new_w < w else cv2.INTER_LINEAR
    return cv2.resize(image, (new_w, new_h), interpolation=interpolation)


EXPORT_PRESETS: Dict[str, Tuple[int, int]] = {
    "twitter": (1200, 675),
    "fanclub": (1080, 1350),
    "instagram": (1080, 1080),
}

WATERMARK_FONT = cv2.FONT_HERSHEY_SIMPLEX


def crop_to_preset(image: np.ndarray, width: int, height: int) -> np.ndarray:
    """Centre-crop to the target aspect, then scale to exactly width x height."""
    h, w = image.shape[:2]
    target = width / height
    if w / h > target:
        sw, sh = round(h * target), h
    else:
        sw, sh = w, round(w / target)
    sx = round((w - sw) / 2)
    sy = round((h - sh) / 2)
    cropped = image[sy:sy + sh, sx:sx + sw]
    interpolation = cv2.INTER_AREA if width < sw else cv2.INTER_LINEAR
    return cv2.resize(cropped, (width, height), interpolation=interpolation)


def _watermark_origin(
    position: str,
    width: int,
    height: int,
    text_width: int,
    text_height: int,
    padding: int,
) -> Tuple[int, int]:
    if position == "topLeft":
        return padding, padding + text_height
    if position == "topRight":
        return width - text_width - padding, padding + text_height
    if position == "bottomLeft":
        return padding, height - padding
    if position == "center":
        return (width - text_width) // 2, (height + text_height) // 2
    return width - text_width - padding, height - padding


def draw_watermark(image: np.ndarray, settings: ExportSettings) -> np.ndarray:
    """Blend the watermark text onto a copy of ``image``.

    The text is stroked in black, filled in white, then mixed in at
    ``watermarkOpacity`` percent. Alpha is left untouched.
    """
    text = settings.watermarkText.strip()
    if not settings.watermarkEnabled or not text:
        return image

    h, w = image.shape[:2]
    size = max(1, int(settings.watermarkSize))
    thickness = max(1, size // 12)
    scale = cv2.getFontScaleFromHeight(WATERMARK_FONT, size, thickness)
    (text_w, _), _ = cv2.getTextSize(text, WATERMARK_FONT, scale, thickness)
    origin = _watermark_origin(settings.watermarkPosition, w, h, text_w, size, size)

    rgb = np.ascontiguousarray(image[..., :3])
    overlay = rgb.copy()
    cv2.putText(overlay, text, origin, WATERMARK_FONT, scale, (0, 0, 0), thickness + 2, cv2.LINE_AA)
    cv2.putText(overlay, text, origin, WATERMARK_FONT, scale, (255, 255, 255), thickness, cv2.LINE_AA)

    alpha = float(np.clip(settings.watermarkOpacity / 100, 0.0, 1.0))
    out = image.copy()
    out[..., :3] = cv2.addWeighted(overlay, alpha, rgb, 1.0 - alpha, 0)
    return out


def finish_export(
    image: np.ndarray,
    settings: ExportSettings,
    resize: Optional[Tuple[int, int]] = None,
) -> np.ndarray:
    """Optional fit-to-box resize followed by the watermark."""
    if resize is not None:
        image = fit_to_box(image, *resize)
    return draw_watermark(image, settings)


def batch_presets(image: np.ndarray, settings: ExportSettings) -> Dict[str, np.ndarray]:
    """One centre-cropped, watermarked copy per social preset."""
    return {
        name: draw_watermark(crop_to_preset(image, width, height), settings)
        for name, (width, height) in EXPORT_PRESETS.items()
    }
