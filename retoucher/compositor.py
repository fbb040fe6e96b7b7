from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

import numpy as np
from pydantic import BaseModel

from .control_points import (
    build_body_control_points,
    build_face_control_points,
    has_body_adjustment,
)
from .filters import apply_filter
from .liquify import DisplacementField, apply_with_preservation
from .masks import apply_privacy_blur, apply_skin_smooth
from .models import (
    BodyAdjustments,
    BodyAnchors,
    FaceAdjustments,
    LiquifySettings,
    SkinSettings,
    ToneAdjustments,
)
from .resample import has_content
from .tone import apply_color_adjustments, apply_vignette, gaussian_blur
from .warp import apply_control_points

logger = logging.getLogger(__name__)

PRESERVE_BLUR_RADIUS = 5


@dataclass
class RenderInputs:
    """One frame's worth of compositor input, all at the resolution of ``image``.

    ``image`` is RGBA uint8 of shape (h, w, 4); masks and the liquify field
    must share its (h, w). ``field_scale`` is the ratio the field values were
    multiplied by when moved to this resolution.
    """

    image: np.ndarray
    landmarks: Optional[np.ndarray] = None
    face: FaceAdjustments = field(default_factory=FaceAdjustments)
    body: BodyAdjustments = field(default_factory=BodyAdjustments)
    anchors: BodyAnchors = field(default_factory=BodyAnchors)
    skin_mask: Optional[np.ndarray] = None
    skin: SkinSettings = field(default_factory=SkinSettings)
    privacy_mask: Optional[np.ndarray] = None
    tone: ToneAdjustments = field(default_factory=ToneAdjustments)
    filter_name: str = "none"
    liquify: Optional[DisplacementField] = None
    liquify_settings: LiquifySettings = field(default_factory=LiquifySettings)
    field_scale: float = 1.0

    def base_key(self) -> Tuple[Any, ...]:
        return (
            self.image,
            self.landmarks,
            self.face,
            self.body,
            self.anchors,
            self.skin_mask,
            self.skin,
            self.privacy_mask,
            self.tone,
            self.filter_name,
        )


def _same_key(a: Optional[Tuple[Any, ...]], b: Tuple[Any, ...]) -> bool:
    """Buffers match by identity, settings and names by value."""
    if a is None or len(a) != len(b):
        return False
    for left, right in zip(a, b):
        if isinstance(left, (BaseModel, str)) and type(left) is type(right):
            if left != right:
                return False
        elif left is not right:
            return False
    return True


def _snapshot(key: Tuple[Any, ...]) -> Tuple[Any, ...]:
    return tuple(v.model_copy(deep=True) if isinstance(v, BaseModel) else v for v in key)


class Compositor:
    """Runs the fixed stage order and caches everything below liquify.

    Stages: face warp, body warp, skin smoothing, privacy blur, tone, filter
    (the cached "base"), then liquify and vignette on every frame.
    """

    def __init__(self, mask_probe_stride: int = 200, field_probe_stride: int = 500) -> None:
        self.mask_probe_stride = mask_probe_stride
        self.field_probe_stride = field_probe_stride
        self._base_key: Optional[Tuple[Any, ...]] = None
        self._base: Optional[np.ndarray] = None
        self._blurred: Optional[np.ndarray] = None
        self._blur_radius: Optional[int] = None

    def invalidate(self) -> None:
        self._base_key = None
        self._base = None
        self._blurred = None
        self._blur_radius = None

    def render(self, inputs: RenderInputs) -> np.ndarray:
        base = self.base(inputs)
        result = self._top(base, inputs)
        if result is inputs.image or result is base:
            result = result.copy()
        return result

    def base(self, inputs: RenderInputs) -> np.ndarray:
        key = inputs.base_key()
        if self._base is not None and _same_key(self._base_key, key):
            logger.debug("base stage cache hit")
            return self._base
        base = self._build_base(inputs)
        self._base_key = _snapshot(key)
        self._base = base
        self._blurred = None
        self._blur_radius = None
        return base

    def blurred_base(self, inputs: RenderInputs) -> np.ndarray:
        base = self.base(inputs)
        radius = max(2, round(PRESERVE_BLUR_RADIUS * inputs.field_scale))
        if self._blurred is None or self._blur_radius != radius:
            self._blurred = gaussian_blur(base, radius)
            self._blur_radius = radius
        return self._blurred

    def _build_base(self, inputs: RenderInputs) -> np.ndarray:
        image = inputs.image
        h, w = image.shape[:2]

        face_cps = build_face_control_points(inputs.landmarks, inputs.face)
        if face_cps:
            image = apply_control_points(image, face_cps)
        else:
            logger.debug("face warp skipped")

        if has_body_adjustment(inputs.anchors, inputs.body):
            image = apply_control_points(
                image, build_body_control_points(inputs.anchors, inputs.body, w)
            )

        if has_content(inputs.skin_mask, self.mask_probe_stride):
            image = apply_skin_smooth(
                image,
                inputs.skin_mask,
                inputs.skin.smoothness,
                inputs.skin.skinBrightness,
            )

        if has_content(inputs.privacy_mask, self.mask_probe_stride):
            image = apply_privacy_blur(image, inputs.privacy_mask)

        image = apply_color_adjustments(image, inputs.tone)
        if inputs.filter_name != "none":
            image = apply_filter(image, inputs.filter_name)
        return image

    def _top(self, base: np.ndarray, inputs: RenderInputs) -> np.ndarray:
        result = base
        liquify = inputs.liquify
        if liquify is not None and (
            has_content(liquify.dx, self.field_probe_stride)
            or has_content(liquify.dy, self.field_probe_stride)
        ):
            amount = inputs.liquify_settings.texturePreservation / 100
            if amount > 0:
                result = apply_with_preservation(
                    base,
                    self.blurred_base(inputs),
                    liquify.dx,
                    liquify.dy,
                    amount,
                    inputs.field_scale,
                )
            else:
                result = liquify.apply(base)
        return apply_vignette(result, inputs.tone.vignette)
