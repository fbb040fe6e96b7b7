from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

from .compositor import Compositor, RenderInputs
from .config import Settings, get_settings
from .export import batch_presets, finish_export, render_at_resolution
from .landmarks import LandmarkProvider
from .liquify import DisplacementField
from .models import ExportSettings, FaceAdjustments, FaceMeta, Landmark, RetouchConfig
from .resample import scale_points

logger = logging.getLogger(__name__)


@dataclass
class RenderBuffers:
    """Raw per-pixel inputs that travel alongside a config, all at display size."""

    skin_mask: Optional[np.ndarray] = None
    privacy_mask: Optional[np.ndarray] = None
    dx: Optional[np.ndarray] = None
    dy: Optional[np.ndarray] = None

    def field(self) -> Optional[DisplacementField]:
        if self.dx is None and self.dy is None:
            return None
        like = self.dx if self.dx is not None else self.dy
        dx = self.dx if self.dx is not None else np.zeros_like(like)
        dy = self.dy if self.dy is not None else np.zeros_like(like)
        return DisplacementField(dx=dx, dy=dy)


def landmarks_array(landmarks: Optional[List[Landmark]]) -> Optional[np.ndarray]:
    if not landmarks:
        return None
    return np.array([[lm.x, lm.y, lm.z] for lm in landmarks], dtype=np.float32)


def has_face_adjustment(adjustments: FaceAdjustments) -> bool:
    return any(value != 0 for value in adjustments.model_dump().values())


def inputs_from_config(
    image: np.ndarray,
    config: RetouchConfig,
    buffers: Optional[RenderBuffers] = None,
    landmarks: Optional[np.ndarray] = None,
) -> RenderInputs:
    buffers = buffers or RenderBuffers()
    if landmarks is None:
        landmarks = landmarks_array(config.landmarks)
    return RenderInputs(
        image=image,
        landmarks=landmarks,
        face=config.faceAdjustments,
        body=config.bodyAdjustments,
        anchors=config.bodyAnchors,
        skin_mask=buffers.skin_mask,
        skin=config.skinSettings,
        privacy_mask=buffers.privacy_mask,
        tone=config.adjustments,
        filter_name=config.activeFilter,
        liquify=buffers.field(),
        liquify_settings=config.liquifySettings,
    )


class RetouchPipeline:
    def __init__(
        self,
        provider: Optional[LandmarkProvider] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.provider = provider or LandmarkProvider()
        self.settings = settings or get_settings()

    def analyze(self, image: np.ndarray) -> Optional[FaceMeta]:
        return self.provider.serialize(self.provider.detect(image))

    def _landmarks_for(self, image: np.ndarray, config: RetouchConfig) -> Optional[np.ndarray]:
        landmarks = landmarks_array(config.landmarks)
        if landmarks is None and has_face_adjustment(config.faceAdjustments):
            logger.debug("No landmarks supplied, running detection")
            landmarks = self.provider.detect(image)
        return landmarks

    def render(
        self,
        image: np.ndarray,
        config: RetouchConfig,
        buffers: Optional[RenderBuffers] = None,
    ) -> np.ndarray:
        """Render at the resolution of ``image`` (the display buffer)."""
        inputs = inputs_from_config(image, config, buffers, self._landmarks_for(image, config))
        compositor = Compositor(
            mask_probe_stride=self.settings.mask_probe_stride,
            field_probe_stride=self.settings.field_probe_stride,
        )
        return compositor.render(inputs)

    def render_full(
        self,
        original: np.ndarray,
        config: RetouchConfig,
        display_size: Tuple[int, int],
        buffers: Optional[RenderBuffers] = None,
    ) -> np.ndarray:
        """Replay display-resolution edits on ``original``.

        ``display_size`` is (width, height) of the buffer the edits were made on.
        """
        display_w, _ = display_size
        if display_w <= 0:
            raise ValueError("Display width must be positive")
        ratio = original.shape[1] / display_w
        landmarks = landmarks_array(config.landmarks)
        if landmarks is None and has_face_adjustment(config.faceAdjustments):
            landmarks = scale_points(self.provider.detect(original), 1 / ratio)
        # Display-resolution inputs; rescaling swaps in ``original``.
        inputs = inputs_from_config(original, config, buffers, landmarks)
        return render_at_resolution(
            original,
            inputs,
            ratio,
            mask_probe_stride=self.settings.mask_probe_stride,
            field_probe_stride=self.settings.field_probe_stride,
        )

    def export(
        self,
        original: np.ndarray,
        config: RetouchConfig,
        display_size: Tuple[int, int],
        buffers: Optional[RenderBuffers] = None,
        resize: Optional[Tuple[int, int]] = None,
        export_settings: Optional[ExportSettings] = None,
    ) -> np.ndarray:
        result = self.render_full(original, config, display_size, buffers)
        return finish_export(result, export_settings or ExportSettings(), resize)

    def batch_export(
        self,
        original: np.ndarray,
        config: RetouchConfig,
        display_size: Tuple[int, int],
        buffers: Optional[RenderBuffers] = None,
        export_settings: Optional[ExportSettings] = None,
    ) -> Dict[str, np.ndarray]:
        """Render once at full resolution, then crop to every social preset."""
        result = self.render_full(original, config, display_size, buffers)
        return batch_presets(result, export_settings or ExportSettings())

    @staticmethod
    def decode_image(data: bytes) -> Optional[np.ndarray]:
        """Decode an encoded image into RGBA, or None when OpenCV cannot read it."""
        array = np.frombuffer(data, np.uint8)
        image = cv2.imdecode(array, cv2.IMREAD_UNCHANGED)
        if image is None:
            return None
        if image.dtype == np.uint16:
            image = (image >> 8).astype(np.uint8)
        if image.ndim == 2:
            return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
        if image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)

    @staticmethod
    def encode_image(image: np.ndarray, fmt: str = "png", quality: float = 1.0) -> str:
        """Encode RGBA as a data URL; jpeg drops alpha, webp keeps it."""
        if fmt == "jpeg":
            params = [cv2.IMWRITE_JPEG_QUALITY, int(round(np.clip(quality, 0.1, 1.0) * 100))]
            success, buffer = cv2.imencode(".jpg", cv2.cvtColor(image, cv2.COLOR_RGBA2BGR), params)
        elif fmt == "webp":
            params = [cv2.IMWRITE_WEBP_QUALITY, int(round(np.clip(quality, 0.1, 1.0) * 100))]
            success, buffer = cv2.imencode(".webp", cv2.cvtColor(image, cv2.COLOR_RGBA2BGRA), params)
        else:
            fmt = "png"
            success, buffer = cv2.imencode(".png", cv2.cvtColor(image, cv2.COLOR_RGBA2BGRA))
        if not success:
            raise ValueError("Failed to encode image")
        return f"data:image/{fmt};base64," + base64.b64encode(buffer).decode("utf-8")
