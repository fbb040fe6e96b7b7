"""Interactive editing state for one image."""
from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from typing import Dict, Optional, Tuple

import cv2
import numpy as np
from fastapi.concurrency import run_in_threadpool

from .compositor import Compositor, RenderInputs
from .config import Settings, get_settings
from .export import batch_presets, finish_export, render_at_resolution
from .landmarks import LandmarkProvider
from .liquify import DisplacementField
from .masks import empty_mask, erase_mask, paint_mask
from .models import (
    BodyAdjustments,
    BodyAnchors,
    ExportSettings,
    FaceAdjustments,
    LiquifySettings,
    LiquifyStroke,
    PointModel,
    RetouchConfig,
    SkinSettings,
    ToneAdjustments,
)

logger = logging.getLogger(__name__)

PRIVACY_BRUSH_SCALE = 1.5
ANCHOR_NAMES = ("chest", "leftThigh", "rightThigh")


def display_copy(image: np.ndarray, max_edge: int) -> Tuple[np.ndarray, float]:
    """Downscale ``image`` so its longest edge fits ``max_edge``; never upscales."""
    h, w = image.shape[:2]
    scale = min(max_edge / max(h, w), 1.0)
    if scale >= 1.0:
        return image.copy(), 1.0
    size = (max(1, round(w * scale)), max(1, round(h * scale)))
    return cv2.resize(image, size, interpolation=cv2.INTER_AREA), scale


class EditorSession:
    """Owns the display buffer and every edit made on it.

    All setters swap whole objects (pydantic models are copied, arrays are
    replaced) so anything captured from a previous call stays unchanged.
    """

    def __init__(self, image: np.ndarray, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.original = image
        self.display, self.display_scale = display_copy(image, self.settings.preview_max_edge)
        self.landmarks: Optional[np.ndarray] = None
        self.face = FaceAdjustments()
        self.body = BodyAdjustments()
        self.anchors = BodyAnchors()
        self.tone = ToneAdjustments()
        self.skin = SkinSettings()
        self.liquify_settings = LiquifySettings()
        self.filter_name = "none"
        self.skin_mask: Optional[np.ndarray] = None
        self.privacy_mask: Optional[np.ndarray] = None
        self.field: Optional[DisplacementField] = None
        self.compositor = Compositor(
            mask_probe_stride=self.settings.mask_probe_stride,
            field_probe_stride=self.settings.field_probe_stride,
        )

    @property
    def width(self) -> int:
        return int(self.display.shape[1])

    @property
    def height(self) -> int:
        return int(self.display.shape[0])

    # adjustments

    def set_face(self, **values: float) -> FaceAdjustments:
        self.face = self.face.model_copy(update=values)
        return self.face

    def set_body(self, **values: float) -> BodyAdjustments:
        self.body = self.body.model_copy(update=values)
        return self.body

    def set_tone(self, **values: float) -> ToneAdjustments:
        self.tone = self.tone.model_copy(update=values)
        return self.tone

    def set_skin(self, **values: float) -> SkinSettings:
        self.skin = self.skin.model_copy(update=values)
        return self.skin

    def set_liquify_settings(self, **values) -> LiquifySettings:
        self.liquify_settings = self.liquify_settings.model_copy(update=values)
        return self.liquify_settings

    def set_filter(self, name: str) -> None:
        self.filter_name = name

    def apply_config(self, config: RetouchConfig) -> None:
        """Take every slider set from ``config``; landmarks only when it carries some."""
        self.tone = config.adjustments
        self.face = config.faceAdjustments
        self.body = config.bodyAdjustments
        self.anchors = config.bodyAnchors
        self.skin = config.skinSettings
        self.liquify_settings = config.liquifySettings
        self.filter_name = config.activeFilter
        if config.landmarks:
            self.set_landmarks([[lm.x, lm.y, lm.z] for lm in config.landmarks])

    def set_anchor(self, name: str, x: float, y: float) -> BodyAnchors:
        if name not in ANCHOR_NAMES:
            raise ValueError(f"Unknown body anchor: {name}")
        self.anchors = self.anchors.model_copy(update={name: PointModel(x=x, y=y)})
        return self.anchors

    def clear_anchor(self, name: str) -> BodyAnchors:
        if name not in ANCHOR_NAMES:
            raise ValueError(f"Unknown body anchor: {name}")
        self.anchors = self.anchors.model_copy(update={name: None})
        return self.anchors

    # landmarks

    def set_landmarks(self, landmarks: Optional[np.ndarray]) -> None:
        self.landmarks = None if landmarks is None else np.array(landmarks, dtype=np.float32)

    async def detect_landmarks(self, provider: LandmarkProvider) -> Optional[np.ndarray]:
        """Run the provider off the event loop.

        On failure the previous landmarks stay in place.
        """
        try:
            landmarks = await run_in_threadpool(provider.detect, self.display)
        except Exception as exc:
            logger.warning(f"Landmark detection failed: {exc}", exc_info=True)
            return self.landmarks
        self.set_landmarks(landmarks)
        return self.landmarks

    # strokes

    def liquify_stroke(self, x: float, y: float, dx: float = 0.0, dy: float = 0.0) -> DisplacementField:
        field = self.field or DisplacementField.zeros(self.width, self.height)
        self.field = field.stroke(
            LiquifyStroke(
                x=x,
                y=y,
                dx=dx,
                dy=dy,
                radius=self.liquify_settings.size,
                strength=self.liquify_settings.strength,
                mode=self.liquify_settings.mode,
            )
        )
        return self.field

    def reset_liquify(self) -> None:
        self.field = None

    def _painted(self, mask: Optional[np.ndarray], x: float, y: float, radius: float, erase: bool) -> np.ndarray:
        if mask is None:
            mask = empty_mask(self.width, self.height)
        if erase:
            return erase_mask(mask, x, y, radius)
        return paint_mask(mask, x, y, radius)

    def paint_skin(self, x: float, y: float, erase: bool = False) -> np.ndarray:
        self.skin_mask = self._painted(self.skin_mask, x, y, self.skin.brushSize, erase)
        return self.skin_mask

    def paint_privacy(self, x: float, y: float, erase: bool = False) -> np.ndarray:
        radius = self.skin.brushSize * PRIVACY_BRUSH_SCALE
        self.privacy_mask = self._painted(self.privacy_mask, x, y, radius, erase)
        return self.privacy_mask

    def reset_skin_mask(self) -> None:
        self.skin_mask = None

    def reset_privacy_mask(self) -> None:
        self.privacy_mask = None

    # rendering

    def inputs(self) -> RenderInputs:
        return RenderInputs(
            image=self.display,
            landmarks=self.landmarks,
            face=self.face,
            body=self.body,
            anchors=self.anchors,
            skin_mask=self.skin_mask,
            skin=self.skin,
            privacy_mask=self.privacy_mask,
            tone=self.tone,
            filter_name=self.filter_name,
            liquify=self.field,
            liquify_settings=self.liquify_settings,
        )

    def render(self) -> np.ndarray:
        return self.compositor.render(self.inputs())

    def render_full(self) -> np.ndarray:
        """Render at the original resolution."""
        ratio = self.original.shape[1] / self.width
        return render_at_resolution(
            self.original,
            self.inputs(),
            ratio,
            mask_probe_stride=self.settings.mask_probe_stride,
            field_probe_stride=self.settings.field_probe_stride,
        )

    def export(
        self,
        resize: Optional[Tuple[int, int]] = None,
        export_settings: Optional[ExportSettings] = None,
    ) -> np.ndarray:
        """Full-resolution render, optionally fitted into ``resize`` and watermarked."""
        return finish_export(self.render_full(), export_settings or ExportSettings(), resize)

    def batch_export(self, export_settings: Optional[ExportSettings] = None) -> Dict[str, np.ndarray]:
        return batch_presets(self.render_full(), export_settings or ExportSettings())


class SessionStore:
    """In-memory sessions keyed by id, oldest evicted first."""

    def __init__(self, max_sessions: int = 16) -> None:
        self.max_sessions = max_sessions
        self._sessions: OrderedDict[str, EditorSession] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, image: np.ndarray, settings: Optional[Settings] = None) -> Tuple[str, EditorSession]:
        session = EditorSession(image, settings)
        session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions[session_id] = session
            while len(self._sessions) > self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.info(f"Evicted editor session {evicted}")
        return session_id, session

    def get(self, session_id: str) -> Optional[EditorSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._sessions.move_to_end(session_id)
            return session

    def remove(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None
