from __future__ import annotations

import json
import logging
from typing import Any, Optional, Tuple

import numpy as np
from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from .config import get_settings
from .models import (
    BatchExportResponse,
    ExportRequest,
    ExportSettings,
    FaceAnalysisResponse,
    LiquifyDragRequest,
    PaintRequest,
    ResetRequest,
    RetouchConfig,
    RetouchResponse,
    SessionExportRequest,
    SessionResponse,
)
from .pipeline import RenderBuffers, RetouchPipeline
from .session import EditorSession, SessionStore

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Retoucher Backend", version="1.0.0")
pipeline = RetouchPipeline(settings=settings)
sessions = SessionStore(max_sessions=settings.max_sessions)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health() -> dict[str, Any]:
    return {"status": "ok"}


async def _load_image(upload: UploadFile) -> np.ndarray:
    """Load image from UploadFile as an RGBA array."""
    try:
        data = await upload.read()
        if not data:
            raise HTTPException(status_code=400, detail="Empty image payload")
        image = pipeline.decode_image(data)
        if image is None:
            raise HTTPException(status_code=400, detail="Unsupported image format")
        return image
    except HTTPException:
        raise
    except Exception as exc:
        logger.error(f"Error loading image: {exc}", exc_info=True)
        raise HTTPException(status_code=400, detail=f"Failed to load image: {str(exc)}") from exc


async def _load_buffer(upload: Optional[UploadFile], name: str, width: int, height: int) -> Optional[np.ndarray]:
    """Read a raw little-endian float32 buffer of exactly width * height values."""
    if upload is None:
        return None
    data = await upload.read()
    if not data:
        return None
    expected = width * height * 4
    if len(data) != expected:
        raise HTTPException(
            status_code=400,
            detail=f"{name} must be {expected} bytes ({width}x{height} float32), got {len(data)}",
        )
    return np.frombuffer(data, dtype="<f4").astype(np.float32).reshape(height, width)


async def _load_buffers(
    width: int,
    height: int,
    skinMask: Optional[UploadFile],
    privacyMask: Optional[UploadFile],
    liquifyDx: Optional[UploadFile],
    liquifyDy: Optional[UploadFile],
) -> RenderBuffers:
    return RenderBuffers(
        skin_mask=await _load_buffer(skinMask, "skinMask", width, height),
        privacy_mask=await _load_buffer(privacyMask, "privacyMask", width, height),
        dx=await _load_buffer(liquifyDx, "liquifyDx", width, height),
        dy=await _load_buffer(liquifyDy, "liquifyDy", width, height),
    )


def _parse(model, raw: str, field: str):
    try:
        return model.model_validate_json(raw)
    except json.JSONDecodeError as exc:
        logger.error(f"Invalid {field} JSON: {exc}")
        raise HTTPException(status_code=400, detail=f"Invalid {field} JSON: {exc}") from exc
    except ValidationError as exc:
        logger.error(f"Invalid {field} validation: {exc}")
        raise HTTPException(status_code=400, detail=f"Invalid {field}: {exc.errors()}") from exc


@app.post("/api/retouch/analyze", response_model=FaceAnalysisResponse)
async def analyze_face(image: UploadFile = File(...)) -> FaceAnalysisResponse:
    """Detect face landmarks in the uploaded image."""
    try:
        img = await _load_image(image)
        meta = pipeline.analyze(img)
        if not meta:
            raise HTTPException(status_code=422, detail="No usable face detected")
        return FaceAnalysisResponse(faceMeta=meta)
    except HTTPException:
        raise
    except Exception as exc:
        logger.error(f"Error analyzing face: {exc}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Face analysis failed: {str(exc)}") from exc


@app.post("/api/retouch/render", response_model=RetouchResponse)
async def render(
    image: UploadFile = File(...),
    config: str = Form(...),
    skinMask: Optional[UploadFile] = File(None),
    privacyMask: Optional[UploadFile] = File(None),
    liquifyDx: Optional[UploadFile] = File(None),
    liquifyDy: Optional[UploadFile] = File(None),
) -> RetouchResponse:
    """Render all edits at the resolution of the uploaded display image."""
    retouch = _parse(RetouchConfig, config, "config")
    try:
        img = await _load_image(image)
        h, w = img.shape[:2]
        buffers = await _load_buffers(w, h, skinMask, privacyMask, liquifyDx, liquifyDy)
        result = pipeline.render(img, retouch, buffers)
        return RetouchResponse(image=pipeline.encode_image(result), width=w, height=h)
    except HTTPException:
        raise
    except Exception as exc:
        logger.error(f"Error rendering: {exc}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Render failed: {str(exc)}") from exc


def _encode(result: np.ndarray, export_settings: ExportSettings) -> RetouchResponse:
    h, w = result.shape[:2]
    image = pipeline.encode_image(result, export_settings.format, export_settings.quality)
    return RetouchResponse(image=image, width=w, height=h)


def _resize_box(width: Optional[int], height: Optional[int]) -> Optional[Tuple[int, int]]:
    if width and height:
        return width, height
    return None


async def _load_export(
    image: UploadFile,
    request: str,
    skinMask: Optional[UploadFile],
    privacyMask: Optional[UploadFile],
    liquifyDx: Optional[UploadFile],
    liquifyDy: Optional[UploadFile],
) -> Tuple[np.ndarray, ExportRequest, RenderBuffers]:
    export_request = _parse(ExportRequest, request, "request")
    if export_request.displayWidth <= 0 or export_request.displayHeight <= 0:
        raise HTTPException(status_code=400, detail="Display size must be positive")
    original = await _load_image(image)
    if max(original.shape[:2]) > settings.export_max_edge:
        raise HTTPException(
            status_code=400,
            detail=f"Image exceeds export limit of {settings.export_max_edge}px",
        )
    buffers = await _load_buffers(
        export_request.displayWidth,
        export_request.displayHeight,
        skinMask,
        privacyMask,
        liquifyDx,
        liquifyDy,
    )
    return original, export_request, buffers


@app.post("/api/retouch/export", response_model=RetouchResponse)
async def export(
    image: UploadFile = File(...),
    request: str = Form(...),
    skinMask: Optional[UploadFile] = File(None),
    privacyMask: Optional[UploadFile] = File(None),
    liquifyDx: Optional[UploadFile] = File(None),
    liquifyDy: Optional[UploadFile] = File(None),
) -> RetouchResponse:
    """Replay display-resolution edits on the full-resolution original."""
    original, export_request, buffers = await _load_export(
        image, request, skinMask, privacyMask, liquifyDx, liquifyDy
    )
    try:
        result = pipeline.export(
            original,
            export_request.config,
            (export_request.displayWidth, export_request.displayHeight),
            buffers,
            _resize_box(export_request.resizeWidth, export_request.resizeHeight),
            export_request.exportSettings,
        )
        return _encode(result, export_request.exportSettings)
    except Exception as exc:
        logger.error(f"Error exporting: {exc}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Export failed: {str(exc)}") from exc


@app.post("/api/retouch/export/batch", response_model=BatchExportResponse)
async def export_batch(
    image: UploadFile = File(...),
    request: str = Form(...),
    skinMask: Optional[UploadFile] = File(None),
    privacyMask: Optional[UploadFile] = File(None),
    liquifyDx: Optional[UploadFile] = File(None),
    liquifyDy: Optional[UploadFile] = File(None),
) -> BatchExportResponse:
    """Full-resolution render cropped to each social preset."""
    original, export_request, buffers = await _load_export(
        image, request, skinMask, privacyMask, liquifyDx, liquifyDy
    )
    try:
        results = pipeline.batch_export(
            original,
            export_request.config,
            (export_request.displayWidth, export_request.displayHeight),
            buffers,
            export_request.exportSettings,
        )
        return BatchExportResponse(
            images={name: _encode(result, export_request.exportSettings) for name, result in results.items()}
        )
    except Exception as exc:
        logger.error(f"Error exporting presets: {exc}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Batch export failed: {str(exc)}") from exc


# Editor sessions: the display buffer, strokes and masks stay on the server and
# every render reuses the session's cached base.


def _session(session_id: str) -> EditorSession:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Unknown session")
    return session


def _render_session(session: EditorSession) -> RetouchResponse:
    try:
        result = session.render()
        return RetouchResponse(image=pipeline.encode_image(result), width=session.width, height=session.height)
    except Exception as exc:
        logger.error(f"Error rendering session: {exc}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Render failed: {str(exc)}") from exc


@app.post("/api/sessions", response_model=SessionResponse)
async def create_session(image: UploadFile = File(...)) -> SessionResponse:
    """Open an editing session and detect the face on its display buffer."""
    original = await _load_image(image)
    if max(original.shape[:2]) > settings.export_max_edge:
        raise HTTPException(
            status_code=400,
            detail=f"Image exceeds export limit of {settings.export_max_edge}px",
        )
    session_id, session = sessions.create(original, settings)
    landmarks = await session.detect_landmarks(pipeline.provider)
    h, w = original.shape[:2]
    logger.info(f"Opened session {session_id} ({w}x{h}, display {session.width}x{session.height})")
    return SessionResponse(
        sessionId=session_id,
        width=w,
        height=h,
        displayWidth=session.width,
        displayHeight=session.height,
        faceMeta=pipeline.provider.serialize(landmarks),
    )


@app.delete("/api/sessions/{session_id}")
async def close_session(session_id: str) -> dict[str, Any]:
    if not sessions.remove(session_id):
        raise HTTPException(status_code=404, detail="Unknown session")
    return {"status": "closed"}


@app.get("/api/sessions/{session_id}/render", response_model=RetouchResponse)
async def render_session(session_id: str) -> RetouchResponse:
    return _render_session(_session(session_id))


@app.put("/api/sessions/{session_id}/config", response_model=RetouchResponse)
async def update_session_config(session_id: str, config: RetouchConfig) -> RetouchResponse:
    session = _session(session_id)
    session.apply_config(config)
    return _render_session(session)


@app.post("/api/sessions/{session_id}/detect", response_model=FaceAnalysisResponse)
async def detect_session_face(session_id: str) -> FaceAnalysisResponse:
    session = _session(session_id)
    landmarks = await session.detect_landmarks(pipeline.provider)
    return FaceAnalysisResponse(faceMeta=pipeline.provider.serialize(landmarks))


@app.post("/api/sessions/{session_id}/liquify", response_model=RetouchResponse)
async def liquify_session(session_id: str, drag: LiquifyDragRequest) -> RetouchResponse:
    """Apply one drag of the liquify brush using the session's brush settings."""
    session = _session(session_id)
    for point in drag.points:
        session.liquify_stroke(point.x, point.y, point.dx, point.dy)
    return _render_session(session)


@app.post("/api/sessions/{session_id}/paint", response_model=RetouchResponse)
async def paint_session(session_id: str, paint: PaintRequest) -> RetouchResponse:
    session = _session(session_id)
    brush = session.paint_skin if paint.target == "skin" else session.paint_privacy
    for point in paint.points:
        brush(point.x, point.y, erase=paint.erase)
    return _render_session(session)


@app.post("/api/sessions/{session_id}/reset", response_model=RetouchResponse)
async def reset_session(session_id: str, reset: ResetRequest) -> RetouchResponse:
    session = _session(session_id)
    if reset.target == "liquify":
        session.reset_liquify()
    elif reset.target == "skin":
        session.reset_skin_mask()
    else:
        session.reset_privacy_mask()
    return _render_session(session)


@app.post("/api/sessions/{session_id}/export", response_model=RetouchResponse)
async def export_session(session_id: str, request: SessionExportRequest) -> RetouchResponse:
    session = _session(session_id)
    try:
        result = session.export(
            _resize_box(request.resizeWidth, request.resizeHeight),
            request.exportSettings,
        )
        return _encode(result, request.exportSettings)
    except Exception as exc:
        logger.error(f"Error exporting session: {exc}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Export failed: {str(exc)}") from exc


@app.post("/api/sessions/{session_id}/export/batch", response_model=BatchExportResponse)
async def export_session_batch(session_id: str, request: SessionExportRequest) -> BatchExportResponse:
    session = _session(session_id)
    try:
        results = session.batch_export(request.exportSettings)
        return BatchExportResponse(
            images={name: _encode(result, request.exportSettings) for name, result in results.items()}
        )
    except Exception as exc:
        logger.error(f"Error exporting session presets: {exc}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Batch export failed: {str(exc)}") from exc
