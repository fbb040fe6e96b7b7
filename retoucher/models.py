from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

LiquifyMode = Literal["push", "pull", "restore", "expand", "shrink"]

FilterPreset = Literal[
    "none",
    "clear",
    "soft",
    "film",
    "vivid",
    "matte",
    "warm",
    "cool",
    "bw",
    "portrait",
]

WatermarkPosition = Literal["topLeft", "topRight", "bottomLeft", "bottomRight", "center"]
ExportFormat = Literal["png", "jpeg", "webp"]
ExportPreset = Literal["twitter", "fanclub", "instagram"]


class PointModel(BaseModel):
    x: float
    y: float


class Landmark(BaseModel):
    x: float
    y: float
    z: float = 0


class ToneAdjustments(BaseModel):
    brightness: float = Field(0, description="-100 to 100")
    contrast: float = Field(0, description="-100 to 100")
    saturation: float = Field(0, description="-100 to 100")
    warmth: float = Field(0, description="-100 to 100")
    exposure: float = Field(0, description="-2 to 2 EV")
    shadows: float = Field(0, description="-100 to 100")
    highlights: float = Field(0, description="-100 to 100")
    clarity: float = Field(0, description="0 to 100")
    sharpness: float = Field(0, description="0 to 100")
    vignette: float = Field(0, description="0 to 100")


class FaceAdjustments(BaseModel):
    # contour
    smallFace: float = 0
    slimJaw: float = 0
    chinLength: float = 0
    jawlineSmooth: float = 0
    midFaceShorten: float = 0
    headSize: float = 0
    hairlineHeight: float = 0
    # eyes
    eyeSize: float = 0
    eyeWidth: float = 0
    eyeHeight: float = 0
    eyeVertical: float = 0
    eyeSpacing: float = 0
    eyeUpperBulge: float = 0
    eyeLowerExpand: float = 0
    eyeTilt: float = 0
    # nose
    noseSlim: float = 0
    noseTip: float = 0
    noseRootWidth: float = 0
    noseBridgeWidth: float = 0
    noseTipWidth: float = 0
    # mouth
    lipThickness: float = 0
    mouthCorner: float = 0
    mouthWidth: float = 0
    mouthHeight: float = 0
    mouthShift: float = 0
    mLip: float = 0
    # brows
    eyebrowHeight: float = 0
    eyebrowThickness: float = 0
    eyebrowLength: float = 0
    eyebrowTailLength: float = 0
    eyebrowHeadLength: float = 0
    eyebrowTilt: float = 0
    eyebrowPeakHeight: float = 0


class BodyAnchors(BaseModel):
    chest: Optional[PointModel] = None
    leftThigh: Optional[PointModel] = None
    rightThigh: Optional[PointModel] = None


class BodyAdjustments(BaseModel):
    chestSize: float = Field(0, description="-50 to 50")
    thighSize: float = Field(0, description="-50 to 50")
    leftThighSize: float = Field(0, description="-50 to 50")
    rightThighSize: float = Field(0, description="-50 to 50")


class SkinSettings(BaseModel):
    smoothness: float = Field(50, description="0 to 100")
    skinBrightness: float = Field(0, description="0 to 100")
    brushSize: float = Field(60, description="10 to 200")


class LiquifySettings(BaseModel):
    size: float = Field(80, description="brush radius, 20 to 300")
    strength: float = Field(50, description="1 to 100")
    mode: LiquifyMode = "push"
    texturePreservation: float = Field(0, description="0 = plain warp, 100 = pattern kept")


class LiquifyStroke(BaseModel):
    x: float
    y: float
    dx: float = 0
    dy: float = 0
    radius: float = 80
    strength: float = 50
    mode: LiquifyMode = "push"


class RetouchConfig(BaseModel):
    """Everything a render needs besides the pixel buffers."""

    adjustments: ToneAdjustments = ToneAdjustments()
    faceAdjustments: FaceAdjustments = FaceAdjustments()
    bodyAdjustments: BodyAdjustments = BodyAdjustments()
    bodyAnchors: BodyAnchors = BodyAnchors()
    skinSettings: SkinSettings = SkinSettings()
    liquifySettings: LiquifySettings = LiquifySettings()
    activeFilter: FilterPreset = "none"
    landmarks: Optional[List[Landmark]] = None


class ExportSettings(BaseModel):
    format: ExportFormat = "png"
    quality: float = Field(1.0, description="0.1 to 1.0, jpeg/webp only")
    watermarkEnabled: bool = False
    watermarkText: str = ""
    watermarkOpacity: float = Field(40, description="0 to 100")
    watermarkPosition: WatermarkPosition = "bottomRight"
    watermarkSize: int = Field(18, description="text height in px, 8 to 72")


class ExportRequest(BaseModel):
    config: RetouchConfig = RetouchConfig()
    displayWidth: int
    displayHeight: int
    resizeWidth: Optional[int] = None
    resizeHeight: Optional[int] = None
    exportSettings: ExportSettings = ExportSettings()


class FaceMeta(BaseModel):
    bbox: Optional[List[int]] = None  # [x, y, w, h]
    landmarks: Optional[List[Landmark]] = None


class RetouchResponse(BaseModel):
    image: str
    width: int
    height: int


class FaceAnalysisResponse(BaseModel):
    faceMeta: Optional[FaceMeta] = None


class BatchExportResponse(BaseModel):
    images: Dict[str, RetouchResponse]


# Session API


class BrushPoint(BaseModel):
    x: float
    y: float
    dx: float = 0
    dy: float = 0


class LiquifyDragRequest(BaseModel):
    """Brush dabs of one drag, in display coordinates."""

    points: List[BrushPoint]


class PaintRequest(BaseModel):
    target: Literal["skin", "privacy"]
    points: List[PointModel]
    erase: bool = False


class ResetRequest(BaseModel):
    target: Literal["liquify", "skin", "privacy"]


class SessionExportRequest(BaseModel):
    resizeWidth: Optional[int] = None
    resizeHeight: Optional[int] = None
    exportSettings: ExportSettings = ExportSettings()


class SessionResponse(BaseModel):
    sessionId: str
    width: int
    height: int
    displayWidth: int
    displayHeight: int
    faceMeta: Optional[FaceMeta] = None
