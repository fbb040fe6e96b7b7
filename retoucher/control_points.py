from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from . import regions as rg
from .frame import FaceFrame, build_face_frame
from .models import BodyAdjustments, BodyAnchors, FaceAdjustments

# Jaw points whose smoothing offset is below this fraction of the face width
# are left alone (dead-zone).
JAWLINE_DEAD_ZONE = 0.002

CHEST_SIGMA = 0.13
THIGH_SIGMA = 0.11


@dataclass(frozen=True)
class ControlPoint:
    x: float
    y: float
    dx: float
    dy: float
    sigma: float


Generator = Callable[[FaceFrame, np.ndarray, float], List[ControlPoint]]


@dataclass(frozen=True)
class WarpRule:
    trigger: str
    scale: float
    generate: Generator


FACE_RULES: List[WarpRule] = []


def face_rule(trigger: str, scale: float = 50.0) -> Callable[[Generator], Generator]:
    """Register a control point generator for one face slider.

    ``scale`` maps the raw slider value to roughly [-1, 1]: 100 for
    magnitude-only sliders, 50 for signed ones.
    """

    def register(fn: Generator) -> Generator:
        FACE_RULES.append(WarpRule(trigger=trigger, scale=scale, generate=fn))
        return fn

    return register


def _control_point(
    frame: FaceFrame,
    anchor: np.ndarray,
    h: float,
    v: float,
    sigma: float,
) -> ControlPoint:
    disp = frame.to_image_vector(h, v)
    return ControlPoint(
        x=float(anchor[0]),
        y=float(anchor[1]),
        dx=float(disp[0]),
        dy=float(disp[1]),
        sigma=float(sigma),
    )


def _present(landmarks: np.ndarray, indices: Iterable[int]) -> List[int]:
    """Indices the detector actually returned; missing points are skipped."""
    return [i for i in indices if 0 <= i < len(landmarks)]


def _frame_coords(frame: FaceFrame, landmarks: np.ndarray, idx: int) -> Tuple[float, float]:
    p = landmarks[idx]
    return frame.project_right(p), frame.project_up(p)


def _centroid(frame: FaceFrame, landmarks: np.ndarray, indices: Sequence[int]) -> Tuple[float, float]:
    coords = [_frame_coords(frame, landmarks, i) for i in _present(landmarks, indices)]
    if not coords:
        return 0.0, 0.0
    return (
        sum(c[0] for c in coords) / len(coords),
        sum(c[1] for c in coords) / len(coords),
    )


def _emit(
    frame: FaceFrame,
    landmarks: np.ndarray,
    indices: Iterable[int],
    offset: Callable[[float, float], Tuple[float, float]],
    sigma: float,
) -> List[ControlPoint]:
    """One control point per landmark; ``offset(r, u)`` returns the frame displacement."""
    cps: List[ControlPoint] = []
    for i in _present(landmarks, indices):
        r, u = _frame_coords(frame, landmarks, i)
        h, v = offset(r, u)
        cps.append(_control_point(frame, landmarks[i], h, v, sigma))
    return cps


def _outward(value: float) -> float:
    return float(np.sign(value))


# ---------------------------------------------------------------- contour


@face_rule("smallFace", scale=100)
def _small_face(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    return _emit(frame, lm, rg.JAW, lambda r, u: (-r * s * 0.35, -u * s * 0.1), frame.width * 0.3)


@face_rule("slimJaw", scale=100)
def _slim_jaw(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    return _emit(frame, lm, rg.JAW_LOWER, lambda r, u: (-r * s * 0.28, 0.0), frame.width * 0.22)


@face_rule("chinLength")
def _chin_length(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.height * 0.04 * s
    return _emit(frame, lm, [rg.CHIN], lambda r, u: (0.0, -delta), frame.width * 0.15)


@face_rule("jawlineSmooth", scale=100)
def _jawline_smooth(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    # Each jaw point is drawn toward the chord between its neighbours.
    sigma = frame.width * 0.08
    dead_zone = frame.width * JAWLINE_DEAD_ZONE
    jaw = _present(lm, rg.JAW)
    coords = [_frame_coords(frame, lm, i) for i in jaw]
    cps: List[ControlPoint] = []
    for k in range(1, len(coords) - 1):
        r, u = coords[k]
        ref_r = (coords[k - 1][0] + coords[k + 1][0]) * 0.5
        ref_u = (coords[k - 1][1] + coords[k + 1][1]) * 0.5
        h = (ref_r - r) * s * 0.5
        v = (ref_u - u) * s * 0.5
        if math.hypot(h, v) < dead_zone:
            continue
        cps.append(_control_point(frame, lm[jaw[k]], h, v, sigma))
    return cps


@face_rule("midFaceShorten", scale=100)
def _mid_face_shorten(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    lift = frame.height * 0.03 * s
    sigma = frame.width * 0.12
    cps = _emit(frame, lm, rg.UPPER_LIP_TOP + rg.MOUTH_CORNERS, lambda r, u: (0.0, lift), sigma)
    cps += _emit(frame, lm, rg.NOSE_TIP, lambda r, u: (0.0, lift * 0.6), sigma)
    return cps


@face_rule("headSize")
def _head_size(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    return _emit(frame, lm, rg.UPPER_OVAL, lambda r, u: (r * s * 0.12, u * s * 0.12), frame.width * 0.3)


@face_rule("hairlineHeight")
def _hairline_height(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.height * 0.04 * s
    return _emit(frame, lm, rg.FOREHEAD_TOP, lambda r, u: (0.0, delta), frame.width * 0.2)


# ---------------------------------------------------------------- eyes


@face_rule("eyeSize", scale=100)
def _eye_size(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    factor = s * 0.22
    cps: List[ControlPoint] = []
    for eye, _, _, _ in rg.EYES:
        er, eu = _centroid(frame, lm, eye)
        cps += _emit(frame, lm, eye, lambda r, u: ((r - er) * factor, (u - eu) * factor), frame.width * 0.09)
    return cps


@face_rule("eyeWidth")
def _eye_width(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.width * 0.025 * s
    cps: List[ControlPoint] = []
    for eye, corners, _, _ in rg.EYES:
        er, _ = _centroid(frame, lm, eye)
        cps += _emit(frame, lm, corners, lambda r, u: (_outward(r - er) * delta, 0.0), frame.width * 0.08)
    return cps


@face_rule("eyeHeight")
def _eye_height(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.height * 0.02 * s
    return _emit(frame, lm, rg.LEFT_EYE + rg.RIGHT_EYE, lambda r, u: (0.0, delta), frame.width * 0.08)


@face_rule("eyeVertical")
def _eye_vertical(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    cps: List[ControlPoint] = []
    for eye, _, _, _ in rg.EYES:
        _, eu = _centroid(frame, lm, eye)
        cps += _emit(frame, lm, eye, lambda r, u: (0.0, (u - eu) * s * 0.3), frame.width * 0.07)
    return cps


@face_rule("eyeSpacing")
def _eye_spacing(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.width * 0.02 * s
    cps: List[ControlPoint] = []
    for eye, _, _, _ in rg.EYES:
        side = _outward(_centroid(frame, lm, eye)[0])
        cps += _emit(frame, lm, eye, lambda r, u: (side * delta, 0.0), frame.width * 0.1)
    return cps


@face_rule("eyeUpperBulge", scale=100)
def _eye_upper_bulge(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.height * 0.008 * s
    lids = rg.LEFT_UPPER_LID + rg.RIGHT_UPPER_LID
    return _emit(frame, lm, lids, lambda r, u: (0.0, delta), frame.width * 0.05)


@face_rule("eyeLowerExpand", scale=100)
def _eye_lower_expand(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.height * 0.01 * s
    lids = rg.LEFT_LOWER_LID + rg.RIGHT_LOWER_LID
    return _emit(frame, lm, lids, lambda r, u: (0.0, -delta), frame.width * 0.05)


@face_rule("eyeTilt")
def _eye_tilt(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.height * 0.015 * s
    sigma = frame.width * 0.06
    cps: List[ControlPoint] = []
    for _, (inner, outer), _, _ in rg.EYES:
        cps += _emit(frame, lm, [outer], lambda r, u: (0.0, delta), sigma)
        cps += _emit(frame, lm, [inner], lambda r, u: (0.0, -delta * 0.5), sigma)
    return cps


# ---------------------------------------------------------------- nose


@face_rule("noseSlim", scale=100)
def _nose_slim(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    nose_r, _ = _frame_coords(frame, lm, rg.NOSE_CENTER)
    wings = rg.LEFT_NOSE_WING + rg.RIGHT_NOSE_WING
    return _emit(frame, lm, wings, lambda r, u: ((nose_r - r) * s * 0.45, 0.0), frame.width * 0.07)


@face_rule("noseTip")
def _nose_tip(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.height * 0.025 * s
    return _emit(frame, lm, rg.NOSE_TIP, lambda r, u: (0.0, delta), frame.width * 0.08)


def _nose_width(
    frame: FaceFrame,
    lm: np.ndarray,
    indices: Sequence[int],
    amount: float,
) -> List[ControlPoint]:
    nose_r, _ = _frame_coords(frame, lm, rg.NOSE_CENTER)
    delta = frame.width * amount
    return _emit(frame, lm, indices, lambda r, u: (_outward(r - nose_r) * delta, 0.0), frame.width * 0.05)


@face_rule("noseRootWidth")
def _nose_root_width(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    return _nose_width(frame, lm, rg.NOSE_ROOT_SIDES, 0.012 * s)


@face_rule("noseBridgeWidth")
def _nose_bridge_width(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    return _nose_width(frame, lm, rg.NOSE_BRIDGE_SIDES, 0.012 * s)


@face_rule("noseTipWidth")
def _nose_tip_width(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    return _nose_width(frame, lm, rg.NOSE_TIP_SIDES, 0.015 * s)


# ---------------------------------------------------------------- mouth


@face_rule("lipThickness")
def _lip_thickness(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.height * 0.018 * s * 0.6
    sigma = frame.width * 0.1
    cps = _emit(frame, lm, rg.UPPER_LIP_TOP, lambda r, u: (0.0, delta), sigma)
    cps += _emit(frame, lm, rg.LOWER_LIP_BOTTOM, lambda r, u: (0.0, -delta), sigma)
    return cps


@face_rule("mouthCorner")
def _mouth_corner(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.height * 0.015 * s
    return _emit(frame, lm, rg.MOUTH_CORNERS, lambda r, u: (0.0, delta), frame.width * 0.06)


@face_rule("mouthWidth")
def _mouth_width(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    mr, _ = _centroid(frame, lm, rg.LIPS_OUTER)
    delta = frame.width * 0.02 * s
    sigma = frame.width * 0.08
    cps = _emit(frame, lm, rg.MOUTH_CORNERS, lambda r, u: (_outward(r - mr) * delta, 0.0), sigma)
    cps += _emit(frame, lm, rg.MOUTH_INNER_CORNERS, lambda r, u: (_outward(r - mr) * delta * 0.8, 0.0), sigma)
    return cps


@face_rule("mouthHeight")
def _mouth_height(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.height * 0.02 * s
    return _emit(frame, lm, rg.LIPS_OUTER, lambda r, u: (0.0, delta), frame.width * 0.1)


@face_rule("mouthShift")
def _mouth_shift(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.width * 0.02 * s
    return _emit(frame, lm, rg.LIPS_OUTER, lambda r, u: (delta, 0.0), frame.width * 0.1)


@face_rule("mLip", scale=100)
def _m_lip(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    sigma = frame.width * 0.04
    cps = _emit(frame, lm, rg.CUPIDS_BOW_PEAKS, lambda r, u: (0.0, frame.height * 0.008 * s), sigma)
    cps += _emit(frame, lm, [rg.CUPIDS_BOW_CENTER], lambda r, u: (0.0, -frame.height * 0.006 * s), sigma)
    return cps


# ---------------------------------------------------------------- brows


def _brow_points(upper: Sequence[int], lower: Sequence[int]) -> Tuple[List[int], List[int]]:
    """Head and tail landmarks of one brow."""
    return [upper[0], lower[0]], [upper[-1], lower[-1]]


@face_rule("eyebrowHeight")
def _eyebrow_height(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.height * 0.02 * s
    cps: List[ControlPoint] = []
    for upper, lower in rg.BROWS:
        cps += _emit(frame, lm, upper + lower, lambda r, u: (0.0, delta), frame.width * 0.08)
    return cps


@face_rule("eyebrowThickness")
def _eyebrow_thickness(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.height * 0.006 * s
    sigma = frame.width * 0.05
    cps: List[ControlPoint] = []
    for upper, lower in rg.BROWS:
        cps += _emit(frame, lm, upper, lambda r, u: (0.0, delta), sigma)
        cps += _emit(frame, lm, lower, lambda r, u: (0.0, -delta), sigma)
    return cps


def _brow_extend(
    frame: FaceFrame,
    lm: np.ndarray,
    head_amount: float,
    tail_amount: float,
) -> List[ControlPoint]:
    sigma = frame.width * 0.05
    cps: List[ControlPoint] = []
    for upper, lower in rg.BROWS:
        side = _outward(_centroid(frame, lm, upper + lower)[0])
        head, tail = _brow_points(upper, lower)
        if tail_amount:
            shift = side * frame.width * tail_amount
            cps += _emit(frame, lm, tail, lambda r, u: (shift, 0.0), sigma)
        if head_amount:
            shift = -side * frame.width * head_amount
            cps += _emit(frame, lm, head, lambda r, u: (shift, 0.0), sigma)
    return cps


@face_rule("eyebrowLength")
def _eyebrow_length(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    return _brow_extend(frame, lm, 0.01 * s, 0.01 * s)


@face_rule("eyebrowTailLength")
def _eyebrow_tail_length(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    return _brow_extend(frame, lm, 0.0, 0.015 * s)


@face_rule("eyebrowHeadLength")
def _eyebrow_head_length(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    return _brow_extend(frame, lm, 0.012 * s, 0.0)


@face_rule("eyebrowTilt")
def _eyebrow_tilt(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.height * 0.012 * s
    sigma = frame.width * 0.06
    cps: List[ControlPoint] = []
    for upper, lower in rg.BROWS:
        head, tail = _brow_points(upper, lower)
        cps += _emit(frame, lm, tail, lambda r, u: (0.0, delta), sigma)
        cps += _emit(frame, lm, head, lambda r, u: (0.0, -delta * 0.5), sigma)
    return cps


@face_rule("eyebrowPeakHeight")
def _eyebrow_peak_height(frame: FaceFrame, lm: np.ndarray, s: float) -> List[ControlPoint]:
    delta = frame.height * 0.01 * s
    peaks = rg.LEFT_BROW_PEAK + rg.RIGHT_BROW_PEAK
    return _emit(frame, lm, peaks, lambda r, u: (0.0, delta), frame.width * 0.05)


# ---------------------------------------------------------------- builders

SliderSource = Union[FaceAdjustments, Mapping[str, float]]


def _slider(adjustments: SliderSource, key: str) -> float:
    if isinstance(adjustments, Mapping):
        return float(adjustments.get(key, 0) or 0)
    return float(getattr(adjustments, key, 0) or 0)


def usable_landmarks(landmarks: Optional[np.ndarray]) -> Optional[np.ndarray]:
    if landmarks is None:
        return None
    pts = np.asarray(landmarks, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[0] < rg.MIN_LANDMARKS or pts.shape[1] < 2:
        return None
    return pts[:, :2]


def build_face_control_points(
    landmarks: Optional[np.ndarray],
    adjustments: SliderSource,
) -> List[ControlPoint]:
    pts = usable_landmarks(landmarks)
    if pts is None:
        return []
    active = [(rule, _slider(adjustments, rule.trigger)) for rule in FACE_RULES]
    active = [(rule, value) for rule, value in active if value != 0]
    if not active:
        return []
    frame = build_face_frame(pts)
    if frame is None:
        return []
    cps: List[ControlPoint] = []
    for rule, value in active:
        cps.extend(rule.generate(frame, pts, value / rule.scale))
    return cps


@dataclass(frozen=True)
class RingGeometry:
    count: int = 12
    radius: float = 0.45
    push: float = 0.22
    pin: float = 0.4


DEFAULT_RING = RingGeometry()


def anchor_frame(cx: float, cy: float, extent: float) -> FaceFrame:
    """Axis-aligned frame centred on a user-placed anchor."""
    return FaceFrame(
        up=np.array([0.0, -1.0]),
        right=np.array([1.0, 0.0]),
        center=np.array([float(cx), float(cy)]),
        width=float(extent),
        height=float(extent),
    )


def build_ring_control_points(
    cx: float,
    cy: float,
    size: float,
    sigma: float,
    ring: RingGeometry = DEFAULT_RING,
) -> List[ControlPoint]:
    """Expand (size > 0) or contract (size < 0) the region around an anchor."""
    if size == 0:
        return []
    strength = size / 50.0
    frame = anchor_frame(cx, cy, sigma)
    cps: List[ControlPoint] = []
    for i in range(ring.count):
        angle = i / ring.count * math.pi * 2
        ch, cv_ = math.cos(angle), math.sin(angle)
        anchor = frame.to_image_point(ch * sigma * ring.radius, cv_ * sigma * ring.radius)
        push = sigma * ring.push * strength
        cps.append(_control_point(frame, anchor, ch * push, cv_ * push, sigma))
    cps.append(ControlPoint(x=float(cx), y=float(cy), dx=0.0, dy=0.0, sigma=sigma * ring.pin))
    return cps


def _body_regions(
    anchors: BodyAnchors,
    adjustments: BodyAdjustments,
) -> List[Tuple[float, float, float, float]]:
    regions = []
    if anchors.chest is not None:
        regions.append((anchors.chest.x, anchors.chest.y, adjustments.chestSize, CHEST_SIGMA))
    if anchors.leftThigh is not None:
        total = adjustments.thighSize + adjustments.leftThighSize
        regions.append((anchors.leftThigh.x, anchors.leftThigh.y, total, THIGH_SIGMA))
    if anchors.rightThigh is not None:
        total = adjustments.thighSize + adjustments.rightThighSize
        regions.append((anchors.rightThigh.x, anchors.rightThigh.y, total, THIGH_SIGMA))
    return regions


def has_body_adjustment(anchors: BodyAnchors, adjustments: BodyAdjustments) -> bool:
    return any(size != 0 for _, _, size, _ in _body_regions(anchors, adjustments))


def build_body_control_points(
    anchors: BodyAnchors,
    adjustments: BodyAdjustments,
    canvas_width: float,
) -> List[ControlPoint]:
    cps: List[ControlPoint] = []
    for x, y, size, sigma_ratio in _body_regions(anchors, adjustments):
        cps.extend(build_ring_control_points(x, y, size, canvas_width * sigma_ratio))
    return cps
