"""
Shared fixtures: a synthetic frontal face in MediaPipe FaceMesh index order.
"""

import math

import numpy as np
import pytest

from retoucher import regions as rg

NUM_LANDMARKS = 468

# Face oval in contour order, starting at the forehead and running clockwise
# on screen.
OVAL_CONTOUR = [
    10, 338, 297, 332, 284, 251, 389, 356, 454, 323, 361, 288,
    397, 365, 379, 378, 400, 377, 152, 148, 176, 149, 150, 136,
    172, 58, 132, 93, 234, 127, 162, 21, 54, 103, 67, 109,
]


def _face_layout():
    """Landmark positions in face units: r toward the subject's left, u up."""
    coords = {}

    for i, idx in enumerate(OVAL_CONTOUR):
        phi = 2 * math.pi * i / len(OVAL_CONTOUR)
        coords[idx] = (0.75 * math.sin(phi), math.cos(phi))

    # Eye loops run inner corner -> lower lid -> outer corner -> upper lid for
    # the left eye and outer -> lower -> inner -> upper for the right eye.
    for eye, center in ((rg.LEFT_EYE, 0.35), (rg.RIGHT_EYE, -0.35)):
        for k, idx in enumerate(eye):
            t = math.pi * k / 8
            coords[idx] = (center - 0.12 * math.cos(t), 0.25 - 0.05 * math.sin(t))

    for upper, lower, side in (
        (rg.LEFT_BROW_UPPER, rg.LEFT_BROW_LOWER, 1),
        (rg.RIGHT_BROW_UPPER, rg.RIGHT_BROW_LOWER, -1),
    ):
        for k, (top, bottom) in enumerate(zip(upper, lower)):
            r = side * (0.15 + 0.1 * k)
            coords[top] = (r, 0.45)
            coords[bottom] = (r, 0.40)

    coords.update({
        4: (0.0, -0.10), 5: (0.0, -0.05), 1: (0.0, -0.12), 19: (0.0, -0.16), 94: (0.0, -0.20),
        358: (0.10, -0.12), 429: (0.10, -0.08), 420: (0.10, -0.04),
        129: (-0.10, -0.12), 209: (-0.10, -0.08), 198: (-0.10, -0.04),
        193: (-0.06, 0.20), 417: (0.06, 0.20), 122: (-0.05, 0.15), 351: (0.05, 0.15),
        196: (-0.05, 0.05), 419: (0.05, 0.05), 3: (-0.04, 0.0), 248: (0.04, 0.0),
        45: (-0.06, -0.08), 275: (0.06, -0.08), 220: (-0.05, -0.04), 440: (0.05, -0.04),
        61: (-0.22, -0.45), 291: (0.22, -0.45), 78: (-0.18, -0.45), 308: (0.18, -0.45),
        0: (0.0, -0.38), 37: (-0.05, -0.37), 267: (0.05, -0.37), 39: (-0.10, -0.39),
        269: (0.10, -0.39), 40: (-0.15, -0.41), 270: (0.15, -0.41),
        17: (0.0, -0.55), 84: (-0.05, -0.55), 314: (0.05, -0.55), 181: (-0.10, -0.54),
        405: (0.10, -0.54), 91: (-0.15, -0.52), 321: (0.15, -0.52),
        146: (-0.19, -0.49), 375: (0.19, -0.49),
    })
    return coords


FACE_LAYOUT = _face_layout()


def make_face_landmarks(cx=100.0, cy=100.0, scale=60.0, angle=0.0, count=NUM_LANDMARKS):
    """Place the synthetic face in image space.

    ``angle`` rotates the face clockwise on screen (radians); unlisted
    landmarks sit at the face centre.
    """
    right = np.array([math.cos(angle), math.sin(angle)])
    up = np.array([math.sin(angle), -math.cos(angle)])
    center = np.array([cx, cy])
    pts = np.zeros((count, 3), dtype=np.float32)
    pts[:, :2] = center
    for idx, (r, u) in FACE_LAYOUT.items():
        if idx < count:
            pts[idx, :2] = center + scale * (r * right + u * up)
    return pts


@pytest.fixture
def face_landmarks():
    return make_face_landmarks()


@pytest.fixture
def gray_image():
    image = np.full((200, 200, 4), 128, dtype=np.uint8)
    image[..., 3] = 255
    return image


@pytest.fixture
def textured_image():
    rng = np.random.default_rng(0)
    image = rng.integers(0, 256, size=(200, 200, 4), dtype=np.uint8)
    image[..., 3] = 255
    return image
