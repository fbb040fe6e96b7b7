"""MediaPipe FaceMesh landmark indices grouped by anatomical region.

"Left"/"right" are the subject's sides: the subject's right eye appears on
the image left for an upright, non-mirrored portrait.
"""
from __future__ import annotations

from typing import Iterable, List, Tuple

import mediapipe as mp

MIN_LANDMARKS = 400

CHIN = 152
FOREHEAD = 10
NOSE_CENTER = 1


def _indices_from_connections(connections: Iterable[Tuple[int, int]]) -> List[int]:
    unique = set()
    for a, b in connections:
        unique.add(a)
        unique.add(b)
    return sorted(unique)


FACE_OVAL: List[int] = _indices_from_connections(mp.solutions.face_mesh.FACEMESH_FACE_OVAL)

# Ordered along the contour: subject's left cheek, chin, subject's right cheek.
JAW: List[int] = [
    356, 454, 323, 361, 288, 397, 365, 379, 378, 400,
    377, 152, 148,
    176, 149, 150, 136, 172, 58, 132, 93, 234, 127,
]
JAW_LOWER: List[int] = [377, 400, 378, 379, 365, 397, 152, 148, 176, 149, 150]
FOREHEAD_TOP: List[int] = [10, 338, 297, 332, 109, 67, 103]
UPPER_OVAL: List[int] = [
    10, 338, 297, 332, 284, 251, 389, 356, 127, 162, 21, 54, 103, 67, 109,
]

LEFT_EYE: List[int] = [362, 382, 381, 380, 374, 373, 390, 249, 263, 466, 388, 387, 386, 385, 384, 398]
RIGHT_EYE: List[int] = [33, 7, 163, 144, 145, 153, 154, 155, 133, 173, 157, 158, 159, 160, 161, 246]
LEFT_EYE_CORNERS = (362, 263)  # inner, outer
RIGHT_EYE_CORNERS = (133, 33)
LEFT_UPPER_LID: List[int] = [384, 385, 386, 387, 388]
RIGHT_UPPER_LID: List[int] = [157, 158, 159, 160, 161]
LEFT_LOWER_LID: List[int] = [381, 380, 374, 373, 390]
RIGHT_LOWER_LID: List[int] = [154, 153, 145, 144, 163]

NOSE_TIP: List[int] = [4, 5, 1, 19, 94]
LEFT_NOSE_WING: List[int] = [358, 429, 420]
RIGHT_NOSE_WING: List[int] = [129, 209, 198]
NOSE_ROOT_SIDES: List[int] = [193, 417, 122, 351]
NOSE_BRIDGE_SIDES: List[int] = [196, 419, 3, 248]
NOSE_TIP_SIDES: List[int] = [45, 275, 220, 440]

UPPER_LIP_TOP: List[int] = [0, 267, 37, 39, 40, 270, 269]
LOWER_LIP_BOTTOM: List[int] = [17, 314, 84, 181, 91, 405, 321]
LIPS_OUTER: List[int] = [61, 146, 91, 181, 84, 17, 314, 405, 321, 375, 291, 267, 0, 37, 39, 40, 270, 269]
MOUTH_CORNERS: List[int] = [61, 291]
MOUTH_INNER_CORNERS: List[int] = [78, 308]
CUPIDS_BOW_PEAKS: List[int] = [37, 267]
CUPIDS_BOW_CENTER = 0

# Brow contours run head (near the nose) to tail.
LEFT_BROW_UPPER: List[int] = [336, 296, 334, 293, 300]
LEFT_BROW_LOWER: List[int] = [285, 295, 282, 283, 276]
RIGHT_BROW_UPPER: List[int] = [107, 66, 105, 63, 70]
RIGHT_BROW_LOWER: List[int] = [55, 65, 52, 53, 46]
LEFT_BROW_PEAK: List[int] = [334, 296]
RIGHT_BROW_PEAK: List[int] = [105, 66]

BROWS = (
    (LEFT_BROW_UPPER, LEFT_BROW_LOWER),
    (RIGHT_BROW_UPPER, RIGHT_BROW_LOWER),
)
EYES = (
    (LEFT_EYE, LEFT_EYE_CORNERS, LEFT_UPPER_LID, LEFT_LOWER_LID),
    (RIGHT_EYE, RIGHT_EYE_CORNERS, RIGHT_UPPER_LID, RIGHT_LOWER_LID),
)
