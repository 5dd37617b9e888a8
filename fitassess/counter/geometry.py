from __future__ import annotations
import math
from typing import Optional, Tuple

from fitassess.counter.samples import Landmark, PoseSample

Point = Tuple[float, float]

FACE_LANDMARKS = ("nose", "left_eye", "right_eye")
TORSO_LANDMARKS = ("left_shoulder", "right_shoulder", "left_hip", "right_hip")

# Utility math

def midpoint(a: Landmark, b: Landmark) -> Point:
    return ((a.x + b.x) / 2.0, (a.y + b.y) / 2.0)


def angle_from_vertical(top: Point, bottom: Point) -> float:
    """Angle in degrees between the bottom->top vector and the vertical axis, folded to [0, 90]."""
    dx = top[0] - bottom[0]
    dy = top[1] - bottom[1]
    ang = abs(math.degrees(math.atan2(dx, dy)))
    if ang > 90.0:
        ang = 180.0 - ang
    return ang


def torso_angle_deg(sample: PoseSample) -> Optional[float]:
    """Torso angle from shoulder/hip midpoints; None when a landmark is missing."""
    ls, rs, lh, rh = (sample.get(n) for n in TORSO_LANDMARKS)
    if ls is None or rs is None or lh is None or rh is None:
        return None
    return angle_from_vertical(midpoint(ls, rs), midpoint(lh, rh))


def face_score(sample: PoseSample) -> float:
    return max((lm.confidence for lm in (sample.get(n) for n in FACE_LANDMARKS) if lm is not None), default=0.0)


def face_visible(sample: PoseSample, threshold: float) -> bool:
    return face_score(sample) >= threshold
