from __future__ import annotations
import math

from fitassess.counter.samples import Landmark, PoseSample

HIP = (0.5, 0.8)
TORSO_LEN = 0.3


def pose_at(angle_deg: float, face: float = 0.9, hips: bool = True) -> PoseSample:
    """Synthetic BlazePose-style sample with the torso tilted angle_deg from vertical."""
    a = math.radians(angle_deg)
    sx = HIP[0] + math.sin(a) * TORSO_LEN
    sy = HIP[1] - math.cos(a) * TORSO_LEN
    lms = {
        "nose": Landmark(sx, sy - 0.1, face),
        "left_eye": Landmark(sx - 0.02, sy - 0.11, face * 0.9),
        "right_eye": Landmark(sx + 0.02, sy - 0.11, face * 0.9),
        "left_shoulder": Landmark(sx - 0.05, sy, 0.9),
        "right_shoulder": Landmark(sx + 0.05, sy, 0.9),
    }
    if hips:
        lms["left_hip"] = Landmark(HIP[0] - 0.05, HIP[1], 0.9)
        lms["right_hip"] = Landmark(HIP[0] + 0.05, HIP[1], 0.9)
    return PoseSample(landmarks=lms)


class FakeClock:
    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t
