from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Iterable, Mapping, Optional, Union

from fitassess.common.events import SampleKind


@dataclass(frozen=True)
class Landmark:
    x: float
    y: float
    confidence: float = 1.0


@dataclass(frozen=True)
class IntensitySample:
    """Simulated movement intensity/quality pair (demo mode)."""
    kind: ClassVar[SampleKind] = SampleKind.INTENSITY
    intensity: float
    quality: float = 1.0


@dataclass(frozen=True)
class OrientationSample:
    """Single-axis inclination from the device orientation sensor."""
    kind: ClassVar[SampleKind] = SampleKind.ORIENTATION
    inclination_deg: float
    subject_visible: bool = True


@dataclass(frozen=True)
class PoseSample:
    """Named body landmarks from a pose estimator."""
    kind: ClassVar[SampleKind] = SampleKind.POSE
    landmarks: Mapping[str, Landmark] = field(default_factory=dict)
    score: Optional[float] = None

    def get(self, name: str) -> Optional[Landmark]:
        return self.landmarks.get(name)

    @classmethod
    def from_keypoints(cls, keypoints: Iterable[Dict[str, Any]], score: Optional[float] = None) -> "PoseSample":
        """
        Build a sample from estimator keypoints, e.g.
        [{"name": "nose", "x": 0.5, "y": 0.2, "score": 0.9}, ...].
        Accepts score/confidence/visibility as the confidence key; unnamed
        entries are skipped.
        """
        lms: Dict[str, Landmark] = {}
        for kp in keypoints or ():
            name = kp.get("name") or kp.get("part")
            if not name:
                continue
            conf = kp.get("score", kp.get("confidence", kp.get("visibility", 1.0)))
            lms[str(name)] = Landmark(float(kp["x"]), float(kp["y"]), float(conf if conf is not None else 0.0))
        return cls(landmarks=lms, score=score)


Sample = Union[IntensitySample, OrientationSample, PoseSample]


def orientation_from_accelerometer(x: float, y: float, z: float, subject_visible: bool = True) -> OrientationSample:
    """
    Convert an accelerometer reading (g units) to a torso inclination.
    Phone flat on the chest while lying down reads |z| ~ 1 (90 deg from
    vertical); sitting upright the z component drops towards 0.
    """
    norm = math.sqrt(x * x + y * y + z * z)
    if norm <= 1e-9:
        return OrientationSample(inclination_deg=0.0, subject_visible=subject_visible)
    ratio = max(0.0, min(1.0, abs(z) / norm))
    return OrientationSample(inclination_deg=math.degrees(math.asin(ratio)), subject_visible=subject_visible)
