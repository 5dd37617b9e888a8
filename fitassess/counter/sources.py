from __future__ import annotations
import logging
from typing import Iterable, Iterator, List, Optional, Protocol, Tuple

import numpy as np

from fitassess.common.errors import AdapterUnavailableError
from fitassess.common.events import SampleKind
from fitassess.counter.samples import IntensitySample, Landmark, PoseSample, Sample

logger = logging.getLogger(__name__)


class SampleSource(Protocol):
    kind: SampleKind

    def ensure_ready(self) -> None: ...

    def next_sample(self, now: float) -> Optional[Sample]: ...

    def close(self) -> None: ...


class SyntheticIntensitySource:
    """Demo-mode source: pseudo-random intensity/quality pairs."""
    kind = SampleKind.INTENSITY

    def __init__(self, rng: Optional[np.random.Generator] = None, seed: Optional[int] = None):
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def ensure_ready(self) -> None:
        return None

    def next_sample(self, now: float) -> Optional[Sample]:
        intensity = float(self.rng.random() * 0.8 + 0.2)
        quality = float(self.rng.random() * 0.4 + 0.6)
        return IntensitySample(intensity=intensity, quality=quality)

    def close(self) -> None:
        return None


class ScriptedSource:
    """
    Replays a fixed list of samples (one per tick). Returns None once the
    script is exhausted so the counter's liveness checks can finish the run.
    """

    def __init__(self, kind: SampleKind, samples: Iterable[Optional[Sample]]):
        self.kind = SampleKind(kind)
        self._items: List[Optional[Sample]] = list(samples)
        self._it: Iterator[Optional[Sample]] = iter(self._items)

    def ensure_ready(self) -> None:
        return None

    def next_sample(self, now: float) -> Optional[Sample]:
        return next(self._it, None)

    def close(self) -> None:
        self._it = iter(())


class MediaPipePoseSource:
    """
    Camera + MediaPipe BlazePose. Each call captures one frame and runs the
    estimator synchronously, so callers must not overlap calls (the session
    manager drops ticks while one is in flight).
    """
    kind = SampleKind.POSE

    def __init__(self, camera_index: int = 0, min_detection_confidence: float = 0.5, min_tracking_confidence: float = 0.5, flip_horizontal: bool = True):
        self.camera_index = camera_index
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self.flip_horizontal = flip_horizontal
        self.cap = None
        self.pose = None
        self._cv2 = None
        self._names: Tuple[str, ...] = ()

    def ensure_ready(self) -> None:
        if self.pose is not None:
            return
        try:
            import cv2
            import mediapipe as mp
        except ImportError as e:
            raise AdapterUnavailableError(f"pose backend not installed: {e}") from e

        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            cap.release()
            raise AdapterUnavailableError(f"Webcam not available (index {self.camera_index})")

        mp_pose = mp.solutions.pose
        self._cv2 = cv2
        self.cap = cap
        self.pose = mp_pose.Pose(
            min_detection_confidence=self.min_detection_confidence,
            min_tracking_confidence=self.min_tracking_confidence,
        )
        self._names = tuple(lm.name.lower() for lm in mp_pose.PoseLandmark)
        logger.info("MediaPipe pose source ready (camera %d)", self.camera_index)

    def next_sample(self, now: float) -> Optional[Sample]:
        if self.pose is None:
            raise AdapterUnavailableError("pose source used before ensure_ready()")
        ok, frame = self.cap.read()
        if not ok:
            return None
        if self.flip_horizontal:
            frame = self._cv2.flip(frame, 1)
        image = self._cv2.cvtColor(frame, self._cv2.COLOR_BGR2RGB)
        res = self.pose.process(image)
        if not res.pose_landmarks:
            return None
        return landmarks_to_sample(res.pose_landmarks.landmark, self._names)

    def close(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
        if self.pose is not None:
            self.pose.close()
            self.pose = None


def landmarks_to_sample(landmarks, names: Tuple[str, ...]) -> PoseSample:
    """Map an indexed landmark list (x, y, visibility attributes) onto names."""
    lms = {}
    for name, lm in zip(names, landmarks):
        vis = getattr(lm, "visibility", 1.0)
        lms[name] = Landmark(float(lm.x), float(lm.y), float(np.clip(vis, 0.0, 1.0)))
    # BlazePose has no whole-pose score; mean visibility stands in for it
    score = float(np.mean([lm.confidence for lm in lms.values()])) if lms else 0.0
    return PoseSample(landmarks=lms, score=score)
