from __future__ import annotations
from typing import Any, Dict, Optional

from fitassess.common.events import AssessmentType, Status
from fitassess.counter.rep_counter import SessionResult, now_ms


class JumpMeter:
    """
    Vertical-jump estimate from the accelerometer z axis (g units). Tracks
    the peak |z| over a fixed capture window; score ~ (peak - 1g) * 30.
    """

    def __init__(self, max_duration_ms: float = 5000.0, now: Optional[float] = None):
        self.max_duration_ms = max_duration_ms
        self.started_at = now_ms() if now is None else float(now)
        self.stopped_at: Optional[float] = None
        self.peak_g = 0.0

    @property
    def active(self) -> bool:
        return self.stopped_at is None

    @property
    def score(self) -> int:
        return max(0, round((self.peak_g - 1.0) * 30))

    def update(self, z_g: float, now: Optional[float] = None) -> Dict[str, Any]:
        if not self.active:
            return self.snapshot()
        ts = now_ms() if now is None else float(now)
        g = abs(float(z_g))
        if g > self.peak_g:
            self.peak_g = g
        if ts - self.started_at > self.max_duration_ms:
            self.stopped_at = ts
        return self.snapshot(ts)

    def stop(self, now: Optional[float] = None) -> Dict[str, Any]:
        if self.active:
            self.stopped_at = now_ms() if now is None else float(now)
        return self.snapshot()

    def snapshot(self, now: Optional[float] = None) -> Dict[str, Any]:
        ref = self.stopped_at if self.stopped_at is not None else (now_ms() if now is None else float(now))
        return {
            "active": self.active,
            "peak_g": round(self.peak_g, 3),
            "score": self.score,
            "started_at": self.started_at,
            "stopped_at": self.stopped_at,
            "duration_ms": ref - self.started_at,
        }

    def result(self, user_id: str = "local") -> SessionResult:
        if self.stopped_at is None:
            raise RuntimeError("result() is only available once the meter has stopped")
        return SessionResult(
            test_type=AssessmentType.JUMP,
            rep_count=self.score,
            status=Status.VALID,
            duration_ms=self.stopped_at - self.started_at,
            started_at=self.started_at,
            finished_at=self.stopped_at,
            user_id=user_id,
            message=f"peak {self.peak_g:.2f} g",
        )
