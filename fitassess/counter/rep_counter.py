"""
Repetition counter for sit-up style tests.

A single finite-state machine ingests one sample per tick and keeps
phase, count, liveness timestamps and a validity status. Angles are torso
angles from vertical (0 = sitting upright, 90 = lying flat):

    DOWN --(angle <= up_threshold)--> UP      count += 1
    UP   --(angle >= down_threshold)--> DOWN

The first angle reading of a session only establishes the starting phase.
Intensity samples bypass the phase machine and count on a trailing
average instead, at most one rep per min_rep_interval_ms.

Liveness/attention checks run after every tick, visibility first:
  * subject not seen for max_no_face_ms (or too rarely inside the
    face window)  -> inactive, INVALID
  * no motion for max_no_move_ms                 -> inactive, VALID
"""

from __future__ import annotations
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional, Tuple

from fitassess.common.errors import SampleKindError
from fitassess.common.events import AssessmentType, Phase, SampleKind, Status
from fitassess.counter.config import CounterConfig
from fitassess.counter.geometry import face_visible, torso_angle_deg
from fitassess.counter.samples import IntensitySample, OrientationSample, PoseSample, Sample

logger = logging.getLogger(__name__)

MSG_SUBJECT_LOST = "subject not visible"
MSG_INACTIVE = "inactive too long"

_INTENSITY_HISTORY = 10
_FORM_SCORE_START = 85.0
_CONFIDENCE_CAP = 95.0


def now_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(frozen=True)
class Snapshot:
    phase: Phase
    count: int
    status: Status
    message: str
    active: bool
    started_at: float
    stopped_at: Optional[float]
    duration_ms: float
    form_score: Optional[float] = None
    debug: Dict[str, Optional[float]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "count": self.count,
            "status": self.status.value,
            "message": self.message,
            "active": self.active,
            "started_at": self.started_at,
            "stopped_at": self.stopped_at,
            "duration_ms": self.duration_ms,
            "form_score": self.form_score,
            "debug": dict(self.debug),
        }


@dataclass(frozen=True)
class SessionResult:
    test_type: AssessmentType
    rep_count: int
    status: Status
    duration_ms: float
    started_at: float
    finished_at: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str = "local"
    form_score: Optional[float] = None
    message: str = ""
    recorded_at: float = field(default_factory=time.time)  # wall clock, for history display

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "test_type": self.test_type.value,
            "rep_count": self.rep_count,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "form_score": self.form_score,
            "message": self.message,
            "recorded_at": self.recorded_at,
        }


@dataclass
class CounterState:
    started_at: float
    last_motion_at: float
    last_subject_visible_at: float
    phase: Phase = Phase.DOWN
    count: int = 0
    status: Status = Status.VALID
    active: bool = True
    message: str = ""
    last_angle: Optional[float] = None
    stopped_at: Optional[float] = None
    form_score: Optional[float] = None
    confidence_score: float = 0.0
    last_rep_at: Optional[float] = None


class RepCounter:
    """One counting session. Not re-entrant: feed it from a single loop."""

    def __init__(self, config: Optional[CounterConfig] = None, kind: SampleKind = SampleKind.POSE, now: Optional[float] = None):
        self.cfg = config or CounterConfig()
        self.kind = SampleKind(kind)
        ts = now_ms() if now is None else float(now)
        self.state = CounterState(started_at=ts, last_motion_at=ts, last_subject_visible_at=ts)
        if self.kind is SampleKind.INTENSITY:
            self.state.form_score = _FORM_SCORE_START
        self._phase_seeded = False
        self._last_visible = True
        self._face_history: Deque[Tuple[float, bool]] = deque()
        self._intensity: Deque[Tuple[float, float]] = deque(maxlen=_INTENSITY_HISTORY)

    # ---- public API -------------------------------------------------------

    @property
    def active(self) -> bool:
        return self.state.active

    @property
    def count(self) -> int:
        return self.state.count

    def update(self, sample: Sample, now: Optional[float] = None) -> Snapshot:
        if not self.state.active:
            return self.snapshot()
        if sample.kind is not self.kind:
            raise SampleKindError(f"counter configured for {self.kind.value} samples, got {sample.kind.value}")
        ts = now_ms() if now is None else float(now)

        if isinstance(sample, IntensitySample):
            visible = self._ingest_intensity(sample, ts)
        else:
            angle = self._extract_angle(sample)
            if angle is not None:
                self._track_motion(angle, ts)
                self._advance_phase(angle)
            else:
                logger.debug("no usable torso angle at %.0f ms; phase/count skipped", ts)
            visible = self._subject_visible(sample)

        self._mark_visibility(visible, ts)
        self._check_termination(ts)
        return self.snapshot(ts)

    def poll(self, now: Optional[float] = None) -> Snapshot:
        """Tick without a sample: only the liveness/attention checks run."""
        if not self.state.active:
            return self.snapshot()
        ts = now_ms() if now is None else float(now)
        if self.kind is SampleKind.POSE:
            visible = False  # nothing was seen this tick
        elif self.kind is SampleKind.ORIENTATION:
            visible = self._last_visible
        else:
            visible = True
        self._mark_visibility(visible, ts)
        self._check_termination(ts)
        return self.snapshot(ts)

    def stop(self, now: Optional[float] = None) -> Snapshot:
        if self.state.active:
            self._terminate(now_ms() if now is None else float(now))
        return self.snapshot()

    def snapshot(self, now: Optional[float] = None) -> Snapshot:
        s = self.state
        if s.stopped_at is not None:
            ref = s.stopped_at
        else:
            ref = now_ms() if now is None else float(now)
        return Snapshot(
            phase=s.phase,
            count=s.count,
            status=s.status,
            message=s.message,
            active=s.active,
            started_at=s.started_at,
            stopped_at=s.stopped_at,
            duration_ms=ref - s.started_at,
            form_score=round(s.form_score, 2) if s.form_score is not None else None,
            debug={
                "last_angle": s.last_angle,
                "last_subject_visible_ago_ms": ref - s.last_subject_visible_at,
                "last_motion_ago_ms": ref - s.last_motion_at,
            },
        )

    def result(self, test_type: AssessmentType = AssessmentType.SITUP, user_id: str = "local") -> SessionResult:
        s = self.state
        if s.active or s.stopped_at is None:
            raise RuntimeError("result() is only available once the counter has stopped")
        return SessionResult(
            test_type=AssessmentType(test_type),
            rep_count=s.count,
            status=s.status,
            duration_ms=s.stopped_at - s.started_at,
            started_at=s.started_at,
            finished_at=s.stopped_at,
            user_id=user_id,
            form_score=round(s.form_score, 2) if s.form_score is not None else None,
            message=s.message,
        )

    # ---- signal extraction -----------------------------------------------

    def _extract_angle(self, sample: Sample) -> Optional[float]:
        if isinstance(sample, OrientationSample):
            return max(0.0, min(90.0, float(sample.inclination_deg)))
        if isinstance(sample, PoseSample):
            if sample.score is not None and sample.score < self.cfg.min_pose_score:
                return None
            return torso_angle_deg(sample)
        return None

    def _subject_visible(self, sample: Sample) -> bool:
        if isinstance(sample, PoseSample):
            return face_visible(sample, self.cfg.face_score_threshold)
        if isinstance(sample, OrientationSample):
            return bool(sample.subject_visible)
        return True

    # ---- phase machine ----------------------------------------------------

    def _track_motion(self, angle: float, ts: float):
        s = self.state
        if s.last_angle is not None and abs(angle - s.last_angle) >= self.cfg.min_delta_to_move_deg:
            s.last_motion_at = ts
        s.last_angle = angle

    def _advance_phase(self, angle: float):
        s = self.state
        if not self._phase_seeded:
            self._phase_seeded = True
            if angle <= self.cfg.up_threshold_deg:
                s.phase = Phase.UP
            return
        if s.phase is Phase.DOWN and angle <= self.cfg.up_threshold_deg:
            s.phase = Phase.UP
            s.count += 1
            s.message = f"Rep {s.count} completed"
            logger.debug("rep %d at %.1f deg", s.count, angle)
        elif s.phase is Phase.UP and angle >= self.cfg.down_threshold_deg:
            s.phase = Phase.DOWN

    def _ingest_intensity(self, sample: IntensitySample, ts: float) -> bool:
        s = self.state
        intensity = max(0.0, min(1.0, float(sample.intensity)))
        quality = max(0.0, min(1.0, float(sample.quality)))
        self._intensity.append((intensity, quality))
        if intensity >= self.cfg.movement_threshold:
            s.last_motion_at = ts

        if len(self._intensity) >= 2:
            recent = list(self._intensity)[-self.cfg.intensity_window:]
            avg_intensity = sum(i for i, _ in recent) / len(recent)
            gap_ok = s.last_rep_at is None or ts - s.last_rep_at >= self.cfg.min_rep_interval_ms
            if avg_intensity > self.cfg.movement_threshold and gap_ok:
                s.count += 1
                s.last_rep_at = ts
                s.message = f"Rep {s.count} completed"

        # form score drifts towards 70..95 depending on recent quality
        recent_q = list(self._intensity)[-3:]
        avg_quality = sum(q for _, q in recent_q) / len(recent_q)
        target = 70.0 + avg_quality * 25.0
        s.form_score = (s.form_score if s.form_score is not None else _FORM_SCORE_START) * 0.9 + target * 0.1
        s.confidence_score = min(_CONFIDENCE_CAP, s.confidence_score + 2.0)
        return True

    # ---- liveness / attention ---------------------------------------------

    def _mark_visibility(self, visible: bool, ts: float):
        self._last_visible = visible
        if visible:
            self.state.last_subject_visible_at = ts
        if self.cfg.face_window_ms is not None:
            self._face_history.append((ts, visible))
            cutoff = ts - self.cfg.face_window_ms
            while self._face_history and self._face_history[0][0] < cutoff:
                self._face_history.popleft()

    def _visible_rate(self, ts: float) -> Optional[float]:
        # only judged once the session has lasted a full window
        if self.cfg.face_window_ms is None or not self._face_history:
            return None
        if ts - self.state.started_at < self.cfg.face_window_ms:
            return None
        seen = sum(1 for _, v in self._face_history if v)
        return seen / len(self._face_history)

    def _check_termination(self, ts: float):
        s = self.state
        rate = self._visible_rate(ts)
        if ts - s.last_subject_visible_at > self.cfg.max_no_face_ms or (
            rate is not None and rate < self.cfg.face_min_visible_rate
        ):
            s.status = Status.INVALID
            s.message = MSG_SUBJECT_LOST
            self._terminate(ts)
            logger.info("session invalidated: subject not visible (count=%d)", s.count)
            return
        if ts - s.last_motion_at > self.cfg.max_no_move_ms:
            s.message = MSG_INACTIVE
            self._terminate(ts)
            logger.info("session ended: inactive for %.0f ms (count=%d)", ts - s.last_motion_at, s.count)

    def _terminate(self, ts: float):
        self.state.active = False
        self.state.stopped_at = ts


def create_counter(config: Optional[CounterConfig] = None, kind: SampleKind = SampleKind.POSE, now: Optional[float] = None) -> RepCounter:
    return RepCounter(config, kind=kind, now=now)
