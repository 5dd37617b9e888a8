from __future__ import annotations
import asyncio
import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from fitassess.common.errors import AdapterUnavailableError, NoActiveSessionError, SessionUnusableError
from fitassess.common.events import AssessmentType, EventType, SampleKind, SessionEvent
from fitassess.counter.config import CounterConfig
from fitassess.counter.jump import JumpMeter
from fitassess.counter.rep_counter import RepCounter, SessionResult, Snapshot, now_ms
from fitassess.counter.samples import Sample
from fitassess.counter.sources import SampleSource
from fitassess.data.badges import badge_for_score, feedback_for
from fitassess.data.db import ResultStore

logger = logging.getLogger(__name__)


@dataclass
class SessionStatus:
    session_id: str
    state: str
    count: int
    test_type: Optional[str] = None
    snapshot: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FinalSummary:
    result: SessionResult
    badge: str
    feedback: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {**self.result.to_dict(), "badge": self.badge, "feedback": list(self.feedback)}


class SessionManager:
    """
    Owns at most one counting session. Samples either arrive by push
    (API/websocket clients) or are pulled from a SampleSource on a fixed
    tick. Only one tick is processed at a time; ticks arriving while one is
    in flight are dropped, never queued.
    """

    def __init__(
        self,
        store: Optional[ResultStore] = None,
        clock: Callable[[], float] = now_ms,
        tick_ms: float = 100.0,
    ):
        self.store = store
        self.clock = clock
        self.tick_ms = tick_ms
        self.active_id: Optional[str] = None
        self.test_type: Optional[AssessmentType] = None
        self.user_id = "local"
        self.counter: Optional[RepCounter] = None
        self.jump: Optional[JumpMeter] = None
        self.source: Optional[SampleSource] = None
        self.last_summary: Optional[FinalSummary] = None
        self.last_snapshot: Optional[Dict[str, Any]] = None
        self.dropped_ticks = 0
        self._tick_lock = threading.Lock()
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="result-store")
        self._pending: List[Future] = []
        self._event_sink: Optional[Callable[[dict], None]] = None

    def set_event_sink(self, sink: Optional[Callable[[dict], None]]):
        self._event_sink = sink

    def _emit(self, type_: EventType, **payload):
        if self._event_sink is None:
            return
        ev = SessionEvent(type=type_, session_id=self.active_id or "", payload=payload)
        try:
            self._event_sink(ev.to_dict())
        except Exception:
            logger.exception("event sink failed for %s", type_.value)

    # ---- lifecycle ----------------------------------------------------------

    @property
    def active(self) -> bool:
        if self.counter is not None:
            return self.counter.active
        if self.jump is not None:
            return self.jump.active
        return False

    def start(
        self,
        test_type: AssessmentType = AssessmentType.SITUP,
        source: Optional[SampleSource] = None,
        kind: Optional[SampleKind] = None,
        config: Optional[CounterConfig] = None,
        fallback: Optional[SampleSource] = None,
        user_id: str = "local",
    ) -> str:
        """
        Start a session. For sit-ups either a pull `source` or a push `kind`
        is required; a failing source falls back to `fallback` when given,
        otherwise the session is reported unusable.
        """
        if self.active_id is not None:
            logger.info("stopping current session %s before starting a new one", self.active_id)
            self.stop()

        test_type = AssessmentType(test_type)
        now = self.clock()

        if test_type is AssessmentType.JUMP:
            jump = JumpMeter(now=now)
            counter = None
        else:
            if source is not None:
                source = self._ready_source(source, fallback)
                kind = source.kind
            elif kind is None:
                raise SessionUnusableError("a sample source or sample kind is required")
            counter = RepCounter(config, kind=SampleKind(kind), now=now)
            jump = None

        self.active_id = str(uuid.uuid4())
        self.test_type = test_type
        self.user_id = user_id
        self.counter = counter
        self.jump = jump
        self.source = source
        self.last_summary = None
        self.last_snapshot = self._current_snapshot()
        self.dropped_ticks = 0
        logger.info("session %s started: %s (%s)", self.active_id, test_type.value,
                    counter.kind.value if counter else "accelerometer")
        self._emit(EventType.SESSION_STARTED, test_type=test_type.value)
        return self.active_id

    def _ready_source(self, source: SampleSource, fallback: Optional[SampleSource]) -> SampleSource:
        try:
            source.ensure_ready()
            return source
        except AdapterUnavailableError as e:
            if fallback is None:
                raise SessionUnusableError(f"signal source unavailable: {e}") from e
            logger.warning("%s unavailable (%s); falling back to %s", type(source).__name__, e, type(fallback).__name__)
        try:
            fallback.ensure_ready()
        except AdapterUnavailableError as e:
            raise SessionUnusableError(f"no usable signal source: {e}") from e
        return fallback

    # ---- feeding samples ----------------------------------------------------

    def push(self, sample: Sample, now: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Feed one externally captured sample. Returns None when the tick was dropped."""
        if self.counter is None:
            raise NoActiveSessionError("no sit-up session is running")
        if not self._tick_lock.acquire(blocking=False):
            self._drop()
            return None
        try:
            ts = self.clock() if now is None else float(now)
            return self._apply(self.counter.update(sample, ts))
        finally:
            self._tick_lock.release()

    def push_jump(self, z_g: float, now: Optional[float] = None) -> Dict[str, Any]:
        if self.jump is None:
            raise NoActiveSessionError("no jump session is running")
        with self._tick_lock:
            ts = self.clock() if now is None else float(now)
            snap = self.jump.update(z_g, ts)
            self.last_snapshot = snap
            self._emit(EventType.SNAPSHOT, **snap)
            if not self.jump.active:
                self._finalize()
        return snap

    def tick(self, now: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Pull one sample from the session's source (or poll when it has none)."""
        return self._tick(self.counter, now)

    def _tick(self, counter: Optional[RepCounter], now: Optional[float] = None) -> Optional[Dict[str, Any]]:
        if counter is None:
            return None
        if not self._tick_lock.acquire(blocking=False):
            self._drop()
            return None
        try:
            if counter is not self.counter:
                # scheduled for a session that has since been replaced
                return None
            ts = self.clock() if now is None else float(now)
            sample = None
            if self.source is not None:
                try:
                    sample = self.source.next_sample(ts)
                except AdapterUnavailableError:
                    raise
                except Exception:
                    # a failed capture/inference is a dropped frame
                    logger.exception("sample source failed; treating tick as an empty frame")
            if sample is None:
                snap = counter.poll(ts)
            else:
                snap = counter.update(sample, ts)
            return self._apply(snap)
        finally:
            self._tick_lock.release()

    async def run(self, interval_s: Optional[float] = None):
        """Drive ticks on a fixed interval until this session ends or is replaced."""
        interval = (self.tick_ms / 1000.0) if interval_s is None else interval_s
        counter = self.counter
        pending: Optional[asyncio.Future] = None
        while counter is not None and counter is self.counter and counter.active:
            if pending is not None and not pending.done():
                self._drop()
            else:
                if pending is not None:
                    pending.result()
                pending = asyncio.ensure_future(asyncio.to_thread(self._tick, counter))
            await asyncio.sleep(interval)
        if pending is not None:
            await pending

    def _drop(self):
        self.dropped_ticks += 1
        logger.debug("tick dropped while previous tick in flight (%d total)", self.dropped_ticks)

    def _apply(self, snap: Snapshot) -> Dict[str, Any]:
        previous = self.last_snapshot or {}
        data = snap.to_dict()
        self.last_snapshot = data
        self._emit(EventType.SNAPSHOT, **data)
        if data["count"] > previous.get("count", 0):
            self._emit(EventType.REP, count=data["count"])
        if not snap.active and self.active_id is not None:
            self._emit(EventType.TERMINATED, status=data["status"], message=data["message"])
            self._finalize()
        return data

    # ---- stopping -------------------------------------------------------------

    def stop(self, now: Optional[float] = None) -> Optional[FinalSummary]:
        """
        Stop the running session. Safe to call repeatedly; returns the last
        summary. Waits for a tick that is in flight.
        """
        with self._tick_lock:
            if self.active_id is None:
                return self.last_summary
            ts = self.clock() if now is None else float(now)
            if self.counter is not None:
                self.last_snapshot = self.counter.stop(ts).to_dict()
            elif self.jump is not None:
                self.last_snapshot = self.jump.stop(ts)
            return self._finalize()

    def _finalize(self) -> Optional[FinalSummary]:
        if self.active_id is None:
            return self.last_summary
        if self.counter is not None:
            result = self.counter.result(self.test_type or AssessmentType.SITUP, user_id=self.user_id)
            confidence = self.counter.state.confidence_score if self.counter.kind is SampleKind.INTENSITY else None
        else:
            result = self.jump.result(user_id=self.user_id)
            confidence = None
        summary = FinalSummary(
            result=result,
            badge=badge_for_score(result.rep_count).label,
            feedback=feedback_for(result.form_score, result.rep_count, confidence),
        )
        self._save(result)
        if self.source is not None:
            try:
                self.source.close()
            except Exception:
                logger.exception("failed to close sample source")
        logger.info("session %s finished: %d reps, %s", self.active_id, result.rep_count, result.status.value)
        self._emit(EventType.SESSION_STOPPED, **summary.to_dict())
        self.last_summary = summary
        self.active_id = None
        self.source = None
        return summary

    def _save(self, result: SessionResult):
        if self.store is None:
            return
        fut = self._writer.submit(self.store.append, result)
        fut.add_done_callback(_log_save_failure)
        self._pending = [f for f in self._pending if not f.done()] + [fut]

    def flush(self, timeout: Optional[float] = None):
        """Wait for outstanding result writes."""
        pending, self._pending = self._pending, []
        if pending:
            wait(pending, timeout=timeout)

    def close(self):
        self.stop()
        self._writer.shutdown(wait=True)

    # ---- status -------------------------------------------------------------

    def _current_snapshot(self) -> Optional[Dict[str, Any]]:
        if self.counter is not None:
            return self.counter.snapshot(self.clock()).to_dict()
        if self.jump is not None:
            return self.jump.snapshot(self.clock())
        return None

    def status(self) -> SessionStatus:
        if self.active_id is not None and self.counter is not None:
            # a UI poll also runs the liveness checks, unless a tick is
            # in flight; then the last snapshot is reported as is
            if self._tick_lock.acquire(blocking=False):
                try:
                    if self.active_id is not None:
                        self._apply(self.counter.poll(self.clock()))
                finally:
                    self._tick_lock.release()
        elif self.active_id is not None:
            self.last_snapshot = self._current_snapshot()
        snap = self.last_snapshot or {}
        if self.active_id is not None:
            state = "running"
        elif snap:
            state = "stopped"
        else:
            state = "idle"
        count = snap.get("count", snap.get("score", 0))
        return SessionStatus(
            session_id=self.active_id or "",
            state=state,
            count=int(count or 0),
            test_type=self.test_type.value if self.test_type else None,
            snapshot=snap,
        )


def _log_save_failure(fut: Future):
    exc = fut.exception()
    if exc is not None:
        logger.error("failed to store session result", exc_info=exc)
