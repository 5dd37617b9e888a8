from __future__ import annotations
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Set, Union

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from fitassess.common.errors import InvalidConfigError, NoActiveSessionError, SampleKindError, SessionUnusableError
from fitassess.common.events import AssessmentType, SampleKind
from fitassess.common.logging_setup import configure_logging
from fitassess.common.settings import Settings, load_settings
from fitassess.counter.config import CounterConfig, get_preset
from fitassess.counter.rep_counter import now_ms
from fitassess.counter.samples import IntensitySample, OrientationSample, PoseSample, Sample, orientation_from_accelerometer
from fitassess.counter.session import SessionManager
from fitassess.counter.sources import MediaPipePoseSource, SyntheticIntensitySource
from fitassess.data.badges import badge_for_score
from fitassess.data.db import ResultStore

logger = logging.getLogger(__name__)

# ---- request models ---------------------------------------------------------


class IntensityIn(BaseModel):
    kind: Literal["intensity"]
    intensity: float = Field(..., ge=0.0, le=1.0)
    quality: float = Field(1.0, ge=0.0, le=1.0)

    def to_sample(self) -> Sample:
        return IntensitySample(intensity=self.intensity, quality=self.quality)


class OrientationIn(BaseModel):
    kind: Literal["orientation"]
    inclination_deg: float = Field(..., ge=0.0, le=90.0)
    subject_visible: bool = True

    def to_sample(self) -> Sample:
        return OrientationSample(inclination_deg=self.inclination_deg, subject_visible=self.subject_visible)


class AccelerometerIn(BaseModel):
    kind: Literal["accelerometer"]
    x: float
    y: float
    z: float
    subject_visible: bool = True

    def to_sample(self) -> Sample:
        return orientation_from_accelerometer(self.x, self.y, self.z, subject_visible=self.subject_visible)


class KeypointIn(BaseModel):
    name: str
    x: float
    y: float
    score: float = Field(1.0, ge=0.0, le=1.0)


class PoseIn(BaseModel):
    kind: Literal["pose"]
    keypoints: List[KeypointIn] = Field(default_factory=list)
    score: Optional[float] = None

    def to_sample(self) -> Sample:
        return PoseSample.from_keypoints([kp.model_dump() for kp in self.keypoints], score=self.score)


SampleIn = Annotated[Union[IntensityIn, OrientationIn, AccelerometerIn, PoseIn], Field(discriminator="kind")]


class SampleEnvelope(BaseModel):
    sample: SampleIn
    ts: Optional[float] = Field(None, description="Session clock in ms; server clock when omitted")


_ENVELOPE = TypeAdapter(SampleEnvelope)

Source = Literal["pose", "orientation", "intensity", "synthetic", "camera"]

_PUSH_KINDS = {
    "pose": SampleKind.POSE,
    "orientation": SampleKind.ORIENTATION,
    "intensity": SampleKind.INTENSITY,
}


class StartRequest(BaseModel):
    test_type: AssessmentType = AssessmentType.SITUP
    source: Source = "orientation"
    preset: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    allow_fallback: bool = False
    seed: Optional[int] = None
    user_id: str = "local"


class JumpIn(BaseModel):
    z: float
    ts: Optional[float] = None


# ---- application context ------------------------------------------------------


@dataclass
class AppContext:
    settings: Settings
    store: ResultStore
    manager: SessionManager
    clients: Set[WebSocket] = field(default_factory=set)
    loop: Optional[asyncio.AbstractEventLoop] = None
    runner: Optional[asyncio.Task] = None
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue)

    async def broadcast(self, obj: dict):
        dead = []
        for ws in list(self.clients):
            try:
                await ws.send_text(json.dumps(obj))
            except Exception:
                dead.append(ws)
        for d in dead:
            self.clients.discard(d)

    async def pump(self):
        # one consumer keeps every client's event order identical
        while True:
            ev = await self.outbox.get()
            await self.broadcast(ev)

    def sink(self, ev: dict):
        # events may come from the tick worker thread
        if self.loop is None or not self.clients:
            return
        self.loop.call_soon_threadsafe(self.outbox.put_nowait, ev)

    async def retire_runner(self):
        """Stop the pull loop of the current session and wait for it."""
        runner, self.runner = self.runner, None
        if runner is None:
            return
        if not runner.done():
            await asyncio.to_thread(self.manager.stop)
        try:
            await runner
        except Exception:
            logger.exception("session run loop failed")


def _build_config(req: StartRequest) -> CounterConfig:
    base = get_preset(req.preset) if req.preset else CounterConfig()
    if req.config:
        unknown = set(req.config) - set(CounterConfig.__dataclass_fields__)
        if unknown:
            raise InvalidConfigError(f"unknown config fields: {', '.join(sorted(unknown))}")
        base = base.with_overrides(**req.config)
    return base


def create_app(settings: Optional[Settings] = None, clock: Callable[[], float] = now_ms) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        store = ResultStore(settings.db_path)
        manager = SessionManager(store=store, clock=clock, tick_ms=settings.tick_ms)
        ctx = AppContext(settings=settings, store=store, manager=manager, loop=asyncio.get_running_loop())
        manager.set_event_sink(ctx.sink)
        app.state.ctx = ctx
        pump = asyncio.create_task(ctx.pump())
        logger.info("fitassess server ready (db=%s)", settings.db_path)
        try:
            yield
        finally:
            await ctx.retire_runner()
            await asyncio.to_thread(manager.close)
            pump.cancel()
            store.close()

    app = FastAPI(title="fitassess", lifespan=lifespan)

    @app.exception_handler(NoActiveSessionError)
    async def _no_session(request: Request, exc: NoActiveSessionError):
        return JSONResponse({"detail": str(exc)}, status_code=409)

    @app.exception_handler(InvalidConfigError)
    async def _bad_config(request: Request, exc: InvalidConfigError):
        return JSONResponse({"detail": str(exc)}, status_code=422)

    @app.exception_handler(SampleKindError)
    async def _wrong_kind(request: Request, exc: SampleKindError):
        return JSONResponse({"detail": str(exc)}, status_code=422)

    @app.exception_handler(SessionUnusableError)
    async def _unusable(request: Request, exc: SessionUnusableError):
        return JSONResponse({"detail": str(exc)}, status_code=503)

    def ctx_of(request: Request) -> AppContext:
        return request.app.state.ctx

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.post("/sessions/start")
    async def start(req: StartRequest, request: Request):
        ctx = ctx_of(request)
        m = ctx.manager
        cfg = _build_config(req)
        await ctx.retire_runner()
        if req.test_type is AssessmentType.JUMP:
            sid = m.start(AssessmentType.JUMP, user_id=req.user_id)
            return {"session_id": sid, "test_type": req.test_type.value, "kind": "accelerometer"}

        if req.source in _PUSH_KINDS:
            sid = m.start(req.test_type, kind=_PUSH_KINDS[req.source], config=cfg, user_id=req.user_id)
        else:
            if req.source == "camera":
                source = MediaPipePoseSource(camera_index=ctx.settings.camera_index)
                fallback = SyntheticIntensitySource(seed=req.seed) if req.allow_fallback else None
            else:
                source = SyntheticIntensitySource(seed=req.seed)
                fallback = None
            # blocking model/camera init stays off the event loop
            sid = await asyncio.to_thread(m.start, req.test_type, source, None, cfg, fallback, req.user_id)
            ctx.runner = asyncio.create_task(m.run())
        kind = m.counter.kind.value if m.counter else None
        return {"session_id": sid, "test_type": req.test_type.value, "kind": kind}

    @app.post("/sessions/samples")
    async def push_sample(env: SampleEnvelope, request: Request):
        m = ctx_of(request).manager
        snap = m.push(env.sample.to_sample(), env.ts)
        if snap is None:
            return {"dropped": True}
        return snap

    @app.post("/sessions/jump")
    async def push_jump(body: JumpIn, request: Request):
        return ctx_of(request).manager.push_jump(body.z, body.ts)

    @app.get("/sessions/current")
    async def current(request: Request):
        st = await asyncio.to_thread(ctx_of(request).manager.status)
        return {
            "session_id": st.session_id or None,
            "state": st.state,
            "count": st.count,
            "test_type": st.test_type,
            "snapshot": st.snapshot,
        }

    @app.post("/sessions/stop")
    async def stop(request: Request):
        m = ctx_of(request).manager
        summary = await asyncio.to_thread(m.stop)
        if summary is None:
            raise NoActiveSessionError("no session has been started")
        return summary.to_dict()

    @app.get("/results")
    async def results(request: Request, limit: int = Query(50, ge=1, le=500)):
        items = ctx_of(request).store.list(limit=limit)
        return [{**r.to_dict(), "badge": badge_for_score(r.rep_count).label} for r in items]

    @app.get("/results/leaderboard")
    async def leaderboard(request: Request, limit: int = Query(5, ge=1, le=100)):
        items = ctx_of(request).store.leaderboard(limit=limit)
        return [{"rank": i + 1, **r.to_dict()} for i, r in enumerate(items)]

    @app.websocket("/ws/samples")
    async def ws_samples(ws: WebSocket):
        ctx: AppContext = ws.app.state.ctx
        await ws.accept()
        ctx.clients.add(ws)
        logger.info("ws: client connected (%d total)", len(ctx.clients))
        try:
            while True:
                raw = await ws.receive_text()
                try:
                    env = _ENVELOPE.validate_json(raw)
                    snap = ctx.manager.push(env.sample.to_sample(), env.ts)
                except ValidationError as e:
                    await ws.send_text(json.dumps({"type": "error", "detail": e.errors(include_url=False)}, default=str))
                    continue
                except (NoActiveSessionError, SampleKindError) as e:
                    await ws.send_text(json.dumps({"type": "error", "detail": str(e)}))
                    continue
                # accepted samples come back to every client as snapshot events
                if snap is None:
                    await ws.send_text(json.dumps({"type": "dropped"}))
        except WebSocketDisconnect:
            pass
        finally:
            ctx.clients.discard(ws)
            logger.info("ws: client closed")

    return app


app = create_app()
