# fitassess/runtime/cli.py
from __future__ import annotations
import argparse
import logging
import sys
import time
from typing import List, Optional

from fitassess.common.errors import FitAssessError
from fitassess.common.events import AssessmentType, SampleKind
from fitassess.common.logging_setup import configure_logging
from fitassess.common.settings import load_settings
from fitassess.counter.config import get_preset
from fitassess.counter.samples import OrientationSample
from fitassess.counter.session import SessionManager
from fitassess.counter.sources import MediaPipePoseSource, ScriptedSource, SyntheticIntensitySource
from fitassess.data.badges import badge_for_score
from fitassess.data.db import ResultStore

logger = logging.getLogger(__name__)


class _VirtualClock:
    """Advances a fixed step per read so scripted demos run instantly."""

    def __init__(self, step_ms: float):
        self.t = 0.0
        self.step_ms = step_ms

    def __call__(self) -> float:
        now = self.t
        self.t += self.step_ms
        return now


def _parse_angles(text: str) -> List[float]:
    return [float(a) for a in text.split(",") if a.strip()]


def cmd_demo(args, settings) -> int:
    store = ResultStore(args.db or settings.db_path)
    tick_ms = args.tick_ms or settings.tick_ms
    clock = _VirtualClock(tick_ms) if args.fast else None
    mgr = SessionManager(store=store, tick_ms=tick_ms, **({"clock": clock} if clock else {}))
    cfg = get_preset(args.preset)

    if args.angles:
        source = ScriptedSource(SampleKind.ORIENTATION, [OrientationSample(a) for a in _parse_angles(args.angles)])
        fallback = None
    elif args.camera:
        source = MediaPipePoseSource(camera_index=settings.camera_index)
        fallback = SyntheticIntensitySource(seed=args.seed)
    else:
        source = SyntheticIntensitySource(seed=args.seed)
        fallback = None

    try:
        mgr.start(AssessmentType.SITUP, source=source, config=cfg, fallback=fallback)
    except FitAssessError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print("Counting... press Ctrl+C to finish.", flush=True)
    last_count = -1
    deadline = None if args.max_seconds is None else time.monotonic() + args.max_seconds
    try:
        while mgr.active:
            snap = mgr.tick()
            if snap and snap["count"] != last_count:
                last_count = snap["count"]
                print(f"reps={snap['count']} phase={snap['phase']} {snap['message']}", flush=True)
            if deadline is not None and time.monotonic() > deadline:
                break
            if not args.fast:
                time.sleep(tick_ms / 1000.0)
    except KeyboardInterrupt:
        print("\nFinishing…", flush=True)

    summary = mgr.stop()
    mgr.flush(timeout=2.0)
    mgr.close()
    store.close()
    if summary is None:
        return 1
    r = summary.result
    print(f"\n{r.rep_count} reps ({r.status.value}) in {r.duration_ms / 1000.0:.1f}s - {summary.badge}")
    if r.message:
        print(f"reason: {r.message}")
    for line in summary.feedback:
        print(f"  * {line}")
    return 0


def cmd_results(args, settings) -> int:
    store = ResultStore(args.db or settings.db_path)
    items = store.leaderboard(limit=args.limit) if args.leaderboard else store.list(limit=args.limit)
    store.close()
    if not items:
        print("No results yet.")
        return 0
    for i, r in enumerate(items, start=1):
        when = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(r.recorded_at))
        prefix = f"#{i:<3}" if args.leaderboard else ""
        print(f"{prefix}{r.test_type.value:<7} {r.rep_count:>4}  {badge_for_score(r.rep_count).label:<7} {r.status.value:<8} {when}")
    return 0


def cmd_serve(args, settings) -> int:
    import uvicorn

    uvicorn.run("fitassess.runtime.server:app", host=args.host, port=args.port, log_level=settings.log_level.lower())
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fitassess", description="Fitness assessment rep counter")
    p.add_argument("--db", default=None, help="results database path")
    sub = p.add_subparsers(dest="command", required=True)

    d = sub.add_parser("demo", help="run a counting session")
    d.add_argument("--angles", help="comma-separated torso angles to replay, e.g. 80,30,80,30")
    d.add_argument("--camera", action="store_true", help="use the webcam pose source")
    d.add_argument("--seed", type=int, default=None)
    d.add_argument("--preset", default="sit_up")
    d.add_argument("--tick-ms", type=int, default=None)
    d.add_argument("--max-seconds", type=float, default=None)
    d.add_argument("--fast", action="store_true", help="virtual clock, no sleeping")
    d.set_defaults(func=cmd_demo)

    r = sub.add_parser("results", help="show result history")
    r.add_argument("--limit", type=int, default=20)
    r.set_defaults(func=cmd_results, leaderboard=False)

    lb = sub.add_parser("leaderboard", help="show best results")
    lb.add_argument("--limit", type=int, default=5)
    lb.set_defaults(func=cmd_results, leaderboard=True)

    s = sub.add_parser("serve", help="run the HTTP/websocket server")
    s.add_argument("--host", default="127.0.0.1")
    s.add_argument("--port", type=int, default=8000)
    s.set_defaults(func=cmd_serve)
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    configure_logging(settings.log_level)
    return args.func(args, settings)


if __name__ == "__main__":
    sys.exit(main())
