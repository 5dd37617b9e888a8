from __future__ import annotations

from fitassess.common.events import AssessmentType, Status
from fitassess.counter.jump import JumpMeter


def test_jump_meter_tracks_peak_and_scores():
    m = JumpMeter(max_duration_ms=5000, now=0)
    for t, z in [(50, 1.0), (100, -2.0), (150, 1.5)]:
        m.update(z, now=t)
    assert m.peak_g == 2.0
    assert m.score == 30
    assert m.active


def test_jump_meter_stops_after_capture_window():
    m = JumpMeter(max_duration_ms=1000, now=0)
    m.update(1.2, now=500)
    snap = m.update(1.8, now=1001)
    assert not snap["active"]
    assert snap["stopped_at"] == 1001
    # frozen afterwards
    assert m.update(3.0, now=1200) == snap
    r = m.result()
    assert r.test_type is AssessmentType.JUMP
    assert r.rep_count == 24
    assert r.status is Status.VALID


def test_jump_score_never_negative():
    m = JumpMeter(now=0)
    m.update(0.5, now=10)
    m.stop(now=20)
    assert m.result().rep_count == 0
