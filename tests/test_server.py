from __future__ import annotations
import json

import pytest
from fastapi.testclient import TestClient

from fitassess.common.settings import Settings
from fitassess.runtime.server import create_app

from helpers import FakeClock


@pytest.fixture()
def clock():
    return FakeClock(0)


@pytest.fixture()
def client(tmp_path, clock):
    app = create_app(Settings(db_path=tmp_path / "results.db", log_level="WARNING"), clock=clock)
    with TestClient(app) as c:
        yield c


def manager_of(client):
    return client.app.state.ctx.manager


def orientation(angle, ts=None):
    body = {"sample": {"kind": "orientation", "inclination_deg": angle}}
    if ts is not None:
        body["ts"] = ts
    return body


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_orientation_session_over_http(client, clock):
    r = client.post("/sessions/start", json={"source": "orientation"})
    assert r.status_code == 200
    assert r.json()["kind"] == "orientation"

    for ts, angle in [(0, 20), (500, 80), (1000, 20)]:
        snap = client.post("/sessions/samples", json=orientation(angle, ts)).json()
    assert snap["count"] == 1

    clock.t = 7000
    cur = client.get("/sessions/current").json()
    assert cur["state"] == "stopped"
    assert cur["count"] == 1
    assert cur["snapshot"]["status"] == "valid"
    assert cur["snapshot"]["stopped_at"] == 7000

    summary = client.post("/sessions/stop").json()
    assert summary["rep_count"] == 1
    assert summary["badge"] == "Bronze"

    manager_of(client).flush(timeout=5)
    results = client.get("/results").json()
    assert len(results) == 1
    assert results[0]["rep_count"] == 1
    assert results[0]["badge"] == "Bronze"


def test_accelerometer_samples_feed_an_orientation_session(client):
    client.post("/sessions/start", json={"source": "orientation"})
    lying = {"sample": {"kind": "accelerometer", "x": 0.0, "y": 0.1, "z": 1.0}, "ts": 100}
    sitting = {"sample": {"kind": "accelerometer", "x": 0.0, "y": 1.0, "z": 0.1}, "ts": 600}
    client.post("/sessions/samples", json=lying)
    snap = client.post("/sessions/samples", json=sitting).json()
    assert snap["count"] == 1


def test_stop_without_session_is_conflict(client):
    assert client.post("/sessions/stop").status_code == 409
    assert client.post("/sessions/samples", json=orientation(40)).status_code == 409


@pytest.mark.parametrize("body", [
    {"source": "orientation", "config": {"up_threshold_deg": 80}},
    {"source": "orientation", "config": {"bogus": 1}},
    {"source": "orientation", "preset": "nope"},
])
def test_bad_config_is_rejected(client, body):
    assert client.post("/sessions/start", json=body).status_code == 422


def test_out_of_range_sample_is_rejected(client):
    client.post("/sessions/start", json={"source": "orientation"})
    assert client.post("/sessions/samples", json=orientation(120)).status_code == 422


def test_jump_session_and_leaderboard(client):
    r = client.post("/sessions/start", json={"test_type": "jump"})
    assert r.json()["kind"] == "accelerometer"
    client.post("/sessions/jump", json={"z": 1.5, "ts": 100})
    summary = client.post("/sessions/stop").json()
    assert summary["test_type"] == "jump"
    assert summary["rep_count"] == 15
    assert summary["badge"] == "Silver"

    manager_of(client).flush(timeout=5)
    board = client.get("/results/leaderboard").json()
    assert board[0]["rank"] == 1
    assert board[0]["rep_count"] == 15


def test_websocket_samples(client):
    client.post("/sessions/start", json={"source": "orientation"})
    with client.websocket_connect("/ws/samples") as ws:
        ws.send_text(json.dumps(orientation(80, 100)))
        msg = ws.receive_json()
        assert msg["type"] == "snapshot"
        assert msg["phase"] == "down"

        ws.send_text(json.dumps({"sample": {"kind": "orientation"}}))
        msg = ws.receive_json()
        assert msg["type"] == "error"


def test_wrong_sample_kind_is_rejected(client):
    client.post("/sessions/start", json={"source": "orientation"})
    pose = {"sample": {"kind": "pose", "keypoints": [{"name": "nose", "x": 0.5, "y": 0.2}]}}
    assert client.post("/sessions/samples", json=pose).status_code == 422

    with client.websocket_connect("/ws/samples") as ws:
        ws.send_text(json.dumps(pose))
        assert ws.receive_json()["type"] == "error"
        # the socket stays usable
        ws.send_text(json.dumps(orientation(80, 100)))
        assert ws.receive_json()["type"] == "snapshot"


def test_snapshots_reach_every_websocket_client(client):
    client.post("/sessions/start", json={"source": "orientation"})
    with client.websocket_connect("/ws/samples") as watcher, client.websocket_connect("/ws/samples") as feeder:
        feeder.send_text(json.dumps(orientation(80, 100)))
        feeder.send_text(json.dumps(orientation(20, 600)))
        seen = [watcher.receive_json() for _ in range(3)]
        assert [m["type"] for m in seen] == ["snapshot", "snapshot", "rep"]
        assert seen[0]["phase"] == "down"
        assert seen[1]["count"] == 1
        assert [feeder.receive_json()["type"] for _ in range(3)] == ["snapshot", "snapshot", "rep"]


def test_restarting_a_pulled_session_retires_its_run_loop(client):
    ctx = client.app.state.ctx
    client.post("/sessions/start", json={"source": "synthetic", "seed": 1})
    first = ctx.runner
    assert first is not None
    r = client.post("/sessions/start", json={"source": "synthetic", "seed": 2})
    assert r.status_code == 200
    assert first.done()
    assert ctx.runner is not first
    client.post("/sessions/stop")
    ctx.manager.flush(timeout=5)
    assert len(client.get("/results").json()) == 2
