from __future__ import annotations
import pytest

from fitassess.counter.geometry import angle_from_vertical, face_score, face_visible, torso_angle_deg
from fitassess.counter.samples import Landmark, PoseSample, orientation_from_accelerometer

from helpers import pose_at


@pytest.mark.parametrize("top,bottom,expected", [
    ((0.5, 0.2), (0.5, 0.8), 0.0),    # upright, image y grows downwards
    ((0.9, 0.5), (0.3, 0.5), 90.0),   # lying flat
    ((0.5, 0.8), (0.5, 0.2), 0.0),    # y-up coordinates fold the same way
])
def test_angle_from_vertical(top, bottom, expected):
    assert angle_from_vertical(top, bottom) == pytest.approx(expected)


@pytest.mark.parametrize("angle", [0, 15, 45, 70, 90])
def test_torso_angle_matches_synthetic_pose(angle):
    assert torso_angle_deg(pose_at(angle)) == pytest.approx(angle, abs=1e-6)


def test_torso_angle_needs_all_four_landmarks():
    assert torso_angle_deg(pose_at(30, hips=False)) is None
    assert torso_angle_deg(PoseSample()) is None


def test_face_visibility_uses_best_facial_landmark():
    s = PoseSample(landmarks={
        "nose": Landmark(0.5, 0.2, 0.1),
        "right_eye": Landmark(0.52, 0.18, 0.45),
    })
    assert face_score(s) == pytest.approx(0.45)
    assert face_visible(s, 0.4)
    assert not face_visible(s, 0.5)
    assert not face_visible(PoseSample(), 0.1)


def test_pose_sample_from_keypoints():
    s = PoseSample.from_keypoints([
        {"name": "nose", "x": 0.5, "y": 0.1, "score": 0.8},
        {"part": "left_hip", "x": 0.4, "y": 0.7, "visibility": 0.6},
        {"x": 0.1, "y": 0.1, "score": 0.9},
    ], score=0.7)
    assert set(s.landmarks) == {"nose", "left_hip"}
    assert s.get("left_hip").confidence == pytest.approx(0.6)
    assert s.score == 0.7


@pytest.mark.parametrize("xyz,expected", [
    ((0.0, 0.0, 1.0), 90.0),
    ((0.0, 0.0, -1.0), 90.0),
    ((0.0, 1.0, 0.0), 0.0),
    ((0.0, 0.7071, 0.7071), 45.0),
])
def test_orientation_from_accelerometer(xyz, expected):
    s = orientation_from_accelerometer(*xyz)
    assert s.inclination_deg == pytest.approx(expected, abs=0.01)
    assert s.subject_visible


def test_orientation_from_zero_vector():
    assert orientation_from_accelerometer(0, 0, 0).inclination_deg == 0.0
