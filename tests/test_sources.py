from __future__ import annotations
import sys

import numpy as np
import pytest

from fitassess.common.errors import AdapterUnavailableError
from fitassess.common.events import SampleKind
from fitassess.counter.samples import IntensitySample, OrientationSample
from fitassess.counter.sources import MediaPipePoseSource, ScriptedSource, SyntheticIntensitySource, landmarks_to_sample


def test_synthetic_source_is_reproducible_with_a_seed():
    a = SyntheticIntensitySource(rng=np.random.default_rng(42))
    b = SyntheticIntensitySource(seed=42)
    xs = [a.next_sample(i) for i in range(20)]
    ys = [b.next_sample(i) for i in range(20)]
    assert xs == ys
    for s in xs:
        assert isinstance(s, IntensitySample)
        assert 0.2 <= s.intensity <= 1.0
        assert 0.6 <= s.quality <= 1.0


def test_scripted_source_exhausts_to_none():
    src = ScriptedSource(SampleKind.ORIENTATION, [OrientationSample(80), None, OrientationSample(20)])
    src.ensure_ready()
    assert src.next_sample(0) == OrientationSample(80)
    assert src.next_sample(1) is None
    assert src.next_sample(2) == OrientationSample(20)
    assert src.next_sample(3) is None
    src.close()


class _LM:
    def __init__(self, x, y, visibility):
        self.x, self.y, self.visibility = x, y, visibility


def test_landmarks_to_sample_maps_names_in_order():
    s = landmarks_to_sample([_LM(0.1, 0.2, 0.9), _LM(0.3, 0.4, 1.2)], ("nose", "left_eye"))
    assert s.get("nose").confidence == 0.9
    assert s.get("left_eye").confidence == 1.0
    assert s.get("right_eye") is None
    assert s.score == pytest.approx(0.95)


def test_pose_source_requires_ensure_ready():
    src = MediaPipePoseSource()
    with pytest.raises(AdapterUnavailableError):
        src.next_sample(0)


def test_pose_source_reports_missing_backend(monkeypatch):
    # a None entry makes the import fail as if the package were absent
    monkeypatch.setitem(sys.modules, "cv2", None)
    with pytest.raises(AdapterUnavailableError):
        MediaPipePoseSource().ensure_ready()
