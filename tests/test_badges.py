from __future__ import annotations
import pytest

from fitassess.data.badges import badge_for_score, feedback_for


@pytest.mark.parametrize("score,label", [
    (0, "Bronze"),
    (9, "Bronze"),
    (10, "Silver"),
    (11, "Silver"),
    (19, "Silver"),
    (20, "Silver"),
    (21, "Gold"),
    (50, "Gold"),
])
def test_badge_boundaries(score, label):
    assert badge_for_score(score).label == label


def test_feedback_tiers():
    lines = feedback_for(92.0, 16, confidence=95)
    assert lines[0].startswith("Excellent form")
    assert any("endurance" in line for line in lines)
    assert any("confidence" in line for line in lines)

    assert feedback_for(None, 3) == []
    assert feedback_for(65.0, 6)[0].startswith("Form needs work")
