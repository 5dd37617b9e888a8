from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class Badge:
    label: str
    emoji: str
    color: str


GOLD = Badge("Gold", "🥇", "#F59E0B")
SILVER = Badge("Silver", "🥈", "#9CA3AF")
BRONZE = Badge("Bronze", "🥉", "#CD7F32")


def badge_for_score(score: int) -> Badge:
    """Gold above 20, Silver for 10..20 inclusive, Bronze otherwise."""
    if score > 20:
        return GOLD
    if score >= 10:
        return SILVER
    return BRONZE


def feedback_for(form_score: Optional[float], rep_count: int, confidence: Optional[float] = None) -> List[str]:
    lines: List[str] = []
    if form_score is not None:
        if form_score > 90:
            lines.append("Excellent form! Your technique is outstanding.")
        elif form_score > 80:
            lines.append("Good form! Small improvements can boost your score.")
        elif form_score > 70:
            lines.append("Focus on form - slow down for better technique.")
        else:
            lines.append("Form needs work - consider practicing basic movements.")

    if rep_count > 15:
        lines.append("Impressive endurance! Great core strength.")
    elif rep_count > 10:
        lines.append("Good repetitions - you're building strength!")
    elif rep_count > 5:
        lines.append("Nice start! Keep practicing to build endurance.")

    if confidence is not None and confidence > 90:
        lines.append("High confidence in analysis - reliable results.")
    return lines
