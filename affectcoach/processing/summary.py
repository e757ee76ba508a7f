"""
AffectCoach — Session Summary

End-of-session report built from History: means, exactly three advice
items, and the video label distribution.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from ..core.models import HistoryPoint, Summary, SummaryAverages
from .video_emotion import VideoEmotionStats

ADVICE_COUNT = 3

RESET_RITUAL = "Prepare a reset ritual (breathing, grounding) before your next session."
INTENTION_SETTING = "Write your intention as one key sentence and say it out loud before starting."
PAUSE_PRACTICE = "Practise a mindful silence: pause as soon as you feel an \"uh\" coming."
SLOW_DOWN_DRILL = "Work on your pace: read a passage slowly to get used to slowing down."
STRETCH_CHALLENGE = "Bonus challenge: explain a complex idea in 120 seconds next session."

GENERIC_TIPS = (
    "Rehearse the \"Situation - Action - Result\" structure to make your speech flow.",
    "Settle into a quiet environment and check your audio equipment beforehand.",
    "Drink some water 10 minutes before the session to support your voice.",
)


def _mean(values: Iterable[Optional[float]]) -> Optional[float]:
    defined = [v for v in values if v is not None]
    if not defined:
        return None
    return sum(defined) / len(defined)


def compute_averages(history: Sequence[HistoryPoint]) -> SummaryAverages:
    return SummaryAverages(
        stress=sum(p.stress for p in history) / len(history),
        confidence=sum(p.confidence for p in history) / len(history),
        wpm=_mean(p.wpm for p in history),
        fillers=_mean(p.fillers for p in history),
    )


def compute_advice(averages: SummaryAverages) -> List[str]:
    a = averages
    advice: List[str] = []
    if a.stress > 0.65:
        advice.append(RESET_RITUAL)
    if a.confidence < 0.45:
        advice.append(INTENTION_SETTING)
    if a.fillers is not None and a.fillers > 4:
        advice.append(PAUSE_PRACTICE)
    if a.wpm is not None and a.wpm > 110:
        advice.append(SLOW_DOWN_DRILL)
    if a.confidence > 0.7 and a.stress < 0.55:
        advice.append(STRETCH_CHALLENGE)

    for tip in GENERIC_TIPS:
        if len(advice) >= ADVICE_COUNT:
            break
        advice.append(tip)
    return advice[:ADVICE_COUNT]


class SessionSummarizer:

    def summarize(
        self,
        history: Sequence[HistoryPoint],
        video_stats: Optional[VideoEmotionStats] = None,
    ) -> Optional[Summary]:
        """None for an empty History."""
        if not history:
            return None
        averages = compute_averages(history)
        return Summary(
            averages=averages,
            advice=tuple(compute_advice(averages)),
            history=tuple(history),
            video=video_stats.summarize() if video_stats is not None else None,
        )
