"""
AffectCoach — Coach Cues

Rule-based, zero-latency guidance derived from the latest snapshot, plus
the one-line local voice insight shown next to the metrics.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..core.config import calibration, insight_cfg
from ..core.models import MetricSnapshot, VoiceInsight


class CueKind(str, Enum):
    HIGH_STRESS = "high_stress"
    LOW_CONFIDENCE_FILLERS = "low_confidence_fillers"
    ENERGETIC = "energetic"
    LOW_CONFIDENCE = "low_confidence"
    BALANCED = "balanced"


@dataclass(frozen=True)
class CoachCue:
    kind: CueKind
    message: str

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["kind"] = self.kind.value
        return d


class CoachCueEngine:
    """Priority-ordered rules; always yields exactly one cue."""

    THRESHOLDS = dict(
        stress_high=0.72, fillers_high=6.0,
        confidence_low_fillers=0.4, fillers_some=3.0,
        confidence_energetic=0.7, stress_energetic=0.6, wpm_energetic=90.0,
        confidence_low=0.45,
    )

    MESSAGES = {
        CueKind.HIGH_STRESS:
            "Breathe for 10 seconds, drop your shoulders and resume at a steady pace.",
        CueKind.LOW_CONFIDENCE_FILLERS:
            "State one simple goal in a single sentence before going on. It clarifies the message.",
        CueKind.ENERGETIC:
            "Great energy! Give yourself a 2-minute mini-challenge to push one argument further.",
        CueKind.LOW_CONFIDENCE:
            "Take 2 deep breaths and refocus your message on one main idea.",
        CueKind.BALANCED:
            "Keep this clear tone. Stay on your plan and move forward step by step.",
    }

    def evaluate(self, m: MetricSnapshot) -> CoachCue:
        kind = self._check(m)
        return CoachCue(kind=kind, message=self.MESSAGES[kind])

    def _check(self, m: MetricSnapshot) -> CueKind:
        T = self.THRESHOLDS
        fpm, wpm = m.fillers_per_minute, m.words_per_minute

        if m.stress > T["stress_high"] or (fpm is not None and fpm > T["fillers_high"]):
            return CueKind.HIGH_STRESS
        if m.confidence < T["confidence_low_fillers"] and fpm is not None and fpm >= T["fillers_some"]:
            return CueKind.LOW_CONFIDENCE_FILLERS
        if (
            m.confidence > T["confidence_energetic"]
            and m.stress < T["stress_energetic"]
            and wpm is not None and wpm >= T["wpm_energetic"]
        ):
            return CueKind.ENERGETIC
        if m.confidence < T["confidence_low"]:
            return CueKind.LOW_CONFIDENCE
        return CueKind.BALANCED


# ---------------------------------------------------------------------------
# Local voice insight
# ---------------------------------------------------------------------------

def summarize_voice(stress: Optional[float], confidence: Optional[float], pitch: Optional[float]) -> str:
    if stress is None or confidence is None:
        return "Listening to your voice, keep talking for a complete analysis."
    if stress > 0.7 and confidence < 0.45:
        return "High tension detected: slow down and relax your shoulders before going on."
    if stress > 0.6 and confidence >= 0.45:
        return "Lots of energy! Channel it by clarifying what you want to say right now."
    if confidence > 0.7 and stress < 0.5:
        return "Steady, assured voice, perfect for walking through your plan."
    if confidence < 0.45 and stress < 0.5:
        return "Your tone is calm but hesitant: put your next idea into one strong sentence."
    if pitch and pitch > 280 and stress > 0.5:
        return "Your voice is rising a lot, a sign of emotion. Slow down and breathe to stay clear."
    return "Balanced voice: keep this pace and articulate your main ideas."


def refresh_voice_insight(
    current: Optional[VoiceInsight],
    voice: Tuple[float, float],
    pitch: Optional[float],
    now: float,
    ttl: float = insight_cfg.ttl,
    delta: float = calibration.insight_refresh_delta,
) -> VoiceInsight:
    """
    Next insight record for this tick.  A fresh AI record is kept as is; a
    local record is kept while the voice estimate moves less than `delta`.
    """
    stress, confidence = voice
    if current is not None:
        if current.source == "ai" and now - current.timestamp < ttl:
            return current
        if (
            current.source == "local"
            and current.stress is not None and current.confidence is not None
            and abs(current.stress - stress) < delta
            and abs(current.confidence - confidence) < delta
        ):
            return current
    return VoiceInsight(
        summary=summarize_voice(stress, confidence, pitch),
        stress=stress,
        confidence=confidence,
        source="local",
        timestamp=now,
    )
