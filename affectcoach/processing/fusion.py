"""
AffectCoach — Fusion Engine

Combines the per-tick estimates into one authoritative (stress, confidence)
pair by weighted exponential smoothing:

  previous ──0.22──▶ local voice ──0.35──▶ video (if present) ──0.2──▶ AI (if fresh)

A step whose estimator is absent is skipped, so an absent collaborator and
one that always fails produce identical output.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..core.config import calibration, CalibrationConfig
from ..core.models import EmotionState, MetricSnapshot, ScoreEstimate, VoiceInsight, clamp

logger = logging.getLogger("affectcoach.fusion")

FALLBACK_EMOTION = "focused"


def smooth(previous: Optional[float], target: float, weight: float) -> float:
    if previous is None:
        return target
    return previous * (1 - weight) + target * weight


def resolve_emotion(stress: float, confidence: float, cal: CalibrationConfig = calibration) -> str:
    if stress > cal.stressed_above:
        return "stressed"
    if confidence > cal.confident_above and stress < cal.confident_stress_below:
        return "confident"
    if stress < cal.calm_stress_below and confidence >= cal.calm_confidence_min:
        return "calm"
    if confidence < cal.tense_confidence_below and stress > cal.tense_stress_above:
        return "tense"
    return FALLBACK_EMOTION


@dataclass(frozen=True)
class FusionResult:
    stress: float
    confidence: float
    emotion_label: str


class FusionEngine:
    """Holds the previous smoothed pair; one fuse() call per tick."""

    def __init__(self, cal: CalibrationConfig = calibration) -> None:
        self._cal = cal
        self.stress: float = cal.initial_stress
        self.confidence: float = cal.initial_confidence

    def reset(self) -> None:
        self.stress = self._cal.initial_stress
        self.confidence = self._cal.initial_confidence

    def fuse(
        self,
        local: ScoreEstimate,
        video: Optional[ScoreEstimate] = None,
        ai: Optional[VoiceInsight] = None,
        video_label: Optional[str] = None,
    ) -> FusionResult:
        cal = self._cal
        stress = smooth(self.stress, local.stress, cal.local_weight)
        confidence = smooth(self.confidence, local.confidence, cal.local_weight)

        if video is not None:
            stress = smooth(stress, video.stress, cal.video_weight)
            confidence = smooth(confidence, video.confidence, cal.video_weight)

        # Numeric AI fields only; a summary-only record contributes nothing
        if ai is not None:
            if ai.stress is not None:
                stress = smooth(stress, ai.stress, cal.ai_weight)
            if ai.confidence is not None:
                confidence = smooth(confidence, ai.confidence, cal.ai_weight)

        self.stress = clamp(stress)
        self.confidence = clamp(confidence)

        label = video_label if video is not None and video_label else resolve_emotion(
            self.stress, self.confidence, cal
        )
        return FusionResult(stress=self.stress, confidence=self.confidence, emotion_label=label)


# ---------------------------------------------------------------------------
# Arousal / valence view
# ---------------------------------------------------------------------------

_CATEGORY_RULES = (
    (("joy", "happy", "smil"), "joy"),
    (("calm", "zen"), "calm"),
    (("stress", "tense", "anxious", "fear"), "stress"),
    (("sad", "tired", "sleepy"), "sad"),
    (("anger", "angry", "rage"), "anger"),
    (("confiden",), "confident"),
    (("excited", "enthus"), "excited"),
)


def normalize_emotion_category(label: Optional[str]) -> str:
    if not label:
        return "neutral"
    lowered = str(label).lower()
    for fragments, category in _CATEGORY_RULES:
        if any(fragment in lowered for fragment in fragments):
            return category
    return "neutral"


def derive_emotion_state(snapshot: MetricSnapshot) -> EmotionState:
    wpm = snapshot.words_per_minute
    speaking = clamp((wpm - 60) / 80) if wpm is not None else 0.45
    return EmotionState(
        emotion=normalize_emotion_category(snapshot.emotion_label),
        stress_score=snapshot.stress,
        confidence=snapshot.confidence,
        arousal=clamp(speaking * 0.6 + snapshot.stress * 0.4),
        valence=clamp(0.5 + (snapshot.confidence - snapshot.stress) * 0.5),
    )
