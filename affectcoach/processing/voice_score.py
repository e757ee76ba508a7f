"""
AffectCoach — Voice Score Model

Maps a FeatureFrame onto a local (stress, confidence) pair.

Two estimates are blended 60/40:
  1. Baseline-relative — deltas against the speaker's adaptive resting
     energy / pitch, nudged by the filler rate.
  2. Instantaneous     — straight from energy, variance and speaking ratio,
     independent of the baseline (which needs a few seconds to converge).
"""

from __future__ import annotations

import time
from typing import Optional, Tuple

from ..core.config import calibration, CalibrationConfig
from ..core.models import FeatureFrame, ScoreEstimate, VoiceBaseline, clamp


class VoiceScoreModel:

    def __init__(
        self,
        baseline: Optional[VoiceBaseline] = None,
        cal: CalibrationConfig = calibration,
    ) -> None:
        self.baseline = baseline if baseline is not None else VoiceBaseline()
        self._cal = cal

    def update_baseline(self, frame: FeatureFrame) -> None:
        b = self.baseline
        if b.energy is None:
            b.energy = frame.rms
            b.pitch_hz = frame.pitch_hz or self._cal.default_pitch_hz
            return
        a = self._cal.baseline_energy_alpha
        b.energy = b.energy * (1 - a) + frame.rms * a
        if frame.pitch_hz:
            p = self._cal.baseline_pitch_alpha
            base_pitch = b.pitch_hz or self._cal.default_pitch_hz
            b.pitch_hz = base_pitch * (1 - p) + frame.pitch_hz * p

    def baseline_scores(
        self, frame: FeatureFrame, filler_rate: Optional[float] = None
    ) -> Tuple[float, float]:
        """Scores relative to the current baseline (does not update it)."""
        b = self.baseline
        energy_delta = frame.rms - (b.energy if b.energy is not None else frame.rms)
        if frame.pitch_hz and b.pitch_hz:
            pitch_delta = (frame.pitch_hz - b.pitch_hz) / max(1.0, b.pitch_hz)
        else:
            pitch_delta = 0.0

        stress = clamp(0.3 + energy_delta * 6 + frame.variance * 0.6 + pitch_delta * 2)
        confidence = clamp(
            0.5 + (frame.speaking_ratio - 0.4) * 0.6
            - frame.variance * 0.25 - energy_delta * 1.2
        )

        if filler_rate is not None:
            stress += clamp(filler_rate * 0.05, 0.0, 0.2)
            confidence -= clamp(filler_rate * 0.04, 0.0, 0.2)

        return clamp(stress), clamp(confidence)

    @staticmethod
    def instant_scores(frame: FeatureFrame) -> Tuple[float, float]:
        stress = clamp(0.25 + frame.energy * 0.6 + frame.variance * 0.2)
        confidence = clamp(
            0.4 + frame.speaking_ratio * 0.35 - frame.variance * 0.15 + (1 - stress) * 0.35
        )
        return stress, confidence

    def score(
        self,
        frame: FeatureFrame,
        filler_rate: Optional[float] = None,
        timestamp: Optional[float] = None,
    ) -> ScoreEstimate:
        """Update the baseline with this frame and return the blended local estimate."""
        self.update_baseline(frame)
        base_stress, base_conf = self.baseline_scores(frame, filler_rate)
        inst_stress, inst_conf = self.instant_scores(frame)

        wb, wi = self._cal.baseline_blend, self._cal.instant_blend
        return ScoreEstimate(
            stress=clamp(base_stress * wb + inst_stress * wi),
            confidence=clamp(base_conf * wb + inst_conf * wi),
            source="local",
            timestamp=timestamp if timestamp is not None else time.time(),
        )

    def reset(self) -> None:
        self.baseline.reset()
