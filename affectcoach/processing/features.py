"""
AffectCoach — Feature Extractor

Turns the analyser's time-domain buffer into a FeatureFrame once per tick.
Keeps a rolling window of normalised energy for the variance estimate and
counts speech bursts, which stand in for a word count when no transcript
capability is available.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque

import numpy as np

from ..core.config import calibration, session_cfg, CalibrationConfig
from ..core.models import FeatureFrame, clamp
from .pitch import buffer_rms, estimate_pitch

logger = logging.getLogger("affectcoach.features")


class FeatureExtractor:
    """
    Stateful per-session extractor.

    Lifecycle:
      reset() at session start → extract(buffer, sample_rate) every tick
    """

    def __init__(
        self,
        window: int = session_cfg.feature_window,
        cal: CalibrationConfig = calibration,
    ) -> None:
        self._cal = cal
        self._levels: Deque[float] = deque(maxlen=window)
        self._was_speaking = False
        self.burst_count: int = 0
        self._speaking_samples: int = 0
        self._total_samples: int = 0

    @property
    def is_speaking(self) -> bool:
        return self._was_speaking

    @property
    def speaking_ratio(self) -> float:
        return self._speaking_samples / max(1, self._total_samples)

    @property
    def estimated_words(self) -> float:
        """Coarse word count from speech bursts (no transcript available)."""
        return self.burst_count * self._cal.words_per_burst

    def extract(self, buffer: np.ndarray, sample_rate: float) -> FeatureFrame:
        data = np.asarray(buffer, dtype=np.float64).ravel()
        rms = buffer_rms(data)
        energy = clamp(rms / self._cal.energy_scale, 0.0, 1.0)
        pitch = estimate_pitch(data, sample_rate, self._cal)

        self._levels.append(energy)

        speaking = energy > self._cal.speaking_threshold
        if speaking and not self._was_speaking:
            self.burst_count += 1
        self._was_speaking = speaking
        self._speaking_samples += 1 if speaking else 0
        self._total_samples += 1

        variance = float(np.var(np.fromiter(self._levels, dtype=np.float64)))

        return FeatureFrame(
            energy=energy,
            variance=variance,
            speaking_ratio=self.speaking_ratio,
            pitch_hz=pitch,
            rms=rms,
        )

    def reset(self) -> None:
        self._levels.clear()
        self._was_speaking = False
        self.burst_count = 0
        self._speaking_samples = 0
        self._total_samples = 0
