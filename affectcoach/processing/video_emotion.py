"""
AffectCoach — Video Emotion Adapter

Wraps an optional face-emotion classifier.  The classifier runs in its own
loop; this adapter keeps the latest reading for the metric tick to read,
maps it onto a coarse (stress, confidence) contribution, and records a
deduplicated label histogram for the end-of-session report.

When no classifier is configured, or it fails to load, the adapter is
absent: contribution() is always None and fusion skips the video step.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..core.config import calibration, session_cfg, CalibrationConfig
from ..core.errors import ModelLoadFailure
from ..core.interfaces import EmotionClassifier
from ..core.models import (
    ScoreEstimate,
    VideoDistributionEntry,
    VideoEmotionReading,
    VideoSummary,
    clamp,
)

logger = logging.getLogger("affectcoach.video")

# Classifier vocabulary → normalised label
VIDEO_EMOTION_LABELS: Dict[str, str] = {
    "angry": "angry",
    "anger": "angry",
    "disgusted": "disgusted",
    "disgust": "disgusted",
    "fear": "fearful",
    "fearful": "fearful",
    "happy": "happy",
    "joy": "happy",
    "sad": "sad",
    "surprise": "surprised",
    "surprised": "surprised",
    "neutral": "neutral",
    "calm": "calm",
    "bored": "distracted",
    "sleepy": "sleepy",
    "serious": "serious",
    "confused": "confused",
    "excited": "excited",
    "smile": "smiling",
}

# (label fragments, stress, confidence) — first match wins
_LABEL_RULES: Tuple[Tuple[Tuple[str, ...], float, float], ...] = (
    (("angry", "stress", "tense", "fear", "disgust"), 0.75, 0.35),
    (("sad", "confused", "distract", "sleepy"), 0.6, 0.3),
    (("surprise",), 0.55, 0.55),
    (("happy", "excited", "smil", "calm", "neutral"), 0.3, 0.72),
)
_UNKNOWN_LABEL_SCORES = (0.48, 0.5)


def normalize_video_label(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    key = str(raw).strip().lower()
    return VIDEO_EMOTION_LABELS.get(key, key)


def video_scores(
    label: str, score: Optional[float] = 0.5, cal: CalibrationConfig = calibration
) -> Tuple[float, float]:
    """Lexical rule table, scaled by classifier score and pulled toward 0.5 when weak."""
    normalized = label.lower()
    stress, confidence = _UNKNOWN_LABEL_SCORES
    for fragments, rule_stress, rule_conf in _LABEL_RULES:
        if any(fragment in normalized for fragment in fragments):
            stress, confidence = rule_stress, rule_conf
            break

    intensity = clamp(0.5 if score is None else score, cal.video_min_intensity, 1.0)
    return (
        clamp(stress * intensity + (1 - intensity) * 0.5),
        clamp(confidence * intensity + (1 - intensity) * 0.5),
    )


def _field(item: Any, *names: str) -> Any:
    for name in names:
        if isinstance(item, Mapping):
            if item.get(name) is not None:
                return item[name]
        elif getattr(item, name, None) is not None:
            return getattr(item, name)
    return None


# ---------------------------------------------------------------------------
# Label histogram
# ---------------------------------------------------------------------------

class VideoEmotionStats:
    """Deduplicated label → {raw_label, count} histogram plus running total."""

    def __init__(self, dedup_window: float = session_cfg.video_dedup_window) -> None:
        self._dedup_window = dedup_window
        self.counts: Dict[str, Dict[str, Any]] = {}
        self.total: int = 0
        self._last_timestamp: Optional[float] = None

    def record(self, label: str, raw_label: str, now: float) -> bool:
        """Count a sample unless the previous counted one is too recent."""
        if self._last_timestamp is not None and now - self._last_timestamp < self._dedup_window:
            return False
        entry = self.counts.setdefault(label, {"raw_label": raw_label, "count": 0})
        entry["count"] += 1
        self.total += 1
        self._last_timestamp = now
        return True

    def ranked(self, limit: int = 4) -> List[VideoDistributionEntry]:
        if self.total <= 0:
            return []
        ordered = sorted(self.counts.items(), key=lambda kv: kv[1]["count"], reverse=True)
        return [
            VideoDistributionEntry(label=label, ratio=entry["count"] / self.total)
            for label, entry in ordered[:limit]
        ]

    @property
    def dominant(self) -> Optional[str]:
        ranked = self.ranked(limit=1)
        return ranked[0].label if ranked else None

    def summarize(self, limit: int = 4) -> Optional[VideoSummary]:
        ranked = self.ranked(limit)
        if not ranked:
            return None
        return VideoSummary(dominant=ranked[0].label, total=self.total, distribution=tuple(ranked))

    def reset(self) -> None:
        self.counts = {}
        self.total = 0
        self._last_timestamp = None


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class VideoEmotionAdapter:
    """
    Lifecycle:
      await load() → process(frame) from the video loop → contribution() per tick
    """

    def __init__(
        self,
        classifier: Optional[EmotionClassifier],
        stats: Optional[VideoEmotionStats] = None,
        cal: CalibrationConfig = calibration,
    ) -> None:
        self._classifier = classifier
        self._cal = cal
        self.stats = stats if stats is not None else VideoEmotionStats()
        self._loaded = False
        self._failed = False
        self._latest: Optional[VideoEmotionReading] = None

    @property
    def is_present(self) -> bool:
        return self._classifier is not None and self._loaded and not self._failed

    @property
    def latest(self) -> Optional[VideoEmotionReading]:
        return self._latest

    async def load(self) -> None:
        if self._loaded:
            return
        if self._classifier is None:
            raise ModelLoadFailure("No face-emotion classifier is configured.")
        try:
            await self._classifier.load()
        except ModelLoadFailure:
            self._failed = True
            raise
        except Exception as e:
            self._failed = True
            logger.error(f"Unable to load the emotion classifier: {e}", exc_info=True)
            raise ModelLoadFailure("Unable to load the video analysis models.") from e
        self._loaded = True
        self._failed = False
        logger.info("Face-emotion classifier loaded")

    async def process(self, frame: Any, now: Optional[float] = None) -> Optional[VideoEmotionReading]:
        if not self.is_present:
            return None
        detections = await self._classifier.detect(frame)  # type: ignore[union-attr]
        return self.update(detections, now)

    def update(
        self, detections: Optional[Sequence[Any]], now: Optional[float] = None
    ) -> Optional[VideoEmotionReading]:
        """Keep the top-scoring emotion; no detections clears the reading."""
        now = time.monotonic() if now is None else now
        candidates = []
        for item in detections or ():
            raw = _field(item, "label", "emotion")
            if raw:
                candidates.append((str(raw), float(_field(item, "score") or 0.0)))

        if not candidates:
            self._latest = None
            return None

        raw_label, score = max(candidates, key=lambda c: c[1])
        label = normalize_video_label(raw_label) or raw_label
        reading = VideoEmotionReading(
            label=label,
            raw_label=raw_label,
            score=clamp(score),
            distribution=tuple(
                (normalize_video_label(name) or name, s) for name, s in candidates
            ),
            timestamp=now,
        )
        self._latest = reading
        self.stats.record(label, raw_label, now)
        return reading

    def contribution(self) -> Optional[ScoreEstimate]:
        reading = self._latest
        if reading is None:
            return None
        stress, confidence = video_scores(reading.label, reading.score, self._cal)
        return ScoreEstimate(
            stress=stress, confidence=confidence, source="video", timestamp=reading.timestamp
        )

    def clear(self) -> None:
        self._latest = None
