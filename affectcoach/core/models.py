"""
AffectCoach — Data Models

Dataclasses for every piece of data flowing through the system.
The `source` field on score records tells which estimator produced them.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return min(hi, max(lo, value))


# ---------------------------------------------------------------------------
# Per-tick audio features
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FeatureFrame:
    """
    Numeric features extracted from one audio buffer.

    energy is the normalised volume in [0, 1]; rms is the raw amplitude
    used against the adaptive baseline.
    """
    energy: float = 0.0
    variance: float = 0.0
    speaking_ratio: float = 0.0
    pitch_hz: Optional[float] = None
    rms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Used when no audio buffer is available but video still drives the tick
DEFAULT_SIGNAL = FeatureFrame(energy=0.15, variance=0.04, speaking_ratio=0.45, rms=0.05)


@dataclass
class VoiceBaseline:
    """Adaptive resting reference; None until the first tick of a session."""
    energy: Optional[float] = None
    pitch_hz: Optional[float] = None

    def reset(self) -> None:
        self.energy = None
        self.pitch_hz = None


# ---------------------------------------------------------------------------
# Score estimates
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScoreEstimate:
    """
    One estimator's opinion for a tick.

    source values:
      • "local" — voice score model
      • "video" — face-emotion classifier
      • "ai"    — remote insight endpoint
    """
    stress: float
    confidence: float
    source: str = "local"
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        object.__setattr__(self, "stress", clamp(self.stress))
        object.__setattr__(self, "confidence", clamp(self.confidence))


@dataclass(frozen=True)
class VoiceInsight:
    """Latest insight record shown next to the metrics (local or remote)."""
    summary: Optional[str] = None
    stress: Optional[float] = None
    confidence: Optional[float] = None
    source: str = "local"   # "local" | "ai"
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Snapshot + history
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricSnapshot:
    """Authoritative per-tick state."""
    emotion_label: str = "—"
    stress: float = 0.2
    confidence: float = 0.6
    words_per_minute: Optional[float] = None
    fillers_per_minute: Optional[float] = None
    elapsed_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class HistoryPoint:
    time: float
    stress: float
    confidence: float
    wpm: Optional[float] = None
    fillers: Optional[float] = None

    @classmethod
    def from_snapshot(cls, snapshot: MetricSnapshot) -> "HistoryPoint":
        return cls(
            time=snapshot.elapsed_seconds,
            stress=snapshot.stress,
            confidence=snapshot.confidence,
            wpm=snapshot.words_per_minute,
            fillers=snapshot.fillers_per_minute,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EmotionState:
    """Arousal / valence view of a snapshot for the surrounding UI."""
    emotion: str
    stress_score: float
    confidence: float
    arousal: float
    valence: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Video emotion
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VideoEmotionReading:
    label: str                 # normalised label, e.g. "happy"
    raw_label: str             # as reported by the classifier
    score: float
    distribution: tuple = ()   # ((label, score), ...) for every detected emotion
    timestamp: float = 0.0


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SummaryAverages:
    stress: float
    confidence: float
    wpm: Optional[float] = None
    fillers: Optional[float] = None


@dataclass(frozen=True)
class VideoDistributionEntry:
    label: str
    ratio: float


@dataclass(frozen=True)
class VideoSummary:
    dominant: str
    total: int
    distribution: tuple[VideoDistributionEntry, ...] = ()


@dataclass(frozen=True)
class Summary:
    averages: SummaryAverages
    advice: tuple[str, ...]
    history: tuple[HistoryPoint, ...] = ()
    video: Optional[VideoSummary] = None

    @property
    def video_distribution(self) -> Optional[List[VideoDistributionEntry]]:
        return list(self.video.distribution) if self.video else None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Session telemetry
# ---------------------------------------------------------------------------

@dataclass
class SessionTelemetry:
    """Per-session counters — never crashes the session."""
    session_id: str = ""
    ticks: int = 0
    transcripts: int = 0
    video_detections: int = 0
    insight_calls: int = 0
    insight_failures: int = 0
    recognition_restarts: int = 0
    last_tick_latency_ms: float = 0.0
    audio_active: bool = False
    video_active: bool = False
    recognition_active: bool = False
    session_state: str = "idle"
    session_mode: str = "unavailable"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
