"""
AffectCoach — Configuration

Centralised settings from environment variables.
All tuneable constants live here — zero magic numbers in other files.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv
import certifi

os.environ.setdefault("SSL_CERT_FILE", certifi.where())
os.environ.setdefault("REQUESTS_CA_BUNDLE", certifi.where())

load_dotenv()


def _csv(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip().lower() for item in raw.split(",") if item.strip())


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerConfig:
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8080"))
    cors_origins: tuple[str, ...] = (
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:3001",
    )


# ---------------------------------------------------------------------------
# Calibration constants (empirically tuned — keep the defaults)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CalibrationConfig:
    """Numeric constants that decide classification outcomes."""

    # Feature extraction
    energy_scale: float = 0.15          # rms / energy_scale → normalised energy
    speaking_threshold: float = 0.12
    words_per_burst: float = 3.2

    # Pitch estimation
    pitch_window: int = 1024
    pitch_rms_gate: float = 0.01
    pitch_correlation_gate: float = 0.9

    # Adaptive baseline
    baseline_energy_alpha: float = 0.02
    baseline_pitch_alpha: float = 0.03
    default_pitch_hz: float = 180.0

    # Baseline-relative vs instantaneous voice estimate
    baseline_blend: float = 0.6
    instant_blend: float = 0.4

    # Fusion smoothing weights
    local_weight: float = 0.22
    video_weight: float = 0.35
    ai_weight: float = 0.2
    initial_stress: float = 0.2
    initial_confidence: float = 0.6

    # Emotion label thresholds
    stressed_above: float = 0.75
    confident_above: float = 0.72
    confident_stress_below: float = 0.55
    calm_stress_below: float = 0.32
    calm_confidence_min: float = 0.5
    tense_confidence_below: float = 0.35
    tense_stress_above: float = 0.5

    # Video intensity floor
    video_min_intensity: float = 0.15

    # Local insight refresh hysteresis
    insight_refresh_delta: float = 0.03


# ---------------------------------------------------------------------------
# Session tunables
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionConfig:
    # Metric tick cadence (seconds)
    tick_interval: float = 0.75
    # Max History entries kept (ring buffer)
    history_limit: int = 180
    # Rolling energy window used for variance
    feature_window: int = 120
    # Video detection loop pacing (~animation frame)
    video_frame_interval: float = 1 / 30
    # Samples closer than this (seconds) are not double-counted
    video_dedup_window: float = 0.9
    # Language-specific filler words
    filler_words: tuple[str, ...] = _csv("AFFECTCOACH_FILLER_WORDS", "euh,heu,uh,hum,hmm")
    # Recognition language passed to the recognizer
    recognition_lang: str = os.getenv("AFFECTCOACH_LANG", "fr-FR")


# ---------------------------------------------------------------------------
# Remote insight endpoint
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InsightConfig:
    url: str = os.getenv("AFFECTCOACH_INSIGHT_URL", "")
    # Rate limit between POSTs (seconds)
    min_interval: float = 5.0
    # AI record stops taking part in fusion after this much inactivity
    ttl: float = 6.0
    # Hard timeout for a single request
    timeout: float = float(os.getenv("AFFECTCOACH_INSIGHT_TIMEOUT", "4.0"))

    @property
    def enabled(self) -> bool:
        return bool(self.url)


# ---------------------------------------------------------------------------
# Video emotion classifier
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VideoConfig:
    # "client" → detections computed by the browser and pushed over WS
    # "pkg.module:factory" → server-side classifier loaded on demand
    classifier: str = os.getenv("AFFECTCOACH_EMOTION_CLASSIFIER", "client")
    # JPEG frames larger than this are dropped
    max_frame_bytes: int = 2_000_000


# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------

server_cfg = ServerConfig()
calibration = CalibrationConfig()
session_cfg = SessionConfig()
insight_cfg = InsightConfig()
video_cfg = VideoConfig()
