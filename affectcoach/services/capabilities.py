"""
AffectCoach — Client-Pushed Capabilities

Implementations of the capability protocols whose data arrives over the
WebSocket: the browser owns the real microphone, camera, recognizer and
(optionally) the face-emotion model, and pushes buffers, frames,
transcripts and detections to the server-side SessionController.

Frames:
  • audio_frame  → float list, or base64 float32 / int16 PCM
  • video_frame  → base64 JPEG, decoded with OpenCV to an RGB ndarray
  • video_emotion → detections from a browser-side classifier
"""

from __future__ import annotations

import asyncio
import base64
import importlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

import cv2
import numpy as np

from ..core.config import video_cfg
from ..core.errors import (
    DeviceUnavailable,
    Modality,
    ModelLoadFailure,
    PermissionDenied,
    RecognitionUnsupported,
)
from ..core.interfaces import EmotionClassifier, TranscriptEvent

logger = logging.getLogger("affectcoach.capabilities")

_INT16_SCALE = 32768.0


class PermissionStatus(str, Enum):
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"
    UNAVAILABLE = "unavailable"


def _check_permission(status: PermissionStatus, modality: Modality, label: str) -> None:
    if status == PermissionStatus.DENIED:
        raise PermissionDenied(f"{label} access was refused.", modality)
    if status == PermissionStatus.UNAVAILABLE:
        raise DeviceUnavailable(f"No {label.lower()} is available on this device.", modality)
    if status == PermissionStatus.UNKNOWN:
        raise PermissionDenied(f"{label} permission has not been granted yet.", modality)


def decode_samples(samples: Any, encoding: str = "f32") -> np.ndarray:
    """Float list passthrough, or base64 PCM ("f32" / "s16") → float64 in [-1, 1]."""
    if isinstance(samples, str):
        raw = base64.b64decode(samples)
        if encoding == "s16":
            return np.frombuffer(raw, dtype="<i2").astype(np.float64) / _INT16_SCALE
        return np.frombuffer(raw, dtype="<f4").astype(np.float64)
    return np.asarray(samples, dtype=np.float64).ravel()


def decode_jpeg(data: str, max_bytes: int = video_cfg.max_frame_bytes) -> Optional[np.ndarray]:
    """Base64 JPEG (optionally a data: URL) → RGB ndarray, or None if unusable."""
    if "," in data and data.startswith("data:"):
        data = data.split(",", 1)[1]
    raw = base64.b64decode(data)
    if len(raw) > max_bytes:
        logger.debug(f"Dropping oversized frame ({len(raw)} bytes)")
        return None
    image = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_COLOR)
    if image is None:
        return None
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


# ═══════════════════════════════════════════════════════════════════════════
# Microphone
# ═══════════════════════════════════════════════════════════════════════════

class PushedAudioSource:
    """Holds the latest analyser buffer pushed by the client."""

    def __init__(self, sample_rate: int = 44100) -> None:
        self._sample_rate = sample_rate
        self._buffer: Optional[np.ndarray] = None
        self.closed = False

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    def push(self, samples: Any, sample_rate: Optional[int] = None, encoding: str = "f32") -> None:
        if self.closed:
            return
        if sample_rate:
            self._sample_rate = int(sample_rate)
        self._buffer = decode_samples(samples, encoding)

    def read(self) -> Optional[np.ndarray]:
        return self._buffer

    async def close(self) -> None:
        self.closed = True
        self._buffer = None


class ClientMicrophone:
    def __init__(self) -> None:
        self.status = PermissionStatus.UNKNOWN
        self.source: Optional[PushedAudioSource] = None

    def report(self, status: str) -> None:
        self.status = PermissionStatus(status)

    async def probe(self) -> None:
        _check_permission(self.status, Modality.MICROPHONE, "Microphone")

    async def open(self) -> PushedAudioSource:
        await self.probe()
        self.source = PushedAudioSource()
        return self.source

    def push(self, samples: Any, sample_rate: Optional[int] = None, encoding: str = "f32") -> None:
        if self.source is not None:
            self.source.push(samples, sample_rate, encoding)


# ═══════════════════════════════════════════════════════════════════════════
# Camera
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DetectionFrame:
    """A 'frame' whose emotions were already computed by the client."""
    detections: tuple


class PushedVideoSource:
    """One-slot mailbox: read() consumes the latest pushed frame."""

    def __init__(self) -> None:
        self._frame: Optional[Any] = None
        self.closed = False

    def push(self, frame: Any) -> None:
        if not self.closed and frame is not None:
            self._frame = frame

    def read(self) -> Optional[Any]:
        frame, self._frame = self._frame, None
        return frame

    async def close(self) -> None:
        self.closed = True
        self._frame = None


class ClientCamera:
    def __init__(self) -> None:
        self.status = PermissionStatus.UNKNOWN
        self.source: Optional[PushedVideoSource] = None

    def report(self, status: str) -> None:
        self.status = PermissionStatus(status)

    async def probe(self) -> None:
        _check_permission(self.status, Modality.CAMERA, "Camera")

    async def open(self) -> PushedVideoSource:
        await self.probe()
        self.source = PushedVideoSource()
        return self.source

    def push_jpeg(self, data: str) -> bool:
        if self.source is None:
            return False
        frame = decode_jpeg(data)
        if frame is None:
            return False
        self.source.push(frame)
        return True

    def push_detections(self, detections: Sequence[Any]) -> None:
        if self.source is not None:
            self.source.push(DetectionFrame(detections=tuple(detections or ())))


# ═══════════════════════════════════════════════════════════════════════════
# Face-emotion classifiers
# ═══════════════════════════════════════════════════════════════════════════

class ClientSideClassifier:
    """The browser runs the model; frames carry its detections."""

    async def load(self) -> None:
        return None

    async def detect(self, frame: Any) -> Sequence[Any]:
        if isinstance(frame, DetectionFrame):
            return list(frame.detections)
        return []


class LazyClassifier:
    """Imports a `module:attr` factory on load(); any failure is a ModelLoadFailure."""

    def __init__(self, target: str) -> None:
        self.target = target
        self._impl: Optional[EmotionClassifier] = None

    async def load(self) -> None:
        if self._impl is not None:
            return
        try:
            module_name, _, attr = self.target.partition(":")
            factory = getattr(importlib.import_module(module_name), attr)
            impl = factory()
            result = impl.load()
            if asyncio.iscoroutine(result):
                await result
        except ModelLoadFailure:
            raise
        except Exception as e:
            logger.warning(f"Emotion classifier '{self.target}' failed to load: {e}")
            raise ModelLoadFailure("Unable to load the video analysis models.") from e
        self._impl = impl

    async def detect(self, frame: Any) -> Sequence[Any]:
        if self._impl is None:
            return []
        if isinstance(frame, DetectionFrame):
            return list(frame.detections)
        return await self._impl.detect(frame)


def load_classifier(source: str = video_cfg.classifier) -> Optional[EmotionClassifier]:
    if not source or source == "none":
        return None
    if source == "client":
        return ClientSideClassifier()
    if ":" not in source:
        logger.warning(f"Ignoring classifier '{source}' (expected 'module:attr')")
        return None
    return LazyClassifier(source)


# ═══════════════════════════════════════════════════════════════════════════
# Speech recognition
# ═══════════════════════════════════════════════════════════════════════════

class ClientRecognizer:
    """Relays the browser's recognition events to the bound callbacks."""

    def __init__(self, supported: bool = True) -> None:
        self.supported = supported
        self.running = False
        self.start_count = 0
        self._on_result: Optional[Callable[[TranscriptEvent], None]] = None
        self._on_error: Optional[Callable[[str], None]] = None
        self._on_end: Optional[Callable[[], None]] = None

    def report_support(self, supported: bool) -> None:
        self.supported = bool(supported)

    def start(
        self,
        on_result: Callable[[TranscriptEvent], None],
        on_error: Callable[[str], None],
        on_end: Callable[[], None],
    ) -> None:
        if not self.supported:
            raise RecognitionUnsupported("Speech recognition is not supported by this browser.")
        self._on_result, self._on_error, self._on_end = on_result, on_error, on_end
        self.running = True
        self.start_count += 1

    def stop(self) -> None:
        self.running = False

    def feed(self, transcript: str, is_final: bool = True) -> None:
        if self.running and self._on_result:
            self._on_result(TranscriptEvent(transcript=transcript, is_final=is_final))

    def fail(self, error: str) -> None:
        if self.running and self._on_error:
            self._on_error(error)

    def end(self) -> None:
        if self.running and self._on_end:
            self.running = False
            self._on_end()


def detections_from_payload(items: Optional[List[Any]]) -> List[dict]:
    """Keep only well-formed {label|emotion, score} entries."""
    result = []
    for item in items or ():
        if not isinstance(item, dict):
            continue
        label = item.get("label") or item.get("emotion")
        if not label:
            continue
        try:
            score = float(item.get("score", 0.5))
        except (TypeError, ValueError):
            score = 0.5
        result.append({"label": str(label), "score": score})
    return result
