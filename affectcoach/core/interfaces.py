"""
AffectCoach — Capability Interfaces

Protocol definitions for every external capability the session depends on:
  1. Capture      — microphone and camera streams
  2. Recognition  — speech-to-text transcript events
  3. Classifier   — face-emotion model

SessionController only ever talks to these protocols, so tests substitute
fakes and the server substitutes client-pushed implementations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Sequence, runtime_checkable

import numpy as np


@dataclass(frozen=True)
class TranscriptEvent:
    transcript: str
    is_final: bool = True


# ═══════════════════════════════════════════════════════════════════════════
# Capture
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class AudioSource(Protocol):
    """A live microphone stream exposing its current time-domain buffer."""

    @property
    def sample_rate(self) -> int:
        ...

    def read(self) -> Optional[np.ndarray]:
        """Latest float buffer in [-1, 1], or None if nothing arrived yet."""
        ...

    async def close(self) -> None:
        """Stop tracks and release the audio context."""
        ...


@runtime_checkable
class MicrophoneCapability(Protocol):

    async def probe(self) -> None:
        """
        Ask for permission without keeping the stream.
        Raises PermissionDenied or DeviceUnavailable.
        """
        ...

    async def open(self) -> AudioSource:
        ...


@runtime_checkable
class VideoSource(Protocol):

    def read(self) -> Optional[Any]:
        """Next frame for the classifier, or None when no new frame is ready."""
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class CameraCapability(Protocol):

    async def probe(self) -> None:
        ...

    async def open(self) -> VideoSource:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Recognition
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class SpeechRecognizer(Protocol):
    """
    Continuous recognizer.  on_end fires whenever the engine stops on its
    own (silence, network); the caller decides whether to restart.
    """

    def start(
        self,
        on_result: Callable[[TranscriptEvent], None],
        on_error: Callable[[str], None],
        on_end: Callable[[], None],
    ) -> None:
        """Raises RecognitionUnsupported when no engine is available."""
        ...

    def stop(self) -> None:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Face-emotion classifier
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class EmotionClassifier(Protocol):

    async def load(self) -> None:
        """Raises ModelLoadFailure."""
        ...

    async def detect(self, frame: Any) -> Sequence[Any]:
        """
        Emotions for the first detected face: mappings or objects carrying
        `label` (or `emotion`) and `score`.  Empty when no face is found.
        """
        ...
