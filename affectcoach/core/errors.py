"""
AffectCoach — Error Taxonomy

Every capability failure maps to one ErrorKind.  Capabilities raise the
matching CoachError subclass; the session controller turns it into a
SessionIssue (user-facing text + machine-readable kind) and decides
whether the affected modality is off for the rest of the session.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class ErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    DEVICE_UNAVAILABLE = "device_unavailable"
    MODEL_LOAD_FAILURE = "model_load_failure"
    RECOGNITION_UNSUPPORTED = "recognition_unsupported"
    REMOTE_INSIGHT_FAILURE = "remote_insight_failure"
    TRANSIENT_RECOGNITION_ERROR = "transient_recognition_error"


class Modality(str, Enum):
    MICROPHONE = "microphone"
    CAMERA = "camera"
    RECOGNITION = "recognition"
    VIDEO_MODEL = "video_model"
    INSIGHT = "insight"


class CoachError(Exception):
    kind: ErrorKind

    def __init__(self, message: str, modality: Modality) -> None:
        super().__init__(message)
        self.message = message
        self.modality = modality

    def to_issue(self) -> "SessionIssue":
        return SessionIssue(kind=self.kind, modality=self.modality, message=self.message)


class PermissionDenied(CoachError):
    kind = ErrorKind.PERMISSION_DENIED


class DeviceUnavailable(CoachError):
    kind = ErrorKind.DEVICE_UNAVAILABLE


class ModelLoadFailure(CoachError):
    kind = ErrorKind.MODEL_LOAD_FAILURE

    def __init__(self, message: str, modality: Modality = Modality.VIDEO_MODEL) -> None:
        super().__init__(message, modality)


class RecognitionUnsupported(CoachError):
    kind = ErrorKind.RECOGNITION_UNSUPPORTED

    def __init__(self, message: str, modality: Modality = Modality.RECOGNITION) -> None:
        super().__init__(message, modality)


class RemoteInsightFailure(CoachError):
    kind = ErrorKind.REMOTE_INSIGHT_FAILURE

    def __init__(self, message: str, modality: Modality = Modality.INSIGHT) -> None:
        super().__init__(message, modality)


class TransientRecognitionError(CoachError):
    kind = ErrorKind.TRANSIENT_RECOGNITION_ERROR

    def __init__(self, message: str, modality: Modality = Modality.RECOGNITION) -> None:
        super().__init__(message, modality)


@dataclass(frozen=True)
class SessionIssue:
    """What the caller receives for any failure."""
    kind: ErrorKind
    modality: Modality
    message: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "modality": self.modality.value,
            "message": self.message,
            "timestamp": self.timestamp,
        }
