"""
AffectCoach — Structured Latency Tracer

Records wall-clock timestamps for session milestones:
  session_started → first_tick → first_transcript → first_video_emotion → first_insight

Computes and logs latency deltas.  This is the single source of truth
for latency diagnostics — no ad-hoc timing elsewhere.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger("affectcoach.latency")

_MILESTONES = (
    "session_started",
    "first_tick",
    "first_transcript",
    "first_video_emotion",
    "first_insight",
)


@dataclass
class LatencyTrace:
    """Record of session latency milestones (wall-clock seconds)."""

    session_id: str = ""

    session_started: float = 0.0
    first_tick: float = 0.0
    first_transcript: float = 0.0
    first_video_emotion: float = 0.0
    first_insight: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"session_id": self.session_id}
        for name in _MILESTONES:
            ts = getattr(self, name)
            if ts > 0:
                d[name] = ts
        d["deltas"] = self.deltas()
        return d

    def deltas(self) -> Dict[str, Optional[float]]:
        """Milliseconds from session start to every later milestone."""
        def _delta(a: float, b: float) -> Optional[float]:
            if a > 0 and b > 0:
                return round((b - a) * 1000, 1)
            return None

        return {
            f"start_to_{name}_ms": _delta(self.session_started, getattr(self, name))
            for name in _MILESTONES[1:]
        }


class LatencyTracer:
    """
    Mutable tracer that records milestones and logs them.

    Usage:
        tracer = LatencyTracer("session-abc")
        tracer.start()
        tracer.mark("first_tick")
    """

    def __init__(self, session_id: str) -> None:
        self._trace = LatencyTrace(session_id=session_id)

    @property
    def trace(self) -> LatencyTrace:
        return self._trace

    def start(self) -> None:
        """New session — forget previous milestones."""
        self._trace = LatencyTrace(
            session_id=self._trace.session_id, session_started=time.time()
        )
        logger.info(f"[{self._trace.session_id}] LATENCY session_started")

    def mark(self, milestone: str) -> None:
        if milestone not in _MILESTONES[1:]:
            raise ValueError(f"Unknown milestone: {milestone}")
        if getattr(self._trace, milestone) > 0:
            return  # Already marked
        setattr(self._trace, milestone, time.time())
        delta = self._trace.deltas()[f"start_to_{milestone}_ms"]
        logger.info(f"[{self._trace.session_id}] LATENCY {milestone} (start→{milestone}: {delta}ms)")

    def summary(self) -> Dict[str, Any]:
        return self._trace.to_dict()
