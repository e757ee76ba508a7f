"""
AffectCoach — Session State Machine

Enforces the lifecycle: IDLE → AWAITING_CONSENT → READY → RUNNING → STOPPED → READY.
All state transitions go through this module so illegitimate states
are impossible and every transition is logged.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

logger = logging.getLogger("affectcoach.state")


class SessionState(str, Enum):
    """Strict session lifecycle states."""
    IDLE = "idle"                          # Controller created, nothing requested
    AWAITING_CONSENT = "awaiting_consent"  # Microphone permission requested / refused
    READY = "ready"                        # Permission granted, not capturing
    RUNNING = "running"                    # Capturing + ticking
    STOPPED = "stopped"                    # Resources released, summary being built


class SessionMode(str, Enum):
    """Explicit operating mode — never inferred silently."""
    MULTIMODAL = "multimodal"    # Audio + camera emotion
    AUDIO_ONLY = "audio_only"    # Microphone only
    UNAVAILABLE = "unavailable"  # Not capturing


# Legal state transitions
_TRANSITIONS: Dict[SessionState, Set[SessionState]] = {
    SessionState.IDLE:             {SessionState.AWAITING_CONSENT},
    SessionState.AWAITING_CONSENT: {SessionState.READY, SessionState.IDLE},
    SessionState.READY:            {SessionState.RUNNING, SessionState.AWAITING_CONSENT, SessionState.IDLE},
    SessionState.RUNNING:          {SessionState.STOPPED},
    SessionState.STOPPED:          {SessionState.READY, SessionState.IDLE},
}


class SessionStateMachine:
    """
    Enforces legal state transitions and notifies listeners.

    Usage:
        sm = SessionStateMachine(on_transition=my_callback)
        sm.transition(SessionState.AWAITING_CONSENT)   # OK
        sm.transition(SessionState.READY)              # OK
        sm.transition(SessionState.STOPPED)            # illegal from READY → raises
    """

    def __init__(
        self,
        on_transition: Optional[Callable[[SessionState, SessionState, str], None]] = None,
    ) -> None:
        self._state = SessionState.IDLE
        self._mode = SessionMode.UNAVAILABLE
        self._on_transition = on_transition
        self._history: List[Dict] = []
        self._entered_at = time.time()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def mode(self) -> SessionMode:
        return self._mode

    @property
    def history(self) -> List[Dict]:
        return list(self._history)

    def transition(self, target: SessionState, reason: str = "") -> None:
        """
        Attempt a state transition. Raises ValueError on illegal transitions.
        """
        if target == self._state:
            return  # Idempotent — no-op for same state

        allowed = _TRANSITIONS.get(self._state, set())
        if target not in allowed:
            raise ValueError(
                f"Illegal state transition: {self._state.value} → {target.value}. "
                f"Allowed from {self._state.value}: {[s.value for s in allowed]}. "
                f"Reason: {reason}"
            )

        prev = self._state
        now = time.time()
        self._history.append({
            "from": prev.value,
            "to": target.value,
            "reason": reason,
            "timestamp": now,
            "duration_in_prev_ms": round((now - self._entered_at) * 1000, 1),
        })
        self._state = target
        self._entered_at = now

        logger.info(
            f"STATE: {prev.value} → {target.value}"
            + (f" ({reason})" if reason else "")
        )

        if self._on_transition:
            try:
                self._on_transition(prev, target, reason)
            except Exception as e:
                logger.error(f"State transition callback error: {e}")

    def set_mode(self, mode: SessionMode) -> None:
        """Update operating mode. Logged when it changes."""
        if mode == self._mode:
            return
        prev = self._mode
        self._mode = mode
        logger.info(f"MODE: {prev.value} → {mode.value}")

    def reset(self) -> None:
        """Back to IDLE (dispose). Running sessions must be stopped first."""
        if self._state == SessionState.RUNNING:
            raise ValueError("Cannot reset a running session — stop it first")
        if self._state != SessionState.IDLE:
            self.transition(SessionState.IDLE, reason="reset")
        self._mode = SessionMode.UNAVAILABLE
