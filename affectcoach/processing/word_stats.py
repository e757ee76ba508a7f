"""
AffectCoach — Word Statistics

Accumulates spoken words and filler words from final transcript events
and turns them into per-minute rates.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional

from ..core.config import session_cfg
from ..core.interfaces import TranscriptEvent

_NON_LETTERS = re.compile(r"[^a-z\s]+")

# First tick must not divide by (almost) zero minutes
MIN_ELAPSED_MINUTES = 1 / 60


def normalize_text(text: str) -> str:
    """Lower-case, strip diacritics, replace anything but letters with spaces."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_LETTERS.sub(" ", stripped)


@dataclass(frozen=True)
class SpeechRates:
    words_per_minute: float
    fillers_per_minute: float
    words: float
    fillers: int


class WordStatsAccumulator:
    """Session-scoped word / filler counters fed by recognition callbacks."""

    def __init__(self, filler_words: Iterable[str] = session_cfg.filler_words) -> None:
        self._fillers: FrozenSet[str] = frozenset(normalize_text(w).strip() for w in filler_words)
        self.total_words: int = 0
        self.filler_count: int = 0
        self.fillers_per_minute: Optional[float] = None

    def add_transcript(self, text: str) -> int:
        """Count one final transcript; returns the number of words added."""
        words = normalize_text(text).split()
        self.total_words += len(words)
        self.filler_count += sum(1 for word in words if word in self._fillers)
        return len(words)

    def handle_event(self, event: TranscriptEvent) -> int:
        if not event.is_final or not event.transcript:
            return 0
        return self.add_transcript(event.transcript)

    def rates(self, elapsed_seconds: float, fallback_words: Optional[float] = None) -> SpeechRates:
        """
        Per-minute rates over the session so far.  fallback_words (burst
        estimate) is only used while no transcript word has been counted;
        the session passes it only when no recognizer is live.
        """
        elapsed_minutes = max(elapsed_seconds / 60.0, MIN_ELAPSED_MINUTES)
        words = self.total_words or fallback_words or 0
        rates = SpeechRates(
            words_per_minute=words / elapsed_minutes,
            fillers_per_minute=self.filler_count / elapsed_minutes,
            words=words,
            fillers=self.filler_count,
        )
        self.fillers_per_minute = rates.fillers_per_minute
        return rates

    def reset(self) -> None:
        self.total_words = 0
        self.filler_count = 0
        self.fillers_per_minute = None
