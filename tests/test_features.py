"""Tests for feature extraction and word statistics."""
import numpy as np
import pytest

from affectcoach.core.interfaces import TranscriptEvent
from affectcoach.processing.features import FeatureExtractor
from affectcoach.processing.word_stats import WordStatsAccumulator, normalize_text
from conftest import sine


def test_silence_frame():
    """Silence: zero energy, not speaking, no pitch."""
    extractor = FeatureExtractor()
    frame = extractor.extract(np.zeros(1024), 44100)

    assert frame.energy == 0.0
    assert frame.rms == 0.0
    assert frame.pitch_hz is None
    assert frame.speaking_ratio == 0.0
    assert not extractor.is_speaking


def test_energy_is_normalised_and_clamped():
    extractor = FeatureExtractor()
    frame = extractor.extract(np.full(1024, 0.03), 44100)
    assert frame.energy == pytest.approx(0.2)

    loud = extractor.extract(sine(amplitude=0.9), 44100)
    assert loud.energy == 1.0


def test_speech_bursts_and_ratio():
    """Each silence → speech edge counts one burst."""
    extractor = FeatureExtractor()
    silence, voice = np.zeros(1024), sine()

    for buf in (silence, voice, voice, silence, voice):
        extractor.extract(buf, 44100)

    assert extractor.burst_count == 2
    assert extractor.speaking_ratio == pytest.approx(3 / 5)
    assert extractor.estimated_words == pytest.approx(2 * 3.2)


def test_variance_is_population_variance_of_window():
    extractor = FeatureExtractor(window=4)
    levels = []
    for amp in (0.0, 0.03, 0.06, 0.09, 0.12):
        frame = extractor.extract(np.full(256, amp), 44100)
        levels.append(frame.energy)

    assert frame.variance == pytest.approx(float(np.var(levels[-4:])))


def test_reset_clears_counters():
    extractor = FeatureExtractor()
    extractor.extract(sine(), 44100)
    extractor.reset()

    assert extractor.burst_count == 0
    assert extractor.speaking_ratio == 0.0
    assert extractor.extract(np.zeros(64), 44100).variance == 0.0


# ---------------------------------------------------------------------------
# Word statistics
# ---------------------------------------------------------------------------

def test_words_and_fillers_per_minute():
    """10 words incl. 2 fillers over 30 s → 20 wpm, 4 fillers/min."""
    stats = WordStatsAccumulator()
    stats.add_transcript("so euh I think this is uh really great today")

    rates = stats.rates(30.0)

    assert stats.total_words == 10
    assert stats.filler_count == 2
    assert rates.words_per_minute == pytest.approx(20.0)
    assert rates.fillers_per_minute == pytest.approx(4.0)
    assert stats.fillers_per_minute == pytest.approx(4.0)


def test_interim_transcripts_are_ignored():
    stats = WordStatsAccumulator()
    assert stats.handle_event(TranscriptEvent("hello there", is_final=False)) == 0
    assert stats.handle_event(TranscriptEvent("hello there", is_final=True)) == 2
    assert stats.total_words == 2


def test_normalisation_strips_accents_and_punctuation():
    assert normalize_text("Hmm, ça va? Heu!").split() == ["hmm", "ca", "va", "heu"]

    stats = WordStatsAccumulator()
    stats.add_transcript("HEU... Hum, voilà")
    assert stats.filler_count == 2


def test_burst_estimate_only_without_transcript_words():
    stats = WordStatsAccumulator()
    assert stats.rates(60.0, fallback_words=6.4).words_per_minute == pytest.approx(6.4)

    stats.add_transcript("one two three")
    assert stats.rates(60.0, fallback_words=6.4).words_per_minute == pytest.approx(3.0)


def test_first_tick_uses_minimum_elapsed():
    """Near-zero elapsed time is floored at one second."""
    stats = WordStatsAccumulator()
    stats.add_transcript("one")
    assert stats.rates(0.0).words_per_minute == pytest.approx(60.0)
