"""Tests for the end-of-session summary."""
import pytest

from affectcoach.core.models import HistoryPoint, SummaryAverages
from affectcoach.processing.summary import (
    GENERIC_TIPS,
    INTENTION_SETTING,
    PAUSE_PRACTICE,
    RESET_RITUAL,
    SLOW_DOWN_DRILL,
    STRETCH_CHALLENGE,
    SessionSummarizer,
    compute_advice,
)
from affectcoach.processing.video_emotion import VideoEmotionStats


def history(n=5, **values):
    point = dict(stress=0.8, confidence=0.3, wpm=95.0, fillers=2.0)
    point.update(values)
    return [HistoryPoint(time=i * 0.75, **point) for i in range(n)]


def test_stressed_low_confidence_session():
    """Reset ritual + intention-setting, padded to exactly three."""
    summary = SessionSummarizer().summarize(history())

    assert summary.averages.stress == pytest.approx(0.8)
    assert summary.averages.confidence == pytest.approx(0.3)
    assert summary.averages.wpm == pytest.approx(95.0)
    assert summary.averages.fillers == pytest.approx(2.0)
    assert len(summary.advice) == 3
    assert summary.advice[0] == RESET_RITUAL
    assert summary.advice[1] == INTENTION_SETTING
    assert summary.advice[2] == GENERIC_TIPS[0]


def test_empty_history_has_no_summary():
    assert SessionSummarizer().summarize([]) is None


def test_advice_is_capped_at_three():
    advice = compute_advice(SummaryAverages(stress=0.8, confidence=0.3, wpm=130.0, fillers=6.0))
    assert advice == [RESET_RITUAL, INTENTION_SETTING, PAUSE_PRACTICE]
    assert SLOW_DOWN_DRILL not in advice


def test_confident_session_gets_stretch_challenge():
    advice = compute_advice(SummaryAverages(stress=0.3, confidence=0.8, wpm=None, fillers=None))
    assert advice == [STRETCH_CHALLENGE, GENERIC_TIPS[0], GENERIC_TIPS[1]]


def test_balanced_session_gets_generic_tips():
    advice = compute_advice(SummaryAverages(stress=0.5, confidence=0.6))
    assert advice == list(GENERIC_TIPS)


def test_pace_and_fillers_averaged_over_defined_entries():
    points = [
        HistoryPoint(time=0.0, stress=0.4, confidence=0.6, wpm=None, fillers=None),
        HistoryPoint(time=0.75, stress=0.6, confidence=0.4, wpm=120.0, fillers=3.0),
        HistoryPoint(time=1.5, stress=0.5, confidence=0.5, wpm=100.0, fillers=None),
    ]
    summary = SessionSummarizer().summarize(points)

    assert summary.averages.stress == pytest.approx(0.5)
    assert summary.averages.wpm == pytest.approx(110.0)
    assert summary.averages.fillers == pytest.approx(3.0)
    assert len(summary.history) == 3


def test_video_distribution_in_summary():
    stats = VideoEmotionStats()
    for t, label in enumerate(["happy", "happy", "happy", "sad"]):
        stats.record(label, label, float(t))

    summary = SessionSummarizer().summarize(history(2), stats)

    assert summary.video.dominant == "happy"
    assert summary.video_distribution[0].ratio == pytest.approx(0.75)
    assert summary.to_dict()["video"]["total"] == 4


def test_summary_without_video():
    summary = SessionSummarizer().summarize(history(1), VideoEmotionStats())
    assert summary.video is None
    assert summary.video_distribution is None
