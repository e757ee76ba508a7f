"""Tests for the video emotion adapter and label histogram."""
import pytest

from affectcoach.core.errors import ModelLoadFailure
from affectcoach.processing.video_emotion import (
    VideoEmotionAdapter,
    VideoEmotionStats,
    normalize_video_label,
    video_scores,
)
from conftest import FakeClassifier


def test_dominant_label_and_ratio():
    """3 happy + 1 sad, ≥900 ms apart → happy with ratio 0.75."""
    stats = VideoEmotionStats()
    for t, label in enumerate(["happy", "sad", "happy", "happy"]):
        assert stats.record(label, label, float(t))

    summary = stats.summarize()
    assert summary.dominant == "happy"
    assert summary.total == 4
    assert summary.distribution[0].label == "happy"
    assert summary.distribution[0].ratio == pytest.approx(0.75)
    assert summary.distribution[1].ratio == pytest.approx(0.25)


def test_dedup_window():
    stats = VideoEmotionStats(dedup_window=0.9)
    assert stats.record("happy", "happy", 10.0)
    assert not stats.record("happy", "happy", 10.5)
    assert stats.record("sad", "sad", 10.9)
    assert stats.total == 2


def test_distribution_keeps_top_four():
    stats = VideoEmotionStats(dedup_window=0.0)
    for i, label in enumerate(["a", "a", "a", "b", "b", "c", "d", "e"]):
        stats.record(label, label, float(i))

    ranked = stats.ranked()
    assert [entry.label for entry in ranked][:2] == ["a", "b"]
    assert len(ranked) == 4
    assert stats.dominant == "a"


def test_empty_histogram():
    stats = VideoEmotionStats()
    assert stats.summarize() is None
    assert stats.dominant is None


def test_label_normalisation():
    assert normalize_video_label("Joy") == "happy"
    assert normalize_video_label("surprise") == "surprised"
    assert normalize_video_label("Pondering") == "pondering"
    assert normalize_video_label("") is None


@pytest.mark.parametrize("label,expected", [
    ("angry", (0.75, 0.35)),
    ("fearful", (0.75, 0.35)),
    ("sad", (0.6, 0.3)),
    ("surprised", (0.55, 0.55)),
    ("happy", (0.3, 0.72)),
    ("neutral", (0.3, 0.72)),
    ("pondering", (0.48, 0.5)),
])
def test_rule_table_at_full_intensity(label, expected):
    stress, confidence = video_scores(label, 1.0)
    assert stress == pytest.approx(expected[0])
    assert confidence == pytest.approx(expected[1])


def test_weak_scores_are_pulled_toward_half():
    """Intensity floor is 0.15."""
    stress, confidence = video_scores("angry", 0.0)
    assert stress == pytest.approx(0.75 * 0.15 + 0.85 * 0.5)
    assert confidence == pytest.approx(0.35 * 0.15 + 0.85 * 0.5)

    default = video_scores("angry", None)
    assert default[0] == pytest.approx(0.75 * 0.5 + 0.25)


@pytest.mark.asyncio
async def test_adapter_keeps_top_detection():
    adapter = VideoEmotionAdapter(FakeClassifier(detections=[
        {"label": "joy", "score": 0.2},
        {"emotion": "angry", "score": 0.9},
    ]))
    await adapter.load()

    reading = await adapter.process(object(), now=5.0)

    assert reading.label == "angry"
    assert reading.raw_label == "angry"
    assert reading.score == pytest.approx(0.9)
    assert adapter.stats.total == 1
    contribution = adapter.contribution()
    assert contribution.source == "video"
    assert contribution.stress > 0.5


@pytest.mark.asyncio
async def test_no_face_clears_reading():
    classifier = FakeClassifier(detections=[{"label": "happy", "score": 1.0}])
    adapter = VideoEmotionAdapter(classifier)
    await adapter.load()
    await adapter.process(object(), now=1.0)

    classifier.detections = []
    assert await adapter.process(object(), now=2.0) is None
    assert adapter.contribution() is None


@pytest.mark.asyncio
async def test_load_failure_makes_adapter_absent():
    adapter = VideoEmotionAdapter(FakeClassifier(load_error=RuntimeError("weights missing")))

    with pytest.raises(ModelLoadFailure):
        await adapter.load()

    assert not adapter.is_present
    assert await adapter.process(object()) is None
    assert adapter.contribution() is None


@pytest.mark.asyncio
async def test_missing_classifier_is_absent():
    adapter = VideoEmotionAdapter(None)
    with pytest.raises(ModelLoadFailure):
        await adapter.load()
    assert not adapter.is_present
