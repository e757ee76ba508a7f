"""Pytest configuration and fixtures."""
import os

import numpy as np
import pytest

# No remote insight endpoint unless a test builds one explicitly
os.environ["AFFECTCOACH_INSIGHT_URL"] = ""

from affectcoach.core.config import SessionConfig
from affectcoach.core.errors import ModelLoadFailure, PermissionDenied, Modality
from affectcoach.core.interfaces import TranscriptEvent
from affectcoach.services.session import SessionController


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAudioSource:
    def __init__(self, buffer=None, sample_rate=44100):
        self.buffer = buffer
        self.sample_rate = sample_rate
        self.closed = False

    def read(self):
        return self.buffer

    async def close(self):
        self.closed = True


class FakeMicrophone:
    def __init__(self, buffer=None, probe_error=None, open_error=None):
        self.buffer = buffer
        self.probe_error = probe_error
        self.open_error = open_error
        self.probe_calls = 0
        self.open_calls = 0
        self.sources = []

    async def probe(self):
        self.probe_calls += 1
        if self.probe_error:
            raise self.probe_error

    async def open(self):
        self.open_calls += 1
        if self.open_error:
            raise self.open_error
        source = FakeAudioSource(self.buffer)
        self.sources.append(source)
        return source


class FakeVideoSource:
    def __init__(self):
        self.frames = []
        self.closed = False

    def read(self):
        return self.frames.pop(0) if self.frames else None

    async def close(self):
        self.closed = True


class FakeCamera:
    def __init__(self, probe_error=None, open_error=None):
        self.probe_error = probe_error
        self.open_error = open_error
        self.open_calls = 0
        self.sources = []

    async def probe(self):
        if self.probe_error:
            raise self.probe_error

    async def open(self):
        self.open_calls += 1
        if self.open_error:
            raise self.open_error
        source = FakeVideoSource()
        self.sources.append(source)
        return source


class FakeClassifier:
    def __init__(self, load_error=None, detections=None):
        self.load_error = load_error
        self.detections = detections or []
        self.load_calls = 0

    async def load(self):
        self.load_calls += 1
        if self.load_error:
            raise self.load_error

    async def detect(self, frame):
        return list(self.detections)


class FakeRecognizer:
    def __init__(self, start_error=None):
        self.start_error = start_error
        self.start_calls = 0
        self.stop_calls = 0
        self.running = False
        self.on_result = self.on_error = self.on_end = None

    def start(self, on_result, on_error, on_end):
        self.start_calls += 1
        if self.start_error:
            raise self.start_error
        self.on_result, self.on_error, self.on_end = on_result, on_error, on_end
        self.running = True

    def stop(self):
        self.stop_calls += 1
        self.running = False

    def say(self, text, is_final=True):
        self.on_result(TranscriptEvent(transcript=text, is_final=is_final))


def sine(freq=220.0, sample_rate=44100, size=2048, amplitude=0.5):
    t = np.arange(size) / sample_rate
    return amplitude * np.sin(2 * np.pi * freq * t)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def voice_buffer():
    return sine()


@pytest.fixture
def microphone(voice_buffer):
    return FakeMicrophone(buffer=voice_buffer)


@pytest.fixture
def recorder():
    """Collects every callback emission by name."""
    events = {name: [] for name in (
        "metrics", "emotion_state", "toggle", "error", "insight", "cue", "state",
    )}

    def make(name):
        def _cb(payload):
            events[name].append(payload)
        return _cb

    events["callbacks"] = dict(
        on_metrics=make("metrics"),
        on_emotion_state=make("emotion_state"),
        on_session_toggle=make("toggle"),
        on_error=make("error"),
        on_insight=make("insight"),
        on_cue=make("cue"),
        on_state=make("state"),
    )
    return events


@pytest.fixture
def fast_config():
    """Long tick interval so tests drive tick() by hand."""
    return SessionConfig(tick_interval=3600.0, video_frame_interval=0.001)


@pytest.fixture
async def make_controller(microphone, recorder, clock, fast_config):
    """Factory for controllers; every one is disposed after the test."""
    created = []

    def _make(**overrides):
        kwargs = dict(
            session_id="test-session",
            microphone=microphone,
            config=fast_config,
            clock=clock,
            **recorder["callbacks"],
        )
        kwargs.update(overrides)
        controller = SessionController(**kwargs)
        created.append(controller)
        return controller

    yield _make

    for controller in created:
        await controller.dispose()


@pytest.fixture
def denied_microphone():
    return FakeMicrophone(probe_error=PermissionDenied("Microphone access was refused.", Modality.MICROPHONE))


@pytest.fixture
def broken_classifier():
    return FakeClassifier(load_error=ModelLoadFailure("Unable to load the video analysis models."))
