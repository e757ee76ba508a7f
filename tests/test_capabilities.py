"""Tests for the client-pushed capabilities."""
import base64

import cv2
import numpy as np
import pytest

from affectcoach.core.errors import (
    DeviceUnavailable,
    ModelLoadFailure,
    PermissionDenied,
    RecognitionUnsupported,
)
from affectcoach.services.capabilities import (
    ClientCamera,
    ClientMicrophone,
    ClientRecognizer,
    ClientSideClassifier,
    DetectionFrame,
    LazyClassifier,
    decode_jpeg,
    decode_samples,
    detections_from_payload,
    load_classifier,
)


def test_decode_float_list():
    assert decode_samples([0.0, 0.5, -0.5]).tolist() == [0.0, 0.5, -0.5]


def test_decode_base64_pcm():
    pcm = np.array([0, 16384, -32768], dtype="<i2").tobytes()
    decoded = decode_samples(base64.b64encode(pcm).decode(), encoding="s16")
    assert decoded.tolist() == pytest.approx([0.0, 0.5, -1.0])

    f32 = np.array([0.25, -0.75], dtype="<f4").tobytes()
    assert decode_samples(base64.b64encode(f32).decode()).tolist() == pytest.approx([0.25, -0.75])


def test_decode_jpeg_to_rgb():
    bgr = np.zeros((8, 8, 3), dtype=np.uint8)
    bgr[:, :, 2] = 255  # red in BGR
    ok, encoded = cv2.imencode(".jpg", bgr)
    assert ok

    rgb = decode_jpeg(base64.b64encode(encoded.tobytes()).decode())
    assert rgb.shape == (8, 8, 3)
    assert rgb[4, 4, 0] > 200
    assert rgb[4, 4, 2] < 60


def test_undecodable_jpeg_is_dropped():
    assert decode_jpeg(base64.b64encode(b"not an image").decode()) is None


@pytest.mark.asyncio
async def test_microphone_permission_flow():
    mic = ClientMicrophone()
    with pytest.raises(PermissionDenied):
        await mic.probe()

    mic.report("unavailable")
    with pytest.raises(DeviceUnavailable):
        await mic.open()

    mic.report("granted")
    source = await mic.open()
    mic.push([0.1, 0.2], sample_rate=48000)
    assert source.sample_rate == 48000
    assert source.read().tolist() == pytest.approx([0.1, 0.2])

    await source.close()
    assert source.read() is None


@pytest.mark.asyncio
async def test_camera_detections_are_consumed_once():
    camera = ClientCamera()
    camera.report("granted")
    source = await camera.open()

    camera.push_detections([{"label": "happy", "score": 0.9}])
    frame = source.read()
    assert isinstance(frame, DetectionFrame)
    assert source.read() is None

    detections = await ClientSideClassifier().detect(frame)
    assert detections[0]["label"] == "happy"


@pytest.mark.asyncio
async def test_camera_denied():
    camera = ClientCamera()
    camera.report("denied")
    with pytest.raises(PermissionDenied):
        await camera.open()


def test_recognizer_relay():
    recognizer = ClientRecognizer(supported=True)
    results, errors, ends = [], [], []
    recognizer.start(results.append, errors.append, lambda: ends.append(True))

    recognizer.feed("hello world")
    recognizer.fail("no-speech")
    recognizer.end()
    recognizer.feed("after end")

    assert [e.transcript for e in results] == ["hello world"]
    assert errors == ["no-speech"]
    assert ends == [True]


def test_unsupported_recognizer():
    with pytest.raises(RecognitionUnsupported):
        ClientRecognizer(supported=False).start(print, print, print)


def test_load_classifier_sources():
    assert isinstance(load_classifier("client"), ClientSideClassifier)
    assert isinstance(load_classifier("pkg.module:factory"), LazyClassifier)
    assert load_classifier("none") is None
    assert load_classifier("garbage") is None


@pytest.mark.asyncio
async def test_lazy_classifier_import_failure():
    classifier = LazyClassifier("affectcoach_missing_module:factory")
    with pytest.raises(ModelLoadFailure):
        await classifier.load()


def test_detections_payload_filtering():
    items = [
        {"label": "happy", "score": "0.7"},
        {"emotion": "sad"},
        {"score": 0.4},
        "junk",
        {"label": "angry", "score": "x"},
    ]
    assert detections_from_payload(items) == [
        {"label": "happy", "score": 0.7},
        {"label": "sad", "score": 0.5},
        {"label": "angry", "score": 0.5},
    ]
