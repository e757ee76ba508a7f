"""
AffectCoach — Session Controller

================================================================================
ONE COACHING SESSION — OWNS EVERY PIECE OF MUTABLE STATE
================================================================================

`SessionController` is the only writer of VoiceBaseline, History and
VideoEmotionStats.  It:

  1. Requests consent (microphone probe) → READY.
  2. On start: resets session state once, opens the microphone, optionally
     opens the camera + loads the emotion classifier (falls back to
     audio-only), starts recognition, then launches two loops:
       • tick loop  (750 ms) — features → voice score → fusion → History
       • video loop (~30 fps) — classifier → latest reading + histogram
  3. Recognition callbacks feed word statistics outside the tick.
  4. On stop: releases every capability (also on failed starts), builds the
     Summary from History and returns to READY.

Every failure becomes a SessionIssue on `on_error`; only the affected
modality is switched off.
================================================================================
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set

import numpy as np

from ..core.config import calibration, insight_cfg, session_cfg, CalibrationConfig, SessionConfig
from ..core.errors import (
    CoachError,
    DeviceUnavailable,
    Modality,
    ModelLoadFailure,
    PermissionDenied,
    RecognitionUnsupported,
    RemoteInsightFailure,
    SessionIssue,
    TransientRecognitionError,
)
from ..core.interfaces import (
    AudioSource,
    CameraCapability,
    EmotionClassifier,
    MicrophoneCapability,
    SpeechRecognizer,
    TranscriptEvent,
    VideoSource,
)
from ..core.latency import LatencyTracer
from ..core.models import (
    DEFAULT_SIGNAL,
    EmotionState,
    HistoryPoint,
    MetricSnapshot,
    SessionTelemetry,
    Summary,
    VoiceBaseline,
    VoiceInsight,
)
from ..core.state_machine import SessionMode, SessionState, SessionStateMachine
from ..processing.coach import CoachCue, CoachCueEngine, refresh_voice_insight
from ..processing.features import FeatureExtractor
from ..processing.fusion import FusionEngine, derive_emotion_state
from ..processing.summary import SessionSummarizer
from ..processing.video_emotion import VideoEmotionAdapter, VideoEmotionStats
from ..processing.voice_score import VoiceScoreModel
from ..processing.word_stats import WordStatsAccumulator
from .insight_client import RemoteInsightClient

logger = logging.getLogger("affectcoach.session")

# Recognition error codes that mean the user (or browser policy) refused access
_RECOGNITION_DENIED = frozenset({"not-allowed", "service-not-allowed"})

Callback = Optional[Callable[..., Any]]


class SessionController:
    """
    Lifecycle:
        controller = SessionController("abc", microphone=..., camera=..., on_metrics=...)
        await controller.request_consent()
        await controller.start()
        # ... ticks every 750 ms ...
        summary = await controller.stop()
        await controller.dispose()
    """

    def __init__(
        self,
        session_id: str,
        microphone: MicrophoneCapability,
        camera: Optional[CameraCapability] = None,
        recognizer: Optional[SpeechRecognizer] = None,
        classifier: Optional[EmotionClassifier] = None,
        insight_client: Optional[RemoteInsightClient] = None,
        on_metrics: Callback = None,
        on_emotion_state: Callback = None,
        on_session_toggle: Callback = None,
        on_error: Callback = None,
        on_insight: Callback = None,
        on_cue: Callback = None,
        on_state: Callback = None,
        config: SessionConfig = session_cfg,
        cal: CalibrationConfig = calibration,
        insight_ttl: float = insight_cfg.ttl,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_id = session_id
        self.telemetry = SessionTelemetry(session_id=session_id)

        # Capabilities
        self._microphone = microphone
        self._camera = camera
        self._recognizer = recognizer
        self._insight = insight_client if insight_client is not None and insight_client.enabled else None
        if self._insight is not None:
            self._insight.bind(self._handle_insight, self._handle_insight_error)

        # Callbacks for streaming data to the server/UI layer
        self._on_metrics = on_metrics
        self._on_emotion_state = on_emotion_state
        self._on_session_toggle = on_session_toggle
        self._on_error = on_error
        self._on_insight = on_insight
        self._on_cue = on_cue
        self._on_state = on_state

        self._config = config
        self._cal = cal
        self._insight_ttl = insight_ttl
        self._clock = clock

        # Session-owned state
        self._features = FeatureExtractor(config.feature_window, cal)
        self._words = WordStatsAccumulator(config.filler_words)
        self._voice = VoiceScoreModel(VoiceBaseline(), cal)
        self._fusion = FusionEngine(cal)
        self._video_stats = VideoEmotionStats(config.video_dedup_window)
        self._video = VideoEmotionAdapter(classifier, self._video_stats, cal)
        self._coach = CoachCueEngine()
        self._summarizer = SessionSummarizer()

        self.history: Deque[HistoryPoint] = deque(maxlen=config.history_limit)
        self.snapshot = MetricSnapshot()
        self.emotion_state: Optional[EmotionState] = None
        self.voice_insight: Optional[VoiceInsight] = None
        self.cue: Optional[CoachCue] = None
        self.summary: Optional[Summary] = None
        self.issues: Deque[SessionIssue] = deque(maxlen=50)
        self.reset_count = 0

        # Modalities
        self.video_enabled = camera is not None and classifier is not None
        self._audio: Optional[AudioSource] = None
        self._video_source: Optional[VideoSource] = None
        self._video_active = False
        self._recognition_active = False
        self._recognition_enabled = False

        # Background tasks
        self._tick_task: Optional[asyncio.Task] = None
        self._video_task: Optional[asyncio.Task] = None
        self._callback_tasks: Set[asyncio.Task] = set()

        self._state_machine = SessionStateMachine(on_transition=self._on_state_transition)
        self._latency = LatencyTracer(session_id)
        self._running = False
        self._starting = False
        self._started_at: float = 0.0

    # ── Properties ──────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state_machine.state

    @property
    def mode(self) -> SessionMode:
        return self._state_machine.mode

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def video_active(self) -> bool:
        return self._video_active

    @property
    def recognition_active(self) -> bool:
        return self._recognition_active

    @property
    def baseline(self) -> VoiceBaseline:
        return self._voice.baseline

    @property
    def video_stats(self) -> VideoEmotionStats:
        return self._video_stats

    @property
    def words(self) -> WordStatsAccumulator:
        return self._words

    @property
    def fusion(self) -> FusionEngine:
        return self._fusion

    # ── State machine callback ──────────────────────────────────────────

    def _on_state_transition(self, prev: SessionState, new: SessionState, reason: str) -> None:
        self.telemetry.session_state = new.value
        self.telemetry.session_mode = self._state_machine.mode.value
        if self._on_state:
            self._spawn(self._emit(self._on_state, {
                "session_state": new.value,
                "session_mode": self._state_machine.mode.value,
                "previous_state": prev.value,
                "reason": reason,
            }))

    # ── Consent ─────────────────────────────────────────────────────────

    async def request_consent(self) -> bool:
        """Probe the microphone (and camera, when video is on). True once READY."""
        if self.state in (SessionState.READY, SessionState.RUNNING):
            return True

        self._state_machine.transition(SessionState.AWAITING_CONSENT, reason="consent_requested")
        try:
            await self._microphone.probe()
        except CoachError as e:
            await self._report(e)
            return False

        if self.video_enabled and self._camera is not None:
            try:
                await self._camera.probe()
            except CoachError as e:
                self.video_enabled = False
                await self._report(e)

        self._state_machine.transition(SessionState.READY, reason="microphone_granted")
        return True

    async def set_video_enabled(self, enabled: bool) -> bool:
        """Toggle the camera modality between sessions; refused while running."""
        if self._running or self._starting:
            logger.warning(f"[{self.session_id}] Video toggle refused while the session is running")
            return False

        if not enabled:
            self.video_enabled = False
            self._video_stats.reset()
            self._video.clear()
            return True

        if self._camera is None:
            await self._report(DeviceUnavailable("No camera is available on this device.", Modality.CAMERA))
            return False
        try:
            await self._camera.probe()
        except CoachError as e:
            self.video_enabled = False
            await self._report(e)
            return False
        self.video_enabled = True
        return True

    # ── Start ───────────────────────────────────────────────────────────

    async def start(self) -> bool:
        """Start capturing.  No-op (False) when already running or starting."""
        if self._running or self._starting:
            logger.debug(f"[{self.session_id}] start ignored — already running")
            return False

        self._starting = True
        try:
            if self.state != SessionState.READY and not await self.request_consent():
                return False

            self._reset_session_state()

            try:
                self._audio = await self._microphone.open()
            except CoachError as e:
                await self._report(e)
                await self._release_resources()
                return False
            self.telemetry.audio_active = True

            mode = SessionMode.AUDIO_ONLY
            if self.video_enabled and self._camera is not None and await self._start_video():
                mode = SessionMode.MULTIMODAL

            self._started_at = self._clock()
            self._latency.start()
            self._state_machine.set_mode(mode)
            self._state_machine.transition(SessionState.RUNNING, reason="session_started")
            self._running = True

            self._start_recognition()

            self._tick_task = asyncio.create_task(
                self._tick_worker(), name=f"tick-{self.session_id}"
            )
            if self._video_active:
                self._video_task = asyncio.create_task(
                    self._video_worker(), name=f"video-{self.session_id}"
                )

            logger.info(
                f"[{self.session_id}] Session started — mode={mode.value}, "
                f"recognition={self._recognition_active}, insight={self._insight is not None}"
            )
            await self._emit(self._on_session_toggle, True)
            return True

        except Exception as e:
            logger.error(f"[{self.session_id}] Session start failed: {e}", exc_info=True)
            self._running = False
            await self._release_resources()
            if self.state == SessionState.RUNNING:
                self._state_machine.transition(SessionState.STOPPED, reason="start_failed")
                self._state_machine.transition(SessionState.READY, reason="resources_released")
            self._state_machine.set_mode(SessionMode.UNAVAILABLE)
            raise
        finally:
            self._starting = False

    async def _start_video(self) -> bool:
        """Open the camera and load the classifier; any failure → audio-only."""
        try:
            self._video_source = await self._camera.open()  # type: ignore[union-attr]
        except CoachError as e:
            self.video_enabled = False
            await self._report(e)
            return False

        try:
            await self._video.load()
        except ModelLoadFailure as e:
            self.video_enabled = False
            await self._close_video_source()
            await self._report(e)
            return False

        self._video_active = True
        self.telemetry.video_active = True
        return True

    def _reset_session_state(self) -> None:
        self._features.reset()
        self._words.reset()
        self._voice.reset()
        self._fusion.reset()
        self.history.clear()
        self._video_stats.reset()
        self._video.clear()
        self.snapshot = MetricSnapshot()
        self.emotion_state = None
        self.voice_insight = None
        self.cue = None
        self.summary = None
        if self._insight is not None:
            self._insight.reset()
        self.reset_count += 1

    # ── Tick ────────────────────────────────────────────────────────────

    async def tick(self) -> Optional[MetricSnapshot]:
        """
        One pipeline pass.  Skipped (None) when neither an audio buffer nor
        a video reading is available.
        """
        if not self._running:
            return None
        t0 = time.perf_counter()
        now = self._clock()

        buffer = self._audio.read() if self._audio is not None else None
        has_audio = buffer is not None and np.size(buffer) > 0
        video_estimate = self._video.contribution() if self._video_active else None
        if not has_audio and video_estimate is None:
            return None

        if has_audio:
            frame = self._features.extract(buffer, self._audio.sample_rate)  # type: ignore[union-attr]
        else:
            frame = DEFAULT_SIGNAL

        elapsed = now - self._started_at
        # Burst estimate only stands in when no transcript source is live
        fallback_words = None if self._recognition_active else self._features.estimated_words
        rates = self._words.rates(elapsed, fallback_words)
        local = self._voice.score(frame, rates.fillers_per_minute, timestamp=now)

        if self._insight is not None:
            self._insight.maybe_request(frame, rates.fillers_per_minute)

        reading = self._video.latest if video_estimate is not None else None
        fused = self._fusion.fuse(
            local,
            video=video_estimate,
            ai=self._fusable_insight(now),
            video_label=reading.label if reading else None,
        )

        snapshot = MetricSnapshot(
            emotion_label=fused.emotion_label,
            stress=fused.stress,
            confidence=fused.confidence,
            words_per_minute=rates.words_per_minute,
            fillers_per_minute=rates.fillers_per_minute,
            elapsed_seconds=elapsed,
        )
        self.snapshot = snapshot
        self.history.append(HistoryPoint.from_snapshot(snapshot))
        self.emotion_state = derive_emotion_state(snapshot)

        previous_insight = self.voice_insight
        self.voice_insight = refresh_voice_insight(
            previous_insight,
            (local.stress, local.confidence),
            frame.pitch_hz,
            now,
            ttl=self._insight_ttl,
            delta=self._cal.insight_refresh_delta,
        )

        previous_cue = self.cue
        self.cue = self._coach.evaluate(snapshot)

        self.telemetry.ticks += 1
        self.telemetry.last_tick_latency_ms = round((time.perf_counter() - t0) * 1000, 2)
        if self._insight is not None:
            self.telemetry.insight_calls = self._insight.calls
            self.telemetry.insight_failures = self._insight.failures
        self._latency.mark("first_tick")

        await self._emit(self._on_metrics, snapshot)
        await self._emit(self._on_emotion_state, self.emotion_state)
        if previous_cue is None or previous_cue.kind != self.cue.kind:
            await self._emit(self._on_cue, self.cue)
        if self.voice_insight is not previous_insight:
            await self._emit(self._on_insight, self.voice_insight)
        return snapshot

    def _fusable_insight(self, now: float) -> Optional[VoiceInsight]:
        """Current insight record; an AI record past its TTL is skipped."""
        record = self.voice_insight
        if record is not None and record.source == "ai" and now - record.timestamp >= self._insight_ttl:
            return None
        return record

    # ── Background workers ──────────────────────────────────────────────

    async def _tick_worker(self) -> None:
        logger.info(f"[{self.session_id}] Tick worker started")
        while self._running:
            try:
                await asyncio.sleep(self._config.tick_interval)
                if not self._running:
                    break
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[{self.session_id}] Tick error: {e}", exc_info=True)
        logger.info(f"[{self.session_id}] Tick worker stopped")

    async def _video_worker(self) -> None:
        logger.info(f"[{self.session_id}] Video worker started")
        while self._running and self._video_active:
            try:
                source = self._video_source
                frame = source.read() if source is not None else None
                if frame is not None:
                    reading = await self._video.process(frame, self._clock())
                    if reading is not None:
                        self.telemetry.video_detections += 1
                        self._latency.mark("first_video_emotion")
                await asyncio.sleep(self._config.video_frame_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"[{self.session_id}] Video detection error: {e}")
                await asyncio.sleep(self._config.video_frame_interval)
        logger.info(f"[{self.session_id}] Video worker stopped")

    # ── Recognition ─────────────────────────────────────────────────────

    def _start_recognition(self) -> None:
        self._recognition_active = False
        if self._recognizer is None:
            logger.info(f"[{self.session_id}] No recognizer — using burst word estimate")
            return
        try:
            self._recognizer.start(
                self._handle_transcript, self._handle_recognition_error, self._handle_recognition_end
            )
        except RecognitionUnsupported as e:
            self._spawn(self._report(e))
            return
        self._recognition_enabled = True
        self._recognition_active = True
        self.telemetry.recognition_active = True

    def _handle_transcript(self, event: TranscriptEvent) -> None:
        if not self._running:
            return
        if self._words.handle_event(event):
            self.telemetry.transcripts += 1
            self._latency.mark("first_transcript")

    def _handle_recognition_error(self, code: str) -> None:
        if code in _RECOGNITION_DENIED:
            self._recognition_enabled = False
            self._recognition_active = False
            self.telemetry.recognition_active = False
            self._spawn(self._report(
                PermissionDenied("Speech recognition access was refused.", Modality.RECOGNITION)
            ))
            return
        logger.debug(f"[{self.session_id}] Recognition error: {code}")
        self._spawn(self._report(TransientRecognitionError(f"Speech recognition interrupted ({code}).")))

    def _handle_recognition_end(self) -> None:
        """The engine stopped on its own; restart while the session runs."""
        if not (self._running and self._recognition_enabled and self._recognizer is not None):
            self._recognition_active = False
            return
        try:
            self._recognizer.start(
                self._handle_transcript, self._handle_recognition_error, self._handle_recognition_end
            )
            self.telemetry.recognition_restarts += 1
        except CoachError as e:
            self._recognition_enabled = False
            self._recognition_active = False
            self.telemetry.recognition_active = False
            self._spawn(self._report(e))

    # ── Remote insight ──────────────────────────────────────────────────

    async def _handle_insight(self, insight: VoiceInsight) -> None:
        if not self._running:
            return
        self.voice_insight = insight
        self._latency.mark("first_insight")
        await self._emit(self._on_insight, insight)

    async def _handle_insight_error(self, error: RemoteInsightFailure) -> None:
        self.telemetry.insight_failures = self._insight.failures if self._insight else 0
        await self._report(error)

    # ── Stop / dispose ──────────────────────────────────────────────────

    async def stop(self) -> Optional[Summary]:
        """Stop capturing and return the Summary.  No-op (None) unless running."""
        if not self._running:
            return None
        self._running = False
        self._state_machine.transition(SessionState.STOPPED, reason="session_stopped")

        await self._release_resources()

        self.summary = self._summarizer.summarize(list(self.history), self._video_stats)
        self._state_machine.set_mode(SessionMode.UNAVAILABLE)
        self._state_machine.transition(SessionState.READY, reason="resources_released")

        logger.info(
            f"[{self.session_id}] Session stopped — ticks={self.telemetry.ticks}, "
            f"history={len(self.history)}, summary={'yes' if self.summary else 'no'}"
        )
        await self._emit(self._on_session_toggle, False)
        return self.summary

    async def dispose(self) -> Optional[Summary]:
        summary = await self.stop()
        await self._release_resources()
        if self._insight is not None:
            await self._insight.close()
        for task in list(self._callback_tasks):
            task.cancel()
        self._state_machine.reset()
        return summary

    async def _release_resources(self) -> None:
        """Idempotent; every step runs even if an earlier one fails."""
        current = asyncio.current_task()
        for name in ("_tick_task", "_video_task"):
            task = getattr(self, name)
            setattr(self, name, None)
            if task is not None and not task.done():
                task.cancel()
                if task is not current:
                    try:
                        await task
                    except (asyncio.CancelledError, Exception):
                        pass

        self._recognition_enabled = False
        if self._recognizer is not None and self._recognition_active:
            try:
                self._recognizer.stop()
            except Exception as e:
                logger.warning(f"[{self.session_id}] Recognizer stop failed: {e}")
        self._recognition_active = False

        if self._audio is not None:
            audio, self._audio = self._audio, None
            try:
                await audio.close()
            except Exception as e:
                logger.warning(f"[{self.session_id}] Audio close failed: {e}")

        await self._close_video_source()
        self._video_active = False
        self._video.clear()

        if self._insight is not None:
            await self._insight.cancel_pending()

        self.telemetry.audio_active = False
        self.telemetry.video_active = False
        self.telemetry.recognition_active = False

    async def _close_video_source(self) -> None:
        if self._video_source is None:
            return
        source, self._video_source = self._video_source, None
        try:
            await source.close()
        except Exception as e:
            logger.warning(f"[{self.session_id}] Video close failed: {e}")

    # ── Emission helpers ────────────────────────────────────────────────

    async def _report(self, error: CoachError) -> SessionIssue:
        issue = error.to_issue()
        self.issues.append(issue)
        logger.warning(
            f"[{self.session_id}] {issue.kind.value} ({issue.modality.value}): {issue.message}"
        )
        await self._emit(self._on_error, issue)
        return issue

    async def _emit(self, callback: Callback, payload: Any) -> None:
        if callback is None:
            return
        try:
            cb = callback(payload)
            if asyncio.iscoroutine(cb):
                await cb
        except Exception as e:
            logger.error(f"[{self.session_id}] Callback error: {e}", exc_info=True)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        """Run a coroutine from a sync callback; dropped when no loop is running."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()  # type: ignore[attr-defined]
            return
        task = loop.create_task(coro)
        self._callback_tasks.add(task)
        task.add_done_callback(self._callback_tasks.discard)

    # ── Diagnostics ─────────────────────────────────────────────────────

    def diagnostics(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "session_state": self.state.value,
            "session_mode": self.mode.value,
            "video_enabled": self.video_enabled,
            "history_length": len(self.history),
            "snapshot": self.snapshot.to_dict(),
            "telemetry": self.telemetry.to_dict(),
            "latency": self._latency.summary(),
            "issues": [issue.to_dict() for issue in self.issues],
            "state_history": self._state_machine.history,
        }
