"""
AffectCoach — FastAPI Server

================================================================================
Architecture:
  • One SessionController per WebSocket connection
  • The browser owns the real devices and pushes their data:
      - analyser buffers       → ClientMicrophone
      - JPEG frames/detections → ClientCamera (+ optional server-side classifier)
      - recognition events     → ClientRecognizer
  • Metrics, emotion state, coach cues and insights streamed back per tick
================================================================================

Endpoints:
  WS  /ws/session           — real-time session stream
  GET /health               — server health
  GET /sessions             — list active sessions with telemetry
  GET /session/{session_id} — single session detail

Client → Server messages:
  { type: "hello", microphone, camera, recognition }   → capability report
  { type: "consent", microphone?, camera? }            → request consent
  { type: "toggle_video", enabled }                    → camera on/off (not while running)
  { type: "start" } / { type: "stop" }                 → session lifecycle
  { type: "audio_frame", samples, sample_rate, encoding? }
  { type: "video_frame", data }                        → base64 JPEG
  { type: "video_emotion", detections: [{label, score}] }
  { type: "transcript", text, is_final }
  { type: "recognition_error", error }
  { type: "recognition_end" }
  { type: "ping" }

Server → Client messages:
  metrics · emotion_state · coach_cue · voice_insight · session_toggle ·
  session_state · summary · error · pong
"""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import insight_cfg, server_cfg, session_cfg, video_cfg
from .services.capabilities import (
    ClientCamera,
    ClientMicrophone,
    ClientRecognizer,
    detections_from_payload,
    load_classifier,
)
from .services.insight_client import RemoteInsightClient
from .services.registry import SessionRegistry

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("affectcoach")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

# ---------------------------------------------------------------------------
# Session Registry
# ---------------------------------------------------------------------------

registry = SessionRegistry()

# ---------------------------------------------------------------------------
# FastAPI Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("AffectCoach backend starting...")
    logger.info(f"   Insight endpoint configured: {insight_cfg.enabled}")
    logger.info(f"   Emotion classifier: {video_cfg.classifier}")
    yield
    logger.info("Shutting down — stopping all sessions...")
    await registry.stop_all()
    logger.info("AffectCoach backend stopped")


# ---------------------------------------------------------------------------
# FastAPI App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AffectCoach — Real-Time Speaking Emotion Coach",
    version=VERSION,
    description=(
        "Fuses voice features, face-emotion readings and an optional remote "
        "insight service into live stress / confidence metrics and coaching cues."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(server_cfg.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# REST Endpoints
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {
        "status": "ok",
        "version": VERSION,
        "insight_configured": insight_cfg.enabled,
        "emotion_classifier": video_cfg.classifier,
        "active_sessions": registry.active_count,
    }


@app.get("/sessions")
async def list_sessions():
    return {
        sid: {
            "running": controller.is_running,
            "telemetry": controller.telemetry.to_dict(),
        }
        for sid, controller in registry.all_sessions.items()
    }


@app.get("/session/{session_id}")
async def session_detail(session_id: str):
    controller = registry.get(session_id)
    if controller is None:
        return JSONResponse(status_code=404, content={"error": "session not found"})
    return controller.diagnostics()


# ---------------------------------------------------------------------------
# WebSocket: Per-Session Stream
# ---------------------------------------------------------------------------

@app.websocket("/ws/session")
async def websocket_session(ws: WebSocket):
    """One SessionController per connection, fed by client-pushed capabilities."""
    await ws.accept()

    session_id = uuid.uuid4().hex[:12]
    microphone = ClientMicrophone()
    camera = ClientCamera()
    recognizer = ClientRecognizer(supported=False)
    insight = RemoteInsightClient() if insight_cfg.enabled else None

    # Helper to send JSON safely
    async def send(data: Dict[str, Any]) -> None:
        try:
            await ws.send_text(json.dumps(data))
        except Exception:
            pass

    async def on_metrics(m: Any) -> None:
        await send({"type": "metrics", "data": m.to_dict()})

    async def on_emotion_state(state: Any) -> None:
        await send({"type": "emotion_state", "data": state.to_dict()})

    async def on_cue(cue: Any) -> None:
        await send({"type": "coach_cue", "data": cue.to_dict()})

    async def on_insight(insight_record: Any) -> None:
        await send({"type": "voice_insight", "data": insight_record.to_dict()})

    async def on_toggle(running: bool) -> None:
        await send({"type": "session_toggle", "data": {"running": running}})

    async def on_state(status: Dict[str, Any]) -> None:
        await send({"type": "session_state", "data": status})

    async def on_error(issue: Any) -> None:
        await send({"type": "error", **issue.to_dict()})

    controller = registry.create(
        session_id,
        microphone=microphone,
        camera=camera,
        recognizer=recognizer,
        classifier=load_classifier(video_cfg.classifier),
        insight_client=insight,
        on_metrics=on_metrics,
        on_emotion_state=on_emotion_state,
        on_session_toggle=on_toggle,
        on_error=on_error,
        on_insight=on_insight,
        on_cue=on_cue,
        on_state=on_state,
    )

    async def send_state() -> None:
        await send({"type": "session_state", "data": {
            "session_id": session_id,
            "session_state": controller.state.value,
            "session_mode": controller.mode.value,
            "video_enabled": controller.video_enabled,
            "recognition_lang": session_cfg.recognition_lang,
        }})

    await send_state()

    try:
        while True:
            raw = await ws.receive_text()

            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if not isinstance(message, dict):
                continue

            msg_type = message.get("type", "")

            try:
                # ── Capability report ──
                if msg_type == "hello":
                    if "microphone" in message:
                        microphone.report(message["microphone"])
                    if "camera" in message:
                        camera.report(message["camera"])
                    recognizer.report_support(bool(message.get("recognition", False)))
                    await send_state()

                elif msg_type == "consent":
                    if "microphone" in message:
                        microphone.report(message["microphone"])
                    if "camera" in message:
                        camera.report(message["camera"])
                    await controller.request_consent()
                    await send_state()

                elif msg_type == "toggle_video":
                    await controller.set_video_enabled(bool(message.get("enabled", False)))
                    await send_state()

                # ── Lifecycle ──
                elif msg_type == "start":
                    await controller.start()
                    await send_state()

                elif msg_type == "stop":
                    summary = await controller.stop()
                    await send({"type": "summary", "data": summary.to_dict() if summary else None})
                    await send_state()

                # ── Pushed data ──
                elif msg_type == "audio_frame":
                    microphone.push(
                        message.get("samples", []),
                        sample_rate=message.get("sample_rate"),
                        encoding=message.get("encoding", "f32"),
                    )

                elif msg_type == "video_frame":
                    data = message.get("data")
                    if data:
                        camera.push_jpeg(data)

                elif msg_type == "video_emotion":
                    camera.push_detections(detections_from_payload(message.get("detections")))

                elif msg_type == "transcript":
                    text = str(message.get("text", ""))
                    recognizer.feed(text, is_final=bool(message.get("is_final", True)))

                elif msg_type == "recognition_error":
                    recognizer.fail(str(message.get("error", "unknown")))

                elif msg_type == "recognition_end":
                    recognizer.end()

                # ── Keepalive ──
                elif msg_type == "ping":
                    await send({"type": "pong"})

            except (TypeError, ValueError) as e:
                logger.debug(f"[{session_id}] Bad '{msg_type}' message: {e}")
                await send({"type": "error", "kind": "bad_message", "message": str(e)[:100]})

    except WebSocketDisconnect:
        logger.info(f"[{session_id}] WebSocket disconnected")
    except Exception as e:
        logger.error(f"[{session_id}] WebSocket error: {e}", exc_info=True)
    finally:
        await registry.stop_session(session_id)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "affectcoach.server:app",
        host=server_cfg.host,
        port=server_cfg.port,
        reload=True,
        log_level="info",
    )
