"""
AffectCoach — Remote Insight Client

Optional network collaborator.  At most one fire-and-forget POST every
`min_interval` seconds with the latest features:

    POST {rms, variance, speakingRatio, pitch, fillersPerMinute}
      →  {summary?, stress?, confidence?}

Successes produce an AI-sourced VoiceInsight; failures raise a soft error
flag and are reported once until the next success.  The tick never awaits
a request.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional, Set

import httpx

from ..core.config import insight_cfg
from ..core.errors import RemoteInsightFailure
from ..core.models import FeatureFrame, VoiceInsight, clamp

logger = logging.getLogger("affectcoach.insight")

FALLBACK_MESSAGE = "AI voice analysis unavailable, falling back to local metrics."


def build_payload(frame: FeatureFrame, fillers_per_minute: Optional[float]) -> Dict[str, Any]:
    return {
        "rms": frame.rms,
        "variance": frame.variance,
        "speakingRatio": frame.speaking_ratio,
        "pitch": frame.pitch_hz,
        "fillersPerMinute": fillers_per_minute,
    }


def _number(value: Any) -> Optional[float]:
    # bool is an int subclass; true/false are not scores
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return clamp(float(value))


class RemoteInsightClient:
    """
    Lifecycle:
      client.bind(on_insight, on_error) → maybe_request() every tick → close()
    """

    def __init__(
        self,
        url: str = insight_cfg.url,
        min_interval: float = insight_cfg.min_interval,
        timeout: float = insight_cfg.timeout,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.url = url
        self._min_interval = min_interval
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._clock = clock

        self._on_insight: Optional[Callable[[VoiceInsight], Any]] = None
        self._on_error: Optional[Callable[[RemoteInsightFailure], Any]] = None

        self._last_call: Optional[float] = None
        self._pending: Set[asyncio.Task] = set()
        self.has_error = False
        self.calls = 0
        self.failures = 0

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def bind(
        self,
        on_insight: Optional[Callable[[VoiceInsight], Any]] = None,
        on_error: Optional[Callable[[RemoteInsightFailure], Any]] = None,
    ) -> None:
        self._on_insight = on_insight
        self._on_error = on_error

    # ── Tick entry point ────────────────────────────────────────────────

    def maybe_request(
        self, frame: FeatureFrame, fillers_per_minute: Optional[float] = None
    ) -> Optional[asyncio.Task]:
        """Schedule a request if the rate limit allows; never blocks."""
        if not self.enabled:
            return None
        now = self._clock()
        if self._last_call is not None and now - self._last_call < self._min_interval:
            return None
        self._last_call = now
        task = asyncio.create_task(self._run(frame, fillers_per_minute), name="insight-request")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run(self, frame: FeatureFrame, fillers_per_minute: Optional[float]) -> None:
        self.calls += 1
        try:
            insight = await self.request(frame, fillers_per_minute)
        except RemoteInsightFailure as e:
            self.failures += 1
            logger.warning(f"Insight request failed: {e}")
            if self.has_error:
                return
            self.has_error = True
            if self._on_error:
                cb = self._on_error(e)
                if asyncio.iscoroutine(cb):
                    await cb
            return

        self.has_error = False
        if insight is not None and self._on_insight:
            cb = self._on_insight(insight)
            if asyncio.iscoroutine(cb):
                await cb

    # ── HTTP ────────────────────────────────────────────────────────────

    async def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    async def request(
        self, frame: FeatureFrame, fillers_per_minute: Optional[float] = None
    ) -> Optional[VoiceInsight]:
        """One POST.  Raises RemoteInsightFailure on network / HTTP / JSON errors."""
        client = await self._http()
        try:
            response = await client.post(
                self.url,
                json=build_payload(frame, fillers_per_minute),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise RemoteInsightFailure(FALLBACK_MESSAGE) from e
        except httpx.HTTPError as e:
            raise RemoteInsightFailure(FALLBACK_MESSAGE) from e

        if not 200 <= response.status_code < 300:
            logger.debug(f"Insight endpoint returned HTTP {response.status_code}")
            raise RemoteInsightFailure(FALLBACK_MESSAGE)

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteInsightFailure(FALLBACK_MESSAGE) from e

        if not isinstance(data, dict):
            return None
        summary = data.get("summary")
        return VoiceInsight(
            summary=str(summary) if summary else None,
            stress=_number(data.get("stress")),
            confidence=_number(data.get("confidence")),
            source="ai",
            timestamp=self._clock(),
        )

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def wait_pending(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def cancel_pending(self) -> None:
        tasks, self._pending = list(self._pending), set()
        for task in tasks:
            if not task.done():
                task.cancel()
            try:
                await task
            except (asyncio.CancelledError, Exception):
                pass

    def reset(self) -> None:
        """New session: first tick may call immediately, error flag cleared."""
        self._last_call = None
        self.has_error = False

    async def close(self) -> None:
        await self.cancel_pending()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
