"""
AffectCoach — Session Registry

Maps session_id → SessionController for the server layer.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..core.models import Summary
from .session import SessionController

logger = logging.getLogger("affectcoach.registry")


class SessionRegistry:
    """Maps session_id → SessionController.  Single event loop, no locking."""

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionController] = {}

    def create(self, session_id: str, **kwargs: Any) -> SessionController:
        if session_id in self._sessions:
            raise ValueError(f"Session {session_id} already exists")
        controller = SessionController(session_id=session_id, **kwargs)
        self._sessions[session_id] = controller
        logger.info(f"SessionRegistry: created {session_id} (total: {len(self._sessions)})")
        return controller

    async def stop_session(self, session_id: str) -> Optional[Summary]:
        """Dispose and forget a session; returns its final Summary, if any."""
        controller = self._sessions.pop(session_id, None)
        if controller is None:
            return None
        summary = await controller.dispose()
        logger.info(f"SessionRegistry: removed {session_id} (total: {len(self._sessions)})")
        return summary or controller.summary

    async def stop_all(self) -> None:
        for sid in list(self._sessions.keys()):
            await self.stop_session(sid)

    def get(self, session_id: str) -> Optional[SessionController]:
        return self._sessions.get(session_id)

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    @property
    def all_sessions(self) -> Dict[str, SessionController]:
        return dict(self._sessions)
