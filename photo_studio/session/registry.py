"""In-process registry of edit sessions, keyed by session id."""
import logging
from typing import Callable, Dict, Optional

from ..config import get_settings
from ..services.base import RemoteEditService
from ..services.gemini_service import GeminiEditService
from .edit_session import EditSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """In-memory storage for live edit sessions. Nothing survives a restart."""

    def __init__(
        self,
        service_factory: Callable[[], RemoteEditService],
        max_sessions: int = 100,
        live_typing: bool = True,
    ):
        self._service_factory = service_factory
        self._service: Optional[RemoteEditService] = None
        self._sessions: Dict[str, EditSession] = {}
        self.max_sessions = max_sessions
        self.live_typing = live_typing

    @property
    def service(self) -> RemoteEditService:
        """The shared, stateless remote service (built on first use)."""
        if self._service is None:
            self._service = self._service_factory()
        return self._service

    def create(self) -> EditSession:
        """Create a session, evicting the oldest one past ``max_sessions``."""
        session = EditSession.from_settings(self.service, get_settings(), live_typing=self.live_typing)
        self._sessions[session.session_id] = session
        while len(self._sessions) > self.max_sessions:
            oldest_id = next(iter(self._sessions))
            self.close(oldest_id)
        logger.info(f"Created session {session.session_id}")
        return session

    def get(self, session_id: str) -> Optional[EditSession]:
        return self._sessions.get(session_id)

    def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        return True

    def __len__(self) -> int:
        return len(self._sessions)


# Global registry instance
_registry: Optional[SessionRegistry] = None


def get_registry() -> SessionRegistry:
    """Get the global session registry, backed by the Gemini service."""
    global _registry
    if _registry is None:
        _registry = SessionRegistry(GeminiEditService.from_settings)
    return _registry
