# tripchat/api/services/session_store.py
"""In-memory chat session registry for the web surface."""

import logging
import secrets
import threading
from typing import Callable, Dict, Optional

from tripchat.api.models import (
    DEFAULT_SESSION_NAME,
    ROLE_MODEL,
    ChatSession,
    SessionMessage,
    now_ms,
)

logger = logging.getLogger(__name__)

WELCOME_TEXT = "您好！我是您的 AI 智能旅游规划师。请告诉我您想去哪里，或者先完善您的旅行偏好。"


class SessionStore:
    """Holds chat sessions keyed by id."""

    def __init__(self):
        self.sessions: Dict[str, ChatSession] = {}
        self.lock = threading.Lock()

        # Callback hook (set by the WebSocket layer)
        self.on_session_deleted: Optional[Callable[[str], None]] = None

    def create_session(self, name: str = DEFAULT_SESSION_NAME) -> ChatSession:
        """Create a session seeded with the welcome message."""
        session_id = f"chat_{secrets.token_urlsafe(12)}"
        session = ChatSession(
            id=session_id,
            name=name,
            messages=[SessionMessage("welcome", ROLE_MODEL, WELCOME_TEXT, now_ms())],
        )
        with self.lock:
            self.sessions[session_id] = session
        logger.info(f"Created chat session {session_id}")
        return session

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        with self.lock:
            return self.sessions.get(session_id)

    def delete_session(self, session_id: str) -> bool:
        with self.lock:
            removed = self.sessions.pop(session_id, None) is not None
        if removed:
            logger.info(f"Deleted chat session {session_id}")
            if self.on_session_deleted:
                self.on_session_deleted(session_id)
        return removed
