# tripchat/routes/websocket/chat.py
"""WebSocket handlers that stream chat turns to the browser."""

import asyncio
import logging
import threading
from typing import Dict

from flask import request

from tripchat.api.errors import TurnInProgressError
from tripchat.api.models import ChatSession, UserPreferences
from tripchat.api.services.chat_service import ChatOrchestrator
from tripchat.api.services.session_store import SessionStore
from tripchat.routes import NAMESPACE
from .base import BaseWebSocketHandler

logger = logging.getLogger(__name__)


class ChatHandler(BaseWebSocketHandler):
    """Bridges ChatOrchestrator hooks to Socket.IO events.

    All turns run on one private event loop in a daemon thread, so the
    pipeline stays single-threaded no matter how many Socket.IO worker
    threads submit work. Background title requests keep running on that
    loop after the turn has been reported complete.
    """

    def __init__(self, socketio, store: SessionStore, orchestrator: ChatOrchestrator, namespace=NAMESPACE):
        super().__init__(socketio, namespace)
        self.store = store
        self.orchestrator = orchestrator

        # chat session id -> Socket.IO sid of the client that last wrote to it
        self._subscribers: Dict[str, str] = {}

        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name="chat-loop", daemon=True)
        self._thread.start()

        orchestrator.on_session_update = self._on_session_update
        orchestrator.on_session_renamed = self._on_session_renamed
        store.on_session_deleted = self.forget_session

    def register_handlers(self):
        """Register chat event handlers."""

        @self.socketio.on("send_message", namespace=self.namespace)
        def handle_send_message(data=None):
            """Run one chat turn; progress arrives as session_update events."""
            data = data or {}
            self.log_event("send_message", {"session_id": data.get("session_id")})

            text = (data.get("text") or "").strip()
            if not text:
                self.emit_to_client("error", {"message": "Message text is empty", "event": "send_message"})
                return

            chat_session = self.store.get_session(data.get("session_id") or "")
            if chat_session is None:
                self.emit_to_client("error", {"message": "Session not found", "event": "send_message"})
                return

            preferences = UserPreferences.from_dict(data.get("preferences"))
            self._subscribers[chat_session.id] = request.sid

            future = asyncio.run_coroutine_threadsafe(
                self.orchestrator.send_message(chat_session, text, preferences),
                self._loop,
            )
            try:
                future.result()
            except TurnInProgressError as exc:
                self.handle_error(exc, "send_message")
                return
            except Exception as exc:
                logger.exception("Chat turn crashed:")
                self.handle_error(exc, "send_message")
                return

            self.emit_to_client("turn_complete", {"session": chat_session.to_dict()})

    def forget_client(self, sid: str) -> None:
        """Drop every session subscription held by a disconnected client."""
        stale = [session_id for session_id, owner in list(self._subscribers.items()) if owner == sid]
        for session_id in stale:
            self._subscribers.pop(session_id, None)
        if stale:
            logger.debug(f"Released {len(stale)} subscription(s) for client {sid}")

    def forget_session(self, session_id: str) -> None:
        self._subscribers.pop(session_id, None)

    def shutdown(self):
        """Stop the chat event loop."""
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=2.0)

    # -- orchestrator hooks ---------------------------------------------------

    def _on_session_update(self, chat_session: ChatSession) -> None:
        sid = self._subscribers.get(chat_session.id)
        if sid:
            self.emit_to_client("session_update", {"session": chat_session.to_dict()}, room=sid)

    def _on_session_renamed(self, chat_session: ChatSession) -> None:
        sid = self._subscribers.get(chat_session.id)
        if sid:
            self.emit_to_client(
                "session_renamed",
                {"session_id": chat_session.id, "name": chat_session.name},
                room=sid,
            )
