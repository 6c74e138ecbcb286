# tripchat/routes/websocket/__init__.py
"""WebSocket route handlers initialization."""

import logging

from tripchat.routes import NAMESPACE
from .chat import ChatHandler

logger = logging.getLogger(__name__)


def register_websocket_handlers(socketio, store, orchestrator):
    """Register all WebSocket event handlers with SocketIO.

    Args:
        socketio: Flask-SocketIO instance
        store: Session registry shared with the HTTP routes
        orchestrator: ChatOrchestrator that runs the turns

    Returns:
        The registered ChatHandler
    """
    logger.info("Registering WebSocket handlers...")

    try:
        chat_handler = ChatHandler(socketio, store, orchestrator, NAMESPACE)

        logger.info(f"Registering chat handler for namespace: {NAMESPACE}")
        chat_handler.register_handlers()

        logger.info("✅ WebSocket handlers registered successfully")
        return chat_handler

    except Exception as e:
        logger.error(f"❌ Failed to register WebSocket handlers: {e}")
        logger.exception("WebSocket registration error:")
        raise


__all__ = ['register_websocket_handlers', 'NAMESPACE']
