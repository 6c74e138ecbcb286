"""
Travel chat – main application entry point

* Flask app + Socket.IO in threading mode; chat turns themselves run on a
  single private asyncio loop owned by the chat WebSocket handler.
* The Socket.IO namespace is `/travel/ws`; HTTP routes live under `/travel`.
"""

import os
import logging

from flask import Flask, request
from flask_cors import CORS
from flask_socketio import SocketIO
from dotenv import load_dotenv

from tripchat.api.config import get_port
from tripchat.api.services.chat_service import create_chat_orchestrator
from tripchat.api.services.session_store import SessionStore
from tripchat.routes import NAMESPACE
from tripchat.routes.travel import create_travel_blueprint
from tripchat.routes.websocket import register_websocket_handlers

# --------------------------------------------------------------------------- #
# Environment & logging
# --------------------------------------------------------------------------- #
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(orchestrator=None, store=None):
    """Build the Flask app and its Socket.IO server.

    Args:
        orchestrator: ChatOrchestrator to run turns; built from config if omitted
        store: SessionStore shared by HTTP and WebSocket routes

    Returns:
        Tuple of (app, socketio)
    """
    app = Flask(__name__)

    flask_secret_key = os.getenv("FLASK_SECRET_KEY") or os.urandom(32).hex()
    if "FLASK_SECRET_KEY" not in os.environ:
        logger.warning("No FLASK_SECRET_KEY found. Generated a temporary key.")
    app.secret_key = flask_secret_key

    # CORS for local dev / cross‑origin front‑end requests
    CORS(app, origins="*", supports_credentials=True)

    socketio = SocketIO(
        app,
        cors_allowed_origins="*",
        async_mode="threading",
        logger=False,
        engineio_logger=False,
    )
    logger.info("Socket.IO initialised (async_mode=threading)")

    store = store or SessionStore()
    orchestrator = orchestrator or create_chat_orchestrator()

    app.register_blueprint(create_travel_blueprint(store))
    app.extensions["chat_handler"] = register_websocket_handlers(socketio, store, orchestrator)

    @app.route("/debug")
    def debug():
        """Simple JSON health endpoint."""
        return {
            "status": "ok",
            "socketio_initialized": True,
            "endpoints": {
                "health": "/travel/health",
                "websocket_namespace": NAMESPACE,
            },
        }

    @socketio.on("connect", namespace=NAMESPACE)
    def _connect(auth=None):
        logger.info("Client connected to chat namespace")

    @socketio.on("disconnect", namespace=NAMESPACE)
    def _disconnect(*args):
        logger.info("Client disconnected from chat namespace")
        app.extensions["chat_handler"].forget_client(request.sid)

    return app, socketio


# --------------------------------------------------------------------------- #
# Local development runner ( `python main.py` )
# --------------------------------------------------------------------------- #
if __name__ == "__main__":
    app, socketio = create_app()
    port = get_port()
    logger.info("Starting travel chat on http://localhost:%d", port)
    socketio.run(app, host="0.0.0.0", port=port, debug=False, allow_unsafe_werkzeug=True)
