# tripchat/routes/travel.py
"""Travel chat HTTP routes and blueprint configuration."""

from flask import Blueprint, jsonify, request

from tripchat.api.config import get_geocoding_config
from tripchat.api.extraction import extract_itinerary
from tripchat.api.services.session_store import SessionStore


def create_travel_blueprint(store: SessionStore):
    """Create and configure the travel blueprint.

    Args:
        store: Session registry shared with the WebSocket handlers

    Returns:
        Configured Flask Blueprint
    """
    travel_bp = Blueprint("travel", __name__, url_prefix="/travel")

    @travel_bp.route("/api/config")
    def api_config():
        """Return map SDK configuration for the frontend."""
        config = get_geocoding_config()
        provider = config["provider"]
        key = config["amap_js_key"] if provider == "amap" else config["google_api_key"]

        if not key:
            return jsonify({"error": f"No {provider} map key configured"}), 500
        return jsonify({"provider": provider, "map_api_key": key})

    @travel_bp.route("/api/extract", methods=["POST"])
    def api_extract():
        """Split raw model text into display prose and itinerary."""
        data = request.get_json(silent=True) or {}
        text = data.get("text")
        if not isinstance(text, str):
            return jsonify({"error": "Missing 'text'"}), 400

        result = extract_itinerary(text)
        return jsonify({
            "cleaned_text": result.cleaned_text,
            "itinerary": result.itinerary.to_dict() if result.itinerary else None,
        })

    @travel_bp.route("/api/sessions", methods=["POST"])
    def api_create_session():
        chat_session = store.create_session()
        return jsonify(chat_session.to_dict()), 201

    @travel_bp.route("/api/sessions/<session_id>", methods=["GET", "DELETE"])
    def api_session(session_id):
        if request.method == "DELETE":
            if not store.delete_session(session_id):
                return jsonify({"error": "Session not found"}), 404
            return "", 204

        chat_session = store.get_session(session_id)
        if chat_session is None:
            return jsonify({"error": "Session not found"}), 404
        return jsonify(chat_session.to_dict())

    @travel_bp.route("/health")
    def health():
        """Health check endpoint."""
        return jsonify({"status": "ok", "service": "travel-chat"})

    return travel_bp


__all__ = ['create_travel_blueprint']
