"""
Relay Server
Handles real-time encrypted message routing without decryption capability.
The relay only ever sees envelopes; it holds no keys.
"""
from __future__ import annotations

import logging
import os

from flask import Flask, abort, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO, emit, join_room

logger = logging.getLogger(__name__)

LOOPBACK_ADDRESSES = {"127.0.0.1", "::1"}


def create_relay_app(
    api_token: str | None = None,
    allowed_origins: list[str] | None = None,
    async_mode: str | None = None,
) -> tuple[Flask, SocketIO]:
    """Build the relay Flask app and its SocketIO server."""
    if allowed_origins is None:
        allowed_origins = [
            origin for origin in (
                os.environ.get("FRONTEND_ORIGIN"),
                "http://localhost:5173",
                "http://127.0.0.1:5173",
            ) if origin
        ]
    token = api_token or os.environ.get("RELAY_API_TOKEN", "dev-relay-token")

    app = Flask(__name__)
    app.config["SECRET_KEY"] = os.environ.get("RELAY_SECRET_KEY", "websocket-relay-secret")
    CORS(app, resources={r"/*": {"origins": allowed_origins or "*"}})

    socketio = SocketIO(
        app,
        cors_allowed_origins=allowed_origins or "*",
        async_mode=async_mode or os.environ.get("RELAY_ASYNC_MODE") or None,
    )

    # Track connected users: {user_id: session_id}
    connected_users: dict[str, str] = {}
    app.extensions["connected_users"] = connected_users

    def _verify_api_request():
        if request.headers.get("X-Relay-Token") != token:
            abort(401)
        if request.remote_addr not in LOOPBACK_ADDRESSES:
            abort(403)

    @socketio.on("connect")
    def handle_connect():
        """Client connected to WebSocket."""
        logger.debug("Client connected: %s", request.sid)
        emit("connected", {"message": "Connected to relay server"})

    @socketio.on("disconnect")
    def handle_disconnect(*args):
        """Client disconnected from WebSocket."""
        for uid, sid in list(connected_users.items()):
            if sid == request.sid:
                del connected_users[uid]
                logger.debug("User %s disconnected", uid)
                break

    @socketio.on("authenticate")
    def handle_authenticate(data):
        """Register a user's connection and join their personal room."""
        user_id = (data or {}).get("userId")
        if not user_id:
            emit("error", {"message": "userId required"})
            return
        connected_users[str(user_id)] = request.sid
        join_room(f"user_{user_id}")
        emit("authenticated", {"userId": user_id})

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return jsonify({"status": "ok", "connected_users": len(connected_users)}), 200

    @app.post("/relay/message")
    def relay_message_http():
        """Push a stored envelope to the receiver's room."""
        _verify_api_request()
        data = request.get_json(silent=True) or {}
        receiver_id = data.get("receiverId")
        message = data.get("message")

        if not receiver_id or not message:
            return jsonify({"message": "receiverId and message required"}), 400

        socketio.emit("newMessage", message, room=f"user_{receiver_id}")
        logger.debug("Envelope %s relayed to user %s", message.get("id"), receiver_id)
        return jsonify({"status": "ok", "online": str(receiver_id) in connected_users}), 200

    return app, socketio


__all__ = ["create_relay_app"]
