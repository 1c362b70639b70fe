from __future__ import annotations

import logging
from dataclasses import replace

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from ..database import db
from ..encryption.exceptions import EnvelopeFormatError, KeyMissingError
from ..encryption.message_crypto import MessageEnvelope
from ..models import User
from ..storage import fetch_envelopes_for_conversation, find_user_public_key, persist_envelope
from ..websocket_helper import on_envelope_ready

messages_bp = Blueprint("messages", __name__)
logger = logging.getLogger(__name__)


def _current_user_id() -> int:
    return int(get_jwt_identity())


@messages_bp.get("/users")
@jwt_required()
def list_users():
    """Return every other user that can receive encrypted messages."""
    current_user_id = _current_user_id()
    users = (
        User.query.filter(User.userID != current_user_id, User.public_key.isnot(None))
        .order_by(User.username.asc())
        .all()
    )
    return jsonify({"users": [user.to_dict(include_public_key=True) for user in users]}), 200


@messages_bp.get("/<int:user_id>")
@jwt_required()
def get_messages(user_id: int):
    """Return the encrypted envelopes exchanged with user_id, oldest first."""
    current_user_id = _current_user_id()

    if not db.session.get(User, user_id):
        return jsonify({"message": "User not found."}), 404

    envelopes = fetch_envelopes_for_conversation(current_user_id, user_id)
    return jsonify({"messages": [envelope.to_dict() for envelope in envelopes]}), 200


@messages_bp.post("/send/<int:receiver_id>")
@jwt_required()
def send_message(receiver_id: int):
    """
    Store a client-encrypted envelope and push it to the receiver.

    The server never sees plaintext: the body arrives as AES-GCM ciphertext
    with the AES key wrapped for both parties.
    """
    current_user_id = _current_user_id()

    if not db.session.get(User, receiver_id):
        return jsonify({"message": "User not found."}), 404

    # Both parties need keys before anything is stored.
    try:
        find_user_public_key(current_user_id)
    except KeyMissingError:
        return jsonify({"message": "Your encryption key is missing. Please log in again."}), 409
    try:
        find_user_public_key(receiver_id)
    except KeyMissingError:
        return jsonify({"message": "Recipient's encryption key not found."}), 404

    payload = request.get_json(silent=True)
    try:
        envelope = MessageEnvelope.from_dict(payload)
    except EnvelopeFormatError as exc:
        return jsonify({"message": str(exc)}), 400

    envelope = replace(envelope, sender_id=current_user_id, receiver_id=receiver_id)

    if envelope.text is not None or envelope.image is not None:
        if not current_app.config.get("ACCEPT_PLAINTEXT_FALLBACK", False):
            logger.warning("Dropping plaintext fallback fields on message from user %s", current_user_id)
            envelope = replace(envelope, text=None, image=None)

    stored = persist_envelope(envelope)

    # Emit real-time message to receiver via the relay
    on_envelope_ready(stored)

    return jsonify({"message": stored.to_dict()}), 201


__all__ = ["messages_bp"]
