"""Public key directory: senders look up the key they wrap message keys under."""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_jwt_extended import get_jwt_identity, jwt_required

from ..database import db
from ..encryption.exceptions import KeyMissingError
from ..encryption.rsa_handler import public_key_fingerprint
from ..models import User
from ..storage import find_user_public_key

keys_bp = Blueprint("keys", __name__)


def _current_user_id() -> int:
    return int(get_jwt_identity())


def _key_response(user: User, public_key: str) -> dict[str, object]:
    return {
        "user": {
            "id": user.userID,
            "username": user.username,
        },
        "publicKey": public_key,
        "fingerprint": public_key_fingerprint(public_key),
    }


@keys_bp.get("/public/<int:user_id>")
@jwt_required()
def get_public_key(user_id: int):
    """
    Look up another user's public key and its SHA-256 fingerprint.

    404 covers both an unknown user and a user who has no key yet; the
    sender must not build an envelope in either case.
    """
    target_user = db.session.get(User, user_id)
    if not target_user:
        return jsonify({"message": "User not found."}), 404

    try:
        public_key = find_user_public_key(user_id)
    except KeyMissingError:
        return jsonify({"message": "Public key not found for this user."}), 404

    return jsonify(_key_response(target_user, public_key)), 200


@keys_bp.get("/my-key")
@jwt_required()
def get_my_public_key():
    """Retrieve the current user's own public key."""
    current_user_id = _current_user_id()
    user = db.session.get(User, current_user_id)
    if not user:
        return jsonify({"message": "User not found."}), 404

    try:
        public_key = find_user_public_key(current_user_id)
    except KeyMissingError:
        return jsonify({"message": "You have no encryption key yet. Please log in again."}), 404

    return jsonify(_key_response(user, public_key)), 200


__all__ = ["keys_bp"]
