from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import create_access_token, get_jwt_identity, jwt_required
from sqlalchemy import func, or_
from werkzeug.security import check_password_hash, generate_password_hash

from ..database import db
from ..encryption.exceptions import CryptoProviderError
from ..models import User
from ..utils.key_issuer import KeyRegenerationRefused, ensure_user_keys

auth_bp = Blueprint("auth", __name__)
logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _key_issuer():
    return current_app.extensions["key_issuer"]


def _auth_response(user: User, status: int):
    """Token, profile and the one-time key transfer to the client."""
    token = create_access_token(identity=str(user.userID))
    return (
        jsonify(
            {
                "accessToken": token,
                "user": user.to_dict(),
                "publicKey": user.public_key,
                "privateKey": user.private_key,
            }
        ),
        status,
    )


@auth_bp.post("/signup")
def signup():
    """Register a new user and issue their RSA key pair."""
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    full_name = (payload.get("fullName") or "").strip()
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not username or not full_name or not email or not password:
        return jsonify({"message": "All fields are required"}), 400

    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({"message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"}), 400

    if User.query.filter(func.lower(User.email) == email).first():
        return jsonify({"message": "Email already exists"}), 400
    if User.query.filter_by(username=username).first():
        return jsonify({"message": "Username already exists"}), 400

    # Keys come first: an account without a key pair must never exist.
    try:
        public_key, private_key = _key_issuer().issue()
    except CryptoProviderError as exc:
        logger.error("Key generation failed during signup for %s: %s", username, exc)
        return jsonify({"message": "Failed to generate encryption keys."}), 500

    user = User(
        username=username,
        full_name=full_name,
        email=email,
        password=generate_password_hash(password, method="pbkdf2:sha256"),
    )
    user.set_key_pair(public_key, private_key)

    db.session.add(user)
    db.session.commit()
    logger.info("Registered user %s", user.userID)

    return _auth_response(user, 201)


@auth_bp.post("/login")
def login():
    """Authenticate by username or email; issue keys if the account has none."""
    payload = request.get_json(silent=True) or {}
    identifier = (payload.get("usernameOrEmail") or payload.get("username") or "").strip()
    password = payload.get("password") or ""

    if not identifier or not password:
        return jsonify({"message": "Username/email and password are required."}), 400

    user = User.query.filter(
        or_(User.username == identifier, func.lower(User.email) == identifier.lower())
    ).first()

    if not user or not check_password_hash(user.password, password):
        return jsonify({"message": "Invalid username/email or password"}), 400

    try:
        issued = ensure_user_keys(
            user,
            _key_issuer(),
            policy=current_app.config.get("KEY_REGENERATION_POLICY", "always"),
        )
    except KeyRegenerationRefused as exc:
        logger.warning("Refused key regeneration for user %s (%d messages)", exc.user_id, exc.message_count)
        return jsonify({
            "message": "Your encryption keys are missing and cannot be regenerated "
                       "without losing access to existing messages.",
        }), 409
    except CryptoProviderError as exc:
        db.session.rollback()
        logger.error("Key generation failed during login for user %s: %s", user.userID, exc)
        return jsonify({"message": "Failed to generate encryption keys."}), 500

    if issued:
        db.session.commit()

    return _auth_response(user, 200)


@auth_bp.post("/logout")
def logout():
    """Tokens are stateless; the client discards its token and decrypted cache."""
    return jsonify({"message": "Logged out successfully"}), 200


@auth_bp.get("/me")
@jwt_required()
def me():
    """Return the authenticated user's profile."""
    user_id = int(get_jwt_identity())
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({"message": "User not found."}), 404
    return jsonify({"user": user.to_dict(include_public_key=True)}), 200


__all__ = ["auth_bp"]
