"""
Persistence helpers the encryption protocol depends on.

Keys and envelopes are read and written through these functions so routes
and scripts never touch key columns directly.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from sqlalchemy import and_, or_

from .database import db
from .encryption.exceptions import KeyMissingError
from .encryption.message_crypto import MessageEnvelope
from .models import Message, User

logger = logging.getLogger(__name__)


def _user_with_keys(user_id) -> User:
    user = db.session.get(User, int(user_id))
    if not user or not user.has_key_pair():
        raise KeyMissingError(user_id)
    return user


def find_user_public_key(user_id) -> str:
    """Return the user's public key PEM or raise KeyMissingError."""
    return _user_with_keys(user_id).public_key


def find_user_private_key(user_id) -> str:
    """Return the user's private key PEM or raise KeyMissingError."""
    return _user_with_keys(user_id).private_key


def count_messages_for_user(user_id) -> int:
    return Message.query.filter(
        or_(Message.senderID == user_id, Message.receiverID == user_id)
    ).count()


def persist_envelope(envelope: MessageEnvelope) -> MessageEnvelope:
    """
    Store a fully-built envelope and return it with its id and createdAt.

    The timestamp is assigned here; a client-supplied createdAt is ignored.
    """
    message = Message.from_envelope(replace(envelope, message_id=None, created_at=datetime.utcnow()))
    db.session.add(message)
    db.session.commit()
    logger.debug("Stored message %s from %s to %s", message.msgID, message.senderID, message.receiverID)
    return message.to_envelope()


def fetch_envelopes_for_conversation(user_a, user_b) -> list[MessageEnvelope]:
    """All envelopes exchanged between two users, oldest first."""
    messages = (
        Message.query.filter(
            or_(
                and_(Message.senderID == user_a, Message.receiverID == user_b),
                and_(Message.senderID == user_b, Message.receiverID == user_a),
            )
        )
        .order_by(Message.created_at.asc(), Message.msgID.asc())
        .all()
    )
    return [message.to_envelope() for message in messages]


__all__ = [
    "find_user_public_key",
    "find_user_private_key",
    "count_messages_for_user",
    "persist_envelope",
    "fetch_envelopes_for_conversation",
]
