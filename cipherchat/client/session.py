"""
Logged-in client session.

A ChatSession owns the user's key pair and the DecryptionCache for as long
as the user is logged in. Closing the session (logout) or replacing the keys
discards every decrypted body along with the private key reference.
"""
from __future__ import annotations

import logging
from typing import Iterable

from ..encryption.codec import DecryptedPayload
from ..encryption.decryption_cache import DEFAULT_MAX_WORKERS, DecryptionCache, DecryptResult
from ..encryption.exceptions import KeyMissingError
from ..encryption.message_crypto import MessageEnvelope, encrypt_for_send

logger = logging.getLogger(__name__)


class ChatSession:
    def __init__(self, user_id, public_key: str, private_key: str, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        if not public_key or not private_key:
            raise KeyMissingError(user_id, "A session needs both halves of the key pair.")
        self.user_id = user_id
        self.public_key = public_key
        self._private_key = private_key
        self._max_workers = max_workers
        self.cache = DecryptionCache(user_id, private_key, max_workers=max_workers)
        self.closed = False

    def __enter__(self) -> "ChatSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _check_open(self) -> None:
        if self.closed:
            raise RuntimeError("Session is closed.")

    def encrypt_for(self, receiver_id, receiver_public_key: str | None, text: str | None, image: str | None = None) -> MessageEnvelope:
        """Build an envelope readable by this user and receiver_id."""
        self._check_open()
        return encrypt_for_send(
            text,
            self.public_key,
            receiver_public_key,
            image=image,
            sender_id=self.user_id,
            receiver_id=receiver_id,
        )

    def remember_sent(self, envelope: MessageEnvelope, text: str | None, image: str | None = None) -> None:
        """Cache the plaintext of a message this user just sent."""
        self._check_open()
        self.cache.remember(envelope, DecryptedPayload(text=text or "", image_reference=image or None))

    def read(self, envelope: MessageEnvelope) -> DecryptResult:
        self._check_open()
        return self.cache.get_or_decrypt(envelope)

    def read_conversation(self, envelopes: Iterable[MessageEnvelope]) -> list[DecryptResult]:
        self._check_open()
        return self.cache.decrypt_conversation(envelopes)

    def replace_keys(self, public_key: str, private_key: str) -> None:
        """Switch to a new key pair; everything decrypted so far is discarded."""
        self._check_open()
        if not public_key or not private_key:
            raise KeyMissingError(self.user_id, "A session needs both halves of the key pair.")
        self.cache.clear()
        self.public_key = public_key
        self._private_key = private_key
        self.cache = DecryptionCache(self.user_id, private_key, max_workers=self._max_workers)
        logger.info("Session keys replaced for user %s", self.user_id)

    def close(self) -> None:
        if self.closed:
            return
        self.cache.clear()
        self._private_key = None
        self.closed = True
        logger.debug("Session closed for user %s", self.user_id)


__all__ = ["ChatSession"]
