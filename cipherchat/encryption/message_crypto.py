"""
Message Encryption Helper
High-level functions for encrypting and decrypting messages in the messaging system.

Each message gets its own AES-256 key. The key encrypts the payload once and
is then wrapped twice with RSA-OAEP, once under the sender's public key and
once under the receiver's, so either party can read the message with their
own private key.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from . import codec
from .aes_handler import KEY_SIZE_BYTES, MAX_NONCE_BYTES, MIN_NONCE_BYTES, TAG_SIZE_BYTES, MessageKey, decrypt
from .codec import DecryptedPayload
from .exceptions import AuthenticationError, E2EEError, EnvelopeFormatError, KeyMissingError
from .rsa_handler import unwrap_key, wrap_key

logger = logging.getLogger(__name__)

UNDECRYPTABLE_TEXT = "Unable to decrypt message"

_REQUIRED_FIELDS = (
    "encryptedContent",
    "iv",
    "authTag",
    "senderEncryptedKey",
    "receiverEncryptedKey",
)


class ReaderRole(str, Enum):
    SENDER = "sender"
    RECEIVER = "receiver"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("utf-8")


def _b64decode(value: str, name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError):
        raise AuthenticationError(f"Envelope field {name} is not valid base64.") from None


@dataclass(frozen=True)
class MessageEnvelope:
    """Encrypted message as stored and transmitted. Never mutated once built."""

    sender_id: object
    receiver_id: object
    encrypted_content: str
    iv: str
    auth_tag: str
    sender_encrypted_key: str
    receiver_encrypted_key: str
    created_at: datetime | None = None
    message_id: object = None
    # Deprecated plaintext fallback fields; never used for decryption.
    text: str | None = field(default=None, repr=False)
    image: str | None = field(default=None, repr=False)

    @property
    def identity(self) -> str:
        """Stable cache key: the stored id, or a digest of the ciphertext."""
        if self.message_id is not None:
            return str(self.message_id)
        digest = hashlib.sha256(
            f"{self.iv}:{self.auth_tag}:{self.encrypted_content}".encode("utf-8")
        ).hexdigest()
        return f"sha256:{digest}"

    def role_for(self, user_id) -> ReaderRole | None:
        if user_id is None:
            return None
        if str(user_id) == str(self.sender_id):
            return ReaderRole.SENDER
        if str(user_id) == str(self.receiver_id):
            return ReaderRole.RECEIVER
        return None

    def wrapped_key_for(self, role: ReaderRole) -> str:
        if role is ReaderRole.SENDER:
            return self.sender_encrypted_key
        return self.receiver_encrypted_key

    def with_storage(self, message_id, created_at: datetime) -> "MessageEnvelope":
        """Copy carrying the id and timestamp assigned by storage."""
        return replace(self, message_id=message_id, created_at=created_at)

    def to_dict(self) -> dict[str, object]:
        """Serialize to the wire JSON shape."""
        result: dict[str, object] = {
            "id": self.message_id,
            "senderId": self.sender_id,
            "receiverId": self.receiver_id,
            "encryptedContent": self.encrypted_content,
            "iv": self.iv,
            "authTag": self.auth_tag,
            "senderEncryptedKey": self.sender_encrypted_key,
            "receiverEncryptedKey": self.receiver_encrypted_key,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if self.text is not None:
            result["text"] = self.text
        if self.image is not None:
            result["image"] = self.image
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "MessageEnvelope":
        """
        Build an envelope from wire JSON.

        Raises:
            EnvelopeFormatError: If a required field is missing or empty,
                or iv/authTag do not decode to the expected lengths
        """
        if not isinstance(data, dict):
            raise EnvelopeFormatError("Envelope must be a JSON object.")

        missing = [
            name for name in _REQUIRED_FIELDS
            if not isinstance(data.get(name), str) or not data.get(name)
        ]
        if missing:
            raise EnvelopeFormatError(
                f"Missing required encryption parameters: {', '.join(missing)}"
            )

        try:
            iv = _b64decode(data["iv"], "iv")
            tag = _b64decode(data["authTag"], "authTag")
            for name in ("encryptedContent", "senderEncryptedKey", "receiverEncryptedKey"):
                _b64decode(data[name], name)
        except AuthenticationError as exc:
            raise EnvelopeFormatError(str(exc)) from None

        if not MIN_NONCE_BYTES <= len(iv) <= MAX_NONCE_BYTES:
            raise EnvelopeFormatError("iv must decode to 12-16 bytes.")
        if len(tag) != TAG_SIZE_BYTES:
            raise EnvelopeFormatError("authTag must decode to 16 bytes.")

        created_at = data.get("createdAt")
        if isinstance(created_at, str):
            try:
                created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
            except ValueError:
                raise EnvelopeFormatError("createdAt is not an ISO-8601 timestamp.") from None
        elif not isinstance(created_at, (datetime, type(None))):
            raise EnvelopeFormatError("createdAt is not an ISO-8601 timestamp.")

        return cls(
            sender_id=data.get("senderId"),
            receiver_id=data.get("receiverId"),
            encrypted_content=data["encryptedContent"],
            iv=data["iv"],
            auth_tag=data["authTag"],
            sender_encrypted_key=data["senderEncryptedKey"],
            receiver_encrypted_key=data["receiverEncryptedKey"],
            created_at=created_at,
            message_id=data.get("id", data.get("_id")),
            text=data.get("text"),
            image=data.get("image"),
        )


@dataclass(frozen=True)
class DecryptionFailure:
    """Undecryptable marker. Rendered as a placeholder, never raised."""

    message_id: str
    stage: str
    reason: str

    undecryptable = True
    text = UNDECRYPTABLE_TEXT
    image_reference = None

    def to_dict(self) -> dict[str, object]:
        return {"text": self.text, "image": None, "undecryptable": True}


def encrypt_for_send(
    text: str | None,
    sender_public_key: str | None,
    receiver_public_key: str | None,
    *,
    image: str | None = None,
    sender_id=None,
    receiver_id=None,
    created_at: datetime | None = None,
) -> MessageEnvelope:
    """
    Encrypt a message body so both sender and receiver can read it.

    This is what the sender does for every outgoing message:
    1. Generate a unique AES-256 key for this message
    2. Encrypt the serialized payload with AES-256-GCM under a fresh nonce
    3. Wrap the AES key with the sender's and the receiver's public keys

    Raises:
        KeyMissingError: If either public key is missing (checked first)
        KeyFormatError: If a public key cannot be loaded
        CryptoProviderError: If the backend fails
    """
    if not sender_public_key:
        raise KeyMissingError(sender_id, "Your public key is missing. Please log in again.")
    if not receiver_public_key:
        raise KeyMissingError(receiver_id, "Recipient's public key is missing.")

    message_key = MessageKey()
    nonce, ciphertext, tag = message_key.seal(codec.serialize(text, image))

    return MessageEnvelope(
        sender_id=sender_id,
        receiver_id=receiver_id,
        encrypted_content=_b64(ciphertext),
        iv=_b64(nonce),
        auth_tag=_b64(tag),
        sender_encrypted_key=wrap_key(sender_public_key, message_key.key),
        receiver_encrypted_key=wrap_key(receiver_public_key, message_key.key),
        created_at=created_at,
    )


def _normalise_message_key(key: bytes) -> bytes:
    # Older clients wrapped the base64 text of the key instead of raw bytes.
    if len(key) == KEY_SIZE_BYTES:
        return key
    try:
        decoded = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError):
        return key
    return decoded if len(decoded) == KEY_SIZE_BYTES else key


def decrypt_received(
    envelope: MessageEnvelope,
    reader_role: ReaderRole,
    reader_private_key: str | None,
) -> DecryptedPayload | DecryptionFailure:
    """
    Decrypt an envelope with the reader's private key.

    Selects the wrapped-key slot for the reader's role, unwraps it,
    verifies and decrypts the content, then decodes the payload. Any
    failure is returned as a DecryptionFailure instead of raised.
    """
    try:
        reader_role = ReaderRole(reader_role)
    except ValueError:
        return DecryptionFailure(envelope.identity, "role", f"Unknown reader role {reader_role!r}.")
    if not reader_private_key:
        return DecryptionFailure(envelope.identity, "key", "No private key available.")

    stage = "unwrap"
    try:
        message_key = _normalise_message_key(
            unwrap_key(reader_private_key, envelope.wrapped_key_for(reader_role))
        )
        stage = "authenticate"
        plaintext = decrypt(
            message_key,
            _b64decode(envelope.iv, "iv"),
            _b64decode(envelope.encrypted_content, "encryptedContent"),
            _b64decode(envelope.auth_tag, "authTag"),
        )
        stage = "decode"
        return codec.deserialize(plaintext)
    except E2EEError as exc:
        logger.info(
            "Message %s undecryptable for %s at %s stage: %s",
            envelope.identity, reader_role.value, stage, exc,
        )
        return DecryptionFailure(envelope.identity, stage, str(exc))


def decrypt_for_user(
    envelope: MessageEnvelope,
    user_id,
    private_key: str | None,
) -> DecryptedPayload | DecryptionFailure:
    """Decrypt for whichever role user_id plays in the envelope."""
    role = envelope.role_for(user_id)
    if role is None:
        return DecryptionFailure(envelope.identity, "role", "Reader is not a party to this message.")
    return decrypt_received(envelope, role, private_key)


__all__ = [
    "ReaderRole",
    "MessageEnvelope",
    "DecryptionFailure",
    "UNDECRYPTABLE_TEXT",
    "encrypt_for_send",
    "decrypt_received",
    "decrypt_for_user",
]
