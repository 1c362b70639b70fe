"""Hybrid RSA-OAEP / AES-256-GCM message encryption."""

from .codec import DecryptedPayload, deserialize, serialize
from .decryption_cache import DecryptionCache
from .exceptions import (
    AuthenticationError,
    CodecError,
    CryptoProviderError,
    E2EEError,
    EnvelopeFormatError,
    KeyFormatError,
    KeyMissingError,
    NonceReuseError,
    UnwrapError,
)
from .message_crypto import (
    DecryptionFailure,
    MessageEnvelope,
    ReaderRole,
    decrypt_for_user,
    decrypt_received,
    encrypt_for_send,
)
from .rsa_handler import issue_key_pair, public_key_fingerprint, unwrap_key, wrap_key

__all__ = [
    "AuthenticationError",
    "CodecError",
    "CryptoProviderError",
    "DecryptedPayload",
    "DecryptionCache",
    "DecryptionFailure",
    "E2EEError",
    "EnvelopeFormatError",
    "KeyFormatError",
    "KeyMissingError",
    "MessageEnvelope",
    "NonceReuseError",
    "ReaderRole",
    "UnwrapError",
    "decrypt_for_user",
    "decrypt_received",
    "deserialize",
    "encrypt_for_send",
    "issue_key_pair",
    "public_key_fingerprint",
    "serialize",
    "unwrap_key",
    "wrap_key",
]
