"""
Error taxonomy for the end-to-end encryption layer.

Send paths raise these to the caller. Decrypt paths catch them at the
per-message boundary and turn them into a DecryptionFailure.
"""

from __future__ import annotations


class E2EEError(Exception):
    """Base class for every encryption-layer error."""


class CryptoProviderError(E2EEError):
    """The RNG or cryptography backend could not perform the operation."""


class AuthenticationError(E2EEError):
    """AES-GCM tag verification failed (tampered data or wrong key)."""


class UnwrapError(E2EEError):
    """RSA-OAEP unwrap failed. The message is identical for every cause."""

    MESSAGE = "Unable to unwrap message key."

    def __init__(self) -> None:
        super().__init__(self.MESSAGE)


class CodecError(E2EEError):
    """Decrypted payload bytes could not be decoded at all."""


class KeyMissingError(E2EEError):
    """No key on file for a user that needs one."""

    def __init__(self, user_id=None, message: str | None = None) -> None:
        self.user_id = user_id
        super().__init__(message or f"No encryption key on file for user {user_id}.")


class KeyFormatError(E2EEError):
    """A PEM key could not be loaded or is not an RSA key."""


class NonceReuseError(E2EEError):
    """A nonce was about to be used twice under the same AES key."""


class EnvelopeFormatError(E2EEError):
    """A wire envelope is missing fields or carries ill-shaped values."""


__all__ = [
    "E2EEError",
    "CryptoProviderError",
    "AuthenticationError",
    "UnwrapError",
    "CodecError",
    "KeyMissingError",
    "KeyFormatError",
    "NonceReuseError",
    "EnvelopeFormatError",
]
