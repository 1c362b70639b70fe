"""
AES-256-GCM Handler
Provides authenticated encryption using AES-256 in GCM mode.
GCM provides both confidentiality and authenticity (no separate HMAC needed).
"""

from __future__ import annotations

import os

from cryptography.exceptions import InternalError, InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import AuthenticationError, CryptoProviderError, NonceReuseError

KEY_SIZE_BYTES = 32
NONCE_SIZE_BYTES = 12
TAG_SIZE_BYTES = 16

# Older clients used 16-byte IVs; anything outside this range is rejected.
MIN_NONCE_BYTES = 12
MAX_NONCE_BYTES = 16


def generate_aes_key() -> bytes:
    """
    Generate a random AES-256 key (32 bytes).

    Raises:
        CryptoProviderError: If the backend cannot produce key material
    """
    try:
        return AESGCM.generate_key(bit_length=256)
    except (UnsupportedAlgorithm, InternalError, OSError) as exc:
        raise CryptoProviderError(f"AES key generation failed: {exc}") from exc


def generate_nonce() -> bytes:
    """Generate a random 96-bit GCM nonce."""
    try:
        return os.urandom(NONCE_SIZE_BYTES)
    except (NotImplementedError, OSError) as exc:
        raise CryptoProviderError("No secure random source available.") from exc


def encrypt(key: bytes, nonce: bytes, plaintext: bytes) -> tuple[bytes, bytes]:
    """
    Encrypt plaintext with AES-256-GCM.

    The cryptography library appends the 16-byte tag to the ciphertext;
    it is split off here so it can travel in its own envelope field.

    Args:
        key: 32-byte AES key
        nonce: fresh nonce, never used before with this key
        plaintext: bytes to encrypt

    Returns:
        tuple: (ciphertext, auth_tag)
    """
    if len(key) != KEY_SIZE_BYTES:
        raise ValueError("AES-256-GCM requires a 32-byte key")
    if not MIN_NONCE_BYTES <= len(nonce) <= MAX_NONCE_BYTES:
        raise ValueError("GCM nonce must be 12 to 16 bytes")

    try:
        ciphertext_with_tag = AESGCM(key).encrypt(nonce, plaintext, None)
    except (UnsupportedAlgorithm, InternalError) as exc:
        raise CryptoProviderError(f"AES-GCM encryption failed: {exc}") from exc

    return ciphertext_with_tag[:-TAG_SIZE_BYTES], ciphertext_with_tag[-TAG_SIZE_BYTES:]


def decrypt(key: bytes, nonce: bytes, ciphertext: bytes, auth_tag: bytes) -> bytes:
    """
    Decrypt and verify an AES-256-GCM ciphertext.

    Raises:
        AuthenticationError: If the tag does not verify, or key, nonce or
            tag have the wrong shape. No plaintext is returned in that case.
    """
    if len(key) != KEY_SIZE_BYTES:
        raise AuthenticationError("Message key has the wrong length.")
    if not MIN_NONCE_BYTES <= len(nonce) <= MAX_NONCE_BYTES:
        raise AuthenticationError("Nonce has the wrong length.")
    if len(auth_tag) != TAG_SIZE_BYTES:
        raise AuthenticationError("Authentication tag has the wrong length.")

    try:
        return AESGCM(key).decrypt(nonce, ciphertext + auth_tag, None)
    except InvalidTag:
        raise AuthenticationError("Authentication tag verification failed.") from None


class MessageKey:
    """
    A single-message AES key that refuses to seal twice with one nonce.
    """

    def __init__(self, key: bytes | None = None) -> None:
        self.key = key if key is not None else generate_aes_key()
        if len(self.key) != KEY_SIZE_BYTES:
            raise ValueError("AES-256-GCM requires a 32-byte key")
        self._used_nonces: set[bytes] = set()

    def seal(self, plaintext: bytes, nonce: bytes | None = None) -> tuple[bytes, bytes, bytes]:
        """Encrypt under a fresh nonce. Returns (nonce, ciphertext, auth_tag)."""
        nonce = nonce if nonce is not None else generate_nonce()
        if nonce in self._used_nonces:
            raise NonceReuseError("Nonce already used with this key.")
        self._used_nonces.add(nonce)
        ciphertext, tag = encrypt(self.key, nonce, plaintext)
        return nonce, ciphertext, tag

    def open(self, nonce: bytes, ciphertext: bytes, auth_tag: bytes) -> bytes:
        return decrypt(self.key, nonce, ciphertext, auth_tag)


__all__ = [
    "KEY_SIZE_BYTES",
    "NONCE_SIZE_BYTES",
    "TAG_SIZE_BYTES",
    "generate_aes_key",
    "generate_nonce",
    "encrypt",
    "decrypt",
    "MessageKey",
]
