"""
RSA Handler
Issues per-user RSA key pairs and wraps/unwraps per-message AES keys
with RSA-OAEP (MGF1-SHA256, SHA-256, no label).
"""

from __future__ import annotations

import base64
import binascii
import hashlib

from cryptography.exceptions import InternalError, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .exceptions import CryptoProviderError, KeyFormatError, UnwrapError

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537


def _oaep() -> padding.OAEP:
    # Must match the browser's RSA-OAEP/SHA-256 import parameters.
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def _as_bytes(pem: str | bytes) -> bytes:
    return pem.encode("utf-8") if isinstance(pem, str) else pem


def issue_key_pair(key_size: int = RSA_KEY_SIZE) -> tuple[str, str]:
    """
    Generate an RSA key pair for a user account.

    Args:
        key_size: modulus length in bits (2048 by default)

    Returns:
        tuple: (public_key_pem, private_key_pem). The public key is
        SubjectPublicKeyInfo PEM, the private key unencrypted PKCS8 PEM.

    Raises:
        CryptoProviderError: If the backend cannot generate the key
    """
    try:
        private_key = rsa.generate_private_key(
            public_exponent=RSA_PUBLIC_EXPONENT,
            key_size=key_size,
        )
    except (UnsupportedAlgorithm, InternalError, OSError) as exc:
        raise CryptoProviderError(f"RSA key generation failed: {exc}") from exc

    return serialize_public_key(private_key.public_key()), serialize_private_key(private_key)


def serialize_private_key(private_key: rsa.RSAPrivateKey) -> str:
    """Serialize a private key to PKCS8 PEM text."""
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return pem.decode("utf-8")


def serialize_public_key(public_key: rsa.RSAPublicKey) -> str:
    """Serialize a public key to SubjectPublicKeyInfo PEM text."""
    pem = public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return pem.decode("utf-8")


def load_public_key(public_key_pem: str | bytes) -> rsa.RSAPublicKey:
    """
    Load an RSA public key from PEM.

    Raises:
        KeyFormatError: If the PEM is malformed or not an RSA key
    """
    try:
        key = serialization.load_pem_public_key(_as_bytes(public_key_pem))
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyFormatError("Public key is not a valid PEM key.") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyFormatError("Public key must be RSA for OAEP wrapping.")
    return key


def load_private_key(private_key_pem: str | bytes) -> rsa.RSAPrivateKey:
    """
    Load an unencrypted RSA private key from PEM.

    Raises:
        KeyFormatError: If the PEM is malformed or not an RSA key
    """
    try:
        key = serialization.load_pem_private_key(_as_bytes(private_key_pem), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyFormatError("Private key is not a valid PEM key.") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyFormatError("Private key must be RSA for OAEP unwrapping.")
    return key


def public_key_fingerprint(public_key_pem: str | bytes) -> str:
    """SHA-256 hex digest of the DER-encoded public key, safe to log."""
    der = load_public_key(public_key_pem).public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()


def wrap_key(public_key_pem: str | bytes, key_bytes: bytes) -> str:
    """
    Wrap a raw AES key for one recipient using RSA-OAEP.

    Args:
        public_key_pem: recipient's RSA public key (PEM)
        key_bytes: raw AES key (32 bytes)

    Returns:
        str: base64-encoded RSA ciphertext

    Raises:
        KeyFormatError: If the public key cannot be loaded
        CryptoProviderError: If the backend fails while encrypting
    """
    public_key = load_public_key(public_key_pem)
    try:
        wrapped = public_key.encrypt(key_bytes, _oaep())
    except (UnsupportedAlgorithm, InternalError) as exc:
        raise CryptoProviderError(f"RSA-OAEP wrap failed: {exc}") from exc
    return base64.b64encode(wrapped).decode("utf-8")


def unwrap_key(private_key_pem: str | bytes, wrapped_key_b64: str) -> bytes:
    """
    Recover a raw AES key with the reader's RSA private key.

    Every failure (malformed base64, unreadable PEM, wrong key, bad OAEP
    padding) raises the same UnwrapError with no chained cause.

    Returns:
        bytes: the unwrapped key material
    """
    try:
        wrapped = base64.b64decode(wrapped_key_b64, validate=True)
        private_key = load_private_key(private_key_pem)
        return private_key.decrypt(wrapped, _oaep())
    except (ValueError, TypeError, binascii.Error, KeyFormatError, UnsupportedAlgorithm):
        raise UnwrapError() from None


__all__ = [
    "RSA_KEY_SIZE",
    "issue_key_pair",
    "serialize_private_key",
    "serialize_public_key",
    "load_public_key",
    "load_private_key",
    "public_key_fingerprint",
    "wrap_key",
    "unwrap_key",
]
