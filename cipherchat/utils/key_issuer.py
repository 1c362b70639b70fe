"""RSA key issuance on a dedicated worker pool, plus the login self-healing rule."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

from ..encryption.exceptions import CryptoProviderError
from ..encryption.rsa_handler import RSA_KEY_SIZE, issue_key_pair, public_key_fingerprint
from ..models import User
from ..storage import count_messages_for_user

logger = logging.getLogger(__name__)

REGENERATE_ALWAYS = "always"
REGENERATE_WITHOUT_HISTORY = "no-history"


class KeyRegenerationRefused(Exception):
    """Missing keys cannot be regenerated because the user already has messages."""

    def __init__(self, user_id, message_count: int) -> None:
        self.user_id = user_id
        self.message_count = message_count
        super().__init__(
            f"User {user_id} has {message_count} messages; regenerating keys would orphan them."
        )


class KeyIssuer:
    """Runs RSA key generation on a bounded thread pool."""

    def __init__(self, key_size: int = RSA_KEY_SIZE, max_workers: int = 2, timeout: float | None = 30.0) -> None:
        self.key_size = key_size
        self.timeout = timeout
        self._pool = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="keygen")

    def issue(self) -> tuple[str, str]:
        """
        Generate a key pair on the pool and wait for it.

        Returns:
            tuple: (public_key_pem, private_key_pem)

        Raises:
            CryptoProviderError: If generation fails or exceeds the timeout
        """
        future = self._pool.submit(issue_key_pair, self.key_size)
        try:
            public_key, private_key = future.result(timeout=self.timeout)
        except FutureTimeoutError:
            future.cancel()
            raise CryptoProviderError("Timed out generating an RSA key pair.") from None
        logger.info("Issued RSA-%d key pair %s", self.key_size, public_key_fingerprint(public_key)[:16])
        return public_key, private_key

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False)


def ensure_user_keys(user: User, issuer: KeyIssuer, policy: str = REGENERATE_ALWAYS) -> bool:
    """
    Give a user a key pair if they lack one. Caller commits the session.

    Returns:
        bool: True if a new pair was issued

    Raises:
        KeyRegenerationRefused: If policy is "no-history" and messages exist
        CryptoProviderError: If key generation fails
    """
    if user.has_key_pair():
        return False

    message_count = count_messages_for_user(user.userID)
    if message_count and policy == REGENERATE_WITHOUT_HISTORY:
        raise KeyRegenerationRefused(user.userID, message_count)

    public_key, private_key = issuer.issue()
    user.set_key_pair(public_key, private_key)

    if message_count:
        logger.warning(
            "Regenerated keys for user %s; %d earlier messages can no longer be decrypted",
            user.userID, message_count,
        )
    return True


__all__ = [
    "KeyIssuer",
    "KeyRegenerationRefused",
    "ensure_user_keys",
    "REGENERATE_ALWAYS",
    "REGENERATE_WITHOUT_HISTORY",
]
