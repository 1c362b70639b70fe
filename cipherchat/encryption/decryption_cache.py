"""
Per-session cache of decrypted message bodies.

The cache belongs to one logged-in session. It maps message identity to
the DecryptedPayload (or DecryptionFailure) produced for that reader, so a
conversation re-render never repeats RSA unwraps. Failures are cached too.
Nothing here is ever written to disk.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Iterable

from .codec import DecryptedPayload
from .message_crypto import DecryptionFailure, MessageEnvelope, decrypt_for_user

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4

DecryptResult = DecryptedPayload | DecryptionFailure


class DecryptionCache:
    """Memo of decrypted bodies for one reader, safe to share across threads."""

    def __init__(
        self,
        reader_id,
        private_key: str | None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        decryptor: Callable[[MessageEnvelope, object, str | None], DecryptResult] = decrypt_for_user,
    ) -> None:
        self.reader_id = reader_id
        self._private_key = private_key
        self._max_workers = max(1, max_workers)
        self._decryptor = decryptor
        self._entries: dict[str, DecryptResult] = {}
        self._in_flight: dict[str, Future] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, envelope: MessageEnvelope) -> bool:
        with self._lock:
            return envelope.identity in self._entries

    def get(self, envelope: MessageEnvelope) -> DecryptResult | None:
        with self._lock:
            return self._entries.get(envelope.identity)

    def remember(self, envelope: MessageEnvelope, payload: DecryptedPayload) -> None:
        """Store plaintext the caller already knows, e.g. a message it just sent."""
        with self._lock:
            self._entries[envelope.identity] = payload

    def get_or_decrypt(self, envelope: MessageEnvelope) -> DecryptResult:
        """
        Return the cached result for envelope, decrypting it on first use.

        Concurrent callers asking for the same message wait on a single
        decryption instead of starting their own.
        """
        key = envelope.identity
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                return cached
            pending = self._in_flight.get(key)
            if pending is None:
                pending = Future()
                self._in_flight[key] = pending
                owner = True
            else:
                owner = False
            private_key = self._private_key

        if not owner:
            return pending.result()

        try:
            result = self._decryptor(envelope, self.reader_id, private_key)
        except Exception as exc:
            # Failures stay per-message.
            logger.exception("Unexpected error decrypting message %s", key)
            result = DecryptionFailure(key, "internal", str(exc))

        with self._lock:
            if self._private_key is private_key:
                self._entries[key] = result
            self._in_flight.pop(key, None)
        pending.set_result(result)
        return result

    def decrypt_conversation(self, envelopes: Iterable[MessageEnvelope]) -> list[DecryptResult]:
        """Decrypt a conversation backlog concurrently; results keep input order."""
        envelopes = list(envelopes)
        if not envelopes:
            return []

        workers = min(self._max_workers, len(envelopes))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="decrypt") as pool:
            results = list(pool.map(self.get_or_decrypt, envelopes))

        failed = sum(1 for result in results if result.undecryptable)
        if failed:
            logger.warning("%d of %d messages could not be decrypted", failed, len(results))
        return results

    def clear(self) -> None:
        """Drop every entry and the private key reference (logout / key change)."""
        with self._lock:
            self._entries.clear()
            self._private_key = None


__all__ = ["DecryptionCache", "DecryptResult", "DEFAULT_MAX_WORKERS"]
