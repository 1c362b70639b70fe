import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from cipherchat.encryption.codec import DecryptedPayload
from cipherchat.encryption.decryption_cache import DecryptionCache
from cipherchat.encryption.message_crypto import DecryptionFailure, decrypt_for_user, encrypt_for_send


@pytest.fixture
def conversation(alice_keys, bob_keys):
    texts = [f"message {i}" for i in range(6)]
    envelopes = []
    for i, text in enumerate(texts):
        if i % 2:
            env = encrypt_for_send(text, bob_keys[0], alice_keys[0], sender_id=2, receiver_id=1)
        else:
            env = encrypt_for_send(text, alice_keys[0], bob_keys[0], sender_id=1, receiver_id=2)
        envelopes.append(env.with_storage(i + 1, None))
    return texts, envelopes


class CountingDecryptor:
    def __init__(self, delay: float = 0.0) -> None:
        self.calls = 0
        self.delay = delay
        self._lock = threading.Lock()

    def __call__(self, envelope, user_id, private_key):
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        return decrypt_for_user(envelope, user_id, private_key)


def test_second_read_is_served_from_cache(conversation, alice_keys):
    _, envelopes = conversation
    decryptor = CountingDecryptor()
    cache = DecryptionCache(1, alice_keys[1], decryptor=decryptor)

    first = cache.get_or_decrypt(envelopes[0])
    second = cache.get_or_decrypt(envelopes[0])

    assert first == second == DecryptedPayload(text="message 0", image_reference=None)
    assert decryptor.calls == 1
    assert envelopes[0] in cache


def test_failures_are_cached(conversation, eve_keys):
    _, envelopes = conversation
    decryptor = CountingDecryptor()
    cache = DecryptionCache(1, eve_keys[1], decryptor=decryptor)

    for _ in range(3):
        result = cache.get_or_decrypt(envelopes[0])

    assert isinstance(result, DecryptionFailure)
    assert decryptor.calls == 1


def test_concurrent_reads_decrypt_once(conversation, bob_keys):
    _, envelopes = conversation
    decryptor = CountingDecryptor(delay=0.2)
    cache = DecryptionCache(2, bob_keys[1], decryptor=decryptor)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: cache.get_or_decrypt(envelopes[0]), range(8)))

    assert decryptor.calls == 1
    assert all(result.text == "message 0" for result in results)


def test_conversation_keeps_order(conversation, alice_keys, bob_keys):
    texts, envelopes = conversation

    for reader_id, private_key in ((1, alice_keys[1]), (2, bob_keys[1])):
        cache = DecryptionCache(reader_id, private_key, max_workers=3)
        results = cache.decrypt_conversation(envelopes)
        assert [result.text for result in results] == texts
        assert len(cache) == len(envelopes)


def test_conversation_isolates_failures(conversation, alice_keys):
    texts, envelopes = conversation

    def flaky(envelope, user_id, private_key):
        if envelope.message_id == 3:
            raise RuntimeError("boom")
        return decrypt_for_user(envelope, user_id, private_key)

    cache = DecryptionCache(1, alice_keys[1], decryptor=flaky)
    results = cache.decrypt_conversation(envelopes)

    assert results[2].undecryptable
    assert results[2].stage == "internal"
    assert [r.text for i, r in enumerate(results) if i != 2] == texts[:2] + texts[3:]


def test_empty_conversation(alice_keys):
    assert DecryptionCache(1, alice_keys[1]).decrypt_conversation([]) == []


def test_clear_drops_entries_and_key(conversation, alice_keys):
    _, envelopes = conversation
    cache = DecryptionCache(1, alice_keys[1])
    cache.decrypt_conversation(envelopes)

    cache.clear()

    assert len(cache) == 0
    assert cache.get(envelopes[0]) is None
    assert cache.get_or_decrypt(envelopes[0]).undecryptable


def test_remember_skips_decryption(conversation, alice_keys):
    _, envelopes = conversation
    decryptor = CountingDecryptor()
    cache = DecryptionCache(1, alice_keys[1], decryptor=decryptor)

    cache.remember(envelopes[0], DecryptedPayload(text="message 0", image_reference=None))

    assert cache.get_or_decrypt(envelopes[0]).text == "message 0"
    assert decryptor.calls == 0
