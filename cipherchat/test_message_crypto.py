"""
Tests for the hybrid message protocol: User A encrypts a message that both
User A and User B can read, and nobody else can.
"""

import base64
from dataclasses import replace
from datetime import datetime

import pytest

from cipherchat.encryption import message_crypto
from cipherchat.encryption.aes_handler import encrypt, generate_aes_key, generate_nonce
from cipherchat.encryption.codec import DecryptedPayload
from cipherchat.encryption.exceptions import EnvelopeFormatError, KeyMissingError, UnwrapError
from cipherchat.encryption.message_crypto import (
    UNDECRYPTABLE_TEXT,
    DecryptionFailure,
    MessageEnvelope,
    ReaderRole,
    decrypt_for_user,
    decrypt_received,
    encrypt_for_send,
)
from cipherchat.encryption.rsa_handler import unwrap_key, wrap_key


def _flip_bit(b64_value: str, index: int = 0) -> str:
    raw = bytearray(base64.b64decode(b64_value))
    raw[index] ^= 0x01
    return base64.b64encode(bytes(raw)).decode("utf-8")


@pytest.fixture
def envelope(alice_keys, bob_keys):
    return encrypt_for_send(
        "hello",
        alice_keys[0],
        bob_keys[0],
        sender_id=1,
        receiver_id=2,
    )


def test_alice_and_bob_can_both_read(envelope, alice_keys, bob_keys):
    as_receiver = decrypt_received(envelope, ReaderRole.RECEIVER, bob_keys[1])
    as_sender = decrypt_received(envelope, ReaderRole.SENDER, alice_keys[1])

    assert as_receiver == DecryptedPayload(text="hello", image_reference=None)
    assert as_sender == DecryptedPayload(text="hello", image_reference=None)


def test_third_party_cannot_unwrap(envelope, eve_keys):
    with pytest.raises(UnwrapError):
        unwrap_key(eve_keys[1], envelope.receiver_encrypted_key)

    result = decrypt_received(envelope, ReaderRole.RECEIVER, eve_keys[1])
    assert isinstance(result, DecryptionFailure)
    assert result.undecryptable
    assert result.stage == "unwrap"


@pytest.mark.parametrize("text,image", [
    ("", None),
    ("multi\nline ünïcödé ✓", None),
    ("with picture", "https://cdn.example/p.png"),
    (None, "https://cdn.example/only-image.png"),
    ("x" * 10_000, None),
])
def test_round_trip_payloads(text, image, alice_keys, bob_keys):
    env = encrypt_for_send(text, alice_keys[0], bob_keys[0], image=image)

    for role, private_key in ((ReaderRole.SENDER, alice_keys[1]), (ReaderRole.RECEIVER, bob_keys[1])):
        result = decrypt_received(env, role, private_key)
        assert result.text == (text or "")
        assert result.image_reference == image


@pytest.mark.parametrize("field_name", ["encrypted_content", "iv", "auth_tag"])
@pytest.mark.parametrize("index", [0, -1])
def test_tampering_is_detected(envelope, bob_keys, field_name, index):
    tampered = replace(envelope, **{field_name: _flip_bit(getattr(envelope, field_name), index)})

    result = decrypt_received(tampered, ReaderRole.RECEIVER, bob_keys[1])

    assert isinstance(result, DecryptionFailure)
    assert result.stage == "authenticate"
    assert result.text == UNDECRYPTABLE_TEXT


def test_envelopes_are_never_identical(alice_keys, bob_keys):
    first = encrypt_for_send("same", alice_keys[0], bob_keys[0])
    second = encrypt_for_send("same", alice_keys[0], bob_keys[0])

    assert first.iv != second.iv
    assert first.encrypted_content != second.encrypted_content
    assert first.sender_encrypted_key != second.sender_encrypted_key
    assert first.receiver_encrypted_key != second.receiver_encrypted_key
    assert unwrap_key(bob_keys[1], first.receiver_encrypted_key) != unwrap_key(
        bob_keys[1], second.receiver_encrypted_key
    )


def test_both_slots_wrap_the_same_key(envelope, alice_keys, bob_keys):
    assert unwrap_key(alice_keys[1], envelope.sender_encrypted_key) == unwrap_key(
        bob_keys[1], envelope.receiver_encrypted_key
    )


def test_role_confusion_fails(envelope, bob_keys):
    with pytest.raises(UnwrapError):
        unwrap_key(bob_keys[1], envelope.sender_encrypted_key)

    result = decrypt_received(envelope, ReaderRole.SENDER, bob_keys[1])
    assert isinstance(result, DecryptionFailure)


def test_legacy_raw_text_payload(alice_keys, bob_keys):
    key = generate_aes_key()
    nonce = generate_nonce()
    ciphertext, tag = encrypt(key, nonce, "plain old text".encode("utf-8"))
    env = MessageEnvelope(
        sender_id=1,
        receiver_id=2,
        encrypted_content=base64.b64encode(ciphertext).decode(),
        iv=base64.b64encode(nonce).decode(),
        auth_tag=base64.b64encode(tag).decode(),
        sender_encrypted_key=wrap_key(alice_keys[0], key),
        receiver_encrypted_key=wrap_key(bob_keys[0], key),
    )

    result = decrypt_received(env, ReaderRole.RECEIVER, bob_keys[1])

    assert result == DecryptedPayload(text="plain old text", image_reference=None, legacy=True)


def test_legacy_base64_wrapped_key(alice_keys, bob_keys):
    key = generate_aes_key()
    nonce = b"\x07" * 16
    ciphertext, tag = encrypt(key, nonce, b'{"text":"old client","image":null}')
    key_text = base64.b64encode(key)  # older clients wrapped the base64 string
    env = MessageEnvelope(
        sender_id=1,
        receiver_id=2,
        encrypted_content=base64.b64encode(ciphertext).decode(),
        iv=base64.b64encode(nonce).decode(),
        auth_tag=base64.b64encode(tag).decode(),
        sender_encrypted_key=wrap_key(alice_keys[0], key_text),
        receiver_encrypted_key=wrap_key(bob_keys[0], key_text),
    )

    assert decrypt_received(env, ReaderRole.SENDER, alice_keys[1]).text == "old client"


def test_missing_keys_rejected_before_encryption(monkeypatch, bob_keys):
    def fail(*args, **kwargs):
        raise AssertionError("encryption must not start")

    monkeypatch.setattr(message_crypto, "MessageKey", fail)

    with pytest.raises(KeyMissingError):
        encrypt_for_send("hi", None, bob_keys[0], sender_id=1)
    with pytest.raises(KeyMissingError) as excinfo:
        encrypt_for_send("hi", bob_keys[0], "", receiver_id=9)
    assert excinfo.value.user_id == 9


def test_decrypt_without_private_key(envelope):
    result = decrypt_received(envelope, ReaderRole.RECEIVER, None)
    assert isinstance(result, DecryptionFailure)
    assert result.stage == "key"


def test_unknown_role_is_a_failure(envelope, bob_keys):
    result = decrypt_received(envelope, "observer", bob_keys[1])

    assert isinstance(result, DecryptionFailure)
    assert result.stage == "role"


def test_garbage_never_raises(envelope, bob_keys):
    broken = replace(envelope, iv="%%%", encrypted_content="not base64")
    assert decrypt_received(broken, ReaderRole.RECEIVER, bob_keys[1]).undecryptable
    assert decrypt_received(envelope, ReaderRole.RECEIVER, "not a key").undecryptable


def test_decrypt_for_user_selects_role(envelope, alice_keys, bob_keys, eve_keys):
    assert decrypt_for_user(envelope, 1, alice_keys[1]).text == "hello"
    assert decrypt_for_user(envelope, "2", bob_keys[1]).text == "hello"

    outsider = decrypt_for_user(envelope, 3, eve_keys[1])
    assert isinstance(outsider, DecryptionFailure)
    assert outsider.stage == "role"


def test_wire_shape_round_trip(envelope):
    stored = envelope.with_storage(41, datetime(2024, 5, 1, 12, 30))
    wire = stored.to_dict()

    assert set(wire) == {
        "id", "senderId", "receiverId", "encryptedContent", "iv", "authTag",
        "senderEncryptedKey", "receiverEncryptedKey", "createdAt",
    }
    restored = MessageEnvelope.from_dict(wire)
    assert restored == stored
    assert restored.to_dict() == wire


def test_identity_without_id_is_content_digest(envelope):
    assert envelope.identity.startswith("sha256:")
    assert envelope.identity == replace(envelope, created_at=datetime(2024, 1, 1)).identity
    assert envelope.with_storage(7, datetime(2024, 1, 1)).identity == "7"


@pytest.mark.parametrize("mutate,expected", [
    (lambda d: d.pop("authTag"), "authTag"),
    (lambda d: d.update(iv=""), "iv"),
    (lambda d: d.update(authTag=base64.b64encode(b"short").decode()), "authTag"),
    (lambda d: d.update(iv=base64.b64encode(b"\x00" * 8).decode()), "iv"),
    (lambda d: d.update(senderEncryptedKey="@@not-base64@@"), "senderEncryptedKey"),
    (lambda d: d.update(createdAt="yesterday"), "createdAt"),
])
def test_from_dict_rejects_malformed_envelopes(envelope, mutate, expected):
    data = envelope.to_dict()
    mutate(data)

    with pytest.raises(EnvelopeFormatError) as excinfo:
        MessageEnvelope.from_dict(data)
    assert expected in str(excinfo.value)


def test_from_dict_requires_object():
    with pytest.raises(EnvelopeFormatError):
        MessageEnvelope.from_dict(None)
