"""
Message payload codec.

Plaintext bodies are encoded as a small JSON object before encryption:

    {"text": "hello", "image": "https://cdn.example/pic.png"}

Early clients encrypted the bare message text with no wrapper. Those
payloads still decode: parsing is attempted first and, when the bytes are
not a structured payload, the whole string becomes the text.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from .exceptions import CodecError

_FIELDS = frozenset({"text", "image"})


@dataclass(frozen=True)
class StructuredPayload:
    text: str = ""
    image: str | None = None


@dataclass(frozen=True)
class RawTextPayload:
    text: str


@dataclass(frozen=True)
class DecryptedPayload:
    """Plaintext reconstructed by a reader. Never persisted or transmitted."""

    text: str
    image_reference: str | None = None
    legacy: bool = False

    undecryptable = False

    def to_dict(self) -> dict[str, object]:
        return {"text": self.text, "image": self.image_reference}


def serialize(text: str | None, image_ref: str | None = None) -> bytes:
    """Encode a message body. A missing text is stored as an empty string."""
    body = {"text": text or "", "image": image_ref or None}
    return json.dumps(body, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def parse_payload(data: bytes) -> StructuredPayload | RawTextPayload:
    """
    Decode payload bytes into one of the two known shapes.

    Raises:
        CodecError: If the bytes are not UTF-8 text
    """
    try:
        decoded = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise CodecError("Payload is not UTF-8 text.") from exc

    try:
        body = json.loads(decoded)
    except ValueError:
        return RawTextPayload(text=decoded)

    if not isinstance(body, dict) or not set(body) <= _FIELDS:
        return RawTextPayload(text=decoded)

    text = body.get("text")
    image = body.get("image")
    if not isinstance(text, (str, type(None))) or not isinstance(image, (str, type(None))):
        return RawTextPayload(text=decoded)

    return StructuredPayload(text=text or "", image=image or None)


def deserialize(data: bytes) -> DecryptedPayload:
    """Decode payload bytes into a DecryptedPayload, falling back to raw text."""
    payload = parse_payload(data)
    if isinstance(payload, RawTextPayload):
        return DecryptedPayload(text=payload.text, image_reference=None, legacy=True)
    return DecryptedPayload(text=payload.text, image_reference=payload.image)


__all__ = [
    "StructuredPayload",
    "RawTextPayload",
    "DecryptedPayload",
    "serialize",
    "parse_payload",
    "deserialize",
]
