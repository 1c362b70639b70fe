"""
HTTP client for the chat API.

All encryption and decryption happens here, on the client; the server only
ever receives envelopes.
"""
from __future__ import annotations

import hashlib
import json
import logging

import requests

from ..encryption.exceptions import EnvelopeFormatError, KeyMissingError
from ..encryption.message_crypto import DecryptionFailure, MessageEnvelope
from .keystore import FileKeyStore
from .session import ChatSession

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


def _wire_identity(item) -> str:
    if isinstance(item, dict):
        message_id = item.get("id", item.get("_id"))
        if message_id is not None:
            return str(message_id)
    raw = json.dumps(item, sort_keys=True, default=str).encode("utf-8")
    return f"sha256:{hashlib.sha256(raw).hexdigest()}"


def _parse_envelope(item) -> tuple[MessageEnvelope | None, DecryptionFailure | None]:
    """Parse one wire envelope; a malformed one becomes a failure for that message only."""
    try:
        return MessageEnvelope.from_dict(item), None
    except EnvelopeFormatError as exc:
        identity = _wire_identity(item)
        logger.info("Message %s has a malformed envelope: %s", identity, exc)
        return None, DecryptionFailure(identity, "format", str(exc))


class ApiError(Exception):
    """The API answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


class ChatClient:
    def __init__(
        self,
        base_url: str,
        http=None,
        keystore: FileKeyStore | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.http = http if http is not None else requests.Session()
        self.keystore = keystore
        self.timeout = timeout
        self.token: str | None = None
        self.user: dict | None = None
        self.session: ChatSession | None = None
        self._public_keys: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def _request(self, method: str, path: str, payload: dict | None = None) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        response = self.http.request(
            method,
            f"{self.base_url}{path}",
            json=payload,
            headers=headers,
            timeout=self.timeout,
        )
        try:
            body = response.json() or {}
        except ValueError:
            body = {}

        if not 200 <= response.status_code < 300:
            raise ApiError(response.status_code, body.get("message") or body.get("msg") or "Request failed")
        return body

    def _require_session(self) -> ChatSession:
        if self.session is None or self.session.closed:
            raise RuntimeError("Not logged in.")
        return self.session

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def _open_session(self, user: dict, public_key: str, private_key: str) -> dict:
        if self.session is not None:
            self.session.close()
        self.user = user
        self.session = ChatSession(user["id"], public_key, private_key)
        self._public_keys.clear()
        return user

    def _start_session(self, body: dict) -> dict:
        self.token = body["accessToken"]
        user = body["user"]
        public_key = body.get("publicKey")
        private_key = body.get("privateKey")
        if not public_key or not private_key:
            raise KeyMissingError(user.get("id"), "Server did not return a key pair.")

        if self.keystore is not None:
            self.keystore.save(user["id"], public_key, private_key)
        return self._open_session(user, public_key, private_key)

    def resume(self, token: str) -> dict:
        """
        Reopen a session from a saved access token and the key store.

        Raises:
            ApiError: If the server rejects the token
            KeyMissingError: If the key store holds no pair for the user, or
                the stored public key no longer matches the server's
        """
        if self.keystore is None:
            raise RuntimeError("Resuming a session needs a key store.")

        self.token = token
        try:
            profile = self._request("GET", "/api/auth/me")["user"]
        except ApiError:
            self.token = None
            raise

        stored = self.keystore.load(profile["id"])
        if stored is None or stored[0] != profile.get("publicKey"):
            self.token = None
            raise KeyMissingError(profile["id"], "Stored keys are missing or out of date. Please log in again.")

        user = {key: value for key, value in profile.items() if key != "publicKey"}
        return self._open_session(user, *stored)

    def signup(self, username: str, full_name: str, email: str, password: str) -> dict:
        body = self._request("POST", "/api/auth/signup", {
            "username": username,
            "fullName": full_name,
            "email": email,
            "password": password,
        })
        return self._start_session(body)

    def login(self, username_or_email: str, password: str) -> dict:
        body = self._request("POST", "/api/auth/login", {
            "usernameOrEmail": username_or_email,
            "password": password,
        })
        return self._start_session(body)

    def logout(self) -> None:
        try:
            if self.token:
                self._request("POST", "/api/auth/logout")
        finally:
            if self.session is not None:
                self.session.close()
            self.session = None
            self.token = None
            self.user = None
            self._public_keys.clear()

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------
    def get_public_key(self, user_id) -> str:
        """
        Fetch and memoise a user's public key.

        Raises:
            KeyMissingError: If the server has no key for the user
        """
        cached = self._public_keys.get(str(user_id))
        if cached:
            return cached
        try:
            body = self._request("GET", f"/api/keys/public/{user_id}")
        except ApiError as exc:
            if exc.status_code == 404:
                raise KeyMissingError(user_id, exc.message) from exc
            raise
        self._public_keys[str(user_id)] = body["publicKey"]
        return body["publicKey"]

    def send_message(self, receiver_id, text: str | None, image: str | None = None) -> MessageEnvelope:
        """Encrypt for both parties, send, and cache the plaintext locally."""
        session = self._require_session()
        receiver_key = self.get_public_key(receiver_id)
        envelope = session.encrypt_for(receiver_id, receiver_key, text, image)

        body = self._request("POST", f"/api/messages/send/{receiver_id}", envelope.to_dict())
        stored = MessageEnvelope.from_dict(body["message"])
        session.remember_sent(stored, text, image)
        return stored

    def get_messages(self, user_id) -> list[tuple]:
        """
        Fetch a conversation and decrypt it concurrently: [(envelope, result), ...].

        A stored item that is not a well-formed envelope comes back as
        (None, DecryptionFailure) in its place; the rest still decrypt.
        """
        session = self._require_session()
        body = self._request("GET", f"/api/messages/{user_id}")
        parsed = [_parse_envelope(item) for item in body.get("messages", [])]

        envelopes = [envelope for envelope, _ in parsed if envelope is not None]
        decrypted = iter(session.read_conversation(envelopes))
        return [
            (envelope, next(decrypted) if envelope is not None else failure)
            for envelope, failure in parsed
        ]

    def receive_pushed(self, message: dict) -> tuple:
        """Decrypt an envelope pushed by the relay's newMessage event."""
        session = self._require_session()
        envelope, failure = _parse_envelope(message)
        if envelope is None:
            return None, failure
        return envelope, session.read(envelope)

    def list_users(self) -> list[dict]:
        body = self._request("GET", "/api/messages/users")
        for user in body.get("users", []):
            if user.get("publicKey"):
                self._public_keys[str(user["id"])] = user["publicKey"]
        return body.get("users", [])


__all__ = ["ApiError", "ChatClient"]
