"""
Helper module to emit events to the relay server over HTTP.
"""
from __future__ import annotations

import logging

import requests
from flask import current_app

from .encryption.message_crypto import MessageEnvelope

logger = logging.getLogger(__name__)


def _post(path: str, payload: dict) -> bool:
    base_url = current_app.config["RELAY_API_URL"]
    try:
        response = requests.post(
            f"{base_url}{path}",
            json=payload,
            headers={"X-Relay-Token": current_app.config["RELAY_API_TOKEN"]},
            timeout=current_app.config.get("RELAY_TIMEOUT_SECONDS", 2),
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Relay call to %s failed: %s", path, exc)
        return False
    return True


def emit_new_message(receiver_id: int, message: dict) -> bool:
    """Emit a new message event to the relay server."""
    return _post("/relay/message", {"receiverId": receiver_id, "message": message})


def on_envelope_ready(envelope: MessageEnvelope) -> bool:
    """Push a stored envelope to its receiver. Delivery failure never fails the send."""
    return emit_new_message(envelope.receiver_id, envelope.to_dict())


__all__ = ["emit_new_message", "on_envelope_ready"]
