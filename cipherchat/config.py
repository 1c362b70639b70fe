from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Default configuration for the chat backend."""

    BASE_DIR = Path(__file__).resolve().parent.parent
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", SECRET_KEY)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'instance' / 'app.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=12)

    FRONTEND_ORIGIN = os.environ.get("FRONTEND_ORIGIN", "http://localhost:5173")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Key issuance runs on its own pool so RSA generation stays off request threads.
    RSA_KEY_SIZE = int(os.environ.get("RSA_KEY_SIZE", "2048"))
    KEY_POOL_WORKERS = int(os.environ.get("KEY_POOL_WORKERS", "2"))
    KEY_ISSUE_TIMEOUT_SECONDS = float(os.environ.get("KEY_ISSUE_TIMEOUT_SECONDS", "30"))

    # "always": regenerate missing keys at login (old ciphertext becomes unreadable).
    # "no-history": refuse to regenerate once the user has any messages.
    KEY_REGENERATION_POLICY = os.environ.get("KEY_REGENERATION_POLICY", "always")

    # Deprecated plaintext text/image fields on incoming envelopes are dropped unless enabled.
    ACCEPT_PLAINTEXT_FALLBACK = _env_bool("ACCEPT_PLAINTEXT_FALLBACK", False)

    RELAY_API_URL = os.environ.get("RELAY_API_URL", "http://localhost:5001")
    RELAY_API_TOKEN = os.environ.get("RELAY_API_TOKEN", "dev-relay-token")
    RELAY_TIMEOUT_SECONDS = float(os.environ.get("RELAY_TIMEOUT_SECONDS", "2"))


__all__ = ["Config"]
