"""
Client-side key custody.

The server hands the key pair to the client once per signup/login; the
client keeps it in a per-user directory:

    <root>/<user_id>/public.pem
    <root>/<user_id>/private.pem   (mode 0600)
"""
from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

PUBLIC_KEY_FILE = "public.pem"
PRIVATE_KEY_FILE = "private.pem"


class FileKeyStore:
    def __init__(self, root: str | os.PathLike) -> None:
        self.root = Path(root)

    def _user_dir(self, user_id) -> Path:
        return self.root / str(user_id)

    def save(self, user_id, public_key: str, private_key: str) -> None:
        user_dir = self._user_dir(user_id)
        user_dir.mkdir(parents=True, exist_ok=True, mode=0o700)

        (user_dir / PUBLIC_KEY_FILE).write_text(public_key, encoding="utf-8")

        private_path = user_dir / PRIVATE_KEY_FILE
        fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(private_key)
        os.chmod(private_path, 0o600)
        logger.debug("Stored key pair for user %s", user_id)

    def load(self, user_id) -> tuple[str, str] | None:
        """Return (public_key, private_key), or None unless both files exist."""
        user_dir = self._user_dir(user_id)
        public_path = user_dir / PUBLIC_KEY_FILE
        private_path = user_dir / PRIVATE_KEY_FILE
        if not public_path.is_file() or not private_path.is_file():
            return None
        return (
            public_path.read_text(encoding="utf-8"),
            private_path.read_text(encoding="utf-8"),
        )

    def clear(self, user_id) -> None:
        shutil.rmtree(self._user_dir(user_id), ignore_errors=True)


__all__ = ["FileKeyStore"]
