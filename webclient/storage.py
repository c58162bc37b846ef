"""Durable client-side credential storage.

A small JSON file stands in for the browser's local storage. Keys are
fixed so every part of the client finds the same credential.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

SESSION_KEY = "sessionId"
FEDERATED_SESSION_KEY = "federatedSessionId"


class CredentialStorage:
    """Key/value credential store persisted to a JSON file."""

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except ValueError:
            logger.warning(f"Credential file {self._path} is corrupt, treating as empty")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".credentials-")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self._path)

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)

    def clear_all(self) -> None:
        """Drop every stored credential, not just the one that failed."""
        with self._lock:
            if self._path.exists():
                self._path.unlink()

    @property
    def session_id(self) -> str | None:
        return self.get(SESSION_KEY)

    @property
    def federated_session_id(self) -> str | None:
        return self.get(FEDERATED_SESSION_KEY)
