"""
Last.fm session key storage.

The key survives restarts in a small JSON file (mode 0600). If the file cannot
be written the key is still held in memory, so submissions keep working until
the next restart.
"""

from __future__ import annotations
import json
import logging
import os
import threading

from models import Credential

log = logging.getLogger("credentials")


class CredentialStore:
    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        self._credential: Credential | None = self._load()

    def _load(self) -> Credential | None:
        if not os.path.isfile(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return Credential.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.warning("Ignoring unreadable session key file %s: %s", self.path, e)
            return None

    def _write(self, credential: Credential) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp = f"{self.path}.tmp"
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(credential.to_dict(), f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

    def get(self) -> Credential | None:
        """Current credential, or None when unauthenticated."""
        with self._lock:
            return self._credential

    def set(self, credential: Credential) -> None:
        with self._lock:
            self._credential = credential
            try:
                self._write(credential)
            except OSError as e:
                log.error("Could not persist session key to %s: %s (kept in memory)", self.path, e)

    def clear(self) -> None:
        with self._lock:
            self._credential = None
            try:
                os.remove(self.path)
            except FileNotFoundError:
                pass
            except OSError as e:
                log.error("Could not remove session key file %s: %s", self.path, e)
