"""Authentication helpers: persisted session token and bearer headers."""

import json
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class AuthRequiredError(RuntimeError):
    """No usable token (or lesson id); the user has to log in first."""


def bearer_headers(token: str | None) -> dict[str, str]:
    """Build the Authorization header for a token, or nothing without one."""
    if not token:
        return {}
    return {"Authorization": f"Bearer {token}"}


def get_token_from_header(value: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer ...`` header value."""
    if value and value.startswith("Bearer "):
        return value[7:] or None
    return None


class TokenStore:
    """Login session persisted as a small JSON file.

    The file holds ``{"token": ..., "user": {...}}``. A missing or corrupt
    file reads as "logged out".
    """

    def __init__(self, filepath: str | Path):
        self.filepath = Path(filepath).expanduser().resolve()
        self._data: dict = {}
        self._load()

    def _load(self):
        if not self.filepath.exists():
            return
        try:
            with open(self.filepath) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            logger.warning("Corrupt session file %s, treating as logged out", self.filepath)
            return
        self._data = data if isinstance(data, dict) else {}

    def _save(self):
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_path = tempfile.mkstemp(
            dir=str(self.filepath.parent), suffix=".tmp"
        )
        try:
            with os.fdopen(tmp_fd, "w") as f:
                json.dump(self._data, f, indent=2)
            os.replace(tmp_path, self.filepath)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    @property
    def token(self) -> str | None:
        token = self._data.get("token")
        return token if isinstance(token, str) and token else None

    @property
    def user(self) -> dict | None:
        user = self._data.get("user")
        return user if isinstance(user, dict) else None

    def save(self, token: str, user: dict | None = None) -> None:
        self._data = {"token": token, "user": user}
        self._save()

    def clear(self) -> None:
        self._data = {}
        try:
            self.filepath.unlink()
        except FileNotFoundError:
            pass

    def require_token(self) -> str:
        token = self.token
        if token is None:
            raise AuthRequiredError("Not logged in.")
        return token
