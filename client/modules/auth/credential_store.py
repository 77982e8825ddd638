"""
Credential storage for the authenticated user.

The token and the user profile are persisted in a small JSON file so a
session survives restarts; the session flag only lives in memory, so a new
process has to confirm the stored token before it counts as authenticated.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

from config import settings
from schemas.auth import User
from utils.logging import get_logger

logger = get_logger("auth.store")

TOKEN_KEY = "token"
USER_DATA_KEY = "user"


class CredentialProvider(Protocol):
    """Anything that can hand out the current auth token."""

    def get_token(self) -> Optional[str]:
        ...


class InMemoryCredentials:
    """Credential provider holding a fixed token, for tests and embedding."""

    def __init__(self, token: Optional[str] = None):
        self.token = token

    def get_token(self) -> Optional[str]:
        return self.token


class CredentialStore:
    """
    File-backed credential store.

    Storage failures are logged and reported as "no credential", never
    raised, so a broken file only forces a new login.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        """
        Initialize the store.

        Args:
            path: JSON file location (defaults to config)
        """
        self.path = Path(path) if path else settings.credential_file
        self._session_active = False

    def get_token(self) -> Optional[str]:
        token = self._read().get(TOKEN_KEY)
        if isinstance(token, str) and token.strip():
            return token
        return None

    def set_token(self, token: str) -> None:
        """Persist ``token`` and mark the current session as authenticated."""
        data = self._read()
        data[TOKEN_KEY] = token.strip()
        if self._write(data):
            self._session_active = True
            logger.info("Auth token stored successfully")

    def clear_token(self) -> None:
        data = self._read()
        data.pop(TOKEN_KEY, None)
        self._write(data)
        self._session_active = False
        logger.info("Auth token cleared")

    def get_user(self) -> Optional[User]:
        raw = self._read().get(USER_DATA_KEY)
        if not raw:
            return None
        try:
            return User.model_validate(raw)
        except ValueError as e:
            logger.error(f"Error reading stored user data: {e}")
            return None

    def set_user(self, user: User) -> None:
        data = self._read()
        data[USER_DATA_KEY] = user.model_dump(mode="json")
        self._write(data)

    def clear_all(self) -> None:
        """Remove the token, the user profile and the session flag."""
        self._session_active = False
        if self.path.exists():
            try:
                self.path.unlink()
            except OSError as e:
                logger.error(f"Error clearing auth data: {e}")
                return
        logger.info("All auth data cleared")

    def mark_session(self) -> None:
        """Flag the stored token as confirmed for this process."""
        self._session_active = True

    def has_session(self) -> bool:
        return self._session_active

    def is_authenticated(self) -> bool:
        return self.get_token() is not None and self._session_active

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Error getting stored auth: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Owner-only before the token is written
            self.path.touch(mode=0o600, exist_ok=True)
            self.path.chmod(0o600)
            self.path.write_text(json.dumps(data), encoding="utf-8")
        except OSError as e:
            logger.error(f"Error storing auth data: {e}")
            return False
        return True


# Global store instance
_credential_store: Optional[CredentialStore] = None


def get_credential_store() -> CredentialStore:
    """
    Get or create the global credential store instance.

    Returns:
        CredentialStore: Store instance
    """
    global _credential_store
    if _credential_store is None:
        _credential_store = CredentialStore()
    return _credential_store
