"""
Credential storage for the Now-Playing Chat Bot.

The controller only ever talks to the ``CredentialStore`` contract. The
keyring-backed store keeps secrets in the operating system's secure storage;
the in-memory store is used for tests and throwaway runs.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from models import BotIdentity, Credential


OAUTH_TOKEN_KEY = "twitch_oauth_token"
BOT_USER_ID_KEY = "twitch_bot_user_id"
BOT_DISPLAY_NAME_KEY = "twitch_bot_display_name"
CHANNEL_ID_KEY = "twitch_channel_id"

ALL_KEYS = (OAUTH_TOKEN_KEY, BOT_USER_ID_KEY, BOT_DISPLAY_NAME_KEY, CHANNEL_ID_KEY)


class CredentialStoreError(Exception):
    """Raised when the backing store cannot read or write a secret."""
    pass


class CredentialStore(ABC):
    """
    Opaque key/value store for bot secrets.

    Each key is read and written atomically; no multi-key transactions are
    offered.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""
        pass

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one.

        Raises:
            CredentialStoreError: If the value cannot be stored
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key. Deleting a missing key is not an error."""
        pass

    def load_credential(self) -> Credential:
        """Read every known key into a Credential."""
        return Credential(
            bot_display_name=self.get(BOT_DISPLAY_NAME_KEY) or "",
            bot_user_id=self.get(BOT_USER_ID_KEY) or "",
            oauth_token=self.get(OAUTH_TOKEN_KEY) or "",
            channel_id=self.get(CHANNEL_ID_KEY) or ""
        )

    def save_token(self, token: str) -> None:
        self.put(OAUTH_TOKEN_KEY, token)

    def save_identity(self, identity: BotIdentity) -> None:
        self.put(BOT_DISPLAY_NAME_KEY, identity.resolved_name)
        self.put(BOT_USER_ID_KEY, identity.user_id)

    def clear_identity(self) -> None:
        """Forget the bot identity that belonged to the previous token."""
        self.delete(BOT_USER_ID_KEY)
        self.delete(BOT_DISPLAY_NAME_KEY)

    def save_channel(self, channel: str) -> None:
        self.put(CHANNEL_ID_KEY, channel)

    def clear(self) -> None:
        """Delete every key the bot uses."""
        for key in ALL_KEYS:
            self.delete(key)


class KeyringCredentialStore(CredentialStore):
    """Credential store backed by the system keyring."""

    def __init__(self, service_name: str):
        """
        Initialize the keyring store.

        Args:
            service_name: Keyring service under which all keys are kept
        """
        self.service_name = service_name
        self.logger = logging.getLogger(f"{__name__}.KeyringCredentialStore")

    def get(self, key: str) -> Optional[str]:
        try:
            return keyring.get_password(self.service_name, key)
        except KeyringError as e:
            self.logger.error(f"Failed to read '{key}' from keyring: {e}")
            raise CredentialStoreError(f"Failed to read '{key}' from keyring: {e}")

    def put(self, key: str, value: str) -> None:
        try:
            keyring.set_password(self.service_name, key, value)
            self.logger.debug(f"Saved '{key}' to keyring")
        except KeyringError as e:
            self.logger.error(f"Failed to save '{key}' to keyring: {e}")
            raise CredentialStoreError(f"Failed to save '{key}' to keyring: {e}")

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self.service_name, key)
        except PasswordDeleteError:
            # Key was never stored
            pass
        except KeyringError as e:
            self.logger.error(f"Failed to delete '{key}' from keyring: {e}")
            raise CredentialStoreError(f"Failed to delete '{key}' from keyring: {e}")


class MemoryCredentialStore(CredentialStore):
    """Process-local credential store."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)
