"""Keychain storage for the document store credential.

The remote diary store authenticates with a bearer token that is issued
elsewhere. ``diary-sync token`` saves it here once; every later session
reads it back when the remote snapshot store is built. Usernames are not
secrets and live in the config file instead.
"""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

__all__ = ["KeychainManager", "StoredCredentials"]

logger = logging.getLogger(__name__)

SERVICE_NAME = "Diary Sync"
# One token per machine, shared by every diary user on it
ACCOUNT_NAME = "document_store"


@dataclass
class StoredCredentials:
    """Bearer token for the document store, plus the URL it was issued for.

    ``api_url`` overrides the configured store URL when set, so a token
    always goes to the server that issued it.
    """

    api_token: str
    api_url: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, data: str) -> "StoredCredentials":
        parsed = json.loads(data)
        return cls(api_token=parsed["api_token"], api_url=parsed.get("api_url"))


class KeychainManager:
    """Reads and writes the document store token in the OS keychain.

    Keychain failures never propagate: a missing or unreadable token just
    means the remote store is used without authorization.
    """

    def __init__(self, service_name: str = SERVICE_NAME):
        self.service_name = service_name

    def store(self, credentials: StoredCredentials) -> bool:
        """Save the token, replacing any earlier one. False on keychain errors."""
        try:
            keyring.set_password(self.service_name, ACCOUNT_NAME, credentials.to_json())
        except KeyringError as e:
            logger.error(f"Could not save document store token: {e}")
            return False
        target = credentials.api_url or "the configured store"
        logger.info(f"Saved document store token for {target}")
        return True

    def load(self) -> Optional[StoredCredentials]:
        """The saved token, or None if absent or unreadable."""
        try:
            data = keyring.get_password(self.service_name, ACCOUNT_NAME)
        except KeyringError as e:
            logger.error(f"Could not read document store token: {e}")
            return None
        if not data:
            return None
        try:
            return StoredCredentials.from_json(data)
        except (json.JSONDecodeError, KeyError) as e:
            logger.error(f"Ignoring malformed document store token: {e}")
            return None

    def delete(self) -> bool:
        """Forget the token. True if it is gone afterwards."""
        try:
            keyring.delete_password(self.service_name, ACCOUNT_NAME)
        except PasswordDeleteError:
            return True  # nothing saved
        except KeyringError as e:
            logger.error(f"Could not remove document store token: {e}")
            return False
        logger.info("Removed document store token")
        return True
