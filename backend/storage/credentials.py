"""Persistence for the captured credential."""

import logging
from typing import Optional

from pydantic import ValidationError

from config import CREDENTIALS_KEY
from discovery.identity import IdentityService
from handshake.models import CapturedCredential
from storage.settings import SettingsStore

logger = logging.getLogger(__name__)


class CredentialVault:
    """Holds the most recent capture. A new capture overwrites the previous one."""

    def __init__(self, store: SettingsStore, identity: IdentityService):
        self._store = store
        self._identity = identity

    def get(self) -> Optional[CapturedCredential]:
        data = self._store.get(CREDENTIALS_KEY)
        if not data:
            return None
        try:
            return CapturedCredential.model_validate(data)
        except ValidationError as e:
            logger.error(f"Stored credential is unreadable: {e}")
            return None

    def save(self, credential: CapturedCredential) -> None:
        self._store.set(CREDENTIALS_KEY, credential.model_dump(mode="json"))
        logger.info(
            f"Stored credential for {credential.user_name} "
            f"(decoded: {'yes' if credential.usable else 'no'})"
        )

    def get_usable(self) -> Optional[CapturedCredential]:
        """The stored credential if it can wake a receiver under the current identity."""
        credential = self.get()
        if credential is None or not credential.usable:
            return None
        if credential.capturing_identity != self._identity.device_id:
            return None
        return credential

    def has_usable_credential(self) -> bool:
        return self.get_usable() is not None
