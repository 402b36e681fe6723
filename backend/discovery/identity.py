"""
Identity Service for the emulated receiver's stable device identity.
"""

import logging
import secrets

from config import CREDENTIALS_KEY, IDENTITY_KEY
from storage.settings import SettingsStore

logger = logging.getLogger(__name__)

IDENTITY_BYTES = 16


class IdentityService:
    """Manages the persisted device identity used as layer-B key material."""

    def __init__(self, store: SettingsStore):
        self._store = store
        self.device_id = self._load_or_generate()
        logger.info(f"Initialized IdentityService with device id: {self.device_id}")

    def _load_or_generate(self) -> str:
        """Loads the existing identity or creates and persists a new one."""
        device_id = self._store.get(IDENTITY_KEY)
        if isinstance(device_id, str) and device_id:
            return device_id

        device_id = secrets.token_hex(IDENTITY_BYTES)
        self._store.set(IDENTITY_KEY, device_id)
        return device_id

    def reset(self) -> str:
        """
        Replace the identity and drop the captured credential in one write.

        Credentials captured under the old identity can no longer be
        decrypted, so they are removed with it.
        """
        device_id = secrets.token_hex(IDENTITY_BYTES)
        self._store.update({IDENTITY_KEY: device_id}, remove=[CREDENTIALS_KEY])
        self.device_id = device_id
        logger.info(f"Identity reset, new device id: {device_id}")
        return device_id
