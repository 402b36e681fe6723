"""
Connect Manager: the long-lived service handle.

Owns the identity, the captured credential, the peer registry and the
emulator/initiator pair, and relays their events to subscribers.
"""

import logging
from typing import Optional

from config import SETTINGS_FILE
from discovery.identity import IdentityService
from discovery.models import PeerRecord
from discovery.registry import PeerRegistry
from discovery.service import DiscoveryService
from handshake.emulator import ReceiverEmulator
from handshake.models import CapturedCredential, CaptureSession, WakeResult
from handshake.wake import WakeInitiator
from storage.credentials import CredentialVault
from storage.settings import SettingsStore

logger = logging.getLogger(__name__)


class ConnectManager:
    """Entry point for everything outside the handshake engine."""

    def __init__(
        self,
        store: SettingsStore | None = None,
        discovery: DiscoveryService | None = None,
        initiator: WakeInitiator | None = None,
        emulator: ReceiverEmulator | None = None,
    ) -> None:
        self.store = store or SettingsStore(SETTINGS_FILE)
        self.identity = IdentityService(self.store)
        self.vault = CredentialVault(self.store, self.identity)
        self.registry = PeerRegistry()
        self.discovery = discovery or DiscoveryService(self.registry)
        self.emulator = emulator or ReceiverEmulator(self.identity, self.vault, self.discovery)
        self.initiator = initiator or WakeInitiator(self.vault, self.registry)
        self._event_callbacks: list = []  # async fn(event_type, data)

        self.registry.on_peer_change(self._on_peer_event)
        self.emulator.on_capture(self._on_capture)

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    async def _on_peer_event(self, event: str, peer: PeerRecord) -> None:
        await self._emit(event, peer.model_dump())

    async def _on_capture(self, credential: CapturedCredential) -> None:
        await self._emit("credential_captured", self.credential_summary(credential))

    # --- Lifecycle ---

    async def start(self) -> None:
        await self.discovery.start()

    async def stop(self) -> None:
        await self.emulator.stop()
        await self.discovery.stop()
        logger.info("Connect manager stopped")

    # --- Collaborator API ---

    async def start_capture(self, name: str) -> CaptureSession:
        return await self.emulator.start(name)

    async def stop_capture(self) -> None:
        await self.emulator.stop()

    def has_usable_credential(self) -> bool:
        return self.vault.has_usable_credential()

    def discovered_peers(self) -> list[PeerRecord]:
        return self.registry.peers()

    async def wake(self, target: str, port: Optional[int] = None) -> WakeResult:
        """Wake by address when a port is given, otherwise by discovered name."""
        if port is not None:
            return await self.initiator.wake_by_address(target, port)
        return await self.initiator.wake_by_discovered_name(target)

    def reset_identity(self) -> str:
        return self.identity.reset()

    def credential_summary(self, credential: CapturedCredential | None = None) -> dict:
        """Describe the stored credential without exposing auth material."""
        credential = credential or self.vault.get()
        if credential is None:
            return {"captured": False, "usable": False}
        return {
            "captured": True,
            "usable": self.has_usable_credential(),
            "user_name": credential.user_name,
            "auth_type": credential.decoded.auth_type if credential.decoded else None,
            "captured_at": credential.captured_at,
            "identity": credential.capturing_identity,
        }
