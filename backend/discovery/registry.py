"""
Registry of receivers discovered on the LAN.

Keyed by advertised name. A newer advertisement replaces the stored record
outright. Some receivers re-advertise on a new port every session, so
``refresh`` drops matching records and waits for a fresh advertisement.
"""

import asyncio
import logging
import time

from config import REFRESH_POLL_INTERVAL, REFRESH_TIMEOUT
from discovery.models import PeerRecord

logger = logging.getLogger(__name__)


class PeerRegistry:
    """Single map of discovered peers shared by the browser and waiters."""

    def __init__(self) -> None:
        self._peers: dict[str, PeerRecord] = {}
        self._on_peer_change: list = []  # callbacks: async def fn(event, peer)

    def on_peer_change(self, callback) -> None:
        """Register a callback for peer discovered/lost events."""
        self._on_peer_change.append(callback)

    def _notify(self, event: str, peer: PeerRecord) -> None:
        for cb in self._on_peer_change:
            asyncio.ensure_future(cb(event, peer))

    def update(self, peer: PeerRecord) -> None:
        """Add or replace a peer record."""
        is_new = peer.name not in self._peers
        self._peers[peer.name] = peer

        logger.info(f"Discovered peer: {peer.name} at {peer.host}:{peer.port}")
        logger.debug(f"  attributes: {peer.attributes}")
        if is_new:
            self._notify("peer_discovered", peer)

    def remove(self, name: str) -> PeerRecord | None:
        peer = self._peers.pop(name, None)
        if peer:
            logger.info(f"Peer lost: {peer.name}")
            self._notify("peer_lost", peer)
        return peer

    def get(self, name: str) -> PeerRecord | None:
        return self._peers.get(name)

    def peers(self) -> list[PeerRecord]:
        """Return a list of currently known peers."""
        return list(self._peers.values())

    def find(self, hint: str) -> PeerRecord | None:
        """First peer whose name or host fuzzily matches ``hint``."""
        return next((p for p in self._peers.values() if p.matches(hint)), None)

    def invalidate(self, hint: str) -> int:
        """Drop every record matching ``hint`` without emitting events."""
        stale = [name for name, peer in self._peers.items() if peer.matches(hint)]
        for name in stale:
            logger.info(f"Clearing stale entry for: {name}")
            del self._peers[name]
        return len(stale)

    async def refresh(
        self,
        hint: str,
        timeout: float = REFRESH_TIMEOUT,
        poll_interval: float = REFRESH_POLL_INTERVAL,
    ) -> PeerRecord | None:
        """
        Invalidate records matching ``hint`` and wait for a fresh one.

        Returns the re-discovered record, or None once ``timeout`` elapses.
        """
        logger.info(f"Refreshing discovery for: {hint}")
        self.invalidate(hint)

        deadline = time.monotonic() + timeout
        while True:
            peer = self.find(hint)
            if peer:
                logger.info(f"Fresh discovery received: {peer.name} at {peer.host}:{peer.port}")
                return peer

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.info(f"Discovery refresh timeout for: {hint}")
                return None
            await asyncio.sleep(min(poll_interval, remaining))
