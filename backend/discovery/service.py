"""
mDNS discovery service.

Browses for receivers advertising the handshake service type and feeds them
into the PeerRegistry. Also publishes the emulator's own advertisement.
"""

import asyncio
import logging
import socket
import time

from zeroconf import IPVersion, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from config import RESOLVE_TIMEOUT_MS, SERVICE_TYPE
from discovery.models import PeerRecord
from discovery.registry import PeerRegistry

logger = logging.getLogger(__name__)


def _instance_name(full_name: str, service_type: str) -> str:
    suffix = "." + service_type
    return full_name[:-len(suffix)] if full_name.endswith(suffix) else full_name


def _decode_properties(properties: dict) -> dict[str, str]:
    attributes = {}
    for key, value in (properties or {}).items():
        key = key.decode("utf-8", errors="replace") if isinstance(key, bytes) else str(key)
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        attributes[key] = "" if value is None else str(value)
    return attributes


def local_ip_addresses() -> list[str]:
    """Best-effort list of this host's non-loopback IPv4 addresses."""
    ips: list[str] = []
    try:
        _, _, host_ips = socket.gethostbyname_ex(socket.gethostname())
        ips.extend(ip for ip in host_ips if not ip.startswith("127."))
    except OSError as e:
        logger.debug(f"Error resolving local IPs: {e}")

    if not ips:
        # The address the default route would use; no packet is sent.
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                sock.connect(("10.255.255.255", 1))
                ips.append(sock.getsockname()[0])
        except OSError as e:
            logger.debug(f"Error probing default route: {e}")

    return ips or ["127.0.0.1"]


class DiscoveryService:
    """Manages LAN receiver discovery and our own advertisement via mDNS."""

    def __init__(self, registry: PeerRegistry, service_type: str = SERVICE_TYPE) -> None:
        self.registry = registry
        self.service_type = service_type
        self._aiozc: AsyncZeroconf | None = None
        self._browser: AsyncServiceBrowser | None = None
        self._advertisement: AsyncServiceInfo | None = None
        self._resolve_tasks: set[asyncio.Task] = set()

    @property
    def advertised_name(self) -> str | None:
        if self._advertisement is None:
            return None
        return _instance_name(self._advertisement.name, self.service_type)

    def _zeroconf(self) -> AsyncZeroconf:
        if self._aiozc is None:
            self._aiozc = AsyncZeroconf(ip_version=IPVersion.V4Only)
        return self._aiozc

    async def start(self) -> None:
        """Start browsing for receivers."""
        if self._browser:
            return
        logger.info(f"Starting discovery for {self.service_type}")
        aiozc = self._zeroconf()
        self._browser = AsyncServiceBrowser(
            aiozc.zeroconf,
            [self.service_type],
            handlers=[self._on_service_state_change],
        )
        logger.info("Discovery service started")

    async def stop(self) -> None:
        """Stop browsing, withdraw any advertisement and release the socket."""
        await self.withdraw()
        if self._browser:
            await self._browser.async_cancel()
            self._browser = None
        for task in self._resolve_tasks:
            task.cancel()
        self._resolve_tasks.clear()
        if self._aiozc:
            await self._aiozc.async_close()
            self._aiozc = None
        logger.info("Discovery service stopped")

    def _on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        instance = _instance_name(name, service_type)
        if instance == self.advertised_name:
            return

        if state_change is ServiceStateChange.Removed:
            self.registry.remove(instance)
            return

        task = asyncio.ensure_future(self._resolve(zeroconf, service_type, name))
        self._resolve_tasks.add(task)
        task.add_done_callback(self._resolve_tasks.discard)

    async def _resolve(self, zeroconf: Zeroconf, service_type: str, name: str) -> None:
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(zeroconf, RESOLVE_TIMEOUT_MS):
            logger.debug(f"Could not resolve {name}")
            return
        if info.port is None:
            return

        host = (info.server or "").rstrip(".")
        peer = PeerRecord(
            name=_instance_name(name, service_type),
            host=host,
            addresses=info.parsed_addresses(),
            port=info.port,
            attributes=_decode_properties(info.properties),
            discovered_at=time.time(),
        )
        self.registry.update(peer)

    async def advertise(self, name: str, port: int, attributes: dict[str, str]) -> None:
        """Publish our emulated receiver on the LAN."""
        await self.withdraw()

        hostname = socket.gethostname().split(".")[0] or "connect-booth"
        info = AsyncServiceInfo(
            self.service_type,
            f"{name}.{self.service_type}",
            parsed_addresses=local_ip_addresses(),
            port=port,
            properties=attributes,
            server=f"{hostname}.local.",
        )
        aiozc = self._zeroconf()
        await (await aiozc.async_register_service(info, allow_name_change=True))
        self._advertisement = info
        logger.info(f"Advertising {info.name} on port {port}")

    async def withdraw(self) -> None:
        """Withdraw our advertisement, if any."""
        if self._advertisement is None or self._aiozc is None:
            self._advertisement = None
            return
        info, self._advertisement = self._advertisement, None
        await (await self._aiozc.async_unregister_service(info))
        logger.info(f"Withdrew advertisement {info.name}")
