"""
Wake initiator.

Drives the handshake as a client against a real receiver: installs the
captured credential on it so it logs in and becomes an active session.
"""

import asyncio
import logging

import httpx
from pydantic import ValidationError

from config import (
    DEFAULT_RECEIVER_PORT,
    FALLBACK_PATHS,
    LOGIN_SETTLE_DELAY,
    PROTOCOL_VERSION,
    REFRESH_TIMEOUT,
    REQUEST_TIMEOUT,
    RESET_SETTLE_DELAY,
)
from discovery.registry import PeerRegistry
from errors import NetworkError, NoCredential, ProtocolError, RejectedCredential, UnreachableReceiver
from handshake.models import DeviceInfo, StatusResponse, WakeResult
from security.crypto import encrypt_credential
from security.dh import generate_keypair
from security.record import CredentialRecord
from storage.credentials import CredentialVault

logger = logging.getLogger(__name__)


def _candidate_paths(path_hint: str | None, fallback_paths: list[str]) -> list[str]:
    """The hint first, then the fallbacks, without duplicates."""
    paths = [path_hint] if path_hint else []
    paths.extend(fallback_paths)
    return list(dict.fromkeys(paths))


class WakeInitiator:
    """Installs a stored credential on a receiver to wake it."""

    def __init__(
        self,
        vault: CredentialVault,
        registry: PeerRegistry,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = REQUEST_TIMEOUT,
        fallback_paths: list[str] | None = None,
        reset_settle_delay: float = RESET_SETTLE_DELAY,
        login_settle_delay: float = LOGIN_SETTLE_DELAY,
        refresh_timeout: float = REFRESH_TIMEOUT,
    ) -> None:
        self._vault = vault
        self._registry = registry
        self._transport = transport
        self._timeout = timeout
        self._fallback_paths = list(FALLBACK_PATHS if fallback_paths is None else fallback_paths)
        self._reset_settle_delay = reset_settle_delay
        self._login_settle_delay = login_settle_delay
        self._refresh_timeout = refresh_timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self._timeout)

    # --- Wire requests ---

    @staticmethod
    def _parse(response: httpx.Response, model):
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ProtocolError(
                f"Invalid response from receiver: {response.text[:200]}",
                status_text=response.text[:200],
            ) from e

    async def get_info(self, client: httpx.AsyncClient, url: str) -> DeviceInfo:
        logger.info(f"Getting device info from: {url}")
        try:
            response = await client.get(
                url, params={"action": "getInfo", "version": PROTOCOL_VERSION}
            )
        except httpx.TransportError as e:
            raise NetworkError(f"getInfo to {url} failed: {e}") from e
        return self._parse(response, DeviceInfo)

    async def reset_users(self, client: httpx.AsyncClient, url: str) -> None:
        """Best-effort disconnect of the receiver's active user."""
        logger.info(f"Sending disconnect request to {url}")
        try:
            response = await client.post(url, data={"action": "resetUsers"})
            logger.info(f"Disconnect response: {response.status_code} {response.text[:200]}")
        except httpx.TransportError as e:
            logger.warning(f"Disconnect error: {e}, continuing...")

    async def add_user(
        self, client: httpx.AsyncClient, url: str, user_name: str, blob: str, client_key: str
    ) -> StatusResponse:
        logger.info(f"Sending wake request to {url}")
        try:
            response = await client.post(
                url,
                data={
                    "action": "addUser",
                    "userName": user_name,
                    "blob": blob,
                    "clientKey": client_key,
                },
            )
        except httpx.TransportError as e:
            raise NetworkError(f"addUser to {url} failed: {e}") from e
        return self._parse(response, StatusResponse)

    # --- Wake flows ---

    async def _probe(
        self, client: httpx.AsyncClient, base_url: str, paths: list[str]
    ) -> tuple[str, DeviceInfo]:
        for path in paths:
            try:
                info = await self.get_info(client, base_url + path)
            except (NetworkError, ProtocolError) as e:
                logger.info(f"Path {path} failed: {e}")
                continue
            if info.ok and info.deviceID:
                logger.info(f"Found device at {path}: {info.remoteName}, deviceID={info.deviceID}")
                return path, info
            logger.info(f"Path {path} returned status {info.status}: {info.statusString}")

        raise UnreachableReceiver(
            f"Could not find working handshake path on {base_url}. Tried: {', '.join(paths)}"
        )

    async def wake_by_address(
        self, host: str, port: int = DEFAULT_RECEIVER_PORT, path_hint: str | None = None
    ) -> WakeResult:
        """
        Wake the receiver at ``host:port``.

        Raises:
            NoCredential: no wake-usable credential is stored.
            UnreachableReceiver: no candidate path answered getInfo.
            RejectedCredential: the receiver refused the credential.
            NetworkError, ProtocolError, KeyAgreementError: on the submission.
            MalformedRecord: the stored credential cannot be encoded.
        """
        credential = self._vault.get_usable()
        if credential is None:
            raise NoCredential("No decrypted credentials. Capture a login first.")

        base_url = f"http://{host}:{port}"
        paths = _candidate_paths(path_hint, self._fallback_paths)
        logger.info(f"Waking device at {base_url} (candidates: {paths})")

        async with self._client() as client:
            path, info = await self._probe(client, base_url, paths)
            url = base_url + path

            if info.activeUser:
                logger.info(f"Disconnecting current user: {info.activeUser}")
                await self.reset_users(client, url)
                await asyncio.sleep(self._reset_settle_delay)

            keypair = generate_keypair()
            record = CredentialRecord(
                user_name=credential.user_name,
                auth_type=credential.decoded.auth_type,
                auth_data=credential.decoded.auth_data,
            )
            blob = encrypt_credential(record, info.deviceID, info.publicKey, keypair)

            response = await self.add_user(
                client, url, credential.user_name, blob, keypair.public_key_b64
            )
            if not response.ok:
                status_text = response.statusString or str(response.status)
                raise RejectedCredential(
                    f"Device rejected credentials: {status_text}", status_text=status_text
                )

        logger.info("Waiting for device to process login...")
        await asyncio.sleep(self._login_settle_delay)

        logger.info(f"Device {info.remoteName} at {base_url}{path} woken")
        return WakeResult(
            success=True, remote_name=info.remoteName, device_id=info.deviceID, path=path
        )

    async def wake_by_discovered_name(self, name: str) -> WakeResult:
        """
        Resolve ``name`` through discovery and wake it.

        A fresh advertisement is preferred, since some receivers move to a new
        port every session. Receivers on a stable port never re-advertise, so
        the previously known record is used when none arrives in time.
        """
        if self._vault.get_usable() is None:
            raise NoCredential("No decrypted credentials. Capture a login first.")

        cached = self._registry.find(name)
        peer = await self._registry.refresh(name, timeout=self._refresh_timeout)
        if peer is None and cached is not None:
            logger.info(f"No fresh advertisement for {name!r}, using {cached.address}:{cached.port}")
            self._registry.update(cached)
            peer = cached
        if peer is None:
            raise UnreachableReceiver(f"Device {name!r} not found on the network")

        logger.info(f"Resolved {name!r} to {peer.address}:{peer.port}")
        return await self.wake_by_address(peer.address, peer.port, peer.handshake_path)
