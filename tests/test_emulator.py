"""Tests for the receiver emulator."""

import base64
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from config import ADVERTISED_PATH
from errors import AlreadyPublishing
from handshake.emulator import ReceiverEmulator
from handshake.models import EmulatorState, ProtocolStatus
from security.crypto import encrypt_credential, encrypt_session_layer
from security.dh import compute_shared_secret, generate_keypair
from security.record import CredentialRecord


@pytest.fixture
def emulator(identity, vault, advertiser):
    return ReceiverEmulator(identity, vault, advertiser)


@pytest.fixture
async def publishing(emulator, anyio_backend):
    with patch.object(emulator, "_start_responder", new=AsyncMock(return_value=5555)):
        await emulator.start("Living Room")
    yield emulator
    with patch.object(emulator, "_stop_responder", new=AsyncMock()):
        await emulator.stop()


def client_for(emulator: ReceiverEmulator) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=emulator.app), base_url="http://receiver"
    )


async def get_info(emulator: ReceiverEmulator) -> dict:
    async with client_for(emulator) as client:
        response = await client.get(ADVERTISED_PATH, params={"action": "getInfo"})
    assert response.status_code == 200
    return response.json()


class TestLifecycle:
    """Tests for Idle -> Publishing -> Idle."""

    @pytest.mark.anyio
    async def test_start_advertises_port_and_path(self, emulator, advertiser, identity):
        with patch.object(emulator, "_start_responder", new=AsyncMock(return_value=5555)):
            session = await emulator.start("Living Room")

        assert emulator.state is EmulatorState.PUBLISHING
        assert session.port == 5555
        assert session.identity == identity.device_id
        assert advertiser.advertised == [
            ("Living Room", 5555, {"CPath": "/", "VERSION": "1.0"})
        ]

    @pytest.mark.anyio
    async def test_start_while_publishing_is_rejected(self, publishing):
        public_key = publishing.public_key

        with pytest.raises(AlreadyPublishing):
            await publishing.start("Other")

        assert publishing.public_key == public_key

    @pytest.mark.anyio
    async def test_stop_is_idempotent(self, emulator, advertiser):
        with patch.object(emulator, "_start_responder", new=AsyncMock(return_value=5555)):
            await emulator.start("Living Room")

        with patch.object(emulator, "_stop_responder", new=AsyncMock()) as stop_responder:
            await emulator.stop()
            await emulator.stop()

        assert emulator.state is EmulatorState.IDLE
        assert emulator.public_key == ""
        assert advertiser.withdrawn == 1
        stop_responder.assert_awaited_once()

    @pytest.mark.anyio
    async def test_failed_advertisement_returns_to_idle(self, emulator, advertiser):
        advertiser.advertise = AsyncMock(side_effect=OSError("multicast unavailable"))

        with patch.object(emulator, "_start_responder", new=AsyncMock(return_value=5555)), \
                patch.object(emulator, "_stop_responder", new=AsyncMock()):
            with pytest.raises(OSError):
                await emulator.start("Living Room")

        assert emulator.state is EmulatorState.IDLE

    @pytest.mark.anyio
    async def test_each_session_gets_a_fresh_key_pair(self, emulator):
        keys = []
        for _ in range(2):
            with patch.object(emulator, "_start_responder", new=AsyncMock(return_value=5555)):
                await emulator.start("Living Room")
            keys.append(emulator.public_key)
            with patch.object(emulator, "_stop_responder", new=AsyncMock()):
                await emulator.stop()

        assert keys[0] != keys[1]


class TestHandshakeEndpoints:
    """Tests for getInfo / addUser over the responder app."""

    @pytest.mark.anyio
    async def test_get_info_describes_the_receiver(self, publishing, identity):
        info = await get_info(publishing)

        assert info["status"] == ProtocolStatus.OK
        assert info["statusString"] == "OK"
        assert info["deviceID"] == identity.device_id
        assert info["remoteName"] == "Living Room"
        assert info["publicKey"] == publishing.public_key
        assert info["deviceType"] == "SPEAKER"
        assert info["version"] == "2.9.0"
        assert info["activeUser"] == ""
        assert "supported_capabilities" in info

    @pytest.mark.anyio
    async def test_add_user_captures_decodable_credential(self, publishing, vault):
        info = await get_info(publishing)
        client_pair = generate_keypair()
        record = CredentialRecord(user_name="alice", auth_type=1, auth_data=b"deadbeef")
        blob = encrypt_credential(record, info["deviceID"], info["publicKey"], client_pair)

        async with client_for(publishing) as client:
            response = await client.post(ADVERTISED_PATH, data={
                "action": "addUser",
                "userName": "alice",
                "blob": blob,
                "clientKey": client_pair.public_key_b64,
            })

        assert response.json()["status"] == ProtocolStatus.OK
        credential = vault.get()
        assert credential.user_name == "alice"
        assert credential.decoded.auth_type == 1
        assert credential.decoded.auth_data == b"deadbeef"
        assert credential.raw_blob == blob
        assert vault.has_usable_credential()

    @pytest.mark.anyio
    async def test_action_in_query_string_is_accepted(self, publishing, vault):
        async with client_for(publishing) as client:
            response = await client.post(
                ADVERTISED_PATH,
                params={"action": "addUser"},
                data={"userName": "alice", "blob": "", "clientKey": ""},
            )

        assert response.json()["status"] == ProtocolStatus.OK
        assert vault.get().user_name == "alice"

    @pytest.mark.anyio
    async def test_undecryptable_credential_is_stored_and_acknowledged(self, publishing, vault):
        garbage = base64.b64encode(b"\x00" * 64).decode()

        async with client_for(publishing) as client:
            response = await client.post(ADVERTISED_PATH, data={
                "action": "addUser",
                "userName": "alice",
                "blob": garbage,
                "clientKey": generate_keypair().public_key_b64,
            })

        assert response.status_code == 200
        assert response.json()["status"] == ProtocolStatus.OK
        credential = vault.get()
        assert credential.raw_blob == garbage
        assert credential.decoded is None
        assert not vault.has_usable_credential()

    @pytest.mark.anyio
    async def test_record_with_out_of_range_varint_is_not_usable(self, publishing, vault):
        client_pair = generate_keypair()
        secret = compute_shared_secret(
            client_pair.private_key, base64.b64decode(publishing.public_key)
        )
        blob = encrypt_session_layer(secret, b"I\x05aliceP\xff\xffQ\x03tok")

        async with client_for(publishing) as client:
            response = await client.post(ADVERTISED_PATH, data={
                "action": "addUser",
                "userName": "alice",
                "blob": base64.b64encode(blob).decode(),
                "clientKey": client_pair.public_key_b64,
            })

        assert response.json()["status"] == ProtocolStatus.OK
        assert vault.get().decoded is None
        assert not vault.has_usable_credential()

    @pytest.mark.anyio
    async def test_capture_notifies_observers(self, publishing):
        captured = []

        async def on_capture(credential):
            captured.append(credential.user_name)

        async def broken(credential):
            raise RuntimeError("observer failure")

        publishing.on_capture(broken)
        publishing.on_capture(on_capture)

        async with client_for(publishing) as client:
            response = await client.post(ADVERTISED_PATH, data={
                "action": "addUser", "userName": "bob", "blob": "", "clientKey": "",
            })

        assert response.json()["status"] == ProtocolStatus.OK
        assert captured == ["bob"]

    @pytest.mark.anyio
    @pytest.mark.parametrize("method, action", [("GET", "addUser"), ("POST", "resetUsers"), ("GET", None)])
    async def test_other_actions_are_protocol_errors(self, publishing, method, action):
        params = {"action": action} if action else {}

        async with client_for(publishing) as client:
            response = await client.request(method, ADVERTISED_PATH, params=params)

        assert response.status_code == 404
        assert response.json()["status"] == ProtocolStatus.UNKNOWN
