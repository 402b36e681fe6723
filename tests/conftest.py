"""Pytest configuration and shared fixtures."""

import os
import tempfile
import time

import pytest
from hypothesis import settings

if "CONNECT_BOOTH_HOME" not in os.environ:
    os.environ["CONNECT_BOOTH_HOME"] = tempfile.mkdtemp(prefix="connect-booth-test-")

from discovery.identity import IdentityService  # noqa: E402
from handshake.models import CapturedCredential, DecodedAuth  # noqa: E402
from storage.credentials import CredentialVault  # noqa: E402
from storage.settings import SettingsStore  # noqa: E402

# Key derivation and DH make examples slow; disable the deadline.
settings.register_profile("no_deadline", deadline=None, max_examples=50)
settings.load_profile("no_deadline")


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeAdvertiser:
    """Records advertise/withdraw calls instead of touching mDNS."""

    def __init__(self) -> None:
        self.advertised: list[tuple[str, int, dict]] = []
        self.withdrawn = 0
        self.started = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def advertise(self, name: str, port: int, attributes: dict) -> None:
        self.advertised.append((name, port, attributes))

    async def withdraw(self) -> None:
        self.withdrawn += 1


@pytest.fixture
def store(tmp_path):
    return SettingsStore(tmp_path / "settings.json")


@pytest.fixture
def identity(store):
    return IdentityService(store)


@pytest.fixture
def vault(store, identity):
    return CredentialVault(store, identity)


@pytest.fixture
def advertiser():
    return FakeAdvertiser()


@pytest.fixture
def usable_credential(vault, identity):
    credential = CapturedCredential(
        user_name="alice",
        raw_blob="",
        raw_client_key="",
        decoded=DecodedAuth(auth_type=1, auth_data=b"deadbeef"),
        captured_at=time.time(),
        capturing_identity=identity.device_id,
    )
    vault.save(credential)
    return credential
