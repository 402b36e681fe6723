"""Pydantic models for the handshake protocol."""

import base64
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator


class ProtocolStatus:
    OK = 101
    UNKNOWN = 0


STATUS_OK_STRING = "OK"


class EmulatorState(str, Enum):
    IDLE = "idle"
    PUBLISHING = "publishing"


class StatusResponse(BaseModel):
    """Minimal reply to every handshake action."""
    model_config = ConfigDict(extra="allow")

    status: int = ProtocolStatus.UNKNOWN
    statusString: str = ""
    spotifyError: int = 0

    @property
    def ok(self) -> bool:
        return self.status == ProtocolStatus.OK


class DeviceInfo(StatusResponse):
    """The getInfo descriptor served by a receiver."""
    version: str = ""
    deviceID: str = ""
    remoteName: str = ""
    activeUser: str = ""
    publicKey: str = ""
    deviceType: str = ""
    libraryVersion: str = ""
    accountReq: str = ""
    brandDisplayName: str = ""
    modelDisplayName: str = ""
    resolverVersion: str = ""
    groupStatus: str = ""
    tokenType: str = ""
    clientID: str = ""
    productID: int = 0
    scope: str = ""
    availability: str = ""
    supported_drm_media_formats: list[Any] = []
    supported_capabilities: int = 0
    aliases: list[Any] = []


class DecodedAuth(BaseModel):
    """Auth material recovered from a blob. Stored as base64 text."""
    auth_type: int
    auth_data: bytes

    @field_validator("auth_data", mode="before")
    @classmethod
    def _decode_auth_data(cls, value):
        if isinstance(value, str):
            return base64.b64decode(value)
        return value

    @field_serializer("auth_data")
    def _encode_auth_data(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")


class CapturedCredential(BaseModel):
    """A credential submission received by the emulator."""
    user_name: str
    raw_blob: str
    raw_client_key: str
    decoded: Optional[DecodedAuth] = None
    captured_at: float
    capturing_identity: str

    @property
    def usable(self) -> bool:
        return self.decoded is not None


class CaptureSession(BaseModel):
    port: int
    identity: str


class WakeResult(BaseModel):
    success: bool
    remote_name: str
    device_id: str
    path: str = ""
