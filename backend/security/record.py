"""Binary credential record carried inside an encrypted blob."""

import logging

from pydantic import BaseModel

from security.varint import ByteReader, encode_bytes, encode_int

logger = logging.getLogger(__name__)

USER_NAME_MARKER = 0x49  # 'I'
AUTH_TYPE_MARKER = 0x50  # 'P'
AUTH_DATA_MARKER = 0x51  # 'Q'


class CredentialRecord(BaseModel):
    """Logical form of a credential record."""
    user_name: str
    auth_type: int
    auth_data: bytes


def encode_record(record: CredentialRecord) -> bytes:
    """Build the binary record: marker, field, marker, field, marker, field."""
    parts = [
        bytes([USER_NAME_MARKER]),
        encode_bytes(record.user_name.encode("utf-8")),
        bytes([AUTH_TYPE_MARKER]),
        encode_int(record.auth_type),
        bytes([AUTH_DATA_MARKER]),
        encode_bytes(record.auth_data),
    ]
    return b"".join(parts)


def decode_record(data: bytes) -> CredentialRecord:
    """
    Parse a decrypted buffer.

    Marker bytes are not checked; senders use different values. Trailing
    bytes (block padding) are ignored.

    Raises:
        MalformedRecord: if any field runs past the end of the buffer.
    """
    reader = ByteReader(data)
    reader.read_u8()
    user_name = reader.read_bytes()
    reader.read_u8()
    auth_type = reader.read_int()
    reader.read_u8()
    auth_data = reader.read_bytes()

    logger.debug(
        f"Parsed credential record: auth_type={auth_type}, "
        f"auth_data={len(auth_data)} bytes, trailing={reader.remaining} bytes"
    )
    return CredentialRecord(
        user_name=user_name.decode("utf-8", errors="replace"),
        auth_type=auth_type,
        auth_data=auth_data,
    )
