"""
Variable-length integers and length-prefixed byte fields.

Values 0-127 take one byte with the high bit clear. Larger values take two
bytes: the low 7 bits with the high bit set, then the next 7 bits. Both
directions reject anything above MAX_VALUE.
"""

from errors import MalformedRecord

SINGLE_BYTE_MAX = 0x7F
CONTINUATION_BIT = 0x80
MAX_VALUE = 0x3FFF


def encode_int(value: int) -> bytes:
    """Encode a non-negative integer in one or two bytes."""
    if value < 0 or value > MAX_VALUE:
        raise MalformedRecord(f"Varint out of range: {value}")
    if value <= SINGLE_BYTE_MAX:
        return bytes([value])
    return bytes([(value & SINGLE_BYTE_MAX) | CONTINUATION_BIT, value >> 7])


def encode_bytes(data: bytes) -> bytes:
    """Encode a length-prefixed byte field."""
    return encode_int(len(data)) + data


class ByteReader:
    """Sequential reader over a decrypted buffer."""

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self.offset

    def _take(self, count: int) -> bytes:
        if count > self.remaining:
            raise MalformedRecord(
                f"Read of {count} bytes at offset {self.offset} runs past "
                f"end of {len(self._data)}-byte buffer"
            )
        chunk = self._data[self.offset:self.offset + count]
        self.offset += count
        return chunk

    def read_u8(self) -> int:
        return self._take(1)[0]

    def read_int(self) -> int:
        first = self.read_u8()
        if not first & CONTINUATION_BIT:
            return first
        second = self.read_u8()
        if second & CONTINUATION_BIT:
            raise MalformedRecord(
                f"Varint at offset {self.offset - 2} exceeds {MAX_VALUE:#x}"
            )
        return (first & SINGLE_BYTE_MAX) | (second << 7)

    def read_bytes(self) -> bytes:
        return self._take(self.read_int())


def decode_int(data: bytes) -> int:
    """Decode a single varint from the start of ``data``."""
    return ByteReader(data).read_int()
