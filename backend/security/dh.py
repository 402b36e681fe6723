"""
Diffie-Hellman key agreement over the protocol's fixed 768-bit group.

Receivers validate public keys against this exact group, so the group is a
constant and never negotiated. Key pairs are ephemeral (per handshake
session) and never persisted.
"""

import base64
import binascii
import logging
from dataclasses import dataclass

from cryptography.hazmat.primitives.asymmetric import dh

from errors import KeyAgreementError

logger = logging.getLogger(__name__)

# RFC 2409 Oakley group 1
PRIME = int(
    "ffffffffffffffffc90fdaa22168c234c4c6628b80dc1cd1"
    "29024e088a67cc74020bbea63b139b22514a08798e3404dd"
    "ef9519b3cd3a431b302b0a6df25f14374fe1356d6d51c245"
    "e485b576625e7ec6f44c42e9a63a3620ffffffffffffffff",
    16,
)
GENERATOR = 2
KEY_SIZE = 96  # bytes

_PARAMETER_NUMBERS = dh.DHParameterNumbers(PRIME, GENERATOR)
_PARAMETERS = _PARAMETER_NUMBERS.parameters()


@dataclass(frozen=True)
class EphemeralKeyPair:
    """A DH key pair for one handshake session."""
    private_key: dh.DHPrivateKey
    public_bytes: bytes

    @property
    def public_key_b64(self) -> str:
        return base64.b64encode(self.public_bytes).decode("ascii")


def generate_keypair() -> EphemeralKeyPair:
    """Generate a fresh key pair over the fixed group."""
    private_key = _PARAMETERS.generate_private_key()
    y = private_key.public_key().public_numbers().y
    return EphemeralKeyPair(private_key=private_key, public_bytes=y.to_bytes(KEY_SIZE, "big"))


def decode_public_key(public_key_b64: str) -> bytes:
    """Decode a base64 public key as exchanged on the wire."""
    if not public_key_b64:
        raise KeyAgreementError("Peer public key is missing")
    try:
        return base64.b64decode(public_key_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyAgreementError(f"Peer public key is not valid base64: {e}") from e


def compute_shared_secret(private_key: dh.DHPrivateKey, peer_public_bytes: bytes) -> bytes:
    """
    Compute the raw shared secret with a peer's public key.

    Raises:
        KeyAgreementError: if the peer key is empty, oversized or outside
            the range (1, p - 1).
    """
    if not peer_public_bytes or len(peer_public_bytes) > KEY_SIZE:
        raise KeyAgreementError(
            f"Peer public key has invalid size: {len(peer_public_bytes)} bytes"
        )
    y = int.from_bytes(peer_public_bytes, "big")
    if not 1 < y < PRIME - 1:
        raise KeyAgreementError("Peer public key is outside the group")

    try:
        peer_key = dh.DHPublicNumbers(y, _PARAMETER_NUMBERS).public_key()
        shared = private_key.exchange(peer_key)
    except ValueError as e:
        raise KeyAgreementError(f"Key exchange failed: {e}") from e

    return shared.rjust(KEY_SIZE, b"\x00")
