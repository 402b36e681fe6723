"""
Security module: two-layer credential blob encryption.

Layer A (session layer) is keyed from a DH shared secret:
    IV (16 bytes) || AES-128-CTR ciphertext || HMAC-SHA1 (20 bytes)

Layer B (identity layer) is keyed from the receiver's identity string and the
user name: AES-192-ECB followed by a byte-feedback transform. It carries no
MAC; its integrity rides on layer A.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import os
import re
import struct

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from errors import IntegrityError, MalformedRecord
from security.dh import EphemeralKeyPair, compute_shared_secret, decode_public_key
from security.record import CredentialRecord, decode_record, encode_record

logger = logging.getLogger(__name__)

IV_SIZE = 16
MAC_SIZE = 20
BLOCK_SIZE = 16
SESSION_KEY_SIZE = 16

PBKDF2_ITERATIONS = 256
PBKDF2_LENGTH = 20

_BASE64_TEXT = re.compile(rb"^[A-Za-z0-9+/=]+$")


# --- Layer A ---

def derive_session_keys(shared_secret: bytes) -> tuple[bytes, bytes]:
    """Return (checksum_key, encryption_key) for a DH shared secret."""
    base_key = hashlib.sha1(shared_secret).digest()[:SESSION_KEY_SIZE]
    checksum_key = hmac.new(base_key, b"checksum", hashlib.sha1).digest()
    encryption_key = hmac.new(base_key, b"encryption", hashlib.sha1).digest()[:SESSION_KEY_SIZE]
    return checksum_key, encryption_key


def _aes_ctr(key: bytes, iv: bytes, data: bytes) -> bytes:
    cipher = Cipher(algorithms.AES(key), modes.CTR(iv)).encryptor()
    return cipher.update(data) + cipher.finalize()


def encrypt_session_layer(shared_secret: bytes, plaintext: bytes) -> bytes:
    """
    Encrypt with a fresh random IV, then MAC the ciphertext.

    Returns: IV (16 bytes) || ciphertext || MAC (20 bytes)
    """
    checksum_key, encryption_key = derive_session_keys(shared_secret)
    iv = os.urandom(IV_SIZE)
    ciphertext = _aes_ctr(encryption_key, iv, plaintext)
    mac = hmac.new(checksum_key, ciphertext, hashlib.sha1).digest()
    return iv + ciphertext + mac


def decrypt_session_layer(shared_secret: bytes, blob: bytes) -> bytes:
    """
    Verify the trailing MAC, then decrypt.

    Raises:
        IntegrityError: if the blob is too short or the MAC does not match.
    """
    if len(blob) < IV_SIZE + MAC_SIZE:
        raise IntegrityError(f"Blob too short to carry IV and MAC: {len(blob)} bytes")

    checksum_key, encryption_key = derive_session_keys(shared_secret)
    iv = blob[:IV_SIZE]
    ciphertext = blob[IV_SIZE:-MAC_SIZE]
    mac = blob[-MAC_SIZE:]

    expected = hmac.new(checksum_key, ciphertext, hashlib.sha1).digest()
    if not hmac.compare_digest(expected, mac):
        raise IntegrityError("MAC verification failed")

    return _aes_ctr(encryption_key, iv, ciphertext)


# --- Layer B ---

def derive_identity_key(device_id: str, user_name: str) -> bytes:
    """24-byte AES-192 key: SHA1(PBKDF2(SHA1(device_id), user_name)) || uint32be(20)."""
    secret = hashlib.sha1(device_id.encode("utf-8")).digest()
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA1(),
        length=PBKDF2_LENGTH,
        salt=user_name.encode("utf-8"),
        iterations=PBKDF2_ITERATIONS,
    )
    hashed_key = hashlib.sha1(kdf.derive(secret)).digest()
    return hashed_key + struct.pack(">I", len(hashed_key))


def encrypt_identity_layer(plaintext: bytes, device_id: str, user_name: str) -> bytes:
    """Zero-pad to the block size, apply the forward feedback pass, encrypt."""
    pad = (BLOCK_SIZE - len(plaintext) % BLOCK_SIZE) % BLOCK_SIZE
    buffer = bytearray(plaintext) + bytes(pad)

    for j in range(BLOCK_SIZE, len(buffer)):
        buffer[j] ^= buffer[j - BLOCK_SIZE]

    key = derive_identity_key(device_id, user_name)
    cipher = Cipher(algorithms.AES(key), modes.ECB()).encryptor()
    return cipher.update(bytes(buffer)) + cipher.finalize()


def decrypt_identity_layer(data: bytes, device_id: str, user_name: str) -> bytes:
    """
    Decrypt, then undo the feedback pass from the end toward the start.

    Raises:
        MalformedRecord: if the input is not a whole number of blocks.
    """
    if len(data) % BLOCK_SIZE:
        raise MalformedRecord(f"Identity layer is not block aligned: {len(data)} bytes")

    key = derive_identity_key(device_id, user_name)
    cipher = Cipher(algorithms.AES(key), modes.ECB()).decryptor()
    buffer = bytearray(cipher.update(data) + cipher.finalize())

    length = len(buffer)
    for i in range(length - BLOCK_SIZE):
        buffer[length - i - 1] ^= buffer[length - i - 1 - BLOCK_SIZE]

    return bytes(buffer)


# --- Full pipeline ---

def _looks_like_base64(data: bytes) -> bool:
    return bool(_BASE64_TEXT.match(data.strip()))


def decrypt_credential(
    private_key,
    blob_b64: str,
    client_key_b64: str,
    user_name: str,
    device_id: str,
) -> CredentialRecord:
    """
    Decrypt a submitted blob with our private key and the client's public key.

    Layer A always applies. If its plaintext is base64 text, layer B is keyed
    with our identity and applied to the decoded bytes.
    """
    try:
        blob = base64.b64decode(blob_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedRecord(f"Blob is not valid base64: {e}") from e

    shared_secret = compute_shared_secret(private_key, decode_public_key(client_key_b64))
    plaintext = decrypt_session_layer(shared_secret, blob)
    logger.debug(f"Session layer decrypted {len(plaintext)} bytes")

    if _looks_like_base64(plaintext):
        try:
            inner = base64.b64decode(plaintext.strip())
        except (binascii.Error, ValueError) as e:
            raise MalformedRecord(f"Inner blob is not valid base64: {e}") from e
        plaintext = decrypt_identity_layer(inner, device_id, user_name)
        logger.debug(f"Identity layer decrypted {len(plaintext)} bytes")

    return decode_record(plaintext)


def encrypt_credential(
    record: CredentialRecord,
    target_device_id: str,
    target_public_key_b64: str,
    keypair: EphemeralKeyPair,
) -> str:
    """Encrypt a record for a target receiver. Returns the base64 blob."""
    inner = encrypt_identity_layer(encode_record(record), target_device_id, record.user_name)
    shared_secret = compute_shared_secret(
        keypair.private_key, decode_public_key(target_public_key_b64)
    )
    blob = encrypt_session_layer(shared_secret, base64.b64encode(inner))
    return base64.b64encode(blob).decode("ascii")
