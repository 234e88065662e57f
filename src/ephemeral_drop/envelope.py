"""Client-side envelope codec: packs a (filename, content) pair and seals it.

Plaintext layout (big-endian)::

    [u16 filename length][u64 content length][filename][content][zero padding]

padded to a multiple of ``PADDING_BLOCK`` and sealed once with AES-256-GCM.
The server stores the resulting ``ciphertext || tag`` as an opaque blob.

The nonce is fixed at twelve zero bytes. That is only sound because every
upload generates a fresh key and seals exactly one plaintext with it: one
key, one seal, one object.
"""

from __future__ import annotations

import base64
import binascii
import struct

from Crypto.Cipher import AES
from Crypto.Random import get_random_bytes

from ephemeral_drop.errors import DecryptionError, EnvelopeError

KEY_SIZE = 32
NONCE = bytes(12)
TAG_SIZE = 16
PADDING_BLOCK = 4096
MAX_FILENAME_BYTES = 0xFFFF

_HEADER = struct.Struct(">HQ")
HEADER_SIZE = _HEADER.size  # 10


def generate_key() -> bytes:
    """Fresh random 256-bit key. Never reuse it for a second seal."""
    return get_random_bytes(KEY_SIZE)


def encode_key(key: bytes) -> str:
    """base64url without padding, as carried in the share-link fragment."""
    return base64.urlsafe_b64encode(key).rstrip(b"=").decode("ascii")


def decode_key(encoded: str) -> bytes:
    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        key = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError, ValueError) as e:
        raise EnvelopeError("Invalid key") from e
    if len(key) != KEY_SIZE:
        raise EnvelopeError("Invalid key")
    return key


def pack(filename: str, content: bytes) -> bytes:
    """Build the padded plaintext for ``filename`` and ``content``."""
    try:
        name_bytes = filename.encode("utf-8")
    except UnicodeEncodeError as e:
        raise EnvelopeError("Filename is not valid UTF-8") from e
    if len(name_bytes) > MAX_FILENAME_BYTES:
        raise EnvelopeError("Filename too long")

    payload_size = HEADER_SIZE + len(name_bytes) + len(content)
    padded_size = -(-payload_size // PADDING_BLOCK) * PADDING_BLOCK

    buf = bytearray(padded_size)
    _HEADER.pack_into(buf, 0, len(name_bytes), len(content))
    buf[HEADER_SIZE:HEADER_SIZE + len(name_bytes)] = name_bytes
    buf[HEADER_SIZE + len(name_bytes):payload_size] = content
    return bytes(buf)


def unpack(plaintext: bytes) -> tuple[str, bytes]:
    """Extract (filename, content) using the length fields; padding is ignored."""
    if len(plaintext) < HEADER_SIZE:
        raise EnvelopeError("Envelope too short")
    name_len, content_len = _HEADER.unpack_from(plaintext, 0)
    name_end = HEADER_SIZE + name_len
    content_end = name_end + content_len
    if content_end > len(plaintext):
        raise EnvelopeError("Envelope lengths exceed payload")
    try:
        filename = plaintext[HEADER_SIZE:name_end].decode("utf-8")
    except UnicodeDecodeError as e:
        raise EnvelopeError("Filename is not valid UTF-8") from e
    return filename, bytes(plaintext[name_end:content_end])


def seal(key: bytes, plaintext: bytes) -> bytes:
    """AES-256-GCM under the zero nonce. Returns ``ciphertext || tag``."""
    if len(key) != KEY_SIZE:
        raise EnvelopeError("Key must be 32 bytes")
    cipher = AES.new(key, AES.MODE_GCM, nonce=NONCE, mac_len=TAG_SIZE)
    ciphertext, tag = cipher.encrypt_and_digest(plaintext)
    return ciphertext + tag


def open_sealed(key: bytes, blob: bytes) -> bytes:
    """Verify and decrypt ``ciphertext || tag``. Raises DecryptionError on any mismatch."""
    if len(key) != KEY_SIZE or len(blob) < TAG_SIZE:
        raise DecryptionError()
    ciphertext, tag = blob[:-TAG_SIZE], blob[-TAG_SIZE:]
    cipher = AES.new(key, AES.MODE_GCM, nonce=NONCE, mac_len=TAG_SIZE)
    try:
        return cipher.decrypt_and_verify(ciphertext, tag)
    except ValueError as e:
        raise DecryptionError() from e


def encrypt(filename: str, content: bytes, key: bytes) -> bytes:
    return seal(key, pack(filename, content))


def decrypt(blob: bytes, key: bytes) -> tuple[str, bytes]:
    return unpack(open_sealed(key, blob))
