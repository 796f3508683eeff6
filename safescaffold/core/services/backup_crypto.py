"""
Backup encryption — in-memory AES-GCM envelope for backup payloads.

Envelope layout (.enc backups):

    SSBAK_v1 | iterations(4) | sha256(32) | salt(16) | iv(12) | tag(16) | ciphertext

Key derivation: PBKDF2-SHA256, iteration count stored in the envelope.
Encryption: AES-256-GCM. ``sha256`` is the digest of the plaintext and
is checked after decryption.

Integers are little-endian unsigned.
"""

from __future__ import annotations

import hashlib
import logging
import os
import struct

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from safescaffold.core.models.options import MIN_PASSPHRASE_LEN

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────

MAGIC = b"SSBAK_v1"
MAGIC_LEN = len(MAGIC)

KDF_ITERATIONS = 480_000

ITER_LEN = 4  # uint32 little-endian
SHA256_LEN = 32
SALT_LEN = 16
IV_LEN = 12
TAG_LEN = 16
HEADER_LEN = MAGIC_LEN + ITER_LEN + SHA256_LEN + SALT_LEN + IV_LEN + TAG_LEN


# ── Key derivation ───────────────────────────────────────────────────

def _derive_key(passphrase: str, salt: bytes, iterations: int = KDF_ITERATIONS) -> bytes:
    """Derive a 256-bit key from passphrase using PBKDF2-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))


# ── Encrypt ──────────────────────────────────────────────────────────

def encrypt_bytes(plaintext: bytes, passphrase: str, iterations: int = KDF_ITERATIONS) -> bytes:
    """Wrap ``plaintext`` in an encrypted envelope.

    Raises:
        ValueError: Passphrase too short.
    """
    if not passphrase or len(passphrase) < MIN_PASSPHRASE_LEN:
        raise ValueError(f"Passphrase must be at least {MIN_PASSPHRASE_LEN} characters")

    sha256 = hashlib.sha256(plaintext).digest()
    salt = os.urandom(SALT_LEN)
    iv = os.urandom(IV_LEN)
    key = _derive_key(passphrase, salt, iterations)

    # AES-GCM returns ciphertext + tag appended
    ct_with_tag = AESGCM(key).encrypt(iv, plaintext, None)
    ciphertext = ct_with_tag[:-TAG_LEN]
    tag = ct_with_tag[-TAG_LEN:]

    envelope = bytearray()
    envelope.extend(MAGIC)
    envelope.extend(struct.pack("<I", iterations))
    envelope.extend(sha256)
    envelope.extend(salt)
    envelope.extend(iv)
    envelope.extend(tag)
    envelope.extend(ciphertext)

    logger.debug("Encrypted %d bytes → %d byte envelope", len(plaintext), len(envelope))
    return bytes(envelope)


# ── Decrypt ──────────────────────────────────────────────────────────

def decrypt_bytes(data: bytes, passphrase: str) -> bytes:
    """Open an envelope produced by ``encrypt_bytes``.

    Raises:
        ValueError: Invalid format, wrong passphrase, or integrity failure.
    """
    meta = parse_envelope(data)
    key = _derive_key(passphrase, meta["salt"], meta["iterations"])

    try:
        plaintext = AESGCM(key).decrypt(meta["iv"], meta["ciphertext"] + meta["tag"], None)
    except InvalidTag:
        raise ValueError("Wrong passphrase or tampered data — decryption failed") from None

    if hashlib.sha256(plaintext).digest() != meta["sha256"]:
        raise ValueError("Integrity check failed — backup may be corrupted")

    return plaintext


# ── Envelope parsing ────────────────────────────────────────────────

def is_encrypted(data: bytes) -> bool:
    return data[:MAGIC_LEN] == MAGIC


def parse_envelope(data: bytes) -> dict:
    """Split an envelope into its components (no decryption)."""
    if len(data) < HEADER_LEN:
        raise ValueError("Data too small to be a backup envelope")
    if not is_encrypted(data):
        raise ValueError("Not an encrypted backup — magic bytes mismatch")

    pos = MAGIC_LEN
    iterations = struct.unpack("<I", data[pos:pos + ITER_LEN])[0]
    pos += ITER_LEN
    sha256 = data[pos:pos + SHA256_LEN]
    pos += SHA256_LEN
    salt = data[pos:pos + SALT_LEN]
    pos += SALT_LEN
    iv = data[pos:pos + IV_LEN]
    pos += IV_LEN
    tag = data[pos:pos + TAG_LEN]
    pos += TAG_LEN

    if iterations < 1:
        raise ValueError("Corrupt envelope: invalid iteration count")

    return {
        "iterations": iterations,
        "sha256": sha256,
        "salt": salt,
        "iv": iv,
        "tag": tag,
        "ciphertext": data[pos:],
    }
