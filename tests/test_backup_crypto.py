"""
Tests for the backup encryption envelope.
"""

import struct

import pytest

from safescaffold.core.services.backup_crypto import (
    HEADER_LEN,
    MAGIC,
    MAGIC_LEN,
    decrypt_bytes,
    encrypt_bytes,
    is_encrypted,
    parse_envelope,
)

ITERATIONS = 1_000


class TestEnvelope:
    """Tests for encrypt_bytes / decrypt_bytes."""

    def test_round_trip(self):
        envelope = encrypt_bytes(b"secret payload", "passphrase", ITERATIONS)
        assert envelope.startswith(MAGIC)
        assert decrypt_bytes(envelope, "passphrase") == b"secret payload"

    def test_iterations_stored(self):
        envelope = encrypt_bytes(b"x", "passphrase", ITERATIONS)
        assert struct.unpack("<I", envelope[MAGIC_LEN:MAGIC_LEN + 4])[0] == ITERATIONS
        assert parse_envelope(envelope)["iterations"] == ITERATIONS

    def test_fresh_salt_and_iv(self):
        a = encrypt_bytes(b"same", "passphrase", ITERATIONS)
        b = encrypt_bytes(b"same", "passphrase", ITERATIONS)
        assert a != b

    def test_empty_plaintext(self):
        envelope = encrypt_bytes(b"", "passphrase", ITERATIONS)
        assert len(envelope) == HEADER_LEN
        assert decrypt_bytes(envelope, "passphrase") == b""

    def test_wrong_passphrase(self):
        envelope = encrypt_bytes(b"data", "passphrase", ITERATIONS)
        with pytest.raises(ValueError, match="Wrong passphrase"):
            decrypt_bytes(envelope, "not it")

    def test_tampered_ciphertext(self):
        envelope = bytearray(encrypt_bytes(b"data data data", "passphrase", ITERATIONS))
        envelope[-1] ^= 0x01
        with pytest.raises(ValueError):
            decrypt_bytes(bytes(envelope), "passphrase")

    def test_short_passphrase_rejected(self):
        with pytest.raises(ValueError, match="at least"):
            encrypt_bytes(b"x", "abc", ITERATIONS)


class TestParsing:
    """Tests for envelope inspection."""

    def test_is_encrypted(self):
        assert is_encrypted(encrypt_bytes(b"x", "passphrase", ITERATIONS))
        assert not is_encrypted(b"plain text")

    def test_too_small(self):
        with pytest.raises(ValueError, match="too small"):
            parse_envelope(MAGIC)

    def test_bad_magic(self):
        with pytest.raises(ValueError, match="magic"):
            parse_envelope(b"X" * HEADER_LEN)
