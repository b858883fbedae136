"""
Unit tests for secp256k1 signature verification.
"""

import secrets

import pytest
from coincurve import PrivateKey

from lnurl_server.signatures import (
    is_supported_signature,
    load_public_key,
    normalize_signature,
    parse_der_lax,
    verify_lnurl_auth,
    verify_signature,
)


@pytest.fixture
def k1():
    return secrets.token_hex(32)


class TestVerifySignature:
    """DER and compact encodings over the raw k1 digest."""

    def test_der_signature_verifies(self, wallet, k1):
        assert verify_lnurl_auth(k1, wallet.sign_der(k1), wallet.pubkey) is True

    def test_compact_signature_verifies(self, wallet, k1):
        compact = wallet.sign_compact(k1)
        assert len(bytes.fromhex(compact)) == 64
        assert verify_lnurl_auth(k1, compact, wallet.pubkey) is True

    def test_der_and_compact_normalize_identically(self, wallet, k1):
        der = bytes.fromhex(wallet.sign_der(k1))
        compact = bytes.fromhex(wallet.sign_compact(k1))
        assert normalize_signature(der) == compact
        assert normalize_signature(compact) == compact

    def test_flipped_bit_in_der_fails(self, wallet, k1):
        der = bytearray(bytes.fromhex(wallet.sign_der(k1)))
        der[-1] ^= 0x01
        assert verify_signature(bytes.fromhex(k1), bytes(der), bytes.fromhex(wallet.pubkey)) is False

    def test_wrong_key_fails(self, wallet, k1):
        other = PrivateKey().public_key.format(compressed=True).hex()
        assert verify_lnurl_auth(k1, wallet.sign_der(k1), other) is False

    def test_wrong_message_fails(self, wallet, k1):
        other_k1 = secrets.token_hex(32)
        assert verify_lnurl_auth(other_k1, wallet.sign_der(k1), wallet.pubkey) is False

    def test_sha256_of_k1_is_not_what_is_signed(self, wallet, k1):
        # Wallets sign k1 itself; a signature over sha256(k1) must not pass
        sha_signed = wallet.private_key.sign(bytes.fromhex(k1)).hex()
        assert verify_lnurl_auth(k1, sha_signed, wallet.pubkey) is False

    def test_short_digest_rejected(self, wallet, k1):
        sig = bytes.fromhex(wallet.sign_der(k1))
        assert verify_signature(b"\x01" * 31, sig, bytes.fromhex(wallet.pubkey)) is False


class TestLaxDer:
    """Non-strict DER as produced by some wallets."""

    def test_lax_der_verifies(self, wallet, k1):
        lax = bytes.fromhex(wallet.sign_lax_der(k1))

        assert normalize_signature(lax) == bytes.fromhex(wallet.sign_compact(k1))
        assert verify_lnurl_auth(k1, lax.hex(), wallet.pubkey) is True

    def test_strict_der_parses_the_same(self, wallet, k1):
        der = bytes.fromhex(wallet.sign_der(k1))
        assert parse_der_lax(der) == bytes.fromhex(wallet.sign_compact(k1))

    def test_lax_der_for_other_message_fails(self, wallet, k1):
        assert verify_lnurl_auth(secrets.token_hex(32), wallet.sign_lax_der(k1), wallet.pubkey) is False

    def test_truncated_lax_der_rejected(self, wallet, k1):
        lax = bytes.fromhex(wallet.sign_lax_der(k1))
        assert parse_der_lax(lax[:20]) is None
        assert normalize_signature(lax[:20]) is None

    def test_oversized_scalar_rejected(self):
        r = b"\x01" + b"\x11" * 32
        s = b"\x22" * 32
        blob = b"\x30\x45\x02\x21" + r + b"\x02\x20" + s
        assert parse_der_lax(blob) is None


class TestMalformedInput:
    """Malformed input returns False rather than raising."""

    @pytest.mark.parametrize("sig_len", [0, 10, 63, 65, 80])
    def test_non_der_non_compact_lengths_rejected(self, sig_len):
        assert normalize_signature(b"\x00" * sig_len) is None
        assert is_supported_signature(b"\x00" * sig_len) is False

    def test_invalid_hex_returns_false(self, wallet, k1):
        assert verify_lnurl_auth(k1, "zz" * 70, wallet.pubkey) is False
        assert verify_lnurl_auth("not-hex", wallet.sign_der(k1), wallet.pubkey) is False

    def test_uncompressed_key_rejected(self, wallet):
        uncompressed = wallet.private_key.public_key.format(compressed=False)
        assert load_public_key(uncompressed) is None

    def test_point_not_on_curve_rejected(self):
        # secp256k1 has no point with x = 0
        assert load_public_key(bytes.fromhex("02" + "00" * 32)) is None

    def test_bad_prefix_rejected(self, wallet):
        key = bytearray(bytes.fromhex(wallet.pubkey))
        key[0] = 0x04
        assert load_public_key(bytes(key)) is None
