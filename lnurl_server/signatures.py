"""
secp256k1 signature verification for LNURL-auth (LUD-04).

Wallets sign the raw 32-byte ``k1`` with their linking key. Most send the
signature DER-encoded as LUD-04 requires (not always strictly), some
send the 64-byte compact ``r || s`` form instead. All are accepted and
normalised to compact before verification.
"""

import logging
from typing import Optional, Tuple

from coincurve import PublicKey
from coincurve.ecdsa import cdata_to_der, der_to_cdata, deserialize_compact, serialize_compact

logger = logging.getLogger(__name__)

COMPACT_SIGNATURE_LENGTH = 64
COMPRESSED_KEY_LENGTH = 33
SCALAR_LENGTH = 32


def load_public_key(public_key: bytes) -> Optional[PublicKey]:
    """Return the curve point for a compressed key, or None if it is not one."""
    if len(public_key) != COMPRESSED_KEY_LENGTH or public_key[0] not in (2, 3):
        return None
    try:
        return PublicKey(public_key)
    except ValueError:
        return None


def normalize_signature(signature: bytes) -> Optional[bytes]:
    """
    Convert a DER or compact signature to the compact 64-byte form.

    Strict DER is attempted first, then lax DER; a blob that parses as
    neither is only taken as compact when it is exactly 64 bytes long.

    Returns:
        The compact signature, or None when neither encoding applies
    """
    try:
        return serialize_compact(der_to_cdata(signature))
    except ValueError:
        pass

    candidate = parse_der_lax(signature)
    if candidate is None:
        if len(signature) != COMPACT_SIGNATURE_LENGTH:
            return None
        candidate = signature

    try:
        return serialize_compact(deserialize_compact(candidate))
    except Exception:  # coincurve raises a bare Exception on overflowing r/s
        return None


def _read_length(signature: bytes, pos: int) -> Optional[Tuple[int, int]]:
    if pos >= len(signature):
        return None
    lenbyte = signature[pos]
    pos += 1
    if not lenbyte & 0x80:
        return lenbyte, pos

    lenbyte -= 0x80
    if lenbyte > len(signature) - pos:
        return None
    while lenbyte > 0 and signature[pos] == 0:
        pos += 1
        lenbyte -= 1
    if lenbyte >= 8:
        return None
    length = int.from_bytes(signature[pos:pos + lenbyte], "big")
    return length, pos + lenbyte


def _read_integer(signature: bytes, pos: int) -> Optional[Tuple[bytes, int]]:
    if pos >= len(signature) or signature[pos] != 0x02:
        return None
    header = _read_length(signature, pos + 1)
    if header is None:
        return None
    length, pos = header
    if length > len(signature) - pos:
        return None
    value = signature[pos:pos + length].lstrip(b"\x00")
    if len(value) > SCALAR_LENGTH:
        return None
    return value.rjust(SCALAR_LENGTH, b"\x00"), pos + length


def parse_der_lax(signature: bytes) -> Optional[bytes]:
    """
    Parse a loosely encoded DER signature into compact ``r || s``.

    Mirrors libsecp256k1's ``ecdsa_signature_parse_der_lax``: long-form
    and oversized lengths, superfluous zero padding and trailing bytes are
    tolerated, as some wallets produce them. The sequence length itself
    is skipped, not checked.

    Returns:
        64 bytes, or None if no ``SEQUENCE { INTEGER r, INTEGER s }`` can be read
    """
    if len(signature) < 2 or signature[0] != 0x30:
        return None
    pos = 2
    if signature[1] & 0x80:
        skip = signature[1] - 0x80
        if skip > len(signature) - pos:
            return None
        pos += skip

    r = _read_integer(signature, pos)
    if r is None:
        return None
    s = _read_integer(signature, r[1])
    if s is None:
        return None
    return r[0] + s[0]


def is_supported_signature(signature: bytes) -> bool:
    return normalize_signature(signature) is not None


def verify_signature(message_digest: bytes, signature: bytes, public_key: bytes) -> bool:
    """
    Verify an ECDSA signature over a 32-byte digest.

    Never raises for malformed input.

    Args:
        message_digest: The 32 bytes that were signed (the ``k1`` itself)
        signature: DER or compact signature
        public_key: 33-byte compressed public key

    Returns:
        True only if the signature is valid for this key and digest
    """
    try:
        if len(message_digest) != 32:
            return False

        key = load_public_key(public_key)
        if key is None:
            return False

        compact = normalize_signature(signature)
        if compact is None:
            return False

        der = cdata_to_der(deserialize_compact(compact))
        return key.verify(der, message_digest, hasher=None)
    except Exception as e:
        logger.error("Signature verification error: %s", e)
        return False


def verify_lnurl_auth(k1_hex: str, sig_hex: str, key_hex: str) -> bool:
    """Verify LUD-04 ``sig`` over ``k1`` for the linking ``key`` (all hex)."""
    try:
        k1 = bytes.fromhex(k1_hex)
        sig = bytes.fromhex(sig_hex)
        key = bytes.fromhex(key_hex)
    except (TypeError, ValueError):
        return False
    return verify_signature(k1, sig, key)
