"""
Utility functions for the LNURL server

Random challenge generation, input format checks and LNURL bech32 coding.
"""

import re
import secrets
from typing import Any, Optional
from urllib.parse import urlparse

from bech32 import CHARSET, bech32_encode, bech32_verify_checksum, convertbits

K1_BYTES = 32
ID_BYTES = 16

AUTH_ACTIONS = ("register", "login", "link", "auth")

_PAYMENT_REQUEST_RE = re.compile(r"^ln(bc|tb|rt)[a-zA-Z0-9]+$")
_REMOTE_ID_RE = re.compile(r"^0[23][0-9a-fA-F]{64}$")


def secure_random_hex(nbytes: int = K1_BYTES) -> str:
    """
    Generate cryptographically secure random hex string.

    Args:
        nbytes: Number of random bytes

    Returns:
        Hex-encoded random string of ``2 * nbytes`` characters
    """
    return secrets.token_hex(nbytes)


def generate_k1() -> str:
    """Generate a 32-byte single-use challenge."""
    return secure_random_hex(K1_BYTES)


def generate_id() -> str:
    """Generate a 16-byte opaque identifier."""
    return secure_random_hex(ID_BYTES)


def validate_hex_format(value: Any, length: Optional[int] = None) -> bool:
    """
    Validate hexadecimal string format.

    Args:
        value: String to validate
        length: Expected hex string length, any even length if omitted

    Returns:
        True if valid hex string of specified length
    """
    if not value or not isinstance(value, str):
        return False
    if length is None:
        return len(value) % 2 == 0 and bool(re.fullmatch(r"[0-9a-fA-F]+", value))
    return bool(re.fullmatch(r"[0-9a-fA-F]{{{}}}".format(length), value))


def is_valid_k1(k1: Any) -> bool:
    """k1 is a 32-byte value in hex."""
    return validate_hex_format(k1, K1_BYTES * 2)


def is_valid_payment_id(payment_id: Any) -> bool:
    return validate_hex_format(payment_id, ID_BYTES * 2)


def is_valid_remote_id(remote_id: Any) -> bool:
    """Remote node ids are compressed public keys (02/03 prefix)."""
    if not remote_id or not isinstance(remote_id, str):
        return False
    return bool(_REMOTE_ID_RE.fullmatch(remote_id))


def is_valid_payment_request(pr: Any) -> bool:
    """
    Basic structural check of a bolt11 invoice.

    Only the network prefix (lnbc, lntb, lnbcrt) and the character set are
    checked here; the node decodes the invoice before it is paid.
    """
    if not pr or not isinstance(pr, str):
        return False
    return bool(_PAYMENT_REQUEST_RE.fullmatch(pr.lower()))


def is_valid_action(action: Any) -> bool:
    return action in AUTH_ACTIONS


def parse_bool_flag(value: Any) -> Optional[bool]:
    """
    Parse an LNURL boolean query flag.

    Returns:
        True/False for ``"1"``/``"0"`` (and real booleans), None otherwise
    """
    if isinstance(value, bool):
        return value
    if value == "1":
        return True
    if value == "0":
        return False
    return None


def encode_lnurl(url: str) -> str:
    """
    Encode a URL as a bech32 LNURL string (LUD-01).

    Args:
        url: Plain https/http URL

    Returns:
        Upper-case bech32 string with the ``lnurl`` human readable part
    """
    data = convertbits(url.encode("utf-8"), 8, 5)
    return bech32_encode("lnurl", data).upper()


def decode_lnurl(lnurl: str) -> str:
    """
    Decode a bech32 LNURL string back to its URL.

    LNURLs routinely exceed the 90 character cap that ``bech32_decode``
    enforces for addresses, so the string is split here and only the
    checksum and regrouping are delegated to the bech32 package. A
    ``lightning:`` scheme prefix is accepted.

    Raises:
        ValueError: If the string is not a valid LNURL
    """
    value = lnurl.strip()
    if value.lower().startswith("lightning:"):
        value = value[len("lightning:"):]
    if value != value.lower() and value != value.upper():
        raise ValueError("mixed-case bech32 string")
    value = value.lower()

    separator = value.rfind("1")
    if separator < 1 or separator + 7 > len(value):
        raise ValueError("missing bech32 separator or checksum")
    hrp = value[:separator]
    if hrp != "lnurl":
        raise ValueError(f"unexpected prefix {hrp!r}")
    if any(c not in CHARSET for c in value[separator + 1:]):
        raise ValueError("invalid bech32 character")

    data = [CHARSET.find(c) for c in value[separator + 1:]]
    if not bech32_verify_checksum(hrp, data):
        raise ValueError("invalid bech32 checksum")
    decoded = convertbits(data[:-6], 5, 8, False)
    if decoded is None:
        raise ValueError("invalid bech32 padding")
    try:
        return bytes(decoded).decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValueError("payload is not a UTF-8 URL") from e


def is_valid_url(url: Any) -> bool:
    """True for an absolute http(s) URL with a host."""
    if not url or not isinstance(url, str):
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def short(value: Optional[str], size: int = 16) -> str:
    """Truncate identifiers and keys for log lines."""
    if not value:
        return ""
    return value if len(value) <= size else f"{value[:size]}..."
