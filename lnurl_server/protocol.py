"""
Typed protocol requests and results.

Each inbound LNURL call is parsed into one request type, validating every
field up front; a failed parse raises ValidationError with all problems
joined into one reason. Engine operations return an ``Outcome``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from lnurl_server import utils
from lnurl_server.errors import ValidationError
from lnurl_server.signatures import is_supported_signature, load_public_key


@dataclass(frozen=True)
class Outcome:
    """Result of an engine operation: accepted with data, or rejected with a reason."""

    ok: bool
    reason: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, **data: Any) -> "Outcome":
        return cls(ok=True, data=data)

    @classmethod
    def rejected(cls, reason: str) -> "Outcome":
        return cls(ok=False, reason=reason)

    def to_lnurl(self) -> Dict[str, Any]:
        """LNURL wire form: ``{"status": "OK", ...}`` or ``{"status": "ERROR", "reason": ...}``."""
        if self.ok:
            return {"status": "OK", **self.data}
        return {"status": "ERROR", "reason": self.reason}


def _raise_if(errors: List[str]) -> None:
    if errors:
        raise ValidationError(", ".join(errors))


def _optional_int(params: Mapping[str, Any], name: str, errors: List[str]) -> Optional[int]:
    raw = params.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        errors.append(f"Invalid {name} parameter")
        return None


def _is_valid_linking_key(key: Any) -> bool:
    if not utils.validate_hex_format(key, 66):
        return False
    return load_public_key(bytes.fromhex(key)) is not None


@dataclass(frozen=True)
class AuthVerifyRequest:
    """LUD-04 wallet callback: ``k1``, ``sig``, ``key`` and optional ``action``."""

    k1: str
    sig: str
    key: str
    action: Optional[str] = None

    @classmethod
    def parse(cls, params: Mapping[str, Any]) -> "AuthVerifyRequest":
        k1, sig, key, action = params.get("k1"), params.get("sig"), params.get("key"), params.get("action")
        if not (k1 and sig and key):
            raise ValidationError("Missing required parameters: k1, sig, and key are required for LNURL-auth")

        errors = []
        if not utils.is_valid_k1(k1):
            errors.append("Invalid k1 parameter - must be 32-byte hex string")
        if not (utils.validate_hex_format(sig) and is_supported_signature(bytes.fromhex(sig))):
            errors.append("Invalid sig parameter - must be DER-hex-encoded ECDSA signature")
        if not _is_valid_linking_key(key):
            errors.append("Invalid key parameter - must be compressed 33-byte secp256k1 public key")
        if action and not utils.is_valid_action(action):
            errors.append(f"Invalid action parameter - must be one of: {', '.join(utils.AUTH_ACTIONS)}")
        _raise_if(errors)

        return cls(k1=k1.lower(), sig=sig.lower(), key=key.lower(), action=action or None)


@dataclass(frozen=True)
class PayConfigRequest:
    """Generator input for a pay link; unset fields fall back to configured defaults."""

    min_sendable: Optional[int] = None
    max_sendable: Optional[int] = None
    comment_allowed: Optional[int] = None

    @classmethod
    def parse(cls, params: Mapping[str, Any]) -> "PayConfigRequest":
        errors: List[str] = []
        min_sendable = _optional_int(params, "minSendable", errors)
        max_sendable = _optional_int(params, "maxSendable", errors)
        comment_allowed = _optional_int(params, "commentAllowed", errors)
        _raise_if(errors)
        return cls(min_sendable=min_sendable, max_sendable=max_sendable, comment_allowed=comment_allowed)


@dataclass(frozen=True)
class PayInvoiceRequest:
    """LUD-06 callback: amount in millisatoshis plus an optional LUD-12 comment."""

    payment_id: str
    amount_msat: int
    comment: Optional[str] = None

    @classmethod
    def parse(cls, payment_id: str, params: Mapping[str, Any]) -> "PayInvoiceRequest":
        errors: List[str] = []
        if not utils.is_valid_payment_id(payment_id):
            errors.append("Invalid payment id")
        amount = _optional_int(params, "amount", errors)
        if amount is None and "Invalid amount parameter" not in errors:
            errors.append("Missing amount parameter")
        elif amount is not None and amount <= 0:
            errors.append("Invalid amount parameter")
        _raise_if(errors)
        return cls(payment_id=payment_id, amount_msat=amount, comment=params.get("comment") or None)


@dataclass(frozen=True)
class WithdrawRedeemRequest:
    """LUD-03 callback: token ``k1`` and the wallet's invoice ``pr``."""

    k1: str
    pr: str

    @classmethod
    def parse(cls, params: Mapping[str, Any]) -> "WithdrawRedeemRequest":
        k1, pr = params.get("k1"), params.get("pr")
        errors = []
        if not utils.is_valid_k1(k1):
            errors.append("Invalid k1 parameter")
        if not utils.is_valid_payment_request(pr):
            errors.append("Invalid payment request")
        _raise_if(errors)
        return cls(k1=k1.lower(), pr=pr)


@dataclass(frozen=True)
class ChannelResolveRequest:
    """LUD-02 callback: open (``remoteid``, ``private``) or ``cancel=1``."""

    k1: str
    cancel: bool = False
    remote_id: Optional[str] = None
    private: bool = False

    @classmethod
    def parse(cls, params: Mapping[str, Any]) -> "ChannelResolveRequest":
        k1 = params.get("k1")
        cancel = utils.parse_bool_flag(params.get("cancel")) is True

        errors = []
        if not utils.is_valid_k1(k1):
            errors.append("Invalid k1 parameter")
        if cancel:
            _raise_if(errors)
            return cls(k1=k1.lower(), cancel=True)

        remote_id = params.get("remoteid")
        if not utils.is_valid_remote_id(remote_id):
            errors.append("Invalid remoteid parameter")
        private = params.get("private")
        private_flag = utils.parse_bool_flag(private) if private not in (None, "") else False
        if private_flag is None:
            errors.append("Invalid private parameter")
        _raise_if(errors)
        return cls(k1=k1.lower(), remote_id=remote_id.lower(), private=bool(private_flag))


@dataclass(frozen=True)
class ChannelCreateRequest:
    """Optional pre-binding of a channel request to a remote node."""

    remote_id: Optional[str] = None
    private: bool = False

    @classmethod
    def parse(cls, params: Mapping[str, Any]) -> "ChannelCreateRequest":
        errors = []
        remote_id = params.get("remoteid") or params.get("remoteId") or None
        if remote_id is not None and not utils.is_valid_remote_id(remote_id):
            errors.append("Invalid remoteid parameter")
        private = params.get("private")
        private_flag = utils.parse_bool_flag(private) if private not in (None, "") else False
        if private_flag is None:
            errors.append("Invalid private parameter")
        _raise_if(errors)
        return cls(remote_id=remote_id.lower() if remote_id else None, private=bool(private_flag))
