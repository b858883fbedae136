"""Exception taxonomy shared by the protocol engines and their callers."""

from typing import Optional


class LnurlError(Exception):
    """Base exception for the LNURL server."""

    pass


class RejectionError(LnurlError):
    """A protocol-level refusal that is returned to the wallet as data.

    The ``reason`` is the human-readable text placed in the LNURL
    ``{"status": "ERROR", "reason": ...}`` response.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(RejectionError):
    """Malformed or out-of-range input."""

    pass


class StateConflictError(RejectionError):
    """The target entity is in a state that forbids the operation."""

    pass


class SignatureError(RejectionError):
    """Cryptographic verification failed."""

    def __init__(self, reason: str = "Invalid signature"):
        super().__init__(reason)


class OracleError(LnurlError):
    """The Lightning node or chain backend answered with a definitive failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OracleTransientError(OracleError):
    """The external call failed or timed out; the outcome is unknown."""

    pass


class StoreError(LnurlError):
    """The persistence layer failed."""

    pass
