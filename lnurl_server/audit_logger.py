"""
Audit logging for the LNURL server.

Security-relevant protocol events (challenges, signature checks, redemptions,
channel decisions, settlements) go to the ``audit`` logger as one line each.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_logger = logging.getLogger("audit")
_audit_logger = None  # Will be initialized by init_audit_logger


def init_audit_logger():
    """Initialize the audit logger."""
    global _audit_logger

    _logger.setLevel(logging.INFO)

    # Add console handler if not already present
    if not _logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - AUDIT - %(levelname)s - %(message)s"))
        _logger.addHandler(handler)

    _audit_logger = AuditLogger()
    return _audit_logger


def get_audit_logger():
    """Get the audit logger instance."""
    global _audit_logger

    if _audit_logger is None:
        init_audit_logger()
    return _audit_logger


def _mask(value: Optional[str], size: int = 16) -> str:
    if not value:
        return "-"
    return f"{value[:size]}..."


class AuditLogger:
    """
    Audit logging interface for protocol events.

    ``log_event`` writes structured JSON; the helpers below write the
    pipe-separated form used for grep-friendly security trails.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or _logger

    def log_event(self, event: str, **details: Any) -> None:
        """Generic structured audit event."""

        payload = {"event": event, **details, "timestamp": datetime.now(timezone.utc).isoformat()}
        self.logger.info(json.dumps(payload, default=str))

    def log_auth_attempt(self, k1: str, success: bool, pubkey: Optional[str] = None, reason: Optional[str] = None):
        """Log an LNURL-auth verification attempt."""
        status = "SUCCESS" if success else "FAILURE"
        msg = f"AUTH_ATTEMPT | k1={_mask(k1)} | pubkey={_mask(pubkey)} | status={status}"
        if reason:
            msg += f" | reason={reason}"
        self.logger.info(msg)

    def log_signature_verification(self, pubkey: str, success: bool, signature_type: str):
        """Log cryptographic signature verification."""
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"SIG_VERIFY | pubkey={_mask(pubkey)} | type={signature_type} | status={status}")

    def log_withdrawal(self, k1: str, amount_sats: int, status: str):
        """Log a withdrawal redemption step."""
        self.logger.info(f"WITHDRAWAL | k1={_mask(k1)} | amount_sats={amount_sats} | status={status}")

    def log_channel(self, k1: str, remote_id: Optional[str], status: str):
        """Log a channel request decision."""
        self.logger.info(f"CHANNEL | k1={_mask(k1)} | remote_id={_mask(remote_id)} | status={status}")

    def log_payment_settled(self, payment_id: str, amount_sats: Optional[int], source: str):
        """Log an observed settlement."""
        self.logger.info(f"PAYMENT_SETTLED | payment={payment_id} | amount_sats={amount_sats} | source={source}")

    def log_oracle_call(self, method: str, success: bool, error: Optional[str] = None):
        """Log a Lightning node call that moves money or state."""
        status = "SUCCESS" if success else "FAILURE"
        msg = f"ORACLE_CALL | method={method} | status={status}"
        if error:
            msg += f" | error={error}"
        self.logger.info(msg)

    def log_security_event(self, event_type: str, severity: str, details: Dict[str, Any]):
        """Log security event."""
        self.logger.warning(f"SECURITY_EVENT | type={event_type} | severity={severity} | details={details}")

    def log_sessions_purged(self, count: int):
        """Log garbage collection of expired auth sessions."""
        self.logger.info(f"SESSIONS_PURGED | count={count}")
