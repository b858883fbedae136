"""
LNURL-auth (LUD-04) challenge issuance and verification.

A session moves NO_SESSION -> CHALLENGE_ISSUED -> AUTHENTICATED, or is
treated as gone once ``expires_at`` passes. ``k1`` is what the wallet signs;
``session_id`` is what the requesting page polls with and grants no
authentication power on its own.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlencode

from lnurl_server import utils
from lnurl_server.audit_logger import get_audit_logger
from lnurl_server.errors import RejectionError, SignatureError, StateConflictError, ValidationError
from lnurl_server.models import utc_now
from lnurl_server.protocol import AuthVerifyRequest, Outcome
from lnurl_server.signatures import verify_lnurl_auth
from lnurl_server.store import SessionStore
from lnurl_server.tokens import TokenIssuer

logger = logging.getLogger(__name__)

INVALID_CHALLENGE = "Invalid or expired k1"


class AuthEngine:
    def __init__(
        self,
        sessions: SessionStore,
        base_url: str,
        session_timeout: int = 600,
        token_issuer: Optional[TokenIssuer] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.sessions = sessions
        self.base_url = base_url.rstrip("/")
        self.session_timeout = timedelta(seconds=session_timeout)
        self.token_issuer = token_issuer
        self.clock = clock
        self.audit = get_audit_logger()

    @classmethod
    def from_config(cls, sessions: SessionStore, cfg: Mapping[str, Any], **kwargs: Any) -> "AuthEngine":
        return cls(sessions, cfg["LNURL_BASE_URL"], session_timeout=cfg["SESSION_TIMEOUT_SECONDS"], **kwargs)

    def issue_challenge(self, action: Optional[str] = "login") -> Outcome:
        """
        Create a session and return the callback URL embedding its ``k1``.

        Returns:
            Outcome with ``session_id``, ``k1``, ``url``, ``lnurl`` and ``expires_at``
        """
        action = action or "login"
        if not utils.is_valid_action(action):
            return Outcome.rejected(f"Invalid action parameter - must be one of: {', '.join(utils.AUTH_ACTIONS)}")

        k1 = utils.generate_k1()
        session_id = utils.generate_id()
        expires_at = self.clock() + self.session_timeout
        self.sessions.create(session_id, k1, expires_at, action=action)

        url = f"{self.base_url}/auth?{urlencode({'tag': 'login', 'k1': k1, 'action': action})}"
        self.audit.log_event("auth.challenge_issued", session_id=session_id, action=action)
        logger.info("LNURL-auth challenge issued for session %s", session_id)

        return Outcome.success(
            session_id=session_id,
            k1=k1,
            action=action,
            url=url,
            lnurl=utils.encode_lnurl(url),
            expires_at=expires_at.isoformat(),
        )

    def verify(self, params: Mapping[str, Any]) -> Outcome:
        """
        Handle the wallet callback.

        Rejections (bad input, unknown or expired ``k1``, bad signature,
        a different key already bound) come back as ``Outcome.rejected``.
        Store failures propagate.
        """
        try:
            request = AuthVerifyRequest.parse(params)
            self._verify(request)
        except ValidationError as e:
            logger.info("LNURL-auth request rejected: %s", e.reason)
            return Outcome.rejected(e.reason)
        except RejectionError as e:
            self.audit.log_auth_attempt(params.get("k1", ""), False, params.get("key"), reason=e.reason)
            return Outcome.rejected(e.reason)

        self.audit.log_auth_attempt(request.k1, True, request.key)
        return Outcome.success()

    def _verify(self, request: AuthVerifyRequest) -> None:
        now = self.clock()
        session = self.sessions.get_active_by_k1(request.k1, now)
        if session is None:
            # Unknown and expired challenges are indistinguishable to the caller
            raise StateConflictError(INVALID_CHALLENGE)

        if request.action and session.get("action") and request.action != session["action"]:
            # The action tag is not covered by the signature
            logger.warning(
                "LNURL-auth action mismatch for session %s: issued %s, wallet sent %s",
                session["session_id"],
                session["action"],
                request.action,
            )

        verified = verify_lnurl_auth(request.k1, request.sig, request.key)
        self.audit.log_signature_verification(request.key, verified, "ecdsa-secp256k1")
        if not verified:
            raise SignatureError()

        if not self.sessions.authenticate(request.k1, request.key, now):
            current = self.sessions.get_active_by_k1(request.k1, now)
            if current is None:
                raise StateConflictError(INVALID_CHALLENGE)
            self.audit.log_security_event(
                "auth.key_conflict", "medium", {"session_id": current["session_id"], "pubkey": utils.short(request.key)}
            )
            raise StateConflictError("k1 already used by another key")

        logger.info("LNURL-auth session %s authenticated", session["session_id"])

    def poll(self, session_id: str) -> Dict[str, Any]:
        """Read-only status for the page waiting on a wallet."""
        session = self.sessions.get_active_by_id(session_id, self.clock())
        if session is None or not session["authenticated"]:
            return {"authenticated": False}

        status: Dict[str, Any] = {
            "authenticated": True,
            "pubkey": session["pubkey"],
            "authenticated_at": session["authenticated_at"],
        }
        if self.token_issuer is not None:
            status["token"] = self.token_issuer.issue(session["pubkey"], {"sid": session_id})
        return status
