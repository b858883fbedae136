"""Helpers for issuing signed JWTs to authenticated linking keys."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Mapping, Optional

import jwt

logger = logging.getLogger(__name__)


def _resolve_ttl(cfg: Mapping[str, Any]) -> int:
    hours = cfg.get("JWT_EXPIRATION_HOURS", 24)
    try:
        return int(hours) * 3600
    except (TypeError, ValueError):
        return 24 * 3600


def _load_private_key(path: Optional[str]) -> Optional[str]:
    if not path or not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as fh:
        return fh.read()


class TokenIssuer:
    """
    Issues the session token handed out once LNURL-auth succeeds.

    The subject is the wallet's linking key. RS256 is used when a private key
    file is configured, HS256 with ``JWT_SECRET`` otherwise.
    """

    def __init__(self, cfg: Mapping[str, Any]):
        self.ttl = _resolve_ttl(cfg)
        self.issuer = cfg.get("JWT_ISSUER") or "lnurl-server"
        alg = str(cfg.get("JWT_ALGORITHM") or "RS256").upper()
        private_pem = _load_private_key(cfg.get("JWT_PRIVATE_KEY_PATH")) if alg == "RS256" else None

        if alg == "RS256" and private_pem is None:
            logger.warning("JWT private key not found; falling back to HS256 session tokens")
            alg = "HS256"

        self.algorithm = alg
        if alg == "RS256":
            self.signing_key: Any = private_pem
        else:
            secret = cfg.get("JWT_SECRET", "dev-secret-CHANGE-ME-IN-PRODUCTION")
            self.signing_key = secret if isinstance(secret, (bytes, bytearray)) else str(secret)

    def issue(self, pubkey: str, claims: Optional[Dict[str, Any]] = None) -> str:
        now = int(time.time())
        payload: Dict[str, Any] = {
            "iss": self.issuer,
            "sub": pubkey,
            "iat": now,
            "nbf": now,
            "exp": now + self.ttl,
        }
        if claims:
            payload.update(claims)

        token = jwt.encode(payload, self.signing_key, algorithm=self.algorithm)
        logger.info("Session token issued for %s... (%s)", pubkey[:16], self.algorithm)
        return token


__all__ = ["TokenIssuer"]
