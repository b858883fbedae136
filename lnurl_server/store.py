"""
Database-backed storage for auth sessions and payment requests.

Every state transition is a single conditional UPDATE; the affected row count
tells the caller whether it won the transition. Reads return plain
dictionaries so no ORM object outlives its session.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_

from lnurl_server.database import Database
from lnurl_server.models import AuthSession, ChannelRequest, PaymentRequest, WithdrawalToken, utc_now

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _session_to_dict(row: AuthSession) -> Dict[str, Any]:
    return {
        "session_id": row.session_id,
        "k1": row.k1,
        "action": row.action,
        "pubkey": row.pubkey,
        "authenticated": bool(row.authenticated),
        "created_at": _iso(row.created_at),
        "expires_at": _iso(row.expires_at),
        "authenticated_at": _iso(row.authenticated_at),
    }


def _payment_to_dict(row: PaymentRequest) -> Dict[str, Any]:
    return {
        "payment_id": row.payment_id,
        "min_sendable": row.min_sendable,
        "max_sendable": row.max_sendable,
        "comment_allowed": row.comment_allowed,
        "payment_hash": row.payment_hash,
        "payment_request": row.payment_request,
        "amount_sats": row.amount_sats,
        "description": row.description,
        "comment": row.comment,
        "paid": bool(row.paid),
        "created_at": _iso(row.created_at),
        "paid_at": _iso(row.paid_at),
    }


def _withdrawal_to_dict(row: WithdrawalToken) -> Dict[str, Any]:
    return {
        "k1": row.k1,
        "amount_sats": row.amount_sats,
        "used": bool(row.used),
        "payment_request": row.payment_request,
        "created_at": _iso(row.created_at),
        "used_at": _iso(row.used_at),
    }


def _channel_to_dict(row: ChannelRequest) -> Dict[str, Any]:
    return {
        "k1": row.k1,
        "remote_id": row.remote_id,
        "private": bool(row.private),
        "opening": bool(row.opening),
        "cancelled": bool(row.cancelled),
        "completed": bool(row.completed),
        "funding_txid": row.funding_txid,
        "created_at": _iso(row.created_at),
        "resolved_at": _iso(row.resolved_at),
    }


# ============================================================================
# Auth Sessions
# ============================================================================


class SessionStore:
    """Persistent CRUD for LNURL-auth sessions."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, session_id: str, k1: str, expires_at: datetime, action: Optional[str] = None) -> Dict[str, Any]:
        """
        Persist a new challenge.

        Args:
            session_id: Identifier the requester polls with
            k1: Challenge the wallet signs
            expires_at: Naive UTC expiry
            action: Optional LUD-04 action tag
        """
        with self.db.session_scope() as session:
            row = AuthSession(session_id=session_id, k1=k1, action=action, expires_at=expires_at)
            session.add(row)
            session.flush()
            return _session_to_dict(row)

    def get_active_by_k1(self, k1: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """Return the unexpired session for ``k1``; expired rows count as absent."""
        now = now or utc_now()
        with self.db.session_scope() as session:
            row = (
                session.query(AuthSession)
                .filter(AuthSession.k1 == k1, AuthSession.expires_at > now)
                .first()
            )
            return _session_to_dict(row) if row else None

    def get_active_by_id(self, session_id: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        now = now or utc_now()
        with self.db.session_scope() as session:
            row = (
                session.query(AuthSession)
                .filter(AuthSession.session_id == session_id, AuthSession.expires_at > now)
                .first()
            )
            return _session_to_dict(row) if row else None

    def authenticate(self, k1: str, pubkey: str, now: Optional[datetime] = None) -> bool:
        """
        Mark the session for ``k1`` authenticated by ``pubkey``.

        Succeeds if the session is unexpired and either unauthenticated or
        already authenticated by the same key. A different key never
        overwrites the stored one.

        Returns:
            True if this call performed (or repeated) the transition
        """
        now = now or utc_now()
        with self.db.session_scope() as session:
            updated = (
                session.query(AuthSession)
                .filter(
                    AuthSession.k1 == k1,
                    AuthSession.expires_at > now,
                    or_(AuthSession.authenticated.is_(False), AuthSession.pubkey == pubkey),
                )
                .update(
                    {
                        AuthSession.authenticated: True,
                        AuthSession.pubkey: pubkey,
                        AuthSession.authenticated_at: func.coalesce(AuthSession.authenticated_at, now),
                    },
                    synchronize_session=False,
                )
            )
            return updated == 1

    def delete_expired(self, now: Optional[datetime] = None) -> int:
        """Delete sessions past their expiry; returns the number removed."""
        now = now or utc_now()
        with self.db.session_scope() as session:
            return (
                session.query(AuthSession)
                .filter(AuthSession.expires_at <= now)
                .delete(synchronize_session=False)
            )

    def list_all(self) -> List[Dict[str, Any]]:
        with self.db.session_scope() as session:
            rows = session.query(AuthSession).order_by(AuthSession.created_at.desc()).all()
            return [_session_to_dict(row) for row in rows]

    def stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Counts of stored, unexpired and authenticated-unexpired sessions."""
        now = now or utc_now()
        with self.db.session_scope() as session:
            total = session.query(func.count(AuthSession.id)).scalar() or 0
            active = session.query(func.count(AuthSession.id)).filter(AuthSession.expires_at > now).scalar() or 0
            authenticated = (
                session.query(func.count(AuthSession.id))
                .filter(AuthSession.expires_at > now, AuthSession.authenticated.is_(True))
                .scalar()
                or 0
            )
        return {
            "total_sessions": total,
            "active_sessions": active,
            "authenticated_sessions": authenticated,
        }


# ============================================================================
# Payment, Withdrawal and Channel Requests
# ============================================================================


class RequestLedger:
    """Persistent CRUD for pay configs, withdrawal tokens and channel requests."""

    def __init__(self, db: Database):
        self.db = db

    # -- pay ---------------------------------------------------------------

    def create_payment_request(
        self, payment_id: str, min_sendable: int, max_sendable: int, comment_allowed: int
    ) -> Dict[str, Any]:
        with self.db.session_scope() as session:
            row = PaymentRequest(
                payment_id=payment_id,
                min_sendable=min_sendable,
                max_sendable=max_sendable,
                comment_allowed=comment_allowed,
            )
            session.add(row)
            session.flush()
            return _payment_to_dict(row)

    def get_payment_request(self, payment_id: str) -> Optional[Dict[str, Any]]:
        with self.db.session_scope() as session:
            row = session.query(PaymentRequest).filter_by(payment_id=payment_id).first()
            return _payment_to_dict(row) if row else None

    def attach_invoice(
        self,
        payment_id: str,
        payment_hash: str,
        payment_request: str,
        amount_sats: int,
        description: str,
        comment: Optional[str] = None,
    ) -> bool:
        """
        Record the invoice issued for a pay config.

        Returns:
            False if an invoice was already attached
        """
        with self.db.session_scope() as session:
            updated = (
                session.query(PaymentRequest)
                .filter(PaymentRequest.payment_id == payment_id, PaymentRequest.payment_hash.is_(None))
                .update(
                    {
                        PaymentRequest.payment_hash: payment_hash,
                        PaymentRequest.payment_request: payment_request,
                        PaymentRequest.amount_sats: amount_sats,
                        PaymentRequest.description: description,
                        PaymentRequest.comment: comment,
                    },
                    synchronize_session=False,
                )
            )
            return updated == 1

    def mark_paid(self, payment_id: str, now: Optional[datetime] = None) -> bool:
        """Flip ``paid`` to true; False if it already was."""
        now = now or utc_now()
        with self.db.session_scope() as session:
            updated = (
                session.query(PaymentRequest)
                .filter(PaymentRequest.payment_id == payment_id, PaymentRequest.paid.is_(False))
                .update({PaymentRequest.paid: True, PaymentRequest.paid_at: now}, synchronize_session=False)
            )
            return updated == 1

    def list_pending_payments(self) -> List[Dict[str, Any]]:
        """Unpaid configs that have an invoice to check."""
        with self.db.session_scope() as session:
            rows = (
                session.query(PaymentRequest)
                .filter(PaymentRequest.paid.is_(False), PaymentRequest.payment_hash.isnot(None))
                .order_by(PaymentRequest.id)
                .all()
            )
            return [_payment_to_dict(row) for row in rows]

    def list_payment_requests(self) -> List[Dict[str, Any]]:
        with self.db.session_scope() as session:
            rows = session.query(PaymentRequest).order_by(PaymentRequest.created_at.desc()).all()
            return [_payment_to_dict(row) for row in rows]

    # -- withdraw ----------------------------------------------------------

    def create_withdrawal(self, k1: str, amount_sats: int) -> Dict[str, Any]:
        with self.db.session_scope() as session:
            row = WithdrawalToken(k1=k1, amount_sats=amount_sats)
            session.add(row)
            session.flush()
            return _withdrawal_to_dict(row)

    def get_withdrawal(self, k1: str) -> Optional[Dict[str, Any]]:
        with self.db.session_scope() as session:
            row = session.query(WithdrawalToken).filter_by(k1=k1).first()
            return _withdrawal_to_dict(row) if row else None

    def claim_withdrawal(self, k1: str, payment_request: str, now: Optional[datetime] = None) -> bool:
        """
        Atomically mark an unused token used.

        Returns:
            True for exactly one caller per token
        """
        now = now or utc_now()
        with self.db.session_scope() as session:
            updated = (
                session.query(WithdrawalToken)
                .filter(WithdrawalToken.k1 == k1, WithdrawalToken.used.is_(False))
                .update(
                    {
                        WithdrawalToken.used: True,
                        WithdrawalToken.used_at: now,
                        WithdrawalToken.payment_request: payment_request,
                    },
                    synchronize_session=False,
                )
            )
            return updated == 1

    def list_withdrawals(self) -> List[Dict[str, Any]]:
        with self.db.session_scope() as session:
            rows = session.query(WithdrawalToken).order_by(WithdrawalToken.created_at.desc()).all()
            return [_withdrawal_to_dict(row) for row in rows]

    # -- channel -----------------------------------------------------------

    def create_channel_request(self, k1: str, remote_id: Optional[str] = None, private: bool = False) -> Dict[str, Any]:
        with self.db.session_scope() as session:
            row = ChannelRequest(k1=k1, remote_id=remote_id, private=private)
            session.add(row)
            session.flush()
            return _channel_to_dict(row)

    def get_channel_request(self, k1: str) -> Optional[Dict[str, Any]]:
        with self.db.session_scope() as session:
            row = session.query(ChannelRequest).filter_by(k1=k1).first()
            return _channel_to_dict(row) if row else None

    def _open_channel_query(self, session, k1: str):
        return session.query(ChannelRequest).filter(
            ChannelRequest.k1 == k1,
            ChannelRequest.cancelled.is_(False),
            ChannelRequest.completed.is_(False),
        )

    def cancel_channel_request(self, k1: str, now: Optional[datetime] = None) -> bool:
        """Move a pending request to ``cancelled``; refused while an open is in flight."""
        now = now or utc_now()
        with self.db.session_scope() as session:
            updated = (
                self._open_channel_query(session, k1)
                .filter(ChannelRequest.opening.is_(False))
                .update(
                    {ChannelRequest.cancelled: True, ChannelRequest.resolved_at: now},
                    synchronize_session=False,
                )
            )
            return updated == 1

    def begin_channel_open(self, k1: str, remote_id: str, private: bool) -> bool:
        """
        Claim a pending request for opening.

        The remote id must match the one bound at creation, if any.
        """
        with self.db.session_scope() as session:
            updated = (
                self._open_channel_query(session, k1)
                .filter(
                    ChannelRequest.opening.is_(False),
                    or_(ChannelRequest.remote_id.is_(None), ChannelRequest.remote_id == remote_id),
                )
                .update(
                    {
                        ChannelRequest.opening: True,
                        ChannelRequest.remote_id: remote_id,
                        ChannelRequest.private: private,
                    },
                    synchronize_session=False,
                )
            )
            return updated == 1

    def complete_channel_request(
        self, k1: str, funding_txid: Optional[str] = None, now: Optional[datetime] = None
    ) -> bool:
        now = now or utc_now()
        with self.db.session_scope() as session:
            updated = (
                self._open_channel_query(session, k1)
                .filter(ChannelRequest.opening.is_(True))
                .update(
                    {
                        ChannelRequest.opening: False,
                        ChannelRequest.completed: True,
                        ChannelRequest.funding_txid: funding_txid,
                        ChannelRequest.resolved_at: now,
                    },
                    synchronize_session=False,
                )
            )
            return updated == 1

    def release_channel_request(self, k1: str) -> bool:
        """Drop the in-flight claim after a failed open."""
        with self.db.session_scope() as session:
            updated = (
                self._open_channel_query(session, k1)
                .filter(ChannelRequest.opening.is_(True))
                .update({ChannelRequest.opening: False}, synchronize_session=False)
            )
            return updated == 1

    def list_channel_requests(self) -> List[Dict[str, Any]]:
        with self.db.session_scope() as session:
            rows = session.query(ChannelRequest).order_by(ChannelRequest.created_at.desc()).all()
            return [_channel_to_dict(row) for row in rows]
