"""
SQLAlchemy database models for the LNURL server.

One table per protocol entity. Every row is keyed by an opaque random value
and all state flags move in one direction only.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utc_now():
    """Current UTC time as a naive datetime (all columns store naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AuthSession(Base):
    """
    LNURL-auth sessions (LUD-04).
    """

    __tablename__ = "auth_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(32), unique=True, nullable=False)
    k1 = Column(String(64), unique=True, nullable=False)  # Challenge hex
    action = Column(String(16))
    pubkey = Column(String(66))  # Linking key (after verification)
    authenticated = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    authenticated_at = Column(DateTime)

    __table_args__ = (
        Index("idx_auth_expires", "expires_at"),
        Index("idx_auth_pubkey", "pubkey"),
    )

    def __repr__(self):
        return f"<AuthSession(session={self.session_id}, authenticated={self.authenticated})>"


class PaymentRequest(Base):
    """
    LNURL-pay configuration and the invoice issued against it (LUD-06).
    """

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_id = Column(String(32), unique=True, nullable=False)
    min_sendable = Column(BigInteger, nullable=False)  # millisatoshis
    max_sendable = Column(BigInteger, nullable=False)  # millisatoshis
    comment_allowed = Column(Integer, default=0, nullable=False)
    payment_hash = Column(String(64), unique=True)
    payment_request = Column(Text)  # bolt11
    amount_sats = Column(BigInteger)
    description = Column(Text)
    comment = Column(Text)
    paid = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    paid_at = Column(DateTime)

    __table_args__ = (
        CheckConstraint("min_sendable > 0 AND min_sendable <= max_sendable", name="ck_payment_bounds"),
        CheckConstraint("comment_allowed >= 0", name="ck_payment_comment"),
        Index("idx_payment_pending", "paid", "payment_hash"),
    )

    def __repr__(self):
        return f"<PaymentRequest(id={self.payment_id}, paid={self.paid})>"


class WithdrawalToken(Base):
    """
    Single-use LNURL-withdraw tokens (LUD-03).
    """

    __tablename__ = "withdrawals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    k1 = Column(String(64), unique=True, nullable=False)
    amount_sats = Column(BigInteger, nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    payment_request = Column(Text)  # Invoice the token was redeemed against
    created_at = Column(DateTime, default=utc_now, nullable=False)
    used_at = Column(DateTime)

    def __repr__(self):
        return f"<WithdrawalToken(k1={self.k1[:16]}..., used={self.used})>"


class ChannelRequest(Base):
    """
    Inbound channel-open requests (LUD-02).

    ``opening`` marks an open that is in flight; it is cleared again when the
    node refuses, so the request can be retried or cancelled.
    """

    __tablename__ = "channel_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    k1 = Column(String(64), unique=True, nullable=False)
    remote_id = Column(String(66))
    private = Column(Boolean, default=False, nullable=False)
    opening = Column(Boolean, default=False, nullable=False)
    cancelled = Column(Boolean, default=False, nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    funding_txid = Column(String(64))
    created_at = Column(DateTime, default=utc_now, nullable=False)
    resolved_at = Column(DateTime)

    __table_args__ = (
        CheckConstraint("NOT (cancelled AND completed)", name="ck_channel_single_terminal"),
    )

    def __repr__(self):
        return f"<ChannelRequest(k1={self.k1[:16]}..., cancelled={self.cancelled}, completed={self.completed})>"
