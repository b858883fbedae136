"""
Pay, withdraw and channel request lifecycle.

Creation persists a fresh identifier; every terminal transition goes through
a ledger check-and-set so racing callers cannot both win. Rejections are
returned as ``Outcome`` values. Transient node failures propagate so the HTTP
layer can answer with a retryable error.
"""

import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

from lnurl_server import metrics, utils
from lnurl_server.audit_logger import get_audit_logger
from lnurl_server.errors import OracleError, OracleTransientError, RejectionError, StateConflictError, ValidationError
from lnurl_server.models import utc_now
from lnurl_server.protocol import (
    ChannelCreateRequest,
    ChannelResolveRequest,
    Outcome,
    PayConfigRequest,
    PayInvoiceRequest,
    WithdrawRedeemRequest,
)
from lnurl_server.store import RequestLedger

logger = logging.getLogger(__name__)

PAYMENT_NOT_FOUND = "Payment not found"
WITHDRAWAL_NOT_FOUND = "Withdrawal request not found"
WITHDRAWAL_USED = "Withdrawal request already used"
CHANNEL_NOT_FOUND = "Channel request not found"
CHANNEL_RESOLVED = "Channel request already resolved"


class PaymentLifecycle:
    """
    Orchestrates LUD-06 pay configs, LUD-03 withdrawal tokens and LUD-02
    channel requests against the ledger and the Lightning node.
    """

    def __init__(
        self,
        ledger: RequestLedger,
        oracle: Any,
        cfg: Mapping[str, Any],
        clock: Callable[[], datetime] = utc_now,
    ):
        self.ledger = ledger
        self.oracle = oracle
        self.clock = clock
        self.audit = get_audit_logger()

        self.base_url = cfg["LNURL_BASE_URL"].rstrip("/")
        self.min_sendable = cfg["MIN_SENDABLE"]
        self.max_sendable = cfg["MAX_SENDABLE"]
        self.comment_allowed = cfg["COMMENT_ALLOWED"]
        self.min_withdrawable = cfg["MIN_WITHDRAWABLE"]
        self.max_withdrawable = cfg["MAX_WITHDRAWABLE"]
        self.withdraw_amount_sats = cfg["WITHDRAW_AMOUNT_SATS"]
        self.channel_amount_sats = cfg["CHANNEL_AMOUNT_SATS"]
        self.invoice_expiry = cfg.get("INVOICE_EXPIRY_SECONDS", 3600)
        self.pay_description = cfg.get("PAY_DESCRIPTION") or "Payment to LNURL server"
        self.withdraw_description = cfg.get("WITHDRAW_DESCRIPTION") or "LNURL withdrawal"

    # ------------------------------------------------------------------
    # Pay (LUD-06)
    # ------------------------------------------------------------------

    def create_pay_request(self, request: PayConfigRequest) -> Outcome:
        """
        Persist a pay config. Explicit bounds override the configured defaults
        but must stay inside the configured absolute limits.
        """
        min_sendable = self.min_sendable if request.min_sendable is None else request.min_sendable
        max_sendable = self.max_sendable if request.max_sendable is None else request.max_sendable
        comment_allowed = self.comment_allowed if request.comment_allowed is None else request.comment_allowed

        errors = []
        if min_sendable <= 0 or max_sendable <= 0:
            errors.append("minSendable and maxSendable must be positive")
        elif min_sendable > max_sendable:
            errors.append("minSendable must not exceed maxSendable")
        elif min_sendable < self.min_sendable or max_sendable > self.max_sendable:
            errors.append(f"Sendable range must lie within {self.min_sendable}-{self.max_sendable} msat")
        if comment_allowed < 0 or comment_allowed > self.comment_allowed:
            errors.append(f"commentAllowed must be between 0 and {self.comment_allowed}")
        if errors:
            return Outcome.rejected(", ".join(errors))

        payment_id = utils.generate_id()
        self.ledger.create_payment_request(payment_id, min_sendable, max_sendable, comment_allowed)
        url = f"{self.base_url}/pay/{payment_id}"
        logger.info("Pay config %s created (%s-%s msat)", payment_id, min_sendable, max_sendable)

        return Outcome.success(
            paymentId=payment_id,
            url=url,
            lnurl=utils.encode_lnurl(url),
            minSendable=min_sendable,
            maxSendable=max_sendable,
            commentAllowed=comment_allowed,
        )

    def _metadata(self) -> str:
        return json.dumps([["text/plain", self.pay_description]])

    def pay_params(self, payment_id: str) -> Outcome:
        row = self.ledger.get_payment_request(payment_id) if utils.is_valid_payment_id(payment_id) else None
        if row is None:
            return Outcome.rejected(PAYMENT_NOT_FOUND)

        params: Dict[str, Any] = {
            "tag": "payRequest",
            "callback": f"{self.base_url}/pay/{payment_id}/callback",
            "minSendable": row["min_sendable"],
            "maxSendable": row["max_sendable"],
            "metadata": self._metadata(),
        }
        if row["comment_allowed"]:
            params["commentAllowed"] = row["comment_allowed"]
        return Outcome.success(**params)

    def issue_invoice(self, request: PayInvoiceRequest) -> Outcome:
        """
        Ask the node for an invoice committing to the pay metadata and attach
        it to the config. A config carries at most one invoice.
        """
        row = self.ledger.get_payment_request(request.payment_id)
        if row is None:
            return Outcome.rejected(PAYMENT_NOT_FOUND)
        if row["payment_hash"]:
            return Outcome.rejected("Invoice already issued for this payment")

        amount = request.amount_msat
        if amount < row["min_sendable"] or amount > row["max_sendable"]:
            return Outcome.rejected(
                f"Amount must be between {row['min_sendable']} and {row['max_sendable']} msat"
            )
        comment = request.comment
        if comment and len(comment) > row["comment_allowed"]:
            return Outcome.rejected(f"Comment too long (max {row['comment_allowed']} characters)")

        metadata = self._metadata()
        invoice = self.oracle.add_invoice(
            amount,
            description_hash=hashlib.sha256(metadata.encode("utf-8")).digest(),
            expiry_seconds=self.invoice_expiry,
        )
        attached = self.ledger.attach_invoice(
            request.payment_id,
            invoice["payment_hash"],
            invoice["payment_request"],
            amount // 1000,
            self.pay_description,
            comment=comment,
        )
        if not attached:
            # Lost a race with another callback for the same config
            return Outcome.rejected("Invoice already issued for this payment")

        self.audit.log_event("pay.invoice_issued", payment_id=request.payment_id, amount_msat=amount)
        return Outcome.success(pr=invoice["payment_request"], routes=[])

    def get_payment_status(self, payment_id: str) -> Optional[Dict[str, Any]]:
        """
        Paid rows are answered from the ledger alone. Otherwise one live check
        is made; an unreachable node degrades to the local state with an
        ``error`` annotation. Returns None for an unknown payment.
        """
        row = self.ledger.get_payment_request(payment_id)
        if row is None:
            return None

        status = {
            "paymentId": payment_id,
            "paid": row["paid"],
            "amount_sats": row["amount_sats"],
            "description": row["description"],
            "comment": row["comment"],
            "created_at": row["created_at"],
        }
        if row["paid"]:
            status["paid_at"] = row["paid_at"]
            return status
        if not row["payment_hash"]:
            return status

        try:
            invoice = self.oracle.get_invoice_status(row["payment_hash"])
        except OracleError as e:
            metrics.oracle_failures.labels(operation="get_invoice_status").inc()
            logger.warning("Could not verify payment %s: %s", payment_id, e)
            status["error"] = "Could not verify payment status"
            return status

        if invoice["settled"]:
            if self.ledger.mark_paid(payment_id, self.clock()):
                metrics.payments_settled.labels(source="status").inc()
                self.audit.log_payment_settled(payment_id, row["amount_sats"], "status")
            status["paid"] = True
            status["settled_at"] = self.clock().isoformat()
        return status

    # ------------------------------------------------------------------
    # Withdraw (LUD-03)
    # ------------------------------------------------------------------

    def create_withdrawal(self) -> Outcome:
        """Issue a token for the configured amount; clients never choose it."""
        k1 = utils.generate_k1()
        self.ledger.create_withdrawal(k1, self.withdraw_amount_sats)
        self.audit.log_withdrawal(k1, self.withdraw_amount_sats, "issued")
        return Outcome.success(k1=k1, amountSats=self.withdraw_amount_sats)

    def withdraw_params(self, k1: str) -> Outcome:
        token = self.ledger.get_withdrawal(k1)
        if token is None:
            return Outcome.rejected(WITHDRAWAL_NOT_FOUND)
        if token["used"]:
            return Outcome.rejected(WITHDRAWAL_USED)

        amount_msat = token["amount_sats"] * 1000
        return Outcome.success(
            tag="withdrawRequest",
            callback=f"{self.base_url}/withdraw/callback",
            k1=k1,
            defaultDescription=self.withdraw_description,
            minWithdrawable=amount_msat,
            maxWithdrawable=amount_msat,
        )

    def redeem_withdrawal(self, params: Mapping[str, Any]) -> Outcome:
        """
        Redeem a token against the wallet's invoice.

        The token is marked used before the payment is dispatched, so a
        failure after the claim leaves it spent rather than payable twice.
        """
        try:
            self._reject_spent_token(params.get("k1"))
            request = WithdrawRedeemRequest.parse(params)
            return self._redeem(request)
        except RejectionError as e:
            logger.info("Withdrawal rejected: %s", e.reason)
            return Outcome.rejected(e.reason)

    def _reject_spent_token(self, k1: Any) -> None:
        # A used token is refused whatever invoice accompanies it
        if utils.is_valid_k1(k1):
            token = self.ledger.get_withdrawal(k1.lower())
            if token is not None and token["used"]:
                raise StateConflictError(WITHDRAWAL_USED)

    def _redeem(self, request: WithdrawRedeemRequest) -> Outcome:
        token = self.ledger.get_withdrawal(request.k1)
        if token is None:
            raise StateConflictError(WITHDRAWAL_NOT_FOUND)
        if token["used"]:
            raise StateConflictError(WITHDRAWAL_USED)

        amount_sats = token["amount_sats"]
        if not self.min_withdrawable <= amount_sats * 1000 <= self.max_withdrawable:
            raise ValidationError("Withdrawal amount outside allowed limits")

        try:
            decoded = self.oracle.decode_invoice(request.pr)
        except OracleTransientError:
            raise
        except OracleError as e:
            logger.info("Node refused to decode withdrawal invoice: %s", e)
            raise ValidationError("Invalid payment request") from e
        # num_satoshis is truncated; compare at msat precision
        invoice_msat = decoded.get("amount_msat") or 0
        if invoice_msat > amount_sats * 1000:
            raise ValidationError(f"Invoice amount exceeds withdrawable amount of {amount_sats} sats")

        if not self.ledger.claim_withdrawal(request.k1, request.pr, self.clock()):
            raise StateConflictError(WITHDRAWAL_USED)
        self.audit.log_withdrawal(request.k1, amount_sats, "claimed")

        try:
            # Zero-amount invoices are paid for the token amount
            self.oracle.pay_invoice(request.pr, amount_sats=None if invoice_msat else amount_sats)
        except OracleTransientError as e:
            metrics.oracle_failures.labels(operation="pay_invoice").inc()
            self.audit.log_withdrawal(request.k1, amount_sats, "payment_unknown")
            self.audit.log_oracle_call("pay_invoice", False, str(e))
            raise
        except OracleError as e:
            metrics.oracle_failures.labels(operation="pay_invoice").inc()
            self.audit.log_withdrawal(request.k1, amount_sats, "payment_failed")
            self.audit.log_oracle_call("pay_invoice", False, str(e))
            return Outcome.rejected(f"Payment failed: {e}")

        self.audit.log_oracle_call("pay_invoice", True)
        self.audit.log_withdrawal(request.k1, amount_sats, "paid")
        logger.info("Withdrawal %s... paid (%s sats)", request.k1[:16], amount_sats)
        return Outcome.success()

    # ------------------------------------------------------------------
    # Channel (LUD-02)
    # ------------------------------------------------------------------

    def create_channel_request(self, request: Optional[ChannelCreateRequest] = None) -> Outcome:
        request = request or ChannelCreateRequest()
        k1 = utils.generate_k1()
        self.ledger.create_channel_request(k1, remote_id=request.remote_id, private=request.private)
        self.audit.log_channel(k1, request.remote_id, "issued")
        return Outcome.success(k1=k1)

    def channel_params(self, k1: str) -> Outcome:
        row = self.ledger.get_channel_request(k1)
        if row is None:
            return Outcome.rejected(CHANNEL_NOT_FOUND)

        info = self.oracle.get_node_info()
        uris = info.get("uris") or []
        return Outcome.success(
            tag="channelRequest",
            uri=uris[0] if uris else info.get("identity_pubkey"),
            callback=f"{self.base_url}/channel/callback",
            k1=k1,
        )

    def resolve_channel_request(self, params: Mapping[str, Any]) -> Outcome:
        """Cancel, or open a channel to the requesting node; terminal at most once."""
        try:
            request = ChannelResolveRequest.parse(params)
            row = self.ledger.get_channel_request(request.k1)
            if row is None:
                raise StateConflictError(CHANNEL_NOT_FOUND)
            if row["cancelled"] or row["completed"]:
                raise StateConflictError(CHANNEL_RESOLVED)
            if request.cancel:
                return self._cancel_channel(request)
            return self._open_channel(request, row)
        except RejectionError as e:
            logger.info("Channel request rejected: %s", e.reason)
            return Outcome.rejected(e.reason)

    def _cancel_channel(self, request: ChannelResolveRequest) -> Outcome:
        if not self.ledger.cancel_channel_request(request.k1, self.clock()):
            raise StateConflictError(CHANNEL_RESOLVED)
        self.audit.log_channel(request.k1, None, "cancelled")
        return Outcome.success()

    def _open_channel(self, request: ChannelResolveRequest, row: Dict[str, Any]) -> Outcome:
        if row["remote_id"] and row["remote_id"] != request.remote_id:
            raise ValidationError("remoteid does not match channel request")
        if not self.ledger.begin_channel_open(request.k1, request.remote_id, request.private):
            raise StateConflictError(CHANNEL_RESOLVED)

        try:
            result = self.oracle.open_channel(request.remote_id, self.channel_amount_sats, private=request.private)
        except OracleTransientError as e:
            # Outcome unknown: the claim stays held so the open is never sent twice
            metrics.oracle_failures.labels(operation="open_channel").inc()
            self.audit.log_oracle_call("open_channel", False, str(e))
            self.audit.log_channel(request.k1, request.remote_id, "open_unknown")
            raise
        except OracleError as e:
            self.ledger.release_channel_request(request.k1)
            metrics.oracle_failures.labels(operation="open_channel").inc()
            self.audit.log_oracle_call("open_channel", False, str(e))
            self.audit.log_channel(request.k1, request.remote_id, "open_failed")
            return Outcome.rejected(f"Channel open failed: {e}")

        self.ledger.complete_channel_request(request.k1, result.get("funding_txid"), self.clock())
        self.audit.log_oracle_call("open_channel", True)
        self.audit.log_channel(request.k1, request.remote_id, "completed")
        logger.info("Channel opened to %s... (%s sats)", request.remote_id[:16], self.channel_amount_sats)
        return Outcome.success()
