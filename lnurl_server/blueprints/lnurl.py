"""
LNURL Blueprint - wallet-facing protocol endpoints

LUD-04 auth, LUD-06 pay, LUD-03 withdraw and LUD-02 channel callbacks.
Protocol rejections are HTTP 200 with ``{"status": "ERROR", "reason": ...}``;
node and storage faults are left to the app's error handlers.
"""

import logging

from flask import Blueprint, jsonify, request

from lnurl_server.errors import ValidationError
from lnurl_server.factory import get_services
from lnurl_server.protocol import ChannelCreateRequest, PayInvoiceRequest
from lnurl_server.security import limiter

logger = logging.getLogger(__name__)

lnurl_bp = Blueprint("lnurl", __name__)

WALLET_RATE_LIMIT = "60 per minute"
CALLBACK_RATE_LIMIT = "20 per minute"


def _lnurl_response(outcome):
    return jsonify(outcome.to_lnurl())


# ----------------------------------------------------------------------------
# LNURL-auth
# ----------------------------------------------------------------------------


@lnurl_bp.route("/auth", methods=["GET"])
@limiter.limit(CALLBACK_RATE_LIMIT)
def auth_callback():
    """
    Wallet callback carrying ``k1``, ``sig`` and ``key``.

    Returns:
        ``{"status": "OK"}`` or an LNURL error
    """
    logger.debug(
        "Auth callback: k1=%s sig=%s key=%s action=%s",
        "present" if request.args.get("k1") else "missing",
        "present" if request.args.get("sig") else "missing",
        "present" if request.args.get("key") else "missing",
        request.args.get("action"),
    )
    return _lnurl_response(get_services().auth.verify(request.args))


@lnurl_bp.route("/auth/session/<session_id>", methods=["GET"])
@limiter.limit(WALLET_RATE_LIMIT)
def auth_session_status(session_id: str):
    """Polled by the page that displayed the challenge."""
    return jsonify(get_services().auth.poll(session_id))


# ----------------------------------------------------------------------------
# LNURL-pay
# ----------------------------------------------------------------------------


@lnurl_bp.route("/pay/<payment_id>", methods=["GET"])
@limiter.limit(WALLET_RATE_LIMIT)
def pay_request(payment_id: str):
    outcome = get_services().lifecycle.pay_params(payment_id)
    if not outcome.ok:
        return _lnurl_response(outcome)
    return jsonify(outcome.data)


@lnurl_bp.route("/pay/<payment_id>/callback", methods=["GET"])
@limiter.limit(CALLBACK_RATE_LIMIT)
def pay_callback(payment_id: str):
    try:
        invoice_request = PayInvoiceRequest.parse(payment_id, request.args)
    except ValidationError as e:
        return jsonify({"status": "ERROR", "reason": e.reason})

    outcome = get_services().lifecycle.issue_invoice(invoice_request)
    if not outcome.ok:
        return _lnurl_response(outcome)
    return jsonify(outcome.data)


# ----------------------------------------------------------------------------
# LNURL-withdraw
# ----------------------------------------------------------------------------


@lnurl_bp.route("/withdraw", methods=["GET"])
@limiter.limit(WALLET_RATE_LIMIT)
def withdraw_request():
    """Issue a fresh withdrawal token and return its ``withdrawRequest`` params."""
    lifecycle = get_services().lifecycle
    token = lifecycle.create_withdrawal()
    outcome = lifecycle.withdraw_params(token.data["k1"])
    if not outcome.ok:
        return _lnurl_response(outcome)
    return jsonify(outcome.data)


@lnurl_bp.route("/withdraw/callback", methods=["GET"])
@limiter.limit(CALLBACK_RATE_LIMIT)
def withdraw_callback():
    return _lnurl_response(get_services().lifecycle.redeem_withdrawal(request.args))


# ----------------------------------------------------------------------------
# LNURL-channel
# ----------------------------------------------------------------------------


@lnurl_bp.route("/channel", methods=["GET"])
@limiter.limit(WALLET_RATE_LIMIT)
def channel_request():
    """Issue a channel request, optionally pre-bound to ``remoteid``."""
    try:
        create_request = ChannelCreateRequest.parse(request.args)
    except ValidationError as e:
        return jsonify({"status": "ERROR", "reason": e.reason})

    lifecycle = get_services().lifecycle
    created = lifecycle.create_channel_request(create_request)
    outcome = lifecycle.channel_params(created.data["k1"])
    if not outcome.ok:
        return _lnurl_response(outcome)
    return jsonify(outcome.data)


@lnurl_bp.route("/channel/callback", methods=["GET"])
@limiter.limit(CALLBACK_RATE_LIMIT)
def channel_callback():
    return _lnurl_response(get_services().lifecycle.resolve_channel_request(request.args))
