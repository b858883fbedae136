"""
Decoder Blueprint - bolt11 and LNURL conversion helpers

JSON API for inspecting what wallets are handed: bolt11 invoices are
decoded by the Lightning node, LNURLs are converted with bech32 locally.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from flask import Blueprint, jsonify, request

from lnurl_server import utils
from lnurl_server.errors import OracleError, OracleTransientError
from lnurl_server.factory import get_services
from lnurl_server.security import limiter

logger = logging.getLogger(__name__)

decoder_bp = Blueprint("decoder", __name__)

DECODER_RATE_LIMIT = "30 per minute"

# Longest prefix first: lnbcrt must not be read as lnbc
_NETWORKS = (("lnbcrt", "regtest"), ("lntbs", "signet"), ("lntb", "testnet"), ("lnbc", "bitcoin"))


def _body() -> Mapping[str, Any]:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form


def _network(invoice: str) -> Optional[str]:
    lowered = invoice.lower()
    for prefix, network in _NETWORKS:
        if lowered.startswith(prefix):
            return network
    return None


def _iso(timestamp: int) -> Optional[str]:
    if not timestamp:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def _describe_invoice(invoice: str, decoded: Dict[str, Any]) -> Dict[str, Any]:
    amount_msat = decoded.get("amount_msat") or 0
    timestamp = decoded.get("timestamp") or 0
    expiry = decoded.get("expiry") or 0
    return {
        "paymentHash": decoded.get("payment_hash"),
        "description": decoded.get("description") or None,
        "descriptionHash": decoded.get("description_hash"),
        "payeeNodeKey": decoded.get("destination"),
        "amount": {
            "millisatoshis": amount_msat,
            "satoshis": amount_msat // 1000,
            "btc": amount_msat / 100_000_000_000,
        } if amount_msat else None,
        "timestamp": timestamp or None,
        "timestampString": _iso(timestamp),
        "expiry": expiry or None,
        "expiryString": _iso(timestamp + expiry) if timestamp and expiry else None,
        "minFinalCltvExpiry": decoded.get("cltv_expiry") or None,
        "fallbackAddresses": [decoded["fallback_address"]] if decoded.get("fallback_address") else [],
        "network": _network(invoice),
    }


@decoder_bp.route("/lightning", methods=["POST"])
@limiter.limit(DECODER_RATE_LIMIT)
def decode_lightning():
    """
    Decode a bolt11 invoice via the node.

    Body: ``{"invoice": "lnbc..."}``. An unreachable node is a 503 like
    everywhere else; a node that refuses the invoice makes it a 400.
    """
    invoice = _body().get("invoice")
    if not invoice:
        return jsonify({"error": "Missing invoice parameter"}), 400

    if isinstance(invoice, str):
        invoice = invoice.strip()
        if invoice.lower().startswith("lightning:"):
            invoice = invoice[len("lightning:"):]
    if not utils.is_valid_payment_request(invoice):
        return jsonify({"success": False, "error": "Invalid Lightning invoice: unrecognised format"}), 400

    try:
        decoded = get_services().lightning.decode_invoice(invoice)
    except OracleTransientError:
        raise
    except OracleError as e:
        logger.info(f"Node could not decode invoice: {e}")
        return jsonify({"success": False, "error": f"Invalid Lightning invoice: {e}"}), 400

    logger.info(
        "Lightning invoice decoded: payment_hash=%s amount_msat=%s",
        decoded.get("payment_hash"),
        decoded.get("amount_msat"),
    )
    return jsonify({"success": True, "invoice": invoice, "decoded": _describe_invoice(invoice, decoded)})


@decoder_bp.route("/lnurl/decode", methods=["POST"])
@limiter.limit(DECODER_RATE_LIMIT)
def decode_lnurl():
    lnurl_string = _body().get("lnurlString")
    if not lnurl_string:
        return jsonify({"error": "Missing lnurlString parameter"}), 400
    if not isinstance(lnurl_string, str):
        return jsonify({"success": False, "error": "Invalid LNURL: expected a string"}), 400

    try:
        url = utils.decode_lnurl(lnurl_string)
    except ValueError as e:
        logger.info(f"LNURL decode failed: {e}")
        return jsonify({"success": False, "error": f"Invalid LNURL: {e}"}), 400

    return jsonify({"success": True, "lnurl": lnurl_string, "decoded": url})


@decoder_bp.route("/lnurl/encode", methods=["POST"])
@limiter.limit(DECODER_RATE_LIMIT)
def encode_lnurl():
    url = _body().get("url")
    if not url:
        return jsonify({"error": "Missing url parameter"}), 400
    if not utils.is_valid_url(url):
        reason = "Invalid URL or encoding error: expected an absolute http(s) URL"
        return jsonify({"success": False, "error": reason}), 400

    return jsonify({"success": True, "url": url, "encoded": utils.encode_lnurl(url)})
