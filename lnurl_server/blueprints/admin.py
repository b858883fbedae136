"""
Admin Blueprint - Health Checks, Listings, Metrics and Operational Endpoints

Provides monitoring endpoints and read-only views over the ledgers.
"""

import logging
import time
from typing import Any, Dict

from flask import Blueprint, Response, current_app, jsonify
from prometheus_client import generate_latest

from lnurl_server import utils
from lnurl_server.errors import OracleError
from lnurl_server.factory import get_services
from lnurl_server.metrics import registry

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__)


@admin_bp.route("/health")
def health():
    """
    Health check covering bitcoind, the Lightning node and the database.

    Returns:
        JSON health status; 503 if any component is unreachable
    """
    services = get_services()
    cfg = current_app.config["APP_CONFIG"]
    health_status: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": time.time(),
        "service": cfg.get("APP_NAME", "LNURL Server"),
        "version": cfg.get("APP_VERSION", "1.0.0"),
        "domain": cfg["LNURL_BASE_URL"],
        "bitcoin_connected": False,
        "lnd_connected": False,
        "block_height": None,
        "lnd_info": None,
    }

    try:
        health_status["block_height"] = services.chain.get_block_height()
        health_status["bitcoin_connected"] = True
    except OracleError as e:
        logger.warning(f"Bitcoin RPC health check failed: {e}")
        health_status["status"] = "unhealthy"

    try:
        health_status["lnd_info"] = services.lightning.get_node_info()
        health_status["lnd_connected"] = True
    except OracleError as e:
        logger.warning(f"LND health check failed: {e}")
        health_status["status"] = "unhealthy"

    database = services.database.check_health()
    health_status["database"] = database
    if not database["connected"]:
        health_status["status"] = "unhealthy"
        health_status["auth_sessions"] = None
    else:
        health_status["auth_sessions"] = services.sessions.stats()

    health_status["background_jobs"] = "running" if services.reconciler.running else "stopped"
    return jsonify(health_status), 200 if health_status["status"] == "healthy" else 503


@admin_bp.route("/payments")
def list_payments():
    payments = get_services().ledger.list_payment_requests()
    return jsonify({
        "payments": [
            {
                "id": p["payment_id"],
                "amount_sats": p["amount_sats"],
                "description": p["description"],
                "comment": p["comment"],
                "paid": p["paid"],
                "created_at": p["created_at"],
            }
            for p in payments
        ]
    })


@admin_bp.route("/withdrawals")
def list_withdrawals():
    withdrawals = get_services().ledger.list_withdrawals()
    return jsonify({
        "withdrawals": [
            {
                "k1": w["k1"],
                "amount_sats": w["amount_sats"],
                "used": w["used"],
                "created_at": w["created_at"],
                "used_at": w["used_at"],
            }
            for w in withdrawals
        ]
    })


@admin_bp.route("/channels")
def list_channels():
    channels = get_services().ledger.list_channel_requests()
    return jsonify({
        "channels": [
            {
                "k1": c["k1"],
                "remote_id": c["remote_id"],
                "private": c["private"],
                "cancelled": c["cancelled"],
                "completed": c["completed"],
                "funding_txid": c["funding_txid"],
                "created_at": c["created_at"],
            }
            for c in channels
        ]
    })


@admin_bp.route("/sessions")
def list_sessions():
    sessions = get_services().sessions.list_all()
    return jsonify({
        "sessions": [
            {
                "id": s["session_id"],
                "k1": s["k1"],
                "pubkey": s["pubkey"],
                "authenticated": s["authenticated"],
                "created_at": s["created_at"],
                "expires_at": s["expires_at"],
            }
            for s in sessions
        ]
    })


@admin_bp.route("/payment/<payment_id>/status")
def payment_status(payment_id: str):
    """
    Settlement status of a pay config.

    Returns:
        JSON status; 404 for unknown payments
    """
    if not utils.is_valid_payment_id(payment_id):
        return jsonify({"error": "Payment not found"}), 404
    status = get_services().lifecycle.get_payment_status(payment_id)
    if status is None:
        return jsonify({"error": "Payment not found"}), 404
    return jsonify(status)


@admin_bp.route("/address")
def new_address():
    """Fresh on-chain address from the Lightning node wallet, for funding."""
    return jsonify(get_services().lightning.get_new_funding_address())


@admin_bp.route("/metrics/prometheus")
def metrics_prometheus():
    """
    Prometheus metrics endpoint.

    Returns:
        Prometheus text format metrics
    """
    return Response(generate_latest(registry), mimetype="text/plain; version=0.0.4")
