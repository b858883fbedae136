"""
Application Factory for the LNURL server

Implements the Flask application factory pattern with:
- Blueprint registration
- Database, Lightning node and bitcoind client wiring
- Error handlers mapping node and store faults to HTTP statuses
- Background settlement reconciler lifecycle
"""

import atexit
import logging
from dataclasses import dataclass
from typing import Any, Optional

from flask import Flask, current_app, jsonify

from lnurl_server.audit_logger import init_audit_logger
from lnurl_server.auth_engine import AuthEngine
from lnurl_server.config import AppConfig, get_config, validate_config
from lnurl_server.database import Database, init_database
from lnurl_server.errors import OracleError, OracleTransientError, StoreError
from lnurl_server.lifecycle import PaymentLifecycle
from lnurl_server.payments.chain import BitcoinRpcClient
from lnurl_server.payments.ln import LndRestClient
from lnurl_server.reconciler import SettlementReconciler
from lnurl_server.security import init_security
from lnurl_server.store import RequestLedger, SessionStore
from lnurl_server.tokens import TokenIssuer

logger = logging.getLogger(__name__)


@dataclass
class LnurlServices:
    """Per-app service graph, stored under ``app.extensions["lnurl"]``."""

    database: Database
    sessions: SessionStore
    ledger: RequestLedger
    lightning: Any
    chain: Any
    auth: AuthEngine
    lifecycle: PaymentLifecycle
    reconciler: SettlementReconciler


def get_services() -> LnurlServices:
    return current_app.extensions["lnurl"]


def create_app(
    config_override: Optional[AppConfig] = None,
    *,
    database: Optional[Database] = None,
    lightning: Any = None,
    chain: Any = None,
) -> Flask:
    """
    Create and configure the Flask application using the factory pattern.

    Args:
        config_override: Optional configuration override for testing
        database: Pre-built Database (tests pass a temporary SQLite one)
        lightning: Settlement oracle; defaults to the LND REST client
        chain: Chain oracle; defaults to the bitcoind RPC client

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    cfg = config_override or get_config()
    validate_config(cfg)
    app.config["APP_CONFIG"] = cfg
    app.secret_key = cfg.get("FLASK_SECRET_KEY") or "dev-only-secret"

    init_security(app, cfg)
    audit = init_audit_logger()

    database = database or init_database(cfg)
    lightning = lightning or LndRestClient.from_config(cfg)
    chain = chain or BitcoinRpcClient.from_config(cfg)

    sessions = SessionStore(database)
    ledger = RequestLedger(database)
    services = LnurlServices(
        database=database,
        sessions=sessions,
        ledger=ledger,
        lightning=lightning,
        chain=chain,
        auth=AuthEngine.from_config(sessions, cfg, token_issuer=TokenIssuer(cfg)),
        lifecycle=PaymentLifecycle(ledger, lightning, cfg),
        reconciler=SettlementReconciler(
            ledger,
            sessions,
            lightning,
            payment_interval=cfg["PAYMENT_CHECK_INTERVAL_SECONDS"],
            cleanup_interval=cfg["AUTH_CLEANUP_INTERVAL_SECONDS"],
            item_timeout=cfg.get("ORACLE_TIMEOUT_SECONDS", 10),
        ),
    )
    app.extensions["lnurl"] = services

    register_blueprints(app)
    register_error_handlers(app)

    if cfg.get("BACKGROUND_JOBS_ENABLED"):
        services.reconciler.start()
        atexit.register(services.reconciler.stop)

    audit.log_event("app.started", base_url=cfg["LNURL_BASE_URL"])
    logger.info("LNURL server ready at %s", cfg["LNURL_BASE_URL"])
    return app


def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""

    # Wallet-facing LNURL endpoints (auth, pay, withdraw, channel)
    from lnurl_server.blueprints.lnurl import lnurl_bp
    app.register_blueprint(lnurl_bp)

    # LNURL generators
    from lnurl_server.blueprints.generate import generate_bp
    app.register_blueprint(generate_bp, url_prefix="/generate")

    # bolt11 / LNURL decoding helpers
    from lnurl_server.blueprints.decoder import decoder_bp
    app.register_blueprint(decoder_bp)

    # Admin/operations blueprint (health, listings, metrics)
    from lnurl_server.blueprints.admin import admin_bp
    app.register_blueprint(admin_bp)


def register_error_handlers(app: Flask) -> None:
    """Register global error handlers."""

    @app.errorhandler(OracleTransientError)
    def oracle_unavailable(e):
        logger.warning(f"Lightning node unavailable: {e}")
        return jsonify({"status": "ERROR", "reason": "Lightning node unavailable, try again", "retryable": True}), 503

    @app.errorhandler(OracleError)
    def oracle_rejected(e):
        logger.warning(f"Lightning node rejected request: {e}")
        return jsonify({"status": "ERROR", "reason": str(e)}), 502

    @app.errorhandler(StoreError)
    def store_failed(e):
        logger.error(f"Storage failure: {e}", exc_info=True)
        return jsonify({"status": "ERROR", "reason": "Internal storage error"}), 500

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"status": "ERROR", "reason": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"status": "ERROR", "reason": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limit_exceeded(e):
        return jsonify({"status": "ERROR", "reason": f"Rate limit exceeded: {e.description}"}), 429

    @app.errorhandler(500)
    def internal_error(e):
        logger.error(f"Internal server error: {e}", exc_info=True)
        return jsonify({"status": "ERROR", "reason": "An unexpected error occurred"}), 500
