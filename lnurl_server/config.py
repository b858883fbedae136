"""Configuration management for the LNURL server.

Centralises environment variable loading and validation logic while keeping the
public API intentionally simple.
"""

from __future__ import annotations

import os
from typing import Any, Mapping, Optional, TypedDict

_TRUTHY_VALUES = {"1", "true", "yes", "on"}


class AppConfig(TypedDict):
    """Typed representation of the application's configuration."""

    LNURL_BASE_URL: str
    FLASK_SECRET_KEY: Optional[str]
    FLASK_ENV: str
    LOG_LEVEL: str
    DATABASE_URL: str
    RPC_HOST: str
    RPC_PORT: int
    RPC_USER: str
    RPC_PASSWORD: str
    LND_REST_URL: str
    LND_MACAROON_PATH: Optional[str]
    LND_MACAROON_HEX: Optional[str]
    LND_TLS_CERT_PATH: Optional[str]
    ORACLE_TIMEOUT_SECONDS: int
    MIN_WITHDRAWABLE: int
    MAX_WITHDRAWABLE: int
    WITHDRAW_AMOUNT_SATS: int
    MIN_SENDABLE: int
    MAX_SENDABLE: int
    COMMENT_ALLOWED: int
    CHANNEL_AMOUNT_SATS: int
    SESSION_TIMEOUT_SECONDS: int
    PAYMENT_CHECK_INTERVAL_SECONDS: int
    AUTH_CLEANUP_INTERVAL_SECONDS: int
    BACKGROUND_JOBS_ENABLED: bool
    INVOICE_EXPIRY_SECONDS: int
    PAY_DESCRIPTION: str
    WITHDRAW_DESCRIPTION: str
    JWT_ALGORITHM: str
    JWT_PRIVATE_KEY_PATH: str
    JWT_SECRET: str
    JWT_ISSUER: str
    JWT_EXPIRATION_HOURS: int
    RATE_LIMIT_ENABLED: bool
    RATE_LIMIT_DEFAULT: str
    REDIS_URL: Optional[str]
    APP_NAME: str
    APP_VERSION: str
    APP_HOST: str
    APP_PORT: int


def _get_env_bool(name: str, default: bool) -> bool:
    """Return an environment variable as a boolean."""

    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in _TRUTHY_VALUES


def _get_env_int(name: str, default: int) -> int:
    """Return an environment variable as an integer, raising on invalid input."""

    raw_value = os.getenv(name)
    if raw_value is None or raw_value == "":
        return default

    try:
        return int(raw_value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer (got {raw_value!r})") from exc


def get_config() -> AppConfig:
    """Load application configuration from environment variables."""

    port = _get_env_int("APP_PORT", 3000)
    return {
        # Public URL wallets use to reach the callbacks
        "LNURL_BASE_URL": os.getenv("LNURL_BASE_URL", f"http://localhost:{port}").rstrip("/"),
        # Flask Configuration
        "FLASK_SECRET_KEY": os.getenv("FLASK_SECRET_KEY"),
        "FLASK_ENV": os.getenv("FLASK_ENV", "development"),
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
        "DATABASE_URL": os.getenv("DATABASE_URL", "sqlite:///lnurl.db"),
        # Bitcoin RPC Configuration (chain height only)
        "RPC_HOST": os.getenv("RPC_HOST", "127.0.0.1"),
        "RPC_PORT": _get_env_int("RPC_PORT", 18443),
        "RPC_USER": os.getenv("RPC_USER", "polaruser"),
        "RPC_PASSWORD": os.getenv("RPC_PASSWORD", "polarpass"),
        # LND REST Configuration
        "LND_REST_URL": os.getenv("LND_REST_URL", "https://localhost:8080").rstrip("/"),
        "LND_MACAROON_PATH": os.getenv("LND_MACAROON_PATH"),
        "LND_MACAROON_HEX": os.getenv("LND_MACAROON_HEX"),
        "LND_TLS_CERT_PATH": os.getenv("LND_TLS_CERT_PATH"),
        "ORACLE_TIMEOUT_SECONDS": _get_env_int("ORACLE_TIMEOUT_SECONDS", 10),
        # LNURL limits (millisatoshis unless stated otherwise)
        "MIN_WITHDRAWABLE": _get_env_int("MIN_WITHDRAWABLE", 1000),
        "MAX_WITHDRAWABLE": _get_env_int("MAX_WITHDRAWABLE", 100_000_000),
        "WITHDRAW_AMOUNT_SATS": _get_env_int("WITHDRAW_AMOUNT_SATS", 100),
        "MIN_SENDABLE": _get_env_int("MIN_SENDABLE", 1000),
        "MAX_SENDABLE": _get_env_int("MAX_SENDABLE", 1_000_000_000),
        "COMMENT_ALLOWED": _get_env_int("COMMENT_ALLOWED", 255),
        "CHANNEL_AMOUNT_SATS": _get_env_int("CHANNEL_AMOUNT_SATS", 100_000),
        "SESSION_TIMEOUT_SECONDS": _get_env_int("SESSION_TIMEOUT_SECONDS", 600),
        "INVOICE_EXPIRY_SECONDS": _get_env_int("INVOICE_EXPIRY_SECONDS", 3600),
        "PAY_DESCRIPTION": os.getenv("PAY_DESCRIPTION", "LNURL-pay payment"),
        "WITHDRAW_DESCRIPTION": os.getenv("WITHDRAW_DESCRIPTION", "LNURL-withdraw"),
        # Background jobs
        "PAYMENT_CHECK_INTERVAL_SECONDS": _get_env_int("PAYMENT_CHECK_INTERVAL_SECONDS", 10),
        "AUTH_CLEANUP_INTERVAL_SECONDS": _get_env_int("AUTH_CLEANUP_INTERVAL_SECONDS", 300),
        "BACKGROUND_JOBS_ENABLED": _get_env_bool("BACKGROUND_JOBS_ENABLED", True),
        # JWT Configuration
        "JWT_ALGORITHM": os.getenv("JWT_ALGORITHM", "RS256"),
        "JWT_PRIVATE_KEY_PATH": os.getenv("JWT_PRIVATE_KEY_PATH", "keys/private.pem"),
        "JWT_SECRET": os.getenv("JWT_SECRET", "dev-secret-CHANGE-ME-IN-PRODUCTION"),
        "JWT_ISSUER": os.getenv("JWT_ISSUER") or os.getenv("LNURL_BASE_URL", f"http://localhost:{port}"),
        "JWT_EXPIRATION_HOURS": _get_env_int("JWT_EXPIRATION_HOURS", 24),
        # Rate Limiting
        "RATE_LIMIT_ENABLED": _get_env_bool("RATE_LIMIT_ENABLED", True),
        "RATE_LIMIT_DEFAULT": os.getenv("RATE_LIMIT_DEFAULT", "100/minute"),
        "REDIS_URL": os.getenv("REDIS_URL") or os.getenv("REDIS_DSN"),
        # Application Settings
        "APP_NAME": os.getenv("APP_NAME", "LNURL Server"),
        "APP_VERSION": os.getenv("APP_VERSION", "1.0.0"),
        "APP_HOST": os.getenv("APP_HOST", "0.0.0.0"),
        "APP_PORT": port,
    }


def validate_config(config: Mapping[str, Any]) -> bool:
    """Validate critical configuration values.

    Args:
        config: Configuration mapping to validate.

    Returns:
        True if configuration is valid, raises ValueError otherwise.
    """

    if not 0 < config["MIN_SENDABLE"] <= config["MAX_SENDABLE"]:
        raise ValueError("MIN_SENDABLE must be positive and not greater than MAX_SENDABLE")

    if not 0 < config["MIN_WITHDRAWABLE"] <= config["MAX_WITHDRAWABLE"]:
        raise ValueError("MIN_WITHDRAWABLE must be positive and not greater than MAX_WITHDRAWABLE")

    withdraw_msat = config["WITHDRAW_AMOUNT_SATS"] * 1000
    if not config["MIN_WITHDRAWABLE"] <= withdraw_msat <= config["MAX_WITHDRAWABLE"]:
        raise ValueError("WITHDRAW_AMOUNT_SATS must lie within the withdrawable limits")

    if config["COMMENT_ALLOWED"] < 0:
        raise ValueError("COMMENT_ALLOWED must not be negative")

    if config["SESSION_TIMEOUT_SECONDS"] <= 0:
        raise ValueError("SESSION_TIMEOUT_SECONDS must be positive")

    # Check for insecure defaults in production
    if config.get("FLASK_ENV") == "production":
        if not config.get("FLASK_SECRET_KEY"):
            raise ValueError("FLASK_SECRET_KEY must be set for production!")

        if config.get("RPC_PASSWORD") == "polarpass":
            raise ValueError("RPC_PASSWORD must be set for production!")

        if str(config.get("JWT_ALGORITHM", "")).upper() == "HS256" and config.get(
            "JWT_SECRET"
        ) == "dev-secret-CHANGE-ME-IN-PRODUCTION":
            raise ValueError("JWT_SECRET must be changed for production!")

        if not (config.get("LND_MACAROON_PATH") or config.get("LND_MACAROON_HEX")):
            import warnings

            warnings.warn("LND macaroon not configured - node calls will be rejected!", stacklevel=2)

    return True
