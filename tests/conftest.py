"""
Pytest configuration and shared fixtures for LNURL server tests.
"""

import os
import secrets
import threading
from typing import Any, Dict, Optional

import pytest
from coincurve import PrivateKey
from coincurve.ecdsa import der_to_cdata, serialize_compact

# Set test environment before importing app
os.environ["FLASK_ENV"] = "testing"
os.environ["FLASK_SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["JWT_SECRET"] = "test-jwt-secret-for-session-tokens-only-0000"
os.environ["JWT_PRIVATE_KEY_PATH"] = "/nonexistent/private.pem"
os.environ["RPC_HOST"] = "localhost"
os.environ["RPC_PORT"] = "18443"
os.environ["RPC_USER"] = "test_user"
os.environ["RPC_PASSWORD"] = "test_password"
os.environ["LNURL_BASE_URL"] = "http://localhost:3000"
os.environ["LND_REST_URL"] = "https://lnd.test:8080"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["BACKGROUND_JOBS_ENABLED"] = "false"

from lnurl_server.config import get_config  # noqa: E402
from lnurl_server.database import Database  # noqa: E402
from lnurl_server.errors import OracleError  # noqa: E402
from lnurl_server.store import RequestLedger, SessionStore  # noqa: E402


class FakeLightningNode:
    """
    In-memory stand-in for the LND client.

    ``failures`` maps a method name to an exception raised on every call;
    ``calls`` counts invocations per method.
    """

    def __init__(self):
        self.invoices: Dict[str, Dict[str, Any]] = {}
        self.decoded: Dict[str, int] = {}
        self.decoded_msat: Dict[str, int] = {}
        self.paid: list = []
        self.opened: list = []
        self.failures: Dict[str, Exception] = {}
        self.calls: Dict[str, int] = {}
        self.uris = ["02" + "ab" * 32 + "@127.0.0.1:9735"]
        self._lock = threading.Lock()

    def _enter(self, method: str) -> None:
        with self._lock:
            self.calls[method] = self.calls.get(method, 0) + 1
        if method in self.failures:
            raise self.failures[method]

    def settle(self, payment_hash: str) -> None:
        self.invoices[payment_hash]["settled"] = True

    def add_invoice(self, amount_msat, memo=None, description_hash=None, expiry_seconds=3600):
        self._enter("add_invoice")
        payment_hash = secrets.token_hex(32)
        payment_request = f"lnbcrt{amount_msat // 1000}n1p{secrets.token_hex(20)}"
        self.invoices[payment_hash] = {
            "settled": False,
            "amount_msat": amount_msat,
            "description_hash": description_hash,
            "payment_request": payment_request,
        }
        return {"payment_request": payment_request, "payment_hash": payment_hash}

    def get_invoice_status(self, payment_hash):
        self._enter("get_invoice_status")
        invoice = self.invoices.get(payment_hash)
        if invoice is None:
            raise OracleError("invoice not found", 404)
        return {"settled": invoice["settled"]}

    def decode_invoice(self, payment_request):
        self._enter("decode_invoice")
        amount_msat = self.decoded_msat.get(payment_request, self.decoded.get(payment_request, 0) * 1000)
        return {
            "payment_hash": "ee" * 32,
            "amount_sats": amount_msat // 1000,
            "amount_msat": amount_msat,
            "description": "",
            "description_hash": None,
            "destination": "03" + "cd" * 32,
            "timestamp": 1700000000,
            "expiry": 3600,
            "cltv_expiry": 40,
            "fallback_address": None,
        }

    def pay_invoice(self, payment_request, amount_sats=None):
        self._enter("pay_invoice")
        with self._lock:
            self.paid.append((payment_request, amount_sats))
        return {"payment_hash": secrets.token_hex(32), "preimage": secrets.token_hex(32)}

    def get_new_funding_address(self):
        self._enter("get_new_funding_address")
        return {"address": "bcrt1qtestaddress0000000000000000000000000"}

    def get_node_info(self):
        self._enter("get_node_info")
        return {"identity_pubkey": "02" + "ab" * 32, "alias": "fake", "uris": list(self.uris)}

    def open_channel(self, remote_id, amount_sats, private=False):
        self._enter("open_channel")
        self.opened.append((remote_id, amount_sats, private))
        return {"funding_txid": "ff" * 32, "output_index": 0}


class FakeChain:
    def __init__(self, height: int = 150, error: Optional[Exception] = None):
        self.height = height
        self.error = error

    def get_block_height(self):
        if self.error is not None:
            raise self.error
        return self.height


class WalletKey:
    """secp256k1 linking key that signs k1 the way an LNURL-auth wallet does."""

    def __init__(self):
        self.private_key = PrivateKey()
        self.pubkey = self.private_key.public_key.format(compressed=True).hex()

    def sign_der(self, k1: str) -> str:
        return self.private_key.sign(bytes.fromhex(k1), hasher=None).hex()

    def sign_compact(self, k1: str) -> str:
        der = self.private_key.sign(bytes.fromhex(k1), hasher=None)
        return serialize_compact(der_to_cdata(der)).hex()

    def sign_lax_der(self, k1: str) -> str:
        """DER that strict parsers refuse: long-form lengths, zero padding, trailing byte."""
        compact = bytes.fromhex(self.sign_compact(k1))
        r, s = b"\x00\x00" + compact[:32], b"\x00" + compact[32:]
        body = b"\x02\x81" + bytes([len(r)]) + r + b"\x02" + bytes([len(s)]) + s
        return (b"\x30\x81" + bytes([len(body)]) + body + b"\x00").hex()

    def auth_params(self, k1: str, action: Optional[str] = None) -> Dict[str, str]:
        params = {"tag": "login", "k1": k1, "sig": self.sign_der(k1), "key": self.pubkey}
        if action:
            params["action"] = action
        return params


@pytest.fixture
def app_config():
    """Configuration as loaded from the test environment."""
    cfg = dict(get_config())
    cfg["BACKGROUND_JOBS_ENABLED"] = False
    cfg["RATE_LIMIT_ENABLED"] = False
    return cfg


@pytest.fixture
def database(tmp_path):
    """File-backed SQLite so worker threads share one database."""
    db = Database(f"sqlite:///{tmp_path / 'lnurl-test.db'}")
    db.create_all()
    yield db
    db.close()


@pytest.fixture
def sessions(database):
    return SessionStore(database)


@pytest.fixture
def ledger(database):
    return RequestLedger(database)


@pytest.fixture
def fake_node():
    return FakeLightningNode()


@pytest.fixture
def fake_chain():
    return FakeChain()


@pytest.fixture
def wallet():
    return WalletKey()


@pytest.fixture
def app(app_config, database, fake_node, fake_chain):
    """Create and configure a test Flask application instance."""
    from lnurl_server.factory import create_app

    flask_app = create_app(app_config, database=database, lightning=fake_node, chain=fake_chain)
    flask_app.config.update({"TESTING": True})
    yield flask_app


@pytest.fixture
def client(app):
    """Create a test client for the Flask application."""
    return app.test_client()


@pytest.fixture
def make_wallet():
    """Factory for additional wallet keys."""
    return WalletKey
