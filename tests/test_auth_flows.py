"""
LNURL-auth Flow Tests

Covers challenge issuance, signature verification, expiry, key binding
and session polling through the AuthEngine.
"""

import threading
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import jwt
import pytest

from lnurl_server.auth_engine import INVALID_CHALLENGE, AuthEngine
from lnurl_server.models import utc_now
from lnurl_server.tokens import TokenIssuer


class FrozenClock:
    def __init__(self):
        self.now = utc_now()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def engine(sessions, clock, app_config):
    return AuthEngine(
        sessions,
        "http://localhost:3000",
        session_timeout=600,
        token_issuer=TokenIssuer(app_config),
        clock=clock,
    )


class TestIssueChallenge:
    def test_challenge_url_embeds_k1_and_action(self, engine):
        outcome = engine.issue_challenge("register")

        assert outcome.ok
        query = parse_qs(urlparse(outcome.data["url"]).query)
        assert query["tag"] == ["login"]
        assert query["k1"] == [outcome.data["k1"]]
        assert query["action"] == ["register"]
        assert outcome.data["lnurl"].startswith("LNURL1")
        assert outcome.data["session_id"] != outcome.data["k1"]

    def test_action_defaults_to_login(self, engine):
        assert engine.issue_challenge(None).data["action"] == "login"

    def test_unknown_action_rejected(self, engine, sessions):
        outcome = engine.issue_challenge("logout")
        assert not outcome.ok
        assert "Invalid action parameter" in outcome.reason
        assert sessions.list_all() == []


class TestVerify:
    def test_valid_signature_authenticates(self, engine, wallet):
        challenge = engine.issue_challenge().data

        outcome = engine.verify(wallet.auth_params(challenge["k1"], "login"))

        assert outcome.to_lnurl() == {"status": "OK"}
        status = engine.poll(challenge["session_id"])
        assert status["authenticated"] is True
        assert status["pubkey"] == wallet.pubkey
        assert status["authenticated_at"] is not None

    def test_compact_signature_authenticates(self, engine, wallet):
        k1 = engine.issue_challenge().data["k1"]
        params = {"k1": k1, "sig": wallet.sign_compact(k1), "key": wallet.pubkey}
        assert engine.verify(params).ok

    def test_lax_der_signature_authenticates(self, engine, wallet):
        k1 = engine.issue_challenge().data["k1"]
        params = {"k1": k1, "sig": wallet.sign_lax_der(k1), "key": wallet.pubkey}
        assert engine.verify(params).ok

    def test_invalid_signature_leaves_session_pending(self, engine, wallet):
        challenge = engine.issue_challenge().data
        params = wallet.auth_params(challenge["k1"])
        params["sig"] = wallet.sign_der("00" * 32)

        outcome = engine.verify(params)

        assert outcome.reason == "Invalid signature"
        assert engine.poll(challenge["session_id"]) == {"authenticated": False}

    def test_expired_and_unknown_k1_are_indistinguishable(self, engine, wallet, clock):
        challenge = engine.issue_challenge().data
        clock.advance(seconds=601)

        expired = engine.verify(wallet.auth_params(challenge["k1"]))
        unknown = engine.verify(wallet.auth_params("ef" * 32))

        assert expired.reason == unknown.reason == INVALID_CHALLENGE

    def test_expired_session_rejected_even_with_valid_signature(self, engine, wallet, clock):
        challenge = engine.issue_challenge().data
        clock.advance(seconds=600)
        assert not engine.verify(wallet.auth_params(challenge["k1"])).ok

    def test_malformed_input_is_structured_rejection(self, engine):
        outcome = engine.verify({"k1": "abc", "sig": "zz", "key": "02"})
        assert not outcome.ok
        assert "Invalid k1 parameter" in outcome.reason

    def test_missing_parameters(self, engine):
        outcome = engine.verify({"tag": "login"})
        assert outcome.reason.startswith("Missing required parameters")

    def test_same_key_reverify_succeeds(self, engine, wallet):
        k1 = engine.issue_challenge().data["k1"]
        assert engine.verify(wallet.auth_params(k1)).ok
        assert engine.verify(wallet.auth_params(k1)).ok

    def test_second_key_cannot_take_over(self, engine, wallet, make_wallet):
        challenge = engine.issue_challenge().data
        intruder = make_wallet()

        assert engine.verify(wallet.auth_params(challenge["k1"])).ok
        outcome = engine.verify(intruder.auth_params(challenge["k1"]))

        assert not outcome.ok
        assert engine.poll(challenge["session_id"])["pubkey"] == wallet.pubkey

    def test_action_mismatch_does_not_block(self, engine, wallet):
        challenge = engine.issue_challenge("login").data
        assert engine.verify(wallet.auth_params(challenge["k1"], "register")).ok

    def test_racing_keys_bind_exactly_one(self, engine, make_wallet):
        challenge = engine.issue_challenge().data
        wallets = [make_wallet() for _ in range(4)]
        results = [None] * len(wallets)
        barrier = threading.Barrier(len(wallets))

        def attempt(i):
            barrier.wait()
            results[i] = engine.verify(wallets[i].auth_params(challenge["k1"])).ok

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(len(wallets))]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        winner = wallets[results.index(True)]
        assert engine.poll(challenge["session_id"])["pubkey"] == winner.pubkey


class TestPoll:
    def test_unknown_session(self, engine):
        assert engine.poll("nope") == {"authenticated": False}

    def test_poll_returns_session_token(self, engine, wallet, app_config):
        challenge = engine.issue_challenge().data
        engine.verify(wallet.auth_params(challenge["k1"]))

        token = engine.poll(challenge["session_id"])["token"]
        claims = jwt.decode(token, app_config["JWT_SECRET"], algorithms=["HS256"])
        assert claims["sub"] == wallet.pubkey
        assert claims["sid"] == challenge["session_id"]

    def test_poll_after_expiry(self, engine, wallet, clock):
        challenge = engine.issue_challenge().data
        engine.verify(wallet.auth_params(challenge["k1"]))
        clock.advance(seconds=601)
        assert engine.poll(challenge["session_id"]) == {"authenticated": False}
