"""
Unit tests for typed protocol request parsing.
"""

import pytest

from lnurl_server.errors import ValidationError
from lnurl_server.protocol import (
    AuthVerifyRequest,
    ChannelCreateRequest,
    ChannelResolveRequest,
    Outcome,
    PayConfigRequest,
    PayInvoiceRequest,
    WithdrawRedeemRequest,
)

K1 = "ab" * 32
REMOTE_ID = "02" + "cd" * 32


class TestOutcome:
    def test_success_wire_form(self):
        assert Outcome.success(pr="lnbc1", routes=[]).to_lnurl() == {"status": "OK", "pr": "lnbc1", "routes": []}

    def test_rejection_wire_form(self):
        assert Outcome.rejected("nope").to_lnurl() == {"status": "ERROR", "reason": "nope"}


class TestAuthVerifyRequest:
    def test_valid_request_is_lowercased(self, wallet):
        k1 = K1.upper()
        request = AuthVerifyRequest.parse(
            {"k1": k1, "sig": wallet.sign_der(K1).upper(), "key": wallet.pubkey.upper(), "action": "login"}
        )
        assert request.k1 == K1
        assert request.key == wallet.pubkey
        assert request.action == "login"

    def test_missing_parameters(self):
        with pytest.raises(ValidationError, match="Missing required parameters"):
            AuthVerifyRequest.parse({"k1": K1})

    def test_all_problems_reported_together(self):
        with pytest.raises(ValidationError) as exc:
            AuthVerifyRequest.parse({"k1": "abc", "sig": "00", "key": "02abc", "action": "dance"})

        reason = exc.value.reason
        assert "Invalid k1 parameter" in reason
        assert "Invalid sig parameter" in reason
        assert "Invalid key parameter" in reason
        assert "Invalid action parameter" in reason

    def test_key_must_be_on_curve(self, wallet):
        with pytest.raises(ValidationError, match="Invalid key parameter"):
            AuthVerifyRequest.parse({"k1": K1, "sig": wallet.sign_der(K1), "key": "02" + "00" * 32})

    def test_compact_signature_accepted(self, wallet):
        request = AuthVerifyRequest.parse({"k1": K1, "sig": wallet.sign_compact(K1), "key": wallet.pubkey})
        assert request.action is None


class TestPayRequests:
    def test_config_defaults_to_none(self):
        request = PayConfigRequest.parse({})
        assert request == PayConfigRequest(None, None, None)

    def test_config_explicit_values(self):
        request = PayConfigRequest.parse({"minSendable": "1000", "maxSendable": "1000", "commentAllowed": "0"})
        assert (request.min_sendable, request.max_sendable, request.comment_allowed) == (1000, 1000, 0)

    def test_config_non_integer(self):
        with pytest.raises(ValidationError, match="Invalid minSendable parameter"):
            PayConfigRequest.parse({"minSendable": "lots"})

    def test_invoice_requires_amount(self):
        with pytest.raises(ValidationError, match="Missing amount parameter"):
            PayInvoiceRequest.parse("ab" * 16, {})

    def test_invoice_rejects_non_positive_amount(self):
        with pytest.raises(ValidationError, match="Invalid amount parameter"):
            PayInvoiceRequest.parse("ab" * 16, {"amount": "0"})

    def test_invoice_rejects_bad_payment_id(self):
        with pytest.raises(ValidationError, match="Invalid payment id"):
            PayInvoiceRequest.parse("xyz", {"amount": "1000"})

    def test_invoice_with_comment(self):
        request = PayInvoiceRequest.parse("ab" * 16, {"amount": "5000", "comment": "thanks"})
        assert request.amount_msat == 5000
        assert request.comment == "thanks"


class TestWithdrawRedeemRequest:
    def test_valid(self):
        request = WithdrawRedeemRequest.parse({"k1": K1, "pr": "lnbcrt100n1pabc"})
        assert request.pr == "lnbcrt100n1pabc"

    def test_bad_invoice_prefix(self):
        with pytest.raises(ValidationError, match="Invalid payment request"):
            WithdrawRedeemRequest.parse({"k1": K1, "pr": "bitcoin:bc1q"})


class TestChannelRequests:
    def test_cancel_only_needs_k1(self):
        request = ChannelResolveRequest.parse({"k1": K1, "cancel": "1"})
        assert request.cancel is True
        assert request.remote_id is None

    def test_cancel_still_validates_k1(self):
        with pytest.raises(ValidationError, match="Invalid k1 parameter"):
            ChannelResolveRequest.parse({"k1": "short", "cancel": "1"})

    def test_open_requires_remote_id(self):
        with pytest.raises(ValidationError, match="Invalid remoteid parameter"):
            ChannelResolveRequest.parse({"k1": K1})

    def test_open_with_private_flag(self):
        request = ChannelResolveRequest.parse({"k1": K1, "remoteid": REMOTE_ID, "private": "1"})
        assert request.private is True
        assert request.remote_id == REMOTE_ID

    def test_invalid_private_flag(self):
        with pytest.raises(ValidationError, match="Invalid private parameter"):
            ChannelResolveRequest.parse({"k1": K1, "remoteid": REMOTE_ID, "private": "yes"})

    def test_create_without_remote_id(self):
        assert ChannelCreateRequest.parse({}) == ChannelCreateRequest(None, False)

    def test_create_with_invalid_remote_id(self):
        with pytest.raises(ValidationError):
            ChannelCreateRequest.parse({"remoteid": "02xyz"})
