"""
Generate Blueprint - LNURL creation endpoints

Returns the plain callback URL and its bech32 ``lnurl`` encoding for each
protocol. Rendering QR codes is left to the caller.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from lnurl_server import utils
from lnurl_server.errors import ValidationError
from lnurl_server.factory import get_services
from lnurl_server.protocol import PayConfigRequest
from lnurl_server.security import limiter

logger = logging.getLogger(__name__)

generate_bp = Blueprint("generate", __name__)

GENERATE_RATE_LIMIT = "30 per minute"
GENERATE_TYPES = ("withdraw", "pay", "channel", "auth")


def _static_link(path: str, link_type: str):
    base_url = current_app.config["APP_CONFIG"]["LNURL_BASE_URL"].rstrip("/")
    url = f"{base_url}/{path}"
    return jsonify({"url": url, "lnurl": utils.encode_lnurl(url), "type": link_type})


@generate_bp.route("/<link_type>", methods=["GET"])
@limiter.limit(GENERATE_RATE_LIMIT)
def generate(link_type: str):
    """
    Create an LNURL of the given type.

    ``pay`` accepts ``minSendable``, ``maxSendable`` and ``commentAllowed``;
    ``auth`` accepts ``action``.
    """
    services = get_services()

    if link_type == "withdraw":
        return _static_link("withdraw", "withdraw")
    if link_type == "channel":
        return _static_link("channel", "channel")

    if link_type == "pay":
        try:
            config_request = PayConfigRequest.parse(request.args)
        except ValidationError as e:
            return jsonify({"status": "ERROR", "reason": e.reason}), 400
        outcome = services.lifecycle.create_pay_request(config_request)
    elif link_type == "auth":
        outcome = services.auth.issue_challenge(request.args.get("action") or "login")
    else:
        return jsonify({"status": "ERROR", "reason": f"Invalid type. Use one of: {', '.join(GENERATE_TYPES)}"}), 400

    if not outcome.ok:
        return jsonify(outcome.to_lnurl()), 400
    return jsonify({**outcome.data, "type": link_type})
