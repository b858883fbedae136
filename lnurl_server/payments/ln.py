"""Lightning Network node integration (LND REST) for the LNURL server."""

import base64
import logging
from typing import Any, Dict, Mapping, Optional

import requests

from lnurl_server.errors import OracleError, OracleTransientError

logger = logging.getLogger(__name__)


def _hash_to_hex(value: Optional[str]) -> Optional[str]:
    """LND returns hashes base64-encoded in JSON; convert to hex."""
    if not value:
        return None
    return base64.b64decode(value).hex()


def _load_macaroon(cfg: Mapping[str, Any]) -> Optional[str]:
    if cfg.get("LND_MACAROON_HEX"):
        return str(cfg["LND_MACAROON_HEX"])
    path = cfg.get("LND_MACAROON_PATH")
    if path:
        with open(path, "rb") as fh:
            return fh.read().hex()
    return None


class LndRestClient:
    """
    Settlement oracle backed by an LND node's REST API.

    All calls share one bounded timeout. Timeouts, connection failures and
    5xx answers raise OracleTransientError (outcome unknown); 4xx answers
    raise OracleError (the node said no).
    """

    def __init__(
        self,
        base_url: str,
        macaroon_hex: Optional[str] = None,
        tls_cert_path: Optional[str] = None,
        timeout: float = 10,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        if macaroon_hex:
            self.session.headers["Grpc-Metadata-macaroon"] = macaroon_hex
        # LND ships a self-signed cert; pin it when configured
        self.session.verify = tls_cert_path or True

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "LndRestClient":
        return cls(
            cfg["LND_REST_URL"],
            macaroon_hex=_load_macaroon(cfg),
            tls_cert_path=cfg.get("LND_TLS_CERT_PATH"),
            timeout=cfg.get("ORACLE_TIMEOUT_SECONDS", 10),
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise OracleTransientError(f"LND {method} {path} timed out") from e
        except requests.RequestException as e:
            raise OracleTransientError(f"LND {method} {path} failed: {e}") from e

        if resp.status_code >= 500:
            raise OracleTransientError(f"LND {method} {path} failed: {resp.status_code} {resp.text}", resp.status_code)
        if resp.status_code >= 300:
            raise OracleError(f"LND {method} {path} rejected: {resp.status_code} {resp.text}", resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise OracleTransientError(f"LND {method} {path} returned invalid JSON") from e

    def get_invoice_status(self, payment_hash: str) -> Dict[str, Any]:
        """Look up an invoice by its hex payment hash."""
        data = self._request("GET", f"/v1/invoice/{payment_hash}")
        return {"settled": bool(data.get("settled")) or data.get("state") == "SETTLED"}

    def add_invoice(
        self,
        amount_msat: int,
        memo: Optional[str] = None,
        description_hash: Optional[bytes] = None,
        expiry_seconds: int = 3600,
    ) -> Dict[str, Any]:
        """Create an invoice; returns ``payment_request`` and hex ``payment_hash``."""
        payload: Dict[str, Any] = {"value_msat": str(int(amount_msat)), "expiry": str(int(expiry_seconds))}
        if description_hash is not None:
            payload["description_hash"] = base64.b64encode(description_hash).decode()
        elif memo:
            payload["memo"] = memo

        data = self._request("POST", "/v1/invoices", json=payload)
        payment_request = data.get("payment_request")
        payment_hash = data.get("r_hash_str") or _hash_to_hex(data.get("r_hash"))
        if not payment_request or not payment_hash:
            raise OracleError("LND invoice response missing payment_request or r_hash.")

        logger.info(f"Created Lightning invoice {payment_hash[:16]}... for {amount_msat} msat")
        return {"payment_request": payment_request, "payment_hash": payment_hash}

    def decode_invoice(self, payment_request: str) -> Dict[str, Any]:
        data = self._request("GET", f"/v1/payreq/{payment_request}")
        amount_sats = int(data.get("num_satoshis") or 0)
        return {
            "payment_hash": data.get("payment_hash"),
            "amount_sats": amount_sats,
            "amount_msat": int(data.get("num_msat") or 0) or amount_sats * 1000,
            "description": data.get("description"),
            "description_hash": data.get("description_hash") or None,
            "destination": data.get("destination"),
            "timestamp": int(data.get("timestamp") or 0),
            "expiry": int(data.get("expiry") or 0),
            "cltv_expiry": int(data.get("cltv_expiry") or 0),
            "fallback_address": data.get("fallback_addr") or None,
        }

    def pay_invoice(self, payment_request: str, amount_sats: Optional[int] = None) -> Dict[str, Any]:
        """
        Pay an invoice synchronously.

        ``amount_sats`` is only sent for zero-amount invoices.
        """
        payload: Dict[str, Any] = {"payment_request": payment_request}
        if amount_sats:
            payload["amt"] = str(int(amount_sats))

        data = self._request("POST", "/v1/channels/transactions", json=payload)
        if data.get("payment_error"):
            raise OracleError(f"Payment failed: {data['payment_error']}")
        return {
            "payment_hash": _hash_to_hex(data.get("payment_hash")),
            "preimage": _hash_to_hex(data.get("payment_preimage")),
        }

    def get_new_funding_address(self) -> Dict[str, Any]:
        data = self._request("GET", "/v1/newaddress")
        return {"address": data.get("address")}

    def get_node_info(self) -> Dict[str, Any]:
        data = self._request("GET", "/v1/getinfo")
        return {
            "identity_pubkey": data.get("identity_pubkey"),
            "alias": data.get("alias"),
            "uris": data.get("uris") or [],
            "num_active_channels": data.get("num_active_channels"),
            "num_peers": data.get("num_peers"),
            "block_height": data.get("block_height"),
            "synced_to_chain": data.get("synced_to_chain"),
        }

    def open_channel(self, remote_id: str, amount_sats: int, private: bool = False) -> Dict[str, Any]:
        """Open a channel to a peer that is already connected to us."""
        payload = {
            "node_pubkey_string": remote_id,
            "local_funding_amount": str(int(amount_sats)),
            "private": bool(private),
        }
        data = self._request("POST", "/v1/channels", json=payload)
        txid = data.get("funding_txid_str")
        if not txid and data.get("funding_txid_bytes"):
            # txid bytes are little-endian
            txid = base64.b64decode(data["funding_txid_bytes"])[::-1].hex()
        return {"funding_txid": txid, "output_index": data.get("output_index")}
