"""Bitcoin Core RPC access, used for health reporting only."""

import logging
from http.client import HTTPException
from typing import Any, Mapping

from bitcoinrpc.authproxy import AuthServiceProxy, JSONRPCException

from lnurl_server.errors import OracleTransientError

logger = logging.getLogger(__name__)


class BitcoinRpcClient:
    """Chain oracle over bitcoind JSON-RPC."""

    def __init__(self, host: str, port: int, user: str, password: str, timeout: int = 10):
        self.url = f"http://{user}:{password}@{host}:{port}"
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "BitcoinRpcClient":
        return cls(
            cfg["RPC_HOST"],
            cfg["RPC_PORT"],
            cfg["RPC_USER"],
            cfg["RPC_PASSWORD"],
            timeout=cfg.get("ORACLE_TIMEOUT_SECONDS", 10),
        )

    def _connection(self) -> AuthServiceProxy:
        # AuthServiceProxy keeps one HTTP connection; not safe to share across threads
        return AuthServiceProxy(self.url, timeout=self.timeout)

    def get_block_height(self) -> int:
        try:
            return int(self._connection().getblockcount())
        except (JSONRPCException, HTTPException, OSError, ValueError) as e:
            raise OracleTransientError(f"bitcoind getblockcount failed: {e}") from e
