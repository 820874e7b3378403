"""L1 JSON-RPC client used to wait for the settlement layer node."""

from __future__ import annotations

import itertools
import logging
from enum import Enum
from typing import Any, List, Optional

import httpx

from zkstack_wizard.timeouts import L1_RPC_TIMEOUT_S

logger = logging.getLogger(__name__)


class L1Network(str, Enum):
    """Settlement layers a hyperchain can be provisioned against."""
    LOCALHOST = "localhost"
    SEPOLIA = "sepolia"


def resolve_rpc_url(network: L1Network, rpc_url: Optional[str], localhost_rpc_url: str) -> str:
    """
    L1 RPC endpoint for ``network``.

    The local dev node always lives at ``localhost_rpc_url``; public
    networks need an explicit endpoint.

    Raises:
        ValueError: If a public network is selected without ``rpc_url``
    """
    if network == L1Network.LOCALHOST:
        return localhost_rpc_url
    if not rpc_url:
        raise ValueError(f"An RPC URL is required for the {network.value} network")
    return rpc_url


class L1RpcError(Exception):
    """The node answered with a JSON-RPC error object."""
    pass


class L1Client:
    """Minimal JSON-RPC client for readiness checks against an L1 node."""

    def __init__(self, rpc_url: str, timeout: float = L1_RPC_TIMEOUT_S, transport: Optional[httpx.BaseTransport] = None):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._transport = transport
        self._ids = itertools.count(1)

    def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
            response = client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()

        if "error" in body:
            error = body["error"]
            raise L1RpcError(f"{method} failed: {error.get('message', error)}")
        return body.get("result")

    def chain_id(self) -> int:
        return int(self._call("eth_chainId"), 16)

    def probe(self) -> bool:
        """True if the node answers ``eth_chainId``."""
        try:
            self.chain_id()
            return True
        except (httpx.HTTPError, L1RpcError, ValueError, TypeError) as e:
            logger.debug(f"L1 probe against {self.rpc_url} failed: {e}")
            return False
