"""Read-only JSON-RPC client for chain nodes.

The client is stateless apart from an optional shared ``httpx.AsyncClient``
(which is safe for concurrent use). Without one, each call opens a
request-scoped client. Every call is bounded by ``timeout``.
"""

import itertools
from collections.abc import Sequence
from typing import Any

import httpx

from ..logging_config import get_logger
from .errors import RpcTimeoutError, RpcUnavailableError

logger = get_logger("settlement.payments.rpc")


class JsonRpcError(RpcUnavailableError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, message: str, rpc_code: int | None = None):
        super().__init__(message, "RPC_ERROR")
        self.rpc_code = rpc_code


class JsonRpcClient:
    """JSON-RPC 2.0 over HTTP with an ordered list of endpoints.

    The next endpoint is tried only when the previous one fails at the
    transport or HTTP level. A JSON-RPC error response is an answer, not an
    outage, and is raised immediately.
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        name: str = "rpc",
    ):
        self.endpoints = [e for e in endpoints if e]
        self.timeout = timeout
        self.name = name
        self._http_client = http_client
        self._ids = itertools.count(1)

    async def _post(self, endpoint: str, payload: dict) -> dict:
        if self._http_client is not None:
            response = await self._http_client.post(endpoint, json=payload, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(endpoint, json=payload)
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise ValueError(f"Malformed JSON-RPC response: {type(body).__name__}")
        return body

    async def call(self, method: str, params: list | None = None) -> Any:
        """Invoke ``method`` and return its ``result`` (which may be ``None``).

        Raises:
            RpcTimeoutError: every endpoint failed and the last one timed out.
            RpcUnavailableError: every endpoint failed otherwise.
            JsonRpcError: the node returned an error object.
        """
        if not self.endpoints:
            raise RpcUnavailableError(f"No {self.name} RPC endpoints configured")

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        last_error: Exception | None = None
        for endpoint in self.endpoints:
            try:
                body = await self._post(endpoint, payload)
            except httpx.TimeoutException as e:
                logger.warning("%s RPC %s timed out on %s", self.name, method, endpoint)
                last_error = e
                continue
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("%s RPC %s failed on %s: %s", self.name, method, endpoint, e)
                last_error = e
                continue

            error = body.get("error")
            if error:
                message = error.get("message") if isinstance(error, dict) else str(error)
                code = error.get("code") if isinstance(error, dict) else None
                raise JsonRpcError(f"RPC error from {self.name}: {message}", rpc_code=code)
            return body.get("result")

        if isinstance(last_error, httpx.TimeoutException):
            raise RpcTimeoutError(
                f"{self.name} RPC {method} timed out after {self.timeout}s on all endpoints"
            )
        raise RpcUnavailableError(f"All {self.name} RPC endpoints failed: {last_error}")
