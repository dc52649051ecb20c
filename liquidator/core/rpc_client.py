"""
HTTP JSON-RPC client for Solana
Balance lookups, transaction submission and signature status polling
"""

import asyncio
import base64
import itertools
from typing import Any, Dict, List, Optional

import aiohttp

from liquidator.core.config import RPCConfig
from liquidator.core.errors import RpcError
from liquidator.core.logger import get_logger
from liquidator.core.metrics import get_metrics, LatencyTimer


logger = get_logger(__name__)
metrics = get_metrics()


class RPCClient:
    """
    Thin async JSON-RPC client over a shared aiohttp session

    Usage:
        client = RPCClient(rpc_config)
        await client.start()
        lamports = await client.get_balance(str(pubkey))
        await client.stop()
    """

    def __init__(self, config: RPCConfig):
        self.config = config
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._request_ids = itertools.count(1)

        logger.info("rpc_client_initialized", url=config.http_url)

    async def start(self) -> None:
        """Create the HTTP session"""
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()

    async def stop(self) -> None:
        """Close the HTTP session"""
        if self._http_session:
            await self._http_session.close()
            self._http_session = None

    async def call(
        self,
        method: str,
        params: List[Any],
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Make a JSON-RPC call

        Args:
            method: JSON-RPC method name
            params: Method parameters
            timeout: Request timeout in seconds (defaults to config)

        Returns:
            Full RPC response dict

        Raises:
            RpcError: On transport failure or an RPC error object
        """
        if not self._http_session:
            raise RpcError("HTTP session not initialized. Call start() first.")

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params
        }

        async def _make_request():
            async with self._http_session.post(self.config.http_url, json=payload) as response:
                return await response.json(content_type=None)

        try:
            with LatencyTimer(metrics, "rpc_call", {"method": method}):
                result = await asyncio.wait_for(
                    _make_request(),
                    timeout=timeout or self.config.timeout_s
                )
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            metrics.increment_counter("rpc_errors", labels={"method": method})
            raise RpcError(
                f"RPC transport error: {e}",
                context={"method": method}
            ) from e

        if not isinstance(result, dict):
            metrics.increment_counter("rpc_errors", labels={"method": method})
            raise RpcError(
                "RPC returned a non-object response",
                context={"method": method, "response": repr(result)[:200]}
            )

        if "error" in result:
            metrics.increment_counter("rpc_errors", labels={"method": method})
            error = result["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise RpcError(
                f"RPC error: {message}",
                context={"method": method, "error": error}
            )

        return result

    async def get_balance(self, pubkey: str) -> int:
        """Native balance in lamports"""
        response = await self.call("getBalance", [pubkey])
        return int((response.get("result") or {}).get("value", 0))

    async def get_token_account_balance(self, token_account: str) -> Optional[int]:
        """
        Raw token amount held by a token account

        Returns:
            Smallest-unit amount, or None when the RPC reports no value
        """
        response = await self.call("getTokenAccountBalance", [token_account])
        value = (response.get("result") or {}).get("value")
        if not isinstance(value, dict) or value.get("amount") is None:
            return None
        return int(value["amount"])

    async def send_transaction(self, tx_bytes: bytes, skip_preflight: bool = True) -> str:
        """
        Send a signed, serialized transaction

        Returns:
            Signature string reported by the node
        """
        tx_base64 = base64.b64encode(tx_bytes).decode('utf-8')
        response = await self.call(
            "sendTransaction",
            [
                tx_base64,
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight
                }
            ]
        )
        return response.get("result") or ""

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        """
        Current status of a signature

        Returns:
            Status dict ({slot, confirmationStatus, err, ...}) or None if unknown
        """
        response = await self.call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}]
        )
        value = (response.get("result") or {}).get("value") or []
        if not value:
            return None
        return value[0]
