"""
Jupiter aggregator client
Quotes a route and builds an unsigned swap transaction for a wallet
"""

import asyncio
import json
from typing import Any, Dict, Optional, Tuple

import aiohttp

from liquidator.core.config import JupiterConfig
from liquidator.core.errors import QuoteError, SwapBuildError
from liquidator.core.logger import get_logger


logger = get_logger(__name__)


class JupiterClient:
    """
    Quote + swap-build client

    The route itself is opaque: quotes are passed back to the swap endpoint
    unchanged and never cached.

    Usage:
        client = JupiterClient(jupiter_config)
        await client.start()
        quote = await client.get_quote(input_mint, output_mint, amount)
        swap_tx_b64 = await client.get_swap_transaction(quote, wallet.address)
    """

    def __init__(self, config: JupiterConfig, priority_fee_lamports: Optional[int] = None):
        self.config = config
        self.priority_fee_lamports = (
            priority_fee_lamports if priority_fee_lamports is not None
            else config.priority_fee_lamports
        )
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def stop(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def get_quote(self, input_mint: str, output_mint: str, amount: int) -> Dict[str, Any]:
        """
        Request a priced route

        Args:
            input_mint: Asset being sold
            output_mint: Asset being bought
            amount: Input amount in smallest units

        Raises:
            QuoteError: On a non-success response or unreadable body
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(self.config.slippage_bps),
            "api_key": self.config.api_key
        }

        try:
            status, body = await self._get(self.config.quote_url, params)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise QuoteError(f"Quote request failed: {e}") from e

        if status >= 400:
            raise QuoteError(f"Quote error: {body}", status=status, body=body)

        try:
            quote = json.loads(body)
        except ValueError as e:
            raise QuoteError("Quote response is not JSON", status=status, body=body) from e

        logger.debug(
            "quote_received",
            input_mint=input_mint,
            output_mint=output_mint,
            amount=amount,
            out_amount=quote.get("outAmount") if isinstance(quote, dict) else None
        )
        return quote

    async def get_swap_transaction(self, quote: Dict[str, Any], user_pubkey: str) -> str:
        """
        Build an unsigned swap transaction from a quote

        Returns:
            Base64-encoded versioned transaction

        Raises:
            SwapBuildError: On a non-success response or missing swapTransaction
        """
        payload = {
            "quoteResponse": quote,
            "userPublicKey": user_pubkey,
            "wrapAndUnwrapSol": True,
            "prioritizationFeeLamports": self.priority_fee_lamports,
            "apiKey": self.config.api_key
        }

        try:
            status, body = await self._post(self.config.swap_url, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SwapBuildError(f"Swap request failed: {e}") from e

        if status >= 400:
            raise SwapBuildError(f"Swap error: {body}", status=status, body=body)

        try:
            data = json.loads(body)
        except ValueError as e:
            raise SwapBuildError("Swap response is not JSON", status=status, body=body) from e

        swap_transaction = data.get("swapTransaction") if isinstance(data, dict) else None
        if not swap_transaction:
            raise SwapBuildError("No swapTransaction in response", status=status, body=body)

        return swap_transaction

    async def _get(self, url: str, params: Dict[str, str]) -> Tuple[int, str]:
        session = self._require_session()
        async with session.get(url, params=params) as response:
            return response.status, await response.text()

    async def _post(self, url: str, payload: Dict[str, Any]) -> Tuple[int, str]:
        session = self._require_session()
        async with session.post(url, json=payload) as response:
            return response.status, await response.text()

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("HTTP session not initialized. Call start() first.")
        return self._session
