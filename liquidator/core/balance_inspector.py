"""
Balance Inspector
Reads a wallet's tracked-token and native balances on demand
"""

import asyncio
from typing import List, Sequence

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from liquidator.core.errors import BalanceLookupFailure, RpcError
from liquidator.core.logger import get_logger
from liquidator.core.rpc_client import RPCClient


logger = get_logger(__name__)

# RPC error text for a token account that was never created
_ACCOUNT_MISSING = "could not find account"


class BalanceInspector:
    """
    Stateless balance lookups for the tracked mint

    token_balance() never raises: a missing token account and a failed
    lookup both read as zero.
    """

    def __init__(self, rpc_client: RPCClient, tracked_mint: str):
        self.rpc_client = rpc_client
        self.tracked_mint = Pubkey.from_string(tracked_mint)

    def token_account(self, owner: Pubkey) -> Pubkey:
        """Associated token account of owner for the tracked mint"""
        return get_associated_token_address(owner, self.tracked_mint)

    async def fetch_token_balance(self, owner: Pubkey) -> int:
        """
        Raw token balance of owner

        Raises:
            BalanceLookupFailure: If the account is missing or the RPC call fails
        """
        token_account = self.token_account(owner)
        try:
            amount = await self.rpc_client.get_token_account_balance(str(token_account))
        except RpcError as e:
            reason = "account_missing" if _ACCOUNT_MISSING in e.message else "lookup_failed"
            raise BalanceLookupFailure(
                e.message,
                context={"owner": str(owner), "token_account": str(token_account), "reason": reason}
            ) from e

        if amount is None:
            raise BalanceLookupFailure(
                "Token account has no balance value",
                context={"owner": str(owner), "token_account": str(token_account), "reason": "account_missing"}
            )
        return amount

    async def token_balance(self, owner: Pubkey) -> int:
        """Raw token balance of owner, zero when it cannot be read"""
        try:
            return await self.fetch_token_balance(owner)
        except BalanceLookupFailure as e:
            logger.warning(
                "token_balance_unavailable",
                owner=str(owner),
                mint=str(self.tracked_mint),
                reason=e.context.get("reason", "lookup_failed"),
                error=e.message
            )
            return 0

    async def token_balances(self, owners: Sequence[Pubkey]) -> List[int]:
        """Balances for several owners, fetched concurrently, in input order"""
        return list(await asyncio.gather(*(self.token_balance(owner) for owner in owners)))

    async def native_balance(self, owner: Pubkey) -> int:
        """
        Native balance in lamports

        Raises:
            RpcError: If the lookup fails
        """
        return await self.rpc_client.get_balance(str(owner))
