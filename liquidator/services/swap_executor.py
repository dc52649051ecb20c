"""
Swap Execution Pipeline
quote -> build -> sign -> submit -> wait for finalized, one on-chain trade per call
"""

from enum import Enum

from liquidator.clients.jupiter_client import JupiterClient
from liquidator.core.errors import SwapError
from liquidator.core.logger import get_logger
from liquidator.core.metrics import get_metrics, LatencyTimer
from liquidator.core.tx_signer import TransactionSigner
from liquidator.core.tx_submitter import TransactionSubmitter
from liquidator.core.wallet_manager import Wallet


logger = get_logger(__name__)
metrics = get_metrics()


class TradeAction(Enum):
    BUY = "buy"
    SELL = "sell"


class SwapExecutor:
    """
    Executes a single swap through the aggregator

    No retries: a failure at any stage raises QuoteError, SwapBuildError or
    SubmissionError and the caller decides what happens next.
    """

    def __init__(
        self,
        jupiter_client: JupiterClient,
        signer: TransactionSigner,
        submitter: TransactionSubmitter,
        tracked_mint: str,
        native_mint: str
    ):
        self.jupiter_client = jupiter_client
        self.signer = signer
        self.submitter = submitter
        self.tracked_mint = tracked_mint
        self.native_mint = native_mint

    async def swap(self, source_mint: str, destination_mint: str, amount: int, wallet: Wallet) -> str:
        """
        Swap amount of source_mint into destination_mint from wallet

        Returns:
            Finalized transaction signature
        """
        if amount <= 0:
            raise ValueError(f"Swap amount must be positive, got {amount}")

        try:
            with LatencyTimer(metrics, "swap_quote"):
                quote = await self.jupiter_client.get_quote(source_mint, destination_mint, amount)

            with LatencyTimer(metrics, "swap_build"):
                serialized_tx = await self.jupiter_client.get_swap_transaction(quote, wallet.address)

            signed_tx = self.signer.sign_serialized(serialized_tx, wallet.keypair)

            with LatencyTimer(metrics, "swap_submit_and_finalize"):
                confirmed = await self.submitter.submit_and_finalize(signed_tx)

        except SwapError as e:
            metrics.increment_counter("swaps_failed", labels={"stage": type(e).__name__})
            logger.error(
                "swap_failed",
                wallet=wallet.address,
                source_mint=source_mint,
                destination_mint=destination_mint,
                amount=amount,
                **e.to_dict()
            )
            raise

        metrics.increment_counter("swaps_succeeded")
        return confirmed.signature

    async def buy(self, wallet: Wallet, lamports: int) -> str:
        """Spend native lamports on the tracked token"""
        signature = await self.swap(self.native_mint, self.tracked_mint, lamports, wallet)
        self._log_trade(TradeAction.BUY, lamports, wallet, signature)
        return signature

    async def sell(self, wallet: Wallet, token_units: int) -> str:
        """Sell token units of the tracked token for native"""
        signature = await self.swap(self.tracked_mint, self.native_mint, token_units, wallet)
        self._log_trade(TradeAction.SELL, token_units, wallet, signature)
        return signature

    @staticmethod
    def _log_trade(action: TradeAction, amount: int, wallet: Wallet, signature: str) -> None:
        logger.info(
            "trade_executed",
            action=action.value,
            amount=amount,
            wallet=wallet.address,
            signature=signature
        )
