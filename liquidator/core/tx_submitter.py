"""
Transaction Submitter
Sends signed transactions once and waits until they reach the finalized commitment level
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from solders.transaction import VersionedTransaction

from liquidator.core.config import TransactionConfig
from liquidator.core.errors import RpcError, SubmissionError
from liquidator.core.logger import get_logger
from liquidator.core.metrics import get_metrics, LatencyTimer
from liquidator.core.rpc_client import RPCClient


logger = get_logger(__name__)
metrics = get_metrics()


class ConfirmationStatus(Enum):
    """Transaction confirmation status"""
    PENDING = "pending"
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass
class ConfirmedTransaction:
    """Finalized transaction details"""
    signature: str
    slot: int
    confirmation_status: ConfirmationStatus
    error: Optional[str] = None
    confirmed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "slot": self.slot,
            "confirmation_status": self.confirmation_status.value,
            "error": self.error,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None
        }


class TransactionSubmitter:
    """
    Submits transactions with preflight disabled and tracks them to finality

    A transaction is sent exactly once. There is no resubmission of the same
    signature; retry policy belongs to the caller.

    Usage:
        submitter = TransactionSubmitter(rpc_client, transaction_config)
        confirmed = await submitter.submit_and_finalize(signed_tx)
    """

    def __init__(
        self,
        rpc_client: RPCClient,
        config: Optional[TransactionConfig] = None
    ):
        self.rpc_client = rpc_client
        self.config = config or TransactionConfig()

        logger.info(
            "transaction_submitter_initialized",
            skip_preflight=self.config.skip_preflight,
            confirmation_timeout_s=self.config.confirmation_timeout_s
        )

    async def submit(self, signed_tx: VersionedTransaction) -> str:
        """
        Send a signed transaction

        Returns:
            Transaction signature

        Raises:
            SubmissionError: If the node rejects the transaction or is unreachable
        """
        local_signature = str(signed_tx.signatures[0])

        try:
            with LatencyTimer(metrics, "tx_submit"):
                signature = await self.rpc_client.send_transaction(
                    bytes(signed_tx),
                    skip_preflight=self.config.skip_preflight
                )
        except RpcError as e:
            metrics.increment_counter("transactions_submitted_failed")
            raise SubmissionError(
                f"Transaction submission failed: {e.message}",
                signature=local_signature,
                context=e.context
            ) from e

        signature = signature or local_signature
        metrics.increment_counter("transactions_submitted_success")
        logger.info("transaction_submitted", signature=signature)
        return signature

    async def submit_and_finalize(self, signed_tx: VersionedTransaction) -> ConfirmedTransaction:
        """
        Send a transaction and wait for the finalized commitment level

        Raises:
            SubmissionError: On send failure, on-chain error or confirmation timeout
        """
        signature = await self.submit(signed_tx)

        with LatencyTimer(metrics, "tx_finalize"):
            return await self.wait_for_finalized(signature)

    async def wait_for_finalized(self, signature: str) -> ConfirmedTransaction:
        """
        Poll the signature status until it is finalized

        Only a FINALIZED status is returned. An on-chain error or the
        confirmation deadline raises SubmissionError.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.confirmation_timeout_s

        while True:
            status = await self._get_status(signature)

            if status is not None:
                if status.confirmation_status == ConfirmationStatus.FAILED:
                    metrics.increment_counter(
                        "transaction_confirmations",
                        labels={"status": "failed"}
                    )
                    raise SubmissionError(
                        f"Transaction failed on-chain: {status.error}",
                        signature=signature
                    )

                if status.confirmation_status == ConfirmationStatus.FINALIZED:
                    metrics.increment_counter(
                        "transaction_confirmations",
                        labels={"status": "finalized"}
                    )
                    logger.debug("transaction_finalized", signature=signature, slot=status.slot)
                    return status

            if loop.time() >= deadline:
                metrics.increment_counter("transaction_confirmations_timeout")
                raise SubmissionError(
                    f"Transaction not finalized after {self.config.confirmation_timeout_s}s",
                    signature=signature
                )

            await asyncio.sleep(self.config.confirmation_poll_interval_s)

    async def _get_status(self, signature: str) -> Optional[ConfirmedTransaction]:
        """Map getSignatureStatuses output; transient RPC errors count as unknown"""
        try:
            status_data = await self.rpc_client.get_signature_status(signature)
        except RpcError as e:
            logger.warning(
                "get_signature_status_error",
                signature=signature,
                error=e.message
            )
            return None

        if status_data is None:
            return None

        level = status_data.get("confirmationStatus") or "processed"
        try:
            status = ConfirmationStatus(level)
        except ValueError:
            status = ConfirmationStatus.PENDING

        error = None
        if status_data.get("err"):
            status = ConfirmationStatus.FAILED
            error = str(status_data["err"])

        return ConfirmedTransaction(
            signature=signature,
            slot=status_data.get("slot", 0),
            confirmation_status=status,
            error=error,
            confirmed_at=datetime.now(timezone.utc)
        )
