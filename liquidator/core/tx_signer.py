"""
Transaction Signer
Deserializes aggregator-built versioned transactions and signs them with a wallet keypair
"""

import base64
import binascii
from typing import Dict

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from liquidator.core.errors import SubmissionError
from liquidator.core.logger import get_logger
from liquidator.core.metrics import get_metrics, LatencyTimer


logger = get_logger(__name__)
metrics = get_metrics()


class TransactionSigner:
    """
    Signs base64-encoded versioned transactions

    Keypairs are held in memory only and never persisted.

    Usage:
        signer = TransactionSigner()
        signed_tx = signer.sign_serialized(swap_tx_b64, wallet.keypair)
    """

    def __init__(self):
        self._signature_counts: Dict[Pubkey, int] = {}

    def deserialize(self, serialized_tx: str) -> VersionedTransaction:
        """
        Decode a base64 transaction

        Raises:
            SubmissionError: If the payload is not a valid versioned transaction
        """
        try:
            return VersionedTransaction.from_bytes(base64.b64decode(serialized_tx))
        except binascii.Error as e:
            raise SubmissionError(f"Transaction is not valid base64: {e}") from e
        except Exception as e:
            # solders raises its own bincode error types
            raise SubmissionError(f"Failed to deserialize transaction: {e}") from e

    def sign(self, transaction: VersionedTransaction, keypair: Keypair) -> VersionedTransaction:
        """
        Sign a versioned transaction with a single keypair

        Raises:
            SubmissionError: If the keypair is not a required signer of the message
        """
        with LatencyTimer(metrics, "tx_sign"):
            try:
                signed_tx = VersionedTransaction(transaction.message, [keypair])
            except Exception as e:
                raise SubmissionError(
                    f"Failed to sign transaction: {e}",
                    context={"signer": str(keypair.pubkey())}
                ) from e

        pubkey = keypair.pubkey()
        self._signature_counts[pubkey] = self._signature_counts.get(pubkey, 0) + 1
        metrics.increment_counter("transactions_signed")

        logger.debug(
            "transaction_signed",
            signer=str(pubkey),
            signature=str(signed_tx.signatures[0])
        )
        return signed_tx

    def sign_serialized(self, serialized_tx: str, keypair: Keypair) -> VersionedTransaction:
        """Deserialize and sign in one step"""
        return self.sign(self.deserialize(serialized_tx), keypair)

    def get_signature_count(self, pubkey: Pubkey) -> int:
        return self._signature_counts.get(pubkey, 0)
