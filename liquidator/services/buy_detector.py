"""
Buy Detector
Decides whether a transaction notification is a qualifying retail buy of the tracked token
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from liquidator.core.logger import get_logger
from liquidator.core.metrics import get_metrics
from liquidator.services.notifications import TransactionNotification


logger = get_logger(__name__)
metrics = get_metrics()


@dataclass(frozen=True)
class BuyEvent:
    """A qualifying purchase of the tracked token"""
    signer: str
    token_amount: int
    native_spent: int
    signature: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "signer": self.signer,
            "token_amount": self.token_amount,
            "native_spent": self.native_spent,
            "signature": self.signature
        }


class BuyDetector:
    """
    Applies the buy filters in order:

    1. excluded signer
    2. signer's associated token account for the tracked mint not in the transaction
    3. missing pre or post token balance for that account
    4. token delta <= 0
    5. native spent (pre[0] - post[0] - fee) below the minimum threshold

    Every discard is a debug log, not an error.
    """

    def __init__(
        self,
        tracked_mint: str,
        min_buy_threshold_lamports: int,
        excluded_signers: Iterable[str] = ()
    ):
        self.tracked_mint = Pubkey.from_string(tracked_mint)
        self.min_buy_threshold_lamports = min_buy_threshold_lamports
        self.excluded_signers: FrozenSet[str] = frozenset(excluded_signers)

    def detect(self, notification: TransactionNotification) -> Optional[BuyEvent]:
        signer = notification.fee_payer
        if signer is None:
            return self._discard("no_signer", notification)

        if signer in self.excluded_signers:
            return self._discard("excluded_signer", notification)

        try:
            signer_pubkey = Pubkey.from_string(signer)
        except ValueError:
            return self._discard("invalid_signer", notification)

        token_account = str(get_associated_token_address(signer_pubkey, self.tracked_mint))
        try:
            account_index = notification.account_keys.index(token_account)
        except ValueError:
            return self._discard("token_account_not_touched", notification)

        pre = notification.token_balance_at(account_index, post=False)
        post = notification.token_balance_at(account_index, post=True)
        if pre is None or post is None:
            return self._discard("token_balance_missing", notification)

        delta = post.amount - pre.amount
        if delta <= 0:
            return self._discard("not_a_buy", notification)

        if (not notification.pre_balances or not notification.post_balances
                or notification.fee is None):
            return self._discard("native_balance_missing", notification)

        native_spent = notification.pre_balances[0] - notification.post_balances[0] - notification.fee
        if native_spent < self.min_buy_threshold_lamports:
            return self._discard("below_threshold", notification)

        event = BuyEvent(
            signer=signer,
            token_amount=delta,
            native_spent=native_spent,
            signature=notification.signature
        )
        metrics.increment_counter("buys_detected")
        logger.info("buy_detected", **event.to_dict())
        return event

    @staticmethod
    def _discard(reason: str, notification: TransactionNotification) -> None:
        metrics.increment_counter("notifications_discarded", labels={"reason": reason})
        logger.debug(
            "notification_discarded",
            reason=reason,
            signature=notification.signature
        )
        return None
