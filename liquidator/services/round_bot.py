"""
Round Bot
Fixed buy/buy/sell volume rounds across a static wallet list, no detection involved
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Sequence

from liquidator.core.balance_inspector import BalanceInspector
from liquidator.core.config import RoundConfig
from liquidator.core.errors import RpcError, SwapError
from liquidator.core.logger import get_logger, log_context
from liquidator.core.metrics import get_metrics
from liquidator.core.wallet_manager import Wallet
from liquidator.services.liquidation_sequencer import BPS_DENOMINATOR
from liquidator.services.swap_executor import SwapExecutor


logger = get_logger(__name__)
metrics = get_metrics()


@dataclass
class RoundReport:
    """Counts for one completed round"""
    round_number: int
    buys: int = 0
    sells: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> Dict:
        return {
            "round": self.round_number,
            "buys": self.buys,
            "sells": self.sells,
            "skipped": self.skipped,
            "failed": self.failed
        }


class RoundBot:
    """
    Repeats rounds until stopped

    A round is two phases. First every wallet buys buys_per_wallet times, each
    buy a random lamport amount in [min_swap, max_swap) and skipped when the
    wallet cannot cover it plus the fee reserve. Then every wallet sells
    sell_fraction_bps of its token balance. A failed trade is logged and the
    round carries on with the next one.
    """

    def __init__(
        self,
        config: RoundConfig,
        executor: SwapExecutor,
        inspector: BalanceInspector,
        wallets: Sequence[Wallet],
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.config = config
        self.executor = executor
        self.inspector = inspector
        self.wallets = list(wallets)
        self._rng = rng or random.Random()
        self._sleep = sleep

        self._running = False
        self.rounds_completed = 0

    async def run(self) -> None:
        """Run rounds back to back, waiting round_delay_s in between"""
        self._running = True
        logger.info(
            "round_bot_started",
            wallets=len(self.wallets),
            min_swap_lamports=self.config.min_swap_lamports,
            max_swap_lamports=self.config.max_swap_lamports
        )

        while self._running:
            await self.run_round()
            if not self._running:
                break
            logger.info("round_waiting", delay_s=self.config.round_delay_s)
            await self._sleep(self.config.round_delay_s)

        logger.info("round_bot_stopped", rounds=self.rounds_completed)

    def stop(self) -> None:
        self._running = False

    async def run_round(self) -> RoundReport:
        report = RoundReport(round_number=self.rounds_completed + 1)

        with log_context(round=report.round_number):
            for wallet in self.wallets:
                for buy_number in range(1, self.config.buys_per_wallet + 1):
                    await self._buy(wallet, buy_number, report)

            for wallet in self.wallets:
                await self._sell(wallet, report)
                await self._sleep(self.config.pause_s)

        self.rounds_completed += 1
        metrics.increment_counter("rounds_completed")
        logger.info("round_completed", **report.to_dict())
        return report

    async def _buy(self, wallet: Wallet, buy_number: int, report: RoundReport) -> None:
        amount = self._rng.randrange(self.config.min_swap_lamports, self.config.max_swap_lamports)
        try:
            balance = await self.inspector.native_balance(wallet.pubkey)
            if balance < amount + self.config.fee_reserve_lamports:
                report.skipped += 1
                logger.warning(
                    "round_buy_skipped",
                    reason="low_balance",
                    wallet=wallet.address,
                    buy=buy_number,
                    amount=amount,
                    balance=balance
                )
                return

            await self.executor.buy(wallet, amount)
            report.buys += 1
            await self._sleep(self.config.pause_s)

        except (SwapError, RpcError) as e:
            report.failed += 1
            logger.error(
                "round_buy_failed",
                wallet=wallet.address,
                buy=buy_number,
                amount=amount,
                **e.to_dict()
            )

    async def _sell(self, wallet: Wallet, report: RoundReport) -> None:
        balance = await self.inspector.token_balance(wallet.pubkey)
        amount = balance * self.config.sell_fraction_bps // BPS_DENOMINATOR
        if amount == 0:
            report.skipped += 1
            logger.info("round_sell_skipped", reason="no_tokens", wallet=wallet.address)
            return

        try:
            await self.executor.sell(wallet, amount)
            report.sells += 1
        except SwapError as e:
            report.failed += 1
            logger.error("round_sell_failed", wallet=wallet.address, amount=amount, **e.to_dict())
