"""
Liquidation Sequencer
Turns one BuyEvent into the five-step sell/buy/sell/buy/buy sequence over a rotating wallet pool
"""

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from liquidator.core.balance_inspector import BalanceInspector
from liquidator.core.config import LiquidationConfig
from liquidator.core.errors import SwapError
from liquidator.core.logger import get_logger
from liquidator.core.metrics import get_metrics
from liquidator.core.wallet_manager import Wallet, WalletPool
from liquidator.services.buy_detector import BuyEvent
from liquidator.services.swap_executor import SwapExecutor


logger = get_logger(__name__)
metrics = get_metrics()


BPS_DENOMINATOR = 10_000


class StepAction(Enum):
    SELL = "sell"
    BUY = "buy"


class RunOutcome(Enum):
    """Terminal state of a liquidation run"""
    PENDING = "pending"
    COMPLETED = "completed"    # all five steps attempted
    ABORTED = "aborted"        # every wallet checked so far was empty at a buy step
    SKIPPED = "skipped"        # every liquidation wallet was empty before step 1
    FAILED = "failed"          # a swap raised; remaining steps dropped


@dataclass(frozen=True)
class LiquidationStep:
    """One planned step; sells carry a fraction, buys a lamport range"""
    number: int
    action: StepAction
    sell_fraction_bps: Optional[int] = None
    buy_range_lamports: Optional[Tuple[int, int]] = None


@dataclass
class StepRecord:
    """What happened at one step"""
    step: LiquidationStep
    wallet: Wallet
    observed_balance: int
    amount: int = 0
    signature: Optional[str] = None
    skipped_reason: Optional[str] = None

    @property
    def executed(self) -> bool:
        return self.signature is not None

    def to_dict(self) -> Dict:
        return {
            "step": self.step.number,
            "action": self.step.action.value,
            "wallet": self.wallet.address,
            "observed_balance": self.observed_balance,
            "amount": self.amount,
            "signature": self.signature,
            "skipped_reason": self.skipped_reason
        }


@dataclass
class LiquidationRun:
    """In-memory state of one reaction to one BuyEvent"""
    event: BuyEvent
    plan: Tuple[LiquidationStep, ...]
    pool: WalletPool
    records: List[StepRecord] = field(default_factory=list)
    outcome: RunOutcome = RunOutcome.PENDING
    error: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def observed_balances(self) -> List[int]:
        return [record.observed_balance for record in self.records]

    @property
    def trades(self) -> List[StepRecord]:
        return [record for record in self.records if record.executed]

    def to_dict(self) -> Dict:
        return {
            "signer": self.event.signer,
            "token_amount": self.event.token_amount,
            "outcome": self.outcome.value,
            "error": self.error,
            "steps": [record.to_dict() for record in self.records],
            "started_at": self.started_at.isoformat()
        }


def build_plan(config: LiquidationConfig) -> Tuple[LiquidationStep, ...]:
    first_sell_bps, second_sell_bps = config.sell_fractions_bps
    return (
        LiquidationStep(1, StepAction.SELL, sell_fraction_bps=first_sell_bps),
        LiquidationStep(2, StepAction.BUY, buy_range_lamports=config.first_buy_range_lamports),
        LiquidationStep(3, StepAction.SELL, sell_fraction_bps=second_sell_bps),
        LiquidationStep(4, StepAction.BUY, buy_range_lamports=config.follow_up_buy_range_lamports),
        LiquidationStep(5, StepAction.BUY, buy_range_lamports=config.follow_up_buy_range_lamports),
    )


def sell_amount(bought: int, fraction_bps: int, balance: int) -> int:
    """Intended fraction of the bought amount, clamped down to the live balance"""
    return min(bought * fraction_bps // BPS_DENOMINATOR, balance)


class LiquidationSequencer:
    """
    Executes liquidation runs

    Every run gets a fresh WalletPool. Each step draws a wallet and checks its
    live token balance before trading:

    - sell: skipped when the wallet is empty, otherwise clamped to its balance
    - buy: the run aborts when every wallet checked so far in the run was empty

    A randomized delay separates consecutive steps. Swap failures end the run
    as FAILED; trades already executed stand.
    """

    def __init__(
        self,
        config: LiquidationConfig,
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
        self.plan = build_plan(config)
        self._rng = rng or random.Random()
        self._sleep = sleep

    async def run(self, event: BuyEvent) -> LiquidationRun:
        run = LiquidationRun(event=event, plan=self.plan, pool=WalletPool(self.wallets, self._rng))

        logger.info(
            "liquidation_run_started",
            signer=event.signer,
            token_amount=event.token_amount,
            native_spent=event.native_spent
        )

        balances = await self.inspector.token_balances([wallet.pubkey for wallet in self.wallets])
        if not any(balances):
            run.outcome = RunOutcome.SKIPPED
            logger.warning(
                "liquidation_run_skipped",
                reason="all_wallets_empty",
                mint=self.config.tracked_mint,
                signer=event.signer
            )
            self._record_outcome(run)
            return run

        try:
            for index, step in enumerate(self.plan):
                if index > 0:
                    await self._sleep(self._rng.uniform(*self.config.step_delay_range_s))

                if not await self._execute_step(run, step):
                    run.outcome = RunOutcome.ABORTED
                    logger.warning(
                        "liquidation_run_aborted",
                        reason="all_checked_wallets_empty",
                        step=step.number,
                        signer=event.signer
                    )
                    break
            else:
                run.outcome = RunOutcome.COMPLETED
                logger.info(
                    "liquidation_run_completed",
                    signer=event.signer,
                    trades=len(run.trades)
                )

        except SwapError as e:
            run.outcome = RunOutcome.FAILED
            run.error = e.message
            logger.error(
                "liquidation_run_failed",
                signer=event.signer,
                step=len(run.records),
                trades=len(run.trades),
                **e.to_dict()
            )

        self._record_outcome(run)
        return run

    async def _execute_step(self, run: LiquidationRun, step: LiquidationStep) -> bool:
        """Run one step; False means the run must abort"""
        wallet = run.pool.draw()
        balance = await self.inspector.token_balance(wallet.pubkey)
        record = StepRecord(step=step, wallet=wallet, observed_balance=balance)
        run.records.append(record)

        if step.action is StepAction.SELL:
            if balance == 0:
                self._skip(record, "wallet_empty")
                return True

            amount = sell_amount(run.event.token_amount, step.sell_fraction_bps, balance)
            if amount <= 0:
                self._skip(record, "sell_amount_zero")
                return True

            record.amount = amount
            record.signature = await self.executor.sell(wallet, amount)
            return True

        if all(observed == 0 for observed in run.observed_balances):
            self._skip(record, "all_checked_wallets_empty")
            return False

        low, high = step.buy_range_lamports
        record.amount = self._rng.randrange(low, high)
        record.signature = await self.executor.buy(wallet, record.amount)
        return True

    @staticmethod
    def _skip(record: StepRecord, reason: str) -> None:
        record.skipped_reason = reason
        logger.warning(
            "liquidation_step_skipped",
            step=record.step.number,
            action=record.step.action.value,
            wallet=record.wallet.address,
            reason=reason
        )

    @staticmethod
    def _record_outcome(run: LiquidationRun) -> None:
        metrics.increment_counter("liquidation_runs", labels={"outcome": run.outcome.value})
