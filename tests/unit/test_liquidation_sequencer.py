"""
Unit tests for the Liquidation Sequencer (services/liquidation_sequencer.py)

Tests:
- Plan construction
- Sell clamping
- Skip, abort and failure outcomes
- Wallet rotation within a run
- Inter-step delays
"""

import random
from typing import Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest

from liquidator.core.errors import QuoteError, SubmissionError
from liquidator.core.metrics import get_metrics
from liquidator.services.buy_detector import BuyEvent
from liquidator.services.liquidation_sequencer import (
    LiquidationSequencer,
    RunOutcome,
    StepAction,
    build_plan,
    sell_amount,
)


BOUGHT = 1_000_000


class ScriptedRng:
    """
    Deterministic stand-in for random.Random

    randrange(n) pops the next scripted pool index; ranged calls return the
    lower bound, uniform returns the lower bound.
    """

    def __init__(self, pool_indices: List[int] = None):
        self.pool_indices = list(pool_indices or [0] * 5)

    def randrange(self, start, stop=None):
        if stop is None:
            return self.pool_indices.pop(0) if self.pool_indices else 0
        return start

    def choice(self, seq):
        return seq[0]

    def uniform(self, a, b):
        return a


class FakeInspector:
    """Token balances keyed by wallet pubkey"""

    def __init__(self, balances: Dict):
        self.balances = balances
        self.lookups = []

    async def token_balance(self, owner):
        self.lookups.append(owner)
        return self.balances.get(owner, 0)

    async def token_balances(self, owners):
        return [self.balances.get(owner, 0) for owner in owners]


@pytest.fixture
def executor():
    swap_executor = MagicMock()
    swap_executor.buy = AsyncMock(side_effect=lambda wallet, amount: f"buy-{wallet.address[:4]}-{amount}")
    swap_executor.sell = AsyncMock(side_effect=lambda wallet, amount: f"sell-{wallet.address[:4]}-{amount}")
    return swap_executor


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def event():
    return BuyEvent(signer="RetailBuyer111", token_amount=BOUGHT, native_spent=100_000_000, signature="BuySig")


def make_sequencer(config, executor, wallets, balances, sleep, rng=None):
    inspector = FakeInspector({w.pubkey: b for w, b in zip(wallets, balances)})
    sequencer = LiquidationSequencer(
        config=config,
        executor=executor,
        inspector=inspector,
        wallets=wallets,
        rng=rng or ScriptedRng(),
        sleep=sleep
    )
    return sequencer, inspector


class TestPlan:
    """Test the five-step plan"""

    def test_default_plan(self, liquidation_config):
        plan = build_plan(liquidation_config)

        assert [step.action for step in plan] == [
            StepAction.SELL, StepAction.BUY, StepAction.SELL, StepAction.BUY, StepAction.BUY
        ]
        assert plan[0].sell_fraction_bps == 5000
        assert plan[2].sell_fraction_bps == 4500
        assert plan[1].buy_range_lamports == (10_000_000, 15_000_000)
        assert plan[3].buy_range_lamports == (2_000_000, 5_000_000)
        assert plan[4].buy_range_lamports == (2_000_000, 5_000_000)

    @pytest.mark.parametrize("bought, bps, balance, expected", [
        (1_000_000, 5000, 300_000, 300_000),
        (1_000_000, 5000, 2_000_000, 500_000),
        (1_000_000, 4500, 450_000, 450_000),
        (3, 5000, 10, 1),
        (1, 4500, 10, 0),
    ])
    def test_sell_amount(self, bought, bps, balance, expected):
        assert sell_amount(bought, bps, balance) == expected


class TestLiquidationRun:
    """Test run outcomes"""

    @pytest.mark.asyncio
    async def test_scenario_clamps_each_sell_independently(self, liquidation_config, executor, wallets, sleep, event):
        """
        bought = 1,000,000: step 1 intends 500,000 but the drawn wallet holds
        300,000; step 3 intends 450,000 on a different wallet
        """
        balances = [300_000, 5_000_000, 2_000_000, 1_000, 1_000]
        sequencer, _ = make_sequencer(liquidation_config, executor, wallets, balances, sleep)

        run = await sequencer.run(event)

        assert run.outcome == RunOutcome.COMPLETED
        first_sell, first_buy, second_sell, buy_4, buy_5 = run.records
        assert first_sell.wallet == wallets[0]
        assert first_sell.amount == 300_000
        assert second_sell.wallet == wallets[2]
        assert second_sell.amount == 450_000
        assert first_buy.amount == 10_000_000
        assert buy_4.amount == 2_000_000
        assert buy_5.amount == 2_000_000
        executor.sell.assert_any_await(wallets[0], 300_000)
        executor.sell.assert_any_await(wallets[2], 450_000)
        assert executor.buy.await_count == 3
        assert len(run.trades) == 5

    @pytest.mark.parametrize("seed", range(10))
    @pytest.mark.asyncio
    async def test_sells_never_exceed_balance_or_fraction(self, liquidation_config, executor, wallets, sleep, event, seed):
        rng = random.Random(seed)
        balances = [rng.randrange(0, 2 * BOUGHT) for _ in wallets]
        balances[0] = max(balances[0], 1)
        sequencer, _ = make_sequencer(liquidation_config, executor, wallets, balances, sleep, random.Random(seed))

        run = await sequencer.run(event)

        for record, bps in ((run.records[0], 5000), (run.records[2], 4500)):
            if record.executed:
                assert record.amount <= record.observed_balance
                assert record.amount <= BOUGHT * bps // 10_000

    @pytest.mark.parametrize("seed", range(10))
    @pytest.mark.asyncio
    async def test_first_five_draws_are_distinct(self, liquidation_config, executor, wallets, sleep, event, seed):
        sequencer, _ = make_sequencer(
            liquidation_config, executor, wallets, [BOUGHT] * 5, sleep, random.Random(seed)
        )

        run = await sequencer.run(event)

        assert len(run.records) == 5
        assert {r.wallet.address for r in run.records} == {w.address for w in wallets}

    @pytest.mark.asyncio
    async def test_all_wallets_empty_skips_run(self, liquidation_config, executor, wallets, sleep, event):
        sequencer, inspector = make_sequencer(liquidation_config, executor, wallets, [0] * 5, sleep)

        run = await sequencer.run(event)

        assert run.outcome == RunOutcome.SKIPPED
        assert run.records == []
        executor.buy.assert_not_awaited()
        executor.sell.assert_not_awaited()
        sleep.assert_not_awaited()
        assert get_metrics().get_counter("liquidation_runs", labels={"outcome": "skipped"}) == 1

    @pytest.mark.asyncio
    async def test_abort_when_every_checked_wallet_is_empty(self, liquidation_config, executor, wallets, sleep, event):
        """Test wallets 1-2 empty, 3 onward funded: step 1 skips, step 2 aborts"""
        balances = [0, 0, 500_000, 500_000, 500_000]
        sequencer, _ = make_sequencer(liquidation_config, executor, wallets, balances, sleep)

        run = await sequencer.run(event)

        assert run.outcome == RunOutcome.ABORTED
        assert [r.skipped_reason for r in run.records] == ["wallet_empty", "all_checked_wallets_empty"]
        executor.sell.assert_not_awaited()
        executor.buy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_current_wallet_does_not_abort_buy(self, liquidation_config, executor, wallets, sleep, event):
        """Test the abort looks at every wallet checked so far, not only the current one"""
        balances = [400_000, 0, 0, 0, 0]
        sequencer, _ = make_sequencer(liquidation_config, executor, wallets, balances, sleep)

        run = await sequencer.run(event)

        assert run.outcome == RunOutcome.COMPLETED
        assert run.records[1].observed_balance == 0
        assert run.records[1].executed
        assert run.records[2].skipped_reason == "wallet_empty"
        executor.sell.assert_awaited_once_with(wallets[0], 400_000)
        assert executor.buy.await_count == 3

    @pytest.mark.asyncio
    async def test_empty_first_wallet_then_funded(self, liquidation_config, executor, wallets, sleep, event):
        """Test a skipped sell followed by a funded wallet keeps going"""
        balances = [0, 800_000, 0, 0, 0]
        sequencer, _ = make_sequencer(liquidation_config, executor, wallets, balances, sleep)

        run = await sequencer.run(event)

        assert run.outcome == RunOutcome.COMPLETED
        assert run.records[0].skipped_reason == "wallet_empty"
        assert run.records[1].executed

    @pytest.mark.asyncio
    async def test_zero_sell_amount_is_skipped(self, liquidation_config, executor, wallets, sleep):
        """Test a truncated-to-zero sell is skipped, not sent"""
        tiny_event = BuyEvent(signer="RetailBuyer111", token_amount=1, native_spent=100_000_000)
        sequencer, _ = make_sequencer(liquidation_config, executor, wallets, [10] * 5, sleep)

        run = await sequencer.run(tiny_event)

        assert run.records[0].skipped_reason == "sell_amount_zero"
        executor.sell.assert_not_awaited()
        assert run.outcome == RunOutcome.COMPLETED

    @pytest.mark.asyncio
    async def test_delays_between_steps_only(self, liquidation_config, executor, wallets, sleep, event):
        sequencer, _ = make_sequencer(
            liquidation_config, executor, wallets, [BOUGHT] * 5, sleep, random.Random(11)
        )

        await sequencer.run(event)

        assert sleep.await_count == 4
        for call in sleep.await_args_list:
            assert 1.0 <= call.args[0] <= 5.0

    @pytest.mark.asyncio
    async def test_swap_failure_ends_run(self, liquidation_config, executor, wallets, sleep, event):
        """Test a failed swap drops the remaining steps and keeps completed trades"""
        executor.buy.side_effect = QuoteError("Quote error: no route", status=400, body="no route")
        sequencer, _ = make_sequencer(liquidation_config, executor, wallets, [BOUGHT] * 5, sleep)

        run = await sequencer.run(event)

        assert run.outcome == RunOutcome.FAILED
        assert run.error == "Quote error: no route"
        assert len(run.records) == 2
        assert len(run.trades) == 1
        assert run.records[1].signature is None
        assert get_metrics().get_counter("liquidation_runs", labels={"outcome": "failed"}) == 1

    @pytest.mark.asyncio
    async def test_unfinalized_sell_is_not_a_trade(self, liquidation_config, executor, wallets, sleep, event):
        executor.sell.side_effect = SubmissionError("Transaction not finalized after 90.0s", signature="Pending")
        sequencer, _ = make_sequencer(liquidation_config, executor, wallets, [BOUGHT] * 5, sleep)

        run = await sequencer.run(event)

        assert run.outcome == RunOutcome.FAILED
        assert run.trades == []

    @pytest.mark.asyncio
    async def test_each_run_gets_a_fresh_pool(self, liquidation_config, executor, wallets, sleep, event):
        sequencer, _ = make_sequencer(liquidation_config, executor, wallets, [BOUGHT] * 5, sleep)

        first = await sequencer.run(event)
        second = await sequencer.run(event)

        assert first.pool is not second.pool
        assert [r.wallet for r in first.records] == [r.wallet for r in second.records] == wallets

    @pytest.mark.asyncio
    async def test_run_to_dict(self, liquidation_config, executor, wallets, sleep, event):
        sequencer, _ = make_sequencer(liquidation_config, executor, wallets, [0] * 5, sleep)

        run = await sequencer.run(event)
        data = run.to_dict()

        assert data["outcome"] == "skipped"
        assert data["signer"] == "RetailBuyer111"
        assert data["steps"] == []
