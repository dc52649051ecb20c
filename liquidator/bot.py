"""
Bot wiring
Builds the clients and services for the liquidation bot and the round bot
"""

import asyncio
import random
from typing import Optional

from liquidator.clients.jupiter_client import JupiterClient
from liquidator.core.balance_inspector import BalanceInspector
from liquidator.core.config import BotConfig
from liquidator.core.errors import ConfigurationError
from liquidator.core.logger import get_logger
from liquidator.core.metrics import get_metrics
from liquidator.core.rpc_client import RPCClient
from liquidator.core.tx_signer import TransactionSigner
from liquidator.core.tx_submitter import TransactionSubmitter
from liquidator.core.wallet_manager import WalletRole, load_wallets
from liquidator.services.buy_detector import BuyDetector
from liquidator.services.liquidation_sequencer import LiquidationSequencer
from liquidator.services.round_bot import RoundBot
from liquidator.services.run_queue import RunQueue
from liquidator.services.swap_executor import SwapExecutor
from liquidator.services.transaction_listener import TransactionStreamListener


logger = get_logger(__name__)
metrics = get_metrics()


class _TradingBot:
    """Shared RPC + aggregator plumbing"""

    def __init__(self, config: BotConfig, tracked_mint: str, native_mint: str,
                 priority_fee_lamports: Optional[int] = None):
        self.config = config
        self.rpc_client = RPCClient(config.rpc_config)
        self.jupiter_client = JupiterClient(config.jupiter_config, priority_fee_lamports)
        self.signer = TransactionSigner()
        self.submitter = TransactionSubmitter(self.rpc_client, config.transaction_config)
        self.executor = SwapExecutor(
            jupiter_client=self.jupiter_client,
            signer=self.signer,
            submitter=self.submitter,
            tracked_mint=tracked_mint,
            native_mint=native_mint
        )
        self.inspector = BalanceInspector(self.rpc_client, tracked_mint)

    async def _open(self) -> None:
        await self.rpc_client.start()
        await self.jupiter_client.start()

    async def _close(self) -> None:
        await self.jupiter_client.stop()
        await self.rpc_client.stop()


class LiquidationBot(_TradingBot):
    """
    Feed listener -> buy detector -> run queue -> liquidation sequencer

    Usage:
        bot = LiquidationBot(config)
        await bot.start()   # returns after stop()
    """

    def __init__(self, config: BotConfig, rng: Optional[random.Random] = None):
        if config.liquidation_config is None:
            raise ConfigurationError("Missing required configuration section: liquidation")

        liquidation = config.liquidation_config
        super().__init__(config, liquidation.tracked_mint, liquidation.native_mint)

        self.wallets = load_wallets(liquidation.wallet_keys, WalletRole.LIQUIDATION)
        self.detector = BuyDetector(
            tracked_mint=liquidation.tracked_mint,
            min_buy_threshold_lamports=liquidation.min_buy_threshold_lamports,
            excluded_signers=liquidation.excluded_signers
        )
        self.sequencer = LiquidationSequencer(
            config=liquidation,
            executor=self.executor,
            inspector=self.inspector,
            wallets=self.wallets,
            rng=rng
        )
        self.run_queue = RunQueue(
            self.sequencer,
            capacity=liquidation.queue_capacity,
            dedupe_signers=liquidation.dedupe_pending_signers
        )
        self.listener = TransactionStreamListener(
            config=config.feed_config,
            tracked_mint=liquidation.tracked_mint,
            detector=self.detector,
            on_buy=self.run_queue.submit
        )
        self._listener_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        await self._open()
        await self.run_queue.start()

        logger.info(
            "liquidation_bot_started",
            mint=self.config.liquidation_config.tracked_mint,
            wallets=[wallet.short_address for wallet in self.wallets],
            min_buy_threshold_lamports=self.config.liquidation_config.min_buy_threshold_lamports
        )

        self._listener_task = asyncio.create_task(self.listener.run())
        try:
            await self._listener_task
        except asyncio.CancelledError:
            logger.info("liquidation_bot_listener_cancelled")
        finally:
            await self._shutdown()

    async def stop(self) -> None:
        await self.listener.stop()
        if self._listener_task is not None and not self._listener_task.done():
            self._listener_task.cancel()

    async def _shutdown(self) -> None:
        await self.run_queue.stop()
        await self._close()
        logger.info("liquidation_bot_stopped", metrics=metrics.export_metrics())


class RoundTradingBot(_TradingBot):
    """Round bot over the configured round wallets"""

    def __init__(self, config: BotConfig, rng: Optional[random.Random] = None):
        if config.round_config is None:
            raise ConfigurationError("Missing required configuration section: rounds")

        rounds = config.round_config
        super().__init__(
            config,
            rounds.tracked_mint,
            rounds.native_mint,
            priority_fee_lamports=rounds.priority_fee_lamports
        )

        self.wallets = load_wallets(rounds.wallet_keys, WalletRole.ROUND)
        self.round_bot = RoundBot(
            config=rounds,
            executor=self.executor,
            inspector=self.inspector,
            wallets=self.wallets,
            rng=rng
        )
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        await self._open()
        self._task = asyncio.create_task(self.round_bot.run())
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("round_bot_cancelled")
        finally:
            await self._close()

    async def stop(self) -> None:
        self.round_bot.stop()
        if self._task is not None and not self._task.done():
            self._task.cancel()
