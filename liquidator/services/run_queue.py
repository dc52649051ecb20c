"""
Run queue
Serializes liquidation runs on a single background worker
"""

import asyncio
from typing import Optional, Set

from liquidator.core.logger import get_logger, log_context
from liquidator.core.metrics import get_metrics
from liquidator.services.buy_detector import BuyEvent
from liquidator.services.liquidation_sequencer import LiquidationRun, LiquidationSequencer


logger = get_logger(__name__)
metrics = get_metrics()


class RunQueue:
    """
    Bounded queue of BuyEvents drained by one worker

    Only one liquidation run executes at a time, so overlapping events never
    race on wallet balances. submit() never blocks the feed: when the queue is
    full the event is dropped.

    With dedupe_signers, an event is also dropped while its signer already has
    a queued or running run.
    """

    def __init__(self, sequencer: LiquidationSequencer, capacity: int = 1, dedupe_signers: bool = False):
        if capacity < 1:
            raise ValueError("Run queue capacity must be at least 1")

        self.sequencer = sequencer
        self.capacity = capacity
        self.dedupe_signers = dedupe_signers

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._pending_signers: Set[str] = set()
        self._worker_task: Optional[asyncio.Task] = None
        self.last_run: Optional[LiquidationRun] = None

        self.events_accepted = 0
        self.events_dropped = 0
        self.events_started = 0
        self.runs_finished = 0

    @property
    def running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the background worker"""
        if self.running:
            return
        self._worker_task = asyncio.create_task(self._worker())
        logger.info("run_queue_started", capacity=self.capacity, dedupe_signers=self.dedupe_signers)

    async def stop(self) -> None:
        """Cancel the worker; a run in progress is abandoned"""
        task, self._worker_task = self._worker_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("run_queue_stopped", dropped=self.events_dropped, finished=self.runs_finished)

    async def submit(self, event: BuyEvent) -> bool:
        """
        Enqueue an event without waiting

        Returns:
            True if the event was accepted
        """
        if self.dedupe_signers and event.signer in self._pending_signers:
            return self._drop(event, "signer_pending")

        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return self._drop(event, "queue_full")

        self._pending_signers.add(event.signer)
        self.events_accepted += 1
        metrics.set_gauge("run_queue_depth", self._queue.qsize())
        return True

    async def join(self) -> None:
        """Wait until every accepted event has been processed"""
        await self._queue.join()

    def _drop(self, event: BuyEvent, reason: str) -> bool:
        self.events_dropped += 1
        metrics.increment_counter("liquidation_events_dropped", labels={"reason": reason})
        logger.warning(
            "liquidation_event_dropped",
            reason=reason,
            signer=event.signer,
            token_amount=event.token_amount,
            signature=event.signature
        )
        return False

    async def _worker(self) -> None:
        while True:
            event = await self._queue.get()
            metrics.set_gauge("run_queue_depth", self._queue.qsize())
            self.events_started += 1
            try:
                with log_context(run=self.events_started, signer=event.signer):
                    self.last_run = await self.sequencer.run(event)
                self.runs_finished += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                metrics.increment_counter("liquidation_run_crashes")
                logger.exception(
                    "liquidation_run_crashed",
                    signer=event.signer,
                    error=str(e),
                    error_type=type(e).__name__
                )
            finally:
                self._pending_signers.discard(event.signer)
                self._queue.task_done()
