"""
Unit tests for the Run Queue (services/run_queue.py)

Tests:
- One run at a time
- Dropping when full
- Optional signer deduplication
- Worker survives crashed runs
"""

import asyncio
from unittest.mock import MagicMock

import pytest
import structlog

from liquidator.core.metrics import get_metrics
from liquidator.services.buy_detector import BuyEvent
from liquidator.services.run_queue import RunQueue


def make_event(signer="Buyer111", amount=1_000_000):
    return BuyEvent(signer=signer, token_amount=amount, native_spent=100_000_000)


class GatedSequencer:
    """Sequencer stub whose runs block until released"""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.events = []
        self.active = 0
        self.max_active = 0

    async def run(self, event):
        self.events.append(event)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            await self.release.wait()
        finally:
            self.active -= 1
        return MagicMock(outcome=None)


@pytest.fixture
def sequencer():
    return GatedSequencer()


class TestRunQueue:
    """Test queueing policy"""

    def test_capacity_must_be_positive(self, sequencer):
        with pytest.raises(ValueError):
            RunQueue(sequencer, capacity=0)

    @pytest.mark.asyncio
    async def test_drops_when_full(self, sequencer):
        """Test one running plus one queued; further events are dropped"""
        queue = RunQueue(sequencer, capacity=1)
        await queue.start()

        assert await queue.submit(make_event("A")) is True
        await asyncio.wait_for(sequencer.started.wait(), timeout=1.0)

        assert await queue.submit(make_event("B")) is True
        assert await queue.submit(make_event("C")) is False
        assert queue.events_dropped == 1
        assert get_metrics().get_counter(
            "liquidation_events_dropped", labels={"reason": "queue_full"}
        ) == 1

        sequencer.release.set()
        await asyncio.wait_for(queue.join(), timeout=1.0)
        await queue.stop()

        assert [e.signer for e in sequencer.events] == ["A", "B"]
        assert sequencer.max_active == 1
        assert queue.runs_finished == 2

    @pytest.mark.asyncio
    async def test_submit_does_not_block(self, sequencer):
        """Test submit returns immediately even with no worker running"""
        queue = RunQueue(sequencer, capacity=1)

        accepted = await asyncio.wait_for(queue.submit(make_event()), timeout=0.1)
        dropped = await asyncio.wait_for(queue.submit(make_event()), timeout=0.1)

        assert accepted is True
        assert dropped is False
        assert queue.pending == 1

    @pytest.mark.asyncio
    async def test_same_signer_allowed_by_default(self, sequencer):
        queue = RunQueue(sequencer, capacity=2)

        assert await queue.submit(make_event("A")) is True
        assert await queue.submit(make_event("A")) is True

    @pytest.mark.asyncio
    async def test_dedupe_pending_signers(self, sequencer):
        queue = RunQueue(sequencer, capacity=5, dedupe_signers=True)
        await queue.start()

        assert await queue.submit(make_event("A")) is True
        await asyncio.wait_for(sequencer.started.wait(), timeout=1.0)

        assert await queue.submit(make_event("A")) is False
        assert await queue.submit(make_event("B")) is True

        sequencer.release.set()
        await asyncio.wait_for(queue.join(), timeout=1.0)

        assert await queue.submit(make_event("A")) is True
        await asyncio.wait_for(queue.join(), timeout=1.0)
        await queue.stop()

        assert [e.signer for e in sequencer.events] == ["A", "B", "A"]

    @pytest.mark.asyncio
    async def test_worker_survives_crash(self):
        calls = []

        class CrashingSequencer:
            async def run(self, event):
                calls.append(event.signer)
                if event.signer == "boom":
                    raise RuntimeError("unexpected")
                return MagicMock()

        queue = RunQueue(CrashingSequencer(), capacity=2)
        await queue.start()

        await queue.submit(make_event("boom"))
        await queue.submit(make_event("fine"))
        await asyncio.wait_for(queue.join(), timeout=1.0)

        assert calls == ["boom", "fine"]
        assert queue.runs_finished == 1
        assert queue.running
        assert get_metrics().get_counter("liquidation_run_crashes") == 1

        await queue.stop()
        assert not queue.running

    @pytest.mark.asyncio
    async def test_stop_cancels_run_in_progress(self, sequencer):
        queue = RunQueue(sequencer)
        await queue.start()
        await queue.submit(make_event())
        await asyncio.wait_for(sequencer.started.wait(), timeout=1.0)

        await queue.stop()

        assert sequencer.active == 0
        assert queue.runs_finished == 0

    @pytest.mark.asyncio
    async def test_runs_log_with_run_context(self):
        """Test each run's log events carry its run number and buyer"""
        seen = []

        class ContextSequencer:
            async def run(self, event):
                seen.append(structlog.contextvars.get_contextvars())
                return MagicMock()

        queue = RunQueue(ContextSequencer(), capacity=2)
        await queue.start()

        await queue.submit(make_event("A"))
        await queue.submit(make_event("B"))
        await asyncio.wait_for(queue.join(), timeout=1.0)
        await queue.stop()

        assert seen == [{"run": 1, "signer": "A"}, {"run": 2, "signer": "B"}]
