"""Tests for the latching EventGate."""

import asyncio

import pytest

from star_cutter.core.batch import CommandBatch, JobEvent
from star_cutter.core.gate import EventGate


class TestEventGate:
    """Tests for arm/wait/signal correlation."""

    @pytest.mark.asyncio
    async def test_signal_before_wait_is_latched(self):
        """A signal that arrives before the wait starts must not be lost."""
        gate = EventGate()
        await gate.arm(JobEvent.BATCH_COMPLETE)
        await gate.signal(JobEvent.BATCH_COMPLETE)

        assert await gate.wait_for(JobEvent.BATCH_COMPLETE, timeout=0.1) is True

    @pytest.mark.asyncio
    async def test_latched_signal_with_zero_timeout(self):
        """A latched signal satisfies even a zero timeout."""
        gate = EventGate()
        await gate.signal(JobEvent.HOMING_COMPLETE)

        assert await gate.wait_for(JobEvent.HOMING_COMPLETE, timeout=0) is True

    @pytest.mark.asyncio
    async def test_signal_during_wait_wakes_waiter(self):
        """A waiter is woken by a signal arriving later."""
        gate = EventGate()
        await gate.arm(JobEvent.BATCH_COMPLETE)

        waiter = asyncio.create_task(gate.wait_for(JobEvent.BATCH_COMPLETE, timeout=1.0))
        await asyncio.sleep(0.01)
        assert not waiter.done()

        await gate.signal(JobEvent.BATCH_COMPLETE)
        assert await waiter is True

    @pytest.mark.asyncio
    async def test_timeout_returns_false(self):
        """Waiting on a never-signalled event times out."""
        gate = EventGate()
        await gate.arm(JobEvent.CONNECTED)

        assert await gate.wait_for(JobEvent.CONNECTED, timeout=0.05) is False

    @pytest.mark.asyncio
    async def test_arm_clears_stale_signal(self):
        """A signal from a previous cycle must not satisfy the next one."""
        gate = EventGate()

        await gate.arm(JobEvent.BATCH_COMPLETE)
        await gate.signal(JobEvent.BATCH_COMPLETE, "error:20")
        await gate.arm(JobEvent.BATCH_COMPLETE)

        assert await gate.wait_for(JobEvent.BATCH_COMPLETE, timeout=0.05) is False
        assert gate.payload(JobEvent.BATCH_COMPLETE) is None

    @pytest.mark.asyncio
    async def test_wait_consumes_signal(self):
        """Each signal satisfies one wait."""
        gate = EventGate()
        await gate.arm(JobEvent.BATCH_COMPLETE)
        await gate.signal(JobEvent.BATCH_COMPLETE)

        assert await gate.wait_for(JobEvent.BATCH_COMPLETE, timeout=0.05) is True
        assert await gate.wait_for(JobEvent.BATCH_COMPLETE, timeout=0.05) is False

    @pytest.mark.asyncio
    async def test_payload_survives_wait(self):
        """The payload stays readable after the wait consumed the signal."""
        gate = EventGate()
        await gate.arm(JobEvent.PROBE_MEASUREMENT)
        await gate.signal(JobEvent.PROBE_MEASUREMENT, -105.123)

        assert await gate.wait_for(JobEvent.PROBE_MEASUREMENT, timeout=0.1)
        assert gate.payload(JobEvent.PROBE_MEASUREMENT) == -105.123

    @pytest.mark.asyncio
    async def test_event_kinds_are_independent(self):
        """Signalling one kind doesn't satisfy a wait on another."""
        gate = EventGate()
        await gate.arm(JobEvent.HOMING_COMPLETE)
        await gate.signal(JobEvent.BATCH_COMPLETE)

        assert await gate.wait_for(JobEvent.HOMING_COMPLETE, timeout=0.05) is False

    @pytest.mark.asyncio
    async def test_snapshot_does_not_consume(self):
        """Snapshot reads flag and payload without clearing them."""
        gate = EventGate()
        assert await gate.snapshot(JobEvent.PROBE_MEASUREMENT) == (False, None)

        await gate.signal(JobEvent.PROBE_MEASUREMENT, 1.5)
        assert await gate.snapshot(JobEvent.PROBE_MEASUREMENT) == (True, 1.5)
        assert await gate.wait_for(JobEvent.PROBE_MEASUREMENT, timeout=0.05) is True


class TestCommandBatch:
    """Tests for CommandBatch construction."""

    def test_commands_are_frozen_and_stripped(self):
        batch = CommandBatch.of("probe", [" G0 Z-5 ", "G0 X-5"])
        assert batch.commands == ("G0 Z-5", "G0 X-5")
        assert len(batch) == 2
        assert list(batch) == ["G0 Z-5", "G0 X-5"]

    def test_empty_batch_is_rejected(self):
        with pytest.raises(ValueError):
            CommandBatch.of("empty", [])

    def test_blank_command_is_rejected(self):
        with pytest.raises(ValueError):
            CommandBatch.of("blank", ["M5", "   "])
