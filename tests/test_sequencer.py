"""Tests for the CommandSequencer state machine."""

import asyncio
import logging

import pytest

from star_cutter.core.batch import CommandBatch, ConnectionState, JobEvent
from star_cutter.core.errors import (
    MachineConnectionError,
    MachineLinkError,
    ProbeMeasurementError,
    SequencingViolation,
    WaitTimeoutError,
)
from star_cutter.core.sequencer import CommandSequencer, SequencerState
from star_cutter.link import DryRunLink


MOVE = CommandBatch.of("move", ["G0 X10 Y10"])
STOP = CommandBatch.of("stop", ["M5"])


class RejectingLink(DryRunLink):
    """DryRunLink whose controller answers some batches with an error."""

    def __init__(self, reject: dict[str, str], **kwargs):
        super().__init__(**kwargs)
        self.reject = reject

    async def _complete_batch(self, batch: CommandBatch) -> None:
        if batch.name in self.reject:
            await self._notify_batch_complete(self.reject[batch.name])
            return
        await super()._complete_batch(batch)


class UnreachableLink(DryRunLink):
    """DryRunLink whose controller cannot be opened."""

    async def open(self) -> None:
        raise MachineConnectionError("Cannot open /dev/ttyACM0: no such device")


async def ready_sequencer(link: DryRunLink, timeout: float = 1.0) -> CommandSequencer:
    sequencer = CommandSequencer(link, timeout=timeout)
    await sequencer.await_connection()
    await sequencer.home()
    return sequencer


class TestSequencerHappyPath:
    """Tests for the normal connect/home/run flow."""

    @pytest.mark.asyncio
    async def test_connect_home_run(self):
        """Test the state transitions of a normal run."""
        link = DryRunLink()
        sequencer = CommandSequencer(link, timeout=1.0)
        assert sequencer.state == SequencerState.IDLE
        assert sequencer.connection_state == ConnectionState.DISCONNECTED

        await sequencer.await_connection()
        assert sequencer.state == SequencerState.CONNECTED
        assert sequencer.connection_state == ConnectionState.CONNECTED

        await sequencer.home()
        assert sequencer.state == SequencerState.READY
        assert link.homing_requests == 1

        await sequencer.run_batch(MOVE)
        await sequencer.run_batch(STOP)
        assert sequencer.state == SequencerState.READY
        assert link.batches == [MOVE, STOP]

        await sequencer.close()
        assert sequencer.connection_state == ConnectionState.CLOSED
        assert not link.is_open

    @pytest.mark.asyncio
    async def test_slow_controller(self):
        """Test that completions arriving later than submission are awaited."""
        link = DryRunLink(response_delay=0.02)
        sequencer = await ready_sequencer(link)

        await sequencer.run_batch(MOVE)
        assert sequencer.state == SequencerState.READY


class TestSequencerOrdering:
    """Tests for rejecting out-of-order operations."""

    @pytest.mark.asyncio
    async def test_home_before_connection(self):
        """Homing requires a connected controller."""
        sequencer = CommandSequencer(DryRunLink(), timeout=1.0)

        with pytest.raises(SequencingViolation):
            await sequencer.home()
        assert sequencer.state == SequencerState.IDLE

    @pytest.mark.asyncio
    async def test_batch_before_homing(self):
        """Batches require a homed machine."""
        link = DryRunLink()
        sequencer = CommandSequencer(link, timeout=1.0)
        await sequencer.await_connection()

        with pytest.raises(SequencingViolation):
            await sequencer.run_batch(MOVE)
        assert link.batches == []
        assert sequencer.state == SequencerState.CONNECTED

    @pytest.mark.asyncio
    async def test_overlapping_batches(self):
        """A second batch cannot start while the first is outstanding."""
        link = DryRunLink(stall_batches={"move"})
        sequencer = await ready_sequencer(link)

        first = asyncio.create_task(sequencer.run_batch(MOVE))
        await asyncio.sleep(0.01)
        assert sequencer.state == SequencerState.RUNNING

        with pytest.raises(SequencingViolation):
            await sequencer.run_batch(STOP)
        assert link.batches == [MOVE]

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        await sequencer.close()

    @pytest.mark.asyncio
    async def test_link_rejects_overlap(self):
        """The link itself refuses a second outstanding batch."""
        link = DryRunLink(stall_batches={"move"})
        await link.open()
        await link.submit_batch(MOVE)

        with pytest.raises(SequencingViolation):
            await link.submit_batch(STOP)
        await link.close()

    @pytest.mark.asyncio
    async def test_await_connection_twice(self):
        """Connecting is only allowed from IDLE."""
        sequencer = CommandSequencer(DryRunLink(), timeout=1.0)
        await sequencer.await_connection()

        with pytest.raises(SequencingViolation):
            await sequencer.await_connection()
        await sequencer.close()


class TestSequencerFailures:
    """Tests for failures moving the sequencer to FAILED."""

    @pytest.mark.asyncio
    async def test_homing_timeout(self):
        """A homing cycle that never completes times out and fails the run."""
        link = DryRunLink(stall_homing=True)
        sequencer = CommandSequencer(link, timeout=0.05)
        await sequencer.await_connection()

        with pytest.raises(WaitTimeoutError) as exc_info:
            await sequencer.home()

        assert exc_info.value.timeout == 0.05
        assert sequencer.state == SequencerState.FAILED
        assert sequencer.failed

        with pytest.raises(SequencingViolation):
            await sequencer.run_batch(MOVE)
        await sequencer.close()

    @pytest.mark.asyncio
    async def test_batch_timeout(self):
        """A batch that never completes times out and fails the run."""
        link = DryRunLink(stall_batches={"move"})
        sequencer = await ready_sequencer(link, timeout=0.05)

        with pytest.raises(WaitTimeoutError):
            await sequencer.run_batch(MOVE)
        assert sequencer.state == SequencerState.FAILED
        await sequencer.close()

    @pytest.mark.asyncio
    async def test_controller_error(self):
        """An error response fails the batch with the controller's message."""
        link = RejectingLink({"move": "error:20"})
        sequencer = await ready_sequencer(link)

        with pytest.raises(MachineLinkError) as exc_info:
            await sequencer.run_batch(MOVE)

        assert exc_info.value.detail == "error:20"
        assert sequencer.state == SequencerState.FAILED
        await sequencer.close()

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        """A link that can't be opened fails the run."""
        sequencer = CommandSequencer(UnreachableLink(), timeout=1.0)

        with pytest.raises(MachineConnectionError):
            await sequencer.await_connection()
        assert sequencer.state == SequencerState.FAILED

    @pytest.mark.asyncio
    async def test_connection_lost_during_batch(self):
        """Losing the link wakes the waiting batch with an error."""
        link = DryRunLink(stall_batches={"move"})
        sequencer = await ready_sequencer(link)

        running = asyncio.create_task(sequencer.run_batch(MOVE))
        await asyncio.sleep(0.01)
        await link._notify_close("connection lost")

        with pytest.raises(MachineLinkError, match="connection lost"):
            await running
        assert sequencer.state == SequencerState.FAILED
        assert sequencer.connection_state == ConnectionState.CLOSED
        await sequencer.close()


class TestSequencerAbort:
    """Tests for the best-effort abort batch."""

    @pytest.mark.asyncio
    async def test_abort_after_failure(self):
        """Abort still reaches the controller once the run has failed."""
        link = DryRunLink(stall_batches={"move"})
        sequencer = await ready_sequencer(link, timeout=0.05)

        with pytest.raises(WaitTimeoutError):
            await sequencer.run_batch(MOVE)

        assert await sequencer.abort(STOP, timeout=1.0) is True
        assert link.batches == [MOVE, STOP]
        assert sequencer.state == SequencerState.FAILED
        await sequencer.close()

    @pytest.mark.asyncio
    async def test_abort_rejected(self):
        """Abort reports a rejected batch without raising."""
        link = RejectingLink({"stop": "ALARM:1"})
        sequencer = await ready_sequencer(link)

        assert await sequencer.abort(STOP, timeout=1.0) is False
        await sequencer.close()

    @pytest.mark.asyncio
    async def test_abort_unacknowledged(self):
        """Abort gives up after its timeout."""
        link = DryRunLink(stall_batches={"stop"})
        sequencer = await ready_sequencer(link)

        assert await sequencer.abort(STOP, timeout=0.05) is False
        await sequencer.close()

    @pytest.mark.asyncio
    async def test_abort_without_link(self):
        """Abort is a no-op when the link was never opened."""
        link = DryRunLink()
        sequencer = CommandSequencer(link, timeout=1.0)

        assert await sequencer.abort(STOP) is False
        assert link.batches == []


class TestLinkRouter:
    """Tests for turning controller status lines into gate signals."""

    @pytest.mark.asyncio
    async def test_status_report_logs_full_position(self, caplog):
        """The stopped position is logged and only Z reaches the gate."""
        sequencer = CommandSequencer(DryRunLink())

        with caplog.at_level(logging.INFO, logger="star_cutter.core.sequencer"):
            await sequencer._router.on_status_line("[PRB:-2.500,-1.000,-105.123:1]")

        assert "X=-2.500 Y=-1.000 Z=-105.123 (contact)" in caplog.text
        assert await sequencer.gate.snapshot(JobEvent.PROBE_MEASUREMENT) == (True, -105.123)

    @pytest.mark.asyncio
    async def test_status_report_without_contact_signals_error(self, caplog):
        sequencer = CommandSequencer(DryRunLink())

        with caplog.at_level(logging.INFO, logger="star_cutter.core.sequencer"):
            await sequencer._router.on_status_line("[PRB:0.000,0.000,-182.675:0]")

        assert "Z=-182.675 (no contact)" in caplog.text
        signalled, payload = await sequencer.gate.snapshot(JobEvent.PROBE_MEASUREMENT)
        assert signalled
        assert isinstance(payload, ProbeMeasurementError)

    @pytest.mark.asyncio
    async def test_other_lines_signal_nothing(self):
        sequencer = CommandSequencer(DryRunLink())

        await sequencer._router.on_status_line("[MSG:'$H'|'$X' to unlock]")

        signalled, _ = await sequencer.gate.snapshot(JobEvent.PROBE_MEASUREMENT)
        assert not signalled
