"""End-to-end tests of the star cutting job over a simulated controller."""

import asyncio

import pytest

from star_cutter.core.batch import CommandBatch
from star_cutter.core.config import JobConfig
from star_cutter.core.errors import (
    JobFailedError,
    JobPhase,
    MachineConnectionError,
    MachineLinkError,
    ProbeMeasurementError,
    SequencingViolation,
    WaitTimeoutError,
)
from star_cutter.core.sequencer import CommandSequencer
from star_cutter.job.orchestrator import JobOrchestrator
from star_cutter.link import DryRunLink


class ScriptedLink(DryRunLink):
    """
    DryRunLink with per-batch behaviour.

    Attributes:
        probe_by_batch: Batch name -> (z, triggered) its probe cycles report.
        silent_batches: Batches whose probe cycles report nothing.
        reject: Batch name -> controller error to answer with.
    """

    def __init__(self, probe_by_batch=None, silent_batches=(), reject=None, **kwargs):
        super().__init__(**kwargs)
        self.probe_by_batch = probe_by_batch or {}
        self.silent_batches = set(silent_batches)
        self.reject = reject or {}

    async def _complete_batch(self, batch: CommandBatch) -> None:
        if batch.name in self.reject:
            await self._notify_batch_complete(self.reject[batch.name])
        elif batch.name in self.silent_batches:
            await self._notify_batch_complete(None)
        else:
            if batch.name in self.probe_by_batch:
                self.probe_z, self.probe_triggered = self.probe_by_batch[batch.name]
            await super()._complete_batch(batch)


class UnreachableLink(DryRunLink):
    async def open(self) -> None:
        raise MachineConnectionError("USB device with ID '2341:0043' not found")


def make_job(link: DryRunLink, timeout: float = 1.0, **job_overrides) -> JobOrchestrator:
    job = JobConfig(settle_delay=0, **job_overrides)
    return JobOrchestrator(CommandSequencer(link, timeout=timeout), job)


def batch_names(link: DryRunLink) -> list[str]:
    return [batch.name for batch in link.batches]


def batch(link: DryRunLink, name: str) -> CommandBatch:
    return next(b for b in link.batches if b.name == name)


class TestJobSuccess:
    """Tests for a complete, successful job."""

    @pytest.mark.asyncio
    async def test_default_job(self):
        """Test the full command stream of the standard 9 point, 7 pass job."""
        link = DryRunLink(probe_z=-105.123)
        orchestrator = make_job(link)

        result = await orchestrator.run()

        assert result.measured_z == -105.123
        assert result.reset_command == "G10 L20 P0 X220 Y205 Z106.168"
        assert result.passes_completed == 7
        assert link.homing_requests == 1

        assert batch_names(link) == [
            "probe-coarse",
            "probe-fine",
            "probe-retract",
            "calibrate",
            "spindle-start",
            "move-to-start",
            *[f"pass-{i}" for i in range(1, 8)],
            "shutdown",
        ]
        assert batch(link, "calibrate").commands == ("G10 L20 P0 X220 Y205 Z106.168",)
        assert batch(link, "spindle-start").commands == ("G21", "G90", "M3 S9000")
        assert batch(link, "move-to-start").commands == ("G0 X150.000 Y100.000 Z4.175",)
        assert batch(link, "shutdown").commands == ("M5", "$H", "M30")

        first_pass = batch(link, "pass-1")
        assert first_pass.commands[0] == "G1 Z2.721 F355.600"
        assert first_pass.commands[1] == "F1117.600"
        assert first_pass.commands[2] == "G1 X150.000 Y100.000"
        assert first_pass.commands[-1] == "G1 X150.000 Y100.000"
        assert len(first_pass) == 2 + 19

        assert batch(link, "pass-7").commands[0] == "G1 Z0.000 F355.600"
        assert not link.is_open

    @pytest.mark.asyncio
    async def test_passes_cut_progressively_deeper(self):
        """Test that each pass plunges below the previous one."""
        link = DryRunLink()
        await make_job(link, total_passes=4, material_thickness=6.0).run()

        plunges = [b.commands[0] for b in link.batches if b.name.startswith("pass-")]
        assert plunges == [
            "G1 Z4.500 F355.600",
            "G1 Z3.000 F355.600",
            "G1 Z1.500 F355.600",
            "G1 Z0.000 F355.600",
        ]

    @pytest.mark.asyncio
    async def test_only_fine_probe_calibrates(self):
        """Test that the coarse probe's measurement is not used."""
        link = ScriptedLink(
            probe_by_batch={"probe-coarse": (-100.0, True), "probe-fine": (-105.123, True)}
        )
        result = await make_job(link).run()

        assert result.measured_z == -105.123
        assert result.reset_command == "G10 L20 P0 X220 Y205 Z106.168"

    @pytest.mark.asyncio
    async def test_smaller_star(self):
        """Test that the star parameters drive the outline moves."""
        link = DryRunLink()
        await make_job(link, star_points=5, total_passes=1).run()

        assert len(batch(link, "pass-1")) == 2 + 11


class TestJobFailure:
    """Tests for aborted jobs."""

    @pytest.mark.asyncio
    async def test_probe_without_contact(self):
        """A probe that doesn't touch the plate fails the job before cutting."""
        link = DryRunLink(probe_triggered=False)
        orchestrator = make_job(link)

        with pytest.raises(JobFailedError) as exc_info:
            await orchestrator.run()

        error = exc_info.value
        assert error.phase == JobPhase.PROBE
        assert isinstance(error.cause, ProbeMeasurementError)
        assert isinstance(error.__cause__, ProbeMeasurementError)
        assert "probe phase failed" in str(error)

        names = batch_names(link)
        assert "calibrate" not in names
        assert not any(name.startswith("pass-") for name in names)
        assert names[-1] == "abort"
        assert link.batches[-1].commands == ("M5",)
        assert not link.is_open
        assert not orchestrator.calibration.calibrated

    @pytest.mark.asyncio
    async def test_probe_reports_nothing(self):
        """A fine probe batch without a probe report fails the job."""
        link = ScriptedLink(silent_batches={"probe-fine"})

        with pytest.raises(JobFailedError) as exc_info:
            await make_job(link).run()

        assert exc_info.value.phase == JobPhase.PROBE
        assert "No probe result" in str(exc_info.value.cause)

    @pytest.mark.asyncio
    async def test_coarse_probe_failure_is_not_carried_over(self):
        """Only the fine probe's own result decides the measurement."""
        link = ScriptedLink(
            probe_by_batch={"probe-coarse": (-182.675, False), "probe-fine": (-104.0, True)}
        )
        result = await make_job(link).run()

        assert result.measured_z == -104.0
        assert result.reset_command == "G10 L20 P0 X220 Y205 Z105.045"

    @pytest.mark.asyncio
    async def test_homing_timeout(self):
        """A hung homing cycle fails the job in the home phase."""
        link = DryRunLink(stall_homing=True)

        with pytest.raises(JobFailedError) as exc_info:
            await make_job(link, timeout=0.05).run()

        assert exc_info.value.phase == JobPhase.HOME
        assert isinstance(exc_info.value.cause, WaitTimeoutError)
        assert batch_names(link) == ["abort"]
        assert not link.is_open

    @pytest.mark.asyncio
    async def test_controller_error_mid_cut(self):
        """A rejected pass stops the job and records how far it got."""
        link = ScriptedLink(reject={"pass-3": "error:33"})
        orchestrator = make_job(link)

        with pytest.raises(JobFailedError) as exc_info:
            await orchestrator.run()

        assert exc_info.value.phase == JobPhase.CUT
        assert isinstance(exc_info.value.cause, MachineLinkError)
        assert orchestrator.passes_completed == 2
        assert "pass-4" not in batch_names(link)
        assert batch_names(link)[-1] == "abort"

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        """A controller that can't be reached fails the connect phase."""
        link = UnreachableLink()

        with pytest.raises(JobFailedError) as exc_info:
            await make_job(link).run()

        assert exc_info.value.phase == JobPhase.CONNECT
        assert link.batches == []

    @pytest.mark.asyncio
    async def test_cut_before_calibration(self):
        """Cutting is refused until the work origin has been calibrated."""
        orchestrator = make_job(DryRunLink())

        with pytest.raises(SequencingViolation):
            await orchestrator.cut()

    @pytest.mark.asyncio
    async def test_cancelled_job_stops_spindle(self):
        """Cancelling a running job still stops the spindle and closes the link."""
        link = DryRunLink(stall_batches={"pass-2"})
        task = asyncio.create_task(make_job(link).run())

        for _ in range(100):
            if "pass-2" in batch_names(link):
                break
            await asyncio.sleep(0.01)
        assert "pass-2" in batch_names(link)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert batch_names(link)[-2:] == ["pass-2", "abort"]
        assert link.batches[-1].commands == ("M5",)
        assert not link.is_open

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported_as_job_failure(self):
        """A non-controller error still aborts and names the phase it happened in."""
        link = DryRunLink()

        with pytest.raises(JobFailedError) as exc_info:
            await make_job(link, total_passes=0).run()

        assert exc_info.value.phase == JobPhase.CUT
        assert isinstance(exc_info.value.cause, ValueError)
        assert "spindle-start" not in batch_names(link)
        assert batch_names(link)[-1] == "abort"
        assert not link.is_open
