"""
Job Orchestrator - the complete star cutting job.

Runs, in order, each step gated on the previous one succeeding:

    connect -> home -> probe -> calibrate -> spindle on -> move to start
            -> N cutting passes -> shutdown -> settle -> close

On any failure the remaining steps are skipped, the spindle is stopped on a
best-effort basis, the link is closed, and a JobFailedError naming the phase
is raised.
"""

import asyncio
from dataclasses import dataclass

from star_cutter.core.batch import JobEvent
from star_cutter.core.config import JobConfig
from star_cutter.core.errors import (
    JobFailedError,
    JobPhase,
    ProbeMeasurementError,
    SequencingViolation,
    StarCutterError,
)
from star_cutter.core.logging import get_logger
from star_cutter.core.sequencer import CommandSequencer
from star_cutter.job import programs
from star_cutter.job.geometry import pass_depths, star_outline

logger = get_logger()


@dataclass
class CalibrationState:
    """Probe-derived Z calibration of the current run."""

    measured_z: float | None = None
    reset_command: str | None = None

    @property
    def calibrated(self) -> bool:
        return self.reset_command is not None


@dataclass
class JobResult:
    """Outcome of a successful job run."""

    measured_z: float
    reset_command: str
    passes_completed: int


class JobOrchestrator:
    """
    Drives a CommandSequencer through the star cutting job.

    Attributes:
        sequencer: The sequencer commands are issued through.
        job: Job parameters.
        calibration: Calibration of the current run.
        phase: The phase currently executing.
    """

    def __init__(self, sequencer: CommandSequencer, job: JobConfig | None = None):
        self.sequencer = sequencer
        self.job = job or JobConfig()
        self.calibration = CalibrationState()
        self.phase = JobPhase.CONNECT
        self.passes_completed = 0

    async def run(self) -> JobResult:
        """
        Run the whole job.

        If the run is cancelled (Ctrl+C, SIGTERM) the spindle is still stopped
        before the link is closed, and the cancellation propagates.

        Returns:
            JobResult describing the completed run.

        Raises:
            JobFailedError: If any phase fails. The original error is chained.
        """
        try:
            try:
                return await self._run_steps()
            except asyncio.CancelledError:
                logger.warning(f"Job cancelled in {self.phase} phase, stopping spindle")
                await self.sequencer.abort(programs.ABORT_SEQUENCE)
                raise
            except Exception as e:
                if isinstance(e, StarCutterError):
                    logger.error(f"Job aborted in {self.phase} phase: {e}")
                else:
                    logger.exception(f"Unexpected error in {self.phase} phase")
                await self.sequencer.abort(programs.ABORT_SEQUENCE)
                raise JobFailedError(self.phase, e) from e
        finally:
            await self._settle_and_close()

    async def _run_steps(self) -> JobResult:
        self._enter(JobPhase.CONNECT)
        await self.sequencer.await_connection()

        self._enter(JobPhase.HOME)
        await self.sequencer.home()

        self._enter(JobPhase.PROBE)
        measured_z = await self.probe()

        self._enter(JobPhase.CALIBRATE)
        reset_command = await self.calibrate(measured_z)

        self._enter(JobPhase.CUT)
        await self.cut()

        self._enter(JobPhase.SHUTDOWN)
        await self.sequencer.run_batch(programs.END_SEQUENCE)
        logger.info("Job complete")

        return JobResult(
            measured_z=measured_z,
            reset_command=reset_command,
            passes_completed=self.passes_completed,
        )

    async def probe(self) -> float:
        """
        Run the probe sequences and return the fine probe's Z measurement.

        Both the coarse and the fine sequence probe the surface; only the fine
        one is used. Its result is read right after that batch completes,
        before any other batch can produce another measurement.

        Raises:
            ProbeMeasurementError: If the fine probe made no contact or
                reported nothing.
        """
        await self.sequencer.run_batch(programs.PROBE_COARSE)

        await self.sequencer.gate.arm(JobEvent.PROBE_MEASUREMENT)
        await self.sequencer.run_batch(programs.PROBE_FINE)
        measured, payload = await self.sequencer.gate.snapshot(JobEvent.PROBE_MEASUREMENT)

        await self.sequencer.run_batch(programs.PROBE_RETRACT)

        if not measured:
            raise ProbeMeasurementError(
                f"No probe result reported by batch '{programs.PROBE_FINE.name}'"
            )
        if isinstance(payload, ProbeMeasurementError):
            raise payload

        measured_z = float(payload)
        logger.info(f"Probed surface at Z = {measured_z:.3f}")
        return measured_z

    async def calibrate(self, measured_z: float) -> str:
        """Move the work origin onto the probed surface. Returns the command used."""
        command = programs.coordinate_reset(
            self.job.origin_x, self.job.origin_y, self.job.probe_offset, measured_z
        )
        logger.info(f"Resetting coordinate system: {command}")
        await self.sequencer.run_batch(programs.calibration_batch(command))

        self.calibration = CalibrationState(measured_z=measured_z, reset_command=command)
        return command

    async def cut(self) -> None:
        """Start the spindle and cut the star outline in successively deeper passes."""
        if not self.calibration.calibrated:
            raise SequencingViolation("Cannot cut before the work origin is calibrated")

        job = self.job
        # The whole toolpath is built before the spindle starts
        outline = star_outline(
            job.star_points, job.inner_radius, job.outer_radius, job.center_offset
        )
        moves = programs.outline_moves(outline)
        depths = pass_depths(job.total_passes, job.material_thickness)

        await self.sequencer.run_batch(programs.spindle_start(job.spindle_rpm))
        await self.sequencer.run_batch(
            programs.move_to_start(outline.start, job.material_thickness + job.clearance)
        )

        for index, depth in enumerate(depths, start=1):
            logger.info(f"Cutting pass {index}/{len(depths)} at Z = {depth:.3f}")
            await self.sequencer.run_batch(
                programs.cutting_pass(index, depth, job.plunge_feed, job.cut_feed, moves)
            )
            self.passes_completed = index

    async def _settle_and_close(self) -> None:
        if self.sequencer.link.is_open and self.job.settle_delay > 0:
            logger.debug(f"Waiting {self.job.settle_delay:g}s before closing the link")
            await asyncio.sleep(self.job.settle_delay)
        await self.sequencer.close()

    def _enter(self, phase: JobPhase) -> None:
        self.phase = phase
        logger.info(f"Entering {phase} phase")
