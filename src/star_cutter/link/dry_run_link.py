"""
Dry-Run Link - MachineLink implementation for running jobs without hardware.

This module provides the DryRunLink class which simulates a GRBL controller:
every command is logged but not sent anywhere, and completions are reported
asynchronously, the way a real controller would report them. Probe cycles
(G38.2) answer with a configurable probe report.
"""

import asyncio
import re

from star_cutter.core.batch import CommandBatch
from star_cutter.core.logging import get_logger, log_gcode_recv, log_gcode_sent
from star_cutter.link.link import MachineLink

logger = get_logger()

PROBE_COMMAND_RE = re.compile(r"^G38\.2", re.IGNORECASE)
DRY_RUN_READY_LINE = "['$H'|'$X' to unlock]"


class DryRunLink(MachineLink):
    """
    Simulated GRBL controller.

    Attributes:
        probe_z: Z coordinate reported by every simulated probe cycle.
        probe_triggered: Whether simulated probe cycles make contact.
        batches: Every batch submitted, in submission order.
    """

    def __init__(
        self,
        probe_z: float = -105.123,
        probe_triggered: bool = True,
        response_delay: float = 0.0,
        stall_homing: bool = False,
        stall_batches: set[str] | None = None,
    ):
        """
        Initialize the dry-run link.

        Args:
            probe_z: Z coordinate reported by simulated probe cycles.
            probe_triggered: If False, probe cycles report no contact (":0").
            response_delay: Simulated time in seconds the controller takes
                per batch or homing cycle.
            stall_homing: If True, homing never completes (simulates a hung controller).
            stall_batches: Names of batches that never complete.
        """
        super().__init__()
        self.probe_z = probe_z
        self.probe_triggered = probe_triggered
        self.response_delay = response_delay
        self.stall_homing = stall_homing
        self.stall_batches = stall_batches or set()

        self.batches: list[CommandBatch] = []
        self.homing_requests = 0
        self._tasks: set[asyncio.Task] = set()

    async def open(self) -> None:
        """Open the simulated link; the controller reports ready shortly after."""
        if self._open:
            logger.warning("Already connected to dry-run link")
            return

        self._open = True
        logger.info("Connected to dry-run link (no actual hardware)")
        await self._notify_open()
        self._spawn(self._boot())

    async def close(self) -> None:
        """Close the simulated link and stop any pending simulated responses."""
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        await super().close()

    async def submit_batch(self, batch: CommandBatch) -> None:
        await super().submit_batch(batch)
        self.batches.append(batch)

        for command in batch:
            log_gcode_sent(command, simulated=True)
            logger.debug(f"[DRY-RUN] Would send: {command}")

        if batch.name in self.stall_batches:
            logger.debug(f"[DRY-RUN] Stalling batch '{batch.name}'")
            return

        self._spawn(self._complete_batch(batch))

    async def request_homing(self) -> None:
        await super().request_homing()
        self.homing_requests += 1
        log_gcode_sent("$H", simulated=True)
        logger.debug("[DRY-RUN] Would send: $H")

        if self.stall_homing:
            logger.debug("[DRY-RUN] Stalling homing cycle")
            return

        self._spawn(self._complete_homing())

    def discard_pending(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        super().discard_pending()

    def probe_report(self) -> str:
        """The report line a simulated probe cycle produces."""
        return f"[PRB:0.000,0.000,{self.probe_z:.3f}:{1 if self.probe_triggered else 0}]"

    async def _boot(self) -> None:
        await asyncio.sleep(0)
        log_gcode_recv(DRY_RUN_READY_LINE, simulated=True)
        await self._notify_ready()
        await self._notify_status_line(DRY_RUN_READY_LINE)

    async def _complete_batch(self, batch: CommandBatch) -> None:
        await asyncio.sleep(self.response_delay)

        for command in batch:
            if PROBE_COMMAND_RE.match(command):
                report = self.probe_report()
                log_gcode_recv(report, simulated=True)
                await self._notify_status_line(report)

        await self._notify_batch_complete(None)

    async def _complete_homing(self) -> None:
        await asyncio.sleep(self.response_delay)
        await self._notify_homing_complete(None)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
