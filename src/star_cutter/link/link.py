"""
Machine Link - Base class for controller connections.

This module provides the MachineLink base class which defines the interface
the job sequencer needs from a machine controller connection: open/close,
fire-and-forget batch submission and homing requests, and a set of listeners
that receive completion and status notifications.

Subclasses implement actual hardware communication or dry-run logic.
"""

from star_cutter.core.batch import CommandBatch
from star_cutter.core.errors import SequencingViolation
from star_cutter.core.logging import get_logger
from star_cutter.link.listener import LinkListener

logger = get_logger()


class MachineLink:
    """
    Base class for machine link implementations.

    Only one batch (or homing cycle) may be outstanding at a time; the base
    class tracks this and rejects overlapping submissions.
    """

    def __init__(self) -> None:
        self._listeners: list[LinkListener] = []
        self._open = False
        self._busy = False

    def add_listener(self, listener: LinkListener) -> None:
        """Register a receiver for link notifications."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    @property
    def is_open(self) -> bool:
        """Check if the link is open."""
        return self._open

    @property
    def is_busy(self) -> bool:
        """Check if a batch or homing cycle is outstanding."""
        return self._busy

    async def open(self) -> None:
        """
        Open the link to the controller.

        Subclasses override this to implement actual connection logic.

        Raises:
            MachineConnectionError: If the link cannot be opened.
        """
        if self._open:
            logger.warning("Link already open")
            return

        self._open = True
        logger.info("Link opened")
        await self._notify_open()

    async def close(self) -> None:
        """
        Close the link to the controller.

        Subclasses override this to implement actual disconnection logic.
        """
        if self._open:
            self._open = False
            self._busy = False
            logger.info("Link closed")
            await self._notify_close(None)

    async def submit_batch(self, batch: CommandBatch) -> None:
        """
        Start executing a batch. Completion is reported via on_batch_complete.

        Args:
            batch: The commands to execute.

        Raises:
            SequencingViolation: If the link is closed or another batch is outstanding.
        """
        self._claim(f"batch '{batch.name}'")

    async def request_homing(self) -> None:
        """
        Start a homing cycle. Completion is reported via on_homing_complete.

        Raises:
            SequencingViolation: If the link is closed or another batch is outstanding.
        """
        self._claim("homing cycle")

    def discard_pending(self) -> None:
        """
        Drop anything not yet sent to the controller and release the link.

        Used only for emergency shutdown after a failure.
        """
        self._busy = False

    def _claim(self, what: str) -> None:
        if not self._open:
            raise SequencingViolation(f"Cannot start {what}: link is not open")
        if self._busy:
            raise SequencingViolation(
                f"Cannot start {what}: previous batch has not completed"
            )
        self._busy = True

    async def _notify_open(self) -> None:
        for listener in list(self._listeners):
            await listener.on_open()

    async def _notify_ready(self) -> None:
        for listener in list(self._listeners):
            await listener.on_ready()

    async def _notify_status_line(self, line: str) -> None:
        for listener in list(self._listeners):
            await listener.on_status_line(line)

    async def _notify_batch_complete(self, error: str | None) -> None:
        self._busy = False
        for listener in list(self._listeners):
            await listener.on_batch_complete(error)

    async def _notify_homing_complete(self, error: str | None) -> None:
        self._busy = False
        for listener in list(self._listeners):
            await listener.on_homing_complete(error)

    async def _notify_close(self, reason: str | None) -> None:
        for listener in list(self._listeners):
            await listener.on_close(reason)
