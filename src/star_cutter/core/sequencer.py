"""
Command Sequencer - strictly ordered execution over an asynchronous link.

The sequencer issues one batch (or homing cycle) at a time to the machine
link, and blocks on the EventGate until the link reports its completion. It
owns the per-run state machine:

    IDLE -> AWAITING_CONNECTION -> CONNECTED -> HOMED -> READY <-> RUNNING
                          (any) -> FAILED

FAILED is terminal: once a wait has timed out or the controller reported an
error, no further regular batches are issued. Only abort() may still talk to
the machine, to stop the spindle.
"""

from enum import Enum
from typing import Callable

from star_cutter.core.batch import CommandBatch, ConnectionState, JobEvent
from star_cutter.core.errors import (
    MachineConnectionError,
    MachineLinkError,
    ProbeMeasurementError,
    SequencingViolation,
    StarCutterError,
    WaitTimeoutError,
)
from star_cutter.core.gate import EventGate
from star_cutter.core.logging import get_logger
from star_cutter.core.probe import parse_probe_result
from star_cutter.link.link import MachineLink
from star_cutter.link.listener import LinkListener

logger = get_logger()

DEFAULT_WAIT_TIMEOUT = 90.0  # s, a full pass of physical motion fits comfortably
DEFAULT_ABORT_TIMEOUT = 10.0  # s


class SequencerState(str, Enum):
    """Per-run state of the CommandSequencer."""

    IDLE = "Idle"
    AWAITING_CONNECTION = "AwaitingConnection"
    CONNECTED = "Connected"
    HOMED = "Homed"
    READY = "Ready"
    RUNNING = "Running"
    FAILED = "Failed"

    def __str__(self) -> str:
        return self.value


class LinkRouter(LinkListener):
    """
    Translates machine link notifications into EventGate signals.

    Also drives the sequencer's ConnectionState, and feeds every status line
    through the probe parser.
    """

    def __init__(self, sequencer: "CommandSequencer"):
        self._sequencer = sequencer
        self._gate = sequencer.gate

    async def on_open(self) -> None:
        self._sequencer._set_connection_state(ConnectionState.CONNECTING)

    async def on_ready(self) -> None:
        self._sequencer._set_connection_state(ConnectionState.CONNECTED)
        await self._gate.signal(JobEvent.CONNECTED)

    async def on_status_line(self, line: str) -> None:
        result = parse_probe_result(line)
        if result is None:
            return

        logger.info(
            f"Probe stopped at X={result.x:.3f} Y={result.y:.3f} Z={result.z:.3f} "
            f"({'contact' if result.triggered else 'no contact'})"
        )
        try:
            z = result.measured_z()
        except ProbeMeasurementError as e:
            logger.warning(str(e))
            await self._gate.signal(JobEvent.PROBE_MEASUREMENT, e)
            return

        await self._gate.signal(JobEvent.PROBE_MEASUREMENT, z)

    async def on_batch_complete(self, error: str | None) -> None:
        await self._gate.signal(JobEvent.BATCH_COMPLETE, error)

    async def on_homing_complete(self, error: str | None) -> None:
        await self._gate.signal(JobEvent.HOMING_COMPLETE, error)

    async def on_close(self, reason: str | None) -> None:
        self._sequencer._set_connection_state(ConnectionState.CLOSED)

        if reason is None:
            return

        # Wake anything still waiting on the controller; it will never answer
        for kind in (JobEvent.CONNECTED, JobEvent.HOMING_COMPLETE, JobEvent.BATCH_COMPLETE):
            await self._gate.signal(kind, reason)


class CommandSequencer:
    """
    Runs homing and command batches one at a time on a MachineLink.

    Attributes:
        link: The machine link commands are issued to.
        gate: The EventGate completions are awaited on.
        timeout: Maximum time in seconds to wait for any single completion.
        state: Current SequencerState.
        connection_state: Current ConnectionState of the link.
    """

    def __init__(
        self,
        link: MachineLink,
        timeout: float = DEFAULT_WAIT_TIMEOUT,
        gate: EventGate | None = None,
    ):
        self.link = link
        self.gate = gate or EventGate()
        self.timeout = timeout
        self.state = SequencerState.IDLE
        self.connection_state = ConnectionState.DISCONNECTED

        self._router = LinkRouter(self)
        self.link.add_listener(self._router)

    @property
    def failed(self) -> bool:
        return self.state == SequencerState.FAILED

    async def await_connection(self) -> None:
        """
        Open the link and wait until the controller reports it is ready.

        Raises:
            MachineConnectionError: If the link cannot be opened or drops.
            WaitTimeoutError: If the controller never reports ready.
        """
        self._require(SequencerState.IDLE, "await connection")
        self._transition(SequencerState.AWAITING_CONNECTION)

        try:
            # Arm first: the ready message can arrive while open() is still running
            await self.gate.arm(JobEvent.CONNECTED)
            await self.link.open()
            await self._wait(
                JobEvent.CONNECTED,
                lambda reason: MachineConnectionError(f"Link dropped before ready: {reason}"),
            )
        except StarCutterError:
            self._fail()
            raise

        self._transition(SequencerState.CONNECTED)

    async def home(self) -> None:
        """
        Run the controller's homing cycle and wait for it to finish.

        Raises:
            SequencingViolation: If the link is not connected yet.
            WaitTimeoutError: If homing does not complete in time.
            MachineLinkError: If the controller rejects the homing cycle.
        """
        self._require(SequencerState.CONNECTED, "home")
        self._require_connected("home")

        try:
            await self.gate.arm(JobEvent.HOMING_COMPLETE)
            await self.link.request_homing()
            await self._wait(JobEvent.HOMING_COMPLETE)
        except StarCutterError:
            self._fail()
            raise

        self._transition(SequencerState.HOMED)
        # Homing leaves the machine idle at its reference position
        self._transition(SequencerState.READY)

    async def run_batch(self, batch: CommandBatch) -> None:
        """
        Submit a batch and wait for the controller to acknowledge all of it.

        Args:
            batch: The commands to run.

        Raises:
            SequencingViolation: If the machine is not homed and idle, or a
                previous batch is still outstanding.
            WaitTimeoutError: If the batch does not complete in time.
            MachineLinkError: If the controller rejects a command of the batch.
        """
        self._require(SequencerState.READY, f"run batch '{batch.name}'")
        self._require_connected(f"run batch '{batch.name}'")
        self._transition(SequencerState.RUNNING)

        logger.debug(f"Running batch '{batch.name}' ({len(batch)} commands)")
        try:
            await self.gate.arm(JobEvent.BATCH_COMPLETE)
            await self.link.submit_batch(batch)
            await self._wait(JobEvent.BATCH_COMPLETE)
        except StarCutterError:
            self._fail()
            raise

        self._transition(SequencerState.READY)

    async def abort(self, batch: CommandBatch, timeout: float = DEFAULT_ABORT_TIMEOUT) -> bool:
        """
        Best-effort emergency batch, e.g. to stop the spindle after a failure.

        Allowed from any state. Anything the link has not sent yet is discarded
        first. Never raises.

        Args:
            batch: The emergency commands.
            timeout: Maximum time in seconds to wait for acknowledgement.

        Returns:
            True if the controller acknowledged the batch, False otherwise.
        """
        if not self.link.is_open:
            logger.warning(f"Cannot send abort batch '{batch.name}': link is not open")
            return False

        logger.warning(f"Sending abort batch '{batch.name}'")
        self.link.discard_pending()

        try:
            await self.gate.arm(JobEvent.BATCH_COMPLETE)
            await self.link.submit_batch(batch)
        except StarCutterError as e:
            logger.error(f"Failed to send abort batch '{batch.name}': {e}")
            return False

        if not await self.gate.wait_for(JobEvent.BATCH_COMPLETE, timeout):
            logger.error(f"Abort batch '{batch.name}' not acknowledged within {timeout:g}s")
            return False

        error = self.gate.payload(JobEvent.BATCH_COMPLETE)
        if error is not None:
            logger.error(f"Abort batch '{batch.name}' rejected: {error}")
            return False

        return True

    async def close(self) -> None:
        """Close the link if it is still open."""
        if self.link.is_open:
            await self.link.close()
        self.connection_state = ConnectionState.CLOSED

    async def _wait(
        self,
        kind: JobEvent,
        error_factory: Callable[[str], StarCutterError] = MachineLinkError,
    ) -> None:
        if not await self.gate.wait_for(kind, self.timeout):
            raise WaitTimeoutError(kind, self.timeout)

        error = self.gate.payload(kind)
        if error is not None:
            raise error_factory(str(error))

    def _require(self, expected: SequencerState, action: str) -> None:
        if self.state != expected:
            raise SequencingViolation(f"Cannot {action} in state {self.state}")

    def _require_connected(self, action: str) -> None:
        if self.connection_state != ConnectionState.CONNECTED:
            raise SequencingViolation(
                f"Cannot {action}: link is {self.connection_state}"
            )

    def _transition(self, new_state: SequencerState) -> None:
        logger.debug(f"Sequencer changed state from {self.state} to {new_state}")
        self.state = new_state

    def _fail(self) -> None:
        if self.state != SequencerState.FAILED:
            self._transition(SequencerState.FAILED)

    def _set_connection_state(self, new_state: ConnectionState) -> None:
        if new_state != self.connection_state:
            logger.debug(f"Link changed state from {self.connection_state} to {new_state}")
            self.connection_state = new_state
