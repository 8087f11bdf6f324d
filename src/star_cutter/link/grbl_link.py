"""
GRBL Link - Serial communication with USB GRBL controllers.

This module provides the GrblLink class, a MachineLink that streams command
batches to a GRBL controller in single-step mode: one line is in flight at a
time, and the next is sent only once the controller acknowledged the previous
one with "ok". Completions and status lines are reported to the link's
listeners from a response loop running alongside the job.
"""

import asyncio
from collections import deque

import serial
import serial_asyncio

from star_cutter.core.batch import CommandBatch
from star_cutter.core.errors import MachineConnectionError
from star_cutter.core.logging import get_logger
from star_cutter.core.utils import find_serial_port_by_usb_id, is_unlock_prompt
from star_cutter.link.interface import GrblSerialProtocol
from star_cutter.link.link import MachineLink

logger = get_logger()

MAX_RESPONSE_QUEUE_SIZE = 1000  # serial input lines
HOMING_COMMAND = "$H"


class GrblLink(MachineLink):
    """
    MachineLink that talks to a USB serial GRBL controller.

    The controller is located either by USB vendor:product id or by device
    path. The link reports ready once GRBL prints its alarm-lock prompt
    ("['$H'|'$X' to unlock]"), which it does after booting with homing enabled.
    """

    def __init__(
        self,
        usb_id: str | None = None,
        dev_path: str | None = None,
        baud_rate: int = 115200,
    ):
        """
        Initialize the GRBL serial link.

        Args:
            usb_id: USB device ID in vendor:product format (mutually exclusive with dev_path).
            dev_path: Device path like /dev/ttyACM0 (mutually exclusive with usb_id).
            baud_rate: Serial baud rate for communication.

        Raises:
            ValueError: If neither usb_id nor dev_path are provided
        """
        if not usb_id and not dev_path:
            raise ValueError("Must specify either usb_id or dev_path")

        super().__init__()

        self.usb_id = usb_id
        self.dev_path = dev_path
        self.baud_rate = baud_rate

        self._serial_port: str | None = None
        self._protocol: GrblSerialProtocol | None = None
        self._response_queue: asyncio.Queue[str] = asyncio.Queue()
        self._disconnect_event = asyncio.Event()
        self._response_loop_task: asyncio.Task | None = None
        self._disconnect_task: asyncio.Task | None = None
        self._running = False

        # Single-step streaming state
        self._pending: deque[str] = deque()
        self._in_flight: str | None = None
        self._homing = False
        self._skippable_oks = 0

    async def open(self) -> None:
        """
        Open the serial connection to the GRBL controller.

        Raises:
            MachineConnectionError: If the device cannot be found or opened.
        """
        if self._open:
            logger.warning("Already connected to serial device")
            return

        try:
            port = self.dev_path or find_serial_port_by_usb_id(self.usb_id or "")
        except ValueError as e:
            raise MachineConnectionError(str(e)) from e

        self._response_queue = asyncio.Queue(maxsize=MAX_RESPONSE_QUEUE_SIZE)
        self._disconnect_event = asyncio.Event()

        loop = asyncio.get_running_loop()

        def protocol_factory():
            return GrblSerialProtocol(
                line_received=self._enqueue_line,
                connection_lost=lambda exc: self._disconnect_event.set(),
            )

        try:
            _, self._protocol = await serial_asyncio.create_serial_connection(
                loop,
                protocol_factory,
                port,
                baudrate=self.baud_rate,
            )
        except (serial.SerialException, OSError) as e:
            raise MachineConnectionError(f"Cannot open {port}: {e}") from e

        self._serial_port = port
        self._reset_streaming()
        self._open = True
        logger.info(f"Connected to {port} at {self.baud_rate} baud")

        await self._notify_open()

        self._running = True
        self._response_loop_task = asyncio.create_task(self._response_loop())
        self._disconnect_task = asyncio.create_task(self._watch_disconnect())

    async def close(self) -> None:
        """Close the serial connection."""
        self._running = False

        for task_ref in [self._response_loop_task, self._disconnect_task]:
            if task_ref and task_ref is not asyncio.current_task():
                task_ref.cancel()
                try:
                    await task_ref
                except asyncio.CancelledError:
                    pass

        self._response_loop_task = None
        self._disconnect_task = None

        if self._protocol:
            try:
                self._protocol.close()
            except Exception as e:
                logger.warning(f"Error closing serial connection: {e}")
            finally:
                self._protocol = None

        self._reset_streaming()
        await super().close()

    async def submit_batch(self, batch: CommandBatch) -> None:
        """
        Start streaming a batch, one line at a time.

        Args:
            batch: The commands to stream.
        """
        await super().submit_batch(batch)

        logger.debug(f"Streaming batch '{batch.name}' ({len(batch)} commands)")
        self._pending = deque(batch.commands)
        self._homing = False
        await self._send_next()

    async def request_homing(self) -> None:
        """Start GRBL's homing cycle ($H)."""
        await super().request_homing()

        logger.info("Starting homing cycle")
        self._pending = deque([HOMING_COMMAND])
        self._homing = True
        await self._send_next()

    def discard_pending(self) -> None:
        """
        Drop all unsent lines of the outstanding batch.

        The acknowledgement of a line already in flight will still arrive; it
        is swallowed rather than credited to the next batch.
        """
        if self._pending:
            logger.warning(f"Discarding {len(self._pending)} unsent commands")
        if self._in_flight is not None:
            self._skippable_oks += 1
        self._pending.clear()
        self._in_flight = None
        self._homing = False
        super().discard_pending()

    async def _send_next(self) -> None:
        command = self._pending.popleft()
        self._in_flight = command
        self._send(command)

    def _send(self, command: str) -> None:
        """
        Send a GCode line to the serial device.

        Raises:
            MachineConnectionError: If the protocol is not available.
        """
        if not self._protocol:
            raise MachineConnectionError("Serial protocol is not available")

        self._protocol.send_line(command)

    async def _finish(self, error: str | None) -> None:
        homing = self._homing
        self._pending.clear()
        self._in_flight = None
        self._homing = False

        if homing:
            await self._notify_homing_complete(error)
        else:
            await self._notify_batch_complete(error)

    def _enqueue_line(self, line: str) -> None:
        try:
            self._response_queue.put_nowait(line)
        except asyncio.QueueFull:
            logger.error(f"Response queue full, dropping controller line: {line!r}")

    def _reset_streaming(self) -> None:
        self._pending.clear()
        self._in_flight = None
        self._homing = False
        self._skippable_oks = 0
        self._busy = False

    async def _response_loop(self) -> None:
        """
        Loop that processes incoming response lines from the controller.
        """
        logger.info("Controller response loop started")

        try:
            while self._running:
                response_line = await self._response_queue.get()
                try:
                    await self._handle_response_line(response_line)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Error handling controller response {response_line!r}: {e}")

        except asyncio.CancelledError:
            logger.info("Controller response loop stopped")

    async def _watch_disconnect(self) -> None:
        """Report an unexpected loss of the serial connection to listeners."""
        try:
            await self._disconnect_event.wait()
        except asyncio.CancelledError:
            return

        if not self._running:
            return

        logger.error(f"Lost connection to {self._serial_port}")
        self._running = False
        self._protocol = None
        self._open = False
        self._reset_streaming()

        if self._response_loop_task:
            self._response_loop_task.cancel()

        await self._notify_close("connection lost")

    async def _handle_response_line(self, line: str) -> None:
        """
        Handle a single response line from the controller.

        Args:
            line: A single cleaned response line.
        """
        logger.verbose(f"Processing response line: {line!r}")

        if line.startswith("ok"):
            await self._handle_ok()

        elif line.startswith("error:"):
            logger.error(f"Controller rejected {self._in_flight!r}: {line}")
            await self._fail_outstanding(line)

        elif line.startswith("ALARM:"):
            logger.warning(f"Received controller alarm: {line}")
            await self._fail_outstanding(line)

        elif line.startswith("["):
            if is_unlock_prompt(line):
                logger.info("Controller ready (alarm lock prompt received)")
                await self._notify_ready()
            await self._notify_status_line(line)

        elif line.startswith("<"):
            logger.verbose(f"Status report: {line}")

        elif "Grbl " in line:
            logger.info(f"Controller initialization message: {line}")
            # An unexpected reset loses everything the controller had queued
            await self._fail_outstanding(f"controller reset ({line})")

        else:
            logger.debug(f"Unhandled controller response: {line}")

    async def _handle_ok(self) -> None:
        if self._skippable_oks > 0:
            self._skippable_oks -= 1
            logger.verbose(f"Swallowed ok of discarded command, remaining: {self._skippable_oks}")
            return

        if self._in_flight is None:
            logger.warning("Received ok but no command is in flight")
            return

        logger.verbose(f"Acknowledged: {self._in_flight!r}")
        self._in_flight = None

        if self._pending:
            await self._send_next()
        else:
            await self._finish(None)

    async def _fail_outstanding(self, reason: str) -> None:
        if self._in_flight is None and not self._pending:
            return

        await self._finish(reason)
