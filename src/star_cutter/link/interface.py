"""
GRBL serial framing.

GRBL answers every line it receives and prints its own status and report
lines, all newline-terminated ASCII. The protocol turns the raw byte stream
into cleaned lines and hands each one to the link as soon as it is complete.
"""

import asyncio
from typing import Callable, cast

from star_cutter.core.errors import MachineConnectionError
from star_cutter.core.logging import get_logger, log_gcode_recv, log_gcode_sent
from star_cutter.core.utils import clean_grbl_response

logger = get_logger()


class GrblSerialProtocol(asyncio.Protocol):
    """
    Line framing for a GRBL controller on a serial port.

    Bytes are buffered until a newline arrives. Each complete line is decoded
    on its own, so a burst of line noise only costs the line it hit. Lines
    that contain nothing but ESP log output are dropped.
    """

    def __init__(
        self,
        line_received: Callable[[str], None],
        connection_lost: Callable[[Exception | None], None] | None = None,
    ):
        """
        Args:
            line_received: Called with every cleaned, non-empty controller line.
            connection_lost: Called once when the serial port goes away.
        """
        self._line_received = line_received
        self._connection_lost = connection_lost
        self._buffer = bytearray()
        self.transport: asyncio.Transport | None = None

    def connection_made(self, transport) -> None:
        self.transport = cast(asyncio.Transport, transport)
        logger.debug("Serial connection established")

    def connection_lost(self, exc: Exception | None) -> None:
        logger.debug(f"Serial connection lost: {exc}")
        self.transport = None
        self._buffer.clear()

        if self._connection_lost:
            self._connection_lost(exc)

    def data_received(self, data: bytes) -> None:
        logger.verbose(f"Raw serial data received: {data!r}")

        self._buffer.extend(data)
        *lines, rest = self._buffer.split(b"\n")
        self._buffer = bytearray(rest)

        for raw_line in lines:
            self._frame(bytes(raw_line))

    def _frame(self, raw_line: bytes) -> None:
        try:
            text = raw_line.decode("ascii").strip()
        except UnicodeDecodeError:
            logger.warning(f"Dropping undecodable controller output: {raw_line!r}")
            return

        line = clean_grbl_response(text) if text else ""
        if not line:
            return

        log_gcode_recv(line)
        self._line_received(line)

    def send_line(self, command: str) -> None:
        """
        Send one GCode line, newline-terminated.

        Raises:
            MachineConnectionError: If the port is not open.
            UnicodeEncodeError: If the command is not plain ASCII.
        """
        if not self.transport:
            raise MachineConnectionError("Serial transport is not available")

        encoded = (command + "\n").encode("ascii")
        self.transport.write(encoded)
        log_gcode_sent(command)
        logger.verbose(f"Raw serial data sent: {encoded!r}")

    def close(self) -> None:
        if self.transport:
            self.transport.close()
            logger.debug("Serial connection closed")
