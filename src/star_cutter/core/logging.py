"""
Logging setup for Star Cutter.

There are two independent outputs:
- the console log, with a custom VERBOSE level (9, below DEBUG) for raw
  serial traffic
- an optional G-code traffic log: one record per line sent to or received
  from the controller, written only to its own file

Usage:
    from star_cutter.core.logging import setup_logging, get_logger

    setup_logging(verbosity_level=1, gcode_log_file="job-gcode.log")

    logger = get_logger()
    logger.verbose("Raw serial data received: ...")
"""

import logging
import sys
from pathlib import Path
from typing import Any

VERBOSE = 9
logging.addLevelName(VERBOSE, "VERBOSE")

GCODE_LOGGER_ID = "gcode"

DATE_FMT = "%Y-%m-%d %H:%M:%S"
LOG_FMT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
GCODE_LOG_FMT = "%(asctime)s - %(direction)s: %(message)s"

SENT = "Sent"
RECV = "Recv"
SIMULATED_SUFFIX = " (dry-run)"


class VerboseLogger(logging.Logger):
    """Logger with a verbose() method for the VERBOSE level."""

    def verbose(self, message: str, *args: Any, **kwargs: Any) -> None:
        if self.isEnabledFor(VERBOSE):
            self._log(VERBOSE, message, args, **kwargs)


def console_level(verbosity_level: int = 0, quiet: bool = False) -> int:
    """Map the CLI's -v count and -q flag to a log level."""
    if quiet:
        return logging.ERROR
    if verbosity_level >= 2:
        return VERBOSE
    if verbosity_level == 1:
        return logging.DEBUG
    return logging.INFO


def setup_logging(
    verbosity_level: int = 0,
    quiet: bool = False,
    gcode_log_file: str | None = None,
) -> None:
    """
    Configure console logging and the G-code traffic log.

    Args:
        verbosity_level: Count of -v flags. 0 logs INFO, 1 DEBUG, 2 or more VERBOSE.
        quiet: Only log errors. Takes precedence over verbosity_level.
        gcode_log_file: File to append all controller traffic to. None
            disables the traffic log.
    """
    logging.setLoggerClass(VerboseLogger)
    logging.basicConfig(
        level=console_level(verbosity_level, quiet), format=LOG_FMT, datefmt=DATE_FMT
    )
    setup_gcode_log(gcode_log_file)


def setup_gcode_log(log_file: str | Path | None) -> None:
    """
    Point the G-code traffic log at a file, or silence it.

    The traffic log never reaches the console. Calling this again replaces
    the previous destination.

    Args:
        log_file: File to append to, created along with its directory if needed.
    """
    gcode_logger = logging.getLogger(GCODE_LOGGER_ID)
    for handler in list(gcode_logger.handlers):
        gcode_logger.removeHandler(handler)
        handler.close()

    gcode_logger.propagate = False
    gcode_logger.setLevel(logging.INFO)

    if not log_file:
        gcode_logger.addHandler(logging.NullHandler())
        return

    log_path = Path(log_file).expanduser()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8", mode="a")
    except OSError as e:
        logging.getLogger(__name__).error(f"Cannot open G-code log file '{log_file}': {e}")
        gcode_logger.addHandler(logging.NullHandler())
        return

    file_handler.setFormatter(logging.Formatter(GCODE_LOG_FMT, datefmt=DATE_FMT))
    gcode_logger.addHandler(file_handler)


def get_logger(name: str | None = None) -> VerboseLogger:
    """
    Get a VerboseLogger, named after the calling module by default.

    Loggers created before setup_logging() was called are upgraded in place.
    """
    if name is None:
        name = sys._getframe(1).f_globals.get("__name__", "__main__")

    logger = logging.getLogger(name)

    if not isinstance(logger, VerboseLogger):
        logger.__class__ = VerboseLogger

    return logger  # type: ignore


def log_gcode_sent(command: str, simulated: bool = False) -> None:
    """Record a line sent to the controller in the G-code traffic log."""
    _log_traffic(SENT, command, simulated)


def log_gcode_recv(line: str, simulated: bool = False) -> None:
    """Record a line received from the controller in the G-code traffic log."""
    _log_traffic(RECV, line, simulated)


def _log_traffic(direction: str, text: str, simulated: bool) -> None:
    if simulated:
        direction += SIMULATED_SUFFIX
    logging.getLogger(GCODE_LOGGER_ID).info(text, extra={"direction": direction})
