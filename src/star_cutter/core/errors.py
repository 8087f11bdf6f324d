"""
Exception hierarchy for Star Cutter.

Every fatal condition of a job run is one of these. Nothing is retried: a
failed probe or a timeout leaves the machine in a physically uncertain state.
"""

from enum import Enum


class JobPhase(str, Enum):
    """Phases of a job run, used to name where a failure happened."""

    CONNECT = "connect"
    HOME = "home"
    PROBE = "probe"
    CALIBRATE = "calibrate"
    CUT = "cut"
    SHUTDOWN = "shutdown"

    def __str__(self) -> str:
        return self.value


class StarCutterError(Exception):
    """Base class for all Star Cutter errors."""

    pass


class MachineConnectionError(StarCutterError):
    """Raised when the machine link cannot be opened or is lost."""

    pass


class MachineLinkError(StarCutterError):
    """Raised when the controller answers a batch or homing cycle with an error or alarm."""

    def __init__(self, detail: str):
        super().__init__(f"controller reported: {detail}")
        self.detail = detail


class WaitTimeoutError(StarCutterError):
    """Raised when an awaited machine event does not arrive in time."""

    def __init__(self, event: object, timeout: float):
        super().__init__(f"timed out after {timeout:g}s waiting for {event}")
        self.event = event
        self.timeout = timeout


class ProbeMeasurementError(StarCutterError):
    """
    Raised when the surface probe produced no usable Z measurement.

    Attributes:
        line: The raw probe result line, or None if no result line was seen.
    """

    def __init__(self, message: str, line: str | None = None):
        if line is not None:
            message = f"{message}: {line!r}"
        super().__init__(message)
        self.line = line


class SequencingViolation(StarCutterError):
    """Raised on an out-of-order operation. This indicates a programming error."""

    pass


class JobFailedError(StarCutterError):
    """
    Raised by the orchestrator when a job run aborts.

    Attributes:
        phase: The phase in which the failure happened.
        cause: The underlying exception.
    """

    def __init__(self, phase: JobPhase, cause: BaseException):
        super().__init__(f"{phase} phase failed: {cause}")
        self.phase = phase
        self.cause = cause
