"""Star Cutter - probe, calibrate and cut a multi-pass star on a GRBL CNC router."""

__version__ = "0.1.0"
__author__ = "Star Cutter Team"

from .core import (
    CommandBatch,
    CommandSequencer,
    Config,
    EventGate,
    JobEvent,
    JobFailedError,
    JobPhase,
)
from .job import JobOrchestrator, JobResult, pass_depths, star_outline
from .link import DryRunLink, GrblLink, MachineLink

__all__ = [
    "CommandBatch",
    "CommandSequencer",
    "Config",
    "EventGate",
    "JobEvent",
    "JobFailedError",
    "JobPhase",
    "JobOrchestrator",
    "JobResult",
    "pass_depths",
    "star_outline",
    "DryRunLink",
    "GrblLink",
    "MachineLink",
    "__version__",
]
