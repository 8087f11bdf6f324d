"""
Core package - Contains the job sequencing engine and its infrastructure.

This package provides:
- Batch: CommandBatch, JobEvent and ConnectionState
- Errors: The exception hierarchy and JobPhase
- Gate: EventGate, the latching wait/notify primitive
- Probe: Parsing of GRBL probe reports
- Sequencer: CommandSequencer and its state machine
- Config: Configuration loading and management
- Utils: Serial device discovery and GRBL response helpers
- Logging: Logging utilities
"""

from .batch import Command, CommandBatch, ConnectionState, JobEvent
from .errors import (
    JobFailedError,
    JobPhase,
    MachineConnectionError,
    MachineLinkError,
    ProbeMeasurementError,
    SequencingViolation,
    StarCutterError,
    WaitTimeoutError,
)
from .gate import EventGate
from .probe import ProbeResult, parse_probe_result, parse_probe_z
from .config import Config, DeviceConfig, JobConfig
from .utils import SerialDeviceNotFoundError, clean_grbl_response, find_serial_port_by_usb_id
from .sequencer import CommandSequencer, LinkRouter, SequencerState

__all__ = [
    "Command",
    "CommandBatch",
    "ConnectionState",
    "JobEvent",
    "JobFailedError",
    "JobPhase",
    "MachineConnectionError",
    "MachineLinkError",
    "ProbeMeasurementError",
    "SequencingViolation",
    "StarCutterError",
    "WaitTimeoutError",
    "EventGate",
    "ProbeResult",
    "parse_probe_result",
    "parse_probe_z",
    "Config",
    "DeviceConfig",
    "JobConfig",
    "SerialDeviceNotFoundError",
    "clean_grbl_response",
    "find_serial_port_by_usb_id",
    "CommandSequencer",
    "LinkRouter",
    "SequencerState",
]
