"""
Command batches and machine events.

A CommandBatch is the unit of work handed to the machine link: an ordered
group of GCode lines whose completion is reported once, for the whole batch.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

# A single line of GCode, e.g. "G1 X150.000 Y100.000"
Command = str


class JobEvent(str, Enum):
    """Kinds of notification delivered by the machine link."""

    CONNECTED = "connected"
    HOMING_COMPLETE = "homing-complete"
    BATCH_COMPLETE = "batch-complete"
    PROBE_MEASUREMENT = "probe-measurement"

    def __str__(self) -> str:
        return self.value


class ConnectionState(str, Enum):
    """State of the link to the machine controller."""

    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    CLOSED = "Closed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CommandBatch:
    """
    An ordered, immutable sequence of GCode commands.

    Attributes:
        name: Short label used in logs (e.g. "probe-fine").
        commands: The GCode lines, in the order they must be executed.
    """

    name: str
    commands: tuple[Command, ...]

    def __post_init__(self) -> None:
        # Accept any iterable of lines and freeze it
        cleaned = tuple(str(c).strip() for c in self.commands)
        if not cleaned or any(not c for c in cleaned):
            raise ValueError(f"Batch '{self.name}' must contain non-empty commands")
        object.__setattr__(self, "commands", cleaned)

    @classmethod
    def of(cls, name: str, commands: Iterable[Command]) -> "CommandBatch":
        return cls(name=name, commands=tuple(commands))

    def __len__(self) -> int:
        return len(self.commands)

    def __iter__(self):
        return iter(self.commands)
