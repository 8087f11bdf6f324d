"""
Link package - Contains machine link implementations.

This package provides:
- MachineLink: Base class for controller connections
- LinkListener: Base class for receivers of link notifications
- GrblLink: GRBL serial controller implementation
- DryRunLink: Simulated controller (no hardware)
- GrblSerialProtocol: asyncio.Protocol for serial communication with GRBL controllers
"""

from .listener import LinkListener
from .link import MachineLink
from .grbl_link import GrblLink
from .dry_run_link import DryRunLink
from .interface import GrblSerialProtocol

__all__ = [
    "LinkListener",
    "MachineLink",
    "GrblLink",
    "DryRunLink",
    "GrblSerialProtocol",
]
