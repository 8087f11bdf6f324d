"""
Utility functions for Star Cutter.

This module provides serial device discovery and helpers for classifying
lines of GRBL output.
"""

import re

import serial
import serial.tools.list_ports

from star_cutter.core.errors import MachineConnectionError
from star_cutter.core.logging import get_logger

logger = get_logger()


class SerialDeviceNotFoundError(MachineConnectionError):
    """Raised when the specified USB device cannot be found."""

    pass


def find_serial_port_by_usb_id(usb_id: str) -> str:
    """
    Find the serial port path for a given USB device ID.

    Args:
        usb_id: USB device ID in vendor:product format (e.g., "2341:0043").

    Returns:
        The serial port path (e.g., "/dev/ttyACM0" or "COM3").

    Raises:
        ValueError: If the USB ID is malformed.
        SerialDeviceNotFoundError: If no matching device is found.
    """
    try:
        vendor_id, product_id = usb_id.lower().split(":")
        vendor_id_int = int(vendor_id, 16)
        product_id_int = int(product_id, 16)
    except (ValueError, AttributeError) as e:
        raise ValueError(
            f"Invalid USB ID format '{usb_id}'. "
            "Expected format: 'vendor:product' (e.g., '2341:0043')"
        ) from e

    ports = serial.tools.list_ports.comports()

    for port in ports:
        if port.vid == vendor_id_int and port.pid == product_id_int:
            logger.debug(f"Found device {usb_id} at {port.device}")
            return port.device

    available = [
        f"{p.device} (VID:PID={p.vid:04x}:{p.pid:04x})"
        for p in ports
        if p.vid is not None and p.pid is not None
    ]

    logger.debug(f"Device {usb_id} not found. Available devices: {available}")

    raise SerialDeviceNotFoundError(
        f"USB device with ID '{usb_id}' not found. "
        f"Available USB serial devices: {available or 'none'}"
    )


GRBL_CONTENT_RE = re.compile(
    r"^.*?(\d+\.\d+|\$.*|ok|error:\d+|ALARM:\d+|<[^>]+>|\[.*\]|Grbl\s\d+\.\d+.*)$",
    re.IGNORECASE,
)
# Grbl 0.9 prints "['$H'|'$X' to unlock]", Grbl 1.1 "[MSG:'$H'|'$X' to unlock]"
GRBL_UNLOCK_PROMPT_RE = re.compile(r"^\[(?:MSG:)?'\$H'\|'\$X' to unlock\]$", re.IGNORECASE)


def clean_grbl_response(raw_line: str) -> str:
    """
    Clean a single line of GRBL response by removing ESP log output.

    ESP logging can clobber serial responses. This function detects and removes
    ESP log headers while preserving valid GRBL response content.

    Args:
        raw_line: A single line of raw serial output.

    Returns:
        The cleaned line with ESP log prefixes removed, or empty string if
        line contains only ESP logging.

    Example:
        >>> clean_grbl_response("I (123) tag: ok")
        'ok'
        >>> clean_grbl_response("[PRB:-2.500,-1.000,-105.123:1]")
        '[PRB:-2.500,-1.000,-105.123:1]'
    """
    match = GRBL_CONTENT_RE.search(raw_line.strip())

    cleaned = ""
    if match:
        cleaned = match.group(1)

    return cleaned.strip()


def is_unlock_prompt(line: str) -> bool:
    """
    Detect GRBL's alarm-lock prompt, printed once the controller has booted.

    Args:
        line: A single line of cleaned GRBL response.
    """
    return bool(GRBL_UNLOCK_PROMPT_RE.match(line.strip()))

