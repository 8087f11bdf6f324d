"""
GCode programs issued by the star cutting job.

The probe sequences are fixed for the machine they were written for: the
probe plate sits under the spindle after homing, about 105 mm below the
homed Z position.
"""

from typing import Iterable

from star_cutter.core.batch import CommandBatch
from star_cutter.job.geometry import Point, fmt

# Reset work offsets, select G54/mm/absolute, then probe quickly towards the plate
PROBE_COARSE = CommandBatch.of("probe-coarse", [
    "G4P0.005",
    "M05",
    "G92.1",
    "G54",
    "G10 L2 P1 X0 Y0 Z0",
    "G21",
    "G49",
    "G90",
    "G10 L2 P1 X0 Y0 Z0",
    "G0 X-2.5 Z-5",
    "G0 Z-35.000",
    "G38.2Z-105 F800",
    "G4P0.005",
])

# Back off and probe again slowly; this measurement calibrates Z
PROBE_FINE = CommandBatch.of("probe-fine", [
    "G0 Z-70",
    "G38.2Z-182.675F200.0",
    "G4P0.005",
])

PROBE_RETRACT = CommandBatch.of("probe-retract", [
    "G0 Z-5",
    "G0 X-5",
])

END_SEQUENCE = CommandBatch.of("shutdown", ["M5", "$H", "M30"])

ABORT_SEQUENCE = CommandBatch.of("abort", ["M5"])


def coordinate_reset(origin_x: float, origin_y: float, probe_offset: float, measured_z: float) -> str:
    """
    Build the command that moves the work origin onto the probed surface.

    Example:
        >>> coordinate_reset(220, 205, 1.045, -105.123)
        'G10 L20 P0 X220 Y205 Z106.168'
    """
    return f"G10 L20 P0 X{origin_x:g} Y{origin_y:g} Z{fmt(probe_offset - measured_z)}"


def calibration_batch(command: str) -> CommandBatch:
    return CommandBatch.of("calibrate", [command])


def spindle_start(rpm: float) -> CommandBatch:
    return CommandBatch.of("spindle-start", ["G21", "G90", f"M3 S{rpm:g}"])


def move_to_start(start: Point, safe_z: float) -> CommandBatch:
    """Rapid move to the start of the toolpath, clear of the material."""
    x, y = start
    return CommandBatch.of("move-to-start", [f"G0 X{fmt(x)} Y{fmt(y)} Z{fmt(safe_z)}"])


def outline_moves(outline: Iterable[Point]) -> list[str]:
    return [f"G1 X{fmt(x)} Y{fmt(y)}" for x, y in outline]


def cutting_pass(
    index: int, depth: float, plunge_feed: float, cut_feed: float, moves: list[str]
) -> CommandBatch:
    """
    One pass: plunge to depth, set the cutting feed, then trace the outline.

    Args:
        index: 1-based pass number (used for the batch name).
        depth: Z height to cut at.
        plunge_feed: Feed rate for the Z plunge.
        cut_feed: Feed rate for the XY moves.
        moves: Pre-formatted "G1 X.. Y.." outline moves.
    """
    return CommandBatch.of(f"pass-{index}", [
        f"G1 Z{fmt(depth)} F{fmt(plunge_feed)}",
        f"F{fmt(cut_feed)}",
        *moves,
    ])
