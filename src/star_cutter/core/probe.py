"""
Probe result parsing.

After a G38.2 probe cycle GRBL reports the machine position at which the
probe stopped, followed by whether it actually made contact:

    [PRB:-2.500,-1.000,-105.123:1]     probe triggered at Z=-105.123
    [PRB:-2.500,-1.000,-182.675:0]     probe travelled its full distance, no contact

The parser is fed every status line the controller emits and stays silent on
anything that is not a probe result.
"""

import re
from dataclasses import dataclass

from star_cutter.core.errors import ProbeMeasurementError

_NUMBER = r"[+-]?(?:\d+\.?\d*|\.\d+)"

PROBE_RESULT_RE = re.compile(
    rf"^\[PRB:({_NUMBER}),({_NUMBER}),({_NUMBER}):([01])\]$"
)


@dataclass(frozen=True)
class ProbeResult:
    """
    A parsed probe report.

    Attributes:
        x, y, z: Machine coordinates at which the probe cycle stopped.
        triggered: True if the probe made contact.
        line: The raw report line.
    """

    x: float
    y: float
    z: float
    triggered: bool
    line: str

    def measured_z(self) -> float:
        """
        The probed Z coordinate.

        Raises:
            ProbeMeasurementError: If the probe did not make contact.
        """
        if not self.triggered:
            raise ProbeMeasurementError("Probe did not make contact", line=self.line)
        return self.z


def parse_probe_result(line: str) -> ProbeResult | None:
    """
    Parse a GRBL probe report line.

    Args:
        line: A single cleaned line of controller output.

    Returns:
        ProbeResult if the line is a probe report, None otherwise.
    """
    match = PROBE_RESULT_RE.match(line.strip())
    if not match:
        return None

    # float() always uses '.' as the decimal separator, independent of locale
    x, y, z, flag = match.groups()
    return ProbeResult(
        x=float(x), y=float(y), z=float(z), triggered=flag == "1", line=line.strip()
    )


def parse_probe_z(line: str) -> float | None:
    """
    Extract the Z measurement of a successful probe from a status line.

    Args:
        line: A single cleaned line of controller output.

    Returns:
        The probed Z coordinate, or None if the line is not a probe report.

    Raises:
        ProbeMeasurementError: If the line is a probe report for a probe that
            did not make contact.

    Example:
        >>> parse_probe_z("[PRB:-2.500,-1.000,-105.123:1]")
        -105.123
        >>> parse_probe_z("ok") is None
        True
    """
    result = parse_probe_result(line)
    return result.measured_z() if result else None
