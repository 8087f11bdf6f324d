"""
Job package - The star cutting job.

This package provides:
- Geometry: Star outline and pass depth computation
- Programs: The GCode batches the job issues
- JobOrchestrator: Runs the complete job on a CommandSequencer
"""

from .geometry import StarOutline, fmt, pass_depths, star_outline
from .orchestrator import CalibrationState, JobOrchestrator, JobResult

__all__ = [
    "StarOutline",
    "fmt",
    "pass_depths",
    "star_outline",
    "CalibrationState",
    "JobOrchestrator",
    "JobResult",
]
