"""
Command-line interface for Star Cutter.

This module provides the CLI using Click, supporting configuration via:
1. Environment variables (highest precedence)
2. CLI arguments
3. Config file
4. Default values (lowest precedence)
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Any

import click

from star_cutter.core.config import (
    DEFAULT_CONFIG_PATH,
    ENV_CONFIG_FILE,
    ENV_DEVICE_BAUD_RATE,
    ENV_DEVICE_DEV_PATH,
    ENV_DEVICE_USB_ID,
    ENV_GCODE_LOG_FILE,
    ENV_JOB_MATERIAL_THICKNESS,
    ENV_JOB_TOTAL_PASSES,
    Config,
)
from star_cutter.core.errors import JobFailedError
from star_cutter.core.logging import get_logger, setup_logging
from star_cutter.core.sequencer import CommandSequencer
from star_cutter.job.orchestrator import JobOrchestrator
from star_cutter.link import DryRunLink, GrblLink, MachineLink


@click.command()
@click.option(
    "-c", "--config",
    "config_file",
    type=click.Path(exists=False, path_type=Path),
    envvar=ENV_CONFIG_FILE,
    default=None,
    help=f"Path to configuration file. [default: {DEFAULT_CONFIG_PATH}] [env: {ENV_CONFIG_FILE}]",
)
@click.option(
    "-d", "--usb-id",
    "usb_id",
    type=str,
    default=None,
    help=f"USB device ID in vendor:product format (e.g., 2341:0043). [env: {ENV_DEVICE_USB_ID}]",
)
@click.option(
    "--dev",
    "dev_path",
    type=str,
    default=None,
    help=f"Device path (e.g., /dev/ttyACM0). [env: {ENV_DEVICE_DEV_PATH}]",
)
@click.option(
    "-b", "--baud-rate",
    type=int,
    default=None,
    help=f"Serial baud rate. [env: {ENV_DEVICE_BAUD_RATE}]",
)
@click.option(
    "--passes",
    "total_passes",
    type=click.IntRange(min=1),
    default=None,
    help=f"Number of cutting passes. [env: {ENV_JOB_TOTAL_PASSES}]",
)
@click.option(
    "--thickness",
    "material_thickness",
    type=float,
    default=None,
    help=f"Material thickness in mm. [env: {ENV_JOB_MATERIAL_THICKNESS}]",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Simulate the controller instead of connecting to hardware.",
)
@click.option(
    "--probe-z",
    type=float,
    default=-105.123,
    show_default=True,
    help="Z reported by simulated probe cycles (dry-run only).",
)
@click.option(
    "--gcode-log-file",
    type=click.Path(dir_okay=False),
    default=None,
    help=f"Log all GCode sent and received to this file. [env: {ENV_GCODE_LOG_FILE}]",
)
@click.option(
    "-v", "--verbose",
    count=True,
    help="Increase verbosity (-v for debug, -vv for raw serial traffic).",
)
@click.option(
    "-q", "--quiet",
    is_flag=True,
    default=False,
    help="Suppress all output except errors.",
)
@click.option(
    "--generate-config",
    is_flag=True,
    default=False,
    help="Generate a default configuration file and exit.",
)
@click.version_option(package_name="star-cutter")
def main(
    config_file: Path | None,
    usb_id: str | None,
    dev_path: str | None,
    baud_rate: int | None,
    total_passes: int | None,
    material_thickness: float | None,
    dry_run: bool,
    probe_z: float,
    gcode_log_file: str | None,
    verbose: int,
    quiet: bool,
    generate_config: bool,
) -> None:
    """
    Star Cutter - Probe, calibrate and cut a multi-pass star on a GRBL CNC router.

    The job homes the machine, probes the work surface to find the true Z origin,
    resets the coordinate system from that measurement, and cuts a star outline
    in progressively deeper passes before stopping the spindle and re-homing.

    Example usage:

    \b
        # Cut on the controller at /dev/ttyACM0
        star-cutter --dev /dev/ttyACM0

        # Five passes through 6 mm stock
        star-cutter --usb-id 2341:0043 --passes 5 --thickness 6

        # Walk through the job without hardware
        star-cutter --dry-run -v
    """
    cli_args: dict[str, Any] = {
        "usb_id": usb_id,
        "dev_path": dev_path,
        "baud_rate": baud_rate,
        "total_passes": total_passes,
        "material_thickness": material_thickness,
        "gcode_log_file": gcode_log_file,
        "dry_run": dry_run,
    }

    try:
        config = Config.load(
            config_file=config_file,
            cli_args=cli_args,
            skip_device_validation=generate_config,
        )
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    setup_logging(verbosity_level=verbose, quiet=quiet, gcode_log_file=config.gcode_log_file)
    logger = get_logger(__name__)

    if generate_config:
        target_path = config_file if config_file else DEFAULT_CONFIG_PATH
        try:
            config.save(target_path)
            click.echo(f"Configuration file generated: {target_path}")
        except OSError as e:
            click.echo(f"Error generating config file: {e}", err=True)
            sys.exit(1)
        return

    link: MachineLink
    if config.dry_run:
        logger.info("Starting Star Cutter in dry-run mode")
        link = DryRunLink(probe_z=probe_z)
        config.job.settle_delay = 0
    else:
        logger.info("Starting Star Cutter")
        logger.info(
            f"  Device: {config.device.usb_id or config.device.path} "
            f"@ {config.device.baud_rate} baud"
        )
        link = GrblLink(
            usb_id=config.device.usb_id,
            dev_path=config.device.path,
            baud_rate=config.device.baud_rate,
        )

    logger.info(
        f"  Job: {config.job.total_passes} passes through "
        f"{config.job.material_thickness:.3f} mm"
    )

    sequencer = CommandSequencer(link, timeout=config.device.response_timeout_seconds)
    orchestrator = JobOrchestrator(sequencer, config.job)

    # SIGTERM/SIGHUP interrupt the job like Ctrl+C
    def handle_signal(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        raise KeyboardInterrupt()

    if sys.platform != "win32":
        signal.signal(signal.SIGTERM, handle_signal)
        signal.signal(signal.SIGHUP, handle_signal)

    try:
        result = asyncio.run(orchestrator.run())
    except JobFailedError as e:
        logger.error(f"Job failed: {e}")
        click.echo(f"Job failed: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        sys.exit(130)

    click.echo(
        f"Cut {result.passes_completed} passes; probed Z = {result.measured_z:.3f} "
        f"({result.reset_command})"
    )


if __name__ == "__main__":
    main()
