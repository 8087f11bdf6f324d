"""Configuration management for Star Cutter.

Handles configuration loading with the following precedence (highest to lowest):
1. Environment variables
2. CLI arguments
3. Config file
4. Default values
"""

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from star_cutter.core.logging import get_logger

logger = get_logger()

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "star-cutter" / "config.yaml"

# Environment variable names
ENV_DEVICE_USB_ID = "DEVICE_USB_ID"
ENV_DEVICE_DEV_PATH = "DEVICE_DEV_PATH"
ENV_DEVICE_BAUD_RATE = "DEVICE_BAUD_RATE"
ENV_DEVICE_RESPONSE_TIMEOUT = "DEVICE_RESPONSE_TIMEOUT"
ENV_JOB_TOTAL_PASSES = "JOB_TOTAL_PASSES"
ENV_JOB_MATERIAL_THICKNESS = "JOB_MATERIAL_THICKNESS"
ENV_JOB_PROBE_OFFSET = "JOB_PROBE_OFFSET"
ENV_GCODE_LOG_FILE = "GCODE_LOG_FILE"
ENV_CONFIG_FILE = "STAR_CUTTER_CONFIG"


@dataclass
class DeviceConfig:
    """Machine controller connection settings."""

    usb_id: str | None = None
    path: str | None = None
    baud_rate: int = 115200
    response_timeout: float = 90000.0  # ms

    @property
    def response_timeout_seconds(self) -> float:
        return self.response_timeout / 1000


@dataclass
class JobConfig:
    """Parameters of the star cutting job. Lengths in mm, feeds in mm/min."""

    probe_offset: float = 1.045
    total_passes: int = 7
    material_thickness: float = 25.4 / 8
    star_points: int = 9
    inner_radius: float = 50.0
    outer_radius: float = 90.0
    center_offset: float = 100.0
    origin_x: float = 220.0
    origin_y: float = 205.0
    plunge_feed: float = 355.6
    cut_feed: float = 1117.6
    spindle_rpm: int = 9000
    clearance: float = 1.0
    settle_delay: float = 5.0  # s


# YAML/CLI key -> (field name, type) for the job section
_JOB_FIELDS: dict[str, tuple[str, type]] = {
    name: (name, type(value)) for name, value in asdict(JobConfig()).items()
}


@dataclass
class Config:
    """Main configuration container."""

    device: DeviceConfig = field(default_factory=DeviceConfig)
    job: JobConfig = field(default_factory=JobConfig)
    gcode_log_file: str | None = None
    dry_run: bool = False

    @classmethod
    def load(
        cls,
        config_file: Path | str | None = None,
        cli_args: dict[str, Any] | None = None,
        skip_device_validation: bool = False,
    ) -> "Config":
        """Load configuration from all sources with proper precedence.

        Args:
            config_file: Path to configuration file. If None, uses default or env var.
            cli_args: Dictionary of CLI arguments.
            skip_device_validation: If True, don't require a device (for dry-run mode).

        Returns:
            Loaded and merged configuration.

        Raises:
            ValueError: If the merged configuration is invalid.
        """
        config = cls()

        if config_file is None:
            config_file = os.environ.get(ENV_CONFIG_FILE, str(DEFAULT_CONFIG_PATH))

        config_path = Path(config_file).expanduser()

        if config_path.exists():
            config = cls._load_from_file(config_path)

        if cli_args:
            config = cls._apply_cli_args(config, cli_args)

        config = cls._apply_env_vars(config)

        config._validate(skip_device_validation=skip_device_validation or config.dry_run)

        return config

    @classmethod
    def _load_from_file(cls, path: Path) -> "Config":
        """Load configuration from YAML file.

        Both hyphenated ("baud-rate") and underscored ("baud_rate") keys are accepted.

        Args:
            path: Path to the YAML config file.

        Returns:
            Configuration loaded from file.
        """
        config = cls()

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(f"Failed to load config file {path}: {e}")
            return config

        data = _normalize_keys(data)

        if "device" in data:
            device_data = data["device"]
            if "usb_id" in device_data:
                config.device.usb_id = str(device_data["usb_id"])
            if "path" in device_data:
                config.device.path = str(device_data["path"])
            if "baud_rate" in device_data:
                config.device.baud_rate = int(device_data["baud_rate"])
            if "response_timeout" in device_data:
                config.device.response_timeout = float(device_data["response_timeout"])

        if "job" in data:
            for key, value in data["job"].items():
                if key not in _JOB_FIELDS:
                    logger.warning(f"Ignoring unknown job setting '{key}' in {path}")
                    continue
                name, kind = _JOB_FIELDS[key]
                setattr(config.job, name, kind(value))

        if "gcode_log_file" in data:
            config.gcode_log_file = str(data["gcode_log_file"])

        if "dry_run" in data:
            config.dry_run = bool(data["dry_run"])

        return config

    @classmethod
    def _apply_cli_args(cls, config: "Config", cli_args: dict[str, Any]) -> "Config":
        """Apply CLI arguments to configuration.

        Args:
            config: Existing configuration to modify.
            cli_args: Dictionary of CLI arguments.

        Returns:
            Modified configuration.
        """
        if cli_args.get("usb_id") is not None:
            config.device.usb_id = str(cli_args["usb_id"])

        if cli_args.get("dev_path") is not None:
            config.device.path = str(cli_args["dev_path"])

        if cli_args.get("baud_rate") is not None:
            config.device.baud_rate = int(cli_args["baud_rate"])

        if cli_args.get("response_timeout") is not None:
            config.device.response_timeout = float(cli_args["response_timeout"])

        if cli_args.get("total_passes") is not None:
            config.job.total_passes = int(cli_args["total_passes"])

        if cli_args.get("material_thickness") is not None:
            config.job.material_thickness = float(cli_args["material_thickness"])

        if cli_args.get("gcode_log_file") is not None:
            config.gcode_log_file = str(cli_args["gcode_log_file"])

        if cli_args.get("dry_run"):
            config.dry_run = True

        return config

    @classmethod
    def _apply_env_vars(cls, config: "Config") -> "Config":
        """Apply environment variables to configuration.

        Args:
            config: Existing configuration to modify.

        Returns:
            Modified configuration.
        """
        if ENV_DEVICE_USB_ID in os.environ:
            config.device.usb_id = os.environ[ENV_DEVICE_USB_ID]

        if ENV_DEVICE_DEV_PATH in os.environ:
            config.device.path = os.environ[ENV_DEVICE_DEV_PATH]

        if ENV_DEVICE_BAUD_RATE in os.environ:
            config.device.baud_rate = int(os.environ[ENV_DEVICE_BAUD_RATE])

        if ENV_DEVICE_RESPONSE_TIMEOUT in os.environ:
            config.device.response_timeout = float(os.environ[ENV_DEVICE_RESPONSE_TIMEOUT])

        if ENV_JOB_TOTAL_PASSES in os.environ:
            config.job.total_passes = int(os.environ[ENV_JOB_TOTAL_PASSES])

        if ENV_JOB_MATERIAL_THICKNESS in os.environ:
            config.job.material_thickness = float(os.environ[ENV_JOB_MATERIAL_THICKNESS])

        if ENV_JOB_PROBE_OFFSET in os.environ:
            config.job.probe_offset = float(os.environ[ENV_JOB_PROBE_OFFSET])

        if ENV_GCODE_LOG_FILE in os.environ:
            config.gcode_log_file = os.environ[ENV_GCODE_LOG_FILE]

        return config

    def _validate(self, skip_device_validation: bool = False) -> None:
        """Validate required configuration values.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        job = self.job
        if job.total_passes < 1:
            raise ValueError(f"job.total-passes must be at least 1, got {job.total_passes}")
        if job.material_thickness <= 0:
            raise ValueError(
                f"job.material-thickness must be positive, got {job.material_thickness}"
            )
        if job.star_points < 2:
            raise ValueError(f"job.star-points must be at least 2, got {job.star_points}")
        if not 0 < job.inner_radius < job.outer_radius:
            raise ValueError(
                "job.inner-radius must be positive and smaller than job.outer-radius, "
                f"got {job.inner_radius} and {job.outer_radius}"
            )
        if self.device.response_timeout <= 0:
            raise ValueError(
                f"device.response-timeout must be positive, got {self.device.response_timeout}"
            )

        if skip_device_validation:
            return

        usb_id_set = self.device.usb_id is not None and self.device.usb_id.strip()
        dev_path_set = self.device.path is not None and self.device.path.strip()

        if not usb_id_set and not dev_path_set:
            raise ValueError(
                "Either USB ID or device path is required but not set. Please provide one via:\n"
                "  USB ID:\n"
                "    - Environment variable: DEVICE_USB_ID\n"
                "    - CLI argument: --usb-id or -d\n"
                "    - Config file: device.usb-id\n"
                "  OR device path:\n"
                "    - Environment variable: DEVICE_DEV_PATH\n"
                "    - CLI argument: --dev\n"
                "    - Config file: device.path\n"
                "  OR run with --dry-run"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation of configuration.
        """
        result: dict[str, Any] = {
            "device": asdict(self.device),
            "job": asdict(self.job),
            "dry_run": self.dry_run,
        }
        if self.gcode_log_file is not None:
            result["gcode_log_file"] = self.gcode_log_file
        return result

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file.

        Args:
            path: Path to save to. If None, uses default config path.
        """
        if path is None:
            path = DEFAULT_CONFIG_PATH

        save_path = Path(path).expanduser()
        save_path.parent.mkdir(parents=True, exist_ok=True)

        device_data: dict[str, Any] = {
            "baud-rate": self.device.baud_rate,
            "response-timeout": self.device.response_timeout,
        }

        if self.device.usb_id is not None:
            device_data["usb-id"] = self.device.usb_id

        if self.device.path is not None:
            device_data["path"] = self.device.path

        data: dict[str, Any] = {
            "device": device_data,
            "job": {key.replace("_", "-"): value for key, value in asdict(self.job).items()},
        }

        if self.gcode_log_file is not None:
            data["gcode-log-file"] = self.gcode_log_file

        with open(save_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False)


def _normalize_keys(data: Any) -> Any:
    """Recursively convert hyphenated mapping keys to underscores."""
    if isinstance(data, dict):
        return {str(k).replace("-", "_"): _normalize_keys(v) for k, v in data.items()}
    return data
