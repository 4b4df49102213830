"""Configuration loading and parsing for the restore agent."""

import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from restore_agent.config.models import RestoreConfig, RestoreOverrides
from restore_agent.core.logging import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "RESTORE_"


def load_config(
    config_file: str = "",
    overrides: RestoreOverrides | None = None,
) -> RestoreConfig:
    """Load configuration from file, environment and CLI overrides.

    Later sources win: file, then environment, then CLI flags.

    Args:
        config_file: Path to YAML configuration file (optional)
        overrides: Configuration overrides from the CLI (optional)

    Returns:
        Loaded and validated configuration

    Raises:
        ValueError: If configuration is invalid or no bucket is configured
        FileNotFoundError: If specified config file doesn't exist
    """
    if config_file:
        config = _load_from_file(Path(config_file))
    else:
        config = RestoreConfig()

    _apply_overrides(config, get_env_overrides())
    if overrides:
        _apply_overrides(config, overrides)

    if not config.bucket:
        raise ValueError("No bucket configured, set --src or RESTORE_BUCKET")

    return config


def _load_from_file(path: Path) -> RestoreConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to configuration file

    Returns:
        Parsed configuration

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If file is invalid YAML or doesn't match schema
    """
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info("Loading configuration file", path=str(path))

    try:
        with path.open("r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in configuration file: {e}") from e

    # Treat empty files as empty configuration
    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise ValueError("Configuration file must contain a YAML mapping")

    try:
        return RestoreConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Failed to parse configuration: {e}") from e


def _apply_overrides(config: RestoreConfig, overrides: RestoreOverrides) -> None:
    """Apply non-empty override values to a config object in place.

    Assignments are validated, so a bad value raises a pydantic
    ValidationError (a ValueError).
    """
    if overrides.bucket:
        config.bucket = overrides.bucket
    if overrides.destination:
        config.destination = overrides.destination
    if overrides.hostname:
        config.hostname = overrides.hostname
    if overrides.secret_name:
        config.secret_name = overrides.secret_name
    if overrides.restore_id:
        config.restore_id = overrides.restore_id
    if overrides.timeout_seconds is not None:
        config.timeout_seconds = overrides.timeout_seconds


def get_env_overrides() -> RestoreOverrides:
    """Get configuration overrides from environment variables.

    Variables are prefixed with RESTORE_ (e.g. RESTORE_BUCKET, RESTORE_ID).

    Returns:
        RestoreOverrides populated from environment variables

    Raises:
        ValueError: If RESTORE_TIMEOUT is not a number
    """

    def get_str(key: str) -> str:
        return os.getenv(f"{ENV_PREFIX}{key.upper()}", "")

    timeout = get_str("timeout")
    try:
        timeout_seconds = float(timeout) if timeout else None
    except ValueError as e:
        raise ValueError(f"Invalid {ENV_PREFIX}TIMEOUT value: {timeout!r}") from e

    return RestoreOverrides(
        bucket=get_str("bucket"),
        destination=get_str("destination"),
        hostname=get_str("hostname"),
        secret_name=get_str("secret_name"),
        restore_id=get_str("id"),
        timeout_seconds=timeout_seconds,
    )
