"""Configuration loader for pushdeploy.

Loads the ``[deploy]`` table from deploy.toml, then applies .env values,
environment variables and command-line overrides, in that order.
"""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import ValidationError

from pushdeploy.config.schema import DeployConfig
from pushdeploy.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "deploy.toml"
ENV_PREFIX = "PUSHDEPLOY"

# Options whose environment value is a comma-separated list
LIST_OPTIONS = ("ignore_files",)


def get_config_search_paths(project_dir: Path) -> list[Path]:
    """Get the list of paths to search for configuration files.

    Returns paths in priority order (first found wins):
    1. <project_dir>/deploy.toml
    2. ~/.config/pushdeploy/deploy.toml (user defaults)
    """
    return [
        project_dir / CONFIG_FILENAME,
        Path.home() / ".config" / "pushdeploy" / CONFIG_FILENAME,
    ]


def find_config_file(project_dir: Path) -> Path | None:
    """Find the first existing config file from search paths."""
    for path in get_config_search_paths(project_dir):
        if path.exists() and path.is_file():
            logger.debug(f"Found config file: {path}")
            return path
    return None


def load_toml_file(path: Path) -> dict[str, Any]:
    """Load the ``[deploy]`` table of a TOML file.

    A file without a ``[deploy]`` table is read as a flat table of options.
    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e
    return dict(data.get("deploy", data))


def apply_env_overrides(
    config_dict: dict[str, Any],
    environ: dict[str, str | None],
    prefix: str = ENV_PREFIX,
) -> None:
    """Apply environment variable overrides to the configuration dictionary.

    Every field of DeployConfig maps to ``<PREFIX>_<FIELD>``, for example
    PUSHDEPLOY_HOST -> host and PUSHDEPLOY_DEPLOY_PATH -> deploy_path.
    Type conversion is left to pydantic.

    Note: This modifies config_dict in place.
    """
    for field in DeployConfig.model_fields:
        value = environ.get(f"{prefix}_{field.upper()}")
        if value is None or value == "":
            continue
        if field in LIST_OPTIONS:
            config_dict[field] = [item.strip() for item in value.split(",") if item.strip()]
        else:
            config_dict[field] = value


def load_env(project_dir: Path) -> dict[str, str | None]:
    """Merge the project's .env file with the process environment.

    Process environment values take precedence over the file.
    """
    env_values: dict[str, str | None] = {}
    env_file = project_dir / ".env"
    if env_file.exists():
        logger.debug(f"Loading environment from: {env_file}")
        env_values.update(dotenv_values(env_file))
    env_values.update(os.environ)
    return env_values


def load_config(
    project_dir: Path | None = None,
    config_file: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> DeployConfig:
    """Load configuration from TOML, .env, environment and overrides.

    Args:
        project_dir: Project root; defaults to the current directory.
        config_file: Explicit config file. If not provided, searches
                     default locations.
        overrides: Values from the command line; None values are ignored.

    Returns:
        DeployConfig instance with all sources applied.

    Raises:
        ConfigurationError: If a file is unreadable or a value is invalid.
    """
    project_dir = project_dir or Path.cwd()
    config_dict: dict[str, Any] = {}

    if config_file is None:
        config_file = find_config_file(project_dir)
    elif not config_file.exists():
        raise ConfigurationError(f"Config file not found: {config_file}")

    if config_file:
        logger.info(f"Loading config from: {config_file}")
        config_dict = load_toml_file(config_file)
    else:
        logger.debug("No config file found, using defaults with env overrides")

    apply_env_overrides(config_dict, load_env(project_dir))

    for key, value in (overrides or {}).items():
        if value is not None:
            config_dict[key] = value

    try:
        return DeployConfig(**config_dict)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
