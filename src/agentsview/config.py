"""
Configuration management for agentsview self-update.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (~/.agentsview/config.yml or --config path)
3. Environment variables (AGENTSVIEW_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from agentsview import __version__

DEFAULT_DATA_DIR = Path("~/.agentsview")
DEFAULT_CONFIG_PATH = DEFAULT_DATA_DIR / "config.yml"

# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        json_format: Emit JSON records instead of plain text.
        log_to_stderr: Whether to log to stderr at all.
    """

    level: str = Field(
        default="warning",
        description="Log level: debug, info, warn, error",
    )
    json_format: bool = Field(
        default=False,
        description="Emit JSON-formatted log records",
    )
    log_to_stderr: bool = Field(
        default=True,
        description="Whether to log to stderr",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Updates Configuration
# =============================================================================


class UpdatesConfig(BaseModel):
    """Self-update configuration.

    Attributes:
        repository: GitHub repository publishing releases (owner/name).
        api_url: GitHub API base URL.
        cache_dir: Directory holding the update-check cache.
        install_path: Binary to replace. Defaults to the running executable.
        check_interval_seconds: How long a cached check stays fresh.
        http_timeout_seconds: Timeout for each HTTP request.
        max_download_bytes: Upper bound on a downloaded release asset.
        github_token: Optional token for authenticated API requests.
    """

    repository: str = Field(
        default="wesm/agentsview",
        description="GitHub repository in owner/name form",
    )
    api_url: str = Field(
        default="https://api.github.com",
        description="GitHub API base URL",
    )
    cache_dir: str = Field(
        default=str(DEFAULT_DATA_DIR),
        description="Directory for the update-check cache",
    )
    install_path: str | None = Field(
        default=None,
        description="Path of the binary to replace (default: running executable)",
    )
    check_interval_seconds: int = Field(
        default=3600,
        ge=0,
        description="Seconds a cached update check stays fresh",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP request timeout in seconds",
    )
    max_download_bytes: int = Field(
        default=200 * 1024 * 1024,
        gt=0,
        description="Maximum size of a downloaded release asset",
    )
    github_token: str | None = Field(
        default=None,
        description="Optional GitHub token for API requests",
    )

    @field_validator("repository")
    @classmethod
    def validate_repository(cls, v: str) -> str:
        """Validate the owner/name repository form."""
        parts = v.strip().split("/")
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"Invalid repository: {v}. Expected 'owner/name'")
        return v.strip()

    @property
    def cache_path(self) -> Path:
        """Return cache_dir with ``~`` expanded."""
        return Path(self.cache_dir).expanduser()


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Attributes:
        logging: Logging configuration.
        updates: Self-update configuration.
    """

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )
    updates: UpdatesConfig = Field(
        default_factory=UpdatesConfig,
        description="Self-update configuration",
    )


class CommandOptions(BaseModel):
    """Command flags that select what the update command does."""

    check: bool = False
    force: bool = False


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """Parse an environment variable value to bool, int, float or string."""
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _load_env_config(prefix: str = "AGENTSVIEW_") -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Nested keys use a double underscore separator, for example
    ``AGENTSVIEW_UPDATES__CHECK_INTERVAL_SECONDS=600``.

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")
        if len(parts) < 2:
            # Only SECTION__KEY variables map onto the config tree
            continue

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        current[parts[-1]] = _parse_env_value(value)

    return result


def build_arg_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the ``agentsview-update`` command."""
    parser = argparse.ArgumentParser(
        prog="agentsview-update",
        description="Check for and install a newer agentsview release",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--check",
        action="store_true",
        help="Only report whether an update is available",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Ignore the cached check and dev-build detection",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse command-line arguments.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with config overrides, plus ``_config_path`` and
        ``_command`` entries that are consumed by load_config.
    """
    parsed = build_arg_parser().parse_args(args)

    result: dict[str, Any] = {
        "_command": {"check": parsed.check, "force": parsed.force},
    }

    if parsed.config:
        result["_config_path"] = parsed.config

    if parsed.log_level:
        result["logging"] = {"level": parsed.log_level}

    if parsed.debug:
        result["logging"] = {"level": "debug"}

    return result


def load_config_and_options(
    config_path: Path | str | None = None,
    env_prefix: str = "AGENTSVIEW_",
    cli_args: list[str] | None = None,
) -> tuple[AppConfig, CommandOptions]:
    """
    Load configuration from all sources and return the parsed command flags.

    Later sources override earlier ones: defaults, YAML file, environment,
    command line.

    Raises:
        FileNotFoundError: If an explicitly specified config file doesn't exist.
        ValidationError: If configuration is invalid.
    """
    config_dict: dict[str, Any] = {}

    cli_config = _parse_cli_args(cli_args)
    options = CommandOptions(**cli_config.pop("_command"))

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path")).expanduser()
        else:
            default_path = DEFAULT_CONFIG_PATH.expanduser()
            if default_path.exists():
                config_path = default_path
    else:
        cli_config.pop("_config_path", None)
        config_path = Path(config_path).expanduser()

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict), options


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = "AGENTSVIEW_",
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Example:
        >>> config = load_config(cli_args=[])
        >>> config.updates.repository
        'wesm/agentsview'
    """
    config, _ = load_config_and_options(config_path, env_prefix, cli_args)
    return config
