"""Configuration loader.

Loads the YAML configuration file, validates it against the Pydantic schema
and keeps the result in a thread-safe singleton.

The file location comes from AADTOKEN_CONFIG_PATH, falling back to
~/.config/aadtoken/config.yaml. If the default file does not exist the
built-in defaults are used; an explicitly named file must exist.

Usage:
    from aadtoken.config import get_config

    config = get_config()
    manager = TokenManager.from_config(config)
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from aadtoken.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from aadtoken.core.errors import ConfigLoadError, ConfigValidationError
from aadtoken.core.logging import get_logger

logger = get_logger(__name__)

CONFIG_PATH_ENV = "AADTOKEN_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "aadtoken" / "config.yaml"

# Global state for config singleton
_config_lock = threading.Lock()
_current_config: AppConfig | None = None


def _get_config_path() -> tuple[Path, bool]:
    """Get the config file path and whether it was named explicitly."""
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path), True
    return DEFAULT_CONFIG_PATH, False


def _format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors into actionable messages.

    Args:
        error: Pydantic ValidationError

    Returns:
        Formatted error message with specific field errors
    """
    messages = []
    for err in error.errors():
        field_path = ".".join(str(loc) for loc in err["loc"])
        msg = err["msg"]
        err_type = err["type"]

        if err_type == "missing":
            messages.append(f"  - Missing required field '{field_path}'")
        elif err_type == "string_type":
            messages.append(f"  - Field '{field_path}' must be a string")
        elif err_type in ("int_type", "float_type"):
            messages.append(f"  - Field '{field_path}' must be a number")
        elif err_type == "extra_forbidden":
            messages.append(f"  - Unknown field '{field_path}'")
        else:
            messages.append(f"  - Field '{field_path}': {msg}")

    return "\n".join(messages)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file.

    Raises:
        ConfigLoadError: If file not found or YAML parse error
    """
    if not path.exists():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Create it, or unset {CONFIG_PATH_ENV} to use the built-in defaults."
        )

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e
    except OSError as e:
        raise ConfigLoadError(f"Failed to read {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"Configuration file must be a YAML mapping, got {type(data).__name__}"
        )
    return data


def _validate_config(data: dict[str, Any], path: Path) -> AppConfig:
    """Validate config data against the Pydantic schema.

    Raises:
        ConfigValidationError: If validation fails
    """
    try:
        config = AppConfig(**data)
    except ValidationError as e:
        error_details = _format_validation_errors(e)
        raise ConfigValidationError(
            f"Configuration validation failed for {path}:\n{error_details}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"Config schema version {config.schema_version} is newer than "
            f"supported version {CURRENT_SCHEMA_VERSION}. "
            "Please upgrade aadtoken or downgrade the config."
        )
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load and validate configuration, always from disk.

    Args:
        path: Config file path. If not provided, uses AADTOKEN_CONFIG_PATH or
              the default location (where a missing file means defaults).

    Raises:
        ConfigLoadError: If an explicitly named file cannot be loaded
        ConfigValidationError: If validation fails
    """
    if path is None:
        path, explicit = _get_config_path()
    else:
        explicit = True

    if not explicit and not path.exists():
        logger.debug("No configuration file, using defaults", path=str(path))
        return AppConfig()

    logger.debug("Loading configuration", path=str(path))
    config = _validate_config(_load_yaml(path), path)
    logger.debug("Configuration loaded", path=str(path), schema_version=config.schema_version)
    return config


def get_config() -> AppConfig:
    """Get the configuration singleton, loading it on first use.

    Raises:
        ConfigLoadError: If file cannot be loaded
        ConfigValidationError: If validation fails
    """
    global _current_config

    with _config_lock:
        if _current_config is None:
            _current_config = load_config()
        return _current_config


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Validate a config file without loading it into the singleton.

    Returns:
        Tuple of (is_valid, message)
    """
    try:
        config = load_config(path)
    except ConfigLoadError as e:
        return (False, f"Load error: {e}")
    except ConfigValidationError as e:
        return (False, f"Validation error: {e}")

    return (
        True,
        f"Configuration valid (schema version {config.schema_version})\n"
        f"  - tenant: {config.defaults.tenant}\n"
        f"  - app: {config.defaults.app or '(not set)'}\n"
        f"  - protocol version: v{config.defaults.version}\n"
        f"  - token cache: {'on' if config.cache.use_cache else 'off'}",
    )


def reset_config() -> None:
    """Reset the config singleton. Primarily for testing."""
    global _current_config
    with _config_lock:
        _current_config = None
