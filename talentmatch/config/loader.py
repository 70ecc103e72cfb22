"""Configuration loader for the match engine."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .models import AppConfig
from .validators import check_for_warnings, emit_warnings


def load_config(config_path: Optional[Path] = None) -> tuple[AppConfig, EnvironmentConfig]:
    """
    Load and validate configuration from YAML file and environment variables.

    Implements fallback logic for config file location:
    1. Use provided config_path if given
    2. Try config.yaml in current directory
    3. Try ./config/config.yaml
    4. Fail with helpful error message

    Every section has defaults, so an empty file yields the default
    configuration.

    Args:
        config_path: Optional path to configuration file

    Returns:
        Tuple of (AppConfig, EnvironmentConfig) with validated configuration

    Raises:
        ConfigurationError: If configuration is invalid or file not found
    """
    config_file = _find_config_file(config_path)
    config_dict = _read_yaml(config_file)

    warnings = check_for_warnings(config_dict)
    if warnings:
        emit_warnings(warnings)

    app_config = parse_app_config(config_dict)

    try:
        env_config = load_environment_config()
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load environment configuration: {e}",
            suggestions=["Copy .env.example to .env and adjust the values"],
        ) from e

    return app_config, env_config


def parse_app_config(config_dict: Dict[str, Any]) -> AppConfig:
    """Validate a raw configuration mapping into an AppConfig.

    Raises:
        ConfigurationError: With one readable entry per pydantic error
    """
    try:
        return AppConfig.model_validate(config_dict)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            field_path = " -> ".join(str(loc) for loc in error["loc"])
            error_msg = error["msg"]
            error_type = error["type"]

            if error_type == "missing":
                errors.append(f"Missing required field: {field_path}")
            elif error_type in ["string_type", "int_type", "float_type", "bool_type"]:
                expected_type = error_type.replace("_type", "")
                errors.append(
                    f"Invalid type for '{field_path}': expected {expected_type}, got {error.get('input')}"
                )
            elif "enum" in error_type:
                errors.append(f"Invalid value for '{field_path}': {error_msg}")
            else:
                errors.append(f"{field_path}: {error_msg}")

        raise ConfigurationError(
            "Configuration validation failed",
            errors=errors,
            suggestions=[
                "Review config.example.yaml for correct format",
                "Verify field types match the expected schema",
            ],
        ) from e


def _read_yaml(config_file: Path) -> Dict[str, Any]:
    try:
        with open(config_file, "r") as f:
            config_dict = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Configuration file not found: {config_file}",
            suggestions=[
                "Copy config.example.yaml to config.yaml",
                f"Ensure {config_file} exists and is readable",
            ],
        ) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML configuration: {e}",
            suggestions=[
                "Check YAML syntax in your config file",
                "Ensure proper indentation (use spaces, not tabs)",
            ],
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read configuration file: {e}",
            suggestions=[
                f"Ensure {config_file} is readable",
                "Check file permissions",
            ],
        ) from e

    if config_dict is None:
        return {}

    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            "Configuration file must contain a mapping at the top level",
            suggestions=["Review config.example.yaml for correct format"],
        )

    return config_dict


def _find_config_file(config_path: Optional[Path] = None) -> Path:
    """
    Find configuration file using fallback logic.

    Args:
        config_path: Optional explicit path to config file

    Returns:
        Path to configuration file

    Raises:
        ConfigurationError: If no config file is found
    """
    if config_path:
        if not config_path.exists():
            raise ConfigurationError(
                f"Specified configuration file not found: {config_path}",
                suggestions=[
                    f"Ensure {config_path} exists",
                    "Check the path and try again",
                ],
            )
        return config_path

    candidates = [
        Path("config.yaml"),
        Path("config") / "config.yaml",
    ]

    for candidate in candidates:
        if candidate.exists():
            return candidate

    raise ConfigurationError(
        "Configuration file not found",
        errors=[
            "Tried: config.yaml",
            "Tried: config/config.yaml",
        ],
        suggestions=[
            "Copy config.example.yaml to config.yaml",
            "Use --config flag to specify a custom location",
        ],
    )


def validate_config_file(config_path: Path) -> bool:
    """
    Validate a configuration file without loading environment variables.

    Useful for pre-deployment validation.

    Args:
        config_path: Path to configuration file

    Returns:
        True if valid, False otherwise (errors printed)
    """
    try:
        parse_app_config(_read_yaml(config_path))
        print(f"✓ Configuration file {config_path} is valid")
        return True
    except ConfigurationError as e:
        print(f"✗ Configuration validation failed:\n{e}")
        return False
