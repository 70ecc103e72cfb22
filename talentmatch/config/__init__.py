"""Configuration management for the match engine."""

from .duration import DurationParseError, parse_duration, validate_duration_range
from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, parse_app_config, validate_config_file
from .models import (
    AppConfig,
    LogFormat,
    LogLevel,
    LoggingConfig,
    MarketplaceType,
    MatchingConfig,
    QueueConfig,
    RecommendationsConfig,
)

__all__ = [
    # Main loader functions
    "load_config",
    "parse_app_config",
    "validate_config_file",
    "load_environment_config",
    # Configuration models
    "AppConfig",
    "MatchingConfig",
    "RecommendationsConfig",
    "QueueConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    # Enums
    "MarketplaceType",
    "LogLevel",
    "LogFormat",
    # Durations
    "parse_duration",
    "validate_duration_range",
    "DurationParseError",
    # Exceptions
    "ConfigurationError",
]
