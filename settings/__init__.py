"""Configuration loading."""

from settings.config import (
    Config,
    FetchConfig,
    LoggingConfig,
    MatchingConfig,
    PathsConfig,
    find_config_file,
    get_config,
    load_config,
    reload_config,
)

__all__ = [
    "Config",
    "FetchConfig",
    "LoggingConfig",
    "MatchingConfig",
    "PathsConfig",
    "find_config_file",
    "get_config",
    "load_config",
    "reload_config",
]
