"""Configuration management for skillmarket.

Loads configuration from:
1. skillmarket.toml (current directory or any parent)
2. Environment variables (overrides, ``.env`` honoured)
"""

import logging
import os
import sys
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "skillmarket.toml"
DEFAULT_INSTALL_ROOT = "~/.skillmarket"


@dataclass
class PathsConfig:
    """Where installed plugins and marketplace caches live."""

    install_root: str = DEFAULT_INSTALL_ROOT

    @property
    def install_root_path(self) -> Path:
        return Path(self.install_root).expanduser()


@dataclass
class FetchConfig:
    """Bundle download configuration."""

    timeout: float = 60.0
    max_attempts: int = 3
    backoff_base: float = 0.5  # seconds; doubles per retry
    max_workers: int = 4  # parallel fetches for batch installs


@dataclass
class MatchingConfig:
    """Skill activation configuration."""

    strategy: str = "overlap"  # "overlap" | "bm25"
    threshold: float | None = None  # None = strategy default
    max_results: int = 5
    max_context_chars: int | None = None


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class Config:
    """Main configuration container."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        return cls(
            paths=_section(PathsConfig, data.get("paths", {}), "paths"),
            fetch=_section(FetchConfig, data.get("fetch", {}), "fetch"),
            matching=_section(MatchingConfig, data.get("matching", {}), "matching"),
            logging=_section(LoggingConfig, data.get("logging", {}), "logging"),
        )

    def to_dict(self) -> dict[str, dict[str, Any]]:
        """Sections as plain dicts; unset (None) values are dropped for TOML."""
        return {
            name: {k: v for k, v in values.items() if v is not None}
            for name, values in asdict(self).items()
        }


def _section(cls: type, data: dict[str, Any], name: str) -> Any:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning("Ignoring unknown [%s] keys: %s", name, ", ".join(unknown))
    return cls(**{k: v for k, v in data.items() if k in known})


def find_config_file() -> Path | None:
    """Find skillmarket.toml in current or parent directories.

    Returns:
        Path to skillmarket.toml or None if not found.
    """
    current = Path.cwd()

    for directory in [current, *current.parents]:
        config_path = directory / CONFIG_FILENAME
        if config_path.exists():
            return config_path

    return None


def load_config(config_path: Path | str | None = None) -> Config:
    """Load configuration from file and environment.

    Args:
        config_path: Optional explicit path to skillmarket.toml

    Returns:
        Config object with merged settings.

    Raises:
        ValueError: The config file is not valid TOML.
    """
    config_data: dict[str, Any] = {}

    if config_path is None:
        config_path = find_config_file()

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path, "rb") as f:
                try:
                    config_data = tomllib.load(f)
                except tomllib.TOMLDecodeError as e:
                    raise ValueError(f"{path}: {e}") from e

    env_overrides = {
        "paths": {
            "install_root": os.getenv("SKILLMARKET_HOME"),
        },
        "fetch": {
            "timeout": _float_or_none(os.getenv("SKILLMARKET_FETCH_TIMEOUT")),
            "max_attempts": _int_or_none(os.getenv("SKILLMARKET_FETCH_ATTEMPTS")),
        },
        "matching": {
            "strategy": os.getenv("SKILLMARKET_MATCH_STRATEGY"),
        },
        "logging": {
            "level": os.getenv("SKILLMARKET_LOG_LEVEL"),
        },
    }

    # Merge env overrides (only non-None values)
    for section, values in env_overrides.items():
        if section not in config_data:
            config_data[section] = {}
        for key, value in values.items():
            if value is not None:
                config_data[section][key] = value

    return Config.from_dict(config_data)


def _int_or_none(value: str | None) -> int | None:
    """Convert string to int, or return None."""
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _float_or_none(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


# Global config instance (lazy loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance.

    Returns:
        Config object (loaded once, cached).
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Force reload of configuration.

    Returns:
        Fresh Config object.
    """
    global _config
    _config = load_config()
    return _config
