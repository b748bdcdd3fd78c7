"""Shared state for CLI commands: install root, config-built services, error exit."""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer

from cli.skillmarket.output import print_failure
from plugins.errors import SkillmarketError
from settings.config import get_config

_install_root: Optional[Path] = None


def set_install_root(path: Optional[Path]) -> None:
    global _install_root
    _install_root = path.expanduser() if path is not None else None


def get_install_root() -> Path:
    """``--install-root`` if given, else the configured root."""
    if _install_root is not None:
        return _install_root
    return get_config().paths.install_root_path


def get_manager():
    """Get a plugin manager for the active install root."""
    from plugins.manager import PluginManager

    fetch = get_config().fetch
    return PluginManager.from_root(
        get_install_root(),
        timeout=fetch.timeout,
        max_attempts=fetch.max_attempts,
        backoff_base=fetch.backoff_base,
        max_workers=fetch.max_workers,
    )


def get_catalog():
    """Get the installed-skill catalog for the active install root."""
    from skills.catalog import InstalledSkillCatalog

    return InstalledSkillCatalog(get_install_root())


@contextmanager
def exit_on_error() -> Iterator[None]:
    """Turn a SkillmarketError into ``<kind>: <message>`` and exit code 1."""
    try:
        yield
    except SkillmarketError as e:
        print_failure(e)
        raise typer.Exit(1)
