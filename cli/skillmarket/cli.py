"""skillmarket CLI.

Main command-line interface: marketplaces, plugins, skills and config.
"""

import logging
from pathlib import Path
from typing import Optional

import typer

from cli.skillmarket.context import set_install_root
from cli.skillmarket.output import (
    console,
    print_error,
    print_info,
    print_key_values,
    print_success,
    print_warning,
    setup_logging,
)

app = typer.Typer(
    name="skillmarket",
    help="skillmarket - install plugin bundles from marketplaces and match their skills to tasks",
    no_args_is_help=True,
)

# Config sub-app
config_app = typer.Typer(
    name="config",
    help="Manage configuration settings.",
)
app.add_typer(config_app, name="config")

from cli.commands.marketplace import marketplace_app
from cli.commands.plugin import plugin_app
from cli.commands.skills import skills_app

app.add_typer(marketplace_app, name="marketplace")
app.add_typer(plugin_app, name="plugin")
app.add_typer(skills_app, name="skills")


@app.callback()
def main_options(
    install_root: Optional[Path] = typer.Option(
        None,
        "--install-root",
        help="Install root (default: [paths] install_root or $SKILLMARKET_HOME)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log fetch, install and matching details",
    ),
) -> None:
    """Install plugin bundles from marketplaces and activate their skills."""
    from settings.config import get_config

    try:
        config = get_config()
    except ValueError as e:
        print_error(f"Invalid configuration: {e}")
        raise typer.Exit(1)

    level = "DEBUG" if verbose else config.logging.level.upper()
    if not isinstance(logging.getLevelName(level), int):
        print_warning(f"Unknown log level {config.logging.level!r}; using WARNING")
        level = "WARNING"
    setup_logging(level)
    set_install_root(install_root)


@config_app.command("show")
def config_show(
    section: Optional[str] = typer.Argument(
        None,
        help="Config section to show (paths, fetch, matching, logging)",
    ),
) -> None:
    """Show current configuration.

    Examples:
        skillmarket config show
        skillmarket config show matching
    """
    from dataclasses import asdict

    from settings.config import find_config_file, get_config

    config_path = find_config_file()
    if config_path:
        print_info(f"Config file: {config_path}")
    else:
        print_warning("No skillmarket.toml found (using defaults)")

    sections = asdict(get_config())

    if section:
        section_lower = section.lower()
        if section_lower not in sections:
            print_error(f"Unknown section: {section}")
            print_info(f"Available: {', '.join(sections)}")
            raise typer.Exit(1)
        print_key_values(section_lower, sections[section_lower])
        return

    for name, values in sections.items():
        print_key_values(name, values)


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Config key (e.g., matching.strategy, fetch.timeout)"),
    value: str = typer.Argument(..., help="Value to set"),
) -> None:
    """Set a configuration value.

    Examples:
        skillmarket config set matching.strategy bm25
        skillmarket config set fetch.max_attempts 5
        skillmarket config set paths.install_root ~/skills
    """
    import sys

    if sys.version_info >= (3, 11):
        import tomllib
    else:
        import tomli as tomllib
    import tomli_w

    from settings.config import Config, find_config_file, reload_config

    config_path = find_config_file()
    if not config_path:
        print_error("No skillmarket.toml found. Run 'skillmarket config init' first.")
        raise typer.Exit(1)

    parts = key.split(".")
    if len(parts) != 2:
        print_error("Key must be in format 'section.key' (e.g., matching.strategy)")
        raise typer.Exit(1)

    section, setting = parts
    defaults = {name: vars(values) for name, values in vars(Config()).items()}
    if section not in defaults or setting not in defaults[section]:
        print_error(f"Unknown setting: {key}")
        raise typer.Exit(1)

    with open(config_path, "rb") as f:
        config_data = tomllib.load(f)

    if section not in config_data:
        config_data[section] = {}

    # Parse value type
    parsed_value: str | int | float | bool = value
    if value.lower() == "true":
        parsed_value = True
    elif value.lower() == "false":
        parsed_value = False
    elif value.isdigit():
        parsed_value = int(value)
    elif value.replace(".", "").isdigit() and value.count(".") == 1:
        parsed_value = float(value)

    config_data[section][setting] = parsed_value

    with open(config_path, "wb") as f:
        tomli_w.dump(config_data, f)

    print_success(f"Set {key} = {parsed_value}")

    reload_config()


@config_app.command("init")
def config_init(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing skillmarket.toml",
    ),
) -> None:
    """Create a default skillmarket.toml file.

    Example:
        skillmarket config init
        skillmarket config init --force
    """
    config_path = Path.cwd() / "skillmarket.toml"

    if config_path.exists() and not force:
        print_warning(f"Config file already exists: {config_path}")
        print_info("Use --force to overwrite")
        raise typer.Exit(1)

    default_config = '''# skillmarket configuration
# Auto-generated by 'skillmarket config init'

[paths]
# Installed plugins, records and marketplace caches
install_root = "~/.skillmarket"

[fetch]
# Seconds per request
timeout = 60.0
# Attempts for transient network failures
max_attempts = 3
# First retry delay in seconds; doubles each attempt
backoff_base = 0.5
# Parallel downloads for batch installs
max_workers = 4

[matching]
# "overlap" | "bm25"
strategy = "overlap"
# threshold = 0.1
max_results = 5
# max_context_chars = 8000

[logging]
level = "WARNING"
'''

    config_path.write_text(default_config)
    print_success(f"Created config file: {config_path}")


@app.command()
def version() -> None:
    """Show skillmarket version."""
    from cli.skillmarket import __version__

    console.print(f"skillmarket v{__version__}")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
