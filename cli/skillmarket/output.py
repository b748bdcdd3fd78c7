"""Rich console output utilities for the skillmarket CLI."""

import logging
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from plugins.errors import SkillmarketError

console = Console()
error_console = Console(stderr=True)


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]→[/blue] {message}")


def print_failure(error: SkillmarketError) -> None:
    """Print ``<kind>: <message>`` to stderr, unstyled and unwrapped."""
    error_console.print(
        f"{error.kind}: {error}", markup=False, highlight=False, soft_wrap=True
    )


def format_time(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def print_key_values(title: str, values: dict[str, Any]) -> None:
    """Print a config section as a two-column table."""
    console.print(f"\n[bold]\\[{title}][/bold]")

    table = Table(show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    for key, value in values.items():
        table.add_row(key, "-" if value is None else str(value))

    console.print(table)


def setup_logging(level: str | int) -> None:
    """Send log records to stderr through Rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=error_console, show_path=False)],
        force=True,
    )
