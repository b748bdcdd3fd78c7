"""Marketplace CLI commands for skillmarket.

Add, refresh, list and remove the marketplaces plugins are installed from.
"""

from typing import Optional

import typer
from rich.table import Table

from cli.skillmarket.context import exit_on_error, get_manager
from cli.skillmarket.output import console, format_time, print_info, print_success

marketplace_app = typer.Typer(
    name="marketplace",
    help="Manage the marketplaces plugins are installed from.",
    no_args_is_help=True,
)


@marketplace_app.command("add")
def add(
    ref: str = typer.Argument(..., help="Directory, index file/URL, or git repository"),
    name: Optional[str] = typer.Option(
        None,
        "--name",
        "-n",
        help="Name to register the marketplace under (default: from the index)",
    ),
) -> None:
    """Add a marketplace.

    Examples:
        skillmarket marketplace add ./my-marketplace
        skillmarket marketplace add github:acme/skills-marketplace
        skillmarket marketplace add https://example.com/marketplace.json --name acme
    """
    with exit_on_error():
        known = get_manager().registry.add(ref, name=name)
    print_success(f"Added marketplace {known.name} ({known.plugin_count} plugins)")


@marketplace_app.command("update")
def update(
    name: str = typer.Argument(..., help="Marketplace name"),
) -> None:
    """Re-fetch a marketplace index."""
    with exit_on_error():
        known = get_manager().registry.update(name)
    print_success(f"Updated marketplace {known.name} ({known.plugin_count} plugins)")


@marketplace_app.command("list")
def list_marketplaces(
    plugins: bool = typer.Option(
        False,
        "--plugins",
        "-p",
        help="Also list the plugins each marketplace offers",
    ),
) -> None:
    """List known marketplaces."""
    with exit_on_error():
        registry = get_manager().registry
        marketplaces = registry.list_marketplaces()

        if not marketplaces:
            print_info("No marketplaces added. Add one with: skillmarket marketplace add <ref>")
            return

        table = Table(title="Marketplaces")
        table.add_column("Name", style="cyan")
        table.add_column("Plugins", justify="right")
        table.add_column("Source")
        table.add_column("Updated")

        for known in marketplaces:
            table.add_row(
                known.name,
                str(known.plugin_count),
                known.ref,
                format_time(known.updated_at or known.added_at),
            )
        console.print(table)

        if plugins:
            for known in marketplaces:
                index = registry.get_index(known.name)
                listing = Table(title=known.name)
                listing.add_column("Plugin", style="cyan")
                listing.add_column("Version")
                listing.add_column("Description")
                for entry in sorted(index.entries.values(), key=lambda e: e.name):
                    listing.add_row(entry.name, entry.version or "-", entry.description)
                console.print(listing)


@marketplace_app.command("remove")
def remove(
    name: str = typer.Argument(..., help="Marketplace name"),
) -> None:
    """Remove a marketplace. Installed plugins stay installed."""
    with exit_on_error():
        get_manager().registry.remove(name)
    print_success(f"Removed marketplace {name}")
