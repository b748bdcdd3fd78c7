"""Plugin CLI commands for skillmarket.

Install plugins from known marketplaces, update and remove them.
"""

from typing import List, Optional

import typer
from rich.table import Table

from cli.skillmarket.context import exit_on_error, get_manager
from cli.skillmarket.output import (
    console,
    format_time,
    print_failure,
    print_info,
    print_success,
)

plugin_app = typer.Typer(
    name="plugin",
    help="Install, update and remove plugins.",
    no_args_is_help=True,
)


@plugin_app.command("install")
def install(
    specs: List[str] = typer.Argument(..., help="Plugins as <name>@<marketplace>"),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Replace a plugin of the same name installed from another source",
    ),
) -> None:
    """Install one or more plugins.

    Bundles are fetched in parallel and installed one at a time; a failure
    does not stop the other plugins.

    Examples:
        skillmarket plugin install ui-polish@acme
        skillmarket plugin install ui-polish@acme strapi-plugin-dev@acme
        skillmarket plugin install ui-polish@other --force
    """
    with exit_on_error():
        results = get_manager().install(specs, force=force)

    failed = 0
    for result in results:
        if result.ok:
            record = result.record
            print_success(f"Installed {record.plugin_name} {record.installed_version}")
        else:
            failed += 1
            print_failure(result.error)

    if failed:
        raise typer.Exit(1)


@plugin_app.command("update")
def update(
    name: Optional[str] = typer.Argument(None, help="Plugin name (default: all installed)"),
) -> None:
    """Re-fetch plugins and replace the installed copies.

    Examples:
        skillmarket plugin update ui-polish
        skillmarket plugin update
    """
    with exit_on_error():
        manager = get_manager()
        if name is not None:
            record = manager.update(name)
            print_success(f"{record.plugin_name} is at {record.installed_version}")
            return
        results = manager.update_all()

    if not results:
        print_info("No plugins installed.")
        return

    failed = 0
    for result in results:
        if result.ok:
            print_success(f"{result.record.plugin_name} is at {result.record.installed_version}")
        else:
            failed += 1
            print_failure(result.error)
    if failed:
        raise typer.Exit(1)


@plugin_app.command("remove")
def remove(
    name: str = typer.Argument(..., help="Plugin name"),
) -> None:
    """Uninstall a plugin."""
    with exit_on_error():
        record = get_manager().remove(name)
    print_success(f"Removed {record.plugin_name} {record.installed_version}")


@plugin_app.command("list")
def list_plugins() -> None:
    """List installed plugins."""
    with exit_on_error():
        records = get_manager().list_installed()

    if not records:
        print_info("No plugins installed.")
        return

    table = Table(title="Installed Plugins")
    table.add_column("Name", style="cyan")
    table.add_column("Version", style="green")
    table.add_column("Marketplace")
    table.add_column("Installed")

    for record in records:
        table.add_row(
            record.plugin_name,
            record.installed_version,
            record.marketplace or "-",
            format_time(record.installed_at),
        )

    console.print(table)
