"""Main CLI entry point using Typer."""

import logging
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from e2e_fixtures.config import Config
from e2e_fixtures.errors import ConfigurationError, PersistenceError
from e2e_fixtures.handler import ResourcesHandler
from e2e_fixtures.models.resources import FIELD_KEYS
from e2e_fixtures.models.teardown import TeardownStatus
from e2e_fixtures.storage import ResourcesStorage
from e2e_fixtures.utils.logging import setup_logging

logger = logging.getLogger(__name__)

# Create Typer app
app = typer.Typer(
    name="e2e-fixtures",
    help="E2E fixture manager - inspect and destroy recorded test fixtures",
    add_completion=False,
)

# Create Rich console for output
console = Console()

# Global config
config: Optional[Config] = None


@app.callback()
def main(
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="Config file (default: ~/.e2e-fixtures/config.yaml or $E2E_FIXTURES_CONFIG)"
    ),
    output_dir: Optional[str] = typer.Option(
        None, "--output-dir", "-o", help="Directory holding the resource record (default: $SHARED_DIR)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress output except errors"),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
):
    """E2E fixture manager."""
    global config

    try:
        config = Config.load(config_file)
    except ConfigurationError as e:
        console.print(f"✗ {e}", style="bold red")
        raise typer.Exit(code=2)

    if output_dir:
        config.output_dir = output_dir

    log_level = "ERROR" if quiet else ("DEBUG" if verbose else config.log_level)
    setup_logging(level=log_level, verbose=verbose)

    if no_color:
        console.no_color = True


@app.command()
def version():
    """Show version information."""
    import boto3

    from e2e_fixtures import __version__

    console.print(f"e2e-fixtures version {__version__}")
    console.print(f"Python {sys.version.split()[0]}")
    console.print(f"boto3 {boto3.__version__}")


@app.command()
def show():
    """Display the fixtures recorded in the resource record."""
    storage = ResourcesStorage.from_config(config)
    if not storage.exists():
        console.print(f"No resource record at {storage.user_data_file}", style="yellow")
        return

    try:
        resources = storage.load()
    except PersistenceError as e:
        console.print(f"✗ Error loading resource record: {e}", style="bold red")
        raise typer.Exit(code=1)

    console.print(f"\n[bold]Resource record: {storage.user_data_file}[/bold]")
    console.print(f"Region: {resources.region or '-'}")

    if resources.is_empty():
        console.print("No fixtures recorded\n")
        return

    table = Table(show_header=True)
    table.add_column("Fixture", style="cyan")
    table.add_column("Identifier", style="green")
    table.add_column("Account")
    for name in resources.present_fixtures():
        account = "primary"
        if name == "vpc_id" and resources.vpc_in_shared_account():
            account = "shared"
        elif name == "additional_principals" and resources.additional_principals_in_shared_account():
            account = "shared"
        table.add_row(FIELD_KEYS[name], getattr(resources, name), account)
    console.print(table)


@app.command()
def destroy(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
):
    """Destroy every fixture in the resource record.

    Failed fixtures stay recorded; run the command again to retry them.
    """
    storage = ResourcesStorage.from_config(config)
    if not storage.exists():
        console.print(f"No resource record at {storage.user_data_file}, nothing to destroy", style="yellow")
        return

    try:
        handler = ResourcesHandler.from_filesystem(config=config)
    except PersistenceError as e:
        console.print(f"✗ Error loading resource record: {e}", style="bold red")
        raise typer.Exit(code=1)

    resources = handler.resources
    if resources.is_empty():
        console.print("No fixtures recorded, nothing to destroy", style="green")
        return

    console.print(f"\n[bold]Fixtures to destroy ({resources.region}):[/bold]")
    for name in resources.present_fixtures():
        console.print(f"  {FIELD_KEYS[name]}: {getattr(resources, name)}")

    if not yes and not typer.confirm("\nDestroy these fixtures?", default=False):
        console.print("Cancelled")
        raise typer.Exit(code=0)

    errors = handler.destroy_resources()
    destroy_pass = handler.last_destroy_pass

    if destroy_pass is not None and destroy_pass.records:
        table = Table(show_header=True, title="Destroy pass")
        table.add_column("Step", style="cyan")
        table.add_column("Identifiers")
        table.add_column("Account")
        table.add_column("Status")
        for record in destroy_pass.records:
            status = "[green]✓ deleted[/green]"
            if record.status == TeardownStatus.FAILED:
                status = "[red]✗ failed[/red]"
            table.add_row(record.step, ", ".join(record.identifiers), record.account, status)
        console.print(table)

    if errors:
        console.print(f"\n✗ {len(errors)} fixture(s) could not be destroyed:", style="bold red")
        for error in errors:
            console.print(f"  • {error}")
        raise typer.Exit(code=1)

    console.print("\n✓ All fixtures destroyed", style="bold green")


def cli_main():
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    cli_main()
