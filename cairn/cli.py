"""
Cairn CLI - operator commands over persisted state.
"""

import asyncio
import logging

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .app import app as cairn_app
from .rotate_password import rotate_password
from .scope import Scope
from .settings import get_settings
from .state import State, is_reserved_key
from .types import Phase

# Setup
app = typer.Typer(
    name="cairn",
    help="Reconcile declared resources against persisted state",
    add_completion=False,
)
state_app = typer.Typer(help="Inspect persisted resource state")
app.add_typer(state_app, name="state")
console = Console()


def configure_logging():
    """Configure logging based on settings."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _create_command_panel(title: str, color: str, stage: str | None) -> Panel:
    """Create a Rich Panel for command display."""
    settings = get_settings()
    return Panel.fit(
        f"[bold {color}]{title}[/bold {color}]\n"
        f"Stage: {stage or settings.stage}\n"
        f"State store: {settings.state_store}",
        border_style=color,
    )


def _handle_command_error(e: Exception, command_type: str) -> None:
    """Print the error and exit with code 1."""
    console.print(f"\n[bold red]✗ {command_type.capitalize()} failed:[/bold red] {e}")
    raise typer.Exit(code=1)


@app.callback()
def main():
    """Reconcile declared resources against persisted state."""
    configure_logging()


@app.command("rotate-password")
def rotate_password_cmd(
    old: str = typer.Option(..., "--old", help="Current password"),
    new: str = typer.Option(..., "--new", help="New password"),
    fqn: str = typer.Option(
        None, "--fqn", help="Only rotate below this scope, e.g. dev/my-app/backend"
    ),
    name: str = typer.Option(None, "--app", help="Name of the root scope"),
    stage: str = typer.Option(None, "--stage", help="Stage (overrides CAIRN_STAGE)"),
):
    """Re-encrypt every stored secret with a new password."""
    console.print(_create_command_panel("Cairn Rotate Password", "magenta", stage))

    async def _rotate() -> int:
        async with cairn_app(name, stage=stage, password=old, phase=Phase.READ, quiet=True):
            return await rotate_password(old, new, fqn)

    try:
        rotated = asyncio.run(_rotate())
    except Exception as e:
        _handle_command_error(e, "rotation")

    console.print(f"\n[bold green]✓ Rotated secrets in {rotated} record(s)[/bold green]")


@state_app.command("list")
def state_list(
    stage: str = typer.Option(None, "--stage", help="Stage (overrides CAIRN_STAGE)"),
    scope_path: str = typer.Option(
        None, "--scope", help="Scope below the stage, e.g. my-app/backend"
    ),
):
    """List the resources recorded in one scope."""

    async def _list() -> tuple[Scope, dict[str, State]]:
        async with cairn_app(stage=stage, phase=Phase.READ, quiet=True) as root:
            scope = root
            for name in (scope_path or "").split("/"):
                if name:
                    scope = Scope(parent=scope, scope_name=name)
            if scope is root:
                return scope, await scope.state.all()
            await scope.init()
            try:
                return scope, await scope.state.all()
            finally:
                await scope.deinit()

    try:
        scope, states = asyncio.run(_list())
    except Exception as e:
        _handle_command_error(e, "state list")

    table = Table(title="/".join(scope.chain))
    table.add_column("ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Status", style="green")
    table.add_column("Seq", justify="right")
    for key, state in sorted(states.items(), key=lambda item: item[1].seq):
        if is_reserved_key(key):
            continue
        table.add_row(state.id, state.kind, state.status.value, str(state.seq))

    if table.row_count == 0:
        console.print(f"[dim]No resources in {'/'.join(scope.chain)}[/dim]")
    else:
        console.print(table)


@app.command()
def version():
    """Show Cairn version."""
    from . import __version__

    console.print(f"Cairn version: [bold]{__version__}[/bold]")


if __name__ == "__main__":
    app()
