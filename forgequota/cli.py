"""Command-line interface for the ForgeQuota server."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from forgequota import __version__
from forgequota.server.config import (
    HOT_RELOADABLE_FIELDS,
    ServerSettings,
    discover_config_path,
    load_server_settings,
)

app = typer.Typer(
    name="forgequota",
    help="ForgeQuota - per-principal storage quotas for a code forge",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()


def print_error(message: str) -> None:
    """Print error message."""
    console.print(f"[bold red]✗[/bold red] {message}")


def _mask(tokens: list[str]) -> str:
    if not tokens:
        return "[dim]none[/dim]"
    return ", ".join(f"{t[:4]}…" if len(t) > 4 else "****" for t in tokens)


def _database_label(settings: ServerSettings) -> str:
    if settings.db_backend == "sqlite":
        return f"sqlite ({settings.db_path})"
    return f"{settings.db_backend} ({settings.db_host}:{settings.db_port}/{settings.db_name})"


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Bind host (default: from config or 0.0.0.0)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port (default: from config or 3380)"),
    workers: Optional[int] = typer.Option(
        None, "--workers", "-w", help="Number of workers (default: from config or 1)"
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Config file path (auto-discovered if not set)",
    ),
) -> None:
    """Start the ForgeQuota server.

    If --config is not provided, the config file is auto-discovered from:
      1. $FORGEQUOTA_CONFIG env var
      2. ./config.yaml
      3. ./config/config.yaml
      4. ~/.forgequota/server.yaml

    All options default to the value in the config file. CLI flags override config.
    """
    from forgequota.server.main import run_server

    resolved_config = config or discover_config_path()
    settings = load_server_settings(resolved_config)

    info_lines = (
        f"[bold]Host:[/bold] {host or settings.host}:{port or settings.port}\n"
        f"[bold]Database:[/bold] {_database_label(settings)}\n"
        f"[bold]Quota:[/bold] {'enabled' if settings.quota_enabled else 'disabled'}\n"
        f"[bold]Workers:[/bold] {workers or settings.workers}\n"
    )
    if resolved_config:
        info_lines += f"[bold]Config:[/bold] {resolved_config.resolve()}"
    else:
        info_lines += "[bold]Config:[/bold] [dim]none (defaults + env vars)[/dim]"

    console.print()
    console.print(Panel(info_lines, title=f"[bold cyan]ForgeQuota {__version__}[/bold cyan]", border_style="cyan"))

    try:
        run_server(host=host, port=port, workers=workers, config_path=resolved_config)
    except Exception as e:
        print_error(f"Server error: {e}")
        raise typer.Exit(1)


@app.command("config")
def show_config(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Config file path (auto-discovered if not set)",
    ),
) -> None:
    """Show the effective server configuration (tokens masked)."""

    resolved_config = config or discover_config_path()
    if config is not None and not config.exists():
        print_error(f"Config file not found: {config}")
        raise typer.Exit(1)
    settings = load_server_settings(resolved_config)

    table = Table(
        title="[bold cyan]ForgeQuota configuration[/bold cyan]",
        show_header=True,
        header_style="bold magenta",
        border_style="cyan",
    )
    table.add_column("Setting", style="white")
    table.add_column("Value", style="green")
    table.add_column("Hot reload", justify="center")

    rows = [
        ("host", f"{settings.host}:{settings.port}"),
        ("workers", str(settings.workers)),
        ("log_level", settings.log_level),
        ("database", _database_label(settings)),
        ("auth_enabled", str(settings.auth_enabled)),
        ("auth_tokens", _mask(settings.auth_tokens)),
        ("admin_tokens", _mask(settings.admin_tokens)),
        ("quota_enabled", str(settings.quota_enabled)),
        ("quota_default_groups", ", ".join(settings.quota_default_groups) or "[dim]none[/dim]"),
        ("config_watch", f"{settings.config_watch} ({settings.config_watch_interval}s)"),
    ]
    for name, value in rows:
        table.add_row(name, value, "✓" if name in HOT_RELOADABLE_FIELDS else "")

    console.print(table)
    if resolved_config:
        console.print(f"[dim]Config: {resolved_config.resolve()}[/dim]")
    else:
        console.print("[dim]Config: none (defaults + env vars)[/dim]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
