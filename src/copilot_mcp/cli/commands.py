"""Server management commands."""

import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from copilot_mcp.config import MCPConfig, PIDFileManager
from copilot_mcp.server import MCPServer

app = typer.Typer(help="MCP server for the GitHub Copilot CLI")
console = Console()
# stdout belongs to the stdio transport while the server runs
err_console = Console(stderr=True)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _setup_signal_handlers(pid_manager: PIDFileManager):
    """Remove the PID file and exit cleanly on SIGTERM and SIGINT."""
    def signal_handler(signum, frame):
        err_console.print("\n[yellow]Shutting down MCP server...[/yellow]")
        pid_manager.remove()
        err_console.print("[green]Server stopped successfully[/green]")
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


@app.command()
def start(
    host: Optional[str] = typer.Option(None, help="Server host (SSE only, overrides config)"),
    port: Optional[int] = typer.Option(None, help="Server port (SSE only, overrides config)"),
    transport: Optional[str] = typer.Option(None, help="Transport: stdio or sse (overrides config)"),
    cli_command: Optional[str] = typer.Option(None, "--cli", help="Copilot CLI executable (overrides config)"),
    log_level: Optional[str] = typer.Option(None, help="Log level (overrides config)"),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to config.yaml"),
):
    """
    Start the MCP server.

    Configuration is loaded from ~/.config/copilot-mcp/config.yaml (or
    $COPILOT_MCP_CONFIG). Command-line options override config values.

    Examples:
        # Start with stdio transport (uses config or defaults)
        copilot-mcp start

        # Start with SSE transport
        copilot-mcp start --transport sse --host 0.0.0.0 --port 8000
    """
    pid_manager = None
    try:
        settings = MCPConfig.load(config)

        if host is not None:
            settings.host = host
        if port is not None:
            settings.port = port
        if transport is not None:
            settings.transport = transport
        if cli_command is not None:
            settings.cli_command = cli_command
        if log_level is not None:
            settings.log_level = log_level
        settings.validate()

        _configure_logging(settings.log_level)

        pid_manager = PIDFileManager(settings.pid_file)
        try:
            pid_manager.write()
        except RuntimeError as e:
            err_console.print(f"[red]{e}[/red]")
            pid_manager = None
            raise typer.Exit(1)

        _setup_signal_handlers(pid_manager)

        server = MCPServer.from_config(settings)

        err_console.print("[green]Starting MCP server...[/green]")
        err_console.print(f"Transport: {settings.transport}")
        if settings.transport == "sse":
            err_console.print(f"Listening on {settings.host}:{settings.port}")
        err_console.print(f"Copilot CLI: {settings.cli_command}")
        err_console.print(f"PID file: {pid_manager.pid_file}")

        server.start()
    except typer.Exit:
        raise
    except ValueError as e:
        err_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)
    except RuntimeError as e:
        err_console.print(f"[red]Error starting server:[/red] {e}")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Server stopped by user[/yellow]")
        raise typer.Exit(0)
    finally:
        if pid_manager:
            pid_manager.remove()


@app.command()
def status(
    config: Optional[Path] = typer.Option(None, "--config", help="Path to config.yaml"),
):
    """
    Check if the MCP server is running.

    Displays server status, PID, and configuration information.
    """
    try:
        settings = MCPConfig.load(config)
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    status_info = PIDFileManager(settings.pid_file).get_status()

    table = Table(title="MCP Server Status", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value")

    if status_info["running"]:
        table.add_row("Status", "[green]Running[/green]")
        table.add_row("PID", str(status_info["pid"]))
    else:
        table.add_row("Status", "[red]Not running[/red]")

    table.add_row("PID File", status_info["pid_file"])
    table.add_row("Transport", settings.transport)
    if settings.transport == "sse":
        table.add_row("Host", settings.host)
        table.add_row("Port", str(settings.port))
    table.add_row("Copilot CLI", settings.cli_command)
    table.add_row("Timeout", f"{settings.timeout_ms}ms")
    retry = settings.retry_policy()
    table.add_row(
        "Retry",
        f"{retry.attempts} attempts on {', '.join(sorted(retry.retry_on))}" if retry else "Disabled",
    )

    console.print(table)

    if not status_info["running"]:
        raise typer.Exit(1)


@app.command()
def stop(
    timeout: int = typer.Option(10, help="Seconds to wait for graceful shutdown"),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to config.yaml"),
):
    """
    Stop the MCP server gracefully.

    Sends SIGTERM to the server process and waits for it to exit cleanly.
    """
    try:
        settings = MCPConfig.load(config)
        pid_manager = PIDFileManager(settings.pid_file)

        console.print("[yellow]Stopping MCP server...[/yellow]")

        if pid_manager.stop_server(timeout=timeout):
            console.print("[green]Server stopped successfully[/green]")
        else:
            console.print(
                f"[red]Server did not stop within {timeout} seconds.[/red]\n"
                "[yellow]Consider increasing timeout or manually killing the process.[/yellow]"
            )
            raise typer.Exit(1)
    except RuntimeError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)
