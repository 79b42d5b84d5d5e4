"""
TopFrag CLI - Command Line Interface for the TopFrag API

Provides commands for:
- Running the API server
- Decoding share codes
- Creating the database tables
- Recalculating clan leaderboards and clan match links
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from topfrag import __version__
from topfrag.core.config import configure_logging, get_config, load_config, set_config
from topfrag.infra.database import get_db
from topfrag.sharecode import decode_sharecode

app = typer.Typer(
    name="topfrag",
    help="Counter-Strike demo statistics API",
    add_completion=False,
)
console = Console()

logger = logging.getLogger(__name__)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]TopFrag[/bold blue] v{__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a topfrag.toml or topfrag.json file",
        exists=True,
        dir_okay=False,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Enable verbose output"),
) -> None:
    """TopFrag - Counter-Strike demo statistics API"""
    if config_file is not None:
        set_config(load_config(config_file))
    configure_logging()
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    console.print(f"[bold blue]TopFrag[/bold blue] API on http://{host}:{port}")
    uvicorn.run("topfrag.api:app", host=host, port=port, reload=reload)


@app.command()
def decode(
    share_code: str = typer.Argument(..., help="CS2 share code (e.g., CSGO-xxxxx-xxxxx-xxxxx-xxxxx-xxxxx)"),
) -> None:
    """Decode a CS2 share code to extract match metadata."""
    try:
        info = decode_sharecode(share_code)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    panel = Panel(
        f"[cyan]Match ID:[/cyan] {info.match_id}\n"
        f"[cyan]Outcome ID:[/cyan] {info.outcome_id}\n"
        f"[cyan]Token:[/cyan] {info.token}",
        title="[bold blue]Share Code Decoded[/bold blue]",
        expand=False,
    )
    console.print(panel)


@app.command("init-db")
def init_db() -> None:
    """Create the database tables if they don't exist."""
    db = get_db()
    db.check_connection()
    console.print(f"[green]Database ready:[/green] {db.db_url}")


@app.command("recalculate-leaderboards")
def recalculate_leaderboards() -> None:
    """Recalculate the weekly and monthly leaderboards of every clan."""
    from topfrag.infra.cache import get_cache_manager
    from topfrag.services.clan_leaderboards import ClanLeaderboardService

    session = get_db().get_session()
    try:
        count = ClanLeaderboardService(session, get_cache_manager()).calculate_for_all_clans()
    finally:
        session.close()
    console.print(f"[green]Recalculated leaderboards for {count} clan(s)[/green]")


@app.command("process-clan-match")
def process_clan_match(
    match_id: int = typer.Argument(..., help="Id of the parsed match"),
    notify: bool = typer.Option(False, "--notify", help="Post Discord match reports to linked clans"),
) -> None:
    """Offer a parsed match to every clan whose members played it together."""
    from topfrag.services.clans import ClanService
    from topfrag.services.discord import DiscordService

    session = get_db().get_session()
    try:
        callback = DiscordService(session).send_match_report if notify else None
        added_to = ClanService(session).process_match(match_id, notify=callback)
    finally:
        session.close()

    if not added_to:
        console.print(f"[yellow]Match {match_id} was not added to any clan[/yellow]")
        return
    console.print(f"[green]Match {match_id} added to clan(s):[/green] {', '.join(map(str, added_to))}")


@app.command("show-config")
def show_config() -> None:
    """Print the effective configuration with secrets masked."""
    config = get_config()
    table = Table(title="TopFrag Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    for section_name in ("database", "cache", "auth", "parser_service", "steam", "faceit", "discord", "upload"):
        section = getattr(config, section_name)
        for key, value in vars(section).items():
            if value and any(secret in key for secret in ("secret", "key", "token")):
                value = "********"
            table.add_row(f"{section_name}.{key}", str(value))

    console.print(table)


if __name__ == "__main__":
    app()
