"""chatrelay CLI: Typer + Rich terminal interface.

Commands: serve, seed, characters, start, history, chat.
The client commands talk to a running server over HTTP.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from pathlib import Path

import httpx
import typer
from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from chatrelay import __version__
from chatrelay.client import DEFAULT_URL, ChatClient
from chatrelay.errors import ChatClientError
from chatrelay.providers.registry import load_config
from chatrelay.schemas.chat import Character, Message, Role
from chatrelay.schemas.config import RelayConfig
from chatrelay.schemas.streaming import SessionState, StreamOutcome
from chatrelay.streaming.cancellation import CancellationController

console = Console()

app = typer.Typer(
    name="chatrelay",
    help="Persona chat with live token streaming.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"chatrelay {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """chatrelay: persona chat with live token streaming."""


# ── Helpers ──────────────────────────────────────────────────────

def _load_config(config_path: str, db: str = "", host: str = "", port: int = 0) -> RelayConfig:
    """Load config and apply command-line overrides, exit on error."""
    try:
        config = load_config(Path(config_path) if config_path else None)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from None

    overrides: dict[str, object] = {}
    if db:
        overrides["db_path"] = db
    if host:
        overrides["host"] = host
    if port:
        overrides["port"] = port
    if overrides:
        config = config.model_copy(
            update={"server": config.server.model_copy(update=overrides)},
        )
    return config


def _run_client(coro):
    """Run a client coroutine, exit with the server's message on rejection."""
    try:
        return asyncio.run(coro)
    except ChatClientError as e:
        console.print(f"[red]Error:[/red] {e.message} [dim](HTTP {e.status_code})[/dim]")
        raise typer.Exit(1) from None
    except httpx.TransportError as e:
        console.print(f"[red]Cannot reach server:[/red] {e}")
        raise typer.Exit(1) from None


def _characters_table(characters: list[Character]) -> Table:
    table = Table(
        title="Characters",
        show_header=True,
        header_style="bold bright_blue",
        border_style="dim",
        padding=(0, 1),
    )
    table.add_column("ID", justify="right", style="bold")
    table.add_column("Name")
    table.add_column("Persona", style="dim", overflow="fold")
    for character in characters:
        table.add_row(str(character.id), character.name, character.persona)
    return table


def _print_message(message: Message, name: str = "Assistant") -> None:
    if message.role is Role.USER:
        console.print(f"[bold green]You:[/bold green] {escape(message.content)}")
    else:
        console.print(Panel(
            Text(message.content) if message.content else "[dim](empty reply)[/dim]",
            title=f"[bold blue]{name}[/bold blue]",
            title_align="left",
            border_style="blue",
        ))


# ── Server commands ──────────────────────────────────────────────


@app.command()
def serve(
    host: str = typer.Option("", "--host", help="Bind address (default from config)"),
    port: int = typer.Option(0, "--port", "-p", help="Port (default from config)"),
    config_path: str = typer.Option("", "--config", "-c", help="Path to a TOML config file"),
    db: str = typer.Option("", "--db", help="SQLite database path"),
    log_level: str = typer.Option("info", "--log-level", help="uvicorn log level"),
) -> None:
    """Run the chat API server."""
    import uvicorn

    from chatrelay.server.app import create_app

    config = _load_config(config_path, db=db, host=host, port=port)
    console.print(Panel(
        f"[bold]URL:[/bold] http://{config.server.host}:{config.server.port}\n"
        f"[bold]Model:[/bold] {config.model.display_name or config.model.model}\n"
        f"[bold]Database:[/bold] {config.server.db_path}",
        title="[bold blue]chatrelay[/bold blue]",
        border_style="blue",
    ))
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level=log_level,
    )


@app.command()
def seed(
    config_path: str = typer.Option("", "--config", "-c", help="Path to a TOML config file"),
    db: str = typer.Option("", "--db", help="SQLite database path"),
) -> None:
    """Insert the default characters into an empty database."""
    from chatrelay.persistence.database import close_db, init_db
    from chatrelay.persistence.repository import SQLiteTranscriptRepository
    from chatrelay.persistence.seed import seed_repository

    config = _load_config(config_path, db=db)

    async def _seed() -> tuple[list[Character], list[Character]]:
        conn = await init_db(config.server.db_path)
        try:
            repository = SQLiteTranscriptRepository(conn)
            created = await seed_repository(repository)
            return created, await repository.list_characters()
        finally:
            await close_db(conn)

    created, characters = asyncio.run(_seed())
    if created:
        console.print(f"[green]Seeded {len(created)} characters.[/green]")
    else:
        console.print("[dim]Database already has characters; nothing seeded.[/dim]")
    console.print(_characters_table(characters))


# ── Client commands ──────────────────────────────────────────────


@app.command()
def characters(
    url: str = typer.Option(DEFAULT_URL, "--url", "-u", help="Server base URL"),
) -> None:
    """List the available characters."""

    async def _list() -> list[Character]:
        async with ChatClient(url) as client:
            return await client.list_characters()

    console.print(_characters_table(_run_client(_list())))


@app.command()
def start(
    character_id: int = typer.Argument(..., help="Character to talk to"),
    url: str = typer.Option(DEFAULT_URL, "--url", "-u", help="Server base URL"),
) -> None:
    """Start a new conversation with a character."""

    async def _start():
        async with ChatClient(url) as client:
            conversation = await client.create_conversation(character_id)
            return conversation, await client.list_messages(conversation.id)

    conversation, messages = _run_client(_start())
    console.print(f"[green]Conversation {conversation.id} started.[/green]")
    for message in messages:
        _print_message(message)
    console.print(f"[dim]Continue with: chatrelay chat {conversation.id}[/dim]")


@app.command()
def history(
    conversation_id: int = typer.Argument(..., help="Conversation ID"),
    url: str = typer.Option(DEFAULT_URL, "--url", "-u", help="Server base URL"),
) -> None:
    """Print a conversation's transcript."""

    async def _history():
        async with ChatClient(url) as client:
            detail = await client.get_conversation(conversation_id)
            return detail, await client.list_messages(conversation_id)

    detail, messages = _run_client(_history())
    name = detail.character.name if detail.character else "Assistant"
    if not messages:
        console.print("[dim]No messages yet.[/dim]")
    for message in messages:
        _print_message(message, name)


async def _send_turn(
    url: str,
    conversation_id: int,
    content: str,
    name: str,
) -> StreamOutcome:
    """Stream one reply into a Live panel; Ctrl+C cancels the stream."""
    cancel = CancellationController()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, cancel.cancel, "interrupted")

    text = Text()
    title = f"[bold blue]{name}[/bold blue] [dim](streaming, Ctrl+C to stop)[/dim]"
    try:
        async with ChatClient(url) as client:
            with Live(
                Panel(text, title=title, title_align="left", border_style="dim"),
                console=console,
                refresh_per_second=12,
                transient=True,
            ) as live:

                def _show(delta: str) -> None:
                    text.append(delta)
                    live.update(Panel(text, title=title, title_align="left", border_style="dim"))

                return await client.send_message(
                    conversation_id, content, on_delta=_show, cancel=cancel,
                )
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)


@app.command()
def chat(
    conversation_id: int = typer.Argument(..., help="Conversation ID"),
    url: str = typer.Option(DEFAULT_URL, "--url", "-u", help="Server base URL"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Chat interactively; replies render live as they stream."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    async def _open():
        async with ChatClient(url) as client:
            detail = await client.get_conversation(conversation_id)
            return detail, await client.list_messages(conversation_id)

    detail, messages = _run_client(_open())
    name = detail.character.name if detail.character else "Assistant"
    for message in messages:
        _print_message(message, name)
    console.print("[dim]Type a message and press Enter. Ctrl+D or /quit to leave.[/dim]")

    while True:
        try:
            content = console.input("[bold green]You:[/bold green] ")
        except (EOFError, KeyboardInterrupt):
            console.print()
            break
        if content.strip() in ("/quit", "/exit"):
            break
        if not content.strip():
            continue

        outcome = _run_client(_send_turn(url, conversation_id, content, name))
        if outcome.state is SessionState.COMPLETED:
            transcript = outcome.transcript or []
            reply = transcript[-1] if transcript and transcript[-1].role is Role.ASSISTANT else None
            if reply is not None:
                _print_message(reply, name)
            else:
                _print_message(
                    Message(id=0, conversation_id=conversation_id,
                            role=Role.ASSISTANT, content=outcome.streamed_text),
                    name,
                )
        elif outcome.state is SessionState.FAILED:
            console.print(f"[red]Reply failed:[/red] {outcome.error}")
        else:
            console.print("[yellow]Reply stopped; nothing was saved.[/yellow]")
        if outcome.malformed_lines:
            console.print(f"[dim]{outcome.malformed_lines} malformed stream line(s) skipped[/dim]")


# ── Entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    app()
