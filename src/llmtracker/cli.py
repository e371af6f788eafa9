"""
LLM Tracker CLI - command-line interface for the ingestion pipeline.

Runs the ingestion server and the native messaging host, and offers a few
read-only views over the captured data.
"""

from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from llmtracker.logging_config import setup_logging

app = typer.Typer(
    name="llmtracker",
    help="LLM Tracker - capture and analyze conversations with chat services",
    no_args_is_help=True,
)

console = Console()

DATABASE_OPTION = typer.Option(
    None, "--database", "-d", help="SQLite database file (defaults to the XDG data dir)"
)


def _init_logging(context: str) -> None:
    try:
        setup_logging(context=context)
    except PermissionError:
        # Log directory not writable; fall back to stderr
        import logging

        logging.basicConfig(level=logging.INFO)


def _open_store(database: Optional[str]):
    from llmtracker.db.connection import Database
    from llmtracker.services.store import CaptureStore

    db = Database(f"sqlite:///{database}" if database else None)
    db.init_db()
    return db, CaptureStore(db)


def _format_ms(value: Optional[int]) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind to"),
    port: Optional[int] = typer.Option(None, help="Port to bind to"),
    database: Optional[str] = DATABASE_OPTION,
) -> None:
    """
    Start the ingestion server.

    Accepts connections from the native messaging host and stores every
    capture event it receives.
    """
    from llmtracker.server.ingestion import IngestionServer

    _init_logging("server")
    db, store = _open_store(database)

    server = IngestionServer(store, host=host, port=port)
    try:
        server.start()
    except OSError as e:
        console.print(f"[bold red]Error:[/bold red] Cannot bind server: {e}")
        db.dispose()
        raise typer.Exit(1)

    bound_host, bound_port = server.address
    console.print("[bold green]LLM Tracker ingestion server running[/bold green]")
    console.print(f"  Address: {bound_host}:{bound_port}")
    console.print(f"  Database: {db.url}")
    console.print("\n  Press Ctrl+C to stop")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")
    finally:
        server.stop()
        db.dispose()


@app.command()
def host() -> None:
    """
    Run the native messaging host.

    Started by the browser; talks framed JSON on stdin/stdout and relays it
    to the ingestion server. Never prints to stdout itself.
    """
    from llmtracker.bridge.host import NativeHost

    _init_logging("host")
    NativeHost().run()


@app.command("init-db")
def init_db(database: Optional[str] = DATABASE_OPTION) -> None:
    """Create the database schema if it does not exist."""
    _init_logging("cli")
    db, _ = _open_store(database)
    ok = db.check_connection()
    db.dispose()

    if not ok:
        console.print("[bold red]Error:[/bold red] Database is not reachable")
        raise typer.Exit(1)
    console.print(f"[green]✓ Database ready:[/green] {db.url}")


@app.command()
def search(
    term: str = typer.Argument(..., help="Text to search for"),
    limit: int = typer.Option(20, help="Maximum number of conversations"),
    database: Optional[str] = DATABASE_OPTION,
) -> None:
    """Search conversations by message content or title."""
    _init_logging("cli")
    db, store = _open_store(database)
    try:
        conversations = store.search_conversations(term, limit=limit)
    finally:
        db.dispose()

    if not conversations:
        console.print(f"[yellow]No conversations match '{term}'[/yellow]")
        return

    table = Table(title=f"Conversations matching '{term}'")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Platform")
    table.add_column("Title")
    table.add_column("Messages", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Last activity")
    for conversation in conversations:
        table.add_row(
            conversation.id,
            conversation.platform,
            conversation.title or "-",
            str(conversation.message_count),
            str(conversation.total_tokens),
            _format_ms(conversation.last_activity),
        )
    console.print(table)


@app.command()
def stats(
    days: int = typer.Option(30, help="Reporting window in days"),
    database: Optional[str] = DATABASE_OPTION,
) -> None:
    """Show row counts, token usage and estimated costs."""
    from llmtracker.analytics.usage import UsageAnalyzer

    _init_logging("cli")
    db, store = _open_store(database)
    try:
        counts = store.get_stats()
        report = UsageAnalyzer(store).usage_report(days)
    finally:
        db.dispose()

    console.print("[bold]Database:[/bold]")
    console.print(f"  Conversations: {counts['conversations']}")
    console.print(f"  Messages: {counts['messages']}")
    console.print(f"  API captures: {counts['api_captures']}")
    console.print(f"  System prompts: {counts['system_prompts']}")
    console.print(f"  Streaming chunks: {counts['streaming_chunks']}")
    console.print(f"  Total tokens: {counts['total_tokens']}")
    console.print()

    summary = report["summary"]
    console.print(f"[bold]Last {days} days:[/bold]")
    console.print(f"  Messages: {summary['total_messages']}")
    console.print(f"  Tokens: {summary['total_tokens']}")
    console.print(f"  Estimated cost: ${summary['total_cost']:.4f}")

    if report["by_platform"]:
        table = Table(title="By platform")
        table.add_column("Platform")
        table.add_column("Prompt tokens", justify="right")
        table.add_column("Completion tokens", justify="right")
        table.add_column("Est. cost", justify="right")
        for row in report["by_platform"]:
            table.add_row(
                row["platform"],
                str(row["prompt_tokens"]),
                str(row["completion_tokens"]),
                f"${row['estimated_cost']:.4f}",
            )
        console.print(table)


@app.command()
def prompts(
    platform: Optional[str] = typer.Option(None, help="Only show this platform"),
    database: Optional[str] = DATABASE_OPTION,
) -> None:
    """List captured system prompts, most frequent first."""
    _init_logging("cli")
    db, store = _open_store(database)
    try:
        system_prompts = store.get_system_prompts(platform)
    finally:
        db.dispose()

    if not system_prompts:
        console.print("[yellow]No system prompts captured[/yellow]")
        return

    for prompt in system_prompts:
        preview = prompt.prompt_text.replace("\n", " ")[:80]
        console.print(
            f"[cyan]{prompt.platform}[/cyan] x{prompt.occurrence_count} "
            f"(last seen {_format_ms(prompt.last_seen)}): {preview}"
        )


@app.command()
def purge(
    database: Optional[str] = DATABASE_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete conversations older than the retention period."""
    from llmtracker.config import settings

    _init_logging("cli")
    if settings.retention_days <= 0:
        console.print("[yellow]Retention is disabled (retention_days = 0)[/yellow]")
        return

    if not yes:
        typer.confirm(
            f"Delete conversations idle for more than {settings.retention_days} days?",
            abort=True,
        )

    db, store = _open_store(database)
    try:
        deleted = store.purge_expired()
    finally:
        db.dispose()
    console.print(f"[green]✓ Purged {deleted} conversation(s)[/green]")


if __name__ == "__main__":
    app()
