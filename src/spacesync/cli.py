"""
SpaceSync CLI - inspect and maintain conversation storage from the terminal.

Local sessions, the one-time migration to the conversation service,
credentials, and data transfer between machines.
"""

import asyncio
import json
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from spacesync.logging_config import setup_logging

app = typer.Typer(
    name="spacesync",
    help="SpaceSync - local and remote conversation storage",
    no_args_is_help=True,
)

console = Console()


def _init_logging(context: str = "cli") -> None:
    # Fall back to basic console logging if the log directory is not writable
    try:
        setup_logging(context=context)
    except PermissionError:
        import logging

        logging.basicConfig(level=logging.INFO)


def _auth():
    from spacesync.auth import AuthState, CredentialStore
    from spacesync.config import settings

    return AuthState(
        settings.api_base_url,
        CredentialStore(settings.credentials_directory),
        profile=settings.credentials_profile,
    )


def _store():
    from spacesync.store import create_store

    return create_store(_auth())


def _orchestrator(store):
    from spacesync.config import settings
    from spacesync.migration import MigrationOrchestrator

    return MigrationOrchestrator(
        store.local_repository,
        store.remote_repository,
        pause_seconds=settings.migration_pause_seconds,
    )


@app.command()
def sessions() -> None:
    """List sessions, most recent first."""
    from spacesync.exceptions import SpaceSyncError

    _init_logging()
    store = _store()

    async def _list():
        try:
            return await store.list_sessions()
        finally:
            await store.remote_repository.close()

    try:
        summaries = asyncio.run(_list())
    except SpaceSyncError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    if not summaries:
        console.print("[yellow]No sessions found[/yellow]")
        return

    for summary in summaries:
        when = summary.timestamp.strftime("%Y-%m-%d %H:%M") if summary.timestamp else "-"
        title = summary.title or f"Session {summary.id}"
        console.print(
            f"[cyan]{summary.id}[/cyan]  [dim]{summary.backend.value:<6}[/dim]  "
            f"{when}  {title} ({summary.message_count} messages)"
        )


@app.command()
def show(session_id: str = typer.Argument(..., help="Local id or remote UUID")) -> None:
    """Print a session's messages."""
    from spacesync.exceptions import (
        AuthenticationRequiredError,
        SessionNotFoundError,
        SpaceSyncError,
    )

    _init_logging()
    store = _store()

    async def _load():
        try:
            return await store.load_session(session_id)
        finally:
            await store.remote_repository.close()

    try:
        conversation = asyncio.run(_load())
    except SessionNotFoundError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(1)
    except AuthenticationRequiredError:
        console.print("[bold red]Not signed in.[/bold red] Run: spacesync login --token ...")
        raise typer.Exit(1)
    except SpaceSyncError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    console.print(
        f"[bold blue]{conversation.title or 'Session ' + conversation.id}[/bold blue] "
        f"[dim]({conversation.backend.value})[/dim]"
    )
    for message in conversation.messages:
        if message.is_placeholder:
            continue
        console.print(f"[bold]{message.type}:[/bold] {message.content}")


@app.command()
def delete(session_id: str = typer.Argument(..., help="Local id or remote UUID")) -> None:
    """Delete one session."""
    _init_logging()
    store = _store()

    async def _delete():
        try:
            return await store.delete_sessions([session_id])
        finally:
            await store.remote_repository.close()

    report = asyncio.run(_delete())
    if report.deleted:
        console.print(f"[green]✓ Deleted session {session_id}[/green]")
    elif report.missing:
        console.print(f"[yellow]Session {session_id} not found[/yellow]")
        raise typer.Exit(1)
    else:
        error = report.failed.get(session_id, "unknown error")
        console.print(f"[red]✗ Failed to delete {session_id}:[/red] {error}")
        raise typer.Exit(1)


@app.command()
def reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete every local session. Cannot be undone."""
    _init_logging()
    store = _store()

    if not yes and not typer.confirm("Delete ALL local sessions?"):
        console.print("Aborted")
        raise typer.Exit(0)

    removed = store.reset_local_sessions()
    console.print(f"[green]✓ Deleted {removed} local session(s)[/green]")


@app.command()
def migrate(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Move local sessions to your account (runs once)."""
    from spacesync.exceptions import SpaceSyncError
    from spacesync.migration import MigrationStep

    _init_logging()
    store = _store()
    orchestrator = _orchestrator(store)

    if orchestrator.discover() == MigrationStep.NO_CONVERSATIONS:
        record = orchestrator.status()
        if record.summary is not None:
            console.print("[cyan]Migration already done.[/cyan] Previous migration:")
            console.print(f"  Migrated: {record.summary.successful}")
            if record.summary.failed:
                console.print(f"  Failed: {record.summary.failed}")
        elif record.is_terminal:
            console.print(f"[cyan]Migration {record.status.value}.[/cyan]")
        else:
            console.print("[yellow]No local sessions to migrate[/yellow]")
        return

    count = orchestrator.confirm()
    console.print(f"Found {count} local session(s) to migrate")
    if not yes and not typer.confirm("Migrate them to your account now?"):
        console.print("Aborted; local sessions are unchanged")
        raise typer.Exit(0)

    def on_progress(progress) -> None:
        console.print(
            f"[blue]Migrating[/blue] {progress.current}/{progress.total} "
            f"(session {progress.session_id})"
        )

    async def _run():
        try:
            return await orchestrator.run(on_progress=on_progress)
        finally:
            await store.remote_repository.close()

    try:
        report = asyncio.run(_run())
    except SpaceSyncError as e:
        console.print(f"[bold red]Migration failed:[/bold red] {e}")
        console.print("Local sessions are unchanged; run again to retry")
        raise typer.Exit(1)

    console.print()
    console.print("[bold]Summary:[/bold]")
    console.print(f"  Total: {report.total}")
    console.print(f"  Successful: {report.successful}")
    console.print(f"  Failed: {report.failed}")
    for result in report.results:
        if not result.success:
            console.print(f"  [red]✗ Session {result.original_id}:[/red] {result.error}")

    if report.failed:
        raise typer.Exit(1)


@app.command("skip-migration")
def skip_migration() -> None:
    """Never offer migration again (until the record is reset)."""
    _init_logging()
    _orchestrator(_store()).skip()
    console.print("[green]✓ Migration skipped[/green]")


@app.command("migration-status")
def migration_status(
    reset_record: bool = typer.Option(
        False, "--reset", help="Forget that migration ran (allows running it again)"
    ),
) -> None:
    """Show whether migration has run."""
    _init_logging()
    orchestrator = _orchestrator(_store())

    if reset_record:
        orchestrator.reset_record()
        console.print("[yellow]Migration record reset[/yellow]")
        return

    record = orchestrator.status()
    console.print(f"Status: {record.status.value}")
    if record.completed_at:
        console.print(f"Date: {record.completed_at.isoformat()}")
    if record.summary:
        console.print(
            f"Summary: {record.summary.successful}/{record.summary.total} migrated, "
            f"{record.summary.failed} failed"
        )
    console.print(f"Needs migration: {orchestrator.needs_migration()}")


@app.command("export")
def export_cmd(
    path: Optional[Path] = typer.Argument(None, help="Output file (stdout if omitted)"),
) -> None:
    """Export all stored data as JSON."""
    from spacesync.transfer import export_data

    _init_logging()
    store = _store()
    exported = export_data(store.kvstore, store.keys)
    payload = json.dumps(exported, indent=2)

    if path is None:
        typer.echo(payload)
        return
    path.write_text(payload, encoding="utf-8")
    console.print(f"[green]✓ Exported {len(exported)} key(s) to {path}[/green]")


@app.command("import")
def import_cmd(path: Path = typer.Argument(..., help="File produced by export")) -> None:
    """Import data exported on another machine, overwriting existing keys."""
    from spacesync.exceptions import SpaceSyncError
    from spacesync.transfer import import_data

    _init_logging()
    if not path.exists():
        console.print(f"[bold red]Error:[/bold red] Path not found: {path}")
        raise typer.Exit(1)

    store = _store()
    try:
        result = import_data(store.kvstore, path.read_text(encoding="utf-8"), store.keys)
    except SpaceSyncError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]✓ Imported {result.imported} key(s)[/green], skipped {result.skipped}")
    for key, error in result.errors.items():
        console.print(f"  [red]✗ {key}:[/red] {error}")
    if result.errors:
        raise typer.Exit(1)


@app.command()
def login(
    token: str = typer.Option(..., "--token", help="Bearer token for the conversation service"),
    email: Optional[str] = typer.Option(None, help="Account email (informational)"),
) -> None:
    """Store a bearer token; new sessions will be saved to your account."""
    _init_logging()
    auth = _auth()
    auth.sign_in(token, user_email=email)
    console.print(f"[green]✓ Signed in to {auth.server_url}[/green]")


@app.command()
def logout() -> None:
    """Forget the stored bearer token."""
    _init_logging()
    auth = _auth()
    auth.sign_out()
    console.print("[green]✓ Signed out[/green]")


@app.command()
def watch(
    session: Optional[int] = typer.Option(
        None, "--session", help="Also follow the messages of this local session"
    ),
) -> None:
    """Print changes other processes make to the shared store."""
    from spacesync.config import settings
    from spacesync.open_session import OpenSessionMirror
    from spacesync.sync import CrossContextSyncListener

    _init_logging(context="watch")
    store = _store()
    keys = store.keys
    listener = CrossContextSyncListener(
        store.kvstore,
        use_polling=settings.sync_use_polling,
        poll_interval=settings.sync_poll_interval,
    )

    watched = [
        keys.advisors,
        keys.advisor_groups,
        *keys.scalar_settings().values(),
        keys.migration_status,
        keys.current_session,
        keys.current_conversation,
    ]
    for key in watched:
        listener.subscribe(
            key,
            lambda value, key=key: console.print(f"[cyan]{key}[/cyan] → {value}"),
            parser=None,
        )

    def show_session(value):
        state = f"{len(value.messages)} messages" if value else "removed"
        console.print(f"[cyan]session {session}[/cyan] → {state}")

    mirror = OpenSessionMirror(store.local_repository, listener, on_change=show_session)
    if session is not None:
        mirror.open(session)

    console.print(f"[bold blue]Watching[/bold blue] {store.kvstore.directory}")
    listener.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        mirror.close()
        listener.stop()
        console.print("Stopped")


if __name__ == "__main__":
    app()
