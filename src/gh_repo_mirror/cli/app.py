import asyncio
from pathlib import Path

import typer
from rich import print
from rich.table import Table

from ..config import load_settings
from ..errors import MissingTokenError
from ..ingest.status import DownloadStatusTracker
from ..ingest.sync import backfill_repository, sync_repository
from ..logging_config import configure_logging
from ..resolve import resolve_ref_and_path
from ..storage.db import open_session
from ..storage.objects import delete_repo_data, get_repo, list_refs
from ..storage.schema import Ref
from .paths import default_db_path, split_full_name

app = typer.Typer(add_completion=False, pretty_exceptions_show_locals=False)


@app.callback()
def main(
    log_level: str | None = typer.Option(
        None, help="Log level (defaults to GH_MIRROR_LOG_LEVEL or INFO)"
    ),
):
    configure_logging(log_level)


def _db_path(repo: str, db: str | None, data_dir: str) -> Path:
    db_path = Path(db) if db else default_db_path(repo_full_name=repo, data_dir=data_dir)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


def _open(repo: str, db: str | None, data_dir: str):
    owner, name = split_full_name(repo)
    session = open_session(_db_path(repo, db, data_dir))
    row = get_repo(session, owner, name)
    if row is None:
        session.close()
        print(f"[red]Unknown repo[/red] {repo}")
        raise typer.Exit(code=1)
    return session, row


def _run(coro):
    try:
        return asyncio.run(coro)
    except MissingTokenError as exc:
        print(f"[red]Failed[/red] {exc}")
        raise typer.Exit(code=1) from exc


@app.command()
def sync(
    repo: str = typer.Option(..., help="Repository in owner/name format"),
    db: str | None = typer.Option(None, help="SQLite database path"),
    data_dir: str = typer.Option(
        "data",
        help="Base directory for per-repo SQLite databases",
    ),
):
    """Backfill a new repository or bring a mirrored one up to date."""
    owner, name = split_full_name(repo)
    db_path = _db_path(repo, db, data_dir)
    print(f"[bold]Syncing[/bold] {repo} -> {db_path}")
    result = _run(sync_repository(owner, name, db_path, settings=load_settings()))
    if result.cancelled:
        print("[yellow]Cancelled[/yellow]")
        raise typer.Exit(code=2)
    if not result.ok:
        print(f"[red]Failed[/red] {result.message}")
        raise typer.Exit(code=1)
    summary = result.value
    if summary is not None and summary.skipped:
        print(f"[yellow]Skipped[/yellow] a {summary.mode} run is in progress")
    else:
        print("[green]Done[/green]")


@app.command()
def backfill(
    repo: str = typer.Option(..., help="Repository in owner/name format"),
    db: str | None = typer.Option(None, help="SQLite database path"),
    data_dir: str = typer.Option(
        "data",
        help="Base directory for per-repo SQLite databases",
    ),
    steps: int | None = typer.Option(
        None, min=1, help="Stop after this many bounded steps (resume by rerunning)"
    ),
):
    """Run (or resume) a full backfill in bounded steps."""
    owner, name = split_full_name(repo)
    db_path = _db_path(repo, db, data_dir)
    print(f"[bold]Backfilling[/bold] {repo} -> {db_path}")
    result = _run(
        backfill_repository(owner, name, db_path, settings=load_settings(), max_steps=steps)
    )
    if result.cancelled:
        print("[yellow]Cancelled[/yellow]")
        raise typer.Exit(code=2)
    if not result.ok:
        print(f"[red]Failed[/red] {result.message}")
        raise typer.Exit(code=1)
    step = result.value
    if step is not None and not step.done:
        print(
            f"[yellow]Paused[/yellow] at stage {step.continuation.stage} "
            f"after {step.continuation.pages_processed} pages"
        )
    else:
        print("[green]Done[/green]")


@app.command()
def cancel(
    repo: str = typer.Option(..., help="Repository in owner/name format"),
    db: str | None = typer.Option(None, help="SQLite database path"),
    data_dir: str = typer.Option("data", help="Base directory for per-repo SQLite databases"),
):
    """Flag the repository's running download as cancelled."""
    session, row = _open(repo, db, data_dir)
    DownloadStatusTracker(session, row.id).cancel()
    session.close()
    print(f"[bold]Cancelled[/bold] {repo}")


@app.command()
def status(
    repo: str = typer.Option(..., help="Repository in owner/name format"),
    db: str | None = typer.Option(None, help="SQLite database path"),
    data_dir: str = typer.Option("data", help="Base directory for per-repo SQLite databases"),
):
    """Show download status and issue counters."""
    session, row = _open(repo, db, data_dir)
    tracker = DownloadStatusTracker(session, row.id)
    head = session.get(Ref, row.head_ref_id) if row.head_ref_id else None
    table = Table(title=repo)
    table.add_column("field")
    table.add_column("value")
    table.add_row("status", tracker.status)
    table.add_row("message", tracker.message or "")
    synced = tracker.last_synced_at
    table.add_row("last synced", synced.isoformat() if synced else "never")
    table.add_row("head", head.name if head else "")
    table.add_row("open issues", str(row.open_issues))
    table.add_row("closed issues", str(row.closed_issues))
    session.close()
    print(table)


@app.command()
def delete(
    repo: str = typer.Option(..., help="Repository in owner/name format"),
    db: str | None = typer.Option(None, help="SQLite database path"),
    data_dir: str = typer.Option("data", help="Base directory for per-repo SQLite databases"),
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation"),
):
    """Delete a repository and all of its mirrored data."""
    session, row = _open(repo, db, data_dir)
    if not yes and not typer.confirm(f"Delete all mirrored data for {repo}?"):
        session.close()
        raise typer.Exit(code=1)
    delete_repo_data(session, row.id)
    session.commit()
    session.close()
    print(f"[bold]Deleted[/bold] {repo}")


@app.command()
def resolve(
    repo: str = typer.Option(..., help="Repository in owner/name format"),
    ref_and_path: str = typer.Argument("", help="Combined <ref>/<path> segment"),
    db: str | None = typer.Option(None, help="SQLite database path"),
    data_dir: str = typer.Option("data", help="Base directory for per-repo SQLite databases"),
):
    """Split a <ref>/<path> URL segment against the mirrored refs."""
    session, row = _open(repo, db, data_dir)
    refs = [ref.name for ref in list_refs(session, row.id)]
    head = session.get(Ref, row.head_ref_id) if row.head_ref_id else None
    session.close()
    resolved = resolve_ref_and_path(refs, head.name if head else "", ref_and_path)
    if resolved is None:
        print(f"[red]No ref matches[/red] {ref_and_path!r}")
        raise typer.Exit(code=1)
    print(f"ref={resolved.ref} path={resolved.path}")
