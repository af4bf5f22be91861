# printvault/cli.py
from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer

from printvault.app import Archive, import_folder, open_archive
from printvault.config import load_settings
from printvault.errors import ArchiveError, ValidationError
from printvault.log import err, install_tracebacks
from printvault.model import DEFAULT_PROJECT_TYPE, Project, ProjectDraft
from printvault.recovery import EXIT_FATAL, RecoveryState
from printvault.sweep import sweep
from printvault import transfer

app = typer.Typer(help="PrintVault: archive of 3D-print project folders")

EXIT_FAILED = 1
EXIT_INVALID = 2


# -----------------------
# Helpers
# -----------------------
def _archive(ctx: typer.Context, migrate: bool = True) -> Archive:
    try:
        settings = load_settings(ctx.obj.get("home") if ctx.obj else None)
        return open_archive(settings, migrate=migrate)
    except ArchiveError as e:
        _fail(e)
        raise  # unreachable


def _fail(e: ArchiveError) -> None:
    err(str(e))
    raise typer.Exit(code=EXIT_INVALID if isinstance(e, ValidationError) else EXIT_FAILED)


def _print_project(p: Project) -> None:
    typer.echo(f"#{p.id} {p.name}  [{p.project_type}]")
    typer.echo(f"  path:        {p.file_path}")
    typer.echo(f"  created:     {p.created_date}")
    if p.recipient:
        typer.echo(f"  recipient:   {p.recipient}")
    if p.tags:
        typer.echo(f"  tags:        {', '.join(p.tags)}")
    if p.description:
        desc = p.description.replace("\n", " ")
        if len(desc) > 160:
            desc = desc[:160] + "…"
        typer.echo(f"  description: {desc}")
    if p.print_dates:
        typer.echo(f"  printed:     {', '.join(d.isoformat() for d in p.print_dates)}")


@app.callback()
def main(
    ctx: typer.Context,
    home: Optional[Path] = typer.Option(None, "--home", help="Application home (default $PRINTVAULT_HOME or ./app_home)"),
) -> None:
    ctx.obj = {"home": home}


# -----------------------
# Core Commands
# -----------------------
@app.command()
def init(ctx: typer.Context) -> None:
    """Create the home directories and the database schema."""
    archive = _archive(ctx)
    typer.echo(f"Archive ready at {archive.settings.home}")
    archive.close()


@app.command()
def ingest(
    ctx: typer.Context,
    name: str,
    folder: Path,
    project_type: str = typer.Option(DEFAULT_PROJECT_TYPE, "--type"),
    description: str = typer.Option("", "--description"),
    recipient: str = typer.Option("", "--recipient"),
    tag: List[str] = typer.Option([], "--tag", help="Repeat for several tags"),
    date: List[str] = typer.Option([], "--date", help="Print date yyyy-MM-dd; repeatable"),
) -> None:
    """Copy FOLDER into the archive as project NAME and record it."""
    archive = _archive(ctx)
    draft = ProjectDraft(
        name=name,
        project_type=project_type,
        description=description,
        recipient=recipient,
        tags=list(tag),
        print_dates=list(date),
    )
    try:
        project_id = archive.pipeline.ingest(draft, folder)
    except ArchiveError as e:
        _fail(e)
    finally:
        archive.close()
    typer.echo(f"Project added: id={project_id}")


@app.command("import-folder")
def import_folder_cmd(
    ctx: typer.Context,
    folder: Path,
    recipient: str = typer.Option("Bulk_Import", "--recipient"),
    project_type: str = typer.Option(DEFAULT_PROJECT_TYPE, "--project-type"),
) -> None:
    """Import FOLDER under its own name; prints one JSON line."""
    archive = _archive(ctx)
    try:
        result = import_folder(archive, folder, recipient=recipient, project_type=project_type)
    except ArchiveError as e:
        _fail(e)
    finally:
        archive.close()
    typer.echo(json.dumps(result))


@app.command()
def show(ctx: typer.Context, project_id: int) -> None:
    """Show one project."""
    archive = _archive(ctx)
    project = archive.store.load_project_by_id(project_id)
    archive.close()
    if project is None:
        typer.echo(f"No project with id {project_id}.")
        raise typer.Exit(code=EXIT_FAILED)
    _print_project(project)


@app.command("list")
def list_cmd(ctx: typer.Context) -> None:
    """List all projects."""
    archive = _archive(ctx)
    projects = archive.store.list_projects()
    archive.close()
    if not projects:
        typer.echo("(no projects)")
        return
    for p in projects:
        typer.echo(f"#{p.id}  {p.name}  [{p.project_type}]  {p.file_path}")


@app.command()
def update(
    ctx: typer.Context,
    project_id: int,
    name: Optional[str] = typer.Option(None, "--name"),
    project_type: Optional[str] = typer.Option(None, "--type"),
    description: Optional[str] = typer.Option(None, "--description"),
    recipient: Optional[str] = typer.Option(None, "--recipient"),
    tag: Optional[List[str]] = typer.Option(None, "--tag"),
) -> None:
    """Update metadata of a project (files are not moved)."""
    fields = {
        k: v
        for k, v in {
            "name": name,
            "project_type": project_type,
            "description": description,
            "recipient": recipient,
            "tags": list(tag) if tag else None,
        }.items()
        if v is not None
    }
    archive = _archive(ctx)
    try:
        project = archive.store.update_project(project_id, fields)
    except ArchiveError as e:
        _fail(e)
    finally:
        archive.close()
    _print_project(project)


# -----------------------
# Backups
# -----------------------
@app.command()
def backup(ctx: typer.Context) -> None:
    """Snapshot the database into the backups directory."""
    archive = _archive(ctx)
    try:
        path = archive.create_snapshot()
    except ArchiveError as e:
        _fail(e)
    finally:
        archive.close()
    typer.echo(f"Backup created: {path}")


@app.command()
def snapshots(ctx: typer.Context) -> None:
    """List snapshots, newest last."""
    archive = _archive(ctx, migrate=False)
    snaps = archive.backups.list_snapshots()
    archive.close()
    if not snaps:
        typer.echo("(no snapshots)")
        return
    for s in snaps:
        when = datetime.fromtimestamp(s.created).isoformat(timespec="seconds")
        typer.echo(f"- {s.path.name}  {s.size:,} bytes  {when}")


@app.command("verify-backup")
def verify_backup(ctx: typer.Context, snapshot: Optional[Path] = typer.Argument(None)) -> None:
    """Trial-restore SNAPSHOT (default: newest) to check it is usable."""
    archive = _archive(ctx, migrate=False)
    try:
        target = snapshot or archive.backups.newest_snapshot().path
    except ArchiveError as e:
        archive.close()
        _fail(e)
    ok = archive.backups.verify_snapshot_usable(target)
    archive.close()
    typer.echo(f"{target.name}: {'usable' if ok else 'NOT usable'}")
    if not ok:
        raise typer.Exit(code=EXIT_FAILED)


@app.command()
def restore(
    ctx: typer.Context,
    snapshot: Path,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Overwrite the live database with SNAPSHOT."""
    if not yes and not typer.confirm(f"Replace the live database with {snapshot.name}?"):
        raise typer.Exit(code=EXIT_FAILED)
    archive = _archive(ctx, migrate=False)
    try:
        archive.restore_snapshot(snapshot)
    except ArchiveError as e:
        _fail(e)
    finally:
        archive.close()
    typer.echo(f"Database restored from {snapshot}")


@app.command("backup-daemon")
def backup_daemon(
    ctx: typer.Context,
    interval_hours: Optional[float] = typer.Option(None, "--interval-hours"),
    once: bool = typer.Option(False, "--once", help="Take one snapshot and exit"),
) -> None:
    """Take snapshots on a fixed interval until Ctrl+C."""
    archive = _archive(ctx, migrate=False)
    sched = archive.scheduler(interval_hours)
    if once:
        path = sched.run_once()
        archive.close()
        if path is None:
            raise typer.Exit(code=EXIT_FAILED)
        typer.echo(f"Backup created: {path}")
        return
    sched.start()
    typer.echo(f"Backing up every {sched.interval / 3600:g}h. Ctrl+C to stop.")
    sched.wait()
    archive.close()
    typer.echo("\nStopped backup daemon.")


# -----------------------
# Health / recovery
# -----------------------
@app.command()
def check(ctx: typer.Context) -> None:
    """Probe the database and its tables."""
    archive = _archive(ctx, migrate=False)
    corrupted = archive.store.is_corrupted()
    tables = archive.store.verify_integrity()
    integrity = archive.store.integrity_check()
    archive.close()
    typer.echo("=== PrintVault Check ===")
    typer.echo(f"database:        {archive.settings.database_path}")
    typer.echo(f"corrupted:       {'yes' if corrupted else 'no'}")
    typer.echo(f"integrity_check: {integrity}")
    for table, ok in tables.items():
        typer.echo(f" - {table}: {'ok' if ok else 'MISSING/BROKEN'}")
    if corrupted:
        raise typer.Exit(code=EXIT_FAILED)


@app.command()
def recover(
    ctx: typer.Context,
    yes: Optional[bool] = typer.Option(None, "--yes/--no", help="Answer the restore question up front"),
) -> None:
    """Startup check: restore the newest snapshot if the database is corrupted."""
    try:
        settings = load_settings(ctx.obj.get("home") if ctx.obj else None)
        # probe an existing file before anything writes to it
        archive = open_archive(settings, migrate=not settings.database_path.exists())
    except ArchiveError as e:
        _fail(e)
        raise  # unreachable

    def decide(problem) -> bool:
        if yes is not None:
            return yes
        return typer.confirm(f"{problem}. Restore from the newest backup?")

    outcome = archive.recovery().run(decide)
    archive.close()
    if outcome.state is RecoveryState.FATAL:
        err(f"fatal: {outcome.reason}")
        raise typer.Exit(code=EXIT_FATAL)
    if outcome.restored_from:
        typer.echo(f"Recovered from {outcome.restored_from}")
    if outcome.snapshot_usable is False:
        typer.echo("Warning: newest backup failed verification.")
    typer.echo("Database ready.")


@app.command("sweep")
def sweep_cmd(ctx: typer.Context, delete: bool = typer.Option(False, "--delete")) -> None:
    """Reconcile archive folders against project rows."""
    archive = _archive(ctx)
    report = sweep(archive.store, archive.settings.archive_root, delete=delete)
    archive.close()
    typer.echo("=== Sweep ===")
    typer.echo(f"orphans:       {len(report.orphans)} (removed {len(report.removed)})")
    typer.echo(f"stale markers: {len(report.stale_markers)}")
    for p in report.untracked:
        typer.echo(f"untracked: {p}")
    for m in report.missing:
        typer.echo(f"missing:   {m}")
    for e in report.errors:
        typer.echo(f"error:     {e}")
    if report.clean:
        typer.echo("Archive is consistent.")


# -----------------------
# JSON export / import
# -----------------------
@app.command("export-json")
def export_json(ctx: typer.Context, path: Path, compact: bool = typer.Option(False, "--compact")) -> None:
    """Write all project metadata to PATH."""
    archive = _archive(ctx)
    n = transfer.export_projects(archive.store, path, compact=compact)
    archive.close()
    typer.echo(f"Exported {n} project(s) to {path}")


@app.command("import-json")
def import_json(ctx: typer.Context, path: Path) -> None:
    """Insert project metadata from a JSON export."""
    archive = _archive(ctx)
    try:
        ids = transfer.import_projects(archive.store, transfer.read_projects(path))
    except ArchiveError as e:
        _fail(e)
    finally:
        archive.close()
    typer.echo(f"Imported {len(ids)} project(s)")


# -----------------------
# Entrypoint
# -----------------------
def run() -> None:
    install_tracebacks()
    app()


if __name__ == "__main__":
    run()
