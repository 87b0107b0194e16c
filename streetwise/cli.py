#!/usr/bin/env python3
"""
StreetWise CLI

Command-line interface for the StreetWise background job system.
"""

import sqlite3
from datetime import timedelta
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from streetwise.config import load_config, setup_logging
from streetwise.database import Database
from streetwise.jobs import JobConfig, JobManager, JobStatus, JobWorker, demo_handlers
from streetwise.migrations import MigrationError, Migrator

console = Console()

STATUS_COLORS = {
    "queued": "yellow",
    "running": "blue",
    "completed": "green",
    "failed": "red",
    "cancelled": "dim",
}


def get_db() -> Database:
    """Get database connection using config."""
    config = load_config()
    db_path = config.get("database", {}).get("path", "db/streetwise.db")
    return Database(db_path)


def get_manager() -> JobManager:
    return JobManager(get_db(), JobConfig.from_config(load_config()))


@click.group()
@click.version_option(version="0.1.0", prog_name="streetwise")
def main():
    """StreetWise - Background Jobs for Local SEO

    Queue, run and inspect crawl and analysis jobs.
    """
    level = load_config().get("logging", {}).get("level", "INFO")
    setup_logging(level, rich=True)


@main.command()
def init():
    """Initialize the database and configuration."""
    db = get_db()
    db.init_schema()
    console.print("[green]✓[/green] Database initialized")

    config_path = Path("config.yaml")
    if not config_path.exists():
        console.print(
            "[yellow]![/yellow] No config.yaml found. "
            "Copy config.example.yaml to adjust job settings."
        )
    else:
        console.print("[green]✓[/green] Configuration loaded")


@main.command()
@click.option("--status", "show_status", is_flag=True, help="Show applied and pending migrations")
@click.option("--rollback", type=int, default=None, metavar="N", help="Roll back the last N migrations")
def migrate(show_status, rollback):
    """Apply pending database migrations."""
    db_path = load_config().get("database", {}).get("path", "db/streetwise.db")
    migrator = Migrator(db_path)

    try:
        if show_status:
            status = migrator.status()
            table = Table(title="Migrations", show_header=True, header_style="bold cyan")
            table.add_column("Migration")
            table.add_column("State")
            for name in status["applied"]:
                table.add_row(name, "[green]applied[/green]")
            for name in status["pending"]:
                table.add_row(name, "[yellow]pending[/yellow]")
            console.print(table)
            console.print(
                f"{status['total_applied']} applied, {status['total_pending']} pending"
            )
            return

        if rollback is not None:
            undone = migrator.rollback(rollback)
            for name in undone:
                console.print(f"  Rolled back: {name}")
            console.print(f"[green]✓[/green] Rolled back {len(undone)} migration(s)")
            return

        applied = migrator.migrate()
        if not applied:
            console.print("[green]✓[/green] Database is up to date")
            return
        for name in applied:
            console.print(f"  Applied: {name}")
        console.print(f"[green]✓[/green] Applied {len(applied)} migration(s)")
    except MigrationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)
    finally:
        migrator.close()


@main.command()
@click.option("--user", "-u", "user_id", default=None, help="Only jobs owned by this user")
@click.option("--status", "-s", type=click.Choice([s.value for s in JobStatus]),
              default=None, help="Filter by status")
@click.option("--limit", "-l", default=20, help="Number of jobs to show")
def jobs(user_id, status, limit):
    """List recent jobs."""
    db = get_db()
    try:
        rows = db.list_jobs(user_id=user_id, status=status, limit=limit)
    except sqlite3.OperationalError:
        console.print("[red]Error:[/red] Database not initialized. Run 'streetwise init' first.")
        return

    if not rows:
        console.print("[yellow]No jobs found[/yellow]")
        return

    table = Table(title="Jobs", show_header=True, header_style="bold cyan")
    table.add_column("ID", justify="right", no_wrap=True)
    table.add_column("User")
    table.add_column("Type", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Progress", justify="right")
    table.add_column("Step")
    table.add_column("Created")

    for job in rows:
        color = STATUS_COLORS.get(job["status"], "white")
        table.add_row(
            str(job["id"]),
            job["user_id"],
            job["type"],
            f"[{color}]{job['status']}[/{color}]",
            f"{job['progress'] or 0}%",
            job["current_step"] or "",
            job["created_at"][:19],
        )

    console.print(table)


@main.command()
@click.option("--user", "-u", "user_id", default=None, help="Only jobs owned by this user")
def stats(user_id):
    """Show job statistics."""
    manager = get_manager()
    try:
        statistics = manager.get_statistics(user_id)
    except sqlite3.OperationalError:
        console.print("[red]Error:[/red] Database not initialized. Run 'streetwise init' first.")
        return

    table = Table(title="Jobs by Status", show_header=True, header_style="bold cyan")
    table.add_column("Status", style="bold")
    table.add_column("Count", justify="right")
    for status, count in statistics["jobsByStatus"].items():
        color = STATUS_COLORS.get(status, "white")
        table.add_row(f"[{color}]{status.capitalize()}[/{color}]", str(count))
    console.print(table)

    summary = f"""
[bold]Total Jobs:[/bold] {statistics['total']}
[bold]Success Rate:[/bold] {statistics['successRate']:.1f}%
[bold]Average Duration:[/bold] {statistics['averageDuration'] / 1000:.1f}s
    """.strip()

    console.print(Panel(summary, title="Summary", border_style="blue"))


@main.command()
@click.option("--demo", is_flag=True, help="Use simulated handlers for every job type")
@click.option("--once", is_flag=True, help="Process a single job and exit")
@click.option("--step-delay", default=0.5, help="Seconds per simulated step (with --demo)")
def worker(demo, once, step_delay):
    """Run the background job worker."""
    manager = get_manager()
    manager.db.init_schema()

    handlers = demo_handlers(step_delay) if demo else {}
    if not handlers:
        console.print(
            "[yellow]![/yellow] No job handlers registered; claimed jobs will fail. "
            "Use --demo for simulated handlers."
        )
    job_worker = JobWorker(manager, handlers)

    if once:
        job_id = job_worker.run_once()
        if job_id is None:
            console.print("[yellow]No queued jobs[/yellow]")
        else:
            job = manager.get_job(job_id)
            color = STATUS_COLORS.get(job["status"], "white")
            console.print(f"Processed job {job_id}: [{color}]{job['status']}[/{color}]")
        return

    console.print("[bold blue]Worker running[/bold blue] (Ctrl+C to stop)")
    try:
        job_worker.run()
    except KeyboardInterrupt:
        job_worker.stop_event.set()
        console.print("\n[yellow]Worker stopped[/yellow]")


@main.command()
def sweep():
    """Fail stale running jobs and delete old finished ones."""
    manager = get_manager()
    try:
        stale = manager.fail_stale_jobs()
        cleaned = manager.cleanup_old_jobs()
    except sqlite3.OperationalError:
        console.print("[red]Error:[/red] Database not initialized. Run 'streetwise init' first.")
        return

    console.print(f"[green]✓[/green] Failed {len(stale)} stale job(s)")
    console.print(
        f"[green]✓[/green] Removed {cleaned['jobs_deleted']} old job(s) and "
        f"{cleaned['notifications_deleted']} dismissed notification(s)"
    )


@main.command()
@click.argument("user_id")
@click.option("--expires", default=60 * 24, help="Token lifetime in minutes")
def token(user_id, expires):
    """Issue a development API token for USER_ID."""
    from web.api.auth import create_access_token

    access_token = create_access_token({"sub": user_id}, timedelta(minutes=expires))
    click.echo(access_token)


if __name__ == "__main__":
    main()
