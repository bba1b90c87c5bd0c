"""Entry point for the scanwatch scan runner."""

from __future__ import annotations

import argparse
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.config import settings
from src.services import Services, build_services

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)

_STATUS_STYLE = {
    "pass": "green", "passed": "green",
    "fail": "red", "failed": "red",
    "warning": "yellow",
    "error": "magenta",
}


def run_server() -> None:
    """Start the FastAPI server (worker pool + scheduler run inside it)."""
    console.print(Panel("Starting Scanwatch API Server", style="bold green"))
    uvicorn.run(
        "src.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def run_worker(svc: Services, size: int | None) -> None:
    pool = svc.worker_pool(size)
    console.print(Panel(f"Worker pool: {len(pool.workers)} workers", style="bold green"))
    pool.start()
    try:
        pool.wait()
    except KeyboardInterrupt:
        console.print("[dim]Stopping workers...[/dim]")
    finally:
        pool.stop()


def run_schedule(svc: Services) -> None:
    report = svc.scheduler.run_scheduling_pass()
    console.print(
        f"[bold]Due:[/bold] {report.due}  [green]Enqueued:[/green] {len(report.enqueued)}  "
        f"[yellow]Skipped:[/yellow] {len(report.skipped)}  [red]Failed:[/red] {len(report.failed)}"
    )
    for target_id, job_id in report.enqueued.items():
        console.print(f"  + {target_id} → job {job_id}")
    for target_id in report.skipped:
        console.print(f"  [yellow]~ {target_id} (scan already in flight)[/yellow]")
    for target_id, error in report.failed.items():
        console.print(f"  [red]! {target_id}: {error}[/red]")


def run_cleanup(svc: Services, include_dead_letter: bool) -> None:
    jobs = svc.queue.cleanup_completed_jobs(
        svc.settings.queue_cleanup_after, include_dead_letter=include_dead_letter,
    )
    stale = svc.queue.reset_stale_jobs()
    scans = svc.results.cleanup_old(svc.settings.scan_retention_days)
    console.print(f"Deleted {jobs} finished jobs, {scans} old scans; reset {stale} stale jobs")


def list_checks(svc: Services) -> None:
    table = Table(title="Registered checks")
    table.add_column("Name", style="cyan")
    table.add_column("Category")
    table.add_column("Enabled")
    table.add_column("Description", style="dim")
    for plugin in svc.registry.list():
        enabled = svc.registry.is_enabled(plugin.name)
        table.add_row(plugin.name, plugin.category, "yes" if enabled else "[red]no[/red]", plugin.description)
    console.print(table)


def run_scan(svc: Services, target_id: str, record: bool) -> None:
    """Run a target's battery in-process, bypassing the queue."""
    target = svc.targets.get(target_id)
    if target is None:
        console.print(f"[red]Unknown target: {target_id}[/red]")
        sys.exit(1)

    with console.status(f"[bold green]Scanning {target.url}..."):
        summary = svc.engine.execute_battery(target)

    table = Table(title=f"{target.name} ({target.url})")
    table.add_column("Check", style="cyan")
    table.add_column("Status")
    table.add_column("Time", justify="right")
    table.add_column("Message", style="dim")
    for o in summary.outcomes:
        style = _STATUS_STYLE.get(o.status.value, "white")
        table.add_row(o.check_name, f"[{style}]{o.status.value}[/{style}]", f"{o.duration_ms:.0f}ms", o.message)
    console.print(table)

    style = _STATUS_STYLE.get(summary.status.value, "white")
    console.print(
        f"[bold]Overall:[/bold] [{style}]{summary.status.value}[/{style}] "
        f"({summary.passed} passed, {summary.failed} failed, "
        f"{summary.warnings} warnings, {summary.errors} errors)"
    )

    if record:
        scan_id = svc.results.record_scan(summary)
        decision = svc.evaluator.evaluate(target, summary)
        console.print(f"[dim]Recorded scan {scan_id}; escalation: {decision.action.value} (level {decision.level})[/dim]")


def list_dead_letters(svc: Services, limit: int) -> None:
    jobs = svc.queue.dead_letters(limit)
    if not jobs:
        console.print("[green]No dead-lettered jobs[/green]")
        return
    table = Table(title="Dead-lettered jobs")
    table.add_column("ID", justify="right")
    table.add_column("Type", style="cyan")
    table.add_column("Payload")
    table.add_column("Retries", justify="right")
    table.add_column("Last error", style="red")
    for job in jobs:
        table.add_row(str(job.id), job.type, str(job.payload), str(job.retry_count), (job.last_error or "")[:80])
    console.print(table)


def main() -> None:
    parser = argparse.ArgumentParser(description="Scanwatch - periodic website scan runner")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server with workers and scheduler")

    worker_parser = sub.add_parser("worker", help="Run a standalone worker pool")
    worker_parser.add_argument("-n", "--workers", type=int, default=None, help="Number of workers")

    sub.add_parser("schedule", help="Run one scheduling pass")

    cleanup_parser = sub.add_parser("cleanup", help="Delete old jobs and scans, reset stale jobs")
    cleanup_parser.add_argument("--dead-letter", action="store_true", help="Also delete dead-lettered jobs")

    sub.add_parser("checks", help="List registered checks")

    scan_parser = sub.add_parser("scan", help="Scan one target immediately")
    scan_parser.add_argument("target_id", help="Target id from targets.yaml")
    scan_parser.add_argument("--record", action="store_true", help="Persist the result and evaluate escalation")

    dl_parser = sub.add_parser("dead-letters", help="List dead-lettered jobs")
    dl_parser.add_argument("--limit", type=int, default=50)

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
        return
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    svc = build_services()
    if args.command == "worker":
        run_worker(svc, args.workers)
    elif args.command == "schedule":
        run_schedule(svc)
    elif args.command == "cleanup":
        run_cleanup(svc, args.dead_letter)
    elif args.command == "checks":
        list_checks(svc)
    elif args.command == "scan":
        run_scan(svc, args.target_id, args.record)
    elif args.command == "dead-letters":
        list_dead_letters(svc, args.limit)


if __name__ == "__main__":
    main()
