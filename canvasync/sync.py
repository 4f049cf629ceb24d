"""Run driver: list courses, filter them, then poll and download their exports."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from .catalog import CourseCatalog
from .config import Config
from .downloader import DownloadScheduler, ResumableTransfer
from .errors import CatastrophicSetupError
from .filters import filter_courses
from .http_client import CanvasClient
from .models import Course
from .poller import ExportPoller, PollReport
from .utils import ensure_directory, format_bytes, format_duration, setup_logging

console = Console()
logger = logging.getLogger(__name__)

RECENT_HISTORY_LIMIT = 10


@dataclass
class SyncReport:
    """Outcome of one sync run."""
    courses_listed: int = 0
    courses_selected: int = 0
    duration: float = 0.0
    poll: PollReport = field(default_factory=PollReport)
    recent_downloads: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'courses_listed': self.courses_listed,
            'courses_selected': self.courses_selected,
            'duration': self.duration,
            'rounds': self.poll.rounds,
            'completed': len(self.poll.completed),
            'exports_requested': self.poll.exports_requested,
            'transfers_ok': self.poll.transfers_ok,
            'transfers_failed': self.poll.transfers_failed,
            'bytes_written': self.poll.bytes_written,
        }


def _check_setup(config: Config) -> None:
    if not config.api.token:
        raise CatastrophicSetupError("No API token configured (set CANVAS_API_TOKEN)")
    if not config.api.base_url and not config.api.domain:
        raise CatastrophicSetupError("No Canvas domain configured (set CANVAS_DOMAIN)")


async def sync_exports(
    config: Config,
    courses: Optional[List[Course]] = None,
    client: Optional[CanvasClient] = None,
) -> SyncReport:
    """Download the export of every selected course.

    When ``courses`` is omitted the account listing is loaded (from cache when
    available) and narrowed with the configured filter.
    """
    start_time = time.time()
    report = SyncReport()
    owns_client = client is None
    if client is None:
        _check_setup(config)
        client = CanvasClient(config)

    ensure_directory(Path(config.root_dir))

    try:
        if courses is None:
            catalog = CourseCatalog(config, client)
            listed = await catalog.load()
            report.courses_listed = len(listed)
            logger.info("Found %d courses", len(listed))
            courses = filter_courses(listed, config.filter)
        else:
            report.courses_listed = len(courses)
        report.courses_selected = len(courses)
        logger.info("Courses to export: %d", len(courses))

        scheduler = DownloadScheduler(config.downloader.max_concurrent_downloads)
        transfer = ResumableTransfer(client.transport(), config.downloader, config.history_file)
        poller = ExportPoller(config, client, scheduler, transfer)
        report.poll = await poller.run(courses)
        report.recent_downloads = transfer.get_download_history(RECENT_HISTORY_LIMIT)
    finally:
        if owns_client:
            await client.close()

    report.duration = time.time() - start_time
    return report


def run_sync(config: Config) -> SyncReport:
    """Blocking entry point: run a full sync and print its summary."""
    setup_logging(config.logging)
    try:
        report = asyncio.run(sync_exports(config))
    except CatastrophicSetupError as e:
        console.print(f"[red]✗ Sync aborted: {e}[/red]")
        raise

    _display_sync_stats(report)
    return report


def _display_sync_stats(report: SyncReport) -> None:
    """Display sync statistics."""
    console.print("\n[bold green]Sync completed![/bold green]")

    table = Table(title="Export Sync Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")

    table.add_row("Courses Listed", str(report.courses_listed))
    table.add_row("Courses Selected", str(report.courses_selected))
    table.add_row("Polling Rounds", str(report.poll.rounds))
    table.add_row("Exports Requested", str(report.poll.exports_requested))
    table.add_row("Downloads OK", str(report.poll.transfers_ok))
    table.add_row("Downloads Failed", str(report.poll.transfers_failed))
    table.add_row("Downloaded", format_bytes(report.poll.bytes_written))
    table.add_row("Duration", format_duration(report.duration))

    console.print(table)

    if report.recent_downloads:
        history = Table(title="Recent Downloads")
        history.add_column("File", style="cyan")
        history.add_column("Status")
        history.add_column("Size", style="magenta")
        history.add_column("Attempts")
        for record in report.recent_downloads:
            status = "[green]ok[/green]" if record.get('ok') else "[red]failed[/red]"
            history.add_row(
                Path(record.get('dest_path', '')).name, status,
                format_bytes(record.get('bytes') or 0), str(record.get('attempts', 0))
            )
        console.print(history)

    errors = report.poll.errors
    if errors:
        console.print(f"\n[bold red]Errors ({len(errors)}):[/bold red]")
        for error in errors[:10]:
            console.print(f"  • {error['name']}: {error['error']}")

        if len(errors) > 10:
            console.print(f"  ... and {len(errors) - 10} more errors")
