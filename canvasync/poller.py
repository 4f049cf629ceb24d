"""Export readiness polling: drives each course from unknown to artifact on disk."""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from .catalog import course_folder, find_artifact
from .config import Config
from .downloader import DownloadScheduler, ResumableTransfer
from .errors import ExportLookupError, RemoteJobCreationError
from .http_client import CanvasClient
from .models import ContentExport, Course, DownloadTask, EntityState, WorkflowState
from .utils import safe_filename

logger = logging.getLogger(__name__)

IN_PROGRESS_STATES = {
    WorkflowState.CREATED.value,
    WorkflowState.QUEUED.value,
    WorkflowState.EXPORTING.value,
}


@dataclass
class PollReport:
    """What happened over a whole polling run."""
    rounds: int = 0
    completed: List[int] = field(default_factory=list)
    exports_requested: int = 0
    export_request_failures: int = 0
    lookup_failures: int = 0
    transfers_ok: int = 0
    transfers_failed: int = 0
    bytes_written: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)


class ExportPoller:
    """Per-course state machine plus the round-based driver loop.

    Each round checks every pending course once, in order. Courses with a
    usable export are handed to the scheduler; the round then waits for all
    of its transfers before sleeping ``poll_interval_s`` and starting over.
    A course leaves the pending set only when its artifact is found on disk.
    """

    def __init__(
        self,
        config: Config,
        client: CanvasClient,
        scheduler: DownloadScheduler,
        transfer: ResumableTransfer,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self.client = client
        self.scheduler = scheduler
        self.transfer = transfer
        self.sleep = sleep
        self.root_dir = Path(config.root_dir)
        self.states: Dict[int, EntityState] = {}
        self.report = PollReport()

    def select_export(self, exports: Iterable[ContentExport]) -> Optional[ContentExport]:
        """Newest downloadable export created at or after the cutoff."""
        cutoff = self.config.export.cutoff
        qualifying = [
            export for export in exports
            if export.is_downloadable and export.created_at >= cutoff
        ]
        if not qualifying:
            return None
        return max(qualifying, key=lambda export: export.created_at)

    def _has_export_in_progress(self, exports: Iterable[ContentExport]) -> bool:
        cutoff = self.config.export.cutoff
        return any(
            export.workflow_state in IN_PROGRESS_STATES and export.created_at >= cutoff
            for export in exports
        )

    def artifact_for(self, course: Course) -> Optional[Path]:
        folder = course_folder(course, self.root_dir, create=False)
        return find_artifact(folder, self.config.export.artifact_suffix)

    async def _request_export(self, course: Course) -> None:
        try:
            await self.client.create_export(course.id)
        except RemoteJobCreationError as e:
            self.report.export_request_failures += 1
            logger.error("%s", e)
            return
        self.report.exports_requested += 1
        logger.info("Export created for course %s", course.id)

    async def evaluate(self, course: Course) -> Optional[asyncio.Future]:
        """Check one course against Canvas; return a transfer handle if one was dispatched."""
        self.states[course.id] = EntityState.PENDING_CHECK

        try:
            exports = await self.client.list_exports(course.id)
        except ExportLookupError as e:
            self.report.lookup_failures += 1
            logger.error("%s", e)
            return None

        export = self.select_export(exports)
        logger.info("Course %s: %d export(s), %s ready", course.id, len(exports),
                    "one" if export else "none")

        if export is None:
            self.states[course.id] = EntityState.EXPORT_REQUESTED
            if self.config.export.reuse_in_progress_exports and self._has_export_in_progress(exports):
                logger.info("Export for course %s still in progress, not requesting another", course.id)
                return None
            await self._request_export(course)
            return None

        attachment = export.attachment
        filename = safe_filename(attachment.filename)
        suffix = self.config.export.artifact_suffix
        if not filename.endswith(suffix):
            # The suffix is the only completion signal on disk
            logger.warning("Attachment %s of course %s saved as %s%s", filename, course.id, filename, suffix)
            filename += suffix

        task = DownloadTask(
            course_id=course.id,
            url=attachment.url,
            dest_path=course_folder(course, self.root_dir) / filename,
        )
        self.states[course.id] = EntityState.EXPORT_READY
        return self.scheduler.submit(lambda: self.transfer.fetch_task(task))

    def _record_outcome(self, course: Course, outcome: Any) -> None:
        if isinstance(outcome, BaseException):
            error = f"{type(outcome).__name__}: {outcome}"
        elif outcome.ok:
            self.states[course.id] = EntityState.ARTIFACT_PRESENT
            self.report.transfers_ok += 1
            self.report.bytes_written += outcome.bytes_written
            return
        else:
            self.report.bytes_written += outcome.bytes_written
            error = outcome.error or "unknown error"

        self.states[course.id] = EntityState.TERMINAL_FAILURE
        self.report.transfers_failed += 1
        self.report.errors.append({'course_id': course.id, 'name': course.name, 'error': error})
        logger.error("Download for course %s (%s) failed: %s", course.id, course.name, error)

    async def run_round(self, pending: List[Course]) -> List[Course]:
        """Evaluate every pending course once; return the courses still pending."""
        self.report.rounds += 1
        still_pending: List[Course] = []
        dispatched: List[Tuple[Course, asyncio.Future]] = []
        check_delay = self.config.poller.check_delay_ms / 1000.0

        for course in pending:
            if self.artifact_for(course) is not None:
                self.states[course.id] = EntityState.ARTIFACT_PRESENT
                self.report.completed.append(course.id)
                logger.info('Course "%s" already exported. Skipping...', course.name)
                continue

            logger.info("Processing course: %s (%s)", course.name, course.id)
            handle = await self.evaluate(course)
            if handle is not None:
                dispatched.append((course, handle))
            still_pending.append(course)
            await self.sleep(check_delay)

        if dispatched:
            outcomes = await asyncio.gather(
                *(handle for _, handle in dispatched), return_exceptions=True
            )
            for (course, _), outcome in zip(dispatched, outcomes):
                self._record_outcome(course, outcome)

        return still_pending

    async def run(self, courses: Iterable[Course]) -> PollReport:
        """Poll until every course has its artifact on disk."""
        pending = _unique(courses)

        while pending:
            pending = await self.run_round(pending)
            if pending:
                logger.info("Waiting for %d export(s) to finish before retrying...", len(pending))
                await self.sleep(self.config.poller.poll_interval_s)

        logger.info("All courses have been processed")
        return self.report


def _unique(courses: Iterable[Course]) -> List[Course]:
    """Drop repeated course ids, keeping first-seen order."""
    seen = set()
    unique: List[Course] = []
    for course in courses:
        if course.id not in seen:
            seen.add(course.id)
            unique.append(course)
    return unique

