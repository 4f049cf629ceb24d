"""Resumable artifact transfer with byte-range resume and capped backoff."""

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from tenacity import (
    AsyncRetrying, RetryCallState, RetryError, retry_if_exception_type,
    stop_after_attempt, wait_exponential
)

from ..config import DownloaderConfig
from ..errors import RetryBudgetExhausted, TransientNetworkError, UnexpectedStatus
from ..models import DownloadTask
from ..utils import append_jsonl, ensure_directory, file_size, get_timestamp, load_jsonl
from .transport import TransportBase

logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_PARTIAL_CONTENT = 206
HTTP_RANGE_NOT_SATISFIABLE = 416


@dataclass
class DownloadResult:
    """Download result."""
    ok: bool
    bytes_written: int
    attempts: int
    error: Optional[str] = None
    duration: float = 0.0
    already_complete: bool = False


def partial_path(dest_path: Path, suffix: str = '.part') -> Path:
    """Where bytes accumulate until the transfer completes."""
    return dest_path.with_name(dest_path.name + suffix)


class ResumableTransfer:
    """Downloads a URL to a path, resuming from whatever is already on disk.

    Bytes are appended to ``<dest>.part``; the resume offset is the size of
    that file, re-read before every attempt. On success the partial file is
    renamed to ``dest``. Partial files are kept across failed attempts and
    across process restarts.
    """

    def __init__(self, transport: TransportBase, config: DownloaderConfig,
                 history_file: Optional[Path] = None):
        self.transport = transport
        self.config = config
        self.history_file = history_file

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries + 1),
            wait=wait_exponential(
                multiplier=self.config.backoff_base_s,
                max=self.config.backoff_cap_s
            ),
            retry=retry_if_exception_type(TransientNetworkError),
            before_sleep=self._log_retry,
        )

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            "Attempt %d failed (%s), retrying in %.1fs",
            retry_state.attempt_number, error, delay
        )

    async def _attempt(self, url: str, part_path: Path, result: DownloadResult) -> None:
        result.attempts += 1
        offset = file_size(part_path)

        async with self.transport.open(url, offset) as response:
            status = response.status_code

            if status == HTTP_RANGE_NOT_SATISFIABLE and offset > 0:
                logger.info("Server reports %s already complete at %d bytes", part_path.name, offset)
                result.already_complete = True
                return

            if status not in (HTTP_OK, HTTP_PARTIAL_CONTENT):
                raise UnexpectedStatus(status, url)

            mode = 'ab'
            if status == HTTP_OK and offset > 0:
                # Range was ignored and the body starts at byte 0
                logger.warning("Server ignored range for %s, restarting from 0", part_path.name)
                mode = 'wb'

            with open(part_path, mode) as f:
                try:
                    async for chunk in response.chunks:
                        f.write(chunk)
                        result.bytes_written += len(chunk)
                finally:
                    f.flush()
                    os.fsync(f.fileno())

    async def fetch(self, url: str, dest_path: Path) -> DownloadResult:
        """Download ``url`` into ``dest_path``; never raises on network failure."""
        start_time = time.time()
        result = DownloadResult(ok=False, bytes_written=0, attempts=0)

        if dest_path.exists():
            result.ok = True
            result.already_complete = True
            return result

        ensure_directory(dest_path.parent)
        part_path = partial_path(dest_path, self.config.partial_suffix)
        if part_path.exists():
            logger.info("Resuming %s from %d bytes", dest_path.name, file_size(part_path))

        try:
            async for attempt in self._retrying():
                with attempt:
                    await self._attempt(url, part_path, result)
        except RetryError as e:
            exhausted = RetryBudgetExhausted(result.attempts, e.last_attempt.exception())
            logger.error("Download of %s failed: %s", dest_path.name, exhausted)
            result.error = str(exhausted)
        else:
            os.replace(part_path, dest_path)
            result.ok = True
            logger.info("Saved %s", dest_path)

        result.duration = time.time() - start_time
        self._log_download_attempt(result, url, dest_path)
        return result

    async def fetch_task(self, task: DownloadTask) -> DownloadResult:
        """Run ``fetch`` for a scheduled task and record its attempt count."""
        result = await self.fetch(task.url, task.dest_path)
        task.attempts += result.attempts
        return result

    def _log_download_attempt(self, result: DownloadResult, url: str, dest_path: Path) -> None:
        """Log download outcome to history."""
        if self.history_file is None:
            return
        record: Dict[str, Any] = {
            'url': url,
            'dest_path': str(dest_path),
            'end': get_timestamp(),
            'ok': result.ok,
            'bytes': result.bytes_written,
            'attempts': result.attempts,
            'error': result.error,
            'duration': result.duration,
        }
        append_jsonl(self.history_file, record)

    def get_download_history(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Get the most recent download records, oldest first."""
        if self.history_file is None or limit <= 0:
            return []
        return load_jsonl(self.history_file)[-limit:]
