"""Shared fixtures and fakes for the test suite."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from canvasync.config import Config
from canvasync.downloader import TransferResponse, TransportBase
from canvasync.errors import (
    CatastrophicSetupError, RemoteJobCreationError, TransientNetworkError
)
from canvasync.models import ContentExport, Course


@pytest.fixture
def config(tmp_path):
    """Configuration rooted in a temp dir, with every wait set to zero."""
    cfg = Config(
        root_dir=str(tmp_path / "exports"),
        state_dir=str(tmp_path / "state"),
    )
    cfg.api.base_url = "https://canvas.test/api/v1"
    cfg.api.token = "secret-token"
    cfg.downloader.max_retries = 3
    cfg.downloader.backoff_base_s = 0
    cfg.downloader.backoff_cap_s = 0
    cfg.poller.poll_interval_s = 0
    cfg.poller.check_delay_ms = 0
    return cfg


def make_course(course_id: int = 1, name: str = "MAT101 Calculus", start_at: str = "2024-09-01T00:00:00Z") -> Course:
    return Course(id=course_id, name=name, start_at=start_at)


def make_export(
    created_at: str,
    state: str = "exported",
    url: Optional[str] = "https://files.test/export.imscc",
    filename: str = "export.imscc",
) -> ContentExport:
    attachment = {"url": url, "filename": filename} if url else None
    return ContentExport(workflow_state=state, created_at=created_at, attachment=attachment)


class FakeTransport(TransportBase):
    """In-memory byte-range server.

    ``interruptions`` lists, per call, how many bytes to deliver before the
    stream breaks; ``statuses`` forces a status code for successive calls and
    ``broken_urls`` always answer 500.
    """

    def __init__(
        self,
        content: Dict[str, bytes],
        chunk_size: int = 4,
        interruptions: Optional[List[Optional[int]]] = None,
        statuses: Optional[List[Optional[int]]] = None,
        ignore_range: bool = False,
        broken_urls: Optional[List[str]] = None,
    ):
        self.content = content
        self.chunk_size = chunk_size
        self.interruptions = list(interruptions or [])
        self.statuses = list(statuses or [])
        self.ignore_range = ignore_range
        self.broken_urls = set(broken_urls or [])
        self.calls: List[Tuple[str, int]] = []

    async def _chunks(self, body: bytes, cut: Optional[int]):
        sent = 0
        for i in range(0, len(body), self.chunk_size):
            chunk = body[i:i + self.chunk_size]
            if cut is not None and sent + len(chunk) > cut:
                if cut > sent:
                    yield chunk[:cut - sent]
                raise TransientNetworkError("connection reset")
            sent += len(chunk)
            yield chunk

    @asynccontextmanager
    async def open(self, url: str, range_start: int):
        self.calls.append((url, range_start))
        forced = self.statuses.pop(0) if self.statuses else None
        cut = self.interruptions.pop(0) if self.interruptions else None
        data = self.content[url]

        async def empty():
            return
            yield

        if url in self.broken_urls:
            yield TransferResponse(500, empty())
        elif forced is not None:
            yield TransferResponse(forced, empty())
        elif range_start == 0 or self.ignore_range:
            yield TransferResponse(200, self._chunks(data, cut))
        elif range_start >= len(data):
            yield TransferResponse(416, empty())
        else:
            yield TransferResponse(206, self._chunks(data[range_start:], cut))


class FakeCanvasClient:
    """Stands in for CanvasClient; exports are kept per course id."""

    def __init__(self, exports: Optional[Dict[int, List[ContentExport]]] = None,
                 export_on_create: Optional[ContentExport] = None,
                 fail_create: bool = False,
                 lookup_error: Optional[Exception] = None):
        self.exports = exports or {}
        self.export_on_create = export_on_create
        self.fail_create = fail_create
        self.lookup_error = lookup_error
        self.list_calls: List[int] = []
        self.create_calls: List[int] = []

    async def list_exports(self, course_id: int) -> List[ContentExport]:
        self.list_calls.append(course_id)
        if self.lookup_error is not None:
            raise self.lookup_error
        return list(self.exports.get(course_id, []))

    async def create_export(self, course_id: int) -> ContentExport:
        self.create_calls.append(course_id)
        if self.fail_create:
            raise RemoteJobCreationError(f"Creating export for course {course_id} failed: HTTP 500")
        # The new export becomes visible on the next listing
        if self.export_on_create is not None:
            self.exports.setdefault(course_id, []).append(self.export_on_create)
        return ContentExport(workflow_state="created", created_at=datetime.now(timezone.utc))


class AuthFailingClient(FakeCanvasClient):
    async def list_exports(self, course_id: int) -> List[ContentExport]:
        raise CatastrophicSetupError("Canvas rejected the API token (HTTP 401)")
