"""Tests for resumable transfers."""

import os

import pytest

from canvasync.downloader import DownloadResult, ResumableTransfer, partial_path
from canvasync.models import DownloadTask
from canvasync.utils import load_jsonl

from conftest import FakeTransport

URL = "https://files.test/course.imscc"
CONTENT = bytes(range(256)) * 8


def make_transfer(config, transport, history=False):
    history_file = config.history_file if history else None
    return ResumableTransfer(transport, config.downloader, history_file)


class TestDownloadResult:
    """Test DownloadResult dataclass."""

    def test_download_result_defaults(self):
        result = DownloadResult(ok=False, bytes_written=0, attempts=2, error="Network error")

        assert result.ok is False
        assert result.attempts == 2
        assert result.error == "Network error"
        assert result.duration == 0.0
        assert result.already_complete is False


class TestResumableTransfer:
    """Test the resume algorithm against an in-memory transport."""

    @pytest.mark.asyncio
    async def test_fresh_download_sends_no_range(self, config, tmp_path):
        transport = FakeTransport({URL: CONTENT})
        dest = tmp_path / "out" / "course.imscc"

        result = await make_transfer(config, transport).fetch(URL, dest)

        assert result.ok is True
        assert result.attempts == 1
        assert result.bytes_written == len(CONTENT)
        assert transport.calls == [(URL, 0)]
        assert dest.read_bytes() == CONTENT
        assert not partial_path(dest).exists()

    @pytest.mark.asyncio
    async def test_interrupted_transfer_resumes_byte_identical(self, config, tmp_path):
        uninterrupted = tmp_path / "a" / "course.imscc"
        resumed = tmp_path / "b" / "course.imscc"

        await make_transfer(config, FakeTransport({URL: CONTENT})).fetch(URL, uninterrupted)

        transport = FakeTransport({URL: CONTENT}, interruptions=[101, 700])
        result = await make_transfer(config, transport).fetch(URL, resumed)

        assert result.ok is True
        assert result.attempts == 3
        assert transport.calls == [(URL, 0), (URL, 101), (URL, 801)]
        assert resumed.read_bytes() == uninterrupted.read_bytes()

    @pytest.mark.asyncio
    async def test_resumes_partial_file_from_previous_run(self, config, tmp_path):
        dest = tmp_path / "course.imscc"
        partial_path(dest).write_bytes(CONTENT[:300])

        transport = FakeTransport({URL: CONTENT})
        result = await make_transfer(config, transport).fetch(URL, dest)

        assert result.ok is True
        assert transport.calls == [(URL, 300)]
        assert result.bytes_written == len(CONTENT) - 300
        assert dest.read_bytes() == CONTENT

    @pytest.mark.asyncio
    async def test_range_not_satisfiable_means_complete(self, config, tmp_path):
        dest = tmp_path / "course.imscc"
        part = partial_path(dest)
        part.write_bytes(CONTENT)
        os.utime(part, (1_000_000, 1_000_000))

        transport = FakeTransport({URL: CONTENT})
        result = await make_transfer(config, transport).fetch(URL, dest)

        assert result.ok is True
        assert result.already_complete is True
        assert result.bytes_written == 0
        assert transport.calls == [(URL, len(CONTENT))]
        assert dest.read_bytes() == CONTENT
        # No write touched the file before it was renamed
        assert dest.stat().st_mtime == 1_000_000

    @pytest.mark.asyncio
    async def test_existing_destination_skips_network(self, config, tmp_path):
        dest = tmp_path / "course.imscc"
        dest.write_bytes(b"done")

        transport = FakeTransport({URL: CONTENT})
        result = await make_transfer(config, transport).fetch(URL, dest)

        assert result.ok is True
        assert result.attempts == 0
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_unexpected_status_is_retried(self, config, tmp_path):
        dest = tmp_path / "course.imscc"
        transport = FakeTransport({URL: CONTENT}, statuses=[503, 404])

        result = await make_transfer(config, transport).fetch(URL, dest)

        assert result.ok is True
        assert result.attempts == 3
        assert dest.read_bytes() == CONTENT

    @pytest.mark.asyncio
    async def test_budget_exhausted_keeps_partial_file(self, config, tmp_path):
        config.downloader.max_retries = 2
        dest = tmp_path / "course.imscc"
        transport = FakeTransport({URL: CONTENT}, interruptions=[10], statuses=[None, 500, 500])

        result = await make_transfer(config, transport).fetch(URL, dest)

        assert result.ok is False
        assert result.attempts == 3
        assert "Gave up after 3 attempt(s)" in result.error
        assert "500" in result.error
        assert not dest.exists()
        assert partial_path(dest).read_bytes() == CONTENT[:10]

    @pytest.mark.asyncio
    async def test_ignored_range_rewrites_from_start(self, config, tmp_path):
        dest = tmp_path / "course.imscc"
        partial_path(dest).write_bytes(CONTENT[:50])

        transport = FakeTransport({URL: CONTENT}, ignore_range=True)
        result = await make_transfer(config, transport).fetch(URL, dest)

        assert result.ok is True
        assert transport.calls == [(URL, 50)]
        assert dest.read_bytes() == CONTENT

    @pytest.mark.asyncio
    async def test_history_records_outcome(self, config, tmp_path):
        dest = tmp_path / "course.imscc"
        transfer = make_transfer(config, FakeTransport({URL: CONTENT}), history=True)

        await transfer.fetch(URL, dest)

        records = load_jsonl(config.history_file)
        assert len(records) == 1
        assert records[0]['ok'] is True
        assert records[0]['bytes'] == len(CONTENT)
        assert records[0]['dest_path'] == str(dest)

    @pytest.mark.asyncio
    async def test_download_history_keeps_latest(self, config, tmp_path):
        transfer = make_transfer(config, FakeTransport({URL: CONTENT}), history=True)

        for name in ("a.imscc", "b.imscc", "c.imscc"):
            await transfer.fetch(URL, tmp_path / name)

        history = transfer.get_download_history(limit=2)
        assert [record['dest_path'] for record in history] == [
            str(tmp_path / "b.imscc"), str(tmp_path / "c.imscc")
        ]
        assert make_transfer(config, FakeTransport({})).get_download_history() == []

    @pytest.mark.asyncio
    async def test_fetch_task_counts_attempts(self, config, tmp_path):
        task = DownloadTask(course_id=7, url=URL, dest_path=tmp_path / "course.imscc")
        transport = FakeTransport({URL: CONTENT}, interruptions=[5])

        result = await make_transfer(config, transport).fetch_task(task)

        assert result.ok is True
        assert task.attempts == 2
