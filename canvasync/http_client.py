"""Canvas REST API client with retry logic."""

import logging
import re
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .config import Config
from .downloader.transport import HttpxTransport
from .errors import (
    CatastrophicSetupError, ExportLookupError, RemoteJobCreationError
)
from .models import ContentExport, Course

logger = logging.getLogger(__name__)

NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')

AUTH_FAILURE_CODES = (401, 403)


def next_link(link_header: Optional[str]) -> Optional[str]:
    """Extract the rel="next" URL from a Link header."""
    if not link_header:
        return None
    match = NEXT_LINK_RE.search(link_header)
    return match.group(1) if match else None


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return False


def _check_auth(error: httpx.HTTPStatusError) -> None:
    status = error.response.status_code
    if status in AUTH_FAILURE_CODES:
        raise CatastrophicSetupError(
            f"Canvas rejected the API token (HTTP {status}) for {error.request.url}"
        ) from error


class CanvasClient:
    """Async client for the course listing and content export endpoints."""

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.base_url = config.api.api_base_url
        max_downloads = config.downloader.max_concurrent_downloads

        headers = dict(config.http.headers)
        headers['Authorization'] = f"Bearer {config.api.token}"

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=config.http.timeout_connect_s,
                read=config.http.timeout_read_s,
                write=config.http.timeout_read_s,
                pool=None
            ),
            limits=httpx.Limits(
                max_connections=max_downloads + 2,
                max_keepalive_connections=max_downloads
            ),
            headers=headers,
            follow_redirects=True,
            transport=transport
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(_is_retryable),
        reraise=True
    )
    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Tuple[Any, httpx.Response]:
        """GET a JSON document; raises httpx errors for the caller to classify."""
        response = await self.client.get(url, params=params)
        response.raise_for_status()
        return response.json(), response

    async def list_exports(self, course_id: int) -> List[ContentExport]:
        """List the content exports of a course."""
        url = f"{self.base_url}/courses/{course_id}/content_exports"

        try:
            data, _ = await self._get_json(url, params={'per_page': self.config.api.per_page})
            return [ContentExport.model_validate(item) for item in data]
        except httpx.HTTPStatusError as e:
            _check_auth(e)
            raise ExportLookupError(
                f"Listing exports for course {course_id} failed: HTTP {e.response.status_code}"
            ) from e
        except (httpx.TransportError, ValueError, TypeError) as e:
            raise ExportLookupError(f"Listing exports for course {course_id} failed: {e}") from e

    async def create_export(self, course_id: int) -> ContentExport:
        """Ask Canvas to start a new content export for a course."""
        url = f"{self.base_url}/courses/{course_id}/content_exports"
        payload = {
            'export_type': self.config.export.export_type,
            'skip_notifications': self.config.export.skip_notifications,
            'include_quiz_questions': self.config.export.include_quiz_questions,
        }

        try:
            response = await self.client.post(url, json=payload)
            response.raise_for_status()
            return ContentExport.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            _check_auth(e)
            raise RemoteJobCreationError(
                f"Creating export for course {course_id} failed: "
                f"HTTP {e.response.status_code}: {e.response.text}"
            ) from e
        except (httpx.TransportError, ValueError, TypeError) as e:
            raise RemoteJobCreationError(f"Creating export for course {course_id} failed: {e}") from e

    async def iter_course_pages(self, account_id: Optional[int] = None) -> AsyncIterator[List[Course]]:
        """Yield pages of the account course listing, following Link headers."""
        account_id = account_id if account_id is not None else self.config.api.account_id
        url: Optional[str] = f"{self.base_url}/accounts/{account_id}/courses"
        params: Optional[Dict[str, Any]] = {'per_page': self.config.api.per_page}

        while url:
            logger.debug("Fetching course page %s", url)
            try:
                data, response = await self._get_json(url, params=params)
                courses = [Course.model_validate(item) for item in data]
            except httpx.HTTPStatusError as e:
                _check_auth(e)
                raise CatastrophicSetupError(
                    f"Course listing failed: HTTP {e.response.status_code} for {e.request.url}"
                ) from e
            except (httpx.TransportError, ValueError, TypeError) as e:
                raise CatastrophicSetupError(f"Course listing failed: {e}") from e

            if not courses:
                return
            yield courses

            # The next link already carries the query string
            url = next_link(response.headers.get('link'))
            params = None

    async def list_courses(self, account_id: Optional[int] = None) -> List[Course]:
        """Fetch every course of the account."""
        courses: List[Course] = []
        async for page in self.iter_course_pages(account_id):
            courses.extend(page)
        return courses

    def transport(self) -> HttpxTransport:
        """Streaming transport sharing this client's connection pool and auth."""
        return HttpxTransport(
            self.client,
            chunk_size=self.config.downloader.chunk_size_kb * 1024
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
