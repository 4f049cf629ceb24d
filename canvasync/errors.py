"""Exception types raised by Canvas Sync."""

from typing import Optional


class CanvasyncError(Exception):
    """Base class for all Canvas Sync errors."""


class TransientNetworkError(CanvasyncError):
    """Timeout, connection reset or similar; safe to retry."""


class UnexpectedStatus(TransientNetworkError):
    """A transfer response whose status is not 200, 206 or 416."""

    def __init__(self, status_code: int, url: str = ""):
        self.status_code = status_code
        self.url = url
        super().__init__(f"Unexpected status {status_code}" + (f" for {url}" if url else ""))


class RetryBudgetExhausted(CanvasyncError):
    """A transfer failed on every attempt it was allowed."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        message = f"Gave up after {attempts} attempt(s)"
        if last_error is not None:
            message += f": {last_error}"
        super().__init__(message)


class RemoteJobCreationError(CanvasyncError):
    """The create-export request failed."""


class ExportLookupError(CanvasyncError):
    """Listing the exports of a course failed."""


class CatastrophicSetupError(CanvasyncError):
    """No progress is possible (bad credentials, listing endpoint unreachable)."""
