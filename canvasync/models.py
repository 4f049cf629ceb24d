"""Records exchanged with the Canvas API and passed between components."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class WorkflowState(str, Enum):
    """Content export workflow states reported by Canvas."""

    CREATED = "created"
    QUEUED = "queued"
    EXPORTING = "exporting"
    EXPORTED = "exported"
    FAILED = "failed"


class EntityState(str, Enum):
    """Where a course stands in the export/download lifecycle."""

    PENDING_CHECK = "pending-check"
    EXPORT_REQUESTED = "export-requested"
    EXPORT_READY = "export-ready"
    ARTIFACT_PRESENT = "artifact-present"
    TERMINAL_FAILURE = "terminal-failure"


class Course(BaseModel):
    """A Canvas course as returned by the account course listing."""

    model_config = ConfigDict(extra='allow')

    id: int
    name: str
    start_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def start_date(self) -> Optional[datetime]:
        return self.start_at or self.created_at

    @property
    def code(self) -> str:
        """Course code, the first word of the course name."""
        parts = self.name.split()
        return parts[0] if parts else ""


class Attachment(BaseModel):
    """Downloadable file produced by a finished export."""

    model_config = ConfigDict(extra='allow')

    url: str
    filename: str
    size: Optional[int] = None


class ContentExport(BaseModel):
    """A content export job."""

    model_config = ConfigDict(extra='allow')

    id: Optional[int] = None
    workflow_state: str
    created_at: datetime
    attachment: Optional[Attachment] = None
    export_type: Optional[str] = None

    @field_validator('created_at')
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def is_downloadable(self) -> bool:
        return self.workflow_state == WorkflowState.EXPORTED.value and self.attachment is not None


@dataclass
class DownloadTask:
    """One artifact download handed to the scheduler."""

    course_id: int
    url: str
    dest_path: Path
    attempts: int = 0
