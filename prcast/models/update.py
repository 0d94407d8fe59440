"""Update (generated report) data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class UpdateStatus(str, Enum):
    """Status of a generated update."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Update(BaseModel):
    """The user-visible record of one pipeline run."""

    id: str
    project_id: str
    webhook_event_id: Optional[str] = None
    title: str
    summary: Optional[str] = None
    video_url: Optional[str] = None
    doc_url: Optional[str] = None
    status: UpdateStatus = UpdateStatus.PROCESSING
    created_at: Optional[datetime] = None
