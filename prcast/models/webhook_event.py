"""Webhook event data models."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Kind of change that produced the event."""

    PULL_REQUEST = "pull_request"
    INITIAL_COMMITS = "initial_commits"


class ProcessingStatus(str, Enum):
    """Processing status of a webhook event."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EventInfo(BaseModel):
    """Who merged what, where and when."""

    repository: str
    pr_number: int
    merged_by: Optional[str] = None
    timestamp: Optional[str] = None


class HighLevel(BaseModel):
    """Human-written description of the change."""

    title: str = ""
    body: Optional[str] = None


class WebhookPayload(BaseModel):
    """Self-contained payload the pipeline analyzes."""

    event_info: EventInfo
    high_level: HighLevel = Field(default_factory=HighLevel)
    raw_commits: List[str] = Field(default_factory=list, description="Commit messages, oldest first")
    raw_diff: str = ""


class WebhookEvent(BaseModel):
    """A stored, qualifying change event."""

    id: str
    project_id: str
    event_type: EventType = EventType.PULL_REQUEST
    pr_number: int
    pr_title: str = ""
    pr_body: Optional[str] = None
    merged_by: Optional[str] = None
    merged_at: Optional[datetime] = None
    raw_payload: WebhookPayload
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
