"""API request and response data models."""

from typing import List, Optional

from pydantic import BaseModel, Field

from .project import Project
from .update import Update
from .webhook_event import WebhookEvent


class WebhookResponse(BaseModel):
    """Response from webhook handler."""

    status: str
    message: str
    webhook_event_id: Optional[str] = None


class TriggerRequest(BaseModel):
    """Manual pipeline trigger."""

    webhookEventId: str
    force: bool = False


class TriggerResponse(BaseModel):
    """Result of a manual trigger."""

    status: str
    webhook_event_id: str
    force: bool


class InitialUpdateResponse(BaseModel):
    """Result of a backfill request."""

    status: str
    webhook_event_id: str
    commit_count: int
    branch: str


class WebhookEventStatus(BaseModel):
    """Event status together with the updates it produced."""

    event: WebhookEvent
    updates: List[Update] = Field(default_factory=list)


class ProjectValidationResult(BaseModel):
    """Result of checking a project against existing ones."""

    valid: bool
    conflicts: List[Project] = Field(default_factory=list)
    error_message: Optional[str] = None


class ProjectValidationRequest(BaseModel):
    """Candidate repository URL for a new or edited project."""

    github_url: str
    project_id: Optional[str] = None
