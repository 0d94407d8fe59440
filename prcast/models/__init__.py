"""Data models for prcast."""

from .analysis import ContentAnalysis, VisualChange, default_change
from .api_response import (
    InitialUpdateResponse,
    ProjectValidationRequest,
    ProjectValidationResult,
    TriggerRequest,
    TriggerResponse,
    WebhookEventStatus,
    WebhookResponse,
)
from .pipeline import (
    FATAL_STAGES,
    DocumentResult,
    MuxPlan,
    MuxResult,
    MuxStrategy,
    NarrationResult,
    PipelineJob,
    PipelineStage,
    RecordingResult,
    RunSnapshot,
    Screenshot,
)
from .project import Project, RepositoryRef
from .update import Update, UpdateStatus
from .webhook_event import (
    EventInfo,
    EventType,
    HighLevel,
    ProcessingStatus,
    WebhookEvent,
    WebhookPayload,
)

__all__ = [
    # Project models
    "Project",
    "RepositoryRef",
    # Event models
    "EventType",
    "ProcessingStatus",
    "EventInfo",
    "HighLevel",
    "WebhookPayload",
    "WebhookEvent",
    # Update models
    "Update",
    "UpdateStatus",
    # Analysis models
    "VisualChange",
    "ContentAnalysis",
    "default_change",
    # Pipeline models
    "PipelineStage",
    "FATAL_STAGES",
    "NarrationResult",
    "PipelineJob",
    "RecordingResult",
    "MuxStrategy",
    "MuxPlan",
    "MuxResult",
    "Screenshot",
    "DocumentResult",
    "RunSnapshot",
    # API models
    "WebhookResponse",
    "TriggerRequest",
    "TriggerResponse",
    "InitialUpdateResponse",
    "WebhookEventStatus",
    "ProjectValidationRequest",
    "ProjectValidationResult",
]
