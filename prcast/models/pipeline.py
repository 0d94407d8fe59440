"""Pipeline stage and intermediate result models."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class PipelineStage(str, Enum):
    """Stages of one pipeline run, in execution order."""

    QUEUED = "queued"
    ANALYZING = "analyzing"
    NARRATING = "narrating"
    RECORDING = "recording"
    MUXING = "muxing"
    DOCUMENTING = "documenting"
    SCORING = "scoring"
    COMPLETED = "completed"
    FAILED = "failed"


# A failure in any of these ends the run
FATAL_STAGES = (
    PipelineStage.ANALYZING,
    PipelineStage.NARRATING,
    PipelineStage.RECORDING,
    PipelineStage.MUXING,
)


class NarrationResult(BaseModel):
    """Synthesized narration audio."""

    audio_path: str
    duration_seconds: float


class RecordingResult(BaseModel):
    """Encoded screen recording."""

    video_path: str
    frame_count: int
    fps: int
    requested_seconds: float


class MuxStrategy(str, Enum):
    """How audio and video durations were reconciled."""

    TRIM = "trim"
    STRETCH = "stretch"
    PASSTHROUGH = "passthrough"


class MuxPlan(BaseModel):
    """Reconciliation decision for one video/audio pair."""

    strategy: MuxStrategy
    speed_factor: Optional[float] = None
    trim_to_seconds: Optional[float] = None


class MuxResult(BaseModel):
    """Final narrated video."""

    final_video_path: str
    video_duration: float
    audio_duration: float
    strategy: MuxStrategy
    speed_factor: Optional[float] = None
    output_duration: Optional[float] = None


class Screenshot(BaseModel):
    """Still image of one visual change; path is None when capture failed."""

    index: int
    title: str
    description: str = ""
    path: Optional[str] = None


class DocumentResult(BaseModel):
    """Rendered companion document."""

    document_path: str
    document_url: Optional[str] = None
    title: str


class RunSnapshot(BaseModel):
    """Live view of a run, stored in Redis for monitoring."""

    report_key: str
    webhook_event_id: str
    project_id: str
    update_id: Optional[str] = None
    stage: PipelineStage = PipelineStage.QUEUED
    stage_history: List[str] = Field(default_factory=list)
    degraded_stages: List[str] = Field(default_factory=list)
    stage_durations: Dict[str, float] = Field(default_factory=dict)
    video_url: Optional[str] = None
    doc_url: Optional[str] = None
    progress: Optional[int] = None
    error: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None


class PipelineJob(BaseModel):
    """A queued request to run the pipeline for one webhook event."""

    webhook_event_id: str
    force: bool = False
    enqueued_at: Optional[datetime] = None
