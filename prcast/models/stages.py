"""Request models for the internal stage endpoints."""

from typing import List, Optional

from pydantic import BaseModel, Field

from .analysis import VisualChange
from .pipeline import Screenshot
from .webhook_event import WebhookPayload


class AnalyzeRequest(BaseModel):
    webhookPayload: WebhookPayload
    liveUrl: Optional[str] = None


class SynthesizeRequest(BaseModel):
    reportKey: str
    script: str


class RecordRequest(BaseModel):
    reportKey: str
    liveUrl: str
    changes: List[VisualChange] = Field(..., min_length=1)


class MuxRequest(BaseModel):
    reportKey: str


class ScreenshotsRequest(BaseModel):
    reportKey: str
    liveUrl: str
    changes: List[VisualChange] = Field(..., min_length=1)


class DocumentRequest(BaseModel):
    reportKey: str
    projectName: str
    script: str
    screenshots: List[Screenshot] = Field(default_factory=list)
