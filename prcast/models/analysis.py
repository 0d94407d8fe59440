"""
Data models for content analysis.

The analyzer turns a change payload into narration text and an ordered list
of visual changes the recorder and the document generator walk through.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class VisualChange(BaseModel):
    """A user-visible change to show on the live site."""

    title: str = Field(..., description="Short label for the change")
    description: str = Field("", description="What changed, in plain language")
    page_url: str = Field("/", description="Path relative to the live site")
    selector: Optional[str] = Field(None, description="CSS selector to scroll into view")
    duration_seconds: float = Field(5.0, gt=0, description="How long to hold on this change")


class ContentAnalysis(BaseModel):
    """Narration and the visual changes it walks through."""

    summary: str
    script: str
    changes: List[VisualChange] = Field(default_factory=list)
    fallback_used: bool = False


def default_change() -> VisualChange:
    """The change shown when the analysis names none."""
    return VisualChange(
        title="Homepage Overview",
        description="Overview of the updated website",
        page_url="/",
        selector="body",
        duration_seconds=8,
    )
