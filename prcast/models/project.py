"""Project data models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RepositoryRef(BaseModel):
    """A GitHub repository identified by owner and name."""

    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def key(self) -> str:
        """Case-insensitive comparison key."""
        return self.full_name.lower()


class Project(BaseModel):
    """A project connecting a GitHub repository to a live site."""

    id: str
    name: str
    github_url: Optional[str] = None
    live_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    project_scope: Optional[str] = None
    progress: int = Field(0, ge=0, le=100)
    created_at: Optional[datetime] = None
