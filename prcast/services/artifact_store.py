"""
Artifact storage and run-scoped scratch space.

Intermediates (audio, raw video, frames, screenshots) live in a
``RunWorkspace`` that is removed when the run ends. Deliverables are copied
into an ``ArtifactStore`` bucket and addressed by a public URL.
"""

import asyncio
import logging
import re
import shutil
from abc import ABC, abstractmethod
from datetime import date
from pathlib import Path
from typing import Optional, Union

from prcast.models.webhook_event import EventType

logger = logging.getLogger(__name__)

VIDEOS_BUCKET = "videos"
AUDIO_BUCKET = "audio"
DOCS_BUCKET = "docs"
SCREENSHOTS_BUCKET = "screenshots"


class ArtifactStoreError(Exception):
    """Raised when an artifact cannot be stored."""
    pass


def slugify(value: str) -> str:
    """Lower-case, alphanumeric-and-dash form of a project name."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "project"


def generate_report_key(
    project_name: str,
    pr_number: int,
    update_id: str,
    event_type: EventType = EventType.PULL_REQUEST,
    on_date: Optional[date] = None,
) -> str:
    """
    Build the identifier every artifact of a run is named after.

    Format: ``<project-slug>_PR_<n>_<YYYY_MM_DD>_<update-id>``, with ``INIT``
    in place of ``PR_<n>`` for initial-commit backfills. The update id makes
    the key unique per run.
    """
    on_date = on_date or date.today()
    change = "INIT" if event_type == EventType.INITIAL_COMMITS else f"PR_{pr_number}"
    return f"{slugify(project_name)}_{change}_{on_date.strftime('%Y_%m_%d')}_{update_id}"


class RunWorkspace:
    """Scratch directory for one run, named after its report key."""

    def __init__(self, scratch_root: Union[str, Path], report_key: str):
        self.report_key = report_key
        self.root = Path(scratch_root) / report_key

    def create(self) -> "RunWorkspace":
        self.frames_dir.mkdir(parents=True, exist_ok=True)
        self.screenshots_dir.mkdir(parents=True, exist_ok=True)
        return self

    @property
    def audio_path(self) -> Path:
        return self.root / f"{self.report_key}.mp3"

    @property
    def raw_video_path(self) -> Path:
        return self.root / f"{self.report_key}_raw.mp4"

    @property
    def frames_dir(self) -> Path:
        return self.root / "frames"

    @property
    def final_video_path(self) -> Path:
        return self.root / f"{self.report_key}_final.mp4"

    @property
    def document_path(self) -> Path:
        return self.root / f"{self.report_key}.pdf"

    @property
    def screenshots_dir(self) -> Path:
        return self.root / "screenshots"

    async def cleanup(self) -> None:
        """Remove the workspace and everything in it."""
        await asyncio.to_thread(shutil.rmtree, self.root, True)
        logger.debug(f"Removed scratch workspace {self.root}")


class ArtifactStore(ABC):
    """Durable storage for run deliverables."""

    @abstractmethod
    async def put(self, bucket: str, name: str, source: Union[str, Path]) -> str:
        """
        Store ``source`` as ``bucket/name``.

        Returns:
            Public URL of the stored artifact
        """
        pass

    async def put_video(self, report_key: str, source: Union[str, Path]) -> str:
        return await self.put(VIDEOS_BUCKET, f"{report_key}_final.mp4", source)

    async def put_audio(self, report_key: str, source: Union[str, Path]) -> str:
        return await self.put(AUDIO_BUCKET, f"{report_key}.mp3", source)

    async def put_document(self, report_key: str, source: Union[str, Path]) -> str:
        return await self.put(DOCS_BUCKET, f"{report_key}.pdf", source)

    async def put_screenshot(self, report_key: str, source: Union[str, Path]) -> str:
        return await self.put(SCREENSHOTS_BUCKET, f"{report_key}/{Path(source).name}", source)


class LocalArtifactStore(ArtifactStore):
    """Stores artifacts on disk, served by the API under ``/artifacts``."""

    def __init__(self, root: Union[str, Path], public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def url_for(self, bucket: str, name: str) -> str:
        return f"{self.public_base_url}/artifacts/{bucket}/{name}"

    async def put(self, bucket: str, name: str, source: Union[str, Path]) -> str:
        destination = self.root / bucket / name
        try:
            await asyncio.to_thread(destination.parent.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copy2, source, destination)
        except OSError as e:
            raise ArtifactStoreError(f"Failed to store {bucket}/{name}: {e}") from e

        logger.info(f"Stored artifact {bucket}/{name}")
        return self.url_for(bucket, name)


_artifact_store: Optional[ArtifactStore] = None


def get_artifact_store() -> ArtifactStore:
    """Get or create the configured artifact store."""
    global _artifact_store
    if _artifact_store is None:
        from prcast.config import settings
        _artifact_store = LocalArtifactStore(settings.artifact_root, settings.public_base_url)
    return _artifact_store
