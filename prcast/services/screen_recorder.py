"""
Screen Recorder: walk the live site through each visual change and capture
a frame-accurate video.

Frames are captured as individual viewport screenshots at a fixed rate and
encoded with a strict input frame rate, so the video's length is exactly
``frames / fps`` no matter how long each screenshot took.
"""

import asyncio
import logging
import math
import shutil
import time
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from playwright.async_api import Error as PlaywrightError, Page

from prcast.models.analysis import VisualChange
from prcast.models.pipeline import RecordingResult
from prcast.services.browser_pool import BrowserPool, get_browser_pool
from prcast.services.ffmpeg import FFmpegError, FFmpegRunner, get_ffmpeg_runner

logger = logging.getLogger(__name__)

FRAME_PATTERN = "frame_%06d.png"
SCROLL_INTO_VIEW = "el => el.scrollIntoView({behavior: 'smooth', block: 'center'})"


class RecordingError(Exception):
    """Raised when the walkthrough cannot be recorded."""
    pass


def frames_for(duration_seconds: float, fps: int) -> int:
    """Number of frames for a hold of ``duration_seconds``, rounded half up."""
    return int(math.floor(duration_seconds * fps + 0.5))


def resolve_page_url(base_url: str, page_url: Optional[str]) -> str:
    """Join the live site URL with a change's relative path."""
    path = (page_url or "/").strip() or "/"
    if path.startswith(("http://", "https://")):
        return path
    return base_url.rstrip("/") + "/" + path.lstrip("/")


async def focus_selector(
    page: Page,
    selector: Optional[str],
    settle_seconds: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bool:
    """
    Scroll the first element matching ``selector`` to the viewport centre.

    A missing or invalid selector is logged and the current viewport is kept.

    Returns:
        True if an element was scrolled into view
    """
    if not selector:
        return False

    try:
        locator = page.locator(selector).first
        if await locator.count() == 0:
            logger.warning(f"Selector {selector!r} matched nothing; keeping current viewport")
            return False
        await locator.evaluate(SCROLL_INTO_VIEW)
    except PlaywrightError as e:
        logger.warning(f"Could not focus selector {selector!r}: {e}; keeping current viewport")
        return False

    await sleep(settle_seconds)
    return True


class ScreenRecorder:
    """Records a walkthrough of visual changes on a live site."""

    def __init__(
        self,
        browser_pool: Optional[BrowserPool] = None,
        runner: Optional[FFmpegRunner] = None,
        settings=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if settings is None:
            from prcast.config import settings as app_settings
            settings = app_settings
        self.settings = settings
        self.fps = settings.recording_fps
        self.browser_pool = browser_pool or get_browser_pool()
        self.runner = runner or get_ffmpeg_runner()
        self._sleep = sleep
        self._clock = clock

    async def record(
        self,
        live_url: Optional[str],
        changes: List[VisualChange],
        frames_dir: Path,
        output_path: Path,
    ) -> RecordingResult:
        """
        Capture every change and encode the frames to ``output_path``.

        Args:
            live_url: Base URL of the live site
            changes: Changes to show, in order
            frames_dir: Scratch directory for frame images
            output_path: Where to write the raw video

        Returns:
            RecordingResult

        Raises:
            RecordingError: On missing input, navigation, capture or encode failure
        """
        if not live_url:
            raise RecordingError("Project has no live URL to record")
        if not changes:
            raise RecordingError("No visual changes to record")

        frames_dir.mkdir(parents=True, exist_ok=True)

        try:
            async with self.browser_pool.page() as page:
                frame_count = await self.capture(page, live_url, changes, frames_dir)
        except PlaywrightError as e:
            raise RecordingError(f"Browser capture failed: {e}") from e

        await self.encode(frames_dir, output_path)
        await asyncio.to_thread(shutil.rmtree, frames_dir, True)

        return RecordingResult(
            video_path=str(output_path),
            frame_count=frame_count,
            fps=self.fps,
            requested_seconds=sum(change.duration_seconds for change in changes),
        )

    async def capture(
        self,
        page: Page,
        live_url: str,
        changes: List[VisualChange],
        frames_dir: Path,
    ) -> int:
        """
        Walk the changes on an open page, writing numbered frames.

        The page is navigated for the first change and whenever a change's
        path differs from the previous one.

        Returns:
            Total number of frames written
        """
        frame_index = 0
        previous_path: Optional[str] = None
        frame_budget = 1.0 / self.fps

        for position, change in enumerate(changes):
            if position == 0 or change.page_url != previous_path:
                url = resolve_page_url(live_url, change.page_url)
                logger.info(f"Navigating to {url} for change {position + 1}: {change.title}")
                await page.goto(
                    url,
                    wait_until="networkidle",
                    timeout=self.settings.navigation_timeout_ms,
                )
            previous_path = change.page_url

            await focus_selector(page, change.selector, self.settings.scroll_settle_seconds, self._sleep)

            for _ in range(frames_for(change.duration_seconds, self.fps)):
                started = self._clock()
                await page.screenshot(path=str(frames_dir / (FRAME_PATTERN % frame_index)), full_page=False)
                frame_index += 1
                remaining = frame_budget - (self._clock() - started)
                if remaining > 0:
                    await self._sleep(remaining)

        logger.info(f"Captured {frame_index} frames for {len(changes)} changes at {self.fps} fps")
        return frame_index

    async def encode(self, frames_dir: Path, output_path: Path) -> None:
        """Encode numbered frames at exactly ``fps`` into an H.264 MP4."""
        args = [
            "-framerate", str(self.fps),
            "-i", str(frames_dir / FRAME_PATTERN),
            "-c:v", "libx264",
            "-pix_fmt", "yuv420p",
            "-r", str(self.fps),
            str(output_path),
        ]
        try:
            await self.runner.run_ffmpeg(args, error_prefix="ffmpeg frame encode failed")
        except FFmpegError as e:
            raise RecordingError(str(e)) from e
