"""
Bounded ffmpeg / ffprobe execution.

Encodes are CPU heavy, so every run in a worker process shares one
``FFmpegRunner`` whose semaphore caps concurrent subprocesses. Each
subprocess gets a timeout; on expiry the child is killed and the call fails.
A cancelled call also kills its child before giving up its slot.
"""

import asyncio
import json
import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)


class FFmpegError(Exception):
    """Raised when an ffmpeg or ffprobe invocation fails."""
    pass


class FFmpegRunner:
    """Runs ffmpeg and ffprobe with a concurrency bound and a timeout."""

    def __init__(
        self,
        max_concurrent: int = 2,
        timeout_seconds: float = 300,
        ffmpeg_binary: str = "ffmpeg",
        ffprobe_binary: str = "ffprobe",
    ):
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.timeout_seconds = timeout_seconds
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def _run(self, cmd: List[str], error_prefix: str) -> subprocess.CompletedProcess:
        logger.debug(f"Running subprocess: {' '.join(cmd)}")
        async with self._semaphore:
            try:
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                raise FFmpegError(f"{error_prefix}: {e}") from e

            try:
                stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError as e:
                await self._kill(process)
                raise FFmpegError(f"{error_prefix}: timed out after {self.timeout_seconds}s") from e
            except asyncio.CancelledError:
                # the slot must not free up while the child still runs
                await self._kill(process)
                raise

        proc = subprocess.CompletedProcess(
            cmd,
            process.returncode,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )
        if proc.returncode != 0:
            stderr_text = proc.stderr.strip()
            stdout_text = proc.stdout.strip()
            detail = stderr_text or stdout_text or "unknown error"
            raise FFmpegError(f"{error_prefix}: {detail[-2000:]}")
        return proc

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()
        logger.warning(f"Killed subprocess {process.pid}")

    async def run_ffmpeg(self, args: List[str], error_prefix: str = "ffmpeg failed") -> None:
        """
        Run ffmpeg with ``args`` (without the binary name).

        Raises:
            FFmpegError: On non-zero exit, timeout or missing binary
        """
        await self._run([self.ffmpeg_binary, "-y", "-hide_banner", "-loglevel", "error", *args], error_prefix)

    async def probe_duration(self, media_path: Union[str, Path]) -> float:
        """
        Measure a media file's duration in seconds.

        Raises:
            FFmpegError: If ffprobe fails or reports no positive duration
        """
        cmd = [
            self.ffprobe_binary,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "json",
            str(media_path),
        ]
        proc = await self._run(cmd, f"ffprobe failed for {Path(media_path).name}")
        try:
            payload = json.loads(proc.stdout or "{}")
        except json.JSONDecodeError as e:
            raise FFmpegError("ffprobe returned invalid JSON") from e

        try:
            duration = float((payload.get("format") or {}).get("duration", 0))
        except (TypeError, ValueError):
            duration = 0.0

        if duration <= 0:
            raise FFmpegError(f"ffprobe reported no duration for {media_path}")
        return duration


_runner: Optional[FFmpegRunner] = None


def get_ffmpeg_runner() -> FFmpegRunner:
    """Get or create the process-wide ffmpeg runner."""
    global _runner
    if _runner is None:
        from prcast.config import settings
        _runner = FFmpegRunner(
            max_concurrent=settings.max_concurrent_encodes,
            timeout_seconds=settings.ffmpeg_timeout_seconds,
            ffmpeg_binary=settings.ffmpeg_binary,
            ffprobe_binary=settings.ffprobe_binary,
        )
    return _runner
