"""
Duration Reconciler / Muxer.

The recording and the narration are produced independently and rarely have
the same length. Before muxing, the video is either trimmed to the audio,
slowed down to cover it, or used as is when the two agree within a
tolerance. The audio is never altered.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

from prcast.models.pipeline import MuxPlan, MuxResult, MuxStrategy
from prcast.services.ffmpeg import FFmpegError, FFmpegRunner, get_ffmpeg_runner

logger = logging.getLogger(__name__)


class MuxError(Exception):
    """Raised when the final video cannot be produced."""
    pass


def plan_reconciliation(video_duration: float, audio_duration: float, tolerance: float = 0.05) -> MuxPlan:
    """
    Decide how to fit a video to its narration.

    - video longer than audio + tolerance: trim the video to the audio length
    - audio longer than video + tolerance: slow the video by ``video / audio``
      and cap the output at the audio length
    - otherwise: pass through unchanged

    Args:
        video_duration: Recording length in seconds
        audio_duration: Narration length in seconds
        tolerance: Allowed difference in seconds

    Returns:
        MuxPlan describing the reconciliation
    """
    if video_duration <= 0 or audio_duration <= 0:
        raise ValueError(
            f"Durations must be positive (video={video_duration}, audio={audio_duration})"
        )

    if video_duration > audio_duration + tolerance:
        return MuxPlan(strategy=MuxStrategy.TRIM, trim_to_seconds=audio_duration)

    if audio_duration > video_duration + tolerance:
        return MuxPlan(
            strategy=MuxStrategy.STRETCH,
            speed_factor=video_duration / audio_duration,
            trim_to_seconds=audio_duration,
        )

    return MuxPlan(strategy=MuxStrategy.PASSTHROUGH)


def build_mux_command(
    video_path: Union[str, Path],
    audio_path: Union[str, Path],
    output_path: Union[str, Path],
    plan: MuxPlan,
) -> List[str]:
    """
    Build the ffmpeg arguments for a plan.

    Video always comes from input 0 and audio from input 1, and both are
    re-encoded. Passthrough ends at the shorter stream, dropping the
    sub-tolerance tail of the longer one.
    """
    args = ["-i", str(video_path), "-i", str(audio_path)]

    if plan.strategy == MuxStrategy.STRETCH:
        args += ["-filter:v", f"setpts=PTS/{plan.speed_factor:.6f}"]

    args += [
        "-map", "0:v:0",
        "-map", "1:a:0",
        "-c:v", "libx264",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
    ]

    if plan.trim_to_seconds is not None:
        args += ["-t", f"{plan.trim_to_seconds:.3f}"]
    elif plan.strategy == MuxStrategy.PASSTHROUGH:
        args.append("-shortest")

    args.append(str(output_path))
    return args


class Muxer:
    """Combines a raw recording and its narration into the final video."""

    def __init__(self, runner: Optional[FFmpegRunner] = None, tolerance: Optional[float] = None):
        if tolerance is None:
            from prcast.config import settings
            tolerance = settings.duration_tolerance_seconds
        self.runner = runner or get_ffmpeg_runner()
        self.tolerance = tolerance

    async def mux(
        self,
        video_path: Union[str, Path],
        audio_path: Union[str, Path],
        output_path: Union[str, Path],
    ) -> MuxResult:
        """
        Measure both inputs, reconcile their durations and encode the result.

        Raises:
            MuxError: If probing or encoding fails
        """
        try:
            video_duration = await self.runner.probe_duration(video_path)
            audio_duration = await self.runner.probe_duration(audio_path)

            plan = plan_reconciliation(video_duration, audio_duration, self.tolerance)
            logger.info(
                f"Reconciling video {video_duration:.2f}s with audio {audio_duration:.2f}s: "
                f"{plan.strategy.value}",
                extra={"speed_factor": plan.speed_factor, "trim_to_seconds": plan.trim_to_seconds},
            )

            await self.runner.run_ffmpeg(
                build_mux_command(video_path, audio_path, output_path, plan),
                error_prefix="ffmpeg mux failed",
            )
            output_duration = await self.runner.probe_duration(output_path)
        except (FFmpegError, ValueError) as e:
            raise MuxError(str(e)) from e

        return MuxResult(
            final_video_path=str(output_path),
            video_duration=video_duration,
            audio_duration=audio_duration,
            strategy=plan.strategy,
            speed_factor=plan.speed_factor,
            output_duration=output_duration,
        )
