"""
Narration Synthesizer: speak the script and measure the resulting audio.
"""

import logging
from pathlib import Path
from typing import Optional

from prcast.models.pipeline import NarrationResult
from prcast.services.ffmpeg import FFmpegError, FFmpegRunner, get_ffmpeg_runner
from prcast.services.llm_client import LLMClient, get_llm_client
from prcast.utils.metrics import RunMetrics

logger = logging.getLogger(__name__)


class NarrationError(Exception):
    """Raised when narration audio cannot be produced."""
    pass


class NarrationSynthesizer:
    """Text-to-speech for walkthrough scripts."""

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        runner: Optional[FFmpegRunner] = None,
        settings=None,
    ):
        if settings is None:
            from prcast.config import settings as app_settings
            settings = app_settings
        self.settings = settings
        self.llm_client = llm_client or get_llm_client()
        self.runner = runner or get_ffmpeg_runner()

    async def synthesize(
        self,
        script: str,
        output_path: Path,
        metrics: Optional[RunMetrics] = None,
    ) -> NarrationResult:
        """
        Write ``script`` as speech to ``output_path`` and measure it.

        The duration comes from the written file, not from an estimate.

        Raises:
            NarrationError: If the script is empty, synthesis fails or the
                audio cannot be measured
        """
        if not script or not script.strip():
            raise NarrationError("Narration script is empty")

        try:
            await self.llm_client.synthesize_speech(
                script.strip(),
                output_path,
                model=self.settings.tts_model,
                voice=self.settings.tts_voice,
                metrics=metrics,
            )
        except Exception as e:
            raise NarrationError(f"Speech synthesis failed: {e}") from e

        try:
            duration = await self.runner.probe_duration(output_path)
        except FFmpegError as e:
            raise NarrationError(f"Could not measure narration audio: {e}") from e

        logger.info(f"Narration synthesized: {duration:.2f}s ({len(script)} chars)")
        return NarrationResult(audio_path=str(output_path), duration_seconds=duration)
