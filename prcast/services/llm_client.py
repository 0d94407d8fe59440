"""
Wrapper for the OpenAI / Azure OpenAI capabilities the pipeline uses:
JSON-mode chat completions, plain chat completions and speech synthesis.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from openai import AsyncOpenAI, AsyncAzureOpenAI

from prcast.utils.metrics import RunMetrics, track_api_call
from prcast.utils.resilience import CircuitBreaker, create_llm_circuit_breaker

logger = logging.getLogger(__name__)


class LLMClient:
    """Wrapper for OpenAI/Azure OpenAI API client."""

    def __init__(self, settings=None, circuit_breaker: Optional[CircuitBreaker] = None):
        """Initialize LLM client based on configuration."""
        if settings is None:
            from prcast.config import settings as app_settings
            settings = app_settings

        self.settings = settings
        self.circuit_breaker = circuit_breaker or create_llm_circuit_breaker()

        if settings.azure_openai_endpoint and settings.azure_openai_api_key:
            self.client = AsyncAzureOpenAI(
                api_key=settings.azure_openai_api_key,
                api_version="2024-10-21",
                azure_endpoint=settings.azure_openai_endpoint,
            )
            self.deployment = settings.azure_openai_deployment
            self.is_azure = True
            logger.info("Initialized Azure OpenAI client")
        else:
            self.client = AsyncOpenAI(api_key=settings.openai_api_key)
            self.deployment = None
            self.is_azure = False
            logger.info("Initialized OpenAI client")

    def _model(self, model: str) -> str:
        # Azure routes by deployment name rather than model name
        return self.deployment or model

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_tokens: int,
        temperature: float,
        json_mode: bool = False,
        metrics: Optional[RunMetrics] = None,
    ) -> str:
        """
        Run a chat completion with circuit breaker protection.

        Args:
            system_prompt: System message
            user_prompt: User message
            model: Model name (ignored on Azure in favour of the deployment)
            max_tokens: Completion token limit
            temperature: Sampling temperature
            json_mode: Request ``response_format={"type": "json_object"}``
            metrics: Run metrics to record latency on

        Returns:
            Message content, stripped; empty string when the model returned none

        Raises:
            CircuitBreakerOpenError: If the breaker is open
            openai.OpenAIError: If the API call fails
        """
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        async def _call_llm():
            response = await self.client.chat.completions.create(
                model=self._model(model),
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )
            return (response.choices[0].message.content or "").strip()

        async with track_api_call(metrics, "openai", logger, endpoint="chat.completions", method="POST"):
            return await self.circuit_breaker.call(_call_llm)

    async def synthesize_speech(
        self,
        text: str,
        output_path: Path,
        model: str,
        voice: str,
        metrics: Optional[RunMetrics] = None,
    ) -> Path:
        """
        Synthesize ``text`` to an MP3 file.

        Returns:
            Path of the written file
        """
        async def _call_tts():
            return await self.client.audio.speech.create(
                model=model,
                voice=voice,
                input=text,
                response_format="mp3",
            )

        async with track_api_call(metrics, "openai", logger, endpoint="audio.speech", method="POST"):
            response = await self.circuit_breaker.call(_call_tts)

        await asyncio.to_thread(output_path.write_bytes, response.content)
        return output_path


_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get or create the global LLM client instance."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client
